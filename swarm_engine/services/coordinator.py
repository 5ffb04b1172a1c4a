"""
swarm_engine/services/coordinator.py

The public face of the engine.

The coordinator owns every swarm, serializes operations per swarm and
runs the background work: algorithm ticks, pheromone decay, heartbeat
sweeps and overdue-action sweeps. Different swarms never share a lock, so
they proceed in parallel.

Usage:
    coordinator = SwarmCoordinator(EngineConfig.from_env())
    sink = coordinator.subscribe(print)
    swarm_id = coordinator.form_swarm("survey-7", min_members=3)
    coordinator.join(swarm_id, "drone-1", {"x": 0, "y": 0})
"""

from __future__ import annotations
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Union
import logging
import threading
import time

import numpy as np

from swarm_engine.algorithms import MovementSuggestion, SwarmAlgorithm
from swarm_engine.config import AlgorithmParameters, EngineConfig
from swarm_engine.coordination.actions import TimingMode
from swarm_engine.coordination.metrics import SwarmMetrics
from swarm_engine.coordination.swarm import Swarm, SwarmConfig, SwarmObjective, SwarmState
from swarm_engine.core.geometry import FormationType
from swarm_engine.core.knowledge import MessageKind
from swarm_engine.core.member import MemberRole, MemberState
from swarm_engine.core.pheromones import DecayReport, PheromoneTrail, TrailType
from swarm_engine.errors import CapacityExceeded, InvalidState, NotFound

from . import events
from .events import CallbackSink, Notification, NotificationSink, create_notification_sink

logger = logging.getLogger(__name__)


class Periodic:
    """
    Runs a callable every `interval` seconds on a daemon thread.

    The first run happens one interval after start. Exceptions are
    logged and the loop carries on.
    """

    def __init__(self, interval: float, fn: Callable[[], Any], name: str):
        self.interval = interval
        self.fn = fn
        self.name = name
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.fn()
            except Exception:
                logger.exception(f"Periodic task {self.name} failed")

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name=self.name)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        thread = self._thread
        self._thread = None
        # A task may stop its own loop (e.g. a tick that dissolves the swarm)
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


Listener = Union[NotificationSink, Callable[[Notification], None]]


@dataclass
class SwarmTombstone:
    """What the coordinator remembers about a dissolved swarm."""
    swarm_id: str
    task_id: str
    state: SwarmState
    reason: str
    dissolved_at: float
    metrics: SwarmMetrics

    def to_dict(self) -> Dict[str, Any]:
        return {
            "swarm_id": self.swarm_id,
            "task_id": self.task_id,
            "state": self.state.value,
            "reason": self.reason,
            "dissolved_at": self.dissolved_at,
            "metrics": self.metrics.to_dict(),
        }


class SwarmCoordinator:
    """
    Forms, drives and dissolves swarms.

    Every operation on a swarm runs under that swarm's lock. The
    notifications it produced are drained and handed to the sinks
    before the lock is released, so sinks see each swarm's
    notifications in order.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        sinks: Optional[Sequence[NotificationSink]] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[np.random.Generator] = None
    ):
        self.config = config or EngineConfig()
        self._clock = clock
        self._rng = rng if rng is not None else np.random.default_rng(self.config.seed)

        if sinks is None:
            sinks = [self._default_sink()]
        self._sinks: List[NotificationSink] = list(sinks)
        self._sinks_lock = threading.Lock()

        self._registry_lock = threading.Lock()
        self._swarms: Dict[str, Swarm] = {}
        self._dissolved: OrderedDict[str, SwarmTombstone] = OrderedDict()
        self._locks: Dict[str, threading.RLock] = {}
        self._loops: Dict[str, List[Periodic]] = {}

        logger.info(
            f"Swarm coordinator initialized (max_swarms={self.config.max_swarms}, "
            f"default_algorithm={self.config.default_algorithm})"
        )

    def _default_sink(self) -> NotificationSink:
        if self.config.notification_backend == "redis":
            return create_notification_sink(
                "redis",
                redis_url=self.config.redis_url,
                channel=self.config.redis_channel,
            )
        return create_notification_sink(self.config.notification_backend)

    # ==================== Subscriptions ====================

    def subscribe(self, listener: Listener) -> NotificationSink:
        """Add a sink, or a plain callable wrapped in a CallbackSink."""
        sink = listener if isinstance(listener, NotificationSink) else CallbackSink(listener)
        with self._sinks_lock:
            self._sinks.append(sink)
        return sink

    def unsubscribe(self, sink: NotificationSink) -> None:
        with self._sinks_lock:
            if sink in self._sinks:
                self._sinks.remove(sink)

    @property
    def sinks(self) -> List[NotificationSink]:
        with self._sinks_lock:
            return list(self._sinks)

    def _flush(self, swarm: Swarm) -> None:
        notifications = swarm.drain_notifications()
        if not notifications:
            return
        sinks = self.sinks
        for notification in notifications:
            for sink in sinks:
                try:
                    sink.publish(notification)
                except Exception:
                    logger.exception(f"Sink {type(sink).__name__} failed on {notification.event}")

    # ==================== Registry ====================

    def _lock_for(self, swarm_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(swarm_id)
            dissolved = swarm_id in self._dissolved
        if lock is None:
            if dissolved:
                raise InvalidState(f"Swarm {swarm_id} is dissolved")
            raise NotFound(f"Unknown swarm: {swarm_id}")
        return lock

    def _active(self, swarm_id: str) -> Swarm:
        with self._registry_lock:
            if swarm_id in self._dissolved:
                raise InvalidState(f"Swarm {swarm_id} is dissolved")
            swarm = self._swarms.get(swarm_id)
        if swarm is None:
            raise NotFound(f"Unknown swarm: {swarm_id}")
        return swarm

    @contextmanager
    def _operate(self, swarm_id: str) -> Iterator[Swarm]:
        """Hold the swarm's lock and publish what the body emitted."""
        with self._lock_for(swarm_id):
            swarm = self._active(swarm_id)
            try:
                yield swarm
            finally:
                self._flush(swarm)

    def get_swarm(self, swarm_id: str) -> Swarm:
        """
        Active swarm by id.

        Raises:
            InvalidState: The swarm has been dissolved (see get_tombstone)
            NotFound: Unknown swarm
        """
        return self._active(swarm_id)

    def get_tombstone(self, swarm_id: str) -> SwarmTombstone:
        """Final record of a dissolved swarm, while it is still retained."""
        with self._registry_lock:
            tombstone = self._dissolved.get(swarm_id)
        if tombstone is None:
            raise NotFound(f"No dissolved swarm: {swarm_id}")
        return tombstone

    def active_swarms(self) -> List[str]:
        with self._registry_lock:
            return list(self._swarms)

    def dissolved_swarms(self) -> List[str]:
        """Retained dissolved swarm ids, oldest first."""
        with self._registry_lock:
            return list(self._dissolved)

    # ==================== Formation ====================

    def form_swarm(
        self,
        task_id: str,
        min_members: int,
        max_members: Optional[int] = None,
        algorithm: Optional[Union[SwarmAlgorithm, str]] = None,
        objective: Optional[Union[SwarmObjective, Dict[str, Any]]] = None,
        parameters: Optional[Union[AlgorithmParameters, Dict[str, Any]]] = None,
        timeout: Optional[float] = None,
        leader_id: Optional[str] = None
    ) -> str:
        """
        Form a new swarm.

        Returns:
            The new swarm's id

        Raises:
            CapacityExceeded: Already running max_swarms swarms
            ValueError: Bad member bounds or unknown algorithm
        """
        if min_members < 1:
            raise ValueError("min_members must be at least 1")
        if max_members is not None and max_members < min_members:
            raise ValueError("max_members must be at least min_members")

        swarm_config = SwarmConfig(
            task_id=task_id,
            min_members=min_members,
            max_members=max_members,
            algorithm=algorithm or self.config.default_algorithm,
            objective=objective if objective is not None else SwarmObjective(),
            parameters=parameters if parameters is not None else AlgorithmParameters(),
            leader_id=leader_id,
            timeout=timeout,
        )

        with self._registry_lock:
            if len(self._swarms) >= self.config.max_swarms:
                raise CapacityExceeded(
                    f"Maximum concurrent swarms ({self.config.max_swarms}) reached"
                )
            seed = int(self._rng.integers(0, 2**32))
            swarm = Swarm(
                swarm_config,
                engine_config=self.config,
                rng=np.random.default_rng(seed),
                clock=self._clock,
            )
            swarm_id = swarm.swarm_id
            self._swarms[swarm_id] = swarm
            self._locks[swarm_id] = threading.RLock()

        with self._operate(swarm_id) as swarm:
            swarm._emit(
                events.SWARM_FORMED,
                task_id=task_id,
                algorithm=swarm_config.algorithm,
                min_members=min_members,
                max_members=swarm.roster.max_members,
                objective=swarm_config.objective,
            )

        if self.config.autostart_timers:
            self._start_loops(swarm_id)

        logger.info(
            f"Formed swarm {swarm_id} for task {task_id} "
            f"({swarm_config.algorithm.value}, {min_members}+ members)"
        )
        return swarm_id

    def _start_loops(self, swarm_id: str) -> None:
        swarm = self.get_swarm(swarm_id)
        tick_interval = swarm.config.parameters.update_interval or self.config.tick_interval
        loops = [
            Periodic(tick_interval, lambda: self._run_tick(swarm_id), f"swarm-tick-{swarm_id[:8]}"),
            Periodic(self.config.decay_interval, lambda: self._run_decay(swarm_id), f"swarm-decay-{swarm_id[:8]}"),
            Periodic(self.config.heartbeat_interval, lambda: self._run_heartbeat(swarm_id), f"swarm-heartbeat-{swarm_id[:8]}"),
            Periodic(self.config.action_check_interval, lambda: self._run_expire_actions(swarm_id), f"swarm-actions-{swarm_id[:8]}"),
        ]
        with self._registry_lock:
            self._loops[swarm_id] = loops
        for loop in loops:
            loop.start()

    def _stop_loops(self, swarm_id: str) -> None:
        with self._registry_lock:
            loops = self._loops.pop(swarm_id, [])
        for loop in loops:
            loop.stop()

    # ==================== Membership ====================

    def join(
        self,
        swarm_id: str,
        member_id: str,
        position,
        role: Optional[MemberRole] = None,
        strict: bool = False
    ) -> bool:
        """
        Add a member to a swarm.

        Returns False if the swarm is full or the member already joined.
        With strict=True a full swarm raises CapacityExceeded instead.
        """
        with self._operate(swarm_id) as swarm:
            if strict and swarm.roster.is_full and member_id not in swarm.roster:
                raise CapacityExceeded(f"Swarm {swarm_id} is full")
            return swarm.join(member_id, position, role)

    def leave(self, swarm_id: str, member_id: str) -> bool:
        with self._operate(swarm_id) as swarm:
            return swarm.leave(member_id)

    def update_member_position(self, swarm_id: str, member_id: str, position, velocity=None) -> bool:
        with self._operate(swarm_id) as swarm:
            return swarm.update_position(member_id, position, velocity)

    def set_member_state(self, swarm_id: str, member_id: str, state: MemberState) -> None:
        with self._operate(swarm_id) as swarm:
            swarm.set_member_state(member_id, state)

    def apply_suggestion(self, swarm_id: str, suggestion: MovementSuggestion) -> bool:
        with self._operate(swarm_id) as swarm:
            return swarm.apply_suggestion(suggestion)

    def assign_sectors(self, swarm_id: str, width: float, height: float) -> Dict[str, int]:
        with self._operate(swarm_id) as swarm:
            return swarm.assign_sectors(width, height)

    # ==================== Coordinated actions ====================

    def start_coordinated_action(
        self,
        swarm_id: str,
        action_type: str,
        target,
        formation: Union[FormationType, str] = FormationType.CIRCLE,
        participants: Optional[Sequence[str]] = None,
        timing: Union[TimingMode, str] = TimingMode.SYNCHRONIZED,
        timeout: Optional[float] = None
    ) -> str:
        """
        Start a coordinated action. With a timeout, an unfinished action
        fails at the first overdue-action sweep after it elapses.

        Returns:
            The action id
        """
        with self._operate(swarm_id) as swarm:
            action = swarm.start_action(
                action_type,
                target,
                formation=FormationType(formation),
                participants=participants,
                timing=TimingMode(timing),
                timeout=timeout,
            )
            return action.action_id

    def report_action_completion(
        self,
        swarm_id: str,
        member_id: str,
        action_id: str,
        success: bool = True
    ) -> bool:
        """Returns True if this report completed the action."""
        with self._operate(swarm_id) as swarm:
            return swarm.report_action_completion(member_id, action_id, success)

    # ==================== Shared medium ====================

    def deposit_pheromone(
        self,
        swarm_id: str,
        member_id: str,
        path: Sequence,
        trail_type: Union[TrailType, str] = TrailType.EXPLORED,
        strength: float = 1.0
    ) -> str:
        """Returns the new trail's id."""
        with self._operate(swarm_id) as swarm:
            trail = swarm.deposit_pheromone(member_id, path, TrailType(trail_type), strength)
            return trail.trail_id

    def find_pheromones(self, swarm_id: str, location, radius: float) -> List[PheromoneTrail]:
        with self._operate(swarm_id) as swarm:
            return swarm.find_pheromones(location, radius)

    def share_knowledge(self, swarm_id: str, key: str, value: Any, written_by: str = "swarm") -> None:
        with self._operate(swarm_id) as swarm:
            swarm.share_knowledge(key, value, written_by)

    def read_knowledge(self, swarm_id: str, key: str, default: Any = None) -> Any:
        with self._operate(swarm_id) as swarm:
            return swarm.read_knowledge(key, default)

    def broadcast(
        self,
        swarm_id: str,
        content: Any,
        kind: Union[MessageKind, str] = MessageKind.BROADCAST
    ) -> str:
        """Returns the message id."""
        with self._operate(swarm_id) as swarm:
            return swarm.broadcast(content, MessageKind(kind)).message_id

    def send_direct(self, swarm_id: str, recipient: str, content: Any) -> str:
        with self._operate(swarm_id) as swarm:
            return swarm.send_direct(recipient, content).message_id

    def get_metrics(self, swarm_id: str) -> SwarmMetrics:
        with self._operate(swarm_id) as swarm:
            return swarm.get_metrics()

    # ==================== Background work ====================

    def tick(self, swarm_id: str) -> List[MovementSuggestion]:
        """
        Run one algorithm tick and return its suggestions.

        Dissolves the swarm afterwards if its objective is met or its
        timeout has elapsed.
        """
        reason = None
        with self._operate(swarm_id) as swarm:
            suggestions = swarm.tick()
            if swarm.objective_met():
                reason = "objective-met"
            elif swarm.is_timed_out(self._clock()):
                reason = "timeout"
        if reason is not None:
            self.dissolve(swarm_id, reason=reason)
        return suggestions

    def decay(self, swarm_id: str, now: Optional[float] = None) -> DecayReport:
        with self._operate(swarm_id) as swarm:
            return swarm.decay_pheromones(now)

    def heartbeat(self, swarm_id: str, now: Optional[float] = None) -> List[str]:
        """Mark members silent for longer than member_timeout as offline."""
        with self._operate(swarm_id) as swarm:
            return swarm.mark_stale_members(self.config.member_timeout, now)

    def expire_actions(self, swarm_id: str, now: Optional[float] = None) -> List[str]:
        """Fail every action whose timeout has elapsed. Returns their ids."""
        with self._operate(swarm_id) as swarm:
            return swarm.expire_overdue_actions(self._clock() if now is None else now)

    def _run_background(self, name: str, fn: Callable[[str], Any], swarm_id: str) -> None:
        try:
            fn(swarm_id)
        except (NotFound, InvalidState):
            logger.debug(f"Skipping {name} for swarm {swarm_id}: no longer active")
        except Exception:
            logger.exception(f"{name} failed for swarm {swarm_id}")

    def _run_tick(self, swarm_id: str) -> None:
        self._run_background("tick", self.tick, swarm_id)

    def _run_decay(self, swarm_id: str) -> None:
        self._run_background("decay", self.decay, swarm_id)

    def _run_heartbeat(self, swarm_id: str) -> None:
        self._run_background("heartbeat", self.heartbeat, swarm_id)

    def _run_expire_actions(self, swarm_id: str) -> None:
        self._run_background("action sweep", self.expire_actions, swarm_id)

    # ==================== Dissolution ====================

    def dissolve(self, swarm_id: str, reason: str = "mission-complete") -> bool:
        """
        Dissolve a swarm and stop its background work.

        The swarm itself is released; only a tombstone is kept, and only
        for the last `dissolved_retention` dissolutions.

        Returns False if it was already dissolved.

        Raises:
            NotFound: Unknown swarm
        """
        try:
            lock = self._lock_for(swarm_id)
        except InvalidState:
            return False

        with lock:
            with self._registry_lock:
                if swarm_id in self._dissolved:
                    return False
                swarm = self._swarms.get(swarm_id)
            if swarm is None:
                raise NotFound(f"Unknown swarm: {swarm_id}")
            try:
                swarm.dissolve(reason)
            finally:
                self._bury(swarm, reason)
                self._flush(swarm)
        self._stop_loops(swarm_id)
        return True

    def _bury(self, swarm: Swarm, reason: str) -> None:
        tombstone = SwarmTombstone(
            swarm_id=swarm.swarm_id,
            task_id=swarm.task_id,
            state=swarm.state,
            reason=reason,
            dissolved_at=self._clock(),
            metrics=swarm.get_metrics(),
        )
        with self._registry_lock:
            self._swarms.pop(swarm.swarm_id, None)
            self._locks.pop(swarm.swarm_id, None)
            self._dissolved[swarm.swarm_id] = tombstone
            while len(self._dissolved) > max(self.config.dissolved_retention, 0):
                self._dissolved.popitem(last=False)

    def shutdown(self) -> None:
        """Dissolve every active swarm and close the sinks."""
        for swarm_id in self.active_swarms():
            try:
                self.dissolve(swarm_id, reason="shutdown")
            except Exception:
                logger.exception(f"Failed to dissolve swarm {swarm_id} on shutdown")
        for sink in self.sinks:
            try:
                sink.close()
            except Exception:
                logger.exception(f"Failed to close sink {type(sink).__name__}")
        logger.info("Swarm coordinator shut down")

    def __enter__(self) -> SwarmCoordinator:
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()

    def __repr__(self) -> str:
        return (
            f"SwarmCoordinator(active={len(self._swarms)}, "
            f"dissolved={len(self._dissolved)}, sinks={len(self._sinks)})"
        )
