"""
coordination/swarm.py

The Swarm: one group, one objective, one algorithm.

The swarm is the aggregate root. It owns its roster, its trails, its
message log and blackboard, and its coordinated actions. It is not
thread-safe on its own; the coordinator serializes every call against
one swarm.

Lifecycle:
    forming -> ready -> executing -> dispersing -> dissolved

Every mutating call queues notifications in an outbox. Whoever drives
the swarm drains the outbox and delivers them.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging
import time
import uuid

import numpy as np

from swarm_engine.algorithms import (
    CoordinationAlgorithm,
    MovementSuggestion,
    SwarmAlgorithm,
    TickContext,
    create_algorithm,
)
from swarm_engine.config import AlgorithmParameters, EngineConfig
from swarm_engine.core.geometry import FormationType, as_position
from swarm_engine.core.knowledge import Blackboard, MessageKind, MessageLog, SwarmMessage
from swarm_engine.core.member import MemberRole, MemberState, SwarmMember
from swarm_engine.core.membership import Roster
from swarm_engine.core.pheromones import (
    DecayReport,
    PheromoneConfig,
    PheromoneStore,
    PheromoneTrail,
    TrailType,
)
from swarm_engine.errors import InvalidState, NotFound
from swarm_engine.services import events
from swarm_engine.services.events import Notification

from .actions import ActionOrchestrator, CoordinatedAction, TimingMode
from .metrics import SwarmMetrics, compute_coverage, compute_metrics

logger = logging.getLogger(__name__)


DEPOSIT_CONTRIBUTION = 5.0


class SwarmState(Enum):
    FORMING = "forming"
    READY = "ready"
    EXECUTING = "executing"
    DISPERSING = "dispersing"
    DISSOLVED = "dissolved"


@dataclass
class SuccessCriteria:
    """
    When the objective counts as met. Unset criteria are ignored.

    `time_limit` is not a goal: a swarm still short of its goals when
    the limit passes has failed and times out.
    """
    min_coverage: Optional[float] = None      # Percentage, see metrics.compute_coverage
    min_progress: Optional[float] = None      # Percentage of completed actions
    time_limit: Optional[float] = None        # Deadline, seconds since formation

    @property
    def has_goals(self) -> bool:
        return self.min_coverage is not None or self.min_progress is not None


@dataclass
class SwarmObjective:
    """What the swarm is for. Opaque to the engine apart from success criteria."""
    objective_type: str = "custom"            # search | transport | coverage | patrol | custom
    target: Any = None
    payload: Dict[str, Any] = field(default_factory=dict)
    success_criteria: SuccessCriteria = field(default_factory=SuccessCriteria)

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> SwarmObjective:
        if not d:
            return cls()
        criteria = d.get("success_criteria") or {}
        return cls(
            objective_type=d.get("type", d.get("objective_type", "custom")),
            target=d.get("target"),
            payload=dict(d.get("payload", {})),
            success_criteria=SuccessCriteria(
                min_coverage=criteria.get("min_coverage"),
                min_progress=criteria.get("min_progress"),
                time_limit=criteria.get("time_limit"),
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        c = self.success_criteria
        return {
            "type": self.objective_type,
            "target": self.target,
            "payload": self.payload,
            "success_criteria": {
                "min_coverage": c.min_coverage,
                "min_progress": c.min_progress,
                "time_limit": c.time_limit,
            },
        }


@dataclass
class SwarmConfig:
    """Everything fixed at formation time."""
    task_id: str
    min_members: int
    max_members: Optional[int] = None
    algorithm: SwarmAlgorithm = SwarmAlgorithm.ANT_COLONY
    objective: SwarmObjective = field(default_factory=SwarmObjective)
    parameters: AlgorithmParameters = field(default_factory=AlgorithmParameters)
    leader_id: Optional[str] = None
    timeout: Optional[float] = None           # Seconds before the coordinator dissolves it
    swarm_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        self.algorithm = SwarmAlgorithm(self.algorithm)
        if isinstance(self.objective, dict):
            self.objective = SwarmObjective.from_dict(self.objective)
        if isinstance(self.parameters, dict):
            self.parameters = AlgorithmParameters.from_dict(self.parameters)


class Swarm:
    """
    One swarm and everything it owns.

    Principles:
    - Suggestions, not commands: ticks never move anyone
    - Quorum, not majority: an action completes only when all report
    - Fade, not delete: trails weaken before they vanish
    """

    def __init__(
        self,
        config: SwarmConfig,
        engine_config: Optional[EngineConfig] = None,
        rng: Optional[np.random.Generator] = None,
        clock: Callable[[], float] = time.time,
        algorithm: Optional[CoordinationAlgorithm] = None
    ):
        self.config = config
        self.engine_config = engine_config or EngineConfig()
        self.rng = rng if rng is not None else np.random.default_rng(self.engine_config.seed)
        self._clock = clock

        self.roster = Roster(
            min_members=config.min_members,
            max_members=config.max_members,
            leader_id=config.leader_id,
            clock=clock,
        )
        self.pheromones = PheromoneStore(
            PheromoneConfig(
                decay_rate=config.parameters.pheromone_decay,
                lifetime=self.engine_config.pheromone_lifetime,
                decay_interval=self.engine_config.decay_interval,
            ),
            clock=clock,
        )
        self.messages = MessageLog(retention=self.engine_config.message_retention, clock=clock)
        self.knowledge = Blackboard(clock=clock)
        self.algorithm = algorithm or create_algorithm(config.algorithm)
        self.actions = ActionOrchestrator(
            roster=self.roster,
            broadcast=self._announce,
            emit=self._emit,
            clock=clock,
        )

        self.state = SwarmState.FORMING
        self.formed_at = clock()
        self.ticks = 0
        self._outbox: List[Notification] = []
        self._ready_fired = False

    # ==================== Identity ====================

    @property
    def swarm_id(self) -> str:
        return self.config.swarm_id

    @property
    def task_id(self) -> str:
        return self.config.task_id

    @property
    def leader_id(self) -> Optional[str]:
        return self.roster.leader_id

    @property
    def is_dissolved(self) -> bool:
        return self.state == SwarmState.DISSOLVED

    def members(self) -> List[SwarmMember]:
        return self.roster.members()

    def get_member(self, member_id: str) -> SwarmMember:
        member = self.roster.get(member_id)
        if member is None:
            raise NotFound(f"Unknown member {member_id} in swarm {self.swarm_id}")
        return member

    # ==================== Notifications ====================

    def _emit(self, event: str, **payload: Any) -> None:
        self._outbox.append(Notification(
            event=event,
            swarm_id=self.swarm_id,
            payload=payload,
            timestamp=self._clock(),
        ))

    def drain_notifications(self) -> List[Notification]:
        """Hand over and forget everything queued since the last drain."""
        drained, self._outbox = self._outbox, []
        return drained

    def _require_alive(self, operation: str) -> None:
        if self.state in (SwarmState.DISPERSING, SwarmState.DISSOLVED):
            raise InvalidState(f"Cannot {operation}: swarm {self.swarm_id} is {self.state.value}")

    # ==================== Membership ====================

    def join(self, member_id: str, position, role: Optional[MemberRole] = None) -> bool:
        """
        Admit a member.

        Returns False if the swarm is dispersing/dissolved, full, or the
        member is already in it.
        """
        if self.state in (SwarmState.DISPERSING, SwarmState.DISSOLVED):
            return False
        if self.roster.is_full:
            logger.debug(f"Swarm {self.swarm_id} full, rejecting {member_id}")
            return False

        member = self.roster.add(member_id, as_position(position), role)
        if member is None:
            return False
        self._emit(events.MEMBER_JOINED, member=member.copy())

        if self.state == SwarmState.FORMING and not self._ready_fired and self.roster.has_quorum:
            self.state = SwarmState.READY
            self._ready_fired = True
            self._emit(events.SWARM_READY, member_count=len(self.roster))
            logger.info(f"Swarm {self.swarm_id} ready with {len(self.roster)} members")

        self._update_metrics()
        return True

    def leave(self, member_id: str) -> bool:
        """Remove a member. Returns False if it was not a member."""
        member, new_leader = self.roster.remove(member_id)
        if member is None:
            return False

        self.actions.forget_member(member_id)
        if new_leader is not None:
            self._emit(events.LEADER_ELECTED, member_id=new_leader, previous=member_id)
            logger.info(f"Swarm {self.swarm_id}: {new_leader} elected leader after {member_id} left")

        if len(self.roster) < self.config.min_members and self.state == SwarmState.EXECUTING:
            self._emit(
                events.SWARM_UNDERSTAFFED,
                current=len(self.roster),
                required=self.config.min_members,
            )
            logger.warning(
                f"Swarm {self.swarm_id} understaffed: "
                f"{len(self.roster)}/{self.config.min_members}"
            )

        self._emit(events.MEMBER_LEFT, member_id=member_id)
        self._update_metrics()
        return True

    def update_position(self, member_id: str, position, velocity=None) -> bool:
        """Record a position report. Unknown members are ignored."""
        self._require_alive("update position")
        member = self.roster.update_position(
            member_id,
            as_position(position),
            None if velocity is None else np.asarray(velocity, dtype=np.float64),
        )
        if member is None:
            return False
        self._emit(
            events.MEMBER_UPDATED,
            member_id=member_id,
            position=member.position.copy(),
            velocity=member.velocity.copy(),
        )
        self._update_metrics()
        return True

    def apply_suggestion(self, suggestion: MovementSuggestion) -> bool:
        """
        Move a member to a suggested target.

        This is the only path by which a tick's output changes the
        roster, and it is always an explicit call.
        """
        applied = self.update_position(suggestion.member_id, suggestion.target, suggestion.velocity)
        if applied and suggestion.role is not None:
            member = self.roster.get(suggestion.member_id)
            if member.role != MemberRole.LEADER:
                member.role = suggestion.role
        return applied

    def set_member_state(self, member_id: str, state: MemberState) -> None:
        self._require_alive("set member state")
        member = self.get_member(member_id)
        member.state = MemberState(state)
        self._emit(events.MEMBER_UPDATED, member_id=member_id, state=member.state)
        self._update_metrics()

    def assign_sectors(self, width: float, height: float) -> Dict[str, int]:
        """Divide an area among members, one sector each."""
        self._require_alive("assign sectors")
        assignments = self.roster.assign_sectors(width, height)
        for member_id, sector, bounds in assignments:
            self._emit(events.SECTOR_ASSIGNED, member_id=member_id, sector=sector, bounds=bounds)
        return {member_id: sector for member_id, sector, _ in assignments}

    def mark_stale_members(self, timeout: float, now: Optional[float] = None) -> List[str]:
        """Heartbeat sweep: members silent for `timeout` seconds go offline."""
        if self.is_dissolved:
            return []
        offline = self.roster.mark_stale(timeout, now)
        for member_id in offline:
            self._emit(events.MEMBER_OFFLINE, member_id=member_id)
        if offline:
            logger.info(f"Swarm {self.swarm_id}: {len(offline)} members went offline")
            self._update_metrics()
        return offline

    # ==================== Algorithm ====================

    def tick(self) -> List[MovementSuggestion]:
        """
        Run the swarm's algorithm once.

        Reads a snapshot of active members, the blackboard and the
        trails. Returns suggestions; applies none of them. A swarm still
        forming produces nothing.
        """
        self._require_alive("tick")
        if self.state == SwarmState.FORMING:
            return []

        context = TickContext(
            members=[m for m in self.roster.snapshot() if m.state != MemberState.OFFLINE],
            knowledge=self.knowledge.as_dict(),
            trails=self.pheromones.snapshot(),
            params=self.config.parameters,
            rng=self.rng,
        )
        result = self.algorithm.step(context)
        self.ticks += 1

        for key, value in result.knowledge_updates.items():
            self.knowledge.put(key, value, written_by=self.config.algorithm.value)
            self._emit(events.KNOWLEDGE_SHARED, key=key, value=value)

        for suggestion in result.suggestions:
            self._emit(events.MOVEMENT_SUGGESTED, **suggestion.to_dict())

        logger.debug(
            f"Swarm {self.swarm_id} tick {self.ticks}: "
            f"{len(result.suggestions)} suggestions from {self.config.algorithm.value}"
        )
        return result.suggestions

    # ==================== Pheromones ====================

    def deposit_pheromone(
        self,
        member_id: str,
        path: Sequence,
        trail_type: TrailType = TrailType.EXPLORED,
        strength: float = 1.0
    ) -> PheromoneTrail:
        """Lay a trail. The depositor, if a member, earns contribution."""
        self._require_alive("deposit pheromone")
        trail = self.pheromones.deposit(member_id, path, trail_type, strength)

        member = self.roster.get(member_id)
        if member is not None:
            member.add_contribution(DEPOSIT_CONTRIBUTION)

        self._emit(events.PHEROMONE_DEPOSITED, trail=trail.copy())
        self._update_metrics()
        return trail

    def find_pheromones(self, location, radius: float) -> List[PheromoneTrail]:
        return self.pheromones.find_nearby(location, radius)

    def decay_pheromones(self, now: Optional[float] = None) -> DecayReport:
        """One decay tick. Never raises on a per-trail failure."""
        if self.is_dissolved:
            return DecayReport()
        report = self.pheromones.decay(now)
        for trail_id in report.expired:
            self._emit(events.PHEROMONE_EXPIRED, trail_id=trail_id)
        for trail_id in report.faded:
            self._emit(events.PHEROMONE_FADED, trail_id=trail_id)
        return report

    # ==================== Coordinated actions ====================

    def start_action(
        self,
        action_type: str,
        target,
        formation: FormationType = FormationType.CIRCLE,
        participants: Optional[Sequence[str]] = None,
        timing: TimingMode = TimingMode.SYNCHRONIZED,
        timeout: Optional[float] = None
    ) -> CoordinatedAction:
        """
        Start a coordinated action.

        Raises:
            InvalidState: Swarm is not ready or executing
            NotFound: A named participant is not a member
        """
        if self.state not in (SwarmState.READY, SwarmState.EXECUTING):
            raise InvalidState(
                f"Swarm {self.swarm_id} is {self.state.value}, not ready for coordinated actions"
            )
        action = self.actions.start(
            action_type,
            target,
            formation=formation,
            participants=participants,
            timing=timing,
            timeout=timeout,
            rng=self.rng,
        )
        self.state = SwarmState.EXECUTING
        self._update_metrics()
        return action

    def report_action_completion(self, member_id: str, action_id: str, success: bool = True) -> bool:
        """Returns True if this report completed the action."""
        self._require_alive("report action completion")
        completed = self.actions.report_completion(member_id, action_id, success)
        self._update_metrics()
        return completed

    def expire_action(self, action_id: str) -> bool:
        """Fail an action whose timeout elapsed. No-op once it has finished."""
        if self.is_dissolved:
            return False
        expired = self.actions.expire(action_id)
        if expired:
            self._update_metrics()
        return expired

    def expire_overdue_actions(self, now: Optional[float] = None) -> List[str]:
        """Fail every executing action whose timeout has elapsed."""
        if self.is_dissolved:
            return []
        expired = self.actions.expire_overdue(now)
        if expired:
            self._update_metrics()
        return expired

    def formation_target(self, member_id: str) -> Optional[np.ndarray]:
        return self.actions.formation_target(member_id)

    # ==================== Messaging & knowledge ====================

    def _sender(self) -> str:
        return self.roster.leader_id or "swarm"

    def _announce(self, content: Any, kind: MessageKind = MessageKind.BROADCAST) -> SwarmMessage:
        message = self.messages.append(kind, self._sender(), content)
        self._emit(events.MESSAGE_BROADCAST, message=message)
        return message

    def broadcast(self, content: Any, kind: MessageKind = MessageKind.BROADCAST) -> SwarmMessage:
        """Send to every member."""
        self._require_alive("broadcast")
        kind = MessageKind(kind)
        if kind == MessageKind.DIRECT:
            raise ValueError("use send_direct for direct messages")
        message = self._announce(content, kind)
        self._update_metrics()
        return message

    def send_direct(self, recipient: str, content: Any) -> SwarmMessage:
        """Send to one member."""
        self._require_alive("send direct message")
        if recipient not in self.roster:
            raise NotFound(f"Unknown recipient {recipient} in swarm {self.swarm_id}")
        message = self.messages.append(MessageKind.DIRECT, self._sender(), content, recipient=recipient)
        self._emit(events.MESSAGE_DIRECT, message=message)
        self._update_metrics()
        return message

    def share_knowledge(self, key: str, value: Any, written_by: str = "swarm") -> None:
        self._require_alive("share knowledge")
        self.knowledge.put(key, value, written_by=written_by)
        self._emit(events.KNOWLEDGE_SHARED, key=key, value=value)

    def read_knowledge(self, key: str, default: Any = None) -> Any:
        return self.knowledge.get(key, default)

    # ==================== Metrics & objective ====================

    def get_metrics(self) -> SwarmMetrics:
        completed, total = self.actions.counts()
        return compute_metrics(
            swarm_id=self.swarm_id,
            members=self.roster.members(),
            targets=self.actions.formation_targets(),
            completed_actions=completed,
            total_actions=total,
            messages_exchanged=self.messages.exchanged,
            timestamp=self._clock(),
        )

    def _update_metrics(self) -> None:
        self._emit(events.METRICS_UPDATED, metrics=self.get_metrics())

    def objective_met(self) -> bool:
        """True when every configured coverage and progress goal holds."""
        criteria = self.config.objective.success_criteria
        if not criteria.has_goals:
            return False

        if criteria.min_coverage is not None:
            if compute_coverage(self.roster.members()) < criteria.min_coverage:
                return False
        if criteria.min_progress is not None:
            completed, total = self.actions.counts()
            if total == 0 or completed / total * 100.0 < criteria.min_progress:
                return False
        return True

    def deadline(self) -> Optional[float]:
        """Seconds after formation at which the swarm times out, if any."""
        limits = [
            limit for limit in (self.config.timeout, self.config.objective.success_criteria.time_limit)
            if limit is not None
        ]
        return min(limits) if limits else None

    def is_timed_out(self, now: Optional[float] = None) -> bool:
        """True once the swarm timeout or the objective's time limit has passed."""
        deadline = self.deadline()
        if deadline is None:
            return False
        now = self._clock() if now is None else now
        return now - self.formed_at >= deadline

    # ==================== Lifecycle ====================

    def dissolve(self, reason: str = "mission-complete") -> bool:
        """
        Disperse and dissolve.

        Returns False (and does nothing) if already dispersing or
        dissolved.
        """
        if self.state in (SwarmState.DISPERSING, SwarmState.DISSOLVED):
            return False

        self.state = SwarmState.DISPERSING
        self._announce({"type": "dissolve", "reason": reason})
        self.state = SwarmState.DISSOLVED
        self._emit(events.SWARM_DISSOLVED, reason=reason)
        logger.info(f"Swarm {self.swarm_id} dissolved ({reason})")
        return True

    def __repr__(self) -> str:
        return (
            f"Swarm(id={self.swarm_id}, state={self.state.value}, "
            f"members={len(self.roster)}, algorithm={self.config.algorithm.value})"
        )
