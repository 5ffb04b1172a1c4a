"""
coordination/actions.py

Actions that only count when everyone has done their part.

A coordinated action fixes its participants at start, gives each one
a formation target, and completes exactly when every participant has
reported success. A timeout turns an unfinished action into a failure;
after that, late reports change nothing.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging
import time
import uuid

import numpy as np

from swarm_engine.core.geometry import FormationType, as_position, compute_formation_positions
from swarm_engine.core.membership import Roster
from swarm_engine.errors import NotFound
from swarm_engine.services import events

logger = logging.getLogger(__name__)


COMPLETION_CONTRIBUTION = 10.0


class TimingMode(Enum):
    SYNCHRONIZED = "synchronized"
    SEQUENTIAL = "sequential"
    ADAPTIVE = "adaptive"


class ActionStatus(Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ActionStatus.COMPLETED, ActionStatus.FAILED)


@dataclass
class CoordinatedAction:
    """
    One multi-member action.

    `participants` never changes after start. `completed_by` only grows
    and never holds duplicates.
    """
    action_id: str
    action_type: str
    target: np.ndarray
    formation: FormationType
    participants: List[str]
    timing: TimingMode = TimingMode.SYNCHRONIZED
    status: ActionStatus = ActionStatus.PENDING
    completed_by: List[str] = field(default_factory=list)
    positions: Dict[str, np.ndarray] = field(default_factory=dict)
    start_time: Optional[float] = None
    timeout: Optional[float] = None

    @property
    def progress(self) -> float:
        """Fraction of participants that have reported success."""
        if not self.participants:
            return 1.0
        return len(self.completed_by) / len(self.participants)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_id": self.action_id,
            "type": self.action_type,
            "target": self.target.tolist(),
            "formation": self.formation.value,
            "participants": list(self.participants),
            "timing": self.timing.value,
            "status": self.status.value,
            "completed_by": list(self.completed_by),
            "positions": {k: v.tolist() for k, v in self.positions.items()},
            "start_time": self.start_time,
            "timeout": self.timeout,
        }


class ActionOrchestrator:
    """
    Tracks in-flight coordinated actions for one swarm.

    Lifecycle checks on the swarm itself (ready/executing) belong to the
    swarm; the orchestrator only checks participants and action state.
    """

    def __init__(
        self,
        roster: Roster,
        broadcast: Callable[[Dict[str, Any]], None],
        emit: Callable[..., None],
        clock: Callable[[], float] = time.time
    ):
        self._roster = roster
        self._broadcast = broadcast
        self._emit = emit
        self._clock = clock
        self._actions: Dict[str, CoordinatedAction] = {}
        self._formation_targets: Dict[str, np.ndarray] = {}

    # ==================== Lifecycle ====================

    def start(
        self,
        action_type: str,
        target,
        formation: FormationType = FormationType.CIRCLE,
        participants: Optional[Sequence[str]] = None,
        timing: TimingMode = TimingMode.SYNCHRONIZED,
        timeout: Optional[float] = None,
        rng: Optional[np.random.Generator] = None
    ) -> CoordinatedAction:
        """
        Start an action, assign formation targets and announce it.

        Raises:
            NotFound: A named participant is not a member
            ValueError: Duplicate participants or a non-positive timeout
        """
        if participants is None:
            participants = self._roster.ids()
        participants = list(participants)
        if not participants:
            raise ValueError("an action needs at least one participant")
        if len(set(participants)) != len(participants):
            raise ValueError("participants must be unique")
        for member_id in participants:
            if member_id not in self._roster:
                raise NotFound(f"Unknown participant: {member_id}")
        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be positive")

        formation = FormationType(formation)
        target = as_position(target)
        positions = compute_formation_positions(target, formation, len(participants), rng=rng)

        action = CoordinatedAction(
            action_id=str(uuid.uuid4()),
            action_type=action_type,
            target=target,
            formation=formation,
            participants=participants,
            timing=TimingMode(timing),
            positions=dict(zip(participants, positions)),
            timeout=timeout,
        )
        self._actions[action.action_id] = action
        self._formation_targets.update(action.positions)

        self._broadcast({
            "type": "coordinated-action",
            "action_id": action.action_id,
            "action_type": action_type,
            "target": target,
            "formation": formation.value,
            "timing": action.timing.value,
            "positions": action.positions,
        })

        action.status = ActionStatus.EXECUTING
        action.start_time = self._clock()
        self._emit(events.ACTION_STARTED, action=action.to_dict())
        logger.debug(
            f"Action {action.action_id} ({action_type}) started with "
            f"{len(participants)} participants in {formation.value}"
        )
        return action

    def report_completion(self, member_id: str, action_id: str, success: bool) -> bool:
        """
        Record a participant's report.

        Duplicate reports, reports from non-participants and reports on
        finished actions are ignored.

        Returns True if this report completed the action.

        Raises:
            NotFound: Unknown action
        """
        action = self.get(action_id)
        if action.status.is_terminal:
            logger.debug(f"Ignoring report from {member_id} on {action.status.value} action {action_id}")
            return False
        if member_id not in action.participants:
            logger.debug(f"Ignoring report from non-participant {member_id} on {action_id}")
            return False
        if not success or member_id in action.completed_by:
            return False

        action.completed_by.append(member_id)
        member = self._roster.get(member_id)
        if member is not None:
            member.add_contribution(COMPLETION_CONTRIBUTION)

        if len(action.completed_by) == len(action.participants):
            action.status = ActionStatus.COMPLETED
            self._emit(events.ACTION_COMPLETED, action=action.to_dict())
            logger.info(f"Action {action_id} completed by all {len(action.participants)} participants")
            return True
        return False

    def expire(self, action_id: str) -> bool:
        """
        Fail an action that is still executing.

        Returns True if the action was failed by this call.
        """
        action = self._actions.get(action_id)
        if action is None or action.status != ActionStatus.EXECUTING:
            return False
        action.status = ActionStatus.FAILED
        self._emit(events.ACTION_TIMEOUT, action=action.to_dict())
        logger.info(
            f"Action {action_id} timed out with "
            f"{len(action.completed_by)}/{len(action.participants)} reports"
        )
        return True

    def expire_overdue(self, now: Optional[float] = None) -> List[str]:
        """Fail every executing action whose timeout has elapsed."""
        now = self._clock() if now is None else now
        overdue = [
            a.action_id for a in self._actions.values()
            if a.status == ActionStatus.EXECUTING
            and a.timeout is not None
            and a.start_time is not None
            and now - a.start_time >= a.timeout
        ]
        return [aid for aid in overdue if self.expire(aid)]

    # ==================== Queries ====================

    def get(self, action_id: str) -> CoordinatedAction:
        action = self._actions.get(action_id)
        if action is None:
            raise NotFound(f"Unknown action: {action_id}")
        return action

    def actions(self) -> List[CoordinatedAction]:
        return list(self._actions.values())

    def formation_target(self, member_id: str) -> Optional[np.ndarray]:
        """Latest formation target assigned to a member."""
        return self._formation_targets.get(member_id)

    def formation_targets(self) -> Dict[str, np.ndarray]:
        return dict(self._formation_targets)

    def forget_member(self, member_id: str) -> None:
        """Drop a departed member's formation target."""
        self._formation_targets.pop(member_id, None)

    def counts(self) -> tuple[int, int]:
        """(completed actions, total actions)."""
        completed = sum(1 for a in self._actions.values() if a.status == ActionStatus.COMPLETED)
        return completed, len(self._actions)

    def __len__(self) -> int:
        return len(self._actions)
