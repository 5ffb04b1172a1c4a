"""
core/member.py

A swarm member: where it is, how it moves, what it has given.

Members are created on join and dropped on leave. A member belongs
to exactly one swarm; the swarm owns it.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional
import time

import numpy as np


class MemberRole(Enum):
    LEADER = "leader"
    MEMBER = "member"
    SCOUT = "scout"
    CARRIER = "carrier"


class MemberState(Enum):
    ACTIVE = "active"
    WAITING = "waiting"
    BUSY = "busy"
    OFFLINE = "offline"


@dataclass
class SwarmMember:
    """
    What a member IS at this moment.

    Contribution only ever grows: deposits and completed actions add
    to it, nothing subtracts.
    """
    member_id: str
    position: np.ndarray
    velocity: np.ndarray = None
    role: MemberRole = MemberRole.MEMBER
    state: MemberState = MemberState.ACTIVE
    assigned_sector: Optional[int] = None
    contribution: float = 0.0
    joined_at: float = field(default_factory=time.time)
    last_update: float = field(default_factory=time.time)
    join_order: int = 0           # Tie-breaker for leader election

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=np.float64)
        if self.velocity is None:
            self.velocity = np.zeros(2)
        self.velocity = np.asarray(self.velocity, dtype=np.float64)

    def add_contribution(self, amount: float) -> None:
        if amount < 0:
            raise ValueError("contribution is monotonic")
        self.contribution += amount

    def copy(self) -> SwarmMember:
        """Detached snapshot, safe to hand to algorithms."""
        return SwarmMember(
            member_id=self.member_id,
            position=self.position.copy(),
            velocity=self.velocity.copy(),
            role=self.role,
            state=self.state,
            assigned_sector=self.assigned_sector,
            contribution=self.contribution,
            joined_at=self.joined_at,
            last_update=self.last_update,
            join_order=self.join_order,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "member_id": self.member_id,
            "role": self.role.value,
            "state": self.state.value,
            "position": self.position.tolist(),
            "velocity": self.velocity.tolist(),
            "assigned_sector": self.assigned_sector,
            "contribution": self.contribution,
            "joined_at": self.joined_at,
            "last_update": self.last_update,
        }

    def __repr__(self) -> str:
        return (
            f"SwarmMember(id={self.member_id}, role={self.role.value}, "
            f"state={self.state.value}, contribution={self.contribution:.1f})"
        )
