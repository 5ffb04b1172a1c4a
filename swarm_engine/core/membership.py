"""
core/membership.py

The roster: who is in the swarm, who leads it.

Admission is bounded by capacity. Leadership is never vacant while
members remain: when the leader leaves, the member who has given the
most takes over, and among equals the one who joined first.
"""

from __future__ import annotations
from typing import Callable, Dict, List, Optional, Tuple
import logging
import math
import time

import numpy as np

from swarm_engine.core.member import MemberRole, MemberState, SwarmMember

logger = logging.getLogger(__name__)


class Roster:
    """
    Member registry and leader election for one swarm.

    Roster order is join order; algorithms that split the swarm by
    position in the roster (bees) rely on it.
    """

    def __init__(
        self,
        min_members: int,
        max_members: Optional[int] = None,
        leader_id: Optional[str] = None,
        clock: Callable[[], float] = time.time
    ):
        if min_members < 1:
            raise ValueError("min_members must be at least 1")
        self.min_members = min_members
        self.max_members = max_members if max_members is not None else min_members * 2
        if self.max_members < self.min_members:
            raise ValueError("max_members must be >= min_members")

        self._members: Dict[str, SwarmMember] = {}
        self._designated_leader = leader_id
        self.leader_id: Optional[str] = None
        self._clock = clock
        self._join_counter = 0

    # ==================== Queries ====================

    def __len__(self) -> int:
        return len(self._members)

    def __contains__(self, member_id: str) -> bool:
        return member_id in self._members

    def get(self, member_id: str) -> Optional[SwarmMember]:
        return self._members.get(member_id)

    def members(self) -> List[SwarmMember]:
        """Live members in roster order."""
        return list(self._members.values())

    def ids(self) -> List[str]:
        return list(self._members.keys())

    def snapshot(self) -> List[SwarmMember]:
        """Detached copies of all members."""
        return [m.copy() for m in self._members.values()]

    @property
    def is_full(self) -> bool:
        return len(self._members) >= self.max_members

    @property
    def has_quorum(self) -> bool:
        return len(self._members) >= self.min_members

    # ==================== Mutation ====================

    def add(
        self,
        member_id: str,
        position,
        role: Optional[MemberRole] = None
    ) -> Optional[SwarmMember]:
        """
        Admit a member.

        Returns the new member, or None if the roster is full or the id
        is already present.
        """
        if self.is_full or member_id in self._members:
            return None

        now = self._clock()
        self._join_counter += 1
        member = SwarmMember(
            member_id=member_id,
            position=position,
            role=MemberRole(role) if role is not None else MemberRole.MEMBER,
            joined_at=now,
            last_update=now,
            join_order=self._join_counter,
        )
        self._members[member_id] = member

        wants_lead = member.role == MemberRole.LEADER
        if self.leader_id is None and (
            member_id == self._designated_leader
            or (self._designated_leader is None and (wants_lead or len(self._members) == 1))
        ):
            self._set_leader(member)
        elif wants_lead:
            # Only one leader at a time
            member.role = MemberRole.MEMBER

        return member

    def remove(self, member_id: str) -> Tuple[Optional[SwarmMember], Optional[str]]:
        """
        Remove a member.

        Returns (removed member or None, newly elected leader id or None).
        """
        member = self._members.pop(member_id, None)
        if member is None:
            return None, None

        new_leader = None
        if member_id == self.leader_id:
            self.leader_id = None
            if self._members:
                new_leader = self.elect_leader()
        if member_id == self._designated_leader:
            self._designated_leader = None
        return member, new_leader

    def elect_leader(self) -> Optional[str]:
        """Highest contribution wins; earliest join breaks ties."""
        if not self._members:
            return None
        best = max(
            self._members.values(),
            key=lambda m: (m.contribution, -m.join_order)
        )
        self._set_leader(best)
        logger.debug(f"Elected leader {best.member_id} (contribution={best.contribution})")
        return best.member_id

    def _set_leader(self, member: SwarmMember) -> None:
        if self.leader_id is not None and self.leader_id in self._members:
            self._members[self.leader_id].role = MemberRole.MEMBER
        self.leader_id = member.member_id
        member.role = MemberRole.LEADER

    def update_position(
        self,
        member_id: str,
        position,
        velocity=None
    ) -> Optional[SwarmMember]:
        """Record a position report. Unknown members are ignored."""
        member = self._members.get(member_id)
        if member is None:
            return None
        member.position = np.asarray(position, dtype=np.float64)
        if velocity is not None:
            member.velocity = np.asarray(velocity, dtype=np.float64)
        member.last_update = self._clock()
        if member.state == MemberState.OFFLINE:
            member.state = MemberState.ACTIVE
        return member

    def mark_stale(self, timeout: float, now: Optional[float] = None) -> List[str]:
        """Mark members silent for longer than `timeout` as offline."""
        now = self._clock() if now is None else now
        newly_offline = []
        for member in self._members.values():
            if member.state != MemberState.OFFLINE and now - member.last_update > timeout:
                member.state = MemberState.OFFLINE
                newly_offline.append(member.member_id)
        return newly_offline

    def assign_sectors(self, width: float, height: float) -> List[Tuple[str, int, Dict[str, float]]]:
        """
        Split a width x height area into a square grid of sectors.

        Each member gets one sector in roster order. Returns
        (member_id, sector index, bounds) triples.
        """
        count = len(self._members)
        if count == 0:
            return []
        per_side = math.ceil(math.sqrt(count))
        sector_w = width / per_side
        sector_h = height / per_side

        assignments = []
        for index, member in enumerate(self._members.values()):
            member.assigned_sector = index
            col = index % per_side
            row = index // per_side
            bounds = {
                "min_x": col * sector_w,
                "max_x": (col + 1) * sector_w,
                "min_y": row * sector_h,
                "max_y": (row + 1) * sector_h,
            }
            assignments.append((member.member_id, index, bounds))
        return assignments

    def __repr__(self) -> str:
        return (
            f"Roster(members={len(self._members)}, "
            f"bounds=[{self.min_members}, {self.max_members}], "
            f"leader={self.leader_id})"
        )
