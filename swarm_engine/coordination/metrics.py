"""
coordination/metrics.py

Point-in-time measures of how a swarm is doing.

Nothing here is stored: every call recomputes from the current roster
and action set. The message count is the exception in spirit only; it
is read from the log's cumulative counter, never recounted.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional
import itertools
import time

import numpy as np

from swarm_engine.core.geometry import distance, formation_accuracy
from swarm_engine.core.member import MemberState, SwarmMember


COVERAGE_SCALE = 50.0         # Mean pairwise distance that counts as full coverage
CONTRIBUTION_CAP = 50.0


@dataclass
class SwarmMetrics:
    """Derived snapshot, not persisted."""
    swarm_id: str
    member_count: int
    coverage: float
    efficiency: float
    messages_exchanged: int
    objective_progress: float
    average_contribution: float
    formation_accuracy: float
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "swarm_id": self.swarm_id,
            "member_count": self.member_count,
            "coverage": self.coverage,
            "efficiency": self.efficiency,
            "messages_exchanged": self.messages_exchanged,
            "objective_progress": self.objective_progress,
            "average_contribution": self.average_contribution,
            "formation_accuracy": self.formation_accuracy,
            "timestamp": self.timestamp,
        }


def compute_coverage(members: List[SwarmMember]) -> float:
    """Mean pairwise distance normalized to [0, 100]."""
    if len(members) < 2:
        return 0.0
    distances = [
        distance(a.position, b.position)
        for a, b in itertools.combinations(members, 2)
    ]
    return min(float(np.mean(distances)) / COVERAGE_SCALE * 100.0, 100.0)


def average_contribution(members: List[SwarmMember]) -> float:
    if not members:
        return 0.0
    return float(sum(m.contribution for m in members) / len(members))


def compute_efficiency(members: List[SwarmMember]) -> float:
    """Half from the active fraction, half from contribution (capped)."""
    if not members:
        return 0.0
    active = sum(1 for m in members if m.state == MemberState.ACTIVE)
    return active / len(members) * 50.0 + min(average_contribution(members), CONTRIBUTION_CAP)


def compute_formation_accuracy(
    members: List[SwarmMember],
    targets: Mapping[str, np.ndarray]
) -> float:
    """Accuracy over members that currently hold a formation target."""
    by_id = {m.member_id: m for m in members}
    pairs = [(by_id[mid].position, t) for mid, t in targets.items() if mid in by_id]
    return formation_accuracy([p for p, _ in pairs], [t for _, t in pairs])


def compute_progress(completed: int, total: int) -> float:
    if total == 0:
        return 0.0
    return completed / total * 100.0


def compute_metrics(
    swarm_id: str,
    members: List[SwarmMember],
    targets: Mapping[str, np.ndarray],
    completed_actions: int,
    total_actions: int,
    messages_exchanged: int,
    timestamp: Optional[float] = None
) -> SwarmMetrics:
    """Assemble a full metrics snapshot."""
    return SwarmMetrics(
        swarm_id=swarm_id,
        member_count=len(members),
        coverage=compute_coverage(members),
        efficiency=compute_efficiency(members),
        messages_exchanged=messages_exchanged,
        objective_progress=compute_progress(completed_actions, total_actions),
        average_contribution=average_contribution(members),
        formation_accuracy=compute_formation_accuracy(members, targets),
        timestamp=time.time() if timestamp is None else timestamp,
    )
