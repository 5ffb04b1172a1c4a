"""
Coordination layer: the Swarm aggregate and what hangs off it.

- swarm: Lifecycle, membership, ticks, shared medium, notifications
- actions: Coordinated actions with quorum completion
- metrics: Coverage, efficiency, progress, formation accuracy
"""

from .actions import ActionOrchestrator, ActionStatus, CoordinatedAction, TimingMode
from .metrics import SwarmMetrics, compute_metrics
from .swarm import Swarm, SwarmConfig, SwarmObjective, SwarmState, SuccessCriteria

__all__ = [
    "ActionOrchestrator",
    "ActionStatus",
    "CoordinatedAction",
    "TimingMode",
    "SwarmMetrics",
    "compute_metrics",
    "Swarm",
    "SwarmConfig",
    "SwarmObjective",
    "SwarmState",
    "SuccessCriteria",
]
