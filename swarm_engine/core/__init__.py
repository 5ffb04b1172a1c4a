"""
Core components of the swarm engine.

- geometry: Formation targets and distances
- member / membership: Who is in the swarm, who leads it
- pheromones: Stigmergic trails that fade
- knowledge: Message log and shared blackboard
"""

from .geometry import FormationType, compute_formation_positions, formation_accuracy
from .member import MemberRole, MemberState, SwarmMember
from .membership import Roster
from .pheromones import PheromoneConfig, PheromoneStore, PheromoneTrail, TrailType
from .knowledge import Blackboard, MessageKind, MessageLog, SwarmMessage

__all__ = [
    "FormationType",
    "compute_formation_positions",
    "formation_accuracy",
    "MemberRole",
    "MemberState",
    "SwarmMember",
    "Roster",
    "PheromoneConfig",
    "PheromoneStore",
    "PheromoneTrail",
    "TrailType",
    "Blackboard",
    "MessageKind",
    "MessageLog",
    "SwarmMessage",
]
