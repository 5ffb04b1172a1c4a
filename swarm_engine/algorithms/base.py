"""
algorithms/base.py

The contract every coordination algorithm honors.

An algorithm observes; it does not act. Each tick it receives a frozen
view of the swarm (members, blackboard, trails) and returns suggestions.
Whether a member follows a suggestion is somebody else's decision.

Movement is planar: algorithms work on (x, y) and keep any z of the
member's current position. Velocities are (vx, vy).
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import numpy as np

from swarm_engine.config import AlgorithmParameters
from swarm_engine.core.member import MemberRole, SwarmMember
from swarm_engine.core.pheromones import PheromoneTrail
from swarm_engine.core.geometry import distance


class SwarmAlgorithm(Enum):
    """Selectable coordination algorithms."""
    ANT_COLONY = "ant-colony"
    PARTICLE_SWARM = "particle-swarm"
    BEES = "bees"
    FLOCKING = "flocking"
    CONSENSUS = "consensus"


@dataclass
class MovementSuggestion:
    """Where an algorithm would like a member to go next."""
    member_id: str
    target: np.ndarray
    reason: str
    velocity: Optional[np.ndarray] = None
    role: Optional[MemberRole] = None      # Role the member takes on if it follows
    trail_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "member_id": self.member_id,
            "target": np.asarray(self.target).tolist(),
            "reason": self.reason,
        }
        if self.velocity is not None:
            d["velocity"] = np.asarray(self.velocity).tolist()
        if self.role is not None:
            d["role"] = self.role.value
        if self.trail_id is not None:
            d["trail_id"] = self.trail_id
        return d


@dataclass
class TickContext:
    """
    Everything an algorithm may look at during one tick.

    All fields are snapshots. Mutating them changes nothing in the swarm.
    """
    members: List[SwarmMember]
    knowledge: Mapping[str, Any]
    trails: List[PheromoneTrail]
    params: AlgorithmParameters
    rng: np.random.Generator

    def trails_near(self, location: np.ndarray, radius: float) -> List[PheromoneTrail]:
        """Trails with a point within radius, strongest first."""
        nearby = [
            t for t in self.trails
            if any(distance(location, p) <= radius for p in t.path)
        ]
        return sorted(nearby, key=lambda t: t.strength, reverse=True)


@dataclass
class TickResult:
    """Output of one algorithm tick."""
    suggestions: List[MovementSuggestion] = field(default_factory=list)
    knowledge_updates: Dict[str, Any] = field(default_factory=dict)


class CoordinationAlgorithm(ABC):
    """
    Abstract base for swarm coordination algorithms.

    Implementations must be side-effect free with respect to the swarm:
    no membership or trail mutation, only suggestions and the blackboard
    writes they declare in `knowledge_updates`.
    """

    kind: SwarmAlgorithm

    @abstractmethod
    def step(self, context: TickContext) -> TickResult:
        """Produce this tick's suggestions."""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


def planar(position: np.ndarray) -> np.ndarray:
    """The (x, y) part of a position."""
    return np.asarray(position, dtype=np.float64)[:2]


def with_planar(position: np.ndarray, xy: np.ndarray) -> np.ndarray:
    """Copy of position with (x, y) replaced, z kept."""
    moved = np.array(position, dtype=np.float64)
    moved[:2] = xy
    return moved


def clamp_speed(velocity: np.ndarray, max_speed: float) -> np.ndarray:
    """Scale velocity down so its norm does not exceed max_speed."""
    speed = np.linalg.norm(velocity)
    if speed > max_speed:
        return velocity * (max_speed / speed)
    return velocity


def roulette(rng: np.random.Generator, weights: List[float]) -> Optional[int]:
    """
    Fitness-proportional pick.

    Returns the chosen index, or None if no weight is positive.
    """
    w = np.clip(np.asarray(weights, dtype=np.float64), 0.0, None)
    total = w.sum()
    if total <= 0:
        return None
    selection = rng.uniform(0, total)
    cumulative = np.cumsum(w)
    index = int(np.searchsorted(cumulative, selection, side="right"))
    return min(index, len(w) - 1)
