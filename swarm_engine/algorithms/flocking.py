"""
algorithms/flocking.py

Three local rules, no leader, and a flock appears.

- Separation: don't crowd your neighbors
- Alignment: head where your neighbors head
- Cohesion: stay near your neighbors

Inspired by:
- Reynolds boids (1987)
- Starling murmurations
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional
import logging

import numpy as np

from swarm_engine.core.geometry import distance
from swarm_engine.core.member import SwarmMember

from .base import (
    CoordinationAlgorithm,
    MovementSuggestion,
    SwarmAlgorithm,
    TickContext,
    TickResult,
    clamp_speed,
    planar,
    with_planar,
)


logger = logging.getLogger(__name__)

COHESION_SCALE = 0.1


class ForceType(Enum):
    SEPARATION = "separation"
    ALIGNMENT = "alignment"
    COHESION = "cohesion"


@dataclass
class Force:
    """A single steering force acting on a member."""
    force_type: ForceType
    direction: np.ndarray
    magnitude: float = 1.0


def resolve(forces: List[Force]) -> np.ndarray:
    """Plain weighted sum of force vectors."""
    result = np.zeros(2)
    for force in forces:
        result = result + force.magnitude * force.direction
    return result


class Flocking(CoordinationAlgorithm):
    """
    Boids over the roster.

    Neighbors are members within `neighbor_radius`. Members with no
    neighbors get no suggestion. The O(n^2) neighbor scan is fine at
    the swarm sizes this engine targets (a few dozen).
    """

    kind = SwarmAlgorithm.FLOCKING

    def step(self, context: TickContext) -> TickResult:
        result = TickResult()

        for member in context.members:
            try:
                suggestion = self._steer(member, context)
            except Exception:
                logger.exception(f"Flocking failed for member {member.member_id}")
                continue
            if suggestion is not None:
                result.suggestions.append(suggestion)

        return result

    def _steer(self, member: SwarmMember, context: TickContext) -> Optional[MovementSuggestion]:
        params = context.params
        neighbors = self._neighbors(member, context.members, params.neighbor_radius)
        if not neighbors:
            return None

        forces = self.compute_forces(member, neighbors, params.separation_distance)
        weights: Dict[ForceType, float] = {
            ForceType.SEPARATION: 1.0,
            ForceType.ALIGNMENT: params.alignment_weight,
            ForceType.COHESION: params.cohesion_weight * COHESION_SCALE,
        }
        for force in forces:
            force.magnitude = weights[force.force_type]

        velocity = clamp_speed(resolve(forces), params.max_flock_speed)
        return MovementSuggestion(
            member_id=member.member_id,
            target=with_planar(member.position, planar(member.position) + velocity),
            reason="flocking",
            velocity=velocity,
        )

    @staticmethod
    def _neighbors(
        member: SwarmMember,
        members: List[SwarmMember],
        radius: float
    ) -> List[SwarmMember]:
        return [
            other for other in members
            if other.member_id != member.member_id
            and distance(member.position, other.position) <= radius
        ]

    @staticmethod
    def compute_forces(
        member: SwarmMember,
        neighbors: List[SwarmMember],
        separation_distance: float
    ) -> List[Force]:
        """Unweighted separation, alignment and cohesion vectors."""
        position = planar(member.position)

        # Inverse-distance repulsion from anyone too close
        separation = np.zeros(2)
        for neighbor in neighbors:
            d = distance(member.position, neighbor.position)
            if 0 < d < separation_distance:
                separation += (position - planar(neighbor.position)) / d

        alignment = np.mean([n.velocity[:2] for n in neighbors], axis=0)
        center = np.mean([planar(n.position) for n in neighbors], axis=0)
        cohesion = center - position

        return [
            Force(ForceType.SEPARATION, separation),
            Force(ForceType.ALIGNMENT, alignment),
            Force(ForceType.COHESION, cohesion),
        ]
