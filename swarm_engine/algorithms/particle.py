"""
algorithms/particle.py

Particle swarm: each member remembers its own best and knows the
swarm's best. It keeps some of its momentum and is pulled toward both.

    v' = w*v + c1*r1*(personal_best - p) + c2*r2*(global_best - p)

r1 and r2 are fresh uniform(0, 1) draws per member per tick.

Reference: Kennedy & Eberhart, "Particle Swarm Optimization" (1995)
"""

from __future__ import annotations
import logging

import numpy as np

from swarm_engine.core.geometry import as_position
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

GLOBAL_BEST_KEY = "globalBest"
PERSONAL_BEST_PREFIX = "personalBest:"


class ParticleSwarm(CoordinationAlgorithm):
    """
    Velocity update toward personal and global bests.

    Requires a ``globalBest`` blackboard entry; without one the tick
    produces nothing. ``personalBest:<member_id>`` defaults to the
    member's current position. A member whose update fails is logged
    and skipped; the rest still move.
    """

    kind = SwarmAlgorithm.PARTICLE_SWARM

    def step(self, context: TickContext) -> TickResult:
        result = TickResult()
        global_best = context.knowledge.get(GLOBAL_BEST_KEY)
        if global_best is None:
            return result

        try:
            gbest = planar(as_position(global_best))
        except (KeyError, TypeError, ValueError):
            logger.warning(f"Ignoring malformed {GLOBAL_BEST_KEY}: {global_best!r}")
            return result

        for member in context.members:
            try:
                result.suggestions.append(self._move(member, gbest, context))
            except Exception:
                logger.exception(f"Particle update failed for member {member.member_id}")

        return result

    @staticmethod
    def _move(member: SwarmMember, gbest: np.ndarray, context: TickContext) -> MovementSuggestion:
        params = context.params
        position = planar(member.position)
        personal = context.knowledge.get(f"{PERSONAL_BEST_PREFIX}{member.member_id}")
        pbest = planar(as_position(personal)) if personal is not None else position

        r1, r2 = context.rng.random(), context.rng.random()
        velocity = (
            params.inertia_weight * member.velocity[:2]
            + params.cognitive_weight * r1 * (pbest - position)
            + params.social_weight * r2 * (gbest - position)
        )
        velocity = clamp_speed(velocity, params.max_particle_speed)

        return MovementSuggestion(
            member_id=member.member_id,
            target=with_planar(member.position, position + velocity),
            reason="particle-swarm",
            velocity=velocity,
        )
