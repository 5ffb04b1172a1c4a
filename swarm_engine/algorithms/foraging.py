"""
algorithms/foraging.py

Exploration and exploitation, the way social insects balance them.

Ants: most follow the strongest scent, a few wander. Wanderers find
new paths; followers reinforce good ones.

Bees: scouts range far, carriers fly to the sources scouts reported,
choosing richer sources more often.

Inspired by:
- Ant colony optimization (Dorigo)
- Artificial bee colony (Karaboga)
"""

from __future__ import annotations
import logging
import math
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from swarm_engine.core.geometry import as_position, random_offset
from swarm_engine.core.member import MemberRole, SwarmMember

from .base import (
    CoordinationAlgorithm,
    MovementSuggestion,
    SwarmAlgorithm,
    TickContext,
    TickResult,
    planar,
    roulette,
    with_planar,
)


logger = logging.getLogger(__name__)

FOOD_SOURCE_PREFIX = "foodSource:"


class AntColony(CoordinationAlgorithm):
    """
    Trail-following with random exploration.

    Each member independently explores with probability
    `exploration_rate` (a random point 5 to 15 units away); otherwise it
    picks a nearby trail with probability proportional to its strength
    and heads for the trail's next point. No nearby trail, no move.
    """

    kind = SwarmAlgorithm.ANT_COLONY

    min_explore_distance = 5.0
    max_explore_distance = 15.0

    def step(self, context: TickContext) -> TickResult:
        result = TickResult()

        for member in context.members:
            try:
                suggestion = self._move(member, context)
            except Exception:
                logger.exception(f"Ant step failed for member {member.member_id}")
                continue
            if suggestion is not None:
                result.suggestions.append(suggestion)

        return result

    def _move(self, member: SwarmMember, context: TickContext) -> Optional[MovementSuggestion]:
        params = context.params
        rng = context.rng

        if rng.random() < params.exploration_rate:
            offset = random_offset(rng, self.min_explore_distance, self.max_explore_distance)
            return MovementSuggestion(
                member_id=member.member_id,
                target=with_planar(member.position, planar(member.position) + offset),
                reason="exploration",
            )

        nearby = context.trails_near(member.position, params.communication_range)
        choice = roulette(rng, [t.strength for t in nearby])
        if choice is None:
            return None

        trail = nearby[choice]
        next_point = trail.path[1] if len(trail.path) > 1 else trail.path[0]
        return MovementSuggestion(
            member_id=member.member_id,
            target=next_point.copy(),
            reason="following-pheromone",
            trail_id=trail.trail_id,
        )


class BeeColony(CoordinationAlgorithm):
    """
    Scouts and carriers.

    The first ceil(scout_fraction * n) members in roster order scout a
    random point 10 to 30 units away. The rest pick a food source from
    the blackboard (keys ``foodSource:*`` holding ``location`` and
    ``quality``) with probability proportional to quality.
    """

    kind = SwarmAlgorithm.BEES

    min_scout_distance = 10.0
    max_scout_distance = 30.0

    def step(self, context: TickContext) -> TickResult:
        rng = context.rng
        result = TickResult()
        members = context.members
        if not members:
            return result

        scout_count = math.ceil(len(members) * context.params.scout_fraction)
        scouts = members[:scout_count]
        carriers = members[scout_count:]

        for scout in scouts:
            offset = random_offset(rng, self.min_scout_distance, self.max_scout_distance)
            try:
                target = with_planar(scout.position, planar(scout.position) + offset)
            except Exception:
                logger.exception(f"Scouting failed for member {scout.member_id}")
                continue
            result.suggestions.append(MovementSuggestion(
                member_id=scout.member_id,
                target=target,
                reason="scouting",
                role=MemberRole.SCOUT,
            ))

        sources = self._food_sources(context.knowledge)
        if not sources:
            return result

        qualities = [quality for _, quality in sources]
        for carrier in carriers:
            choice = roulette(rng, qualities)
            if choice is None:
                break
            location, _ = sources[choice]
            result.suggestions.append(MovementSuggestion(
                member_id=carrier.member_id,
                target=location.copy(),
                reason="harvesting",
                role=MemberRole.CARRIER,
            ))

        return result

    @staticmethod
    def _food_sources(knowledge: Dict[str, Any]) -> List[Tuple[np.ndarray, float]]:
        sources = []
        for key, value in knowledge.items():
            if not key.startswith(FOOD_SOURCE_PREFIX):
                continue
            try:
                sources.append((as_position(value["location"]), float(value["quality"])))
            except (KeyError, TypeError, ValueError):
                logger.debug(f"Skipping malformed food source {key}")
        return sources
