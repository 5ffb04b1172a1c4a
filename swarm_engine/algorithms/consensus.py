"""
algorithms/consensus.py

Positional agreement.

Every member votes with where it stands. The swarm's answer is the
plain average of the votes, and everyone takes a small step toward it.
Repeat, and the swarm gathers without anyone being told where.

Inspired by:
- Average consensus in distributed systems
- Quorum sensing in bacteria
"""

from __future__ import annotations
import logging

from swarm_engine.core.geometry import centroid

from .base import (
    CoordinationAlgorithm,
    MovementSuggestion,
    SwarmAlgorithm,
    TickContext,
    TickResult,
    planar,
    with_planar,
)


logger = logging.getLogger(__name__)

CONSENSUS_TARGET_KEY = "consensusTarget"


class CentroidConsensus(CoordinationAlgorithm):
    """
    Move everyone `consensus_step` of the way to the roster centroid.

    All votes weigh the same. The centroid is published to the
    blackboard as ``consensusTarget``.
    """

    kind = SwarmAlgorithm.CONSENSUS

    def step(self, context: TickContext) -> TickResult:
        result = TickResult()
        if not context.members:
            return result

        target = centroid([planar(m.position) for m in context.members])
        fraction = context.params.consensus_step

        for member in context.members:
            try:
                position = planar(member.position)
                moved = position + (target - position) * fraction
                result.suggestions.append(MovementSuggestion(
                    member_id=member.member_id,
                    target=with_planar(member.position, moved),
                    reason="consensus",
                ))
            except Exception:
                logger.exception(f"Consensus step failed for member {member.member_id}")

        result.knowledge_updates[CONSENSUS_TARGET_KEY] = target.copy()
        return result
