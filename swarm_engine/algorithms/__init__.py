"""
Coordination algorithms.

- foraging: Ant colony and bee colony
- particle: Particle swarm optimization
- flocking: Boids (separation, alignment, cohesion)
- consensus: Centroid agreement
"""

from __future__ import annotations

from .base import (
    CoordinationAlgorithm,
    MovementSuggestion,
    SwarmAlgorithm,
    TickContext,
    TickResult,
)
from .consensus import CentroidConsensus
from .flocking import Flocking
from .foraging import AntColony, BeeColony
from .particle import ParticleSwarm


_REGISTRY = {
    SwarmAlgorithm.ANT_COLONY: AntColony,
    SwarmAlgorithm.PARTICLE_SWARM: ParticleSwarm,
    SwarmAlgorithm.BEES: BeeColony,
    SwarmAlgorithm.FLOCKING: Flocking,
    SwarmAlgorithm.CONSENSUS: CentroidConsensus,
}


def create_algorithm(algorithm: SwarmAlgorithm | str) -> CoordinationAlgorithm:
    """
    Factory for coordination algorithms.

    Args:
        algorithm: A SwarmAlgorithm or its string value ("ant-colony", ...)

    Raises:
        ValueError: Unknown algorithm
    """
    try:
        kind = SwarmAlgorithm(algorithm)
    except ValueError:
        raise ValueError(f"Unknown algorithm: {algorithm}") from None
    return _REGISTRY[kind]()


__all__ = [
    "AntColony",
    "BeeColony",
    "CentroidConsensus",
    "CoordinationAlgorithm",
    "Flocking",
    "MovementSuggestion",
    "ParticleSwarm",
    "SwarmAlgorithm",
    "TickContext",
    "TickResult",
    "create_algorithm",
]
