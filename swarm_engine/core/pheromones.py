"""
core/pheromones.py

The environment as memory. Stigmergy over direct communication.

A member that finds something walks the path and leaves a trail.
Others sense the trail and follow it. Trails fade: what is not
reinforced is forgotten.

Inspired by:
- Ant pheromone trails
- Neural synaptic traces
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging
import threading
import time
import uuid

import numpy as np

from swarm_engine.core.geometry import as_position, distance
from swarm_engine.errors import NotFound

logger = logging.getLogger(__name__)


STRENGTH_FLOOR = 0.01   # Trails weaker than this are gone


class TrailType(Enum):
    SUCCESS = "success"
    DANGER = "danger"
    RESOURCE = "resource"
    EXPLORED = "explored"


@dataclass
class PheromoneConfig:
    """Configuration for the pheromone medium."""
    decay_rate: float = 0.1       # Fraction of strength lost per decay tick
    lifetime: float = 60.0        # Seconds from deposit to expiry
    decay_interval: float = 5.0   # Seconds between decay ticks


@dataclass
class PheromoneTrail:
    """A path and how much it still matters."""
    trail_id: str
    path: List[np.ndarray]
    strength: float
    trail_type: TrailType
    created_by: str
    created_at: float
    expires_at: float

    def copy(self) -> PheromoneTrail:
        return PheromoneTrail(
            trail_id=self.trail_id,
            path=[p.copy() for p in self.path],
            strength=self.strength,
            trail_type=self.trail_type,
            created_by=self.created_by,
            created_at=self.created_at,
            expires_at=self.expires_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trail_id": self.trail_id,
            "path": [p.tolist() for p in self.path],
            "strength": self.strength,
            "type": self.trail_type.value,
            "created_by": self.created_by,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        }


@dataclass
class DecayReport:
    """What one decay sweep removed."""
    expired: List[str] = field(default_factory=list)
    faded: List[str] = field(default_factory=list)
    errors: int = 0


class PheromoneStore:
    """
    Holds decaying trails for one swarm.

    Readers and depositors take the store lock briefly; a decay sweep
    holds it for exactly one pass over the trails.
    """

    def __init__(
        self,
        config: Optional[PheromoneConfig] = None,
        clock: Callable[[], float] = time.time
    ):
        self.config = config or PheromoneConfig()
        if not 0.0 <= self.config.decay_rate < 1.0:
            raise ValueError("decay_rate must be in [0, 1)")
        self._trails: Dict[str, PheromoneTrail] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def deposit(
        self,
        creator_id: str,
        path: Sequence,
        trail_type: TrailType = TrailType.EXPLORED,
        strength: float = 1.0
    ) -> PheromoneTrail:
        """Lay a new trail along `path`."""
        if strength <= 0:
            raise ValueError("strength must be positive")
        points = [as_position(p) for p in path]
        if not points:
            raise ValueError("a trail needs at least one point")

        now = self._clock()
        trail = PheromoneTrail(
            trail_id=str(uuid.uuid4()),
            path=points,
            strength=float(strength),
            trail_type=TrailType(trail_type),
            created_by=creator_id,
            created_at=now,
            expires_at=now + self.config.lifetime,
        )
        with self._lock:
            self._trails[trail.trail_id] = trail
        return trail

    def get(self, trail_id: str) -> PheromoneTrail:
        with self._lock:
            trail = self._trails.get(trail_id)
        if trail is None:
            raise NotFound(f"Unknown trail: {trail_id}")
        return trail

    def find_nearby(self, location, radius: float) -> List[PheromoneTrail]:
        """
        Trails with at least one point within `radius` of `location`.

        Strongest first.
        """
        location = as_position(location)
        with self._lock:
            trails = list(self._trails.values())
        nearby = [
            t for t in trails
            if any(distance(location, point) <= radius for point in t.path)
        ]
        return sorted(nearby, key=lambda t: t.strength, reverse=True)

    def snapshot(self) -> List[PheromoneTrail]:
        """Detached copies of every live trail."""
        with self._lock:
            return [t.copy() for t in self._trails.values()]

    def decay(self, now: Optional[float] = None) -> DecayReport:
        """
        Advance the medium by one decay tick.

        - Expired trails are removed
        - Every other trail loses `decay_rate` of its strength
        - Trails that fall below the floor are removed

        A failure on one trail is logged and the sweep moves on.
        """
        now = self._clock() if now is None else now
        keep = 1.0 - self.config.decay_rate
        report = DecayReport()

        with self._lock:
            for trail_id, trail in list(self._trails.items()):
                try:
                    if now > trail.expires_at:
                        del self._trails[trail_id]
                        report.expired.append(trail_id)
                        continue

                    trail.strength *= keep
                    if trail.strength < STRENGTH_FLOOR:
                        del self._trails[trail_id]
                        report.faded.append(trail_id)
                except Exception:
                    report.errors += 1
                    logger.exception(f"Decay failed for trail {trail_id}")

        if report.expired or report.faded:
            logger.debug(
                f"Decay removed {len(report.expired)} expired, "
                f"{len(report.faded)} faded trails"
            )
        return report

    def clear(self) -> None:
        with self._lock:
            self._trails.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._trails)

    def get_total_strength(self) -> float:
        """Total strength of all trails (for monitoring)."""
        with self._lock:
            return float(sum(t.strength for t in self._trails.values()))

    def __repr__(self) -> str:
        return (
            f"PheromoneStore(trails={len(self)}, "
            f"total_strength={self.get_total_strength():.2f})"
        )
