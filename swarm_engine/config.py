"""
swarm_engine/config.py

Configuration for the swarm engine.

Two layers:
- AlgorithmParameters: per-swarm tuning, chosen when the swarm is formed
- EngineConfig: coordinator-wide settings (limits, timer periods, sinks)

Both are plain dataclasses with defaults. EngineConfig can also be built
from SWARM_* environment variables or a YAML file.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)


@dataclass
class AlgorithmParameters:
    """Tuning knobs for the movement algorithms and the pheromone medium."""
    # Ant colony
    pheromone_decay: float = 0.1          # Fraction of strength lost per decay tick
    exploration_rate: float = 0.3         # Probability an ant explores instead of following

    # Particle swarm
    inertia_weight: float = 0.7
    cognitive_weight: float = 1.5
    social_weight: float = 1.5
    max_particle_speed: float = 10.0

    # Flocking
    separation_distance: float = 5.0
    alignment_weight: float = 1.0
    cohesion_weight: float = 1.0
    neighbor_radius: float = 30.0
    max_flock_speed: float = 5.0

    # Bees
    scout_fraction: float = 0.3

    # Consensus
    consensus_step: float = 0.1           # Fraction of the way to the centroid per tick

    # General
    communication_range: float = 20.0     # Trail-sensing radius for ants
    update_interval: Optional[float] = None  # Overrides the engine tick interval

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> AlgorithmParameters:
        """Build parameters from a dict, ignoring unknown keys."""
        if not d:
            return cls()
        known = {f.name for f in fields(cls)}
        unknown = set(d) - known
        if unknown:
            logger.warning(f"Ignoring unknown algorithm parameters: {sorted(unknown)}")
        return cls(**{k: v for k, v in d.items() if k in known})


@dataclass
class EngineConfig:
    """Configuration for the swarm coordinator."""
    # Limits
    max_swarms: int = 5
    default_algorithm: str = "ant-colony"

    # Loop periods (seconds)
    tick_interval: float = 1.0
    decay_interval: float = 5.0
    heartbeat_interval: float = 10.0
    action_check_interval: float = 0.5    # How often overdue actions are failed
    autostart_timers: bool = True

    # Membership liveness
    member_timeout: float = 30.0          # Seconds without update before a member is offline

    # Shared medium
    pheromone_lifetime: float = 60.0
    message_retention: int = 1000         # Max messages kept in a swarm's log

    # Registry
    dissolved_retention: int = 100        # Dissolved swarms remembered for lookups

    # Notifications
    notification_backend: str = "memory"  # "memory" or "redis"
    redis_url: str = "redis://localhost:6379"
    redis_channel: str = "swarm_engine:notifications"

    # Random seed (None = nondeterministic)
    seed: Optional[int] = None

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Create config from environment variables."""
        seed = os.environ.get("SWARM_SEED")
        return cls(
            max_swarms=int(os.environ.get("SWARM_MAX_SWARMS", "5")),
            default_algorithm=os.environ.get("SWARM_DEFAULT_ALGORITHM", "ant-colony"),
            tick_interval=float(os.environ.get("SWARM_TICK_INTERVAL", "1.0")),
            decay_interval=float(os.environ.get("SWARM_DECAY_INTERVAL", "5.0")),
            heartbeat_interval=float(os.environ.get("SWARM_HEARTBEAT_INTERVAL", "10.0")),
            action_check_interval=float(os.environ.get("SWARM_ACTION_CHECK_INTERVAL", "0.5")),
            autostart_timers=os.environ.get("SWARM_AUTOSTART_TIMERS", "true").lower() == "true",
            member_timeout=float(os.environ.get("SWARM_MEMBER_TIMEOUT", "30.0")),
            pheromone_lifetime=float(os.environ.get("SWARM_PHEROMONE_LIFETIME", "60.0")),
            message_retention=int(os.environ.get("SWARM_MESSAGE_RETENTION", "1000")),
            dissolved_retention=int(os.environ.get("SWARM_DISSOLVED_RETENTION", "100")),
            notification_backend=os.environ.get("SWARM_NOTIFICATION_BACKEND", "memory"),
            redis_url=os.environ.get("SWARM_REDIS_URL", "redis://localhost:6379"),
            redis_channel=os.environ.get("SWARM_REDIS_CHANNEL", "swarm_engine:notifications"),
            seed=int(seed) if seed else None,
        )


def load_config(config_path: str | Path) -> EngineConfig:
    """
    Load an EngineConfig from a YAML file.

    The file may hold the engine keys at the top level or under an
    ``engine:`` section. Missing keys keep their defaults.
    """
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    section = data.get("engine", data)
    known = {f.name for f in fields(EngineConfig)}
    unknown = set(section) - known
    if unknown:
        logger.warning(f"Ignoring unknown engine config keys: {sorted(unknown)}")

    return EngineConfig(**{k: v for k, v in section.items() if k in known})
