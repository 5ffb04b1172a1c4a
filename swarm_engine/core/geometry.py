"""
core/geometry.py

Formations as pure geometry.

A formation is nothing more than a rule that maps a center and a
participant count to a list of target points. No state, no members,
no time. The caller decides who stands where.

Positions are float64 arrays with 2 (x, y) or 3 (x, y, z) components.
Formations are laid out in the x-y plane; any z of the center is kept.
"""

from __future__ import annotations
from enum import Enum
from typing import List, Optional, Sequence
import math

import numpy as np


SPACING = 5.0                 # Base spacing between units
MAX_ACCEPTABLE_DISTANCE = 10.0  # Distance at which formation accuracy hits zero


class FormationType(Enum):
    """Named geometric arrangements."""
    LINE = "line"
    CIRCLE = "circle"
    WEDGE = "wedge"
    GRID = "grid"
    SURROUND = "surround"
    CONVOY = "convoy"
    SCATTER = "scatter"


def as_position(value) -> np.ndarray:
    """Coerce a sequence or mapping with x/y[/z] into a position array."""
    if isinstance(value, dict):
        coords = [value["x"], value["y"]]
        if value.get("z") is not None:
            coords.append(value["z"])
        value = coords
    position = np.asarray(value, dtype=np.float64).reshape(-1)
    if position.shape[0] not in (2, 3):
        raise ValueError(f"Position must have 2 or 3 components, got {position.shape[0]}")
    return position


def distance(a: np.ndarray, b: np.ndarray) -> float:
    """Euclidean distance; a missing z counts as 0."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        size = max(a.shape[0], b.shape[0])
        a = np.pad(a, (0, size - a.shape[0]))
        b = np.pad(b, (0, size - b.shape[0]))
    return float(np.linalg.norm(a - b))


def _place(center: np.ndarray, offsets: np.ndarray) -> List[np.ndarray]:
    """Translate planar offsets (count, 2) to positions around center."""
    positions = np.tile(center, (len(offsets), 1))
    if len(offsets):
        positions[:, :2] += offsets
    return [p for p in positions]


def _ring(count: int, radius: float) -> np.ndarray:
    angles = 2 * np.pi * np.arange(count) / count
    return np.column_stack([radius * np.cos(angles), radius * np.sin(angles)])


def compute_formation_positions(
    center,
    formation: FormationType,
    count: int,
    rng: Optional[np.random.Generator] = None
) -> List[np.ndarray]:
    """
    Compute one target position per participant index.

    Args:
        center: Formation anchor (the action target)
        formation: Which arrangement to use
        count: Number of participants
        rng: Random source, only consumed by SCATTER

    Returns:
        Exactly `count` positions, ordered by participant index
    """
    center = as_position(center)
    formation = FormationType(formation)
    if count <= 0:
        return []

    if formation == FormationType.CIRCLE:
        radius = SPACING * max(1.0, count / 4)
        offsets = _ring(count, radius)

    elif formation == FormationType.LINE:
        start = -SPACING * (count - 1) / 2
        xs = start + SPACING * np.arange(count)
        offsets = np.column_stack([xs, np.zeros(count)])

    elif formation == FormationType.WEDGE:
        # Leader at the tip, then alternating sides in rows behind it
        offsets = np.zeros((count, 2))
        for i in range(1, count):
            row = math.ceil(i / 2)
            side = 1 if i % 2 == 0 else -1
            offsets[i] = (-row * SPACING, side * row * SPACING * 0.5)

    elif formation == FormationType.GRID:
        cols = math.ceil(math.sqrt(count))
        rows = math.ceil(count / cols)
        idx = np.arange(count)
        xs = -SPACING * (cols - 1) / 2 + (idx % cols) * SPACING
        ys = -SPACING * (rows - 1) / 2 + (idx // cols) * SPACING
        offsets = np.column_stack([xs, ys])

    elif formation == FormationType.SURROUND:
        # Concentric rings of up to 6*ring points; never more than count
        chunks = []
        placed = 0
        ring = 1
        while placed < count:
            ring_count = min(count - placed, ring * 6)
            chunks.append(_ring(ring_count, SPACING * ring))
            placed += ring_count
            ring += 1
        offsets = np.vstack(chunks)

    elif formation == FormationType.CONVOY:
        xs = -SPACING * np.arange(count)
        offsets = np.column_stack([xs, np.zeros(count)])

    elif formation == FormationType.SCATTER:
        rng = rng if rng is not None else np.random.default_rng()
        radius = SPACING * math.sqrt(count)
        angles = rng.uniform(0, 2 * np.pi, size=count)
        radii = rng.uniform(0, radius, size=count)
        offsets = np.column_stack([radii * np.cos(angles), radii * np.sin(angles)])

    else:  # pragma: no cover - FormationType() already rejects unknown values
        raise ValueError(f"Unknown formation: {formation}")

    return _place(center, offsets)


def formation_accuracy(
    positions: Sequence[np.ndarray],
    targets: Sequence[np.ndarray]
) -> float:
    """
    How closely members stand on their targets, as a percentage.

    Pairs positions[i] with targets[i]. 100 means every member sits on
    its target; 0 means the mean miss is MAX_ACCEPTABLE_DISTANCE or more.
    Returns 0 when there is nothing to compare.
    """
    pairs = list(zip(positions, targets))
    if not pairs:
        return 0.0
    avg_distance = sum(distance(p, t) for p, t in pairs) / len(pairs)
    return max(0.0, 1.0 - avg_distance / MAX_ACCEPTABLE_DISTANCE) * 100.0


def centroid(positions: Sequence[np.ndarray]) -> np.ndarray:
    """Unweighted mean of positions (padded to a common dimension)."""
    if not positions:
        raise ValueError("centroid of an empty set")
    size = max(len(p) for p in positions)
    stacked = np.array([np.pad(np.asarray(p, dtype=np.float64), (0, size - len(p))) for p in positions])
    return stacked.mean(axis=0)


def random_offset(
    rng: np.random.Generator,
    min_distance: float,
    max_distance: float
) -> np.ndarray:
    """Planar offset with uniform heading and distance in [min, max)."""
    direction = rng.uniform(0, 2 * np.pi)
    dist = rng.uniform(min_distance, max_distance)
    return np.array([dist * np.cos(direction), dist * np.sin(direction)])
