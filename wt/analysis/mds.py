"""
3D layout of access points in correlation space.

Classical multidimensional scaling over `1 - corr` distances, followed by:
- a deterministic id-hash layout when the MDS result is flat
- per-axis sign stabilization against the previous frame
- recentering and rescaling to a fixed radius
- exponential smoothing towards the new target positions
"""

from __future__ import annotations

import math
from typing import Callable, Iterator, Mapping, Sequence

import numpy as np

from wt.analysis.types import Position
from wt.utils.log import get_logger

logger = get_logger(__name__)

EIGEN_EPS      = 1e-9   # eigenvalues at or below this contribute no axis
DEGENERATE_EPS = 1e-6   # total |coord| below this counts as a flat layout
SCALE_EPS      = 1e-6   # max radius below this is left unscaled
FALLBACK_SHELL = 0.65   # fallback sphere radius, as a fraction of `radius`
_U32 = 0xFFFFFFFF


def classical_mds(distance_matrix: np.ndarray | Sequence[Sequence[float]], dimensions: int = 3) -> np.ndarray:
    """
    Torgerson classical MDS.

    Parameters
    ----------
    distance_matrix
        Symmetric n x n matrix of non-negative distances. Non-finite entries
        are treated as 0.
    dimensions
        Number of output axes.

    Returns
    -------
    np.ndarray
        n x `dimensions` coordinates. Axes whose eigenvalue is not positive
        are all zero.
    """
    d = np.asarray(distance_matrix, dtype=float)
    n = d.shape[0] if d.ndim == 2 else 0
    if n == 0:
        return np.zeros((0, dimensions))
    if n == 1:
        return np.zeros((1, dimensions))

    d = np.where(np.isfinite(d), d, 0.0)
    d_squared = np.maximum(d, 0.0) ** 2
    centering = np.eye(n) - np.full((n, n), 1.0 / n)
    b = -0.5 * centering @ d_squared @ centering
    # symmetrize away rounding before the symmetric solver
    b = (b + b.T) / 2.0

    eigenvalues, eigenvectors = np.linalg.eigh(b)
    order = np.argsort(eigenvalues)[::-1][:dimensions]

    coords = np.zeros((n, dimensions))
    for axis, index in enumerate(order):
        value = eigenvalues[index]
        if value <= EIGEN_EPS:
            continue
        coords[:, axis] = eigenvectors[:, index] * math.sqrt(value)
    return coords


def _string_hash(value: str) -> int:
    """
    31-multiplier rolling hash of `value`, as an unsigned 32-bit int.
    """
    h = 0
    for ch in value:
        h = (h * 31 + ord(ch)) & _U32
    return h


def _mulberry32(seed: int) -> Callable[[], float]:
    """
    Small seeded PRNG yielding floats in [0, 1).
    """
    state = seed & _U32

    def _next() -> float:
        nonlocal state
        state = (state + 0x6D2B79F5) & _U32
        t = state
        t = ((t ^ (t >> 15)) * (t | 1)) & _U32
        t ^= (t + (((t ^ (t >> 7)) * (t | 61)) & _U32)) & _U32
        return ((t ^ (t >> 14)) & _U32) / 4294967296.0

    return _next


def fallback_position(ap_id: str, radius: float) -> Position:
    """
    Deterministic point on a spherical shell derived from `ap_id`.

    Carries no correlation information; it only keeps a flat layout stable.
    """
    rand = _mulberry32(_string_hash(ap_id))
    theta = rand() * math.pi * 2
    phi = math.acos(2 * rand() - 1)
    r = radius * (0.4 + rand() * 0.6)
    return (
        r * math.sin(phi) * math.cos(theta),
        r * math.cos(phi),
        r * math.sin(phi) * math.sin(theta),
    )


def is_degenerate(coords: np.ndarray) -> bool:
    return coords.size == 0 or float(np.abs(coords).sum()) < DEGENERATE_EPS


def stabilize_axis_signs(
    ids: Sequence[str],
    coords: np.ndarray,
    previous: Mapping[str, Position],
) -> np.ndarray:
    """
    Flip any axis that points against the previous frame.

    Needs at least two ids with a previous position; the comparison is the
    dot product over those ids on each axis.
    """
    shared = [i for i, ap_id in enumerate(ids) if ap_id in previous]
    if len(shared) < 2:
        return coords

    prev = np.array([previous[ids[i]] for i in shared], dtype=float)
    current = coords[shared]
    for axis in range(coords.shape[1]):
        if float(np.dot(prev[:, axis], current[:, axis])) < 0:
            coords[:, axis] *= -1
    return coords


def center_and_scale(coords: np.ndarray, radius: float) -> np.ndarray:
    """
    Move the centroid to the origin and scale the farthest point to `radius`.
    """
    if coords.size == 0:
        return coords
    coords = coords - coords.mean(axis=0)
    max_distance = float(np.linalg.norm(coords, axis=1).max())
    if max_distance > SCALE_EPS:
        coords = coords * (radius / max_distance)
    return coords


def embed_positions(
    ids: Sequence[str],
    distance_matrix: np.ndarray | Sequence[Sequence[float]],
    previous_positions: Mapping[str, Position] | None = None,
    radius: float = 50.0,
    smoothing: float = 0.2,
) -> dict[str, Position]:
    """
    Compute the next frame's 3D positions.

    Parameters
    ----------
    ids
        Access point ids; their order indexes `distance_matrix`.
    distance_matrix
        Symmetric distances, typically `1 - corr`.
    previous_positions
        Last frame's positions by id; used for sign stabilization and
        smoothing. Not modified.
    radius
        Target radius after rescaling.
    smoothing
        Fraction of the way each known id moves towards its new target.

    Returns
    -------
    dict[str, Position]
        Position per id. The caller persists it as the next previous frame.
    """
    previous_positions = previous_positions or {}
    if not ids:
        return {}

    try:
        coords = classical_mds(distance_matrix, 3)
    except np.linalg.LinAlgError:
        logger.warning("MDS eigendecomposition failed; using id-hash layout")
        coords = np.zeros((0, 3))

    if coords.shape[0] != len(ids) or is_degenerate(coords):
        coords = np.array(
            [fallback_position(ap_id, radius * FALLBACK_SHELL) for ap_id in ids],
            dtype=float,
        )

    coords = stabilize_axis_signs(ids, coords, previous_positions)
    coords = center_and_scale(coords, radius)

    result: dict[str, Position] = {}
    for ap_id, target in zip(ids, coords):
        prev = previous_positions.get(ap_id)
        if prev is None:
            result[ap_id] = (float(target[0]), float(target[1]), float(target[2]))
            continue
        result[ap_id] = tuple(
            float(p + (t - p) * smoothing) for p, t in zip(prev, target)
        )
    return result


class PositionStore:
    """
    Previous-frame positions by access point id.

    Entries persist across snapshots and are dropped only via `release`,
    which the pipeline wires to entity eviction.
    """

    def __init__(self) -> None:
        self._positions: dict[str, Position] = {}

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, ap_id: object) -> bool:
        return ap_id in self._positions

    def __iter__(self) -> Iterator[str]:
        return iter(self._positions)

    def __getitem__(self, ap_id: str) -> Position:
        return self._positions[ap_id]

    def get(self, ap_id: str, default: Position | None = None) -> Position | None:
        return self._positions.get(ap_id, default)

    def snapshot(self) -> dict[str, Position]:
        return dict(self._positions)

    def update(self, positions: Mapping[str, Position]) -> None:
        self._positions.update(positions)

    def release(self, ap_id: str) -> None:
        self._positions.pop(ap_id, None)

    def clear(self) -> None:
        self._positions.clear()
