"""
Numeric primitives over RSSI windows.

All degenerate inputs (too little overlap, constant series, zero weights)
resolve to 0 rather than raising: callers treat a correlation of 0 as
"no evidence of relation".
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def round_half_up(value: float, digits: int = 0) -> float:
    """
    Round to `digits` places with halves going up (0.125 -> 0.13, -2.5 -> -2).

    The built-in `round` sends halves to even, which would shift the last
    digit of wire values.
    """
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def variance(values: Sequence[float]) -> float:
    """
    Sample variance with Bessel's correction; 0 for fewer than two values.
    """
    n = len(values)
    if n < 2:
        return 0.0
    avg = mean(values)
    return sum((v - avg) ** 2 for v in values) / (n - 1)


def weighted_mean(values: Sequence[float], weights: Sequence[float] | None) -> float:
    """
    Weighted mean of `values`.

    Missing or non-finite weights count as 1; weights <= 0 exclude their value.
    Returns 0 when no positive weight remains.
    """
    total_w = 0.0
    total = 0.0
    for i, value in enumerate(values):
        w = 1.0
        if weights is not None and i < len(weights) and math.isfinite(weights[i]):
            w = max(0.0, weights[i])
        if w <= 0:
            continue
        total_w += w
        total += value * w
    if total_w <= 0:
        return 0.0
    return total / total_w


def _normalize_weight(value: float) -> float:
    if value is None or not math.isfinite(value):
        return 1.0
    return clamp(value, 0.0, 1.0)


def _normalize_weights(weights: Sequence[float] | None, overlap: int) -> list[float]:
    """
    Trailing `overlap` weights clamped to [0, 1], left-padded with 1.
    """
    if not weights:
        return [1.0] * overlap
    tail = [_normalize_weight(w) for w in list(weights)[-overlap:]]
    if len(tail) < overlap:
        return [1.0] * (overlap - len(tail)) + tail
    return tail


def weighted_pearson_correlation(
    xs: Sequence[float],
    ys: Sequence[float],
    weights_x: Sequence[float] | None = None,
    weights_y: Sequence[float] | None = None,
    min_overlap: int = 8,
) -> float:
    """
    Weighted Pearson correlation over the shared trailing overlap of two series.

    Parameters
    ----------
    xs, ys
        Sample windows, oldest first. Only the last min(len(xs), len(ys))
        samples of each take part.
    weights_x, weights_y
        Per-sample confidence in [0, 1], aligned with `xs` / `ys`.
    min_overlap
        Minimum number of aligned, positively weighted pairs required.

    Returns
    -------
    float
        Correlation in [-1, 1], or 0 when it is undefined.
    """
    overlap = min(len(xs), len(ys))
    if overlap < min_overlap or overlap == 0:
        return 0.0

    x = list(xs)[-overlap:]
    y = list(ys)[-overlap:]
    wx = _normalize_weights(weights_x, overlap)
    wy = _normalize_weights(weights_y, overlap)

    fx: list[float] = []
    fy: list[float] = []
    fw: list[float] = []
    for i in range(overlap):
        w = math.sqrt(wx[i] * wy[i])
        if not math.isfinite(w) or w <= 0:
            continue
        fx.append(x[i])
        fy.append(y[i])
        fw.append(w)

    if len(fx) < min_overlap:
        return 0.0

    mx = weighted_mean(fx, fw)
    my = weighted_mean(fy, fw)

    cov = var_x = var_y = 0.0
    for a, b, w in zip(fx, fy, fw):
        dx = a - mx
        dy = b - my
        cov += w * (dx * dy)
        var_x += w * dx * dx
        var_y += w * dy * dy

    if var_x <= 0 or var_y <= 0:
        return 0.0

    return clamp(cov / math.sqrt(var_x * var_y), -1.0, 1.0)


def build_correlation_matrix(
    sample_series: Sequence[Sequence[float]],
    weight_series: Sequence[Sequence[float] | None] | None = None,
    min_overlap: int = 8,
) -> np.ndarray:
    """
    Symmetric n x n correlation matrix with a unit diagonal.

    Only the upper triangle is computed; it is mirrored below the diagonal.
    """
    n = len(sample_series)
    weight_series = weight_series or []
    matrix = np.zeros((n, n), dtype=float)
    for i in range(n):
        matrix[i, i] = 1.0
        wi = weight_series[i] if i < len(weight_series) else None
        for j in range(i + 1, n):
            wj = weight_series[j] if j < len(weight_series) else None
            corr = weighted_pearson_correlation(
                sample_series[i], sample_series[j], wi, wj, min_overlap
            )
            matrix[i, j] = corr
            matrix[j, i] = corr
    return matrix


def correlation_to_distance(corr: float) -> float:
    """
    Map a correlation in [-1, 1] to a distance in [0, 2].
    """
    return 1.0 - clamp(corr, -1.0, 1.0)


def distance_matrix(corr_matrix: np.ndarray) -> np.ndarray:
    """
    Element-wise `correlation_to_distance` over a correlation matrix.
    """
    return 1.0 - np.clip(np.asarray(corr_matrix, dtype=float), -1.0, 1.0)
