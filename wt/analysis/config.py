# wt/analysis/config.py

from __future__ import annotations

import math
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping

from wt.errors import ConfigError

# wire name -> (attribute, type, min, max); None means unbounded on that side
BOUNDS: dict[str, tuple[str, type, float | None, float | None]] = {
    "scanIntervalMs": ("scan_interval_ms", int,   300,  10_000),
    "windowSize":     ("window_size",      int,   8,    240),
    "edgeThreshold":  ("edge_threshold",   float, 0.05, 0.98),
    "minOverlap":     ("min_overlap",      int,   4,    80),
    "evictAfterMs":   ("evict_after_ms",   int,   1000, None),
    "maxAps":         ("max_aps",          int,   2,    500),
    "maxEdges":       ("max_edges",        int,   1,    2000),
}

# environment variable -> attribute
ENV_VARS: dict[str, str] = {
    "SCAN_INTERVAL_MS":     "scan_interval_ms",
    "WINDOW_SIZE":          "window_size",
    "EVICT_AFTER_MS":       "evict_after_ms",
    "MAX_APS":              "max_aps",
    "SNAPSHOT_EVERY_TICKS": "snapshot_every_ticks",
    "SCAN_TIMEOUT_MS":      "scan_timeout_ms",
    "MIN_OVERLAP":          "min_overlap",
    "EDGE_THRESHOLD":       "edge_threshold",
    "MAX_EDGES":            "max_edges",
}


@dataclass(frozen=True)
class PipelineConfig:
    """
    Runtime configuration of the aggregation and topology pipeline.

    Attributes
    ----------
    scan_interval_ms
        Live tick period (ms).
    window_size
        Rolling sample cap per access point.
    evict_after_ms
        Silence (ms) after which an access point is forgotten.
    max_aps
        Cap on access points considered per snapshot, strongest first.
    snapshot_every_ticks
        Emit a snapshot every N live ticks.
    scan_timeout_ms
        Budget (ms) for one scanner invocation.
    min_overlap
        Minimum aligned samples for a correlation to be computed at all.
    edge_threshold
        Strict lower bound on correlation for an edge / cluster link.
    max_edges
        Global cap on edges per snapshot.
    max_edges_per_node
        Strongest partners kept per access point before merging.
    radius
        Radius of the embedding after rescaling.
    smoothing
        Interpolation factor towards the new layout per snapshot.
    var_ref
        Variance (dBm^2) at which stability bottoms out.
    """
    scan_interval_ms:     int   = 1000
    window_size:          int   = 30
    evict_after_ms:       int   = 30_000
    max_aps:              int   = 40
    snapshot_every_ticks: int   = 1
    scan_timeout_ms:      int   = 5000
    min_overlap:          int   = 8
    edge_threshold:       float = 0.6
    max_edges:            int   = 120
    max_edges_per_node:   int   = 2
    radius:               float = 50.0
    smoothing:            float = 0.2
    var_ref:              float = 100.0

    @classmethod
    def live(cls):
        """Preset for the interactive viewer (default thresholds)."""
        return cls()

    @classmethod
    def analyze(cls):
        """Preset for headless analyze runs."""
        return cls(scan_interval_ms=1000, snapshot_every_ticks=1)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, base: PipelineConfig | None = None):
        """
        Overlay positive numeric environment variables onto `base`.

        Unparsable or non-positive values are ignored.
        """
        environ = os.environ if environ is None else environ
        cfg = base or cls()
        types = {f.name: f.type for f in fields(cls)}
        changes: dict[str, Any] = {}
        for var, attr in ENV_VARS.items():
            raw = environ.get(var)
            if raw is None:
                continue
            try:
                value = float(raw) if types[attr] in (float, "float") else int(raw)
            except ValueError:
                continue
            if value > 0 and math.isfinite(value):
                changes[attr] = value
        return replace(cfg, **changes)

    def updated(self, updates: Mapping[str, Any]) -> PipelineConfig:
        """
        Validate a partial update keyed by wire names and return the new config.

        Raises
        ------
        ConfigError
            On an unknown key or an out-of-bounds / malformed value. Nothing
            is applied in that case.
        """
        changes: dict[str, Any] = {}
        for key, raw in updates.items():
            if raw is None:
                continue
            if key not in BOUNDS:
                raise ConfigError(f"{key} is not a configurable option")
            attr, kind, lo, hi = BOUNDS[key]
            changes[attr] = parse_bounded(raw, kind, lo, hi, key)
        return replace(self, **changes)

    def to_public(self) -> dict[str, Any]:
        """
        Wire (camelCase) view of the externally visible options.
        """
        return {
            "scanIntervalMs":     self.scan_interval_ms,
            "windowSize":         self.window_size,
            "evictAfterMs":       self.evict_after_ms,
            "maxAps":             self.max_aps,
            "snapshotEveryTicks": self.snapshot_every_ticks,
            "scanTimeoutMs":      self.scan_timeout_ms,
            "minOverlap":         self.min_overlap,
            "edgeThreshold":      self.edge_threshold,
            "maxEdges":           self.max_edges,
        }


def parse_bounded(raw: Any, kind: type, lo: float | None, hi: float | None, label: str):
    """
    Coerce `raw` to `kind` and check it against [lo, hi].
    """
    if isinstance(raw, bool):
        raise ConfigError(f"{label} must be a number")
    if kind is int and isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    try:
        value = kind(raw) if kind is float else int(str(raw).strip())
    except (TypeError, ValueError):
        noun = "an integer" if kind is int else "a number"
        raise ConfigError(f"{label} must be {noun}") from None
    if kind is float and not math.isfinite(value):
        raise ConfigError(f"{label} must be a number")
    if lo is not None and hi is not None and not lo <= value <= hi:
        raise ConfigError(f"{label} must be between {lo} and {hi}")
    if lo is not None and value < lo:
        raise ConfigError(f"{label} must be at least {lo}")
    if hi is not None and value > hi:
        raise ConfigError(f"{label} must be at most {hi}")
    return value
