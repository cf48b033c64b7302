"""
Snapshot assembly: entity store -> correlations -> edges -> clusters ->
embedding -> derived metrics.

Stages:
- Stage 0: ingest + staleness eviction
- Stage 1: active set (strongest `max_aps` by latest RSSI)
- Stage 2: weighted correlation matrix
- Stage 3: top-k edge selection
- Stage 4: connected-component clusters
- Stage 5: MDS embedding with smoothing
- Stage 6: per-AP derived view + meta bag
"""

from __future__ import annotations

import platform
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from wt.analysis.config import PipelineConfig
from wt.analysis.insights import compute_stability_score
from wt.analysis.mds import PositionStore, embed_positions
from wt.analysis.stats import build_correlation_matrix, distance_matrix, mean, round_half_up, variance
from wt.analysis.store import EntityStore
from wt.analysis.topology import detect_clusters, select_edges
from wt.analysis.types import ApRecord, Edge, Position
from wt.utils.log import get_logger
from wt.utils.validate import Observation

logger = get_logger(__name__)

SNAPSHOT_TYPE = "snapshot"
POSITION_PRECISION = 3
VALUE_PRECISION = 2


def _freeze(mapping: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping))


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class Snapshot:
    """
    One immutable emitted state unit.

    Parameters
    ----------
    t : int
        Epoch-ms emission time.
    aps : tuple
        Per-AP derived views (read-only mappings), strongest first.
    positions : Mapping[str, Position]
        Unrounded 3D position per AP id.
    edges : tuple[Edge, ...]
        Retained correlation edges, strongest first.
    meta : Mapping[str, Any]
        Config values and diagnostic counters.
    """
    t: int
    aps: tuple = ()
    positions: Mapping[str, Position] = field(default_factory=lambda: MappingProxyType({}))
    edges: tuple = ()
    meta: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def to_dict(self) -> dict[str, Any]:
        """
        JSON-ready wire form; a fresh structure on every call.
        """
        return {
            "type": SNAPSHOT_TYPE,
            "t": self.t,
            "aps": [_thaw(ap) for ap in self.aps],
            "positions": {
                ap_id: {
                    "x": round_half_up(pos[0], POSITION_PRECISION),
                    "y": round_half_up(pos[1], POSITION_PRECISION),
                    "z": round_half_up(pos[2], POSITION_PRECISION),
                }
                for ap_id, pos in self.positions.items()
            },
            "edges": [e.to_dict() for e in self.edges],
            "meta": _thaw(self.meta),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Snapshot":
        """
        Rebuild a snapshot from its wire form (e.g. a recorded line).
        """
        positions = {}
        for ap_id, pos in (data.get("positions") or {}).items():
            if isinstance(pos, Mapping):
                positions[ap_id] = (float(pos.get("x", 0)), float(pos.get("y", 0)), float(pos.get("z", 0)))
            else:
                positions[ap_id] = tuple(float(v) for v in pos)
        edges = tuple(
            Edge(str(e["a"]), str(e["b"]), float(e["corr"]))
            for e in data.get("edges") or []
            if isinstance(e, Mapping) and {"a", "b", "corr"} <= e.keys()
        )
        return cls(
            t=int(data.get("t") or 0),
            aps=tuple(_freeze(ap) for ap in data.get("aps") or [] if isinstance(ap, Mapping)),
            positions=MappingProxyType(positions),
            edges=edges,
            meta=_freeze(data.get("meta") or {}),
        )

    def with_meta(self, t: int | None = None, **meta: Any) -> "Snapshot":
        """
        Copy with `meta` keys overwritten; payload is shared, not copied.
        """
        merged = dict(self.meta)
        merged.update(meta)
        return replace(self, t=self.t if t is None else t, meta=MappingProxyType(merged))


class TopologyPipeline:
    """
    Owns the entity store, position store and last snapshot of one pipeline.

    Lifecycle: construct, then per tick `ingest` and `build_snapshot`;
    `reconfigure` between ticks; `shutdown` at the end.
    """

    def __init__(self, config: PipelineConfig | None = None, scan_platform: str | None = None) -> None:
        self.config = config or PipelineConfig()
        self.scan_platform = scan_platform or platform.system().lower()
        self.store = EntityStore(self.config.window_size, self.config.evict_after_ms)
        self.positions = PositionStore()
        self.store.on_evict(self.positions.release)
        self.observed_ids: set[str] = set()
        self.last_snapshot: Snapshot | None = None
        self.tick_count = 0

    def ingest(self, observations: Iterable[Observation], now: int) -> list[str]:
        """
        Stage 0: apply one observation batch and evict stale APs.
        """
        batch = list(observations)
        self.observed_ids.update(obs.id for obs in batch)
        evicted = self.store.ingest(batch, now)
        logger.debug("Ingested %d observations, %d tracked", len(batch), len(self.store))
        return evicted

    def reconfigure(self, updates: Mapping[str, Any]) -> PipelineConfig:
        """
        Validate and apply a partial config update (wire-named keys).

        Raises ConfigError without touching any state on invalid input. A
        smaller window truncates every history at once.
        """
        new_cfg = self.config.updated(updates)
        self.config = new_cfg
        self.store.evict_after_ms = new_cfg.evict_after_ms
        if new_cfg.window_size != self.store.window_size:
            self.store.resize(new_cfg.window_size)
        logger.info("Config updated: %s", dict(updates))
        return new_cfg

    def build_snapshot(
        self,
        now: int,
        mode: str = "live",
        scan_source: str = "unknown",
        embed: bool = True,
        extra_meta: Mapping[str, Any] | None = None,
    ) -> Snapshot:
        """
        Run stages 1-6 over the current store and return the snapshot.
        """
        cfg = self.config
        records = self.store.active(now, cfg.max_aps)
        ids = [rec.id for rec in records]

        corr = build_correlation_matrix(
            [rec.samples for rec in records],
            [rec.sample_weights for rec in records],
            cfg.min_overlap,
        )
        edges = select_edges(ids, corr, cfg.max_edges_per_node, cfg.edge_threshold, cfg.max_edges)
        clusters = detect_clusters(ids, edges, cfg.edge_threshold)

        positions: dict[str, Position] = {}
        if embed:
            positions = embed_positions(
                ids,
                distance_matrix(corr),
                previous_positions=self.positions.snapshot(),
                radius=cfg.radius,
                smoothing=cfg.smoothing,
            )
            self.positions.update(positions)

        aps = tuple(
            _freeze(self._ap_view(rec, clusters.cluster_by_id[rec.id], clusters.cluster_size_by_id[rec.id]))
            for rec in records
        )
        meta = {
            "mode": mode,
            "scanPlatform": self.scan_platform,
            "scanSource": scan_source,
            "scanIntervalMs": cfg.scan_interval_ms,
            "windowSize": cfg.window_size,
            "edgeThreshold": cfg.edge_threshold,
            "minOverlap": cfg.min_overlap,
            "maxAps": cfg.max_aps,
            "activeApCount": len(records),
            "clusterCount": len(clusters.summary),
            "clusterSizes": tuple(clusters.summary),
            "recording": False,
            "replay": False,
        }
        meta.update(extra_meta or {})

        snapshot = Snapshot(
            t=self._next_timestamp(now),
            aps=aps,
            positions=MappingProxyType(positions),
            edges=tuple(edges),
            meta=_freeze(meta),
        )
        self.last_snapshot = snapshot
        logger.debug(
            "Snapshot t=%d aps=%d edges=%d clusters=%d",
            snapshot.t, len(aps), len(edges), len(clusters.summary),
        )
        return snapshot

    def _next_timestamp(self, now: int) -> int:
        if self.last_snapshot is not None and now <= self.last_snapshot.t:
            return self.last_snapshot.t + 1
        return int(now)

    def _ap_view(self, rec: ApRecord, cluster_id: int, cluster_size: int) -> dict[str, Any]:
        sample_variance = variance(rec.samples)
        return {
            "id": rec.id,
            "label": rec.label,
            "latestValue": rec.latest_value,
            "channel": rec.channel,
            "band": rec.band,
            "security": rec.security,
            "scanSource": rec.scan_source,
            "estimatedFlag": rec.latest_estimated,
            "sampleQuality": round_half_up(mean(rec.sample_weights), VALUE_PRECISION),
            "sampleCount": len(rec.samples),
            "meanValue": round_half_up(mean(rec.samples), VALUE_PRECISION),
            "variance": round_half_up(sample_variance, VALUE_PRECISION),
            "stability": compute_stability_score(
                sample_variance, len(rec.samples), self.config.var_ref, self.config.window_size
            ),
            "clusterId": cluster_id,
            "clusterSize": cluster_size,
            "lastSeen": rec.last_seen,
        }

    def shutdown(self) -> None:
        """
        Forget all state; the pipeline can be reused afterwards.
        """
        self.store.clear()
        self.positions.clear()
        self.observed_ids.clear()
        self.tick_count = 0
        logger.info("Pipeline shut down")
