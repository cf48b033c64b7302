import json

import pytest

from wt.analysis.config import PipelineConfig
from wt.analysis.pipeline import Snapshot, TopologyPipeline
from wt.errors import ConfigError

from helpers import ALTERNATING, PAIRED, pattern

A = "aa:aa:aa:aa:aa:01"
B = "bb:bb:bb:bb:bb:02"
C = "cc:cc:cc:cc:cc:03"


def feed_three(pipeline, make_obs, ticks=12, start=0):
    """
    A and B move in lock-step; C follows an uncorrelated pattern.
    """
    a_series = pattern(-55, ALTERNATING, ticks)
    c_series = pattern(-70, PAIRED, ticks)
    for i in range(ticks):
        pipeline.ingest(
            [
                make_obs(A, a_series[i], label="Alpha", channel="6"),
                make_obs(B, a_series[i], label="Bravo", channel="36"),
                make_obs(C, c_series[i], label="Charlie", channel="11"),
            ],
            now=start + i * 1000,
        )
    return start + (ticks - 1) * 1000


def test_correlated_pair_forms_cluster(make_obs):
    pipeline = TopologyPipeline(PipelineConfig(), scan_platform="darwin")
    now = feed_three(pipeline, make_obs)
    snapshot = pipeline.build_snapshot(now, scan_source="airport")

    assert [(e.a, e.b) for e in snapshot.edges] == [(A, B)]
    assert snapshot.edges[0].corr == pytest.approx(1.0)

    views = {ap["id"]: ap for ap in snapshot.aps}
    assert views[A]["clusterId"] == views[B]["clusterId"] == 1
    assert views[A]["clusterSize"] == 2
    assert views[C]["clusterId"] == 0
    assert views[C]["clusterSize"] == 1
    assert snapshot.meta["clusterCount"] == 1
    assert tuple(snapshot.meta["clusterSizes"]) == (2,)
    assert snapshot.meta["activeApCount"] == 3
    assert snapshot.meta["scanPlatform"] == "darwin"


def test_ap_view_fields(make_obs):
    pipeline = TopologyPipeline(PipelineConfig())
    now = feed_three(pipeline, make_obs)
    snapshot = pipeline.build_snapshot(now)
    view = next(ap for ap in snapshot.aps if ap["id"] == A)
    assert view["label"] == "Alpha"
    assert view["sampleCount"] == 12
    assert view["meanValue"] == pytest.approx(-55.0)
    assert view["variance"] == pytest.approx(27.27, abs=0.01)
    assert view["sampleQuality"] == 1.0
    assert 0 <= view["stability"] <= 1
    assert view["band"] == "2.4ghz"
    assert view["lastSeen"] == now


def test_aps_are_ordered_strongest_first(make_obs):
    pipeline = TopologyPipeline(PipelineConfig())
    now = feed_three(pipeline, make_obs)
    snapshot = pipeline.build_snapshot(now)
    latest = [ap["latestValue"] for ap in snapshot.aps]
    assert latest == sorted(latest, reverse=True)


def test_max_aps_caps_active_set(make_obs):
    pipeline = TopologyPipeline(PipelineConfig(max_aps=2))
    now = feed_three(pipeline, make_obs)
    snapshot = pipeline.build_snapshot(now)
    assert len(snapshot.aps) == 2
    assert set(snapshot.positions) == {ap["id"] for ap in snapshot.aps}


def test_snapshot_is_immutable(make_obs):
    pipeline = TopologyPipeline(PipelineConfig())
    now = feed_three(pipeline, make_obs)
    snapshot = pipeline.build_snapshot(now)
    with pytest.raises(TypeError):
        snapshot.meta["mode"] = "replay"
    with pytest.raises(TypeError):
        snapshot.aps[0]["label"] = "changed"
    with pytest.raises(AttributeError):
        snapshot.t = 0

    # later ticks do not leak into an emitted snapshot
    count_before = snapshot.aps[0]["sampleCount"]
    feed_three(pipeline, make_obs, ticks=4, start=now + 1000)
    pipeline.build_snapshot(now + 5000)
    assert snapshot.aps[0]["sampleCount"] == count_before


def test_timestamps_strictly_increase(make_obs):
    pipeline = TopologyPipeline(PipelineConfig())
    now = feed_three(pipeline, make_obs)
    first = pipeline.build_snapshot(now)
    second = pipeline.build_snapshot(now)
    third = pipeline.build_snapshot(now - 500)
    assert first.t < second.t < third.t


def test_wire_format_round_trips_through_json(make_obs):
    pipeline = TopologyPipeline(PipelineConfig())
    now = feed_three(pipeline, make_obs)
    snapshot = pipeline.build_snapshot(now)
    wire = snapshot.to_dict()

    assert wire["type"] == "snapshot"
    assert set(wire["positions"][A]) == {"x", "y", "z"}
    for pos in wire["positions"].values():
        for value in pos.values():
            assert round(value, 3) == value
    assert wire["edges"][0] == {"a": A, "b": B, "corr": pytest.approx(1.0)}
    assert wire["meta"]["clusterSizes"] == [2]

    restored = Snapshot.from_dict(json.loads(json.dumps(wire)))
    assert restored.t == snapshot.t
    assert restored.to_dict() == json.loads(json.dumps(wire))


def test_with_meta_overrides_without_touching_original(make_obs):
    pipeline = TopologyPipeline(PipelineConfig())
    now = feed_three(pipeline, make_obs)
    snapshot = pipeline.build_snapshot(now)
    copy = snapshot.with_meta(t=snapshot.t + 10, mode="replay", replay=True)
    assert copy.meta["mode"] == "replay"
    assert copy.t == snapshot.t + 10
    assert copy.aps is snapshot.aps
    assert snapshot.meta["mode"] == "live"
    assert snapshot.meta["replay"] is False


def test_window_shrink_truncates_histories(make_obs):
    pipeline = TopologyPipeline(PipelineConfig())
    for i in range(30):
        pipeline.ingest([make_obs(A, -40 - i)], now=i)
    pipeline.reconfigure({"windowSize": 10})
    rec = pipeline.store.get(A)
    assert rec.samples == [-40 - i for i in range(20, 30)]
    assert pipeline.config.window_size == 10


def test_invalid_reconfigure_leaves_state(make_obs):
    pipeline = TopologyPipeline(PipelineConfig())
    for i in range(12):
        pipeline.ingest([make_obs(A, -40 - i)], now=i)
    with pytest.raises(ConfigError, match="edgeThreshold"):
        pipeline.reconfigure({"windowSize": 9, "edgeThreshold": 2})
    assert pipeline.config.window_size == 30
    assert len(pipeline.store.get(A).samples) == 12


def test_evict_after_update_applies_to_store(make_obs):
    pipeline = TopologyPipeline(PipelineConfig())
    pipeline.reconfigure({"evictAfterMs": 2000})
    pipeline.ingest([make_obs(A, -50)], now=0)
    pipeline.ingest([], now=2001)
    assert A not in pipeline.store


def test_eviction_releases_position(make_obs):
    pipeline = TopologyPipeline(PipelineConfig(evict_after_ms=5000))
    now = feed_three(pipeline, make_obs)
    pipeline.build_snapshot(now)
    assert C in pipeline.positions

    pipeline.ingest([make_obs(A, -50), make_obs(B, -50)], now=now + 6000)
    assert C not in pipeline.positions
    assert A in pipeline.positions
    snapshot = pipeline.build_snapshot(now + 6000)
    assert C not in snapshot.positions


def test_positions_are_smoothed_between_snapshots(make_obs):
    pipeline = TopologyPipeline(PipelineConfig())
    now = feed_three(pipeline, make_obs)
    first = pipeline.build_snapshot(now)
    second = pipeline.build_snapshot(now + 1)
    # identical inputs: the target equals the previous frame
    for ap_id, pos in first.positions.items():
        assert second.positions[ap_id] == pytest.approx(pos)


def test_without_embedding_positions_are_empty(make_obs):
    pipeline = TopologyPipeline(PipelineConfig())
    now = feed_three(pipeline, make_obs)
    snapshot = pipeline.build_snapshot(now, mode="analyze", embed=False, extra_meta={"scanCount": 12})
    assert dict(snapshot.positions) == {}
    assert len(pipeline.positions) == 0
    assert snapshot.meta["scanCount"] == 12
    assert snapshot.meta["mode"] == "analyze"


def test_empty_store_builds_empty_snapshot():
    pipeline = TopologyPipeline(PipelineConfig())
    snapshot = pipeline.build_snapshot(1000)
    assert snapshot.aps == ()
    assert snapshot.edges == ()
    assert snapshot.meta["clusterCount"] == 0


def test_shutdown_clears_state(make_obs):
    pipeline = TopologyPipeline(PipelineConfig())
    now = feed_three(pipeline, make_obs)
    pipeline.build_snapshot(now)
    pipeline.shutdown()
    assert len(pipeline.store) == 0
    assert len(pipeline.positions) == 0
    assert pipeline.observed_ids == set()
