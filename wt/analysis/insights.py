"""
Derived per-AP metrics and the analysis summary.

Everything here is diagnostic: none of it feeds back into clustering or the
embedding.
"""

from __future__ import annotations

import math
import platform
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from wt.analysis.stats import clamp, round_half_up
from wt.utils.validate import HIDDEN_LABEL

BAND_24 = "2.4GHz"
BAND_5 = "5GHz"


def _finite(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def compute_stability_score(
    variance: float | None,
    sample_count: int | None,
    var_ref: float = 100.0,
    count_ref: int = 30,
) -> float:
    """
    Stability in [0, 1]: low variance and a full window score high.

    Parameters
    ----------
    variance
        Sample variance of the RSSI window (dBm^2). Missing counts as `var_ref`.
    sample_count
        Number of samples in the window.
    var_ref
        Variance at which the score reaches 0.
    count_ref
        Sample count at which confidence saturates.
    """
    var = max(0.0, variance) if _finite(variance) else var_ref
    count = max(0, sample_count) if _finite(sample_count) else 0
    var_norm = clamp(var / max(1.0, var_ref), 0.0, 1.0)
    count_boost = clamp(count / max(1, count_ref), 0.0, 1.0)
    return round_half_up(clamp((1 - var_norm) * count_boost, 0.0, 1.0), 2)


def normalize_band(band: str | None, channel: Any) -> str | None:
    """
    "2.4GHz" / "5GHz" from explicit band text, else from the channel number.
    """
    text = str(band or "").lower()
    if "2.4" in text:
        return BAND_24
    if "5" in text:
        return BAND_5

    number = _channel_number(channel)
    if number is None:
        return None
    if 1 <= number <= 14:
        return BAND_24
    if number >= 32:
        return BAND_5
    return None


def _channel_number(channel: Any) -> int | None:
    digits = ""
    for ch in str(channel if channel is not None else "").strip():
        if not ch.isdigit():
            break
        digits += ch
    return int(digits) if digits else None


def normalize_ap(ap: Mapping[str, Any]) -> dict[str, Any]:
    """
    Fill defaults for a snapshot AP view so the summary never sees gaps.
    """
    latest = ap.get("latestValue")
    mean_value = ap.get("meanValue")
    return {
        "id": ap.get("id"),
        "label": ap.get("label") or HIDDEN_LABEL,
        "band": ap.get("band") or "unknown",
        "channel": ap.get("channel") or "?",
        "security": ap.get("security") or "UNKNOWN",
        "latestValue": latest if _finite(latest) else None,
        "meanValue": mean_value if _finite(mean_value) else None,
        "variance": ap["variance"] if _finite(ap.get("variance")) else 0,
        "sampleCount": ap["sampleCount"] if _finite(ap.get("sampleCount")) else 0,
        "stability": ap["stability"] if _finite(ap.get("stability")) else 0,
        "clusterId": ap["clusterId"] if _finite(ap.get("clusterId")) else 0,
        "clusterSize": ap["clusterSize"] if _finite(ap.get("clusterSize")) else 1,
    }


def build_channel_density(aps: Iterable[Mapping[str, Any]]) -> dict[str, list[dict[str, int]]]:
    """
    Count access points per channel, split by band, channels ascending.
    """
    counts: dict[str, dict[int, int]] = {BAND_24: {}, BAND_5: {}}
    for ap in aps:
        number = _channel_number(ap.get("channel"))
        if number is None or number <= 0:
            continue
        band = normalize_band(ap.get("band"), number)
        if band is None:
            continue
        counts[band][number] = counts[band].get(number, 0) + 1

    def rows(by_channel: dict[int, int]) -> list[dict[str, int]]:
        return [{"channel": ch, "count": n} for ch, n in sorted(by_channel.items())]

    return {"band24": rows(counts[BAND_24]), "band5": rows(counts[BAND_5])}


def recommend_channels(density: Mapping[str, list], limit: int = 2) -> dict[str, list[dict[str, int]]]:
    """
    The `limit` least occupied channels per band, lower channel on ties.
    """
    def pick(rows: list) -> list:
        return sorted(rows, key=lambda r: (r["count"], r["channel"]))[:limit]

    return {
        "band24": pick(density.get("band24") or []),
        "band5": pick(density.get("band5") or []),
    }


def select_strongest(aps: Iterable[Mapping[str, Any]], limit: int = 5) -> list[dict[str, Any]]:
    """
    Strongest access points by mean RSSI (latest when no mean is known).
    """
    def signal(ap: dict) -> float:
        value = ap["meanValue"] if ap["meanValue"] is not None else ap["latestValue"]
        return value if value is not None else -200

    normalized = [normalize_ap(ap) for ap in aps]
    return sorted(normalized, key=signal, reverse=True)[:limit]


def select_most_volatile(aps: Iterable[Mapping[str, Any]], limit: int = 5) -> list[dict[str, Any]]:
    """
    Highest-variance access points, more samples first on ties.
    """
    normalized = [normalize_ap(ap) for ap in aps]
    return sorted(
        normalized, key=lambda ap: (ap["variance"], ap["sampleCount"]), reverse=True
    )[:limit]


def extract_cluster_sizes(meta: Mapping[str, Any], aps: Iterable[Mapping[str, Any]]) -> list[int]:
    """
    Multi-member cluster sizes, largest first.

    Prefers `meta.clusterSizes`; otherwise rebuilds them from per-AP ids.
    """
    sizes = meta.get("clusterSizes")
    if isinstance(sizes, (list, tuple)) and sizes:
        return sorted((s for s in sizes if _finite(s) and s > 1), reverse=True)

    by_cluster: dict[int, int] = {}
    for ap in aps:
        cluster_id = ap.get("clusterId") or 0
        if cluster_id < 1:
            continue
        by_cluster[cluster_id] = max(by_cluster.get(cluster_id, 0), ap.get("clusterSize") or 1)
    return sorted(by_cluster.values(), reverse=True)


def build_analysis_summary(
    aps: Iterable[Mapping[str, Any]],
    meta: Mapping[str, Any] | None = None,
    mode: str = "live",
    duration_sec: float | None = None,
    observed_count: int | None = None,
    generated_at: int | None = None,
) -> dict[str, Any]:
    """
    Aggregate one snapshot's AP views into the report structure.

    Parameters
    ----------
    aps
        Snapshot AP views (`Snapshot.to_dict()["aps"]`).
    meta
        Snapshot meta bag.
    mode
        "live", "replay" or "analyze".
    duration_sec
        Analyze run length, if any.
    observed_count
        Distinct access points seen over the run; defaults to len(aps).
    generated_at
        Epoch-ms; defaults to now.
    """
    meta = meta or {}
    if generated_at is None:
        generated_at = int(datetime.now(timezone.utc).timestamp() * 1000)
    normalized = [normalize_ap(ap) for ap in aps]
    density = build_channel_density(normalized)
    cluster_sizes = extract_cluster_sizes(meta, normalized)

    def num(key: str):
        value = meta.get(key)
        return value if _finite(value) else None

    return {
        "generatedAt": generated_at,
        "timestampIso": datetime.fromtimestamp(generated_at / 1000, tz=timezone.utc)
                                .isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        "mode": mode,
        "os": meta.get("scanPlatform") or platform.system().lower(),
        "scanSource": meta.get("scanSource") or "unknown",
        "scanIntervalMs": num("scanIntervalMs"),
        "windowSize": num("windowSize"),
        "durationSec": duration_sec if _finite(duration_sec) else None,
        "scanCount": num("scanCount"),
        "apsObserved": observed_count if _finite(observed_count) else len(normalized),
        "apsTracked": len(normalized),
        "clustersDetected": len(cluster_sizes),
        "topClusterSizes": cluster_sizes[:5],
        "channelDensity": density,
        "recommendations": recommend_channels(density, 2),
        "strongestAps": select_strongest(normalized, 5),
        "mostVolatileAps": select_most_volatile(normalized, 5),
    }
