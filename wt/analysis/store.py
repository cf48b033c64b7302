"""
Rolling-window state for every access point currently in range.

The store ingests one observation batch per tick, keeps a bounded FIFO of
RSSI samples (plus their provenance weights) per BSSID, and forgets access
points that have been silent for longer than `evict_after_ms`.
"""

from __future__ import annotations

import math
from typing import Callable, Iterable, Iterator

from wt.analysis.types import ApRecord
from wt.utils.log import get_logger
from wt.utils.validate import HIDDEN_LABEL, LOW_FIDELITY_SOURCES, Observation

logger = get_logger(__name__)

# -----------------------------------------------------------------------------
# Sample weights by provenance (lower = less trusted)
WEIGHT_ESTIMATED    = 0.12  # RSSI inferred, not measured
WEIGHT_SYNTHETIC_ID = 0.35  # BSSID synthesized by the scanner
WEIGHT_LOW_FIDELITY = 0.45  # coarse scanner (system_profiler)
WEIGHT_DIRECT       = 1.0
LABEL_HISTORY_LEN   = 5
# -----------------------------------------------------------------------------


def derive_sample_weight(obs: Observation) -> float:
    """
    Confidence of one reading, the lowest weight among its provenance flags.
    """
    weight = WEIGHT_DIRECT
    if obs.estimated:
        weight = min(weight, WEIGHT_ESTIMATED)
    if obs.synthetic_id:
        weight = min(weight, WEIGHT_SYNTHETIC_ID)
    if obs.scan_source in LOW_FIDELITY_SOURCES:
        weight = min(weight, WEIGHT_LOW_FIDELITY)
    return max(0.0, min(1.0, weight))


def is_hidden_label(label: str | None) -> bool:
    return str(label or "").strip() == HIDDEN_LABEL


def should_replace_label(existing: str, incoming: str) -> bool:
    """
    Accept a new SSID unless it would regress a known one to hidden.
    """
    if existing == incoming:
        return False
    return not (is_hidden_label(incoming) and not is_hidden_label(existing))


class EntityStore:
    """
    In-memory map of BSSID -> ApRecord with window and staleness bounds.

    Not safe for concurrent mutation; the owning driver serializes access.
    """

    def __init__(self, window_size: int = 30, evict_after_ms: int = 30_000) -> None:
        self.window_size = window_size
        self.evict_after_ms = evict_after_ms
        self._records: dict[str, ApRecord] = {}
        self._evict_listeners: list[Callable[[str], None]] = []

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, ap_id: object) -> bool:
        return ap_id in self._records

    def __iter__(self) -> Iterator[ApRecord]:
        return iter(self._records.values())

    def get(self, ap_id: str) -> ApRecord | None:
        return self._records.get(ap_id)

    def on_evict(self, listener: Callable[[str], None]) -> None:
        """
        Register a callback invoked with the id of every evicted record.
        """
        self._evict_listeners.append(listener)

    def ingest(self, observations: Iterable[Observation], now: int) -> list[str]:
        """
        Apply one scan batch at time `now`, then evict stale records.

        Returns
        -------
        list[str]
            Ids evicted by this call.
        """
        for obs in observations:
            if not math.isfinite(obs.value):
                continue
            self._apply(obs, now)
        return self.evict(now)

    def _apply(self, obs: Observation, now: int) -> None:
        weight = derive_sample_weight(obs)
        record = self._records.get(obs.id)
        if record is None:
            record = ApRecord(
                id=obs.id,
                label=obs.label,
                last_seen=now,
                latest_value=obs.value,
                latest_weight=weight,
                label_history=[obs.label],
            )
            self._records[obs.id] = record
            logger.debug("New access point %s (%s)", obs.id, obs.label)

        record.last_seen = now
        record.latest_value = obs.value
        record.latest_weight = weight
        record.latest_estimated = obs.estimated
        record.scan_source = obs.scan_source
        record.channel = obs.channel
        record.band = obs.band
        record.security = obs.security

        if should_replace_label(record.label, obs.label):
            record.label = obs.label
            if obs.label not in record.label_history:
                record.label_history.append(obs.label)
                del record.label_history[:-LABEL_HISTORY_LEN]

        record.append_sample(obs.value, weight, obs.estimated, self.window_size)

    def evict(self, now: int) -> list[str]:
        """
        Drop every record silent for more than `evict_after_ms`.
        """
        stale = [
            ap_id for ap_id, rec in self._records.items()
            if now - rec.last_seen > self.evict_after_ms
        ]
        for ap_id in stale:
            del self._records[ap_id]
            for listener in self._evict_listeners:
                listener(ap_id)
        if stale:
            logger.debug("Evicted %d stale access points", len(stale))
        return stale

    def resize(self, window_size: int) -> None:
        """
        Change the window bound, truncating every history immediately.
        """
        self.window_size = window_size
        for record in self._records.values():
            record.truncate(window_size)

    def active(self, now: int, max_aps: int) -> list[ApRecord]:
        """
        Fresh records, strongest latest RSSI first, capped at `max_aps`.
        """
        fresh = [
            rec for rec in self._records.values()
            if now - rec.last_seen <= self.evict_after_ms
        ]
        fresh.sort(key=lambda rec: rec.latest_value, reverse=True)
        return fresh[:max_aps]

    def clear(self) -> None:
        for ap_id in list(self._records):
            del self._records[ap_id]
            for listener in self._evict_listeners:
                listener(ap_id)
