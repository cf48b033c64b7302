"""
Pydantic schemas for scanner output and HTTP payloads.
"""

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

HIDDEN_LABEL = "<hidden>"
BSSID_PATTERN = re.compile(r"^(?:[0-9a-f]{2}:){5}[0-9a-f]{2}$")
LOW_FIDELITY_SOURCES = frozenset({"system_profiler"})


def infer_band(channel: Optional[str]) -> str:
    """
    Infer the band label from a channel string such as "36,+1" or "6".
    """
    match = re.search(r"\d+", str(channel or ""))
    if not match:
        return "unknown"
    number = int(match.group(0))
    if 1 <= number <= 14:
        return "2.4ghz"
    if 32 <= number <= 177:
        return "5ghz"
    return "6ghz"


class Observation(BaseModel):
    """
    Normalized record for a single access point seen in one scan.

    Attributes
    ----------
    id
        Stable identifier, the lower-cased BSSID (possibly synthetic).
    label
        SSID, or the hidden sentinel.
    value
        RSSI in dBm.
    scan_source
        Which scanner produced the reading ("airport", "system_profiler", ...).
    estimated
        The RSSI was inferred rather than measured.
    synthetic_id
        The BSSID was synthesized because the scanner withheld it.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    label: str = HIDDEN_LABEL
    value: float
    channel: str = ""
    band: str = "unknown"
    security: str = "UNKNOWN"
    scan_source: str = "airport"
    estimated: bool = False
    synthetic_id: bool = False

    @classmethod
    def normalize(
        cls,
        id: str,
        value: float,
        label: Optional[str] = None,
        channel: Optional[str] = None,
        band: Optional[str] = None,
        security: Optional[str] = None,
        scan_source: str = "airport",
        estimated: bool = False,
        synthetic_id: bool = False,
    ) -> "Observation":
        """
        Build an Observation from loosely typed scanner fields.
        """
        channel_text = str(channel or "").strip()
        return cls(
            id=str(id).strip().lower(),
            label=str(label or "").strip() or HIDDEN_LABEL,
            value=value,
            channel=channel_text,
            band=(band or "").strip() or infer_band(channel_text),
            security=(security or "").strip() or "UNKNOWN",
            scan_source=scan_source or "airport",
            estimated=bool(estimated),
            synthetic_id=bool(synthetic_id),
        )


class ConfigUpdate(BaseModel):
    """
    Body of PUT /api/config; values are range-checked by PipelineConfig.
    """
    model_config = ConfigDict(populate_by_name=True)

    scan_interval_ms: Optional[float] = Field(default=None, alias="scanIntervalMs")
    window_size: Optional[float] = Field(default=None, alias="windowSize")
    edge_threshold: Optional[float] = Field(default=None, alias="edgeThreshold")
    min_overlap: Optional[float] = Field(default=None, alias="minOverlap")
    evict_after_ms: Optional[float] = Field(default=None, alias="evictAfterMs")
    max_aps: Optional[float] = Field(default=None, alias="maxAps")
    max_edges: Optional[float] = Field(default=None, alias="maxEdges")

    def wire_updates(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class RecordStart(BaseModel):
    path: Optional[str] = None


class ReplayStart(BaseModel):
    path: str
    speed: float = Field(default=1.0, ge=0.2, le=8.0)
    loop: bool = False
