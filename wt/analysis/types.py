# wt/analysis/types.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

Position = Tuple[float, float, float]


@dataclass
class ApRecord:
    """
    Rolling state of one tracked access point.

    Parameters
    ----------
    id : str
        Stable key (BSSID). Never changes for the record's lifetime.
    label : str
        Last known SSID; never regresses to the hidden sentinel.
    samples : List[float]
        Recent RSSI readings, oldest first, at most `window_size` long.
    sample_weights : List[float]
        Provenance confidence in [0, 1], parallel to `samples`.
    sample_estimated : List[bool]
        Whether each sample was inferred rather than measured.
    last_seen : int
        Epoch-ms timestamp of the latest observation.
    """
    id: str
    label: str
    last_seen: int
    latest_value: float
    latest_weight: float
    latest_estimated: bool = False
    scan_source: str = "airport"
    channel: str = ""
    band: str = "unknown"
    security: str = "UNKNOWN"
    label_history: List[str] = field(default_factory=list)
    samples: List[float] = field(default_factory=list)
    sample_weights: List[float] = field(default_factory=list)
    sample_estimated: List[bool] = field(default_factory=list)

    def append_sample(self, value: float, weight: float, estimated: bool, window_size: int) -> None:
        self.samples.append(value)
        self.sample_weights.append(weight)
        self.sample_estimated.append(estimated)
        self.truncate(window_size)

    def truncate(self, window_size: int) -> None:
        """
        Keep only the `window_size` most recent samples.
        """
        excess = len(self.samples) - window_size
        if excess > 0:
            del self.samples[:excess]
            del self.sample_weights[:excess]
            del self.sample_estimated[:excess]


@dataclass(frozen=True)
class Edge:
    """
    Undirected correlation link; `a < b` lexicographically.
    """
    a: str
    b: str
    corr: float

    @classmethod
    def between(cls, x: str, y: str, corr: float) -> "Edge":
        a, b = (x, y) if x < y else (y, x)
        return cls(a, b, corr)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.a, self.b)

    def to_dict(self) -> dict:
        return {"a": self.a, "b": self.b, "corr": self.corr}


@dataclass
class ClusterResult:
    """
    Connected-component assignment for one snapshot.

    Parameters
    ----------
    cluster_by_id : Dict[str, int]
        0 for isolated access points, otherwise a 1-based component id.
    cluster_size_by_id : Dict[str, int]
        Size of the component each access point belongs to (1 if isolated).
    summary : List[int]
        Sizes of components with at least two members, largest first.
    """
    cluster_by_id: Dict[str, int] = field(default_factory=dict)
    cluster_size_by_id: Dict[str, int] = field(default_factory=dict)
    summary: List[int] = field(default_factory=list)
