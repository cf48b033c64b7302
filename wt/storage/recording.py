"""
Append-only NDJSON snapshot recordings and their replay pacing.
"""

from __future__ import annotations

import json
import math
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any

from wt.analysis.pipeline import SNAPSHOT_TYPE, Snapshot
from wt.analysis.stats import clamp
from wt.errors import ReplayError
from wt.utils.log import get_logger

logger = get_logger(__name__)

MIN_REPLAY_DELAY_MS = 40
MAX_REPLAY_DELAY_MS = 15_000
MIN_REPLAY_SPEED    = 0.1


def default_recordings_dir() -> Path:
    return Path(os.environ.get("RECORDINGS_DIR") or Path.cwd() / "recordings")


def resolve_recording_path(path: str | os.PathLike | None, base_dir: Path | None = None) -> Path:
    """
    Absolute path for a new recording; a timestamped file when `path` is empty.
    """
    if path is not None and str(path).strip():
        candidate = Path(str(path).strip()).expanduser()
        return candidate if candidate.is_absolute() else (Path.cwd() / candidate).resolve()
    stamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace(":", "-").replace(".", "-")
    return (base_dir or default_recordings_dir()) / f"wifi-space-{stamp}.ndjson"


class SnapshotRecorder:
    """
    Writes one JSON snapshot per line to an append-only file.
    """

    def __init__(self, base_dir: Path | None = None) -> None:
        self.base_dir = base_dir
        self.path: Path | None = None
        self.count = 0
        self.started_at = 0
        self._fh: IO[str] | None = None

    @property
    def enabled(self) -> bool:
        return self._fh is not None

    def start(self, path: str | os.PathLike | None = None) -> dict[str, Any]:
        """
        Open `path` for appending; a no-op when already recording.
        """
        if self.enabled:
            return self.status()
        target = resolve_recording_path(path, self.base_dir)
        target.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(target, "a", encoding="utf-8")
        self.path = target
        self.count = 0
        self.started_at = int(datetime.now(timezone.utc).timestamp() * 1000)
        logger.info("Recording snapshots to %s", target)
        return self.status()

    def write(self, snapshot: Snapshot) -> None:
        if self._fh is None:
            return
        try:
            self._fh.write(json.dumps(snapshot.to_dict(), separators=(",", ":")) + "\n")
            self._fh.flush()
        except OSError:
            logger.exception("Recording to %s failed; stopping", self.path)
            self.stop()
            return
        self.count += 1

    def stop(self) -> dict[str, Any]:
        if self._fh is not None:
            logger.info("Stopped recording %s after %d snapshots", self.path, self.count)
            try:
                self._fh.close()
            finally:
                self._fh = None
        self.path = None
        self.count = 0
        self.started_at = 0
        return self.status()

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "path": str(self.path) if self.path else None,
            "count": self.count,
            "startedAt": self.started_at,
        }


def parse_snapshot_line(line: str) -> Snapshot | None:
    """
    Parse one recorded line; None for blank, corrupt or non-snapshot lines.
    """
    line = line.strip()
    if not line:
        return None
    try:
        data = json.loads(line)
    except ValueError:
        return None
    if not isinstance(data, dict) or data.get("type") != SNAPSHOT_TYPE:
        return None
    try:
        return Snapshot.from_dict(data)
    except (TypeError, ValueError, KeyError):
        return None


def load_snapshots(path: str | os.PathLike) -> list[Snapshot]:
    """
    Read every valid snapshot from an NDJSON recording.

    Raises
    ------
    ReplayError
        When the file cannot be read or holds no snapshot lines.
    """
    source = Path(path).expanduser()
    try:
        with open(source, "r", encoding="utf-8") as f:
            snapshots = [s for s in (parse_snapshot_line(line) for line in f) if s is not None]
    except FileNotFoundError:
        raise ReplayError(f"Replay file not found: {source}") from None
    except (OSError, UnicodeDecodeError) as exc:
        raise ReplayError(f"Replay file unreadable: {source} ({exc})") from exc

    if not snapshots:
        raise ReplayError("Replay file has no snapshot lines")
    logger.info("Loaded %d snapshots from %s", len(snapshots), source)
    return snapshots


def compute_replay_delay_ms(
    current_t: float | None,
    next_t: float | None,
    speed: float,
    fallback_ms: int,
) -> int:
    """
    Delay before emitting the next recorded snapshot.

    The recorded gap divided by `speed`, clamped to [40, 15000] ms. With no
    next entry, or a non-positive / non-finite gap, `fallback_ms` (the live
    scan interval) is returned as is.
    """
    if next_t is None or current_t is None:
        return int(fallback_ms)
    try:
        delta = float(next_t) - float(current_t)
    except (TypeError, ValueError):
        return int(fallback_ms)
    if not math.isfinite(delta) or delta <= 0:
        return int(fallback_ms)
    return int(clamp(round(delta / max(speed, MIN_REPLAY_SPEED)), MIN_REPLAY_DELAY_MS, MAX_REPLAY_DELAY_MS))
