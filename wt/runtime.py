"""
Drivers that move the pipeline along one asyncio timeline.

- LiveDriver: fixed-interval scan -> ingest -> snapshot loop
- ReplayDriver: re-emits a recording with its original pacing
- run_analyze_session: bounded headless run ending in one summary
- TopologyRuntime: owns one pipeline, both drivers, recorder and fan-out

Ticks, config updates and replay steps are serialized on the event loop;
nothing here is thread-safe.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping

from wt.analysis.config import PipelineConfig
from wt.analysis.insights import build_analysis_summary
from wt.analysis.pipeline import Snapshot, TopologyPipeline
from wt.analysis.report import build_markdown_report
from wt.errors import NoObservationsError
from wt.scanner import Scanner
from wt.storage.recording import SnapshotRecorder, compute_replay_delay_ms, load_snapshots
from wt.utils.log import get_logger
from wt.utils.validate import Observation

logger = get_logger(__name__)

MIN_TICK_DELAY_MS = 40
MIN_REPLAY_STEP_MS = 20

Clock = Callable[[], int]
Sleep = Callable[[float], Awaitable[Any]]


def now_ms() -> int:
    return int(time.time() * 1000)


async def scan_with_timeout(scanner: Scanner, timeout_ms: int) -> list[Observation]:
    """
    One scanner call; a timeout counts as an empty batch, not an error.

    Scanners that chain their own timed stages (`scan_budget_ms`) get at
    least that long.
    """
    budget_ms = max(timeout_ms, getattr(scanner, "scan_budget_ms", 0))
    try:
        return await asyncio.wait_for(scanner.scan(), timeout=budget_ms / 1000)
    except asyncio.TimeoutError:
        logger.warning("Scan exceeded %d ms; treating as no observations", budget_ms)
        return []


class SnapshotHub:
    """
    Fan-out of snapshots to per-subscriber queues (WebSocket clients).

    Slow subscribers lose their oldest queued snapshot, never block the loop.
    """

    def __init__(self, maxsize: int = 4) -> None:
        self.maxsize = maxsize
        self._queues: set[asyncio.Queue] = set()

    def __len__(self) -> int:
        return len(self._queues)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.maxsize)
        self._queues.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._queues.discard(queue)

    def publish(self, snapshot: Snapshot) -> None:
        for queue in self._queues:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(snapshot)


class LiveDriver:
    """
    Scan/ingest loop with an explicit stop event.

    A tick never overlaps the previous one, and stopping only ever happens at
    an await point (scan or sleep), so the stores are always fully ingested.
    """

    def __init__(
        self,
        pipeline: TopologyPipeline,
        scanner: Scanner,
        emit: Callable[[Snapshot], None],
        meta_flags: Callable[[], Mapping[str, Any]] = dict,
        clock: Clock = now_ms,
    ) -> None:
        self.pipeline = pipeline
        self.scanner = scanner
        self.emit = emit
        self.meta_flags = meta_flags
        self.clock = clock
        self.paused = False
        self.in_flight = False
        self._stop = asyncio.Event()
        self._wake = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> Snapshot | None:
        """
        One scan -> ingest (-> snapshot) step; skipped while paused or busy.
        """
        if self.paused or self.in_flight:
            return None
        self.in_flight = True
        try:
            batch = await scan_with_timeout(self.scanner, self.pipeline.config.scan_timeout_ms)
            if self.paused:
                # replay started while scanning
                return None
            now = self.clock()
            self.pipeline.ingest(batch, now)
            self.pipeline.tick_count += 1
            if self.pipeline.tick_count % max(1, self.pipeline.config.snapshot_every_ticks):
                return None
            snapshot = self.pipeline.build_snapshot(
                now, "live", self.scanner.last_source, extra_meta=self.meta_flags(),
            )
            self.emit(snapshot)
            return snapshot
        finally:
            self.in_flight = False

    async def run(self) -> None:
        logger.info("Live scanning every %d ms", self.pipeline.config.scan_interval_ms)
        while not self._stop.is_set():
            started = time.monotonic()
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Live tick failed; continuing")
            elapsed_ms = (time.monotonic() - started) * 1000
            delay_ms = max(MIN_TICK_DELAY_MS, self.pipeline.config.scan_interval_ms - elapsed_ms)
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=delay_ms / 1000)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self.run(), name="wt-live")

    def wake(self) -> None:
        """
        Cut the current sleep short, e.g. after a scan interval change.
        """
        self._wake.set()

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False
        self.wake()

    async def stop(self) -> None:
        self._stop.set()
        self._wake.set()
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("Live scanning stopped")


class ReplayDriver:
    """
    Emits recorded snapshots with their recorded spacing scaled by `speed`.

    Each emitted snapshot keeps the recorded aps/positions/edges and gets
    replay diagnostics in its meta bag.
    """

    def __init__(
        self,
        emit: Callable[[Snapshot], None],
        fallback_interval_ms: Callable[[], int],
        on_finish: Callable[[], Any] = lambda: None,
        meta_flags: Callable[[], Mapping[str, Any]] = dict,
        clock: Clock = now_ms,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.emit = emit
        self.fallback_interval_ms = fallback_interval_ms
        self.on_finish = on_finish
        self.meta_flags = meta_flags
        self.clock = clock
        self.sleep = sleep
        self._task: asyncio.Task | None = None
        self._reset()

    def _reset(self) -> None:
        self.active = False
        self.path: Path | None = None
        self.snapshots: list[Snapshot] = []
        self.index = 0
        self.speed = 1.0
        self.loop = False
        self.started_at = 0

    @property
    def total(self) -> int:
        return len(self.snapshots)

    async def start(self, path: str | Path, speed: float = 1.0, loop: bool = False) -> dict[str, Any]:
        """
        Load `path` and begin emitting. Raises ReplayError before touching
        any state when the file is unusable.
        """
        replay_path = Path(path).expanduser().resolve()
        snapshots = load_snapshots(replay_path)
        await self.stop()
        self.active = True
        self.path = replay_path
        self.snapshots = snapshots
        self.speed = speed
        self.loop = loop
        self.started_at = self.clock()
        self._task = asyncio.create_task(self._run(), name="wt-replay")
        logger.info("Replaying %d snapshots from %s at %.1fx", len(snapshots), replay_path, speed)
        return self.status()

    async def stop(self) -> dict[str, Any]:
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if self.active:
            logger.info("Replay stopped at %d/%d", self.index, self.total)
        self._reset()
        return self.status()

    def step(self) -> tuple[Snapshot, int] | None:
        """
        Emit the next snapshot and return it with the delay before the
        following one; None when a non-looping replay is exhausted.
        """
        if self.index >= self.total:
            if not self.loop:
                return None
            self.index = 0
        current = self.snapshots[self.index]
        following = self.snapshots[self.index + 1] if self.index + 1 < self.total else None
        self.index += 1

        snapshot = current.with_meta(
            t=self.clock(),
            mode="replay",
            replay=True,
            replayPath=str(self.path),
            replayIndex=self.index,
            replayTotal=self.total,
            replaySpeed=self.speed,
            **self.meta_flags(),
        )
        self.emit(snapshot)
        delay = compute_replay_delay_ms(
            current.t, following.t if following else None, self.speed, self.fallback_interval_ms(),
        )
        return snapshot, delay

    async def _run(self) -> None:
        delay_ms = 0
        while self.active:
            await self.sleep(max(MIN_REPLAY_STEP_MS, delay_ms) / 1000)
            stepped = self.step()
            if stepped is None:
                break
            delay_ms = stepped[1]
        logger.info("Replay of %s finished", self.path)
        self._task = None
        self._reset()
        self.on_finish()

    def status(self) -> dict[str, Any]:
        return {
            "active": self.active,
            "path": str(self.path) if self.path else None,
            "index": self.index,
            "total": self.total,
            "speed": self.speed,
            "loop": self.loop,
            "startedAt": self.started_at,
        }


@dataclass
class AnalyzeResult:
    snapshot: Snapshot
    summary: dict[str, Any]


async def run_analyze_session(
    scanner: Scanner,
    config: PipelineConfig,
    duration_sec: float,
    clock: Clock = now_ms,
    sleep: Sleep = asyncio.sleep,
) -> AnalyzeResult:
    """
    Scan for `duration_sec`, then build one snapshot and its summary.

    Raises
    ------
    NoObservationsError
        When not a single access point was seen during the run.
    """
    pipeline = TopologyPipeline(config)
    started = clock()
    end_at = started + duration_sec * 1000
    scan_count = 0
    logger.info("Analyzing for %ss (scan every %d ms)", duration_sec, config.scan_interval_ms)

    while clock() < end_at:
        scan_started = clock()
        batch = await scan_with_timeout(scanner, config.scan_timeout_ms)
        scan_count += 1
        pipeline.ingest(batch, clock())

        elapsed = clock() - scan_started
        remaining = end_at - clock()
        if remaining <= 0:
            break
        await sleep(max(0, min(config.scan_interval_ms - elapsed, remaining)) / 1000)

    ended = clock()
    snapshot = pipeline.build_snapshot(
        ended, "analyze", scanner.last_source, embed=False, extra_meta={"scanCount": scan_count},
    )
    wire = snapshot.to_dict()
    summary = build_analysis_summary(
        wire["aps"],
        wire["meta"],
        mode="analyze",
        duration_sec=duration_sec,
        observed_count=len(pipeline.observed_ids),
        generated_at=ended,
    )
    logger.info(
        "Analyze finished: %d scans, %d observed, %d tracked",
        scan_count, summary["apsObserved"], summary["apsTracked"],
    )
    if not summary["apsObserved"]:
        raise NoObservationsError("Analyze run completed with 0 networks observed")
    return AnalyzeResult(snapshot, summary)


class TopologyRuntime:
    """
    The single owner of a pipeline and everything that drives or reads it.
    """

    def __init__(
        self,
        scanner: Scanner,
        config: PipelineConfig | None = None,
        recorder: SnapshotRecorder | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self.pipeline = TopologyPipeline(config or PipelineConfig.live())
        self.scanner = scanner
        self.recorder = recorder or SnapshotRecorder()
        self.hub = SnapshotHub()
        self.clock = clock
        self.last_snapshot: Snapshot | None = None
        self.live = LiveDriver(self.pipeline, scanner, self._publish_live, self._meta_flags, clock)
        self.replay = ReplayDriver(
            self._publish_replay,
            fallback_interval_ms=lambda: self.pipeline.config.scan_interval_ms,
            on_finish=self.live.resume,
            meta_flags=lambda: {"recording": self.recorder.enabled},
            clock=clock,
        )

    @property
    def mode(self) -> str:
        return "replay" if self.replay.active else "live"

    def _meta_flags(self) -> dict[str, Any]:
        return {"recording": self.recorder.enabled, "replay": self.replay.active}

    def publish(self, snapshot: Snapshot, record: bool) -> Snapshot:
        """
        Hand a snapshot to every sink, keeping timestamps strictly increasing.
        """
        if self.last_snapshot is not None and snapshot.t <= self.last_snapshot.t:
            snapshot = snapshot.with_meta(t=self.last_snapshot.t + 1)
        self.last_snapshot = snapshot
        self.hub.publish(snapshot)
        if record:
            self.recorder.write(snapshot)
        return snapshot

    def _publish_live(self, snapshot: Snapshot) -> None:
        self.publish(snapshot, record=True)

    def _publish_replay(self, snapshot: Snapshot) -> None:
        self.publish(snapshot, record=False)

    def start(self) -> None:
        self.live.start()

    async def shutdown(self) -> None:
        await self.replay.stop()
        await self.live.stop()
        self.recorder.stop()
        self.pipeline.shutdown()

    def reconfigure(self, updates: Mapping[str, Any]) -> dict[str, Any]:
        previous = self.pipeline.config.scan_interval_ms
        cfg = self.pipeline.reconfigure(updates)
        if cfg.scan_interval_ms != previous:
            self.live.wake()
        return self.config_view()

    def config_view(self) -> dict[str, Any]:
        return {**self.pipeline.config.to_public(), "mode": self.mode}

    async def start_replay(self, path: str, speed: float = 1.0, loop: bool = False) -> dict[str, Any]:
        status = await self.replay.start(path, speed, loop)
        self.live.pause()
        return status

    async def stop_replay(self) -> dict[str, Any]:
        status = await self.replay.stop()
        self.live.resume()
        return status

    def health(self) -> dict[str, Any]:
        tracked = len(self.last_snapshot.aps) if self.last_snapshot else len(self.pipeline.store)
        return {
            "ok": True,
            "now": self.clock(),
            "scanPlatform": self.pipeline.scan_platform,
            "mode": self.mode,
            "connectedClients": len(self.hub),
            "trackedAps": tracked,
            "scanIntervalMs": self.pipeline.config.scan_interval_ms,
            "scanSource": self.scanner.last_source,
            "recording": self.recorder.status(),
            "replay": self.replay.status(),
        }

    def report_markdown(self) -> str | None:
        """
        Markdown report of the last snapshot; None before the first one.
        """
        if self.last_snapshot is None:
            return None
        wire = self.last_snapshot.to_dict()
        summary = build_analysis_summary(
            wire["aps"],
            wire["meta"],
            mode=wire["meta"].get("mode") or self.mode,
            observed_count=wire["meta"].get("activeApCount", len(wire["aps"])),
            generated_at=self.clock(),
        )
        return build_markdown_report(summary)
