"""
Observation sources for the pipeline.

- AirportScanner: macOS `airport -s`, falling back to `system_profiler`
- DemoScanner: synthetic correlated clusters, works everywhere
"""

from __future__ import annotations

import asyncio
import contextlib
import math
import random
import time
from typing import Protocol

from wt.parsers.airport import fnv1a_32, parse_airport_output, parse_system_profiler_output
from wt.utils.log import get_logger
from wt.utils.validate import Observation

logger = get_logger(__name__)

DEFAULT_AIRPORT_PATH = (
    "/System/Library/PrivateFrameworks/Apple80211.framework/Versions/Current/Resources/airport"
)
SYSTEM_PROFILER_PATH = "/usr/sbin/system_profiler"
ESTIMATE_CACHE_TTL_S = 300
BASELINE_BY_BAND = {"2.4ghz": -74, "5ghz": -68, "6ghz": -64}


class Scanner(Protocol):
    last_source: str

    async def scan(self) -> list[Observation]:
        ...


async def run_command(*argv: str, timeout_s: float) -> str:
    """
    Run a command and return its stdout; raises on timeout or non-zero exit.

    The child is killed and reaped however the wait ends, including when the
    caller is cancelled.
    """
    proc = await asyncio.create_subprocess_exec(
        *argv, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.DEVNULL,
    )
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    finally:
        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
    if proc.returncode != 0:
        raise RuntimeError(f"{argv[0]} exited with status {proc.returncode}")
    return stdout.decode("utf-8", errors="replace")


class AirportScanner:
    """
    Scan via the private `airport` tool, then `system_profiler` as a fallback.

    The fallback reports no BSSIDs and often no RSSI; missing readings are
    filled with a slowly drifting per-network estimate and flagged.
    """

    def __init__(self, airport_path: str = DEFAULT_AIRPORT_PATH, timeout_ms: int = 5000, use_profiler: bool = True) -> None:
        self.airport_path = airport_path
        self.timeout_ms = timeout_ms
        self.use_profiler = use_profiler
        self.last_source = "airport"
        self._estimates: dict[str, tuple[int, float]] = {}

    @property
    def profiler_timeout_ms(self) -> int:
        return max(self.timeout_ms * 3, 12_000)

    @property
    def scan_budget_ms(self) -> int:
        """
        Worst-case duration of one scan: airport plus the profiler fallback.
        """
        return self.timeout_ms + (self.profiler_timeout_ms if self.use_profiler else 0)

    async def scan(self) -> list[Observation]:
        networks = await self._try_airport()
        if networks:
            self.last_source = "airport"
            return networks
        if self.use_profiler:
            networks = await self._try_profiler()
            if networks:
                self.last_source = "system_profiler"
                return networks
        self.last_source = "none"
        return []

    async def _try_airport(self) -> list[Observation]:
        try:
            out = await run_command(self.airport_path, "-s", timeout_s=self.timeout_ms / 1000)
        except (OSError, RuntimeError, asyncio.TimeoutError) as exc:
            logger.debug("airport scan failed: %s", exc)
            return []
        return parse_airport_output(out)

    async def _try_profiler(self) -> list[Observation]:
        timeout_s = self.profiler_timeout_ms / 1000
        try:
            out = await run_command(SYSTEM_PROFILER_PATH, "SPAirPortDataType", "-json", timeout_s=timeout_s)
        except (OSError, RuntimeError, asyncio.TimeoutError) as exc:
            logger.debug("system_profiler scan failed: %s", exc)
            return []
        return self._fill_estimates(parse_system_profiler_output(out), time.time())

    def _fill_estimates(self, networks: list[dict], now: float) -> list[Observation]:
        observations = []
        for net in networks:
            value = net["value"]
            estimated = bool(net["estimated"])
            if value is None:
                estimated = True
                cached = self._estimates.get(net["id"])
                base = cached[0] if cached else self._baseline(net)
                phase = (fnv1a_32(net["id"]) % 360) * math.pi / 180
                drift = round(math.sin(now / 3 + phase) * 2)
                value = max(-92, min(-45, round(base + drift)))
            else:
                value = max(-95, min(-20, round(value)))
            self._estimates[net["id"]] = (value, now)
            # synthesized ids are covered by the system_profiler source weight
            observations.append(Observation.normalize(
                id=net["id"], value=value, label=net["label"], channel=net["channel"], band=net["band"],
                security=net["security"], scan_source="system_profiler", estimated=estimated,
            ))

        seen = {net["id"] for net in networks}
        for net_id, (_, updated) in list(self._estimates.items()):
            if net_id not in seen and now - updated > ESTIMATE_CACHE_TTL_S:
                del self._estimates[net_id]
        return observations

    @staticmethod
    def _baseline(net: dict) -> int:
        return BASELINE_BY_BAND.get(net["band"], -72) + (fnv1a_32(net["id"]) % 10) - 5


# (bssid, ssid, channel, base rssi, drift group, noise sigma)
DEMO_NETWORKS = [
    ("aa:bb:cc:00:00:01", "HomeNet",       "6",   -45, 1, 1.5),
    ("aa:bb:cc:00:00:02", "HomeNet_5G",    "36",  -50, 1, 1.5),
    ("aa:bb:cc:00:00:03", "HomeNet_6E",    "149", -55, 1, 1.5),
    ("dd:ee:ff:00:00:01", "Neighbor",      "1",   -65, 2, 1.0),
    ("dd:ee:ff:00:00:02", "Neighbor_5G",   "44",  -70, 2, 1.0),
    ("77:88:99:00:00:01", "Office",        "6",   -60, 3, 2.0),
    ("77:88:99:00:00:02", "Office_5G",     "48",  -58, 3, 2.0),
    ("11:22:33:00:00:01", "CoffeeShop",    "11",  -75, 0, 4.0),
    ("44:55:66:00:00:01", "FreeWiFi",      "6",   -80, 0, 3.0),
    ("55:66:77:00:00:01", "",              "3",   -72, 0, 5.0),
]


class DemoScanner:
    """
    Synthetic networks in three drifting groups plus independent stragglers.
    """

    def __init__(self, seed: int | None = None) -> None:
        self.last_source = "demo"
        self._rng = random.Random(seed)
        self._tick = 0

    async def scan(self) -> list[Observation]:
        self._tick += 1
        t = self._tick
        drift = {
            0: 0.0,
            1: math.sin(t * 0.5) * 5,
            2: math.sin(t * 0.3) * 8,
            3: math.cos(t * 0.7) * 4,
        }
        return [
            Observation.normalize(
                id=bssid,
                value=max(-95, min(-20, int(base + drift[group] + self._rng.gauss(0, sigma)))),
                label=ssid,
                channel=channel,
                security="WPA2 Personal",
                scan_source="demo",
            )
            for bssid, ssid, channel, base, group, sigma in DEMO_NETWORKS
        ]
