import asyncio
import json

from wt.utils.validate import Observation

# +1/-1 patterns with zero correlation over any multiple of 4 samples
ALTERNATING = [1, -1, 1, -1]
PAIRED = [1, 1, -1, -1]


def pattern(base: float, shape: list[int], n: int, amplitude: float = 5.0) -> list[float]:
    return [base + amplitude * shape[i % len(shape)] for i in range(n)]


class FakeScanner:
    """
    Returns a fixed list of batches, then keeps returning the last one.
    """

    def __init__(self, batches, source: str = "fake"):
        self.batches = list(batches)
        self.last_source = source
        self.calls = 0

    async def scan(self):
        self.calls += 1
        if not self.batches:
            return []
        index = min(self.calls - 1, len(self.batches) - 1)
        return self.batches[index]


class FakeClock:
    """
    Epoch-ms clock that only moves when `sleep` is awaited.
    """

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> int:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += int(round(seconds * 1000))


class HangingScanner:
    last_source = "hang"

    async def scan(self):
        await asyncio.Event().wait()


def three_ap_batches(n):
    """
    Alpha and Bravo move in lock-step; Charlie follows an uncorrelated pattern.
    """
    a = pattern(-55, ALTERNATING, n)
    c = pattern(-70, PAIRED, n)
    return [
        [
            Observation.normalize(id="aa:aa:aa:aa:aa:01", value=a[i], label="Alpha", channel="6"),
            Observation.normalize(id="bb:bb:bb:bb:bb:02", value=a[i], label="Bravo", channel="36"),
            Observation.normalize(id="cc:cc:cc:cc:cc:03", value=c[i], label="Charlie", channel="11"),
        ]
        for i in range(n)
    ]


def write_recording(path, times):
    lines = [
        json.dumps({
            "type": "snapshot",
            "t": t,
            "aps": [{"id": "aa:aa:aa:aa:aa:01", "latestValue": -50 - i}],
            "positions": {"aa:aa:aa:aa:aa:01": {"x": float(i), "y": 0.0, "z": 0.0}},
            "edges": [],
            "meta": {"mode": "live", "replay": False},
        })
        for i, t in enumerate(times)
    ]
    path.write_text("\n".join(lines) + "\n")
    return path
