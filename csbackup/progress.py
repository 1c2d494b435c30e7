"""
progress.py
Progress monitor for a batch of transfers.

The rate/ETA/stall math is kept in small pure functions; ProgressMonitor only
samples `measure()` every interval and feeds them. Monitoring is advisory:
job completion is still decided by joining the batch.
"""

from __future__ import annotations
import logging, sys, time
from collections import deque
from typing import Callable, Deque, Iterable, List, Optional
from tqdm import tqdm
from .types import ProgressSample
from .util import format_duration, human_bytes
from .errors import CSBackupError

log = logging.getLogger(__name__)

COMPLETE = "complete"
DONE = "done"
STALLED = "stalled"


def percent_done(observed: int, expected: int) -> int:
    if expected <= 0:
        return 100
    return max(0, min(100, (observed * 100) // expected))


def smoothed_rate(deltas: Iterable[int]) -> float:
    """Average bytes per sampling interval over the window."""
    values = list(deltas)
    if not values:
        return 0.0
    return sum(values) / len(values)


def eta_seconds(remaining: int, avg_delta: float, interval: float) -> Optional[float]:
    if avg_delta <= 0 or interval <= 0:
        return None
    return max(0, remaining) / (avg_delta / interval)


def deltas_of(samples: List[ProgressSample]) -> List[int]:
    return [b.observed_bytes - a.observed_bytes for a, b in zip(samples, samples[1:])]


class StallTracker:
    def __init__(self, limit: int = 5):
        self.limit = limit
        self.count = 0

    def update(self, delta: int) -> bool:
        """Record one interval; True once `limit` consecutive intervals made no progress."""
        if delta <= 0:
            self.count += 1
        else:
            self.count = 0
        return self.count >= self.limit


class ProgressMonitor:
    def __init__(
        self,
        expected_total: int,
        measure: Callable[[], int],
        is_done: Callable[[], bool] = lambda: False,
        interval: float = 5.0,
        window: int = 5,
        stall_limit: int = 5,
        label: str = "transfer",
        sleep=time.sleep,
        clock=time.monotonic,
    ):
        self.expected_total = expected_total
        self.measure = measure
        self.is_done = is_done
        self.interval = interval
        self.label = label
        self.samples: List[ProgressSample] = []
        self.window: Deque[int] = deque(maxlen=window)
        self.stalls = StallTracker(stall_limit)
        self.percent = 0
        self.eta: Optional[float] = None
        self._sleep = sleep
        self._clock = clock

    def _sample(self) -> ProgressSample:
        try:
            observed = self.measure()
        except CSBackupError as e:
            log.debug("progress sample for %s unavailable: %s", self.label, e)
            observed = self.samples[-1].observed_bytes if self.samples else 0
        s = ProgressSample(self._clock(), observed)
        self.samples.append(s)
        return s

    def observe(self, sample: ProgressSample) -> bool:
        """Fold one new sample into rate/percent/ETA; True when stalled."""
        delta = (deltas_of(self.samples[-2:]) or [0])[-1]
        self.window.append(delta)
        self.percent = percent_done(sample.observed_bytes, self.expected_total)
        self.eta = eta_seconds(
            self.expected_total - sample.observed_bytes, smoothed_rate(self.window), self.interval
        )
        return self.stalls.update(delta)

    def run(self) -> str:
        if self.expected_total <= 0:
            log.warning("%s: expected size is %d bytes, treating as complete", self.label, self.expected_total)
            self.percent = 100
            return COMPLETE

        bar = tqdm(
            total=self.expected_total,
            desc=self.label,
            unit="B",
            unit_scale=True,
            dynamic_ncols=True,
            colour="GREEN",
            disable=not sys.stderr.isatty(),
        )
        try:
            if self.is_done():
                return DONE
            self._sample()
            while True:
                self._sleep(self.interval)
                if self.is_done():
                    return DONE
                sample = self._sample()
                stalled = self.observe(sample)
                bar.n = min(sample.observed_bytes, self.expected_total)
                eta = format_duration(self.eta) if self.eta is not None else "--:--:--"
                bar.set_postfix_str(f"eta {eta}")
                log.debug(
                    "%s: %d%% (%s of %s), eta %s",
                    self.label,
                    self.percent,
                    human_bytes(sample.observed_bytes),
                    human_bytes(self.expected_total),
                    eta,
                )
                if stalled:
                    log.warning(
                        "%s: no progress for %d samples, stopped monitoring",
                        self.label,
                        self.stalls.count,
                    )
                    return STALLED
                if self.percent >= 100:
                    return COMPLETE
        finally:
            bar.close()
