from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Tuple

import psutil

from habla.contracts import ResourceSample, TelemetrySnapshot
from habla.telemetry.ring import RingBuffer

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_S = 1.0
DEFAULT_CAPACITY = 300  # 5 minutes at 1 Hz
DEGRADED_AFTER_FAILURES = 3

Probe = Callable[[], Tuple[float, int]]


class ProcessProbe:
    """CPU percent (process relative, can exceed 100 on multi-core) and RSS bytes of this process."""

    def __init__(self, pid: Optional[int] = None) -> None:
        self._process = psutil.Process(pid)
        # the first cpu_percent() call only primes the counter and reports 0.0
        self._process.cpu_percent(interval=None)

    def __call__(self) -> Tuple[float, int]:
        with self._process.oneshot():
            cpu = self._process.cpu_percent(interval=None)
            rss = self._process.memory_info().rss
        return float(cpu), int(rss)


def host_memory_total_bytes() -> int:
    return int(psutil.virtual_memory().total)


class TelemetrySampler:
    """
    Background 1 Hz sampler of this process's CPU and memory.

    Keeps a bounded history (ring buffer) plus lifetime peaks. Readers get a
    copied snapshot; the lock is only held while state is copied or updated,
    never while the host is being measured.
    """

    def __init__(
        self,
        *,
        interval_s: float = DEFAULT_INTERVAL_S,
        capacity: int = DEFAULT_CAPACITY,
        probe: Optional[Probe] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        self.interval_s = float(interval_s)
        self._probe = probe
        self._clock = clock
        self._lock = threading.Lock()
        self._history: RingBuffer[ResourceSample] = RingBuffer(capacity)
        self._peak_cpu: Optional[float] = None
        self._peak_mem: Optional[int] = None
        self._consecutive_failures = 0
        self._degraded = False
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def capacity(self) -> int:
        return self._history.capacity

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _measure(self) -> Tuple[float, int]:
        if self._probe is None:
            self._probe = ProcessProbe()
        return self._probe()

    def sample(self) -> Optional[ResourceSample]:
        """One tick. Returns None when the host would not report metrics."""
        try:
            cpu, mem = self._measure()
        except (psutil.Error, OSError, ValueError) as e:
            self._on_failure(e)
            return None

        sample = ResourceSample(timestamp_ms=int(self._clock() * 1000), cpu_percent=float(cpu), memory_bytes=int(mem))
        with self._lock:
            self._history.append(sample)
            if self._peak_cpu is None or sample.cpu_percent > self._peak_cpu:
                self._peak_cpu = sample.cpu_percent
            if self._peak_mem is None or sample.memory_bytes > self._peak_mem:
                self._peak_mem = sample.memory_bytes
            recovered = self._degraded
            self._consecutive_failures = 0
            self._degraded = False
        if recovered:
            logger.info("telemetry_recovered")
        return sample

    def _on_failure(self, err: Exception) -> None:
        with self._lock:
            self._consecutive_failures += 1
            failures = self._consecutive_failures
            newly_degraded = failures >= DEGRADED_AFTER_FAILURES and not self._degraded
            if newly_degraded:
                self._degraded = True
        logger.debug("telemetry_tick_skipped", extra={"failures": failures, "error": str(err)})
        if newly_degraded:
            logger.warning("telemetry_degraded", extra={"failures": failures, "error": str(err)})

    def snapshot(self) -> TelemetrySnapshot:
        with self._lock:
            # after a reset, peaks read as the current sample until the next tick re-seeds them
            current = self._history.newest()
            peak_cpu = self._peak_cpu if self._peak_cpu is not None else (current.cpu_percent if current else 0.0)
            peak_mem = self._peak_mem if self._peak_mem is not None else (current.memory_bytes if current else 0)
            return TelemetrySnapshot(
                samples=tuple(self._history),
                peak_cpu_percent=peak_cpu,
                peak_memory_bytes=peak_mem,
                capacity=self._history.capacity,
                degraded=self._degraded,
                consecutive_failures=self._consecutive_failures,
            )

    def reset_peaks(self) -> None:
        """
        Clear both peaks; the next successful tick seeds them with its own values.
        Until then snapshot() reports the current sample as the peak, never zero.
        Only the peak fields are touched.
        """
        with self._lock:
            self._peak_cpu = None
            self._peak_mem = None
        logger.info("telemetry_peaks_reset")

    def _loop(self) -> None:
        next_tick = time.monotonic()
        while not self._stop.is_set():
            try:
                self.sample()
            except Exception:
                # the loop outlives any single tick
                logger.exception("telemetry_tick_crashed")
                self._on_failure(RuntimeError("tick crashed"))
            next_tick += self.interval_s
            now = time.monotonic()
            if next_tick < now:
                # fell behind (suspend, slow host): skip missed ticks
                next_tick = now + self.interval_s
            self._stop.wait(max(0.0, next_tick - now))

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="habla-telemetry", daemon=True)
        self._thread.start()
        logger.info("telemetry_started", extra={"interval_s": self.interval_s, "capacity": self.capacity})

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout=timeout)
            logger.info("telemetry_stopped")
