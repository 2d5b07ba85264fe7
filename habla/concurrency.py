from __future__ import annotations

import contextlib
import threading
from typing import Iterator

from habla.errors import BusyError


class ExclusiveGate:
    """
    Serializes access to a single mutable resource.

    One caller holds the resource while up to `queue_depth` more wait their
    turn; anyone beyond that is turned away with BusyError instead of piling
    up behind a long-running holder.
    """

    def __init__(self, *, queue_depth: int = 2, name: str = "resource") -> None:
        if queue_depth < 0:
            raise ValueError("queue_depth must be >= 0")
        self.queue_depth = int(queue_depth)
        self.name = name
        self._lock = threading.Lock()
        self._admit = threading.Lock()
        self._admitted = 0

    @property
    def admitted(self) -> int:
        with self._admit:
            return self._admitted

    @contextlib.contextmanager
    def hold(self) -> Iterator[None]:
        with self._admit:
            if self._admitted > self.queue_depth:
                raise BusyError(f"{self.name} is busy ({self._admitted} callers admitted)")
            self._admitted += 1
        try:
            with self._lock:
                yield
        finally:
            with self._admit:
                self._admitted -= 1
