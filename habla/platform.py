from __future__ import annotations

import os

import psutil


def threads_hint() -> int:
    """Inference thread count: physical core count clamped to 2..8."""
    n = psutil.cpu_count(logical=False) or os.cpu_count() or 2
    return min(max(int(n), 2), 8)
