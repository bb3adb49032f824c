"""Time helpers used by the logger and the job runners."""

from __future__ import annotations

import datetime
import time


def time_s() -> float:
    """Return the current wall-clock time in seconds as a float."""

    return time.time()


def time_ms() -> float:
    """Return a monotonic timestamp in milliseconds, for measuring durations."""

    return time.monotonic() * 1e3


def time_iso8601() -> str:
    """Return the current UTC time formatted as ``YYYY-MM-DDTHH:MM:SS.fffZ``."""

    dt = datetime.datetime.now(datetime.timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
