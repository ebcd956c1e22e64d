"""Operational counters for the tailing source."""

import json
import os
import tempfile
import time
from datetime import datetime, timezone

COUNTERS = (
    "events_received",
    "events_accepted",
    "batches_committed",
    "delivery_failures",
    "files_opened",
    "files_evicted",
    "truncations",
    "position_writes",
)


class SourceCounter:
    def __init__(self, path: str | None = None):
        self._counters: dict[str, int] = {name: 0 for name in COUNTERS}
        self._path = path
        self._start_time = time.time()

    def increment(self, name: str, amount: int = 1) -> None:
        if name not in self._counters:
            raise ValueError(f"Unknown source counter: {name!r}")
        self._counters[name] += amount

    def get(self, name: str) -> int:
        return self._counters[name]

    def get_all(self) -> dict:
        return {
            "counters": dict(self._counters),
            "uptime_seconds": round(time.time() - self._start_time, 1),
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }

    def save(self) -> None:
        """Write a snapshot to the metrics file, if one is configured."""
        if not self._path:
            return
        directory = os.path.dirname(os.path.abspath(self._path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=directory)
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(self.get_all(), f, indent=2)
            os.replace(tmp, self._path)
        except Exception:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
