"""BatchFileSink: writes each delivered batch as one JSON file."""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone

from taildir.models import Record

logger = logging.getLogger(__name__)


class BatchFileSink:
    def __init__(self, output_dir: str):
        self._output_dir = output_dir
        self._batch_counter = 0

    @property
    def batch_count(self) -> int:
        return self._batch_counter

    def deliver(self, records: list[Record]) -> str:
        """Write *records* atomically; return the batch file path. Raises OSError."""
        os.makedirs(self._output_dir, exist_ok=True)
        now = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        name = f"batch_{now}_{self._batch_counter + 1:06d}.json"
        dest = os.path.join(self._output_dir, name)

        fd, tmp = tempfile.mkstemp(dir=self._output_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump([r.to_dict() for r in records], f, indent=2)
                f.write("\n")
            os.replace(tmp, dest)
        except Exception:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        self._batch_counter += 1
        logger.debug("Wrote %d record(s) to %s", len(records), name)
        return dest
