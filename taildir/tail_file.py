"""TailFile: one tracked log file, its open handle and its read/commit offsets.

Two offsets are kept per file:

- ``pos`` is the last committed offset, the value written to the position file.
- ``line_read_pos`` is the offset of the next unread byte. It runs ahead of
  ``pos`` while a batch is outstanding and is copied into ``pos`` on commit.
"""

import logging
import os
import time

from taildir.models import BYTE_OFFSET_HEADER_KEY, Record

logger = logging.getLogger(__name__)

READ_BUFFER_SIZE = 8192


class TailFile:
    def __init__(self, path: str, headers: dict[str, str] | None, inode: int, pos: int):
        self._handle = open(path, "rb")
        if pos > 0:
            self._handle.seek(pos)
        self.path = path
        self.inode = inode
        self.pos = pos
        self.line_read_pos = pos
        self.last_updated = 0.0
        self.need_tail = True
        self.headers = dict(headers or {})
        self._buffer = b""

    def __repr__(self) -> str:
        return f"TailFile(path={self.path!r}, inode={self.inode}, pos={self.pos})"

    @property
    def handle(self):
        """The open binary handle, or None once closed."""
        return self._handle

    @property
    def file_name(self) -> str:
        return os.path.basename(self.path)

    def matches(self, path: str, inode: int) -> bool:
        """True when *path*/*inode* identify this file.

        The live path may extend the recorded one: rotation schemes that append
        a suffix (``app.log`` -> ``app.log.2024-01-01``) keep the inode.
        """
        return self.inode == inode and (self.path == path or self.path.startswith(path))

    def update_pos(self, path: str, inode: int, pos: int) -> bool:
        """Move both offsets to *pos* if *path*/*inode* identify this file."""
        if not self.matches(path, inode):
            return False
        self.pos = pos
        self.update_file_pos(pos)
        logger.info("Updated position, file: %s, inode: %d, pos: %d", self.path, inode, pos)
        return True

    def update_file_pos(self, pos: int) -> None:
        """Rewind or advance the read cursor to *pos*, dropping buffered bytes."""
        if self._handle is not None:
            self._handle.seek(pos)
        self.line_read_pos = pos
        self._buffer = b""

    def read_events(self, num_events: int, backoff_without_nl: bool = False,
                    add_byte_offset: bool = False) -> list[Record]:
        events: list[Record] = []
        for _ in range(num_events):
            event = self._read_event(backoff_without_nl, add_byte_offset)
            if event is None:
                break
            events.append(event)
        return events

    def _read_event(self, backoff_without_nl: bool, add_byte_offset: bool) -> Record | None:
        start = self.line_read_pos
        result = self._read_line()
        if result is None:
            return None
        line, terminated = result
        if backoff_without_nl and not terminated:
            logger.info("Backing off in file without newline: %s, inode: %d, pos: %d",
                        self.path, self.inode, self._handle.tell())
            self.update_file_pos(start)
            return None
        record = Record(body=line)
        if add_byte_offset:
            record.headers[BYTE_OFFSET_HEADER_KEY] = str(start)
        return record

    def _read_line(self) -> tuple[bytes, bool] | None:
        """Return ``(line, terminated)`` for the next line, or None at EOF."""
        if self._handle is None:
            return None
        while True:
            idx = self._buffer.find(b"\n")
            if idx != -1:
                line = self._buffer[:idx]
                self._buffer = self._buffer[idx + 1:]
                self.line_read_pos += idx + 1
                if line.endswith(b"\r"):
                    line = line[:-1]
                return line, True

            chunk = self._handle.read(READ_BUFFER_SIZE)
            if not chunk:
                if not self._buffer:
                    return None
                line = self._buffer
                self._buffer = b""
                self.line_read_pos += len(line)
                return line, False
            self._buffer += chunk

    def close(self) -> None:
        if self._handle is None:
            return
        try:
            self._handle.close()
        except OSError as e:
            logger.error("Failed closing file: %s, inode: %d: %s", self.path, self.inode, e)
        self._handle = None
        self._buffer = b""
        self.last_updated = time.time()
