"""TailFileRegistry: the in-memory table of tracked files, keyed by inode."""

import logging
from typing import Iterator

from taildir.models import CheckpointRecord
from taildir.tail_file import TailFile

logger = logging.getLogger(__name__)


class TailFileRegistry:
    def __init__(self):
        self._files: dict[int, TailFile] = {}

    def __len__(self) -> int:
        return len(self._files)

    def __contains__(self, inode: int) -> bool:
        return inode in self._files

    def __iter__(self) -> Iterator[TailFile]:
        return iter(list(self._files.values()))

    def get(self, inode: int) -> TailFile | None:
        return self._files.get(inode)

    def inodes(self) -> set[int]:
        return set(self._files)

    def put(self, tail_file: TailFile) -> None:
        """Track *tail_file*, closing any different entry it replaces."""
        previous = self._files.get(tail_file.inode)
        if previous is not None and previous is not tail_file:
            previous.close()
        self._files[tail_file.inode] = tail_file

    def evict(self, inode: int) -> TailFile | None:
        tail_file = self._files.pop(inode, None)
        if tail_file is not None:
            tail_file.close()
            logger.info("Evicted file: %s, inode: %d, pos: %d",
                        tail_file.path, inode, tail_file.pos)
        return tail_file

    def evict_unused(self, used: set[int]) -> list[int]:
        """Evict every tracked inode not in *used*; return the evicted inodes."""
        stale = [inode for inode in self._files if inode not in used]
        for inode in stale:
            self.evict(inode)
        return stale

    def snapshot(self, inodes: set[int] | None = None) -> list[CheckpointRecord]:
        """Checkpoint records for all tracked files, or only for *inodes*."""
        return [
            CheckpointRecord(inode=tf.inode, pos=tf.pos, file=tf.path)
            for inode, tf in self._files.items()
            if inodes is None or inode in inodes
        ]

    def close_all(self) -> None:
        for tail_file in self._files.values():
            tail_file.close()
