"""FileSetReconciler: keeps the registry in step with what is on disk.

Identity is inode first and path prefix second. A tracked file keeps its
offset when it is renamed to a path that extends its previous path, which is
how date-suffix rotation schemes rename the active file. The prefix check can
be fooled by an unrelated file that reuses an evicted inode under a longer
path; inode equality is checked first and that race is accepted as-is.
"""

import logging
import os
import time

from taildir.errors import TailFileOpenError
from taildir.matcher import TaildirMatcher
from taildir.metrics import SourceCounter
from taildir.registry import TailFileRegistry
from taildir.tail_file import TailFile

logger = logging.getLogger(__name__)


class FileSetReconciler:
    def __init__(self, matchers: list[TaildirMatcher],
                 header_table: dict[str, dict[str, str]],
                 registry: TailFileRegistry,
                 counter: SourceCounter | None = None):
        self._matchers = matchers
        self._header_table = header_table
        self._registry = registry
        self._counter = counter
        self.update_time = 0.0

    def update_tail_files(self, skip_to_end: bool = False) -> set[int]:
        """Run one pass over every file group and return the inodes seen."""
        self.update_time = time.time()
        used: set[int] = set()
        for matcher in self._matchers:
            headers = self._header_table.get(matcher.file_group, {})
            for path in matcher.get_matching_files():
                try:
                    st = os.stat(path)
                except OSError as e:
                    logger.warning("File disappeared during scan: %s: %s", path, e)
                    continue
                try:
                    self._reconcile_file(path, st, headers, skip_to_end)
                except TailFileOpenError as e:
                    if st.st_ino not in self._registry:
                        logger.error("%s (inode: %d), leaving it untracked", e, st.st_ino)
                        continue
                    # Keep the closed entry and its committed pos; the next pass retries.
                    logger.error("%s (inode: %d), keeping pos %d for retry",
                                 e, st.st_ino, self._registry.get(st.st_ino).pos)
                used.add(st.st_ino)

        evicted = self._registry.evict_unused(used)
        if evicted and self._counter is not None:
            self._counter.increment("files_evicted", len(evicted))
        return used

    def _reconcile_file(self, path: str, st: os.stat_result, headers: dict[str, str],
                        skip_to_end: bool) -> None:
        inode = st.st_ino
        tf = self._registry.get(inode)
        if tf is None or not path.startswith(tf.path):
            start_pos = st.st_size if skip_to_end else 0
            self._registry.put(self.open_file(path, headers, inode, start_pos))
            return

        tf.path = path
        updated = tf.last_updated < st.st_mtime
        if updated:
            if tf.handle is None:
                tf = self.open_file(path, headers, inode, tf.pos)
                self._registry.put(tf)
            if st.st_size < tf.pos:
                logger.info("Pos %d is larger than file size! Restarting from pos 0, "
                            "file: %s, inode: %d", tf.pos, path, inode)
                tf.update_pos(path, inode, 0)
                if self._counter is not None:
                    self._counter.increment("truncations")
        tf.need_tail = updated

    def open_file(self, path: str, headers: dict[str, str], inode: int, pos: int) -> TailFile:
        logger.info("Opening file: %s, inode: %d, pos: %d", path, inode, pos)
        try:
            tail_file = TailFile(path, headers, inode, pos)
        except OSError as e:
            raise TailFileOpenError(path, e) from e
        if self._counter is not None:
            self._counter.increment("files_opened")
        return tail_file
