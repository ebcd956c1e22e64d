"""TaildirMatcher: lists the files of one file group.

A file group pattern is an absolute path whose directory part is taken
literally and whose last component is a regular expression matched against
file names in that directory, e.g. ``/var/log/app/.*\\.log``.
"""

import logging
import os
import re
import time

from taildir.errors import ConfigError

logger = logging.getLogger(__name__)

# Directory mtimes younger than this may still change within the same tick.
TRUST_DIR_MTIME_AFTER = 1.0


class TaildirMatcher:
    def __init__(self, file_group: str, file_pattern: str, cache_pattern_matching: bool = True):
        self.file_group = file_group
        self.file_pattern = file_pattern
        self.cache_pattern_matching = cache_pattern_matching
        self.parent_dir = os.path.dirname(os.path.abspath(file_pattern))
        self._regex = re.compile(os.path.basename(file_pattern))

        if not os.path.isdir(self.parent_dir):
            raise ConfigError(
                f"Directory does not exist for file group {file_group!r}: {self.parent_dir}"
            )

        self._last_seen_dir_mtime = -1.0
        self._last_matched_files: list[str] = []

    def __repr__(self) -> str:
        return (f"TaildirMatcher(file_group={self.file_group!r}, "
                f"file_pattern={self.file_pattern!r}, cached={self.cache_pattern_matching})")

    def get_matching_files(self) -> list[str]:
        """Return matching regular files, oldest modification first."""
        if not self.cache_pattern_matching:
            return self._sort_by_mtime(self._scan())

        try:
            dir_mtime = os.stat(self.parent_dir).st_mtime
        except OSError as e:
            logger.error("Cannot stat directory %s for file group %s: %s",
                         self.parent_dir, self.file_group, e)
            return []

        if self._last_seen_dir_mtime < dir_mtime:
            logger.debug("Rescanning %s for file group %s", self.parent_dir, self.file_group)
            self._last_matched_files = self._sort_by_mtime(self._scan())
            # Only remember mtimes old enough to be final; a fresh one forces a rescan.
            if time.time() - dir_mtime > TRUST_DIR_MTIME_AFTER:
                self._last_seen_dir_mtime = dir_mtime
        return list(self._last_matched_files)

    def _scan(self) -> list[str]:
        try:
            names = os.listdir(self.parent_dir)
        except OSError as e:
            logger.error("Cannot list directory %s for file group %s: %s",
                         self.parent_dir, self.file_group, e)
            return []

        matched = []
        for name in names:
            if not self._regex.fullmatch(name):
                continue
            path = os.path.join(self.parent_dir, name)
            if os.path.isfile(path):
                matched.append(path)
        return matched

    @staticmethod
    def _sort_by_mtime(paths: list[str]) -> list[str]:
        def _mtime(path: str) -> float:
            try:
                return os.stat(path).st_mtime
            except OSError:
                return 0.0

        return sorted(paths, key=lambda p: (_mtime(p), p))
