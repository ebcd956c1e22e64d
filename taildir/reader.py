"""ReliableTaildirEventReader: two-phase read/commit over the tracked files.

A batch returned by ``read_events`` stays outstanding until ``commit``. Reading
again without committing rolls the file back to its committed offset first,
so an undelivered batch is re-read instead of skipped. At most one batch is
ever duplicated.

    IDLE / COMMITTED --read--> BATCH_PENDING --commit--> COMMITTED
    BATCH_PENDING --read--> (rewind to pos) --> BATCH_PENDING
"""

import enum
import logging

from taildir import checkpoint
from taildir.config import Config
from taildir.errors import ConfigError, InvalidReaderStateError
from taildir.matcher import TaildirMatcher
from taildir.metrics import SourceCounter
from taildir.models import BASENAME_HEADER_KEY, DEFAULT_FILENAME_HEADER_KEY, Record
from taildir.reconciler import FileSetReconciler
from taildir.registry import TailFileRegistry
from taildir.tail_file import TailFile

logger = logging.getLogger(__name__)


class ReaderState(enum.Enum):
    IDLE = "idle"
    BATCH_PENDING = "batch_pending"
    COMMITTED = "committed"


class ReliableTaildirEventReader:
    def __init__(
        self,
        file_groups: dict[str, str],
        header_table: dict[str, dict[str, str]] | None,
        position_file: str,
        skip_to_end: bool = False,
        add_byte_offset: bool = False,
        cache_pattern_matching: bool = True,
        annotate_file_name: bool = False,
        file_name_header: str = DEFAULT_FILENAME_HEADER_KEY,
        counter: SourceCounter | None = None,
    ):
        if not file_groups:
            raise ConfigError("No file groups configured")
        if not position_file:
            raise ConfigError("Position file path is required")

        self._matchers = [
            TaildirMatcher(group, pattern, cache_pattern_matching)
            for group, pattern in file_groups.items()
        ]
        logger.info("Matchers: %s", self._matchers)
        logger.info("Header table: %s", header_table)

        self._add_byte_offset = add_byte_offset
        self._annotate_file_name = annotate_file_name
        self._file_name_header = file_name_header
        self._registry = TailFileRegistry()
        self._reconciler = FileSetReconciler(
            self._matchers, header_table or {}, self._registry, counter,
        )
        self._current_file: TailFile | None = None
        self._pending_file: TailFile | None = None
        self._state = ReaderState.IDLE

        self.update_tail_files(skip_to_end)
        logger.info("Updating position from position file: %s", position_file)
        self.load_position_file(position_file)

    @classmethod
    def from_config(cls, config: Config, counter: SourceCounter | None = None):
        return cls(
            config.file_groups,
            config.headers,
            config.position_file,
            skip_to_end=config.skip_to_end,
            add_byte_offset=config.byte_offset_header,
            cache_pattern_matching=config.cache_pattern_matching,
            annotate_file_name=config.file_header,
            file_name_header=config.file_header_key,
            counter=counter,
        )

    @property
    def tail_files(self) -> TailFileRegistry:
        return self._registry

    @property
    def matchers(self) -> list[TaildirMatcher]:
        return list(self._matchers)

    @property
    def state(self) -> ReaderState:
        return self._state

    @property
    def update_time(self) -> float:
        """Start time of the latest reconciliation pass."""
        return self._reconciler.update_time

    @property
    def current_file(self) -> TailFile | None:
        return self._current_file

    def select_current(self, tail_file: TailFile) -> None:
        self._current_file = tail_file

    def update_tail_files(self, skip_to_end: bool = False) -> set[int]:
        return self._reconciler.update_tail_files(skip_to_end)

    def load_position_file(self, file_path: str) -> int:
        return checkpoint.load_position_file(file_path, self._registry)

    def read_event(self) -> Record | None:
        events = self.read_events(1)
        return events[0] if events else None

    def read_events(self, num_events: int, backoff_without_nl: bool = False) -> list[Record]:
        tail_file = self._current_file
        if tail_file is None:
            raise InvalidReaderStateError("No current file selected for reading")

        if self._state is ReaderState.BATCH_PENDING and self._pending_file is not None:
            pending = self._pending_file
            logger.info("Last read was never committed - resetting position, "
                        "file: %s, inode: %d, pos: %d", pending.path, pending.inode, pending.pos)
            pending.update_file_pos(pending.pos)

        events = tail_file.read_events(num_events, backoff_without_nl, self._add_byte_offset)
        if not events:
            return events

        if self._annotate_file_name or tail_file.headers:
            for event in events:
                event.headers.update(tail_file.headers)
                if self._annotate_file_name:
                    event.headers[self._file_name_header] = tail_file.path
                    event.headers[BASENAME_HEADER_KEY] = tail_file.file_name

        self._pending_file = tail_file
        self._state = ReaderState.BATCH_PENDING
        return events

    def commit(self) -> None:
        """Advance the committed offset past the outstanding batch."""
        if self._state is not ReaderState.BATCH_PENDING or self._current_file is None:
            return
        tail_file = self._pending_file
        tail_file.pos = tail_file.line_read_pos
        tail_file.last_updated = self.update_time
        self._pending_file = None
        self._state = ReaderState.COMMITTED

    def close(self) -> None:
        self._registry.close_all()
