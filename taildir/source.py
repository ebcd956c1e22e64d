"""TaildirSource: the poll loop that drives reconciliation, reads and commits.

All registry access happens on the thread calling ``run``/``process``. The
optional watchdog observer thread only sets a wake-up event so the loop does
not sit out the full poll interval after a file changes.
"""

import logging
import threading
import time

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from taildir import checkpoint
from taildir.config import Config
from taildir.errors import TaildirError
from taildir.metrics import SourceCounter
from taildir.reader import ReliableTaildirEventReader
from taildir.sink import BatchFileSink
from taildir.tail_file import TailFile

logger = logging.getLogger(__name__)


class _WakeHandler(FileSystemEventHandler):
    def __init__(self, wake: threading.Event):
        super().__init__()
        self._wake = wake

    def on_any_event(self, event):
        if not event.is_directory:
            self._wake.set()


class TaildirSource:
    def __init__(self, config: Config, sink=None, counter: SourceCounter | None = None):
        self._config = config
        self._sink = sink if sink is not None else BatchFileSink(config.output_dir)
        self._counter = counter if counter is not None else SourceCounter(config.metrics_file)
        self._reader: ReliableTaildirEventReader | None = None
        self._existing_inodes: set[int] = set()
        # Files left with unread data by a failed delivery or the batch limit.
        self._backlog: set[int] = set()
        self._retry_interval = config.retry_interval
        self._last_position_write = 0.0
        self._shutdown = threading.Event()
        self._wake = threading.Event()
        self._observer = None

    @property
    def reader(self) -> ReliableTaildirEventReader | None:
        return self._reader

    @property
    def counter(self) -> SourceCounter:
        return self._counter

    def start(self) -> None:
        logger.info("Starting taildir source: %d file group(s), position file %s",
                    len(self._config.file_groups), self._config.position_file)
        for group in self._config.groups():
            logger.info("File group %s: %s, headers: %s", group.name, group.pattern, group.headers)
        self._reader = ReliableTaildirEventReader.from_config(self._config, self._counter)
        self._existing_inodes = self._reader.tail_files.inodes()
        self._last_position_write = time.time()

        if self._config.watch:
            self._observer = Observer()
            handler = _WakeHandler(self._wake)
            for directory in sorted({m.parent_dir for m in self._reader.matchers}):
                self._observer.schedule(handler, directory, recursive=False)
                logger.info("Watching directory: %s", directory)
            self._observer.start()

    def process(self) -> int:
        """One pass: reconcile, then drain every file that needs tailing."""
        self._existing_inodes = self._reader.update_tail_files()
        delivered = 0
        for inode in sorted(self._existing_inodes):
            if self._shutdown.is_set():
                break
            tail_file = self._reader.tail_files.get(inode)
            if tail_file is None or not (tail_file.need_tail or inode in self._backlog):
                continue
            count, has_more = self._tail_file_process(tail_file)
            delivered += count
            if has_more:
                self._backlog.add(inode)
            else:
                self._backlog.discard(inode)
        self._backlog &= self._existing_inodes
        return delivered

    def _tail_file_process(self, tail_file: TailFile) -> tuple[int, bool]:
        """Read, deliver and commit batches; return (delivered, has_more)."""
        delivered = 0
        batch_count = 0
        batch_size = self._config.batch_size
        while not self._shutdown.is_set():
            self._reader.select_current(tail_file)
            events = self._reader.read_events(batch_size, self._config.backoff_without_nl)
            if not events:
                break
            self._counter.increment("events_received", len(events))
            try:
                self._sink.deliver(events)
            except OSError as e:
                self._counter.increment("delivery_failures")
                logger.warning("Unable to deliver %d event(s) from %s (inode: %d), "
                               "retrying in %.1fs: %s", len(events), tail_file.path,
                               tail_file.inode, self._retry_interval, e)
                self._shutdown.wait(self._retry_interval)
                self._retry_interval = min(self._retry_interval * 2,
                                           self._config.max_retry_interval)
                return delivered, True

            self._retry_interval = self._config.retry_interval
            self._reader.commit()
            self._counter.increment("events_accepted", len(events))
            self._counter.increment("batches_committed")
            delivered += len(events)
            batch_count += 1
            if len(events) < batch_size:
                break
            if self._config.max_batch_count and batch_count >= self._config.max_batch_count:
                logger.debug("Reached %d batches for %s, moving on", batch_count, tail_file.path)
                return delivered, True
        return delivered, False

    def close_idle_files(self, now: float | None = None) -> list[int]:
        """Close handles of files untouched for ``idle_timeout`` seconds."""
        now = time.time() if now is None else now
        closed = []
        for tail_file in self._reader.tail_files:
            if (tail_file.handle is not None
                    and tail_file.inode not in self._backlog
                    and tail_file.last_updated + self._config.idle_timeout < now):
                logger.info("Closing idle file: %s, inode: %d, pos: %d",
                            tail_file.path, tail_file.inode, tail_file.pos)
                tail_file.close()
                closed.append(tail_file.inode)
        return closed

    def write_position(self) -> None:
        checkpoint.write_position_file(
            self._config.position_file, self._reader.tail_files, self._existing_inodes,
        )
        self._counter.increment("position_writes")
        self._last_position_write = time.time()

    def maybe_write_position(self, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        if now - self._last_position_write < self._config.write_pos_interval:
            return False
        try:
            self.write_position()
        except OSError as e:
            logger.error("Failed writing position file %s: %s", self._config.position_file, e)
            return False
        return True

    def run(self, shutdown: threading.Event) -> None:
        """Poll until *shutdown* is set, then stop."""
        if self._reader is None:
            self.start()
        try:
            while not shutdown.is_set() and not self._shutdown.is_set():
                try:
                    delivered = self.process()
                except (TaildirError, OSError):
                    logger.exception("Unable to tail files")
                    delivered = 0
                self.close_idle_files()
                self.maybe_write_position()
                if delivered == 0:
                    self._wake.wait(self._config.poll_interval)
                    self._wake.clear()
        finally:
            self.stop()

    def stop(self) -> None:
        if self._shutdown.is_set():
            return
        self._shutdown.set()
        self._wake.set()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
        if self._reader is not None:
            self._reader.close()
            try:
                self.write_position()
            except OSError as e:
                logger.error("Failed writing position file %s: %s", self._config.position_file, e)
        self._counter.save()
        logger.info("Taildir source stopped: %s", self._counter.get_all()["counters"])
