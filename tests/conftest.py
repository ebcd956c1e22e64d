import os
import time

import pytest

from taildir.reader import ReliableTaildirEventReader


def touch_future(path, seconds: float = 10.0) -> None:
    """Push a file's mtime ahead so modification checks see it as changed."""
    t = time.time() + seconds
    os.utime(path, (t, t))


@pytest.fixture
def log_dir(tmp_path):
    d = tmp_path / "logs"
    d.mkdir()
    return d


@pytest.fixture
def position_file(tmp_path):
    return str(tmp_path / "state" / "taildir_position.json")


@pytest.fixture
def make_reader(log_dir, position_file):
    readers = []

    def _make(file_groups=None, **kwargs):
        if file_groups is None:
            file_groups = {"g1": str(log_dir / r".*\.log")}
        kwargs.setdefault("header_table", {})
        kwargs.setdefault("position_file", position_file)
        reader = ReliableTaildirEventReader(file_groups, **kwargs)
        readers.append(reader)
        return reader

    yield _make
    for reader in readers:
        reader.close()
