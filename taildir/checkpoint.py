"""Position file: persists the last committed offset of every tracked inode.

The file is a JSON array of ``{"inode": int, "pos": int, "file": str}``
objects. Directory scanning decides which files are tracked; the position
file only seeds where each of them resumes.
"""

import json
import logging
import os
import tempfile
from typing import Iterator

from taildir.errors import CheckpointCorruptError
from taildir.models import CheckpointRecord
from taildir.registry import TailFileRegistry

logger = logging.getLogger(__name__)

_decoder = json.JSONDecoder()
_WS = " \t\r\n"


def _skip(text: str, idx: int, chars: str = _WS) -> int:
    while idx < len(text) and text[idx] in chars:
        idx += 1
    return idx


def iter_position_records(text: str) -> Iterator[CheckpointRecord]:
    """Decode records one at a time so a damaged tail keeps the good prefix.

    Raises ``json.JSONDecodeError`` where the document stops being valid JSON
    and ``CheckpointCorruptError`` for a record missing a field.
    """
    idx = _skip(text, 0)
    if idx >= len(text) or text[idx] != "[":
        raise json.JSONDecodeError("Expected '[' at start of position file", text, idx)
    idx = _skip(text, idx + 1)
    while idx < len(text) and text[idx] != "]":
        obj, idx = _decoder.raw_decode(text, idx)
        yield _to_record(obj)
        idx = _skip(text, idx, _WS + ",")
    if idx >= len(text):
        raise json.JSONDecodeError("Unterminated position file array", text, idx)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _to_record(obj) -> CheckpointRecord:
    if not isinstance(obj, dict):
        raise CheckpointCorruptError(f"Position file entry is not an object: {obj!r}")
    inode, pos, path = obj.get("inode"), obj.get("pos"), obj.get("file")
    if not _is_int(inode) or not _is_int(pos) or not isinstance(path, str):
        raise CheckpointCorruptError(
            f"Detected missing value in position file. inode: {inode}, pos: {pos}, path: {path}"
        )
    return CheckpointRecord(inode=inode, pos=pos, file=path)


def load_position_file(file_path: str, registry: TailFileRegistry) -> int:
    """Apply the saved positions in *file_path* to *registry*.

    Returns the number of records applied. A missing file is a first run.
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError:
        logger.info("File not found: %s, not updating position", file_path)
        return 0
    except (OSError, UnicodeDecodeError) as e:
        logger.error("Failed loading position file %s: %s", file_path, e)
        return 0

    applied = 0
    try:
        for record in iter_position_records(text):
            tail_file = registry.get(record.inode)
            if tail_file is not None and tail_file.update_pos(record.file, record.inode, record.pos):
                applied += 1
            else:
                logger.info("Missing file: %s, inode: %d, pos: %d",
                            record.file, record.inode, record.pos)
    except json.JSONDecodeError as e:
        logger.error("Failed loading position file %s after %d record(s): %s",
                     file_path, applied, e)
    return applied


def write_position_file(file_path: str, registry: TailFileRegistry,
                        inodes: set[int] | None = None) -> None:
    """Atomic write: dump to a temp file in the same directory, then replace."""
    directory = os.path.dirname(os.path.abspath(file_path))
    os.makedirs(directory, exist_ok=True)
    data = [record.to_dict() for record in registry.snapshot(inodes)]
    fd, tmp = tempfile.mkstemp(dir=directory, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp, file_path)
    except Exception:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
    logger.debug("Wrote %d position(s) to %s", len(data), file_path)
