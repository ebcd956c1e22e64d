"""Record and checkpoint models shared across the source."""

from dataclasses import dataclass, field

BYTE_OFFSET_HEADER_KEY = "byteoffset"
BASENAME_HEADER_KEY = "basename"
DEFAULT_FILENAME_HEADER_KEY = "file"


@dataclass
class Record:
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "headers": dict(self.headers),
            "body": self.body.decode("utf-8", errors="replace"),
        }


@dataclass(frozen=True)
class CheckpointRecord:
    inode: int
    pos: int
    file: str

    def to_dict(self) -> dict:
        return {"inode": self.inode, "pos": self.pos, "file": self.file}
