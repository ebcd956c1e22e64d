"""Exception types raised by the taildir source."""


class TaildirError(Exception):
    """Base class for all taildir failures."""


class ConfigError(TaildirError):
    """Required configuration is missing or inconsistent."""


class CheckpointCorruptError(TaildirError):
    """A position file record is missing a field or has the wrong type."""


class TailFileOpenError(TaildirError):
    """A matched file could not be opened for tailing."""

    def __init__(self, path: str, cause: OSError):
        super().__init__(f"Failed opening file: {path}: {cause}")
        self.path = path
        self.cause = cause


class InvalidReaderStateError(TaildirError):
    """The reader was asked to read without a current file selected."""
