"""Error kinds raised by the backup core."""

from __future__ import annotations

from pathlib import Path


class BackupError(Exception):
    """Base class for every failure raised by yuque_backup."""


class ConfigFailure(BackupError, ValueError):
    """Configuration file is missing, malformed or incomplete."""


class FetchFailed(BackupError):
    """A request to the remote service did not produce a usable payload."""

    def __init__(self, url: str, cause: object) -> None:
        super().__init__(f"{url}: {cause}")
        self.url = url
        self.cause = cause


class TransportFailure(FetchFailed):
    """Network, DNS, TLS or timeout failure."""


class HttpStatusFailure(FetchFailed):
    """Remote answered with a non-2xx status."""

    def __init__(self, url: str, status: int, cause: object = None) -> None:
        super().__init__(url, cause if cause is not None else f"HTTP {status}")
        self.status = status


class DecodeFailure(FetchFailed):
    """Response body is not JSON or does not have the expected shape."""


class FilesystemFailure(BackupError):
    """Creating, writing or flushing a local file failed."""

    def __init__(self, path: Path | str, cause: object) -> None:
        super().__init__(f"{path}: {cause}")
        self.path = Path(path)
        self.cause = cause
