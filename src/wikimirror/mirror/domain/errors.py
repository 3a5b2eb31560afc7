from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from wikimirror.mirror.domain.models import SyncResult


class MirrorError(Exception):
    """Base class for every error raised by the mirror."""


class TransportError(MirrorError):
    """A remote call failed or returned a malformed payload."""

    def __init__(self, message: str, *, operation: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.operation = operation
        self.status = status


class PageNotFoundError(MirrorError):
    """The remote source reports that a title does not exist."""

    def __init__(self, title: str) -> None:
        super().__init__(f"Page not found on source: {title}")
        self.title = title


class PersistenceError(MirrorError):
    """A local disk write failed."""


class RawPageNotFoundError(MirrorError):
    def __init__(self, title: str) -> None:
        super().__init__(f"No raw snapshot stored for: {title}")
        self.title = title


class InvalidInstantError(MirrorError, ValueError):
    pass


class SkinError(MirrorError):
    pass


class SyncBatchError(MirrorError):
    """A batch finished with failed pages; carries everything completed so far."""

    def __init__(self, message: str, result: SyncResult) -> None:
        super().__init__(message)
        self.result = result
