"""Domain models and deterministic rules for mirroring."""

from wikimirror.mirror.domain.errors import (
    InvalidInstantError,
    MirrorError,
    PageNotFoundError,
    PersistenceError,
    RawPageNotFoundError,
    SkinError,
    SyncBatchError,
    TransportError,
)
from wikimirror.mirror.domain.models import (
    BuiltPage,
    Change,
    Listing,
    NamespaceKind,
    OutcomeStatus,
    PageImage,
    PageOutcome,
    RawPage,
    RenderedPage,
    SiteInfo,
    SyncResult,
    TimestampLookup,
    WordIndexShard,
)
from wikimirror.mirror.domain.rules import (
    classify_namespace,
    escape_title,
    image_title,
    normalize_instant,
    resolve_namespace,
    unescape_title,
)

__all__ = [
    "BuiltPage",
    "Change",
    "classify_namespace",
    "escape_title",
    "image_title",
    "InvalidInstantError",
    "Listing",
    "MirrorError",
    "NamespaceKind",
    "normalize_instant",
    "OutcomeStatus",
    "PageImage",
    "PageNotFoundError",
    "PageOutcome",
    "PersistenceError",
    "RawPage",
    "RawPageNotFoundError",
    "RenderedPage",
    "resolve_namespace",
    "SiteInfo",
    "SkinError",
    "SyncBatchError",
    "SyncResult",
    "TimestampLookup",
    "TransportError",
    "unescape_title",
    "WordIndexShard",
]
