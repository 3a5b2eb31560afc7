from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class NamespaceKind(str, Enum):
    NORMAL = "normal"
    CATEGORY = "category"
    FILE = "file"
    OTHER = "other"


@dataclass(frozen=True)
class RawPage:
    title: str
    namespace: int
    timestamp: int
    content: str
    categories: tuple[str, ...] = field(default_factory=tuple)
    members: tuple[str, ...] = field(default_factory=tuple)
    file: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "namespace": self.namespace,
            "timestamp": self.timestamp,
            "content": self.content,
            "categories": list(self.categories),
            "members": list(self.members),
            "file": self.file,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> RawPage:
        return cls(
            title=str(payload["title"]),
            namespace=int(payload.get("namespace") or 0),
            timestamp=int(payload.get("timestamp") or 0),
            content=str(payload.get("content") or ""),
            categories=tuple(str(x) for x in payload.get("categories") or ()),
            members=tuple(str(x) for x in payload.get("members") or ()),
            file=payload.get("file"),
        )


@dataclass(frozen=True)
class BuiltPage:
    title: str
    html: str


@dataclass(frozen=True)
class PageImage:
    source_url: str
    local_path: str


@dataclass(frozen=True)
class WordIndexShard:
    key: str
    words: dict[str, tuple[str, ...]]


@dataclass(frozen=True)
class Listing(Generic[T]):
    items: tuple[T, ...]
    next_cursor: str | None = None


@dataclass(frozen=True)
class Change:
    title: str
    timestamp: int


@dataclass(frozen=True)
class RenderedPage:
    title: str
    html: str
    categories: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SiteInfo:
    main_page: str
    site_name: str | None
    namespace_names: dict[str, str]
    namespace_numbers: dict[str, int]
    rights_url: str | None = None
    rights_text: str | None = None


@dataclass(frozen=True)
class TimestampLookup:
    value: int | None
    reason: str | None = None

    @classmethod
    def resolved(cls, value: int) -> TimestampLookup:
        return cls(value=int(value))

    @classmethod
    def unknown(cls, reason: str) -> TimestampLookup:
        return cls(value=None, reason=reason)

    @property
    def is_resolved(self) -> bool:
        return self.value is not None

    def or_default(self, default: int = 0) -> int:
        return self.value if self.value is not None else default


class OutcomeStatus(str, Enum):
    UPDATED = "updated"
    MISSING = "missing"
    FAILED = "failed"


@dataclass(frozen=True)
class PageOutcome:
    title: str
    status: OutcomeStatus
    page: BuiltPage | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.status is not OutcomeStatus.FAILED


@dataclass(frozen=True)
class ImageOutcome:
    title: str
    image: PageImage | None = None
    error: BaseException | None = None


@dataclass
class SyncResult:
    last_update: int | None = None
    outcomes: list[PageOutcome] = field(default_factory=list)
    images: list[ImageOutcome] = field(default_factory=list)

    @property
    def updated(self) -> list[BuiltPage]:
        return [o.page for o in self.outcomes if o.status is OutcomeStatus.UPDATED and o.page is not None]

    @property
    def missing(self) -> list[str]:
        return [o.title for o in self.outcomes if o.status is OutcomeStatus.MISSING]

    @property
    def failed(self) -> list[PageOutcome]:
        return [o for o in self.outcomes if o.status is OutcomeStatus.FAILED]

    def extend(self, other: SyncResult) -> None:
        self.outcomes.extend(other.outcomes)
        self.images.extend(other.images)


@dataclass(frozen=True)
class StaticAssets:
    generated_files: tuple[str, ...] = field(default_factory=tuple)
    copied_files: tuple[str, ...] = field(default_factory=tuple)
