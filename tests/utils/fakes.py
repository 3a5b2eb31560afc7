from dataclasses import replace
from pathlib import Path
from types import SimpleNamespace

from wikimirror.config.settings import MirrorConfig, SyncConfig
from wikimirror.mirror.application.page_builder import PageBuilder
from wikimirror.mirror.application.workflows.sync_pages import SyncPagesWorkflow
from wikimirror.mirror.domain.errors import PageNotFoundError, TransportError
from wikimirror.mirror.domain.models import Change, Listing, RenderedPage, SiteInfo, TimestampLookup
from wikimirror.mirror.infrastructure.image_store import ImageStore
from wikimirror.mirror.infrastructure.raw_store import RawPageStore
from wikimirror.mirror.infrastructure.skin import Skin

SOURCE_URL = "https://wiki.test"
MIRROR_URL = "https://mirror.test"


def make_config(**sync_overrides) -> MirrorConfig:
    config = MirrorConfig.for_source(SOURCE_URL, base_url=MIRROR_URL)
    sync = replace(SyncConfig(interval=0, show_progress=False), **sync_overrides)
    return replace(config, sync=sync)


class FakeResponse:
    def __init__(self, status=200, json_data=None, text_data="", headers=None):
        self.status = status
        self._json_data = json_data
        self._text_data = text_data
        self.headers = headers or {}
        self.request_info = SimpleNamespace(real_url="http://test.invalid")
        self.history = ()

    async def json(self):
        if isinstance(self._json_data, Exception):
            raise self._json_data
        return self._json_data

    async def text(self):
        return self._text_data

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    def __init__(self, responses):
        self._responses = list(responses)
        self.calls = 0
        self.params: list[dict] = []

    def get(self, *args, **kwargs):
        if not self._responses:
            raise AssertionError("No more fake responses configured")
        self.calls += 1
        self.params.append(kwargs.get("params") or {})
        return self._responses.pop(0)


class FakeSessionContext:
    async def __aenter__(self):
        return SimpleNamespace(name="fake-session")

    async def __aexit__(self, exc_type, exc, tb):
        return False


def _listing(pages: list, cursor: str | None) -> Listing:
    index = int(cursor) if cursor else 0
    if not pages:
        return Listing(items=())
    next_cursor = str(index + 1) if index + 1 < len(pages) else None
    return Listing(items=tuple(pages[index]), next_cursor=next_cursor)


class FakeRemoteSource:
    """In-memory remote source; listings are lists of pages, cursors are page indexes."""

    def __init__(
        self,
        rendered: dict[str, RenderedPage] | None = None,
        namespace_pages: dict[int, list[list[str]]] | None = None,
        changes: list[list[Change]] | None = None,
        members: dict[str, list[list[str]]] | None = None,
        image_pages: list[list[str]] | None = None,
        image_urls: dict[str, str] | None = None,
        binaries: dict[str, bytes] | None = None,
        timestamps: dict[str, int] | None = None,
        failing_titles: set[str] | None = None,
        failing_members: set[str] | None = None,
    ) -> None:
        self.rendered = rendered or {}
        self.namespace_pages = namespace_pages or {}
        self.changes = changes or []
        self.members = members or {}
        self.image_pages = image_pages or []
        self.image_urls = image_urls or {}
        self.binaries = binaries or {}
        self.timestamps = timestamps or {}
        self.failing_titles = failing_titles or set()
        self.failing_members = failing_members or set()
        self.list_calls: list[tuple] = []
        self.render_calls: list[str] = []
        self.timestamp_calls: list[str] = []
        self.binary_calls: list[str] = []

    async def list_pages(self, session, namespace, cursor=None, limit=50):
        self.list_calls.append(("pages", namespace, cursor, limit))
        return _listing(self.namespace_pages.get(namespace, []), cursor)

    async def list_recent_changes(self, session, namespaces, since, cursor=None, limit=50):
        self.list_calls.append(("changes", tuple(namespaces), since, cursor, limit))
        return _listing(self.changes, cursor)

    async def list_category_members(self, session, title, cursor=None, limit=500):
        self.list_calls.append(("members", title, cursor))
        if title in self.failing_members:
            raise TransportError(f"members unavailable for {title}")
        return _listing(self.members.get(title, []), cursor)

    async def list_images(self, session, cursor=None, limit=50):
        self.list_calls.append(("images", cursor, limit))
        return _listing(self.image_pages, cursor)

    async def render_page(self, session, title):
        self.render_calls.append(title)
        if title in self.failing_titles:
            raise TransportError(f"render failed for {title}")
        if title not in self.rendered:
            raise PageNotFoundError(title)
        return self.rendered[title]

    async def get_revision_timestamp(self, session, title):
        self.timestamp_calls.append(title)
        if title in self.timestamps:
            return TimestampLookup.resolved(self.timestamps[title])
        return TimestampLookup.unknown("not_configured")

    async def get_image_url(self, session, title):
        if title not in self.image_urls:
            raise TransportError(f"No image URL for '{title}'")
        return self.image_urls[title]

    async def fetch_siteinfo(self, session):
        return SiteInfo(
            main_page="Main Page",
            site_name="Test Wiki",
            namespace_names={"0": "", "6": "File", "14": "Category"},
            namespace_numbers={"File": 6, "Category": 14},
        )

    async def fetch_binary(self, session, url):
        self.binary_calls.append(url)
        if url not in self.binaries:
            raise TransportError(f"HTTP 404 for {url}")
        yield self.binaries[url]


def make_workflow(tmp: Path, source: FakeRemoteSource, config: MirrorConfig | None = None):
    config = config or make_config()
    raw_store = RawPageStore(tmp / config.path.raw)
    image_store = ImageStore(tmp / config.path.images, config.source.url, source.fetch_binary)
    skin = Skin.install_default(tmp / config.path.skin)
    page_builder = PageBuilder(config, skin, tmp / config.path.pages)
    workflow = SyncPagesWorkflow(
        config=config,
        client=source,
        raw_store=raw_store,
        image_store=image_store,
        page_builder=page_builder,
        session_factory=FakeSessionContext,
    )
    return SimpleNamespace(
        config=config,
        raw_store=raw_store,
        image_store=image_store,
        skin=skin,
        page_builder=page_builder,
        workflow=workflow,
    )
