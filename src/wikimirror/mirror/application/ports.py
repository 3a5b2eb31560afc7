from typing import Any, AsyncIterator, Iterable, Protocol, runtime_checkable

from wikimirror.mirror.domain.models import (
    Change,
    Listing,
    RenderedPage,
    SiteInfo,
    StaticAssets,
    TimestampLookup,
)


@runtime_checkable
class RemoteSourcePort(Protocol):
    async def list_pages(self, session: Any, namespace: int, cursor: str | None = None, limit: int = 50) -> Listing[str]: ...

    async def list_recent_changes(
        self,
        session: Any,
        namespaces: Iterable[int],
        since: int,
        cursor: str | None = None,
        limit: int = 50,
    ) -> Listing[Change]: ...

    async def list_category_members(self, session: Any, title: str, cursor: str | None = None, limit: int = 500) -> Listing[str]: ...

    async def list_images(self, session: Any, cursor: str | None = None, limit: int = 50) -> Listing[str]: ...

    async def render_page(self, session: Any, title: str) -> RenderedPage:
        """Raise PageNotFoundError when the title does not exist."""
        ...

    async def get_revision_timestamp(self, session: Any, title: str) -> TimestampLookup: ...

    async def get_image_url(self, session: Any, title: str) -> str: ...

    async def fetch_siteinfo(self, session: Any) -> SiteInfo: ...

    def fetch_binary(self, session: Any, url: str) -> AsyncIterator[bytes]: ...


@runtime_checkable
class SkinPort(Protocol):
    page_template: str

    def render(self, template_name: str, data: dict[str, Any]) -> str: ...

    def list_static_assets(self) -> StaticAssets: ...

    def format_index(self, words: dict[str, list[str]]) -> str: ...

    def install_static_assets(self, mirror_dir: Any, site: dict[str, Any]) -> list: ...
