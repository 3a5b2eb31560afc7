import asyncio
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Iterable

import aiohttp
from bs4 import BeautifulSoup, Comment
from tqdm import tqdm

from wikimirror.config.logger_config import logger
from wikimirror.config.settings import MirrorConfig
from wikimirror.mirror.application.page_builder import PageBuilder
from wikimirror.mirror.application.pagination import FetchPage, collect_all, paginate
from wikimirror.mirror.application.ports import RemoteSourcePort
from wikimirror.mirror.domain.errors import MirrorError, PageNotFoundError, SyncBatchError
from wikimirror.mirror.domain.models import (
    BuiltPage,
    ImageOutcome,
    Listing,
    NamespaceKind,
    OutcomeStatus,
    PageOutcome,
    RawPage,
    SiteInfo,
    SyncResult,
)
from wikimirror.mirror.domain.rules import classify_namespace, normalize_instant, resolve_namespace, split_srcset
from wikimirror.mirror.infrastructure.image_store import ImageStore
from wikimirror.mirror.infrastructure.raw_store import RawPageStore

SessionFactory = Callable[[], Any]
PageJob = tuple[str, int | None]


def utc_now_epoch() -> int:
    return int(datetime.now(timezone.utc).timestamp())


class SyncPagesWorkflow:
    """Drives full crawls and incremental updates against the remote source.

    Every listing page becomes one batch: its titles are fetched concurrently,
    each result is kept as a PageOutcome, and the next continuation is only
    requested once the batch is drained. With ``sync.fail_fast`` a batch holding
    a failed page stops the run with SyncBatchError carrying the partial result.
    """

    def __init__(
        self,
        config: MirrorConfig,
        client: RemoteSourcePort,
        raw_store: RawPageStore,
        image_store: ImageStore,
        page_builder: PageBuilder,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self.config = config
        self.client = client
        self.raw_store = raw_store
        self.image_store = image_store
        self.page_builder = page_builder
        self.session_factory = session_factory or self._default_session
        self._semaphore = asyncio.Semaphore(max(1, config.sync.concurrency))
        self._background: set[asyncio.Task] = set()
        self._scheduled_images: set[str] = set()

    async def full_update(
        self,
        namespace: int,
        batch_size: int | None = None,
        interval: float | None = None,
        download_images: bool | None = None,
    ) -> SyncResult:
        async with self._session_scope() as session:
            return await self._full_update(session, namespace, batch_size, interval, download_images)

    async def full_update_all_namespaces(
        self,
        batch_size: int | None = None,
        interval: float | None = None,
        download_images: bool | None = None,
    ) -> SyncResult:
        result = SyncResult(last_update=utc_now_epoch())
        async with self._session_scope() as session:
            for namespace in self.config.namespace.update:
                try:
                    partial = await self._full_update(session, namespace, batch_size, interval, download_images)
                except SyncBatchError as exc:
                    result.extend(exc.result)
                    raise SyncBatchError(str(exc), result) from exc
                result.extend(partial)
        return result

    async def incremental_update(
        self,
        since: str | int | None = None,
        batch_size: int | None = None,
        interval: float | None = None,
        download_images: bool | None = None,
    ) -> SyncResult:
        since_epoch = normalize_instant(since, self.config.last_update)
        batch_size = batch_size or self.config.sync.batch_size
        namespaces = self.config.namespace.update
        result = SyncResult(last_update=utc_now_epoch())
        seen: set[str] = set()
        logger.info("Incremental update since {} for namespaces {}", since_epoch, list(namespaces))

        def to_jobs(listing: Listing) -> list[PageJob]:
            jobs: list[PageJob] = []
            for change in listing.items:
                # the feed is newest first; later entries for a title are older edits
                if change.title in seen:
                    continue
                seen.add(change.title)
                jobs.append((change.title, change.timestamp))
            return jobs

        async with self._session_scope() as session:

            async def fetch(cursor: str | None) -> Listing:
                return await self.client.list_recent_changes(session, namespaces, since_epoch, cursor, batch_size)

            await self._run_batches(
                session,
                fetch,
                to_jobs,
                result,
                interval=self._interval(interval),
                download_images=self._download_images(download_images),
                desc="Recent changes",
            )
        return result

    async def update_one_page(
        self,
        title: str,
        known_timestamp: int | None = None,
        download_images: bool | None = None,
    ) -> BuiltPage | None:
        async with self._session_scope() as session:
            try:
                return await self._update_page(session, title, known_timestamp, self._download_images(download_images))
            except PageNotFoundError:
                logger.warning("Page '{}' does not exist on the source.", title)
                return None

    async def full_update_images(self, batch_size: int | None = None, interval: float | None = None) -> SyncResult:
        batch_size = batch_size or self.config.sync.batch_size
        result = SyncResult()
        async with self._session_scope() as session:

            async def fetch(cursor: str | None) -> Listing:
                return await self.client.list_images(session, cursor, batch_size)

            with tqdm(total=None, desc="Images", unit=" image", disable=not self.config.sync.show_progress) as progress:
                async for listing in paginate(fetch, interval=self._interval(interval)):
                    outcomes = await asyncio.gather(*(self._update_image(session, title) for title in listing.items))
                    result.images.extend(outcomes)
                    progress.update(len(outcomes))
                    failed = [o for o in outcomes if o.error is not None]
                    if failed and self.config.sync.fail_fast:
                        raise SyncBatchError(f"{len(failed)} of {len(outcomes)} images failed", result)
        return result

    async def update_metadata(self) -> SiteInfo:
        async with self._session_scope() as session:
            info = await self.client.fetch_siteinfo(session)
        logger.info("Fetched site info: main_page={}, namespaces={}", info.main_page, len(info.namespace_names))
        return info

    async def _full_update(
        self,
        session: Any,
        namespace: int,
        batch_size: int | None,
        interval: float | None,
        download_images: bool | None,
    ) -> SyncResult:
        batch_size = batch_size or self.config.sync.batch_size
        result = SyncResult()
        logger.info("Full update of namespace {} (batch size {})", namespace, batch_size)

        async def fetch(cursor: str | None) -> Listing:
            return await self.client.list_pages(session, namespace, cursor, batch_size)

        await self._run_batches(
            session,
            fetch,
            lambda listing: [(title, None) for title in listing.items],
            result,
            interval=self._interval(interval),
            download_images=self._download_images(download_images),
            desc=f"Namespace {namespace}",
        )
        return result

    async def _run_batches(
        self,
        session: Any,
        fetch: FetchPage,
        to_jobs: Callable[[Listing], Iterable[PageJob]],
        result: SyncResult,
        *,
        interval: float,
        download_images: bool,
        desc: str,
    ) -> None:
        with tqdm(total=None, desc=desc, unit=" page", disable=not self.config.sync.show_progress) as progress:
            async for listing in paginate(fetch, interval=interval):
                outcomes = await self._run_batch(session, list(to_jobs(listing)), download_images)
                result.outcomes.extend(outcomes)
                progress.update(len(outcomes))
                failed = [o for o in outcomes if o.status is OutcomeStatus.FAILED]
                if failed:
                    logger.error("{} of {} pages failed in batch: {}", len(failed), len(outcomes), [o.title for o in failed])
                    if self.config.sync.fail_fast:
                        raise SyncBatchError(f"{len(failed)} of {len(outcomes)} pages failed", result)

    async def _run_batch(self, session: Any, jobs: list[PageJob], download_images: bool) -> list[PageOutcome]:
        results = await asyncio.gather(
            *(self._guarded_update(session, title, timestamp, download_images) for title, timestamp in jobs),
            return_exceptions=True,
        )
        outcomes: list[PageOutcome] = []
        for (title, _), item in zip(jobs, results):
            if isinstance(item, PageNotFoundError):
                logger.warning("Page '{}' does not exist on the source, skipped.", title)
                outcomes.append(PageOutcome(title=title, status=OutcomeStatus.MISSING))
            elif isinstance(item, Exception):
                logger.error("Failed updating '{}' with error type {}: {}", title, type(item).__name__, item)
                outcomes.append(PageOutcome(title=title, status=OutcomeStatus.FAILED, error=item))
            elif isinstance(item, BaseException):
                raise item
            else:
                outcomes.append(PageOutcome(title=title, status=OutcomeStatus.UPDATED, page=item))
        return outcomes

    async def _guarded_update(self, session: Any, title: str, timestamp: int | None, download_images: bool) -> BuiltPage:
        async with self._semaphore:
            return await self._update_page(session, title, timestamp, download_images)

    async def _update_page(
        self,
        session: Any,
        title: str,
        known_timestamp: int | None,
        download_images: bool,
    ) -> BuiltPage:
        namespace = resolve_namespace(title, self.config.namespace.numbers)
        kind = classify_namespace(namespace)

        timestamp = known_timestamp
        if timestamp is None:
            lookup = await self.client.get_revision_timestamp(session, title)
            if not lookup.is_resolved:
                logger.debug("Revision timestamp unknown for '{}' ({}), using 0", title, lookup.reason)
            timestamp = lookup.or_default(0)

        rendered = await self.client.render_page(session, title)
        content, image_sources = self._sanitize(rendered.html)
        if download_images:
            for src in image_sources:
                self._schedule_image(session, src)

        members: tuple[str, ...] = ()
        if kind is NamespaceKind.CATEGORY:
            members = await self._category_members(session, title)

        file: str | None = None
        if kind is NamespaceKind.FILE:
            url = await self.client.get_image_url(session, title)
            image = await self.image_store.ensure(session, url, force=True)
            file = self.image_store.image_title(image.source_url)

        raw_page = RawPage(
            title=title,
            namespace=namespace,
            timestamp=int(timestamp),
            content=content,
            categories=rendered.categories,
            members=members,
            file=file,
        )
        self.raw_store.write(raw_page)
        built_page = self.page_builder.build(raw_page)
        self.page_builder.write(built_page)
        logger.info("Updated page: {}", title)
        return built_page

    async def _category_members(self, session: Any, title: str) -> tuple[str, ...]:
        async def fetch(cursor: str | None) -> Listing:
            return await self.client.list_category_members(session, title, cursor)

        try:
            return tuple(await collect_all(fetch))
        except MirrorError as exc:
            logger.warning("Could not list members of '{}': {}", title, exc)
            return ()

    async def _update_image(self, session: Any, title: str) -> ImageOutcome:
        try:
            url = await self.client.get_image_url(session, title)
            image = await self.image_store.ensure(session, url, force=True)
        except MirrorError as exc:
            logger.error("Failed updating image '{}': {}", title, exc)
            return ImageOutcome(title=title, error=exc)
        return ImageOutcome(title=title, image=image)

    def _schedule_image(self, session: Any, src: str) -> None:
        source_url = self.image_store.canonical_url(src)
        if source_url in self._scheduled_images:
            return
        self._scheduled_images.add(source_url)
        task = asyncio.create_task(self._download_image(session, source_url))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _download_image(self, session: Any, source_url: str) -> None:
        try:
            await self.image_store.ensure(session, source_url, force=self.config.sync.force_image_refresh)
        except MirrorError as exc:
            logger.warning("Background image download failed for {}: {}", source_url, exc)

    async def _drain_background(self) -> None:
        while self._background:
            tasks = list(self._background)
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for item in results:
                if isinstance(item, Exception):
                    logger.error("Background task failed: {}: {}", type(item).__name__, item)
        self._scheduled_images.clear()

    @staticmethod
    def _sanitize(html: str) -> tuple[str, list[str]]:
        soup = BeautifulSoup(html, "lxml")
        for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
            comment.extract()
        sources: list[str] = []
        for img in soup.find_all("img"):
            src = img.get("src")
            if src and not src.startswith("data:"):
                sources.append(src)
            srcset = img.get("srcset")
            if srcset:
                sources.extend(s for s in split_srcset(srcset) if not s.startswith("data:"))
        body = soup.body.decode_contents() if soup.body is not None else ""
        return re.sub(r"\n+", "\n", body), sources

    @asynccontextmanager
    async def _session_scope(self) -> AsyncIterator[Any]:
        async with self.session_factory() as session:
            try:
                yield session
            finally:
                await self._drain_background()

    def _default_session(self) -> aiohttp.ClientSession:
        connector = aiohttp.TCPConnector(
            limit=self.config.sync.connector_limit,
            limit_per_host=self.config.sync.connector_limit_per_host,
            ttl_dns_cache=self.config.sync.connector_ttl_dns_cache,
        )
        return aiohttp.ClientSession(connector=connector)

    def _interval(self, interval: float | None) -> float:
        return self.config.sync.interval if interval is None else float(interval)

    def _download_images(self, download_images: bool | None) -> bool:
        return self.config.sync.download_images if download_images is None else download_images
