from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path

from wikimirror.config.logger_config import logger
from wikimirror.config.settings import MirrorConfig, apply_env_overrides, load_config, read_config, save_config
from wikimirror.mirror.application.page_builder import PageBuilder
from wikimirror.mirror.application.workflows.build_index import BuildIndexWorkflow
from wikimirror.mirror.application.workflows.build_pages import BuildPagesWorkflow
from wikimirror.mirror.application.workflows.sync_pages import SyncPagesWorkflow
from wikimirror.mirror.domain.models import BuiltPage, SiteInfo, SyncResult, WordIndexShard
from wikimirror.mirror.infrastructure.api_log import ApiCallLog
from wikimirror.mirror.infrastructure.image_store import ImageStore
from wikimirror.mirror.infrastructure.mw_client import MediaWikiClient
from wikimirror.mirror.infrastructure.raw_store import RawPageStore
from wikimirror.mirror.infrastructure.skin import Skin


@dataclass
class MirrorComponents:
    config: MirrorConfig
    mirror_dir: Path
    raw_store: RawPageStore
    image_store: ImageStore
    skin: Skin
    page_builder: PageBuilder
    client: MediaWikiClient
    api_log: ApiCallLog | None = None

    def sync_workflow(self) -> SyncPagesWorkflow:
        return SyncPagesWorkflow(
            config=self.config,
            client=self.client,
            raw_store=self.raw_store,
            image_store=self.image_store,
            page_builder=self.page_builder,
        )

    def build_pages_workflow(self) -> BuildPagesWorkflow:
        return BuildPagesWorkflow(
            raw_store=self.raw_store,
            page_builder=self.page_builder,
            skin=self.skin,
            mirror_dir=self.mirror_dir,
            show_progress=self.config.sync.show_progress,
        )

    def build_index_workflow(self) -> BuildIndexWorkflow:
        return BuildIndexWorkflow(
            config=self.config,
            raw_store=self.raw_store,
            skin=self.skin,
            indices_dir=self.mirror_dir / self.config.path.indices,
        )

    def close(self) -> None:
        if self.api_log is not None:
            self.api_log.close()


def init_mirror(url: str, mirror_dir: str | Path, base_url: str = "") -> MirrorConfig:
    mirror_path = Path(mirror_dir)
    config = MirrorConfig.for_source(url, base_url=base_url)
    save_config(config, mirror_path)
    for sub_dir in (config.path.raw, config.path.pages, config.path.images, config.path.indices):
        (mirror_path / sub_dir).mkdir(parents=True, exist_ok=True)
    Skin.install_default(mirror_path / config.path.skin)
    logger.info("Initialized mirror of {} in {}", config.source.url, str(mirror_path))
    return config


def open_mirror(mirror_dir: str | Path, config: MirrorConfig | None = None) -> MirrorComponents:
    mirror_path = Path(mirror_dir)
    config = config or load_config(mirror_path)
    api_log = None
    run_id = _build_run_id()
    if config.path.api_log:
        api_log = ApiCallLog(mirror_path / config.path.api_log, run_id=run_id)
    client = MediaWikiClient(source=config.source, api_log=api_log)
    skin = Skin(mirror_path / config.path.skin)
    return MirrorComponents(
        config=config,
        mirror_dir=mirror_path,
        raw_store=RawPageStore(mirror_path / config.path.raw),
        image_store=ImageStore(mirror_path / config.path.images, config.source.url, client.fetch_binary),
        skin=skin,
        page_builder=PageBuilder(config, skin, mirror_path / config.path.pages),
        client=client,
        api_log=api_log,
    )


async def run_full_update_async(
    mirror_dir: str | Path,
    *,
    batch_size: int | None = None,
    interval: float | None = None,
    namespace: int | None = None,
) -> SyncResult:
    components = open_mirror(mirror_dir)
    try:
        components.build_pages_workflow().install_skin()
        workflow = components.sync_workflow()
        if namespace is not None:
            return await workflow.full_update(namespace, batch_size, interval)
        result = await workflow.full_update_all_namespaces(batch_size, interval)
        _record_last_update(components, result)
        return result
    finally:
        components.close()


def run_full_update(
    mirror_dir: str | Path,
    *,
    batch_size: int | None = None,
    interval: float | None = None,
    namespace: int | None = None,
) -> SyncResult:
    return asyncio.run(
        run_full_update_async(mirror_dir, batch_size=batch_size, interval=interval, namespace=namespace)
    )


async def run_incremental_update_async(
    mirror_dir: str | Path,
    *,
    since: str | int | None = None,
    batch_size: int | None = None,
    interval: float | None = None,
    download_images: bool | None = None,
) -> SyncResult:
    components = open_mirror(mirror_dir)
    try:
        components.build_pages_workflow().install_skin()
        result = await components.sync_workflow().incremental_update(since, batch_size, interval, download_images)
        _record_last_update(components, result)
        return result
    finally:
        components.close()


def run_incremental_update(
    mirror_dir: str | Path,
    *,
    since: str | int | None = None,
    batch_size: int | None = None,
    interval: float | None = None,
    download_images: bool | None = None,
) -> SyncResult:
    return asyncio.run(
        run_incremental_update_async(
            mirror_dir,
            since=since,
            batch_size=batch_size,
            interval=interval,
            download_images=download_images,
        )
    )


async def run_update_page_async(
    mirror_dir: str | Path,
    title: str,
    *,
    known_timestamp: int | None = None,
    download_images: bool | None = None,
) -> BuiltPage | None:
    components = open_mirror(mirror_dir)
    try:
        return await components.sync_workflow().update_one_page(title, known_timestamp, download_images)
    finally:
        components.close()


def run_update_page(
    mirror_dir: str | Path,
    title: str,
    *,
    known_timestamp: int | None = None,
    download_images: bool | None = None,
) -> BuiltPage | None:
    return asyncio.run(
        run_update_page_async(mirror_dir, title, known_timestamp=known_timestamp, download_images=download_images)
    )


async def run_update_images_async(
    mirror_dir: str | Path,
    *,
    batch_size: int | None = None,
    interval: float | None = None,
) -> SyncResult:
    components = open_mirror(mirror_dir)
    try:
        return await components.sync_workflow().full_update_images(batch_size, interval)
    finally:
        components.close()


def run_update_images(
    mirror_dir: str | Path,
    *,
    batch_size: int | None = None,
    interval: float | None = None,
) -> SyncResult:
    return asyncio.run(run_update_images_async(mirror_dir, batch_size=batch_size, interval=interval))


async def run_update_metadata_async(mirror_dir: str | Path) -> MirrorConfig:
    components = open_mirror(mirror_dir)
    try:
        info = await components.sync_workflow().update_metadata()
        stored = apply_siteinfo(read_config(components.mirror_dir), info)
        save_config(stored, components.mirror_dir)
        return apply_env_overrides(stored)
    finally:
        components.close()


def run_update_metadata(mirror_dir: str | Path) -> MirrorConfig:
    return asyncio.run(run_update_metadata_async(mirror_dir))


def build_pages(mirror_dir: str | Path) -> list[BuiltPage]:
    components = open_mirror(mirror_dir)
    try:
        return components.build_pages_workflow().build_all()
    finally:
        components.close()


def build_index(mirror_dir: str | Path) -> dict[str, WordIndexShard]:
    components = open_mirror(mirror_dir)
    try:
        return components.build_index_workflow().build()
    finally:
        components.close()


def apply_siteinfo(config: MirrorConfig, info: SiteInfo) -> MirrorConfig:
    numbers = {**config.namespace.numbers, **info.namespace_numbers}
    return replace(
        config,
        namespace=replace(config.namespace, names=dict(info.namespace_names), numbers=numbers),
        meta=replace(
            config.meta,
            main_page=info.main_page,
            site_name=info.site_name,
            rights_url=info.rights_url or config.meta.rights_url,
            rights_text=info.rights_text or config.meta.rights_text,
        ),
    )


def _record_last_update(components: MirrorComponents, result: SyncResult) -> None:
    if result.last_update is None:
        return
    if result.failed:
        logger.warning(
            "{} page(s) failed; keeping previous last update. Failed: {}",
            len(result.failed),
            ", ".join(outcome.title for outcome in result.failed),
        )
        return
    save_config(read_config(components.mirror_dir).with_last_update(result.last_update), components.mirror_dir)
    logger.info("Recorded last update at {}", result.last_update)


def _build_run_id() -> str:
    return datetime.now(timezone.utc).strftime("mirror_%Y%m%dT%H%M%S%fZ")
