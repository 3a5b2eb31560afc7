from pathlib import Path

from tqdm import tqdm

from wikimirror.config.logger_config import logger
from wikimirror.mirror.application.page_builder import PageBuilder
from wikimirror.mirror.application.ports import SkinPort
from wikimirror.mirror.domain.models import BuiltPage
from wikimirror.mirror.infrastructure.raw_store import RawPageStore


class BuildPagesWorkflow:
    """Regenerates skin assets and rendered pages from stored snapshots only."""

    def __init__(
        self,
        raw_store: RawPageStore,
        page_builder: PageBuilder,
        skin: SkinPort,
        mirror_dir: str | Path,
        show_progress: bool = True,
    ) -> None:
        self.raw_store = raw_store
        self.page_builder = page_builder
        self.skin = skin
        self.mirror_dir = Path(mirror_dir)
        self.show_progress = show_progress

    def install_skin(self) -> list[Path]:
        return self.skin.install_static_assets(self.mirror_dir, self.page_builder.site_data())

    def build_page(self, title: str) -> BuiltPage:
        built_page = self.page_builder.build(self.raw_store.read(title))
        self.page_builder.write(built_page)
        return built_page

    def build_all(self) -> list[BuiltPage]:
        self.install_skin()
        titles = self.raw_store.list_all_titles()
        built = [
            self.build_page(title)
            for title in tqdm(titles, desc="Build pages", unit="page", disable=not self.show_progress)
        ]
        logger.info("Rebuilt {} pages", len(built))
        return built
