import os
import uuid
from pathlib import Path
from typing import AsyncIterator, Callable
from urllib.parse import urljoin

import aiohttp
from pathvalidate import sanitize_filename

from wikimirror.config.logger_config import logger
from wikimirror.mirror.domain.errors import PersistenceError
from wikimirror.mirror.domain.models import PageImage
from wikimirror.mirror.domain.rules import image_title

BinaryFetcher = Callable[[aiohttp.ClientSession, str], AsyncIterator[bytes]]


def image_relative_path(title: str) -> str:
    """Filesystem-safe relative path for an image title; every segment is sanitized."""
    return "/".join(sanitize_filename(segment, replacement_text="_") or "_" for segment in title.split("/"))


class ImageStore:
    """Binary asset cache; local paths follow the remote URL path segments."""

    def __init__(self, images_dir: str | Path, source_url: str, fetch_binary: BinaryFetcher) -> None:
        self.images_dir = Path(images_dir)
        self.source_url = source_url.rstrip("/") + "/"
        self.fetch_binary = fetch_binary

    def canonical_url(self, src: str) -> str:
        return urljoin(self.source_url, src)

    def image_title(self, src: str) -> str:
        return image_title(self.canonical_url(src))

    def local_path(self, src: str) -> Path:
        return self.images_dir.joinpath(*image_relative_path(self.image_title(src)).split("/"))

    async def ensure(self, session: aiohttp.ClientSession, src: str, force: bool = False) -> PageImage:
        source_url = self.canonical_url(src)
        dest_path = self.local_path(source_url)
        if not force and dest_path.exists():
            return PageImage(source_url=source_url, local_path=str(dest_path))

        temp_path = dest_path.with_name(f"{dest_path.name}.{uuid.uuid4().hex}.part")
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            with temp_path.open("wb") as fp:
                async for chunk in self.fetch_binary(session, source_url):
                    fp.write(chunk)
            os.replace(temp_path, dest_path)
        except OSError as exc:
            raise PersistenceError(f"Failed to write image {dest_path}: {exc}") from exc
        finally:
            if temp_path.exists():
                temp_path.unlink()
        logger.debug("Downloaded image {} -> {}", source_url, str(dest_path))
        return PageImage(source_url=source_url, local_path=str(dest_path))
