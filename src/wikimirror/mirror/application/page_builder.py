from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, quote, urljoin, urlparse

from bs4 import BeautifulSoup

from wikimirror.config.settings import MirrorConfig
from wikimirror.mirror.application.ports import SkinPort
from wikimirror.mirror.domain.models import BuiltPage, RawPage
from wikimirror.mirror.domain.rules import (
    article_title_from_path,
    classify_namespace,
    escape_title,
    image_title,
    srcset_entries,
)
from wikimirror.mirror.infrastructure.image_store import image_relative_path
from wikimirror.mirror.infrastructure.raw_store import write_text_atomic

_SKIPPED_SCHEMES = ("#", "mailto:", "javascript:", "data:")


class PageBuilder:
    """Turns raw snapshots into skinned pages with links pointing into the mirror."""

    def __init__(self, config: MirrorConfig, skin: SkinPort, pages_dir: str | Path) -> None:
        self.config = config
        self.skin = skin
        self.pages_dir = Path(pages_dir)
        self.source_root = config.source.url.rstrip("/")

    def make_link(self, title: str) -> str:
        return f"{self.config.base_url}/{quote(escape_title(title))}{self.config.path.page_extension}"

    def image_link(self, title: str) -> str:
        return f"{self.config.base_url}/{self.config.path.images}/{quote(image_relative_path(title))}"

    def page_path(self, title: str) -> Path:
        return self.pages_dir / f"{escape_title(title)}{self.config.path.page_extension}"

    def site_data(self) -> dict[str, Any]:
        site = self.config.to_dict()
        site.pop("last_update", None)
        main_page = self.config.meta.main_page
        site["main_page_href"] = self.make_link(main_page) if main_page else None
        return site

    def build(self, raw_page: RawPage) -> BuiltPage:
        category_prefix = self.config.namespace.names.get("14") or "Category"
        page = {
            "title": raw_page.title,
            "namespace": raw_page.namespace,
            "kind": classify_namespace(raw_page.namespace).value,
            "timestamp": raw_page.timestamp,
            "content": self.rewrite_content(raw_page.content),
            "categories": [
                {"title": category, "href": self.make_link(f"{category_prefix}:{category}")}
                for category in raw_page.categories
            ],
            "members": [{"title": member, "href": self.make_link(member)} for member in raw_page.members],
            "file": raw_page.file,
            "file_href": self.image_link(raw_page.file) if raw_page.file else None,
        }
        html = self.skin.render(self.skin.page_template, {"site": self.site_data(), "page": page})
        return BuiltPage(title=raw_page.title, html=html)

    def write(self, built_page: BuiltPage) -> Path:
        file_path = self.page_path(built_page.title)
        write_text_atomic(file_path, built_page.html)
        return file_path

    def rewrite_content(self, content: str) -> str:
        soup = BeautifulSoup(content, "lxml")
        if soup.body is None:
            return ""
        for anchor in soup.find_all("a", href=True):
            anchor["href"] = self.rewrite_href(anchor["href"])
        for img in soup.find_all("img"):
            src = img.get("src")
            if src and not src.startswith("data:"):
                img["src"] = self.image_link(image_title(urljoin(self.source_root + "/", src)))
            srcset = img.get("srcset")
            if srcset:
                img["srcset"] = ", ".join(
                    self._rewrite_srcset_entry(url, descriptor) for url, descriptor in srcset_entries(srcset)
                )
        return soup.body.decode_contents()

    def rewrite_href(self, href: str) -> str:
        if href.startswith(_SKIPPED_SCHEMES):
            return href
        absolute = urljoin(self.source_root + "/", href)
        if absolute != self.source_root and not absolute.startswith(self.source_root + "/"):
            return href

        parsed = urlparse(absolute[len(self.source_root):] or "/")
        title = article_title_from_path(parsed.path, self.config.source.article_path)
        if title is None and parsed.path.endswith("/index.php"):
            titles = parse_qs(parsed.query).get("title")
            title = titles[0].replace("_", " ") if titles else None
        if title is None:
            return f"{self.config.base_url}{absolute[len(self.source_root):] or '/'}"
        link = self.make_link(title)
        if parsed.fragment:
            link += f"#{parsed.fragment}"
        return link

    def _rewrite_srcset_entry(self, url: str, descriptor: str) -> str:
        if not url.startswith("data:"):
            url = self.image_link(image_title(urljoin(self.source_root + "/", url)))
        return f"{url} {descriptor}" if descriptor else url
