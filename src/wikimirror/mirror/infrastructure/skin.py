from __future__ import annotations

import json
import shutil
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError, select_autoescape

from wikimirror.config.logger_config import logger
from wikimirror.mirror.domain.errors import SkinError
from wikimirror.mirror.domain.models import StaticAssets
from wikimirror.mirror.infrastructure.raw_store import write_text_atomic

SKIN_MANIFEST_FILENAME = "skin.json"

DEFAULT_SKIN_FILES: dict[str, str] = {
    SKIN_MANIFEST_FILENAME: json.dumps(
        {
            "page": "page.html",
            "index": None,
            "builds": ["index.html"],
            "files": ["style.css"],
        },
        indent=2,
    )
    + "\n",
    "page.html": """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{{ page.title }}{% if site.meta.site_name %} - {{ site.meta.site_name }}{% endif %}</title>
<link rel="stylesheet" href="{{ site.base_url }}/style.css">
</head>
<body>
<h1>{{ page.title }}</h1>
<main>{{ page.content | safe }}</main>
{% if page.kind == "category" and page.members %}
<h2>Pages in category</h2>
<ul>
{% for member in page.members %}<li><a href="{{ member.href }}">{{ member.title }}</a></li>
{% endfor %}</ul>
{% endif %}
{% if page.kind == "file" and page.file_href %}
<p><a href="{{ page.file_href }}"><img src="{{ page.file_href }}" alt="{{ page.title }}"></a></p>
{% endif %}
{% if page.categories %}
<footer>Categories: {% for category in page.categories %}<a href="{{ category.href }}">{{ category.title }}</a>{% if not loop.last %} | {% endif %}{% endfor %}</footer>
{% endif %}
{% if site.meta.rights_text %}<p class="rights">{{ site.meta.rights_text }}</p>{% endif %}
</body>
</html>
""",
    "index.html": """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{{ site.meta.site_name or "Mirror" }}</title></head>
<body>
{% if site.main_page_href %}<script>location.href = "{{ site.main_page_href }}";</script>
<p><a href="{{ site.main_page_href }}">{{ site.meta.main_page }}</a></p>{% endif %}
</body>
</html>
""",
    "style.css": "body { font-family: sans-serif; max-width: 60em; margin: 0 auto; }\n",
}


class Skin:
    """Jinja2 templates plus a manifest naming the page template and static assets."""

    def __init__(self, skin_dir: str | Path) -> None:
        self.skin_dir = Path(skin_dir)
        manifest_path = self.skin_dir / SKIN_MANIFEST_FILENAME
        try:
            with manifest_path.open("r", encoding="utf-8") as fp:
                self.manifest: dict[str, Any] = json.load(fp)
        except (OSError, json.JSONDecodeError) as exc:
            raise SkinError(f"Cannot load skin manifest {manifest_path}: {exc}") from exc
        self.page_template = str(self.manifest.get("page") or "page.html")
        self.index_template = self.manifest.get("index")
        self.env = Environment(
            loader=FileSystemLoader(str(self.skin_dir)),
            autoescape=select_autoescape(["html", "htm", "xml"]),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    @classmethod
    def install_default(cls, skin_dir: str | Path) -> Skin:
        skin_path = Path(skin_dir)
        skin_path.mkdir(parents=True, exist_ok=True)
        for name, text in DEFAULT_SKIN_FILES.items():
            target = skin_path / name
            if not target.exists():
                target.write_text(text, encoding="utf-8")
        return cls(skin_path)

    def render(self, template_name: str, data: dict[str, Any]) -> str:
        try:
            return self.env.get_template(template_name).render(**data)
        except TemplateError as exc:
            raise SkinError(f"Failed to render {template_name}: {exc}") from exc

    def list_static_assets(self) -> StaticAssets:
        return StaticAssets(
            generated_files=tuple(self.manifest.get("builds") or ()),
            copied_files=tuple(self.manifest.get("files") or ()),
        )

    def format_index(self, words: dict[str, list[str]]) -> str:
        if self.index_template:
            return self.render(str(self.index_template), {"words": words})
        return json.dumps(words, ensure_ascii=False, separators=(",", ":"))

    def install_static_assets(self, mirror_dir: str | Path, site: dict[str, Any]) -> list[Path]:
        mirror_path = Path(mirror_dir)
        assets = self.list_static_assets()
        written: list[Path] = []
        for name in assets.generated_files:
            dest = mirror_path / name
            write_text_atomic(dest, self.render(name, {"site": site}))
            written.append(dest)
        for name in assets.copied_files:
            dest = mirror_path / name
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(self.skin_dir / name, dest)
            written.append(dest)
        logger.info("Installed {} skin assets into {}", len(written), str(mirror_path))
        return written
