# Mirror configuration, persisted as mirror.json at the mirror root.

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

MIRROR_CONFIG_FILENAME = "mirror.json"

load_dotenv()


@dataclass(frozen=True)
class SourceConfig:
    url: str
    api_path: str = "/api.php"
    article_path: str = "/wiki/"
    user_agent: str = "wikimirror/0.1 (static mirror)"
    retries: int = 3

    @property
    def api_url(self) -> str:
        return f"{self.url}{self.api_path}"


@dataclass(frozen=True)
class PathConfig:
    skin: str = "skin"
    raw: str = "raw"
    pages: str = "pages"
    images: str = "images"
    indices: str = "indices"
    api_log: str | None = None
    page_extension: str = ".html"


@dataclass(frozen=True)
class NamespaceConfig:
    names: dict[str, str] = field(default_factory=dict)
    numbers: dict[str, int] = field(
        default_factory=lambda: {"File": 6, "Image": 6, "Category": 14}
    )
    update: tuple[int, ...] = (0, 6, 14)


@dataclass(frozen=True)
class SyncConfig:
    batch_size: int = 50
    interval: float = 1.0
    concurrency: int = 5
    fail_fast: bool = True
    download_images: bool = True
    force_image_refresh: bool = False
    show_progress: bool = True
    connector_limit: int = 0
    connector_limit_per_host: int = 10
    connector_ttl_dns_cache: int = 300


@dataclass(frozen=True)
class IndexConfig:
    prefix_length: int = 1


@dataclass(frozen=True)
class MetaConfig:
    main_page: str | None = None
    site_name: str | None = None
    rights_url: str | None = None
    rights_text: str | None = None


@dataclass(frozen=True)
class MirrorConfig:
    source: SourceConfig
    base_url: str = ""
    path: PathConfig = field(default_factory=PathConfig)
    namespace: NamespaceConfig = field(default_factory=NamespaceConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    meta: MetaConfig = field(default_factory=MetaConfig)
    last_update: int | None = None

    @classmethod
    def for_source(cls, url: str, base_url: str = "") -> MirrorConfig:
        return cls(source=SourceConfig(url=normalize_source_url(url)), base_url=base_url.rstrip("/"))

    def with_last_update(self, last_update: int) -> MirrorConfig:
        return replace(self, last_update=int(last_update))

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["namespace"]["update"] = list(self.namespace.update)
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> MirrorConfig:
        namespace = dict(payload.get("namespace") or {})
        if "update" in namespace:
            namespace["update"] = tuple(int(x) for x in namespace["update"])
        if "numbers" in namespace:
            namespace["numbers"] = {str(k): int(v) for k, v in namespace["numbers"].items()}
        last_update = payload.get("last_update")
        return cls(
            source=SourceConfig(**payload["source"]),
            base_url=str(payload.get("base_url") or ""),
            path=PathConfig(**(payload.get("path") or {})),
            namespace=NamespaceConfig(**namespace),
            sync=SyncConfig(**(payload.get("sync") or {})),
            index=IndexConfig(**(payload.get("index") or {})),
            meta=MetaConfig(**(payload.get("meta") or {})),
            last_update=int(last_update) if last_update is not None else None,
        )


def normalize_source_url(url: str) -> str:
    url = (url or "").strip()
    if not url.startswith(("http://", "https://")):
        raise ValueError(f"Source URL must be absolute: {url!r}")
    return url.rstrip("/")


def apply_env_overrides(config: MirrorConfig) -> MirrorConfig:
    source = config.source
    source_url = os.getenv("WIKIMIRROR_SOURCE_URL")
    if source_url:
        source = replace(source, url=normalize_source_url(source_url))
    user_agent = os.getenv("WIKIMIRROR_USER_AGENT")
    if user_agent:
        source = replace(source, user_agent=user_agent)
    base_url = os.getenv("WIKIMIRROR_BASE_URL")
    return replace(
        config,
        source=source,
        base_url=base_url.rstrip("/") if base_url else config.base_url,
    )


def read_config(mirror_dir: str | Path) -> MirrorConfig:
    """Configuration exactly as stored in mirror.json, without environment overrides."""
    config_path = Path(mirror_dir) / MIRROR_CONFIG_FILENAME
    with config_path.open("r", encoding="utf-8") as fp:
        payload = json.load(fp)
    return MirrorConfig.from_dict(payload)


def load_config(mirror_dir: str | Path) -> MirrorConfig:
    return apply_env_overrides(read_config(mirror_dir))


def save_config(config: MirrorConfig, mirror_dir: str | Path) -> Path:
    mirror_path = Path(mirror_dir)
    mirror_path.mkdir(parents=True, exist_ok=True)
    config_path = mirror_path / MIRROR_CONFIG_FILENAME
    temp_path = config_path.with_name(config_path.name + ".tmp")
    with temp_path.open("w", encoding="utf-8") as fp:
        json.dump(config.to_dict(), fp, ensure_ascii=False, indent=2)
        fp.write("\n")
    os.replace(temp_path, config_path)
    return config_path
