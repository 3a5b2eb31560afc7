import json
import os
from pathlib import Path
from typing import Any, Iterator

from wikimirror.config.logger_config import logger
from wikimirror.mirror.domain.errors import PersistenceError, RawPageNotFoundError
from wikimirror.mirror.domain.models import RawPage
from wikimirror.mirror.domain.rules import escape_title

RAW_SUFFIX = ".json"


def write_text_atomic(path: Path, text: str) -> None:
    temp_path = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with temp_path.open("w", encoding="utf-8") as fp:
            fp.write(text)
        os.replace(temp_path, path)
    except OSError as exc:
        raise PersistenceError(f"Failed to write {path}: {exc}") from exc


class RawPageStore:
    """One JSON snapshot per title under the raw directory."""

    def __init__(self, raw_dir: str | Path) -> None:
        self.raw_dir = Path(raw_dir)
        self.raw_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, title: str) -> Path:
        return self.raw_dir / f"{escape_title(title)}{RAW_SUFFIX}"

    def write(self, raw_page: RawPage) -> Path:
        file_path = self.path_for(raw_page.title)
        payload = json.dumps(raw_page.to_dict(), ensure_ascii=False, indent=2)
        write_text_atomic(file_path, payload + "\n")
        return file_path

    def read(self, title: str) -> RawPage:
        file_path = self.path_for(title)
        try:
            with file_path.open("r", encoding="utf-8") as fp:
                return RawPage.from_dict(json.load(fp))
        except FileNotFoundError as exc:
            raise RawPageNotFoundError(title) from exc

    def list_all_titles(self) -> list[str]:
        return [str(payload["title"]) for payload in self._scan()]

    def read_all(self) -> list[RawPage]:
        """Every readable snapshot, taken from the files as found on disk."""
        return [RawPage.from_dict(payload) for payload in self._scan()]

    def _scan(self) -> Iterator[dict[str, Any]]:
        for file_path in sorted(self.raw_dir.glob(f"*{RAW_SUFFIX}")):
            if not file_path.is_file():
                continue
            try:
                with file_path.open("r", encoding="utf-8") as fp:
                    payload = json.load(fp)
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                logger.warning("Skipping unreadable raw snapshot {}: {}", str(file_path), exc)
                continue
            if not isinstance(payload, dict) or not payload.get("title"):
                logger.warning("Skipping raw snapshot without a title: {}", str(file_path))
                continue
            yield payload
