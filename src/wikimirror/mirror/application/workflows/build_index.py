import math
import re
from collections import Counter
from pathlib import Path

from bs4 import BeautifulSoup
from tqdm import tqdm

from wikimirror.config.logger_config import logger
from wikimirror.config.settings import MirrorConfig
from wikimirror.mirror.application.ports import SkinPort
from wikimirror.mirror.domain.models import RawPage, WordIndexShard
from wikimirror.mirror.domain.rules import escape_title
from wikimirror.mirror.infrastructure.raw_store import RawPageStore, write_text_atomic

WORD_RE = re.compile(r"\w+", re.UNICODE)
SHARD_SUFFIX = ".json"


def pruning_floor(max_count: int) -> int:
    """round(ln(max_count)) with halves rounded up."""
    if max_count <= 0:
        return 0
    return int(math.floor(math.log(max_count) + 0.5))


class BuildIndexWorkflow:
    def __init__(
        self,
        config: MirrorConfig,
        raw_store: RawPageStore,
        skin: SkinPort,
        indices_dir: str | Path,
        show_progress: bool | None = None,
    ) -> None:
        self.config = config
        self.raw_store = raw_store
        self.skin = skin
        self.indices_dir = Path(indices_dir)
        self.show_progress = config.sync.show_progress if show_progress is None else show_progress

    @staticmethod
    def build_word_list(raw_page: RawPage) -> Counter[str]:
        text = BeautifulSoup(raw_page.content, "lxml").get_text(" ") if raw_page.content else ""
        words = WORD_RE.findall(f"{raw_page.title} {text}".lower())
        return Counter(words)

    def build(self, corpus: list[RawPage] | None = None) -> dict[str, WordIndexShard]:
        """Rebuild every shard from the corpus (the whole raw store by default)."""
        pages = self.raw_store.read_all() if corpus is None else corpus

        page_counts: list[tuple[str, Counter[str]]] = []
        totals: Counter[str] = Counter()
        for raw_page in tqdm(pages, desc="Index words", unit="page", disable=not self.show_progress):
            counts = self.build_word_list(raw_page)
            page_counts.append((raw_page.title, counts))
            totals.update(counts)

        floor = pruning_floor(max(totals.values())) if totals else 0
        kept = {word for word, count in totals.items() if count > floor}
        logger.info(
            "Index words: distinct={}, kept={}, pruning_floor={}, pages={}",
            len(totals),
            len(kept),
            floor,
            len(pages),
        )

        postings: dict[str, list[str]] = {}
        for title, counts in page_counts:
            for word in counts:
                if word not in kept:
                    continue
                titles = postings.setdefault(word, [])
                if not titles or titles[-1] != title:
                    titles.append(title)

        grouped: dict[str, dict[str, list[str]]] = {}
        prefix_length = max(1, self.config.index.prefix_length)
        for word, titles in postings.items():
            grouped.setdefault(word[:prefix_length], {})[word] = titles

        self._clear_shards()
        shards: dict[str, WordIndexShard] = {}
        for key, words in grouped.items():
            write_text_atomic(self.shard_path(key), self.skin.format_index(words))
            shards[key] = WordIndexShard(key=key, words={w: tuple(t) for w, t in words.items()})
        logger.info("Wrote {} index shards to {}", len(shards), str(self.indices_dir))
        return shards

    def shard_path(self, key: str) -> Path:
        return self.indices_dir / f"{escape_title(key)}{SHARD_SUFFIX}"

    def _clear_shards(self) -> None:
        self.indices_dir.mkdir(parents=True, exist_ok=True)
        for path in self.indices_dir.glob(f"*{SHARD_SUFFIX}"):
            if path.is_file():
                path.unlink()
