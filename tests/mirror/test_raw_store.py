import json
import unittest

from tests.utils.tempdir import managed_temp_dir
from wikimirror.mirror.domain.errors import RawPageNotFoundError
from wikimirror.mirror.domain.models import RawPage
from wikimirror.mirror.infrastructure.raw_store import RawPageStore


class RawPageStoreTests(unittest.TestCase):
    def test_write_then_read_returns_same_snapshot(self):
        with managed_temp_dir("raw_store") as tmp:
            store = RawPageStore(tmp / "raw")
            page = RawPage(
                title="Category:Cats",
                namespace=14,
                timestamp=1686787200,
                content="<p>Cats</p>",
                categories=("Animals",),
                members=("Tom", "File:Tom.png"),
            )

            store.write(page)

            self.assertEqual(store.read("Category:Cats"), page)

    def test_titles_with_slash_are_stored_flat(self):
        with managed_temp_dir("raw_store") as tmp:
            store = RawPageStore(tmp / "raw")
            store.write(RawPage(title="A/B", namespace=0, timestamp=0, content=""))
            store.write(RawPage(title="A%2B", namespace=0, timestamp=0, content=""))

            files = sorted(p.name for p in (tmp / "raw").iterdir())

            self.assertEqual(len(files), 2)
            self.assertEqual(sorted(store.list_all_titles()), ["A%2B", "A/B"])

    def test_rewrite_replaces_previous_snapshot(self):
        with managed_temp_dir("raw_store") as tmp:
            store = RawPageStore(tmp / "raw")
            store.write(RawPage(title="P", namespace=0, timestamp=1, content="old"))
            store.write(RawPage(title="P", namespace=0, timestamp=2, content="new"))

            page = store.read("P")

            self.assertEqual(page.timestamp, 2)
            self.assertEqual(page.content, "new")
            self.assertEqual(store.list_all_titles(), ["P"])

    def test_read_unknown_title_raises(self):
        with managed_temp_dir("raw_store") as tmp:
            store = RawPageStore(tmp / "raw")

            with self.assertRaises(RawPageNotFoundError):
                store.read("Nope")

    def test_unreadable_snapshot_is_skipped_when_listing(self):
        with managed_temp_dir("raw_store") as tmp:
            store = RawPageStore(tmp / "raw")
            store.write(RawPage(title="Good", namespace=0, timestamp=0, content=""))
            (tmp / "raw" / "broken.json").write_text("{not json", encoding="utf-8")

            self.assertEqual(store.list_all_titles(), ["Good"])

    def test_invalid_utf8_snapshot_is_skipped(self):
        with managed_temp_dir("raw_store") as tmp:
            store = RawPageStore(tmp / "raw")
            store.write(RawPage(title="Good", namespace=0, timestamp=0, content=""))
            (tmp / "raw" / "latin1.json").write_bytes(b'{"title": "Caf\xe9"}')

            self.assertEqual(store.list_all_titles(), ["Good"])
            self.assertEqual([p.title for p in store.read_all()], ["Good"])

    def test_read_all_uses_file_contents_when_name_differs_from_title(self):
        with managed_temp_dir("raw_store") as tmp:
            store = RawPageStore(tmp / "raw")
            store.write(RawPage(title="Good", namespace=0, timestamp=0, content=""))
            renamed = RawPage(title="Renamed Page", namespace=0, timestamp=7, content="<p>moved</p>")
            (tmp / "raw" / "legacy_name.json").write_text(json.dumps(renamed.to_dict()), encoding="utf-8")
            (tmp / "raw" / "untitled.json").write_text('{"content": "x"}', encoding="utf-8")

            pages = {p.title: p for p in store.read_all()}

            self.assertEqual(sorted(pages), ["Good", "Renamed Page"])
            self.assertEqual(pages["Renamed Page"].content, "<p>moved</p>")
            self.assertEqual(pages["Renamed Page"].timestamp, 7)

    def test_snapshot_file_is_plain_json(self):
        with managed_temp_dir("raw_store") as tmp:
            store = RawPageStore(tmp / "raw")
            path = store.write(RawPage(title="File:X.png", namespace=6, timestamp=5, content="", file="a/ab/X.png"))

            payload = json.loads(path.read_text(encoding="utf-8"))

            self.assertEqual(payload["title"], "File:X.png")
            self.assertEqual(payload["file"], "a/ab/X.png")
            self.assertEqual(payload["members"], [])


if __name__ == "__main__":
    unittest.main()
