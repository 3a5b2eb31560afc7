import unittest

from bs4 import BeautifulSoup

from tests.utils.fakes import MIRROR_URL, make_config
from tests.utils.tempdir import managed_temp_dir
from wikimirror.mirror.application.page_builder import PageBuilder
from wikimirror.mirror.domain.models import RawPage
from wikimirror.mirror.infrastructure.skin import Skin


def hrefs(html):
    return [a["href"] for a in BeautifulSoup(html, "lxml").find_all("a")]


class PageBuilderTests(unittest.TestCase):
    def _builder(self, tmp):
        skin = Skin.install_default(tmp / "skin")
        return PageBuilder(make_config(), skin, tmp / "pages")

    def test_make_link_escapes_and_quotes_title(self):
        with managed_temp_dir("page_builder") as tmp:
            builder = self._builder(tmp)

            self.assertEqual(builder.make_link("Main Page"), f"{MIRROR_URL}/Main%20Page.html")
            self.assertEqual(builder.make_link("A/B"), f"{MIRROR_URL}/A%252B.html")

    def test_article_links_point_into_the_mirror(self):
        with managed_temp_dir("page_builder") as tmp:
            builder = self._builder(tmp)
            content = (
                '<p><a href="/wiki/Foo_Bar#History">f</a>'
                ' <a href="https://wiki.test/index.php?title=Some_Page">i</a>'
                ' <a href="https://other.test/x">o</a>'
                ' <a href="/w/load.php">l</a>'
                ' <a href="#top">t</a></p>'
            )

            rewritten = hrefs(builder.rewrite_content(content))

            self.assertEqual(
                rewritten,
                [
                    f"{MIRROR_URL}/Foo%20Bar.html#History",
                    f"{MIRROR_URL}/Some%20Page.html",
                    "https://other.test/x",
                    f"{MIRROR_URL}/w/load.php",
                    "#top",
                ],
            )

    def test_image_sources_point_to_local_copies(self):
        with managed_temp_dir("page_builder") as tmp:
            builder = self._builder(tmp)
            content = '<img src="/images/a/ab/Logo.png" srcset="/images/thumb/a/ab/Logo.png/2x.png 2x">'

            img = BeautifulSoup(builder.rewrite_content(content), "lxml").find("img")

            self.assertEqual(img["src"], f"{MIRROR_URL}/images/a/ab/Logo.png")
            self.assertEqual(img["srcset"], f"{MIRROR_URL}/images/thumb/a/ab/Logo.png/2x.png 2x")

    def test_data_uri_srcset_candidates_are_left_alone(self):
        with managed_temp_dir("page_builder") as tmp:
            builder = self._builder(tmp)
            data_uri = "data:image/png;base64,iVBORw0KGgo="
            content = f'<img src="{data_uri}" srcset="{data_uri} 1x, /images/thumb/a/ab/Logo.png/2x.png 2x">'

            img = BeautifulSoup(builder.rewrite_content(content), "lxml").find("img")

            self.assertEqual(img["src"], data_uri)
            self.assertEqual(img["srcset"], f"{data_uri} 1x, {MIRROR_URL}/images/thumb/a/ab/Logo.png/2x.png 2x")

    def test_build_is_deterministic(self):
        with managed_temp_dir("page_builder") as tmp:
            builder = self._builder(tmp)
            page = RawPage(
                title="Main Page",
                namespace=0,
                timestamp=1686787200,
                content='<p>Hello <a href="/wiki/Cats">cats</a></p>',
                categories=("Cats",),
            )

            self.assertEqual(builder.build(page).html, builder.build(page).html)

    def test_category_page_lists_members_and_categories(self):
        with managed_temp_dir("page_builder") as tmp:
            builder = self._builder(tmp)
            page = RawPage(
                title="Category:Cats",
                namespace=14,
                timestamp=0,
                content="<p>All cats.</p>",
                categories=("Animals",),
                members=("Tom", "File:Tom.png"),
            )

            links = hrefs(builder.build(page).html)

            self.assertIn(f"{MIRROR_URL}/Tom.html", links)
            self.assertIn(f"{MIRROR_URL}/File%3ATom.png.html", links)
            self.assertIn(f"{MIRROR_URL}/Category%3AAnimals.html", links)

    def test_file_page_links_local_image(self):
        with managed_temp_dir("page_builder") as tmp:
            builder = self._builder(tmp)
            page = RawPage(title="File:Logo.png", namespace=6, timestamp=0, content="", file="a/ab/Logo.png")

            links = hrefs(builder.build(page).html)

            self.assertIn(f"{MIRROR_URL}/images/a/ab/Logo.png", links)

    def test_write_uses_escaped_file_name(self):
        with managed_temp_dir("page_builder") as tmp:
            builder = self._builder(tmp)
            built = builder.build(RawPage(title="A/B", namespace=0, timestamp=0, content="<p>x</p>"))

            path = builder.write(built)

            self.assertEqual(path, tmp / "pages" / "A%2B.html")
            self.assertEqual(path.read_text(encoding="utf-8"), built.html)


if __name__ == "__main__":
    unittest.main()
