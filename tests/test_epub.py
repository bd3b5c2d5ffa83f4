from __future__ import annotations

import zipfile

from conftest import make_renderer
from bookpress.epub import book_identifier, render_epub


def test_epub_layout(book_root, tmp_path):
    path = render_epub(make_renderer(book_root), tmp_path)

    assert path.name == "test-cookbook.epub"
    with zipfile.ZipFile(path) as epub:
        infos = epub.infolist()
        assert infos[0].filename == "mimetype"
        assert infos[0].compress_type == zipfile.ZIP_STORED
        assert epub.read("mimetype") == b"application/epub+zip"
        names = epub.namelist()
        for name in (
            "META-INF/container.xml",
            "OEBPS/content.opf",
            "OEBPS/toc.ncx",
            "OEBPS/title.xhtml",
            "OEBPS/chapter1.xhtml",
            "OEBPS/chapter3.xhtml",
            "OEBPS/references.xhtml",
            "OEBPS/figures/02-plots-scatter-1.png",
        ):
            assert name in names
        toc = epub.read("OEBPS/toc.ncx").decode("utf-8")
        assert "<text>Basics</text>" in toc
        chapter = epub.read("OEBPS/chapter2.xhtml").decode("utf-8")
        assert 'href="chapter2.xhtml#sec-basics"' in chapter
        assert 'href="chapter3.xhtml#fig-scatter"' in chapter
        opf = epub.read("OEBPS/content.opf").decode("utf-8")
        assert book_identifier(make_renderer(book_root).manifest) in opf
        assert "<dc:creator>Grace Hopper</dc:creator>" in opf


def test_epub_is_reproducible(book_root, tmp_path):
    first = render_epub(make_renderer(book_root), tmp_path / "a").read_bytes()
    second = render_epub(make_renderer(book_root), tmp_path / "b").read_bytes()

    assert first == second
