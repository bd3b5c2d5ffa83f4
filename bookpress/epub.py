"""EPUB e-book writer."""

from __future__ import annotations

import html
import logging
import uuid
import zipfile
from pathlib import Path

from . import styles
from .render import FIGURES_DIR

logger = logging.getLogger(__name__)

# Fixed entry timestamp so unchanged sources give an identical archive.
ZIP_TIMESTAMP = (1980, 1, 1, 0, 0, 0)
MEDIA_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".svg": "image/svg+xml",
    ".gif": "image/gif",
}


def book_identifier(manifest):
    """Stable identifier derived from the book title and authors."""
    seed = manifest.title + "|" + ";".join(manifest.authors)
    return f"urn:uuid:{uuid.uuid5(uuid.NAMESPACE_URL, seed)}"


def create_mimetype():
    """Create EPUB mimetype file."""
    return "application/epub+zip"


def create_container_xml():
    """Create EPUB container.xml."""
    return """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>"""


def create_content_opf(manifest, chapters, figures):
    """Create EPUB content.opf file."""
    esc = html.escape
    manifest_items = [
        '<item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>',
        '<item id="css" href="styles.css" media-type="text/css"/>',
    ]
    spine_items = []
    for i, (filename, _title) in enumerate(chapters, 1):
        chapter_id = f"doc{i}"
        manifest_items.append(f'<item id="{chapter_id}" href="{filename}" media-type="application/xhtml+xml"/>')
        spine_items.append(f'<itemref idref="{chapter_id}"/>')
    for i, name in enumerate(sorted(figures), 1):
        media_type = MEDIA_TYPES.get(Path(name).suffix.lower(), "application/octet-stream")
        manifest_items.append(f'<item id="figure{i}" href="{FIGURES_DIR}/{esc(name)}" media-type="{media_type}"/>')

    creators = "\n    ".join(f"<dc:creator>{esc(author)}</dc:creator>" for author in manifest.authors)
    date = f"<dc:date>{esc(manifest.date)}</dc:date>" if manifest.date else ""
    description = f"<dc:description>{esc(manifest.description)}</dc:description>" if manifest.description else ""
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" unique-identifier="bookid" version="2.0">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:opf="http://www.idpf.org/2007/opf">
    <dc:title>{esc(manifest.title)}</dc:title>
    {creators}
    <dc:identifier id="bookid">{book_identifier(manifest)}</dc:identifier>
    <dc:language>{esc(manifest.language)}</dc:language>
    {date}
    {description}
  </metadata>
  <manifest>
    {chr(10).join(manifest_items)}
  </manifest>
  <spine toc="ncx">
    {chr(10).join(spine_items)}
  </spine>
</package>"""


def create_toc_ncx(manifest, chapters):
    """Create the EPUB 2 navigation map."""
    esc = html.escape
    points = []
    for i, (filename, title) in enumerate(chapters, 1):
        points.append(
            f'<navPoint id="navpoint-{i}" playOrder="{i}">'
            f"<navLabel><text>{esc(title)}</text></navLabel>"
            f'<content src="{filename}"/></navPoint>'
        )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
  <head>
    <meta name="dtb:uid" content="{book_identifier(manifest)}"/>
    <meta name="dtb:depth" content="1"/>
  </head>
  <docTitle><text>{esc(manifest.title)}</text></docTitle>
  <navMap>
    {chr(10).join(points)}
  </navMap>
</ncx>"""


def create_chapter_xhtml(title, content):
    """Create XHTML file for a chapter."""
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE html PUBLIC "-//W3C//DTD XHTML 1.1//EN" "http://www.w3.org/TR/xhtml11/DTD/xhtml11.dtd">
<html xmlns="http://www.w3.org/1999/xhtml">
<head>
    <title>{html.escape(title)}</title>
    <link rel="stylesheet" type="text/css" href="styles.css"/>
</head>
<body>
{content}
</body>
</html>"""


def _write(archive, name, data, compress_type=zipfile.ZIP_DEFLATED):
    info = zipfile.ZipInfo(name, date_time=ZIP_TIMESTAMP)
    info.compress_type = compress_type
    info.external_attr = 0o644 << 16
    archive.writestr(info, data)


def render_epub(renderer, dest):
    """Generate the EPUB e-book from a ``BookRenderer``."""
    manifest = renderer.manifest
    chapter_files = {chapter.href: f"chapter{i}.xhtml" for i, chapter in enumerate(renderer.chapters, 1)}

    def link_for(chapter_href, anchor_id):
        return f"{chapter_files[chapter_href]}#{anchor_id}"

    documents = [("title.xhtml", manifest.title, renderer.title_page())]
    for chapter in renderer.chapters:
        logger.debug("Adding %s to the EPUB", chapter.path.name)
        content = renderer.chapter_html(chapter, link_for, "references.xhtml", output_format="xhtml")
        documents.append((chapter_files[chapter.href], chapter.title, content))
    references = renderer.references_html()
    if references:
        documents.append(("references.xhtml", "References", references))

    output_file = Path(dest) / f"{manifest.book_filename}.epub"
    output_file.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(output_file, "w", zipfile.ZIP_DEFLATED) as epub:
        # Add mimetype (uncompressed, first entry)
        _write(epub, "mimetype", create_mimetype(), compress_type=zipfile.ZIP_STORED)
        _write(epub, "META-INF/container.xml", create_container_xml())
        _write(epub, "OEBPS/styles.css", styles.epub_css())
        toc = [(filename, title) for filename, title, _ in documents]
        _write(epub, "OEBPS/content.opf", create_content_opf(manifest, toc, renderer.figures))
        _write(epub, "OEBPS/toc.ncx", create_toc_ncx(manifest, toc))
        for filename, title, content in documents:
            _write(epub, f"OEBPS/{filename}", create_chapter_xhtml(title, content))
        for name in sorted(renderer.figures):
            _write(epub, f"OEBPS/{FIGURES_DIR}/{name}", renderer.figures[name])

    logger.info("✅ EPUB e-book generated: %s", output_file.name)
    return output_file
