"""Markdown to HTML rendering of the book: site pages and the printable single page."""

from __future__ import annotations

import html
import logging
import re
from pathlib import Path
from typing import Dict, List

import markdown
from markdown.extensions.toc import slugify

from . import styles
from .crossref import figure_number, html_id, outside_code, rewrite_heading_attrs
from .executor import ansi_to_html

logger = logging.getLogger(__name__)

MARKDOWN_EXTENSIONS = ["tables", "fenced_code", "codehilite", "toc", "attr_list"]
EXTENSION_CONFIGS = {"codehilite": {"guess_lang": False, "css_class": "codehilite"}}

PLACEHOLDER = "BOOKPRESSCHUNK{:05d}"
FIGURES_DIR = "figures"
REFERENCES_PAGE = "references.html"
STYLESHEET = "style.css"

first_h1_pattern = re.compile(r"^#(?!#)\s+", re.MULTILINE)


def new_markdown(output_format="html", id_prefix=None):
    """Initialize the markdown processor.

    With ``id_prefix`` every generated heading id starts with it, so chapters
    sharing one page do not repeat ids.
    """
    configs = dict(EXTENSION_CONFIGS)
    if id_prefix:
        configs["toc"] = {"slugify": lambda value, separator: f"{id_prefix}{separator}{slugify(value, separator)}"}
    return markdown.Markdown(
        extensions=MARKDOWN_EXTENSIONS,
        extension_configs=configs,
        output_format=output_format,
    )


def esc(text):
    return html.escape(str(text), quote=True)


def merge_text_outputs(outputs):
    """Join consecutive text outputs of the same stream into one block."""
    merged = []
    for out in outputs:
        if merged and out.kind == "text" and merged[-1].kind == "text" and merged[-1].stream == out.stream:
            previous = merged[-1]
            merged[-1] = type(out)("text", previous.data + out.data, mime=previous.mime, stream=previous.stream)
        else:
            merged.append(out)
    return merged


class BookRenderer:
    """Turn collected chapters and executed chunk outputs into HTML."""

    def __init__(self, manifest, chapters, chunks_by_chapter, outputs, crossref):
        self.manifest = manifest
        self.chapters = chapters
        self.chunks_by_chapter = chunks_by_chapter
        self.outputs = outputs
        self.crossref = crossref
        self.figures: Dict[str, bytes] = {}
        self._fragments = {}
        self._placeholders: Dict[str, str] = {}
        self._prepare_chunks()

    # Chunk output ---------------------------------------------------------------
    def _prepare_chunks(self):
        for chapter in self.chapters:
            position = 0
            for chunk in self.chunks_by_chapter.get(chapter.path.name, []):
                caption = ""
                if chunk.option("fig_cap") and chunk.option("include"):
                    position += 1
                    caption = f"Figure {figure_number(chapter, position)}: {chunk.option('fig_cap')}"
                self._fragments[(chapter.path.name, chunk.index)] = self._chunk_markdown(chapter, chunk, caption)

    def _placeholder(self, fragment_html):
        token = PLACEHOLDER.format(len(self._placeholders) + 1)
        self._placeholders[token] = fragment_html
        return f"\n\n{token}\n\n"

    def _figure_html(self, chapter, chunk, out, count, caption):
        name = f"{chapter.slug}-{chunk.label or 'chunk-' + str(chunk.index)}-{count}.{out.extension}"
        name = re.sub(r"[^A-Za-z0-9_.-]", "-", name)
        self.figures[name] = out.data
        src = f"{FIGURES_DIR}/{name}"
        figure_id = f' id="{html_id("fig:" + chunk.label)}"' if chunk.label and caption and count == 1 else ""
        alt = esc(chunk.option("fig_cap") or name)
        parts = [f"<figure{figure_id}>", f'<img src="{src}" alt="{alt}" />']
        if caption:
            parts.append(f"<figcaption>{esc(caption)}</figcaption>")
        parts.append("</figure>")
        return "".join(parts)

    def _chunk_markdown(self, chapter, chunk, caption):
        if not chunk.option("include"):
            return ""
        pieces = []
        if chunk.option("echo"):
            pieces.append(f"\n\n```{chunk.engine}\n{chunk.code.rstrip()}\n```\n\n")
        results = chunk.option("results")
        outputs = merge_text_outputs(self.outputs.get((chunk.chapter, chunk.index), []))
        figures = 0
        for out in outputs:
            if out.kind == "image":
                figures += 1
                pieces.append(self._placeholder(self._figure_html(chapter, chunk, out, figures, caption)))
            elif out.kind == "error":
                body = ansi_to_html(out.data, default_style="color:#c62828;")
                pieces.append(self._placeholder(f'<div class="chunk-output chunk-error">{body}</div>'))
            elif results == "hide":
                continue
            elif results == "asis" and out.kind in ("text", "markdown"):
                pieces.append(f"\n\n{out.data}\n\n")
            elif out.kind == "html":
                pieces.append(self._placeholder(f'<div class="chunk-output">{out.data}</div>'))
            elif out.kind == "markdown":
                pieces.append(f"\n\n{out.data}\n\n")
            else:
                pieces.append(self._placeholder(f'<div class="chunk-output">{ansi_to_html(out.data)}</div>'))
        if chunk.label and caption and not figures:
            # Keep @fig: links valid when the chunk drew nothing.
            pieces.append(self._placeholder(f'<span id="{html_id("fig:" + chunk.label)}"></span>'))
        return "".join(pieces)

    # Chapters -------------------------------------------------------------------
    def preprocess_markdown(self, chapter, link_for, references_href):
        """Swap chunks for their rendered form and resolve references."""
        content = chapter.text
        chunks = self.chunks_by_chapter.get(chapter.path.name, [])
        for chunk in sorted(chunks, key=lambda c: c.start, reverse=True):
            fragment = self._fragments[(chapter.path.name, chunk.index)]
            content = content[: chunk.start] + fragment + content[chunk.end:]

        if chapter.number is not None:
            numbered = []

            def number_heading(part):
                if numbered:
                    return part
                match = first_h1_pattern.search(part)
                if not match:
                    return part
                numbered.append(True)
                return part[: match.end()] + f"{chapter.number} " + part[match.end():]

            content = outside_code(content, number_heading)

        content = outside_code(content, rewrite_heading_attrs)
        return self.crossref.resolve(content, chapter.path.name, link_for, references_href)

    def substitute_placeholders(self, text):
        for token, fragment in self._placeholders.items():
            if token in text:
                text = text.replace(f"<p>{token}</p>", fragment).replace(token, fragment)
        return text

    def chapter_html(self, chapter, link_for, references_href, output_format="html", id_prefix=None):
        md = new_markdown(output_format, id_prefix)
        processed = self.preprocess_markdown(chapter, link_for, references_href)
        body = md.convert(processed)
        md.reset()
        return self.substitute_placeholders(body)

    def references_html(self):
        entries = self.crossref.cited_entries()
        if not entries:
            return ""
        items = "\n".join(f'<p id="ref-{esc(entry.key)}">{entry.reference_html()}</p>' for entry in entries)
        return f'<div class="references">\n<h1 id="references">References</h1>\n{items}\n</div>'

    def write_figures(self, dest):
        written = []
        if not self.figures:
            return written
        figures_dir = Path(dest) / FIGURES_DIR
        figures_dir.mkdir(parents=True, exist_ok=True)
        for name in sorted(self.figures):
            path = figures_dir / name
            path.write_bytes(self.figures[name])
            written.append(path)
        return written

    # Shared page pieces ---------------------------------------------------------
    def chapter_label(self, chapter):
        if chapter.number is None:
            return esc(chapter.title)
        return f"{chapter.number} {esc(chapter.title)}"

    def title_page(self):
        m = self.manifest
        parts = ['<div class="title-page">', f"<h1>{esc(m.title)}</h1>"]
        if m.subtitle:
            parts.append(f'<div class="subtitle">{esc(m.subtitle)}</div>')
        if m.description:
            parts.append(f'<div class="subtitle">{esc(m.description)}</div>')
        if m.authors:
            parts.append(f'<div class="authors">{esc(", ".join(m.authors))}</div>')
        if m.date:
            parts.append(f'<div class="date">{esc(m.date)}</div>')
        parts.append("</div>")
        return "\n".join(parts)

    def toc_html(self, href_for, current=None, references_href=None):
        items = []
        part = None
        for chapter in self.chapters:
            if chapter.part and chapter.part != part:
                items.append(f'<li class="part">{esc(chapter.part)}</li>')
            part = chapter.part
            active = " active" if chapter is current else ""
            items.append(
                f'<li class="chapter{active}"><a href="{href_for(chapter)}">{self.chapter_label(chapter)}</a></li>'
            )
        if references_href:
            items.append(f'<li class="chapter"><a href="{references_href}">References</a></li>')
        return '<nav class="toc">\n<ul>\n' + "\n".join(items) + "\n</ul>\n</nav>"

    def page(self, title, body, css_href=STYLESHEET, inline_css=None):
        head_style = f"<style>{inline_css}</style>" if inline_css else f'<link rel="stylesheet" href="{css_href}" />'
        return f"""<!DOCTYPE html>
<html lang="{esc(self.manifest.language)}">
<head>
    <meta charset="UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
    <title>{esc(title)}</title>
    {head_style}
</head>
<body>
{body}
</body>
</html>
"""

    # Paginated site -------------------------------------------------------------
    def render_site(self, dest) -> List[Path]:
        """Write one page per chapter plus index, references and stylesheet."""
        dest = Path(dest)
        dest.mkdir(parents=True, exist_ok=True)

        def link_for(chapter_href, anchor_id):
            return f"{chapter_href}#{anchor_id}"

        bodies = []
        for chapter in self.chapters:
            logger.info("📄 Processing: %s", chapter.path.name)
            bodies.append(self.chapter_html(chapter, link_for, REFERENCES_PAGE))

        references = self.references_html()
        references_href = REFERENCES_PAGE if references else None
        pages = []
        has_index = any(chapter.is_index for chapter in self.chapters)
        if not has_index:
            pages.append(("index.html", self.manifest.title, self.title_page(), None))

        for chapter, body in zip(self.chapters, bodies):
            if chapter.is_index:
                body = self.title_page() + "\n" + body
            pages.append((chapter.href, chapter.title, body, chapter))
        if references:
            pages.append((REFERENCES_PAGE, "References", references, None))

        written = []
        for i, (href, title, body, chapter) in enumerate(pages):
            previous_link = f'<a class="previous" href="{pages[i - 1][0]}">&larr; {esc(pages[i - 1][1])}</a>' if i > 0 else "<span></span>"
            next_link = f'<a class="next" href="{pages[i + 1][0]}">{esc(pages[i + 1][1])} &rarr;</a>' if i + 1 < len(pages) else "<span></span>"
            sidebar = (
                '<aside class="sidebar">\n'
                f'<div class="book-title"><a href="index.html">{esc(self.manifest.title)}</a></div>\n'
                f"{self.toc_html(lambda c: c.href, current=chapter, references_href=references_href)}\n"
                "</aside>"
            )
            content = (
                f'<div class="book">\n{sidebar}\n<main class="page">\n{body}\n'
                f'<div class="nav-links">{previous_link}{next_link}</div>\n</main>\n</div>'
            )
            page_title = self.manifest.title if title == self.manifest.title else f"{title} | {self.manifest.title}"
            path = dest / href
            path.write_text(self.page(page_title, content), encoding="utf-8")
            written.append(path)

        stylesheet = dest / STYLESHEET
        stylesheet.write_text(styles.site_css(), encoding="utf-8")
        written.append(stylesheet)
        return written

    # Single printable page ------------------------------------------------------
    def render_single(self, dest) -> Path:
        """Write the whole book as one printable HTML page."""
        dest = Path(dest)
        dest.mkdir(parents=True, exist_ok=True)

        def link_for(chapter_href, anchor_id):
            return f"#{anchor_id}"

        sections = []
        for i, chapter in enumerate(self.chapters):
            body = self.chapter_html(chapter, link_for, "", id_prefix=chapter.slug)
            if i > 0:
                sections.append('<div class="chapter-separator"></div>')
            sections.append(f'<section class="chapter" id="chapter-{esc(chapter.slug)}">\n{body}\n</section>')

        references = self.references_html()
        if references:
            sections.append('<div class="chapter-separator"></div>')
            sections.append(references)

        toc = self.toc_html(
            lambda c: f"#chapter-{esc(c.slug)}",
            references_href="#references" if references else None,
        )
        usage = (
            '<div class="no-print" style="background: #e8f5e8; padding: 15px; margin: 20px 0; border-radius: 8px;">\n'
            "<strong>Print to PDF:</strong> use your browser's print dialog and save as PDF.\n</div>"
        )
        body = "\n".join([self.title_page(), usage, '<div class="toc">\n<h1>Table of Contents</h1>', toc, "</div>"] + sections)
        path = dest / f"{self.manifest.book_filename}.html"
        path.write_text(self.page(self.manifest.title, body, inline_css=styles.print_css()), encoding="utf-8")
        return path
