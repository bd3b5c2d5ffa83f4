"""Chapter discovery and ordering."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .crossref import fence_pattern
from .errors import ManifestError

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.md"
IGNORED_FILENAMES = {"README.md"}

FRONT_MATTER_PATTERN = re.compile(r"\A---[ \t]*\n(.*?\n)---[ \t]*\n", re.DOTALL)
TITLE_PATTERN = re.compile(r"^#\s+(.+)$", re.MULTILINE)
NUMERIC_PREFIX_PATTERN = re.compile(r"^(\d+)")
UNNUMBERED_MARKER = re.compile(r"\s*\{-\}\s*$")
HEADING_ANCHOR_PATTERN = re.compile(r"\s*\{#[^}]*\}\s*$")


@dataclass
class Chapter:
    """One ordered source document of the book."""

    path: Path
    text: str
    title: str
    slug: str
    href: str
    number: Optional[int] = None
    part: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_index(self) -> bool:
        return self.path.name == INDEX_FILENAME

    @property
    def label(self) -> str:
        if self.number is None:
            return self.title
        return f"Chapter {self.number}: {self.title}"


def split_front_matter(content):
    """Return ``(meta, body)`` for a document with optional YAML front matter."""
    match = FRONT_MATTER_PATTERN.match(content)
    if not match:
        return {}, content
    try:
        meta = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        raise ManifestError(f"Invalid front matter: {exc}") from exc
    if not isinstance(meta, dict):
        raise ManifestError("Front matter must be a YAML mapping")
    return meta, content[match.end():]


def extract_title(content, fallback):
    """Return ``(title, numbered)`` from the first level-one heading."""
    title_match = TITLE_PATTERN.search(content)
    if not title_match:
        return fallback, True
    title = HEADING_ANCHOR_PATTERN.sub("", title_match.group(1).strip())
    numbered = not UNNUMBERED_MARKER.search(title)
    title = HEADING_ANCHOR_PATTERN.sub("", UNNUMBERED_MARKER.sub("", title))
    return title.strip(), numbered


def chapter_sort_key(path):
    match = NUMERIC_PREFIX_PATTERN.match(path.name)
    return (int(match.group(1)) if match else 0, path.name)


def discover_chapter_files(root):
    """Find chapter documents by their numeric filename prefix."""
    root = Path(root)
    files = []
    index = root / INDEX_FILENAME
    if index.exists():
        files.append(index)
    numbered = [
        path
        for path in root.glob("*.md")
        if NUMERIC_PREFIX_PATTERN.match(path.name)
        and not path.name.startswith("_")
        and path.name not in IGNORED_FILENAMES
    ]
    files.extend(sorted(numbered, key=chapter_sort_key))
    return files


def read_markdown_file(filepath):
    """Read and return the content of a markdown file."""
    with open(filepath, "r", encoding="utf-8") as file:
        return file.read()


def load_chapter(path, position, part=None):
    content = read_markdown_file(path)
    meta, body = split_front_matter(content)
    title, numbered = extract_title(fence_pattern.sub("", body), f"Chapter {position}")
    if meta.get("title"):
        title = str(meta["title"])
    if "numbered" in meta:
        numbered = bool(meta["numbered"])
    slug = path.stem
    is_index = path.name == INDEX_FILENAME
    chapter = Chapter(
        path=path,
        text=body,
        title=title,
        slug=slug,
        href="index.html" if is_index else f"{slug}.html",
        part=part,
        meta=meta,
    )
    chapter.meta["numbered"] = numbered and not is_index
    return chapter


def collect_chapters(manifest) -> List[Chapter]:
    """Return the book's chapters in manifest-declared order, numbered."""
    root = manifest.root
    if manifest.chapters:
        entries = []
        for entry in manifest.chapters:
            path = (root / entry.path).resolve()
            if not path.exists():
                raise ManifestError(f"Chapter listed in manifest does not exist: {entry.path}")
            entries.append((path, entry.part))
    else:
        entries = [(path, None) for path in discover_chapter_files(root)]

    if not entries:
        raise ManifestError(f"No chapter documents found in {root}")

    seen = set()
    chapters = []
    number = 0
    for position, (path, part) in enumerate(entries, 1):
        if path in seen:
            raise ManifestError(f"Chapter listed twice: {path.name}")
        seen.add(path)
        chapter = load_chapter(path, position, part)
        if chapter.meta["numbered"]:
            number += 1
            chapter.number = number
        logger.debug("Collected %s as %r", path.name, chapter.label)
        chapters.append(chapter)

    hrefs = [chapter.href for chapter in chapters]
    if len(set(hrefs)) != len(hrefs):
        raise ManifestError("Two chapters map to the same output page")
    return chapters
