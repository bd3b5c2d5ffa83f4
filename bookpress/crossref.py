"""Cross references between chapters and bibliography citations."""

from __future__ import annotations

import html
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from .errors import BuildError, ManifestError

logger = logging.getLogger(__name__)

# Collect anchor definitions {#sec:id} on headings
heading_pattern = re.compile(
    r"^(?P<level>#+)\s+(?P<title>.*?)\s*\{#(?P<kind>sec):(?P<ident>[A-Za-z0-9_-]+)\}\s*$",
    re.MULTILINE,
)
heading_attr_pattern = re.compile(r"^(?P<head>#+\s+.*?)(?P<attrs>(?:\s*\{(?:-|#[a-z]+:[A-Za-z0-9_-]+)\})+)\s*$", re.MULTILINE)
attr_token_pattern = re.compile(r"\{(-|#([a-z]+):([A-Za-z0-9_-]+))\}")
ref_pattern = re.compile(r"(?<![\w@\[])@(sec|fig):([A-Za-z0-9_-]+)")
cite_pattern = re.compile(r"\[(@[^\]\s;]+(?:\s*;\s*@[^\]\s;]+)*)\]")
code_pattern = re.compile(r"^(?P<fence>`{3,})[^\n]*\n.*?^(?P=fence)[ \t]*$|`[^`\n]+`", re.MULTILINE | re.DOTALL)
fence_pattern = re.compile(r"^(?P<fence>`{3,})[^\n]*\n.*?^(?P=fence)[ \t]*$", re.MULTILINE | re.DOTALL)


def html_id(key):
    """Return the HTML id for an anchor key such as ``sec:intro``."""
    return key.replace(":", "-")


@dataclass
class Anchor:
    key: str
    chapter_href: str
    label: str

    @property
    def html_id(self) -> str:
        return html_id(self.key)


@dataclass
class BibEntry:
    key: str
    authors: List[str] = field(default_factory=list)
    year: str = ""
    title: str = ""
    container: str = ""
    publisher: str = ""
    url: str = ""

    @classmethod
    def from_csl(cls, item) -> "BibEntry":
        key = str(item.get("id") or "").strip()
        if not key:
            raise ManifestError(f"Bibliography entry without an id: {item}")
        authors = []
        for person in item.get("author") or item.get("editor") or []:
            if isinstance(person, dict):
                name = person.get("family") or person.get("literal") or ""
                given = person.get("given") or ""
                authors.append(f"{name}, {given}" if given and name else str(name or given))
            else:
                authors.append(str(person))
        year = ""
        issued = item.get("issued") or {}
        if isinstance(issued, dict):
            parts = issued.get("date-parts") or []
            if parts and parts[0]:
                year = str(parts[0][0])
            elif issued.get("literal"):
                year = str(issued["literal"])
        elif issued:
            year = str(issued)
        return cls(
            key=key,
            authors=authors,
            year=year,
            title=str(item.get("title") or ""),
            container=str(item.get("container-title") or ""),
            publisher=str(item.get("publisher") or ""),
            url=str(item.get("URL") or item.get("url") or ""),
        )

    @property
    def families(self) -> List[str]:
        return [author.split(",")[0].strip() for author in self.authors]

    def citation(self):
        """Author-year label, e.g. ``Wickham and Grolemund 2017``."""
        families = self.families
        if not families:
            who = self.title or self.key
        elif len(families) == 1:
            who = families[0]
        elif len(families) == 2:
            who = f"{families[0]} and {families[1]}"
        else:
            who = f"{families[0]} et al."
        return f"{who} {self.year}".strip()

    def reference_html(self):
        parts = []
        if self.authors:
            parts.append(html.escape("; ".join(self.authors)) + ".")
        if self.year:
            parts.append(html.escape(self.year) + ".")
        if self.title:
            parts.append(f"<em>{html.escape(self.title)}</em>.")
        if self.container:
            parts.append(html.escape(self.container) + ".")
        if self.publisher:
            parts.append(html.escape(self.publisher) + ".")
        if self.url:
            url = html.escape(self.url, quote=True)
            parts.append(f'<a href="{url}">{url}</a>')
        return " ".join(parts)

    def sort_key(self):
        return (self.families[0].lower() if self.families else self.key.lower(), self.year, self.key)


def load_bibliography(root, paths) -> Dict[str, BibEntry]:
    """Load CSL-JSON or CSL-YAML bibliography files."""
    entries: Dict[str, BibEntry] = {}
    for name in paths:
        path = Path(root) / name
        if not path.exists():
            raise ManifestError(f"Bibliography file not found: {name}")
        text = path.read_text(encoding="utf-8")
        try:
            if path.suffix.lower() == ".json":
                data = json.loads(text)
            elif path.suffix.lower() in {".yaml", ".yml"}:
                data = yaml.safe_load(text)
            else:
                raise ManifestError(f"Unsupported bibliography format: {name} (use CSL JSON or YAML)")
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ManifestError(f"Could not parse bibliography {name}: {exc}") from exc
        if isinstance(data, dict):
            data = data.get("references", [])
        if not isinstance(data, list):
            raise ManifestError(f"Bibliography {name} must be a list of CSL items")
        for item in data:
            entry = BibEntry.from_csl(item)
            if entry.key in entries:
                logger.warning("Duplicate bibliography key %s in %s", entry.key, name)
            entries[entry.key] = entry
    return entries


def rewrite_heading_attrs(text):
    """Turn ``{#sec:id}`` and ``{-}`` heading markers into attr_list syntax."""

    def repl(match):
        attrs = []
        for token in attr_token_pattern.finditer(match.group("attrs")):
            if token.group(1) == "-":
                attrs.append(".unnumbered")
            else:
                attrs.append("#" + html_id(f"{token.group(2)}:{token.group(3)}"))
        return f"{match.group('head')} {{: {' '.join(attrs)} }}"

    return heading_attr_pattern.sub(repl, text)


def outside_code(text, func):
    """Apply ``func`` to the parts of ``text`` that are not code."""
    pieces = []
    last = 0
    for match in code_pattern.finditer(text):
        pieces.append(func(text[last:match.start()]))
        pieces.append(match.group(0))
        last = match.end()
    pieces.append(func(text[last:]))
    return "".join(pieces)


def figure_number(chapter, position):
    if chapter.number is None:
        return str(position)
    return f"{chapter.number}.{position}"


def collect_anchors(chapters, chunks_by_chapter) -> Dict[str, Anchor]:
    """Collect every ``sec:`` and ``fig:`` anchor of the book."""
    anchors: Dict[str, Anchor] = {}

    def add(anchor):
        if anchor.key in anchors:
            raise BuildError(f"Duplicate anchor '{anchor.key}' in {anchor.chapter_href}")
        anchors[anchor.key] = anchor

    for chapter in chapters:
        stripped = fence_pattern.sub("", chapter.text)
        for match in heading_pattern.finditer(stripped):
            key = f"sec:{match.group('ident')}"
            title = re.sub(r"\s*\{-\}\s*$", "", match.group("title")).strip()
            if len(match.group("level")) == 1 and chapter.number is not None:
                label = f"Chapter {chapter.number}"
            else:
                label = title
            add(Anchor(key=key, chapter_href=chapter.href, label=label))
        position = 0
        for chunk in chunks_by_chapter.get(chapter.path.name, []):
            if not chunk.option("fig_cap") or not chunk.option("include"):
                continue
            position += 1
            if chunk.label:
                add(
                    Anchor(
                        key=f"fig:{chunk.label}",
                        chapter_href=chapter.href,
                        label=f"Figure {figure_number(chapter, position)}",
                    )
                )
    return anchors


class CrossReferencer:
    """Resolve ``@sec:id``/``@fig:id`` references and ``[@key]`` citations."""

    def __init__(self, anchors, bibliography=None, strict=False):
        self.anchors = anchors
        self.bibliography = bibliography or {}
        self.strict = strict
        self.cited = set()
        self.warnings = set()

    def _warn(self, message):
        if message not in self.warnings:
            logger.warning(message)
        self.warnings.add(message)

    def resolve(self, text, source, link_for, references_href):
        """Return ``text`` with refs and citations turned into Markdown links.

        ``link_for(chapter_href, html_id)`` maps an anchor to a link for the
        format being rendered.
        """

        def ref_link(key):
            anchor = self.anchors.get(key)
            if anchor is None:
                self._warn(f"Unresolved reference @{key} in {source}")
                return "**??**"
            return f"[{anchor.label}]({link_for(anchor.chapter_href, anchor.html_id)})"

        def ref_repl(match):
            return ref_link(f"{match.group(1)}:{match.group(2)}")

        def cite_repl(match):
            keys = [key.strip().lstrip("@") for key in match.group(1).split(";")]
            if all(ref_pattern.match("@" + key) for key in keys):
                return ", ".join(ref_link(key) for key in keys)
            labels = []
            for key in keys:
                entry = self.bibliography.get(key)
                if entry is None:
                    self._warn(f"Unknown citation key @{key} in {source}")
                    labels.append("???")
                    continue
                self.cited.add(key)
                labels.append(f"[{entry.citation()}]({references_href}#ref-{key})")
            return "(" + "; ".join(labels) + ")"

        def process(part):
            part = cite_pattern.sub(cite_repl, part)
            return ref_pattern.sub(ref_repl, part)

        return outside_code(text, process)

    def cited_entries(self):
        return sorted((self.bibliography[key] for key in self.cited), key=BibEntry.sort_key)

    def check_strict(self):
        if self.strict and self.warnings:
            raise BuildError("Unresolved cross references:\n  " + "\n  ".join(sorted(self.warnings)))
