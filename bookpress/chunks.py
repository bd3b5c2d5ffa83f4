"""Executable code chunks embedded in chapter documents."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

import yaml

from .errors import BuildError

# ```{python label, echo=False}
CHUNK_PATTERN = re.compile(
    r"^```\{(?P<engine>[A-Za-z0-9_]+)(?P<header>[^}\n]*)\}[ \t]*\n(?P<code>.*?)^```[ \t]*$\n?",
    re.DOTALL | re.MULTILINE,
)
OPTION_SPLIT_PATTERN = re.compile(r""",(?=(?:[^'"]|'[^']*'|"[^"]*")*$)""")
PIPE_OPTION_PATTERN = re.compile(r"^#\|\s?(.*)$")
# Four or more backticks: a literal block that may show chunk syntax.
OUTER_FENCE_PATTERN = re.compile(r"^(?P<fence>`{4,})[^\n]*\n.*?^(?P=fence)[ \t]*$", re.DOTALL | re.MULTILINE)

DEFAULT_OPTIONS = {
    "echo": True,
    "eval": True,
    "include": True,
    "error": False,
    "results": "markup",
    "fig_cap": "",
}
RESULTS_MODES = {"markup", "hide", "asis"}


@dataclass
class Chunk:
    """A fenced code block that is executed at build time."""

    chapter: str
    index: int
    engine: str
    code: str
    label: str = ""
    options: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_OPTIONS))
    start: int = 0
    end: int = 0

    @property
    def name(self) -> str:
        return self.label or f"#{self.index}"

    def option(self, key):
        return self.options.get(key, DEFAULT_OPTIONS.get(key))


def normalize_key(key):
    return key.strip().replace(".", "_").replace("-", "_")


def parse_value(raw):
    raw = raw.strip()
    if not raw:
        return ""
    try:
        value = yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw
    return value if value is not None else raw


def parse_header(header):
    """Parse ``label, key=value, ...`` into ``(label, options)``."""
    header = header.strip().lstrip(",").strip()
    label = ""
    options: Dict[str, Any] = {}
    if not header:
        return label, options
    for position, token in enumerate(OPTION_SPLIT_PATTERN.split(header)):
        token = token.strip()
        if not token:
            continue
        if "=" not in token:
            if position == 0 and not label:
                label = token.strip("'\"")
                continue
            raise BuildError(f"Malformed chunk option: {token!r}")
        key, value = token.split("=", 1)
        key = normalize_key(key)
        if key == "label":
            label = str(parse_value(value))
        else:
            options[key] = parse_value(value)
    return label, options


def strip_pipe_options(code):
    """Split leading ``#| key: value`` lines off the chunk code."""
    lines = code.splitlines(keepends=True)
    option_lines = []
    for line in lines:
        match = PIPE_OPTION_PATTERN.match(line.rstrip("\n"))
        if not match:
            break
        option_lines.append(match.group(1))
    if not option_lines:
        return {}, code
    try:
        parsed = yaml.safe_load("\n".join(option_lines)) or {}
    except yaml.YAMLError as exc:
        raise BuildError(f"Invalid chunk options: {exc}") from exc
    if not isinstance(parsed, dict):
        raise BuildError("Chunk options must be 'key: value' pairs")
    options = {normalize_key(str(key)): value for key, value in parsed.items()}
    return options, "".join(lines[len(option_lines):])


def parse_chunks(chapter_name, text) -> List[Chunk]:
    """Return the executable chunks of a chapter in document order."""
    literal = [(m.start(), m.end()) for m in OUTER_FENCE_PATTERN.finditer(text)]
    matches = [
        match
        for match in CHUNK_PATTERN.finditer(text)
        if not any(start <= match.start() < end for start, end in literal)
    ]
    chunks = []
    for index, match in enumerate(matches, 1):
        label, options = parse_header(match.group("header"))
        pipe_options, code = strip_pipe_options(match.group("code"))
        options.update(pipe_options)
        if "label" in options:
            label = str(options.pop("label"))
        merged = dict(DEFAULT_OPTIONS)
        merged.update(options)
        if merged["results"] not in RESULTS_MODES:
            raise BuildError(
                f"Chunk {label or index} in {chapter_name}: unknown results mode {merged['results']!r}"
            )
        if merged["fig_cap"] is None:
            merged["fig_cap"] = ""
        chunks.append(
            Chunk(
                chapter=chapter_name,
                index=index,
                engine=match.group("engine"),
                code=code,
                label=label,
                options=merged,
                start=match.start(),
                end=match.end(),
            )
        )

    labels = [chunk.label for chunk in chunks if chunk.label]
    duplicates = sorted({label for label in labels if labels.count(label) > 1})
    if duplicates:
        raise BuildError(f"Duplicate chunk label(s) in {chapter_name}: {', '.join(duplicates)}")
    return chunks
