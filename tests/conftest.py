"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from bookpress.chunks import parse_chunks
from bookpress.crossref import CrossReferencer, collect_anchors, load_bibliography
from bookpress.errors import ChunkExecutionError
from bookpress.executor import ChunkOutput
from bookpress.manifest import load_manifest
from bookpress.render import BookRenderer
from bookpress.sources import collect_chapters

MANIFEST = """\
title: Test Cookbook
subtitle: Recipes for testing
author: [Ada Lovelace, Grace Hopper]
date: "2024"
book_filename: test-cookbook
formats: [html, html-single, epub]
bibliography: [references.yaml]
assets: [data]
publish:
  target: directory
  directory: ../site
  main_branch: main
"""

INDEX = """\
# Preface {-}

Welcome to the book. Start with @sec:basics or read [@wickham2016].
"""

BASICS = """\
# Basics {#sec:basics}

Some text before the first chunk.

```{python hello}
print("hello")
```

## Details {#sec:details}

Back to @sec:basics, and on to @fig:scatter.

```python
# a plain code block is never executed
x = 1
```
"""

PLOTS = """\
---
title: Plotting
---

# Plots with Python

```{python scatter, echo=False, fig.cap="A scatter plot"}
draw()
```

As @fig:scatter shows, see also @sec:details.
"""

REFERENCES = """\
- id: wickham2016
  author:
    - family: Wickham
      given: Hadley
  issued:
    date-parts: [[2016]]
  title: "ggplot2: Elegant Graphics for Data Analysis"
  publisher: Springer
"""

PNG_BYTES = b"\x89PNG\r\n\x1a\n fake image"


class FakeExecutor:
    """Stands in for the kernel: echoes a line per chunk, draws for ``draw()``."""

    def __init__(self, fail_on=None):
        self.fail_on = fail_on
        self.calls = []

    def run(self, chunks):
        self.calls.append([chunk.name for chunk in chunks])
        results = {}
        for chunk in chunks:
            if not chunk.option("eval"):
                continue
            if self.fail_on and self.fail_on in chunk.code:
                raise ChunkExecutionError(chunk.chapter, chunk.name, "ZeroDivisionError", "division by zero")
            if "draw()" in chunk.code:
                outputs = [ChunkOutput("image", PNG_BYTES, mime="image/png")]
            else:
                outputs = [ChunkOutput("text", f"ran {chunk.name}\n", stream="stdout")]
            results[(chunk.chapter, chunk.index)] = outputs
        return results


def write_book(root: Path, files=None, manifest=MANIFEST):
    root.mkdir(parents=True, exist_ok=True)
    (root / "_book.yml").write_text(textwrap.dedent(manifest), encoding="utf-8")
    contents = {
        "index.md": INDEX,
        "01-basics.md": BASICS,
        "02-plots.md": PLOTS,
        "references.yaml": REFERENCES,
        "data/values.csv": "a,b\n1,2\n",
    }
    contents.update(files or {})
    for name, text in contents.items():
        if text is None:
            continue
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    return root


def make_renderer(root, executor=None):
    """Run the build steps up to rendering for the book at ``root``."""
    manifest = load_manifest(root, env={})
    chapters = collect_chapters(manifest)
    chunks = {chapter.path.name: parse_chunks(chapter.path.name, chapter.text) for chapter in chapters}
    all_chunks = [chunk for chapter in chapters for chunk in chunks[chapter.path.name]]
    outputs = (executor or FakeExecutor()).run(all_chunks)
    crossref = CrossReferencer(collect_anchors(chapters, chunks), load_bibliography(root, manifest.bibliography))
    return BookRenderer(manifest, chapters, chunks, outputs, crossref)


@pytest.fixture
def book_root(tmp_path):
    return write_book(tmp_path / "book")


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def git_env(monkeypatch):
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
