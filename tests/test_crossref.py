from __future__ import annotations

import json
from pathlib import Path

import pytest

from bookpress.chunks import parse_chunks
from bookpress.crossref import (
    BibEntry,
    CrossReferencer,
    collect_anchors,
    load_bibliography,
    rewrite_heading_attrs,
)
from bookpress.errors import BuildError, ManifestError
from bookpress.sources import Chapter


def _chapter(name, text, number=None):
    slug = Path(name).stem
    return Chapter(path=Path(name), text=text, title=slug, slug=slug, href=f"{slug}.html", number=number)


def _link(chapter_href, anchor_id):
    return f"{chapter_href}#{anchor_id}"


@pytest.fixture
def chapters():
    first = _chapter("01-intro.md", "# Intro {#sec:intro}\n\n## Goals {#sec:goals}\n", number=1)
    second = _chapter(
        "02-plots.md",
        "# Plots\n\n```{python hist, fig.cap='Histogram'}\nhist()\n```\n\n```python\n# Not {#sec:code}\n```\n",
        number=2,
    )
    return [first, second]


def test_collect_anchors(chapters):
    chunks = {chapter.path.name: parse_chunks(chapter.path.name, chapter.text) for chapter in chapters}
    anchors = collect_anchors(chapters, chunks)

    assert sorted(anchors) == ["fig:hist", "sec:goals", "sec:intro"]
    assert anchors["sec:intro"].label == "Chapter 1"
    assert anchors["sec:goals"].label == "Goals"
    assert anchors["fig:hist"].label == "Figure 2.1"
    assert anchors["fig:hist"].chapter_href == "02-plots.html"


def test_duplicate_anchor(chapters):
    chapters.append(_chapter("03-more.md", "# More\n\n## Again {#sec:goals}\n", number=3))
    with pytest.raises(BuildError, match="Duplicate anchor 'sec:goals'"):
        collect_anchors(chapters, {})


def test_rewrite_heading_attrs():
    text = "# Preface {-}\n\n## Setup {#sec:setup}\n\n# Appendix {#sec:appendix} {-}\n"

    assert rewrite_heading_attrs(text) == (
        "# Preface {: .unnumbered }\n\n## Setup {: #sec-setup }\n\n# Appendix {: #sec-appendix .unnumbered }\n"
    )


def test_resolve_refs_and_citations(chapters):
    anchors = collect_anchors(chapters, {})
    bibliography = {"knuth1984": BibEntry(key="knuth1984", authors=["Knuth, Donald"], year="1984")}
    crossref = CrossReferencer(anchors, bibliography)

    text = "See @sec:goals and [@sec:intro], as in [@knuth1984]. Mail me at a@sec:goals.com. `@sec:goals`"
    resolved = crossref.resolve(text, "x.md", _link, "references.html")

    assert "[Goals](01-intro.html#sec-goals)" in resolved
    assert "[Chapter 1](01-intro.html#sec-intro)" in resolved
    assert "([Knuth 1984](references.html#ref-knuth1984))" in resolved
    assert "a@sec:goals.com" in resolved
    assert "`@sec:goals`" in resolved
    assert [entry.key for entry in crossref.cited_entries()] == ["knuth1984"]
    assert not crossref.warnings


def test_unresolved_references_warn_and_strict_fails(chapters):
    crossref = CrossReferencer(collect_anchors(chapters, {}), {}, strict=True)
    resolved = crossref.resolve("See @sec:missing and [@nobody2000].", "x.md", _link, "")

    assert "**??**" in resolved
    assert "(???)" in resolved
    assert len(crossref.warnings) == 2
    with pytest.raises(BuildError, match="Unresolved cross references"):
        crossref.check_strict()


def test_citation_labels():
    one = BibEntry(key="a", authors=["Wickham, Hadley"], year="2016")
    two = BibEntry(key="b", authors=["Wickham, Hadley", "Grolemund, Garrett"], year="2017")
    many = BibEntry(key="c", authors=["Xie, Yihui", "Allaire, J.J.", "Grolemund, Garrett"], year="2018")

    assert one.citation() == "Wickham 2016"
    assert two.citation() == "Wickham and Grolemund 2017"
    assert many.citation() == "Xie et al. 2018"


def test_load_bibliography_json_and_yaml(tmp_path):
    (tmp_path / "refs.json").write_text(
        json.dumps([{"id": "xie2015", "author": [{"family": "Xie", "given": "Yihui"}], "issued": {"date-parts": [[2015]]}}]),
        encoding="utf-8",
    )
    (tmp_path / "more.yaml").write_text(
        "references:\n  - id: r2020\n    author:\n      - literal: R Core Team\n    issued: 2020\n",
        encoding="utf-8",
    )
    entries = load_bibliography(tmp_path, ["refs.json", "more.yaml"])

    assert entries["xie2015"].citation() == "Xie 2015"
    assert entries["r2020"].citation() == "R Core Team 2020"


def test_load_bibliography_errors(tmp_path):
    with pytest.raises(ManifestError, match="not found"):
        load_bibliography(tmp_path, ["missing.json"])
    (tmp_path / "refs.bib").write_text("@book{x}", encoding="utf-8")
    with pytest.raises(ManifestError, match="Unsupported bibliography format"):
        load_bibliography(tmp_path, ["refs.bib"])
