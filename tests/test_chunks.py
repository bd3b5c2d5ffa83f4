from __future__ import annotations

import pytest

from bookpress.chunks import parse_chunks, parse_header, strip_pipe_options
from bookpress.errors import BuildError


def test_parse_header_label_and_options():
    label, options = parse_header(' scatter, echo=False, fig.cap="A, quoted caption", fig-width=6')

    assert label == "scatter"
    assert options == {"echo": False, "fig_cap": "A, quoted caption", "fig_width": 6}


def test_parse_header_explicit_label_option():
    label, options = parse_header(", label='setup', include=FALSE")

    assert label == "setup"
    assert options == {"include": False}


def test_parse_header_rejects_bare_token_after_options():
    with pytest.raises(BuildError, match="Malformed chunk option"):
        parse_header(" echo=False, stray")


def test_strip_pipe_options():
    options, code = strip_pipe_options("#| echo: false\n#| fig-cap: Values\nprint(1)\n")

    assert options == {"echo": False, "fig_cap": "Values"}
    assert code == "print(1)\n"


def test_parse_chunks_ignores_plain_fences():
    text = "# T\n\n```python\nx = 1\n```\n\n```{python first}\nprint(1)\n```\n\n```{python}\n#| results: hide\ny = 2\n```\n"
    chunks = parse_chunks("01-a.md", text)

    assert [(c.index, c.name, c.engine) for c in chunks] == [(1, "first", "python"), (2, "#2", "python")]
    assert chunks[0].code == "print(1)\n"
    assert chunks[0].option("echo") is True
    assert chunks[1].option("results") == "hide"
    assert chunks[1].code == "y = 2\n"
    assert text[chunks[0].start:chunks[0].end].startswith("```{python first}")


def test_unknown_results_mode():
    with pytest.raises(BuildError, match="unknown results mode"):
        parse_chunks("01-a.md", "```{python, results='loud'}\n1\n```\n")


def test_duplicate_labels_in_a_chapter():
    text = "```{python same}\n1\n```\n\n```{python same}\n2\n```\n"
    with pytest.raises(BuildError, match="Duplicate chunk label"):
        parse_chunks("01-a.md", text)


def test_chunk_syntax_shown_in_a_longer_fence_is_not_executed():
    text = (
        "Chunks look like this:\n\n"
        "````\n"
        "```{python summary, echo=False}\n"
        "plot_values()\n"
        "```\n"
        "````\n\n"
        "```{python real}\n"
        "print(1)\n"
        "```\n"
    )
    chunks = parse_chunks("01-a.md", text)

    assert [(chunk.index, chunk.name) for chunk in chunks] == [(1, "real")]
