from __future__ import annotations

import pytest

from bookpress.chunks import parse_chunks
from bookpress.errors import BuildError, ChunkExecutionError
from bookpress.executor import KernelExecutor, NullExecutor, ansi_to_html, convert_outputs

PNG_B64 = "iVBORw0KGgo="


def test_convert_outputs_prefers_rich_types():
    outputs = [
        {"output_type": "stream", "name": "stdout", "text": ["a\n", "b\n"]},
        {"output_type": "execute_result", "data": {"text/plain": "<Figure>", "image/png": PNG_B64}},
        {"output_type": "display_data", "data": {"text/plain": "x", "text/html": "<b>x</b>"}},
        {"output_type": "display_data", "data": {"application/json": {}}},
        {"output_type": "error", "ename": "ValueError", "evalue": "bad", "traceback": []},
    ]
    converted = convert_outputs(outputs)

    assert [(out.kind, out.mime) for out in converted] == [
        ("text", ""),
        ("image", "image/png"),
        ("html", "text/html"),
        ("error", ""),
    ]
    assert converted[0].data == "a\nb\n"
    assert converted[1].data.startswith(b"\x89PNG")
    assert converted[1].extension == "png"
    assert converted[3].data == "ValueError: bad"


def test_ansi_to_html_escapes():
    html = ansi_to_html("\x1b[31m<oops>\x1b[0m")

    assert html.startswith("<pre>")
    assert "&lt;oops&gt;" in html
    assert "\x1b" not in html


def test_null_executor_runs_nothing():
    chunks = parse_chunks("01-a.md", "```{python}\n1/0\n```\n")
    assert NullExecutor().run(chunks) == {}


def test_engine_mismatch(tmp_path):
    chunks = parse_chunks("01-a.md", "```{r}\nsummary(cars)\n```\n")
    with pytest.raises(BuildError, match="uses engine 'r'"):
        KernelExecutor(tmp_path).run(chunks)


def test_eval_false_chunks_are_not_sent():
    chunks = parse_chunks("01-a.md", "```{r, eval=False}\nsummary(cars)\n```\n")
    assert KernelExecutor(".").run(chunks) == {}


@pytest.fixture
def kernel(tmp_path):
    pytest.importorskip("ipykernel")
    return KernelExecutor(tmp_path, timeout=120)


def test_session_is_shared_across_chapters(kernel):
    first = parse_chunks("01-a.md", "```{python setup}\nvalue = 21\n```\n")
    second = parse_chunks("02-b.md", "```{python use}\nprint(value * 2)\nvalue\n```\n")
    results = kernel.run(first + second)

    assert results[("01-a.md", 1)] == []
    outputs = results[("02-b.md", 1)]
    assert outputs[0].kind == "text"
    assert outputs[0].data == "42\n"
    assert outputs[1].data == "21"


def test_rich_display_outputs(kernel):
    code = (
        "from IPython.display import HTML, SVG, display\n"
        "display(HTML('<em>rich</em>'))\n"
        "display(SVG('<svg xmlns=\"http://www.w3.org/2000/svg\" width=\"1\" height=\"1\"></svg>'))\n"
    )
    results = kernel.run(parse_chunks("01-a.md", f"```{{python}}\n{code}```\n"))

    html, svg = results[("01-a.md", 1)]
    assert (html.kind, html.data) == ("html", "<em>rich</em>")
    assert (svg.kind, svg.extension) == ("image", "svg")


def test_allowed_error_is_captured(kernel):
    text = "```{python, error=True}\nraise ValueError('shown')\n```\n\n```{python}\nprint('after')\n```\n"
    results = kernel.run(parse_chunks("01-a.md", text))

    (error,) = results[("01-a.md", 1)]
    assert error.kind == "error"
    assert "ValueError" in error.data
    assert results[("01-a.md", 2)][0].data == "after\n"


def test_failing_chunk_raises(kernel):
    text = "```{python ok}\nx = 1\n```\n\n```{python boom}\n1 / 0\n```\n"
    with pytest.raises(ChunkExecutionError) as excinfo:
        kernel.run(parse_chunks("03-c.md", text))

    error = excinfo.value
    assert (error.chapter, error.chunk, error.ename) == ("03-c.md", "boom", "ZeroDivisionError")
    assert error.exit_code == 3
