"""Execution of code chunks in one shared Jupyter kernel session."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple

import nbformat
from ansi2html import Ansi2HTMLConverter
from nbconvert.preprocessors import CellExecutionError, ExecutePreprocessor

from .errors import BuildError, ChunkExecutionError

logger = logging.getLogger(__name__)

_ansi_conv = Ansi2HTMLConverter(inline=True)

ALLOW_ERROR_TAG = "raises-exception"
IMAGE_TYPES = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/svg+xml": "svg",
}
# Richest representation first.
MIME_PREFERENCE = ("image/png", "image/jpeg", "image/svg+xml", "text/html", "text/markdown", "text/plain")

ChunkKey = Tuple[str, int]


@dataclass
class ChunkOutput:
    """One captured output of an executed chunk."""

    kind: str  # text|html|markdown|image|error
    data: object
    mime: str = ""
    stream: str = ""

    @property
    def extension(self) -> str:
        return IMAGE_TYPES.get(self.mime, "")


def ansi_to_html(text, default_style=None):
    """Return HTML for text that may contain ANSI escape codes."""
    html = _ansi_conv.convert(text, full=False)
    if default_style and "span class" not in html:
        html = f'<span style="{default_style}">{html}</span>'
    return f"<pre>{html}</pre>"


def _join(value):
    if isinstance(value, list):
        return "".join(value)
    return value


def convert_outputs(outputs) -> List[ChunkOutput]:
    """Convert Jupyter cell outputs to ``ChunkOutput`` items."""
    converted = []
    for out in outputs:
        typ = out.get("output_type")
        if typ == "stream":
            converted.append(ChunkOutput("text", _join(out.get("text", "")), stream=out.get("name", "stdout")))
        elif typ in {"display_data", "execute_result"}:
            data = out.get("data", {})
            mime = next((m for m in MIME_PREFERENCE if m in data), None)
            if mime is None:
                continue
            payload = _join(data[mime])
            if mime in ("image/png", "image/jpeg"):
                converted.append(ChunkOutput("image", base64.b64decode(payload), mime=mime))
            elif mime == "image/svg+xml":
                converted.append(ChunkOutput("image", payload.encode("utf-8"), mime=mime))
            elif mime == "text/html":
                converted.append(ChunkOutput("html", payload, mime=mime))
            elif mime == "text/markdown":
                converted.append(ChunkOutput("markdown", payload, mime=mime))
            else:
                converted.append(ChunkOutput("text", payload, mime=mime))
        elif typ == "error":
            tb = "\n".join(out.get("traceback", []))
            if not tb:
                tb = f"{out.get('ename', '')}: {out.get('evalue', '')}"
            converted.append(ChunkOutput("error", tb))
    return converted


class NullExecutor:
    """Executor used when chunk evaluation is switched off."""

    def run(self, chunks):
        return {}


class KernelExecutor:
    """Run every chunk of the book, in order, in a single kernel session."""

    def __init__(self, root, engine="python", kernel_name="python3", timeout=600):
        self.root = Path(root)
        self.engine = engine
        self.kernel_name = kernel_name
        self.timeout = timeout

    @classmethod
    def from_manifest(cls, manifest):
        return cls(
            manifest.root,
            engine=manifest.execute.engine,
            kernel_name=manifest.execute.kernel,
            timeout=manifest.execute.timeout,
        )

    def _notebook(self, chunks):
        nb = nbformat.v4.new_notebook()
        for chunk in chunks:
            cell = nbformat.v4.new_code_cell(chunk.code)
            if chunk.option("error"):
                cell.metadata["tags"] = [ALLOW_ERROR_TAG]
            nb.cells.append(cell)
        return nb

    def _failed_chunk(self, nb, chunks):
        for cell, chunk in zip(nb.cells, chunks):
            if ALLOW_ERROR_TAG in cell.metadata.get("tags", []):
                continue
            if any(out.get("output_type") == "error" for out in cell.get("outputs", [])):
                return chunk
        executed = [chunk for cell, chunk in zip(nb.cells, chunks) if cell.get("execution_count")]
        return executed[-1] if executed else chunks[0]

    def run(self, chunks) -> Dict[ChunkKey, List[ChunkOutput]]:
        runnable = [chunk for chunk in chunks if chunk.option("eval")]
        for chunk in runnable:
            if chunk.engine != self.engine:
                raise BuildError(
                    f"Chunk {chunk.name} in {chunk.chapter} uses engine '{chunk.engine}', "
                    f"but this book executes '{self.engine}' chunks"
                )
        if not runnable:
            return {}

        nb = self._notebook(runnable)
        ep = ExecutePreprocessor(kernel_name=self.kernel_name, timeout=self.timeout, allow_errors=False)
        logger.info("⚙️  Executing %d chunk(s) with kernel %s", len(runnable), self.kernel_name)
        try:
            ep.preprocess(nb, {"metadata": {"path": str(self.root)}})
        except CellExecutionError as exc:
            chunk = self._failed_chunk(nb, runnable)
            raise ChunkExecutionError(chunk.chapter, chunk.name, exc.ename, exc.evalue, exc.traceback) from exc
        except BuildError:
            raise
        except Exception as exc:
            raise BuildError(f"Chunk execution failed: {type(exc).__name__}: {exc}") from exc

        results = {}
        for cell, chunk in zip(nb.cells, runnable):
            results[(chunk.chapter, chunk.index)] = convert_outputs(cell.get("outputs", []))
        return results
