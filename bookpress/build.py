"""Build orchestration: sources, chunk execution, rendering and output swap."""

from __future__ import annotations

import hashlib
import json
import logging
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .chunks import parse_chunks
from .crossref import CrossReferencer, collect_anchors, load_bibliography
from .epub import render_epub
from .errors import BookpressError, BuildError
from .executor import KernelExecutor, NullExecutor
from .linkcheck import check_site
from .manifest import load_manifest
from .render import BookRenderer
from .sources import collect_chapters

logger = logging.getLogger(__name__)

STAMP_FILENAME = ".bookpress-build.json"


@dataclass
class BuildResult:
    """Outcome of a successful build."""

    output_dir: Path
    chapters: List[str]
    formats: List[str]
    files: List[str]
    digest: str
    warnings: List[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0


def file_digests(root, exclude=(STAMP_FILENAME,)) -> Dict[str, str]:
    """SHA-256 of every file under ``root`` keyed by POSIX relative path."""
    root = Path(root)
    digests = {}
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        rel = path.relative_to(root).as_posix()
        if rel in exclude:
            continue
        digests[rel] = hashlib.sha256(path.read_bytes()).hexdigest()
    return digests


def tree_digest(digests):
    h = hashlib.sha256()
    for rel in sorted(digests):
        h.update(f"{rel}\0{digests[rel]}\n".encode("utf-8"))
    return h.hexdigest()


def write_stamp(root, manifest, chapters):
    """Write the build stamp last; it marks the tree as a complete build."""
    digests = file_digests(root)
    stamp = {
        "title": manifest.title,
        "formats": list(manifest.formats),
        "chapters": [chapter.path.name for chapter in chapters],
        "files": digests,
        "digest": tree_digest(digests),
    }
    (Path(root) / STAMP_FILENAME).write_text(json.dumps(stamp, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return stamp


def verify_build(root):
    """Return the build stamp of ``root`` if it matches the files on disk."""
    root = Path(root)
    stamp_path = root / STAMP_FILENAME
    if not stamp_path.exists():
        raise BuildError(f"{root} is not the output of a successful build (no {STAMP_FILENAME})")
    try:
        stamp = json.loads(stamp_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise BuildError(f"Corrupt build stamp in {root}: {exc}") from exc
    digests = file_digests(root)
    if digests != stamp.get("files") or tree_digest(digests) != stamp.get("digest"):
        raise BuildError(f"{root} was modified after it was built")
    return stamp


def copy_assets(manifest, dest):
    """Copy static data assets (images, tabular extracts) into the output tree."""
    copied = []
    output = manifest.output_path.resolve()
    for name in manifest.assets:
        source = (manifest.root / name).resolve()
        if not source.exists():
            raise BuildError(f"Asset not found: {name}")
        if source == output or output in source.parents:
            raise BuildError(f"Asset {name} lies inside the output directory")
        target = Path(dest) / name
        if source.is_dir():
            shutil.copytree(source, target, dirs_exist_ok=True)
        else:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
        copied.append(name)
    return copied


def _remove(path):
    if path and Path(path).exists():
        shutil.rmtree(path, ignore_errors=True)


def build_book(root=".", manifest=None, executor=None, check_links=None) -> BuildResult:
    """Build every requested format of the book.

    The output tree is assembled in a staging directory and only moved to
    ``manifest.output_dir`` once every step succeeded. On failure the staging
    directory and any previous output are removed, so a failed build never
    leaves something behind that could be uploaded or published.
    """
    start_time = time.perf_counter()
    manifest = manifest or load_manifest(root)
    output = manifest.output_path
    if output.resolve() == manifest.root.resolve():
        raise BuildError("output_dir must not be the book root")
    logger.info("🚀 Building '%s' (%s)", manifest.title, ", ".join(manifest.formats))

    if executor is None:
        executor = KernelExecutor.from_manifest(manifest) if manifest.execute.enabled else NullExecutor()
    if check_links is None:
        check_links = manifest.checks.links

    output.parent.mkdir(parents=True, exist_ok=True)
    staging: Optional[Path] = Path(tempfile.mkdtemp(prefix=f".{output.name}.staging-", dir=output.parent))
    staging.chmod(0o755)
    try:
        chapters = collect_chapters(manifest)
        logger.info("📚 Found %d chapter file(s)", len(chapters))

        chunks_by_chapter = {}
        all_chunks = []
        for chapter in chapters:
            chunks = parse_chunks(chapter.path.name, chapter.text)
            chunks_by_chapter[chapter.path.name] = chunks
            all_chunks.extend(chunks)

        outputs = executor.run(all_chunks)

        anchors = collect_anchors(chapters, chunks_by_chapter)
        bibliography = load_bibliography(manifest.root, manifest.bibliography)
        crossref = CrossReferencer(anchors, bibliography, strict=manifest.checks.strict_refs)
        renderer = BookRenderer(manifest, chapters, chunks_by_chapter, outputs, crossref)

        if "html" in manifest.formats:
            renderer.render_site(staging)
        if "html-single" in manifest.formats:
            renderer.render_single(staging)
        if "epub" in manifest.formats:
            render_epub(renderer, staging)
        crossref.check_strict()

        renderer.write_figures(staging)
        copy_assets(manifest, staging)

        if check_links and "html" in manifest.formats:
            check_site(staging, external=manifest.checks.external, raise_on_error=True)

        stamp = write_stamp(staging, manifest, chapters)

        _remove(output)
        staging.rename(output)
        staging = None
    except BookpressError:
        _remove(staging)
        _remove(output)
        raise
    except Exception as exc:
        _remove(staging)
        _remove(output)
        raise BuildError(f"Build failed: {type(exc).__name__}: {exc}") from exc

    elapsed = time.perf_counter() - start_time
    logger.info("✅ Book built in %s (%.2fs)", output, elapsed)
    return BuildResult(
        output_dir=output,
        chapters=[chapter.path.name for chapter in chapters],
        formats=list(manifest.formats),
        files=sorted(stamp["files"]),
        digest=stamp["digest"],
        warnings=sorted(crossref.warnings),
        elapsed_seconds=elapsed,
    )
