"""Packing the built site into a CI artifact."""

from __future__ import annotations

import logging
import zipfile
from pathlib import Path

from .build import verify_build
from .errors import BuildError

logger = logging.getLogger(__name__)

ZIP_TIMESTAMP = (1980, 1, 1, 0, 0, 0)


def archive_site(output_dir, dest_dir, name="site"):
    """Zip a successful build's output tree into ``dest_dir/<name>.zip``."""
    output_dir = Path(output_dir)
    verify_build(output_dir)

    dest_dir = Path(dest_dir)
    if output_dir.resolve() in (dest_dir.resolve(), *dest_dir.resolve().parents):
        raise BuildError("Artifact directory must not be inside the output directory")
    dest_dir.mkdir(parents=True, exist_ok=True)
    archive = dest_dir / f"{name}.zip"

    files = sorted(path for path in output_dir.rglob("*") if path.is_file())
    with zipfile.ZipFile(archive, "w", zipfile.ZIP_DEFLATED) as zf:
        for path in files:
            info = zipfile.ZipInfo(path.relative_to(output_dir).as_posix(), date_time=ZIP_TIMESTAMP)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = 0o644 << 16
            zf.writestr(info, path.read_bytes())

    logger.info("📦 Artifact %s (%d file(s), %.2f MB)", archive.name, len(files), archive.stat().st_size / (1024 * 1024))
    return archive
