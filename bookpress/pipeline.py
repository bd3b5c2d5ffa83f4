"""The CI flow: build, store the artifact, validate, publish from main only."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from .artifact import archive_site
from .build import build_book
from .linkcheck import check_site
from .manifest import load_manifest
from .publish import publish_site, should_publish

logger = logging.getLogger(__name__)

STAGES = ("build", "artifact", "check", "publish")


@dataclass
class PipelineResult:
    stages: Dict[str, str] = field(default_factory=dict)
    artifact: Optional[Path] = None
    published: bool = False

    def mark(self, stage, status):
        self.stages[stage] = status
        logger.info("%s %s: %s", "✅" if status in ("ok", "skipped") else "❌", stage, status)


def run_ci(root=".", artifacts_dir=None, env=None, executor=None, manifest=None) -> PipelineResult:
    """Run every stage in order; the first failure stops the pipeline.

    Publishing happens only after a successful build and link check, and only
    when the run was triggered on the designated main branch.
    """
    manifest = manifest or load_manifest(root, env=env)
    artifacts_dir = Path(artifacts_dir) if artifacts_dir else manifest.root / "_artifacts"
    # A stale archive must not outlive a failed run.
    (artifacts_dir / "site.zip").unlink(missing_ok=True)
    result = PipelineResult()
    stage = "build"
    try:
        build = build_book(manifest=manifest, executor=executor)
        result.mark(stage, "ok")

        stage = "artifact"
        result.artifact = archive_site(build.output_dir, artifacts_dir)
        result.mark(stage, "ok")

        stage = "check"
        check_site(build.output_dir, external=manifest.checks.external, raise_on_error=True)
        result.mark(stage, "ok")

        stage = "publish"
        if should_publish(manifest, env):
            publish_site(manifest, build.output_dir, env=env)
            result.published = True
            result.mark(stage, "ok")
        else:
            result.mark(stage, "skipped")
    except Exception:
        result.mark(stage, "failed")
        raise
    return result
