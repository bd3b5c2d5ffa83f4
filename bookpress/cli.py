"""Command line interface for bookpress."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

from . import __version__
from .artifact import archive_site
from .build import build_book
from .errors import BookpressError
from .executor import NullExecutor
from .linkcheck import check_site
from .manifest import SUPPORTED_FORMATS, load_manifest
from .pipeline import run_ci
from .publish import publish_site, should_publish

logger = logging.getLogger("bookpress")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bookpress",
        description="Build, check and publish a Markdown book with executable code chunks.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only print warnings and errors")
    parser.add_argument("--version", action="version", version=f"bookpress {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_root(p):
        p.add_argument("root", nargs="?", type=Path, default=Path("."), help="Book root containing _book.yml")

    build = sub.add_parser("build", help="Render the book")
    add_root(build)
    build.add_argument(
        "--format",
        dest="formats",
        action="append",
        choices=SUPPORTED_FORMATS,
        help="Output format (repeatable); defaults to the manifest's formats",
    )
    build.add_argument("--output-dir", help="Override the manifest's output_dir")
    build.add_argument("--no-check", action="store_true", help="Skip the post-build link check")
    build.add_argument("--no-execute", action="store_true", help="Do not execute code chunks")

    check = sub.add_parser("check", help="Validate links of a built site")
    add_root(check)
    check.add_argument("--output-dir", help="Directory to check instead of the manifest's output_dir")
    check.add_argument("--external", action="store_true", help="Also probe external http(s) links")

    artifact = sub.add_parser("artifact", help="Zip the built site as a CI artifact")
    add_root(artifact)
    artifact.add_argument("--dest", type=Path, default=Path("_artifacts"), help="Directory for the archive")
    artifact.add_argument("--name", default="site", help="Archive base name")

    publish = sub.add_parser("publish", help="Publish the built site")
    add_root(publish)
    publish.add_argument(
        "--force-branch",
        action="store_true",
        help="Publish even when the current branch is not the main branch",
    )

    ci = sub.add_parser("ci", help="Build, archive, check and (on main) publish")
    add_root(ci)
    ci.add_argument("--artifacts-dir", type=Path, help="Directory for the site archive")
    return parser


def configure_logging(verbose: bool, quiet: bool) -> None:
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def cmd_build(args) -> int:
    manifest = load_manifest(args.root)
    if args.formats:
        manifest.formats = list(dict.fromkeys(args.formats))
    if args.output_dir:
        manifest.output_dir = args.output_dir
    executor = NullExecutor() if args.no_execute else None
    result = build_book(manifest=manifest, executor=executor, check_links=False if args.no_check else None)
    print(f"Built {len(result.chapters)} chapter(s) into {result.output_dir} ({', '.join(result.formats)})")
    for warning in result.warnings:
        print(f"  warning: {warning}")
    return 0


def cmd_check(args) -> int:
    manifest = load_manifest(args.root)
    output_dir = Path(args.output_dir) if args.output_dir else manifest.output_path
    report = check_site(output_dir, external=args.external or manifest.checks.external, raise_on_error=True)
    print(f"Checked {report.pages} page(s), {report.links} link(s): no problems")
    return 0


def cmd_artifact(args) -> int:
    manifest = load_manifest(args.root)
    archive = archive_site(manifest.output_path, args.dest, name=args.name)
    print(f"Wrote {archive}")
    return 0


def cmd_publish(args) -> int:
    manifest = load_manifest(args.root)
    if not args.force_branch and not should_publish(manifest):
        print("Skipped: not on the main branch")
        return 0
    result = publish_site(manifest)
    if result.changed:
        print(f"Published to {result.target}")
    else:
        print(f"{result.target} already up to date")
    return 0


def cmd_ci(args) -> int:
    result = run_ci(args.root, artifacts_dir=args.artifacts_dir)
    summary = ", ".join(f"{stage}={status}" for stage, status in result.stages.items())
    print(f"Pipeline finished: {summary}")
    return 0


COMMANDS = {
    "build": cmd_build,
    "check": cmd_check,
    "artifact": cmd_artifact,
    "publish": cmd_publish,
    "ci": cmd_ci,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose, args.quiet)
    try:
        return COMMANDS[args.command](args)
    except BookpressError as exc:
        if args.verbose:
            logger.exception("❌ %s failed", args.command)
        logger.error("❌ %s", exc)
        return exc.exit_code


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
