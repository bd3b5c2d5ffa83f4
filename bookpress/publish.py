"""Publishing a successful build to its hosting branch or directory."""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from .build import STAMP_FILENAME, file_digests, verify_build
from .errors import BuildError, PublishError

logger = logging.getLogger(__name__)

ENV_REF = "GITHUB_REF"
ENV_EVENT = "GITHUB_EVENT_NAME"
ENV_BRANCH = "BOOKPRESS_BRANCH"
PULL_REQUEST_EVENTS = {"pull_request", "pull_request_target"}


@dataclass
class PublishResult:
    target: str
    changed: bool
    commit: Optional[str] = None


def _tail(text, limit=1200):
    raw = text or ""
    return raw[-limit:]


def _verified(output_dir):
    try:
        return verify_build(output_dir)
    except BuildError as exc:
        raise PublishError(f"Refusing to publish: {exc}") from exc


def current_branch(env=None, cwd=None):
    """Name of the branch that triggered this run, or None."""
    env = os.environ if env is None else env
    ref = env.get(ENV_REF, "")
    if ref.startswith("refs/heads/"):
        return ref[len("refs/heads/"):]
    if ref:
        return None
    if env.get(ENV_BRANCH):
        return env[ENV_BRANCH]
    try:
        proc = subprocess.run(
            ["git", "rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd, capture_output=True, text=True
        )
    except OSError:
        return None
    if proc.returncode != 0:
        return None
    branch = proc.stdout.strip()
    return branch if branch and branch != "HEAD" else None


def should_publish(manifest, env=None):
    """Publish only for pushes to the designated main branch."""
    env = os.environ if env is None else env
    if env.get(ENV_EVENT) in PULL_REQUEST_EVENTS:
        logger.info("Not publishing: triggered by %s", env[ENV_EVENT])
        return False
    branch = current_branch(env, cwd=manifest.root)
    if branch != manifest.publish.main_branch:
        logger.info("Not publishing: branch %s is not %s", branch or "<unknown>", manifest.publish.main_branch)
        return False
    return True


class GitPublisher:
    """Push the output tree to a pages branch (e.g. ``gh-pages``)."""

    def __init__(self, config, title="", env=None):
        self.config = config
        self.title = title
        self.env = os.environ if env is None else env

    @property
    def token(self):
        return self.env.get(self.config.token_env, "")

    def remote_url(self):
        remote = self.config.remote
        if not remote:
            raise PublishError("publish.remote is not configured")
        if remote.startswith("https://"):
            if not self.token:
                raise PublishError(f"No publishing token in ${self.config.token_env}")
            return remote.replace("https://", f"https://x-access-token:{self.token}@", 1)
        return remote

    def _redact(self, text):
        return text.replace(self.token, "***") if self.token else text

    def git(self, args: Sequence[str], cwd, check=True):
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        proc = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, env=env)
        if check and proc.returncode != 0:
            raise PublishError(
                self._redact(
                    json.dumps(
                        {
                            "cmd": ["git", *args],
                            "returncode": proc.returncode,
                            "stdout": _tail(proc.stdout),
                            "stderr": _tail(proc.stderr),
                        },
                        ensure_ascii=False,
                    )
                )
            )
        return proc

    def publish(self, output_dir) -> PublishResult:
        stamp = _verified(output_dir)
        branch = self.config.branch
        url = self.remote_url()
        with tempfile.TemporaryDirectory(prefix="bookpress-publish-") as tmp:
            work = Path(tmp)
            self.git(["init", "-q"], work)
            self.git(["remote", "add", "origin", url], work)
            heads = self.git(["ls-remote", "--heads", "origin", branch], work).stdout.strip()
            if heads:
                depth = ["--depth", "1"] if "://" in self.config.remote else []
                self.git(["fetch", "-q", *depth, "origin", branch], work)
                self.git(["checkout", "-q", "-B", branch, "FETCH_HEAD"], work)
            else:
                logger.info("Creating branch %s", branch)
                self.git(["symbolic-ref", "HEAD", f"refs/heads/{branch}"], work)

            for entry in work.iterdir():
                if entry.name == ".git":
                    continue
                if entry.is_dir():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
            shutil.copytree(output_dir, work, dirs_exist_ok=True, ignore=shutil.ignore_patterns(STAMP_FILENAME))
            if not self.config.jekyll:
                (work / ".nojekyll").write_text("", encoding="utf-8")

            self.git(["add", "-A"], work)
            if heads and not self.git(["status", "--porcelain"], work).stdout.strip():
                logger.info("✅ %s is already up to date", branch)
                return PublishResult(target=branch, changed=False)

            message = f"Publish {self.title or 'book'} ({stamp['digest'][:12]})"
            self.git(
                [
                    "-c", f"user.name={self.config.user_name}",
                    "-c", f"user.email={self.config.user_email}",
                    "commit", "-q", "-m", message,
                ],
                work,
            )
            self.git(["push", "-q", "origin", f"HEAD:refs/heads/{branch}"], work)
            commit = self.git(["rev-parse", "HEAD"], work).stdout.strip()
        logger.info("🚀 Published %s to %s", commit[:12], branch)
        return PublishResult(target=branch, changed=True, commit=commit)


class DirectoryPublisher:
    """Copy the output tree to a hosting directory, swapping it in whole."""

    def __init__(self, config, root):
        if not config.directory:
            raise PublishError("publish.directory is not configured")
        target = Path(config.directory)
        self.target = target if target.is_absolute() else Path(root) / target

    def publish(self, output_dir) -> PublishResult:
        _verified(output_dir)
        target = self.target
        if target.exists() and file_digests(target) == file_digests(output_dir):
            logger.info("✅ %s is already up to date", target)
            return PublishResult(target=str(target), changed=False)

        target.parent.mkdir(parents=True, exist_ok=True)
        incoming = target.parent / f".{target.name}.incoming"
        retired = target.parent / f".{target.name}.retired"
        for leftover in (incoming, retired):
            if leftover.exists():
                shutil.rmtree(leftover)
        try:
            shutil.copytree(output_dir, incoming, ignore=shutil.ignore_patterns(STAMP_FILENAME))
            if target.exists():
                target.rename(retired)
            incoming.rename(target)
        except OSError as exc:
            if retired.exists() and not target.exists():
                retired.rename(target)
            raise PublishError(f"Could not publish to {target}: {exc}") from exc
        finally:
            shutil.rmtree(incoming, ignore_errors=True)
            shutil.rmtree(retired, ignore_errors=True)
        logger.info("🚀 Published to %s", target)
        return PublishResult(target=str(target), changed=True)


def publisher_for(manifest, env=None):
    if manifest.publish.target == "directory":
        return DirectoryPublisher(manifest.publish, manifest.root)
    return GitPublisher(manifest.publish, title=manifest.title, env=env)


def publish_site(manifest, output_dir=None, env=None) -> PublishResult:
    """Publish the manifest's output tree with the configured publisher."""
    output_dir = Path(output_dir) if output_dir else manifest.output_path
    return publisher_for(manifest, env).publish(output_dir)
