"""Book manifest (``_book.yml``) loading."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ManifestError

MANIFEST_FILENAME = "_book.yml"
SUPPORTED_FORMATS = ("html", "html-single", "epub")

ENV_OUTPUT_DIR = "BOOKPRESS_OUTPUT_DIR"
ENV_FORMATS = "BOOKPRESS_FORMATS"


def _as_list(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    return [str(value)]


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ManifestError(f"'{key}' must be a mapping, got {type(value).__name__}")
    return value


@dataclass
class ChapterEntry:
    path: str
    part: Optional[str] = None


@dataclass
class ExecuteConfig:
    engine: str = "python"
    kernel: str = "python3"
    timeout: int = 600
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecuteConfig":
        timeout = data.get("timeout", 600)
        if not isinstance(timeout, int) or timeout <= 0:
            raise ManifestError("execute.timeout must be a positive integer")
        return cls(
            engine=str(data.get("engine", "python")),
            kernel=str(data.get("kernel", "python3")),
            timeout=timeout,
            enabled=bool(data.get("enabled", True)),
        )


@dataclass
class CheckConfig:
    links: bool = True
    external: bool = False
    strict_refs: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckConfig":
        return cls(
            links=bool(data.get("links", True)),
            external=bool(data.get("external", False)),
            strict_refs=bool(data.get("strict_refs", False)),
        )


@dataclass
class PublishConfig:
    target: str = "git"
    remote: str = ""
    branch: str = "gh-pages"
    main_branch: str = "main"
    jekyll: bool = False
    token_env: str = "GITHUB_TOKEN"
    directory: str = ""
    user_name: str = "bookpress"
    user_email: str = "bookpress@users.noreply.github.com"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PublishConfig":
        target = str(data.get("target", "git"))
        if target not in {"git", "directory"}:
            raise ManifestError(f"Unsupported publish target: {target}")
        return cls(
            target=target,
            remote=str(data.get("remote") or ""),
            branch=str(data.get("branch", "gh-pages")),
            main_branch=str(data.get("main_branch", "main")),
            jekyll=bool(data.get("jekyll", False)),
            token_env=str(data.get("token_env", "GITHUB_TOKEN")),
            directory=str(data.get("directory") or ""),
            user_name=str(data.get("user_name", "bookpress")),
            user_email=str(data.get("user_email", "bookpress@users.noreply.github.com")),
        )


@dataclass
class Manifest:
    """Book-level metadata and output targets."""

    title: str
    root: Path = field(default_factory=Path.cwd)
    subtitle: str = ""
    authors: List[str] = field(default_factory=list)
    description: str = ""
    date: str = ""
    language: str = "en"
    book_filename: str = "book"
    output_dir: str = "_book"
    formats: List[str] = field(default_factory=lambda: ["html"])
    chapters: List[ChapterEntry] = field(default_factory=list)
    bibliography: List[str] = field(default_factory=list)
    assets: List[str] = field(default_factory=list)
    execute: ExecuteConfig = field(default_factory=ExecuteConfig)
    checks: CheckConfig = field(default_factory=CheckConfig)
    publish: PublishConfig = field(default_factory=PublishConfig)

    def __post_init__(self) -> None:
        unknown = [fmt for fmt in self.formats if fmt not in SUPPORTED_FORMATS]
        if unknown:
            raise ManifestError(
                f"Unsupported output format(s): {', '.join(unknown)} "
                f"(expected one of {', '.join(SUPPORTED_FORMATS)})"
            )
        if not self.formats:
            raise ManifestError("At least one output format is required")

    @property
    def output_path(self) -> Path:
        path = Path(self.output_dir)
        return path if path.is_absolute() else self.root / path

    @classmethod
    def from_dict(cls, data: Dict[str, Any], root: Path) -> "Manifest":
        if not isinstance(data, dict):
            raise ManifestError("Manifest must be a YAML mapping")
        title = str(data.get("title") or "").strip()
        if not title:
            raise ManifestError("Manifest is missing 'title'")

        chapters: List[ChapterEntry] = []
        for entry in data.get("chapters") or []:
            if isinstance(entry, dict):
                part = str(entry.get("part") or "").strip()
                if not part:
                    raise ManifestError(f"Chapter group without a 'part' title: {entry}")
                for path in _as_list(entry.get("chapters")):
                    chapters.append(ChapterEntry(path=path, part=part))
            else:
                chapters.append(ChapterEntry(path=str(entry)))

        return cls(
            title=title,
            root=root,
            subtitle=str(data.get("subtitle") or ""),
            authors=_as_list(data.get("author")),
            description=str(data.get("description") or ""),
            date=str(data.get("date") or ""),
            language=str(data.get("language") or "en"),
            book_filename=str(data.get("book_filename") or "book"),
            output_dir=str(data.get("output_dir") or "_book"),
            formats=_as_list(data.get("formats")) or ["html"],
            chapters=chapters,
            bibliography=_as_list(data.get("bibliography")),
            assets=_as_list(data.get("assets")),
            execute=ExecuteConfig.from_dict(_section(data, "execute")),
            checks=CheckConfig.from_dict(_section(data, "checks")),
            publish=PublishConfig.from_dict(_section(data, "publish")),
        )


def apply_env_overrides(data: Dict[str, Any], env=None) -> Dict[str, Any]:
    """Return a copy of raw manifest data with environment overrides applied."""
    env = os.environ if env is None else env
    data = dict(data)
    if env.get(ENV_OUTPUT_DIR):
        data["output_dir"] = env[ENV_OUTPUT_DIR]
    if env.get(ENV_FORMATS):
        data["formats"] = [fmt.strip() for fmt in env[ENV_FORMATS].split(",") if fmt.strip()]
    return data


def load_manifest(root, filename=MANIFEST_FILENAME, env=None) -> Manifest:
    """Read the manifest from the book root."""
    root = Path(root).resolve()
    path = root / filename
    if not path.exists():
        raise ManifestError(f"Manifest not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ManifestError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ManifestError(f"Manifest {path} must be a YAML mapping")
    return Manifest.from_dict(apply_env_overrides(data, env), root)
