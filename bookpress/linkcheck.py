"""Post-build validation of links and images in the rendered site."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Set
from urllib.parse import unquote, urlsplit

import requests
from bs4 import BeautifulSoup

from .errors import LinkCheckError

logger = logging.getLogger(__name__)

LINK_ATTRIBUTES = (("a", "href"), ("img", "src"), ("link", "href"), ("script", "src"))
IGNORED_SCHEMES = {"mailto", "tel", "javascript", "data"}
USER_AGENT = "bookpress-linkcheck (+https://pypi.org/project/bookpress/)"


@dataclass
class LinkProblem:
    page: str
    target: str
    reason: str

    def __str__(self) -> str:
        return f"{self.page}: {self.target} ({self.reason})"


@dataclass
class LinkReport:
    root: Path
    pages: int = 0
    links: int = 0
    external: int = 0
    problems: List[LinkProblem] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems


def _ids(soup) -> Set[str]:
    ids = {tag["id"] for tag in soup.find_all(id=True)}
    ids.update(tag["name"] for tag in soup.find_all("a", attrs={"name": True}))
    return ids


def check_link(url, timeout=10):
    headers = {"User-Agent": USER_AGENT}
    try:
        # Try HEAD first for speed
        response = requests.head(url, headers=headers, timeout=timeout, allow_redirects=True)
        if response.status_code >= 400:
            # Fallback to GET for sites that block HEAD
            response = requests.get(url, headers=headers, timeout=timeout, allow_redirects=True)
        return url, response.status_code
    except requests.RequestException as exc:
        return url, str(exc)


def check_site(root, external=False, raise_on_error=False, max_workers=8) -> LinkReport:
    """Check every internal link, fragment and image of the HTML pages under ``root``."""
    root = Path(root).resolve()
    report = LinkReport(root=root)
    if not root.is_dir():
        report.problems.append(LinkProblem(".", str(root), "output directory does not exist"))
        if raise_on_error:
            raise LinkCheckError(report)
        return report

    pages = sorted(root.rglob("*.html"))
    soups: Dict[Path, BeautifulSoup] = {}
    for page in pages:
        soups[page.resolve()] = BeautifulSoup(page.read_text(encoding="utf-8"), "html.parser")
    ids = {path: _ids(soup) for path, soup in soups.items()}
    report.pages = len(pages)

    external_links: Dict[str, List[str]] = {}
    for path, soup in soups.items():
        page_name = path.relative_to(root).as_posix()
        for tag_name, attribute in LINK_ATTRIBUTES:
            for tag in soup.find_all(tag_name):
                if tag_name == "a" and not tag.has_attr("href"):
                    continue
                value = (tag.get(attribute) or "").strip()
                if tag_name in ("link", "script") and not value:
                    continue
                report.links += 1
                if tag_name == "img" and not (tag.get("alt") or "").strip():
                    report.problems.append(LinkProblem(page_name, value or "<img>", "missing alt text"))
                if not value:
                    report.problems.append(LinkProblem(page_name, f"<{tag_name}>", f"empty {attribute}"))
                    continue
                parts = urlsplit(value)
                if parts.scheme in IGNORED_SCHEMES:
                    continue
                if parts.scheme in ("http", "https") or value.startswith("//"):
                    external_links.setdefault(value, []).append(page_name)
                    continue
                if parts.scheme:
                    continue

                if parts.path:
                    target = (path.parent / unquote(parts.path)).resolve()
                    if target.is_dir():
                        target = target / "index.html"
                    if root not in target.parents and target != root:
                        report.problems.append(LinkProblem(page_name, value, "points outside the site"))
                        continue
                    if not target.exists():
                        report.problems.append(LinkProblem(page_name, value, "file not found"))
                        continue
                else:
                    target = path
                if parts.fragment and target in ids and unquote(parts.fragment) not in ids[target]:
                    report.problems.append(LinkProblem(page_name, value, "anchor not found"))

    if external and external_links:
        report.external = len(external_links)
        logger.info("🌐 Checking %d external link(s)", len(external_links))
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            results = list(executor.map(check_link, sorted(external_links)))
        for url, status in results:
            if not isinstance(status, int) or status >= 400:
                for page_name in external_links[url]:
                    report.problems.append(LinkProblem(page_name, url, f"status {status}"))

    if report.ok:
        logger.info("✅ Link check passed: %d page(s), %d link(s)", report.pages, report.links)
    else:
        for problem in report.problems:
            logger.error("Broken link: %s", problem)
        if raise_on_error:
            raise LinkCheckError(report)
    return report
