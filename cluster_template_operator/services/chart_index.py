"""
Chart repository index — fetch, version lookup and chart URL resolution.

The index is fetched fresh on every provision attempt and never cached.
"""

import logging
from urllib.parse import urljoin, urlsplit, urlunsplit

import httpx
import yaml

from cluster_template_operator.config import Settings, settings as default_settings
from cluster_template_operator.errors import MissingReferenceError
from cluster_template_operator.models import ChartVersion

logger = logging.getLogger("chart_index")

INDEX_FILENAME = "index.yaml"

ChartIndex = dict[str, list[ChartVersion]]


def index_url(repo_url: str) -> str:
    """URL of the index file for a repository URL (which may already point at it)."""
    parts = urlsplit(repo_url)
    if parts.path.endswith(INDEX_FILENAME):
        return repo_url
    path = parts.path.rstrip("/") + "/" + INDEX_FILENAME
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))


def repository_base(repo_url: str) -> str:
    if repo_url.endswith("/" + INDEX_FILENAME):
        return repo_url[: -len(INDEX_FILENAME)]
    return repo_url


def resolve_chart_url(repo_url: str, chart_url: str) -> str:
    """
    Resolve a chart URL from an index entry against its repository.

    Absolute URLs are returned unchanged. Relative ones are joined onto the
    repository base (always treated as a directory) and keep its query string.
    """
    if urlsplit(chart_url).scheme:
        return chart_url
    base = urlsplit(repository_base(repo_url))
    base_dir = urlunsplit((base.scheme, base.netloc, base.path.rstrip("/") + "/", "", ""))
    resolved = urlsplit(urljoin(base_dir, chart_url))
    return urlunsplit((resolved.scheme, resolved.netloc, resolved.path, base.query, ""))


def find_chart_url(index: ChartIndex, chart: str, version: str) -> str:
    """First URL of the index entry for chart@version."""
    for entry in index.get(chart, []):
        if entry.version == version and entry.urls:
            return entry.urls[0]
    raise MissingReferenceError(f"chart not found: {chart} version {version}")


class ChartIndexFetcher:
    def __init__(self, cfg: Settings = default_settings):
        self.timeout = cfg.INDEX_FETCH_TIMEOUT

    def fetch(self, repo_url: str) -> ChartIndex:
        url = index_url(repo_url)
        logger.info(f"Fetching chart index {url}")
        response = httpx.get(url, timeout=self.timeout, follow_redirects=True)
        response.raise_for_status()
        # BaseLoader keeps every scalar as written, so version 1.10 stays "1.10"
        data = yaml.load(response.text, Loader=yaml.BaseLoader) or {}
        entries = data.get("entries") or {}
        return {
            chart: [
                ChartVersion(version=v.get("version", ""), urls=v.get("urls") or [])
                for v in (versions or [])
            ]
            for chart, versions in entries.items()
        }
