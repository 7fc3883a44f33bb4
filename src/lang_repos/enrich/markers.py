from __future__ import annotations

from typing import Sequence
from urllib.parse import quote

from lang_repos.core.errors import TransientError
from lang_repos.core.models import MarkerResult, RawRepoDescriptor, RequestSpec
from lang_repos.enrich.base import MarkerChecker
from lang_repos.http.client import HttpClient
from lang_repos.utils.logging import get_logger

RAW_CONTENT_URL = "https://raw.githubusercontent.com"
FALLBACK_REF = "HEAD"


class RawFileMarkerChecker(MarkerChecker):
    """Checks marker files by requesting them from the raw content host."""

    def __init__(self, client: HttpClient, marker_files: Sequence[str], raw_url: str = RAW_CONTENT_URL):
        if len(marker_files) != 2:
            raise ValueError("exactly two marker files are required")
        self.client = client
        self.marker_files = tuple(marker_files)
        self.raw_url = raw_url.rstrip("/")
        self.log = get_logger("lang_repos.markers")

    def check_markers(self, repo: RawRepoDescriptor) -> MarkerResult:
        """Probe both marker files at the root of the repository's default branch."""
        marker_a, marker_b = (self.file_exists(repo, path) for path in self.marker_files)
        result = MarkerResult(has_marker_a=marker_a, has_marker_b=marker_b)
        self.log.info(
            "Found %s: %s = %s, %s = %s",
            repo.name,
            self.marker_files[0],
            result.has_marker_a,
            self.marker_files[1],
            result.has_marker_b,
        )
        return result

    def file_exists(self, repo: RawRepoDescriptor, path: str) -> bool:
        """True on 200, False on 404; anything else is an error."""
        ref = repo.default_branch or FALLBACK_REF
        url = "/".join([self.raw_url] + [quote(part, safe="/") for part in (repo.name, ref, path)])
        resp = self.client.send(RequestSpec(url=url))

        if resp.status_code == 200:
            return True
        if resp.status_code == 404:
            return False
        raise TransientError(f"failed to fetch file {path} from repo {repo.name}: status {resp.status_code}")
