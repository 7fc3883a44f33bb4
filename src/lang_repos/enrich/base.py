from __future__ import annotations

from typing import Protocol

from lang_repos.core.models import MarkerResult, RawRepoDescriptor


class MarkerChecker(Protocol):
    """Protocol for per-repository marker file checks."""

    def check_markers(self, repo: RawRepoDescriptor) -> MarkerResult: ...
