from __future__ import annotations

from typing import Protocol

from lang_repos.core.models import CheckpointState


class CheckpointStore(Protocol):
    """Protocol for checkpoint backends."""

    def load(self) -> CheckpointState: ...

    def save(self, state: CheckpointState) -> None: ...
