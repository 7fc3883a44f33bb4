from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict

from lang_repos.core.models import CheckpointState
from lang_repos.utils.atomic import atomic_write
from lang_repos.utils.logging import get_logger
from lang_repos.utils.time import utc_now_iso


class JsonCheckpointStore:
    """Checkpoint kept in a single JSON file, replaced atomically on save."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.log = get_logger("lang_repos.state.checkpoint")

    def load(self) -> CheckpointState:
        """Read the checkpoint; a missing or unreadable one means start over."""
        if not self.path.exists():
            self.log.info("No checkpoint at %s, starting from the beginning", self.path)
            return CheckpointState()

        try:
            with self.path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
            state = self._from_dict(raw)
        except (OSError, ValueError, TypeError) as e:
            self.log.warning("Ignoring corrupt checkpoint %s (%s), starting from the beginning", self.path, e)
            return CheckpointState()

        self.log.info(
            "Loaded checkpoint: cursor=%s window_start=%s completed_full_pass=%s pages_processed=%s",
            state.cursor,
            state.window_start,
            state.completed_full_pass,
            state.pages_processed,
        )
        return state

    def save(self, state: CheckpointState) -> None:
        """Write the full state to a temporary file and swap it in."""
        state = replace(state, updated_at_utc=utc_now_iso())
        with atomic_write(self.path) as f:
            json.dump(self._to_dict(state), f, indent=2, sort_keys=True)
            f.write("\n")
        self.log.debug("Checkpoint saved: cursor=%s completed_full_pass=%s", state.cursor, state.completed_full_pass)

    def _to_dict(self, state: CheckpointState) -> Dict[str, Any]:
        return {
            "cursor": state.cursor,
            "completed_full_pass": state.completed_full_pass,
            "query": state.query,
            "window_start": state.window_start,
            "window_end": state.window_end,
            "pages_processed": state.pages_processed,
            "run_count": state.run_count,
            "updated_at_utc": state.updated_at_utc,
        }

    def _from_dict(self, raw: Any) -> CheckpointState:
        if not isinstance(raw, dict):
            raise ValueError("checkpoint is not a JSON object")

        cursor = raw.get("cursor")
        if cursor is not None and not isinstance(cursor, str):
            raise ValueError("cursor must be a string or null")
        completed = raw.get("completed_full_pass", False)
        if not isinstance(completed, bool):
            raise ValueError("completed_full_pass must be a boolean")
        query = raw.get("query")
        if query is not None and not isinstance(query, str):
            raise ValueError("query must be a string or null")
        window_start = raw.get("window_start")
        window_end = raw.get("window_end")
        for key, value in (("window_start", window_start), ("window_end", window_end)):
            if value is not None and not isinstance(value, str):
                raise ValueError(f"{key} must be a string or null")

        return CheckpointState(
            cursor=cursor,
            completed_full_pass=completed,
            query=query,
            window_start=window_start,
            window_end=window_end,
            pages_processed=int(raw.get("pages_processed") or 0),
            run_count=int(raw.get("run_count") or 0),
            updated_at_utc=str(raw.get("updated_at_utc") or ""),
        )
