from __future__ import annotations

import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator

from lang_repos.core.errors import StorageError


@contextmanager
def atomic_write(path: Path, newline: str | None = None) -> Iterator[IO[str]]:
    """
    Open a temporary file next to ``path`` for writing and move it over
    ``path`` when the block exits cleanly.

    If the block raises, the temporary file is removed and ``path`` keeps its
    previous content. Readers only ever see the old file or the new one.
    """
    path = Path(path)
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    except OSError as e:
        raise StorageError(f"cannot create a temporary file in {path.parent}: {e}") from e

    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline=newline) as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException as e:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        if isinstance(e, OSError):
            raise StorageError(f"failed to write {path}: {e}") from e
        raise
