from lang_repos.state.base import CheckpointStore
from lang_repos.state.checkpoint_store import JsonCheckpointStore

__all__ = [
    "CheckpointStore",
    "JsonCheckpointStore",
]
