from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class HttpResponse:
    """HTTP response data as seen by the API clients."""

    status_code: int
    headers: Dict[str, str]
    text: str
    json: Any

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return default
