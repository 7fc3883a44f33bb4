from datetime import datetime, timezone

def utc_now_iso() -> str:
    """Get current UTC time in ISO format."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def seconds_until(reset_at_iso: str) -> float:
    """Seconds from now until an ISO-8601 timestamp, never negative."""
    reset_at = datetime.fromisoformat(reset_at_iso.replace("Z", "+00:00"))
    return max(0.0, (reset_at - datetime.now(timezone.utc)).total_seconds())
