"""Time utilities (UTC now, postback timestamp parsing, elapsed formatting)."""
from __future__ import annotations
from datetime import datetime, timezone

from attribution.config import ATTRIBUTION_SETTINGS

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def ensure_aware(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

def parse_event_timestamp(raw: str | None) -> datetime | None:
    """Parse a house-supplied timestamp.

    Accepts unix epoch seconds, epoch milliseconds, or ISO 8601. Returns None
    for an empty value and raises ValueError for anything unparseable.
    """
    if raw is None or not raw.strip():
        return None
    text = raw.strip()
    try:
        epoch = float(text)
    except ValueError:
        epoch = None
    if epoch is not None:
        if epoch < 0:
            raise ValueError(f"negative epoch timestamp: {raw}")
        if epoch > ATTRIBUTION_SETTINGS["epoch_millis_threshold"]:
            epoch = epoch / 1000.0
        try:
            return datetime.fromtimestamp(epoch, tz=timezone.utc)
        except (OverflowError, OSError) as exc:
            raise ValueError(f"timestamp out of range: {raw}") from exc
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_aware(datetime.fromisoformat(text))

__all__ = ["utc_now", "ensure_aware", "parse_event_timestamp"]
