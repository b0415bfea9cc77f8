"""
License expiry parsing and checks.

The backend is inconsistent about timestamp encoding, so parsing tries a
fixed list of layouts and takes the first that matches. A value that
matches none of them is treated as "unknown", and an unknown expiry never
blocks playback.
"""

from datetime import datetime, timezone
from typing import Optional

from src.common.logger import setup_logger

logger = setup_logger(__name__)

# (strptime layout, value is UTC). Order matters: first match wins.
TIMESTAMP_LAYOUTS = (
    ("%Y-%m-%dT%H:%M:%S.%fZ", True),
    ("%Y-%m-%dT%H:%M:%SZ", True),
    ("%Y-%m-%dT%H:%M:%S", False),
    ("%Y-%m-%d %H:%M:%S", False),
    ("%Y-%m-%d", False),
)


def parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    """
    Parse a license expiry string.

    Layouts ending in ``Z`` are UTC; the others are read as device local
    time.

    Args:
        raw: Raw expiry as received or persisted

    Returns:
        Timezone-aware datetime, or None when empty or unparseable
    """
    if not raw:
        return None

    cleaned = raw.replace('"', '').strip()
    if not cleaned or cleaned == "null":
        return None

    for layout, is_utc in TIMESTAMP_LAYOUTS:
        try:
            parsed = datetime.strptime(cleaned, layout)
        except ValueError:
            continue
        if is_utc:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone()

    logger.warning("Unrecognised license expiry format: %r", raw)
    return None


def is_expired(expiry: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """
    Check an already parsed expiry.

    Args:
        expiry: Parsed expiry or None when unknown
        now: Reference time (defaults to the current time)

    Returns:
        True only when the expiry is known and lies in the past
    """
    if expiry is None:
        return False
    current = now or datetime.now(timezone.utc)
    return current > expiry


def license_expired(raw: Optional[str], now: Optional[datetime] = None) -> bool:
    """Parse ``raw`` and check it against ``now``. Unparseable means not expired."""
    return is_expired(parse_timestamp(raw), now)
