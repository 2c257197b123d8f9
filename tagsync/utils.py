"""Utility functions for tagsync."""

import base64
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

# =============================================================================
# Constants for remote operations
# =============================================================================

# Attempts per remote call, including the first one
DEFAULT_MAX_ATTEMPTS: int = 6

# Exponential backoff: 1s, 2s, 4s, ... capped at 30s
DEFAULT_RETRY_DELAY: float = 1.0
MAX_RETRY_DELAY: float = 30.0

# Refresh access tokens this many seconds before they expire
TOKEN_EXPIRY_MARGIN: float = 60.0


# =============================================================================
# Timestamp utilities
# =============================================================================


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse an ISO format timestamp from the remote API.

    Args:
        timestamp_str: ISO format timestamp string (e.g., "2025-01-15T10:30:00Z")

    Returns:
        Timezone-aware datetime (UTC when no zone is given) or None if
        parsing fails
    """
    if not timestamp_str:
        return None

    try:
        # The 'Z' suffix indicates UTC time
        if timestamp_str.endswith("Z"):
            timestamp_str = timestamp_str[:-1] + "+00:00"
        dt = datetime.fromisoformat(timestamp_str)
    except (ValueError, AttributeError):
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_iso_timestamp_ms(timestamp_str: Optional[str]) -> Optional[int]:
    """Parse an ISO timestamp into milliseconds since the epoch.

    Examples:
        >>> parse_iso_timestamp_ms("1970-01-01T00:00:01Z")
        1000
        >>> parse_iso_timestamp_ms("garbage") is None
        True
    """
    dt = parse_iso_timestamp(timestamp_str)
    if dt is None:
        return None
    return int(dt.timestamp() * 1000)


def expiry_timestamp(expires_in: Optional[float]) -> Optional[str]:
    """Turn a token lifetime in seconds into an ISO expiry timestamp."""
    if expires_in is None:
        return None
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=float(expires_in))
    return expires_at.isoformat()


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format a byte count for notices, e.g. "1.5 MB" or "256 B"."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    size = size_bytes / 1024
    for unit in ("KB", "MB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


# =============================================================================
# Encoding utilities
# =============================================================================


def base64url_encode(data: bytes) -> str:
    """Base64url-encode bytes with the padding stripped.

    Examples:
        >>> base64url_encode(b"ab?")
        'YWI_'
        >>> base64url_encode(b"a")
        'YQ'
    """
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")
