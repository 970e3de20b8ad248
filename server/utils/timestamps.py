"""Store timestamp conversion.

The store keeps dates as nanoseconds since 2001-01-01 UTC; everything above
the repository layer works in Unix milliseconds.
"""
import time
from typing import Optional

APPLE_EPOCH_OFFSET_S = 978307200


def apple_to_unix_ms(apple_nanos: Optional[int]) -> int:
    """Convert a store timestamp to Unix milliseconds (0 stays 0)."""
    if not apple_nanos:
        return 0
    return apple_nanos // 1_000_000 + APPLE_EPOCH_OFFSET_S * 1000


def unix_ms_to_apple(unix_ms: int) -> int:
    if not unix_ms:
        return 0
    return (unix_ms - APPLE_EPOCH_OFFSET_S * 1000) * 1_000_000


def optional_ms(apple_nanos: Optional[int]) -> Optional[int]:
    """Like apple_to_unix_ms, but an unset store date becomes None."""
    value = apple_to_unix_ms(apple_nanos)
    return value or None


def now_ms() -> int:
    return int(time.time() * 1000)
