"""
Curfew (daily blackout window) helpers.

A curfew is a pair of ``HH:MM`` strings. The window is half-open,
``[start, end)``, compared at minute resolution. When ``start > end`` the
window wraps past midnight; ``start == end`` is an empty window.
"""

import re
from datetime import datetime, time, tzinfo
from typing import Optional, Tuple

from ..exceptions import ErrorCode, ValidationError

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: str, field: str = "curfew") -> time:
    """
    Parse a ``HH:MM`` string into a time.

    Raises:
        ValidationError: If the string is not a valid 24-hour time
    """
    match = _HHMM.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValidationError(
            f"Invalid time '{value}', expected HH:MM",
            field=field,
            error_code=ErrorCode.INVALID_FORMAT,
            value=str(value),
        )
    return time(int(match.group(1)), int(match.group(2)))


def normalize_curfew_pair(
    start: Optional[str], end: Optional[str]
) -> Tuple[Optional[str], Optional[str]]:
    """
    Validate a curfew pair and return it in canonical ``HH:MM`` form.

    Empty strings count as unset. Both values must be set or both unset.
    """
    start = start.strip() if isinstance(start, str) and start.strip() else None
    end = end.strip() if isinstance(end, str) and end.strip() else None

    if (start is None) != (end is None):
        raise ValidationError(
            "curfew_start and curfew_end must both be set or both be empty",
            field="curfew",
            error_code=ErrorCode.CONSTRAINT_VIOLATION,
            curfew_start=start,
            curfew_end=end,
        )
    if start is None:
        return None, None

    start_time = parse_hhmm(start, "curfew_start")
    end_time = parse_hhmm(end, "curfew_end")
    return start_time.strftime("%H:%M"), end_time.strftime("%H:%M")


def is_within_curfew(
    curfew_start: Optional[str],
    curfew_end: Optional[str],
    now: datetime,
    zone: Optional[tzinfo] = None,
) -> bool:
    """
    Check whether ``now`` falls inside the curfew window.

    Args:
        curfew_start: Window start (inclusive)
        curfew_end: Window end (exclusive)
        now: Current instant (aware)
        zone: Local zone for the time-of-day; server local time when None

    Returns:
        True if access must be blocked
    """
    if not curfew_start or not curfew_end:
        return False

    start = parse_hhmm(curfew_start, "curfew_start")
    end = parse_hhmm(curfew_end, "curfew_end")
    if start == end:
        return False

    local = now.astimezone(zone) if now.tzinfo is not None else now
    current = time(local.hour, local.minute)

    if start < end:
        return start <= current < end
    # Wraps past midnight
    return current >= start or current < end
