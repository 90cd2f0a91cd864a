"""Wall-clock schedule trigger.

A schedule fires when the reference-timezone minute equals the stored
``HH:mm``. The scan tick runs every few seconds, so the matching minute is
seen at least once while the process is up; a minute missed while the
process is down is not replayed.
"""

import re
from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from shopwatch.config import settings

_TIME_RE = re.compile(r"^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$")

Clock = Callable[[], datetime]


def reference_tz() -> ZoneInfo:
    return ZoneInfo(settings.timezone)


def local_now() -> datetime:
    """Current time in the reference timezone."""
    return datetime.now(reference_tz())


def normalize_schedule_time(value: str) -> Optional[str]:
    """
    Validate an ``H:mm``/``HH:mm`` string and zero-pad it.

    Returns:
        "HH:mm", or None when the value is not a valid time of day
    """
    match = _TIME_RE.match((value or "").strip())
    if not match:
        return None
    return f"{int(match.group(1)):02d}:{match.group(2)}"


def current_minute(now: Optional[datetime] = None) -> str:
    """Format the reference-timezone minute as ``HH:mm``."""
    now = now or local_now()
    if now.tzinfo is not None:
        now = now.astimezone(reference_tz())
    return now.strftime("%H:%M")


def schedule_due(schedule_time: Optional[str], now: Optional[datetime] = None) -> bool:
    """True when the schedule matches the current minute."""
    if not schedule_time:
        return False
    normalized = normalize_schedule_time(schedule_time)
    return normalized is not None and normalized == current_minute(now)
