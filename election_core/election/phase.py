# election_core/election/phase.py
"""Election phase state machine.

``phase()`` derives NotStarted / Active / Ended from an election window and a
point in time. It never touches storage and holds no state, so request
handlers call it concurrently without any locking.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from election_core.errors import ElectionConfigError


class Phase(str, Enum):
    NOT_STARTED = 'not-started'
    ACTIVE = 'active'
    ENDED = 'ended'
    CONFIG_ERROR = 'config-error'


# Total order used for monotonicity; CONFIG_ERROR sits outside it
PHASE_ORDER = (Phase.NOT_STARTED, Phase.ACTIVE, Phase.ENDED)


@dataclass(frozen=True)
class ElectionWindow:
    start_date: str
    start_time: str
    end_time: str
    end_date: Optional[str] = None
    timezone: str = 'UTC'


def _parse_date(value, field):
    if not isinstance(value, str):
        raise ElectionConfigError(f'{field} is missing')
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise ElectionConfigError(f'{field} is not a YYYY-MM-DD date: {value!r}')


def _parse_time(value, field):
    if not isinstance(value, str):
        raise ElectionConfigError(f'{field} is missing')
    raw = value.strip()
    for fmt in ('%H:%M:%S', '%H:%M'):
        try:
            return datetime.strptime(raw, fmt).time()
        except ValueError:
            continue
    raise ElectionConfigError(f'{field} is not an HH:MM[:SS] time: {value!r}')


def _zone(name):
    try:
        return ZoneInfo(name or 'UTC')
    except (ZoneInfoNotFoundError, ValueError):
        raise ElectionConfigError(f'Unknown timezone: {name!r}')


def resolve_window(window: ElectionWindow) -> Tuple[datetime, datetime]:
    """Return the aware (start, end) instants of ``window``.

    Raises ElectionConfigError when any part is missing or malformed, or when
    the window does not end after it starts.
    """
    zone = _zone(window.timezone)
    start_day = _parse_date(window.start_date, 'start_date')
    end_day = _parse_date(window.end_date, 'end_date') if window.end_date else start_day
    start = datetime.combine(start_day, _parse_time(window.start_time, 'start_time'), tzinfo=zone)
    end = datetime.combine(end_day, _parse_time(window.end_time, 'end_time'), tzinfo=zone)
    if end <= start:
        raise ElectionConfigError('Election window must end after it starts')
    return start, end


def _as_aware(now: datetime) -> datetime:
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def phase(window: Optional[ElectionWindow], now: datetime) -> Phase:
    if window is None:
        return Phase.CONFIG_ERROR
    try:
        start, end = resolve_window(window)
    except ElectionConfigError:
        return Phase.CONFIG_ERROR

    now = _as_aware(now)
    if now < start:
        return Phase.NOT_STARTED
    if now < end:
        return Phase.ACTIVE
    return Phase.ENDED


def format_remaining(seconds: int) -> str:
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f'{hours:02d}:{minutes:02d}:{secs:02d}'


def phase_status(window: Optional[ElectionWindow], now: datetime) -> dict:
    """Phase plus the time left until the next transition."""
    current = phase(window, now)
    status = {
        'phase': current.value,
        'timeRemaining': None,
        'secondsRemaining': None,
        'startsAt': None,
        'endsAt': None,
    }
    if current is Phase.CONFIG_ERROR:
        return status

    start, end = resolve_window(window)
    status['startsAt'] = start.isoformat()
    status['endsAt'] = end.isoformat()

    now = _as_aware(now)
    if current is Phase.NOT_STARTED:
        target = start
    elif current is Phase.ACTIVE:
        target = end
    else:
        return status

    seconds = int((target - now).total_seconds())
    status['secondsRemaining'] = seconds
    status['timeRemaining'] = format_remaining(seconds)
    return status
