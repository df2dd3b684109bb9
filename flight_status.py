"""
Flight Status Module

Derives a flight's status from its departure time and resolves the
effective status shown on the board (pushed override vs computed).
"""

import math
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional, Union

logger = logging.getLogger(__name__)


# =====================================================
# Status Enumeration
# =====================================================

class FlightStatus(Enum):
    SCHEDULED = "Scheduled"
    BOARDING = "Boarding"
    DEPARTED = "Departed"
    DELAYED = "Delayed"
    LANDED = "Landed"
    UNKNOWN = "Unknown"


# Options offered in filter drop-downs (Unknown is not selectable)
VALID_STATUS_OPTIONS: List[FlightStatus] = [
    FlightStatus.SCHEDULED,
    FlightStatus.BOARDING,
    FlightStatus.DEPARTED,
    FlightStatus.LANDED,
    FlightStatus.DELAYED,
]

# Classification thresholds in minutes (departure - now)
SCHEDULED_AFTER_MINUTES = 30
BOARDING_AFTER_MINUTES = 10
DEPARTED_FROM_MINUTES = -60
DELAYED_BEFORE_MINUTES = -15


def parse_status(value: Any) -> Optional[FlightStatus]:
    """
    Map a raw status value to FlightStatus.

    Accepts an existing FlightStatus or one of the six status strings
    (case-insensitive). Anything else returns None.
    """
    if isinstance(value, FlightStatus):
        return value
    if not isinstance(value, str):
        return None

    cleaned = value.strip().lower()
    for status in FlightStatus:
        if status.value.lower() == cleaned:
            return status
    return None


# =====================================================
# Timestamp Parsing
# =====================================================

def parse_departure_time(value: Any) -> Optional[datetime]:
    """
    Parse a departure time into an aware UTC datetime.

    Args:
        value: ISO-8601 string, datetime, or epoch seconds

    Returns:
        Aware datetime, or None if the value can't be parsed
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _as_utc(now: datetime) -> datetime:
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


# =====================================================
# Classifier
# =====================================================

def classify(departure_time: Any, now: datetime) -> FlightStatus:
    """
    Classify a flight by minutes until departure.

    The ladder is evaluated top to bottom, first match wins:
        > 30           Scheduled
        > 10           Boarding
        >= -60         Departed
        < -60          Landed
        < -15          Delayed (shadowed by the two rules above)

    Never raises. Unparseable or non-finite input yields Unknown.

    Args:
        departure_time: Departure instant (ISO string, datetime or epoch seconds)
        now: Evaluation instant

    Returns:
        FlightStatus
    """
    departure = parse_departure_time(departure_time)
    if departure is None or not isinstance(now, datetime):
        return FlightStatus.UNKNOWN

    try:
        diff_minutes = (departure - _as_utc(now)).total_seconds() / 60
    except (OverflowError, TypeError):
        return FlightStatus.UNKNOWN

    if not math.isfinite(diff_minutes):
        return FlightStatus.UNKNOWN

    if diff_minutes > SCHEDULED_AFTER_MINUTES:
        return FlightStatus.SCHEDULED
    if diff_minutes > BOARDING_AFTER_MINUTES:
        return FlightStatus.BOARDING
    if diff_minutes >= DEPARTED_FROM_MINUTES:
        return FlightStatus.DEPARTED
    if diff_minutes < DEPARTED_FROM_MINUTES:
        return FlightStatus.LANDED
    if diff_minutes < DELAYED_BEFORE_MINUTES:
        return FlightStatus.DELAYED

    return FlightStatus.UNKNOWN


# =====================================================
# Effective Status
# =====================================================

@dataclass(frozen=True)
class Authoritative:
    """Status pushed by an external authority; overrides the computed one."""
    status: FlightStatus

    @property
    def is_authoritative(self) -> bool:
        return True


@dataclass(frozen=True)
class Derived:
    """Status computed locally from the departure time."""
    status: FlightStatus

    @property
    def is_authoritative(self) -> bool:
        return False


EffectiveStatus = Union[Authoritative, Derived]


def effective_status(
    departure_time: Any,
    pushed_status: Optional[FlightStatus],
    now: datetime
) -> EffectiveStatus:
    """Pushed status wins; otherwise classify against now."""
    if pushed_status is not None:
        return Authoritative(pushed_status)
    return Derived(classify(departure_time, now))
