"""
plugins/server_shutdown/schedule.py

Shutdown schedule parsing and next-slot calculation.

Provides:
- parse_schedule: "HH:MM,HH:MM" text -> sorted, spacing-validated slots
- next_countdown_start: when the warning ladder for the next slot begins
- format_slot: minutes-since-midnight -> "HH:MM"

A slot is an int in [0, 1440) counting minutes since local midnight.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional


logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 1440

# Minimum spacing between two slots; matches the default countdown length
DEFAULT_MIN_GAP = 5


@dataclass
class ScheduleParseResult:
    """
    Outcome of parsing a schedule string.

    Attributes:
        slots: Ascending list of surviving slots.
        errors: Diagnostics for tokens that were skipped or dropped.
    """
    slots: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.slots)


def format_slot(slot: int) -> str:
    """Format a slot as zero-padded HH:MM."""
    return f"{slot // 60:02d}:{slot % 60:02d}"


# =============================================================================
# Parsing
# =============================================================================

def _parse_token(token: str) -> Optional[int]:
    """
    Parse one HH:MM token.

    Returns:
        Slot value, or None if the token is malformed or out of range.
    """
    index = token.find(":")
    if index <= 0 or token.count(":") != 1:
        return None

    try:
        hour = int(token[:index])
        minute = int(token[index + 1:])
    except ValueError:
        return None

    if not (0 <= hour < 24 and 0 <= minute < 60):
        return None

    return hour * 60 + minute


def _enforce_spacing(slots: List[int], min_gap: int, errors: List[str]) -> List[int]:
    """
    Drop slots that sit within ``min_gap`` minutes of their predecessor.

    Walks the sorted list keeping the earlier slot of each tight pair, then
    checks the pair that wraps across midnight (last -> first) and drops the
    last slot if it is too close to the first one of the next day.
    """
    kept: List[int] = []
    for slot in slots:
        if kept and slot - kept[-1] <= min_gap:
            message = (
                f"Dropping schedule time {format_slot(slot)}: only "
                f"{slot - kept[-1]} minutes after {format_slot(kept[-1])}"
            )
            logger.warning(message)
            errors.append(message)
            continue
        kept.append(slot)

    if len(kept) > 1:
        wrap_gap = kept[0] + MINUTES_PER_DAY - kept[-1]
        if wrap_gap <= min_gap:
            dropped = kept.pop()
            message = (
                f"Dropping schedule time {format_slot(dropped)}: only "
                f"{wrap_gap} minutes before {format_slot(kept[0])} the next day"
            )
            logger.warning(message)
            errors.append(message)

    return kept


def parse_schedule(text: Optional[str], min_gap: int = DEFAULT_MIN_GAP) -> ScheduleParseResult:
    """
    Parse a comma-separated list of HH:MM times.

    Malformed tokens are logged and skipped; they never abort the parse.
    Surviving slots are sorted and then thinned so that every adjacent pair
    (including the pair across midnight) is more than ``min_gap`` minutes
    apart.

    Args:
        text: Schedule text such as "04:00,16:00". Empty or None yields
              an empty schedule.
        min_gap: Pairs this many minutes apart or closer are too tight.

    Returns:
        ScheduleParseResult with sorted slots and any diagnostics.

    Examples:
        >>> parse_schedule("08:00,08:04,20:00").slots
        [480, 1200]
        >>> parse_schedule("bad,12:30").slots
        [750]
    """
    result = ScheduleParseResult()
    if not text:
        return result

    raw: List[int] = []
    for token in text.split(","):
        token = token.strip()
        if not token:
            continue

        slot = _parse_token(token)
        if slot is None:
            message = f"Invalid schedule time: {token}"
            logger.warning(message)
            result.errors.append(message)
            continue

        raw.append(slot)

    raw.sort()
    result.slots = _enforce_spacing(raw, min_gap, result.errors)
    return result


# =============================================================================
# Timeline
# =============================================================================

def next_countdown_start(
    now: datetime,
    schedule: List[int],
    lead_minutes: int = DEFAULT_MIN_GAP,
) -> Optional[datetime]:
    """
    Calculate when the countdown for the next slot should begin.

    Each slot's lead-in start is rolled forward by whole days until it lies
    strictly after ``now``; the soonest of those wins. A lead-in may begin
    the evening before its slot (00:02 with five minutes starts at 23:57).

    Args:
        now: Current local wall-clock time.
        schedule: Sorted slots from parse_schedule.
        lead_minutes: Length of the countdown ladder.

    Returns:
        Start instant strictly after ``now``, or None for an empty schedule.
    """
    if not schedule:
        return None

    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    starts = []
    for slot in schedule:
        start = midnight + timedelta(minutes=slot - lead_minutes)
        while start <= now:
            start += timedelta(days=1)
        starts.append(start)

    return min(starts)
