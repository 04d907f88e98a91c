"""
Technician availability module.

Availability is expressed as a list of windows per team member:
- A window covers an inclusive date range.
- A recurring window only applies on its recurring days (0 = Sunday ... 6 = Saturday).
- A window with is_available=False is time off and blocks the days it covers.
- Dates listed in the member's work preferences as unavailable are blocked too.

When a window carries no start/end time, the working day defaults to the
configured workday hours (08:00 to 17:00 unless overridden).
"""

from datetime import date, datetime, time
from typing import Optional, Tuple

from .config import get_settings
from .models import Availability, TeamMember, WorkingHours


def _weekday_sunday_first(day: date) -> int:
    # Python counts Monday as 0; availability windows count Sunday as 0
    return (day.weekday() + 1) % 7


def window_covers(window: Availability, day: date) -> bool:
    """Checks whether a single availability window applies to the given date."""
    if not window.start_date <= day <= window.end_date:
        return False
    if window.is_recurring and window.recurring_days:
        return _weekday_sunday_first(day) in window.recurring_days
    return True


def is_available_on(member: TeamMember, day: date) -> bool:
    """
    Gets whether a team member can take work on a specific day.

    Args:
        member (TeamMember): The member to check.
        day (date): The calendar day.

    Returns:
        bool: True if an available window covers the day and no time off blocks it.
    """
    if day in member.work_preferences.unavailable_dates:
        return False

    covering = [window for window in member.availability if window_covers(window, day)]
    if any(not window.is_available for window in covering):
        return False
    return any(window.is_available for window in covering)


def get_daily_window(
    member: TeamMember,
    day: date,
    default_hours: Optional[WorkingHours] = None,
) -> Optional[Tuple[datetime, datetime]]:
    """
    Gets the working window for a member on a given day.

    Uses the first available window covering the day; missing start or end
    times fall back to default_hours, else the configured workday hours.

    Args:
        member (TeamMember): The member to check.
        day (date): The calendar day.
        default_hours (Optional[WorkingHours]): Request-level working hours.

    Returns:
        Optional[Tuple[datetime, datetime]]: (day start, day end), or None if
            the member is unavailable that day.
    """
    if not is_available_on(member, day):
        return None

    if default_hours is not None:
        default_start, default_end = default_hours.start, default_hours.end
    else:
        settings = get_settings()
        default_start, default_end = settings["workday_start"], settings["workday_end"]

    for window in member.availability:
        if window.is_available and window_covers(window, day):
            start: time = window.start_time or default_start
            end: time = window.end_time or default_end
            return datetime.combine(day, start), datetime.combine(day, end)
    return None
