from datetime import date, datetime, timedelta
from typing import Iterable

STREAK_WINDOW_DAYS = 45


def current_streak_days(completed_at: Iterable[datetime], today: date) -> int:
    """Consecutive UTC days, ending today, with at least one completed session."""
    days_played = {ts.date() for ts in completed_at if ts is not None}
    streak = 0
    cursor = today
    while streak <= STREAK_WINDOW_DAYS and cursor in days_played:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def streak_window_start(today: date) -> datetime:
    return datetime.combine(today - timedelta(days=STREAK_WINDOW_DAYS), datetime.min.time())
