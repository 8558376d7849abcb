"""
Streak and weekly-insight eligibility.

Pure functions over entries. Every instant is projected into one time
zone, the viewer's, chosen once per call and applied both to "today" and
to each entry; comparing a UTC day to a local today is the bug this
module exists to avoid.
"""

from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .types import JournalEntry, StreakData, WeeklyEligibility, WeeklySummary, utc_now

# Unique active days needed before a weekly insight may be generated
REQUIRED_DAYS = 7


def resolve_timezone(name: Optional[str] = None) -> tzinfo:
    """
    Return the zone for an IANA name, or the system local zone.

    Raises:
        ValueError: If the name is not a known zone
    """
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown time zone: {name!r}") from e
    return datetime.now().astimezone().tzinfo


def local_day(instant: datetime, tz: tzinfo) -> date:
    """Calendar day of an instant in the given zone."""
    return instant.astimezone(tz).date()


def week_range(day: date) -> tuple[date, date]:
    """Monday and Sunday of the calendar week containing ``day``."""
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def entry_day(entry: JournalEntry, tz: tzinfo) -> date:
    """The entry's calendar day: its ``date`` field, else its created day in ``tz``."""
    try:
        return date.fromisoformat(entry.date)
    except (TypeError, ValueError):
        return local_day(entry.created_at, tz)


def compute_streaks(
    entries: Sequence[JournalEntry],
    tz: tzinfo,
    now: Optional[datetime] = None,
) -> StreakData:
    """
    Current and longest run of consecutive days with at least one entry.

    The current streak counts back from today and is 0 unless there is an
    entry today. The longest streak is never below the current one.
    """
    if not entries:
        return StreakData()

    today = local_day(now or utc_now(), tz)
    active_days = {local_day(e.created_at, tz) for e in entries}
    last_entry_date = max(e.created_at for e in entries)

    current = 0
    streak_start: Optional[date] = None
    if max(active_days) == today:
        day = today
        while day in active_days:
            current += 1
            streak_start = day
            day -= timedelta(days=1)

    ordered = sorted(active_days)
    longest = run = 1
    for prev, cur in zip(ordered, ordered[1:]):
        if (cur - prev).days == 1:
            run += 1
        else:
            run = 1
        longest = max(longest, run)
    longest = max(longest, current)

    return StreakData(
        current_streak=current,
        longest_streak=longest,
        last_entry_date=last_entry_date,
        streak_start_date=streak_start if current > 0 else None,
    )


def latest_summary(summaries: Iterable[WeeklySummary]) -> Optional[WeeklySummary]:
    """The weekly summary with the latest ``week_end``, if any."""
    return max(summaries, key=lambda s: s.week_end, default=None)


def compute_weekly_eligibility(
    entries: Sequence[JournalEntry],
    existing_summaries: Sequence[WeeklySummary],
    tz: tzinfo,
) -> WeeklyEligibility:
    """
    Entries since the last weekly summary, and whether they cover 7 days.

    With no prior summary the window is every entry. Otherwise it is the
    entries whose day is strictly after the last summary's end day.
    """
    last = latest_summary(existing_summaries)
    if last is None:
        window = list(entries)
    else:
        cutoff = local_day(last.week_end, tz)
        window = [e for e in entries if entry_day(e, tz) > cutoff]

    days = min(len({entry_day(e, tz) for e in window}), REQUIRED_DAYS)
    return WeeklyEligibility(
        eligible=days == REQUIRED_DAYS and len(window) > 0,
        entries_in_window=window,
        days_in_window=days,
    )
