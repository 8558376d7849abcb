"""
Data types for the journal sync core.

Records are plain dataclasses. ``to_dict()`` / ``from_dict()`` use the
camelCase field names of the remote document store so cached snapshots,
fallback records and remote payloads share one JSON shape.
"""

import logging
import re
import secrets
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class Mood(str, Enum):
    """The fixed set of moods an entry may carry."""
    HAPPY = "happy"
    JOYFUL = "joyful"
    GRATEFUL = "grateful"
    EXCITED = "excited"
    ENERGETIC = "energetic"
    INSPIRED = "inspired"
    PEACEFUL = "peaceful"
    CONTENT = "content"
    MOTIVATED = "motivated"
    RELAXED = "relaxed"
    CREATIVE = "creative"
    FOCUSED = "focused"
    NEUTRAL = "neutral"
    TIRED = "tired"
    STRESSED = "stressed"
    ANXIOUS = "anxious"
    MELANCHOLY = "melancholy"
    SAD = "sad"
    FRUSTRATED = "frustrated"
    OVERWHELMED = "overwhelmed"


class HoldReason(str, Enum):
    """Why AI summary generation for an entry is on hold."""
    RATE_LIMIT = "rate_limit"
    API_ERROR = "api_error"
    TIMEOUT = "timeout"
    INVALID_RESPONSE = "invalid_response"
    UNKNOWN = "unknown"


class Trend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class EntrySummaryState(str, Enum):
    """Lifecycle of the AI summary for a single entry."""
    NONE = "none"
    GENERATING = "generating"
    SUMMARIZED = "summarized"
    HELD = "held"


# ---------------------------------------------------------------------------
# Timestamps and ids
# ---------------------------------------------------------------------------

def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(ts: str) -> datetime:
    """Parse a stored ISO timestamp to a timezone-aware datetime.

    Accepts a trailing 'Z' and naive strings (assumed UTC).
    """
    ts = ts.strip().replace("Z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(dt: datetime) -> str:
    """Canonical wire format: ISO-8601 in UTC with offset."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def generate_id() -> str:
    """Opaque, url-safe record id."""
    return secrets.token_urlsafe(12)


# ---------------------------------------------------------------------------
# Tags and titles
# ---------------------------------------------------------------------------

_HASHTAG_RE = re.compile(r"#([A-Za-z0-9_]+)")


def extract_hashtags(content: str) -> list[str]:
    """Lowercase, de-duplicated hashtags in order of first appearance."""
    seen: dict[str, None] = {}
    for match in _HASHTAG_RE.findall(content or ""):
        seen.setdefault(match.lower(), None)
    return list(seen)


def merge_tags(content: str, explicit: Optional[list[str]] = None) -> list[str]:
    """Combine content hashtags with explicitly supplied tags as sorted slugs."""
    tags = set(extract_hashtags(content))
    for tag in explicit or []:
        slug = tag.strip().lstrip("#").lower()
        if slug:
            tags.add(slug)
    return sorted(tags)


def default_title(day: date) -> str:
    """Title used when the user saves an entry without one."""
    return f"Journal Entry - {day.strftime('%b')} {day.day}, {day.year}"


def parse_mood(value: Any) -> Optional[Mood]:
    """Map a stored mood string to Mood; unknown values become None."""
    if value is None or value == "":
        return None
    if isinstance(value, Mood):
        return value
    try:
        return Mood(str(value).lower())
    except ValueError:
        logger.warning("Dropping unknown mood %r", value)
        return None


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if isinstance(v, (str, int, float))]


def _opt_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return parse_timestamp(value) if isinstance(value, str) else value


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class JournalEntry:
    """A single journal entry owned by one user."""
    id: str
    title: str
    content: str
    date: str  # YYYY-MM-DD, or "" when the payload had none
    created_at: datetime
    updated_at: datetime
    mood: Optional[Mood] = None
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "date": self.date,
            "tags": list(self.tags),
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }
        if self.mood is not None:
            data["mood"] = self.mood.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "JournalEntry":
        created = _opt_ts(data.get("createdAt")) or utc_now()
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "",
            content=data.get("content") or "",
            # Empty when missing; readers project created_at into their own zone
            date=data.get("date") or "",
            created_at=created,
            updated_at=_opt_ts(data.get("updatedAt")) or created,
            mood=parse_mood(data.get("mood")),
            tags=_str_list(data.get("tags")),
        )


@dataclass
class EntrySummary:
    """AI analysis of one entry. At most one exists per entry."""
    id: str
    entry_id: str
    created_at: datetime
    key_themes: list[str] = field(default_factory=list)
    emotional_insights: list[str] = field(default_factory=list)
    personal_growth: list[str] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    motivational_note: str = ""
    reflection: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entryId": self.entry_id,
            "keyThemes": list(self.key_themes),
            "emotionalInsights": list(self.emotional_insights),
            "personalGrowth": list(self.personal_growth),
            "patterns": list(self.patterns),
            "suggestions": list(self.suggestions),
            "motivationalNote": self.motivational_note,
            "reflection": self.reflection,
            "createdAt": format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EntrySummary":
        return cls(
            id=str(data["id"]),
            entry_id=str(data["entryId"]),
            created_at=_opt_ts(data.get("createdAt")) or utc_now(),
            key_themes=_str_list(data.get("keyThemes")),
            emotional_insights=_str_list(data.get("emotionalInsights")),
            personal_growth=_str_list(data.get("personalGrowth")),
            patterns=_str_list(data.get("patterns")),
            suggestions=_str_list(data.get("suggestions")),
            motivational_note=data.get("motivationalNote") or "",
            reflection=data.get("reflection") or "",
        )


@dataclass
class EntryHoldStatus:
    """
    A failed summary generation, paused pending retry.

    ``retry_count`` counts failed attempts (first failure stores 1).
    ``created_at`` is fixed at the first failure; ``last_attempt`` moves.
    """
    id: str
    entry_id: str
    reason: HoldReason
    error_message: str
    retry_count: int
    last_attempt: datetime
    created_at: datetime
    error_code: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "entryId": self.entry_id,
            "reason": self.reason.value,
            "errorMessage": self.error_message,
            "retryCount": self.retry_count,
            "lastAttempt": format_timestamp(self.last_attempt),
            "createdAt": format_timestamp(self.created_at),
        }
        if self.error_code is not None:
            data["errorCode"] = self.error_code
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "EntryHoldStatus":
        try:
            reason = HoldReason(data.get("reason", "unknown"))
        except ValueError:
            reason = HoldReason.UNKNOWN
        created = _opt_ts(data.get("createdAt")) or utc_now()
        return cls(
            id=str(data["id"]),
            entry_id=str(data["entryId"]),
            reason=reason,
            error_message=data.get("errorMessage") or "",
            retry_count=int(data.get("retryCount") or 0),
            last_attempt=_opt_ts(data.get("lastAttempt")) or created,
            created_at=created,
            error_code=data.get("errorCode"),
        )


@dataclass
class EmotionalPattern:
    emotion: str
    frequency: float
    trend: Trend = Trend.STABLE
    context: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "emotion": self.emotion,
            "frequency": self.frequency,
            "trend": self.trend.value,
        }
        if self.context is not None:
            data["context"] = self.context
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "EmotionalPattern":
        try:
            frequency = float(data.get("frequency", 0.0))
        except (TypeError, ValueError):
            frequency = 0.0
        try:
            trend = Trend(str(data.get("trend", "stable")).lower())
        except ValueError:
            trend = Trend.STABLE
        context = data.get("context")
        return cls(
            emotion=str(data.get("emotion", "")),
            frequency=min(max(frequency, 0.0), 1.0),
            trend=trend,
            context=str(context) if context is not None else None,
        )


@dataclass
class WeeklySummary:
    """
    AI insight over a rolling window of entries.

    ``week_start``/``week_end`` bound the entries actually analyzed; they
    are not calendar-week boundaries.
    """
    id: str
    week_start: datetime
    week_end: datetime
    entries_analyzed: int
    created_at: datetime
    themes: list[str] = field(default_factory=list)
    emotional_patterns: list[EmotionalPattern] = field(default_factory=list)
    achievements: list[str] = field(default_factory=list)
    improvements: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    motivational_insight: str = ""
    action_steps: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "weekStart": format_timestamp(self.week_start),
            "weekEnd": format_timestamp(self.week_end),
            "entriesAnalyzed": self.entries_analyzed,
            "themes": list(self.themes),
            "emotionalPatterns": [p.to_dict() for p in self.emotional_patterns],
            "achievements": list(self.achievements),
            "improvements": list(self.improvements),
            "suggestions": list(self.suggestions),
            "motivationalInsight": self.motivational_insight,
            "actionSteps": list(self.action_steps),
            "createdAt": format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WeeklySummary":
        patterns = data.get("emotionalPatterns") or []
        return cls(
            id=str(data["id"]),
            week_start=parse_timestamp(data["weekStart"]),
            week_end=parse_timestamp(data["weekEnd"]),
            entries_analyzed=int(data.get("entriesAnalyzed") or 0),
            created_at=_opt_ts(data.get("createdAt")) or utc_now(),
            themes=_str_list(data.get("themes")),
            emotional_patterns=[
                EmotionalPattern.from_dict(p) for p in patterns if isinstance(p, dict)
            ],
            achievements=_str_list(data.get("achievements")),
            improvements=_str_list(data.get("improvements")),
            suggestions=_str_list(data.get("suggestions")),
            motivational_insight=data.get("motivationalInsight") or "",
            action_steps=_str_list(data.get("actionSteps")),
        )


# ---------------------------------------------------------------------------
# Calculator results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StreakData:
    current_streak: int = 0
    longest_streak: int = 0
    last_entry_date: Optional[datetime] = None
    streak_start_date: Optional[date] = None


@dataclass(frozen=True)
class WeeklyEligibility:
    eligible: bool
    entries_in_window: list[JournalEntry]
    days_in_window: int
