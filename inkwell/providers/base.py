"""
AI analysis provider protocol, prompts and response parsing.

Providers only move text: they send the prompts built here and hand the
model's reply to ``parse_entry_analysis`` / ``parse_weekly_analysis``,
which turn it into typed results with explicit present-or-default fields.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

from ..errors import AnalysisError
from ..types import EmotionalPattern, JournalEntry

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------

@dataclass
class EntryAnalysisResult:
    key_themes: list[str] = field(default_factory=list)
    emotional_insights: list[str] = field(default_factory=list)
    personal_growth: list[str] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    motivational_note: str = ""
    reflection: str = ""


@dataclass
class WeeklyAnalysisResult:
    themes: list[str] = field(default_factory=list)
    emotional_patterns: list[EmotionalPattern] = field(default_factory=list)
    achievements: list[str] = field(default_factory=list)
    improvements: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    motivational_insight: str = ""
    action_steps: list[str] = field(default_factory=list)


# -----------------------------------------------------------------------------
# Protocol
# -----------------------------------------------------------------------------

@runtime_checkable
class AnalysisProvider(Protocol):
    """
    Produces AI insight for journal entries.

    Both operations raise on failure (AnalysisError, or the SDK's own
    error type). ``last_error`` keeps the message of the most recent
    failure so callers can classify errors whose text they never saw.
    """

    last_error: Optional[str]

    async def analyze_individual_entry(self, entry: JournalEntry) -> EntryAnalysisResult:
        ...

    async def analyze_weekly_entries(
        self, entries: Sequence[JournalEntry],
    ) -> WeeklyAnalysisResult:
        ...


# -----------------------------------------------------------------------------
# Prompts
# -----------------------------------------------------------------------------

ENTRY_SYSTEM_PROMPT = """You are a compassionate journaling coach with deep expertise in emotional intelligence and personal growth. You provide insightful, warm analysis of journal entries that helps people understand themselves better."""

WEEKLY_SYSTEM_PROMPT = """You are a compassionate journaling coach who reads a week of someone's journal and helps them see their patterns.

Your approach is:
- Empathetic and validating
- Insightful with pattern recognition
- Practical with actionable advice
- Encouraging while being honest"""

_ENTRY_JSON_SHAPE = """{
  "keyThemes": ["2-3 core themes present in this entry"],
  "emotionalInsights": ["observations about their emotional state"],
  "personalGrowth": ["growth opportunities and strengths"],
  "patterns": ["behavioral, emotional or thought patterns"],
  "suggestions": ["2-3 personalized, actionable suggestions"],
  "motivationalNote": "a warm, encouraging message",
  "reflection": "a reflection that offers a new perspective"
}"""

_WEEKLY_JSON_SHAPE = """{
  "themes": ["recurring themes of the week"],
  "emotionalPatterns": [
    {"emotion": "name", "frequency": 0.0, "trend": "increasing|decreasing|stable", "context": "when and why"}
  ],
  "achievements": ["accomplishments worth recognizing"],
  "improvements": ["specific areas for gentle growth"],
  "suggestions": ["personalized advice"],
  "motivationalInsight": "an encouraging message about their week",
  "actionSteps": ["3-5 concrete steps for the coming week"]
}"""

_JSON_ONLY = (
    "Return ONLY valid JSON in exactly this structure. Do not wrap it in "
    "markdown code blocks or add any explanation."
)


def format_entry(entry: JournalEntry) -> str:
    """Plain-text rendering of an entry for prompts."""
    return (
        f"Title: {entry.title or 'Untitled'}\n"
        f"Date: {entry.date or 'not specified'}\n"
        f"Mood: {entry.mood.value if entry.mood else 'not specified'}\n"
        f"Content: {entry.content}\n"
        f"Tags: {', '.join(entry.tags) if entry.tags else 'none'}"
    )


def build_entry_prompt(entry: JournalEntry) -> str:
    """User prompt for a single-entry analysis."""
    return (
        "Analyze this journal entry. Focus on the emotions, thoughts and "
        "themes in it, and on what the writer might not yet see about "
        "themselves.\n\n"
        f"JOURNAL ENTRY:\n{format_entry(entry)}\n\n"
        f"{_JSON_ONLY}\n{_ENTRY_JSON_SHAPE}"
    )


def build_weekly_prompt(entries: Sequence[JournalEntry]) -> str:
    """User prompt for a multi-entry weekly analysis."""
    blocks = [
        f"Entry {i}:\n{format_entry(entry)}\n---"
        for i, entry in enumerate(entries, start=1)
    ]
    return (
        f"Analyze these {len(entries)} journal entries as one week of "
        "writing. Map the emotional journey, recurring patterns, strengths "
        "and growth edges.\n\n"
        "JOURNAL ENTRIES:\n" + "\n\n".join(blocks) + "\n\n"
        f"{_JSON_ONLY}\n{_WEEKLY_JSON_SHAPE}"
    )


# -----------------------------------------------------------------------------
# Response parsing
# -----------------------------------------------------------------------------

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
# Adjacent string properties missing their comma: "a": "x"  "b": ...
_MISSING_COMMA_RE = re.compile(r'(?<!\\)"\s+"(?=[A-Za-z_]+"\s*:)')


def clean_json_text(text: str) -> str:
    """Strip markdown fences and repair commas models commonly drop."""
    cleaned = _FENCE_RE.sub("", text.strip()).strip()
    return _MISSING_COMMA_RE.sub('",\n"', cleaned)


def _load_object(text: str) -> dict:
    if not text or not text.strip():
        raise AnalysisError("invalid response: empty reply from AI provider")
    try:
        data = json.loads(clean_json_text(text))
    except json.JSONDecodeError as e:
        raise AnalysisError(f"invalid response: could not parse AI reply ({e.msg})") from e
    if not isinstance(data, dict):
        raise AnalysisError("invalid response: AI reply is not a JSON object")
    return data


def _string_list(data: dict, key: str) -> list[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        logger.warning("Ignoring %s: expected a list, got %s", key, type(value).__name__)
        return []
    return [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]


def _string(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        logger.warning("Ignoring %s: expected a string, got %s", key, type(value).__name__)
        return ""
    return value.strip()


def _patterns(data: dict) -> list[EmotionalPattern]:
    value: Any = data.get("emotionalPatterns")
    if not isinstance(value, list):
        return []
    patterns = []
    for item in value:
        if isinstance(item, dict) and item.get("emotion"):
            patterns.append(EmotionalPattern.from_dict(item))
    return patterns


def parse_entry_analysis(text: str) -> EntryAnalysisResult:
    """
    Parse a model reply into an EntryAnalysisResult.

    Missing fields take their empty default; fields of the wrong type are
    dropped. Raises AnalysisError when the reply is not a JSON object.
    """
    data = _load_object(text)
    return EntryAnalysisResult(
        key_themes=_string_list(data, "keyThemes"),
        emotional_insights=_string_list(data, "emotionalInsights"),
        personal_growth=_string_list(data, "personalGrowth"),
        patterns=_string_list(data, "patterns"),
        suggestions=_string_list(data, "suggestions"),
        motivational_note=_string(data, "motivationalNote"),
        reflection=_string(data, "reflection"),
    )


def parse_weekly_analysis(text: str) -> WeeklyAnalysisResult:
    """Parse a model reply into a WeeklyAnalysisResult. See parse_entry_analysis."""
    data = _load_object(text)
    return WeeklyAnalysisResult(
        themes=_string_list(data, "themes"),
        emotional_patterns=_patterns(data),
        achievements=_string_list(data, "achievements"),
        improvements=_string_list(data, "improvements"),
        suggestions=_string_list(data, "suggestions"),
        motivational_insight=_string(data, "motivationalInsight"),
        action_steps=_string_list(data, "actionSteps"),
    )
