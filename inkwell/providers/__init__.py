"""
AI analysis providers.

``get_analysis_provider`` builds the provider named in the [analysis]
section of the config; ``none`` disables AI insight entirely.
"""

from typing import Any, Callable, Optional

from .base import (
    AnalysisProvider,
    EntryAnalysisResult,
    WeeklyAnalysisResult,
    parse_entry_analysis,
    parse_weekly_analysis,
)

__all__ = [
    "AnalysisProvider",
    "EntryAnalysisResult",
    "WeeklyAnalysisResult",
    "parse_entry_analysis",
    "parse_weekly_analysis",
    "get_analysis_provider",
]


def _openai(**params: Any) -> AnalysisProvider:
    from .llm import OpenAIAnalysis
    return OpenAIAnalysis(**params)


def _anthropic(**params: Any) -> AnalysisProvider:
    from .llm import AnthropicAnalysis
    return AnthropicAnalysis(**params)


_FACTORIES: dict[str, Callable[..., AnalysisProvider]] = {
    "openai": _openai,
    "anthropic": _anthropic,
}


def get_analysis_provider(name: str, params: Optional[dict] = None) -> Optional[AnalysisProvider]:
    """
    Create an analysis provider by name.

    Returns None for "none" or an empty name.

    Raises:
        ValueError: Unknown provider name, or missing credentials
    """
    if not name or name == "none":
        return None
    factory = _FACTORIES.get(name)
    if factory is None:
        raise ValueError(
            f"Unknown analysis provider: {name!r} (available: {', '.join(sorted(_FACTORIES))}, none)"
        )
    return factory(**(params or {}))
