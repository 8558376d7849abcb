"""
Analysis providers backed by hosted LLM APIs.
"""

import logging
import os
from typing import Optional, Sequence

from ..errors import AnalysisError
from ..types import JournalEntry
from .base import (
    ENTRY_SYSTEM_PROMPT,
    WEEKLY_SYSTEM_PROMPT,
    EntryAnalysisResult,
    WeeklyAnalysisResult,
    build_entry_prompt,
    build_weekly_prompt,
    parse_entry_analysis,
    parse_weekly_analysis,
)

logger = logging.getLogger(__name__)

# Journal text beyond this is cut before it is sent
MAX_PROMPT_CHARS = 50000


def _status_code(exc: Exception) -> Optional[int]:
    """HTTP status carried by an SDK exception, if any."""
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


class _LLMAnalysis:
    """Shared request/parse flow. Subclasses implement ``_complete``."""

    def __init__(self):
        self.last_error: Optional[str] = None

    async def _complete(self, system: str, user: str) -> str:
        raise NotImplementedError

    async def _run(self, system: str, user: str) -> str:
        try:
            text = await self._complete(system, user[:MAX_PROMPT_CHARS])
        except AnalysisError as e:
            self.last_error = str(e)
            raise
        except Exception as e:
            # SDK errors keep their type for the caller; remember the message
            status = _status_code(e)
            self.last_error = f"API error: {status} - {e}" if status else f"API error: {e}"
            logger.info("%s request failed: %s", type(self).__name__, e)
            raise
        return text

    async def analyze_individual_entry(self, entry: JournalEntry) -> EntryAnalysisResult:
        """Analyze one entry."""
        text = await self._run(ENTRY_SYSTEM_PROMPT, build_entry_prompt(entry))
        try:
            result = parse_entry_analysis(text)
        except AnalysisError as e:
            self.last_error = str(e)
            raise
        self.last_error = None
        return result

    async def analyze_weekly_entries(
        self, entries: Sequence[JournalEntry],
    ) -> WeeklyAnalysisResult:
        """Analyze a window of entries as one week."""
        if not entries:
            raise AnalysisError("No entries to analyze")
        text = await self._run(WEEKLY_SYSTEM_PROMPT, build_weekly_prompt(entries))
        try:
            result = parse_weekly_analysis(text)
        except AnalysisError as e:
            self.last_error = str(e)
            raise
        self.last_error = None
        return result


class OpenAIAnalysis(_LLMAnalysis):
    """
    Analysis provider using OpenAI's chat API.

    Requires: INKWELL_OPENAI_API_KEY or OPENAI_API_KEY environment variable.
    ``base_url`` points the client at any OpenAI-compatible endpoint.

    Default model is gpt-4.1-mini.
    """

    def __init__(
        self,
        model: str = "gpt-4.1-mini",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_tokens: int = 2000,
    ):
        super().__init__()
        try:
            from openai import AsyncOpenAI
        except ImportError:
            raise RuntimeError("OpenAIAnalysis requires 'openai' library")

        self.model = model
        self.max_tokens = max_tokens

        key = api_key or os.environ.get("INKWELL_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
        if not key:
            raise ValueError(
                "OpenAI API key required. Set INKWELL_OPENAI_API_KEY or OPENAI_API_KEY"
            )

        self._client = AsyncOpenAI(api_key=key, base_url=base_url)

        # GPT-5+ and reasoning models use a different API surface:
        # - max_completion_tokens instead of max_tokens
        # - temperature must be omitted (only default=1 supported)
        self._new_api = self.model.startswith(("gpt-5", "o3", "o4"))

    def _completion_kwargs(self) -> dict:
        """Return model-appropriate kwargs for token limit and temperature."""
        if self._new_api:
            return {"max_completion_tokens": self.max_tokens}
        return {"max_tokens": self.max_tokens, "temperature": 0.7}

    async def _complete(self, system: str, user: str) -> str:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            **self._completion_kwargs(),
        )
        if not response.choices:
            raise AnalysisError("API error: no response received from AI service")
        return response.choices[0].message.content or ""


class AnthropicAnalysis(_LLMAnalysis):
    """
    Analysis provider using Anthropic's Claude API.

    Authentication (checked in priority order):
    1. api_key parameter (if provided)
    2. ANTHROPIC_API_KEY

    Default model is claude-haiku-4.5.
    """

    def __init__(
        self,
        model: str = "claude-haiku-4-5-20251001",
        api_key: Optional[str] = None,
        max_tokens: int = 2000,
    ):
        super().__init__()
        try:
            from anthropic import AsyncAnthropic
        except ImportError:
            raise RuntimeError("AnthropicAnalysis requires 'anthropic' library")

        self.model = model
        self.max_tokens = max_tokens

        key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not key:
            raise ValueError("Anthropic authentication required. Set ANTHROPIC_API_KEY")

        self._client = AsyncAnthropic(api_key=key)

    async def _complete(self, system: str, user: str) -> str:
        # Let rate limit errors propagate so the entry goes on hold
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=system,
            messages=[{"role": "user", "content": user}],
        )
        if not response.content:
            raise AnalysisError("API error: no response received from AI service")
        return response.content[0].text
