"""
Gemini text service used for keyword generation, relevance filtering and
conversion rate estimates.

Callers never see exceptions from here: every call returns an AIResult and the
call site decides which deterministic fallback to use when it is not ok.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import google.generativeai as genai
from tenacity import retry, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash"


@dataclass
class AIResult:
    """Outcome of one AI call."""
    ok: bool
    text: str = ""
    error: Optional[str] = None

    @classmethod
    def success(cls, text: str) -> "AIResult":
        return cls(ok=True, text=text)

    @classmethod
    def failure(cls, error: str) -> "AIResult":
        return cls(ok=False, error=error)


class TextService(Protocol):
    """Prompt in, text out."""

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        temperature: float = 0.4,
        json_output: bool = False,
        max_output_tokens: Optional[int] = None,
    ) -> AIResult:
        ...


def parse_json_response(response_text: str) -> Any:
    """
    Parse JSON from AI response, handling markdown code blocks.

    Raises:
        ValueError: the text is not valid JSON
    """
    text = response_text.strip()

    if "```json" in text:
        text = text.split("```json")[1].split("```")[0].strip()
    elif "```" in text:
        text = text.split("```")[1].split("```")[0].strip()

    return json.loads(text)


class GeminiTextService:
    """
    TextService backed by Google Gemini.

    Usage:
        ai = GeminiTextService()  # Uses GEMINI_API_KEY
        result = await ai.complete("Return 3 roofing keywords", json_output=True)
        if result.ok:
            data = parse_json_response(result.text)
    """

    def __init__(self, api_key: Optional[str] = None, model: str = DEFAULT_MODEL):
        """
        Initialize the Gemini service.

        Args:
            api_key: Google Gemini API key (or set GEMINI_API_KEY env var)
            model: Gemini model to use
        """
        self.api_key = api_key or os.getenv("GEMINI_API_KEY")
        self.model_name = model

        if self.api_key:
            genai.configure(api_key=self.api_key)
            logger.info(f"Gemini text service initialized ({model})")
        else:
            logger.warning("GEMINI_API_KEY not set - AI steps will use their fallbacks")

    def is_configured(self) -> bool:
        return bool(self.api_key)

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=2, max=10), reraise=True)
    async def _generate(
        self,
        prompt: str,
        system: Optional[str],
        generation_config: "genai.GenerationConfig",
    ) -> str:
        model = genai.GenerativeModel(self.model_name, system_instruction=system)
        response = await asyncio.to_thread(
            model.generate_content,
            prompt,
            generation_config=generation_config,
        )
        return response.text

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        temperature: float = 0.4,
        json_output: bool = False,
        max_output_tokens: Optional[int] = None,
    ) -> AIResult:
        if not self.is_configured():
            return AIResult.failure("Gemini API key not configured")

        config_kwargs: dict[str, Any] = {"temperature": temperature}
        if json_output:
            config_kwargs["response_mime_type"] = "application/json"
        if max_output_tokens:
            config_kwargs["max_output_tokens"] = max_output_tokens

        try:
            text = await self._generate(prompt, system, genai.GenerationConfig(**config_kwargs))
        except Exception as e:
            logger.error(f"Gemini call failed: {e}")
            return AIResult.failure(str(e))

        if not text or not text.strip():
            return AIResult.failure("Empty response")
        return AIResult.success(text)
