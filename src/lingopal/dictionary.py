"""Concrete implementations for the dictionary lookup service."""

import os
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigurationError, LingopalError, ServiceError, ValidationError
from .models import WordEntry
from .observability import get_logger
from .prompts import LOOKUP_PROMPT

logger = get_logger(__name__)


def normalize_term(word: str) -> str:
    term = (word or "").strip().lower()
    if not term:
        raise ValidationError("Enter a word to look up.")
    return term


class Dictionary(ABC):
    """Interface for looking up a single word."""

    def __init__(self, target_language: str = "Vietnamese"):
        self.target_language = target_language

    @property
    def is_configured(self) -> bool:
        return True

    async def lookup(self, word: str) -> WordEntry:
        """Returns the dictionary entry for ``word``.

        Raises
        ------
        ValidationError
            If ``word`` is empty after trimming.
        ServiceError
            If the service fails or answers with a malformed entry.
        """
        term = normalize_term(word)
        try:
            raw = await self._lookup(term)
        except LingopalError:
            raise
        except Exception as e:
            logger.warning("lookup_failed", term=term, error=str(e))
            raise ServiceError(f"Could not look up '{term}'.") from e
        try:
            return WordEntry.model_validate_json(raw)
        except PydanticValidationError as e:
            raise ServiceError(f"The dictionary returned a malformed entry for '{term}'.") from e

    def build_prompt(self, term: str) -> str:
        return LOOKUP_PROMPT.format(word=term, target_language=self.target_language)

    @abstractmethod
    async def _lookup(self, term: str) -> str:
        """Returns the entry for ``term`` as a JSON object string."""
        pass


class Gemini(Dictionary):
    def __init__(
        self,
        default_model: str = "gemini-2.5-flash",
        api_key: str = None,
        target_language: str = "Vietnamese",
    ):
        from google import genai
        from google.genai import types

        super().__init__(target_language)
        self._types = types
        self.api_key = (
            api_key or os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY")
        )
        self.client = genai.Client(api_key=self.api_key) if self.api_key else None
        self.model = default_model

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    async def _lookup(self, term):
        if self.client is None:
            raise ConfigurationError("API key is not configured.")
        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=self.build_prompt(term),
            config=self._types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=WordEntry,
            ),
        )
        return response.text


class OpenAI(Dictionary):
    def __init__(
        self,
        default_model: str = "gpt-4o-mini",
        api_key: str = None,
        target_language: str = "Vietnamese",
    ):
        from openai import AsyncOpenAI

        super().__init__(target_language)
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        self.client = AsyncOpenAI(api_key=self.api_key) if self.api_key else None
        self.model = default_model

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    async def _lookup(self, term):
        if self.client is None:
            raise ConfigurationError("API key is not configured.")
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": self.build_prompt(term)}],
            response_format={"type": "json_object"},
        )
        return response.choices[0].message.content


class Static(Dictionary):
    """Answers from a fixed set of entries. Useful offline and in tests."""

    def __init__(self, entries: Optional[Iterable[WordEntry]] = None):
        super().__init__()
        self._entries: Dict[str, WordEntry] = {
            entry.original.lower(): entry for entry in entries or []
        }

    async def _lookup(self, term):
        entry = self._entries.get(term)
        if entry is None:
            raise ServiceError(f"No entry for '{term}'.")
        return entry.model_dump_json()


class NoDictionary(Dictionary):
    """Default when no lookup service is configured."""

    @property
    def is_configured(self) -> bool:
        return False

    async def _lookup(self, term):
        raise ConfigurationError("No dictionary service is configured.")
