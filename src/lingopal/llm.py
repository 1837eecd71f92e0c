"""Concrete implementations for the remote conversational service.

An LLM opens chat sessions: a system instruction plus an optional replayed
history, returning a ChatHandle that sends one user turn at a time. Provider
SDKs are imported lazily so that only the selected provider needs installing.
"""

import asyncio
import os
from abc import ABC, abstractmethod
from typing import Any, List, Sequence

from .errors import ConfigurationError
from .models import MODEL_TURN, USER_TURN, HistoryTurn


class ChatHandle(ABC):
    """A live conversation with the remote service.

    ``history`` mirrors what the remote side holds: the replayed turns followed
    by every completed exchange. A failed send leaves it unchanged.
    """

    def __init__(self, system_instruction: str, history: Sequence[HistoryTurn] = ()):
        self.system_instruction = system_instruction
        self.history: List[HistoryTurn] = list(history)

    async def send(self, text: str) -> str:
        """Sends one user turn and returns the reply text."""
        reply = await self._send(text)
        self.history.append(HistoryTurn(role=USER_TURN, text=text))
        self.history.append(HistoryTurn(role=MODEL_TURN, text=reply))
        return reply

    @abstractmethod
    async def _send(self, text: str) -> str:
        """Performs the provider call for one user turn."""
        pass


class LLM(ABC):
    """Abstract Base Class for all conversational providers."""

    @property
    def is_configured(self) -> bool:
        """Whether the provider has the credentials it needs."""
        return True

    @abstractmethod
    async def open_session(
        self, system_instruction: str, history: Sequence[HistoryTurn] = ()
    ) -> ChatHandle:
        """Opens a chat session.

        Parameters
        ----------
        system_instruction : str
            The persona and lesson instruction for the whole session.
        history : Sequence[HistoryTurn]
            Turns to replay, oldest first, before any new turn is sent.

        Returns
        -------
        ChatHandle
            The live session handle.

        Raises
        ------
        ConfigurationError
            If the provider is missing its credentials.
        """
        pass


class GeminiChat(ChatHandle):
    def __init__(self, chat: Any, system_instruction: str, history: Sequence[HistoryTurn]):
        super().__init__(system_instruction, history)
        self._chat = chat

    async def _send(self, text: str) -> str:
        response = await self._chat.send_message(text)
        return response.text or ""


class Gemini(LLM):
    def __init__(self, default_model: str = "gemini-2.5-flash", api_key: str = None):
        from google import genai
        from google.genai import types

        self._types = types
        self.api_key = (
            api_key or os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY")
        )
        self.client = genai.Client(api_key=self.api_key) if self.api_key else None
        self.model = default_model

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    async def open_session(self, system_instruction, history=()):
        if self.client is None:
            raise ConfigurationError(
                "API key is not configured. Please set the GEMINI_API_KEY environment variable."
            )
        types = self._types
        chat = self.client.aio.chats.create(
            model=self.model,
            config=types.GenerateContentConfig(system_instruction=system_instruction),
            history=[
                types.Content(role=turn.role, parts=[types.Part(text=turn.text)])
                for turn in history
            ],
        )
        return GeminiChat(chat, system_instruction, history)


class OpenAIChat(ChatHandle):
    def __init__(self, client: Any, model: str, system_instruction: str, history):
        super().__init__(system_instruction, history)
        self._client = client
        self._model = model

    def build_messages(self, text: str) -> List[dict]:
        messages = [{"role": "system", "content": self.system_instruction}]
        messages.extend(
            {
                "role": "user" if turn.role == USER_TURN else "assistant",
                "content": turn.text,
            }
            for turn in self.history
        )
        messages.append({"role": "user", "content": text})
        return messages

    async def _send(self, text: str) -> str:
        response = await self._client.chat.completions.create(
            model=self._model, messages=self.build_messages(text)
        )
        return response.choices[0].message.content or ""


class OpenAI(LLM):
    def __init__(self, default_model: str = "gpt-4o-mini", api_key: str = None):
        from openai import AsyncOpenAI

        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        self.client = AsyncOpenAI(api_key=self.api_key) if self.api_key else None
        self.model = default_model

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    async def open_session(self, system_instruction, history=()):
        if self.client is None:
            raise ConfigurationError(
                "API key is not configured. Please set the OPENAI_API_KEY environment variable."
            )
        return OpenAIChat(self.client, self.model, system_instruction, history)


class EchoChat(ChatHandle):
    def __init__(self, system_instruction: str, history, delay: float):
        super().__init__(system_instruction, history)
        self.delay = delay

    async def _send(self, text: str) -> str:
        await asyncio.sleep(self.delay)
        return f"I heard you say: {text} Can you tell me more?"


class Echo(LLM):
    """Offline provider that answers every turn with a fixed pattern."""

    def __init__(self, default_model: str = "echo-v1", delay: float = 0.0):
        self.model = default_model
        self.delay = delay

    async def open_session(self, system_instruction, history=()):
        return EchoChat(system_instruction, history, self.delay)
