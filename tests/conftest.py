"""
Core pytest configuration and fixtures for Lingopal testing.

This module provides shared test fixtures, fake pillars and utilities that
support the pillar-based testing architecture.
"""

import asyncio
import tempfile
from pathlib import Path
from types import SimpleNamespace
from typing import List, Optional

import pytest
from lingopal.llm import LLM, ChatHandle
from lingopal.models import (
    AI_SENDER,
    USER_SENDER,
    ConversationSetup,
    Message,
    SavedConversation,
    SavedWord,
    WordEntry,
)
from lingopal.speech import (
    EventKind,
    Recognizer,
    SpeechCoordinator,
    SpeechEvent,
    Synthesizer,
    TextInput,
    Voice,
)

# ===== TEST DATA FIXTURES =====


@pytest.fixture
def sample_setup() -> ConversationSetup:
    """The setup of a beginner lesson about ordering coffee."""
    return ConversationSetup(
        title="Ordering coffee", vocab="latte, espresso, to go", level="beginner"
    )


@pytest.fixture
def sample_messages() -> List[Message]:
    """Three lesson messages: tutor, learner, tutor."""
    return [
        Message(text="Hi! What would you like to drink?", sender=AI_SENDER),
        Message(text="A latte to go, please.", sender=USER_SENDER),
        Message(text="Great choice! What size would you like?", sender=AI_SENDER),
    ]


@pytest.fixture
def sample_conversation(sample_setup, sample_messages) -> SavedConversation:
    """A saved lesson with id 'abc'."""
    return SavedConversation(
        id="abc",
        setup=sample_setup,
        messages=tuple(sample_messages),
        bot_name="Mrs. Oanh",
    )


@pytest.fixture
def sample_entry() -> WordEntry:
    return WordEntry(
        original="Serendipity",
        translation="sự tình cờ may mắn",
        ipa="/ˌserənˈdɪpəti/",
        definition="The occurrence of events by chance in a happy way.",
        example="Meeting her there was pure serendipity.",
    )


@pytest.fixture
def sample_word(sample_entry) -> SavedWord:
    return SavedWord.from_entry(sample_entry)


# ===== DIRECTORY FIXTURES =====


@pytest.fixture
def temp_dir():
    """Temporary directory for file-based tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ===== FAKE PILLARS =====


class ScriptedChat(ChatHandle):
    def __init__(self, llm: "ScriptedLLM", system_instruction, history):
        super().__init__(system_instruction, history)
        self.llm = llm

    async def _send(self, text):
        self.llm.sent.append(text)
        if self.llm.gate is not None:
            await self.llm.gate.wait()
        if self.llm.fail_send:
            raise RuntimeError("service unavailable")
        if self.llm.replies:
            return self.llm.replies.pop(0)
        return f"Reply to: {text}"


class ScriptedLLM(LLM):
    """An LLM whose replies, failures and timing are controlled by the test."""

    def __init__(self, replies: Optional[List[str]] = None):
        self.replies = list(replies or [])
        self.sent: List[str] = []
        self.opened: List[ScriptedChat] = []
        self.fail_open = False
        self.fail_send = False
        self.configured = True
        self.gate: Optional[asyncio.Event] = None

    @property
    def is_configured(self):
        return self.configured

    async def open_session(self, system_instruction, history=()):
        if self.fail_open:
            raise RuntimeError("network down")
        chat = ScriptedChat(self, system_instruction, history)
        self.opened.append(chat)
        return chat


class FakeRecognizer(Recognizer):
    """A recognizer whose results are delivered by the test."""

    def __init__(self, available: bool = True):
        super().__init__()
        self._available = available
        self.starts = 0
        self.stops = 0

    @property
    def available(self):
        return self._available

    def start(self):
        self.starts += 1

    def stop(self):
        self.stops += 1

    def hear(self, text: str):
        self.emit(SpeechEvent(kind=EventKind.RESULT, text=text))
        self.emit(SpeechEvent(kind=EventKind.LISTEN_END))

    def fail(self, error: str = "no-speech"):
        self.emit(SpeechEvent(kind=EventKind.RECOGNITION_ERROR, error=error))
        self.emit(SpeechEvent(kind=EventKind.LISTEN_END))


class FakeSynthesizer(Synthesizer):
    """A synthesizer that records utterances and finishes them on request."""

    def __init__(self, voices: Optional[List[Voice]] = None, available: bool = True):
        super().__init__()
        self._voices = voices or []
        self._available = available
        self.spoken = []
        self.cancels = 0

    @property
    def available(self):
        return self._available

    def voices(self):
        return list(self._voices)

    def speak(self, text, voice, utterance_id):
        self.spoken.append((text, voice, utterance_id))
        self.emit(SpeechEvent(kind=EventKind.SPEAK_START, utterance_id=utterance_id))

    def cancel(self):
        self.cancels += 1

    def finish(self, error: str = ""):
        _, _, utterance_id = self.spoken[-1]
        kind = EventKind.SPEAK_ERROR if error else EventKind.SPEAK_END
        self.emit(SpeechEvent(kind=kind, error=error, utterance_id=utterance_id))


@pytest.fixture
def fakes():
    """The fake pillar classes, for tests that need non-default instances."""
    return SimpleNamespace(
        LLM=ScriptedLLM, Recognizer=FakeRecognizer, Synthesizer=FakeSynthesizer
    )


@pytest.fixture
def scripted_llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def fake_recognizer() -> FakeRecognizer:
    return FakeRecognizer()


@pytest.fixture
def fake_synthesizer() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def coordinator(fake_recognizer, fake_synthesizer) -> SpeechCoordinator:
    return SpeechCoordinator(recognizer=fake_recognizer, synthesizer=fake_synthesizer)


@pytest.fixture
def all_store_implementations(temp_dir):
    """All store implementations for contract testing."""
    from lingopal import store

    return [
        ("InMemory", store.InMemory()),
        ("File", store.File(str(temp_dir / "file_store"))),
        ("SQLite", store.SQLite(str(temp_dir / "test.db"))),
    ]


# ===== APP FIXTURES =====


@pytest.fixture
def test_app(scripted_llm, sample_entry):
    """
    Provides a Lingopal app instance with simple, predictable pillars.

    Speech is typed input with a synthesizer that finishes immediately, the
    store lives in memory and the welcome-back line is not delayed.
    """
    from lingopal import Lingopal
    from lingopal.dictionary import Static
    from lingopal.speech import Silent
    from lingopal.store import InMemory

    app = Lingopal(
        llm=scripted_llm,
        store=InMemory(),
        speech=SpeechCoordinator(recognizer=TextInput(), synthesizer=Silent()),
        dictionary=Static([sample_entry]),
        welcome_delay=0,
    )
    app.on_start()
    return app


# ===== CONFIGURATION =====


def pytest_configure(config):
    """Pytest configuration."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
