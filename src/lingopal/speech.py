"""Speech coordination: one state machine over listening and speaking.

The coordinator wraps two independent platform capabilities, a recognizer and a
synthesizer, behind a single mutual-exclusion contract: the microphone is never
open while an utterance is being voiced. Capabilities report progress by posting
SpeechEvent values to the coordinator, which drains them in FIFO order. Tests
drive the state machine by posting events directly.

Failures are surfaced through the error channel (``last_error`` and the
``on_error`` subscribers). Nothing in this module raises into the caller.
"""

import asyncio
import queue
import threading
from abc import ABC, abstractmethod
from collections import deque
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from .errors import (
    CapabilityUnavailableError,
    LingopalError,
    RecognitionError,
    SynthesisError,
)
from .observability import get_logger

logger = get_logger(__name__)

DEFAULT_LOCALE = "en-US"
PREFERRED_VOICE_NAME = "Google US English"
QUALITY_MARKER = "Google"


class SpeechState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    SPEAKING = "speaking"


class EventKind(str, Enum):
    RESULT = "result"
    RECOGNITION_ERROR = "recognition_error"
    LISTEN_END = "listen_end"
    SPEAK_START = "speak_start"
    SPEAK_END = "speak_end"
    SPEAK_ERROR = "speak_error"


class SpeechEvent(BaseModel):
    """Something a capability reports back to the coordinator."""

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    text: str = ""
    error: str = ""
    utterance_id: int = 0


class Voice(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    lang: str = ""


Emit = Callable[[SpeechEvent], None]


def select_voice(
    voices: Sequence[Voice],
    locale: str = DEFAULT_LOCALE,
    preferred_name: str = PREFERRED_VOICE_NAME,
    quality_marker: str = QUALITY_MARKER,
) -> Optional[Voice]:
    """Picks the voice to speak with.

    Preference order: the preferred voice by exact name, a locale voice whose
    name carries the quality marker, any locale voice, any voice of the same
    language, the first voice. Returns None when there are no voices, in which
    case the engine default is used.
    """
    language = locale.split("-")[0]
    rules = (
        lambda v: v.name == preferred_name and v.lang.startswith(language),
        lambda v: v.lang.startswith(locale) and quality_marker in v.name,
        lambda v: v.lang.startswith(locale),
        lambda v: v.lang.startswith(language),
    )
    for rule in rules:
        match = next((v for v in voices if rule(v)), None)
        if match is not None:
            return match
    return voices[0] if voices else None


# --- Capabilities ---
class Capability(ABC):
    """A platform feature that reports back through posted events."""

    def __init__(self) -> None:
        self._emit: Optional[Emit] = None

    @property
    def available(self) -> bool:
        return True

    def bind(self, emit: Emit) -> None:
        self._emit = emit

    def emit(self, event: SpeechEvent) -> None:
        if self._emit is not None:
            self._emit(event)


class Recognizer(Capability):
    """Interface for speech-to-text. Single-shot: one result per start()."""

    locale = DEFAULT_LOCALE

    @abstractmethod
    def start(self) -> None:
        """Opens the microphone. Results arrive as RESULT, then LISTEN_END."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Closes the microphone."""
        pass


class Synthesizer(Capability):
    """Interface for text-to-speech."""

    @abstractmethod
    def voices(self) -> List[Voice]:
        """Lists the voices the engine can speak with."""
        pass

    @abstractmethod
    def speak(self, text: str, voice: Optional[Voice], utterance_id: int) -> None:
        """Starts voicing ``text``; completion arrives as SPEAK_END or SPEAK_ERROR."""
        pass

    @abstractmethod
    def cancel(self) -> None:
        """Drops any queued or in-progress utterance."""
        pass


class TextInput(Recognizer):
    """Typed text stands in for the microphone."""

    def __init__(self) -> None:
        super().__init__()
        self.active = False

    def start(self) -> None:
        self.active = True

    def stop(self) -> None:
        if self.active:
            self.active = False
            self.emit(SpeechEvent(kind=EventKind.LISTEN_END))

    def submit(self, text: str) -> bool:
        """Delivers ``text`` as the result of the current listening turn."""
        if not self.active:
            return False
        self.active = False
        self.emit(SpeechEvent(kind=EventKind.RESULT, text=text))
        self.emit(SpeechEvent(kind=EventKind.LISTEN_END))
        return True


class Silent(Synthesizer):
    """Completes every utterance immediately without producing sound."""

    def voices(self) -> List[Voice]:
        return []

    def speak(self, text: str, voice: Optional[Voice], utterance_id: int) -> None:
        self.emit(SpeechEvent(kind=EventKind.SPEAK_START, utterance_id=utterance_id))
        self.emit(SpeechEvent(kind=EventKind.SPEAK_END, utterance_id=utterance_id))

    def cancel(self) -> None:
        pass


def _normalize_lang(languages) -> str:
    for lang in languages or []:
        if isinstance(lang, bytes):
            lang = lang.decode("utf-8", errors="ignore")
        lang = "".join(ch for ch in str(lang) if ch.isprintable()).strip()
        if lang:
            return lang.replace("_", "-")
    return ""


class Pyttsx3(Synthesizer):
    """Operating-system text-to-speech through pyttsx3.

    The engine is driven from a single worker thread. Completion events are
    handed back to the event loop that issued the request.
    """

    def __init__(self, rate: int = 180):
        super().__init__()
        self.rate = rate
        self._engine = None
        self._jobs: "queue.Queue" = queue.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._worker: Optional[threading.Thread] = None
        try:
            import pyttsx3

            self._engine = pyttsx3.init()
            self._engine.setProperty("rate", rate)
        except (ImportError, RuntimeError, OSError) as e:
            logger.warning("tts_engine_unavailable", error=str(e))

    @property
    def available(self) -> bool:
        return self._engine is not None

    def voices(self) -> List[Voice]:
        if self._engine is None:
            return []
        return [
            Voice(id=v.id, name=v.name or v.id, lang=_normalize_lang(v.languages))
            for v in self._engine.getProperty("voices")
        ]

    def speak(self, text: str, voice: Optional[Voice], utterance_id: int) -> None:
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None
        self._ensure_worker()
        self._jobs.put((text, voice, utterance_id))

    def cancel(self) -> None:
        while True:
            try:
                self._jobs.get_nowait()
            except queue.Empty:
                break
        if self._engine is not None:
            self._engine.stop()

    def _ensure_worker(self) -> None:
        if self._worker is None or not self._worker.is_alive():
            self._worker = threading.Thread(
                target=self._run, name="lingopal-tts", daemon=True
            )
            self._worker.start()

    def _dispatch(self, event: SpeechEvent) -> None:
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self.emit, event)
        else:
            self.emit(event)

    def _run(self) -> None:
        while True:
            text, voice, utterance_id = self._jobs.get()
            self._dispatch(
                SpeechEvent(kind=EventKind.SPEAK_START, utterance_id=utterance_id)
            )
            try:
                if voice is not None:
                    self._engine.setProperty("voice", voice.id)
                self._engine.say(text)
                self._engine.runAndWait()
            except Exception as e:
                logger.warning("tts_failed", utterance_id=utterance_id, error=str(e))
                self._dispatch(
                    SpeechEvent(
                        kind=EventKind.SPEAK_ERROR,
                        error=str(e),
                        utterance_id=utterance_id,
                    )
                )
            else:
                self._dispatch(
                    SpeechEvent(kind=EventKind.SPEAK_END, utterance_id=utterance_id)
                )


# --- Coordinator ---
class SpeechCoordinator:
    """Owns the IDLE / LISTENING / SPEAKING state machine.

    Requests that conflict with the current state are rejected, never queued:
    start_listening() while speaking and speak() while listening both return
    False and leave the state unchanged. The caller decides whether to offer
    the action at all (see ``can_listen`` / ``can_speak``).

    Parameters
    ----------
    recognizer : Recognizer, optional
        Speech-to-text capability. Listening is unavailable without it.
    synthesizer : Synthesizer, optional
        Text-to-speech capability. Speaking is unavailable without it.
    locale : str, default="en-US"
        Locale used for voice selection.
    """

    def __init__(
        self,
        recognizer: Optional[Recognizer] = None,
        synthesizer: Optional[Synthesizer] = None,
        locale: str = DEFAULT_LOCALE,
    ) -> None:
        self.recognizer = recognizer
        self.synthesizer = synthesizer
        self.locale = locale
        self.state = SpeechState.IDLE
        self.transcript = ""
        self.last_error: Optional[LingopalError] = None
        self._events: Deque[SpeechEvent] = deque()
        self._draining = False
        self._utterance_id = 0
        self._subscribers: Dict[str, List[Callable]] = {
            "state": [],
            "transcript": [],
            "error": [],
        }
        for capability in (recognizer, synthesizer):
            if capability is not None:
                capability.bind(self.post)

    @property
    def is_listening(self) -> bool:
        return self.state is SpeechState.LISTENING

    @property
    def is_speaking(self) -> bool:
        return self.state is SpeechState.SPEAKING

    @property
    def can_listen(self) -> bool:
        return self.recognizer is not None and self.recognizer.available

    @property
    def can_speak(self) -> bool:
        return self.synthesizer is not None and self.synthesizer.available

    def subscribe(
        self,
        on_state: Optional[Callable[[SpeechState], None]] = None,
        on_transcript: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[LingopalError], None]] = None,
    ) -> None:
        for name, callback in (
            ("state", on_state),
            ("transcript", on_transcript),
            ("error", on_error),
        ):
            if callback is not None:
                self._subscribers[name].append(callback)

    # --- Requests ---
    def start_listening(self) -> bool:
        if not self.can_listen:
            self._report(
                CapabilityUnavailableError(
                    "Speech recognition is not supported on this device."
                )
            )
            return False
        if self.state is not SpeechState.IDLE:
            logger.debug("listen_rejected", state=self.state.value)
            return False

        self.transcript = ""
        self._set_state(SpeechState.LISTENING)
        try:
            self.recognizer.start()
        except Exception as e:
            self._report(RecognitionError(f"Could not start listening: {e}"))
            self._set_state(SpeechState.IDLE)
            return False
        return True

    def stop_listening(self) -> bool:
        if self.state is not SpeechState.LISTENING:
            return False
        self._set_state(SpeechState.IDLE)
        try:
            self.recognizer.stop()
        except Exception as e:
            logger.warning("recognizer_stop_failed", error=str(e))
        return True

    def speak(self, text: str) -> bool:
        if not text or not text.strip():
            return False
        if self.state is SpeechState.LISTENING:
            logger.debug("speak_rejected", state=self.state.value)
            return False
        if not self.can_speak:
            self._report(
                CapabilityUnavailableError(
                    "Speech synthesis is not supported on this device."
                )
            )
            self._set_state(SpeechState.IDLE)
            return False

        self.synthesizer.cancel()
        voice = select_voice(self.synthesizer.voices(), self.locale)
        self._utterance_id += 1
        utterance_id = self._utterance_id
        self._set_state(SpeechState.SPEAKING)
        try:
            self.synthesizer.speak(text, voice, utterance_id)
        except Exception as e:
            self._report(SynthesisError(f"Could not speak: {e}"))
            if utterance_id == self._utterance_id:
                self._set_state(SpeechState.IDLE)
            return False
        return True

    # --- Events ---
    def post(self, event: SpeechEvent) -> None:
        """Queues a capability event and drains the queue unless already draining."""
        self._events.append(event)
        if self._draining:
            return
        self._draining = True
        try:
            while self._events:
                self._handle(self._events.popleft())
        finally:
            self._draining = False

    def _handle(self, event: SpeechEvent) -> None:
        kind = event.kind
        if kind in (EventKind.RESULT, EventKind.RECOGNITION_ERROR, EventKind.LISTEN_END):
            if self.state is not SpeechState.LISTENING:
                logger.debug("stale_recognition_event", kind=kind.value)
                return
            if kind is EventKind.RESULT:
                self.transcript = event.text.strip()
                self._set_state(SpeechState.IDLE)
                if self.transcript:
                    self._notify("transcript", self.transcript)
                return
            if kind is EventKind.RECOGNITION_ERROR:
                self._report(RecognitionError(event.error or "recognition failed"))
            self._set_state(SpeechState.IDLE)
            return

        if kind is EventKind.SPEAK_START:
            return
        if event.utterance_id != self._utterance_id or self.state is not SpeechState.SPEAKING:
            logger.debug("stale_synthesis_event", utterance_id=event.utterance_id)
            return
        if kind is EventKind.SPEAK_ERROR:
            self._report(SynthesisError(event.error or "synthesis failed"))
        self._set_state(SpeechState.IDLE)

    def _set_state(self, state: SpeechState) -> None:
        if state is self.state:
            return
        self.state = state
        self._notify("state", state)

    def _report(self, error: LingopalError) -> None:
        self.last_error = error
        logger.warning("speech_error", kind=type(error).__name__, detail=str(error))
        self._notify("error", error)

    def _notify(self, channel: str, value) -> None:
        for callback in list(self._subscribers[channel]):
            callback(value)
