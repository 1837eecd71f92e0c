"""
The main entrypoint for the Lingopal package.

This module contains the Lingopal class, the orchestrator that owns the live
lesson: the current conversation record, the displayed message list and the
remote session. It receives its pillars (LLM, store, speech, dictionary) by
injection and falls back to working defaults.
"""

import asyncio
from enum import Enum
from typing import Coroutine, List, Optional, Set, Union

from pydantic import ValidationError as PydanticValidationError

from . import dictionary, llm, speech, store
from .errors import LingopalError, ValidationError
from .models import (
    AI_SENDER,
    USER_SENDER,
    ConversationSetup,
    Message,
    SavedConversation,
    SavedWord,
    SetupChanges,
    WordEntry,
    new_id,
    utcnow,
)
from .observability import get_logger
from .prompts import APOLOGY_LINE, BOT_NAME
from .reconciler import Reconciler
from .session import Session, SessionManager

logger = get_logger(__name__)

CONFIG_ERROR = "API Key is not configured. Please set the API key environment variable."
STORAGE_FULL_NOTICE = (
    "Storage is full. New conversations and words may not be saved until you free some space."
)
SETTINGS_ERROR = "Failed to update the conversation settings."
SETTINGS_BUSY = "Wait for the reply before changing the lesson settings."
MAX_SELECTION_LENGTH = 30


class Screen(str, Enum):
    HOME = "home"
    SETUP = "setup"
    CHAT = "chat"
    FLASHCARDS = "flashcards"


class Lingopal:
    """
    The orchestrator of a Lingopal application.

    Lingopal routes user intent (microphone presses, typed turns, settings
    edits, ending a lesson) to the session manager, the speech coordinator and
    the reconciler, and holds the single source of truth for the lesson in
    progress. Its entry points never raise: problems are logged and surfaced
    through ``error`` (for the action at hand) or ``notices`` (for background
    conditions such as a full store or a missing speech capability).
    """

    def __init__(
        self,
        llm: Optional[llm.LLM] = None,
        store: Optional[store.Store] = None,
        speech: Optional[speech.SpeechCoordinator] = None,
        dictionary: Optional[dictionary.Dictionary] = None,
        bot_name: str = BOT_NAME,
        welcome_delay: float = 0.5,
    ) -> None:
        """
        Initialize the application with configurable pillars.

        Parameters
        ----------
        llm : llm.LLM, optional
            Conversational provider. Defaults to llm.Gemini(), or llm.Echo()
            when the Gemini SDK is not installed.
        store : store.Store, optional
            Durable storage for conversations and words.
            Defaults to store.InMemory().
        speech : speech.SpeechCoordinator, optional
            Listening and speaking. Defaults to typed input and OS
            text-to-speech (speech.Pyttsx3), or speech.Silent() when no TTS
            engine is available.
        dictionary : dictionary.Dictionary, optional
            Word lookup service. Defaults to dictionary.Gemini(), or
            dictionary.NoDictionary() when the Gemini SDK is not installed.
        bot_name : str, default="Mrs. Oanh"
            Display name of the tutor persona.
        welcome_delay : float, default=0.5
            Seconds to wait before the welcome-back line of a resumed lesson.

        Examples
        --------
        >>> app = Lingopal(llm=llm.Echo(), store=store.File("./data"))
        >>> app.on_start()
        """
        import warnings

        llm_module = globals()["llm"]
        store_module = globals()["store"]
        speech_module = globals()["speech"]
        dictionary_module = globals()["dictionary"]

        if llm:
            self.llm = llm
        else:
            try:
                self.llm = llm_module.Gemini()
            except ImportError:
                warnings.warn(
                    "Lingopal is running with the Echo LLM because the "
                    "'google-genai' package is not installed. "
                    "Install it with: pip install google-genai",
                    UserWarning,
                )
                self.llm = llm_module.Echo()

        if dictionary:
            self.dictionary = dictionary
        else:
            try:
                self.dictionary = dictionary_module.Gemini()
            except ImportError:
                self.dictionary = dictionary_module.NoDictionary()

        if speech:
            self.speech = speech
        else:
            synthesizer = speech_module.Pyttsx3()
            if not synthesizer.available:
                warnings.warn(
                    "Lingopal is running without voice output because no "
                    "text-to-speech engine is available. "
                    'For spoken replies, install with: pip install "lingopal[voice]"',
                    UserWarning,
                )
                synthesizer = speech_module.Silent()
            self.speech = speech_module.SpeechCoordinator(
                recognizer=speech_module.TextInput(), synthesizer=synthesizer
            )

        self.store = store if store is not None else store_module.InMemory()
        self.bot_name = bot_name
        self.welcome_delay = welcome_delay
        self.sessions = SessionManager(self.llm, bot_name=bot_name)
        self.library = Reconciler(self.store)

        self.screen = Screen.HOME
        self.current_conversation: Optional[SavedConversation] = None
        self.messages: List[Message] = []
        self.session: Optional[Session] = None
        self.is_loading = False
        self.error: Optional[str] = None
        self.notices: List[str] = []
        self.selected_word: Optional[str] = None
        self._lesson_token = 0
        self._tasks: Set[asyncio.Task] = set()

        self._register_callbacks()

    def _register_callbacks(self) -> None:
        """Connects speech and storage events to the orchestrator."""
        from .callbacks import register_callbacks

        register_callbacks(self)

    # --- Lifecycle ---
    def on_start(self) -> None:
        """Loads persisted state and checks the provider configuration."""
        self.library.load()
        if not self.llm.is_configured:
            self.error = CONFIG_ERROR
            logger.warning("llm_not_configured", provider=type(self.llm).__name__)

    def spawn(self, coro: Coroutine) -> Optional[asyncio.Task]:
        """Schedules ``coro`` on the running loop and keeps a reference to it."""
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            logger.warning("spawn_without_loop")
            return None
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Waits until every spawned task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    # --- Derived state ---
    @property
    def conversations(self) -> List[SavedConversation]:
        return self.library.conversations

    @property
    def words(self) -> List[SavedWord]:
        return self.library.words

    @property
    def storage_full(self) -> bool:
        return self.library.storage_full

    @property
    def is_thinking(self) -> bool:
        """True while a reply is pending for the latest (user) message."""
        return (
            self.is_loading
            and bool(self.messages)
            and self.messages[-1].sender == USER_SENDER
        )

    @property
    def mic_enabled(self) -> bool:
        return (
            self.session is not None
            and not self.is_loading
            and not self.speech.is_speaking
            and self.speech.can_listen
        )

    # --- Navigation ---
    def show_home(self) -> None:
        self.screen = Screen.HOME

    def show_setup(self) -> None:
        self.screen = Screen.SETUP

    def study_words(self) -> None:
        self.screen = Screen.FLASHCARDS

    def leave_flashcards(self) -> None:
        self.screen = Screen.CHAT if self.current_conversation else Screen.HOME

    # --- Lessons ---
    async def start_lesson(self, setup: ConversationSetup) -> bool:
        """Starts a new lesson and voices the tutor's opening line.

        On failure the lesson is abandoned and the setup screen is shown again.
        """
        if not self.llm.is_configured:
            self.error = CONFIG_ERROR
            self.screen = Screen.SETUP
            return False

        token = self._begin_lesson()
        conversation = SavedConversation(id=new_id(), setup=setup, bot_name=self.bot_name)
        self.current_conversation = conversation
        self.messages = []
        self.screen = Screen.CHAT
        self.is_loading = True
        try:
            session, opening = await self.sessions.create(
                conversation.id, setup, self.messages
            )
        except LingopalError as e:
            if token == self._lesson_token:
                self._abandon_lesson(Screen.SETUP, str(e))
            return False
        finally:
            if token == self._lesson_token:
                self.is_loading = False

        if token != self._lesson_token:
            self.sessions.close(session)
            return False
        self.session = session
        logger.info("lesson_started", conversation_id=conversation.id)
        if opening is not None:
            self.messages.append(opening)
            self.speech.speak(opening.text)
        return True

    async def resume_lesson(self, conversation: SavedConversation) -> bool:
        """Reopens a saved lesson with its messages replayed to the tutor.

        The welcome-back line is appended after ``welcome_delay``. On failure
        the lesson is abandoned and the lesson list is shown again.
        """
        if not self.llm.is_configured:
            self.error = CONFIG_ERROR
            self.screen = Screen.HOME
            return False

        token = self._begin_lesson()
        self.current_conversation = conversation
        self.messages = list(conversation.messages)
        self.screen = Screen.CHAT
        self.is_loading = True
        try:
            session, welcome = await self.sessions.resume(
                conversation.id, conversation.setup, conversation.messages
            )
        except LingopalError as e:
            if token == self._lesson_token:
                self._abandon_lesson(Screen.HOME, str(e))
            return False
        finally:
            if token == self._lesson_token:
                self.is_loading = False

        if token != self._lesson_token:
            self.sessions.close(session)
            return False
        self.session = session
        logger.info("lesson_resumed", conversation_id=conversation.id)

        if self.welcome_delay:
            await asyncio.sleep(self.welcome_delay)
        if token != self._lesson_token:
            return False
        self.messages.append(welcome)
        self.speech.speak(welcome.text)
        return True

    async def send_message(self, text: str) -> Optional[Message]:
        """Sends one learner turn and returns the tutor's reply message.

        The learner's message is shown immediately; the reply (or the apology
        line when the service fails) follows. Replies that arrive after the
        lesson has ended are discarded.
        """
        if not text or not text.strip():
            return None
        session = self.session
        if session is None or session.closed or self.is_loading:
            return None

        token = self._lesson_token
        self.messages.append(Message(text=text.strip(), sender=USER_SENDER))
        self.is_loading = True
        try:
            reply = await self.sessions.send_turn(session, text)
        finally:
            if token == self._lesson_token:
                self.is_loading = False

        if token != self._lesson_token:
            logger.info("late_reply_discarded", conversation_id=session.conversation_id)
            return None
        ai_message = Message(text=reply or APOLOGY_LINE, sender=AI_SENDER)
        self.messages.append(ai_message)
        self.speech.speak(ai_message.text)
        return ai_message

    def toggle_mic(self) -> bool:
        """Stops listening if the microphone is open, otherwise starts listening."""
        if self.speech.is_listening:
            return self.speech.stop_listening()
        if self.session is None or self.is_loading or self.speech.is_speaking:
            return False
        return self.speech.start_listening()

    def end_lesson(self) -> None:
        """Saves the lesson as it stands and closes the session."""
        conversation = self.current_conversation
        if conversation is not None:
            final = conversation.model_copy(
                update={"messages": tuple(self.messages), "timestamp": utcnow()}
            )
            self.library.upsert(final)
            logger.info(
                "lesson_ended", conversation_id=final.id, messages=len(final.messages)
            )
        self.speech.stop_listening()
        self._teardown_session()
        self.current_conversation = None
        self.messages = []
        self.is_loading = False
        self.screen = Screen.HOME

    def new_topic(self) -> None:
        self.end_lesson()
        self.screen = Screen.SETUP

    async def change_settings(self, changes: SetupChanges) -> bool:
        """Applies a settings edit to the lesson in progress.

        An empty title rejects the whole edit, as does an edit made while a
        reply is still pending. Otherwise only the fields that
        differ are merged, the record is saved right away, and the session is
        reopened under the new setup with the conversation so far replayed.
        """
        conversation = self.current_conversation
        if conversation is None:
            return False
        if self.is_loading:
            self.error = SETTINGS_BUSY
            return False
        if changes.title is not None and not changes.title.strip():
            self.error = "The lesson title cannot be empty."
            return False
        try:
            proposed = conversation.setup.apply(changes)
        except PydanticValidationError as e:
            self.error = "Invalid lesson settings."
            logger.warning("settings_rejected", errors=e.error_count())
            return False

        diff = conversation.setup.diff(proposed)
        if diff.is_empty():
            return True
        merged = conversation.setup.apply(diff)
        updated = conversation.model_copy(
            update={"setup": merged, "messages": tuple(self.messages), "timestamp": utcnow()}
        )
        self.current_conversation = updated
        self.library.upsert(updated)
        logger.info(
            "settings_changed",
            conversation_id=updated.id,
            fields=sorted(diff.changed_fields()),
        )

        if self.session is None:
            return True
        token = self._lesson_token
        try:
            replacement = await self.sessions.reconfigure(
                self.session, merged, list(self.messages)
            )
        except LingopalError as e:
            self.error = SETTINGS_ERROR
            logger.error("reconfigure_failed", conversation_id=updated.id, error=str(e))
            return False
        if token != self._lesson_token:
            self.sessions.close(replacement)
            return False
        self.session = replacement
        return True

    def _begin_lesson(self) -> int:
        self._teardown_session()
        self.error = None
        return self._lesson_token

    def _teardown_session(self) -> None:
        self.sessions.close(self.session)
        self.session = None
        self._lesson_token += 1

    def _abandon_lesson(self, screen: Screen, message: str) -> None:
        logger.error("lesson_open_failed", screen=screen.value, error=message)
        self._teardown_session()
        self.current_conversation = None
        self.messages = []
        self.error = message
        self.screen = screen

    # --- Library ---
    def delete_conversation(self, conversation_id: str) -> bool:
        return self.library.delete(conversation_id)

    def select_word(self, text: str) -> Optional[str]:
        """Accepts a selection as a lookup term if it is a single short word."""
        term = (text or "").strip()
        if not term or len(term) >= MAX_SELECTION_LENGTH or any(ch.isspace() for ch in term):
            return None
        self.selected_word = term
        return term

    async def look_up(self, word: str) -> Optional[WordEntry]:
        try:
            return await self.dictionary.lookup(word)
        except LingopalError as e:
            self.error = str(e)
            return None

    def save_word(self, word: Union[WordEntry, SavedWord]) -> bool:
        if not isinstance(word, SavedWord):
            word = SavedWord.from_entry(word)
        return self.library.save_word(word)

    def update_word(self, word: SavedWord) -> bool:
        return self.library.update_word(word)

    def update_word_notes(self, original: str, notes: Optional[str]) -> bool:
        word = self.library.find_word(original)
        if word is None:
            return False
        return self.library.update_word(word.model_copy(update={"notes": notes or None}))

    def delete_word(self, original: str) -> bool:
        return self.library.delete_word(original)

    def export_backup(self) -> str:
        return self.library.export_backup()

    def import_backup(self, text: str) -> bool:
        try:
            self.library.import_backup(text)
        except ValidationError as e:
            self.error = str(e)
            logger.warning("backup_rejected", error=str(e))
            return False
        return True
