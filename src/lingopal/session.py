"""Session management: the live remote conversation behind a lesson.

A Session is bound to one SavedConversation id. It is opened fresh for a new
lesson, reopened with the saved messages replayed as history when a lesson is
resumed, and reopened again with the current messages whenever the lesson's
setup changes, so the remote side never loses context.
"""

from typing import Optional, Sequence, Tuple

from .errors import LingopalError, ServiceError
from .llm import LLM, ChatHandle
from .models import AI_SENDER, ConversationSetup, HistoryTurn, Message, to_history
from .observability import get_logger
from .prompts import (
    APOLOGY_LINE,
    BOT_NAME,
    OPENING_LINE,
    WELCOME_BACK_LINE,
    render_system_instruction,
)

logger = get_logger(__name__)


class Session:
    """Runtime handle for one lesson's remote conversation. Never persisted."""

    def __init__(
        self,
        conversation_id: str,
        handle: ChatHandle,
        setup: ConversationSetup,
        system_instruction: str,
    ):
        self.conversation_id = conversation_id
        self.handle = handle
        self.setup = setup
        self.system_instruction = system_instruction
        self.in_flight = False
        self.closed = False

    @property
    def history(self) -> Sequence[HistoryTurn]:
        return self.handle.history

    @property
    def is_open(self) -> bool:
        return not self.closed


class SessionManager:
    """Opens, reopens and drives Sessions against an LLM provider."""

    def __init__(self, llm: LLM, bot_name: str = BOT_NAME):
        self.llm = llm
        self.bot_name = bot_name

    def build_system_instruction(self, setup: ConversationSetup) -> str:
        return render_system_instruction(setup, self.bot_name)

    def opening_message(self, setup: ConversationSetup) -> Message:
        text = OPENING_LINE.format(bot_name=self.bot_name, title=setup.title)
        return Message(text=text, sender=AI_SENDER)

    def welcome_message(self, setup: ConversationSetup) -> Message:
        return Message(text=WELCOME_BACK_LINE.format(title=setup.title), sender=AI_SENDER)

    async def _open(
        self,
        conversation_id: str,
        setup: ConversationSetup,
        messages: Sequence[Message],
    ) -> Session:
        instruction = self.build_system_instruction(setup)
        try:
            handle = await self.llm.open_session(instruction, to_history(messages))
        except LingopalError:
            raise
        except Exception as e:
            logger.error(
                "session_open_failed", conversation_id=conversation_id, error=str(e)
            )
            raise ServiceError(
                "Failed to open the conversation. Please check your API key and network connection."
            ) from e
        return Session(conversation_id, handle, setup, instruction)

    async def create(
        self,
        conversation_id: str,
        setup: ConversationSetup,
        messages: Sequence[Message] = (),
    ) -> Tuple[Session, Optional[Message]]:
        """Opens a session with empty history.

        Returns the session and, when the lesson has no messages yet, the
        tutor's opening line.
        """
        session = await self._open(conversation_id, setup, ())
        opening = None if messages else self.opening_message(setup)
        logger.info("session_created", conversation_id=conversation_id, level=setup.level)
        return session, opening

    async def resume(
        self,
        conversation_id: str,
        setup: ConversationSetup,
        prior_messages: Sequence[Message],
    ) -> Tuple[Session, Message]:
        """Opens a session seeded with ``prior_messages`` and returns a welcome line.

        ``prior_messages`` itself is left untouched; the caller appends the
        welcome line to its own displayed list.
        """
        session = await self._open(conversation_id, setup, prior_messages)
        logger.info(
            "session_resumed",
            conversation_id=conversation_id,
            replayed_turns=len(prior_messages),
        )
        return session, self.welcome_message(setup)

    async def reconfigure(
        self,
        session: Session,
        new_setup: ConversationSetup,
        current_messages: Sequence[Message],
    ) -> Session:
        """Reopens the session under ``new_setup`` with the current messages replayed.

        The old session is closed only once the new one is open, so a failure
        leaves the lesson running on its previous configuration.
        """
        replacement = await self._open(session.conversation_id, new_setup, current_messages)
        self.close(session)
        logger.info(
            "session_reconfigured",
            conversation_id=session.conversation_id,
            replayed_turns=len(current_messages),
        )
        return replacement

    async def send_turn(self, session: Optional[Session], text: str) -> Optional[str]:
        """Sends one user turn and returns the tutor's reply.

        Returns None without contacting the service when ``text`` is blank, the
        session is absent or closed, or another turn is still in flight.
        Service failures are absorbed: the fixed apology line is returned so
        every user turn is answered by exactly one tutor turn.
        """
        if not text or not text.strip():
            return None
        if session is None or session.closed:
            return None
        if session.in_flight:
            logger.debug("turn_dropped", conversation_id=session.conversation_id)
            return None

        session.in_flight = True
        try:
            reply = await session.handle.send(text.strip())
        except Exception as e:
            logger.warning(
                "turn_failed", conversation_id=session.conversation_id, error=str(e)
            )
            return APOLOGY_LINE
        finally:
            session.in_flight = False
        return reply if reply.strip() else APOLOGY_LINE

    def close(self, session: Optional[Session]) -> None:
        if session is not None and not session.closed:
            session.closed = True
            logger.debug("session_closed", conversation_id=session.conversation_id)
