"""
Defines the core Pydantic data models for the application.

These models are the validated data contract between the pillars and the shape
of every persisted record. Persisted models serialize with camelCase aliases so
that backups stay interchangeable with the browser edition of the app.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# --- Constants ---
USER_SENDER = "user"
AI_SENDER = "ai"
Sender = Literal[USER_SENDER, AI_SENDER]

BEGINNER = "beginner"
INTERMEDIATE = "intermediate"
ADVANCED = "advanced"
ProficiencyLevel = Literal[BEGINNER, INTERMEDIATE, ADVANCED]

USER_TURN = "user"
MODEL_TURN = "model"
TurnRole = Literal[USER_TURN, MODEL_TURN]


def new_id() -> str:
    """Returns a new opaque identifier for messages and conversations."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Record(BaseModel):
    """Base for persisted, immutable records."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


# --- Models ---
class Message(_Record):
    """A single line of a lesson, spoken by the learner or the tutor."""

    text: str
    sender: Sender
    id: str = Field(default_factory=new_id)


class SetupChanges(BaseModel):
    """The fields of a ConversationSetup that differ from a previous value.

    ``None`` means "unchanged". An empty title is representable here on purpose:
    rejecting it is the orchestrator's decision, not the model's.
    """

    model_config = ConfigDict(frozen=True)

    title: Optional[str] = None
    vocab: Optional[str] = None
    level: Optional[ProficiencyLevel] = None
    avatar_url: Optional[str] = None

    def changed_fields(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def is_empty(self) -> bool:
        return not self.changed_fields()


class ConversationSetup(_Record):
    """What a lesson is about and how hard the tutor should make it."""

    title: str
    vocab: str = ""
    level: ProficiencyLevel = BEGINNER
    avatar_url: Optional[str] = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be empty")
        return value

    def diff(self, proposed: "ConversationSetup") -> SetupChanges:
        """Returns only the fields of ``proposed`` that differ from this setup."""
        changed = {
            name: getattr(proposed, name)
            for name in type(self).model_fields
            if getattr(proposed, name) != getattr(self, name)
        }
        return SetupChanges(**changed)

    def apply(self, changes: SetupChanges) -> "ConversationSetup":
        """Returns a new setup with ``changes`` merged in (validated)."""
        data = self.model_dump()
        data.update(changes.changed_fields())
        return type(self).model_validate(data)


class SavedConversation(_Record):
    """A lesson as it is persisted: always replaced as a whole record."""

    id: str
    setup: ConversationSetup
    messages: Tuple[Message, ...] = ()
    timestamp: datetime = Field(default_factory=utcnow)
    bot_name: str

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class WordEntry(_Record):
    """A structured dictionary entry as returned by the lookup service."""

    original: str
    translation: str
    ipa: str
    definition: str
    example: str


class SavedWord(WordEntry):
    """A dictionary entry the learner kept, with optional personal notes."""

    notes: Optional[str] = None

    @property
    def key(self) -> str:
        """The case-insensitive identity of the word."""
        return self.original.casefold()

    @classmethod
    def from_entry(cls, entry: WordEntry, notes: Optional[str] = None) -> "SavedWord":
        return cls(**entry.model_dump(), notes=notes)


class HistoryTurn(BaseModel):
    """One turn in the remote conversational service's history format."""

    model_config = ConfigDict(frozen=True)

    role: TurnRole
    text: str


class Backup(_Record):
    """The export/import document. Both lists are required."""

    saved_conversations: List[SavedConversation]
    saved_words: List[SavedWord]


def to_history(messages: Iterable[Message]) -> List[HistoryTurn]:
    """Maps displayed messages 1:1, in order, onto remote history turns."""
    return [
        HistoryTurn(
            role=USER_TURN if msg.sender == USER_SENDER else MODEL_TURN,
            text=msg.text,
        )
        for msg in messages
    ]
