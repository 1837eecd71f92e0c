"""Reconciles live lesson state with the persisted conversation and word lists.

The Reconciler is the only writer of the two store slots. Conversations are
keyed by ``id`` and always replaced as whole records; words are keyed by their
case-folded ``original``. After every mutation the affected list is written
back in full, in the order the mutations happened.
"""

import json
from datetime import date
from typing import Callable, Dict, List, Optional, Set

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import StorageQuotaError, ValidationError
from .models import Backup, SavedConversation, SavedWord
from .observability import get_logger
from .store import CONVERSATIONS_SLOT, WORDS_SLOT, Store

logger = get_logger(__name__)

_CONVERSATION = TypeAdapter(SavedConversation)
_WORD = TypeAdapter(SavedWord)


def sort_by_recency(conversations) -> List[SavedConversation]:
    """Most recently touched first. Ties keep their current order."""
    return sorted(conversations, key=lambda c: c.timestamp, reverse=True)


def backup_filename(day: Optional[date] = None) -> str:
    return f"lingopal-data-{(day or date.today()).isoformat()}.json"


class Reconciler:
    """Owns the saved conversation and word lists and their persistence.

    Parameters
    ----------
    store : Store
        Where both lists are persisted.

    Notes
    -----
    A write rejected for quota reasons never aborts the mutation that caused
    it: the in-memory list keeps the change. The first rejection sets the
    sticky ``storage_full`` flag and notifies ``on_storage_full`` subscribers;
    further rejections are silent until every slot that was rejected has been
    written successfully again.

    Stored records that fail validation are left out of the live lists but
    kept verbatim in their slot on every later write, until a backup import
    replaces the slot wholesale.
    """

    def __init__(self, store: Store):
        self.store = store
        self.conversations: List[SavedConversation] = []
        self.words: List[SavedWord] = []
        self._full_slots: Set[str] = set()
        self._unreadable: Dict[str, list] = {CONVERSATIONS_SLOT: [], WORDS_SLOT: []}
        self._subscribers: Dict[str, List[Callable]] = {
            "conversations": [],
            "words": [],
            "storage_full": [],
        }

    def subscribe(
        self,
        on_conversations_changed: Optional[Callable[[List[SavedConversation]], None]] = None,
        on_words_changed: Optional[Callable[[List[SavedWord]], None]] = None,
        on_storage_full: Optional[Callable[[StorageQuotaError], None]] = None,
    ) -> None:
        for name, callback in (
            ("conversations", on_conversations_changed),
            ("words", on_words_changed),
            ("storage_full", on_storage_full),
        ):
            if callback is not None:
                self._subscribers[name].append(callback)

    @property
    def storage_full(self) -> bool:
        return bool(self._full_slots)

    # --- Loading ---
    def load(self) -> None:
        """Reads both lists from the store.

        An unreadable slot starts empty. Invalid records are skipped one by one
        so the rest of the slot still loads.
        """
        self.conversations = sort_by_recency(self._read(CONVERSATIONS_SLOT, _CONVERSATION))
        self.words = self._read(WORDS_SLOT, _WORD)
        logger.info(
            "library_loaded",
            conversations=len(self.conversations),
            words=len(self.words),
        )

    def _read(self, slot: str, adapter: TypeAdapter) -> list:
        self._unreadable[slot] = []
        try:
            raw = self.store.get(slot)
        except Exception as e:
            logger.error("load_failed", slot=slot, error=str(e))
            return []
        if raw is None:
            return []
        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.error("load_failed", slot=slot, error=str(e))
            return []
        if not isinstance(data, list):
            logger.error("load_failed", slot=slot, error="slot does not hold a list")
            return []

        items = []
        for index, record in enumerate(data):
            try:
                items.append(adapter.validate_python(record))
            except PydanticValidationError as e:
                logger.warning(
                    "record_skipped", slot=slot, index=index, errors=e.error_count()
                )
                self._unreadable[slot].append(record)
        return items

    # --- Conversations ---
    def get(self, conversation_id: str) -> Optional[SavedConversation]:
        return next((c for c in self.conversations if c.id == conversation_id), None)

    def upsert(self, conversation: SavedConversation) -> None:
        """Replaces the record with the same id, or prepends a new one."""
        if self.get(conversation.id) is not None:
            updated = [conversation if c.id == conversation.id else c for c in self.conversations]
        else:
            updated = [conversation] + self.conversations
        self.conversations = sort_by_recency(updated)
        self._conversations_changed()

    def delete(self, conversation_id: str) -> bool:
        if self.get(conversation_id) is None:
            return False
        self.conversations = [c for c in self.conversations if c.id != conversation_id]
        self._conversations_changed()
        return True

    # --- Words ---
    def find_word(self, original: str) -> Optional[SavedWord]:
        key = original.casefold()
        return next((w for w in self.words if w.key == key), None)

    def save_word(self, word: SavedWord) -> bool:
        """Adds ``word`` unless an entry with the same key exists (first save wins)."""
        if self.find_word(word.original) is not None:
            return False
        self.words = [word] + self.words
        self._words_changed()
        return True

    def update_word(self, word: SavedWord) -> bool:
        """Replaces the entry whose key matches ``word`` case-insensitively."""
        if self.find_word(word.original) is None:
            return False
        self.words = [word if w.key == word.key else w for w in self.words]
        self._words_changed()
        return True

    def delete_word(self, original: str) -> bool:
        remaining = [w for w in self.words if w.original != original]
        if len(remaining) == len(self.words):
            return False
        self.words = remaining
        self._words_changed()
        return True

    # --- Backup ---
    def export_backup(self) -> str:
        backup = Backup(saved_conversations=self.conversations, saved_words=self.words)
        return backup.model_dump_json(by_alias=True, indent=2)

    def import_backup(self, text: str) -> None:
        """Replaces both lists wholesale with the contents of a backup document.

        Words are restored as-is, without the first-save-wins check: a backup is
        trusted to be a consistent snapshot.

        Raises
        ------
        ValidationError
            If the document is not JSON, lacks either list, or holds a
            malformed record. Nothing is changed in that case.
        """
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as e:
            raise ValidationError("The backup file is not valid JSON.") from e
        if not isinstance(data, dict) or not all(
            isinstance(data.get(field), list)
            for field in ("savedConversations", "savedWords")
        ):
            raise ValidationError("Invalid data format in the JSON file.")
        try:
            backup = Backup.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid data format in the JSON file ({e.error_count()} invalid fields)."
            ) from e

        self.conversations = sort_by_recency(backup.saved_conversations)
        self.words = list(backup.saved_words)
        self._unreadable = {CONVERSATIONS_SLOT: [], WORDS_SLOT: []}
        logger.info(
            "backup_imported",
            conversations=len(self.conversations),
            words=len(self.words),
        )
        self._conversations_changed()
        self._words_changed()

    # --- Persistence ---
    def _conversations_changed(self) -> None:
        self._write(CONVERSATIONS_SLOT, _CONVERSATION, self.conversations)
        self._notify("conversations", self.conversations)

    def _words_changed(self) -> None:
        self._write(WORDS_SLOT, _WORD, self.words)
        self._notify("words", self.words)

    def _write(self, slot: str, adapter: TypeAdapter, items: list) -> bool:
        records = [adapter.dump_python(item, mode="json", by_alias=True) for item in items]
        records.extend(self._unreadable[slot])
        payload = json.dumps(records, ensure_ascii=False, separators=(",", ":"))
        try:
            self.store.set(slot, payload)
        except StorageQuotaError as e:
            if not self._full_slots:
                logger.error("storage_full", slot=slot, error=str(e))
                self._notify("storage_full", e)
            self._full_slots.add(slot)
            return False
        except Exception as e:
            logger.error("save_failed", slot=slot, error=str(e))
            return False
        self._full_slots.discard(slot)
        return True

    def _notify(self, channel: str, value) -> None:
        for callback in list(self._subscribers[channel]):
            callback(value)
