"""Wires speech and storage events into the Lingopal orchestrator."""

from .errors import LingopalError, StorageQuotaError
from .observability import get_logger

logger = get_logger(__name__)


def register_callbacks(app):
    """Subscribes ``app`` to its speech coordinator and reconciler.

    - A final transcript is sent as the learner's turn.
    - Speech errors become user-visible notices.
    - The first storage quota failure adds the storage-full notice.
    """
    from . import STORAGE_FULL_NOTICE

    def route_transcript(transcript: str) -> None:
        logger.debug("transcript_received", length=len(transcript))
        app.spawn(app.send_message(transcript))

    def surface_speech_error(error: LingopalError) -> None:
        app.notices.append(str(error))

    def surface_storage_full(error: StorageQuotaError) -> None:
        app.notices.append(STORAGE_FULL_NOTICE)

    app.speech.subscribe(on_transcript=route_transcript, on_error=surface_speech_error)
    app.library.subscribe(on_storage_full=surface_storage_full)
