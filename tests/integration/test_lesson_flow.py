"""
End-to-end lesson flows with real pillars: the Echo LLM, durable stores and
typed speech input. Each test restarts the app from the same store to check
what survives.
"""

import json

import pytest
from lingopal import STORAGE_FULL_NOTICE, Lingopal, Screen
from lingopal.dictionary import Static
from lingopal.llm import Echo
from lingopal.models import AI_SENDER, USER_SENDER, ConversationSetup, SetupChanges
from lingopal.speech import Silent, SpeechCoordinator, TextInput
from lingopal.store import File, InMemory, SQLite


def make_app(store, entries=()):
    app = Lingopal(
        llm=Echo(),
        store=store,
        speech=SpeechCoordinator(recognizer=TextInput(), synthesizer=Silent()),
        dictionary=Static(entries),
        welcome_delay=0,
    )
    app.on_start()
    return app


@pytest.fixture(params=["file", "sqlite"])
def durable_store(request, temp_dir):
    if request.param == "file":
        return File(str(temp_dir / "data"))
    return SQLite(str(temp_dir / "lingopal.db"))


async def speak(app, text):
    assert app.toggle_mic() is True
    app.speech.recognizer.submit(text)
    await app.drain()


class TestLessonLifecycle:
    async def test_lesson_survives_restart(self, durable_store):
        app = make_app(durable_store)
        await app.start_lesson(ConversationSetup(title="Ordering coffee", vocab="latte"))
        await speak(app, "A latte, please.")
        await speak(app, "Large, thank you.")
        app.end_lesson()

        restarted = make_app(durable_store)
        assert len(restarted.conversations) == 1
        saved = restarted.conversations[0]
        assert saved.setup.title == "Ordering coffee"
        assert [m.sender for m in saved.messages] == [
            AI_SENDER,
            USER_SENDER,
            AI_SENDER,
            USER_SENDER,
            AI_SENDER,
        ]

        await restarted.resume_lesson(saved)
        assert restarted.screen is Screen.CHAT
        assert len(restarted.messages) == 6
        assert len(restarted.session.history) == 5

        await speak(restarted, "Can I pay by card?")
        restarted.end_lesson()

        final = make_app(durable_store).conversations
        assert [c.id for c in final] == [saved.id]
        assert len(final[0].messages) == 8

    async def test_settings_change_persists_immediately(self, durable_store):
        app = make_app(durable_store)
        await app.start_lesson(ConversationSetup(title="Travel"))
        await speak(app, "I want to visit Hanoi.")
        await app.change_settings(SetupChanges(level="intermediate", vocab="itinerary"))

        restarted = make_app(durable_store)
        saved = restarted.conversations[0]
        assert saved.setup.level == "intermediate"
        assert saved.setup.vocab == "itinerary"
        assert len(saved.messages) == 3

        await speak(app, "What should I see?")
        assert app.messages[-1].text.startswith("I heard you say: What should I see?")

    async def test_most_recent_lesson_first(self, durable_store):
        app = make_app(durable_store)
        for title in ("First", "Second", "Third"):
            await app.start_lesson(ConversationSetup(title=title))
            app.end_lesson()

        first = next(c for c in app.conversations if c.setup.title == "First")
        await app.resume_lesson(first)
        app.end_lesson()

        titles = [c.setup.title for c in make_app(durable_store).conversations]
        assert titles == ["First", "Third", "Second"]


class TestWordsAndBackup:
    async def test_words_and_backup_round_trip(self, durable_store, sample_entry, temp_dir):
        app = make_app(durable_store, [sample_entry])
        await app.start_lesson(ConversationSetup(title="Films"))
        entry = await app.look_up(app.select_word("serendipity"))
        app.save_word(entry)
        app.update_word_notes("Serendipity", "From the film")
        app.end_lesson()

        backup = app.export_backup()
        fresh = make_app(InMemory())
        assert fresh.import_backup(backup) is True

        assert [w.notes for w in fresh.words] == ["From the film"]
        assert [c.setup.title for c in fresh.conversations] == ["Films"]
        assert json.loads(backup)["savedWords"][0]["original"] == "Serendipity"


class TestStorageFull:
    async def test_notice_once_and_state_kept(self, sample_entry):
        store = InMemory(quota=150)
        app = make_app(store, [sample_entry])
        await app.start_lesson(ConversationSetup(title="A long lesson about ordering coffee"))
        for i in range(3):
            await speak(app, f"Sentence number {i} that takes up some room in storage.")
        app.end_lesson()
        app.save_word(sample_entry)

        assert app.notices.count(STORAGE_FULL_NOTICE) == 1
        assert app.storage_full is True
        assert len(app.conversations) == 1
        assert len(app.words) == 1
