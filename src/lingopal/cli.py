"""Text-mode front end for Lingopal.

Typed lines stand in for the microphone. At the lesson list:

    new | resume N | delete N | words | export [PATH] | import PATH | quit

During a lesson, anything not starting with ``/`` is said to the tutor:

    /end | /new | /settings title="..." level=... vocab="..." |
    /lookup WORD | /save | /words
"""

import argparse
import asyncio
import shlex
from pathlib import Path
from typing import Awaitable, Callable, Optional

from . import Lingopal, Screen, dictionary, llm, speech, store
from .models import (
    ADVANCED,
    BEGINNER,
    INTERMEDIATE,
    USER_SENDER,
    ConversationSetup,
    SetupChanges,
    WordEntry,
)
from .observability import get_logger, setup_logging
from .reconciler import backup_filename

logger = get_logger(__name__)

LEVELS = (BEGINNER, INTERMEDIATE, ADVANCED)
SETTINGS_FIELDS = ("title", "vocab", "level", "avatar_url")

Reader = Callable[[str], Awaitable[Optional[str]]]


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="lingopal", description="Practice a language with an AI tutor."
    )
    p.add_argument("--data-dir", default=str(Path.home() / ".lingopal"))
    p.add_argument("--store", choices=("file", "sqlite"), default="file")
    p.add_argument("--llm", choices=("gemini", "openai", "echo"), default="gemini")
    p.add_argument("--voice", action=argparse.BooleanOptionalAction, default=True)
    p.add_argument("--log-level", default="WARNING")
    p.add_argument("--log-format", choices=("console", "json"), default="console")
    return p


def build_app(args: argparse.Namespace) -> Lingopal:
    data_dir = Path(args.data_dir).expanduser()
    if args.store == "sqlite":
        data_dir.mkdir(parents=True, exist_ok=True)
        app_store = store.SQLite(str(data_dir / "lingopal.db"))
    else:
        app_store = store.File(str(data_dir))

    if args.llm == "openai":
        app_llm, app_dictionary = llm.OpenAI(), dictionary.OpenAI()
    elif args.llm == "echo":
        app_llm, app_dictionary = llm.Echo(), dictionary.NoDictionary()
    else:
        app_llm, app_dictionary = llm.Gemini(), dictionary.Gemini()

    app_speech = None
    if not args.voice:
        app_speech = speech.SpeechCoordinator(
            recognizer=speech.TextInput(), synthesizer=speech.Silent()
        )
    return Lingopal(
        llm=app_llm, store=app_store, speech=app_speech, dictionary=app_dictionary
    )


async def _read_stdin(prompt: str) -> Optional[str]:
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, input, prompt)
    except EOFError:
        return None


def parse_settings(tokens) -> SetupChanges:
    """Turns ``field=value`` tokens into a SetupChanges."""
    fields = {}
    for token in tokens:
        name, sep, value = token.partition("=")
        if not sep or name not in SETTINGS_FIELDS:
            raise ValueError(f"Unknown setting: {token}")
        fields[name] = value
    return SetupChanges(**fields)


class Console:
    """Drives a Lingopal app from lines of text."""

    def __init__(
        self,
        app: Lingopal,
        read: Reader = _read_stdin,
        write: Callable[[str], None] = print,
    ):
        self.app = app
        self.read = read
        self.write = write
        self.last_entry: Optional[WordEntry] = None
        self._shown = 0

    async def run(self) -> int:
        self.app.on_start()
        self.report()
        self.show_conversations()
        while True:
            prompt = "you> " if self.app.screen is Screen.CHAT else "lingopal> "
            line = await self.read(prompt)
            if line is None:
                break
            line = line.strip()
            if not line:
                continue
            if self.app.screen is Screen.CHAT:
                await self.chat_command(line)
            elif not await self.home_command(line):
                break
            self.report()
        if self.app.current_conversation is not None:
            self.app.end_lesson()
        await self.app.drain()
        return 0

    # --- Output ---
    def report(self) -> None:
        """Prints new messages, then any pending error and notices."""
        messages = self.app.messages
        if self._shown > len(messages):
            self._shown = 0
        for message in messages[self._shown:]:
            speaker = "you" if message.sender == USER_SENDER else self.app.bot_name
            self.write(f"{speaker}: {message.text}")
        self._shown = len(messages)
        if self.app.error:
            self.write(f"! {self.app.error}")
            self.app.error = None
        while self.app.notices:
            self.write(f"* {self.app.notices.pop(0)}")

    def show_conversations(self) -> None:
        if not self.app.conversations:
            self.write("No saved lessons yet. Type 'new' to start one.")
            return
        for index, conversation in enumerate(self.app.conversations, start=1):
            stamp = conversation.timestamp.strftime("%Y-%m-%d %H:%M")
            self.write(
                f"{index}. {conversation.setup.title} ({conversation.setup.level}, "
                f"{len(conversation.messages)} messages, {stamp})"
            )

    def show_words(self) -> None:
        if not self.app.words:
            self.write("No saved words.")
        for word in self.app.words:
            line = f"{word.original} [{word.ipa}] {word.translation}: {word.definition}"
            self.write(line + (f" ({word.notes})" if word.notes else ""))

    # --- Commands ---
    def _pick(self, arg: str):
        try:
            return self.app.conversations[int(arg) - 1]
        except (ValueError, IndexError):
            self.write(f"No lesson numbered {arg!r}.")
            return None

    async def home_command(self, line: str) -> bool:
        command, _, arg = line.partition(" ")
        arg = arg.strip()
        if command in ("quit", "exit"):
            return False
        if command == "new":
            await self.new_lesson()
        elif command == "resume":
            conversation = self._pick(arg)
            if conversation is not None:
                self._shown = 0
                await self.app.resume_lesson(conversation)
        elif command == "delete":
            conversation = self._pick(arg)
            if conversation is not None:
                self.app.delete_conversation(conversation.id)
                self.show_conversations()
        elif command == "words":
            self.show_words()
        elif command == "export":
            path = Path(arg or backup_filename())
            path.write_text(self.app.export_backup(), encoding="utf-8")
            self.write(f"Saved backup to {path}")
        elif command == "import":
            try:
                text = Path(arg).read_text(encoding="utf-8")
            except OSError as e:
                self.write(f"Could not read {arg!r}: {e}")
                return True
            if self.app.import_backup(text):
                self.write("Data imported successfully.")
                self.show_conversations()
        else:
            self.show_conversations()
        return True

    async def new_lesson(self) -> None:
        self.app.show_setup()
        title = (await self.read("topic: ") or "").strip()
        if not title:
            self.write("A lesson needs a topic.")
            self.app.show_home()
            return
        vocab = (await self.read("vocabulary (optional): ") or "").strip()
        level = (await self.read(f"level {'/'.join(LEVELS)} [{BEGINNER}]: ") or "").strip()
        setup = ConversationSetup(
            title=title, vocab=vocab, level=level if level in LEVELS else BEGINNER
        )
        self._shown = 0
        await self.app.start_lesson(setup)

    async def chat_command(self, line: str) -> None:
        if not line.startswith("/"):
            await self.say(line)
            return
        try:
            tokens = shlex.split(line[1:])
        except ValueError as e:
            self.write(f"Could not parse command: {e}")
            return
        command, args = (tokens[0], tokens[1:]) if tokens else ("", [])
        if command == "end":
            self.app.end_lesson()
            self._shown = 0
            self.show_conversations()
        elif command == "new":
            self.app.end_lesson()
            self._shown = 0
            await self.new_lesson()
        elif command == "settings":
            try:
                changes = parse_settings(args)
            except ValueError as e:
                self.write(str(e))
                return
            if await self.app.change_settings(changes):
                self.write(f"Lesson settings: {self.app.current_conversation.setup.model_dump()}")
        elif command == "lookup":
            term = self.app.select_word(args[0]) if args else None
            if term is None:
                self.write("Select a single word to look up.")
                return
            self.last_entry = await self.app.look_up(term)
            if self.last_entry is not None:
                entry = self.last_entry
                self.write(f"{entry.original} [{entry.ipa}] {entry.translation}")
                self.write(f"  {entry.definition}")
                self.write(f"  e.g. {entry.example}")
        elif command == "save":
            if self.last_entry is None:
                self.write("Look up a word first.")
            elif self.app.save_word(self.last_entry):
                self.write(f"Saved '{self.last_entry.original}'.")
            else:
                self.write(f"'{self.last_entry.original}' is already saved.")
        elif command == "words":
            self.show_words()
        else:
            self.write(__doc__)

    async def say(self, text: str) -> None:
        """Delivers ``text`` through the microphone path when it is free."""
        recognizer = self.app.speech.recognizer
        if isinstance(recognizer, speech.TextInput) and self.app.toggle_mic():
            recognizer.submit(text)
            await self.app.drain()
        else:
            await self.app.send_message(text)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_format)
    try:
        app = build_app(args)
    except ImportError as e:
        logger.error("provider_unavailable", llm=args.llm, error=str(e))
        print(f"The '{args.llm}' provider is not installed: {e}")
        return 1
    return asyncio.run(Console(app).run())


if __name__ == "__main__":
    raise SystemExit(main())
