"""Terminal front end: renders engine callbacks and dispatches slash commands."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from chatiq.engine.engine import ChatEngine
from chatiq.llm.client import extract_key_points
from chatiq.llm.types import ImageAttachment

if TYPE_CHECKING:
    from chatiq.feedback.exporter import FeedbackExporter
    from chatiq.llm.client import CompletionClient
    from chatiq.llm.policies import QueryPolicy
    from chatiq.store.interface import RemoteStore
    from chatiq.store.local import LastSessionStore
    from chatiq.store.models import Message, Session

logger = logging.getLogger(__name__)

WELCOME = "Hi! How can I help you today?"
HELP = """\
Commands:
  /new                 start a new chat
  /sessions            list your chats
  /open N              open chat N from /sessions
  /delete N            delete chat N
  /image PATH [text]   send an image with an optional caption
  /good, /bad          rate the last answer
  /export              run the feedback export now
  /quit                exit"""


class TerminalApp:
    """Line-oriented chat UI. Implements ``EngineListener``."""

    def __init__(
        self,
        store: RemoteStore,
        completion: CompletionClient,
        *,
        local_state: LastSessionStore | None = None,
        content_filter: QueryPolicy | None = None,
        exporter: FeedbackExporter | None = None,
    ) -> None:
        self.engine = ChatEngine(
            store,
            completion,
            listener=self,
            local_state=local_state,
            content_filter=content_filter,
        )
        self._exporter = exporter
        self._sessions: list[Session] = []
        self._active_id: str | None = None
        self._seen: set[str] = set()
        self._replay = False
        self._last_bot: Message | None = None

    # -- EngineListener --------------------------------------------------------

    def on_session_list_changed(
        self, sessions: list[Session], active_session_id: str | None
    ) -> None:
        self._sessions = sessions
        self._active_id = active_session_id

    def on_message_list_changed(self, messages: list[Message]) -> None:
        if not messages:
            self._seen.clear()
            self._last_bot = None
            print(f"bot> {WELCOME}")
            return
        for message in messages:
            if message.id in self._seen:
                continue
            self._seen.add(message.id)
            if message.sender == "bot":
                self._last_bot = message
            if message.sender == "user" and not self._replay:
                continue
            self._print_message(message)
        self._replay = False

    def on_turn_completed(self, bot_message: Message) -> None:
        self._last_bot = bot_message
        if bot_message.id not in self._seen:
            self._seen.add(bot_message.id)
            self._print_message(bot_message)
        key_points = extract_key_points(bot_message.content)
        if key_points:
            print(key_points)

    def on_error(self, message: str) -> None:
        print(f"error> {message}")

    @staticmethod
    def _print_message(message: Message) -> None:
        speaker = "you" if message.sender == "user" else "bot"
        body = f"[image {message.mime_type}]" if message.is_image else message.content
        print(f"{speaker}> {body}")

    # -- Commands --------------------------------------------------------------

    def _print_sessions(self) -> None:
        if not self._sessions:
            print("No chat history.")
            return
        for index, session in enumerate(self._sessions, start=1):
            marker = "*" if session.id == self._active_id else " "
            print(f"{marker}{index:>3}. {session.display_title()}")

    def _session_at(self, arg: str) -> Session | None:
        try:
            index = int(arg) - 1
        except ValueError:
            return None
        if 0 <= index < len(self._sessions):
            return self._sessions[index]
        return None

    async def _open(self, arg: str) -> None:
        session = self._session_at(arg)
        if session is None:
            print("error> No such chat. Use /sessions to list them.")
            return
        self._seen.clear()
        self._replay = True
        if not await self.engine.select_session(session.id):
            self._replay = False

    async def _delete(self, arg: str) -> None:
        session = self._session_at(arg)
        if session is None:
            print("error> No such chat. Use /sessions to list them.")
            return
        if await self.engine.delete_session(session.id):
            print(f"Deleted '{session.display_title()}'.")

    async def _send_image(self, arg: str) -> None:
        path, _, caption = arg.partition(" ")
        if not path:
            print("error> Usage: /image PATH [caption]")
            return
        try:
            image = await asyncio.to_thread(ImageAttachment.from_path, path)
        except (OSError, ValueError) as exc:
            print(f"error> {exc}")
            return
        await self.engine.send(caption, image=image)

    async def _rate(self, kind: str) -> None:
        if self._last_bot is None or not self._last_bot.id:
            print("error> Nothing to rate yet.")
            return
        stored = await self.engine.record_feedback(
            self._last_bot.id, kind, self._last_bot.content
        )
        if stored:
            print(
                "Thanks for the feedback!" if kind == "helpful" else "Thanks, we'll review this."
            )

    async def _export(self) -> None:
        if self._exporter is None:
            print("error> Feedback export is not available.")
            return
        count = await self._exporter.run_once()
        print(f"Exported {count} feedback record(s).")

    async def handle_line(self, line: str) -> bool:
        """Process one input line. Returns False when the user quits."""
        line = line.strip()
        if not line:
            return True
        if not line.startswith("/"):
            await self.engine.send(line)
            return True

        command, _, arg = line.partition(" ")
        arg = arg.strip()
        if command in ("/quit", "/exit"):
            return False
        if command == "/help":
            print(HELP)
        elif command == "/new":
            self.engine.start_new_chat()
        elif command == "/sessions":
            self._print_sessions()
        elif command == "/open":
            await self._open(arg)
        elif command == "/delete":
            await self._delete(arg)
        elif command == "/image":
            await self._send_image(arg)
        elif command == "/good":
            await self._rate("helpful")
        elif command == "/bad":
            await self._rate("inaccurate")
        elif command == "/export":
            await self._export()
        else:
            print(f"error> Unknown command {command}. Try /help.")
        return True

    async def run(self, user_id: str) -> None:
        """Sign in and read commands until /quit or EOF."""
        await self.engine.sign_in(user_id)
        print(HELP)
        try:
            while True:
                try:
                    line = await asyncio.to_thread(input, "you> ")
                except EOFError:
                    break
                if not await self.handle_line(line):
                    break
        finally:
            self.engine.close()
