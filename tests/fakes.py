"""Fakes and builders shared by the tests."""

import asyncio
from datetime import datetime, timezone
from typing import Any

from telegram import CallbackQuery, Chat, InlineKeyboardMarkup, Message, Update, User

from rwtelegram.core.tmux import ProcessResult
from rwtelegram.errors import TransportError
from rwtelegram.settings import Config

CHAT_ID = 1000
OWNER_ID = 42
STRANGER_ID = 7


class FakeTransport:
    """In-memory stand-in for ChatTransport."""

    def __init__(self) -> None:
        self.chat_id = CHAT_ID
        self.sent: list[tuple[int | str, str]] = []
        self.keyboards: list[tuple[str, InlineKeyboardMarkup]] = []
        self.answers: list[tuple[str, str | None]] = []
        self.batches: list[list[Update] | Exception] = []
        self.offsets: list[int] = []
        self.keyboard_error: Exception | None = None
        self.keyboard_sent = asyncio.Event()

    @property
    def texts(self) -> list[str]:
        return [text for _, text in self.sent]

    async def send_message(self, text: str, chat_id: int | str | None = None) -> None:
        self.sent.append((chat_id if chat_id is not None else self.chat_id, text))

    async def send_keyboard(self, text: str, keyboard: InlineKeyboardMarkup, chat_id: int | str | None = None) -> None:
        if self.keyboard_error is not None:
            raise self.keyboard_error
        self.keyboards.append((text, keyboard))
        self.keyboard_sent.set()

    async def answer_callback(self, callback_query_id: str, text: str | None = None) -> bool:
        self.answers.append((callback_query_id, text))
        return True

    async def get_updates(self, offset: int, timeout: int = 50) -> list[Update]:
        self.offsets.append(offset)
        if not self.batches:
            return []
        batch = self.batches.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return batch


class FakeTmux:
    """Records tmux invocations and simulates one session."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.running = False
        self.pane = ''
        self.fail_enter = False

    def subcommands(self) -> list[str]:
        return [call[1] for call in self.calls]

    async def __call__(self, *args: str, cwd: str | None = None) -> ProcessResult:
        self.calls.append(args)
        sub = args[1]
        if sub == 'has-session':
            return ProcessResult(0 if self.running else 1)
        if sub == 'new-session':
            self.running = True
        elif sub == 'kill-session':
            self.running = False
        elif sub == 'capture-pane':
            return ProcessResult(0, stdout=self.pane)
        elif sub == 'send-keys' and args[-1] == 'Enter' and self.fail_enter:
            return ProcessResult(1, stderr='unknown command: Enter')
        return ProcessResult(0)


def make_user(user_id: int = OWNER_ID) -> User:
    return User(id=user_id, first_name='Test', is_bot=False)


def make_message(text: str | None, user_id: int = OWNER_ID, message_id: int = 1) -> Message:
    return Message(
        message_id=message_id,
        date=datetime.now(timezone.utc),
        chat=Chat(id=CHAT_ID, type='private'),
        from_user=make_user(user_id),
        text=text,
    )


def make_callback(data: str, user_id: int = OWNER_ID, query_id: str = 'cb-1') -> CallbackQuery:
    return CallbackQuery(
        id=query_id,
        from_user=make_user(user_id),
        chat_instance='instance',
        data=data,
        message=make_message(None, user_id),
    )


def make_config(**overrides: Any) -> Config:
    config = Config()
    config.telegram.bot_token = '123:abc'
    config.telegram.chat_id = str(CHAT_ID)
    config.telegram.allowed_user_ids = {OWNER_ID}
    for key, value in overrides.items():
        setattr(config.notifications, key, value)
    return config


def transport_error(method: str = 'getUpdates') -> TransportError:
    return TransportError(method, 'network down')
