"""Thin request/response wrapper around the Telegram Bot API."""

import html
import logging
import re
from collections.abc import Awaitable
from typing import Any, TypeVar

from telegram import Bot, InlineKeyboardMarkup, LinkPreviewOptions, Message, Update, User
from telegram.constants import ParseMode
from telegram.error import BadRequest, TelegramError

from rwtelegram.errors import TransportError

logger = logging.getLogger('rwtelegram')

# Telegram rejects messages over 4096 characters; leave room for markup
MAX_CHUNK_LENGTH = 3500

ALLOWED_UPDATES = ['message', 'callback_query']

T = TypeVar('T')


def chunk_text(text: str, max_length: int = MAX_CHUNK_LENGTH) -> list[str]:
    """Split text into chunks of at most max_length, breaking on newlines.

    Text that already fits is returned as a single chunk. A single line
    longer than max_length is hard-split. Joining the chunks with '\\n'
    gives back the original text whenever no line had to be hard-split.
    """
    if len(text) <= max_length:
        return [text]

    chunks: list[str] = []
    buffer: str | None = None

    for line in text.split('\n'):
        candidate = line if buffer is None else f'{buffer}\n{line}'
        if len(candidate) <= max_length:
            buffer = candidate
            continue

        if buffer is not None:
            chunks.append(buffer)

        if len(line) > max_length:
            for i in range(0, len(line), max_length):
                chunks.append(line[i : i + max_length])
            buffer = None
        else:
            buffer = line

    if buffer is not None:
        chunks.append(buffer)

    return chunks or ['']


def strip_html(text: str) -> str:
    """Drop HTML tags, for resending a message Telegram could not parse."""
    return html.unescape(re.sub(r'<[^>]+>', '', text))


class ChatTransport:
    """Stateless wrapper over telegram.Bot bound to one chat.

    Every Telegram failure is re-raised as TransportError naming the method.
    """

    def __init__(self, bot_token: str, chat_id: int | str, bot: Bot | None = None) -> None:
        self.chat_id = chat_id
        self.bot = bot if bot is not None else Bot(bot_token)

    async def _call(self, method: str, request: Awaitable[T]) -> T:
        try:
            return await request
        except TelegramError as e:
            raise TransportError(method, str(e)) from e

    async def start(self) -> User:
        """Initialise the HTTP client and fetch the bot identity."""
        await self._call('getMe', self.bot.initialize())
        return await self.get_me()

    async def stop(self) -> None:
        await self.bot.shutdown()

    async def get_me(self) -> User:
        return await self._call('getMe', self.bot.get_me())

    async def send_message(self, text: str, chat_id: int | str | None = None) -> Message | None:
        """Send HTML text, split into chunks. Returns the last message sent."""
        target = chat_id if chat_id is not None else self.chat_id
        last: Message | None = None

        for chunk in chunk_text(text):
            if not chunk.strip():
                continue
            try:
                last = await self._call('sendMessage', self._send(target, chunk, ParseMode.HTML))
            except TransportError as e:
                if not isinstance(e.__cause__, BadRequest):
                    raise
                logger.warning(f'Failed to send HTML message, retrying as plain text: {e.detail}')
                last = await self._call('sendMessage', self._send(target, strip_html(chunk), None))

        return last

    def _send(self, chat_id: int | str, text: str, parse_mode: str | None, **kwargs: Any) -> Awaitable[Message]:
        return self.bot.send_message(
            chat_id=chat_id,
            text=text,
            parse_mode=parse_mode,
            link_preview_options=LinkPreviewOptions(is_disabled=True),
            **kwargs,
        )

    async def send_keyboard(
        self,
        text: str,
        keyboard: InlineKeyboardMarkup,
        chat_id: int | str | None = None,
    ) -> Message:
        """Send a single message with an inline keyboard attached.

        The keyboard cannot be split across messages, so overlong text is cut
        to one chunk instead of being chunked.
        """
        target = chat_id if chat_id is not None else self.chat_id
        if len(text) > MAX_CHUNK_LENGTH:
            text = text[: MAX_CHUNK_LENGTH - 3] + '...'

        try:
            return await self._call('sendMessage', self._send(target, text, ParseMode.HTML, reply_markup=keyboard))
        except TransportError as e:
            if not isinstance(e.__cause__, BadRequest):
                raise
            logger.warning(f'Failed to send HTML keyboard message, retrying as plain text: {e.detail}')
            return await self._call('sendMessage', self._send(target, strip_html(text), None, reply_markup=keyboard))

    async def edit_message(self, chat_id: int | str, message_id: int, text: str) -> Any:
        return await self._call(
            'editMessageText',
            self.bot.edit_message_text(
                text=text,
                chat_id=chat_id,
                message_id=message_id,
                parse_mode=ParseMode.HTML,
                link_preview_options=LinkPreviewOptions(is_disabled=True),
            ),
        )

    async def answer_callback(self, callback_query_id: str, text: str | None = None) -> bool:
        """Acknowledge a button press so the client stops its spinner."""
        return await self._call(
            'answerCallbackQuery',
            self.bot.answer_callback_query(callback_query_id=callback_query_id, text=text),
        )

    async def get_updates(self, offset: int, timeout: int = 50) -> list[Update]:
        """Long-poll for new messages and button presses."""
        updates = await self._call(
            'getUpdates',
            self.bot.get_updates(offset=offset, timeout=timeout, allowed_updates=ALLOWED_UPDATES),
        )
        return list(updates)
