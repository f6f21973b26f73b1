"""Chat command router: slash commands, free-text answers and button presses."""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from telegram import CallbackQuery, Message

from rwtelegram.core.questions import QuestionBroker
from rwtelegram.core.session import WorkerState
from rwtelegram.core.tmux import TmuxBridge, clamp_tail_lines
from rwtelegram.errors import BridgeError, InvalidCallback, InvalidOption, QuestionExpired
from rwtelegram.settings import Config

from .formatting import escape_html, escape_html_tail, truncate
from .keyboards import parse_question_callback
from .transport import MAX_CHUNK_LENGTH, ChatTransport

logger = logging.getLogger('rwtelegram')

UNAUTHORIZED_TEXT = '❌ Unauthorized. Your user ID is not in the allowed list.'

DEFAULT_TAIL_LINES = 50

HELP_TEXT = (
    '🤖 <b>Claude Code Telegram Bot</b>\n\n'
    '<b>Session Commands:</b>\n'
    '/status - Show current status\n'
    '/help - Show this help\n'
    '/cancel - Cancel pending questions\n'
    '/verbose [on|off|toggle|status] - Notification mode\n\n'
    '<b>Claude Control (tmux):</b>\n'
    '/cd &lt;path&gt; - Set working directory\n'
    '/tmux_start - Start Claude in tmux session\n'
    '/tmux_stop - Stop tmux session\n'
    '/tmux_tail [n] - Show last n lines (default 50)\n'
    '/send &lt;prompt&gt; - Send prompt to Claude\n\n'
    '<b>Notification Modes:</b>\n'
    '📢 Verbose: All events formatted nicely\n'
    '📋 Summary: Only important events (default)'
)

SEND_PROMPT_TEMPLATE = (
    'First, read the CLAUDE.md file in {workdir} if it exists to understand the project context. '
    'Then execute this task: {task}'
)


def parse_command(text: str | None) -> tuple[str | None, str]:
    """Split '/Cmd@bot args' into ('cmd', 'args'). Plain text gives (None, text)."""
    trimmed = (text or '').strip()
    if not trimmed.startswith('/'):
        return None, trimmed

    parts = trimmed.split(maxsplit=1)
    cmd = parts[0][1:].split('@', 1)[0].lower()
    rest = parts[1].strip() if len(parts) > 1 else ''
    return cmd, rest


def is_user_allowed(user_id: int | None, allowed_user_ids: set[int]) -> bool:
    """An empty allowlist allows everyone."""
    if not allowed_user_ids:
        return True
    return user_id is not None and user_id in allowed_user_ids


def mode_label(verbose: bool) -> str:
    return '📢 Verbose' if verbose else '📋 Summary'


CommandHandler = Callable[[int | str, str], Awaitable[None]]


class CommandRouter:
    """Handles every message and callback query delivered by the poll loop."""

    def __init__(
        self,
        config: Config,
        transport: ChatTransport,
        broker: QuestionBroker,
        bridge: TmuxBridge,
        state: WorkerState,
        persist_verbose: Callable[[bool], None] | None = None,
    ) -> None:
        self.config = config
        self.transport = transport
        self.broker = broker
        self.bridge = bridge
        self.state = state
        self._persist_verbose = persist_verbose

        self._commands: dict[str, CommandHandler] = {
            'start': self._handle_help,
            'help': self._handle_help,
            'status': self._handle_status,
            'cancel': self._handle_cancel,
            'verbose': self._handle_verbose,
            'tmux_start': self._handle_tmux_start,
            'tmux_stop': self._handle_tmux_stop,
            'tmux_tail': self._handle_tmux_tail,
            'cd': self._handle_cd,
            'send': self._handle_send,
        }

    @property
    def workdir(self) -> str:
        return self.state.resolve_workdir(self.config.tmux.workdir)

    def _is_allowed(self, user_id: int | None) -> bool:
        return is_user_allowed(user_id, self.config.telegram.allowed_user_ids)

    async def _reply(self, chat_id: int | str, text: str) -> None:
        await self.transport.send_message(text, chat_id=chat_id)

    # ─────────────────────────────────────────────────────────────────────────
    # Messages
    # ─────────────────────────────────────────────────────────────────────────

    async def handle_message(self, message: Message) -> None:
        """Route a text message to a command, a waiting question, or nowhere."""
        chat_id = message.chat.id
        user_id = message.from_user.id if message.from_user else None

        if not self._is_allowed(user_id):
            logger.warning(f'Rejected message from unauthorized user {user_id}')
            await self._reply(chat_id, UNAUTHORIZED_TEXT)
            return

        if message.text is None:
            return

        cmd, rest = parse_command(message.text)

        if cmd is None:
            response = self.broker.resolve_free_text(message.text)
            if response is not None:
                await self._reply(chat_id, f'✅ Response received: "{escape_html(message.text)}"')
            # No question is waiting for free text; stay silent
            return

        handler = self._commands.get(cmd)
        if handler is None:
            await self._reply(
                chat_id,
                f'Unknown command: /{escape_html(cmd)}\nUse /help to see available commands.',
            )
            return

        logger.info(f'[CMD] /{cmd} from {user_id}')
        await handler(chat_id, rest)

    async def _handle_help(self, chat_id: int | str, rest: str) -> None:
        await self._reply(chat_id, HELP_TEXT)

    async def _handle_status(self, chat_id: int | str, rest: str) -> None:
        session = self.state.session
        try:
            tmux_status = '🟢 Running' if await self.bridge.exists() else '⚪ Not running'
        except BridgeError as e:
            tmux_status = f'⚠️ {escape_html(str(e))}'

        lines = [
            '<b>Status</b>',
            '',
            f'Claude Session: {"🟢 Active" if session.active else "⚪ Inactive"}',
            f'Tmux Session: {tmux_status}',
            f'📂 Workdir: <code>{escape_html(self.workdir)}</code>',
            f'Mode: {mode_label(self.config.notifications.verbose_mode)}',
        ]
        if session.started_at:
            lines.append(f'Started: {escape_html(str(session.started_at))}')
        lines.extend(
            [
                '',
                f'Pending questions: {self.broker.store.pending_count}',
                f'Queued commands: {len(self.state.command_queue)}',
            ]
        )
        await self._reply(chat_id, '\n'.join(lines))

    async def _handle_cancel(self, chat_id: int | str, rest: str) -> None:
        cancelled = self.broker.cancel_all()
        if cancelled == 0:
            await self._reply(chat_id, 'No pending questions to cancel.')
        else:
            await self._reply(chat_id, '✅ All pending questions cancelled.')

    def _set_verbose(self, enabled: bool) -> None:
        self.config.notifications.verbose_mode = enabled
        if self._persist_verbose is not None:
            try:
                self._persist_verbose(enabled)
            except OSError as e:
                logger.warning(f'Could not save verbose mode: {e}')

    async def _handle_verbose(self, chat_id: int | str, rest: str) -> None:
        arg = rest.lower()

        if arg in ('on', 'true'):
            self._set_verbose(True)
            await self._reply(
                chat_id,
                '📢 <b>Verbose Mode: ON</b>\n\nAll tool events will be sent (formatted nicely):\n'
                '🔨 Bash commands\n📝 File edits\n📖 File reads\n🤖 Agent spawns',
            )
        elif arg in ('off', 'false'):
            self._set_verbose(False)
            await self._reply(
                chat_id,
                '📋 <b>Summary Mode: ON</b>\n\nOnly important events will be sent:\n'
                '✅ Task complete\n❌ Errors\n❓ Questions\n📋 Plan ready',
            )
        elif arg == 'toggle':
            self._set_verbose(not self.config.notifications.verbose_mode)
            await self._reply(chat_id, f'<b>Mode changed to:</b> {mode_label(self.config.notifications.verbose_mode)}')
        elif arg in ('', 'status'):
            await self._reply(
                chat_id,
                f'<b>Current Mode:</b> {mode_label(self.config.notifications.verbose_mode)}\n\n'
                'Use:\n/verbose on - Enable verbose mode\n/verbose off - Enable summary mode',
            )
        else:
            await self._reply(chat_id, 'Usage: /verbose [on|off|toggle|status]')

    async def _handle_tmux_start(self, chat_id: int | str, rest: str) -> None:
        try:
            started = await self.bridge.start()
        except BridgeError as e:
            await self._reply(chat_id, f'❌ Error: {escape_html(str(e))}')
            return

        if started:
            await self._reply(chat_id, '✅ Claude tmux session started!\nUse /send &lt;prompt&gt; to send commands.')
        else:
            await self._reply(chat_id, 'ℹ️ Session already running')

    async def _handle_tmux_stop(self, chat_id: int | str, rest: str) -> None:
        try:
            stopped = await self.bridge.stop()
        except BridgeError as e:
            await self._reply(chat_id, f'❌ Error: {escape_html(str(e))}')
            return

        await self._reply(chat_id, '✅ Tmux session stopped.' if stopped else 'ℹ️ No session running')

    async def _handle_tmux_tail(self, chat_id: int | str, rest: str) -> None:
        try:
            requested = int(rest.split()[0]) if rest else DEFAULT_TAIL_LINES
        except ValueError:
            requested = DEFAULT_TAIL_LINES
        lines = clamp_tail_lines(requested)

        try:
            output = await self.bridge.tail(lines)
        except BridgeError as e:
            await self._reply(chat_id, f'❌ Error: {escape_html(str(e))}')
            return

        if not output:
            await self._reply(chat_id, 'No output captured.')
            return

        header = f'<b>Last {lines} lines:</b>\n'
        budget = MAX_CHUNK_LENGTH - len(header) - len('<pre></pre>')
        await self._reply(chat_id, f'{header}<pre>{escape_html_tail(output, budget)}</pre>')

    async def _handle_cd(self, chat_id: int | str, rest: str) -> None:
        if not rest:
            await self._reply(
                chat_id,
                f'Current workdir: <code>{escape_html(self.workdir)}</code>\n\nUsage: /cd &lt;path&gt;',
            )
            return

        self.state.workdir_override = rest
        await self._reply(chat_id, f'✅ Workdir changed to:\n<code>{escape_html(rest)}</code>')

    async def _handle_send(self, chat_id: int | str, rest: str) -> None:
        workdir = self.workdir
        if not rest:
            await self._reply(
                chat_id,
                'Usage: /send &lt;prompt&gt;\n\nExample: /send Fix the bug in auth.py\n\n'
                f'Current workdir: <code>{escape_html(workdir)}</code>\n'
                'Use /cd &lt;path&gt; to change directory first.\n\n'
                '<i>Note: Claude will read CLAUDE.md first before executing.</i>',
            )
            return

        try:
            await self.bridge.send(SEND_PROMPT_TEMPLATE.format(workdir=workdir, task=rest))
        except BridgeError as e:
            await self._reply(chat_id, f'❌ Error: {escape_html(str(e))}')
            return

        await self._reply(
            chat_id,
            '✅ Sent to Claude:\n\n'
            f'📂 Path: <code>{escape_html(workdir)}</code>\n'
            '📄 Will read: <code>CLAUDE.md</code>\n'
            f'💬 Task: <code>{escape_html(truncate(rest, 120))}</code>\n\n'
            'Use /tmux_tail to see response.',
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Callback queries
    # ─────────────────────────────────────────────────────────────────────────

    async def handle_callback(self, query: CallbackQuery) -> None:
        """Handle a press on a question keyboard."""
        user_id = query.from_user.id if query.from_user else None
        chat_id: Any = query.message.chat.id if query.message else self.transport.chat_id

        if not self._is_allowed(user_id):
            logger.warning(f'Rejected button press from unauthorized user {user_id}')
            await self.transport.answer_callback(query.id, 'Unauthorized')
            return

        try:
            callback = parse_question_callback(query.data)
        except InvalidCallback as e:
            logger.warning(f'[CALLBACK] {e}')
            await self.transport.answer_callback(query.id, 'Invalid button')
            return

        if callback.other:
            try:
                self.broker.request_free_text(callback.correlation_id)
            except QuestionExpired:
                await self.transport.answer_callback(query.id, 'Question expired')
                return
            await self.transport.answer_callback(query.id)
            await self._reply(chat_id, '📝 Please type your response:')
            return

        if callback.question_index is None or callback.option_index is None:
            await self.transport.answer_callback(query.id, 'Invalid button')
            return

        try:
            response = self.broker.resolve_option(
                callback.correlation_id,
                callback.question_index,
                callback.option_index,
            )
        except QuestionExpired:
            await self.transport.answer_callback(query.id, 'Question expired')
            return
        except InvalidOption:
            await self.transport.answer_callback(query.id, 'Invalid option')
            return

        await self.transport.answer_callback(query.id, 'Response recorded')
        await self._reply(chat_id, f'✅ Selected: <b>{escape_html(response.value or "")}</b>')
