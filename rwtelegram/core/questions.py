"""Question/response correlation for the ask protocol.

A question set is sent to Telegram with an inline keyboard and the caller
waits until a button press, a free-text reply or /cancel records a Response
for its correlation ID, or until the timeout expires.
"""

import asyncio
import logging
import secrets
import time
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from rwtelegram.errors import InvalidOption, QuestionExpired
from rwtelegram.telegram.formatting import format_questions
from rwtelegram.telegram.keyboards import create_question_keyboard

if TYPE_CHECKING:
    from rwtelegram.telegram.transport import ChatTransport

logger = logging.getLogger('rwtelegram')

ResponseKind = Literal['text', 'option', 'cancelled']

_BASE36 = '0123456789abcdefghijklmnopqrstuvwxyz'

# How many resolved or expired IDs are remembered to refuse reuse
RETIRED_LIMIT = 1024


@dataclass
class QuestionOption:
    label: str
    description: str | None = None


@dataclass
class Question:
    """One prompt with its selectable options."""

    prompt: str
    options: list[QuestionOption] = field(default_factory=list)
    header: str | None = None


@dataclass
class Response:
    """A recorded answer to a pending question."""

    kind: ResponseKind
    value: str | None
    question_index: int | None = None
    option_index: int | None = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        """Wire form returned by the control API."""
        data: dict[str, Any] = {
            'type': self.kind,
            'value': self.value,
            'timestamp': int(self.timestamp * 1000),
        }
        if self.question_index is not None:
            data['questionIndex'] = self.question_index
        if self.option_index is not None:
            data['optionIndex'] = self.option_index
        return data


@dataclass
class PendingQuestion:
    """Tracks a question set waiting for an answer from Telegram."""

    correlation_id: str
    questions: list[Question]
    created_at: float = field(default_factory=time.time)
    awaiting_free_text: bool = False
    event: asyncio.Event = field(default_factory=asyncio.Event)


@dataclass
class AskTimeout:
    """Returned by QuestionBroker.ask when nobody answered in time."""

    correlation_id: str


def _base36(number: int) -> str:
    digits = ''
    while number:
        number, rem = divmod(number, 36)
        digits = _BASE36[rem] + digits
    return digits or '0'


def generate_correlation_id(prefix: str = 'ask') -> str:
    """Generate an ID like ask-m2x1k9qz-4f8a0c."""
    random_part = ''.join(secrets.choice(_BASE36) for _ in range(6))
    return f'{prefix}-{_base36(int(time.time() * 1000))}-{random_part}'


class QuestionStore:
    """Owned registry of pending questions and recorded responses.

    All mutation happens on the event loop thread, so no locking is needed.
    The most recent `retired_limit` correlation IDs that have been resolved
    or expired are remembered and never handed out again.
    """

    def __init__(self, retired_limit: int = RETIRED_LIMIT) -> None:
        self._pending: dict[str, PendingQuestion] = {}  # insertion ordered
        self._responses: dict[str, Response] = {}
        self._retired: set[str] = set()
        self._retired_order: deque[str] = deque()
        self.retired_limit = retired_limit

    def _retire(self, correlation_id: str) -> None:
        if correlation_id in self._retired:
            return
        if len(self._retired_order) >= self.retired_limit:
            self._retired.discard(self._retired_order.popleft())
        self._retired_order.append(correlation_id)
        self._retired.add(correlation_id)

    def new_id(self) -> str:
        """Return a correlation ID that has never been used by this store."""
        while True:
            correlation_id = generate_correlation_id()
            if correlation_id not in self._pending and correlation_id not in self._retired:
                return correlation_id

    def add(self, pending: PendingQuestion) -> None:
        if pending.correlation_id in self._pending or pending.correlation_id in self._retired:
            raise ValueError(f'Correlation ID already used: {pending.correlation_id}')
        self._pending[pending.correlation_id] = pending

    def get(self, correlation_id: str) -> PendingQuestion | None:
        return self._pending.get(correlation_id)

    def first(self) -> PendingQuestion | None:
        """Oldest pending question, or None."""
        return next(iter(self._pending.values()), None)

    def first_awaiting_free_text(self) -> PendingQuestion | None:
        return next((p for p in self._pending.values() if p.awaiting_free_text), None)

    def pending(self) -> list[PendingQuestion]:
        return list(self._pending.values())

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def record(self, correlation_id: str, response: Response) -> bool:
        """Resolve a pending question. Returns False if it is no longer pending."""
        pending = self._pending.pop(correlation_id, None)
        if pending is None:
            return False
        self._retire(correlation_id)
        self._responses[correlation_id] = response
        pending.event.set()
        return True

    def take_response(self, correlation_id: str) -> Response | None:
        """Read-once access to a recorded response."""
        return self._responses.pop(correlation_id, None)

    def expire(self, correlation_id: str) -> None:
        """Drop a pending question whose asker gave up waiting."""
        self._pending.pop(correlation_id, None)
        self._retire(correlation_id)


class QuestionBroker:
    """Implements ask(): send questions to Telegram and wait for the answer."""

    def __init__(self, transport: 'ChatTransport', store: QuestionStore | None = None) -> None:
        self.transport = transport
        self.store = store if store is not None else QuestionStore()

    async def ask(self, questions: list[Question], timeout: float) -> Response | AskTimeout:
        """Send questions and wait up to `timeout` seconds for a Response."""
        if not questions:
            raise ValueError('questions must not be empty')

        correlation_id = self.store.new_id()
        pending = PendingQuestion(correlation_id=correlation_id, questions=questions)
        self.store.add(pending)
        logger.info(f'[ASK] {correlation_id}: {len(questions)} question(s), timeout={timeout}s')

        try:
            await self.transport.send_keyboard(
                format_questions(questions),
                create_question_keyboard(correlation_id, questions),
            )
        except Exception:
            self.store.expire(correlation_id)
            raise

        try:
            await asyncio.wait_for(pending.event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass

        response = self.store.take_response(correlation_id)
        if response is not None:
            logger.info(f'[ASK] {correlation_id}: answered ({response.kind})')
            return response

        if pending.event.is_set():
            logger.warning(f'[ASK] {correlation_id}: response already consumed via /api/response')
        else:
            logger.info(f'[ASK] {correlation_id}: timed out')
        self.store.expire(correlation_id)
        return AskTimeout(correlation_id=correlation_id)

    def _lookup(self, correlation_id: str | None) -> PendingQuestion:
        pending = self.store.get(correlation_id) if correlation_id else self.store.first()
        if pending is None:
            raise QuestionExpired(correlation_id or '')
        return pending

    def resolve_option(self, correlation_id: str | None, question_index: int, option_index: int) -> Response:
        """Record the option picked on the inline keyboard."""
        pending = self._lookup(correlation_id)

        if not 0 <= question_index < len(pending.questions):
            raise InvalidOption(f'question {question_index}')
        options = pending.questions[question_index].options
        if not 0 <= option_index < len(options):
            raise InvalidOption(f'option {option_index}')

        response = Response(
            kind='option',
            value=options[option_index].label,
            question_index=question_index,
            option_index=option_index,
        )
        self.store.record(pending.correlation_id, response)
        return response

    def request_free_text(self, correlation_id: str | None) -> PendingQuestion:
        """Mark a question as waiting for a typed reply ("Other" button)."""
        pending = self._lookup(correlation_id)
        pending.awaiting_free_text = True
        return pending

    def resolve_free_text(self, text: str) -> Response | None:
        """Consume a plain chat message as the answer to a waiting question."""
        pending = self.store.first_awaiting_free_text()
        if pending is None:
            return None
        pending.awaiting_free_text = False
        response = Response(kind='text', value=text)
        self.store.record(pending.correlation_id, response)
        return response

    def cancel_all(self) -> int:
        """Resolve every pending question as cancelled. Returns how many."""
        pending = self.store.pending()
        for question in pending:
            self.store.record(question.correlation_id, Response(kind='cancelled', value=None))
        return len(pending)
