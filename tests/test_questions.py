import asyncio

import pytest

from rwtelegram.core import AskTimeout, Question, QuestionBroker, QuestionOption, Response
from rwtelegram.core import questions as questions_module
from rwtelegram.core.questions import PendingQuestion, QuestionStore, generate_correlation_id
from rwtelegram.errors import InvalidOption, QuestionExpired, TransportError
from tests.fakes import FakeTransport, transport_error


def _question() -> Question:
    return Question(
        prompt='Proceed?',
        options=[QuestionOption('Yes'), QuestionOption('No', description='stop here')],
    )


async def _start_ask(broker: QuestionBroker, fake_transport: FakeTransport, timeout: float = 5) -> tuple[asyncio.Task, str]:
    fake_transport.keyboard_sent.clear()
    task = asyncio.create_task(broker.ask([_question()], timeout=timeout))
    await fake_transport.keyboard_sent.wait()
    pending = broker.store.pending()[-1]
    return task, pending.correlation_id


def test_correlation_id_format() -> None:
    prefix, stamp, random_part = generate_correlation_id().split('-')
    assert prefix == 'ask'
    assert stamp.isalnum()
    assert len(random_part) == 6


def test_new_id_skips_retired_ids(monkeypatch: pytest.MonkeyPatch) -> None:
    ids = iter(['ask-1-aaaaaa', 'ask-1-aaaaaa', 'ask-1-bbbbbb'])
    monkeypatch.setattr(questions_module, 'generate_correlation_id', lambda prefix='ask': next(ids))
    store = QuestionStore()

    first = store.new_id()
    store.add(PendingQuestion(first, [_question()]))
    store.record(first, Response(kind='cancelled', value=None))

    assert store.new_id() == 'ask-1-bbbbbb'


def test_store_rejects_reused_id() -> None:
    store = QuestionStore()
    store.add(PendingQuestion('ask-x', [_question()]))
    store.expire('ask-x')

    with pytest.raises(ValueError):
        store.add(PendingQuestion('ask-x', [_question()]))


def test_retired_ids_are_bounded() -> None:
    store = QuestionStore(retired_limit=3)
    for i in range(5):
        store.add(PendingQuestion(f'ask-{i}', [_question()]))
        store.expire(f'ask-{i}')

    assert len(store._retired) == 3
    assert len(store._retired_order) == 3

    # The oldest ids fell out; the newest are still refused
    store.add(PendingQuestion('ask-0', [_question()]))
    with pytest.raises(ValueError):
        store.add(PendingQuestion('ask-4', [_question()]))


def test_record_only_once() -> None:
    store = QuestionStore()
    store.add(PendingQuestion('ask-x', [_question()]))

    assert store.record('ask-x', Response(kind='text', value='one'))
    assert not store.record('ask-x', Response(kind='text', value='two'))
    assert store.take_response('ask-x').value == 'one'
    assert store.take_response('ask-x') is None


@pytest.mark.anyio
async def test_option_reply_resolves_ask(broker: QuestionBroker, fake_transport: FakeTransport) -> None:
    task, correlation_id = await _start_ask(broker, fake_transport)

    text, keyboard = fake_transport.keyboards[0]
    assert 'Proceed?' in text
    assert correlation_id in keyboard.inline_keyboard[0][1].callback_data

    broker.resolve_option(correlation_id, 0, 1)
    result = await task

    assert isinstance(result, Response)
    assert result.kind == 'option'
    assert result.value == 'No'
    assert (result.question_index, result.option_index) == (0, 1)
    assert broker.store.pending_count == 0
    assert broker.store.take_response(correlation_id) is None


@pytest.mark.anyio
async def test_timeout_then_late_reply_is_ignored(broker: QuestionBroker, fake_transport: FakeTransport) -> None:
    result = await broker.ask([_question()], timeout=0.05)

    assert isinstance(result, AskTimeout)
    assert broker.store.pending_count == 0

    with pytest.raises(QuestionExpired):
        broker.resolve_option(result.correlation_id, 0, 0)
    assert broker.store.take_response(result.correlation_id) is None


@pytest.mark.anyio
async def test_ask_requires_questions(broker: QuestionBroker) -> None:
    with pytest.raises(ValueError):
        await broker.ask([], timeout=1)


@pytest.mark.anyio
async def test_send_failure_purges_pending(broker: QuestionBroker, fake_transport: FakeTransport) -> None:
    fake_transport.keyboard_error = transport_error('sendMessage')

    with pytest.raises(TransportError):
        await broker.ask([_question()], timeout=1)
    assert broker.store.pending_count == 0


@pytest.mark.anyio
async def test_invalid_option_keeps_question_pending(broker: QuestionBroker, fake_transport: FakeTransport) -> None:
    task, correlation_id = await _start_ask(broker, fake_transport)

    with pytest.raises(InvalidOption):
        broker.resolve_option(correlation_id, 0, 9)
    with pytest.raises(InvalidOption):
        broker.resolve_option(correlation_id, 3, 0)
    assert broker.store.pending_count == 1

    broker.resolve_option(correlation_id, 0, 0)
    assert (await task).value == 'Yes'


@pytest.mark.anyio
async def test_callback_without_id_uses_oldest_question(broker: QuestionBroker, fake_transport: FakeTransport) -> None:
    first, first_id = await _start_ask(broker, fake_transport)
    second, second_id = await _start_ask(broker, fake_transport)

    broker.resolve_option(None, 0, 0)

    assert (await first).value == 'Yes'
    assert broker.store.get(second_id) is not None
    broker.cancel_all()
    await second


@pytest.mark.anyio
async def test_free_text_reply(broker: QuestionBroker, fake_transport: FakeTransport) -> None:
    task, correlation_id = await _start_ask(broker, fake_transport)

    assert broker.resolve_free_text('not yet') is None

    broker.request_free_text(correlation_id)
    response = broker.resolve_free_text('use the staging db')

    assert response is not None
    result = await task
    assert result.kind == 'text'
    assert result.value == 'use the staging db'


@pytest.mark.anyio
async def test_cancel_all_resolves_every_ask(broker: QuestionBroker, fake_transport: FakeTransport) -> None:
    assert broker.cancel_all() == 0

    first, _ = await _start_ask(broker, fake_transport)
    second, _ = await _start_ask(broker, fake_transport)

    assert broker.cancel_all() == 2
    for task in (first, second):
        result = await task
        assert result.kind == 'cancelled'
        assert result.value is None


def test_response_wire_form() -> None:
    response = Response(kind='option', value='Yes', question_index=0, option_index=1, timestamp=1.5)

    assert response.to_dict() == {
        'type': 'option',
        'value': 'Yes',
        'timestamp': 1500,
        'questionIndex': 0,
        'optionIndex': 1,
    }
    assert 'questionIndex' not in Response(kind='text', value='hi').to_dict()
