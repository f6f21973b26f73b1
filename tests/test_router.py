import asyncio
from collections.abc import Callable

import pytest

from rwtelegram.core import Question, QuestionBroker, QuestionOption, WorkerState
from rwtelegram.telegram import router as router_module
from rwtelegram.telegram.keyboards import QuestionCallback, option_callback_data, other_callback_data
from rwtelegram.telegram.router import UNAUTHORIZED_TEXT, CommandRouter, is_user_allowed, parse_command
from rwtelegram.telegram.transport import MAX_CHUNK_LENGTH
from tests.fakes import STRANGER_ID, FakeTmux, FakeTransport, make_callback, make_config, make_message


@pytest.mark.parametrize(
    ('text', 'expected'),
    [
        ('/status', ('status', '')),
        ('/STATUS@my_bot', ('status', '')),
        ('/send  fix the  bug ', ('send', 'fix the  bug')),
        ('  /tmux_tail 100', ('tmux_tail', '100')),
        ('hello there', (None, 'hello there')),
        ('', (None, '')),
    ],
)
def test_parse_command(text: str, expected: tuple[str | None, str]) -> None:
    assert parse_command(text) == expected


def test_empty_allowlist_allows_everyone() -> None:
    assert is_user_allowed(5, set())
    assert is_user_allowed(5, {5})
    assert not is_user_allowed(6, {5})
    assert not is_user_allowed(None, {5})


async def _ask(broker: QuestionBroker, fake_transport: FakeTransport) -> tuple[asyncio.Task, str]:
    question = Question('Deploy?', [QuestionOption('Yes'), QuestionOption('No')])
    task = asyncio.create_task(broker.ask([question], timeout=5))
    await fake_transport.keyboard_sent.wait()
    return task, broker.store.pending()[-1].correlation_id


@pytest.mark.anyio
async def test_unauthorized_sender_changes_nothing(
    make_router: Callable[..., CommandRouter],
    fake_transport: FakeTransport,
    state: WorkerState,
) -> None:
    router = make_router()

    await router.handle_message(make_message('/cd /tmp', user_id=STRANGER_ID))
    await router.handle_message(make_message('/verbose on', user_id=STRANGER_ID))

    assert fake_transport.texts == [UNAUTHORIZED_TEXT, UNAUTHORIZED_TEXT]
    assert state.workdir_override is None
    assert router.config.notifications.verbose_mode is False


@pytest.mark.anyio
async def test_verbose_on_then_off(make_router: Callable[..., CommandRouter], fake_transport: FakeTransport) -> None:
    saved: list[bool] = []
    router = make_router(persist_verbose=saved.append)

    await router.handle_message(make_message('/verbose on'))
    assert router.config.notifications.verbose_mode is True

    await router.handle_message(make_message('/verbose status'))
    assert 'Current Mode:</b> 📢 Verbose' in fake_transport.texts[-1]

    await router.handle_message(make_message('/verbose off'))
    assert router.config.notifications.verbose_mode is False

    await router.handle_message(make_message('/verbose'))
    assert 'Current Mode:</b> 📋 Summary' in fake_transport.texts[-1]
    assert saved == [True, False]


@pytest.mark.anyio
async def test_verbose_toggle_and_bad_argument(
    make_router: Callable[..., CommandRouter],
    fake_transport: FakeTransport,
) -> None:
    router = make_router()

    await router.handle_message(make_message('/verbose toggle'))
    assert router.config.notifications.verbose_mode is True

    await router.handle_message(make_message('/verbose loud'))
    assert fake_transport.texts[-1].startswith('Usage: /verbose')
    assert router.config.notifications.verbose_mode is True


@pytest.mark.anyio
async def test_cancel_without_questions(make_router: Callable[..., CommandRouter], fake_transport: FakeTransport) -> None:
    await make_router().handle_message(make_message('/cancel'))
    assert fake_transport.texts == ['No pending questions to cancel.']


@pytest.mark.anyio
async def test_cancel_resolves_pending_ask(
    make_router: Callable[..., CommandRouter],
    broker: QuestionBroker,
    fake_transport: FakeTransport,
) -> None:
    task, _ = await _ask(broker, fake_transport)

    await make_router().handle_message(make_message('/cancel'))

    assert (await task).kind == 'cancelled'
    assert fake_transport.texts[-1] == '✅ All pending questions cancelled.'


@pytest.mark.anyio
async def test_unknown_command(make_router: Callable[..., CommandRouter], fake_transport: FakeTransport) -> None:
    await make_router().handle_message(make_message('/frobnicate now'))
    assert fake_transport.texts == ['Unknown command: /frobnicate\nUse /help to see available commands.']


@pytest.mark.anyio
async def test_plain_text_without_question_is_ignored(
    make_router: Callable[..., CommandRouter],
    fake_transport: FakeTransport,
) -> None:
    router = make_router()
    await router.handle_message(make_message('just chatting'))
    await router.handle_message(make_message(None))
    assert fake_transport.sent == []


@pytest.mark.anyio
async def test_help(make_router: Callable[..., CommandRouter], fake_transport: FakeTransport) -> None:
    await make_router().handle_message(make_message('/start'))
    assert '/tmux_start' in fake_transport.texts[0]


@pytest.mark.anyio
async def test_status_reports_counts(
    make_router: Callable[..., CommandRouter],
    fake_transport: FakeTransport,
    state: WorkerState,
) -> None:
    state.command_queue.append({'cmd': 'noop'})
    state.session.merge({'active': True})

    await make_router().handle_message(make_message('/status'))

    text = fake_transport.texts[0]
    assert '🟢 Active' in text
    assert 'Tmux Session: ⚪ Not running' in text
    assert 'Pending questions: 0' in text
    assert 'Queued commands: 1' in text


@pytest.mark.anyio
async def test_cd_sets_override_without_persisting(
    make_router: Callable[..., CommandRouter],
    fake_transport: FakeTransport,
    state: WorkerState,
) -> None:
    saved: list[bool] = []
    router = make_router(persist_verbose=saved.append)

    await router.handle_message(make_message('/cd /srv/app'))
    assert state.workdir_override == '/srv/app'
    assert router.workdir == '/srv/app'

    await router.handle_message(make_message('/cd'))
    assert '/srv/app' in fake_transport.texts[-1]
    assert 'Usage: /cd' in fake_transport.texts[-1]
    assert saved == []


@pytest.mark.anyio
async def test_send_prefixes_workdir_instruction(
    make_router: Callable[..., CommandRouter],
    fake_transport: FakeTransport,
    fake_tmux: FakeTmux,
    tmp_path,
) -> None:
    await make_router().handle_message(make_message('/send fix the login bug'))

    sent = fake_tmux.calls[-2][5]
    assert sent.startswith(f'First, read the CLAUDE.md file in {tmp_path} if it exists')
    assert sent.endswith('Then execute this task: fix the login bug')
    assert 'Use /tmux_tail to see response.' in fake_transport.texts[-1]


@pytest.mark.anyio
async def test_send_without_text_shows_usage(
    make_router: Callable[..., CommandRouter],
    fake_transport: FakeTransport,
    fake_tmux: FakeTmux,
) -> None:
    await make_router().handle_message(make_message('/send'))
    assert fake_transport.texts[0].startswith('Usage: /send')
    assert fake_tmux.calls == []


@pytest.mark.anyio
async def test_tmux_commands(
    make_router: Callable[..., CommandRouter],
    fake_transport: FakeTransport,
    fake_tmux: FakeTmux,
) -> None:
    router = make_router()

    await router.handle_message(make_message('/tmux_tail'))
    assert fake_transport.texts[-1] == '❌ Error: No tmux session running'

    await router.handle_message(make_message('/tmux_start'))
    assert fake_transport.texts[-1].startswith('✅ Claude tmux session started!')

    await router.handle_message(make_message('/tmux_start'))
    assert fake_transport.texts[-1] == 'ℹ️ Session already running'

    fake_tmux.pane = 'line <1>\n'
    await router.handle_message(make_message('/tmux_tail 5'))
    assert fake_transport.texts[-1] == '<b>Last 10 lines:</b>\n<pre>line &lt;1&gt;</pre>'

    await router.handle_message(make_message('/tmux_stop'))
    assert fake_transport.texts[-1] == '✅ Tmux session stopped.'

    await router.handle_message(make_message('/tmux_stop'))
    assert fake_transport.texts[-1] == 'ℹ️ No session running'


@pytest.mark.anyio
async def test_tmux_tail_fits_one_message_after_escaping(
    make_router: Callable[..., CommandRouter],
    fake_transport: FakeTransport,
    fake_tmux: FakeTmux,
) -> None:
    fake_tmux.running = True
    fake_tmux.pane = '<&>' * 1000

    await make_router().handle_message(make_message('/tmux_tail 50'))

    reply = fake_transport.texts[-1]
    assert len(fake_transport.sent) == 1
    assert len(reply) <= MAX_CHUNK_LENGTH
    assert reply.startswith('<b>Last 50 lines:</b>\n<pre>')
    assert reply.endswith('&lt;&amp;&gt;</pre>')


@pytest.mark.anyio
async def test_option_button_resolves_question(
    make_router: Callable[..., CommandRouter],
    broker: QuestionBroker,
    fake_transport: FakeTransport,
) -> None:
    task, correlation_id = await _ask(broker, fake_transport)

    await make_router().handle_callback(make_callback(option_callback_data(correlation_id, 0, 0)))

    result = await task
    assert result.kind == 'option'
    assert result.value == 'Yes'
    assert fake_transport.answers == [('cb-1', 'Response recorded')]
    assert fake_transport.texts[-1] == '✅ Selected: <b>Yes</b>'


@pytest.mark.anyio
async def test_other_button_then_free_text(
    make_router: Callable[..., CommandRouter],
    broker: QuestionBroker,
    fake_transport: FakeTransport,
) -> None:
    router = make_router()
    task, correlation_id = await _ask(broker, fake_transport)

    await router.handle_callback(make_callback(other_callback_data(correlation_id)))
    assert fake_transport.texts[-1] == '📝 Please type your response:'

    await router.handle_message(make_message('only on Friday'))

    result = await task
    assert result.kind == 'text'
    assert result.value == 'only on Friday'
    assert fake_transport.texts[-1] == '✅ Response received: "only on Friday"'


@pytest.mark.anyio
async def test_callback_errors_are_answered(
    make_router: Callable[..., CommandRouter],
    broker: QuestionBroker,
    fake_transport: FakeTransport,
) -> None:
    router = make_router()
    task, correlation_id = await _ask(broker, fake_transport)

    await router.handle_callback(make_callback('garbage', query_id='a'))
    await router.handle_callback(make_callback(option_callback_data(correlation_id, 0, 7), query_id='b'))
    await router.handle_callback(make_callback(option_callback_data('ask-gone-000000', 0, 0), query_id='c'))
    await router.handle_callback(make_callback(option_callback_data(correlation_id, 0, 0), STRANGER_ID, query_id='d'))

    assert fake_transport.answers == [
        ('a', 'Invalid button'),
        ('b', 'Invalid option'),
        ('c', 'Question expired'),
        ('d', 'Unauthorized'),
    ]
    assert broker.store.pending_count == 1
    broker.cancel_all()
    await task


@pytest.mark.anyio
async def test_callback_without_indices_is_rejected(
    make_router: Callable[..., CommandRouter],
    broker: QuestionBroker,
    fake_transport: FakeTransport,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    task, correlation_id = await _ask(broker, fake_transport)
    monkeypatch.setattr(router_module, 'parse_question_callback', lambda data: QuestionCallback(correlation_id))

    await make_router().handle_callback(make_callback('{}'))

    assert fake_transport.answers == [('cb-1', 'Invalid button')]
    assert broker.store.pending_count == 1
    broker.cancel_all()
    await task


@pytest.mark.anyio
async def test_empty_allowlist_router_accepts_anyone(
    make_router: Callable[..., CommandRouter],
    fake_transport: FakeTransport,
) -> None:
    config = make_config()
    config.telegram.allowed_user_ids = set()

    await make_router(config).handle_message(make_message('/help', user_id=STRANGER_ID))

    assert UNAUTHORIZED_TEXT not in fake_transport.texts
