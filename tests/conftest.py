from collections.abc import Callable

import pytest

from rwtelegram.core import QuestionBroker, TmuxBridge, WorkerState
from rwtelegram.settings import Config
from rwtelegram.telegram.router import CommandRouter
from tests.fakes import FakeTmux, FakeTransport, make_config


@pytest.fixture
def anyio_backend() -> str:
    return 'asyncio'


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def fake_tmux() -> FakeTmux:
    return FakeTmux()


@pytest.fixture
def state() -> WorkerState:
    return WorkerState()


@pytest.fixture
def broker(fake_transport: FakeTransport) -> QuestionBroker:
    return QuestionBroker(fake_transport)  # type: ignore[arg-type]


@pytest.fixture
def bridge(fake_tmux: FakeTmux, state: WorkerState, tmp_path, monkeypatch) -> TmuxBridge:
    monkeypatch.setattr(TmuxBridge, 'has_tmux', lambda self: True)
    return TmuxBridge(
        'test-session',
        'claude',
        workdir=lambda: state.resolve_workdir(str(tmp_path)),
        settle_delay=0,
        runner=fake_tmux,
    )


@pytest.fixture
def make_router(
    fake_transport: FakeTransport,
    broker: QuestionBroker,
    bridge: TmuxBridge,
    state: WorkerState,
    tmp_path,
) -> Callable[..., CommandRouter]:
    def _factory(config: Config | None = None, persist_verbose: Callable[[bool], None] | None = None) -> CommandRouter:
        config = config or make_config()
        config.tmux.workdir = config.tmux.workdir or str(tmp_path)
        return CommandRouter(
            config,
            fake_transport,  # type: ignore[arg-type]
            broker,
            bridge,
            state,
            persist_verbose=persist_verbose,
        )

    return _factory


