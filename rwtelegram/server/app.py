"""HTTP control API and worker entry point."""

import asyncio
import json
import logging
import os
import signal as sig
from pathlib import Path
from typing import Any

from aiohttp import web

from rwtelegram.core import AskTimeout, QuestionBroker, TmuxBridge, WorkerState
from rwtelegram.errors import RequestError, TransportError, WorkerError
from rwtelegram.settings import PID_FILE, Config, remove_worker_pid, save_verbose_mode, write_worker_pid
from rwtelegram.telegram.formatting import format_event, format_notification
from rwtelegram.telegram.poller import PollLoop
from rwtelegram.telegram.router import CommandRouter
from rwtelegram.telegram.transport import ChatTransport

from .requests import AskRequest, EventNotifyRequest, SessionUpdateRequest, parse_notify_request

logger = logging.getLogger('rwtelegram')

# Extra time allowed for the last long poll to return after shutdown
POLL_SHUTDOWN_GRACE = 5.0


async def _read_json(request: web.Request) -> dict[str, Any]:
    """Request body as a JSON object. An empty body reads as {}."""
    raw = await request.text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise RequestError('Invalid JSON') from e
    if not isinstance(data, dict):
        raise RequestError('JSON body must be an object')
    return data


@web.middleware
async def error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Render every failure as a JSON error body."""
    try:
        return await handler(request)
    except (web.HTTPNotFound, web.HTTPMethodNotAllowed):
        return web.json_response({'error': 'not found'}, status=404)
    except web.HTTPException:
        raise
    except RequestError as e:
        return web.json_response({'error': str(e)}, status=400)
    except Exception as e:
        logger.exception(f'[HTTP] {request.method} {request.path} failed')
        return web.json_response({'error': str(e)}, status=500)


# ─────────────────────────────────────────────────────────────────────────────
# HTTP Route Handlers
# ─────────────────────────────────────────────────────────────────────────────


async def handle_health(request: web.Request) -> web.Response:
    """Health check endpoint."""
    state: WorkerState = request.app['state']
    return web.json_response({'status': 'ok', 'uptime': round(state.uptime, 3)})


async def handle_notify(request: web.Request) -> web.Response:
    """Handle POST /api/notify from the notification hooks."""
    body = await _read_json(request)
    notify = parse_notify_request(body)

    config: Config = request.app['config']
    transport: ChatTransport = request.app['transport']

    if isinstance(notify, EventNotifyRequest):
        text = format_event(notify.event_type, notify.data, config.notifications.verbose_mode)
        if text is None:
            logger.debug(f'[NOTIFY] Skipped {notify.event_type} (summary mode)')
            return web.json_response({'success': True, 'skipped': True})
    else:
        text = format_notification(notify.message, notify.status, notify.project, notify.cwd)

    await transport.send_message(text)
    return web.json_response({'success': True})


async def handle_ask(request: web.Request) -> web.Response:
    """Send questions to the chat and block until they are answered or time out."""
    body = await _read_json(request)
    ask = AskRequest.from_dict(body)

    broker: QuestionBroker = request.app['broker']
    result = await broker.ask(ask.questions, ask.timeout)

    if isinstance(result, AskTimeout):
        return web.json_response({'error': 'timeout', 'correlationId': result.correlation_id}, status=408)
    return web.json_response({'success': True, 'response': result.to_dict()})


async def handle_response(request: web.Request) -> web.Response:
    """Non-blocking read-once lookup of a recorded response."""
    correlation_id = request.match_info['correlation_id']
    broker: QuestionBroker = request.app['broker']

    response = broker.store.take_response(correlation_id)
    if response is None:
        return web.json_response({'found': False})
    return web.json_response({'found': True, 'response': response.to_dict()})


async def handle_session(request: web.Request) -> web.Response:
    """Merge hook-reported session metadata."""
    body = await _read_json(request)
    update = SessionUpdateRequest.from_dict(body)

    state: WorkerState = request.app['state']
    state.session.merge(update.changes)
    logger.debug(f'[SESSION] Updated: {update.changes}')
    return web.json_response({'success': True, 'session': state.session.to_dict()})


async def handle_commands(request: web.Request) -> web.Response:
    """Drain queued remote commands."""
    state: WorkerState = request.app['state']
    return web.json_response({'commands': state.drain_commands()})


def create_app(
    config: Config,
    state: WorkerState,
    broker: QuestionBroker,
    transport: ChatTransport,
) -> web.Application:
    """Create the aiohttp application."""
    app = web.Application(middlewares=[error_middleware])
    app['config'] = config
    app['state'] = state
    app['broker'] = broker
    app['transport'] = transport

    app.router.add_get('/health', handle_health)
    app.router.add_post('/api/notify', handle_notify)
    app.router.add_post('/api/ask', handle_ask)
    app.router.add_get('/api/response/{correlation_id}', handle_response)
    app.router.add_post('/api/session', handle_session)
    app.router.add_get('/api/commands', handle_commands)

    return app


# ─────────────────────────────────────────────────────────────────────────────
# Worker lifecycle
# ─────────────────────────────────────────────────────────────────────────────


async def _notify_best_effort(transport: ChatTransport, message: str, status: str) -> None:
    try:
        await transport.send_message(format_notification(message, status))
    except TransportError as e:
        logger.warning(f'Could not send "{message}" notification: {e}')


async def run_worker(config: Config, pid_file: Path = PID_FILE) -> None:
    """Run the bot poller and the HTTP server until SIGINT/SIGTERM."""
    config.require_configured()

    transport = ChatTransport(config.telegram.bot_token, config.telegram.chat_id)
    state = WorkerState()
    broker = QuestionBroker(transport)
    bridge = TmuxBridge(
        config.tmux.session,
        config.tmux.command,
        workdir=lambda: state.resolve_workdir(config.tmux.workdir),
    )
    router = CommandRouter(config, transport, broker, bridge, state, persist_verbose=save_verbose_mode)
    poller = PollLoop(transport, router)

    me = await transport.start()
    logger.info(f'Bot @{me.username} initialised')

    http_app = create_app(config, state, broker, transport)
    runner = web.AppRunner(http_app)
    await runner.setup()
    site = web.TCPSite(runner, config.server.host, config.server.port)
    try:
        await site.start()
    except OSError as e:
        await runner.cleanup()
        await transport.stop()
        raise WorkerError(f'Cannot listen on {config.server.host}:{config.server.port}: {e}') from e

    logger.info(f'HTTP server listening on {config.server.host}:{config.server.port}')
    write_worker_pid(os.getpid(), pid_file)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (sig.SIGINT, sig.SIGTERM):
        loop.add_signal_handler(signum, shutdown_event.set)

    await _notify_best_effort(transport, 'Worker started', 'success')

    poll_task = asyncio.create_task(poller.run(shutdown_event))
    shutdown_task = asyncio.create_task(shutdown_event.wait())
    try:
        await asyncio.wait({poll_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        pass
    finally:
        logger.info('Shutting down...')
        shutdown_event.set()
        shutdown_task.cancel()
        for signum in (sig.SIGINT, sig.SIGTERM):
            loop.remove_signal_handler(signum)

        await _notify_best_effort(transport, 'Worker stopped', 'end')
        await runner.cleanup()

        try:
            await asyncio.wait_for(poll_task, timeout=poller.poll_timeout + POLL_SHUTDOWN_GRACE)
        except asyncio.TimeoutError:
            logger.warning('Poll loop did not stop in time')
        except Exception:
            logger.exception('Poll loop failed')

        await transport.stop()
        remove_worker_pid(pid_file)
        logger.info('Worker stopped')
