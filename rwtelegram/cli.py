"""CLI commands for rwtelegram."""

import asyncio
import json
import sys

import click

from rwtelegram import __version__
from rwtelegram.config import load_bridge_config, setup_logging
from rwtelegram.errors import ConfigInvalid, TransportError, WorkerError
from rwtelegram.settings import CONFIG_FILE, LOG_FILE, PID_FILE, read_worker_pid, save_verbose_mode


def _require_config():
    config = load_bridge_config()
    try:
        config.require_configured()
    except ConfigInvalid as e:
        click.echo(f'rwtelegram is not configured: {e}', err=True)
        click.echo(f'Edit {CONFIG_FILE} or set RWTELEGRAM_BOT_TOKEN / RWTELEGRAM_CHAT_ID.', err=True)
        sys.exit(1)
    return config


def _read_hook_input() -> dict:
    try:
        data = json.load(sys.stdin)
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


@click.group(invoke_without_command=True)
@click.option('--version', '-V', is_flag=True, help='Show version')
@click.pass_context
def main(ctx: click.Context, version: bool) -> None:
    """rwtelegram - Telegram bridge for Claude Code.

    \b
    Forwards agent notifications and questions to a Telegram chat and lets
    you drive a Claude session running in tmux from the chat.
    """
    if version:
        click.echo(f'rwtelegram {__version__}')
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@main.command()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
def serve(verbose: bool) -> None:
    """Run the worker in the foreground (HTTP API + Telegram poller)."""
    setup_logging(verbose)
    config = _require_config()

    from rwtelegram.server import run_worker

    click.echo(f'Starting rwtelegram worker on {config.server.host}:{config.server.port}...')
    try:
        asyncio.run(run_worker(config))
    except (WorkerError, TransportError) as e:
        click.echo(f'Error: {e}', err=True)
        sys.exit(1)


@main.command()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
def start(verbose: bool) -> None:
    """Start the worker in the background."""
    config = _require_config()

    from rwtelegram.worker import is_worker_healthy, start_worker_background

    pid = read_worker_pid()
    if pid is not None or is_worker_healthy(config):
        click.echo(f'Worker already running{f" (pid {pid})" if pid else ""}')
        return

    try:
        proc = start_worker_background(config, verbose=verbose)
    except RuntimeError as e:
        click.echo(f'Error: {e}', err=True)
        sys.exit(1)

    click.echo(f'Worker started (pid {proc.pid}), logging to {LOG_FILE}')


@main.command()
def stop() -> None:
    """Stop the background worker."""
    from rwtelegram.worker import stop_worker

    pid = stop_worker()
    if pid is None:
        click.echo('Worker not running')
    else:
        click.echo(f'Worker stopped (pid {pid})')


@main.command()
def status() -> None:
    """Show rwtelegram status."""
    from rwtelegram.worker import is_worker_healthy

    config = load_bridge_config()

    click.echo('rwtelegram Status')
    click.echo('─' * 40)

    if CONFIG_FILE.exists():
        click.echo(f'Config: {CONFIG_FILE}')
    else:
        click.echo('Config: Not found (using defaults / environment)')

    if config.telegram.bot_token:
        click.echo(f'Bot token: {config.telegram.bot_token[:10]}...')
    else:
        click.echo('Bot token: Not set')

    click.echo(f'Chat ID: {config.telegram.chat_id or "Not set"}')
    allowed = ', '.join(str(uid) for uid in sorted(config.telegram.allowed_user_ids))
    click.echo(f'Allowed users: {allowed or "everyone"}')
    click.echo(f'Server: {config.server.host}:{config.server.port}')
    click.echo(f'Tmux session: {config.tmux.session}')
    click.echo(f'Mode: {"verbose" if config.notifications.verbose_mode else "summary"}')

    pid = read_worker_pid()
    click.echo(f'PID file: {PID_FILE} ({pid if pid else "no worker"})')
    click.echo(f'Worker status: {"Running" if is_worker_healthy(config) else "Not running"}')


@main.command()
@click.argument('mode', required=False, type=click.Choice(['on', 'off']))
def verbose(mode: str | None) -> None:
    """Show or set the notification mode saved in the config file."""
    if mode is None:
        config = load_bridge_config()
        click.echo(f'Verbose mode: {"on" if config.notifications.verbose_mode else "off"}')
        return

    save_verbose_mode(mode == 'on')
    click.echo(f'Verbose mode: {mode} (restart the worker to apply)')


@main.command('notify-hook')
@click.argument('event_type')
def notify_hook(event_type: str) -> None:
    """Forward a hook event (stop, end, tool, ...) read from stdin to the worker."""
    from rwtelegram.hooks import run_notify_hook

    result = run_notify_hook(load_bridge_config(), event_type, _read_hook_input())
    click.echo(json.dumps(result))


@main.command('ask-hook')
def ask_hook() -> None:
    """Forward an AskUserQuestion call read from stdin and wait for the answer."""
    from rwtelegram.hooks import run_ask_hook

    result = run_ask_hook(load_bridge_config(), _read_hook_input())
    click.echo(json.dumps(result))


@main.command('ensure-worker')
def ensure_worker_hook() -> None:
    """SessionStart hook: start the worker if needed and record the session."""
    from rwtelegram.hooks import run_session_start_hook

    result = run_session_start_hook(load_bridge_config(), _read_hook_input())
    click.echo(json.dumps(result))


@main.command()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
def mcp(verbose: bool) -> None:
    """Run the MCP server (telegram_notify, telegram_ask, telegram_status) over stdio."""
    setup_logging(verbose)

    from rwtelegram.mcp_server import run_mcp_server

    run_mcp_server(load_bridge_config())
