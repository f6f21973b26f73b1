"""MCP server exposing the chat to the agent as tools.

Runs over stdio and talks to the already running worker through its
control API, so the agent can notify, ask and check the bridge directly.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Literal

import aiohttp
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError

from rwtelegram.settings import CONFIG_FILE, PID_FILE, Config, get_server_url, read_worker_pid

logger = logging.getLogger('rwtelegram')

ASK_TIMEOUT_MS = 300_000
# Added to the ask timeout so the worker's own 408 arrives first
HTTP_GRACE = 10.0
STATUS_TIMEOUT = 5.0

NotifyStatus = Literal['info', 'success', 'warning', 'error', 'working', 'done']


class WorkerClient:
    """Async client for the worker control API used by the MCP tools."""

    def __init__(self, config: Config, pid_file: Path = PID_FILE) -> None:
        self.config = config
        self.pid_file = pid_file

    async def _call(self, endpoint: str, payload: dict[str, Any] | None = None, timeout: float = STATUS_TIMEOUT) -> dict[str, Any]:
        if not self.config.is_configured():
            raise ToolError(
                f'Telegram bridge not configured: {", ".join(self.config.validate())}. Edit {CONFIG_FILE} to configure.'
            )

        url = f'{get_server_url(self.config)}{endpoint}'
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
                if payload is None:
                    async with session.get(url) as resp:
                        return await resp.json()
                async with session.post(url, json=payload) as resp:
                    return await resp.json()
        except asyncio.TimeoutError as e:
            raise ToolError(f'Telegram worker did not answer {endpoint} in time') from e
        except aiohttp.ClientConnectionError as e:
            logger.debug(f'[MCP] {endpoint} unreachable: {e}')
            raise ToolError('Telegram worker is not running. Start it with: rwtelegram start') from e

    async def notify(self, message: str, status: str = 'info') -> str:
        result = await self._call('/api/notify', {'message': message, 'status': status})
        if result.get('error'):
            raise ToolError(f'Failed to send notification: {result["error"]}')
        return 'Notification sent to Telegram successfully.'

    async def ask(self, question: str, options: list[str] | None = None, timeout: int = ASK_TIMEOUT_MS) -> str:
        """Ask one question and wait for the answer from the chat."""
        body = {
            'questions': [{'question': question, 'options': [{'label': label} for label in options or []]}],
            'timeout': timeout,
        }
        result = await self._call('/api/ask', body, timeout=timeout / 1000 + HTTP_GRACE)

        if result.get('error') == 'timeout':
            return 'User did not respond within the timeout period.'
        if result.get('error'):
            raise ToolError(f'Failed to ask user: {result["error"]}')

        response = result.get('response') or {}
        if response.get('type') == 'cancelled':
            return 'User cancelled the question.'
        return f'User responded: {response.get("value") or "No response"}'

    async def status(self) -> str:
        health = await self._call('/health')
        pid = read_worker_pid(self.pid_file)
        return '\n'.join(
            [
                'Telegram Worker Status:',
                f'- Status: Running (PID: {pid if pid else "unknown"})',
                f'- Uptime: {round(health.get("uptime") or 0)} seconds',
                f'- Port: {self.config.server.port}',
                f'- Chat ID: {self.config.telegram.chat_id}',
            ]
        )


def create_mcp_server(config: Config, pid_file: Path = PID_FILE) -> FastMCP:
    """Build the FastMCP server with the telegram_* tools registered."""
    client = WorkerClient(config, pid_file)
    mcp = FastMCP('rwtelegram')

    @mcp.tool()
    async def telegram_notify(message: str, status: NotifyStatus = 'info') -> str:
        """Send a notification message to Telegram.

        Use this to tell the user about progress or finished work.
        """
        return await client.notify(message, status)

    @mcp.tool()
    async def telegram_ask(question: str, options: list[str] | None = None, timeout: int = ASK_TIMEOUT_MS) -> str:
        """Ask the user a question via Telegram and wait for their response.

        options is an optional list of choices; timeout is in milliseconds.
        """
        return await client.ask(question, options, timeout)

    @mcp.tool()
    async def telegram_status() -> str:
        """Check the status of the Telegram worker and connection."""
        return await client.status()

    return mcp


def run_mcp_server(config: Config) -> None:
    """Serve the tools over stdio until the client disconnects."""
    create_mcp_server(config).run(transport='stdio')
