"""Bridge to the agent running inside a named tmux session.

Every operation shells out to tmux on its own; nothing is cached between
calls, so session existence is always re-checked.
"""

import asyncio
import logging
import re
import shutil
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from rwtelegram.errors import BridgeError, BridgeUnavailable

logger = logging.getLogger('rwtelegram')

MAX_INPUT_LENGTH = 4000
MIN_TAIL_LINES = 10
MAX_TAIL_LINES = 500

ANSI_ESCAPE_RE = re.compile(r'\x1b\[[0-9;]*[a-zA-Z]')


@dataclass
class ProcessResult:
    returncode: int
    stdout: str = ''
    stderr: str = ''

    @property
    def output(self) -> str:
        return (self.stderr or self.stdout).strip()


Runner = Callable[..., Awaitable[ProcessResult]]


async def run_process(*args: str, cwd: str | None = None) -> ProcessResult:
    """Run a command to completion and capture its output."""
    proc = await asyncio.create_subprocess_exec(
        *args,
        cwd=cwd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await proc.communicate()
    return ProcessResult(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode('utf-8', errors='replace'),
        stderr=stderr.decode('utf-8', errors='replace'),
    )


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences."""
    return ANSI_ESCAPE_RE.sub('', text)


def clamp_tail_lines(lines: int) -> int:
    return max(MIN_TAIL_LINES, min(MAX_TAIL_LINES, lines))


class TmuxBridge:
    """Start, feed, inspect and kill the bridged agent session."""

    def __init__(
        self,
        session_name: str,
        command: str,
        workdir: Callable[[], str],
        settle_delay: float = 1.0,
        runner: Runner = run_process,
    ) -> None:
        self.session_name = session_name
        self.command = command
        self._workdir = workdir
        self.settle_delay = settle_delay
        self._run = runner

    async def _tmux(self, *args: str, cwd: str | None = None) -> ProcessResult:
        try:
            return await self._run('tmux', *args, cwd=cwd)
        except FileNotFoundError as e:
            raise BridgeUnavailable('tmux not found. Install tmux first.') from e

    def has_tmux(self) -> bool:
        return shutil.which('tmux') is not None

    async def exists(self) -> bool:
        """Check whether the tmux session is running right now."""
        result = await self._tmux('has-session', '-t', self.session_name)
        return result.returncode == 0

    async def start(self) -> bool:
        """Launch the agent in a new detached session. Returns False if already running."""
        if not self.has_tmux():
            raise BridgeUnavailable('tmux not found. Install tmux first.')

        if await self.exists():
            return False

        workdir = self._workdir()
        if not Path(workdir).is_dir():
            raise BridgeUnavailable(f'Workdir does not exist: {workdir}')

        result = await self._tmux(
            'new-session',
            '-d',
            '-s',
            self.session_name,
            '-c',
            workdir,
            'bash',
            '-lc',
            self.command,
            cwd=workdir,
        )
        if result.returncode != 0:
            raise BridgeError(f'Failed to start tmux: {result.output}')

        logger.info(f'[TMUX] Started session {self.session_name} in {workdir}')
        return True

    async def send(self, text: str) -> None:
        """Type a line into the session, starting it first if needed."""
        if not text:
            raise BridgeError('No text to send')

        if not await self.exists():
            await self.start()
            # Give the agent time to come up before typing into it
            await asyncio.sleep(self.settle_delay)

        # Literal mode so tmux never parses the text as key names or a trailing ';'
        result = await self._tmux('send-keys', '-t', self.session_name, '-l', text[:MAX_INPUT_LENGTH])
        if result.returncode != 0:
            raise BridgeError(f'tmux send-keys failed: {result.output}')

        result = await self._tmux('send-keys', '-t', self.session_name, 'Enter')
        if result.returncode != 0:
            raise BridgeError(f'tmux send-keys failed: {result.output}')

    async def tail(self, lines: int = 50) -> str:
        """Capture the last `lines` lines of the pane with ANSI codes removed."""
        if not await self.exists():
            raise BridgeUnavailable('No tmux session running')

        n = clamp_tail_lines(lines)
        result = await self._tmux('capture-pane', '-p', '-t', self.session_name, '-S', f'-{n}')
        if result.returncode != 0:
            raise BridgeError(f'tmux capture-pane failed: {result.output}')

        return strip_ansi(result.stdout).rstrip()

    async def stop(self) -> bool:
        """Kill the session. Returns False if it was not running."""
        if not await self.exists():
            return False

        result = await self._tmux('kill-session', '-t', self.session_name)
        if result.returncode != 0:
            raise BridgeError(f'tmux kill-session failed: {result.output}')

        logger.info(f'[TMUX] Stopped session {self.session_name}')
        return True
