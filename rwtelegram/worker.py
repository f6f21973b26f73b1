"""Background worker process management."""

import logging
import os
import shutil
import signal
import socket
import subprocess
import sys
import time
from pathlib import Path

from rwtelegram.hooks import HookHTTPError, api_call
from rwtelegram.settings import LOG_FILE, PID_FILE, Config, read_worker_pid, remove_worker_pid

logger = logging.getLogger('rwtelegram')

STOP_GRACE = 2.0


def is_worker_healthy(config: Config) -> bool:
    """Check if a worker answers /health on the configured port."""
    try:
        return api_call(config, '/health', timeout=1).get('status') == 'ok'
    except (OSError, HookHTTPError, ValueError):
        return False


def start_worker_background(
    config: Config,
    verbose: bool = False,
    log_file: Path = LOG_FILE,
    timeout: float = 10.0,
) -> subprocess.Popen:
    """Start the worker detached from this terminal, logging to log_file."""
    exe = shutil.which('rwtelegram')
    cmd = [exe, 'serve'] if exe else [sys.executable, '-m', 'rwtelegram', 'serve']
    if verbose:
        cmd.append('--verbose')

    log_file.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    with open(log_file, 'ab') as log:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=log,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if is_worker_healthy(config):
            return proc
        if proc.poll() is not None:
            raise RuntimeError(f'Worker exited with status {proc.returncode}, see {log_file}')
        time.sleep(0.1)

    raise RuntimeError(f'Worker did not become healthy within {timeout:.0f}s, see {log_file}')


def is_port_in_use(host: str, port: int) -> bool:
    """True if something is already bound to host:port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return True
    return False


def ensure_worker(config: Config, verbose: bool = False) -> str | None:
    """Start the worker unless one already answers /health.

    Returns a note for the user, or None when a healthy worker was already
    running. Never raises for start failures.
    """
    if is_worker_healthy(config):
        return None

    port = config.server.port
    if is_port_in_use(config.server.host, port):
        return f'Telegram worker port {port} is in use but not responding. Stop the orphaned process.'

    try:
        proc = start_worker_background(config, verbose=verbose)
    except (RuntimeError, OSError) as e:
        logger.warning(f'Could not start worker: {e}')
        return f'Failed to start Telegram worker: {e}'

    logger.info(f'Worker started in the background (pid {proc.pid})')
    return 'Telegram worker started. Notifications will be sent to Telegram.'


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def stop_worker(pid_file: Path = PID_FILE, grace: float = STOP_GRACE) -> int | None:
    """SIGTERM the worker, SIGKILL it if still alive after grace seconds.

    Returns the PID that was stopped, or None if no worker was running.
    """
    pid = read_worker_pid(pid_file)
    if pid is None:
        return None

    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        remove_worker_pid(pid_file)
        return None

    deadline = time.monotonic() + grace
    while time.monotonic() < deadline:
        if not _alive(pid):
            break
        time.sleep(0.1)
    else:
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            pass

    remove_worker_pid(pid_file)
    return pid
