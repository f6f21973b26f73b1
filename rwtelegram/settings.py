"""Configuration management for rwtelegram.

Config is stored in ~/.config/rwtelegram/config.toml, next to the worker's
PID file and log file.
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import tomli_w

from rwtelegram.errors import ConfigInvalid


CONFIG_DIR = Path.home() / '.config' / 'rwtelegram'
CONFIG_FILE = CONFIG_DIR / 'config.toml'
PID_FILE = CONFIG_DIR / 'worker.pid'
LOG_FILE = CONFIG_DIR / 'worker.log'

DEFAULT_PORT = 37778
DEFAULT_TMUX_SESSION = 'claude-telegram'
DEFAULT_CLAUDE_CMD = 'claude --dangerously-skip-permissions'


@dataclass
class TelegramConfig:
    bot_token: str = ''
    chat_id: str = ''
    allowed_user_ids: set[int] = field(default_factory=set)


@dataclass
class ServerConfig:
    host: str = '127.0.0.1'
    port: int = DEFAULT_PORT


@dataclass
class TmuxConfig:
    session: str = DEFAULT_TMUX_SESSION
    command: str = DEFAULT_CLAUDE_CMD
    workdir: str = ''


@dataclass
class NotificationsConfig:
    verbose_mode: bool = False
    ask_via_telegram: bool = True
    on_stop: bool = True
    on_session_end: bool = True


@dataclass
class Config:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    tmux: TmuxConfig = field(default_factory=TmuxConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)

    def validate(self) -> list[str]:
        """Return a list of problems that prevent the worker from running."""
        errors = []
        if not self.telegram.bot_token:
            errors.append('bot_token is required')
        if not self.telegram.chat_id:
            errors.append('chat_id is required')
        return errors

    def is_configured(self) -> bool:
        """Check if the worker has everything it needs to start."""
        return not self.validate()

    def require_configured(self) -> None:
        """Raise ConfigInvalid if bot credentials are missing."""
        errors = self.validate()
        if errors:
            raise ConfigInvalid(errors)

    def to_dict(self) -> dict:
        """Convert config to dict for TOML serialization."""
        return {
            'telegram': {
                'bot_token': self.telegram.bot_token,
                'chat_id': self.telegram.chat_id,
                'allowed_user_ids': sorted(self.telegram.allowed_user_ids),
            },
            'server': {
                'host': self.server.host,
                'port': self.server.port,
            },
            'tmux': {
                'session': self.tmux.session,
                'command': self.tmux.command,
                'workdir': self.tmux.workdir,
            },
            'notifications': {
                'verbose_mode': self.notifications.verbose_mode,
                'ask_via_telegram': self.notifications.ask_via_telegram,
                'on_stop': self.notifications.on_stop,
                'on_session_end': self.notifications.on_session_end,
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Config':
        """Create config from dict."""
        config = cls()

        if 'telegram' in data:
            tg = data['telegram']
            config.telegram.bot_token = tg.get('bot_token', '')
            config.telegram.chat_id = str(tg.get('chat_id', ''))
            config.telegram.allowed_user_ids = {int(uid) for uid in tg.get('allowed_user_ids', [])}

        if 'server' in data:
            srv = data['server']
            config.server.host = srv.get('host', '127.0.0.1')
            config.server.port = int(srv.get('port', DEFAULT_PORT))

        if 'tmux' in data:
            tm = data['tmux']
            config.tmux.session = tm.get('session', DEFAULT_TMUX_SESSION)
            config.tmux.command = tm.get('command', DEFAULT_CLAUDE_CMD)
            config.tmux.workdir = tm.get('workdir', '')

        if 'notifications' in data:
            nt = data['notifications']
            config.notifications.verbose_mode = bool(nt.get('verbose_mode', False))
            config.notifications.ask_via_telegram = bool(nt.get('ask_via_telegram', True))
            config.notifications.on_stop = bool(nt.get('on_stop', True))
            config.notifications.on_session_end = bool(nt.get('on_session_end', True))

        return config


def load_config(path: Path = CONFIG_FILE) -> Config:
    """Load config from file, or return defaults if not exists."""
    if not path.exists():
        return Config()

    with open(path, 'rb') as f:
        data = tomllib.load(f)

    return Config.from_dict(data)


def save_config(config: Config, path: Path = CONFIG_FILE) -> None:
    """Save config to file, readable only by the current user."""
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    with open(path, 'wb') as f:
        tomli_w.dump(config.to_dict(), f)
    path.chmod(0o600)


def save_verbose_mode(enabled: bool, path: Path = CONFIG_FILE) -> None:
    """Persist only the verbose flag, leaving other on-disk values untouched."""
    config = load_config(path)
    config.notifications.verbose_mode = enabled
    save_config(config, path)


def get_server_url(config: Config) -> str:
    """Get the worker's control API base URL."""
    return f'http://{config.server.host}:{config.server.port}'


# ─────────────────────────────────────────────────────────────────────────────
# PID file
# ─────────────────────────────────────────────────────────────────────────────


def read_worker_pid(path: Path = PID_FILE) -> int | None:
    """Return the worker PID if the process is alive, cleaning up stale files."""
    if not path.exists():
        return None

    try:
        pid = int(path.read_text().strip())
    except (ValueError, OSError):
        return None

    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        path.unlink(missing_ok=True)
        return None
    except PermissionError:
        # Process exists but belongs to someone else
        return pid
    return pid


def write_worker_pid(pid: int, path: Path = PID_FILE) -> None:
    """Record the running worker's PID."""
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    path.write_text(str(pid))
    path.chmod(0o600)


def remove_worker_pid(path: Path = PID_FILE) -> None:
    """Remove the PID file if present."""
    path.unlink(missing_ok=True)
