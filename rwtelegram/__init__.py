"""rwtelegram - Telegram bridge for Claude Code sessions."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version('rwtelegram')
except PackageNotFoundError:
    __version__ = '0.0.0+unknown'
