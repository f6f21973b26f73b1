"""Configuration and environment loading.

The TOML file (see rwtelegram.settings) is the primary source. Values from a
.env file or the process environment override it:

    RWTELEGRAM_BOT_TOKEN, RWTELEGRAM_CHAT_ID, RWTELEGRAM_ALLOWED_USERS (comma
    separated user IDs), RWTELEGRAM_PORT
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from dotenv import load_dotenv

from rwtelegram.settings import CONFIG_FILE, Config, load_config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger('rwtelegram')


def setup_logging(verbose: bool = False) -> None:
    """Configure root logging for the CLI and the worker."""
    logging.basicConfig(
        format=LOG_FORMAT,
        level=logging.DEBUG if verbose else logging.INFO,
    )
    # httpx logs every getUpdates call at INFO
    logging.getLogger('httpx').setLevel(logging.WARNING)


def parse_user_ids(raw: str) -> set[int]:
    """Parse a comma separated list of numeric Telegram user IDs."""
    return {int(uid.strip()) for uid in raw.split(',') if uid.strip()}


def apply_env_overrides(config: Config, env: Mapping[str, str] = os.environ) -> Config:
    """Override config values with RWTELEGRAM_* environment variables."""
    if token := env.get('RWTELEGRAM_BOT_TOKEN'):
        config.telegram.bot_token = token
    if chat_id := env.get('RWTELEGRAM_CHAT_ID'):
        config.telegram.chat_id = chat_id
    if allowed := env.get('RWTELEGRAM_ALLOWED_USERS'):
        try:
            config.telegram.allowed_user_ids = parse_user_ids(allowed)
        except ValueError:
            logger.warning(f'Ignoring invalid RWTELEGRAM_ALLOWED_USERS: {allowed!r}')
    if port := env.get('RWTELEGRAM_PORT'):
        try:
            config.server.port = int(port)
        except ValueError:
            logger.warning(f'Ignoring invalid RWTELEGRAM_PORT: {port!r}')
    return config


def load_bridge_config(path: Path = CONFIG_FILE, dotenv_path: Path | None = None) -> Config:
    """Load the TOML config and apply .env / environment overrides."""
    load_dotenv(dotenv_path)
    return apply_env_overrides(load_config(path))
