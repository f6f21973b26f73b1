"""Error types shared across the worker."""


class RWTelegramError(Exception):
    """Base class for all rwtelegram errors."""


class TransportError(RWTelegramError):
    """Telegram API call failed (network, HTTP or API-level error)."""

    def __init__(self, method: str, detail: str) -> None:
        super().__init__(f'Telegram API {method} failed: {detail}')
        self.method = method
        self.detail = detail


class QuestionError(RWTelegramError):
    """Base class for ask-protocol errors raised on button presses."""


class QuestionExpired(QuestionError):
    """The question was already answered, cancelled or timed out."""


class InvalidOption(QuestionError):
    """Button press referenced a question/option index that does not exist."""


class InvalidCallback(QuestionError):
    """Callback payload could not be decoded."""


class BridgeError(RWTelegramError):
    """A tmux command failed."""


class BridgeUnavailable(BridgeError):
    """tmux is not installed or the bridged session does not exist."""


class ConfigInvalid(RWTelegramError):
    """Required configuration is missing."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__('; '.join(errors))
        self.errors = errors


class WorkerError(RWTelegramError):
    """Worker could not start (e.g. port already in use)."""


class RequestError(RWTelegramError):
    """Control API request body is missing or has invalid fields."""
