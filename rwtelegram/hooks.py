"""Agent hook entry points.

Each hook reads the hook JSON from stdin, forwards it to the worker's
control API and prints hook JSON on stdout. Hooks never block the agent:
every failure still produces {"continue": true}.
"""

import json
import logging
import os
import urllib.error
import urllib.request
from datetime import datetime, timezone
from typing import Any

from rwtelegram.settings import CONFIG_FILE, Config, get_server_url
from rwtelegram.telegram.formatting import truncate

logger = logging.getLogger('rwtelegram')

NOTIFY_TIMEOUT = 5
ASK_TIMEOUT_MS = 300_000
# Slightly longer than the question timeout so the worker answers 408 first
ASK_HTTP_TIMEOUT = ASK_TIMEOUT_MS / 1000 + 10

TOOL_RESULT_LIMIT = 500

# Transcript analysis for stop events
TRANSCRIPT_TAIL_LINES = 15
STOP_DETAILS_LIMIT = 200
LIMIT_MARKERS = ('context limit', 'token limit', 'conversation too long')
AUTH_ERROR_MARKERS = ('api error', '401', 'authentication', 'unauthorized')
READ_ONLY_MARKERS = ('read', 'grep', 'glob', 'search', 'find', 'list')
WRITE_MARKERS = ('write', 'edit', 'bash', 'create', 'delete', 'modify')

TIMED_OUT_MESSAGE = 'Telegram response timed out. Please answer the question locally.'
CANCELLED_MESSAGE = 'User cancelled the question from Telegram.'
NOT_CONFIGURED_MESSAGE = f'Telegram bridge not configured. Edit {CONFIG_FILE} or set RWTELEGRAM_BOT_TOKEN / RWTELEGRAM_CHAT_ID.'


class HookHTTPError(Exception):
    """Worker answered with a non-2xx status."""

    def __init__(self, status: int, body: dict[str, Any]) -> None:
        super().__init__(body.get('error') or f'HTTP {status}')
        self.status = status
        self.body = body


def api_call(
    config: Config,
    endpoint: str,
    payload: dict[str, Any] | None = None,
    timeout: float = NOTIFY_TIMEOUT,
) -> dict[str, Any]:
    """Call the control API. POST when a payload is given, GET otherwise."""
    data = json.dumps(payload).encode() if payload is not None else None
    req = urllib.request.Request(
        f'{get_server_url(config)}{endpoint}',
        data=data,
        headers={'Content-Type': 'application/json'},
        method='POST' if data is not None else 'GET',
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return json.loads(resp.read() or b'{}')
    except urllib.error.HTTPError as e:
        try:
            body = json.loads(e.read() or b'{}')
        except json.JSONDecodeError:
            body = {}
        raise HookHTTPError(e.code, body if isinstance(body, dict) else {}) from e


def project_name(cwd: str | None) -> str:
    if not cwd:
        return 'Claude Code'
    return os.path.basename(os.path.normpath(cwd)) or cwd


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else json.dumps(value, default=str)


def analyze_transcript(path: str | None) -> tuple[str, str | None]:
    """Refine a stop event from the last lines of the session transcript.

    Returns (event_type, details). The type is 'limit', 'error' or 'review'
    when the tail shows a context limit, an auth failure or read-only work;
    otherwise 'stop' with the final lines as details.
    """
    if not path:
        return 'stop', None

    try:
        with open(path, encoding='utf-8', errors='replace') as f:
            lines = [line for line in f.read().splitlines() if line.strip()]
    except OSError:
        return 'stop', None

    recent = '\n'.join(lines[-TRANSCRIPT_TAIL_LINES:]).lower()

    if any(marker in recent for marker in LIMIT_MARKERS):
        return 'limit', 'Context limit reached'
    if any(marker in recent for marker in AUTH_ERROR_MARKERS):
        return 'error', 'API authentication error'
    if any(m in recent for m in READ_ONLY_MARKERS) and not any(m in recent for m in WRITE_MARKERS):
        return 'review', 'Read-only analysis completed'

    return 'stop', truncate('\n'.join(lines[-3:]), STOP_DETAILS_LIMIT) or None


def build_notify_payload(event_type: str, hook_input: dict[str, Any]) -> dict[str, Any]:
    """Translate hook input into a structured /api/notify body."""
    details = None
    if event_type == 'stop':
        event_type, details = analyze_transcript(hook_input.get('transcript_path'))

    cwd = hook_input.get('cwd')
    payload: dict[str, Any] = {
        'eventType': event_type,
        'project': project_name(cwd),
        'data': {'cwd': cwd},
    }

    if event_type == 'tool':
        result = _as_text(hook_input.get('tool_response') or hook_input.get('tool_result'))
        payload['toolName'] = hook_input.get('tool_name')
        payload['input'] = _as_text(hook_input.get('tool_input'))
        payload['result'] = result[:TOOL_RESULT_LIMIT] if result else None
    elif details:
        payload['data']['error' if event_type == 'error' else 'summary'] = details
    elif summary := hook_input.get('message') or hook_input.get('summary'):
        payload['data']['summary'] = summary

    return payload


def notification_enabled(config: Config, event_type: str) -> bool:
    """Whether the config allows a chat notification for this event."""
    if event_type == 'start':
        return False
    if event_type == 'stop':
        return config.notifications.on_stop
    if event_type == 'end':
        return config.notifications.on_session_end
    return True


def build_session_update(event_type: str, hook_input: dict[str, Any]) -> dict[str, Any] | None:
    """Session metadata to push for lifecycle events, if any."""
    if event_type == 'start':
        return {
            'active': True,
            'cwd': hook_input.get('cwd'),
            'startedAt': datetime.now(timezone.utc).isoformat(),
        }
    if event_type == 'end':
        return {'active': False}
    return None


def run_notify_hook(config: Config, event_type: str, hook_input: dict[str, Any]) -> dict[str, Any]:
    """Forward a lifecycle or tool event. Always lets the agent continue."""
    if not config.is_configured():
        return {'continue': True}

    if event_type == 'tool' and not hook_input.get('tool_name'):
        return {'continue': True}

    try:
        if notification_enabled(config, event_type):
            api_call(config, '/api/notify', build_notify_payload(event_type, hook_input))
        if session := build_session_update(event_type, hook_input):
            api_call(config, '/api/session', session)
    except (OSError, HookHTTPError, json.JSONDecodeError) as e:
        logger.debug(f'Notify hook failed: {e}')

    return {'continue': True}


def run_session_start_hook(config: Config, hook_input: dict[str, Any]) -> dict[str, Any]:
    """Start the worker if it is not answering, then record the new session."""
    if not config.is_configured():
        return {'continue': True, 'systemMessage': NOT_CONFIGURED_MESSAGE}

    from rwtelegram.worker import ensure_worker

    message = ensure_worker(config)

    try:
        api_call(config, '/api/session', build_session_update('start', hook_input))
    except (OSError, HookHTTPError, json.JSONDecodeError) as e:
        logger.debug(f'Session update failed: {e}')

    result: dict[str, Any] = {'continue': True}
    if message:
        result['systemMessage'] = message
    return result


def ask_result(response: dict[str, Any]) -> dict[str, Any]:
    """Hook output for a successful /api/ask reply."""
    if response.get('type') == 'cancelled':
        return {'continue': True, 'systemMessage': CANCELLED_MESSAGE}
    return {'continue': True, 'systemMessage': f'User responded via Telegram: "{response.get("value") or ""}"'}


def run_ask_hook(config: Config, hook_input: dict[str, Any]) -> dict[str, Any]:
    """Forward an AskUserQuestion call and wait for the chat answer."""
    if not config.is_configured() or not config.notifications.ask_via_telegram:
        return {'continue': True}

    tool_input = hook_input.get('tool_input') or {}
    questions = tool_input.get('questions') if isinstance(tool_input, dict) else None
    if not questions or not isinstance(questions, list):
        return {'continue': True}

    try:
        data = api_call(
            config,
            '/api/ask',
            {'questions': questions, 'timeout': ASK_TIMEOUT_MS},
            timeout=ASK_HTTP_TIMEOUT,
        )
    except HookHTTPError as e:
        if e.status == 408:
            return {'continue': True, 'systemMessage': TIMED_OUT_MESSAGE}
        return {'continue': True, 'systemMessage': f'Could not reach Telegram worker: {e}. Answering locally.'}
    except TimeoutError:
        return {'continue': True, 'systemMessage': TIMED_OUT_MESSAGE}
    except (OSError, json.JSONDecodeError) as e:
        reason = getattr(e, 'reason', e)
        return {'continue': True, 'systemMessage': f'Could not reach Telegram worker: {reason}. Answering locally.'}

    if not data.get('success') or not isinstance(data.get('response'), dict):
        return {'continue': True}
    return ask_result(data['response'])
