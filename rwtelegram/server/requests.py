"""Typed control API request bodies."""

from dataclasses import dataclass, field
from typing import Any

from rwtelegram.core.questions import Question, QuestionOption
from rwtelegram.errors import RequestError

DEFAULT_ASK_TIMEOUT_MS = 300_000


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise RequestError(f'{key} must be a string')
    return value


@dataclass
class EventNotifyRequest:
    """Structured hook event rendered by the formatter."""

    event_type: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class LegacyNotifyRequest:
    """Free-text notification with a status tag."""

    message: str
    status: str = 'info'
    project: str | None = None
    cwd: str | None = None


def parse_notify_request(body: dict[str, Any]) -> EventNotifyRequest | LegacyNotifyRequest:
    """Pick the structured form when eventType is present, else the legacy form."""
    event_type = body.get('eventType')
    if event_type:
        if not isinstance(event_type, str):
            raise RequestError('eventType must be a string')
        extra = body.get('data') or {}
        if not isinstance(extra, dict):
            raise RequestError('data must be an object')
        data = {
            'project': body.get('project'),
            'toolName': body.get('toolName'),
            'input': body.get('input'),
            'result': body.get('result'),
            **extra,
        }
        return EventNotifyRequest(event_type=event_type, data=data)

    message = body.get('message')
    if not message:
        raise RequestError('message or eventType required')
    if not isinstance(message, str):
        raise RequestError('message must be a string')

    return LegacyNotifyRequest(
        message=message,
        status=_optional_str(body, 'status') or 'info',
        project=_optional_str(body, 'project'),
        cwd=_optional_str(body, 'cwd'),
    )


@dataclass
class AskRequest:
    questions: list[Question]
    timeout: float  # seconds

    @classmethod
    def from_dict(cls, body: dict[str, Any]) -> 'AskRequest':
        raw_questions = body.get('questions')
        if not isinstance(raw_questions, list) or not raw_questions:
            raise RequestError('questions array required')

        questions = [_parse_question(item, i) for i, item in enumerate(raw_questions)]

        timeout_ms = body.get('timeout', DEFAULT_ASK_TIMEOUT_MS)
        if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, (int, float)) or timeout_ms <= 0:
            raise RequestError('timeout must be a positive number of milliseconds')

        return cls(questions=questions, timeout=timeout_ms / 1000)


def _parse_question(item: Any, index: int) -> Question:
    if not isinstance(item, dict):
        raise RequestError(f'questions[{index}] must be an object')

    prompt = item.get('question')
    if not isinstance(prompt, str) or not prompt:
        raise RequestError(f'questions[{index}].question required')

    raw_options = item.get('options') or []
    if not isinstance(raw_options, list):
        raise RequestError(f'questions[{index}].options must be an array')

    options = []
    for o_index, option in enumerate(raw_options):
        if isinstance(option, str):
            options.append(QuestionOption(label=option))
            continue
        if not isinstance(option, dict) or not isinstance(option.get('label'), str):
            raise RequestError(f'questions[{index}].options[{o_index}].label required')
        options.append(QuestionOption(label=option['label'], description=_optional_str(option, 'description')))

    return Question(prompt=prompt, options=options, header=_optional_str(item, 'header'))


@dataclass
class SessionUpdateRequest:
    """Partial SessionMeta update; only keys present in the body are set."""

    changes: dict[str, Any]

    @classmethod
    def from_dict(cls, body: dict[str, Any]) -> 'SessionUpdateRequest':
        changes: dict[str, Any] = {}

        if 'active' in body:
            if not isinstance(body['active'], bool):
                raise RequestError('active must be a boolean')
            changes['active'] = body['active']

        if 'cwd' in body:
            changes['cwd'] = _optional_str(body, 'cwd')

        if 'startedAt' in body:
            started_at = body['startedAt']
            if started_at is not None and (isinstance(started_at, bool) or not isinstance(started_at, (str, int, float))):
                raise RequestError('startedAt must be a string or a number')
            changes['started_at'] = started_at

        return cls(changes=changes)
