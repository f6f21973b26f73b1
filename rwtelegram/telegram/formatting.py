"""Message formatting for Telegram output.

Uses Telegram's HTML parse mode. Hook events are rendered in one of two
policies:
- summary mode: only important events (task complete, errors, questions, ...)
- verbose mode: every event, including individual tool calls
"""

import html
import json
import re
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from rwtelegram.core.questions import Question

TOOL_EMOJIS = {
    'Bash': '🔨',
    'Edit': '📝',
    'Write': '✍️',
    'Read': '📖',
    'Glob': '🔍',
    'Grep': '🔎',
    'Task': '🤖',
    'TaskOutput': '📤',
    'WebFetch': '🌐',
    'WebSearch': '🔍',
    'TodoWrite': '📋',
    'AskUserQuestion': '❓',
    'NotebookEdit': '📓',
}

STATUS_EMOJIS = {
    'success': '✅',
    'error': '❌',
    'warning': '⚠️',
    'info': 'ℹ️',
    'working': '🔄',
    'done': '🎉',
    'question': '❓',
    'stop': '✅',
    'end': '🏁',
    'plan_ready': '📋',
    'review': '🔍',
    'limit': '⏱️',
    'feature_complete': '🎯',
    'tests_passed': '✅',
    'tests_failed': '❌',
}

EVENT_LABELS = {
    'stop': 'Task Complete',
    'done': 'Task Complete',
    'end': 'Session Ended',
    'error': 'Error',
    'question': 'Question',
    'plan_ready': 'Plan Ready',
    'review': 'Review Complete',
    'limit': 'Context Limit',
    'feature_complete': 'Feature Complete',
    'tests_passed': 'Tests Passed',
    'tests_failed': 'Tests Failed',
}

# Events that are still sent in summary mode
SUMMARY_EVENTS = frozenset(EVENT_LABELS)

# Keys that mark a summary as internal transcript metadata
_INTERNAL_FIELDS = ('parentUuid', 'sessionId', 'isSidechain', 'userType', 'version')

_UUID_RE = re.compile(r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}', re.IGNORECASE)


def escape_html(text: str) -> str:
    """Escape HTML special characters."""
    return html.escape(text, quote=False)


def escape_html_tail(text: str, max_length: int) -> str:
    """Escape text and keep the longest tail whose escaped form fits max_length.

    Cuts happen between source characters, so an entity is never split.
    """
    escaped = escape_html(text)
    if len(escaped) <= max_length:
        return escaped

    pieces: list[str] = []
    size = 0
    for char in reversed(text):
        piece = escape_html(char)
        if size + len(piece) > max_length:
            break
        pieces.append(piece)
        size += len(piece)
    return ''.join(reversed(pieces))


def truncate(text: Any, max_length: int = 100) -> str:
    """Trim text to max_length, ending with '...' when cut."""
    if not text:
        return ''
    value = str(text).strip()
    if len(value) <= max_length:
        return value
    return value[: max_length - 3] + '...'


def short_time(now: datetime | None = None) -> str:
    return (now or datetime.now()).strftime('%H:%M')


def status_emoji(status: str) -> str:
    return STATUS_EMOJIS.get(status, '🤖')


def tool_emoji(tool_name: str) -> str:
    return TOOL_EMOJIS.get(tool_name, '⚙️')


def _as_dict(value: Any) -> dict[str, Any]:
    """Tool input arrives either as a dict or as a JSON string."""
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def clean_summary_text(text: Any) -> str | None:
    """Reduce a summary to readable prose, or None if it is only metadata."""
    if not text:
        return None

    cleaned = str(text).strip()
    if any(f'"{name}"' in cleaned for name in _INTERNAL_FIELDS):
        return None

    match = re.search(r'\{.*\}', cleaned, re.DOTALL)
    if match:
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            for key in ('summary', 'message', 'details', 'description', 'result'):
                if parsed.get(key):
                    cleaned = str(parsed[key])
                    break
            else:
                return None

    cleaned = cleaned.replace('\\n', '\n').replace('\\"', '"')
    cleaned = re.sub(r'\s+', ' ', cleaned).strip()

    if cleaned.startswith(('{', '[')):
        return None
    if len(_UUID_RE.findall(cleaned)) > 1:
        return None

    return cleaned or None


def summarize_bash_result(result: Any, max_length: int = 150) -> str:
    """Turn command output into a one-line outcome."""
    if not result:
        return 'completed'

    output = str(result).strip()

    if 'passed' in output.lower():
        match = re.search(r'(\d+)\s*(tests?\s*)?pass(ed)?', output, re.IGNORECASE)
        if match:
            return f'✅ {match.group(1)} tests passed'
    if 'failed' in output.lower():
        match = re.search(r'(\d+)\s*(tests?\s*)?fail(ed)?', output, re.IGNORECASE)
        if match:
            return f'❌ {match.group(1)} tests failed'
    if 'error' in output.lower():
        return '❌ Error occurred'
    if 'successfully' in output.lower():
        return '✅ Success'

    return truncate(output.replace('\n', ' '), max_length)


def format_tool_event(tool_name: str, tool_input: Any = None, result: Any = None) -> str:
    """Format a single tool call for verbose mode."""
    data = _as_dict(tool_input)
    lines = [f'{tool_emoji(tool_name)} <b>{escape_html(tool_name)}</b>', '']

    def add(label: str, value: Any) -> None:
        lines.append(f'{label}: <code>{escape_html(str(value))}</code>')

    if tool_name == 'Bash':
        command = data.get('command') or data.get('cmd')
        if not command and isinstance(tool_input, str) and not data:
            command = tool_input
        if command:
            add('Command', truncate(command, 100))
        if result:
            lines.append(f'Result: {escape_html(summarize_bash_result(result, 200))}')
    elif tool_name == 'Edit':
        if path := data.get('file_path') or data.get('path'):
            add('File', path)
        if data.get('old_string'):
            old = escape_html(truncate(data['old_string'], 50))
            new = escape_html(truncate(data.get('new_string', ''), 50))
            lines.append(f'Changed: {old} → {new}')
    elif tool_name == 'Write':
        if path := data.get('file_path') or data.get('path'):
            add('File', path)
            lines.append('Action: Created/Overwritten')
    elif tool_name == 'Read':
        if path := data.get('file_path') or data.get('path'):
            add('File', path)
        if result:
            lines.append(f'Lines: {len(str(result).splitlines())}')
    elif tool_name == 'Task':
        lines.append(f'Agent: {escape_html(str(data.get("subagent_type", "unknown")))}')
        if data.get('description'):
            lines.append(f'Task: {escape_html(str(data["description"]))}')
        if data.get('prompt'):
            lines.append(f'Prompt: {escape_html(truncate(data["prompt"], 150))}')
    elif tool_name == 'TaskOutput':
        lines.append('Status: Retrieving agent output')
        if result:
            lines.append(f'Result: {escape_html(truncate(result, 200))}')
    elif tool_name == 'Glob':
        if data.get('pattern'):
            add('Pattern', data['pattern'])
        if data.get('path'):
            add('Path', data['path'])
        if result:
            files = [f for f in str(result).splitlines() if f.strip()]
            lines.append(f'Found: {len(files)} files')
    elif tool_name == 'Grep':
        if data.get('pattern'):
            add('Search', data['pattern'])
        if result:
            matches = [m for m in str(result).splitlines() if m.strip()]
            lines.append(f'Matches: {len(matches)}')
    elif tool_name == 'AskUserQuestion':
        lines[0] = '❓ <b>Question</b>'
        questions = data.get('questions') or []
        if questions and isinstance(questions[0], dict):
            first = questions[0]
            lines.append(escape_html(str(first.get('question', ''))))
            labels = [str(o.get('label', '')) for o in first.get('options') or [] if isinstance(o, dict)]
            if labels:
                lines.append(f'Options: {escape_html(", ".join(labels))}')
    else:
        lines.append(f'Input: {escape_html(truncate(json.dumps(tool_input, default=str), 100))}')
        if result:
            lines.append(f'Result: {escape_html(truncate(result, 100))}')

    lines.extend(['', f'⏰ {short_time()}'])
    return '\n'.join(lines)


def format_summary_event(event_type: str, data: dict[str, Any]) -> str:
    """Format an event as: <emoji> project | Label, summary, time."""
    project = escape_html(str(data.get('project') or 'Claude Code'))
    label = EVENT_LABELS.get(event_type, 'Update')
    summary = clean_summary_text(data.get('summary'))

    body: list[str] = []
    if event_type == 'feature_complete' and data.get('featureId'):
        body.append(f'Feature: {data["featureId"]}')
    if event_type == 'error':
        if data.get('error'):
            body.append(clean_summary_text(data['error']) or truncate(data['error'], 200))
    elif event_type == 'question':
        if data.get('question'):
            body.append(str(data['question']))
    elif event_type == 'plan_ready':
        body.append('Claude has a plan ready for your approval')
    elif event_type == 'limit':
        body.append('Session needs to be compacted or restarted')
    elif event_type == 'tests_passed':
        if data.get('count'):
            body.append(f'{data["count"]} tests passed')
    elif event_type == 'tests_failed':
        if data.get('count'):
            body.append(f'{data["count"]} tests failed')
        if summary:
            body.append(summary)
    elif summary:
        body.append(summary)

    parts = [f'{status_emoji(event_type)} <b>{project}</b> | {label}']
    for item in body:
        parts.extend(['', escape_html(item)])
    parts.extend(['', f'⏰ {short_time()}'])
    return '\n'.join(parts)


def is_summary_event(event_type: str) -> bool:
    return event_type in SUMMARY_EVENTS


def format_event(event_type: str, data: dict[str, Any], verbose: bool) -> str | None:
    """Render a hook event, or return None when the current mode skips it."""
    tool_name = data.get('toolName')

    if event_type == 'tool':
        if not verbose or not tool_name:
            return None
        return format_tool_event(tool_name, data.get('input'), data.get('result'))

    if verbose:
        if tool_name:
            return format_tool_event(tool_name, data.get('input'), data.get('result'))
        return format_summary_event(event_type, data)

    if is_summary_event(event_type):
        return format_summary_event(event_type, data)
    return None


def format_notification(
    message: str,
    status: str = 'info',
    project: str | None = None,
    cwd: str | None = None,
) -> str:
    """Format a free-text notification (legacy /api/notify body)."""
    text = f'{status_emoji(status)} <b>{escape_html(project or "Claude Code")}</b>'
    if cwd:
        text += f'\n📂 <code>{escape_html(cwd)}</code>'
    text += f'\n\n{escape_html(message)}\n\n<i>{datetime.now().strftime("%Y-%m-%d %H:%M:%S")}</i>'
    return text


def format_questions(questions: list['Question']) -> str:
    """Render a question set as the text above the inline keyboard."""
    lines = ['❓ <b>Claude needs your input</b>', '']
    for q_index, question in enumerate(questions, start=1):
        header = f'{escape_html(question.header)}: ' if question.header else ''
        lines.append(f'<b>{q_index}. {header}{escape_html(question.prompt)}</b>')
        for o_index, option in enumerate(question.options, start=1):
            line = f'   {o_index}) {escape_html(option.label)}'
            if option.description:
                line += f' - <i>{escape_html(option.description)}</i>'
            lines.append(line)
        lines.append('')
    return '\n'.join(lines).rstrip()
