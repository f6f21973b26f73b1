"""Telegram inline keyboard builders and callback payload parsing."""

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from rwtelegram.errors import InvalidCallback

if TYPE_CHECKING:
    from rwtelegram.core.questions import Question

OTHER_LABEL = '📝 Other (type response)'

# Telegram limits callback_data to 64 bytes
MAX_CALLBACK_DATA = 64


@dataclass
class QuestionCallback:
    """Decoded button press on a question keyboard."""

    correlation_id: str | None
    question_index: int | None = None
    option_index: int | None = None
    other: bool = False


def _encode(payload: dict) -> str:
    data = json.dumps(payload, separators=(',', ':'))
    if len(data.encode()) > MAX_CALLBACK_DATA:
        raise ValueError(f'callback_data too long: {data}')
    return data


def option_callback_data(correlation_id: str, question_index: int, option_index: int) -> str:
    return _encode({'id': correlation_id, 'q': question_index, 'o': option_index})


def other_callback_data(correlation_id: str) -> str:
    return _encode({'id': correlation_id, 'other': True})


def create_question_keyboard(correlation_id: str, questions: list['Question']) -> InlineKeyboardMarkup:
    """One row of option buttons per question, plus a final 'Other' row."""
    buttons: list[list[InlineKeyboardButton]] = []

    for q_index, question in enumerate(questions):
        row = [
            InlineKeyboardButton(
                option.label or f'Option {o_index + 1}',
                callback_data=option_callback_data(correlation_id, q_index, o_index),
            )
            for o_index, option in enumerate(question.options)
        ]
        if row:
            buttons.append(row)

    buttons.append([InlineKeyboardButton(OTHER_LABEL, callback_data=other_callback_data(correlation_id))])

    return InlineKeyboardMarkup(buttons)


def parse_question_callback(data: str | None) -> QuestionCallback:
    """Decode callback_data produced by create_question_keyboard.

    Payloads without an 'id' (older keyboards) are accepted and resolve
    against the oldest pending question.
    """
    try:
        payload = json.loads(data or '')
    except json.JSONDecodeError as e:
        raise InvalidCallback(f'Malformed callback data: {data!r}') from e

    if not isinstance(payload, dict):
        raise InvalidCallback(f'Malformed callback data: {data!r}')

    correlation_id = payload.get('id')
    if correlation_id is not None and not isinstance(correlation_id, str):
        raise InvalidCallback(f'Malformed correlation id: {correlation_id!r}')

    if payload.get('other'):
        return QuestionCallback(correlation_id=correlation_id, other=True)

    question_index = payload.get('q')
    option_index = payload.get('o')
    # bool is an int subclass; reject it explicitly
    if not all(isinstance(i, int) and not isinstance(i, bool) for i in (question_index, option_index)):
        raise InvalidCallback(f'Missing option indices: {data!r}')

    return QuestionCallback(
        correlation_id=correlation_id,
        question_index=question_index,
        option_index=option_index,
    )
