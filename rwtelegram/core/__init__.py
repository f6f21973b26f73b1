"""Frontend-agnostic worker state: questions, session metadata, tmux bridge."""

from .questions import (
    AskTimeout,
    PendingQuestion,
    Question,
    QuestionBroker,
    QuestionOption,
    QuestionStore,
    Response,
)
from .session import SessionMeta, WorkerState
from .tmux import TmuxBridge

__all__ = [
    'AskTimeout',
    'PendingQuestion',
    'Question',
    'QuestionBroker',
    'QuestionOption',
    'QuestionStore',
    'Response',
    'SessionMeta',
    'TmuxBridge',
    'WorkerState',
]
