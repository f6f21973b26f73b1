"""Process-wide worker state shared by the control API and the chat router."""

import os
import time
from dataclasses import dataclass, field
from typing import Any


@dataclass
class SessionMeta:
    """What the hooks last told us about the agent session."""

    active: bool = False
    cwd: str | None = None
    started_at: float | str | None = None

    def merge(self, changes: dict[str, Any]) -> None:
        """Apply a partial update; fields not present are left as they were."""
        for name, value in changes.items():
            setattr(self, name, value)

    def to_dict(self) -> dict[str, Any]:
        return {
            'active': self.active,
            'cwd': self.cwd,
            'startedAt': self.started_at,
        }


@dataclass
class WorkerState:
    """Mutable state owned by one worker process."""

    session: SessionMeta = field(default_factory=SessionMeta)
    workdir_override: str | None = None  # set by /cd, never persisted
    command_queue: list[dict[str, Any]] = field(default_factory=list)
    started: float = field(default_factory=time.monotonic)

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started

    def drain_commands(self) -> list[dict[str, Any]]:
        """Return and clear the queued remote commands."""
        commands = list(self.command_queue)
        self.command_queue.clear()
        return commands

    def resolve_workdir(self, configured: str = '') -> str:
        """Working directory for the bridged session: /cd, config, hook cwd, worker cwd."""
        return self.workdir_override or configured or self.session.cwd or os.getcwd()
