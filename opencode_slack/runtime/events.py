"""
Run events - typed records flowing out of an opencode process.

Two layers:
- ``RunEvent`` is one JSON object printed by ``opencode run --format json``.
- ``RunnerMessage`` wraps what a RunHandle yields: parsed events plus the
  stderr / error / done signals of the process itself.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RunEventType(str, Enum):
    """Event types emitted by opencode that the accumulator understands."""

    STEP_START = "step_start"
    TEXT = "text"
    TOOL_USE = "tool_use"
    STEP_FINISH = "step_finish"
    THINKING = "thinking"
    REASONING = "reasoning"


class RunEvent(BaseModel):
    """One parsed line of opencode's JSON output.

    Only ``type`` is required; ``part`` holds the type-specific payload and
    unknown top-level keys are preserved.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str
    timestamp: int | float | None = None
    session_id: str | None = Field(default=None, alias="sessionID")
    part: dict[str, Any] = Field(default_factory=dict)


class RunnerMessageType(str, Enum):
    """Kinds of messages yielded by a RunHandle."""

    EVENT = "event"
    STDERR = "stderr"
    ERROR = "error"
    DONE = "done"


@dataclass
class RunnerMessage:
    """A single item of a run's output stream.

    ``ERROR`` and ``DONE`` are terminal: nothing follows them, and a run
    yields exactly one of the two.
    """

    type: RunnerMessageType
    event: RunEvent | None = None
    text: str | None = None
    error: BaseException | None = None
    session_id: str | None = None
    exit_code: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.type in (RunnerMessageType.ERROR, RunnerMessageType.DONE)

    @classmethod
    def for_event(cls, event: RunEvent) -> "RunnerMessage":
        return cls(type=RunnerMessageType.EVENT, event=event)

    @classmethod
    def for_stderr(cls, text: str) -> "RunnerMessage":
        return cls(type=RunnerMessageType.STDERR, text=text)

    @classmethod
    def for_error(cls, error: BaseException) -> "RunnerMessage":
        return cls(type=RunnerMessageType.ERROR, error=error)

    @classmethod
    def for_done(cls, session_id: str | None, exit_code: int | None) -> "RunnerMessage":
        return cls(type=RunnerMessageType.DONE, session_id=session_id, exit_code=exit_code)
