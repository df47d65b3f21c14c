"""
Event Accumulator - turns one run's event stream into Slack blocks.

Feed events with ``push()`` as they arrive, then call ``render()`` to get
the current Block Kit payload for a chat.update call. ``render()`` has no
side effects and can be called any number of times.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from opencode_slack.runtime.blocks import (
    IN_PROGRESS_TEXT,
    MAX_TOOL_TEXT_LEN,
    PROCESSING_TEXT,
    cap_blocks,
    code_block,
    context_block,
    divider,
    format_count,
    format_tool_input,
    format_tool_output,
    markdown_section,
    split_text,
    truncate,
)
from opencode_slack.runtime.events import RunEvent, RunEventType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextSegment:
    text: str


@dataclass(frozen=True)
class ToolSegment:
    tool: str
    title: str
    status: str  # "running" | "completed"
    input: Any = field(default_factory=dict)  # normally a dict, kept raw otherwise
    output: Any = None  # only set once completed


@dataclass(frozen=True)
class ThinkingSegment:
    text: str


Segment = TextSegment | ToolSegment | ThinkingSegment


@dataclass(frozen=True)
class UsageSummary:
    """Token and cost figures from the latest step_finish event."""

    input: int = 0
    output: int = 0
    reasoning: int = 0
    cache_read: int = 0
    cache_write: int = 0
    total: int | None = None
    cost: float = 0.0

    @classmethod
    def from_part(cls, part: dict[str, Any]) -> "UsageSummary":
        tokens = _as_dict(part.get("tokens"))
        cache = _as_dict(tokens.get("cache"))
        total = tokens.get("total")
        return cls(
            input=_as_number(tokens.get("input")),
            output=_as_number(tokens.get("output")),
            reasoning=_as_number(tokens.get("reasoning")),
            cache_read=_as_number(cache.get("read")),
            cache_write=_as_number(cache.get("write")),
            total=_as_number(total) if total is not None else None,
            cost=_as_number(part.get("cost")),
        )

    def summary_line(self) -> str:
        line = f"tokens: {format_count(self.input)} in / {format_count(self.output)} out"
        if self.cache_read > 0:
            line += f"  |  cache: {format_count(self.cache_read)} read"
        if self.cost > 0:
            line += f"  |  ${self.cost:.4f}"
        return line


class EventAccumulator:
    """Mutable document for a single opencode run.

    Finalized segments are append-only; only the current text buffer
    changes between flushes.
    """

    def __init__(self) -> None:
        self._segments: list[Segment] = []
        self._current_text = ""
        self._finished = False
        self._usage: UsageSummary | None = None
        self._step_count = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def segments(self) -> tuple[Segment, ...]:
        return tuple(self._segments)

    @property
    def current_text(self) -> str:
        return self._current_text

    @property
    def is_finished(self) -> bool:
        return self._finished

    @property
    def usage(self) -> UsageSummary | None:
        return self._usage

    @property
    def step_count(self) -> int:
        return self._step_count

    @property
    def has_content(self) -> bool:
        return bool(self._segments or self._current_text)

    # ------------------------------------------------------------------
    # Feeding
    # ------------------------------------------------------------------

    def push(self, event: RunEvent) -> None:
        """Apply one event. Unknown event types are ignored."""
        part = event.part or {}

        if event.type == RunEventType.STEP_START:
            self._step_count += 1
            if self._step_count > 1:
                self._flush_text()

        elif event.type == RunEventType.TEXT:
            self._current_text += _as_text(part.get("text"))

        elif event.type == RunEventType.TOOL_USE:
            self._flush_text()
            self._segments.append(self._tool_segment(part))

        elif event.type in (RunEventType.THINKING, RunEventType.REASONING):
            self._flush_text()
            text = _as_text(part.get("thinking")) or _as_text(part.get("text"))
            self._segments.append(ThinkingSegment(text=text))

        elif event.type == RunEventType.STEP_FINISH:
            if _as_dict(part.get("tokens")):
                self._usage = UsageSummary.from_part(part)
            if part.get("reason") == "stop":
                self._finished = True

        else:
            logger.debug(f"Ignoring event type {event.type!r}")

    def _flush_text(self) -> None:
        if self._current_text:
            self._segments.append(TextSegment(text=self._current_text))
            self._current_text = ""

    @staticmethod
    def _tool_segment(part: dict[str, Any]) -> ToolSegment:
        state = _as_dict(part.get("state"))
        completed = state.get("status") == "completed"
        return ToolSegment(
            tool=str(part.get("tool") or "unknown"),
            title=str(state.get("title") or part.get("callID") or ""),
            status="completed" if completed else "running",
            input=state.get("input") or {},
            output=state.get("output") if completed else None,
        )

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self) -> list[dict[str, Any]]:
        """Slack blocks for the current state (never empty)."""
        blocks: list[dict[str, Any]] = []

        for segment in self._segments:
            if isinstance(segment, TextSegment):
                blocks.extend(_text_blocks(segment.text))
            elif isinstance(segment, ToolSegment):
                blocks.extend(_tool_blocks(segment))
            elif isinstance(segment, ThinkingSegment):
                blocks.append(_thinking_block(segment.text))

        if self._current_text:
            blocks.extend(_text_blocks(self._current_text))

        if not self._finished:
            blocks.append(context_block(IN_PROGRESS_TEXT))
        elif self._usage is not None:
            blocks.append(context_block(self._usage.summary_line()))

        blocks = cap_blocks(blocks)

        if not blocks:
            blocks.append(context_block(PROCESSING_TEXT))
        return blocks


def _text_blocks(text: str) -> list[dict[str, Any]]:
    return [markdown_section(chunk) for chunk in split_text(text)]


def _thinking_block(text: str) -> dict[str, Any]:
    quoted = truncate(text, MAX_TOOL_TEXT_LEN).replace("\n", "\n>")
    return markdown_section(f">_*Thinking:*_\n>{quoted}")


def _tool_blocks(segment: ToolSegment) -> list[dict[str, Any]]:
    icon = ":white_check_mark:" if segment.status == "completed" else ":hourglass_flowing_sand:"
    header = f"{icon}  *{segment.tool}*"
    if segment.title:
        header += f"  `{segment.title}`"
    blocks = [markdown_section(header)]

    input_text = format_tool_input(segment.tool, segment.input)
    if input_text:
        blocks.append(code_block(truncate(input_text, MAX_TOOL_TEXT_LEN)))

    if segment.status == "completed" and segment.output:
        blocks.append(code_block(format_tool_output(segment.output)))

    blocks.append(divider())
    return blocks


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _as_number(value: Any) -> int | float:
    # bool is an int subclass but never a real count
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return 0
