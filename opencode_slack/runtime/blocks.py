"""
Slack Block Kit helpers used to render a run.

Slack limits: 50 blocks per message, 3000 chars per text object.
"""

import json
from typing import Any

MAX_TEXT_LEN = 2900  # margin under Slack's 3000
MAX_BLOCKS = 50
MAX_TOOL_TEXT_LEN = 1500
MAX_EDIT_SNIPPET_LEN = 200
OUTPUT_PREVIEW_THRESHOLD = 300

PROCESSING_TEXT = "Processing..."
IN_PROGRESS_TEXT = ":hourglass_flowing_sand: In progress..."
TRUNCATED_NOTICE = "(output truncated: too many blocks for Slack)"


def markdown_section(text: str) -> dict[str, Any]:
    """A section block with mrkdwn text. Slack rejects empty text."""
    return {
        "type": "section",
        "text": {"type": "mrkdwn", "text": text or " "},
    }


def context_block(text: str) -> dict[str, Any]:
    return {
        "type": "context",
        "elements": [{"type": "mrkdwn", "text": text}],
    }


def divider() -> dict[str, Any]:
    return {"type": "divider"}


def truncate(text: str | None, limit: int = MAX_TEXT_LEN) -> str:
    """Cut ``text`` to ``limit`` characters, marking the cut."""
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + "\n... (truncated)"


def split_text(text: str, limit: int = MAX_TEXT_LEN) -> list[str]:
    """Split text into chunks of at most ``limit`` characters.

    Each chunk ends after the last newline that fits, else after the last
    space, else at the hard limit. Delimiters stay attached to the chunk
    they end, so ``"".join(split_text(t)) == t``.
    """
    if limit < 1:
        raise ValueError("limit must be positive")

    chunks: list[str] = []
    remaining = text
    while len(remaining) > limit:
        window = remaining[:limit]
        cut = window.rfind("\n")
        if cut <= 0:
            cut = window.rfind(" ")
        end = cut + 1 if cut > 0 else limit
        chunks.append(remaining[:end])
        remaining = remaining[end:]
    if remaining:
        chunks.append(remaining)
    return chunks


def format_count(n: int | float | None) -> str:
    """Abbreviate token counts: 950, 1.2k, 3.4M."""
    if n is None:
        return "0"
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}M"
    if n >= 1_000:
        return f"{n / 1_000:.1f}k"
    return str(n)


def format_tool_input(tool: str, tool_input: Any) -> str:
    """Condensed, tool-specific view of a tool call's input.

    Non-object input (a bare string or list) is shown as-is or as JSON.
    """
    if not isinstance(tool_input, dict):
        if tool_input is None or tool_input == "" or tool_input == []:
            return ""
        if isinstance(tool_input, str):
            return tool_input
        return json.dumps(tool_input, indent=2, ensure_ascii=False, default=str)

    path = tool_input.get("filePath", "?")
    if tool == "write":
        return f"write → {path}\n{tool_input.get('content', '')}"
    if tool == "edit":
        old = truncate(str(tool_input.get("oldString", "")), MAX_EDIT_SNIPPET_LEN)
        new = truncate(str(tool_input.get("newString", "")), MAX_EDIT_SNIPPET_LEN)
        return f"edit → {path}\n- {old}\n+ {new}"
    if tool == "read":
        return f"read → {path}"
    if tool == "bash":
        return f"$ {tool_input.get('command', '?')}"
    if tool == "glob":
        return f"glob → {tool_input.get('pattern', '?')}"
    if tool == "grep":
        include = tool_input.get("include")
        suffix = f" ({include})" if include else ""
        return f"grep → {tool_input.get('pattern', '?')}{suffix}"
    if tool == "todowrite":
        return "update todos"
    if not tool_input:
        return ""
    return json.dumps(tool_input, indent=2, ensure_ascii=False, default=str)


def format_tool_output(output: Any) -> str:
    """Stringify tool output, collapsing long multi-line output to head/tail."""
    text = output if isinstance(output, str) else json.dumps(output, indent=2, default=str)
    if len(text) <= OUTPUT_PREVIEW_THRESHOLD:
        return text
    lines = text.split("\n")
    if len(lines) > 10:
        lines = [*lines[:5], f"... ({len(lines) - 10} more lines)", *lines[-5:]]
    return truncate("\n".join(lines), MAX_TOOL_TEXT_LEN)


def code_block(text: str) -> dict[str, Any]:
    return markdown_section(f"```\n{text}\n```")


def cap_blocks(blocks: list[dict[str, Any]], limit: int = MAX_BLOCKS) -> list[dict[str, Any]]:
    """Enforce Slack's per-message block limit.

    Over the limit, the first ``limit - 1`` blocks are kept and a
    truncation notice becomes the last block.
    """
    if len(blocks) <= limit:
        return blocks
    return [*blocks[: limit - 1], context_block(TRUNCATED_NOTICE)]
