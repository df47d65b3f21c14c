"""Tests for EventAccumulator rendering."""

from opencode_slack.runtime.accumulator import EventAccumulator, TextSegment, ToolSegment
from opencode_slack.runtime.blocks import (
    IN_PROGRESS_TEXT,
    MAX_BLOCKS,
    PROCESSING_TEXT,
    TRUNCATED_NOTICE,
)
from opencode_slack.runtime.events import RunEvent


def ev(type_: str, **part) -> RunEvent:
    return RunEvent(type=type_, part=part)


def block_texts(blocks) -> list[str]:
    texts = []
    for block in blocks:
        if block["type"] == "section":
            texts.append(block["text"]["text"])
        elif block["type"] == "context":
            texts.append(block["elements"][0]["text"])
    return texts


def hello_run() -> list[RunEvent]:
    return [
        ev("step_start"),
        ev("text", text="hi "),
        ev("text", text="there"),
        ev("step_finish", reason="stop", tokens={"input": 10, "output": 5}),
    ]


class TestRender:
    def test_text_then_usage_summary(self):
        acc = EventAccumulator()
        for event in hello_run():
            acc.push(event)

        texts = block_texts(acc.render())
        assert texts[0] == "hi there"
        assert len(texts) == 2
        assert "10" in texts[1] and "5" in texts[1]
        assert all(IN_PROGRESS_TEXT not in t for t in texts)
        assert acc.is_finished

    def test_running_bash_tool_has_no_output_block(self):
        acc = EventAccumulator()
        acc.push(
            ev(
                "tool_use",
                tool="bash",
                callID="call_1",
                state={"status": "running", "input": {"command": "ls -la"}, "output": "x"},
            )
        )
        texts = block_texts(acc.render())
        assert "bash" in texts[0]
        assert any("ls -la" in t for t in texts[1:])
        assert not any(t.startswith("```\nx") for t in texts)
        assert texts[-1] == IN_PROGRESS_TEXT

    def test_completed_tool_includes_output(self):
        acc = EventAccumulator()
        acc.push(
            ev(
                "tool_use",
                tool="read",
                state={
                    "status": "completed",
                    "title": "src/app.py",
                    "input": {"filePath": "src/app.py"},
                    "output": "print('hi')",
                },
            )
        )
        segment = acc.segments[0]
        assert isinstance(segment, ToolSegment)
        assert segment.status == "completed"
        assert any("print('hi')" in t for t in block_texts(acc.render()))

    def test_tool_use_flushes_text_first(self):
        acc = EventAccumulator()
        acc.push(ev("text", text="Let me look."))
        acc.push(ev("tool_use", tool="glob", state={"status": "pending", "input": {}}))
        assert acc.current_text == ""
        assert acc.segments[0] == TextSegment(text="Let me look.")
        assert acc.segments[1].status == "running"

    def test_new_step_flushes_text(self):
        acc = EventAccumulator()
        acc.push(ev("step_start"))
        acc.push(ev("text", text="one"))
        acc.push(ev("step_start"))
        acc.push(ev("text", text="two"))
        assert acc.segments == (TextSegment(text="one"),)
        assert acc.current_text == "two"
        assert acc.step_count == 2

    def test_thinking_rendered_as_quote(self):
        acc = EventAccumulator()
        acc.push(ev("reasoning", text="line one\nline two"))
        text = block_texts(acc.render())[0]
        assert text.startswith(">_*Thinking:*_")
        assert ">line two" in text

    def test_unfinished_step_finish_keeps_in_progress(self):
        acc = EventAccumulator()
        acc.push(ev("text", text="partial"))
        acc.push(ev("step_finish", reason="tool-calls", tokens={"input": 1, "output": 1}))
        assert block_texts(acc.render())[-1] == IN_PROGRESS_TEXT

    def test_unknown_events_ignored(self):
        acc = EventAccumulator()
        acc.push(ev("patch", hash="abc"))
        assert not acc.has_content

    def test_usage_line_includes_cache_and_cost(self):
        acc = EventAccumulator()
        acc.push(
            ev(
                "step_finish",
                reason="stop",
                tokens={"input": 12_000, "output": 800, "cache": {"read": 4_500, "write": 0}},
                cost=0.0123,
            )
        )
        line = block_texts(acc.render())[-1]
        assert line == "tokens: 12.0k in / 800 out  |  cache: 4.5k read  |  $0.0123"

    def test_empty_finished_document_renders_placeholder(self):
        acc = EventAccumulator()
        acc.push(ev("step_finish", reason="stop"))
        assert block_texts(acc.render()) == [PROCESSING_TEXT]

    def test_render_is_idempotent_and_deterministic(self):
        first, second = EventAccumulator(), EventAccumulator()
        for event in hello_run():
            first.push(event)
            second.push(event)
        assert first.render() == first.render()
        assert first.render() == second.render()

    def test_block_limit_enforced(self):
        acc = EventAccumulator()
        for i in range(40):
            acc.push(
                ev(
                    "tool_use",
                    tool="bash",
                    state={"status": "running", "input": {"command": f"echo {i}"}},
                )
            )
        blocks = acc.render()
        assert len(blocks) == MAX_BLOCKS
        assert block_texts(blocks)[-1] == TRUNCATED_NOTICE

    def test_long_text_split_into_sections(self):
        acc = EventAccumulator()
        acc.push(ev("text", text="word " * 2000))
        sections = [b for b in acc.render() if b["type"] == "section"]
        assert len(sections) == 4
        assert "".join(b["text"]["text"] for b in sections) == "word " * 2000


class TestMalformedPayloads:
    def test_string_tool_input_keeps_earlier_output(self):
        acc = EventAccumulator()
        acc.push(ev("text", text="partial answer"))
        acc.push(ev("tool_use", tool="bash", state={"status": "running", "input": "ls -la"}))

        texts = block_texts(acc.render())
        assert texts[0] == "partial answer"
        assert any("ls -la" in t for t in texts)

    def test_list_tool_input_rendered_as_json(self):
        acc = EventAccumulator()
        acc.push(ev("tool_use", tool="custom", state={"status": "completed", "input": ["a", "b"]}))
        assert acc.segments[0].input == ["a", "b"]
        assert any('"a"' in t for t in block_texts(acc.render()))

    def test_non_dict_state_treated_as_running_without_input(self):
        acc = EventAccumulator()
        acc.push(ev("tool_use", tool="read", callID="call_7", state="pending"))
        segment = acc.segments[0]
        assert isinstance(segment, ToolSegment)
        assert segment.status == "running"
        assert segment.title == "call_7"
        acc.render()

    def test_non_string_text_ignored(self):
        acc = EventAccumulator()
        acc.push(ev("text", text={"nested": True}))
        acc.push(ev("text", text=42))
        acc.push(ev("text", text="kept"))
        acc.push(ev("reasoning", text=["x"]))
        assert block_texts(acc.render())[0] == "kept"

    def test_malformed_usage_figures_become_zero(self):
        acc = EventAccumulator()
        acc.push(ev("text", text="done"))
        acc.push(
            ev(
                "step_finish",
                reason="stop",
                tokens={"input": "12", "output": 3, "cache": "n/a"},
                cost="free",
            )
        )
        assert block_texts(acc.render())[-1] == "tokens: 0 in / 3 out"

    def test_non_dict_tokens_leave_usage_unset(self):
        acc = EventAccumulator()
        acc.push(ev("step_finish", reason="stop", tokens=100))
        assert acc.usage is None
        assert acc.is_finished
