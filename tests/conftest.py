"""Shared fixtures: a scriptable stand-in for the opencode executable."""

import json
import stat
import sys
import textwrap
from pathlib import Path

import pytest


def write_fake_opencode(
    directory: Path,
    stdout_lines: list[str] | None = None,
    stderr_lines: list[str] | None = None,
    exit_code: int = 0,
    trailing: str = "",
    sleep: float = 0.0,
) -> Path:
    """Write an executable script that behaves like ``opencode``.

    It records its argv to ``argv.json`` next to itself, prints
    ``stdout_lines`` (plus an unterminated ``trailing`` fragment), writes
    ``stderr_lines`` to stderr, optionally sleeps, then exits with
    ``exit_code``.
    """
    script = directory / "opencode"
    argv_file = directory / "argv.json"
    body = textwrap.dedent(
        f"""\
        #!{sys.executable}
        import json, sys, time
        with open({str(argv_file)!r}, "w") as f:
            json.dump(sys.argv[1:], f)
        for line in {stdout_lines or []!r}:
            sys.stdout.write(line + "\\n")
        sys.stdout.write({trailing!r})
        sys.stdout.flush()
        for line in {stderr_lines or []!r}:
            sys.stderr.write(line + "\\n")
        sys.stderr.flush()
        time.sleep({sleep!r})
        sys.exit({exit_code!r})
        """
    )
    script.write_text(body)
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


def read_argv(script: Path) -> list[str]:
    return json.loads((script.parent / "argv.json").read_text())


def event_line(type_: str, session_id: str | None = "ses_1", **part) -> str:
    data = {"type": type_, "timestamp": 1700000000000, "part": part}
    if session_id is not None:
        data["sessionID"] = session_id
    return json.dumps(data)


@pytest.fixture
def fake_opencode(tmp_path):
    """Factory fixture: ``fake_opencode(stdout_lines=[...], exit_code=1)``."""

    def factory(**kwargs) -> Path:
        return write_fake_opencode(tmp_path, **kwargs)

    return factory
