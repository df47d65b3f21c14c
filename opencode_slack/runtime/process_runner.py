"""
Process Runner - spawns ``opencode run`` and streams its JSON events.

Each RunHandle owns one external process:
- stdout is split into lines and parsed as JSON (one event per line)
- stderr is surfaced line by line as diagnostics
- a single terminal message (done or error) closes the stream

Example:
    runner = ProcessRunner(bin_path="/usr/local/bin/opencode")
    handle = runner.start(RunRequest(message="fix the tests", directory="/src/app"))

    async for message in handle:
        if message.type == RunnerMessageType.EVENT:
            accumulator.push(message.event)

    print(handle.session_id)
"""

import asyncio
import json
import logging
import os
import shlex
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from pydantic import ValidationError

from opencode_slack.config import DEFAULT_MODEL, DEFAULT_OPENCODE_BIN
from opencode_slack.runtime.events import RunEvent, RunnerMessage, RunnerMessageType

logger = logging.getLogger(__name__)

# Bounded so a slow consumer pauses the stdout reader instead of growing memory
DEFAULT_QUEUE_SIZE = 256
READ_CHUNK_SIZE = 64 * 1024


@dataclass
class RunRequest:
    """Inputs for one opencode invocation."""

    message: str
    session_id: str | None = None  # continue an existing session
    directory: str | None = None
    model: str | None = None
    agent: str | None = None
    command: str | None = None  # slash command, e.g. "init"
    files: list[str] = field(default_factory=list)


def build_command(
    bin_path: str,
    request: RunRequest,
    default_model: str | None = DEFAULT_MODEL,
) -> list[str]:
    """Build the argv for ``opencode run``.

    Optional flags are only added when their input is present. The message
    is always the last positional argument.
    """
    args = [bin_path, "run", "--format", "json", "--thinking"]

    if request.session_id:
        args += ["--session", request.session_id]

    model = request.model or default_model
    if model:
        args += ["-m", model]

    if request.agent:
        args += ["--agent", request.agent]

    if request.command:
        args += ["--command", request.command]

    if request.directory:
        args += ["--dir", request.directory]

    for path in request.files:
        args += ["-f", path]

    args.append(request.message)
    return args


def parse_event_line(line: str | bytes) -> RunEvent | None:
    """Parse one output line into a RunEvent.

    Returns None for blank lines, invalid JSON, non-object JSON and objects
    without a ``type``. opencode prints startup noise on stdout before the
    first event, so these are expected and never fatal.
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    stripped = line.strip()
    if not stripped:
        return None

    try:
        data = json.loads(stripped)
    except json.JSONDecodeError:
        logger.debug("Discarding non-JSON output line: %.120s", stripped)
        return None

    if not isinstance(data, dict):
        return None

    try:
        return RunEvent.model_validate(data)
    except ValidationError:
        logger.debug("Discarding JSON line without event type: %.120s", stripped)
        return None


class JSONLineBuffer:
    """Incremental newline-delimited JSON parser.

    Bytes are buffered until a newline arrives, so events split across
    read() chunks (or multibyte characters split across chunks) are parsed
    only once complete.
    """

    def __init__(self) -> None:
        self._buffer = b""

    def feed(self, chunk: bytes) -> list[RunEvent]:
        """Add a chunk and return the events from every completed line."""
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split(b"\n")
        events = []
        for line in lines:
            event = parse_event_line(line)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[RunEvent]:
        """Parse whatever is left after the stream ended."""
        remainder, self._buffer = self._buffer, b""
        event = parse_event_line(remainder)
        return [event] if event is not None else []

    @property
    def pending(self) -> bytes:
        return self._buffer


class RunHandle:
    """A running (or finished) opencode process and its output stream.

    Iterate with ``async for``; iteration stops after the terminal message.
    A handle can only be iterated once.
    """

    def __init__(
        self,
        args: list[str],
        request: RunRequest,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        self.args = args
        self.request = request
        self._queue: asyncio.Queue[RunnerMessage] = asyncio.Queue(maxsize=queue_size)
        self._buffer = JSONLineBuffer()
        self._process: asyncio.subprocess.Process | None = None
        self._pump_task: asyncio.Task | None = None
        self._session_id = request.session_id
        self._abort_requested = False
        self._iterated = False
        self.exit_code: int | None = None

    def _start(self) -> None:
        self._pump_task = asyncio.create_task(self._pump())

    @property
    def session_id(self) -> str | None:
        """Last session ID reported by the process (or the requested one)."""
        return self._session_id

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    def abort(self) -> None:
        """Send SIGTERM to the process. Safe to call repeatedly or after exit."""
        self._abort_requested = True
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
            logger.info(f"Sent SIGTERM to opencode pid={process.pid}")
        except ProcessLookupError:
            pass

    async def aclose(self) -> None:
        """Abort the process and stop pumping output."""
        self.abort()
        if self._pump_task and not self._pump_task.done():
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass

    async def __aiter__(self) -> AsyncIterator[RunnerMessage]:
        if self._iterated:
            raise RuntimeError("RunHandle output can only be consumed once")
        self._iterated = True
        while True:
            message = await self._queue.get()
            yield message
            if message.is_terminal:
                return

    # ------------------------------------------------------------------
    # Output pumping
    # ------------------------------------------------------------------

    async def _pump(self) -> None:
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=dict(os.environ),
            )
        except OSError as e:
            logger.error(f"Failed to start opencode ({self.args[0]}): {e}")
            await self._queue.put(RunnerMessage.for_error(e))
            return

        if self._abort_requested:
            self.abort()

        try:
            await asyncio.gather(self._read_stdout(), self._read_stderr())
            self.exit_code = await self._process.wait()
        except Exception as e:
            logger.error(f"Lost opencode output stream (pid={self._process.pid}): {e}")
            self.abort()
            await self._queue.put(RunnerMessage.for_error(e))
            return

        for event in self._buffer.flush():
            await self._emit_event(event)

        await self._queue.put(RunnerMessage.for_done(self._session_id, self.exit_code))

    async def _emit_event(self, event: RunEvent) -> None:
        if event.session_id:
            self._session_id = event.session_id
        await self._queue.put(RunnerMessage.for_event(event))

    async def _read_stdout(self) -> None:
        stream = self._process.stdout
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                return
            for event in self._buffer.feed(chunk):
                await self._emit_event(event)

    async def _read_stderr(self) -> None:
        stream = self._process.stderr
        while True:
            line = await stream.readline()
            if not line:
                return
            text = line.decode("utf-8", errors="replace").strip()
            if text:
                await self._queue.put(RunnerMessage.for_stderr(text))


class ProcessRunner:
    """Starts opencode runs with a fixed executable and default model."""

    def __init__(
        self,
        bin_path: str = DEFAULT_OPENCODE_BIN,
        default_model: str | None = DEFAULT_MODEL,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        self.bin_path = bin_path
        self.default_model = default_model
        self._queue_size = queue_size

    def start(self, request: RunRequest) -> RunHandle:
        """Spawn the process in the background and return its handle.

        Must be called from a running event loop. Spawn failures are not
        raised here; they arrive as the handle's terminal ERROR message.
        """
        args = build_command(self.bin_path, request, self.default_model)
        logger.info(f"[opencode spawn] {shlex.join(args[:-1])} <message:{len(request.message)} chars>")
        handle = RunHandle(args, request, queue_size=self._queue_size)
        handle._start()
        return handle


__all__ = [
    "JSONLineBuffer",
    "ProcessRunner",
    "RunHandle",
    "RunRequest",
    "RunnerMessageType",
    "build_command",
    "parse_event_line",
]
