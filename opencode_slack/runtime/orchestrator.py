"""
Run Orchestrator - serializes opencode runs per conversation.

Each conversation has at most one worker task. The worker runs the request
it was started with, then keeps popping the conversation's queue (re-reading
the store every time, so requests queued mid-drain are picked up by the
same worker) until it is empty. Different conversations run concurrently.

While a run is active its accumulator is rendered into one Slack message,
updated in place at most once per ``update_interval`` seconds.
"""

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any, Protocol

from opencode_slack.runtime.accumulator import EventAccumulator
from opencode_slack.runtime.blocks import PROCESSING_TEXT, markdown_section
from opencode_slack.runtime.conversation_store import ConversationStore, QueuedRequest
from opencode_slack.runtime.events import RunnerMessage, RunnerMessageType
from opencode_slack.runtime.process_runner import ProcessRunner, RunHandle, RunRequest

logger = logging.getLogger(__name__)

RESPONSE_TEXT = "OpenCode response"
QUEUED_TEXT = "_Queued: waiting for current request to finish..._"
FORGOTTEN_TEXT = "_Conversation was reset before this request started._"


class ChatChannel(Protocol):
    """Outbound chat primitives the orchestrator needs."""

    async def post_message(
        self,
        channel: str | None,
        thread_id: str,
        text: str,
        blocks: list[dict[str, Any]] | None = None,
    ) -> str:
        """Post into a thread and return the new message's ID."""
        ...

    async def update_message(
        self,
        channel: str | None,
        message_id: str,
        text: str,
        blocks: list[dict[str, Any]] | None = None,
    ) -> None: ...


class SubmitStatus(str, Enum):
    STARTED = "started"
    QUEUED = "queued"


def error_blocks(error: BaseException | str) -> list[dict[str, Any]]:
    return [markdown_section(f":x: *OpenCode error:*\n```{error}```")]


class RenderPublisher:
    """Publishes renders of one run into a single chat message.

    ``schedule()`` coalesces bursts of events into one publish per interval;
    ``publish()`` posts the first time and updates in place afterwards.
    Failures are logged and skipped; the next publish retries with fresh
    state.
    """

    def __init__(
        self,
        channel: ChatChannel,
        channel_id: str | None,
        thread_id: str,
        interval: float,
    ):
        self._channel = channel
        self._channel_id = channel_id
        self._thread_id = thread_id
        self._interval = interval
        self._pending: asyncio.Task | None = None
        self.message_id: str | None = None
        self.publish_count = 0
        self.failure_count = 0

    async def publish(self, blocks: list[dict[str, Any]], text: str = RESPONSE_TEXT) -> bool:
        try:
            if self.message_id is None:
                self.message_id = await self._channel.post_message(
                    self._channel_id, self._thread_id, text, blocks
                )
            else:
                await self._channel.update_message(
                    self._channel_id, self.message_id, text, blocks
                )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failure_count += 1
            if getattr(e, "error", None) == "ratelimited":
                logger.debug(f"Rate limited updating thread {self._thread_id}, skipping")
            else:
                logger.warning(f"[publish error] thread {self._thread_id}: {e}")
            return False
        self.publish_count += 1
        return True

    def schedule(self, render: Callable[[], list[dict[str, Any]]]) -> None:
        """Publish ``render()`` after the interval unless one is already pending."""
        if self._pending is not None and not self._pending.done():
            return
        self._pending = asyncio.create_task(self._publish_later(render))

    async def _publish_later(self, render: Callable[[], list[dict[str, Any]]]) -> None:
        await asyncio.sleep(self._interval)
        await self.publish(render())

    async def cancel_pending(self) -> None:
        task, self._pending = self._pending, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


class RunOrchestrator:
    """
    Runs opencode for conversations, one run at a time per conversation.

    Example:
        orchestrator = RunOrchestrator(
            store=ConversationStore(),
            runner=ProcessRunner(bin_path="/usr/local/bin/opencode"),
            channel=slack_client,
        )
        status = await orchestrator.submit(
            "1712345678.000100", QueuedRequest(message="add tests"), channel="C123"
        )
        await orchestrator.wait_idle("1712345678.000100")
    """

    def __init__(
        self,
        store: ConversationStore,
        runner: ProcessRunner,
        channel: ChatChannel,
        update_interval: float = 1.5,
        default_directory: str | None = None,
    ):
        self.store = store
        self.runner = runner
        self.channel = channel
        self.update_interval = update_interval
        self.default_directory = default_directory

        self._workers: dict[str, asyncio.Task] = {}
        self._active_runs: dict[str, RunHandle] = {}
        # Bumped by forget(); runs started under an older value don't write back
        self._generations: dict[str, int] = {}
        self._running = True
        self._completed_runs = 0
        self._failed_runs = 0

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(
        self,
        conversation_id: str,
        request: QueuedRequest,
        channel: str | None = None,
    ) -> SubmitStatus:
        """Run ``request`` now, or queue it behind the conversation's current run.

        Returns immediately in both cases; the run happens in the
        conversation's worker task.

        Raises:
            RuntimeError: If shutdown has started.
        """
        if not self._running:
            raise RuntimeError("RunOrchestrator is shutting down")

        if channel is not None:
            ctx = self.store.upsert(conversation_id, channel=channel)
        else:
            ctx = self.store.get(conversation_id) or self.store.upsert(conversation_id)

        # A context recreated after forget() is not busy, but the old worker
        # may still be draining; it picks up whatever is queued here.
        worker = self._workers.get(conversation_id)
        if ctx.busy or (worker is not None and not worker.done()):
            ctx = self.store.enqueue(conversation_id, request)
            logger.info(
                f"Queued request for {conversation_id} (queue length {len(ctx.queue)})"
            )
            await self._notify(ctx.channel, conversation_id, QUEUED_TEXT)
            return SubmitStatus.QUEUED

        self.store.upsert(conversation_id, busy=True)
        self._workers[conversation_id] = asyncio.create_task(
            self._drain(conversation_id, request, self._generations.get(conversation_id, 0)),
            name=f"conversation-{conversation_id}",
        )
        return SubmitStatus.STARTED

    async def _drain(
        self, conversation_id: str, request: QueuedRequest, generation: int
    ) -> None:
        try:
            next_request: QueuedRequest | None = request
            while next_request is not None:
                await self._run_one(conversation_id, next_request, generation)
                if not self._running:
                    break
                generation = self._generations.get(conversation_id, 0)
                next_request = self.store.pop_next(conversation_id)
        finally:
            # Must not await between the final empty pop_next and busy=False
            if self._workers.get(conversation_id) is asyncio.current_task():
                del self._workers[conversation_id]
                if conversation_id in self.store:
                    self.store.upsert(conversation_id, busy=False)

    # ------------------------------------------------------------------
    # A single run
    # ------------------------------------------------------------------

    async def _run_one(
        self, conversation_id: str, request: QueuedRequest, generation: int = 0
    ) -> None:
        if self._is_forgotten(conversation_id, generation):
            logger.info(f"Dropping request for forgotten conversation {conversation_id}")
            return

        ctx = self.store.upsert(conversation_id, busy=True)
        accumulator = EventAccumulator()
        publisher = RenderPublisher(
            self.channel, ctx.channel, conversation_id, self.update_interval
        )
        await publisher.publish(accumulator.render(), text=PROCESSING_TEXT)

        if self._is_forgotten(conversation_id, generation):
            logger.info(f"Conversation {conversation_id} was forgotten before its run started")
            await publisher.publish([markdown_section(FORGOTTEN_TEXT)], text=FORGOTTEN_TEXT)
            return

        ctx = self.store.get(conversation_id) or ctx
        run_request = RunRequest(
            message=request.message,
            session_id=ctx.session_id,
            directory=ctx.directory or self.default_directory,
            model=ctx.model,
            agent=ctx.agent,
            command=request.command,
            files=list(request.files),
        )

        handle: RunHandle | None = None
        try:
            handle = self.runner.start(run_request)
            self._active_runs[conversation_id] = handle

            async for message in handle:
                if message.type == RunnerMessageType.EVENT:
                    event = message.event
                    logger.debug(
                        "[opencode event] %s %s", event.type, event.part.get("type", "")
                    )
                    accumulator.push(event)
                    publisher.schedule(accumulator.render)
                elif message.type == RunnerMessageType.STDERR:
                    logger.warning(f"[opencode stderr] {message.text}")
                elif message.type == RunnerMessageType.ERROR:
                    self._failed_runs += 1
                    logger.error(f"[opencode error] {conversation_id}: {message.error}")
                    await publisher.cancel_pending()
                    await publisher.publish(
                        error_blocks(message.error), text=f"Error: {message.error}"
                    )
                elif message.type == RunnerMessageType.DONE:
                    await self._finish_run(
                        conversation_id, accumulator, publisher, message, generation
                    )

        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._failed_runs += 1
            logger.exception(f"Run for {conversation_id} failed: {e}")
            await publisher.cancel_pending()
            await publisher.publish(error_blocks(e), text=f"Error: {e}")
        finally:
            if handle is not None:
                if self._active_runs.get(conversation_id) is handle:
                    del self._active_runs[conversation_id]
                await handle.aclose()
            await publisher.cancel_pending()

    async def _finish_run(
        self,
        conversation_id: str,
        accumulator: EventAccumulator,
        publisher: RenderPublisher,
        done: RunnerMessage,
        generation: int = 0,
    ) -> None:
        logger.info(
            "[opencode done] %s session=%s exit=%s finished=%s",
            conversation_id,
            done.session_id,
            done.exit_code,
            accumulator.is_finished,
        )
        self._completed_runs += 1

        if (
            done.session_id
            and conversation_id in self.store
            and not self._is_forgotten(conversation_id, generation)
        ):
            self.store.upsert(conversation_id, session_id=done.session_id)

        await publisher.cancel_pending()
        blocks = accumulator.render()
        if done.exit_code != 0 and not accumulator.has_content:
            blocks.insert(
                0, markdown_section(f":warning: OpenCode exited with code {done.exit_code}")
            )
        await publisher.publish(blocks)

    def _is_forgotten(self, conversation_id: str, generation: int) -> bool:
        return self._generations.get(conversation_id, 0) != generation

    async def _notify(self, channel: str | None, thread_id: str, text: str) -> None:
        try:
            await self.channel.post_message(channel, thread_id, text)
        except Exception as e:
            logger.warning(f"Failed to notify thread {thread_id}: {e}")

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def is_running(self, conversation_id: str) -> bool:
        """True while the conversation has an opencode process in flight."""
        return conversation_id in self._active_runs

    def abort(self, conversation_id: str) -> bool:
        """SIGTERM the conversation's active run. Queued requests still run."""
        handle = self._active_runs.get(conversation_id)
        if handle is None:
            return False
        handle.abort()
        return True

    def forget(self, conversation_id: str) -> bool:
        """Abort the active run and delete the conversation's state.

        A worker that is still draining keeps its slot, so requests submitted
        afterwards queue behind it instead of starting a second process. The
        aborted run's session ID is not written into the new context.

        Returns:
            True if a run was aborted.
        """
        self._generations[conversation_id] = self._generations.get(conversation_id, 0) + 1
        aborted = self.abort(conversation_id)
        self.store.delete(conversation_id)
        return aborted

    def abort_all(self) -> int:
        handles = list(self._active_runs.values())
        for handle in handles:
            handle.abort()
        return len(handles)

    async def wait_idle(self, conversation_id: str, timeout: float | None = None) -> bool:
        """Wait until the conversation's worker has drained its queue.

        Returns False if the timeout expired first.
        """
        task = self._workers.get(conversation_id)
        if task is None:
            return True
        done, _ = await asyncio.wait({task}, timeout=timeout)
        return bool(done)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Stop accepting work and abort every active process."""
        if not self._running:
            return
        self._running = False

        aborted = self.abort_all()
        logger.info(f"Shutting down orchestrator, aborted {aborted} active run(s)")

        tasks = [t for t in self._workers.values() if not t.done()]
        if tasks:
            # Don't block indefinitely on a process that ignores SIGTERM
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            if pending:
                logger.warning(
                    "%d conversation worker(s) did not finish within %.1fs, cancelling",
                    len(pending),
                    timeout,
                )
                for task in pending:
                    task.cancel()

    # === STATS AND MONITORING ===

    def get_stats(self) -> dict:
        contexts = self.store.list_all()
        return {
            "running": self._running,
            "conversations": len(contexts),
            "busy_conversations": sum(1 for _, ctx in contexts if ctx.busy),
            "queued_requests": sum(len(ctx.queue) for _, ctx in contexts),
            "active_runs": len(self._active_runs),
            "completed_runs": self._completed_runs,
            "failed_runs": self._failed_runs,
        }
