"""
Slack event handling: who may talk to the bot, which messages it answers,
and the ``!init`` / ``!models`` / ``!agents`` commands.
"""

import logging
from typing import Any

from opencode_slack.config import DEFAULT_MODEL, BridgeConfig
from opencode_slack.directives import parse_directives, strip_mentions
from opencode_slack.runtime.catalog import AssistantCatalog
from opencode_slack.runtime.conversation_store import ConversationStore, QueuedRequest
from opencode_slack.runtime.orchestrator import RunOrchestrator
from opencode_slack.slack.web_client import SlackWebClient

logger = logging.getLogger(__name__)

UNAUTHORIZED_TEXT = "Sorry, you're not authorized to use this bot."
EMPTY_MENTION_TEXT = "Send me a message and I'll pass it to OpenCode!"
INIT_MESSAGE = "initialize this project"

MODEL_SHORTLIST = [
    "anthropic/claude-opus-4-6",
    "anthropic/claude-opus-4-5",
    "anthropic/claude-sonnet-4-6",
    "anthropic/claude-sonnet-4-5",
    "anthropic/claude-haiku-4-5",
    "openai/gpt-5.2",
    "openai/codex-5.3",
    "google/gemini-2.5-pro",
    "google/gemini-2.5-flash",
]
MAX_LISTED_MATCHES = 20


class SlackEventHandler:
    """Routes Slack events into the orchestrator.

    ``bot_user_id`` comes from auth.test; channel messages that mention it
    are left to the ``app_mention`` handler so they are not run twice.
    """

    def __init__(
        self,
        config: BridgeConfig,
        store: ConversationStore,
        orchestrator: RunOrchestrator,
        web_client: SlackWebClient,
        catalog: AssistantCatalog,
        bot_user_id: str | None = None,
    ):
        self.config = config
        self.store = store
        self.orchestrator = orchestrator
        self.web = web_client
        self.catalog = catalog
        self.bot_user_id = bot_user_id

    def is_allowed(self, user_id: str | None) -> bool:
        return bool(user_id) and user_id == self.config.allowed_user_id

    async def handle_event(self, event: dict[str, Any]) -> None:
        """Entry point for every Events API payload event."""
        event_type = event.get("type")
        if event_type == "app_mention":
            await self.on_app_mention(event)
        elif event_type == "message":
            await self.on_message(event)
        else:
            logger.debug(f"Ignoring event type {event_type!r}")

    # ------------------------------------------------------------------
    # Event filters
    # ------------------------------------------------------------------

    async def on_app_mention(self, event: dict[str, Any]) -> None:
        logger.info(
            "[app_mention] user=%s text=%r", event.get("user"), (event.get("text") or "")[:80]
        )
        channel = event.get("channel")
        if not self.is_allowed(event.get("user")):
            await self._say(channel, event["ts"], UNAUTHORIZED_TEXT)
            return

        text = strip_mentions(event.get("text", ""))
        if not text:
            await self._say(channel, event["ts"], EMPTY_MENTION_TEXT)
            return

        thread_id = event.get("thread_ts") or event["ts"]
        await self.handle_message(text, thread_id, channel)

    async def on_message(self, event: dict[str, Any]) -> None:
        if event.get("subtype") or event.get("bot_id"):
            return
        if not event.get("text"):
            return
        if not self.is_allowed(event.get("user")):
            return

        is_dm = event.get("channel_type") == "im"
        thread_ts = event.get("thread_ts")
        is_thread_reply = bool(thread_ts) and thread_ts != event.get("ts")
        if not is_dm and not is_thread_reply:
            return

        # Replies only continue threads the bot already knows
        if is_thread_reply and thread_ts not in self.store:
            return

        if not is_dm and self.bot_user_id and f"<@{self.bot_user_id}>" in event["text"]:
            return

        text = strip_mentions(event["text"])
        if not text:
            return

        thread_id = thread_ts or event["ts"]
        logger.info(f"[message] {text[:80]!r} thread={thread_id}")
        await self.handle_message(text, thread_id, event.get("channel"))

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def handle_message(self, text: str, thread_id: str, channel: str | None) -> None:
        directives = parse_directives(text)

        if directives.command:
            await self.handle_command(
                directives.command, directives.command_args, thread_id, channel
            )
            return

        if directives.directory:
            self.store.upsert(thread_id, directory=directives.directory)
            logger.info(f"Thread {thread_id} directory set to {directives.directory}")

        if not directives.message:
            if directives.directory:
                await self._say(
                    channel, thread_id, f":file_folder: Working directory: `{directives.directory}`"
                )
            return

        self._ensure_directory(thread_id)
        await self.orchestrator.submit(
            thread_id, QueuedRequest(message=directives.message), channel=channel
        )

    def _ensure_directory(self, thread_id: str) -> None:
        ctx = self.store.get(thread_id)
        if ctx is None or not ctx.directory:
            self.store.upsert(thread_id, directory=self.config.default_dir)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def handle_command(
        self,
        command: str,
        args: str | None,
        thread_id: str,
        channel: str | None,
    ) -> None:
        logger.info(f"[command] !{command} {args or ''} thread={thread_id}")
        if command == "init":
            await self.command_init(thread_id, channel)
        elif command == "models":
            await self.command_models(args, thread_id, channel)
        elif command == "agents":
            await self.command_agents(args, thread_id, channel)
        else:
            await self._say(
                channel,
                thread_id,
                f"Unknown command: `!{command}`\nAvailable: `!init`, `!models`, `!agents`",
            )

    async def command_init(self, thread_id: str, channel: str | None) -> None:
        """Generate AGENTS.md for the thread's project via ``--command init``."""
        self._ensure_directory(thread_id)
        await self.orchestrator.submit(
            thread_id,
            QueuedRequest(message=INIT_MESSAGE, command="init"),
            channel=channel,
        )

    async def command_models(self, args: str | None, thread_id: str, channel: str | None) -> None:
        ctx = self.store.get(thread_id)
        current = (ctx.model if ctx else None) or self.config.default_model or DEFAULT_MODEL

        if not args:
            shortlist = "\n".join(f"• `{m}`" for m in MODEL_SHORTLIST)
            await self._say(
                channel,
                thread_id,
                f":brain: *Current model:* `{current}`\n\n{shortlist}\n\n"
                "Type `!models <search>` to pick one.",
            )
            return

        models = await self.catalog.list_models()
        if not models:
            await self._say(
                channel,
                thread_id,
                ":x: Could not load models list. "
                "Make sure opencode is configured and accessible.",
            )
            return

        query = args.strip()
        if query in models:
            await self._set_model(query, thread_id, channel)
            return

        lowered = query.lower()
        matches = [m for m in models if lowered in m.lower()]
        if len(matches) == 1:
            await self._set_model(matches[0], thread_id, channel)
        elif not matches:
            await self._say(channel, thread_id, f":x: No model found matching `{query}`")
        elif len(matches) <= MAX_LISTED_MATCHES:
            listing = "\n".join(f"• `{m}`" for m in matches)
            await self._say(
                channel,
                thread_id,
                f":mag: {len(matches)} matches for `{query}`:\n{listing}\n\n"
                "Type `!models <full id>` to pick one.",
            )
        else:
            await self._say(
                channel,
                thread_id,
                f":mag: {len(matches)} matches for `{query}`, be more specific.\n"
                "Examples: `!models claude-opus-4-6`, `!models gemini-2.5-pro`",
            )

    async def _set_model(self, model: str, thread_id: str, channel: str | None) -> None:
        self.store.upsert(thread_id, model=model)
        await self._say(channel, thread_id, f":white_check_mark: Model set to `{model}`")

    async def command_agents(self, args: str | None, thread_id: str, channel: str | None) -> None:
        agents = await self.catalog.list_agents()
        if not agents:
            await self._say(
                channel,
                thread_id,
                ":x: Could not load agents list. Make sure opencode is configured.",
            )
            return

        if not args:
            ctx = self.store.get(thread_id)
            current = (ctx.agent if ctx else None) or "default"
            lines = [f":robot_face: *Current agent:* `{current}`"]
            primary = [a.name for a in agents if a.type == "primary"]
            subagents = [a.name for a in agents if a.type != "primary"]
            if primary:
                lines.append("*Primary:* " + ", ".join(f"`{n}`" for n in primary))
            if subagents:
                lines.append("*Subagents:* " + ", ".join(f"`{n}`" for n in subagents))
            lines.append("Type `!agents <name>` to switch.")
            await self._say(channel, thread_id, "\n".join(lines))
            return

        query = args.strip().lower()
        match = next((a for a in agents if a.name.lower() == query), None)
        if match is None:
            partial = [a for a in agents if query in a.name.lower()]
            if len(partial) == 1:
                match = partial[0]
        if match is None:
            await self._say(channel, thread_id, f":x: No agent found matching `{args.strip()}`")
            return

        self.store.upsert(thread_id, agent=match.name)
        await self._say(
            channel,
            thread_id,
            f":white_check_mark: Agent set to `{match.name}` ({match.type})",
        )

    async def _say(self, channel: str | None, thread_id: str, text: str) -> None:
        try:
            await self.web.post_message(channel, thread_id, text)
        except Exception as e:
            logger.warning(f"Failed to reply in thread {thread_id}: {e}")
