"""Tests for SlackEventHandler: filtering, directives and commands."""

import pytest

from opencode_slack.config import BridgeConfig
from opencode_slack.runtime.catalog import AgentInfo
from opencode_slack.runtime.conversation_store import ConversationStore
from opencode_slack.slack.handlers import (
    EMPTY_MENTION_TEXT,
    INIT_MESSAGE,
    UNAUTHORIZED_TEXT,
    SlackEventHandler,
)

ALLOWED = "U_OWNER"
BOT = "U_BOT"


class FakeWeb:
    def __init__(self):
        self.posts: list[tuple] = []

    async def post_message(self, channel, thread_id, text, blocks=None):
        self.posts.append((channel, thread_id, text))
        return f"m{len(self.posts)}"


class FakeOrchestrator:
    def __init__(self, store: ConversationStore):
        self.store = store
        self.submitted: list[tuple] = []

    async def submit(self, conversation_id, request, channel=None):
        if channel is not None:
            self.store.upsert(conversation_id, channel=channel)
        self.submitted.append((conversation_id, request, channel))


class FakeCatalog:
    def __init__(self, models=None, agents=None):
        self.models = models or []
        self.agents = agents or []

    async def list_models(self):
        return self.models

    async def list_agents(self):
        return self.agents


MODELS = [
    "anthropic/claude-opus-4-6",
    "anthropic/claude-sonnet-4-5",
    "openai/gpt-5.2",
] + [f"openrouter/vendor-{i}" for i in range(25)]

AGENTS = [
    AgentInfo("build", "primary"),
    AgentInfo("plan", "primary"),
    AgentInfo("general", "subagent"),
    AgentInfo("explore", "subagent"),
]


@pytest.fixture
def store():
    return ConversationStore()


@pytest.fixture
def web():
    return FakeWeb()


@pytest.fixture
def handler(store, web):
    config = BridgeConfig(
        slack_bot_token="xoxb",
        slack_app_token="xapp",
        allowed_user_id=ALLOWED,
        default_model="anthropic/claude-opus-4-6",
        default_dir="/srv/default",
    )
    return SlackEventHandler(
        config=config,
        store=store,
        orchestrator=FakeOrchestrator(store),
        web_client=web,
        catalog=FakeCatalog(MODELS, AGENTS),
        bot_user_id=BOT,
    )


def dm(text, /, ts="100.1", **extra):
    return {
        "type": "message",
        "channel_type": "im",
        "channel": "D1",
        "user": ALLOWED,
        "text": text,
        "ts": ts,
        **extra,
    }


def submitted_messages(handler):
    return [(cid, req.message) for cid, req, _ in handler.orchestrator.submitted]


class TestMentions:
    @pytest.mark.asyncio
    async def test_unauthorized_user_refused(self, handler, web):
        await handler.handle_event(
            {"type": "app_mention", "user": "U_OTHER", "text": f"<@{BOT}> hi", "ts": "1.0", "channel": "C1"}
        )
        assert web.posts == [("C1", "1.0", UNAUTHORIZED_TEXT)]
        assert handler.orchestrator.submitted == []

    @pytest.mark.asyncio
    async def test_empty_mention_gets_hint(self, handler, web):
        await handler.handle_event(
            {"type": "app_mention", "user": ALLOWED, "text": f"<@{BOT}>  ", "ts": "1.0", "channel": "C1"}
        )
        assert web.posts == [("C1", "1.0", EMPTY_MENTION_TEXT)]

    @pytest.mark.asyncio
    async def test_mention_starts_conversation_with_default_dir(self, handler, store):
        await handler.handle_event(
            {"type": "app_mention", "user": ALLOWED, "text": f"<@{BOT}> fix it", "ts": "1.0", "channel": "C1"}
        )
        assert submitted_messages(handler) == [("1.0", "fix it")]
        assert store.get("1.0").directory == "/srv/default"
        assert store.get("1.0").channel == "C1"

    @pytest.mark.asyncio
    async def test_mention_in_thread_uses_thread_ts(self, handler):
        await handler.handle_event(
            {
                "type": "app_mention",
                "user": ALLOWED,
                "text": f"<@{BOT}> more",
                "ts": "2.0",
                "thread_ts": "1.0",
                "channel": "C1",
            }
        )
        assert submitted_messages(handler) == [("1.0", "more")]


class TestMessageFiltering:
    @pytest.mark.asyncio
    async def test_dm_is_handled(self, handler):
        await handler.handle_event(dm("hello"))
        assert submitted_messages(handler) == [("100.1", "hello")]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "extra",
        [
            {"subtype": "message_changed"},
            {"bot_id": "B1"},
            {"user": "U_OTHER"},
            {"text": ""},
        ],
    )
    async def test_ignored_messages(self, handler, extra):
        await handler.handle_event(dm("hello", **extra))
        assert handler.orchestrator.submitted == []

    @pytest.mark.asyncio
    async def test_top_level_channel_message_ignored(self, handler):
        await handler.handle_event(dm("hello", channel_type="channel"))
        assert handler.orchestrator.submitted == []

    @pytest.mark.asyncio
    async def test_reply_in_unknown_thread_ignored(self, handler):
        await handler.handle_event(dm("hello", channel_type="channel", ts="5.0", thread_ts="4.0"))
        assert handler.orchestrator.submitted == []

    @pytest.mark.asyncio
    async def test_reply_in_known_thread_handled(self, handler, store):
        store.upsert("4.0", directory="/srv/app")
        await handler.handle_event(dm("and then?", channel_type="channel", ts="5.0", thread_ts="4.0"))
        assert submitted_messages(handler) == [("4.0", "and then?")]
        assert store.get("4.0").directory == "/srv/app"

    @pytest.mark.asyncio
    async def test_channel_reply_mentioning_bot_left_to_app_mention(self, handler, store):
        store.upsert("4.0")
        await handler.handle_event(
            dm(f"<@{BOT}> again", channel_type="channel", ts="5.0", thread_ts="4.0")
        )
        assert handler.orchestrator.submitted == []

    @pytest.mark.asyncio
    async def test_message_only_mentions_ignored(self, handler):
        await handler.handle_event(dm("<@U_SOMEONE>"))
        assert handler.orchestrator.submitted == []


class TestDirectives:
    @pytest.mark.asyncio
    async def test_directory_directive_sets_context(self, handler, store):
        await handler.handle_event(dm("dir:/srv/app build it"))
        assert store.get("100.1").directory == "/srv/app"
        assert submitted_messages(handler) == [("100.1", "build it")]

    @pytest.mark.asyncio
    async def test_directory_only_confirms_without_running(self, handler, store, web):
        await handler.handle_event(dm("dir:/srv/app"))
        assert store.get("100.1").directory == "/srv/app"
        assert handler.orchestrator.submitted == []
        assert "/srv/app" in web.posts[0][2]


class TestCommands:
    @pytest.mark.asyncio
    async def test_init(self, handler, store):
        await handler.handle_event(dm("!init"))
        (cid, request, _), = handler.orchestrator.submitted
        assert request.message == INIT_MESSAGE
        assert request.command == "init"
        assert store.get(cid).directory == "/srv/default"

    @pytest.mark.asyncio
    async def test_models_without_args_lists_current_and_shortlist(self, handler, web):
        await handler.handle_event(dm("!models"))
        text = web.posts[0][2]
        assert "Current model:* `anthropic/claude-opus-4-6`" in text
        assert "`openai/gpt-5.2`" in text

    @pytest.mark.asyncio
    async def test_models_exact_match_sets_model(self, handler, store, web):
        await handler.handle_event(dm("!models openai/gpt-5.2"))
        assert store.get("100.1").model == "openai/gpt-5.2"
        assert "Model set to `openai/gpt-5.2`" in web.posts[0][2]

    @pytest.mark.asyncio
    async def test_models_single_partial_match_sets_model(self, handler, store):
        await handler.handle_event(dm("!models SONNET"))
        assert store.get("100.1").model == "anthropic/claude-sonnet-4-5"

    @pytest.mark.asyncio
    async def test_models_several_matches_listed(self, handler, store, web):
        await handler.handle_event(dm("!models anthropic"))
        text = web.posts[0][2]
        assert "2 matches" in text
        assert "`anthropic/claude-sonnet-4-5`" in text
        assert store.get("100.1") is None

    @pytest.mark.asyncio
    async def test_models_too_many_matches(self, handler, web):
        await handler.handle_event(dm("!models vendor"))
        assert "be more specific" in web.posts[0][2]

    @pytest.mark.asyncio
    async def test_models_no_match(self, handler, web):
        await handler.handle_event(dm("!models llama"))
        assert web.posts[0][2] == ":x: No model found matching `llama`"

    @pytest.mark.asyncio
    async def test_models_catalog_unavailable(self, handler, web):
        handler.catalog = FakeCatalog()
        await handler.handle_event(dm("!models gpt"))
        assert "Could not load models list" in web.posts[0][2]

    @pytest.mark.asyncio
    async def test_agents_listing(self, handler, web):
        await handler.handle_event(dm("!agents"))
        text = web.posts[0][2]
        assert "*Primary:* `build`, `plan`" in text
        assert "*Subagents:* `general`, `explore`" in text

    @pytest.mark.asyncio
    async def test_agents_set_by_exact_and_partial(self, handler, store):
        await handler.handle_event(dm("!agents plan"))
        assert store.get("100.1").agent == "plan"
        await handler.handle_event(dm("!agents expl"))
        assert store.get("100.1").agent == "explore"

    @pytest.mark.asyncio
    async def test_agents_ambiguous_partial_not_found(self, handler, store, web):
        # "l" matches build, plan, general and explore
        await handler.handle_event(dm("!agents l"))
        assert store.get("100.1") is None
        assert "No agent found" in web.posts[0][2]
