"""Tests for ConversationStore."""

import pytest

from opencode_slack.runtime.conversation_store import ConversationStore, QueuedRequest


class TestConversationStore:
    def test_get_missing_returns_none(self):
        assert ConversationStore().get("t1") is None

    def test_upsert_creates_with_defaults(self):
        store = ConversationStore()
        ctx = store.upsert("t1", directory="/src")
        assert ctx.directory == "/src"
        assert ctx.session_id is None
        assert ctx.busy is False
        assert ctx.queue == []
        assert "t1" in store
        assert len(store) == 1

    def test_upsert_merges_patch(self):
        store = ConversationStore()
        store.upsert("t1", directory="/src", model="anthropic/x")
        ctx = store.upsert("t1", busy=True)
        assert ctx.directory == "/src"
        assert ctx.model == "anthropic/x"
        assert ctx.busy is True
        assert ctx.updated_at >= ctx.created_at

    def test_returned_contexts_are_snapshots(self):
        store = ConversationStore()
        before = store.upsert("t1")
        store.upsert("t1", busy=True)
        assert before.busy is False
        assert store.get("t1").busy is True

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            ConversationStore().upsert("t1", colour="blue")

    def test_delete(self):
        store = ConversationStore()
        store.upsert("t1")
        assert store.delete("t1") is True
        assert store.delete("t1") is False
        assert store.get("t1") is None

    def test_queue_is_fifo(self):
        store = ConversationStore()
        store.enqueue("t1", QueuedRequest(message="a"))
        store.enqueue("t1", QueuedRequest(message="b", command="init"))
        assert [r.message for r in store.get("t1").queue] == ["a", "b"]

        assert store.pop_next("t1").message == "a"
        nxt = store.pop_next("t1")
        assert nxt.message == "b" and nxt.command == "init"
        assert store.pop_next("t1") is None
        assert store.pop_next("unknown") is None

    def test_list_all(self):
        store = ConversationStore()
        store.upsert("t1")
        store.upsert("t2", busy=True)
        assert sorted(cid for cid, _ in store.list_all()) == ["t1", "t2"]
