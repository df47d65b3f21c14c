"""
Conversation State Store - per-thread state held in memory.

One ConversationContext per Slack thread (keyed by the thread's ts). State is
ephemeral: it lives as long as the process and is never persisted.

All operations are synchronous. Callers running on the event loop must
re-read a context after any await instead of reusing a stale copy; the
``enqueue`` / ``pop_next`` helpers do the read-modify-write in one step.
"""

import logging
import time

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class QueuedRequest(BaseModel):
    """A message waiting for its conversation's current run to finish."""

    message: str
    command: str | None = None
    files: list[str] = Field(default_factory=list)


class ConversationContext(BaseModel):
    """State of one conversation thread."""

    session_id: str | None = None  # opencode session to continue
    directory: str | None = None
    model: str | None = None
    agent: str | None = None
    channel: str | None = None
    busy: bool = False
    queue: list[QueuedRequest] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)


_FIELDS = frozenset(ConversationContext.model_fields)


class ConversationStore:
    """In-memory map of conversation ID -> ConversationContext.

    Contexts handed out are snapshots: every ``upsert`` replaces the stored
    object with a merged copy instead of mutating it in place.
    """

    def __init__(self) -> None:
        self._contexts: dict[str, ConversationContext] = {}

    def get(self, conversation_id: str) -> ConversationContext | None:
        return self._contexts.get(conversation_id)

    def upsert(self, conversation_id: str, **patch) -> ConversationContext:
        """Create or update a context and return the merged result.

        Raises:
            ValueError: If the patch names a field ConversationContext lacks.
        """
        unknown = set(patch) - _FIELDS
        if unknown:
            raise ValueError(f"Unknown conversation fields: {sorted(unknown)}")

        existing = self._contexts.get(conversation_id)
        if existing is None:
            updated = ConversationContext.model_validate(patch)
            logger.debug(f"Created conversation context {conversation_id}")
        else:
            updated = existing.model_copy(update={**patch, "updated_at": time.time()})
        self._contexts[conversation_id] = updated
        return updated

    def delete(self, conversation_id: str) -> bool:
        return self._contexts.pop(conversation_id, None) is not None

    def list_all(self) -> list[tuple[str, ConversationContext]]:
        return list(self._contexts.items())

    def enqueue(self, conversation_id: str, request: QueuedRequest) -> ConversationContext:
        """Append a request to the conversation's FIFO queue."""
        current = self.get(conversation_id)
        queue = list(current.queue) if current else []
        queue.append(request)
        return self.upsert(conversation_id, queue=queue)

    def pop_next(self, conversation_id: str) -> QueuedRequest | None:
        """Remove and return the oldest queued request, if any."""
        current = self.get(conversation_id)
        if current is None or not current.queue:
            return None
        head, *rest = current.queue
        self.upsert(conversation_id, queue=rest)
        return head

    def __len__(self) -> int:
        return len(self._contexts)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._contexts
