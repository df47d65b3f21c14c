"""Streaming-run core: process runner, accumulator, store and orchestrator."""

from opencode_slack.runtime.accumulator import EventAccumulator
from opencode_slack.runtime.catalog import AgentInfo, AssistantCatalog
from opencode_slack.runtime.conversation_store import (
    ConversationContext,
    ConversationStore,
    QueuedRequest,
)
from opencode_slack.runtime.events import RunEvent, RunnerMessage, RunnerMessageType
from opencode_slack.runtime.orchestrator import ChatChannel, RunOrchestrator, SubmitStatus
from opencode_slack.runtime.process_runner import ProcessRunner, RunHandle, RunRequest

__all__ = [
    "AgentInfo",
    "AssistantCatalog",
    "ChatChannel",
    "ConversationContext",
    "ConversationStore",
    "EventAccumulator",
    "ProcessRunner",
    "QueuedRequest",
    "RunEvent",
    "RunHandle",
    "RunOrchestrator",
    "RunRequest",
    "RunnerMessage",
    "RunnerMessageType",
    "SubmitStatus",
]
