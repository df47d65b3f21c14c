"""Conversation inspection and control routes.

- GET    /api/conversations - list all conversations
- GET    /api/conversations/{conversation_id} - one conversation
- DELETE /api/conversations/{conversation_id} - abort its run and forget it
- POST   /api/conversations/{conversation_id}/abort - abort its active run
"""

import logging

from aiohttp import web

from opencode_slack.runtime.conversation_store import ConversationContext, ConversationStore
from opencode_slack.runtime.orchestrator import RunOrchestrator

logger = logging.getLogger(__name__)


def _get_store(request: web.Request) -> ConversationStore:
    return request.app["store"]


def _get_orchestrator(request: web.Request) -> RunOrchestrator:
    return request.app["orchestrator"]


def _conversation_to_dict(
    conversation_id: str, ctx: ConversationContext, orchestrator: RunOrchestrator
) -> dict:
    data = ctx.model_dump(mode="json")
    data["conversation_id"] = conversation_id
    data["running"] = orchestrator.is_running(conversation_id)
    data["queue_length"] = len(ctx.queue)
    return data


async def handle_list_conversations(request: web.Request) -> web.Response:
    """GET /api/conversations - every conversation the bridge knows about."""
    orchestrator = _get_orchestrator(request)
    conversations = [
        _conversation_to_dict(cid, ctx, orchestrator)
        for cid, ctx in sorted(_get_store(request).list_all(), key=lambda item: item[1].created_at)
    ]
    return web.json_response({"conversations": conversations})


async def handle_get_conversation(request: web.Request) -> web.Response:
    """GET /api/conversations/{conversation_id}"""
    cid = request.match_info["conversation_id"]
    ctx = _get_store(request).get(cid)
    if ctx is None:
        return web.json_response({"error": f"Conversation '{cid}' not found"}, status=404)
    return web.json_response(_conversation_to_dict(cid, ctx, _get_orchestrator(request)))


async def handle_delete_conversation(request: web.Request) -> web.Response:
    """DELETE /api/conversations/{conversation_id} - abort, then clear state."""
    cid = request.match_info["conversation_id"]
    store = _get_store(request)
    if cid not in store:
        return web.json_response({"error": f"Conversation '{cid}' not found"}, status=404)

    aborted = _get_orchestrator(request).forget(cid)
    logger.info(f"Deleted conversation {cid} (aborted run: {aborted})")
    return web.json_response({"deleted": cid, "aborted": aborted})


async def handle_abort_conversation(request: web.Request) -> web.Response:
    """POST /api/conversations/{conversation_id}/abort - stop the active run.

    Queued requests are left in place and run next.
    """
    cid = request.match_info["conversation_id"]
    if cid not in _get_store(request):
        return web.json_response({"error": f"Conversation '{cid}' not found"}, status=404)

    aborted = _get_orchestrator(request).abort(cid)
    if not aborted:
        return web.json_response({"error": "No active run", "aborted": False}, status=409)
    return web.json_response({"aborted": True})


def register_routes(app: web.Application) -> None:
    """Register conversation routes."""
    app.router.add_get("/api/conversations", handle_list_conversations)
    app.router.add_get("/api/conversations/{conversation_id}", handle_get_conversation)
    app.router.add_delete("/api/conversations/{conversation_id}", handle_delete_conversation)
    app.router.add_post("/api/conversations/{conversation_id}/abort", handle_abort_conversation)
