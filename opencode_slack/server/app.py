"""aiohttp Application factory for the bridge's admin API."""

import logging

from aiohttp import web

from opencode_slack import __version__
from opencode_slack.runtime.conversation_store import ConversationStore
from opencode_slack.runtime.orchestrator import RunOrchestrator

logger = logging.getLogger(__name__)


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Catch exceptions and return JSON error responses."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unhandled error: {e}")
        return web.json_response(
            {"error": str(e), "type": type(e).__name__},
            status=500,
        )


async def _on_shutdown(app: web.Application) -> None:
    """Abort every active run when the server stops."""
    orchestrator: RunOrchestrator = app["orchestrator"]
    await orchestrator.shutdown()


async def handle_health(request: web.Request) -> web.Response:
    """GET /api/health - liveness plus orchestrator counters."""
    orchestrator: RunOrchestrator = request.app["orchestrator"]
    return web.json_response(
        {
            "status": "ok",
            "version": __version__,
            **orchestrator.get_stats(),
        }
    )


def create_app(orchestrator: RunOrchestrator, store: ConversationStore) -> web.Application:
    """Create and configure the aiohttp Application.

    Args:
        orchestrator: The running RunOrchestrator.
        store: The conversation store it reads from.

    Returns:
        Configured aiohttp Application ready to run.
    """
    app = web.Application(middlewares=[error_middleware])

    app["orchestrator"] = orchestrator
    app["store"] = store

    app.on_shutdown.append(_on_shutdown)

    app.router.add_get("/api/health", handle_health)

    from opencode_slack.server.routes_conversations import register_routes

    register_routes(app)

    return app
