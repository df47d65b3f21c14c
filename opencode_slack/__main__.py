"""
Command-line entry point: ``opencode-slack-bridge`` / ``python -m opencode_slack``.

Wires config, logging, the Slack clients, the orchestrator and the optional
admin API together and runs until SIGINT/SIGTERM.
"""

import argparse
import asyncio
import logging
import signal
import sys

from aiohttp import web

from opencode_slack.config import BridgeConfig, load_config
from opencode_slack.observability import configure_logging
from opencode_slack.runtime.catalog import AssistantCatalog
from opencode_slack.runtime.conversation_store import ConversationStore
from opencode_slack.runtime.orchestrator import RunOrchestrator
from opencode_slack.runtime.process_runner import ProcessRunner
from opencode_slack.server.app import create_app
from opencode_slack.slack.handlers import SlackEventHandler
from opencode_slack.slack.socket_mode import SocketModeClient
from opencode_slack.slack.web_client import SlackWebClient

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="opencode-slack-bridge",
        description="Bridge Slack threads to the opencode coding assistant",
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="Path to a .env file (default: ./.env if present)",
    )
    parser.add_argument(
        "--admin-port",
        type=int,
        default=None,
        help="Serve the admin API on this port (overrides BRIDGE_ADMIN_PORT, 0 disables)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (overrides BRIDGE_LOG_LEVEL)",
    )
    parser.add_argument(
        "--log-format",
        choices=["auto", "human", "json"],
        default=None,
        help="Log format (overrides BRIDGE_LOG_FORMAT)",
    )
    return parser


async def _warm_catalog(catalog: AssistantCatalog) -> None:
    models, agents = await asyncio.gather(catalog.list_models(), catalog.list_agents())
    logger.info(f"Loaded {len(models)} models and {len(agents)} agents")


async def run_bridge(config: BridgeConfig) -> None:
    """Run the bridge until a termination signal arrives."""
    store = ConversationStore()
    runner = ProcessRunner(bin_path=config.opencode_bin, default_model=config.default_model)
    web_client = SlackWebClient(config.slack_bot_token, app_token=config.slack_app_token)
    catalog = AssistantCatalog(bin_path=config.opencode_bin, ttl_seconds=config.list_cache_ttl)
    orchestrator = RunOrchestrator(
        store=store,
        runner=runner,
        channel=web_client,
        update_interval=config.update_interval,
        default_directory=config.default_dir,
    )

    identity = await web_client.auth_test()
    logger.info(f"Authenticated as {identity.get('user')} ({identity.get('user_id')})")

    handler = SlackEventHandler(
        config=config,
        store=store,
        orchestrator=orchestrator,
        web_client=web_client,
        catalog=catalog,
        bot_user_id=identity.get("user_id"),
    )
    socket_client = SocketModeClient(web_client, handler.handle_event)

    admin_runner: web.AppRunner | None = None
    if config.admin_enabled:
        admin_runner = web.AppRunner(create_app(orchestrator, store))
        await admin_runner.setup()
        site = web.TCPSite(admin_runner, config.admin_host, config.admin_port)
        await site.start()
        logger.info(f"Admin API listening on http://{config.admin_host}:{config.admin_port}")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info(f"Allowed user: {config.allowed_user_id}")
    logger.info(f"Default directory: {config.default_dir}")
    warm_task = asyncio.create_task(_warm_catalog(catalog))
    socket_task = asyncio.create_task(socket_client.run(), name="socket-mode")

    try:
        await stop_event.wait()
        logger.info("Shutting down...")
    finally:
        warm_task.cancel()
        await socket_client.stop()
        await orchestrator.shutdown()
        socket_task.cancel()
        await asyncio.gather(socket_task, warm_task, return_exceptions=True)
        if admin_runner is not None:
            await admin_runner.cleanup()
        await web_client.aclose()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


def main(argv: list[str] | None = None) -> int:
    """Entry point for the bridge."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.env_file)
    except ValueError as e:
        configure_logging(level=args.log_level or "INFO", format=args.log_format or "auto")
        logger.error(str(e))
        return 1

    if args.admin_port is not None:
        config.admin_port = args.admin_port
    if args.log_level:
        config.log_level = args.log_level.upper()
    if args.log_format:
        config.log_format = args.log_format

    configure_logging(level=config.log_level, format=config.log_format)

    try:
        asyncio.run(run_bridge(config))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
