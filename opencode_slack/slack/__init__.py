"""Slack transport: Web API client, Socket Mode client and event handlers."""

from opencode_slack.slack.handlers import SlackEventHandler
from opencode_slack.slack.socket_mode import SocketModeClient
from opencode_slack.slack.web_client import SlackApiError, SlackWebClient

__all__ = ["SlackApiError", "SlackEventHandler", "SlackWebClient", "SocketModeClient"]
