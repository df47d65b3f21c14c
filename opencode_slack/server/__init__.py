"""Local admin HTTP API for inspecting and controlling conversations."""

from opencode_slack.server.app import create_app

__all__ = ["create_app"]
