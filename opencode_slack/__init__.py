"""
OpenCode <-> Slack bridge.

Runs the ``opencode`` coding assistant for messages posted in Slack threads
and streams its output back into the thread as it is produced.
"""

__version__ = "0.1.0"
