"""Bridge configuration loaded from environment variables."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_OPENCODE_BIN = str(Path.home() / ".opencode" / "bin" / "opencode")
DEFAULT_MODEL = "anthropic/claude-opus-4-6"
DEFAULT_LIST_CACHE_TTL_MS = 300_000
DEFAULT_UPDATE_INTERVAL = 1.5


def get_env_var(
    name: str,
    default: str | None = None,
    required: bool = False,
) -> str | None:
    """
    Get an environment variable with optional default and required validation.

    Args:
        name: Name of the environment variable
        default: Default value if not set
        required: If True, raises ValueError when not set (or empty) and no default

    Returns:
        The environment variable value or default

    Raises:
        ValueError: If required=True and variable is not set with no default
    """
    value = os.environ.get(name, default)
    if required and not value:
        raise ValueError(
            f"Required environment variable '{name}' is not set. "
            f"Please set it before starting the bridge."
        )
    return value


def _parse_ttl_seconds(raw: str | None) -> float:
    """Convert a millisecond TTL string to seconds, falling back on bad input."""
    try:
        ttl_ms = float(raw) if raw is not None else DEFAULT_LIST_CACHE_TTL_MS
    except ValueError:
        logger.warning(f"Invalid OPENCODE_LIST_CACHE_TTL_MS={raw!r}, using default")
        ttl_ms = DEFAULT_LIST_CACHE_TTL_MS
    if not ttl_ms > 0 or ttl_ms == float("inf"):
        ttl_ms = DEFAULT_LIST_CACHE_TTL_MS
    return ttl_ms / 1000.0


def _parse_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}, using {default}")
        return default
    return value if value > 0 else default


def _parse_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}, using {default}")
        return default


@dataclass
class BridgeConfig:
    """Runtime settings for the bridge."""

    slack_bot_token: str
    slack_app_token: str
    allowed_user_id: str
    opencode_bin: str = DEFAULT_OPENCODE_BIN
    default_model: str | None = DEFAULT_MODEL
    default_dir: str = "."
    list_cache_ttl: float = DEFAULT_LIST_CACHE_TTL_MS / 1000.0
    update_interval: float = DEFAULT_UPDATE_INTERVAL
    admin_host: str = "127.0.0.1"
    admin_port: int = 0  # 0 disables the admin API
    log_level: str = "INFO"
    log_format: str = "auto"

    @property
    def admin_enabled(self) -> bool:
        return self.admin_port > 0


def load_config(env_file: str | Path | None = None) -> BridgeConfig:
    """Build a BridgeConfig from the environment.

    A ``.env`` file is loaded first (without overriding variables that are
    already set), so real environment variables always win.

    Raises:
        ValueError: If a required variable is missing.
    """
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    model = os.environ.get("OPENCODE_DEFAULT_MODEL", DEFAULT_MODEL).strip()

    return BridgeConfig(
        slack_bot_token=get_env_var("SLACK_BOT_TOKEN", required=True),
        slack_app_token=get_env_var("SLACK_APP_TOKEN", required=True),
        allowed_user_id=get_env_var("ALLOWED_USER_ID", required=True),
        opencode_bin=get_env_var("OPENCODE_BIN") or DEFAULT_OPENCODE_BIN,
        default_model=model or None,
        default_dir=os.path.abspath(
            os.path.expanduser(get_env_var("OPENCODE_DEFAULT_DIR") or os.getcwd())
        ),
        list_cache_ttl=_parse_ttl_seconds(get_env_var("OPENCODE_LIST_CACHE_TTL_MS")),
        update_interval=_parse_float("BRIDGE_UPDATE_INTERVAL", DEFAULT_UPDATE_INTERVAL),
        admin_host=get_env_var("BRIDGE_ADMIN_HOST", "127.0.0.1"),
        admin_port=_parse_int("BRIDGE_ADMIN_PORT", 0),
        log_level=get_env_var("BRIDGE_LOG_LEVEL", "INFO").upper(),
        log_format=get_env_var("BRIDGE_LOG_FORMAT", "auto").lower(),
    )
