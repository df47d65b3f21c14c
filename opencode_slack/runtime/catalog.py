"""
Assistant Catalog - cached ``opencode models`` / ``opencode agent list``.

Listings are cached for a TTL so pickers and commands don't spawn a
subprocess every time. A failed listing returns an empty list and is not
cached; callers must treat ``[]`` as "unavailable".
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass

from opencode_slack.config import DEFAULT_LIST_CACHE_TTL_MS, DEFAULT_OPENCODE_BIN

logger = logging.getLogger(__name__)

# Header lines look like "build (primary)"; permission dumps follow indented
_AGENT_LINE = re.compile(r"^(\w+)\s+\((\w+)\)")


@dataclass(frozen=True)
class AgentInfo:
    name: str
    type: str  # "primary" | "subagent"


def parse_models(output: str) -> list[str]:
    return [line.strip() for line in output.splitlines() if line.strip()]


def parse_agents(output: str) -> list[AgentInfo]:
    agents = []
    for line in output.splitlines():
        match = _AGENT_LINE.match(line)
        if match:
            agents.append(AgentInfo(name=match.group(1), type=match.group(2)))
    return agents


class AssistantCatalog:
    """Lists models and agents known to the opencode executable."""

    def __init__(
        self,
        bin_path: str = DEFAULT_OPENCODE_BIN,
        ttl_seconds: float = DEFAULT_LIST_CACHE_TTL_MS / 1000.0,
        timeout: float = 15.0,
    ):
        self.bin_path = bin_path
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout
        self._models: list[str] | None = None
        self._models_expires_at = 0.0
        self._agents: list[AgentInfo] | None = None
        self._agents_expires_at = 0.0

    async def list_models(self) -> list[str]:
        """Model IDs (``provider/model``), or [] when opencode is unavailable."""
        if self._models is not None and time.monotonic() < self._models_expires_at:
            return self._models

        output = await self._run("models")
        if output is None:
            return []
        self._models = parse_models(output)
        self._models_expires_at = time.monotonic() + self.ttl_seconds
        return self._models

    async def list_agents(self) -> list[AgentInfo]:
        """Configured agents, or [] when opencode is unavailable."""
        if self._agents is not None and time.monotonic() < self._agents_expires_at:
            return self._agents

        output = await self._run("agent", "list")
        if output is None:
            return []
        self._agents = parse_agents(output)
        self._agents_expires_at = time.monotonic() + self.ttl_seconds
        return self._agents

    def clear_cache(self) -> None:
        self._models = None
        self._agents = None
        self._models_expires_at = 0.0
        self._agents_expires_at = 0.0

    async def _run(self, *args: str) -> str | None:
        """Run opencode with ``args`` and return stdout, or None on failure."""
        label = " ".join(args)
        try:
            process = await asyncio.create_subprocess_exec(
                self.bin_path,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"[catalog] opencode {label} failed to start: {e}")
            return None

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            logger.error(f"[catalog] opencode {label} timed out after {self.timeout}s")
            return None

        if process.returncode != 0:
            logger.error(
                "[catalog] opencode %s exited with %s: %s",
                label,
                process.returncode,
                stderr.decode("utf-8", errors="replace").strip()[:200],
            )
            return None

        return stdout.decode("utf-8", errors="replace")
