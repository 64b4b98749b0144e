"""MCP tool providers discovered from ``MCP_SERVER_TOOL_*`` environment variables.

Each variable carries one field of one provider::

    MCP_SERVER_TOOL_<KEY>_TRANSPORT=sse|http-stream
    MCP_SERVER_TOOL_<KEY>_BASEURL=<url>

Fragments sharing a key are merged, the merged config is validated, and only
valid configs are turned into tools.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

import structlog

from libs.framework.tool_runtime import Tool

from . import mcp_client
from .mcp_client import Endpoint, ProviderResolutionError, SessionFactory

ENV_PREFIX = "MCP_SERVER_TOOL_"
_ENV_NAME = re.compile(rf"^{ENV_PREFIX}(?P<key>.+)_(?P<field>[^_]+)$", re.IGNORECASE)


class Transport(str, Enum):
    sse = mcp_client.SSE
    streamable_http = mcp_client.STREAMABLE_HTTP


class ConfigInvalid(ValueError):
    pass


@dataclass(frozen=True)
class ToolConfig:
    transport: str = ""
    base_url: str = ""

    def validate(self) -> None:
        if not self.base_url:
            raise ConfigInvalid("invalid mcp config: baseURL required")
        if self.transport not in {t.value for t in Transport}:
            raise ConfigInvalid("invalid mcp config: transport must be one of 'sse' or 'http-stream'")

    def is_valid(self) -> bool:
        try:
            self.validate()
        except ConfigInvalid:
            return False
        return True

    def endpoint(self) -> Endpoint:
        return Endpoint(transport=self.transport, base_url=self.base_url)


class EnvironmentSource(Protocol):
    def environ(self) -> List[str]:
        ...


class OsEnvironment:
    def environ(self) -> List[str]:
        return [f"{name}={value}" for name, value in os.environ.items()]


class StaticEnvironment:
    def __init__(self, entries: Iterable[str]) -> None:
        self._entries = list(entries)

    def environ(self) -> List[str]:
        return list(self._entries)


@dataclass
class ProviderResolution:
    key: str
    config: ToolConfig
    tools: List[Tool]
    error: Optional[ProviderResolutionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ToolConfigResolver:
    def __init__(
        self,
        environment: Optional[EnvironmentSource] = None,
        *,
        session_factory: SessionFactory = mcp_client.open_session,
        timeout_s: float = 30.0,
        logger: Any = None,
    ) -> None:
        self.environment = environment or OsEnvironment()
        self.session_factory = session_factory
        self.timeout_s = timeout_s
        self.logger = logger or structlog.get_logger(component="tool_config")

    def from_environment(self, entries: Optional[Iterable[str]] = None) -> Dict[str, ToolConfig]:
        if entries is None:
            entries = self.environment.environ()
        configs: Dict[str, ToolConfig] = {}
        for entry in entries:
            if not entry.startswith(ENV_PREFIX):
                continue
            parsed = self.parse(entry)
            if parsed is None:
                continue
            key, fragment = parsed
            configs[key] = self.merge(configs.get(key, ToolConfig()), fragment)

        valid: Dict[str, ToolConfig] = {}
        for key, config in configs.items():
            try:
                config.validate()
            except ConfigInvalid as exc:
                self.logger.info("invalid_tool_config_skipped", key=key, error=str(exc))
                continue
            valid[key] = config
        return valid

    def parse(self, entry: str) -> Optional[Tuple[str, ToolConfig]]:
        name, sep, value = entry.partition("=")
        if not sep:
            return None
        match = _ENV_NAME.match(name)
        if match is None:
            return None
        key = match.group("key").lower()
        field = match.group("field").lower()
        if field == "transport":
            return key, ToolConfig(transport=value.strip().lower())
        if field == "baseurl":
            return key, ToolConfig(base_url=value.strip())
        return key, ToolConfig()

    def merge(self, current: ToolConfig, new: ToolConfig) -> ToolConfig:
        # First write wins per field; a conflicting later value is ignored.
        if not current.transport and new.transport:
            current = replace(current, transport=new.transport)
        if not current.base_url and new.base_url:
            current = replace(current, base_url=new.base_url)
        return current

    def resolve_providers(self, configs: Dict[str, ToolConfig]) -> List[ProviderResolution]:
        outcomes: List[ProviderResolution] = []
        for key, config in configs.items():
            log = self.logger.bind(key=key, transport=config.transport, base_url=config.base_url)
            try:
                tools = mcp_client.discover_tools(
                    config.endpoint(),
                    timeout_s=self.timeout_s,
                    session_factory=self.session_factory,
                )
            except ProviderResolutionError as exc:
                log.info("mcp_provider_skipped", phase=exc.phase, error=str(exc))
                outcomes.append(ProviderResolution(key=key, config=config, tools=[], error=exc))
                continue
            log.debug("mcp_provider_tools_added", tools=[tool.name for tool in tools])
            outcomes.append(ProviderResolution(key=key, config=config, tools=tools))
        return outcomes

    def resolve(self, configs: Dict[str, ToolConfig]) -> List[Tool]:
        tools: List[Tool] = []
        for outcome in self.resolve_providers(configs):
            if outcome.ok:
                tools.extend(outcome.tools)
        return tools
