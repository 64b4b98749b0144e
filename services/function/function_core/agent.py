from __future__ import annotations

from typing import Any, Callable, Optional, Protocol

import structlog

from libs.core import llm_provider
from libs.framework.tool_runtime import ToolRegistry
from libs.tools.tool_config import ToolConfigResolver


class Invoker(Protocol):
    def invoke(self, key: str, system: str, prompt: str, base_url: str, model: str) -> str:
        ...


ProviderFactory = Callable[..., llm_provider.LLMProvider]


class Agent:
    """Calls the model once per request, with MCP tools resolved from the environment."""

    def __init__(
        self,
        resolver: Optional[ToolConfigResolver] = None,
        *,
        provider_factory: ProviderFactory = llm_provider.OpenAIProvider,
        timeout_s: float = 120.0,
        max_retries: int = 0,
        max_iterations: int = llm_provider.DEFAULT_MAX_ITERATIONS,
        logger: Any = None,
    ) -> None:
        self.logger = logger or structlog.get_logger(component="agent")
        self.resolver = resolver or ToolConfigResolver(logger=self.logger)
        self.provider_factory = provider_factory
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.max_iterations = max_iterations

    def invoke(self, key: str, system: str, prompt: str, base_url: str, model: str) -> str:
        provider = self.provider_factory(
            api_key=key,
            model=model or llm_provider.DEFAULT_MODEL,
            base_url=base_url or llm_provider.DEFAULT_BASE_URL,
            temperature=0.0,
            timeout_s=self.timeout_s,
            max_retries=self.max_retries,
            max_iterations=self.max_iterations,
        )
        response = provider.generate(prompt, system_prompt=system, tools=self.tools())
        self.logger.debug("agent_finished", model=model, iterations=response.iterations)
        return response.content

    def tools(self) -> ToolRegistry:
        configs = self.resolver.from_environment()
        if not configs:
            self.logger.debug("no_valid_mcp_server_configurations")
        return ToolRegistry(self.resolver.resolve(configs))
