from __future__ import annotations

from typing import Any

from libs.core.llm_provider import LLMResponse
from libs.core.models import ToolSpec
from libs.framework.tool_runtime import Tool
from libs.tools.tool_config import StaticEnvironment, ToolConfigResolver
from services.function.function_core import Agent


class _FakeProvider:
    instances: list["_FakeProvider"] = []

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.generated: list[dict] = []
        _FakeProvider.instances.append(self)

    def generate(self, prompt, *, system_prompt="", tools=None):
        self.generated.append({"prompt": prompt, "system_prompt": system_prompt, "tools": tools})
        return LLMResponse(content="reply", iterations=1)


class _StubResolver(ToolConfigResolver):
    def __init__(self, entries: list[str]) -> None:
        super().__init__(StaticEnvironment(entries))
        self.resolved: list[dict] = []

    def resolve(self, configs):
        self.resolved.append(configs)
        return [
            Tool(spec=ToolSpec(name=f"{key}_tool"), handler=lambda args: "ok")
            for key in configs
        ]


def test_agent_invokes_provider_with_resolved_tools() -> None:
    _FakeProvider.instances.clear()
    resolver = _StubResolver(
        [
            "MCP_SERVER_TOOL_K8S_TRANSPORT=http-stream",
            "MCP_SERVER_TOOL_K8S_BASEURL=http://k8s-mcp/mcp",
            "MCP_SERVER_TOOL_BROKEN_TRANSPORT=stdio",
        ]
    )
    agent = Agent(resolver, provider_factory=_FakeProvider, timeout_s=5.0, max_iterations=4)

    reply = agent.invoke("key", "system", "prompt", "", "")

    assert reply == "reply"
    provider = _FakeProvider.instances[0]
    assert provider.kwargs["api_key"] == "key"
    assert provider.kwargs["model"] == "gpt-4"
    assert provider.kwargs["base_url"] == "https://api.openai.com/v1"
    assert provider.kwargs["temperature"] == 0.0
    assert provider.kwargs["max_iterations"] == 4
    assert list(resolver.resolved[0]) == ["k8s"]
    assert provider.generated[0]["system_prompt"] == "system"
    assert provider.generated[0]["tools"].names() == ["k8s_tool"]


def test_agent_without_tool_providers() -> None:
    _FakeProvider.instances.clear()
    agent = Agent(_StubResolver([]), provider_factory=_FakeProvider)
    assert agent.invoke("key", "", "prompt", "http://llm.local/v1", "gpt-4o") == "reply"
    provider = _FakeProvider.instances[0]
    assert provider.kwargs["base_url"] == "http://llm.local/v1"
    assert len(provider.generated[0]["tools"]) == 0
