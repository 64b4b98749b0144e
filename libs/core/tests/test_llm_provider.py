from __future__ import annotations

import io
import json
from urllib.error import HTTPError, URLError

import pytest

from libs.core.llm_provider import LLMProviderError, OpenAIProvider
from libs.core import llm_provider as llm_provider_module
from libs.core.errors import InvocationError
from libs.core.models import ToolSpec
from libs.framework.tool_runtime import Tool, ToolRegistry


class _FakeHTTPResponse:
    def __init__(self, payload: dict) -> None:
        self._raw = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._raw

    def __enter__(self) -> "_FakeHTTPResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        return False


def _success_payload(text: str = '{"ok":true}') -> dict:
    return {
        "output": [
            {
                "type": "message",
                "content": [{"type": "output_text", "text": text}],
            }
        ]
    }


def _function_call_payload(call_id: str = "call_1") -> dict:
    return {
        "output": [
            {
                "type": "function_call",
                "call_id": call_id,
                "name": "lookup",
                "arguments": '{"q": "bucket"}',
            }
        ]
    }


def _install(monkeypatch, payloads: list[dict]) -> list[dict]:
    captured: list[dict] = []

    def _fake_urlopen(request, timeout=0):  # type: ignore[no-untyped-def]
        captured.append(json.loads(request.data.decode("utf-8")))
        return _FakeHTTPResponse(payloads[min(len(captured), len(payloads)) - 1])

    monkeypatch.setattr(llm_provider_module, "urlopen", _fake_urlopen)
    return captured


def _lookup_registry() -> ToolRegistry:
    return ToolRegistry(
        [Tool(spec=ToolSpec(name="lookup", description="Look things up"), handler=lambda args: f"found {args['q']}")]
    )


def test_openai_provider_sends_system_prompt_and_temperature(monkeypatch) -> None:
    captured = _install(monkeypatch, [_success_payload()])
    provider = OpenAIProvider(api_key="test-key", model="gpt-4", base_url="http://llm.local/v1/")
    response = provider.generate("hello", system_prompt="be terse")

    assert response.content == '{"ok":true}'
    assert captured[0]["instructions"] == "be terse"
    assert captured[0]["temperature"] == 0.0
    assert captured[0]["input"] == [{"role": "user", "content": "hello"}]
    assert "tools" not in captured[0]


def test_openai_provider_omits_temperature_for_gpt5(monkeypatch) -> None:
    captured = _install(monkeypatch, [_success_payload()])
    provider = OpenAIProvider(api_key="test-key", model="gpt-5-mini", temperature=0.7)
    provider.generate("hello")
    assert "temperature" not in captured[0]


def test_openai_provider_retries_without_temperature_on_unsupported_error(monkeypatch) -> None:
    captured_payloads: list[dict] = []
    state = {"count": 0}

    def _fake_urlopen(request, timeout=0):  # type: ignore[no-untyped-def]
        body = json.loads(request.data.decode("utf-8"))
        captured_payloads.append(body)
        if state["count"] == 0:
            state["count"] += 1
            error_body = (
                b'{"error":{"message":"Unsupported parameter: \'temperature\' is not supported with this model."}}'
            )
            raise HTTPError(
                url="https://api.openai.com/v1/responses",
                code=400,
                msg="Bad Request",
                hdrs=None,
                fp=io.BytesIO(error_body),
            )
        return _FakeHTTPResponse(_success_payload())

    monkeypatch.setattr(llm_provider_module, "urlopen", _fake_urlopen)

    provider = OpenAIProvider(api_key="test-key", model="gpt-4.1-mini", temperature=0.2)
    response = provider.generate("hello")
    assert response.content == '{"ok":true}'
    assert len(captured_payloads) == 2
    assert captured_payloads[0]["temperature"] == 0.2
    assert "temperature" not in captured_payloads[1]


def test_openai_provider_runs_tool_calls(monkeypatch) -> None:
    captured = _install(monkeypatch, [_function_call_payload(), _success_payload("done")])
    provider = OpenAIProvider(api_key="test-key")
    response = provider.generate("hello", tools=_lookup_registry())

    assert response.content == "done"
    assert response.iterations == 2
    assert captured[0]["tools"][0]["name"] == "lookup"
    assert captured[0]["tools"][0]["parameters"] == {"type": "object", "properties": {}}
    assert captured[1]["input"][-1] == {
        "type": "function_call_output",
        "call_id": "call_1",
        "output": "found bucket",
    }


def test_openai_provider_stops_after_max_iterations(monkeypatch) -> None:
    captured = _install(monkeypatch, [_function_call_payload()])
    provider = OpenAIProvider(api_key="test-key", max_iterations=3)
    with pytest.raises(LLMProviderError) as exc:
        provider.generate("hello", tools=_lookup_registry())
    assert "3 iterations" in str(exc.value)
    assert len(captured) == 3


def test_openai_provider_connection_error_is_invocation_error(monkeypatch) -> None:
    def _fake_urlopen(request, timeout=0):  # type: ignore[no-untyped-def]
        raise URLError("timed out")

    monkeypatch.setattr(llm_provider_module, "urlopen", _fake_urlopen)
    provider = OpenAIProvider(api_key="test-key")
    with pytest.raises(InvocationError):
        provider.generate("hello")


def test_openai_provider_empty_output(monkeypatch) -> None:
    _install(monkeypatch, [{"output": []}])
    with pytest.raises(LLMProviderError):
        OpenAIProvider(api_key="test-key").generate("hello")


def test_openai_provider_resends_reasoning_with_tool_calls(monkeypatch) -> None:
    reasoning = {"type": "reasoning", "id": "rs_1", "summary": []}
    first = _function_call_payload()
    first["output"].insert(0, reasoning)
    captured = _install(monkeypatch, [first, _success_payload("done")])
    provider = OpenAIProvider(api_key="test-key", model="o4-mini")
    response = provider.generate("hello", tools=_lookup_registry())

    assert response.content == "done"
    assert [item.get("type") for item in captured[1]["input"]] == [
        None,
        "reasoning",
        "function_call",
        "function_call_output",
    ]
    assert captured[1]["input"][1] == reasoning
