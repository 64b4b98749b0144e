from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from libs.framework.tool_runtime import ToolRegistry

from .errors import InvocationError

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4"
DEFAULT_MAX_ITERATIONS = 20


@dataclass
class LLMResponse:
    content: str
    iterations: int = 1


class LLMProviderError(InvocationError):
    pass


class LLMProvider:
    def generate(
        self,
        prompt: str,
        *,
        system_prompt: str = "",
        tools: Optional[ToolRegistry] = None,
    ) -> LLMResponse:  # pragma: no cover - interface
        raise NotImplementedError


class OpenAIProvider(LLMProvider):
    """OpenAI Responses API client that runs the function-calling loop itself."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        temperature: Optional[float] = 0.0,
        timeout_s: float = 120.0,
        max_retries: int = 0,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.temperature = temperature
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.max_iterations = max_iterations

    def generate(
        self,
        prompt: str,
        *,
        system_prompt: str = "",
        tools: Optional[ToolRegistry] = None,
    ) -> LLMResponse:
        payload: Dict[str, Any] = {
            "model": self.model,
            "input": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            payload["instructions"] = system_prompt
        if self.temperature is not None and _model_supports_temperature(self.model):
            payload["temperature"] = self.temperature
        if tools is not None and len(tools):
            payload["tools"] = [_function_tool(spec) for spec in tools.list_specs()]

        for iteration in range(1, self.max_iterations + 1):
            data = self._post(payload)
            calls = _function_calls(data)
            if not calls:
                text = _extract_output_text(data)
                if not text:
                    raise LLMProviderError("OpenAI API returned empty output")
                return LLMResponse(content=text, iterations=iteration)
            if tools is None:
                raise LLMProviderError("OpenAI API requested a tool call but no tools are available")
            # Reasoning items must travel with the function calls they produced.
            payload["input"].extend(_replayed_items(data))
            for call in calls:
                payload["input"].append(
                    {
                        "type": "function_call_output",
                        "call_id": call.get("call_id", ""),
                        "output": tools.execute(call.get("name", ""), call.get("arguments")),
                    }
                )
        raise LLMProviderError(f"agent not finished after {self.max_iterations} iterations")

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        attempts = self.max_retries + 1
        retried_without_temperature = False
        attempt = 0
        while attempt < attempts:
            request = Request(
                f"{self.base_url}/responses",
                data=json.dumps(payload).encode("utf-8"),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                method="POST",
            )
            try:
                with urlopen(request, timeout=self.timeout_s) as response:
                    body = response.read().decode("utf-8")
                return json.loads(body)
            except HTTPError as exc:
                detail = exc.read().decode("utf-8") if exc.fp else str(exc)
                if (
                    "temperature" in payload
                    and not retried_without_temperature
                    and _is_unsupported_temperature_error(detail)
                ):
                    payload.pop("temperature", None)
                    retried_without_temperature = True
                    continue
                if exc.code in {429, 500, 502, 503, 504} and attempt < attempts - 1:
                    time.sleep(min(2**attempt, 8))
                    attempt += 1
                    continue
                raise LLMProviderError(f"OpenAI API error: {detail}") from exc
            except (URLError, TimeoutError) as exc:
                if attempt < attempts - 1:
                    time.sleep(min(2**attempt, 8))
                    attempt += 1
                    continue
                raise LLMProviderError(f"OpenAI API connection error: {exc}") from exc
            except json.JSONDecodeError as exc:
                raise LLMProviderError(f"OpenAI API returned invalid JSON: {exc}") from exc
        raise LLMProviderError("OpenAI API request failed after retries")


def _function_tool(spec: Any) -> Dict[str, Any]:
    parameters = spec.input_schema or {"type": "object", "properties": {}}
    return {
        "type": "function",
        "name": spec.name,
        "description": spec.description,
        "parameters": parameters,
    }


def _function_calls(response: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [item for item in response.get("output", []) if item.get("type") == "function_call"]


def _replayed_items(response: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [item for item in response.get("output", []) if item.get("type") != "message"]


def _extract_output_text(response: Dict[str, Any]) -> str:
    parts: list[str] = []
    for item in response.get("output", []):
        if item.get("type") != "message":
            continue
        for content in item.get("content", []):
            if content.get("type") == "output_text":
                parts.append(content.get("text", ""))
    return "".join(parts).strip()


def _model_supports_temperature(model: str) -> bool:
    normalized = (model or "").strip().lower()
    # GPT-5 and o-series reasoning models reject temperature.
    reasoning = len(normalized) > 1 and normalized[0] == "o" and normalized[1].isdigit()
    return not (normalized.startswith("gpt-5") or reasoning)


def _is_unsupported_temperature_error(detail: str) -> bool:
    lowered = (detail or "").lower()
    return "unsupported parameter" in lowered and "temperature" in lowered
