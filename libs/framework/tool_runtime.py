from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Any, Callable

from libs.core.models import ToolSpec


class ToolExecutionError(Exception):
    pass


tool_input_type = dict[str, Any]
tool_output_type = str


@dataclass
class Tool:
    spec: ToolSpec
    handler: Callable[[tool_input_type], tool_output_type]

    @property
    def name(self) -> str:
        return self.spec.name


class ToolRegistry:
    def __init__(self, tools: list[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def __len__(self) -> int:
        return len(self._tools)

    def register(self, tool: Tool) -> None:
        self._tools[tool.spec.name] = tool

    def list_specs(self) -> list[ToolSpec]:
        return [tool.spec for tool in self._tools.values()]

    def names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> Tool:
        if name not in self._tools:
            raise KeyError(f"Tool not found: {name}")
        return self._tools[name]

    def execute(self, name: str, arguments: str | tool_input_type | None) -> str:
        """Run a tool for the model. Failures are returned as text, never raised."""
        try:
            tool = self.get(name)
            payload = parse_arguments(arguments)
            return run_with_timeout(lambda: tool.handler(payload), tool.spec.timeout_s)
        except KeyError:
            return f"error: unknown_tool:{name}"
        except ToolExecutionError as exc:
            return f"error: {exc}"
        except Exception as exc:  # noqa: BLE001
            return f"error: runtime.unhandled:{exc.__class__.__name__}:{exc}"


def parse_arguments(arguments: str | tool_input_type | None) -> tool_input_type:
    if arguments is None or arguments == "":
        return {}
    if isinstance(arguments, dict):
        return arguments
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as exc:
        raise ToolExecutionError(f"invalid_json_arguments:{exc}") from exc
    if not isinstance(parsed, dict):
        raise ToolExecutionError("invalid_json_arguments:expected an object")
    return parsed


def run_with_timeout(handler: Callable[[], tool_output_type], timeout_s: int | None) -> tool_output_type:
    if not timeout_s or timeout_s <= 0:
        return handler()
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(handler)
    try:
        return future.result(timeout=float(timeout_s))
    except FuturesTimeoutError as exc:
        future.cancel()
        raise ToolExecutionError(f"tool_call_timed_out:timed out after {timeout_s}s") from exc
    finally:
        # Never block caller on hung worker threads.
        executor.shutdown(wait=False, cancel_futures=True)
