from __future__ import annotations

import asyncio
import inspect
import json
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import partial
from typing import Any, AsyncIterator, Callable

from libs.core.models import ToolSpec
from libs.framework.tool_runtime import Tool, ToolExecutionError

SSE = "sse"
STREAMABLE_HTTP = "http-stream"


class ProviderResolutionError(ToolExecutionError):
    def __init__(self, detail: str, phase: str) -> None:
        super().__init__(f"phase={phase};{detail}")
        self.phase = phase


@dataclass(frozen=True)
class Endpoint:
    transport: str
    base_url: str


SessionFactory = Callable[[Endpoint, float], Any]


def client_factory_for(transport: str) -> Callable[..., Any]:
    if transport == SSE:
        from mcp.client.sse import sse_client

        return sse_client
    if transport == STREAMABLE_HTTP:
        from mcp.client.streamable_http import streamable_http_client

        return streamable_http_client
    raise ProviderResolutionError(f"unsupported_transport:{transport!r}", "construct")


def client_kwargs(client_factory: Callable[..., Any], timeout_s: float) -> dict[str, Any]:
    """Best-effort timeout kwargs for different MCP SDK versions."""
    try:
        params = inspect.signature(client_factory).parameters
    except (TypeError, ValueError):
        return {}
    candidates: dict[str, Any] = {
        "timeout": timeout_s,
        "sse_read_timeout": timeout_s,
    }
    return {name: value for name, value in candidates.items() if name in params}


def open_session(endpoint: Endpoint, timeout_s: float) -> Any:
    """Build an initialized MCP client session for one endpoint.

    The transport client is chosen eagerly so an unsupported transport fails
    here; connecting and the MCP handshake happen on ``async with``.
    """
    client_factory = client_factory_for(endpoint.transport)
    return _session(client_factory, endpoint.base_url, timeout_s)


@asynccontextmanager
async def _session(
    client_factory: Callable[..., Any], url: str, timeout_s: float
) -> AsyncIterator[Any]:
    from mcp import ClientSession

    async with client_factory(url, **client_kwargs(client_factory, timeout_s)) as streams:
        read_stream, write_stream = streams[0], streams[1]
        async with ClientSession(read_stream, write_stream) as session:
            await session.initialize()
            yield session


def discover_tools(
    endpoint: Endpoint,
    *,
    timeout_s: float,
    session_factory: SessionFactory = open_session,
) -> list[Tool]:
    phase = "construct"

    async def _run() -> list[Any]:
        nonlocal phase
        session_cm = session_factory(endpoint, timeout_s)
        phase = "start"
        async with session_cm as session:
            phase = "list_tools"
            listed = await session.list_tools()
            return list(getattr(listed, "tools", None) or [])

    started_at = time.monotonic()
    try:
        remote_tools = asyncio.run(asyncio.wait_for(_run(), timeout=timeout_s))
    except ProviderResolutionError:
        raise
    except TimeoutError as exc:
        elapsed_s = time.monotonic() - started_at
        raise ProviderResolutionError(
            f"mcp_timed_out_after_{timeout_s:.1f}s;elapsed_s={elapsed_s:.3f}", phase
        ) from exc
    except Exception as exc:  # noqa: BLE001
        detail = "; ".join(flatten_exception_messages(exc))
        raise ProviderResolutionError(f"error_type={exc.__class__.__name__};{detail}", phase) from exc

    return [
        Tool(
            spec=tool_spec_from_sdk(remote, timeout_s),
            handler=partial(
                call_tool,
                endpoint,
                getattr(remote, "name", ""),
                timeout_s=timeout_s,
                session_factory=session_factory,
            ),
        )
        for remote in remote_tools
    ]


def call_tool(
    endpoint: Endpoint,
    tool_name: str,
    arguments: dict[str, Any],
    *,
    timeout_s: float,
    session_factory: SessionFactory = open_session,
) -> str:
    async def _run() -> Any:
        async with session_factory(endpoint, timeout_s) as session:
            return await session.call_tool(tool_name, arguments)

    try:
        result = asyncio.run(asyncio.wait_for(_run(), timeout=timeout_s))
    except TimeoutError as exc:
        raise ToolExecutionError(f"mcp_sdk_timeout:phase=call_tool;tool={tool_name}") from exc
    except Exception as exc:  # noqa: BLE001
        detail = "; ".join(flatten_exception_messages(exc))
        raise ToolExecutionError(f"mcp_sdk_error:phase=call_tool;tool={tool_name};{detail}") from exc
    return extract_tool_text(result)


def tool_spec_from_sdk(remote: Any, timeout_s: float) -> ToolSpec:
    schema = getattr(remote, "inputSchema", None) or {}
    if hasattr(schema, "model_dump"):
        schema = schema.model_dump()
    return ToolSpec(
        name=str(getattr(remote, "name", "") or ""),
        description=str(getattr(remote, "description", "") or ""),
        input_schema=schema if isinstance(schema, dict) else {},
        timeout_s=max(1, int(timeout_s)),
    )


def extract_tool_text(result: Any) -> str:
    parts: list[str] = []
    content = getattr(result, "content", None)
    if isinstance(content, list):
        for item in content:
            text = getattr(item, "text", None)
            if isinstance(text, str) and text.strip():
                parts.append(text.strip())
    if not parts:
        structured = getattr(result, "structuredContent", None)
        if isinstance(structured, dict):
            parts.append(json.dumps(structured, ensure_ascii=True))
    text = "\n".join(parts)
    if getattr(result, "isError", False):
        raise ToolExecutionError(f"mcp_tool_error:{text}" if text else "mcp_tool_error")
    return text


def flatten_exception_messages(exc: BaseException) -> list[str]:
    messages = [str(exc)]
    nested = getattr(exc, "exceptions", None)
    if isinstance(nested, (list, tuple)):
        for child in nested:
            if isinstance(child, BaseException):
                messages.extend(flatten_exception_messages(child))
    deduped: list[str] = []
    seen: set[str] = set()
    for message in messages:
        normalized = message.strip()
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        deduped.append(normalized)
    return deduped or [exc.__class__.__name__]
