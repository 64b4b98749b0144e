import time

from libs.core.models import ToolSpec
from libs.framework.tool_runtime import Tool, ToolExecutionError, ToolRegistry


def _tool(name: str, handler, timeout_s: int = 30) -> Tool:
    return Tool(spec=ToolSpec(name=name, timeout_s=timeout_s), handler=handler)


def test_execute_parses_json_arguments():
    registry = ToolRegistry([_tool("echo", lambda args: args["text"])])
    assert registry.execute("echo", '{"text": "hi"}') == "hi"
    assert registry.names() == ["echo"]


def test_execute_reports_unknown_tool():
    assert ToolRegistry().execute("missing", "{}") == "error: unknown_tool:missing"


def test_execute_reports_bad_arguments():
    registry = ToolRegistry([_tool("echo", lambda args: "ok")])
    assert registry.execute("echo", "[1, 2]").startswith("error: invalid_json_arguments")


def test_execute_reports_tool_failures():
    def _fail(_args):
        raise ToolExecutionError("mcp_tool_error:nope")

    def _crash(_args):
        raise RuntimeError("kaboom")

    registry = ToolRegistry([_tool("fail", _fail), _tool("crash", _crash)])
    assert registry.execute("fail", None) == "error: mcp_tool_error:nope"
    assert registry.execute("crash", "") == "error: runtime.unhandled:RuntimeError:kaboom"


def test_execute_times_out():
    def _slow(_args):
        time.sleep(2)
        return "late"

    registry = ToolRegistry([_tool("slow", _slow, timeout_s=1)])
    assert registry.execute("slow", {}).startswith("error: tool_call_timed_out")
