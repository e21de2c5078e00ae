import asyncio
from types import SimpleNamespace

from fastmcp import Client, FastMCP

from signal_chat.tools.gateway import ToolGateway, normalize_content
from signal_chat.types import ContentItem, ToolCall


class _FakeClient:
    """Stands in for a fastmcp client session."""

    def __init__(self, replies=None, fail_on=()) -> None:
        self.replies = replies or {}
        self.fail_on = set(fail_on)
        self.entered = 0
        self.exited = 0

    async def __aenter__(self):
        await asyncio.sleep(0)
        self.entered += 1
        return self

    async def __aexit__(self, *exc_info):
        self.exited += 1

    async def call_tool_mcp(self, name, arguments):
        if name in self.fail_on:
            raise ConnectionError("pipe closed")
        return self.replies[name]

    async def list_tools(self):
        return [SimpleNamespace(name="get_project_info", description=None, inputSchema={"type": "object"})]


def test_normalize_content_accepts_single_list_or_nothing() -> None:
    assert normalize_content(None) == []
    assert normalize_content("hello") == [ContentItem(kind="text", text="hello")]
    assert normalize_content({"type": "text", "text": "a"}) == [ContentItem(kind="text", text="a")]
    assert normalize_content([SimpleNamespace(type="image", text=None), "b"]) == [
        ContentItem(kind="image", text=""),
        ContentItem(kind="text", text="b"),
    ]


def test_call_normalizes_reply() -> None:
    reply = SimpleNamespace(content={"type": "text", "text": '{"name": "x"}'}, isError=False)
    gateway = ToolGateway(lambda: _FakeClient({"get_project_info": reply}))

    result = asyncio.run(gateway.call(ToolCall(name="get_project_info")))

    assert result.is_error is False
    assert result.text == '{"name": "x"}'
    assert gateway.connected


def test_failure_is_returned_as_error_result_and_session_reopens() -> None:
    created: list[_FakeClient] = []

    def factory() -> _FakeClient:
        client = _FakeClient(
            {"get_project_info": SimpleNamespace(content=[], isError=False)},
            fail_on={"get_github_activity"},
        )
        created.append(client)
        return client

    gateway = ToolGateway(factory)

    async def scenario():
        failed = await gateway.call(ToolCall(name="get_github_activity"))
        connected_after_failure = gateway.connected
        ok = await gateway.call(ToolCall(name="get_project_info"))
        return failed, connected_after_failure, ok

    failed, connected_after_failure, ok = asyncio.run(scenario())

    assert failed.is_error is True
    assert failed.text == "Tool execution failed: pipe closed"
    assert connected_after_failure is False
    assert created[0].exited == 1
    assert ok.is_error is False
    assert len(created) == 2


def test_concurrent_first_calls_open_one_session() -> None:
    created: list[_FakeClient] = []
    reply = SimpleNamespace(content=["ok"], isError=False)

    def factory() -> _FakeClient:
        client = _FakeClient({"get_project_info": reply})
        created.append(client)
        return client

    gateway = ToolGateway(factory)

    async def scenario():
        return await asyncio.gather(*(gateway.call(ToolCall(name="get_project_info")) for _ in range(5)))

    results = asyncio.run(scenario())

    assert [result.text for result in results] == ["ok"] * 5
    assert len(created) == 1
    assert created[0].entered == 1


def test_list_tools_failure_returns_empty_catalog() -> None:
    def factory():
        raise OSError("spawn failed")

    gateway = ToolGateway(factory)

    assert asyncio.run(gateway.list_tools()) == []
    assert gateway.connected is False


def test_gateway_round_trip_against_in_memory_server() -> None:
    server = FastMCP("profile")

    @server.tool()
    def get_project_info() -> str:
        """Describe the current project."""
        return "Signal chat"

    gateway = ToolGateway(lambda: Client(server))

    async def scenario():
        try:
            tools = await gateway.list_tools()
            result = await gateway.call(ToolCall(name="get_project_info"))
        finally:
            await gateway.aclose()
        return tools, result

    tools, result = asyncio.run(scenario())

    assert [tool.name for tool in tools] == ["get_project_info"]
    assert tools[0].description == "Describe the current project."
    assert result.is_error is False
    assert result.text == "Signal chat"
