import json
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage

from page_agent.agent.dispatcher import Dispatcher
from page_agent.agent.loop import PageAgent
from page_agent.agent.registry import ToolRegistry
from page_agent.agent.tools import register_builtin_tools
from page_agent.api.main import (
    app,
    get_agent,
    get_dispatcher,
    get_trace_store,
    get_transcripts,
)
from page_agent.config import DispatchConfig
from page_agent.obs.tracing import TraceStore
from page_agent.storage.content_store import InMemoryContentStore
from page_agent.storage.transcripts import InMemoryTranscriptStore

HEADERS = {"x-tenant-id": "tenant1"}


class ScriptedChatModel:
    def __init__(self, responses: list[object]) -> None:
        self.responses = list(responses)

    def bind_tools(self, tools: list[dict]) -> "ScriptedChatModel":
        return self

    def invoke(self, messages: list[BaseMessage]) -> AIMessage:
        return self.responses.pop(0)

    def stream(self, messages: list[BaseMessage]) -> Iterator[AIMessageChunk]:
        yield from self.responses.pop(0)


@pytest.fixture()
def services():
    store = InMemoryContentStore()
    store.put("tenant1/index.html", b'<html><body><h1 id="t">Hi</h1></body></html>', "text/html")
    registry = ToolRegistry()
    register_builtin_tools(registry)
    dispatcher = Dispatcher(registry, store, config=DispatchConfig(retry_backoff_seconds=0.0))
    transcripts = InMemoryTranscriptStore()
    trace_store = TraceStore()
    llm = ScriptedChatModel([])
    agent = PageAgent(
        llm=llm, dispatcher=dispatcher, transcripts=transcripts, trace_store=trace_store
    )

    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_transcripts] = lambda: transcripts
    app.dependency_overrides[get_trace_store] = lambda: trace_store
    app.dependency_overrides[get_agent] = lambda: agent
    yield {"store": store, "llm": llm, "transcripts": transcripts}
    app.dependency_overrides.clear()


@pytest.fixture()
def client(services) -> TestClient:
    return TestClient(app)


def _events(body: str) -> list[dict]:
    return [
        json.loads(line[len("data: "):])
        for line in body.splitlines()
        if line.startswith("data: ")
    ]


def test_health_and_tool_catalog(client: TestClient) -> None:
    health = client.get("/health")
    tools = client.get("/tools")

    assert health.status_code == 200
    assert health.json()["llm_configured"] is True
    assert health.json()["agent_state"] == "idle"
    names = [item["name"] for item in tools.json()["items"]]
    assert "update_section" in names
    assert "add_product_showcase" in names


def test_tenant_header_is_required(client: TestClient) -> None:
    response = client.post("/tools/read_file", json={"input": {"path": "index.html"}})

    assert response.status_code == 401


def test_direct_tool_calls(client: TestClient, services) -> None:
    created = client.post(
        "/tools/create_file",
        json={"input": {"path": "about.html", "content": "<p>About</p>"}, "base_folder": "site"},
        headers=HEADERS,
    )
    missing = client.post(
        "/tools/read_file", json={"input": {"path": "nope.html"}}, headers=HEADERS
    )

    assert created.status_code == 200
    assert created.json()["status"] == "ok"
    assert created.json()["payload"]["path"] == "site/about.html"
    assert services["store"].get("tenant1/site/about.html") == b"<p>About</p>"
    assert missing.status_code == 200
    assert missing.json()["status"] == "not_found"


@pytest.mark.parametrize(
    ("name", "payload", "status", "kind"),
    [
        ("read_file", {"path": "../tenant2/a.html"}, 400, "invalid_path"),
        ("drop_tables", {}, 404, "unknown_tool"),
        ("update_section", {"path": "index.html"}, 422, "invalid_input"),
    ],
)
def test_dispatch_errors_map_to_status_codes(
    client: TestClient, name: str, payload: dict, status: int, kind: str
) -> None:
    response = client.post(f"/tools/{name}", json={"input": payload}, headers=HEADERS)

    assert response.status_code == status
    assert response.json()["detail"]["kind"] == kind


def test_chat_without_model_is_unavailable(client: TestClient) -> None:
    app.dependency_overrides[get_agent] = lambda: None

    response = client.post(
        "/chat", json={"message": "hi", "session_id": "s1"}, headers=HEADERS
    )

    assert response.status_code == 503


def test_chat_history_and_metrics(client: TestClient, services) -> None:
    services["llm"].responses.append(
        AIMessage(
            content="Renamed the heading.",
            tool_calls=[
                {
                    "name": "update_element",
                    "args": {"path": "index.html", "selector": "#t", "text": "Hello"},
                    "id": "c1",
                }
            ],
        )
    )

    response = client.post(
        "/chat",
        json={
            "message": "change the heading",
            "session_id": "s1",
            "context": {"selected_file": "index.html"},
        },
        headers=HEADERS,
    )

    assert response.status_code == 200
    turn = response.json()
    assert turn["text"] == "Renamed the heading."
    assert turn["tool_calls"][0]["result"]["status"] == "ok"
    assert b"Hello" in services["store"].get("tenant1/index.html")

    history = client.get("/sessions/s1/history", headers=HEADERS).json()["items"]
    other_tenant = client.get("/sessions/s1/history", headers={"x-tenant-id": "tenant2"})
    assert [item["role"] for item in history] == ["user", "assistant"]
    assert other_tenant.json()["items"] == []

    metrics = client.get("/metrics").json()
    traces = client.get("/traces").json()["items"]
    assert metrics["total_requests"] == 1
    assert metrics["total_tool_calls"] == 1
    assert client.get(f"/traces/{traces[0]['trace_id']}").status_code == 200
    assert client.get("/traces/unknown").status_code == 404

    cleared = client.delete("/sessions/s1", headers=HEADERS)
    assert cleared.json() == {"cleared": "s1"}
    assert client.get("/sessions/s1/history", headers=HEADERS).json()["items"] == []


def test_chat_stream_emits_events(client: TestClient, services) -> None:
    services["llm"].responses.append(
        [
            AIMessageChunk(content="Adding "),
            AIMessageChunk(content="a page."),
            AIMessageChunk(
                content="",
                tool_call_chunks=[
                    {
                        "name": "create_file",
                        "args": json.dumps({"path": "new.html", "content": "<p>x</p>"}),
                        "id": "c1",
                        "index": 0,
                    }
                ],
            ),
        ]
    )

    response = client.post(
        "/chat/stream", json={"message": "add a page", "session_id": "s2"}, headers=HEADERS
    )

    events = _events(response.text)
    assert response.status_code == 200
    assert [event["type"] for event in events] == ["content", "content", "tool_result", "done"]
    assert "".join(e["content"] for e in events if e["type"] == "content") == "Adding a page."
    assert events[2]["tool"] == "create_file"
    assert events[2]["result"]["status"] == "ok"
    assert events[3]["aborted"] is False
    assert services["store"].get("tenant1/new.html") == b"<p>x</p>"
