import json
import threading
from collections.abc import Iterator

import pytest
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage

from page_agent.agent.dispatcher import Dispatcher
from page_agent.agent.loop import AgentState, PageAgent
from page_agent.agent.registry import ToolRegistry
from page_agent.agent.tools import register_builtin_tools
from page_agent.config import AgentConfig, DispatchConfig
from page_agent.errors import UpstreamFailure
from page_agent.obs.tracing import TraceStore
from page_agent.storage.content_store import InMemoryContentStore
from page_agent.storage.transcripts import InMemoryTranscriptStore
from page_agent.types import EditContext, ToolStatus

PAGE = (
    "<html><head><title>Bakery</title></head><body>"
    '<section id="hero"><h1>Welcome</h1></section>'
    "</body></html>"
)


class ScriptedChatModel:
    """Replays canned responses and records the messages it was sent."""

    def __init__(self, responses: list[object]) -> None:
        self.responses = list(responses)
        self.calls: list[list[BaseMessage]] = []
        self.bound_tools: list[dict] = []

    def bind_tools(self, tools: list[dict]) -> "ScriptedChatModel":
        self.bound_tools = tools
        return self

    def invoke(self, messages: list[BaseMessage]) -> AIMessage:
        self.calls.append(messages)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def stream(self, messages: list[BaseMessage]) -> Iterator[AIMessageChunk]:
        self.calls.append(messages)
        yield from self.responses.pop(0)


def _call(name: str, call_id: str, **args: object) -> dict:
    return {"name": name, "args": args, "id": call_id}


def _chunk_call(name: str, call_id: str, **args: object) -> AIMessageChunk:
    return AIMessageChunk(
        content="",
        tool_call_chunks=[
            {"name": name, "args": json.dumps(args), "id": call_id, "index": 0}
        ],
    )


@pytest.fixture()
def store() -> InMemoryContentStore:
    store = InMemoryContentStore()
    store.put("tenant1/index.html", PAGE.encode("utf-8"), "text/html")
    return store


@pytest.fixture()
def transcripts() -> InMemoryTranscriptStore:
    return InMemoryTranscriptStore()


def _agent(
    llm: ScriptedChatModel,
    store: InMemoryContentStore,
    transcripts: InMemoryTranscriptStore,
    trace_store: TraceStore | None = None,
    config: AgentConfig | None = None,
) -> PageAgent:
    registry = ToolRegistry()
    register_builtin_tools(registry)
    dispatcher = Dispatcher(registry, store, config=DispatchConfig(retry_backoff_seconds=0.0))
    return PageAgent(
        llm=llm,
        dispatcher=dispatcher,
        transcripts=transcripts,
        trace_store=trace_store,
        config=config,
    )


def test_failed_call_does_not_stop_later_calls(store, transcripts) -> None:
    llm = ScriptedChatModel(
        [
            AIMessage(
                content="Updating both pages.",
                tool_calls=[
                    _call(
                        "update_section",
                        "c1",
                        path="missing.html",
                        selector="#hero",
                        content="<h1>Hi</h1>",
                    ),
                    _call("create_file", "c2", path="about.html", content="<p>About</p>"),
                ],
            )
        ]
    )
    trace_store = TraceStore()
    agent = _agent(llm, store, transcripts, trace_store=trace_store)

    turn = agent.run_turn("update the pages", tenant_id="tenant1", session_id="s1")

    assert [record.result.status for record in turn.tool_calls] == [
        ToolStatus.NOT_FOUND,
        ToolStatus.OK,
    ]
    assert store.get("tenant1/about.html") == b"<p>About</p>"
    assert [t.role for t in transcripts.list("s1")] == ["user", "assistant"]
    assert agent.state is AgentState.IDLE

    [record] = trace_store.list_recent()
    assert [trace.status for trace in record.tool_traces] == ["not_found", "ok"]
    assert record.tool_failures == 1
    assert {schema["function"]["name"] for schema in llm.bound_tools} >= {
        "update_section",
        "create_file",
    }


def test_dispatch_errors_are_recorded_per_call(store, transcripts) -> None:
    llm = ScriptedChatModel(
        [
            AIMessage(
                content="",
                tool_calls=[
                    _call("read_file", "c1", path="../tenant2/secret.html"),
                    _call("no_such_tool", "c2"),
                    _call("update_section", "c3", path="index.html"),
                    _call("remove_element", "c4", path="index.html", selector="h1"),
                ],
            )
        ]
    )
    trace_store = TraceStore()
    agent = _agent(llm, store, transcripts, trace_store=trace_store)

    turn = agent.run_turn("clean up", tenant_id="tenant1", session_id="s1")

    assert [record.result.error_kind for record in turn.tool_calls] == [
        "invalid_path",
        "unknown_tool",
        "invalid_input",
        None,
    ]
    assert b"<h1>" not in store.get("tenant1/index.html")
    [record] = trace_store.list_recent()
    assert len(record.tool_traces) == 4
    assert record.tool_failures == 3


def test_malformed_tool_calls_are_reported(store, transcripts) -> None:
    llm = ScriptedChatModel(
        [
            AIMessage(
                content="",
                tool_calls=[_call("read_file", "c1", path="index.html")],
                invalid_tool_calls=[
                    {"name": "update_section", "args": "{oops", "id": "c2", "error": "bad json"}
                ],
            )
        ]
    )
    agent = _agent(llm, store, transcripts)

    turn = agent.run_turn("show me", tenant_id="tenant1", session_id="s1")

    assert [record.name for record in turn.tool_calls] == ["read_file", "update_section"]
    assert turn.tool_calls[0].result.ok
    assert turn.tool_calls[1].result.error_kind == "invalid_input"
    assert turn.tool_calls[1].input == {"raw_args": "{oops"}


def test_malformed_calls_keep_their_emitted_position(store, transcripts) -> None:
    llm = ScriptedChatModel(
        [
            AIMessage(
                content="",
                additional_kwargs={
                    "tool_calls": [
                        {
                            "id": "c1",
                            "type": "function",
                            "function": {"name": "update_section", "arguments": "{oops"},
                        },
                        {
                            "id": "c2",
                            "type": "function",
                            "function": {
                                "name": "read_file",
                                "arguments": json.dumps({"path": "index.html"}),
                            },
                        },
                    ]
                },
                tool_calls=[_call("read_file", "c2", path="index.html")],
                invalid_tool_calls=[
                    {"name": "update_section", "args": "{oops", "id": "c1", "error": "bad json"}
                ],
            )
        ]
    )
    agent = _agent(llm, store, transcripts)

    turn = agent.run_turn("show me", tenant_id="tenant1", session_id="s1")

    assert [record.name for record in turn.tool_calls] == ["update_section", "read_file"]
    assert turn.tool_calls[0].result.error_kind == "invalid_input"
    assert turn.tool_calls[1].result.ok


def test_tool_results_are_replayed_in_history(store, transcripts) -> None:
    llm = ScriptedChatModel(
        [
            AIMessage(
                content="Trying.",
                tool_calls=[
                    _call("update_section", "c1", path="index.html", selector="#nope", content="x")
                ],
            ),
            AIMessage(content="Fixed."),
        ]
    )
    agent = _agent(llm, store, transcripts)

    agent.run_turn("change the banner", tenant_id="tenant1", session_id="s1")
    agent.run_turn("try again", tenant_id="tenant1", session_id="s1")

    second = llm.calls[1]
    assert [message.type for message in second] == ["system", "human", "ai", "human"]
    assert "Trying." in second[2].content
    assert "Tool results:" in second[2].content
    assert "- update_section: not_found" in second[2].content
    assert second[3].content == "try again"


def test_history_is_limited(store, transcripts) -> None:
    llm = ScriptedChatModel([AIMessage(content=f"reply {n}") for n in range(3)])
    agent = _agent(llm, store, transcripts, config=AgentConfig(history_limit=2))

    for n in range(3):
        agent.run_turn(f"message {n}", tenant_id="tenant1", session_id="s1")

    third = llm.calls[2]
    assert [message.content for message in third[1:]] == ["message 1", "reply 1", "message 2"]


def test_page_outline_in_system_prompt(store, transcripts) -> None:
    llm = ScriptedChatModel([AIMessage(content="ok"), AIMessage(content="ok")])
    agent = _agent(llm, store, transcripts)

    agent.run_turn(
        "make the hero shorter",
        tenant_id="tenant1",
        session_id="s1",
        context=EditContext(selected_file="index.html", selected_element="#hero h1"),
    )
    agent.run_turn(
        "and this",
        tenant_id="tenant1",
        session_id="s2",
        context=EditContext(selected_file="style.css"),
    )

    with_outline = llm.calls[0][0].content
    assert "Currently selected file: index.html" in with_outline
    assert "Selected element: #hero h1" in with_outline
    assert "- #hero [section]: Welcome" in with_outline
    assert "Page outline" not in llm.calls[1][0].content


def test_abort_drops_pending_tool_calls(store, transcripts) -> None:
    llm = ScriptedChatModel(
        [
            AIMessage(
                content="Deleting.",
                tool_calls=[_call("delete_file", "c1", path="index.html")],
            )
        ]
    )
    agent = _agent(llm, store, transcripts)
    abort = threading.Event()
    abort.set()

    turn = agent.run_turn("delete it", tenant_id="tenant1", session_id="s1", abort=abort)

    assert turn.aborted
    assert turn.tool_calls == []
    assert store.get("tenant1/index.html") == PAGE.encode("utf-8")
    assert transcripts.list("s1")[-1].aborted


def test_model_failure_is_upstream_failure(store, transcripts) -> None:
    llm = ScriptedChatModel([RuntimeError("rate limited")])
    agent = _agent(llm, store, transcripts)

    with pytest.raises(UpstreamFailure, match="rate limited"):
        agent.run_turn("hello", tenant_id="tenant1", session_id="s1")
    assert agent.state is AgentState.IDLE


def test_stream_turn_yields_text_then_applies_tools(store, transcripts) -> None:
    llm = ScriptedChatModel(
        [
            [
                AIMessageChunk(content="Creating "),
                AIMessageChunk(content="the page."),
                _chunk_call("create_file", "c1", path="new.html", content="<p>New</p>"),
            ]
        ]
    )
    trace_store = TraceStore()
    agent = _agent(llm, store, transcripts, trace_store=trace_store)
    completed = []

    parts = list(
        agent.stream_turn(
            "new page", tenant_id="tenant1", session_id="s1", on_complete=completed.append
        )
    )

    assert parts == ["Creating ", "the page."]
    [turn] = completed
    assert turn.text == "Creating the page."
    assert turn.tool_calls[0].result.ok
    assert store.get("tenant1/new.html") == b"<p>New</p>"
    assert len(trace_store.list_recent()) == 1


def test_stream_abort_stops_forwarding_and_tools(store, transcripts) -> None:
    llm = ScriptedChatModel(
        [
            [
                AIMessageChunk(content="Deleting "),
                AIMessageChunk(content="everything."),
                _chunk_call("delete_file", "c1", path="index.html"),
            ]
        ]
    )
    agent = _agent(llm, store, transcripts)
    abort = threading.Event()
    completed = []
    parts = []

    for text in agent.stream_turn(
        "delete", tenant_id="tenant1", session_id="s1", abort=abort, on_complete=completed.append
    ):
        parts.append(text)
        abort.set()

    assert parts == ["Deleting "]
    assert completed[0].aborted
    assert completed[0].tool_calls == []
    assert store.get("tenant1/index.html") == PAGE.encode("utf-8")


def test_closing_the_stream_records_an_aborted_turn(store, transcripts) -> None:
    llm = ScriptedChatModel(
        [[AIMessageChunk(content="Half"), AIMessageChunk(content=" done")]]
    )
    agent = _agent(llm, store, transcripts)

    stream = agent.stream_turn("hi", tenant_id="tenant1", session_id="s1")
    assert next(stream) == "Half"
    stream.close()

    last = transcripts.list("s1")[-1]
    assert last.role == "assistant"
    assert last.text == "Half"
    assert last.aborted
    assert agent.state is AgentState.IDLE


class _HookedStore(InMemoryContentStore):
    """Runs `on_read` once, during the next read."""

    def __init__(self) -> None:
        super().__init__()
        self.on_read = None

    def get(self, path: str) -> bytes:
        hook, self.on_read = self.on_read, None
        if hook is not None:
            hook()
        return super().get(path)


def test_interleaved_turns_keep_their_own_traces(transcripts) -> None:
    store = _HookedStore()
    store.put("tenant1/index.html", PAGE.encode("utf-8"), "text/html")
    llm = ScriptedChatModel(
        [
            AIMessage(
                content="Reading twice.",
                tool_calls=[
                    _call("read_file", "a1", path="index.html"),
                    _call("read_file", "a2", path="index.html"),
                ],
            ),
            AIMessage(
                content="Reading once.",
                tool_calls=[_call("read_file", "b1", path="index.html")],
            ),
        ]
    )
    trace_store = TraceStore()
    agent = _agent(llm, store, transcripts, trace_store=trace_store)
    states = []

    def _second_turn() -> None:
        agent.run_turn("other", tenant_id="tenant1", session_id="s2")
        states.append((agent.state, agent.session_state("s1"), agent.session_state("s2")))

    store.on_read = _second_turn
    agent.run_turn("first", tenant_id="tenant1", session_id="s1")

    records = {record.session_id: record for record in trace_store.list_recent()}
    assert [trace.input_payload["path"] for trace in records["s1"].tool_traces] == [
        "index.html",
        "index.html",
    ]
    assert len(records["s2"].tool_traces) == 1
    # The first read of s1 spans the whole s2 turn.
    assert records["s1"].tool_traces[0].latency_ms >= records["s2"].latency_ms > 0.0
    assert states == [
        (AgentState.APPLYING_TOOLS, AgentState.APPLYING_TOOLS, AgentState.IDLE)
    ]
    assert agent.state is AgentState.IDLE
