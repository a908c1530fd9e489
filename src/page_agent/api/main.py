"""FastAPI entrypoint for chat, direct tool dispatch and trace endpoints."""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Iterator
from dataclasses import asdict
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from page_agent.agent.dispatcher import Dispatcher
from page_agent.agent.loop import PageAgent
from page_agent.agent.registry import ToolRegistry
from page_agent.agent.tools import register_builtin_tools
from page_agent.config import AgentConfig, DispatchConfig
from page_agent.errors import (
    InvalidInput,
    InvalidPath,
    PageAgentError,
    UnknownTool,
    UpstreamFailure,
    WriteConflict,
)
from page_agent.obs.tracing import TraceStore
from page_agent.storage.content_store import (
    ContentStore,
    InMemoryContentStore,
    LocalDirectoryContentStore,
)
from page_agent.storage.transcripts import (
    InMemoryTranscriptStore,
    SqliteTranscriptStore,
    TranscriptStore,
)
from page_agent.types import EditContext, ToolCall

logger = logging.getLogger(__name__)


def _create_llm() -> Any:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"), temperature=0)


def _create_store() -> ContentStore:
    storage_dir = os.getenv("PAGE_AGENT_STORAGE_DIR")
    if storage_dir:
        return LocalDirectoryContentStore(storage_dir)
    return InMemoryContentStore()


def _create_transcripts() -> TranscriptStore:
    db_path = os.getenv("PAGE_AGENT_TRANSCRIPT_DB")
    if db_path:
        return SqliteTranscriptStore(db_path)
    return InMemoryTranscriptStore()


class ContextPayload(BaseModel):
    current_folder: str = ""
    selected_file: str | None = None
    selected_is_folder: bool = False
    selected_element: str | None = None


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    context: ContextPayload = Field(default_factory=ContextPayload)


class ToolRequest(BaseModel):
    input: dict[str, Any] = Field(default_factory=dict)
    base_folder: str = ""


app = FastAPI(title="Page Agent", version="0.1.0")

_store = _create_store()
_transcripts = _create_transcripts()
_registry = ToolRegistry()
register_builtin_tools(_registry)
_dispatcher = Dispatcher(_registry, _store, config=DispatchConfig())
_trace_store = TraceStore()
_llm = _create_llm()
_agent: PageAgent | None = (
    PageAgent(
        llm=_llm,
        dispatcher=_dispatcher,
        transcripts=_transcripts,
        trace_store=_trace_store,
        config=AgentConfig(),
    )
    if _llm is not None
    else None
)


def get_dispatcher() -> Dispatcher:
    return _dispatcher


def get_transcripts() -> TranscriptStore:
    return _transcripts


def get_trace_store() -> TraceStore:
    return _trace_store


def get_agent() -> PageAgent | None:
    return _agent


def get_tenant_id(x_tenant_id: str | None = Header(default=None)) -> str:
    if not x_tenant_id:
        raise HTTPException(status_code=401, detail="No tenant context found")
    return x_tenant_id


def _require_agent(agent: PageAgent | None) -> PageAgent:
    if agent is None:
        raise HTTPException(status_code=503, detail="Language model is not configured")
    return agent


def _session_key(tenant_id: str, session_id: str) -> str:
    return f"{tenant_id}:{session_id}"


def _http_error(exc: PageAgentError) -> HTTPException:
    if isinstance(exc, InvalidPath):
        status = 400
    elif isinstance(exc, UnknownTool):
        status = 404
    elif isinstance(exc, InvalidInput):
        status = 422
    elif isinstance(exc, WriteConflict):
        status = 409
    elif isinstance(exc, UpstreamFailure):
        status = 502
    else:
        status = 500
    return HTTPException(status_code=status, detail={"kind": exc.kind, "message": str(exc)})


def _sse(event: dict[str, Any]) -> str:
    return f"data: {json.dumps(event)}\n\n"


@app.get("/health")
def health(
    agent: PageAgent | None = Depends(get_agent),
    trace_store: TraceStore = Depends(get_trace_store),
) -> dict[str, Any]:
    return {
        "status": "ok",
        "llm_configured": agent is not None,
        "agent_state": agent.state.value if agent is not None else None,
        "trace_count": len(trace_store.list_recent(limit=1000)),
    }


@app.get("/tools")
def list_tools(dispatcher: Dispatcher = Depends(get_dispatcher)) -> dict[str, Any]:
    return {"items": [asdict(definition) for definition in dispatcher.registry.definitions()]}


@app.post("/tools/{name}")
def run_tool(
    name: str,
    request: ToolRequest,
    tenant_id: str = Depends(get_tenant_id),
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> dict[str, Any]:
    try:
        result = dispatcher.dispatch(
            ToolCall(name=name, input=request.input), tenant_id, base_folder=request.base_folder
        )
    except PageAgentError as exc:
        raise _http_error(exc) from exc
    return result.to_dict()


@app.post("/chat")
def chat(
    request: ChatRequest,
    tenant_id: str = Depends(get_tenant_id),
    agent: PageAgent | None = Depends(get_agent),
) -> dict[str, Any]:
    page_agent = _require_agent(agent)
    try:
        turn = page_agent.run_turn(
            request.message,
            tenant_id=tenant_id,
            session_id=_session_key(tenant_id, request.session_id),
            context=EditContext(**request.context.model_dump()),
        )
    except PageAgentError as exc:
        raise _http_error(exc) from exc
    return turn.to_dict()


@app.post("/chat/stream")
def chat_stream(
    request: ChatRequest,
    tenant_id: str = Depends(get_tenant_id),
    agent: PageAgent | None = Depends(get_agent),
) -> StreamingResponse:
    page_agent = _require_agent(agent)
    abort = threading.Event()
    completed: list[Any] = []

    def _events() -> Iterator[str]:
        chunks = page_agent.stream_turn(
            request.message,
            tenant_id=tenant_id,
            session_id=_session_key(tenant_id, request.session_id),
            context=EditContext(**request.context.model_dump()),
            abort=abort,
            on_complete=completed.append,
        )
        try:
            for text in chunks:
                yield _sse({"type": "content", "content": text})
            turn = completed[0]
            for record in turn.tool_calls:
                yield _sse(
                    {
                        "type": "tool_result",
                        "tool": record.name,
                        "input": record.input,
                        "result": record.result.to_dict(),
                    }
                )
            yield _sse({"type": "done", "aborted": turn.aborted})
        except PageAgentError as exc:
            logger.warning("Streaming turn failed (%s): %s", exc.kind, exc)
            yield _sse({"type": "error", "kind": exc.kind, "error": str(exc)})
        finally:
            abort.set()
            chunks.close()

    return StreamingResponse(_events(), media_type="text/event-stream")


@app.get("/sessions/{session_id}/history")
def history(
    session_id: str,
    limit: int = 50,
    tenant_id: str = Depends(get_tenant_id),
    transcripts: TranscriptStore = Depends(get_transcripts),
) -> dict[str, Any]:
    turns = transcripts.list(_session_key(tenant_id, session_id), limit=limit)
    return {"items": [turn.to_dict() for turn in turns]}


@app.delete("/sessions/{session_id}")
def clear_session(
    session_id: str,
    tenant_id: str = Depends(get_tenant_id),
    transcripts: TranscriptStore = Depends(get_transcripts),
) -> dict[str, Any]:
    transcripts.clear(_session_key(tenant_id, session_id))
    return {"cleared": session_id}


@app.get("/traces")
def traces(limit: int = 20, trace_store: TraceStore = Depends(get_trace_store)) -> dict[str, Any]:
    records = [asdict(record) for record in trace_store.list_recent(limit=limit)]
    return {"items": records}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str, trace_store: TraceStore = Depends(get_trace_store)) -> dict[str, Any]:
    try:
        record = trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/metrics")
def metrics(trace_store: TraceStore = Depends(get_trace_store)) -> dict[str, Any]:
    return trace_store.summary()
