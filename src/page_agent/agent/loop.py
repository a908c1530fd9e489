"""Conversation loop: one model call per turn, tools applied in order."""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from enum import Enum
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder

from page_agent.agent.dispatcher import Dispatcher
from page_agent.agent.prompts import build_system_prompt
from page_agent.config import AgentConfig
from page_agent.document.model import Section, list_sections
from page_agent.errors import PageAgentError, UpstreamFailure
from page_agent.obs.tracing import Timer, TraceStore, estimate_token_count
from page_agent.storage.transcripts import TranscriptStore
from page_agent.types import (
    ConversationTurn,
    EditContext,
    ToolCall,
    ToolCallRecord,
    ToolResult,
    ToolTrace,
)

logger = logging.getLogger(__name__)

_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", "{system_prompt}"),
        MessagesPlaceholder(variable_name="chat_history", optional=True),
        ("human", "{input}"),
    ]
)


class AgentState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    APPLYING_TOOLS = "applying_tools"


class PageAgent:
    """Translates user requests into tool calls against the tenant's pages.

    Tool results are not fed back to the model within a turn. They are
    replayed as text in the next turn's history so the model can correct a
    failed call.
    """

    def __init__(
        self,
        *,
        llm: Any,
        dispatcher: Dispatcher,
        transcripts: TranscriptStore,
        trace_store: TraceStore | None = None,
        config: AgentConfig | None = None,
    ) -> None:
        self.llm = llm
        self.dispatcher = dispatcher
        self.transcripts = transcripts
        self.trace_store = trace_store or TraceStore()
        self.config = config or AgentConfig()
        self._turns: dict[int, tuple[str, AgentState]] = {}
        self._turn_ids = itertools.count(1)
        self._turns_lock = threading.Lock()

    @property
    def state(self) -> AgentState:
        """Busiest state across all turns in flight."""
        return _busiest(state for _, state in self._in_flight())

    def session_state(self, session_id: str) -> AgentState:
        return _busiest(state for sid, state in self._in_flight() if sid == session_id)

    def _in_flight(self) -> list[tuple[str, AgentState]]:
        with self._turns_lock:
            return list(self._turns.values())

    def _set_state(self, turn_id: int, session_id: str, state: AgentState) -> None:
        with self._turns_lock:
            if state is AgentState.IDLE:
                self._turns.pop(turn_id, None)
            else:
                self._turns[turn_id] = (session_id, state)

    def run_turn(
        self,
        message: str,
        *,
        tenant_id: str,
        session_id: str,
        context: EditContext | None = None,
        abort: threading.Event | None = None,
    ) -> ConversationTurn:
        """Run one full turn and append both sides of it to the transcript."""
        context = context or EditContext()
        turn_id = next(self._turn_ids)
        try:
            with Timer() as timer:
                messages = self._prepare(message, tenant_id, session_id, context)
                self._set_state(turn_id, session_id, AgentState.AWAITING_MODEL)
                try:
                    response = self._bound_llm().invoke(messages)
                except Exception as exc:
                    raise UpstreamFailure(f"Language model call failed: {exc}") from exc

                self._set_state(turn_id, session_id, AgentState.APPLYING_TOOLS)
                turn, traces = self._complete_turn(
                    text=message_text(response),
                    calls=extract_tool_calls(response),
                    tenant_id=tenant_id,
                    session_id=session_id,
                    context=context,
                    abort=abort,
                )
        finally:
            self._set_state(turn_id, session_id, AgentState.IDLE)
        self._record_trace(message, messages, turn, traces, tenant_id, session_id, timer)
        return turn

    def stream_turn(
        self,
        message: str,
        *,
        tenant_id: str,
        session_id: str,
        context: EditContext | None = None,
        abort: threading.Event | None = None,
        on_complete: Callable[[ConversationTurn], None] | None = None,
    ) -> Iterator[str]:
        """Yield reply text as it arrives, then apply tools.

        Tool calls are recovered from the aggregated stream after it ends.
        Once `abort` is set no more text is forwarded and pending tool calls
        are dropped. The turn is still appended, flagged as aborted.
        """
        context = context or EditContext()
        turn_id = next(self._turn_ids)
        try:
            with Timer() as timer:
                messages = self._prepare(message, tenant_id, session_id, context)
                self._set_state(turn_id, session_id, AgentState.AWAITING_MODEL)
                aggregate: Any = None
                parts: list[str] = []
                stopped = False
                try:
                    try:
                        for chunk in self._bound_llm().stream(messages):
                            if abort is not None and abort.is_set():
                                stopped = True
                                break
                            aggregate = chunk if aggregate is None else aggregate + chunk
                            text = message_text(chunk)
                            if text:
                                parts.append(text)
                                yield text
                    except Exception as exc:
                        raise UpstreamFailure(f"Language model stream failed: {exc}") from exc
                except GeneratorExit:
                    # Consumer went away mid-stream; keep what was said, apply nothing.
                    self._complete_turn(
                        text="".join(parts),
                        calls=[],
                        tenant_id=tenant_id,
                        session_id=session_id,
                        context=context,
                        abort=None,
                        aborted=True,
                    )
                    raise

                self._set_state(turn_id, session_id, AgentState.APPLYING_TOOLS)
                turn, traces = self._complete_turn(
                    text="".join(parts),
                    calls=extract_tool_calls(aggregate) if aggregate is not None else [],
                    tenant_id=tenant_id,
                    session_id=session_id,
                    context=context,
                    abort=abort,
                    aborted=stopped,
                )
        finally:
            self._set_state(turn_id, session_id, AgentState.IDLE)
        self._record_trace(message, messages, turn, traces, tenant_id, session_id, timer)
        if on_complete is not None:
            on_complete(turn)

    def _prepare(
        self,
        message: str,
        tenant_id: str,
        session_id: str,
        context: EditContext,
    ) -> list[BaseMessage]:
        history = self.transcripts.list(session_id, limit=self.config.history_limit)
        self.transcripts.append(session_id, ConversationTurn(role="user", text=message))
        system_prompt = build_system_prompt(context, self._page_outline(tenant_id, context))
        return _PROMPT.format_messages(
            system_prompt=system_prompt,
            chat_history=self._history_messages(history),
            input=message,
        )

    def _complete_turn(
        self,
        *,
        text: str,
        calls: list[ToolCall | ToolCallRecord],
        tenant_id: str,
        session_id: str,
        context: EditContext,
        abort: threading.Event | None,
        aborted: bool = False,
    ) -> tuple[ConversationTurn, list[ToolTrace]]:
        records, traces, interrupted = self._apply_tools(calls, tenant_id, context, abort)
        turn = ConversationTurn(
            role="assistant",
            text=text,
            tool_calls=records,
            aborted=aborted or interrupted,
        )
        self.transcripts.append(session_id, turn)
        return turn, traces

    def _apply_tools(
        self,
        calls: list[ToolCall | ToolCallRecord],
        tenant_id: str,
        context: EditContext,
        abort: threading.Event | None,
    ) -> tuple[list[ToolCallRecord], list[ToolTrace], bool]:
        records: list[ToolCallRecord] = []
        observed: list[ToolTrace] = []
        for call in calls:
            if abort is not None and abort.is_set():
                logger.info("Turn aborted, dropping %d pending tool calls", len(calls) - len(records))
                return records, observed, True
            if isinstance(call, ToolCallRecord):
                # Malformed call reported by the model provider.
                records.append(call)
                observed.append(_rejected_trace(call.name, call.input, call.result))
                continue

            seen = len(observed)
            result = self._dispatch_one(call, tenant_id, context, observed.append)
            if len(observed) == seen:
                observed.append(_rejected_trace(call.name, call.input, result))
            records.append(ToolCallRecord(name=call.name, input=call.input, result=result))
        return records, observed, False

    def _dispatch_one(
        self,
        call: ToolCall,
        tenant_id: str,
        context: EditContext,
        observer: Callable[[ToolTrace], None],
    ) -> ToolResult:
        try:
            return self.dispatcher.dispatch(
                call, tenant_id, base_folder=context.current_folder, observer=observer
            )
        except PageAgentError as exc:
            logger.warning("Tool %s failed (%s): %s", call.name, exc.kind, exc)
            return ToolResult.failure(exc.kind, str(exc))
        except Exception as exc:
            logger.exception("Tool %s raised unexpectedly", call.name)
            return ToolResult.failure("error", str(exc))

    def _page_outline(self, tenant_id: str, context: EditContext) -> list[Section] | None:
        if not context.selected_file or context.selected_is_folder:
            return None
        if not context.selected_file.lower().endswith((".html", ".htm")):
            return None
        tool_context = self.dispatcher.context(tenant_id, base_folder=context.current_folder)
        try:
            path = tool_context.resolve(context.selected_file)
            document = tool_context.read_document(path)
        except PageAgentError as exc:
            logger.debug("No outline for %s: %s", context.selected_file, exc)
            return None
        return list_sections(document, self.dispatcher.document_config)

    def _history_messages(self, turns: list[ConversationTurn]) -> list[BaseMessage]:
        messages: list[BaseMessage] = []
        for turn in turns:
            if turn.role == "user":
                messages.append(HumanMessage(content=turn.text))
            else:
                messages.append(AIMessage(content=self._render_assistant(turn)))
        return messages

    def _render_assistant(self, turn: ConversationTurn) -> str:
        lines = [turn.text] if turn.text else []
        if turn.tool_calls:
            lines.append("Tool results:")
            for record in turn.tool_calls:
                result = record.result
                detail = f" ({result.message})" if result.message else ""
                lines.append(f"- {record.name}: {result.status.value}{detail}")
        if turn.aborted:
            lines.append("[turn aborted by user]")
        rendered = "\n".join(lines)
        return rendered[: self.config.history_preview_chars]

    def _bound_llm(self) -> Any:
        return self.llm.bind_tools(self.dispatcher.registry.tool_schemas())

    def _record_trace(
        self,
        message: str,
        messages: list[BaseMessage],
        turn: ConversationTurn,
        traces: list[ToolTrace],
        tenant_id: str,
        session_id: str,
        timer: Timer,
    ) -> None:
        prompt_text = "\n".join(message_text(item) for item in messages)
        record = self.trace_store.create_record(
            tenant_id=tenant_id,
            session_id=session_id,
            message=message,
            reply=turn.text,
            tool_traces=traces,
            input_tokens=estimate_token_count(prompt_text),
            output_tokens=estimate_token_count(turn.text),
            latency_ms=timer.elapsed_ms,
            aborted=turn.aborted,
        )
        if record.latency_ms > self.config.target_latency_seconds * 1000.0:
            logger.warning(
                "Turn %s exceeded latency target: %.0fms", record.trace_id, record.latency_ms
            )


def message_text(message: Any) -> str:
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text", "")))
        return "".join(parts)
    return str(content)


def extract_tool_calls(message: Any) -> list[ToolCall | ToolCallRecord]:
    """Tool calls in emitted order. Unparseable calls become error records.

    langchain splits parsed and unparseable calls into separate lists. The
    provider's raw call list (or the stream's call chunks) restores their
    interleaving. Calls with no known position keep their relative order
    after the positioned ones.
    """
    entries: list[tuple[str | None, ToolCall | ToolCallRecord]] = [
        (
            item.get("id"),
            ToolCall(name=item["name"], input=dict(item.get("args") or {}), id=item.get("id")),
        )
        for item in getattr(message, "tool_calls", None) or []
    ]
    for item in getattr(message, "invalid_tool_calls", None) or []:
        entries.append(
            (
                item.get("id"),
                ToolCallRecord(
                    name=str(item.get("name") or "unknown"),
                    input={"raw_args": item.get("args")},
                    result=ToolResult.failure(
                        "invalid_input", str(item.get("error") or "Malformed tool arguments")
                    ),
                ),
            )
        )

    order = _emitted_order(message)
    ranked = sorted(
        enumerate(entries),
        key=lambda pair: order.get(pair[1][0], len(order) + pair[0]),
    )
    return [call for _, (_, call) in ranked]


def _emitted_order(message: Any) -> dict[str, int]:
    raw = (getattr(message, "additional_kwargs", None) or {}).get("tool_calls") or []
    if not raw:
        raw = getattr(message, "tool_call_chunks", None) or []
    order: dict[str, int] = {}
    for item in raw:
        call_id = item.get("id") if isinstance(item, dict) else None
        if call_id and call_id not in order:
            order[call_id] = len(order)
    return order


def _busiest(states: Iterable[AgentState]) -> AgentState:
    seen = set(states)
    if AgentState.APPLYING_TOOLS in seen:
        return AgentState.APPLYING_TOOLS
    if AgentState.AWAITING_MODEL in seen:
        return AgentState.AWAITING_MODEL
    return AgentState.IDLE


def _rejected_trace(name: str, payload: dict[str, Any], result: ToolResult) -> ToolTrace:
    return ToolTrace(
        name=name,
        input_payload=payload,
        status=result.error_kind or result.status.value,
        output_preview=(result.message or "")[:320],
        latency_ms=0.0,
    )
