"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ToolStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    PARSE_FAILURE = "parse_failure"
    ERROR = "error"


@dataclass(slots=True)
class ToolCall:
    """A tool invocation emitted by the language model."""

    name: str
    input: dict[str, Any]
    id: str | None = None


@dataclass(slots=True)
class ToolResult:
    """Outcome of one dispatched tool call."""

    status: ToolStatus
    payload: dict[str, Any] = field(default_factory=dict)
    message: str | None = None
    error_kind: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is ToolStatus.OK

    @classmethod
    def success(cls, message: str | None = None, **payload: Any) -> "ToolResult":
        return cls(status=ToolStatus.OK, payload=payload, message=message)

    @classmethod
    def not_found(cls, message: str, **payload: Any) -> "ToolResult":
        return cls(
            status=ToolStatus.NOT_FOUND,
            payload=payload,
            message=message,
            error_kind="not_found",
        )

    @classmethod
    def parse_failure(cls, message: str, **payload: Any) -> "ToolResult":
        return cls(
            status=ToolStatus.PARSE_FAILURE,
            payload=payload,
            message=message,
            error_kind="parse_failure",
        )

    @classmethod
    def failure(cls, error_kind: str, message: str) -> "ToolResult":
        return cls(status=ToolStatus.ERROR, message=message, error_kind=error_kind)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "payload": self.payload,
            "message": self.message,
            "error_kind": self.error_kind,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolResult":
        return cls(
            status=ToolStatus(data["status"]),
            payload=dict(data.get("payload") or {}),
            message=data.get("message"),
            error_kind=data.get("error_kind"),
        )


@dataclass(slots=True)
class ToolCallRecord:
    """A tool call paired with the result recorded for it in a turn."""

    name: str
    input: dict[str, Any]
    result: ToolResult


@dataclass(slots=True)
class ConversationTurn:
    role: str
    text: str
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    aborted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "text": self.text,
            "tool_calls": [
                {"name": rec.name, "input": rec.input, "result": rec.result.to_dict()}
                for rec in self.tool_calls
            ],
            "created_at": self.created_at,
            "aborted": self.aborted,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationTurn":
        return cls(
            role=data["role"],
            text=data.get("text", ""),
            tool_calls=[
                ToolCallRecord(
                    name=item["name"],
                    input=dict(item.get("input") or {}),
                    result=ToolResult.from_dict(item["result"]),
                )
                for item in data.get("tool_calls", [])
            ],
            created_at=data.get("created_at") or datetime.now(timezone.utc).isoformat(),
            aborted=bool(data.get("aborted", False)),
        )


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    status: str
    output_preview: str
    latency_ms: float


@dataclass(slots=True)
class EditContext:
    """What the user is looking at when they send a message."""

    current_folder: str = ""
    selected_file: str | None = None
    selected_is_folder: bool = False
    selected_element: str | None = None
