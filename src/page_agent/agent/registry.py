"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from page_agent.errors import InvalidInput, PageAgentError, UnknownTool
from page_agent.types import ToolResult, ToolTrace

TraceObserver = Callable[[ToolTrace], None]


@dataclass(slots=True)
class FieldDescriptor:
    name: str
    kind: str
    required: bool


@dataclass(slots=True)
class ToolDefinition:
    """Model-facing description of a tool."""

    name: str
    description: str
    fields: list[FieldDescriptor] = field(default_factory=list)


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation.

    `path_fields` names the input fields holding store paths. The dispatcher
    sandboxes them before the handler runs.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[Any, Any], ToolResult]
    path_fields: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    def validate_input(self, payload: dict[str, Any]) -> BaseModel:
        try:
            return self.args_schema.model_validate(payload)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in err['loc']) or 'input'}: {err['msg']}"
                for err in exc.errors()
            )
            raise InvalidInput(f"Invalid input for {self.name}: {problems}") from exc

    def definition(self) -> ToolDefinition:
        schema = self.args_schema.model_json_schema()
        required = set(schema.get("required", []))
        return ToolDefinition(
            name=self.name,
            description=self.description,
            fields=[
                FieldDescriptor(name=name, kind=_field_kind(prop), required=name in required)
                for name, prop in schema.get("properties", {}).items()
            ],
        )

    def openai_schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.args_schema.model_json_schema(),
            },
        }


class ToolRegistry:
    """Single name-to-spec table. Exports schemas for `bind_tools`."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._observer: TraceObserver | None = None

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        unknown = set(spec.path_fields) - set(spec.args_schema.model_fields)
        if unknown:
            raise ValueError(f"{spec.name} declares unknown path fields: {sorted(unknown)}")
        self._tools[spec.name] = spec

    def set_observer(self, observer: TraceObserver | None) -> None:
        """Set an optional callback invoked after each tool execution."""
        self._observer = observer

    def get(self, name: str) -> ToolSpec:
        spec = self._tools.get(name)
        if spec is None:
            raise UnknownTool(f"Unknown tool: {name}")
        return spec

    def execute(
        self,
        name: str,
        payload: dict[str, Any],
        context: Any = None,
        *,
        observer: TraceObserver | None = None,
    ) -> ToolResult:
        spec = self.get(name)
        return self.run(
            spec, spec.validate_input(payload), context, payload=payload, observer=observer
        )

    def run(
        self,
        spec: ToolSpec,
        data: BaseModel,
        context: Any,
        *,
        payload: dict[str, Any] | None = None,
        observer: TraceObserver | None = None,
    ) -> ToolResult:
        """Invoke an already validated input and report it to the observers.

        `observer` only sees this call. The registry-wide observer sees every call.
        """
        start = perf_counter()
        status = "error"
        preview = ""
        try:
            result = spec.handler(data, context)
            status = result.status.value
            preview = result.message or ""
            return result
        except PageAgentError as exc:
            status = exc.kind
            preview = str(exc)
            raise
        finally:
            latency_ms = (perf_counter() - start) * 1000.0
            observers = [fn for fn in (self._observer, observer) if fn is not None]
            if observers:
                trace = ToolTrace(
                    name=spec.name,
                    input_payload=payload if payload is not None else data.model_dump(),
                    status=status,
                    output_preview=preview[:320],
                    latency_ms=latency_ms,
                )
                for notify in observers:
                    notify(trace)

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools)

    def definitions(self) -> list[ToolDefinition]:
        return [spec.definition() for spec in self._tools.values()]

    def tool_schemas(self) -> list[dict[str, Any]]:
        return [spec.openai_schema() for spec in self._tools.values()]


def _field_kind(prop: dict[str, Any]) -> str:
    if "type" in prop:
        return str(prop["type"])
    for option in prop.get("anyOf", []):
        kind = option.get("type")
        if kind and kind != "null":
            return str(kind)
        if "$ref" in option:
            return "object"
    if "$ref" in prop or "allOf" in prop:
        return "object"
    return "string"
