"""Routes validated tool calls to handlers against a tenant's content store."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from page_agent.agent.paths import content_type_for, relative_to_tenant, sanitize_path
from page_agent.agent.registry import ToolRegistry, TraceObserver
from page_agent.config import DispatchConfig, DocumentConfig
from page_agent.document.model import Document, parse, serialize
from page_agent.document.mutations import MutationOutcome
from page_agent.errors import NotFound, ParseFailure, UpstreamFailure, WriteConflict
from page_agent.storage.content_store import ContentStore, StoreEntry, VersionedContentStore
from page_agent.templates.components import ComponentTemplateProvider, JinjaComponentTemplates
from page_agent.types import ToolCall, ToolResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ToolContext:
    """Per-call view of the store scoped to one tenant.

    Reads are retried on upstream failures. Writes are attempted once.
    """

    def __init__(
        self,
        *,
        tenant_id: str,
        store: ContentStore,
        templates: ComponentTemplateProvider,
        base_folder: str = "",
        config: DispatchConfig | None = None,
        document_config: DocumentConfig | None = None,
    ) -> None:
        self.tenant_id = tenant_id
        self.store = store
        self.templates = templates
        self.base_folder = base_folder
        self.config = config or DispatchConfig()
        self.document_config = document_config or DocumentConfig()

    def resolve(self, path: str) -> str:
        return sanitize_path(
            path,
            self.tenant_id,
            base_folder=self.base_folder,
            is_foreign_tenant=self._is_foreign_tenant,
        )

    def relative(self, stored_path: str) -> str:
        return relative_to_tenant(stored_path, self.tenant_id)

    def read(self, path: str) -> bytes:
        return self._with_retries(lambda: self.store.get(path), f"read {path}")

    def read_text(self, path: str) -> str:
        return self.read(path).decode("utf-8", errors="replace")

    def read_document(self, path: str) -> Document:
        return parse(self.read(path))

    def list(self, prefix: str) -> list[StoreEntry]:
        return self._with_retries(lambda: self.store.list(prefix), f"list {prefix}")

    def write(self, path: str, data: bytes | str, content_type: str | None = None) -> str:
        payload = data.encode("utf-8") if isinstance(data, str) else data
        return self.store.put(path, payload, content_type or content_type_for(path))

    def delete(self, path: str) -> None:
        self.store.delete(path)

    def copy(self, src: str, dst: str) -> str:
        return self.store.copy(src, dst)

    def file_exists(self, path: str) -> bool:
        return any(entry.path == path for entry in self.list(path))

    def folder_entries(self, path: str) -> list[StoreEntry]:
        return self.list(path.rstrip("/") + "/")

    def exists(self, path: str) -> bool:
        return self.file_exists(path) or bool(self.folder_entries(path))

    def mutate_document(
        self, path: str, operation: Callable[[Document], MutationOutcome]
    ) -> MutationOutcome:
        """Read, parse, mutate and write back one document.

        Nothing is written unless `operation` reports `APPLIED`. Stores with
        compare-and-swap support get the whole cycle retried on conflict.
        """
        if isinstance(self.store, VersionedContentStore):
            return self._mutate_versioned(self.store, path, operation)

        doc = self.read_document(path)
        outcome = operation(doc)
        if outcome is MutationOutcome.APPLIED:
            self.write(path, serialize(doc), content_type_for(path))
        return outcome

    def _mutate_versioned(
        self,
        store: VersionedContentStore,
        path: str,
        operation: Callable[[Document], MutationOutcome],
    ) -> MutationOutcome:
        for attempt in range(1, self.config.conflict_retries + 1):
            data, version = self._with_retries(
                lambda: store.get_versioned(path), f"read {path}"
            )
            doc = parse(data)
            outcome = operation(doc)
            if outcome is not MutationOutcome.APPLIED:
                return outcome
            try:
                store.put_if_version(
                    path, serialize(doc).encode("utf-8"), content_type_for(path), version
                )
                return outcome
            except WriteConflict:
                logger.warning(
                    "Write conflict on %s (attempt %d/%d)",
                    path,
                    attempt,
                    self.config.conflict_retries,
                )
        raise WriteConflict(f"Gave up writing {path} after repeated conflicts")

    def _is_foreign_tenant(self, segment: str) -> bool:
        return segment != self.tenant_id and bool(self.list(f"{segment}/"))

    def _with_retries(self, action: Callable[[], T], description: str) -> T:
        delay = self.config.retry_backoff_seconds
        attempts = self.config.read_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return action()
            except UpstreamFailure as exc:
                if attempt == attempts:
                    raise
                logger.warning(
                    "Retrying %s after upstream failure (%d/%d): %s",
                    description,
                    attempt,
                    attempts - 1,
                    exc,
                )
                time.sleep(delay)
                delay *= 2
        raise AssertionError("unreachable")


class Dispatcher:
    """Validates, sandboxes and executes tool calls.

    `InvalidPath`, `UnknownTool`, `InvalidInput` and write-side
    `UpstreamFailure` propagate to the caller. Missing targets and
    unparseable fragments come back as structured results.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        store: ContentStore,
        *,
        templates: ComponentTemplateProvider | None = None,
        config: DispatchConfig | None = None,
        document_config: DocumentConfig | None = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self.templates = templates or JinjaComponentTemplates()
        self.config = config or DispatchConfig()
        self.document_config = document_config or DocumentConfig()

    def context(self, tenant_id: str, *, base_folder: str = "") -> ToolContext:
        return ToolContext(
            tenant_id=tenant_id,
            store=self.store,
            templates=self.templates,
            base_folder=base_folder,
            config=self.config,
            document_config=self.document_config,
        )

    def dispatch(
        self,
        call: ToolCall,
        tenant_id: str,
        *,
        base_folder: str = "",
        observer: TraceObserver | None = None,
    ) -> ToolResult:
        """Run one call. `observer` receives the call's trace, in addition to
        any observer installed on the registry.
        """
        spec = self.registry.get(call.name)
        data = spec.validate_input(call.input)
        context = self.context(tenant_id, base_folder=base_folder)

        resolved: dict[str, str] = {}
        for field_name in spec.path_fields:
            value = getattr(data, field_name)
            if isinstance(value, str):
                path = context.resolve(value)
                # A trailing "/" marks a folder target.
                if value.endswith("/") and not path.endswith("/"):
                    path += "/"
                resolved[field_name] = path
        if resolved:
            data = data.model_copy(update=resolved)

        started = time.perf_counter()
        try:
            result = self.registry.run(
                spec, data, context, payload=call.input, observer=observer
            )
        except NotFound as exc:
            result = ToolResult.not_found(str(exc))
        except ParseFailure as exc:
            result = ToolResult.parse_failure(str(exc))

        latency_ms = (time.perf_counter() - started) * 1000.0
        if result.ok:
            logger.info("Tool %s succeeded for %s in %.1fms", call.name, tenant_id, latency_ms)
        else:
            logger.warning(
                "Tool %s returned %s for %s: %s",
                call.name,
                result.status.value,
                tenant_id,
                result.message,
            )
        return result


def outcome_result(
    outcome: MutationOutcome,
    ctx: ToolContext,
    path: str,
    selector: str,
    message: str,
    **payload: object,
) -> ToolResult:
    """Translate a mutation outcome into the result reported to the model."""
    relative = ctx.relative(path)
    if outcome is MutationOutcome.NOT_FOUND:
        return ToolResult.not_found(
            f"No element matches {selector!r} in {relative}", path=relative, selector=selector
        )
    if outcome is MutationOutcome.PARSE_FAILURE:
        return ToolResult.parse_failure(
            "The supplied markup contains no element", path=relative, selector=selector
        )
    return ToolResult.success(
        f"{message} in {relative}", path=relative, selector=selector, **payload
    )
