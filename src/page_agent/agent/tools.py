"""Built-in file-tree and document tools."""

from __future__ import annotations

from dataclasses import asdict
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from page_agent.agent.dispatcher import ToolContext, outcome_result
from page_agent.agent.page_tools import register_business_tools, register_page_tools
from page_agent.agent.paths import PLACEHOLDER_NAME, next_copy_name
from page_agent.agent.registry import ToolRegistry, ToolSpec
from page_agent.document.model import find_by_text, list_sections
from page_agent.document.mutations import (
    ElementUpdates,
    add_element,
    inspect_element,
    remove_element,
    update_element,
    update_section,
)
from page_agent.errors import InvalidPath, NotFound
from page_agent.types import ToolResult


class CreateFileInput(BaseModel):
    path: str = Field(min_length=1, description="File path, e.g. 'landing/index.html'.")
    content: str = Field(default="", description="Full file content.")


class EditFileInput(BaseModel):
    path: str = Field(min_length=1)
    content: str | None = Field(default=None, description="New full content of the file.")
    find: str | None = Field(default=None, description="Exact text to replace.")
    replace: str | None = Field(default=None, description="Replacement for `find`.")
    replace_all: bool = False

    @model_validator(mode="after")
    def _one_edit_mode(self) -> "EditFileInput":
        if self.content is None and self.find is None:
            raise ValueError("provide either content or find/replace")
        if self.find is not None and self.replace is None:
            raise ValueError("replace is required with find")
        if self.find == "":
            raise ValueError("find must not be empty")
        return self


class PathInput(BaseModel):
    path: str = Field(min_length=1)


class ListFilesInput(BaseModel):
    path: str = Field(default="", description="Folder to list. Empty for the current folder.")


class MoveFileInput(BaseModel):
    source: str = Field(min_length=1)
    destination: str = Field(
        min_length=1,
        description="New path. An existing folder or a trailing '/' moves the item inside it.",
    )


class RenameFileInput(BaseModel):
    path: str = Field(min_length=1)
    new_name: str = Field(min_length=1, description="New file or folder name, without folders.")

    @field_validator("new_name")
    @classmethod
    def _bare_name(cls, value: str) -> str:
        if "/" in value or value in (".", ".."):
            raise ValueError("new_name must be a bare name")
        return value


class CopyFileInput(BaseModel):
    source: str = Field(min_length=1)
    destination: str | None = Field(
        default=None,
        description="Target path. Omit to place a copy next to the source.",
    )


class UpdateSectionInput(BaseModel):
    path: str = Field(min_length=1)
    selector: str = Field(min_length=1)
    content: str = Field(description="Replacement markup for the section.")
    preserve_attributes: bool = Field(
        default=True,
        description="Keep the section element and its id/classes, replacing only its content.",
    )


class UpdateElementInput(BaseModel):
    path: str = Field(min_length=1)
    selector: str = Field(min_length=1)
    text: str | None = None
    html: str | None = Field(default=None, description="New inner markup.")
    attributes: dict[str, str] = Field(default_factory=dict)
    add_classes: list[str] = Field(default_factory=list)
    remove_classes: list[str] = Field(default_factory=list)


class AddElementInput(BaseModel):
    path: str = Field(min_length=1)
    parent_selector: str = Field(min_length=1)
    html: str = Field(min_length=1)
    position: Literal["before", "after", "prepend", "append"] = "append"


class SelectorInput(BaseModel):
    path: str = Field(min_length=1)
    selector: str = Field(min_length=1)


class FindElementInput(BaseModel):
    path: str = Field(min_length=1)
    text: str = Field(min_length=1, description="Visible text to search for (case-sensitive).")
    tag: str | None = Field(default=None, description="Optional tag filter, e.g. 'h1,h2,button'.")


def register_builtin_tools(registry: ToolRegistry) -> None:
    """Register file, document, page and business tools."""
    register_file_tools(registry)
    register_document_tools(registry)
    register_page_tools(registry)
    register_business_tools(registry)


def register_file_tools(registry: ToolRegistry) -> None:
    def _create_file(data: CreateFileInput, ctx: ToolContext) -> ToolResult:
        location = ctx.write(data.path, data.content)
        return ToolResult.success(
            f"Created {ctx.relative(data.path)}", path=ctx.relative(data.path), location=location
        )

    def _edit_file(data: EditFileInput, ctx: ToolContext) -> ToolResult:
        if data.find is None:
            ctx.write(data.path, data.content or "")
            return ToolResult.success(f"Updated {ctx.relative(data.path)}", path=ctx.relative(data.path))

        text = ctx.read_text(data.path)
        occurrences = text.count(data.find)
        if occurrences == 0:
            return ToolResult.not_found(
                f"Text to replace was not found in {ctx.relative(data.path)}",
                path=ctx.relative(data.path),
            )
        count = -1 if data.replace_all else 1
        ctx.write(data.path, text.replace(data.find, data.replace or "", count))
        return ToolResult.success(
            f"Edited {ctx.relative(data.path)}",
            path=ctx.relative(data.path),
            replacements=occurrences if data.replace_all else 1,
        )

    def _read_file(data: PathInput, ctx: ToolContext) -> ToolResult:
        content = ctx.read_text(data.path)
        return ToolResult.success(path=ctx.relative(data.path), content=content)

    def _delete_file(data: PathInput, ctx: ToolContext) -> ToolResult:
        if ctx.file_exists(data.path):
            ctx.delete(data.path)
            return ToolResult.success(f"Deleted {ctx.relative(data.path)}", deleted=1)
        entries = ctx.folder_entries(data.path)
        if not entries:
            raise NotFound(f"Nothing to delete at {ctx.relative(data.path)}")
        for entry in entries:
            ctx.delete(entry.path)
        return ToolResult.success(
            f"Deleted folder {ctx.relative(data.path)}", deleted=len(entries)
        )

    def _list_files(data: ListFilesInput, ctx: ToolContext) -> ToolResult:
        prefix = data.path.rstrip("/") + "/"
        files: list[dict[str, object]] = []
        folders: set[str] = set()
        for entry in ctx.list(prefix):
            rest = entry.path[len(prefix):]
            head, sep, _ = rest.partition("/")
            if sep:
                folders.add(head)
            elif rest != PLACEHOLDER_NAME:
                files.append(
                    {
                        "path": ctx.relative(entry.path),
                        "size": entry.size,
                        "content_type": entry.content_type,
                    }
                )
        return ToolResult.success(
            folder=ctx.relative(data.path.rstrip("/")),
            files=files,
            folders=sorted(folders),
        )

    def _create_folder(data: PathInput, ctx: ToolContext) -> ToolResult:
        ctx.write(f"{data.path.rstrip('/')}/{PLACEHOLDER_NAME}", b"", "text/plain")
        return ToolResult.success(f"Created folder {ctx.relative(data.path)}")

    def _is_folder(path: str, ctx: ToolContext) -> bool:
        return not ctx.file_exists(path) and bool(ctx.folder_entries(path))

    def _move(source: str, destination: str, ctx: ToolContext) -> int:
        """Copy then delete. A failure part way leaves both copies in place.

        Returns the number of moved entries, 0 when `destination` is `source`.
        """
        source = source.rstrip("/")
        is_file = ctx.file_exists(source)
        entries = [] if is_file else ctx.folder_entries(source)
        if not is_file and not entries:
            raise NotFound(f"Nothing to move at {ctx.relative(source)}")
        if destination == source:
            return 0
        if is_file:
            ctx.copy(source, destination)
            ctx.delete(source)
            return 1
        if destination.startswith(source + "/"):
            raise InvalidPath(f"Cannot move {ctx.relative(source)} into itself")
        for entry in entries:
            ctx.copy(entry.path, destination + entry.path[len(source):])
        for entry in entries:
            ctx.delete(entry.path)
        return len(entries)

    def _move_file(data: MoveFileInput, ctx: ToolContext) -> ToolResult:
        destination = data.destination.rstrip("/")
        if data.destination.endswith("/") or _is_folder(destination, ctx):
            destination = f"{destination}/{data.source.rstrip('/').rpartition('/')[2]}"
        moved = _move(data.source, destination, ctx)
        if not moved:
            return ToolResult.success(
                f"{ctx.relative(destination)} is already in place",
                path=ctx.relative(destination),
                moved=0,
            )
        return ToolResult.success(
            f"Moved {ctx.relative(data.source)} to {ctx.relative(destination)}",
            path=ctx.relative(destination),
            moved=moved,
        )

    def _rename_file(data: RenameFileInput, ctx: ToolContext) -> ToolResult:
        parent = data.path.rstrip("/").rpartition("/")[0]
        destination = f"{parent}/{data.new_name}"
        moved = _move(data.path, destination, ctx)
        if not moved:
            return ToolResult.success(
                f"{ctx.relative(destination)} is already named {data.new_name}",
                path=ctx.relative(destination),
                moved=0,
            )
        return ToolResult.success(
            f"Renamed {ctx.relative(data.path)} to {data.new_name}",
            path=ctx.relative(destination),
            moved=moved,
        )

    def _copy_item(source: str, destination: str | None, ctx: ToolContext) -> ToolResult:
        source = source.rstrip("/")
        is_file = ctx.file_exists(source)
        entries = [] if is_file else ctx.folder_entries(source)
        if not is_file and not entries:
            raise NotFound(f"Nothing to copy at {ctx.relative(source)}")

        if destination is None:
            target = source
        else:
            target = destination.rstrip("/")
            if destination.endswith("/") or _is_folder(target, ctx):
                target = f"{target}/{source.rpartition('/')[2]}"
        if destination is None or ctx.exists(target):
            target = next_copy_name(
                target,
                ctx.exists,
                is_folder=not is_file,
                max_attempts=ctx.config.max_copy_attempts,
            )

        if is_file:
            ctx.copy(source, target)
            copied = 1
        else:
            for entry in entries:
                ctx.copy(entry.path, target + entry.path[len(source):])
            copied = len(entries)
        return ToolResult.success(
            f"Copied {ctx.relative(source)} to {ctx.relative(target)}",
            path=ctx.relative(target),
            copied=copied,
        )

    def _copy_file(data: CopyFileInput, ctx: ToolContext) -> ToolResult:
        return _copy_item(data.source, data.destination, ctx)

    def _duplicate_file(data: PathInput, ctx: ToolContext) -> ToolResult:
        return _copy_item(data.path, None, ctx)

    registry.register(
        ToolSpec(
            name="create_file",
            description="Create a file, replacing any existing file at the same path.",
            args_schema=CreateFileInput,
            handler=_create_file,
            path_fields=["path"],
            tags=["files"],
        )
    )
    registry.register(
        ToolSpec(
            name="edit_file",
            description=(
                "Edit a file. Pass `content` to replace the whole file, or `find` and "
                "`replace` to change the first occurrence of a snippet."
            ),
            args_schema=EditFileInput,
            handler=_edit_file,
            path_fields=["path"],
            tags=["files"],
        )
    )
    registry.register(
        ToolSpec(
            name="read_file",
            description="Read a file's content.",
            args_schema=PathInput,
            handler=_read_file,
            path_fields=["path"],
            tags=["files", "read"],
        )
    )
    registry.register(
        ToolSpec(
            name="delete_file",
            description="Delete a file, or a folder with everything in it.",
            args_schema=PathInput,
            handler=_delete_file,
            path_fields=["path"],
            tags=["files"],
        )
    )
    registry.register(
        ToolSpec(
            name="list_files",
            description="List the files and sub-folders of a folder.",
            args_schema=ListFilesInput,
            handler=_list_files,
            path_fields=["path"],
            tags=["files", "read"],
        )
    )
    registry.register(
        ToolSpec(
            name="create_folder",
            description="Create an empty folder.",
            args_schema=PathInput,
            handler=_create_folder,
            path_fields=["path"],
            tags=["files"],
        )
    )
    registry.register(
        ToolSpec(
            name="move_file",
            description="Move a file or folder. Overwrites files at the destination.",
            args_schema=MoveFileInput,
            handler=_move_file,
            path_fields=["source", "destination"],
            tags=["files"],
        )
    )
    registry.register(
        ToolSpec(
            name="rename_file",
            description="Rename a file or folder in place.",
            args_schema=RenameFileInput,
            handler=_rename_file,
            path_fields=["path"],
            tags=["files"],
        )
    )
    registry.register(
        ToolSpec(
            name="copy_file",
            description="Copy a file or folder. Existing names get a ' copy N' suffix.",
            args_schema=CopyFileInput,
            handler=_copy_file,
            path_fields=["source", "destination"],
            tags=["files"],
        )
    )
    registry.register(
        ToolSpec(
            name="duplicate_file",
            description="Duplicate a file or folder next to the original as 'name copy'.",
            args_schema=PathInput,
            handler=_duplicate_file,
            path_fields=["path"],
            tags=["files"],
        )
    )


def register_document_tools(registry: ToolRegistry) -> None:
    def _update_section(data: UpdateSectionInput, ctx: ToolContext) -> ToolResult:
        outcome = ctx.mutate_document(
            data.path,
            lambda doc: update_section(
                doc, data.selector, data.content, data.preserve_attributes
            ),
        )
        return outcome_result(outcome, ctx, data.path, data.selector, "Updated section")

    def _update_element(data: UpdateElementInput, ctx: ToolContext) -> ToolResult:
        updates = ElementUpdates(
            text=data.text,
            inner_markup=data.html,
            attributes=data.attributes,
            add_classes=data.add_classes,
            remove_classes=data.remove_classes,
        )
        outcome = ctx.mutate_document(
            data.path, lambda doc: update_element(doc, data.selector, updates)
        )
        return outcome_result(outcome, ctx, data.path, data.selector, "Updated element")

    def _add_element(data: AddElementInput, ctx: ToolContext) -> ToolResult:
        outcome = ctx.mutate_document(
            data.path,
            lambda doc: add_element(doc, data.parent_selector, data.html, data.position),
        )
        return outcome_result(
            outcome, ctx, data.path, data.parent_selector, f"Added element ({data.position})"
        )

    def _remove_element(data: SelectorInput, ctx: ToolContext) -> ToolResult:
        outcome = ctx.mutate_document(
            data.path, lambda doc: remove_element(doc, data.selector)
        )
        return outcome_result(outcome, ctx, data.path, data.selector, "Removed element")

    def _inspect_element(data: SelectorInput, ctx: ToolContext) -> ToolResult:
        info = inspect_element(ctx.read_document(data.path), data.selector)
        message = None if info.exists else f"No element matches {data.selector!r}"
        return ToolResult.success(message, selector=data.selector, **asdict(info))

    def _find_element(data: FindElementInput, ctx: ToolContext) -> ToolResult:
        selector = find_by_text(ctx.read_document(data.path), data.text, data.tag)
        if selector is None:
            return ToolResult.success(f"No element contains {data.text!r}", found=False)
        return ToolResult.success(found=True, selector=selector)

    def _get_preview_state(data: PathInput, ctx: ToolContext) -> ToolResult:
        sections = list_sections(ctx.read_document(data.path), ctx.document_config)
        return ToolResult.success(
            path=ctx.relative(data.path),
            sections=[asdict(section) for section in sections],
        )

    registry.register(
        ToolSpec(
            name="update_section",
            description=(
                "Replace the content of a page section (header, hero, footer, ...) addressed "
                "by a CSS selector. Keeps the section's id and classes by default."
            ),
            args_schema=UpdateSectionInput,
            handler=_update_section,
            path_fields=["path"],
            tags=["document"],
        )
    )
    registry.register(
        ToolSpec(
            name="update_element",
            description=(
                "Change one element's text, inner HTML, attributes or classes. "
                "Use find_element first when you only know the visible text."
            ),
            args_schema=UpdateElementInput,
            handler=_update_element,
            path_fields=["path"],
            tags=["document"],
        )
    )
    registry.register(
        ToolSpec(
            name="add_element",
            description="Insert new HTML before, after, or inside (prepend/append) an element.",
            args_schema=AddElementInput,
            handler=_add_element,
            path_fields=["path"],
            tags=["document"],
        )
    )
    registry.register(
        ToolSpec(
            name="remove_element",
            description=(
                "Remove the first element matching a selector. Use a specific selector: "
                "broad ones like 'div' remove whichever element comes first."
            ),
            args_schema=SelectorInput,
            handler=_remove_element,
            path_fields=["path"],
            tags=["document"],
        )
    )
    registry.register(
        ToolSpec(
            name="inspect_element",
            description="Return tag, id, classes, text, HTML and attributes of an element.",
            args_schema=SelectorInput,
            handler=_inspect_element,
            path_fields=["path"],
            tags=["document", "read"],
        )
    )
    registry.register(
        ToolSpec(
            name="find_element",
            description="Find the selector of the first element whose own text contains the given text.",
            args_schema=FindElementInput,
            handler=_find_element,
            path_fields=["path"],
            tags=["document", "read"],
        )
    )
    registry.register(
        ToolSpec(
            name="get_preview_state",
            description="List the page's sections with selectors and short previews.",
            args_schema=PathInput,
            handler=_get_preview_state,
            path_fields=["path"],
            tags=["document", "read"],
        )
    )

