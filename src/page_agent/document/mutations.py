"""In-place mutations over a parsed `Document`."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

from bs4 import Tag

from page_agent.document.model import (
    Document,
    class_list,
    find_by_selector,
    parse_fragment,
    root_elements,
)

Position = Literal["before", "after", "prepend", "append"]


class MutationOutcome(Enum):
    APPLIED = "applied"
    NOT_FOUND = "not_found"
    PARSE_FAILURE = "parse_failure"

    def __bool__(self) -> bool:
        return self is MutationOutcome.APPLIED


@dataclass(slots=True)
class ElementUpdates:
    """Subset of changes applied by `update_element`, in field order."""

    text: str | None = None
    inner_markup: str | None = None
    attributes: dict[str, str] = field(default_factory=dict)
    add_classes: list[str] = field(default_factory=list)
    remove_classes: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ElementInfo:
    exists: bool
    tag: str | None = None
    identifier: str | None = None
    classes: list[str] = field(default_factory=list)
    text: str = ""
    inner_markup: str = ""
    attributes: dict[str, str] = field(default_factory=dict)


THEMES: dict[str, dict[str, str]] = {
    "modern": {
        "button": "px-6 py-3 bg-gradient-to-r from-blue-500 to-purple-600 text-white rounded-lg shadow-lg hover:shadow-xl transition",
        "card": "bg-white rounded-xl shadow-lg p-6 hover:shadow-xl transition",
        "section": "py-20 px-4",
    },
    "classic": {
        "button": "px-5 py-2 bg-blue-800 text-white rounded hover:bg-blue-900 transition",
        "card": "bg-white border border-gray-300 rounded p-6",
        "section": "py-16 px-4 font-serif",
    },
    "minimal": {
        "button": "px-4 py-2 border border-black text-black hover:bg-black hover:text-white transition",
        "card": "border border-gray-200 p-4",
        "section": "py-12 px-4",
    },
    "bold": {
        "button": "px-8 py-4 bg-red-600 text-white text-lg font-extrabold uppercase rounded hover:bg-red-700 transition",
        "card": "bg-white rounded-lg border-2 border-red-600 p-8",
        "section": "py-24 px-6",
    },
    "neomorphic": {
        "button": "px-6 py-3 bg-gray-100 text-gray-700 rounded-2xl shadow-[6px_6px_12px_#c5c5c5,-6px_-6px_12px_#ffffff] transition",
        "card": "bg-gray-100 rounded-2xl shadow-[8px_8px_16px_#c5c5c5,-8px_-8px_16px_#ffffff] p-6",
        "section": "bg-gray-100 py-16 px-4",
    },
    "neo-brutalist": {
        "button": "px-6 py-3 bg-yellow-400 text-black border-4 border-black shadow-[4px_4px_0px_0px_rgba(0,0,0,1)] hover:shadow-[2px_2px_0px_0px_rgba(0,0,0,1)] transition",
        "card": "bg-white border-4 border-black shadow-[8px_8px_0px_0px_rgba(0,0,0,1)] p-6",
        "section": "py-16 px-4",
    },
    "gradient": {
        "button": "px-6 py-3 bg-gradient-to-r from-pink-500 to-orange-400 text-white rounded-full transition",
        "card": "bg-gradient-to-br from-white to-gray-100 rounded-xl shadow p-6",
        "section": "bg-gradient-to-b from-indigo-50 to-white py-20 px-4",
    },
    "dark": {
        "button": "px-6 py-3 bg-gray-800 text-white rounded hover:bg-gray-700 transition",
        "card": "bg-gray-900 text-white rounded-lg p-6",
        "section": "bg-gray-950 text-white py-16 px-4",
    },
}

LAYOUTS: dict[str, str] = {
    "single-column": "flex flex-col",
    "two-columns": "grid md:grid-cols-2 gap-8",
    "three-columns": "grid md:grid-cols-3 gap-8",
    "grid-2x2": "grid grid-cols-2 gap-4",
    "grid-3x3": "grid grid-cols-3 gap-4",
    "flex-row": "flex flex-row gap-4 flex-wrap",
    "flex-column": "flex flex-col gap-4",
}

_BUTTON_SELECTOR = "button, a.button, .btn"
_CARD_SELECTOR = ".card, .feature-card, .testimonial"


def update_section(
    doc: Document,
    selector: str,
    new_content: str,
    preserve_attributes: bool = True,
) -> MutationOutcome:
    """Replace a section's content.

    With `preserve_attributes`, the target element itself is kept and only its
    inner content changes. A fragment that is a single element with the
    target's tag is unwrapped: its children become the new content and its
    classes are merged into the target's. Without it, the target is replaced
    by the fragment's root nodes.
    """
    target = find_by_selector(doc, selector)
    if target is None:
        return MutationOutcome.NOT_FOUND

    nodes = parse_fragment(new_content)
    if preserve_attributes:
        if len(nodes) == 1 and isinstance(nodes[0], Tag) and nodes[0].name == target.name:
            wrapper = nodes[0]
            _merge_classes(target, class_list(wrapper))
            nodes = list(wrapper.contents)
        target.clear()
        for node in nodes:
            target.append(node)
        return MutationOutcome.APPLIED

    if not root_elements(nodes):
        return MutationOutcome.PARSE_FAILURE
    for node in nodes:
        target.insert_before(node)
    target.decompose()
    return MutationOutcome.APPLIED


def update_element(doc: Document, selector: str, updates: ElementUpdates) -> MutationOutcome:
    target = find_by_selector(doc, selector)
    if target is None:
        return MutationOutcome.NOT_FOUND

    if updates.text is not None:
        target.string = updates.text
    if updates.inner_markup is not None:
        target.clear()
        for node in parse_fragment(updates.inner_markup):
            target.append(node)

    classes_touched = False
    for name, value in updates.attributes.items():
        if name == "class":
            target["class"] = value.split()
            classes_touched = True
        else:
            target[name] = value

    if updates.add_classes or updates.remove_classes:
        classes = class_list(target)
        for name in updates.add_classes:
            if name not in classes:
                classes.append(name)
        removed = set(updates.remove_classes)
        target["class"] = [name for name in classes if name not in removed]
        classes_touched = True

    if classes_touched and not class_list(target):
        del target["class"]
    return MutationOutcome.APPLIED


def add_element(
    doc: Document,
    parent_selector: str,
    markup: str,
    position: Position = "append",
) -> MutationOutcome:
    """Insert the first root element of `markup` relative to the anchor node."""
    anchor = find_by_selector(doc, parent_selector)
    if anchor is None:
        return MutationOutcome.NOT_FOUND

    elements = root_elements(parse_fragment(markup))
    if not elements:
        return MutationOutcome.PARSE_FAILURE
    new_node = elements[0].extract()

    if position == "append":
        anchor.append(new_node)
    elif position == "prepend":
        anchor.insert(0, new_node)
    elif position in ("before", "after"):
        if anchor.parent is None:
            return MutationOutcome.NOT_FOUND
        if position == "before":
            anchor.insert_before(new_node)
        else:
            anchor.insert_after(new_node)
    else:
        raise ValueError(f"Unsupported position: {position}")
    return MutationOutcome.APPLIED


def remove_element(doc: Document, selector: str) -> MutationOutcome:
    """Detach the first node matching `selector`. Other matches are untouched."""
    target = find_by_selector(doc, selector)
    if target is None:
        return MutationOutcome.NOT_FOUND
    target.decompose()
    return MutationOutcome.APPLIED


def inspect_element(doc: Document, selector: str) -> ElementInfo:
    target = find_by_selector(doc, selector)
    if target is None:
        return ElementInfo(exists=False)
    identifier = target.get("id")
    return ElementInfo(
        exists=True,
        tag=target.name,
        identifier=identifier if isinstance(identifier, str) else None,
        classes=class_list(target),
        text=target.get_text(),
        inner_markup=target.decode_contents(),
        attributes={
            name: " ".join(value) if isinstance(value, list) else str(value)
            for name, value in target.attrs.items()
        },
    )


def apply_theme(doc: Document, theme: str, target: str = "all") -> tuple[MutationOutcome, int]:
    """Restyle buttons and cards, plus sections when `target` is "all".

    Any other `target` is a selector scoping the restyle to one container.
    Unknown themes fall back to "modern". Returns the outcome and the number
    of restyled elements.
    """
    classes = THEMES.get(theme, THEMES["modern"])
    if target == "all":
        scope: Tag | None = doc.soup
    else:
        scope = find_by_selector(doc, target)
    if scope is None:
        return MutationOutcome.NOT_FOUND, 0

    touched = 0
    for button in scope.select(_BUTTON_SELECTOR):
        button["class"] = classes["button"].split()
        touched += 1
    for card in scope.select(_CARD_SELECTOR):
        current = class_list(card)
        card["class"] = current[:1] + [
            name for name in classes["card"].split() if name not in current[:1]
        ]
        touched += 1
    if target == "all":
        for section in scope.select("section"):
            _merge_classes(section, classes["section"].split())
            touched += 1
    return MutationOutcome.APPLIED, touched


def update_layout(
    doc: Document, selector: str, layout: str, responsive: bool = True
) -> MutationOutcome:
    container = find_by_selector(doc, selector)
    if container is None:
        return MutationOutcome.NOT_FOUND
    layout_classes = LAYOUTS.get(layout, LAYOUTS["single-column"]).split()
    if not responsive:
        layout_classes = [name.removeprefix("md:") for name in layout_classes]
    container["class"] = layout_classes
    return MutationOutcome.APPLIED


def optimize_seo(
    doc: Document,
    *,
    title: str | None = None,
    description: str | None = None,
    keywords: list[str] | None = None,
    og_image: str | None = None,
) -> MutationOutcome:
    """Upsert title and meta tags in the document head."""
    head = doc.head
    if head is None:
        return MutationOutcome.NOT_FOUND

    if title:
        title_tag = head.find("title")
        if title_tag is None:
            title_tag = doc.soup.new_tag("title")
            head.append(title_tag)
        title_tag.string = title
    if description:
        _upsert_meta(doc, head, "name", "description", description)
    if keywords:
        _upsert_meta(doc, head, "name", "keywords", ", ".join(keywords))
    if og_image:
        _upsert_meta(doc, head, "property", "og:image", og_image)
    return MutationOutcome.APPLIED


def _upsert_meta(doc: Document, head: Tag, key: str, name: str, content: str) -> None:
    meta = head.find("meta", attrs={key: name})
    if meta is None:
        meta = doc.soup.new_tag("meta", attrs={key: name})
        head.append(meta)
    meta["content"] = content


def _merge_classes(target: Tag, extra: list[str]) -> None:
    classes = class_list(target)
    for name in extra:
        if name not in classes:
            classes.append(name)
    if classes:
        target["class"] = classes
