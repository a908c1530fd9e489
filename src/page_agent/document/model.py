"""Markup document model: parsing, serialization and node addressing.

Full documents are parsed with the lxml builder, which always produces the
`html`/`head`/`body` skeleton a browser would. Fragments supplied by the model
are parsed with the stdlib-backed `html.parser` builder so no skeleton is added.

Selectors synthesized here address exactly one node in the snapshot they were
computed from. They are not expected to survive a mutation.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

import soupsieve as sv
from bs4 import BeautifulSoup, NavigableString, PageElement, Tag

from page_agent.config import DocumentConfig

logger = logging.getLogger(__name__)

SECTION_SELECTOR = (
    "header, main, section, article, aside, nav, footer, div[id], "
    'div[class*="section"], div[class*="hero"], div[class*="container"]'
)

_ANCHOR_TAGS = frozenset({"html", "head", "body"})
_NON_TEXT_PARENTS = frozenset({"script", "style", "template"})
# Names soupsieve accepts as a bare type selector. Prefixed names like "o:p" are not.
_PLAIN_TAG_NAME = re.compile(r"[A-Za-z][A-Za-z0-9_-]*")


class Document:
    """A parsed markup document."""

    def __init__(self, soup: BeautifulSoup) -> None:
        self.soup = soup

    @property
    def head(self) -> Tag | None:
        return self.soup.find("head")

    @property
    def body(self) -> Tag | None:
        return self.soup.find("body")

    def __str__(self) -> str:
        return serialize(self)


@dataclass(slots=True)
class Section:
    """A notable structural node surfaced to the model."""

    selector: str
    kind: str
    identifier: str | None
    classes: list[str] = field(default_factory=list)
    content: str = ""
    text_preview: str = ""
    children: int = 0


def parse(markup: str | bytes) -> Document:
    """Parse a full document. Malformed markup is repaired, never rejected."""
    if isinstance(markup, bytes):
        markup = markup.decode("utf-8", errors="replace")
    return Document(BeautifulSoup(markup, "lxml"))


def parse_fragment(markup: str) -> list[PageElement]:
    """Parse a markup fragment into its root nodes.

    Whitespace-only text between root elements is dropped.
    """
    soup = BeautifulSoup(markup, "html.parser")
    return [
        node
        for node in list(soup.contents)
        if not (isinstance(node, NavigableString) and not node.strip())
    ]


def root_elements(nodes: list[PageElement]) -> list[Tag]:
    return [node for node in nodes if isinstance(node, Tag)]


def serialize(doc: Document) -> str:
    return str(doc.soup)


def class_list(tag: Tag) -> list[str]:
    value = tag.get("class")
    if value is None:
        return []
    if isinstance(value, str):
        return value.split()
    return list(value)


def find_by_selector(doc: Document, selector: str) -> Tag | None:
    """Return the first node matching `selector` in document order."""
    if not selector or not selector.strip():
        return None
    try:
        return doc.soup.select_one(selector)
    except sv.SelectorSyntaxError:
        logger.debug("Unresolvable selector %r", selector)
        return None


def find_by_text(doc: Document, text: str, tag_filter: str | None = None) -> str | None:
    """Selector of the first node whose own text contains `text`.

    `tag_filter` is an optional comma-separated list of tag names. Matching is
    case-sensitive and only considers text that is a direct child of the node.
    """
    if not text:
        return None
    names: list[str] | bool = True
    if tag_filter:
        names = [name.strip().lower() for name in tag_filter.split(",") if name.strip()]
        if not names:
            names = True

    for tag in doc.soup.find_all(names):
        if tag.name in _NON_TEXT_PARENTS:
            continue
        if text in own_text(tag):
            return selector_of(doc, tag)
    return None


def own_text(tag: Tag) -> str:
    # Comments, doctype, CDATA and script/style bodies are NavigableString
    # subclasses and never count as visible text.
    return "".join(str(child) for child in tag.children if type(child) is NavigableString)


def selector_of(doc: Document, node: Tag) -> str:
    """Synthesize a selector resolving to `node` in this snapshot of `doc`."""
    parts: list[str] = []
    current: Tag | None = node
    while current is not None and current is not doc.soup:
        identifier = current.get("id")
        if isinstance(identifier, str) and identifier and _id_is_unique(doc, identifier):
            parts.append("#" + sv.escape(identifier))
            break
        if current.name in _ANCHOR_TAGS:
            parts.append(current.name)
            break
        parts.append(_compound_selector(current))
        current = current.parent
    return " > ".join(reversed(parts))


def list_sections(doc: Document, config: DocumentConfig | None = None) -> list[Section]:
    """Notable structural nodes in document order."""
    config = config or DocumentConfig()
    sections: list[Section] = []
    for tag in doc.soup.select(SECTION_SELECTOR):
        identifier = tag.get("id")
        sections.append(
            Section(
                selector=selector_of(doc, tag),
                kind=tag.name,
                identifier=identifier if isinstance(identifier, str) else None,
                classes=class_list(tag),
                content=_truncate(str(tag), config.content_preview_chars, suffix="..."),
                text_preview=_truncate(
                    " ".join(tag.get_text(" ").split()), config.text_preview_chars
                ),
                children=len(tag.find_all(True, recursive=False)),
            )
        )
    return sections


def _id_is_unique(doc: Document, identifier: str) -> bool:
    return len(doc.soup.find_all(id=identifier, limit=2)) == 1


def _compound_selector(tag: Tag) -> str:
    if not _PLAIN_TAG_NAME.fullmatch(tag.name):
        return _positional_selector(tag)

    classes = class_list(tag)
    compound = tag.name
    if classes:
        compound += "." + sv.escape(classes[0])

    parent = tag.parent
    if parent is None:
        return compound

    same_type = parent.find_all(tag.name, recursive=False)
    if classes:
        competing = [sib for sib in same_type if classes[0] in class_list(sib)]
    else:
        competing = same_type
    if len(competing) > 1:
        # Tag equality is structural, so locate the node by identity.
        position = next(i for i, sib in enumerate(same_type) if sib is tag)
        compound += f":nth-of-type({position + 1})"
    return compound


def _positional_selector(tag: Tag) -> str:
    parent = tag.parent
    if parent is None:
        return "*"
    siblings = parent.find_all(True, recursive=False)
    position = next(i for i, sib in enumerate(siblings) if sib is tag)
    return f"*:nth-child({position + 1})"


def _truncate(text: str, limit: int, *, suffix: str = "") -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + suffix
