from bs4 import BeautifulSoup

from page_agent.document.model import Document, find_by_selector, parse, serialize
from page_agent.document.mutations import (
    LAYOUTS,
    THEMES,
    ElementUpdates,
    MutationOutcome,
    add_element,
    apply_theme,
    inspect_element,
    optimize_seo,
    remove_element,
    update_element,
    update_layout,
    update_section,
)

PAGE = """<html><head><title>Old</title></head><body>
<header id="top"><h1>Brand</h1></header>
<section id="s1" class="a b"><p>old</p></section>
<ul id="list"><li>one</li></ul>
<p class="note">first</p><p class="note">second</p>
<footer><p>bye</p></footer>
</body></html>"""


def test_update_section_replaces_inner_content() -> None:
    doc = parse('<div id="hero"><h1>Old</h1></div>')

    outcome = update_section(doc, "#hero", "<h1>New</h1><p>Sub</p>", preserve_attributes=True)

    assert outcome is MutationOutcome.APPLIED
    assert '<div id="hero"><h1>New</h1><p>Sub</p></div>' in serialize(doc)


def test_update_section_merges_wrapper_classes_and_keeps_id() -> None:
    doc = parse(PAGE)

    outcome = update_section(doc, "#s1", '<section id="other" class="c a"><p>new</p></section>')

    section = find_by_selector(doc, "#s1")
    assert outcome is MutationOutcome.APPLIED
    assert section is not None
    assert section["class"] == ["a", "b", "c"]
    assert section["id"] == "s1"
    assert section.decode_contents() == "<p>new</p>"
    assert find_by_selector(doc, "#other") is None


def test_update_section_without_preserve_replaces_node() -> None:
    doc = parse(PAGE)

    outcome = update_section(
        doc, "#s1", '<section class="c"><p>fresh</p></section>', preserve_attributes=False
    )

    assert outcome is MutationOutcome.APPLIED
    assert find_by_selector(doc, "#s1") is None
    replacement = find_by_selector(doc, "section.c")
    assert replacement is not None
    assert replacement.get_text() == "fresh"
    assert replacement.find_previous_sibling("header") is not None


def test_update_section_without_elements_is_parse_failure() -> None:
    doc = parse(PAGE)
    before = serialize(doc)

    outcome = update_section(doc, "#s1", "just words", preserve_attributes=False)

    assert outcome is MutationOutcome.PARSE_FAILURE
    assert not outcome
    assert serialize(doc) == before


def test_update_section_missing_target() -> None:
    doc = parse(PAGE)

    assert update_section(doc, "#nope", "<p>x</p>") is MutationOutcome.NOT_FOUND


def test_update_element_applies_changes_in_order() -> None:
    doc = parse('<a id="cta" class="btn big" href="/old">Go</a>')

    outcome = update_element(
        doc,
        "#cta",
        ElementUpdates(
            text="ignored",
            inner_markup="<em>Buy</em>",
            attributes={"href": "/new", "class": "btn big wide"},
            add_classes=["primary", "btn"],
            remove_classes=["big"],
        ),
    )

    link = find_by_selector(doc, "#cta")
    assert outcome is MutationOutcome.APPLIED
    assert link.decode_contents() == "<em>Buy</em>"
    assert link["href"] == "/new"
    assert link["class"] == ["btn", "wide", "primary"]


def test_update_element_drops_empty_class_attribute() -> None:
    doc = parse('<p id="x" class="only">hi</p>')

    update_element(doc, "#x", ElementUpdates(remove_classes=["only"]))

    assert "class" not in find_by_selector(doc, "#x").attrs


def test_update_element_text_replaces_children() -> None:
    doc = parse('<h1 id="t">Old <span>part</span></h1>')

    update_element(doc, "#t", ElementUpdates(text="New title"))

    heading = find_by_selector(doc, "#t")
    assert heading.decode_contents() == "New title"


def test_add_element_positions() -> None:
    doc = parse(PAGE)

    assert add_element(doc, "#list", "<li>two</li><li>ignored</li>") is MutationOutcome.APPLIED
    assert add_element(doc, "#list", "<li>zero</li>", "prepend") is MutationOutcome.APPLIED
    assert add_element(doc, "#list", '<p id="before">b</p>', "before") is MutationOutcome.APPLIED
    assert add_element(doc, "#list", '<p id="after">a</p>', "after") is MutationOutcome.APPLIED

    items = [li.get_text() for li in find_by_selector(doc, "#list").find_all("li")]
    assert items == ["zero", "one", "two"]
    listing = find_by_selector(doc, "#list")
    assert listing.find_previous_sibling("p")["id"] == "before"
    assert listing.find_next_sibling("p")["id"] == "after"


def test_add_element_failures() -> None:
    doc = parse(PAGE)
    before = serialize(doc)

    assert add_element(doc, "#missing", "<li>x</li>") is MutationOutcome.NOT_FOUND
    assert add_element(doc, "#list", "plain text") is MutationOutcome.PARSE_FAILURE
    assert serialize(doc) == before


def test_remove_element_only_removes_first_match() -> None:
    doc = parse(PAGE)

    assert remove_element(doc, "p.note") is MutationOutcome.APPLIED

    remaining = doc.soup.select("p.note")
    assert [p.get_text() for p in remaining] == ["second"]
    assert remove_element(doc, "#nope") is MutationOutcome.NOT_FOUND


def test_inspect_element() -> None:
    doc = parse(PAGE)

    info = inspect_element(doc, "#s1")
    missing = inspect_element(doc, ".nope")

    assert info.exists
    assert info.tag == "section"
    assert info.identifier == "s1"
    assert info.classes == ["a", "b"]
    assert info.inner_markup == "<p>old</p>"
    assert info.attributes == {"id": "s1", "class": "a b"}
    assert not missing.exists
    assert missing.tag is None


def test_apply_theme_restyles_buttons_cards_and_sections() -> None:
    doc = parse(
        '<section class="intro"><button class="old">Go</button>'
        '<div class="card tall">x</div></section>'
    )

    outcome, touched = apply_theme(doc, "dark")

    assert outcome is MutationOutcome.APPLIED
    assert touched == 3
    assert doc.soup.button["class"] == THEMES["dark"]["button"].split()
    assert doc.soup.find("div")["class"] == ["card", *THEMES["dark"]["card"].split()]
    assert doc.soup.section["class"][0] == "intro"
    assert "bg-gray-950" in doc.soup.section["class"]


def test_apply_theme_scoped_and_unknown_theme() -> None:
    doc = parse('<div id="a"><button>1</button></div><div id="b"><button>2</button></div>')

    outcome, touched = apply_theme(doc, "retro", "#b")

    assert outcome is MutationOutcome.APPLIED
    assert touched == 1
    assert doc.soup.select_one("#b button")["class"] == THEMES["modern"]["button"].split()
    assert "class" not in doc.soup.select_one("#a button").attrs
    assert apply_theme(doc, "dark", "#zzz") == (MutationOutcome.NOT_FOUND, 0)


def test_update_layout() -> None:
    doc = parse('<div id="grid" class="old">x</div>')

    assert update_layout(doc, "#grid", "three-columns") is MutationOutcome.APPLIED
    assert doc.soup.find(id="grid")["class"] == LAYOUTS["three-columns"].split()

    update_layout(doc, "#grid", "two-columns", responsive=False)
    assert doc.soup.find(id="grid")["class"] == ["grid", "grid-cols-2", "gap-8"]
    assert update_layout(doc, "#none", "flex-row") is MutationOutcome.NOT_FOUND


def test_optimize_seo_upserts_head_tags() -> None:
    doc = parse(PAGE)

    optimize_seo(doc, title="Fresh Bread", description="Daily loaves", keywords=["bread", "bakery"])
    optimize_seo(doc, description="Updated", og_image="https://cdn.example.com/og.png")

    head = doc.head
    assert head.title.get_text() == "Fresh Bread"
    assert len(head.find_all("title")) == 1
    descriptions = head.find_all("meta", attrs={"name": "description"})
    assert len(descriptions) == 1
    assert descriptions[0]["content"] == "Updated"
    assert head.find("meta", attrs={"name": "keywords"})["content"] == "bread, bakery"
    assert head.find("meta", attrs={"property": "og:image"})["content"].endswith("og.png")


def test_optimize_seo_without_head() -> None:
    doc = Document(BeautifulSoup("<p>no head here</p>", "html.parser"))

    assert optimize_seo(doc, title="x") is MutationOutcome.NOT_FOUND
