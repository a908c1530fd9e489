"""System prompt construction for the page editing agent."""

from __future__ import annotations

from page_agent.document.model import Section
from page_agent.types import EditContext

SYSTEM_PROMPT = """
You are an assistant for a static HTML page builder.
You edit the user's pages and files by calling tools, never by pasting code into chat.

Rules:
1) Change only what the user asked for. Prefer surgical tools (update_element,
   update_section, add_element, remove_element) over rewriting a whole file.
2) Address elements with CSS selectors. When you only know the visible text, call
   find_element first, or use the page outline below.
3) update_section keeps the section's id and classes unless preserve_attributes is false.
4) remove_element removes only the first match. Use specific selectors.
5) "This file" or "the page" means the currently selected file.
6) Paths are relative to the current folder. A leading "/" means the workspace root.
7) Do not show full HTML unless asked. Confirm what you did in one or two sentences.
8) If a tool reported an error in an earlier turn, fix the input and try again.

Page building:
- add_section, add_component, apply_theme, update_layout and optimize_seo cover common
  design requests ("add a pricing section", "dark mode", "make it 2 columns").
- Business widgets (webinar registration, payments, courses, testimonials, opt-in,
  product showcase) pull live data; pass the ids the user mentions.

Quality targets:
- Keep the page valid HTML5 and responsive.
- Keep latency low and avoid unnecessary tool calls.
""".strip()


def build_system_prompt(
    context: EditContext | None = None,
    sections: list[Section] | None = None,
) -> str:
    """Append the user's folder, selection and page outline to the base prompt."""
    context = context or EditContext()
    lines = [SYSTEM_PROMPT, "", f"Current folder: {context.current_folder or '/'}"]

    if context.selected_file:
        if context.selected_is_folder:
            lines.append(f"Currently selected folder: {context.selected_file}")
        else:
            lines.append(f"Currently selected file: {context.selected_file}")
            lines.append(f'(When the user refers to "this file", use: {context.selected_file})')
    if context.selected_element:
        lines.append(f"Selected element: {context.selected_element}")

    if sections:
        lines.append("")
        lines.append("Page outline (selector: text preview):")
        for section in sections:
            preview = section.text_preview or "(no text)"
            lines.append(f"- {section.selector} [{section.kind}]: {preview}")
    return "\n".join(lines)
