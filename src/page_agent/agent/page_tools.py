"""Page-building and business widget tools backed by component templates."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from page_agent.agent.dispatcher import ToolContext, outcome_result
from page_agent.agent.registry import ToolRegistry, ToolSpec
from page_agent.document.model import Document
from page_agent.document.mutations import (
    MutationOutcome,
    add_element,
    apply_theme,
    optimize_seo,
    update_layout,
)
from page_agent.types import ToolResult

InsertPosition = Literal["before", "after", "prepend", "append"]

# section position -> (anchor selector, insert position)
_SECTION_ANCHORS: dict[str, tuple[str, InsertPosition]] = {
    "start": ("body", "prepend"),
    "end": ("body", "append"),
    "after-header": ("header", "after"),
    "before-footer": ("footer", "before"),
}


class AddSectionInput(BaseModel):
    path: str = Field(min_length=1)
    section_type: Literal[
        "hero",
        "features",
        "testimonials",
        "pricing",
        "cta",
        "footer",
        "header",
        "contact",
        "about",
        "gallery",
    ]
    position: Literal["start", "end", "after-header", "before-footer"] = "end"
    content: dict[str, Any] = Field(
        default_factory=dict,
        description="Template values such as title, subtitle, buttonText, buttonLink or items.",
    )


class AddComponentInput(BaseModel):
    path: str = Field(min_length=1)
    component: Literal["button-primary", "card-product", "form-contact"]
    target_selector: str = Field(min_length=1)
    position: InsertPosition = "append"
    props: dict[str, Any] = Field(default_factory=dict)


class ApplyThemeInput(BaseModel):
    path: str = Field(min_length=1)
    theme: Literal[
        "modern", "classic", "minimal", "bold", "neomorphic", "neo-brutalist", "gradient", "dark"
    ]
    target: str = Field(default="all", description='"all" or a selector of one section.')


class UpdateLayoutInput(BaseModel):
    path: str = Field(min_length=1)
    selector: str = Field(min_length=1)
    layout: Literal[
        "single-column",
        "two-columns",
        "three-columns",
        "grid-2x2",
        "grid-3x3",
        "flex-row",
        "flex-column",
    ]
    responsive: bool = True


class OptimizeSeoInput(BaseModel):
    path: str = Field(min_length=1)
    title: str | None = None
    description: str | None = None
    keywords: list[str] = Field(default_factory=list)
    og_image: str | None = None


class _BusinessInput(BaseModel):
    path: str = Field(min_length=1)
    target_selector: str = Field(min_length=1, description="Where to insert the widget.")
    position: InsertPosition = "append"


class WebinarRegistrationInput(_BusinessInput):
    webinar_id: str = Field(min_length=1)
    style: Literal["inline", "modal", "fullwidth", "compact"] = "inline"
    fields: list[str] = Field(default_factory=lambda: ["name", "email"])


class PaymentFormInput(_BusinessInput):
    product_id: str = Field(min_length=1)
    payment_methods: list[str] = Field(default_factory=lambda: ["card", "paypal"])
    currency: str = Field(default="USD", min_length=3, max_length=3)


class LmsCourseCardInput(_BusinessInput):
    course_ids: list[str] = Field(min_length=1)
    layout: Literal["grid", "list", "carousel"] = "grid"
    show_price: bool = True
    show_enrollment: bool = True


class ReviewFilter(BaseModel):
    product_id: str | None = None
    rating_min: float | None = None
    featured: bool | None = None


class TestimonialSectionInput(_BusinessInput):
    filter: ReviewFilter | None = None
    limit: int = Field(default=3, ge=1, le=12)
    layout: Literal["cards", "carousel", "masonry"] = "cards"


class OptInOffer(BaseModel):
    title: str | None = None
    description: str | None = None
    button_text: str | None = None


class OptInFormInput(_BusinessInput):
    list_id: str = Field(min_length=1)
    offer: OptInOffer | None = None
    style: Literal["inline", "popup", "sticky-bar", "sidebar"] = "inline"


class ProductShowcaseInput(_BusinessInput):
    product_ids: list[str] = Field(min_length=1)
    layout: Literal["grid", "slider", "featured", "comparison"] = "grid"
    show_add_to_cart: bool = True


def insert_template(
    ctx: ToolContext,
    path: str,
    template: str,
    params: dict[str, Any],
    selector: str,
    position: InsertPosition,
) -> MutationOutcome:
    """Render `template` and insert it relative to `selector`."""
    markup = ctx.templates.render(template, params, tenant_id=ctx.tenant_id)
    return ctx.mutate_document(path, lambda doc: add_element(doc, selector, markup, position))


def register_page_tools(registry: ToolRegistry) -> None:
    def _add_section(data: AddSectionInput, ctx: ToolContext) -> ToolResult:
        selector, position = _SECTION_ANCHORS[data.position]
        outcome = insert_template(
            ctx, data.path, f"section/{data.section_type}", data.content, selector, position
        )
        return outcome_result(
            outcome,
            ctx,
            data.path,
            selector,
            f"Added {data.section_type} section",
            section_type=data.section_type,
            position=data.position,
        )

    def _add_component(data: AddComponentInput, ctx: ToolContext) -> ToolResult:
        outcome = insert_template(
            ctx,
            data.path,
            f"component/{data.component}",
            data.props,
            data.target_selector,
            data.position,
        )
        return outcome_result(
            outcome,
            ctx,
            data.path,
            data.target_selector,
            f"Added {data.component}",
            component=data.component,
        )

    def _apply_theme(data: ApplyThemeInput, ctx: ToolContext) -> ToolResult:
        touched: list[int] = [0]

        def _operation(doc: Document) -> MutationOutcome:
            outcome, count = apply_theme(doc, data.theme, data.target)
            touched[0] = count
            return outcome

        outcome = ctx.mutate_document(data.path, _operation)
        return outcome_result(
            outcome,
            ctx,
            data.path,
            data.target,
            f"Applied {data.theme} theme",
            theme=data.theme,
            elements=touched[0],
        )

    def _update_layout(data: UpdateLayoutInput, ctx: ToolContext) -> ToolResult:
        outcome = ctx.mutate_document(
            data.path,
            lambda doc: update_layout(doc, data.selector, data.layout, data.responsive),
        )
        return outcome_result(
            outcome,
            ctx,
            data.path,
            data.selector,
            f"Updated layout to {data.layout}",
            layout=data.layout,
        )

    def _optimize_seo(data: OptimizeSeoInput, ctx: ToolContext) -> ToolResult:
        outcome = ctx.mutate_document(
            data.path,
            lambda doc: optimize_seo(
                doc,
                title=data.title,
                description=data.description,
                keywords=data.keywords,
                og_image=data.og_image,
            ),
        )
        return outcome_result(
            outcome,
            ctx,
            data.path,
            "head",
            "SEO optimized",
            updates=data.model_dump(exclude={"path"}, exclude_none=True),
        )

    registry.register(
        ToolSpec(
            name="add_section",
            description=(
                "Add a pre-designed section (hero, features, testimonials, pricing, cta, "
                "footer, header, contact, about, gallery) at the start, end, after the "
                "header or before the footer."
            ),
            args_schema=AddSectionInput,
            handler=_add_section,
            path_fields=["path"],
            tags=["page"],
        )
    )
    registry.register(
        ToolSpec(
            name="add_component",
            description="Add a pre-built button, product card or contact form.",
            args_schema=AddComponentInput,
            handler=_add_component,
            path_fields=["path"],
            tags=["page"],
        )
    )
    registry.register(
        ToolSpec(
            name="apply_theme",
            description='Apply a design theme, e.g. "make it modern", "dark mode", "brutal design".',
            args_schema=ApplyThemeInput,
            handler=_apply_theme,
            path_fields=["path"],
            tags=["page", "style"],
        )
    )
    registry.register(
        ToolSpec(
            name="update_layout",
            description='Change a container\'s layout, e.g. "make it 2 columns", "stack vertically".',
            args_schema=UpdateLayoutInput,
            handler=_update_layout,
            path_fields=["path"],
            tags=["page", "style"],
        )
    )
    registry.register(
        ToolSpec(
            name="optimize_seo",
            description="Set the page title, meta description, keywords and social image.",
            args_schema=OptimizeSeoInput,
            handler=_optimize_seo,
            path_fields=["path"],
            tags=["page", "seo"],
        )
    )


def register_business_tools(registry: ToolRegistry) -> None:
    def _widget_handler(kind: str, label: str) -> Any:
        def _handler(data: _BusinessInput, ctx: ToolContext) -> ToolResult:
            params = data.model_dump(exclude={"path", "target_selector", "position"})
            outcome = insert_template(
                ctx,
                data.path,
                f"business/{kind}",
                params,
                data.target_selector,
                data.position,
            )
            return outcome_result(
                outcome, ctx, data.path, data.target_selector, f"Added {label}", widget=kind
            )

        return _handler

    widgets: list[tuple[str, str, type[_BusinessInput], str, str]] = [
        (
            "add_webinar_registration",
            "Add a registration form for a webinar from the webinar system.",
            WebinarRegistrationInput,
            "webinar_registration",
            "webinar registration form",
        ),
        (
            "add_payment_form",
            "Add a payment form for a product from the catalog.",
            PaymentFormInput,
            "payment_form",
            "payment form",
        ),
        (
            "add_lms_course_card",
            "Add course cards populated from the LMS.",
            LmsCourseCardInput,
            "lms_courses",
            "course cards",
        ),
        (
            "add_testimonial_section",
            "Add customer testimonials from the database.",
            TestimonialSectionInput,
            "testimonials",
            "testimonials",
        ),
        (
            "add_opt_in_form",
            "Add an email opt-in form connected to a CRM list.",
            OptInFormInput,
            "opt_in",
            "opt-in form",
        ),
        (
            "add_product_showcase",
            "Add a product showcase populated from the catalog.",
            ProductShowcaseInput,
            "product_showcase",
            "product showcase",
        ),
    ]
    for name, description, schema, kind, label in widgets:
        registry.register(
            ToolSpec(
                name=name,
                description=description,
                args_schema=schema,
                handler=_widget_handler(kind, label),
                path_fields=["path"],
                tags=["business"],
            )
        )
