"""Templated sections, components and business widgets.

Templates are rendered with Jinja2 and inserted into documents by the page and
business tools. Business widgets pull their records from a
`BusinessDataSource`; `SampleBusinessData` stands in for the real catalog,
LMS and CRM backends.
"""

from __future__ import annotations

import zlib
from typing import Any, Protocol

from jinja2 import DictLoader, Environment, TemplateNotFound, select_autoescape

from page_agent.errors import NotFound

SECTION_TYPES = (
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
)
COMPONENT_NAMES = ("button-primary", "card-product", "form-contact")
BUSINESS_KINDS = (
    "webinar_registration",
    "payment_form",
    "lms_courses",
    "testimonials",
    "opt_in",
    "product_showcase",
)


class ComponentTemplateProvider(Protocol):
    def render(self, name: str, params: dict[str, Any], *, tenant_id: str) -> str:
        """Render template `name` to markup, raising `NotFound` if unknown."""


class BusinessDataSource(Protocol):
    """Backend records referenced by business widgets."""

    def webinar(self, webinar_id: str, *, tenant_id: str) -> dict[str, Any]:
        ...

    def product(self, product_id: str, *, tenant_id: str) -> dict[str, Any]:
        ...

    def products(self, product_ids: list[str], *, tenant_id: str) -> list[dict[str, Any]]:
        ...

    def courses(self, course_ids: list[str], *, tenant_id: str) -> list[dict[str, Any]]:
        ...

    def testimonials(
        self, *, tenant_id: str, limit: int, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        ...


class SampleBusinessData:
    """Deterministic placeholder records."""

    _TESTIMONIALS = [
        {"name": "John Doe", "text": "Excellent service!", "rating": 5, "role": "CEO"},
        {"name": "Jane Smith", "text": "Highly recommended!", "rating": 5, "role": "Manager"},
        {"name": "Bob Johnson", "text": "Great experience!", "rating": 4, "role": "Developer"},
        {"name": "Ana Lima", "text": "Setup took minutes.", "rating": 5, "role": "Founder"},
    ]

    def webinar(self, webinar_id: str, *, tenant_id: str) -> dict[str, Any]:
        return {
            "id": webinar_id,
            "title": "AI in Business Webinar",
            "date": "2025-02-01",
            "time": "2:00 PM EST",
        }

    def product(self, product_id: str, *, tenant_id: str) -> dict[str, Any]:
        return {"id": product_id, "name": "Premium Package", "price": 299.99}

    def products(self, product_ids: list[str], *, tenant_id: str) -> list[dict[str, Any]]:
        return [
            {
                "id": product_id,
                "name": f"Product {product_id}",
                "description": "Amazing product description",
                "price": 99.99,
                "image": "/api/placeholder/400/300",
            }
            for product_id in product_ids
        ]

    def courses(self, course_ids: list[str], *, tenant_id: str) -> list[dict[str, Any]]:
        return [
            {
                "id": course_id,
                "title": f"Course {course_id}",
                "description": "Learn amazing skills",
                "price": 199,
                "enrolled": zlib.crc32(course_id.encode("utf-8")) % 1000,
                "thumbnail": "/api/placeholder/400/200",
            }
            for course_id in course_ids
        ]

    def testimonials(
        self, *, tenant_id: str, limit: int, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        items = list(self._TESTIMONIALS)
        rating_min = (filters or {}).get("rating_min")
        if rating_min is not None:
            items = [item for item in items if item["rating"] >= rating_min]
        return items[:limit]


TEMPLATES: dict[str, str] = {
    "section/hero.html": """
<section class="hero-section py-20 px-4 text-center bg-gradient-to-r from-blue-500 to-purple-600 text-white">
  <div class="max-w-4xl mx-auto">
    <h1 class="text-5xl font-bold mb-4">{{ title | default("Welcome to Our Platform") }}</h1>
    <p class="text-xl mb-8">{{ subtitle | default("Build amazing pages with AI assistance") }}</p>
    {% if buttonText %}
    <a href="{{ buttonLink | default('#') }}" class="inline-block px-8 py-3 bg-white text-blue-600 rounded-lg font-semibold hover:bg-gray-100 transition">{{ buttonText }}</a>
    {% endif %}
  </div>
</section>
""",
    "section/features.html": """
<section class="features-section py-16 px-4">
  <div class="max-w-6xl mx-auto">
    <h2 class="text-3xl font-bold text-center mb-12">{{ title | default("Features") }}</h2>
    <div class="grid md:grid-cols-3 gap-8">
      {% for item in items | default([
        {"title": "Fast", "description": "Lightning quick performance"},
        {"title": "Secure", "description": "Enterprise-grade security"},
        {"title": "Scalable", "description": "Grows with your business"},
      ]) %}
      <div class="feature-card p-6 border rounded-lg hover:shadow-lg transition">
        <h3 class="text-xl font-semibold mb-2">{{ item.title }}</h3>
        <p class="text-gray-600">{{ item.description }}</p>
      </div>
      {% endfor %}
    </div>
  </div>
</section>
""",
    "section/testimonials.html": """
<section class="testimonials-section py-16 px-4 bg-gray-50">
  <div class="max-w-4xl mx-auto">
    <h2 class="text-3xl font-bold text-center mb-12">{{ title | default("What Our Customers Say") }}</h2>
    <div class="space-y-8">
      {% for item in items | default([
        {"text": "This product changed our workflow.", "name": "Sarah Johnson", "role": "CEO"},
        {"text": "Support is outstanding.", "name": "Mike Chen", "role": "Developer"},
      ]) %}
      <div class="testimonial bg-white p-6 rounded-lg shadow">
        <p class="text-lg mb-4">"{{ item.text }}"</p>
        <div class="font-semibold">{{ item.name }}</div>
        <div class="text-gray-600">{{ item.role }}</div>
      </div>
      {% endfor %}
    </div>
  </div>
</section>
""",
    "section/pricing.html": """
<section class="pricing-section py-16 px-4">
  <div class="max-w-6xl mx-auto">
    <h2 class="text-3xl font-bold text-center mb-12">{{ title | default("Pricing") }}</h2>
    <div class="grid md:grid-cols-3 gap-8">
      {% for plan in plans | default([
        {"name": "Starter", "price": "9", "features": ["1 site", "Email support"]},
        {"name": "Pro", "price": "29", "features": ["10 sites", "Priority support"]},
        {"name": "Business", "price": "99", "features": ["Unlimited sites", "Dedicated manager"]},
      ]) %}
      <div class="card pricing-card p-6 border rounded-lg text-center">
        <h3 class="text-xl font-semibold mb-2">{{ plan.name }}</h3>
        <p class="text-4xl font-bold mb-4">${{ plan.price }}</p>
        <ul class="space-y-2 mb-6">
          {% for feature in plan.features %}<li>{{ feature }}</li>{% endfor %}
        </ul>
        <a href="#" class="btn inline-block px-6 py-2 bg-blue-600 text-white rounded-lg">Choose {{ plan.name }}</a>
      </div>
      {% endfor %}
    </div>
  </div>
</section>
""",
    "section/cta.html": """
<section class="cta-section py-16 px-4 bg-blue-600 text-white text-center">
  <div class="max-w-2xl mx-auto">
    <h2 class="text-3xl font-bold mb-4">{{ title | default("Ready to Get Started?") }}</h2>
    <p class="text-xl mb-8">{{ subtitle | default("Join thousands of satisfied customers") }}</p>
    <a href="{{ buttonLink | default('#') }}" class="inline-block px-8 py-3 bg-white text-blue-600 rounded-lg font-semibold hover:bg-gray-100 transition">{{ buttonText | default("Get Started") }}</a>
  </div>
</section>
""",
    "section/footer.html": """
<footer class="site-footer py-8 px-4 bg-gray-900 text-gray-300">
  <div class="max-w-6xl mx-auto flex flex-col md:flex-row justify-between gap-4">
    <p>{{ copyright | default("All rights reserved.") }}</p>
    <nav class="flex gap-4">
      {% for link in links | default([{"label": "Privacy", "href": "#"}, {"label": "Terms", "href": "#"}]) %}
      <a href="{{ link.href }}" class="hover:text-white">{{ link.label }}</a>
      {% endfor %}
    </nav>
  </div>
</footer>
""",
    "section/header.html": """
<header class="site-header py-4 px-4 bg-white shadow">
  <div class="max-w-6xl mx-auto flex justify-between items-center">
    <a href="/" class="text-xl font-bold">{{ brand | default("Brand") }}</a>
    <nav class="flex gap-6">
      {% for link in links | default([{"label": "Home", "href": "#"}, {"label": "About", "href": "#about"}, {"label": "Contact", "href": "#contact"}]) %}
      <a href="{{ link.href }}" class="hover:text-blue-600">{{ link.label }}</a>
      {% endfor %}
    </nav>
  </div>
</header>
""",
    "section/contact.html": """
<section class="contact-section py-16 px-4">
  <div class="max-w-2xl mx-auto">
    <h2 class="text-3xl font-bold text-center mb-8">{{ title | default("Contact Us") }}</h2>
    <form class="space-y-4">
      <input type="text" placeholder="Name" class="w-full px-4 py-2 border rounded-lg" />
      <input type="email" placeholder="Email" class="w-full px-4 py-2 border rounded-lg" />
      <textarea placeholder="Message" rows="4" class="w-full px-4 py-2 border rounded-lg"></textarea>
      <button type="submit" class="w-full px-4 py-2 bg-blue-600 text-white rounded-lg hover:bg-blue-700 transition">{{ buttonText | default("Send Message") }}</button>
    </form>
  </div>
</section>
""",
    "section/about.html": """
<section class="about-section py-16 px-4">
  <div class="max-w-4xl mx-auto text-center">
    <h2 class="text-3xl font-bold mb-6">{{ title | default("About Us") }}</h2>
    <p class="text-lg text-gray-600">{{ body | default("We help teams ship better pages, faster.") }}</p>
  </div>
</section>
""",
    "section/gallery.html": """
<section class="gallery-section py-16 px-4">
  <div class="max-w-6xl mx-auto">
    <h2 class="text-3xl font-bold text-center mb-12">{{ title | default("Gallery") }}</h2>
    <div class="grid md:grid-cols-3 gap-4">
      {% for image in images | default(["/api/placeholder/400/300", "/api/placeholder/400/300", "/api/placeholder/400/300"]) %}
      <img src="{{ image }}" alt="Gallery image {{ loop.index }}" class="w-full h-64 object-cover rounded-lg" />
      {% endfor %}
    </div>
  </div>
</section>
""",
    "component/button-primary.html": """
<button class="px-6 py-3 bg-blue-600 text-white rounded-lg hover:bg-blue-700 transition">{{ text | default("Click Me") }}</button>
""",
    "component/card-product.html": """
<div class="card p-6 border rounded-lg shadow hover:shadow-lg transition">
  <h3 class="text-xl font-semibold mb-2">{{ title | default("Product Name") }}</h3>
  <p class="text-gray-600 mb-4">{{ description | default("Product description goes here") }}</p>
  <button class="px-4 py-2 bg-blue-600 text-white rounded">{{ button_text | default("Learn More") }}</button>
</div>
""",
    "component/form-contact.html": """
<form class="space-y-4">
  <input type="text" placeholder="Name" class="w-full px-4 py-2 border rounded" />
  <input type="email" placeholder="Email" class="w-full px-4 py-2 border rounded" />
  <button type="submit" class="w-full px-4 py-2 bg-blue-600 text-white rounded">{{ button_text | default("Submit") }}</button>
</form>
""",
    "business/webinar_registration.html": """
<div class="webinar-registration {{ 'w-full' if style == 'fullwidth' else 'max-w-md mx-auto' }} p-6 bg-white rounded-lg shadow-lg">
  <h3 class="text-2xl font-bold mb-1">Register for {{ webinar.title }}</h3>
  <p class="text-gray-600 mb-4">{{ webinar.date }} at {{ webinar.time }}</p>
  <form data-webinar-id="{{ webinar.id }}" data-tenant-id="{{ tenant_id }}" class="webinar-form space-y-4">
    {% if "name" in fields %}<input type="text" name="name" placeholder="Full Name" required class="w-full px-4 py-2 border rounded-lg" />{% endif %}
    {% if "email" in fields %}<input type="email" name="email" placeholder="Email Address" required class="w-full px-4 py-2 border rounded-lg" />{% endif %}
    {% if "phone" in fields %}<input type="tel" name="phone" placeholder="Phone Number" class="w-full px-4 py-2 border rounded-lg" />{% endif %}
    {% if "company" in fields %}<input type="text" name="company" placeholder="Company Name" class="w-full px-4 py-2 border rounded-lg" />{% endif %}
    <button type="submit" class="w-full px-6 py-3 bg-blue-600 text-white rounded-lg hover:bg-blue-700 transition">Register Now</button>
  </form>
</div>
""",
    "business/payment_form.html": """
<div class="payment-form-container p-6 bg-white rounded-lg shadow-lg">
  <h3 class="text-2xl font-bold mb-4">Complete Your Purchase</h3>
  <p class="mb-4">{{ product.name }}: {{ "%.2f" | format(product.price) }} {{ currency }}</p>
  <div data-product-id="{{ product.id }}" data-currency="{{ currency }}" class="payment-form">
    <div class="mb-4">
      <label class="block text-sm font-medium mb-2">Payment Method</label>
      <div class="space-y-2">
        {% for method in payment_methods %}
        <label class="flex items-center"><input type="radio" name="payment_method" value="{{ method }}" class="mr-2" /><span>{{ method | capitalize }}</span></label>
        {% endfor %}
      </div>
    </div>
    <div class="space-y-4">
      <input type="text" placeholder="Card Number" class="w-full px-4 py-2 border rounded-lg" />
      <div class="grid grid-cols-2 gap-4">
        <input type="text" placeholder="MM/YY" class="px-4 py-2 border rounded-lg" />
        <input type="text" placeholder="CVV" class="px-4 py-2 border rounded-lg" />
      </div>
    </div>
    <button type="submit" class="w-full mt-6 px-6 py-3 bg-green-600 text-white rounded-lg hover:bg-green-700 transition">Pay Now</button>
  </div>
</div>
""",
    "business/lms_courses.html": """
<div class="lms-courses {{ 'grid md:grid-cols-3 gap-6' if layout == 'grid' else 'space-y-6' }}">
  {% for course in courses %}
  <div class="course-card bg-white rounded-lg shadow-lg overflow-hidden">
    <img src="{{ course.thumbnail }}" alt="{{ course.title }}" class="w-full h-48 object-cover" />
    <div class="p-6">
      <h3 class="text-xl font-bold mb-2">{{ course.title }}</h3>
      <p class="text-gray-600 mb-4">{{ course.description }}</p>
      {% if show_enrollment %}<p class="text-sm text-gray-500 mb-2">{{ course.enrolled }} students enrolled</p>{% endif %}
      {% if show_price %}<p class="text-2xl font-bold text-blue-600 mb-4">${{ course.price }}</p>{% endif %}
      <a href="/course/{{ course.id }}" class="block w-full text-center px-4 py-2 bg-blue-600 text-white rounded hover:bg-blue-700 transition">Enroll Now</a>
    </div>
  </div>
  {% endfor %}
</div>
""",
    "business/testimonials.html": """
<div class="testimonials {{ 'grid md:grid-cols-3 gap-6' if layout == 'cards' else 'space-y-6' }}">
  {% for item in testimonials %}
  <div class="testimonial-card bg-white p-6 rounded-lg shadow-lg">
    <div class="flex mb-4">{{ "⭐" * (item.rating or 5) }}</div>
    <p class="text-lg mb-4">"{{ item.text }}"</p>
    <p class="font-semibold">{{ item.name }}</p>
    <p class="text-sm text-gray-600">{{ item.role or "Customer" }}</p>
  </div>
  {% endfor %}
</div>
""",
    "business/opt_in.html": """
<div class="opt-in-form {{ 'fixed bottom-0 left-0 right-0 bg-blue-600 text-white p-4' if style == 'sticky-bar' else 'p-6 bg-gradient-to-r from-blue-500 to-purple-600 text-white rounded-lg' }}">
  <div class="max-w-4xl mx-auto">
    <h3 class="text-2xl font-bold mb-2">{{ offer.title or "Join Our Newsletter" }}</h3>
    <p class="mb-4">{{ offer.description or "Get exclusive updates and offers" }}</p>
    <form data-list-id="{{ list_id }}" class="flex gap-4">
      <input type="email" name="email" placeholder="Enter your email" required class="flex-1 px-4 py-2 rounded-lg text-gray-900" />
      <button type="submit" class="px-6 py-2 bg-white text-blue-600 rounded-lg font-semibold hover:bg-gray-100 transition">{{ offer.button_text or "Subscribe" }}</button>
    </form>
  </div>
</div>
""",
    "business/product_showcase.html": """
<div class="product-showcase {{ 'grid md:grid-cols-3 gap-6' if layout == 'grid' else 'space-y-6' }}">
  {% for product in products %}
  <div class="product-card bg-white rounded-lg shadow-lg overflow-hidden">
    <img src="{{ product.image }}" alt="{{ product.name }}" class="w-full h-48 object-cover" />
    <div class="p-6">
      <h3 class="text-xl font-bold mb-2">{{ product.name }}</h3>
      <p class="text-gray-600 mb-4">{{ product.description }}</p>
      <div class="flex justify-between items-center">
        <span class="text-2xl font-bold text-green-600">${{ "%.2f" | format(product.price) }}</span>
        {% if show_add_to_cart %}<button data-product-id="{{ product.id }}" class="add-to-cart px-4 py-2 bg-blue-600 text-white rounded hover:bg-blue-700 transition">Add to Cart</button>{% endif %}
      </div>
    </div>
  </div>
  {% endfor %}
</div>
""",
}


class JinjaComponentTemplates:
    """Default `ComponentTemplateProvider` backed by in-memory Jinja2 templates."""

    def __init__(
        self,
        data_source: BusinessDataSource | None = None,
        templates: dict[str, str] | None = None,
    ) -> None:
        self.data_source = data_source or SampleBusinessData()
        self._env = Environment(
            loader=DictLoader(templates if templates is not None else TEMPLATES),
            autoescape=select_autoescape(["html", "xml"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def names(self) -> list[str]:
        return sorted(name.removesuffix(".html") for name in self._env.list_templates())

    def render(self, name: str, params: dict[str, Any], *, tenant_id: str) -> str:
        try:
            template = self._env.get_template(f"{name}.html")
        except TemplateNotFound as exc:
            raise NotFound(f"Unknown template: {name}") from exc

        context = dict(params)
        context["tenant_id"] = tenant_id
        if name.startswith("business/"):
            context.update(self._business_context(name.split("/", 1)[1], params, tenant_id))
        return template.render(**context).strip()

    def _business_context(
        self, kind: str, params: dict[str, Any], tenant_id: str
    ) -> dict[str, Any]:
        source = self.data_source
        if kind == "webinar_registration":
            return {"webinar": source.webinar(str(params["webinar_id"]), tenant_id=tenant_id)}
        if kind == "payment_form":
            return {"product": source.product(str(params["product_id"]), tenant_id=tenant_id)}
        if kind == "lms_courses":
            return {"courses": source.courses(list(params["course_ids"]), tenant_id=tenant_id)}
        if kind == "product_showcase":
            return {
                "products": source.products(list(params["product_ids"]), tenant_id=tenant_id)
            }
        if kind == "testimonials":
            return {
                "testimonials": source.testimonials(
                    tenant_id=tenant_id,
                    limit=int(params.get("limit", 3)),
                    filters=params.get("filter"),
                )
            }
        if kind == "opt_in":
            return {"offer": params.get("offer") or {}}
        return {}
