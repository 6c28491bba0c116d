"""Declared tool capabilities offered to the model.

Tools execute outside this package; only their name, description, JSON
schema and redaction category are declared here.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Mapping

from seopages_agent.llm import TOOL_CATEGORY_ARTIFACT, TOOL_CATEGORY_GENERIC, ToolSpec


# Tools whose results are always treated as externally persisted artifacts,
# even when the result itself does not carry the needsUpload flag.
IMAGE_GENERATION_TOOLS = frozenset({"generate_images", "deerapi_generate_images"})

# Tools that never count as the first substantive call for planning tracking.
PLANNING_EXEMPT_TOOLS = frozenset({
    "create_plan",
    "create_conversation_tracker",
    "add_task_to_tracker",
    "update_task_status",
    "read_conversation_tracker",
})

# Tools that write content item records and need the project id injected
# under the seo_project_id argument.
CONTENT_SAVING_TOOLS = frozenset({"save_content_items_batch", "save_content_item"})


def _str(description: str) -> dict[str, Any]:
    return {"type": "string", "description": description}


def _tool(
    name: str,
    description: str,
    properties: dict[str, Any] | None = None,
    required: list[str] | None = None,
    category: str = TOOL_CATEGORY_GENERIC,
) -> ToolSpec:
    schema: dict[str, Any] = {"type": "object", "properties": properties or {}}
    if required:
        schema["required"] = required
    return ToolSpec(name=name, description=description, parameters=schema, category=category)


_URL = {"url": _str("Page URL")}
_DOMAIN = {"domain": _str("Domain without protocol, e.g. example.com")}
_USER = {"user_id": _str("Authenticated user id (filled in automatically)")}
_PROJECT = {"project_id": _str("Project id (filled in automatically)")}
_ITEM = {"item_id": _str("Content item id")}
_HTML = {"html": _str("Full HTML document")}
_MARKDOWN = {"markdown": _str("Markdown source")}


_SPECS: list[ToolSpec] = [
    # -- planning / tracking --------------------------------------------------
    _tool(
        "create_plan",
        "Create an execution plan with ordered steps before doing any work.",
        {"title": _str("Plan title"), "steps": {"type": "array", "items": {"type": "string"}}},
        ["steps"],
    ),
    _tool(
        "update_task_status",
        "Mark a plan step as in_progress, completed or failed.",
        {"step": {"type": "integer"}, "status": _str("in_progress | completed | failed")},
        ["step", "status"],
    ),
    _tool(
        "create_conversation_tracker",
        "Create a persistent task tracker document for this conversation.",
        {**_USER, "title": _str("Tracker title")},
        category=TOOL_CATEGORY_ARTIFACT,
    ),
    _tool(
        "add_task_to_tracker",
        "Append a task to the conversation tracker.",
        {**_USER, "task": _str("Task description")},
        ["task"],
    ),
    _tool("read_conversation_tracker", "Read the conversation tracker.", {**_USER}),
    # -- site context ------------------------------------------------------------
    _tool(
        "acquire_site_context",
        "Scrape the site and extract brand, header, footer, logo and theme context.",
        {**_DOMAIN, **_USER, **_PROJECT, "field": _str("Context field to acquire, or 'all'")},
        ["domain"],
    ),
    _tool(
        "acquire_context_field",
        "Acquire a single site context field (logo, header, footer, colors, typography).",
        {**_DOMAIN, **_USER, **_PROJECT, "field": _str("Field name")},
        ["field"],
    ),
    _tool("get_site_contexts", "Load every stored site context field for the project.", {**_USER, **_PROJECT}),
    _tool(
        "save_site_context",
        "Save a site context entry (competitors, brand voice, audience, etc.).",
        {**_USER, **_PROJECT, "type": _str("Context type"), "content": _str("Context payload as JSON or text")},
        ["type", "content"],
    ),
    _tool("detect_site_topics", "Detect the main topic clusters of a site from its sitemap.", {**_DOMAIN}),
    _tool("fetch_sitemap_urls", "Fetch and parse sitemap URLs for a domain.", {**_DOMAIN}),
    # -- content items -----------------------------------------------------------
    _tool(
        "get_content_item_detail",
        "Load a planned content item with outline, keywords and SERP insights.",
        {**_ITEM, **_USER},
        ["item_id"],
    ),
    _tool("list_content_items", "List content items of the project.", {**_USER, **_PROJECT}),
    _tool(
        "save_content_item",
        "Create or update a single planned content item.",
        {
            **_USER,
            "seo_project_id": _str("Project id (filled in automatically)"),
            "title": _str("Page title"),
            "target_keyword": _str("Primary keyword"),
            "page_type": _str("blog | landing_page | comparison | guide | listicle | alternative"),
        },
        ["title"],
    ),
    _tool(
        "save_content_items_batch",
        "Save a batch of planned content items.",
        {
            **_USER,
            "seo_project_id": _str("Project id (filled in automatically)"),
            "items": {"type": "array", "items": {"type": "object"}},
        },
        ["items"],
    ),
    _tool(
        "save_final_page",
        "Persist the final generated page HTML for a content item.",
        {**_ITEM, **_USER, **_HTML},
        ["item_id", "html"],
        category=TOOL_CATEGORY_ARTIFACT,
    ),
    # -- research ----------------------------------------------------------------
    _tool("web_search", "Search the web.", {"query": _str("Search query")}, ["query"]),
    _tool("perplexity_search", "Ask a research question with cited web answers.", {"query": _str("Question")}, ["query"]),
    _tool("search_serp", "Fetch the current SERP for a keyword.", {"keyword": _str("Keyword")}, ["keyword"]),
    _tool("extract_content", "Extract readable page content.", {**_URL}, ["url"]),
    _tool("fetch_raw_source", "Fetch raw HTML source of a page.", {**_URL}, ["url"]),
    _tool("fetch_competitor_logo", "Resolve a competitor's logo URL.", {**_DOMAIN}, ["domain"]),
    _tool(
        "capture_website_screenshot",
        "Capture a screenshot of a web page and upload it.",
        {**_URL},
        ["url"],
        category=TOOL_CATEGORY_ARTIFACT,
    ),
    _tool("resolve_page_logos", "Resolve logos for every product on a page.", {"domains": {"type": "array", "items": {"type": "string"}}}),
    # -- SEO data ------------------------------------------------------------------
    _tool("get_domain_overview", "Domain authority, traffic and keyword totals.", {**_DOMAIN}, ["domain"]),
    _tool("get_domain_organic_keywords", "Top organic keywords of a domain.", {**_DOMAIN}, ["domain"]),
    _tool("get_domain_organic_pages", "Top organic pages of a domain.", {**_DOMAIN}, ["domain"]),
    _tool("get_backlink_overview", "Backlink profile summary of a domain.", {**_DOMAIN}, ["domain"]),
    _tool(
        "domain_gap_analysis",
        "Keyword gap between a domain and its competitors.",
        {**_DOMAIN, "competitors": {"type": "array", "items": {"type": "string"}}},
        ["domain"],
    ),
    _tool("keyword_overview", "Search volume and difficulty for a keyword.", {"keyword": _str("Keyword")}, ["keyword"]),
    # -- audits ----------------------------------------------------------------------
    _tool("seo_audit", "On-page SEO audit of a URL.", {**_URL}, ["url"]),
    _tool("geo_audit", "Generative engine optimization audit of a URL.", {**_URL}, ["url"]),
    _tool("tech_audit", "Technical SEO audit (robots, canonical, redirects).", {**_URL}, ["url"]),
    _tool("check_http_status", "HTTP status and redirect chain of a URL.", {**_URL}, ["url"]),
    _tool("pagespeed_audit", "Core Web Vitals via PageSpeed.", {**_URL}, ["url"]),
    _tool("gsc_inspect_url", "Search Console URL inspection.", {**_URL, **_USER}, ["url"]),
    _tool("gsc_performance_report", "Search Console clicks and impressions.", {**_DOMAIN, **_USER}, ["domain"]),
    _tool(
        "suggest_internal_links",
        "Suggest internal links for a page from the site's URL inventory.",
        {**_URL, "candidates": {"type": "array", "items": {"type": "string"}}},
        ["url"],
    ),
    # -- off-site context --------------------------------------------------------------
    _tool("acquire_offsite_context", "Collect reviews, mentions and community signals.", {**_DOMAIN, **_USER, **_PROJECT}),
    _tool("get_offsite_context", "Load stored off-site context.", {**_USER, **_PROJECT}),
    _tool(
        "update_offsite_context",
        "Update stored off-site context.",
        {**_USER, **_PROJECT, "content": _str("Updated context")},
        ["content"],
    ),
    # -- page assembly -------------------------------------------------------------------
    _tool("generate_faq_section", "Generate an FAQ section.", {"topic": _str("Topic")}),
    _tool("generate_cta_section", "Generate a call-to-action section.", {"product": _str("Product name")}),
    _tool("generate_listicle_hero_section", "Generate the hero section of a listicle.", {"title": _str("Page title")}),
    _tool("generate_listicle_product_card", "Generate one product card.", {"product": {"type": "object"}}),
    _tool("generate_listicle_comparison_table", "Generate a comparison table.", {"products": {"type": "array", "items": {"type": "object"}}}),
    _tool(
        "assemble_listicle_page",
        "Assemble listicle sections into a full page.",
        {**_ITEM, "sections": {"type": "array", "items": {"type": "string"}}},
        category=TOOL_CATEGORY_ARTIFACT,
    ),
    _tool(
        "assemble_html_page",
        "Assemble the final HTML page and upload it.",
        {**_ITEM, **_HTML},
        ["html"],
        category=TOOL_CATEGORY_ARTIFACT,
    ),
    _tool("merge_html_with_site_contexts", "Merge page HTML with site header, footer and theme.", {**_ITEM, **_HTML}, ["html"]),
    _tool("fix_style_conflicts", "Resolve CSS conflicts between page and site styles.", {**_HTML}, ["html"]),
    # -- images and reports ------------------------------------------------------------------
    _tool(
        "generate_images",
        "Generate images from prompts.",
        {"prompts": {"type": "array", "items": {"type": "string"}}, "aspect_ratio": _str("e.g. 16:9")},
        ["prompts"],
        category=TOOL_CATEGORY_ARTIFACT,
    ),
    _tool(
        "deerapi_generate_images",
        "Generate images through the secondary image provider.",
        {"prompts": {"type": "array", "items": {"type": "string"}}},
        ["prompts"],
        category=TOOL_CATEGORY_ARTIFACT,
    ),
    _tool(
        "markdown_to_html_report",
        "Render a markdown report to HTML and upload it.",
        {**_MARKDOWN, "title": _str("Report title")},
        ["markdown"],
        category=TOOL_CATEGORY_ARTIFACT,
    ),
    _tool(
        "markdown_to_docx",
        "Render a markdown report to a DOCX file and upload it.",
        {**_MARKDOWN, "title": _str("Report title")},
        ["markdown"],
        category=TOOL_CATEGORY_ARTIFACT,
    ),
]


TOOL_SPECS: Mapping[str, ToolSpec] = MappingProxyType({spec.name: spec for spec in _SPECS})


def tool_category(name: str) -> str | None:
    """Return the declared category for a tool, or None when undeclared."""
    if name in IMAGE_GENERATION_TOOLS:
        return TOOL_CATEGORY_ARTIFACT
    spec = TOOL_SPECS.get(name)
    return spec.category if spec else None


def resolve_tool_specs(names: list[str] | tuple[str, ...]) -> list[ToolSpec]:
    """Map tool names to declared specs, preserving order and dropping unknowns."""
    seen: set[str] = set()
    resolved: list[ToolSpec] = []
    for name in names:
        if name in seen:
            continue
        seen.add(name)
        spec = TOOL_SPECS.get(name)
        if spec is not None:
            resolved.append(spec)
    return resolved


def declared_parameters(name: str) -> set[str]:
    spec = TOOL_SPECS.get(name)
    if spec is None:
        return set()
    return set((spec.parameters.get("properties") or {}).keys())
