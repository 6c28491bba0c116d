"""Bounded context window construction and synthetic context turns."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from seopages_agent.config import ContextConfig
from seopages_agent.exceptions import ContextOverflowError
from seopages_agent.instructions import InstructionLoader, get_instruction_loader
from seopages_agent.logging import get_logger
from seopages_agent.session import ROLE_SYSTEM, AttachedFile, KnowledgeItem, Turn

log = get_logger(__name__)


TEXT_MIME_TYPES = (
    "text/plain",
    "text/csv",
    "text/markdown",
    "application/json",
    "application/xml",
    "text/html",
    "text/css",
    "text/javascript",
)


@dataclass(frozen=True)
class FileReference:
    """A file or knowledge item referenced by an inbound request."""

    id: str
    name: str = ""
    file_type: str = ""
    url: str = ""


def _noun(count: int, singular: str) -> str:
    return singular if count == 1 else f"{singular}s"


def _section(title: str, body: str, name: str) -> str:
    return f"=== {title} ===\n{body}\n=== End of {name} ==="


# ---------------------------------------------------------------------------
# Synthetic turn formatting
# ---------------------------------------------------------------------------


def format_attached_file(reference: FileReference, file: AttachedFile | None) -> str:
    """Format one attached file, or an error placeholder when it could not be read."""
    if file is None:
        name = reference.name or reference.id
        return _section(f"File: {name}", "[Error: Could not read file]", name)
    return _section(f"File: {file.filename} ({file.file_type})", file.content, file.filename)


def format_knowledge_item(
    reference: FileReference,
    item: KnowledgeItem | None,
    max_chars: int = 50000,
) -> str:
    """Format one knowledge item by content type."""
    if item is None:
        name = reference.name or reference.id
        return _section(f"Knowledge File: {name}", "[Error: Could not process file]", name)

    name = item.file_name
    file_type = item.file_type or ""
    url = item.url or "Not available"

    if any(mime in file_type for mime in TEXT_MIME_TYPES):
        if item.content is None:
            return _section(f"Knowledge File: {name}", "[Error: Could not download file]", name)
        content = item.content
        if len(content) > max_chars:
            content = (
                content[:max_chars]
                + f"\n\n... [Content truncated, original size: {len(item.content)} chars]"
            )
        return _section(f"Knowledge File: {name} ({file_type})", content, name)

    if file_type == "application/pdf":
        body = (
            "[This is a PDF file. You can reference it by name but cannot read its contents directly.]\n"
            f"File URL: {url}"
        )
        return _section(f"Knowledge File: {name} (PDF)", body, name)

    if file_type.startswith("image/"):
        body = f"[This is an image file. You can reference it by name.]\nFile URL: {url}"
        return _section(f"Knowledge File: {name} (Image)", body, name)

    body = f"[File type not directly readable. Reference available by name.]\nFile URL: {url}"
    return _section(f"Knowledge File: {name} ({file_type})", body, name)


def _truncated_json(value: Any, limit: int, empty: str) -> str:
    if not value:
        return empty
    text = json.dumps(value, indent=2, ensure_ascii=False, default=str)
    if len(text) > limit:
        return text[:limit] + "\n... (truncated)"
    return text


def format_content_record(record: dict[str, Any], config: ContextConfig | None = None) -> str:
    """Format a planned content item record for the system instructions."""
    config = config or ContextConfig()
    title = record.get("title") or record.get("id") or "Untitled"
    reference_urls = record.get("reference_urls") or []
    if isinstance(reference_urls, list) and reference_urls:
        references = "\n".join(str(url) for url in reference_urls[: config.record_reference_urls])
    else:
        references = "No reference URLs"

    lines = [
        f"=== Planned Content Item: {title} ===",
        f"ID: {record.get('id', 'N/A')}",
        f"Target Keyword: {record.get('target_keyword') or 'N/A'}",
        f"Page Type: {record.get('page_type') or 'N/A'}",
        f"Status: {record.get('status') or 'N/A'}",
        f"Slug: {record.get('slug') or 'N/A'}",
        f"SEO Title: {record.get('seo_title') or title}",
        f"SEO Description: {record.get('seo_description') or 'N/A'}",
        "",
        "Outline:",
        _truncated_json(record.get("outline"), config.record_outline_chars, "No outline available"),
        "",
        "SERP Insights:",
        _truncated_json(record.get("serp_insights"), config.record_serp_chars, "No SERP insights available"),
        "",
        "Keyword Data:",
        _truncated_json(record.get("keyword_data"), config.record_keyword_chars, "No keyword data available"),
        "",
        "Reference URLs:",
        references,
        f"=== End of {title} ===",
    ]
    return "\n".join(lines)


@dataclass(frozen=True)
class SyntheticContext:
    """Synthetic system turns, kept in their fixed outbound order."""

    attached_files: Turn | None = None
    knowledge: Turn | None = None

    def turns(self) -> list[Turn]:
        return [turn for turn in (self.attached_files, self.knowledge) if turn is not None]


@dataclass
class ContextWindow:
    """Outbound turn list for one request plus its bookkeeping."""

    turns: list[Turn] = field(default_factory=list)
    retained_turns: int = 0
    dropped_turns: int = 0
    synthetic_turns: int = 0
    serialized_chars: int = 0
    over_soft_ceiling: bool = False


class ContextWindowBuilder:
    """Bound history to the most recent turns and prepend synthetic context.

    Pure with respect to its inputs; all store reads happen in the caller.
    """

    def __init__(self, config: ContextConfig | None = None, loader: InstructionLoader | None = None):
        self.config = config or ContextConfig()
        self.instructions = loader or get_instruction_loader()

    def attached_files_turn(self, files: list[tuple[FileReference, AttachedFile | None]]) -> Turn | None:
        """Build the attached-file system turn, or None when nothing is attached."""
        if not files:
            return None
        sections = [format_attached_file(reference, file) for reference, file in files]
        content = self.instructions.render(
            "attached_files_context.md",
            count=len(files),
            noun=_noun(len(files), "file"),
            files="\n\n".join(sections),
        )
        return Turn(role=ROLE_SYSTEM, content=content)

    def knowledge_turn(self, items: list[tuple[FileReference, KnowledgeItem | None]]) -> Turn | None:
        """Build the referenced-knowledge system turn, or None when nothing is referenced."""
        if not items:
            return None
        sections = [
            format_knowledge_item(reference, item, self.config.knowledge_max_chars)
            for reference, item in items
        ]
        content = self.instructions.render(
            "knowledge_context.md",
            count=len(items),
            noun=_noun(len(items), "file"),
            files="\n\n".join(sections),
        )
        return Turn(role=ROLE_SYSTEM, content=content)

    @staticmethod
    def serialized_size(turns: list[Turn]) -> int:
        return len(json.dumps([turn.to_dict() for turn in turns], default=str))

    def build(
        self,
        history: list[Turn],
        synthetic: SyntheticContext | None = None,
        max_turns: int | None = None,
    ) -> ContextWindow:
        """Return the outbound turn list: synthetic turns, then the newest history."""
        limit = self.config.max_turns if max_turns is None else max_turns
        limit = max(0, int(limit))
        if len(history) > limit:
            retained = list(history[len(history) - limit:])
        else:
            retained = list(history)
        dropped = len(history) - len(retained)
        if dropped:
            log.info("Limited context history", total_turns=len(history), retained=len(retained), dropped=dropped)

        synthetic_turns = synthetic.turns() if synthetic else []
        turns = synthetic_turns + retained
        size = self.serialized_size(turns)
        over = size > self.config.soft_ceiling_chars
        if over:
            log.warning(
                "Context size above soft ceiling",
                serialized_chars=size,
                soft_ceiling_chars=self.config.soft_ceiling_chars,
                estimated_tokens=size // 4,
            )
            if self.config.strict_size_check:
                raise ContextOverflowError(size, self.config.soft_ceiling_chars)
        else:
            log.debug("Context size OK", serialized_chars=size, estimated_tokens=size // 4)

        return ContextWindow(
            turns=turns,
            retained_turns=len(retained),
            dropped_turns=dropped,
            synthetic_turns=len(synthetic_turns),
            serialized_chars=size,
            over_soft_ceiling=over,
        )
