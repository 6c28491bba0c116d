"""Redaction of oversized fields in historical tool results.

Results are classified by tool category before redaction:

- artifact results (flagged ``needsUpload`` or produced by an artifact tool)
  lose every large content field unconditionally; identity metadata such as
  ``publicUrl``, ``fileId``, ``filename``, ``mimeType`` and ``size`` stays;
- generic results lose only fields above a size threshold, marked truncated;
- anything that is not a mapping passes through unchanged.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any

from seopages_agent.config import ContextConfig
from seopages_agent.exceptions import RedactionSkipped
from seopages_agent.llm import TOOL_CATEGORY_ARTIFACT
from seopages_agent.logging import get_logger
from seopages_agent.session import ToolInvocation, Turn
from seopages_agent.tool_catalog import tool_category

log = get_logger(__name__)


PERSISTED_FLAG = "needsUpload"

# field -> removal marker, for artifact results
_ARTIFACT_FIELDS: dict[str, str] = {
    "content": "contentRemoved",
    "markdown_content": "markdownContentRemoved",
    "html_content": "htmlContentRemoved",
    "base64Content": "base64ContentRemoved",
    "base64": "base64Removed",
    "data": "dataRemoved",
}

_IMAGE_KEEP_FIELDS = (
    "status",
    "placeholderId",
    "filename",
    "publicUrl",
    "fileId",
    "mimeType",
    "size",
    "metadata",
    "error",
)
_IMAGE_METADATA_KEEP_FIELDS = ("title", "aspect_ratio", "quality", "background", "provider")


def _size_of(value: Any) -> int:
    if isinstance(value, str):
        return len(value.encode("utf-8"))
    try:
        return len(json.dumps(value, default=str).encode("utf-8"))
    except (TypeError, ValueError):
        return 0


# ---------------------------------------------------------------------------
# Result variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ArtifactResult:
    """Result whose large content was persisted elsewhere."""

    tool_name: str
    payload: dict[str, Any]


@dataclass(frozen=True)
class GenericResult:
    """Result with no persisted-elsewhere guarantee."""

    tool_name: str
    payload: dict[str, Any]


@dataclass(frozen=True)
class OpaqueResult:
    """Unexpected result shape; never modified."""

    tool_name: str
    payload: Any


ClassifiedResult = ArtifactResult | GenericResult | OpaqueResult


def classify_result(
    tool_name: str,
    result: Any,
    category_of: Callable[[str], str | None] = tool_category,
) -> ClassifiedResult:
    """Tag a raw tool result with the redaction policy that applies to it."""
    if not isinstance(result, dict):
        return OpaqueResult(tool_name, result)
    if result.get(PERSISTED_FLAG) is True or category_of(tool_name) == TOOL_CATEGORY_ARTIFACT:
        return ArtifactResult(tool_name, result)
    return GenericResult(tool_name, result)


@dataclass
class RedactionReport:
    """Aggregate redaction counters. Informational only."""

    bytes_removed: int = 0
    fields_removed: int = 0
    fields_skipped: int = 0
    opaque_results: int = 0
    skipped: list[str] = field(default_factory=list)


class PayloadRedactor:
    """Strip or truncate large fields from historical tool results."""

    def __init__(
        self,
        config: ContextConfig | None = None,
        category_of: Callable[[str], str | None] = tool_category,
    ):
        self.config = config or ContextConfig()
        self._category_of = category_of

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    def _strip(self, payload: dict[str, Any], key: str, marker: str, report: RedactionReport) -> None:
        if key not in payload:
            return
        value = payload.pop(key)
        payload[marker] = True
        report.bytes_removed += _size_of(value)
        report.fields_removed += 1

    def _clean_image_metadata(self, metadata: Any) -> dict[str, Any]:
        if not isinstance(metadata, dict):
            raise RedactionSkipped("images[].metadata", f"expected mapping, got {type(metadata).__name__}")
        return {key: metadata[key] for key in _IMAGE_METADATA_KEEP_FIELDS if key in metadata}

    def _redact_artifact(self, result: ArtifactResult, report: RedactionReport) -> dict[str, Any]:
        payload = dict(result.payload)
        for key, marker in _ARTIFACT_FIELDS.items():
            self._strip(payload, key, marker, report)

        images = payload.get("images")
        if isinstance(images, list):
            cleaned: list[Any] = []
            for image in images:
                if not isinstance(image, dict):
                    report.fields_skipped += 1
                    report.skipped.append(f"{result.tool_name}.images[]")
                    cleaned.append(image)
                    continue
                kept: dict[str, Any] = {}
                for key in _IMAGE_KEEP_FIELDS:
                    if key not in image:
                        continue
                    if key == "metadata":
                        try:
                            kept[key] = self._clean_image_metadata(image[key])
                        except RedactionSkipped as e:
                            report.fields_skipped += 1
                            report.skipped.append(f"{result.tool_name}.{e.field_name}")
                            kept[key] = image[key]
                        continue
                    kept[key] = image[key]
                kept["contentRemoved"] = True
                removed = {k: v for k, v in image.items() if k not in kept}
                if removed:
                    report.bytes_removed += _size_of(removed)
                    report.fields_removed += len(removed)
                cleaned.append(kept)
            payload["images"] = cleaned
        return payload

    def _truncate_if_large(
        self,
        payload: dict[str, Any],
        key: str,
        marker: str,
        limit: int,
        report: RedactionReport,
    ) -> None:
        if key not in payload:
            return
        value = payload[key]
        if not isinstance(value, str):
            raise RedactionSkipped(key, f"expected string, got {type(value).__name__}")
        if len(value) <= limit:
            return
        del payload[key]
        payload[marker] = True
        report.bytes_removed += _size_of(value)
        report.fields_removed += 1

    def _redact_generic(self, result: GenericResult, report: RedactionReport) -> dict[str, Any]:
        payload = dict(result.payload)
        content_limit = self.config.content_truncate_chars
        markup_limit = self.config.markup_truncate_chars

        checks = (
            ("content", "truncated", content_limit),
            ("markdown_content", "markdownContentTruncated", markup_limit),
            ("html_content", "htmlContentTruncated", markup_limit),
        )
        for key, marker, limit in checks:
            try:
                self._truncate_if_large(payload, key, marker, limit, report)
            except RedactionSkipped as e:
                report.fields_skipped += 1
                report.skipped.append(f"{result.tool_name}.{e.field_name}")
                log.debug("Redaction skipped", tool=result.tool_name, field=e.field_name, reason=e.reason)

        images = payload.get("images")
        if isinstance(images, list):
            cleaned: list[Any] = []
            for image in images:
                if not isinstance(image, dict):
                    cleaned.append(image)
                    continue
                element = dict(image)
                try:
                    self._truncate_if_large(element, "content", "truncated", content_limit, report)
                except RedactionSkipped as e:
                    report.fields_skipped += 1
                    report.skipped.append(f"{result.tool_name}.images[].{e.field_name}")
                cleaned.append(element)
            payload["images"] = cleaned
        return payload

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def redact_result(self, tool_name: str, result: Any, report: RedactionReport | None = None) -> Any:
        """Return a redacted copy of one tool result. The input is not mutated."""
        report = report if report is not None else RedactionReport()
        classified = classify_result(tool_name, result, self._category_of)
        if isinstance(classified, ArtifactResult):
            return self._redact_artifact(classified, report)
        if isinstance(classified, GenericResult):
            return self._redact_generic(classified, report)
        if classified.payload is not None:
            report.opaque_results += 1
            log.debug("Tool result passed through unredacted", tool=tool_name, kind=type(classified.payload).__name__)
        return classified.payload

    def redact_turn(self, turn: Turn, report: RedactionReport | None = None) -> Turn:
        if not turn.tool_invocations:
            return turn
        report = report if report is not None else RedactionReport()
        invocations: list[ToolInvocation] = []
        for invocation in turn.tool_invocations:
            if invocation.is_pending:
                invocations.append(invocation)
                continue
            redacted = self.redact_result(invocation.tool_name, invocation.result, report)
            invocations.append(replace(invocation, result=redacted))
        return replace(turn, tool_invocations=tuple(invocations))

    def redact_turns(self, turns: list[Turn]) -> tuple[list[Turn], RedactionReport]:
        """Redact every given turn."""
        report = RedactionReport()
        redacted = [self.redact_turn(turn, report) for turn in turns]
        return redacted, report

    def redact_history(self, turns: list[Turn]) -> tuple[list[Turn], RedactionReport]:
        """Redact a full history, leaving the newest turn untouched."""
        if not turns:
            return [], RedactionReport()
        redacted, report = self.redact_turns(turns[:-1])
        redacted.append(turns[-1])
        if report.bytes_removed or report.fields_skipped:
            log.info(
                "Redacted historical tool results",
                bytes_removed=report.bytes_removed,
                fields_removed=report.fields_removed,
                fields_skipped=report.fields_skipped,
            )
        return redacted, report
