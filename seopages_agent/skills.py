"""Skill catalog: bundled SKILL.md profiles, registry, and resolver.

Each bundled skill lives in ``skill_catalog/<category>/<skill-id>/SKILL.md``
with YAML frontmatter declaring its name, tools, enablement and routing
triggers; the markdown body is the skill's instruction text. Skills are
loaded once at startup into an immutable registry.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from seopages_agent.config import SkillsConfig
from seopages_agent.exceptions import SkillNotFoundError
from seopages_agent.logging import get_logger

log = get_logger(__name__)


CATEGORY_SYSTEM = "system"
CATEGORY_RESEARCH = "research"
CATEGORY_BUILD = "build"
CATEGORY_OPTIMIZE = "optimize"
CATEGORY_MONITOR = "monitor"

SKILL_CATEGORIES = (
    CATEGORY_SYSTEM,
    CATEGORY_RESEARCH,
    CATEGORY_BUILD,
    CATEGORY_OPTIMIZE,
    CATEGORY_MONITOR,
)

_BUNDLED_DIR = Path(__file__).resolve().parent / "skill_catalog"
_FRONTMATTER_RE = re.compile(r"^---\n.*?\n---\n?", re.DOTALL)


@dataclass(frozen=True)
class Skill:
    """A read-only behavioral profile."""

    id: str
    name: str
    instructions: str
    tools: tuple[str, ...] = ()
    category: str = CATEGORY_SYSTEM
    description: str = ""
    version: str = "1.0.0"
    enabled: bool = True
    classifications: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "version": self.version,
            "enabled": self.enabled,
            "tools": list(self.tools),
            "classifications": list(self.classifications),
        }


# ---------------------------------------------------------------------------
# SKILL.md parsing
# ---------------------------------------------------------------------------


def _normalize_string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return []


def _parse_bool(value: Any, fallback: bool) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return fallback
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    return fallback


def _parse_frontmatter(content: str) -> dict[str, Any]:
    text = (content or "").replace("\r\n", "\n").replace("\r", "\n")
    if not text.startswith("---"):
        return {}
    end = text.find("\n---", 3)
    if end < 0:
        return {}
    try:
        parsed = yaml.safe_load(text[4:end])
    except yaml.YAMLError:
        return {}
    if not isinstance(parsed, dict):
        return {}
    return parsed


def _strip_frontmatter(content: str) -> str:
    text = (content or "").replace("\r\n", "\n").replace("\r", "\n")
    return _FRONTMATTER_RE.sub("", text, count=1).strip()


def parse_skill_markdown(content: str, skill_id: str, category: str) -> Skill:
    """Build a Skill from SKILL.md text."""
    frontmatter = _parse_frontmatter(content)
    triggers = frontmatter.get("triggers") or {}
    if not isinstance(triggers, dict):
        triggers = {}
    name = str(frontmatter.get("name", "")).strip() or skill_id
    description = re.sub(r"\s+", " ", str(frontmatter.get("description", "")).strip())
    return Skill(
        id=str(frontmatter.get("id", "")).strip() or skill_id,
        name=name,
        instructions=_strip_frontmatter(content),
        tools=tuple(_normalize_string_list(frontmatter.get("tools"))),
        category=str(frontmatter.get("category", "")).strip() or category,
        description=description,
        version=str(frontmatter.get("version", "1.0.0")),
        enabled=_parse_bool(frontmatter.get("enabled"), True),
        classifications=tuple(_normalize_string_list(triggers.get("classifications"))),
    )


def load_bundled_skills(skills_dir: Path | str | None = None) -> list[Skill]:
    """Load every ``<category>/<id>/SKILL.md`` under the catalog directory."""
    root = Path(skills_dir) if skills_dir is not None else _BUNDLED_DIR
    skills: list[Skill] = []
    for category in SKILL_CATEGORIES:
        category_dir = root / category
        if not category_dir.is_dir():
            continue
        for child in sorted(category_dir.iterdir(), key=lambda item: item.name):
            skill_md = child / "SKILL.md"
            if not skill_md.is_file():
                continue
            skills.append(parse_skill_markdown(skill_md.read_text(encoding="utf-8"), child.name, category))
    return skills


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class SkillRegistry:
    """Immutable id -> Skill mapping, built once at startup."""

    def __init__(self, skills: Iterable[Skill]):
        by_id: dict[str, Skill] = {}
        for skill in skills:
            if skill.id in by_id:
                log.warning("Duplicate skill id ignored", skill_id=skill.id)
                continue
            by_id[skill.id] = skill
        self._skills: Mapping[str, Skill] = MappingProxyType(by_id)

    @classmethod
    def from_config(cls, config: SkillsConfig | None = None, skills_dir: Path | str | None = None) -> SkillRegistry:
        """Load bundled skills, forcing off any id listed in ``config.disabled``."""
        config = config or SkillsConfig()
        disabled = set(config.disabled)
        skills = []
        for skill in load_bundled_skills(skills_dir):
            if skill.id in disabled and skill.enabled:
                skill = replace(skill, enabled=False)
            skills.append(skill)
        registry = cls(skills)
        log.info(
            "Skill registry loaded",
            total=len(registry),
            enabled=len(registry.enabled_ids()),
        )
        return registry

    def __len__(self) -> int:
        return len(self._skills)

    def __contains__(self, skill_id: object) -> bool:
        return skill_id in self._skills

    @property
    def skills(self) -> Mapping[str, Skill]:
        return self._skills

    def get(self, skill_id: str) -> Skill | None:
        return self._skills.get(skill_id)

    def require(self, skill_id: str) -> Skill:
        skill = self._skills.get(skill_id)
        if skill is None:
            raise SkillNotFoundError(skill_id)
        return skill

    def enabled_ids(self) -> list[str]:
        return [skill_id for skill_id, skill in self._skills.items() if skill.enabled]

    def by_category(self, category: str) -> list[Skill]:
        return [skill for skill in self._skills.values() if skill.category == category]

    def skill_for_tool(self, tool_name: str, preferred_id: str | None = None) -> Skill | None:
        """Return the skill owning a tool, preferring ``preferred_id`` when it declares it."""
        if preferred_id:
            preferred = self._skills.get(preferred_id)
            if preferred is not None and tool_name in preferred.tools:
                return preferred
        for skill in self._skills.values():
            if skill.enabled and tool_name in skill.tools:
                return skill
        return None

    def all_enabled_tools(self) -> list[str]:
        names: list[str] = []
        seen: set[str] = set()
        for skill in self._skills.values():
            if not skill.enabled:
                continue
            for tool in skill.tools:
                if tool not in seen:
                    seen.add(tool)
                    names.append(tool)
        return names


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SkillResolution:
    """Outcome of skill resolution. ``skill`` is None when nothing applies."""

    skill: Skill | None = None
    auto_detected: bool = False
    classification: str | None = None
    reason: str = ""


class SkillResolver:
    """Choose the active skill for a request.

    Order: an enabled explicit id wins; otherwise exactly one referenced
    record with a routable classification auto-selects its enabled skill;
    otherwise no skill. Disabled skills behave exactly like missing ones.
    """

    def __init__(self, registry: SkillRegistry, routes: Mapping[str, str] | None = None):
        self.registry = registry
        self.routes: Mapping[str, str] = MappingProxyType(dict(routes or SkillsConfig().classification_routes))

    @classmethod
    def from_registry(cls, registry: SkillRegistry, config: SkillsConfig | None = None) -> SkillResolver:
        """Build routes from skill trigger metadata, with configured routes taking precedence."""
        config = config or SkillsConfig()
        routes: dict[str, str] = {}
        for skill in registry.skills.values():
            for classification in skill.classifications:
                routes.setdefault(classification, skill.id)
        routes.update(config.classification_routes)
        return cls(registry, routes)

    def _enabled(self, skill_id: str) -> Skill | None:
        skill = self.registry.get(skill_id)
        if skill is None or not skill.enabled:
            return None
        return skill

    def resolve(
        self,
        explicit_id: str | None = None,
        classifications: Sequence[str | None] = (),
    ) -> SkillResolution:
        """Resolve a skill.

        Args:
            explicit_id: Skill id chosen by the caller, if any
            classifications: One entry per referenced record, None when the
                record carries no classification

        Returns:
            SkillResolution; ambiguity and unknown values resolve to no skill
        """
        if explicit_id:
            skill = self._enabled(explicit_id)
            if skill is not None:
                return SkillResolution(skill=skill, reason="explicit")
            log.info("Explicit skill unavailable", skill_id=explicit_id)

        if len(classifications) != 1:
            reason = "no referenced records" if not classifications else "multiple referenced records"
            if len(classifications) > 1:
                log.info("Auto-routing skipped", reason=reason, records=len(classifications))
            return SkillResolution(reason=reason)

        classification = classifications[0]
        if not classification:
            return SkillResolution(reason="record has no classification")

        target_id = self.routes.get(classification)
        if not target_id:
            log.info("Auto-routing skipped", reason="unmapped classification", classification=classification)
            return SkillResolution(classification=classification, reason="unmapped classification")

        skill = self._enabled(target_id)
        if skill is None:
            log.info("Auto-routing skipped", reason="skill unavailable", classification=classification, skill_id=target_id)
            return SkillResolution(classification=classification, reason="mapped skill unavailable")

        log.info("Auto-routing selected skill", classification=classification, skill_id=skill.id)
        return SkillResolution(skill=skill, auto_detected=True, classification=classification, reason="auto-detected")
