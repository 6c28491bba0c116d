"""System instruction composition and outbound tool selection."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

from seopages_agent.config import SkillsConfig
from seopages_agent.instructions import InstructionLoader, get_instruction_loader
from seopages_agent.llm import ToolSpec
from seopages_agent.logging import get_logger
from seopages_agent.skills import SkillRegistry, SkillResolution
from seopages_agent.tool_catalog import resolve_tool_specs

log = get_logger(__name__)


SECTION_GLOBAL = "global"
SECTION_CONTENT_ITEMS = "content_items"
SECTION_SKILL = "skill"
SECTION_ROUTING_BANNER = "routing_banner"
SECTION_REFERENCE_IMAGE = "reference_image"
SECTION_CONTINUITY = "continuity"


@dataclass(frozen=True)
class RequestContext:
    """Authenticated identity and clock rendered into the global block."""

    user_id: str = ""
    project_id: str = ""
    project_domain: str = ""
    current_time: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


@dataclass(frozen=True)
class ComposedPrompt:
    system_instructions: str
    tools: list[ToolSpec]
    resolution: SkillResolution
    sections: tuple[str, ...] = ()


class PromptComposer:
    """Concatenate instruction blocks in their fixed order.

    Order: global block, attached content items, skill instructions, the
    auto-routing banner, the reference image block, execution continuity.
    """

    def __init__(
        self,
        registry: SkillRegistry,
        config: SkillsConfig | None = None,
        loader: InstructionLoader | None = None,
    ):
        self.registry = registry
        self.config = config or SkillsConfig()
        self.instructions = loader or get_instruction_loader()

    def global_block(self, context: RequestContext) -> str:
        core = self.registry.get(self.config.core_skill_id)
        core_instructions = core.instructions if core is not None and core.enabled else ""
        return self.instructions.render(
            "system_prompt.md",
            user_id=context.user_id or "anonymous",
            project_id=context.project_id or "none",
            project_domain=context.project_domain or "unknown",
            current_time=context.current_time,
            core_instructions=core_instructions,
        ).strip()

    def content_items_block(self, records: list[str], resolution: SkillResolution) -> str:
        if resolution.auto_detected and resolution.skill is not None:
            acknowledgement = (
                f'Confirm that you are using the "{resolution.skill.name}" workflow '
                f"for this {resolution.classification} page."
            )
        else:
            acknowledgement = "Acknowledge the content items provided."
        return self.instructions.render(
            "content_items_context.md",
            count=len(records),
            acknowledgement=acknowledgement,
            items="\n\n".join(records),
        )

    def skill_block(self, resolution: SkillResolution) -> str:
        skill = resolution.skill
        if skill is None:
            return ""
        if resolution.auto_detected:
            intro = (
                f"Based on the attached content item's page type ({resolution.classification}), "
                "this specialized workflow was selected automatically. Follow it exactly."
            )
        else:
            intro = "This workflow was selected for the request. Follow it exactly."
        return self.instructions.render(
            "auto_selected_workflow.md",
            skill_name_upper=skill.name.upper(),
            intro=intro,
            skill_instructions=skill.instructions,
        )

    def routing_banner(self, resolution: SkillResolution) -> str:
        if not resolution.auto_detected or resolution.skill is None:
            return ""
        return self.instructions.render(
            "auto_routing_banner.md",
            classification=resolution.classification or "",
            skill_name=resolution.skill.name,
            skill_id=resolution.skill.id,
        )

    def select_tools(self, resolution: SkillResolution) -> list[ToolSpec]:
        """Core skill tools plus the resolved skill's, or the default set."""
        names: list[str] = []
        core = self.registry.get(self.config.core_skill_id)
        if core is not None and core.enabled:
            names.extend(core.tools)
        if resolution.skill is not None:
            names.extend(resolution.skill.tools)
        elif self.config.default_tools:
            names.extend(self.config.default_tools)
        else:
            names.extend(self.registry.all_enabled_tools())
        return resolve_tool_specs(names)

    def compose(
        self,
        resolution: SkillResolution,
        context: RequestContext | None = None,
        content_records: list[str] | None = None,
        reference_image_url: str | None = None,
        page_type: str | None = None,
    ) -> ComposedPrompt:
        """Build the system instructions and tool set for one request."""
        context = context or RequestContext()
        parts: list[tuple[str, str]] = [(SECTION_GLOBAL, self.global_block(context))]
        if content_records:
            parts.append((SECTION_CONTENT_ITEMS, self.content_items_block(content_records, resolution)))

        skill = resolution.skill
        if skill is not None and skill.id != self.config.core_skill_id:
            parts.append((SECTION_SKILL, self.skill_block(resolution)))
        banner = self.routing_banner(resolution)
        if banner:
            parts.append((SECTION_ROUTING_BANNER, banner))
        if reference_image_url:
            parts.append((
                SECTION_REFERENCE_IMAGE,
                self.instructions.render("reference_image.md", image_url=reference_image_url),
            ))
        parts.append((
            SECTION_CONTINUITY,
            self.instructions.render(
                "execution_continuity.md",
                page_type=page_type or resolution.classification or "blog",
            ),
        ))

        system_instructions = "\n\n".join(text for _, text in parts if text)
        tools = self.select_tools(resolution)
        log.debug(
            "Composed system instructions",
            chars=len(system_instructions),
            sections=[name for name, _ in parts],
            skill_id=skill.id if skill else None,
            tools=len(tools),
        )
        return ComposedPrompt(
            system_instructions=system_instructions,
            tools=tools,
            resolution=resolution,
            sections=tuple(name for name, _ in parts),
        )
