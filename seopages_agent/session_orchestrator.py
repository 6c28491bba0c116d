"""Session orchestrator for the SEO pages agent.

Turns one inbound request into one bounded completion request, streams it,
and finalizes the bound task:

    1. START      - reject if the session already has a running task
    2. CONTEXT    - redact history, bound it, prepend synthetic context
    3. SKILL      - resolve the skill and compose system instructions
    4. GENERATE   - stream the completion; tools run through ToolRuntime
    5. FINALIZE   - persist turns, re-fetch the target artifact, close the task
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from seopages_agent.config import Config, get_config
from seopages_agent.context_window import (
    ContextWindow,
    ContextWindowBuilder,
    FileReference,
    SyntheticContext,
    format_content_record,
)
from seopages_agent.exceptions import ContextOverflowError, PersistenceError, TaskConflictError
from seopages_agent.instructions import InstructionLoader, get_instruction_loader
from seopages_agent.llm import (
    CompletionRequest,
    LLMProvider,
    StreamEvent,
    StreamFailed,
    StreamFinished,
    TextDelta,
    ToolCallFinished,
    ToolCallStarted,
)
from seopages_agent.logging import get_logger, task_context
from seopages_agent.prompt import ComposedPrompt, PromptComposer, RequestContext
from seopages_agent.redaction import PayloadRedactor, RedactionReport
from seopages_agent.session import (
    INVOCATION_CALL,
    INVOCATION_RESULT,
    ROLE_ASSISTANT,
    ROLE_USER,
    AttachedFile,
    KnowledgeItem,
    PersistentStore,
    Session,
    ToolInvocation,
    Turn,
)
from seopages_agent.skills import SkillRegistry, SkillResolution, SkillResolver
from seopages_agent.tasks import (
    ARTIFACT_GENERATION,
    COMPLETED,
    CONTEXT_ACQUISITION,
    CONTEXT_TASK_ID,
    CONVERSATION,
    ArtifactAvailable,
    ArtifactLookup,
    ArtifactUnavailable,
    Task,
    TaskKind,
    TaskManager,
    notification_key,
)
from seopages_agent.tool_catalog import (
    CONTENT_SAVING_TOOLS,
    PLANNING_EXEMPT_TOOLS,
    declared_parameters,
)

log = get_logger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[Any]]
EventCallback = Callable[[StreamEvent], None]


# ---------------------------------------------------------------------------
# Request / outcome
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContentItemReference:
    """A planned content item referenced by a request."""

    id: str
    title: str = ""
    page_type: str | None = None


@dataclass
class GenerationRequest:
    session_id: str
    message: str = ""
    user_id: str = ""
    project_id: str = ""
    skill_id: str | None = None
    content_items: list[ContentItemReference] = field(default_factory=list)
    attached_files: list[FileReference] = field(default_factory=list)
    knowledge_files: list[FileReference] = field(default_factory=list)
    reference_image_url: str | None = None
    task_id: str | None = None
    task_kind: TaskKind = CONVERSATION


@dataclass
class PlanningTracker:
    """Records whether the first substantive tool call was create_plan."""

    tool_calls: list[str] = field(default_factory=list)
    has_called_plan: bool = False
    auto_planned: bool = False

    def observe(self, tool_name: str) -> bool:
        is_first = not self.tool_calls
        self.tool_calls.append(tool_name)
        if is_first and tool_name not in PLANNING_EXEMPT_TOOLS:
            self.has_called_plan = True
            self.auto_planned = True
            log.warning("Planning skipped, auto-plan recorded", tool=tool_name)
        if tool_name == "create_plan":
            self.has_called_plan = True
        return is_first


@dataclass
class GenerationOutcome:
    task: Task
    session: Session
    text: str = ""
    assistant_turn: Turn | None = None
    resolution: SkillResolution | None = None
    window: ContextWindow | None = None
    redaction: RedactionReport | None = None
    usage: dict[str, int] = field(default_factory=dict)
    planning: PlanningTracker = field(default_factory=PlanningTracker)
    warnings: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.task.status == COMPLETED


@dataclass
class PreparedRequest:
    completion: CompletionRequest
    composed: ComposedPrompt
    window: ContextWindow
    redaction: RedactionReport


# ---------------------------------------------------------------------------
# Tool runtime
# ---------------------------------------------------------------------------


class ToolRuntime:
    """Executes tool calls for one generation.

    Authenticated ids overwrite whatever the model supplied, failures become
    error results instead of stream failures, and results are tagged with
    the skill that owns the tool.
    """

    def __init__(
        self,
        handlers: Mapping[str, ToolHandler],
        registry: SkillRegistry,
        user_id: str = "",
        project_id: str = "",
        active_skill_id: str | None = None,
        tracker: PlanningTracker | None = None,
    ):
        self.handlers = handlers
        self.registry = registry
        self.user_id = user_id
        self.project_id = project_id
        self.active_skill_id = active_skill_id
        self.tracker = tracker or PlanningTracker()

    def inject(self, tool_name: str, args: dict[str, Any]) -> dict[str, Any]:
        injected = dict(args)
        declared = declared_parameters(tool_name)
        if self.user_id:
            for key in ("user_id", "userId"):
                if key in declared:
                    injected[key] = self.user_id
        if self.project_id:
            for key in ("project_id", "projectId", "domainId"):
                if key in declared:
                    injected[key] = self.project_id
            if tool_name in CONTENT_SAVING_TOOLS:
                injected["seo_project_id"] = self.project_id
        return injected

    async def __call__(self, tool_name: str, args: dict[str, Any]) -> Any:
        is_first = self.tracker.observe(tool_name)
        tool_args = self.inject(tool_name, args)
        log.info("Executing tool", tool=tool_name, first=is_first)

        handler = self.handlers.get(tool_name)
        if handler is None:
            return {"success": False, "error": f"Tool '{tool_name}' is not available", "toolName": tool_name}
        try:
            result = await handler(tool_args)
        except Exception as e:
            log.error("Tool execution failed", tool=tool_name, error=str(e))
            return {"success": False, "error": str(e) or type(e).__name__, "toolName": tool_name}

        skill = self.registry.skill_for_tool(tool_name, self.active_skill_id)
        if skill is not None and isinstance(result, dict):
            result = {**result, "executedSkill": {"id": skill.id, "name": skill.name}}
        return result


# ---------------------------------------------------------------------------
# SessionOrchestrator
# ---------------------------------------------------------------------------


class SessionOrchestrator:
    """Composition root tying context, skills, generation and tasks together.

    Holds no per-session state besides what TaskManager tracks; many
    sessions may be served concurrently.
    """

    def __init__(
        self,
        store: PersistentStore,
        provider: LLMProvider,
        registry: SkillRegistry,
        config: Config | None = None,
        tool_handlers: Mapping[str, ToolHandler] | None = None,
        task_manager: TaskManager | None = None,
        loader: InstructionLoader | None = None,
    ):
        self.config = config or get_config()
        self.store = store
        self.provider = provider
        self.registry = registry
        self.tool_handlers: Mapping[str, ToolHandler] = dict(tool_handlers or {})
        self.tasks = task_manager or TaskManager(store)
        self._instructions = loader or get_instruction_loader()

        self.redactor = PayloadRedactor(self.config.context)
        self.window_builder = ContextWindowBuilder(self.config.context, self._instructions)
        self.resolver = SkillResolver.from_registry(registry, self.config.skills)
        self.composer = PromptComposer(registry, self.config.skills, self._instructions)

    @staticmethod
    def _emit(on_event: EventCallback | None, event: StreamEvent) -> None:
        if on_event is None:
            return
        try:
            on_event(event)
        except Exception as e:
            log.warning("Event callback failed", error=str(e))

    # ------------------------------------------------------------------
    # Context loading (best effort)
    # ------------------------------------------------------------------

    async def _load_files(self, refs: list[FileReference]) -> list[tuple[FileReference, AttachedFile | None]]:
        loaded: list[tuple[FileReference, AttachedFile | None]] = []
        for ref in refs:
            try:
                file = await self.store.load_attached_file(ref.id)
            except Exception as e:
                log.warning("Failed to read attached file", file_id=ref.id, error=str(e))
                file = None
            loaded.append((ref, file))
        return loaded

    async def _load_knowledge(self, refs: list[FileReference]) -> list[tuple[FileReference, KnowledgeItem | None]]:
        loaded: list[tuple[FileReference, KnowledgeItem | None]] = []
        for ref in refs:
            try:
                item = await self.store.load_knowledge_item(ref.id)
            except Exception as e:
                log.warning("Failed to read knowledge item", item_id=ref.id, error=str(e))
                item = None
            loaded.append((ref, item))
        return loaded

    async def _load_records(
        self,
        refs: list[ContentItemReference],
    ) -> tuple[list[dict[str, Any]], list[str | None]]:
        """Load referenced content records; one classification per reference."""
        records: list[dict[str, Any]] = []
        classifications: list[str | None] = []
        for ref in refs:
            record: dict[str, Any] | None = None
            try:
                record = await self.store.load_artifact(ref.id)
            except Exception as e:
                log.warning("Failed to load content item", item_id=ref.id, error=str(e))
            if record:
                records.append(record)
            classifications.append((record or {}).get("page_type") or ref.page_type)
        return records, classifications

    async def _project_domain(self, project_id: str) -> str:
        if not project_id:
            return ""
        try:
            project = await self.store.load_artifact(project_id)
        except Exception as e:
            log.warning("Failed to load project", project_id=project_id, error=str(e))
            return ""
        return str((project or {}).get("domain") or "")

    async def prepare(
        self,
        request: GenerationRequest,
        history: list[Turn],
        tool_executor: ToolRuntime | None = None,
    ) -> PreparedRequest:
        """Build the outbound completion request for a turn history.

        Raises:
            ContextOverflowError: only when strict size checking is enabled
        """
        redacted, report = self.redactor.redact_history(history)

        files = await self._load_files(request.attached_files)
        knowledge = await self._load_knowledge(request.knowledge_files)
        synthetic = SyntheticContext(
            attached_files=self.window_builder.attached_files_turn(files),
            knowledge=self.window_builder.knowledge_turn(knowledge),
        )
        window = self.window_builder.build(redacted, synthetic)

        records, classifications = await self._load_records(request.content_items)
        resolution = self.resolver.resolve(request.skill_id, classifications)
        context = RequestContext(
            user_id=request.user_id,
            project_id=request.project_id,
            project_domain=await self._project_domain(request.project_id),
        )
        composed = self.composer.compose(
            resolution,
            context=context,
            content_records=[format_content_record(record, self.config.context) for record in records],
            reference_image_url=request.reference_image_url,
            page_type=next((c for c in classifications if c), None),
        )
        completion = CompletionRequest(
            system_instructions=composed.system_instructions,
            turns=window.turns,
            available_tools=composed.tools,
            tool_executor=tool_executor,
            max_steps=self.config.model.max_steps,
            temperature=self.config.model.temperature,
            max_tokens=self.config.model.max_tokens,
        )
        return PreparedRequest(completion=completion, composed=composed, window=window, redaction=report)

    # ------------------------------------------------------------------
    # Turn persistence
    # ------------------------------------------------------------------

    async def _append(self, outcome: GenerationOutcome, turn: Turn) -> None:
        """Append to the in-memory session, then persist.

        Raises:
            PersistenceError: the store write failed; the in-memory turn stays
        """
        outcome.session.append_turn(turn)
        await self.store.save_turn(outcome.session.id, turn)

    async def _fail(self, outcome: GenerationOutcome, message: str) -> None:
        """Append the explanatory error turn, then flip the task to error."""
        task = outcome.task
        error_turn = Turn(role=ROLE_ASSISTANT, content=f"Error: {message}", task_id=task.id)
        try:
            await self._append(outcome, error_turn)
        except PersistenceError as e:
            outcome.warnings.append(f"The error message was not saved and may be missing after a reload: {e}")
            log.error("Failed to persist error turn", task_id=task.id, error=str(e))
        await self.tasks.fail(task, message, error_turn.id)

    async def _lookup_artifact(self, task: Task) -> ArtifactLookup:
        if not task.kind.has_target_artifact:
            return ArtifactUnavailable("task kind has no target artifact")
        try:
            artifact = await self.store.load_artifact(task.id)
        except Exception as e:
            log.warning("Artifact re-fetch failed", task_id=task.id, error=str(e))
            return ArtifactUnavailable(f"lookup failed: {e}")
        if artifact is None:
            return ArtifactUnavailable("artifact not found")
        return ArtifactAvailable(artifact)

    # ------------------------------------------------------------------
    # Completion notifications
    # ------------------------------------------------------------------

    async def notify_finished(self, outcome: GenerationOutcome, turn: Turn) -> bool:
        """Finalize a task from a finished generation.

        Returns:
            False when the notification was already processed
        """
        task = outcome.task
        if task.is_terminal():
            log.debug("Finish notification ignored for terminal task", task_id=task.id, status=task.status)
            return False
        if not self.tasks.claim_notification(task.session_id, notification_key(turn)):
            return False

        try:
            await self._append(outcome, turn)
        except PersistenceError as e:
            log.error("Failed to persist assistant turn", task_id=task.id, error=str(e))
            await self._fail(outcome, f"The response could not be saved: {e}")
            return True
        self.tasks.record_turn(task, turn.id)
        outcome.assistant_turn = turn

        lookup = await self._lookup_artifact(task)
        await self.tasks.complete(task, lookup)
        return True

    async def notify_error(self, outcome: GenerationOutcome, message: str, partial: Turn | None = None) -> bool:
        """Finalize a task from a failed generation.

        Partial output already streamed is saved as its own turn before the
        error turn. Returns False when the task was already terminal.
        """
        task = outcome.task
        if task.is_terminal():
            log.debug("Error notification ignored for terminal task", task_id=task.id, status=task.status)
            return False

        if partial is not None and (partial.content or any(not inv.is_pending for inv in partial.tool_invocations)):
            try:
                await self._append(outcome, partial)
                self.tasks.record_turn(task, partial.id)
            except PersistenceError as e:
                outcome.warnings.append(f"Partial response was not saved: {e}")
                log.error("Failed to persist partial response", task_id=task.id, error=str(e))

        log.error("Generation failed", task_id=task.id, session_id=task.session_id, error=message)
        await self._fail(outcome, message)
        return True

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    @staticmethod
    def _assistant_turn(
        turn_id: str,
        task: Task,
        text: str,
        invocations: dict[str, ToolInvocation],
    ) -> Turn:
        return Turn(
            id=turn_id,
            role=ROLE_ASSISTANT,
            content=text,
            tool_invocations=tuple(invocations.values()),
            task_id=task.id,
        )

    async def run(self, request: GenerationRequest, on_event: EventCallback | None = None) -> GenerationOutcome:
        """Run one generation bound to a task.

        Once the task has started it always ends terminal, whatever fails.

        Raises:
            TaskConflictError: the session already has a running task
            asyncio.CancelledError: re-raised after the task is closed as error
        """
        running = self.tasks.running_task(request.session_id)
        if running is not None:
            raise TaskConflictError(request.session_id, running.id)

        task_id = request.task_id or f"chat-{uuid.uuid4().hex[:12]}"
        task = self.tasks.create(request.session_id, task_id, request.task_kind)
        await self.tasks.start(task)
        outcome = GenerationOutcome(task=task, session=Session(id=request.session_id, name=request.session_id))

        with task_context(task.session_id, task.id):
            try:
                await self._run_started(request, outcome, on_event)
            except asyncio.CancelledError:
                if not task.is_terminal():
                    log.info("Generation cancelled before streaming")
                    await self._fail(outcome, "Generation was cancelled before it finished.")
                raise
            except Exception as e:
                if task.is_terminal():
                    raise
                log.error("Generation aborted", error=str(e))
                await self._fail(outcome, str(e) or type(e).__name__)
        return outcome

    async def _run_started(
        self,
        request: GenerationRequest,
        outcome: GenerationOutcome,
        on_event: EventCallback | None,
    ) -> None:
        task = outcome.task
        try:
            outcome.session.turns = await self.store.load_turns(request.session_id)
        except PersistenceError as e:
            await self._fail(outcome, f"Conversation history could not be loaded: {e}")
            return

        if request.message:
            user_turn = Turn(role=ROLE_USER, content=request.message, task_id=task.id)
            try:
                await self._append(outcome, user_turn)
            except PersistenceError as e:
                await self._fail(outcome, f"Your message could not be saved: {e}")
                return
            self.tasks.record_turn(task, user_turn.id)

        runtime = ToolRuntime(
            self.tool_handlers,
            self.registry,
            user_id=request.user_id,
            project_id=request.project_id,
            active_skill_id=request.skill_id,
            tracker=outcome.planning,
        )
        try:
            prepared = await self.prepare(request, outcome.session.turns, runtime)
        except ContextOverflowError as e:
            await self._fail(outcome, str(e))
            return
        outcome.resolution = prepared.composed.resolution
        outcome.window = prepared.window
        outcome.redaction = prepared.redaction

        await self._generate(outcome, prepared.completion, on_event)

    async def _generate(
        self,
        outcome: GenerationOutcome,
        completion: CompletionRequest,
        on_event: EventCallback | None,
    ) -> None:
        task = outcome.task
        timeout = self.config.generation.timeout_seconds
        text_parts: list[str] = []
        invocations: dict[str, ToolInvocation] = {}
        finished: StreamFinished | None = None
        failure: str | None = None

        stream = self.provider.stream(completion)
        try:
            async with asyncio.timeout(timeout):
                async for event in stream:
                    self._emit(on_event, event)
                    if isinstance(event, TextDelta):
                        text_parts.append(event.text)
                    elif isinstance(event, ToolCallStarted):
                        invocations[event.tool_call_id] = ToolInvocation(
                            tool_call_id=event.tool_call_id,
                            tool_name=event.tool_name,
                            args=event.args,
                            state=INVOCATION_CALL,
                        )
                    elif isinstance(event, ToolCallFinished):
                        started = invocations.get(event.tool_call_id)
                        invocations[event.tool_call_id] = ToolInvocation(
                            tool_call_id=event.tool_call_id,
                            tool_name=event.tool_name,
                            args=started.args if started else {},
                            result=event.result,
                            state=INVOCATION_RESULT,
                        )
                    elif isinstance(event, StreamFinished):
                        finished = event
                        break
                    elif isinstance(event, StreamFailed):
                        failure = event.message
                        break
        except asyncio.CancelledError:
            log.info("Generation cancelled", task_id=task.id, session_id=task.session_id)
            await self._close_stream(stream)
            if finished is None:
                await self._fail(outcome, "Generation was cancelled before it finished.")
            raise
        except TimeoutError:
            failure = f"Generation timed out after {timeout:.0f} seconds"
        except Exception as e:
            failure = str(e) or type(e).__name__
        await self._close_stream(stream)

        outcome.text = "".join(text_parts)
        if finished is not None:
            outcome.usage = dict(finished.usage)
            log.info(
                "Generation finished",
                task_id=task.id,
                finish_reason=finished.finish_reason,
                usage=finished.usage,
                tool_calls=outcome.planning.tool_calls,
                planned_first=outcome.planning.has_called_plan and not outcome.planning.auto_planned,
            )
            turn = self._assistant_turn(finished.message_id, task, outcome.text, invocations)
            await asyncio.shield(self.notify_finished(outcome, turn))
            return

        partial = self._assistant_turn(f"partial-{uuid.uuid4().hex}", task, outcome.text, invocations)
        await self.notify_error(
            outcome,
            failure or "The completion stream ended without a finish event.",
            partial,
        )

    @staticmethod
    async def _close_stream(stream: Any) -> None:
        aclose = getattr(stream, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as e:
            log.debug("Stream close failed", error=str(e))

    # ------------------------------------------------------------------
    # Workflow starters
    # ------------------------------------------------------------------

    async def start_context_acquisition(
        self,
        session_id: str,
        domain: str,
        user_id: str = "",
        project_id: str = "",
        on_event: EventCallback | None = None,
    ) -> GenerationOutcome:
        """Run site context, competitor research and page planning in one task."""
        prompt = self._instructions.render(
            "context_acquisition_prompt.md",
            domain=domain,
            phases=CONTEXT_ACQUISITION.render_phases(),
        )
        request = GenerationRequest(
            session_id=session_id,
            message=prompt,
            user_id=user_id,
            project_id=project_id,
            task_id=CONTEXT_TASK_ID,
            task_kind=CONTEXT_ACQUISITION,
        )
        return await self.run(request, on_event)

    async def start_page_generation(
        self,
        session_id: str,
        item: dict[str, Any],
        regenerate: bool = False,
        user_id: str = "",
        project_id: str = "",
        on_event: EventCallback | None = None,
    ) -> GenerationOutcome:
        """Generate (or fully regenerate) the page for one content item.

        The item id is the task id; a regeneration is a brand-new task.
        """
        template = "page_regeneration_prompt.md" if regenerate else "page_generation_prompt.md"
        item_id = str(item["id"])
        prompt = self._instructions.render(
            template,
            title=item.get("title") or item_id,
            item_id=item_id,
            page_type=item.get("page_type") or "unspecified",
            target_keyword=item.get("target_keyword") or "N/A",
        )
        request = GenerationRequest(
            session_id=session_id,
            message=prompt,
            user_id=user_id,
            project_id=project_id,
            content_items=[
                ContentItemReference(id=item_id, title=str(item.get("title") or ""), page_type=item.get("page_type")),
            ],
            task_id=item_id,
            task_kind=ARTIFACT_GENERATION,
        )
        return await self.run(request, on_event)

    async def shutdown(self) -> None:
        """Close the completion provider."""
        await self.provider.close()
