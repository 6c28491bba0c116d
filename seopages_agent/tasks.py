"""Task lifecycle tracking for autonomous workflows.

A task is one tracked unit of autonomous work bound to a session:
acquiring site context, generating one page, or answering a chat turn.
Phases of a workflow are declared per task kind as data and rendered into
the prompt; the state machine itself only tracks the task.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from seopages_agent.exceptions import (
    InvalidTaskTransitionError,
    PersistenceError,
    TaskConflictError,
)
from seopages_agent.logging import get_logger
from seopages_agent.session import PersistentStore, Session, Turn

log = get_logger(__name__)


# ---------------------------------------------------------------------------
# Task statuses
# ---------------------------------------------------------------------------

PENDING = "pending"
RUNNING = "running"
COMPLETED = "completed"
ERROR = "error"

_TERMINAL_STATES = {COMPLETED, ERROR}
_TRANSITIONS: dict[str, set[str]] = {
    PENDING: {RUNNING, ERROR},
    RUNNING: {COMPLETED, ERROR},
    COMPLETED: set(),
    ERROR: set(),
}

# Standing task id for site context acquisition.
CONTEXT_TASK_ID = "context-analysis"

# Per-session bookkeeping limits for long-running orchestrators.
MAX_FINISHED_TASKS = 100
MAX_PROCESSED_NOTIFICATIONS = 256


# ---------------------------------------------------------------------------
# Task kinds and phases
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Phase:
    """One ordered step a workflow asks the model to run without pausing."""

    id: str
    title: str
    instructions: str


@dataclass(frozen=True)
class TaskKind:
    id: str
    phases: tuple[Phase, ...] = ()
    has_target_artifact: bool = False

    @property
    def phase_ids(self) -> tuple[str, ...]:
        return tuple(phase.id for phase in self.phases)

    def render_phases(self) -> str:
        return "\n".join(
            f"Phase {index}: {phase.title}\n{phase.instructions}"
            for index, phase in enumerate(self.phases, start=1)
        )


CONTEXT_ACQUISITION = TaskKind(
    id="context_acquisition",
    phases=(
        Phase(
            id="site_context",
            title="Site context",
            instructions=(
                "Call 'acquire_site_context' with field 'all' to collect the logo, "
                "header, footer, colors and typography of the site."
            ),
        ),
        Phase(
            id="competitor_research",
            title="Competitor research",
            instructions=(
                "Find at least 10 direct competitors with 'web_search' and save them "
                "with 'save_site_context' (type 'competitors'), one entry per competitor "
                "with name, domain and a one-line positioning summary."
            ),
        ),
        Phase(
            id="page_planning",
            title="Page planning",
            instructions=(
                "Plan one alternative page per competitor and save the plan with "
                "'save_content_items_batch' using page_type 'alternative' and status 'ready'."
            ),
        ),
    ),
)

ARTIFACT_GENERATION = TaskKind(
    id="artifact_generation",
    phases=(
        Phase("research", "Research", "Load the content item and site context, then research the topic."),
        Phase("drafting", "Drafting", "Write every section of the outline in full."),
        Phase("imagery", "Imagery", "Generate the images the page needs."),
        Phase("assembly", "Assembly", "Assemble the page and merge it with the site header, footer and theme."),
        Phase("publish", "Publish", "Save the page with 'save_final_page'."),
    ),
    has_target_artifact=True,
)

CONVERSATION = TaskKind(id="conversation")

TASK_KINDS: dict[str, TaskKind] = {
    kind.id: kind for kind in (CONTEXT_ACQUISITION, ARTIFACT_GENERATION, CONVERSATION)
}


# ---------------------------------------------------------------------------
# Post-completion artifact lookup
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ArtifactAvailable:
    artifact: dict[str, Any]


@dataclass(frozen=True)
class ArtifactUnavailable:
    reason: str


ArtifactLookup = ArtifactAvailable | ArtifactUnavailable


# ---------------------------------------------------------------------------
# Task record
# ---------------------------------------------------------------------------


@dataclass
class Task:
    """Single tracked unit of autonomous work."""

    id: str
    session_id: str
    kind: TaskKind
    status: str = PENDING
    turn_ids: list[str] = field(default_factory=list)
    error: str = ""
    artifact: ArtifactLookup | None = None
    persistence_warnings: list[str] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    started_at: float = 0.0
    completed_at: float = 0.0

    def is_terminal(self) -> bool:
        return self.status in _TERMINAL_STATES

    def view(self, session: Session) -> list[Turn]:
        """Turns produced while this task ran, read from the owning session."""
        return session.view(self.turn_ids)

    def to_dict(self) -> dict[str, Any]:
        artifact: dict[str, Any] | None = None
        if isinstance(self.artifact, ArtifactAvailable):
            artifact = {"available": True, "artifact": self.artifact.artifact}
        elif isinstance(self.artifact, ArtifactUnavailable):
            artifact = {"available": False, "reason": self.artifact.reason}
        return {
            "id": self.id,
            "session_id": self.session_id,
            "kind": self.kind.id,
            "status": self.status,
            "turn_ids": list(self.turn_ids),
            "error": self.error,
            "artifact": artifact,
        }


# ---------------------------------------------------------------------------
# TaskManager
# ---------------------------------------------------------------------------


class TaskManager:
    """Owns task state and enforces one running task per session.

    Only the latest task per (session, task id) is kept, and at most
    ``max_finished`` finished tasks and ``max_notifications`` processed
    notification keys are remembered per session.
    """

    def __init__(
        self,
        store: PersistentStore,
        max_finished: int = MAX_FINISHED_TASKS,
        max_notifications: int = MAX_PROCESSED_NOTIFICATIONS,
    ):
        self.store = store
        self.max_finished = max_finished
        self.max_notifications = max_notifications
        self._running: dict[str, Task] = {}
        self._history: dict[str, dict[str, Task]] = {}
        self._processed: dict[str, dict[str, None]] = {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def running_task(self, session_id: str) -> Task | None:
        return self._running.get(session_id)

    def tasks(self, session_id: str) -> list[Task]:
        return list(self._history.get(session_id, {}).values())

    def latest(self, session_id: str, task_id: str) -> Task | None:
        return self._history.get(session_id, {}).get(task_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self, session_id: str, task_id: str, kind: TaskKind) -> Task:
        """Create a new pending task. Terminal tasks are never reused.

        The new task replaces any earlier task with the same id.
        """
        task = Task(id=task_id, session_id=session_id, kind=kind)
        history = self._history.setdefault(session_id, {})
        history.pop(task_id, None)
        history[task_id] = task
        self._prune(history)
        return task

    def _prune(self, history: dict[str, Task]) -> None:
        finished = [task_id for task_id, task in history.items() if task.is_terminal()]
        for task_id in finished[: max(0, len(finished) - self.max_finished)]:
            del history[task_id]

    def _transition(self, task: Task, target: str) -> None:
        if target not in _TRANSITIONS.get(task.status, set()):
            raise InvalidTaskTransitionError(task.id, task.status, target)
        previous = task.status
        task.status = target
        log.info(
            "Task status changed",
            session_id=task.session_id,
            task_id=task.id,
            kind=task.kind.id,
            from_status=previous,
            to_status=target,
        )

    async def _persist(self, task: Task) -> None:
        try:
            await self.store.upsert_task_status(task.session_id, task.id, task.kind.id, task.status, task.error)
        except PersistenceError as e:
            warning = f"Task status '{task.status}' was not saved: {e}"
            task.persistence_warnings.append(warning)
            log.warning("Task status not persisted", task_id=task.id, status=task.status, error=str(e))

    async def start(self, task: Task) -> None:
        """Move a pending task to running.

        Raises:
            TaskConflictError: another task of the session is running
        """
        running = self._running.get(task.session_id)
        if running is not None and running is not task:
            raise TaskConflictError(task.session_id, running.id)
        self._transition(task, RUNNING)
        self._running[task.session_id] = task
        task.started_at = time.time()
        await self._persist(task)

    def record_turn(self, task: Task, turn_id: str) -> None:
        if turn_id not in task.turn_ids:
            task.turn_ids.append(turn_id)

    def _release(self, task: Task) -> None:
        if self._running.get(task.session_id) is task:
            del self._running[task.session_id]
        task.completed_at = time.time()

    async def complete(self, task: Task, artifact: ArtifactLookup) -> None:
        """Finish a running task. The artifact lookup never affects the status."""
        self._transition(task, COMPLETED)
        task.artifact = artifact
        self._release(task)
        await self._persist(task)

    async def fail(self, task: Task, message: str, error_turn_id: str) -> None:
        """Flip a task to error once its explanatory turn exists."""
        self._transition(task, ERROR)
        self.record_turn(task, error_turn_id)
        task.error = message
        self._release(task)
        await self._persist(task)

    # ------------------------------------------------------------------
    # Notification dedupe
    # ------------------------------------------------------------------

    def claim_notification(self, session_id: str, key: str) -> bool:
        """Return True the first time a notification key is seen for a session."""
        processed = self._processed.setdefault(session_id, {})
        if key in processed:
            log.debug("Notification already processed", session_id=session_id, key=key)
            return False
        processed[key] = None
        while len(processed) > self.max_notifications:
            del processed[next(iter(processed))]
        return True


def notification_key(turn: Turn) -> str:
    """Stable key for a finished generation result."""
    if turn.id:
        return turn.id
    return f"{turn.role}-{turn.content[:50]}"
