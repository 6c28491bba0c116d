from typing import Any

import pytest

from seopages_agent.exceptions import InvalidTaskTransitionError, PersistenceError, TaskConflictError
from seopages_agent.session import ROLE_ASSISTANT, Session, Turn
from seopages_agent.tasks import (
    ARTIFACT_GENERATION,
    COMPLETED,
    CONTEXT_ACQUISITION,
    CONVERSATION,
    ERROR,
    PENDING,
    RUNNING,
    TASK_KINDS,
    ArtifactAvailable,
    ArtifactUnavailable,
    TaskManager,
    notification_key,
)


class _StatusStore:
    def __init__(self, fail_writes: bool = False):
        self.fail_writes = fail_writes
        self.statuses: list[tuple[str, str, str, str, str]] = []

    async def upsert_task_status(
        self,
        session_id: str,
        task_id: str,
        kind: str,
        status: str,
        error: str = "",
    ) -> None:
        if self.fail_writes:
            raise PersistenceError("disk full")
        self.statuses.append((session_id, task_id, kind, status, error))

    async def save_turn(self, session_id: str, turn: Turn) -> str:
        return turn.id

    async def load_turns(self, session_id: str) -> list[Turn]:
        return []

    async def load_artifact(self, target_id: str) -> dict[str, Any] | None:
        return None

    async def load_attached_file(self, file_id: str):
        return None

    async def load_knowledge_item(self, item_id: str):
        return None


@pytest.mark.asyncio
async def test_task_moves_pending_running_completed():
    store = _StatusStore()
    manager = TaskManager(store)
    task = manager.create("s1", "item-1", ARTIFACT_GENERATION)

    assert task.status == PENDING
    await manager.start(task)
    assert manager.running_task("s1") is task
    await manager.complete(task, ArtifactAvailable({"id": "item-1"}))

    assert task.status == COMPLETED
    assert task.is_terminal()
    assert manager.running_task("s1") is None
    assert [entry[3] for entry in store.statuses] == [RUNNING, COMPLETED]
    assert task.to_dict()["artifact"] == {"available": True, "artifact": {"id": "item-1"}}


@pytest.mark.asyncio
async def test_second_running_task_in_session_conflicts():
    manager = TaskManager(_StatusStore())
    first = manager.create("s1", "context-analysis", CONTEXT_ACQUISITION)
    await manager.start(first)

    second = manager.create("s1", "item-2", ARTIFACT_GENERATION)
    with pytest.raises(TaskConflictError) as exc_info:
        await manager.start(second)

    assert exc_info.value.running_task_id == "context-analysis"
    assert second.status == PENDING

    other_session = manager.create("s2", "item-2", ARTIFACT_GENERATION)
    await manager.start(other_session)
    assert manager.running_task("s2") is other_session


@pytest.mark.asyncio
async def test_terminal_tasks_never_transition_again():
    manager = TaskManager(_StatusStore())
    task = manager.create("s1", "chat-1", CONVERSATION)
    await manager.start(task)
    await manager.fail(task, "boom", "turn-err")

    with pytest.raises(InvalidTaskTransitionError):
        await manager.complete(task, ArtifactUnavailable("no target"))
    with pytest.raises(InvalidTaskTransitionError):
        await manager.start(task)

    assert task.status == ERROR
    assert task.error == "boom"
    assert task.turn_ids == ["turn-err"]


@pytest.mark.asyncio
async def test_pending_task_can_fail_but_not_complete():
    manager = TaskManager(_StatusStore())
    task = manager.create("s1", "chat-1", CONVERSATION)

    with pytest.raises(InvalidTaskTransitionError):
        await manager.complete(task, ArtifactUnavailable("x"))
    await manager.fail(task, "could not start", "turn-err")

    assert task.status == ERROR


@pytest.mark.asyncio
async def test_status_write_failure_becomes_warning():
    manager = TaskManager(_StatusStore(fail_writes=True))
    task = manager.create("s1", "item-1", ARTIFACT_GENERATION)

    await manager.start(task)

    assert task.status == RUNNING
    assert len(task.persistence_warnings) == 1
    assert "disk full" in task.persistence_warnings[0]


@pytest.mark.asyncio
async def test_retrying_a_target_creates_a_fresh_task():
    manager = TaskManager(_StatusStore())
    failed = manager.create("s1", "item-1", ARTIFACT_GENERATION)
    await manager.start(failed)
    await manager.fail(failed, "timeout", "turn-1")

    retry = manager.create("s1", "item-1", ARTIFACT_GENERATION)
    await manager.start(retry)

    assert retry is not failed
    assert manager.latest("s1", "item-1") is retry
    assert manager.tasks("s1") == [retry]


def test_notifications_are_claimed_once_per_session():
    manager = TaskManager(_StatusStore())

    assert manager.claim_notification("s1", "turn-1") is True
    assert manager.claim_notification("s1", "turn-1") is False
    assert manager.claim_notification("s2", "turn-1") is True


@pytest.mark.asyncio
async def test_finished_tasks_are_pruned_beyond_limit():
    manager = TaskManager(_StatusStore(), max_finished=2)
    for index in range(4):
        task = manager.create("s1", f"chat-{index}", CONVERSATION)
        await manager.start(task)
        await manager.complete(task, ArtifactUnavailable("none"))
    current = manager.create("s1", "chat-4", CONVERSATION)

    assert [task.id for task in manager.tasks("s1")] == ["chat-2", "chat-3", "chat-4"]
    assert manager.latest("s1", "chat-0") is None
    assert manager.latest("s1", "chat-4") is current


def test_processed_notification_keys_are_capped_per_session():
    manager = TaskManager(_StatusStore(), max_notifications=2)

    for key in ("turn-1", "turn-2", "turn-3"):
        assert manager.claim_notification("s1", key) is True

    assert manager.claim_notification("s1", "turn-3") is False
    assert manager.claim_notification("s1", "turn-1") is True


def test_notification_key_falls_back_to_role_and_content():
    assert notification_key(Turn(role=ROLE_ASSISTANT, content="done", id="turn-9")) == "turn-9"
    assert notification_key(Turn(role=ROLE_ASSISTANT, content="x" * 80, id="")) == "assistant-" + "x" * 50


def test_task_view_reads_turns_from_session():
    manager = TaskManager(_StatusStore())
    session = Session(id="s1", name="s1")
    turns = [Turn(role=ROLE_ASSISTANT, content=str(i)) for i in range(3)]
    for turn in turns:
        session.append_turn(turn)
    task = manager.create("s1", "chat-1", CONVERSATION)
    manager.record_turn(task, turns[2].id)
    manager.record_turn(task, turns[0].id)
    manager.record_turn(task, turns[0].id)

    assert task.view(session) == [turns[0], turns[2]]


def test_task_kinds_declare_typed_phases():
    assert CONTEXT_ACQUISITION.phase_ids == ("site_context", "competitor_research", "page_planning")
    assert ARTIFACT_GENERATION.has_target_artifact is True
    assert CONTEXT_ACQUISITION.has_target_artifact is False
    assert CONVERSATION.phases == ()
    assert set(TASK_KINDS) == {"context_acquisition", "artifact_generation", "conversation"}
    rendered = CONTEXT_ACQUISITION.render_phases()
    assert rendered.index("Phase 1: Site context") < rendered.index("Phase 3: Page planning")
