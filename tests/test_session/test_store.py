import pytest

from seopages_agent.exceptions import PersistenceError
from seopages_agent.session import (
    INVOCATION_CALL,
    ROLE_ASSISTANT,
    ROLE_USER,
    AttachedFile,
    KnowledgeItem,
    Session,
    SessionStore,
    ToolInvocation,
    Turn,
)


@pytest.mark.asyncio
async def test_store_uses_db_path_override(tmp_path):
    db_path = tmp_path / "custom-store.db"
    store = SessionStore(db_path=db_path)
    try:
        await store.create_session(name="alpha")
        assert db_path.exists()
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_turns_load_in_creation_order_with_invocations(tmp_path):
    store = SessionStore(db_path=tmp_path / "store.db")
    try:
        session = await store.create_session(name="alpha", metadata={"project": "acme"})
        first = Turn(role=ROLE_USER, content="generate the page")
        second = Turn(
            role=ROLE_ASSISTANT,
            content="done",
            tool_invocations=(
                ToolInvocation("call_1", "save_final_page", {"item_id": "i1"}, {"success": True}),
                ToolInvocation("call_2", "web_search", {"query": "x"}, state=INVOCATION_CALL),
            ),
            task_id="i1",
        )
        assert await store.save_turn(session.id, first) == first.id
        await store.save_turn(session.id, second)

        loaded = await store.load_session(session.id)
        assert loaded is not None
        assert loaded.metadata["project"] == "acme"
        assert [turn.id for turn in loaded.turns] == [first.id, second.id]
        assert loaded.turns[1] == second
        assert loaded.turns[1].tool_invocations[1].is_pending
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_turns_are_append_only(tmp_path):
    store = SessionStore(db_path=tmp_path / "store.db")
    try:
        session = await store.create_session()
        turn = Turn(role=ROLE_USER, content="hello")
        await store.save_turn(session.id, turn)

        with pytest.raises(PersistenceError):
            await store.save_turn(session.id, Turn(id=turn.id, role=ROLE_USER, content="edited"))

        turns = await store.load_turns(session.id)
        assert [t.content for t in turns] == ["hello"]
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_artifacts_and_task_status_upsert(tmp_path):
    store = SessionStore(db_path=tmp_path / "store.db")
    try:
        assert await store.load_artifact("item-1") is None
        await store.save_artifact("item-1", {"title": "Best CRM", "status": "ready"})
        await store.save_artifact("item-1", {"title": "Best CRM", "status": "generated"})
        artifact = await store.load_artifact("item-1")
        assert artifact == {"title": "Best CRM", "status": "generated", "id": "item-1"}

        await store.upsert_task_status("s1", "item-1", "artifact_generation", "running")
        await store.upsert_task_status("s1", "item-1", "artifact_generation", "error", "boom")
        status = await store.load_task_status("s1", "item-1")
        assert status is not None
        assert status["status"] == "error"
        assert status["error"] == "boom"
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_attached_files_and_knowledge_items(tmp_path):
    store = SessionStore(db_path=tmp_path / "store.db")
    try:
        await store.save_attached_file(AttachedFile("f1", "brief.md", "text/markdown", "# Brief"))
        await store.save_knowledge_item(KnowledgeItem("k1", "deck.pdf", "application/pdf", "https://cdn/deck.pdf"))

        file = await store.load_attached_file("f1")
        item = await store.load_knowledge_item("k1")

        assert file is not None and file.content == "# Brief"
        assert item is not None and item.content is None
        assert await store.load_attached_file("missing") is None
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_delete_session_removes_turns(tmp_path):
    store = SessionStore(db_path=tmp_path / "store.db")
    try:
        session = await store.create_session()
        await store.save_turn(session.id, Turn(role=ROLE_USER, content="x"))

        assert await store.delete_session(session.id) is True
        assert await store.load_session(session.id) is None
        assert await store.load_turns(session.id) == []
    finally:
        await store.close()


def test_session_view_returns_listed_turns_in_session_order():
    session = Session(id="s1", name="s1")
    turns = [Turn(role=ROLE_USER, content=str(i)) for i in range(4)]
    for turn in turns:
        session.append_turn(turn)

    view = session.view([turns[3].id, turns[1].id, "unknown"])

    assert view == [turns[1], turns[3]]
    assert session.latest_turn is turns[3]


@pytest.mark.asyncio
async def test_unopenable_database_raises_persistence_error(tmp_path):
    store = SessionStore(db_path=tmp_path)
    try:
        with pytest.raises(PersistenceError):
            await store.load_turns("s1")
        with pytest.raises(PersistenceError):
            await store.save_turn("s1", Turn(role=ROLE_USER, content="x"))
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_read_failures_raise_persistence_error(tmp_path):
    store = SessionStore(db_path=tmp_path / "store.db")
    try:
        await store.create_session()
        await store._write("DROP TABLE artifacts", ())
        await store._write("DROP TABLE turns", ())

        with pytest.raises(PersistenceError):
            await store.load_artifact("item-1")
        with pytest.raises(PersistenceError):
            await store.load_turns("s1")
    finally:
        await store.close()
