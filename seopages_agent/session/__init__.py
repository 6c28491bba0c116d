"""Conversation data model and SQLite-backed persistent store."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

import aiosqlite

from seopages_agent.config import get_config
from seopages_agent.exceptions import PersistenceError
from seopages_agent.logging import get_logger

log = get_logger(__name__)

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_SYSTEM = "system"

INVOCATION_CALL = "call"
INVOCATION_RESULT = "result"


def _utcnow_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(UTC).isoformat()


def new_turn_id() -> str:
    return f"turn-{uuid.uuid4().hex}"


@dataclass(frozen=True)
class ToolInvocation:
    """A tool call made during generation and its result, if any."""

    tool_call_id: str
    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    state: str = INVOCATION_RESULT

    @property
    def is_pending(self) -> bool:
        return self.state != INVOCATION_RESULT

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_call_id": self.tool_call_id,
            "tool_name": self.tool_name,
            "args": self.args,
            "result": self.result,
            "state": self.state,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolInvocation:
        return cls(
            tool_call_id=str(data.get("tool_call_id", "")),
            tool_name=str(data.get("tool_name", "")),
            args=dict(data.get("args") or {}),
            result=data.get("result"),
            state=str(data.get("state") or INVOCATION_RESULT),
        )


@dataclass(frozen=True)
class Turn:
    """One conversational message. Immutable once built."""

    role: str
    content: str
    tool_invocations: tuple[ToolInvocation, ...] = ()
    id: str = field(default_factory=new_turn_id)
    task_id: str | None = None
    created_at: str = field(default_factory=_utcnow_iso)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "tool_invocations": [inv.to_dict() for inv in self.tool_invocations],
            "task_id": self.task_id,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Turn:
        """Create from dictionary."""
        return cls(
            id=str(data.get("id") or new_turn_id()),
            role=str(data.get("role", ROLE_USER)),
            content=str(data.get("content") or ""),
            tool_invocations=tuple(
                ToolInvocation.from_dict(item)
                for item in data.get("tool_invocations") or []
                if isinstance(item, dict)
            ),
            task_id=data.get("task_id"),
            created_at=str(data.get("created_at") or _utcnow_iso()),
        )


@dataclass
class Session:
    """Ordered turn history for one conversation/workflow scope."""

    id: str
    name: str
    turns: list[Turn] = field(default_factory=list)
    created_at: str = field(default_factory=_utcnow_iso)
    updated_at: str = field(default_factory=_utcnow_iso)
    metadata: dict[str, Any] = field(default_factory=dict)

    def append_turn(self, turn: Turn) -> None:
        """Append a turn to the session."""
        self.turns.append(turn)
        self.updated_at = _utcnow_iso()

    def view(self, turn_ids: list[str]) -> list[Turn]:
        """Return the owned turns whose ids are listed, in session order."""
        wanted = set(turn_ids)
        return [turn for turn in self.turns if turn.id in wanted]

    @property
    def latest_turn(self) -> Turn | None:
        return self.turns[-1] if self.turns else None


@dataclass(frozen=True)
class AttachedFile:
    """A user-uploaded file attached to a chat message."""

    id: str
    filename: str
    file_type: str = "text/plain"
    content: str = ""


@dataclass(frozen=True)
class KnowledgeItem:
    """A project knowledge file referenced with an @ mention."""

    id: str
    file_name: str
    file_type: str = "text/plain"
    url: str = ""
    content: str | None = None


class PersistentStore(Protocol):
    """Store contract used by the orchestrator."""

    async def save_turn(self, session_id: str, turn: Turn) -> str: ...

    async def load_turns(self, session_id: str) -> list[Turn]: ...

    async def load_artifact(self, target_id: str) -> dict[str, Any] | None: ...

    async def upsert_task_status(
        self,
        session_id: str,
        task_id: str,
        kind: str,
        status: str,
        error: str = "",
    ) -> None: ...

    async def load_attached_file(self, file_id: str) -> AttachedFile | None: ...

    async def load_knowledge_item(self, item_id: str) -> KnowledgeItem | None: ...


_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}'
);
CREATE TABLE IF NOT EXISTS turns (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    session_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    tool_invocations TEXT NOT NULL DEFAULT '[]',
    task_id TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_turns_session ON turns(session_id, seq);
CREATE TABLE IF NOT EXISTS artifacts (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS tasks (
    session_id TEXT NOT NULL,
    task_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    status TEXT NOT NULL,
    error TEXT NOT NULL DEFAULT '',
    updated_at TEXT NOT NULL,
    PRIMARY KEY (session_id, task_id)
);
CREATE TABLE IF NOT EXISTS files (
    id TEXT PRIMARY KEY,
    filename TEXT NOT NULL,
    file_type TEXT NOT NULL,
    content TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS knowledge (
    id TEXT PRIMARY KEY,
    file_name TEXT NOT NULL,
    file_type TEXT NOT NULL,
    url TEXT NOT NULL DEFAULT '',
    content TEXT
);
"""


class SessionStore:
    """Persistent store with SQLite storage."""

    def __init__(self, db_path: Path | str | None = None):
        """Initialize the store.

        Args:
            db_path: Optional database path override
        """
        if db_path is None:
            config = get_config()
            self.db_path = Path(config.store.path).expanduser()
        else:
            self.db_path = Path(db_path).expanduser()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._db: aiosqlite.Connection | None = None

    async def _ensure_db(self) -> aiosqlite.Connection:
        """Ensure database is initialized.

        Raises:
            PersistenceError: the database could not be opened or migrated
        """
        if self._db is None:
            try:
                db = await aiosqlite.connect(str(self.db_path))
            except aiosqlite.Error as e:
                raise PersistenceError(f"Store unavailable: {e}") from e
            try:
                await db.executescript(_SCHEMA)
                await db.commit()
            except aiosqlite.Error as e:
                await db.close()
                raise PersistenceError(f"Store schema setup failed: {e}") from e
            self._db = db
        return self._db

    async def _write(self, sql: str, params: tuple[Any, ...]) -> aiosqlite.Cursor:
        db = await self._ensure_db()
        try:
            cursor = await db.execute(sql, params)
            await db.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Store write failed: {e}") from e
        return cursor

    async def _fetch_one(self, sql: str, params: tuple[Any, ...]) -> Any:
        db = await self._ensure_db()
        try:
            async with db.execute(sql, params) as cursor:
                return await cursor.fetchone()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Store read failed: {e}") from e

    async def _fetch_all(self, sql: str, params: tuple[Any, ...]) -> list[Any]:
        db = await self._ensure_db()
        try:
            async with db.execute(sql, params) as cursor:
                return list(await cursor.fetchall())
        except aiosqlite.Error as e:
            raise PersistenceError(f"Store read failed: {e}") from e

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(self, name: str = "default", metadata: dict[str, Any] | None = None) -> Session:
        """Create and persist a new session."""
        session = Session(
            id=str(uuid.uuid4()),
            name=name,
            metadata=metadata or {},
        )
        await self._write(
            "INSERT INTO sessions (id, name, created_at, updated_at, metadata) VALUES (?, ?, ?, ?, ?)",
            (session.id, session.name, session.created_at, session.updated_at, json.dumps(session.metadata)),
        )
        log.info("Created new session", session_id=session.id, name=name)
        return session

    async def load_session(self, session_id: str) -> Session | None:
        """Get a session with its turns.

        Args:
            session_id: Session ID

        Returns:
            Session or None if not found
        """
        row = await self._fetch_one(
            "SELECT id, name, created_at, updated_at, metadata FROM sessions WHERE id = ?",
            (session_id,),
        )

        if not row:
            return None

        return Session(
            id=row[0],
            name=row[1],
            turns=await self.load_turns(session_id),
            created_at=row[2],
            updated_at=row[3],
            metadata=json.loads(row[4]),
        )

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and its turns.

        Returns:
            True if deleted, False if not found
        """
        cursor = await self._write("DELETE FROM sessions WHERE id = ?", (session_id,))
        await self._write("DELETE FROM turns WHERE session_id = ?", (session_id,))
        await self._write("DELETE FROM tasks WHERE session_id = ?", (session_id,))
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def save_turn(self, session_id: str, turn: Turn) -> str:
        """Append a turn. Turns are never updated in place."""
        await self._write(
            """
            INSERT INTO turns (id, session_id, role, content, tool_invocations, task_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                turn.id,
                session_id,
                turn.role,
                turn.content,
                json.dumps([inv.to_dict() for inv in turn.tool_invocations], default=str),
                turn.task_id,
                turn.created_at,
            ),
        )
        await self._write(
            "UPDATE sessions SET updated_at = ? WHERE id = ?",
            (_utcnow_iso(), session_id),
        )
        return turn.id

    async def load_turns(self, session_id: str) -> list[Turn]:
        """Load all turns of a session in creation order."""
        rows = await self._fetch_all(
            """
            SELECT id, role, content, tool_invocations, task_id, created_at
            FROM turns
            WHERE session_id = ?
            ORDER BY seq ASC
            """,
            (session_id,),
        )

        return [
            Turn.from_dict({
                "id": row[0],
                "role": row[1],
                "content": row[2],
                "tool_invocations": json.loads(row[3]),
                "task_id": row[4],
                "created_at": row[5],
            })
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Artifacts (content item records) and task status
    # ------------------------------------------------------------------

    async def save_artifact(self, target_id: str, data: dict[str, Any]) -> None:
        """Upsert an artifact record keyed by target id."""
        record = dict(data)
        record.setdefault("id", target_id)
        await self._write(
            "INSERT OR REPLACE INTO artifacts (id, data, updated_at) VALUES (?, ?, ?)",
            (target_id, json.dumps(record, default=str), _utcnow_iso()),
        )

    async def load_artifact(self, target_id: str) -> dict[str, Any] | None:
        row = await self._fetch_one("SELECT data FROM artifacts WHERE id = ?", (target_id,))
        return json.loads(row[0]) if row else None

    async def upsert_task_status(
        self,
        session_id: str,
        task_id: str,
        kind: str,
        status: str,
        error: str = "",
    ) -> None:
        await self._write(
            """
            INSERT OR REPLACE INTO tasks (session_id, task_id, kind, status, error, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (session_id, task_id, kind, status, error, _utcnow_iso()),
        )

    async def load_task_status(self, session_id: str, task_id: str) -> dict[str, str] | None:
        row = await self._fetch_one(
            "SELECT kind, status, error, updated_at FROM tasks WHERE session_id = ? AND task_id = ?",
            (session_id, task_id),
        )
        if not row:
            return None
        return {"kind": row[0], "status": row[1], "error": row[2], "updated_at": row[3]}

    # ------------------------------------------------------------------
    # Synthetic context sources
    # ------------------------------------------------------------------

    async def save_attached_file(self, file: AttachedFile) -> None:
        await self._write(
            "INSERT OR REPLACE INTO files (id, filename, file_type, content) VALUES (?, ?, ?, ?)",
            (file.id, file.filename, file.file_type, file.content),
        )

    async def load_attached_file(self, file_id: str) -> AttachedFile | None:
        row = await self._fetch_one(
            "SELECT id, filename, file_type, content FROM files WHERE id = ?",
            (file_id,),
        )
        if not row:
            return None
        return AttachedFile(id=row[0], filename=row[1], file_type=row[2], content=row[3])

    async def save_knowledge_item(self, item: KnowledgeItem) -> None:
        await self._write(
            "INSERT OR REPLACE INTO knowledge (id, file_name, file_type, url, content) VALUES (?, ?, ?, ?, ?)",
            (item.id, item.file_name, item.file_type, item.url, item.content),
        )

    async def load_knowledge_item(self, item_id: str) -> KnowledgeItem | None:
        row = await self._fetch_one(
            "SELECT id, file_name, file_type, url, content FROM knowledge WHERE id = ?",
            (item_id,),
        )
        if not row:
            return None
        return KnowledgeItem(id=row[0], file_name=row[1], file_type=row[2], url=row[3], content=row[4])

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None
