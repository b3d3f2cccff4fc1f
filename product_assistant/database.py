"""
Database module for chat session history.

Provides the SQLite schema, connection management, and CRUD operations
for stored chat sessions, using parameterized queries.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from product_assistant import config
from product_assistant.models import ChatSession, SessionSummary, StoredChat


class SessionStore:
    """
    Manages SQLite connections and operations for chat session history.

    One row per session; the chat turns are kept as a JSON array.
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize the session store with optional custom path.

        Args:
            db_path: Path to SQLite database file. Uses config default if not provided.
        """
        self.db_path = Path(db_path or config.SESSIONS_DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_schema()

    @contextmanager
    def _get_connection(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_schema(self):
        """Create database tables if they don't exist."""
        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS user_chats (
                    session_id TEXT PRIMARY KEY,
                    chats TEXT NOT NULL DEFAULT '[]',
                    metadata TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_user_chats_created_at
                ON user_chats(created_at)
            """)

    def save_session(
        self,
        session_id: str,
        chats: List[Dict[str, Any]],
        metadata: Optional[Dict[str, Any]] = None
    ) -> ChatSession:
        """
        Insert or replace the chat history of a session.

        Chat turns are reduced to role, content and UTC timestamps before
        being stored.

        Args:
            session_id: Session identifier
            chats: Chat turns as sent by the client
            metadata: Optional session metadata (kept if omitted on update)

        Returns:
            The stored session
        """
        normalized = [StoredChat(**chat) for chat in chats]
        now = datetime.now(timezone.utc).isoformat()
        chats_json = json.dumps([chat.model_dump(exclude_none=True) for chat in normalized])

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO user_chats (session_id, chats, metadata, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET
                    chats = excluded.chats,
                    metadata = CASE WHEN ? THEN excluded.metadata ELSE user_chats.metadata END,
                    updated_at = excluded.updated_at
            """, (
                session_id,
                chats_json,
                json.dumps(metadata or {}),
                now,
                now,
                metadata is not None
            ))

        return self.get_session(session_id)

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        """
        Retrieve a session by its ID.

        Args:
            session_id: Session identifier

        Returns:
            ChatSession if found, None otherwise
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM user_chats WHERE session_id = ?
            """, (session_id,))
            row = cursor.fetchone()

            if not row:
                return None

            return self._row_to_session(row)

    def list_sessions(self, limit: int = 200) -> List[SessionSummary]:
        """
        List sessions, newest first.

        Args:
            limit: Maximum number of sessions to return

        Returns:
            Session summaries with message counts
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM user_chats ORDER BY created_at DESC LIMIT ?
            """, (limit,))
            rows = cursor.fetchall()

        summaries = []
        for row in rows:
            session = self._row_to_session(row)
            summaries.append(SessionSummary(
                session_id=session.session_id,
                metadata=session.metadata,
                created_at=session.created_at,
                updated_at=session.updated_at,
                message_count=len(session.chats)
            ))
        return summaries

    def delete_session(self, session_id: str) -> bool:
        """
        Delete a session.

        Returns:
            True if the session was deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                DELETE FROM user_chats WHERE session_id = ?
            """, (session_id,))
            return cursor.rowcount > 0

    def get_session_count(self) -> int:
        """Get total number of stored sessions."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM user_chats")
            return cursor.fetchone()[0]

    def _row_to_session(self, row: sqlite3.Row) -> ChatSession:
        """Convert a database row to a ChatSession."""
        return ChatSession(
            session_id=row['session_id'],
            chats=[StoredChat(**chat) for chat in json.loads(row['chats'])],
            metadata=json.loads(row['metadata']),
            created_at=datetime.fromisoformat(row['created_at']),
            updated_at=datetime.fromisoformat(row['updated_at'])
        )


def get_session_store() -> SessionStore:
    """Get the default session store instance."""
    return SessionStore()
