"""
SQLite persistence for Reflecto.

``Database`` owns connections, the schema and transactions. The resource
stores (``ChatStore``, ``NotebookStore``, ``SubmissionStore``) hold the SQL
for each table group. Every store method that changes an owned resource does
its ownership read and its write inside one ``BEGIN IMMEDIATE`` transaction,
so a concurrent writer can never slip in between the check and the update.

Any ``sqlite3.Error`` is logged and re-raised as ``StoreUnavailable``; the
driver's message never leaves this module.
"""

import contextlib
import json
import logging
import sqlite3
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .domain import (
    ChatMessage,
    ChatSession,
    NotFound,
    Notebook,
    Page,
    StoreUnavailable,
    Tag,
)
from .utils import make_id, time_now

logger = logging.getLogger(__name__)

SESSION_NOT_FOUND = "Session not found or you do not have permission to access it"
NOTEBOOK_NOT_FOUND = "Notebook not found or you do not have permission to access it"
PUBLIC_NOTEBOOK_NOT_FOUND = "Notebook not found or not public"

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT UNIQUE NOT NULL,
        username TEXT UNIQUE,
        name TEXT,
        password_hash TEXT NOT NULL,
        created_time TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sessions (
        token_digest TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES users (id) ON DELETE CASCADE,
        created_time TEXT NOT NULL,
        expires_time TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notebooks (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES users (id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        content TEXT NOT NULL DEFAULT '',
        is_public INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_notebooks_user_id ON notebooks(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_notebooks_public ON notebooks(is_public, updated_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS tags (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES users (id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        UNIQUE (user_id, name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notebooks_tags (
        notebook_id TEXT NOT NULL REFERENCES notebooks (id) ON DELETE CASCADE,
        tag_id TEXT NOT NULL REFERENCES tags (id) ON DELETE CASCADE,
        PRIMARY KEY (notebook_id, tag_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chat_sessions (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES users (id) ON DELETE CASCADE,
        title TEXT,
        notebook_id TEXT REFERENCES notebooks (id) ON DELETE CASCADE,
        personality TEXT NOT NULL DEFAULT 'friendly',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        last_message_at TEXT NOT NULL,
        is_archived INTEGER NOT NULL DEFAULT 0,
        is_pinned INTEGER NOT NULL DEFAULT 0,
        summary TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_chat_sessions_user_id ON chat_sessions(user_id)",
    """
    CREATE TABLE IF NOT EXISTS chat_messages (
        id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL REFERENCES chat_sessions (id) ON DELETE CASCADE,
        role TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at TEXT NOT NULL,
        metadata TEXT,
        token_count INTEGER,
        is_error INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_chat_messages_session_id ON chat_messages(session_id)",
    """
    CREATE TABLE IF NOT EXISTS feedback (
        id TEXT PRIMARY KEY,
        name TEXT,
        email TEXT NOT NULL,
        subject TEXT,
        message TEXT NOT NULL,
        rating INTEGER,
        status TEXT NOT NULL DEFAULT 'new',
        created_at TEXT NOT NULL,
        user_id TEXT REFERENCES users (id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS contact_messages (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT NOT NULL,
        subject TEXT,
        message TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'new',
        created_at TEXT NOT NULL,
        user_id TEXT REFERENCES users (id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS newsletter_subscriptions (
        id TEXT PRIMARY KEY,
        email TEXT UNIQUE NOT NULL,
        name TEXT,
        active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL
    )
    """,
]


class Database:
    """
    Connection, schema and transaction management for the SQLite store.

    Connections are opened per operation in autocommit mode; writes go
    through ``transaction()``, which takes the write lock up front with
    ``BEGIN IMMEDIATE`` and commits or rolls back as a unit.

    Attributes:
        db_path (str): Path to the SQLite database file
        lock (threading.Lock): Serialises writers inside this process
    """

    def __init__(self, db_path: str = "reflecto.db", timeout: float = 10.0):
        self.db_path = db_path
        self.timeout = timeout
        self.lock = threading.Lock()
        self._create_tables()

    @contextlib.contextmanager
    def _get_db_connection(self):
        try:
            conn = sqlite3.connect(
                self.db_path, timeout=self.timeout, check_same_thread=False, isolation_level=None
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA foreign_keys=ON;")
            conn.execute("PRAGMA synchronous=FULL;")
        except sqlite3.Error as e:
            logger.error("Could not open database %s: %s", self.db_path, e)
            raise StoreUnavailable() from e
        try:
            yield conn
        finally:
            conn.close()

    def _create_tables(self):
        with self.transaction() as conn:
            for statement in SCHEMA:
                conn.execute(statement)

    @contextlib.contextmanager
    def read(self):
        """Yield a connection for read-only queries."""
        with self._get_db_connection() as conn:
            try:
                yield conn
            except sqlite3.Error as e:
                logger.error("Database read failed: %s", e)
                raise StoreUnavailable() from e

    @contextlib.contextmanager
    def transaction(self):
        """Yield a connection inside an immediate transaction.

        Commits when the block exits normally. Any exception rolls back;
        ``sqlite3.Error`` is converted to ``StoreUnavailable``.
        """
        with self.lock:
            with self._get_db_connection() as conn:
                try:
                    conn.execute("BEGIN IMMEDIATE")
                    yield conn
                    conn.execute("COMMIT")
                except sqlite3.Error as e:
                    self._rollback(conn)
                    logger.error("Database transaction failed: %s", e)
                    raise StoreUnavailable() from e
                except BaseException:
                    self._rollback(conn)
                    raise

    @staticmethod
    def _rollback(conn):
        if conn.in_transaction:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error as e:
                logger.error("Rollback failed: %s", e)

    def ping(self) -> bool:
        """True when the database answers a trivial query."""
        try:
            with self.read() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except StoreUnavailable:
            return False

    # -------------------------------
    # Ownership primitives
    # -------------------------------

    @staticmethod
    def owned_row(conn, table: str, resource_id: str, owner_id: str, not_found: str) -> sqlite3.Row:
        """Fetch a row and check its owner; absence and mismatch both raise the same NotFound."""
        row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (resource_id,)).fetchone()
        if row is None or row["user_id"] != owner_id:
            raise NotFound(not_found)
        return row

    @staticmethod
    def apply_changes(conn, table: str, row: sqlite3.Row, changes: Dict[str, Any]) -> bool:
        """Write the columns in ``changes`` that differ from ``row``.

        Returns False, without writing, when every value already matches.
        ``updated_at`` is refreshed on any real change.
        """
        columns = row.keys()
        pending = {}
        for column, value in changes.items():
            if column not in columns or column in ("id", "user_id"):
                raise ValueError(f"Column {column!r} cannot be changed on {table}")
            if isinstance(value, bool):
                value = int(value)
            if row[column] != value:
                pending[column] = value
        if not pending:
            return False
        if "updated_at" in columns:
            pending["updated_at"] = time_now()
        assignments = ", ".join(f"{column} = ?" for column in pending)
        conn.execute(
            f"UPDATE {table} SET {assignments} WHERE id = ?",
            (*pending.values(), row["id"]),
        )
        return True


def _page_rows(conn, sql: str, params: Tuple[Any, ...], page: int, limit: int, total: int) -> List[sqlite3.Row]:
    """Run ``sql`` with ``LIMIT ? OFFSET ?`` appended for one page of ``total`` rows.

    Pages past the end are answered without a query; their offset may not fit
    in a SQLite integer.
    """
    offset = (page - 1) * limit
    if offset >= total:
        return []
    return conn.execute(sql + " LIMIT ? OFFSET ?", (*params, limit, offset)).fetchall()


class ChatStore:
    """Chat sessions and their messages."""

    SORT_COLUMNS = {"last_message_at": "last_message_at", "created_at": "created_at"}

    def __init__(self, db: Database):
        self.db = db

    def create_session(self, owner_id: str, title: Optional[str], notebook_id: Optional[str],
                       personality: str) -> ChatSession:
        now = time_now()
        session_id = make_id("chat")
        with self.db.transaction() as conn:
            if notebook_id is not None:
                self.db.owned_row(conn, "notebooks", notebook_id, owner_id, NOTEBOOK_NOT_FOUND)
            conn.execute(
                "INSERT INTO chat_sessions (id, user_id, title, notebook_id, personality, "
                "created_at, updated_at, last_message_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (session_id, owner_id, title, notebook_id, personality, now, now, now),
            )
            row = conn.execute("SELECT * FROM chat_sessions WHERE id = ?", (session_id,)).fetchone()
        return ChatSession.from_row(row)

    def get_owned(self, session_id: str, owner_id: str) -> ChatSession:
        with self.db.read() as conn:
            row = self.db.owned_row(conn, "chat_sessions", session_id, owner_id, SESSION_NOT_FOUND)
        return ChatSession.from_row(row)

    def mutate_owned(self, session_id: str, owner_id: str,
                     mutation: Callable[[ChatSession], Dict[str, Any]]) -> ChatSession:
        with self.db.transaction() as conn:
            row = self.db.owned_row(conn, "chat_sessions", session_id, owner_id, SESSION_NOT_FOUND)
            changes = mutation(ChatSession.from_row(row))
            if self.db.apply_changes(conn, "chat_sessions", row, changes):
                row = conn.execute("SELECT * FROM chat_sessions WHERE id = ?", (session_id,)).fetchone()
        return ChatSession.from_row(row)

    def list_sessions(self, owner_id: str, page: int, limit: int, include_archived: bool,
                      sort_by: str, sort_direction: str) -> Page:
        column = self.SORT_COLUMNS[sort_by]
        direction = "ASC" if sort_direction == "asc" else "DESC"
        where = "user_id = ?" if include_archived else "user_id = ? AND is_archived = 0"
        with self.db.read() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM chat_sessions WHERE {where}", (owner_id,)
            ).fetchone()[0]
            rows = _page_rows(
                conn,
                f"SELECT * FROM chat_sessions WHERE {where} "
                f"ORDER BY is_pinned DESC, {column} {direction}, rowid {direction}",
                (owner_id,), page, limit, total,
            )
        return Page([ChatSession.from_row(r) for r in rows], page, limit, total)

    def add_message(self, session_id: str, owner_id: str, role: str, content: str,
                    metadata: Optional[Dict[str, Any]], token_count: Optional[int],
                    is_error: bool) -> ChatMessage:
        now = time_now()
        message_id = make_id("msg")
        with self.db.transaction() as conn:
            self.db.owned_row(conn, "chat_sessions", session_id, owner_id, SESSION_NOT_FOUND)
            conn.execute(
                "INSERT INTO chat_messages (id, session_id, role, content, created_at, metadata, "
                "token_count, is_error) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (message_id, session_id, role, content, now,
                 json.dumps(metadata) if metadata is not None else None, token_count, int(is_error)),
            )
            if role == "user":
                conn.execute(
                    "UPDATE chat_sessions SET last_message_at = ?, updated_at = ?, "
                    "title = COALESCE(title, SUBSTR(?, 1, 50)) WHERE id = ?",
                    (now, now, content, session_id),
                )
            else:
                conn.execute(
                    "UPDATE chat_sessions SET last_message_at = ?, updated_at = ? WHERE id = ?",
                    (now, now, session_id),
                )
            row = conn.execute("SELECT * FROM chat_messages WHERE id = ?", (message_id,)).fetchone()
        return ChatMessage.from_row(row)

    def list_messages(self, session_id: str, owner_id: str, page: int, limit: int) -> Page:
        with self.db.read() as conn:
            self.db.owned_row(conn, "chat_sessions", session_id, owner_id, SESSION_NOT_FOUND)
            total = conn.execute(
                "SELECT COUNT(*) FROM chat_messages WHERE session_id = ?", (session_id,)
            ).fetchone()[0]
            rows = _page_rows(
                conn,
                "SELECT * FROM chat_messages WHERE session_id = ? ORDER BY created_at ASC, rowid ASC",
                (session_id,), page, limit, total,
            )
        return Page([ChatMessage.from_row(r) for r in rows], page, limit, total)


class NotebookStore:
    """Notebooks, their tags, and the public listings."""

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _tags_for(conn, notebook_ids: Iterable[str]) -> Dict[str, List[str]]:
        ids = list(notebook_ids)
        tags: Dict[str, List[str]] = {nid: [] for nid in ids}
        if not ids:
            return tags
        placeholders = ", ".join("?" for _ in ids)
        rows = conn.execute(
            "SELECT nt.notebook_id, t.name FROM notebooks_tags nt "
            f"JOIN tags t ON t.id = nt.tag_id WHERE nt.notebook_id IN ({placeholders}) "
            "ORDER BY t.name",
            ids,
        ).fetchall()
        for notebook_id, name in rows:
            tags[notebook_id].append(name)
        return tags

    def _hydrate(self, conn, rows) -> List[Notebook]:
        notebooks = [Notebook.from_row(r) for r in rows]
        tags = self._tags_for(conn, (n.id for n in notebooks))
        for notebook in notebooks:
            notebook.tags = tags[notebook.id]
        return notebooks

    @staticmethod
    def _set_tags(conn, notebook_id: str, owner_id: str, names: List[str]) -> bool:
        """Replace a notebook's tags with ``names``. Returns True if the set changed."""
        wanted = sorted({n.strip() for n in names if n and n.strip()})
        current = sorted(
            r[0] for r in conn.execute(
                "SELECT t.name FROM notebooks_tags nt JOIN tags t ON t.id = nt.tag_id "
                "WHERE nt.notebook_id = ?",
                (notebook_id,),
            )
        )
        if wanted == current:
            return False
        conn.execute("DELETE FROM notebooks_tags WHERE notebook_id = ?", (notebook_id,))
        for name in wanted:
            conn.execute(
                "INSERT OR IGNORE INTO tags (id, user_id, name) VALUES (?, ?, ?)",
                (make_id("tag"), owner_id, name),
            )
            tag_id = conn.execute(
                "SELECT id FROM tags WHERE user_id = ? AND name = ?", (owner_id, name)
            ).fetchone()[0]
            conn.execute(
                "INSERT INTO notebooks_tags (notebook_id, tag_id) VALUES (?, ?)", (notebook_id, tag_id)
            )
        return True

    def create(self, owner_id: str, title: str, content: str, is_public: bool,
               tags: List[str]) -> Notebook:
        now = time_now()
        notebook_id = make_id("nb")
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT INTO notebooks (id, user_id, title, content, is_public, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (notebook_id, owner_id, title, content, int(is_public), now, now),
            )
            self._set_tags(conn, notebook_id, owner_id, tags)
            row = conn.execute("SELECT * FROM notebooks WHERE id = ?", (notebook_id,)).fetchone()
            return self._hydrate(conn, [row])[0]

    def get_owned(self, notebook_id: str, owner_id: str) -> Notebook:
        with self.db.read() as conn:
            row = self.db.owned_row(conn, "notebooks", notebook_id, owner_id, NOTEBOOK_NOT_FOUND)
            return self._hydrate(conn, [row])[0]

    def mutate_owned(self, notebook_id: str, owner_id: str,
                     mutation: Callable[[Notebook], Dict[str, Any]]) -> Notebook:
        """Apply ``mutation`` to an owned notebook. A ``tags`` key replaces the tag set."""
        with self.db.transaction() as conn:
            row = self.db.owned_row(conn, "notebooks", notebook_id, owner_id, NOTEBOOK_NOT_FOUND)
            current = self._hydrate(conn, [row])[0]
            changes = dict(mutation(current))
            tags = changes.pop("tags", None)
            changed = self.db.apply_changes(conn, "notebooks", row, changes)
            if tags is not None and self._set_tags(conn, notebook_id, owner_id, tags) and not changed:
                conn.execute("UPDATE notebooks SET updated_at = ? WHERE id = ?", (time_now(), notebook_id))
            row = conn.execute("SELECT * FROM notebooks WHERE id = ?", (notebook_id,)).fetchone()
            return self._hydrate(conn, [row])[0]

    def delete_owned(self, notebook_id: str, owner_id: str) -> None:
        with self.db.transaction() as conn:
            self.db.owned_row(conn, "notebooks", notebook_id, owner_id, NOTEBOOK_NOT_FOUND)
            conn.execute("DELETE FROM notebooks WHERE id = ?", (notebook_id,))

    def list_owned(self, owner_id: str, page: int, limit: int, query: Optional[str] = None,
                   tag: Optional[str] = None) -> Page:
        """One page of the owner's notebooks, optionally narrowed by a text query and a tag name."""
        where = "n.user_id = ?"
        params: Tuple[Any, ...] = (owner_id,)
        if query:
            pattern = f"%{query}%"
            where += " AND (n.title LIKE ? OR n.content LIKE ?)"
            params += (pattern, pattern)
        if tag:
            where += (
                " AND n.id IN (SELECT nt.notebook_id FROM notebooks_tags nt "
                "JOIN tags t ON t.id = nt.tag_id WHERE t.user_id = ? AND t.name = ?)"
            )
            params += (owner_id, tag)
        with self.db.read() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM notebooks n WHERE {where}", params).fetchone()[0]
            rows = _page_rows(
                conn,
                f"SELECT n.* FROM notebooks n WHERE {where} ORDER BY n.updated_at DESC, n.rowid DESC",
                params, page, limit, total,
            )
            return Page(self._hydrate(conn, rows), page, limit, total)

    def list_tags(self, owner_id: str) -> List[Tag]:
        with self.db.read() as conn:
            rows = conn.execute(
                "SELECT id, name FROM tags WHERE user_id = ? ORDER BY name", (owner_id,)
            ).fetchall()
        return [Tag(r["id"], r["name"]) for r in rows]

    # -------------------------------
    # Public lookups: the is_public filter is always part of the WHERE clause
    # -------------------------------

    _PUBLIC_SELECT = (
        "SELECT n.*, u.username AS author FROM notebooks n "
        "JOIN users u ON u.id = n.user_id WHERE n.is_public = 1"
    )

    def get_public(self, notebook_id: str) -> Notebook:
        with self.db.read() as conn:
            row = conn.execute(self._PUBLIC_SELECT + " AND n.id = ?", (notebook_id,)).fetchone()
            if row is None:
                raise NotFound(PUBLIC_NOTEBOOK_NOT_FOUND)
            return self._hydrate(conn, [row])[0]

    def list_public(self, page: int, limit: int, username: Optional[str] = None) -> Page:
        where, params = "", ()
        if username is not None:
            where, params = " AND u.username = ?", (username,)
        with self.db.read() as conn:
            total = conn.execute(
                "SELECT COUNT(*) FROM notebooks n JOIN users u ON u.id = n.user_id "
                "WHERE n.is_public = 1" + where,
                params,
            ).fetchone()[0]
            rows = _page_rows(
                conn,
                self._PUBLIC_SELECT + where + " ORDER BY n.updated_at DESC, n.rowid DESC",
                params, page, limit, total,
            )
            items = self._hydrate(conn, rows)
        return Page(items, page, limit, total)


class SubmissionStore:
    """Contact messages, feedback and newsletter subscriptions."""

    def __init__(self, db: Database):
        self.db = db

    def add_contact(self, name: str, email: str, subject: Optional[str], message: str,
                    owner_id: Optional[str]) -> str:
        submission_id = make_id("contact")
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT INTO contact_messages (id, name, email, subject, message, status, created_at, user_id) "
                "VALUES (?, ?, ?, ?, ?, 'new', ?, ?)",
                (submission_id, name, email, subject, message, time_now(), owner_id),
            )
        return submission_id

    def add_feedback(self, name: Optional[str], email: str, subject: Optional[str], message: str,
                     rating: Optional[int], owner_id: Optional[str]) -> str:
        submission_id = make_id("feedback")
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT INTO feedback (id, name, email, subject, message, rating, status, created_at, user_id) "
                "VALUES (?, ?, ?, ?, ?, ?, 'new', ?, ?)",
                (submission_id, name, email, subject, message, rating, time_now(), owner_id),
            )
        return submission_id

    def get(self, table: str, submission_id: str) -> Optional[sqlite3.Row]:
        if table not in ("contact_messages", "feedback"):
            raise ValueError(f"Unknown submission table {table!r}")
        with self.db.read() as conn:
            return conn.execute(f"SELECT * FROM {table} WHERE id = ?", (submission_id,)).fetchone()

    def subscribe(self, email: str, name: Optional[str]) -> str:
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT active FROM newsletter_subscriptions WHERE email = ?", (email,)
            ).fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO newsletter_subscriptions (id, email, name, active, created_at) "
                    "VALUES (?, ?, ?, 1, ?)",
                    (make_id("sub"), email, name, time_now()),
                )
                return "subscribed"
            if not row["active"]:
                conn.execute("UPDATE newsletter_subscriptions SET active = 1 WHERE email = ?", (email,))
                return "reactivated"
            return "already_subscribed"

    def unsubscribe(self, email: str) -> str:
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT active FROM newsletter_subscriptions WHERE email = ?", (email,)
            ).fetchone()
            if row is None:
                return "not_subscribed"
            conn.execute("UPDATE newsletter_subscriptions SET active = 0 WHERE email = ?", (email,))
            return "unsubscribed"
