"""
Repository pattern for data access.

Handles database operations for generations, avatars and usage logs.
Account balances are owned by the ledger (see ``avatar_studio.core.ledger``).
"""

import json
import sqlite3
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import (
    APPEARANCE_FIELDS,
    Avatar,
    ContentKind,
    Generation,
    UsageLogEntry,
)


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create all tables if they don't exist.

    ``usage_logs`` and ``ledger_entries`` are append-only ledgers.
    No UPDATE or DELETE operations should ever be performed on them.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS accounts (
                id TEXT PRIMARY KEY,
                balance INTEGER NOT NULL CHECK (balance >= 0),
                tier TEXT NOT NULL DEFAULT 'free',
                initial_balance INTEGER NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS ledger_entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                account_id TEXT NOT NULL REFERENCES accounts(id),
                request_id TEXT NOT NULL,
                entry_type TEXT NOT NULL,
                amount INTEGER NOT NULL CHECK (amount > 0),
                created_at TEXT NOT NULL,
                UNIQUE (request_id, entry_type)
            );

            CREATE TABLE IF NOT EXISTS avatars (
                id TEXT PRIMARY KEY,
                account_id TEXT NOT NULL REFERENCES accounts(id),
                name TEXT NOT NULL,
                style TEXT NOT NULL,
                description TEXT,
                gender TEXT,
                ethnicity TEXT,
                age TEXT,
                body_type TEXT,
                hair_style TEXT,
                hair_color TEXT,
                eye_color TEXT,
                fashion_style TEXT,
                primary_image_url TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS generations (
                id TEXT PRIMARY KEY,
                account_id TEXT NOT NULL REFERENCES accounts(id),
                avatar_id TEXT,
                kind TEXT NOT NULL,
                url TEXT NOT NULL,
                prompt TEXT NOT NULL,
                scene_description TEXT,
                style TEXT,
                extra_params TEXT NOT NULL DEFAULT '{}',
                request_id TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS usage_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                account_id TEXT NOT NULL REFERENCES accounts(id),
                action TEXT NOT NULL,
                credits_used INTEGER NOT NULL,
                detail TEXT NOT NULL,
                request_id TEXT NOT NULL UNIQUE,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_generations_account
                ON generations (account_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_usage_logs_account
                ON usage_logs (account_id, created_at);
        """)
    finally:
        conn.close()


def _row_to_generation(row: sqlite3.Row) -> Generation:
    return Generation(
        id=row["id"],
        account_id=row["account_id"],
        avatar_id=row["avatar_id"],
        kind=ContentKind(row["kind"]),
        url=row["url"],
        prompt=row["prompt"],
        scene_description=row["scene_description"],
        style=row["style"],
        extra_params=json.loads(row["extra_params"]),
        request_id=row["request_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_avatar(row: sqlite3.Row) -> Avatar:
    values = {name: row[name] for name in APPEARANCE_FIELDS}
    return Avatar(
        id=row["id"],
        account_id=row["account_id"],
        name=row["name"],
        style=row["style"],
        description=row["description"],
        primary_image_url=row["primary_image_url"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        **values,
    )


def _row_to_usage_entry(row: sqlite3.Row) -> UsageLogEntry:
    return UsageLogEntry(
        id=row["id"],
        account_id=row["account_id"],
        action=row["action"],
        credits_used=row["credits_used"],
        detail=json.loads(row["detail"]),
        request_id=row["request_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class ArtifactRepository:
    """Persistence and retrieval of generations and avatars.

    Generation rows are immutable once written; only hard deletes are allowed.
    Avatar rows are owned by a single account and are last-write-wins.
    """

    EDITABLE_AVATAR_FIELDS = frozenset(("name", "style", "description") + APPEARANCE_FIELDS)

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    # Generations

    def create_generation(
        self,
        account_id: str,
        kind: ContentKind,
        url: str,
        prompt: str,
        avatar_id: Optional[str] = None,
        scene_description: Optional[str] = None,
        style: Optional[str] = None,
        extra_params: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> Generation:
        """Persist a new generation; the store assigns id and created_at.

        Returns:
            The stored Generation
        """
        generation = Generation(
            id=str(uuid.uuid4()),
            account_id=account_id,
            avatar_id=avatar_id,
            kind=kind,
            url=url,
            prompt=prompt,
            scene_description=scene_description,
            style=style,
            extra_params=dict(extra_params or {}),
            request_id=request_id,
            created_at=datetime.now(),
        )
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO generations
                (id, account_id, avatar_id, kind, url, prompt,
                 scene_description, style, extra_params, request_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                generation.id,
                generation.account_id,
                generation.avatar_id,
                generation.kind.value,
                generation.url,
                generation.prompt,
                generation.scene_description,
                generation.style,
                json.dumps(generation.extra_params, sort_keys=True),
                generation.request_id,
                generation.created_at.isoformat(),
            ))
        finally:
            conn.close()
        return generation

    def get_generation(self, generation_id: str) -> Optional[Generation]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM generations WHERE id = ?", (generation_id,)
            ).fetchone()
            return _row_to_generation(row) if row else None
        finally:
            conn.close()

    def get_generation_by_request(self, request_id: str) -> Optional[Generation]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM generations WHERE request_id = ?", (request_id,)
            ).fetchone()
            return _row_to_generation(row) if row else None
        finally:
            conn.close()

    def list_generations(
        self,
        account_id: str,
        avatar_id: Optional[str] = None,
        kind: Optional[ContentKind] = None,
        limit: int = 100
    ) -> List[Generation]:
        """List an account's generations with optional filtering.

        Args:
            account_id: Owning account
            avatar_id: Optional filter for a specific avatar
            kind: Optional filter for content kind
            limit: Maximum number of generations to return

        Returns:
            List of generations ordered by creation time (newest first)
        """
        conn = get_connection(self.db_path)
        try:
            query = "SELECT * FROM generations WHERE account_id = ?"
            params: List[Any] = [account_id]

            if avatar_id:
                query += " AND avatar_id = ?"
                params.append(avatar_id)
            if kind is not None:
                query += " AND kind = ?"
                params.append(kind.value)

            query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
            params.append(limit)

            return [_row_to_generation(row) for row in conn.execute(query, params)]
        finally:
            conn.close()

    def delete_generation(self, generation_id: str) -> bool:
        """Hard delete a generation. Returns False if it did not exist."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("DELETE FROM generations WHERE id = ?", (generation_id,))
            return cursor.rowcount > 0
        finally:
            conn.close()

    # Avatars

    def create_avatar(
        self,
        account_id: str,
        name: str,
        style: str = "realistic",
        **attributes: Optional[str]
    ) -> Avatar:
        """Create an avatar for an account.

        Args:
            account_id: Owning account
            name: Display name
            style: Rendering style tag
            **attributes: Description and appearance fields

        Raises:
            ValueError: If an unknown attribute is supplied
        """
        unknown = set(attributes) - self.EDITABLE_AVATAR_FIELDS
        if unknown:
            raise ValueError(f"Unknown avatar fields: {sorted(unknown)}")

        now = datetime.now()
        avatar = Avatar(
            id=str(uuid.uuid4()),
            account_id=account_id,
            name=name,
            style=style,
            created_at=now,
            updated_at=now,
            **attributes,
        )
        columns = ["id", "account_id", "name", "style", "description",
                   *APPEARANCE_FIELDS, "created_at", "updated_at"]
        values = [getattr(avatar, column) for column in columns[:-2]]
        values += [now.isoformat(), now.isoformat()]

        conn = get_connection(self.db_path)
        try:
            conn.execute(
                f"INSERT INTO avatars ({', '.join(columns)}) "
                f"VALUES ({', '.join('?' for _ in columns)})",
                values,
            )
        finally:
            conn.close()
        return avatar

    def get_avatar(self, avatar_id: str) -> Optional[Avatar]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("SELECT * FROM avatars WHERE id = ?", (avatar_id,)).fetchone()
            return _row_to_avatar(row) if row else None
        finally:
            conn.close()

    def list_avatars(self, account_id: str) -> List[Avatar]:
        """List an account's avatars, most recently updated first."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM avatars WHERE account_id = ? "
                "ORDER BY updated_at DESC, rowid DESC",
                (account_id,),
            )
            return [_row_to_avatar(row) for row in rows]
        finally:
            conn.close()

    def update_avatar(self, avatar_id: str, **changes: Optional[str]) -> Optional[Avatar]:
        """Apply direct edits to an avatar.

        Returns:
            The updated avatar, or None if it does not exist

        Raises:
            ValueError: If a field is not editable
        """
        unknown = set(changes) - self.EDITABLE_AVATAR_FIELDS
        if unknown:
            raise ValueError(f"Unknown avatar fields: {sorted(unknown)}")
        if not changes:
            return self.get_avatar(avatar_id)

        assignments = ", ".join(f"{name} = ?" for name in changes)
        params = list(changes.values()) + [datetime.now().isoformat(), avatar_id]
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"UPDATE avatars SET {assignments}, updated_at = ? WHERE id = ?",
                params,
            )
            if cursor.rowcount == 0:
                return None
        finally:
            conn.close()
        return self.get_avatar(avatar_id)

    def update_avatar_primary_image(self, avatar_id: str, url: str) -> None:
        """Point an avatar at its latest image. Last write wins."""
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "UPDATE avatars SET primary_image_url = ?, updated_at = ? WHERE id = ?",
                (url, datetime.now().isoformat(), avatar_id),
            )
        finally:
            conn.close()

    def delete_avatar(self, avatar_id: str) -> bool:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("DELETE FROM avatars WHERE id = ?", (avatar_id,))
            return cursor.rowcount > 0
        finally:
            conn.close()


class UsageRepository:
    """Append-only access to the usage log."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def insert_entry(self, entry: UsageLogEntry) -> int:
        """Insert a usage entry, ignoring a duplicate for the same request.

        The request id is unique, so replaying an entry after an ambiguous
        failure never produces a second row.

        Args:
            entry: The usage entry to record

        Returns:
            Row id of the stored entry for this request
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT OR IGNORE INTO usage_logs
                (account_id, action, credits_used, detail, request_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                entry.account_id,
                entry.action,
                entry.credits_used,
                json.dumps(entry.detail, sort_keys=True),
                entry.request_id,
                entry.created_at.isoformat(),
            ))
            row = conn.execute(
                "SELECT id FROM usage_logs WHERE request_id = ?", (entry.request_id,)
            ).fetchone()
            return row["id"]
        finally:
            conn.close()

    def fetch_entries(
        self,
        account_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 100
    ) -> List[UsageLogEntry]:
        """Fetch usage entries, newest first, optionally filtered."""
        conn = get_connection(self.db_path)
        try:
            query = "SELECT * FROM usage_logs"
            params: List[Any] = []
            conditions = []

            if account_id:
                conditions.append("account_id = ?")
                params.append(account_id)
            if action:
                conditions.append("action = ?")
                params.append(action)

            if conditions:
                query += " WHERE " + " AND ".join(conditions)

            query += " ORDER BY created_at DESC, id DESC LIMIT ?"
            params.append(limit)

            return [_row_to_usage_entry(row) for row in conn.execute(query, params)]
        finally:
            conn.close()

    def total_credits_used(self, account_id: str) -> int:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT COALESCE(SUM(credits_used), 0) AS total FROM usage_logs WHERE account_id = ?",
                (account_id,),
            ).fetchone()
            return row["total"]
        finally:
            conn.close()
