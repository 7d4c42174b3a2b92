"""SQLite-based storage for persons, faces, social platform configs and analysis results."""
from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..core.models import BoundingRect, Face, Person, SocialPlatform


class SQLiteRepository:
    """SQLite implementation of the person and platform repositories.

    One connection shared across threads; every statement runs under an
    internal lock. Callers that need multi-statement atomicity (the identity
    registry) serialize on their own lock as well.
    """

    def __init__(self, db_path: Path):
        """Initialize repository with database path.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_database()

    def _init_database(self) -> None:
        """Create tables if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")

        cursor = self._conn.cursor()

        # Persons, listed in insertion (rowid) order
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS persons (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                created_at TEXT NOT NULL,
                modified_at TEXT NOT NULL
            )
        """)

        # Faces belong to exactly one person
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS faces (
                id TEXT PRIMARY KEY,
                person_id TEXT NOT NULL REFERENCES persons(id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                source_image TEXT NOT NULL,
                x INTEGER NOT NULL,
                y INTEGER NOT NULL,
                width INTEGER NOT NULL,
                height INTEGER NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_faces_person
            ON faces(person_id, position)
        """)

        # Social platform connection state
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS platforms (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                connected INTEGER NOT NULL DEFAULT 0,
                access_token TEXT,
                refresh_token TEXT,
                expires_at INTEGER
            )
        """)

        # Provider output per file; one row per (provider, path), replaced
        # when the file or the provider options change
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS analysis_results (
                provider TEXT NOT NULL,
                path TEXT NOT NULL,
                mtime_ns INTEGER NOT NULL,
                size INTEGER NOT NULL,
                options TEXT NOT NULL,
                payload TEXT NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (provider, path)
            )
        """)

        self._conn.commit()

        # Run migrations for existing databases
        self._migrate_schema()

    def _migrate_schema(self) -> None:
        """Apply schema migrations to existing databases."""
        assert self._conn is not None
        cursor = self._conn.cursor()

        cursor.execute("PRAGMA table_info(platforms)")
        columns = {row[1] for row in cursor.fetchall()}

        # Add scope column if missing
        if "scope" not in columns:
            cursor.execute("ALTER TABLE platforms ADD COLUMN scope TEXT")

        self._conn.commit()

    # --- Persons ---

    def load_persons(self) -> list[Person]:
        """Load all persons with their faces, in creation order."""
        assert self._conn is not None
        with self._lock:
            cursor = self._conn.cursor()
            cursor.execute("SELECT * FROM faces ORDER BY person_id, position")
            faces_by_person: dict[str, list[Face]] = {}
            for row in cursor.fetchall():
                faces_by_person.setdefault(row["person_id"], []).append(self._row_to_face(row))

            cursor.execute("SELECT * FROM persons ORDER BY rowid")
            return [
                Person(
                    id=row["id"],
                    name=row["name"],
                    faces=tuple(faces_by_person.get(row["id"], [])),
                    created_at=datetime.fromisoformat(row["created_at"]),
                    modified_at=datetime.fromisoformat(row["modified_at"]),
                )
                for row in cursor.fetchall()
            ]

    def save_person(self, person: Person) -> None:
        """Insert or update a person and replace its face list."""
        assert self._conn is not None
        with self._lock:
            cursor = self._conn.cursor()
            # Upsert keeps the rowid, so creation order survives renames
            cursor.execute("""
                INSERT INTO persons (id, name, created_at, modified_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    modified_at = excluded.modified_at
            """, (
                person.id,
                person.name,
                person.created_at.isoformat(),
                person.modified_at.isoformat(),
            ))

            cursor.execute("DELETE FROM faces WHERE person_id = ?", (person.id,))
            cursor.executemany("""
                INSERT INTO faces (id, person_id, position, source_image, x, y, width, height)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, [
                (
                    face.id,
                    person.id,
                    position,
                    face.source_image,
                    face.bounding_rect.x,
                    face.bounding_rect.y,
                    face.bounding_rect.width,
                    face.bounding_rect.height,
                )
                for position, face in enumerate(person.faces)
            ])
            self._conn.commit()

    def delete_person(self, person_id: str) -> None:
        """Delete a person; faces go with it (ON DELETE CASCADE)."""
        assert self._conn is not None
        with self._lock:
            self._conn.execute("DELETE FROM persons WHERE id = ?", (person_id,))
            self._conn.commit()

    def count_faces(self) -> int:
        """Count total face records in database."""
        assert self._conn is not None
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM faces").fetchone()[0]

    # --- Platforms ---

    def load_platforms(self) -> list[SocialPlatform]:
        """Load all platform configs in insertion order."""
        assert self._conn is not None
        with self._lock:
            cursor = self._conn.cursor()
            cursor.execute("SELECT * FROM platforms ORDER BY rowid")
            return [self._row_to_platform(row) for row in cursor.fetchall()]

    def save_platform(self, platform: SocialPlatform) -> None:
        """Insert or update a platform config."""
        assert self._conn is not None
        with self._lock:
            self._conn.execute("""
                INSERT INTO platforms (id, name, connected, access_token, refresh_token, expires_at, scope)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    connected = excluded.connected,
                    access_token = excluded.access_token,
                    refresh_token = excluded.refresh_token,
                    expires_at = excluded.expires_at,
                    scope = excluded.scope
            """, (
                platform.id,
                platform.name,
                int(platform.connected),
                platform.access_token,
                platform.refresh_token,
                platform.expires_at,
                json.dumps(list(platform.scope)),
            ))
            self._conn.commit()

    def delete_platform(self, platform_id: str) -> None:
        """Delete a platform config."""
        assert self._conn is not None
        with self._lock:
            self._conn.execute("DELETE FROM platforms WHERE id = ?", (platform_id,))
            self._conn.commit()

    # --- Analysis results ---

    def load_result(
        self,
        provider: str,
        path: str,
        mtime_ns: int,
        size: int,
        options: str,
    ) -> Optional[dict]:
        """Stored payload for a file, or None if missing or stale."""
        assert self._conn is not None
        with self._lock:
            row = self._conn.execute("""
                SELECT payload FROM analysis_results
                WHERE provider = ? AND path = ? AND mtime_ns = ? AND size = ? AND options = ?
            """, (provider, path, mtime_ns, size, options)).fetchone()
        return json.loads(row["payload"]) if row else None

    def save_result(
        self,
        provider: str,
        path: str,
        mtime_ns: int,
        size: int,
        options: str,
        payload: dict,
    ) -> None:
        """Insert or replace the payload for a file."""
        assert self._conn is not None
        with self._lock:
            self._conn.execute("""
                INSERT OR REPLACE INTO analysis_results
                    (provider, path, mtime_ns, size, options, payload, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (provider, path, mtime_ns, size, options, json.dumps(payload), datetime.now().isoformat()))
            self._conn.commit()

    def clear_results(self, provider: Optional[str] = None) -> int:
        """Delete stored results, for one provider or all. Returns rows removed."""
        assert self._conn is not None
        with self._lock:
            if provider is None:
                cursor = self._conn.execute("DELETE FROM analysis_results")
            else:
                cursor = self._conn.execute("DELETE FROM analysis_results WHERE provider = ?", (provider,))
            self._conn.commit()
            return cursor.rowcount

    def count_results(self) -> int:
        assert self._conn is not None
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM analysis_results").fetchone()[0]

    # --- Lifecycle ---

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _row_to_face(self, row: sqlite3.Row) -> Face:
        """Convert database row to Face."""
        return Face(
            id=row["id"],
            source_image=row["source_image"],
            bounding_rect=BoundingRect(
                x=row["x"],
                y=row["y"],
                width=row["width"],
                height=row["height"],
            ),
        )

    def _row_to_platform(self, row: sqlite3.Row) -> SocialPlatform:
        """Convert database row to SocialPlatform."""
        scope: tuple[str, ...] = ()
        if row["scope"]:
            try:
                scope = tuple(json.loads(row["scope"]))
            except json.JSONDecodeError:
                scope = ()

        return SocialPlatform(
            id=row["id"],
            name=row["name"],
            connected=bool(row["connected"]),
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            expires_at=row["expires_at"],
            scope=scope,
        )

    def __enter__(self) -> "SQLiteRepository":
        return self

    def __exit__(self, *args) -> None:
        self.close()
