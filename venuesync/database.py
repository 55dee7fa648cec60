"""
Database module for venuesync.

Handles SQLite database initialization, schema creation, connection management
and the typed repositories the rest of the service reads and writes through.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .errors import Conflict, InvalidPayload, NotFound, StoreUnavailable
from .models import (
    ActivityLogEntry,
    ConfigEntry,
    PlayerSettings,
    Track,
    User,
    Venue,
    VenueState,
    from_iso,
    to_iso,
    utcnow,
)

# Columns per collection; generic document access is limited to these
COLLECTIONS = {
    "venues": (
        "id",
        "owner_id",
        "name",
        "state",
        "now_playing_json",
        "current_time_seconds",
        "volume",
        "active_queue_json",
        "priority_queue_json",
        "history_json",
        "is_shuffled",
        "player_settings_json",
        "last_heartbeat_at",
        "last_updated_at",
        "created_at",
        "version",
    ),
    "users": (
        "id",
        "email",
        "venue_id",
        "role",
        "is_active",
        "created_at",
        "last_activity_at",
    ),
    "activity_log": (
        "id",
        "user_id",
        "venue_id",
        "event_type",
        "event_data_json",
        "timestamp",
    ),
}


class Database:
    """Manages SQLite database connection and schema."""

    def __init__(self, db_path: Optional[str] = None, timeout: float = 5.0):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file. If None, uses ~/.venuesync/venuesync.db
            timeout: Seconds to wait on a locked database before giving up
        """
        self.logger = logging.getLogger(__name__)

        if db_path is None:
            home_dir = Path.home() / ".venuesync"
            home_dir.mkdir(exist_ok=True)
            db_path = str(home_dir / "venuesync.db")

        self.db_path = db_path
        self.timeout = timeout
        self._ensure_schema()
        self.logger.info("Database initialized at %s", self.db_path)

    def _ensure_schema(self):
        """Ensure database schema exists."""
        with self.transaction() as conn:
            cursor = conn.cursor()

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS venues (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    name TEXT NOT NULL DEFAULT '',
                    state TEXT NOT NULL DEFAULT 'idle',
                    now_playing_json TEXT,
                    current_time_seconds REAL NOT NULL DEFAULT 0,
                    volume INTEGER NOT NULL DEFAULT 80,
                    active_queue_json TEXT NOT NULL DEFAULT '[]',
                    priority_queue_json TEXT NOT NULL DEFAULT '[]',
                    history_json TEXT NOT NULL DEFAULT '[]',
                    is_shuffled INTEGER NOT NULL DEFAULT 0,
                    player_settings_json TEXT NOT NULL DEFAULT '{}',
                    last_heartbeat_at TEXT,
                    last_updated_at TEXT,
                    created_at TEXT,
                    version INTEGER NOT NULL DEFAULT 0
                )
                """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT,
                    venue_id TEXT,
                    role TEXT NOT NULL DEFAULT 'user',
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT,
                    last_activity_at TEXT
                )
                """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS activity_log (
                    id TEXT PRIMARY KEY,
                    user_id TEXT,
                    venue_id TEXT,
                    event_type TEXT NOT NULL,
                    event_data_json TEXT NOT NULL DEFAULT '{}',
                    timestamp TEXT NOT NULL
                )
                """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS config (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_venues_owner
                ON venues(owner_id)
                """
            )

            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_venues_heartbeat
                ON venues(last_heartbeat_at)
                """
            )

            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_activity_log_timestamp
                ON activity_log(timestamp)
                """
            )

            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_activity_log_venue_timestamp
                ON activity_log(venue_id, timestamp DESC)
                """
            )

            self._run_migrations(conn)

        self.logger.debug("Database schema created/verified")

    def _run_migrations(self, conn):
        """Run database migrations."""
        cursor = conn.cursor()

        # Migration: venues created before "previous" support have no history column
        cursor.execute("PRAGMA table_info(venues)")
        columns = [row[1] for row in cursor.fetchall()]

        if "history_json" not in columns:
            self.logger.info("Migrating database: adding venues.history_json column")
            cursor.execute(
                "ALTER TABLE venues ADD COLUMN history_json TEXT NOT NULL DEFAULT '[]'"
            )

    def get_connection(self) -> sqlite3.Connection:
        """
        Get a new database connection.

        Each caller gets its own connection and is responsible for closing it.
        """
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout, check_same_thread=False)
        except sqlite3.OperationalError as e:
            raise StoreUnavailable(f"Cannot open database: {e}") from e
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block in a single transaction.

        Commits on success and rolls back on any exception. sqlite operational
        failures (locked, busy, I/O) surface as StoreUnavailable.
        """
        conn = self.get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            self.logger.error("Database operation failed: %s", e)
            raise StoreUnavailable(f"Database unavailable: {e}") from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    # =========================================================================
    # Generic document access
    # =========================================================================

    @staticmethod
    def _columns(collection: str, data: Dict[str, Any]) -> List[str]:
        if collection not in COLLECTIONS:
            raise InvalidPayload(f"Unknown collection: {collection}")
        unknown = set(data) - set(COLLECTIONS[collection])
        if unknown:
            raise InvalidPayload(
                f"Unknown attribute(s) for {collection}: {', '.join(sorted(unknown))}"
            )
        return list(data)

    def get_document(
        self, collection: str, doc_id: str, conn: Optional[sqlite3.Connection] = None
    ) -> Optional[Dict[str, Any]]:
        """Get one document by id, or None."""
        self._columns(collection, {})
        with self._using(conn) as c:
            row = c.execute(f"SELECT * FROM {collection} WHERE id = ?", (doc_id,)).fetchone()
            return dict(row) if row else None

    def list_documents(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        List documents matching equality filters.

        Args:
            collection: Collection name
            filters: Column/value pairs that must all match
            order_by: Column to sort by, prefix with '-' for descending
            limit: Maximum number of documents
        """
        filters = filters or {}
        columns = self._columns(collection, filters)
        sql = f"SELECT * FROM {collection}"
        params: List[Any] = []
        if columns:
            sql += " WHERE " + " AND ".join(f"{col} = ?" for col in columns)
            params.extend(filters[col] for col in columns)
        if order_by:
            descending = order_by.startswith("-")
            column = order_by.lstrip("-")
            self._columns(collection, {column: None})
            sql += f" ORDER BY {column} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._using(None) as c:
            return [dict(row) for row in c.execute(sql, params).fetchall()]

    def create_document(
        self,
        collection: str,
        doc_id: str,
        data: Dict[str, Any],
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        row = dict(data, id=doc_id)
        columns = self._columns(collection, row)
        placeholders = ", ".join("?" for _ in columns)
        with self._using(conn) as c:
            c.execute(
                f"INSERT INTO {collection} ({', '.join(columns)}) VALUES ({placeholders})",
                [row[col] for col in columns],
            )

    def update_document(
        self,
        collection: str,
        doc_id: str,
        data: Dict[str, Any],
        conn: Optional[sqlite3.Connection] = None,
    ) -> bool:
        """Update fields of a document. Returns False if it does not exist."""
        columns = self._columns(collection, data)
        if not columns:
            return self.get_document(collection, doc_id, conn) is not None
        assignments = ", ".join(f"{col} = ?" for col in columns)
        with self._using(conn) as c:
            cursor = c.execute(
                f"UPDATE {collection} SET {assignments} WHERE id = ?",
                [data[col] for col in columns] + [doc_id],
            )
            return cursor.rowcount > 0

    def delete_document(
        self, collection: str, doc_id: str, conn: Optional[sqlite3.Connection] = None
    ) -> bool:
        self._columns(collection, {})
        with self._using(conn) as c:
            cursor = c.execute(f"DELETE FROM {collection} WHERE id = ?", (doc_id,))
            return cursor.rowcount > 0

    @contextmanager
    def _using(self, conn: Optional[sqlite3.Connection]) -> Iterator[sqlite3.Connection]:
        """Reuse the caller's transaction, or open a short one."""
        if conn is not None:
            yield conn
        else:
            with self.transaction() as own:
                yield own

    def close(self):
        """Close database connection (no-op since connections are per call)."""
        pass

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


# =============================================================================
# Repositories
# =============================================================================


def _dump_tracks(tracks: List[Track]) -> str:
    return json.dumps([track.to_dict() for track in tracks])


def _load_tracks(raw: Optional[str]) -> List[Track]:
    if not raw:
        return []
    return [Track.from_dict(item) for item in json.loads(raw)]


class VenueRepository:
    """Typed access to the venues collection with optimistic versioning."""

    def __init__(self, database: Database):
        self.database = database
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _to_row(venue: Venue) -> Dict[str, Any]:
        return {
            "owner_id": venue.owner_id,
            "name": venue.name,
            "state": venue.state.value,
            "now_playing_json": json.dumps(venue.now_playing.to_dict())
            if venue.now_playing
            else None,
            "current_time_seconds": venue.current_time_seconds,
            "volume": venue.volume,
            "active_queue_json": _dump_tracks(venue.active_queue),
            "priority_queue_json": _dump_tracks(venue.priority_queue),
            "history_json": _dump_tracks(venue.history),
            "is_shuffled": 1 if venue.is_shuffled else 0,
            "player_settings_json": json.dumps(venue.player_settings.to_dict()),
            "last_heartbeat_at": to_iso(venue.last_heartbeat_at),
            "last_updated_at": to_iso(venue.last_updated_at),
            "created_at": to_iso(venue.created_at),
            "version": venue.version,
        }

    @staticmethod
    def _from_row(row: Dict[str, Any]) -> Venue:
        now_playing = row.get("now_playing_json")
        return Venue(
            id=row["id"],
            owner_id=row["owner_id"],
            name=row["name"] or "",
            state=VenueState(row["state"]),
            now_playing=Track.from_dict(json.loads(now_playing)) if now_playing else None,
            current_time_seconds=row["current_time_seconds"] or 0.0,
            volume=row["volume"],
            active_queue=_load_tracks(row["active_queue_json"]),
            priority_queue=_load_tracks(row["priority_queue_json"]),
            history=_load_tracks(row.get("history_json")),
            is_shuffled=bool(row["is_shuffled"]),
            player_settings=PlayerSettings.from_dict(json.loads(row["player_settings_json"] or "{}")),
            last_heartbeat_at=from_iso(row["last_heartbeat_at"]),
            last_updated_at=from_iso(row["last_updated_at"]),
            created_at=from_iso(row["created_at"]),
            version=row["version"],
        )

    def create(self, venue: Venue, conn: Optional[sqlite3.Connection] = None) -> Venue:
        self.database.create_document("venues", venue.id, self._to_row(venue), conn)
        return venue

    def get(self, venue_id: str) -> Optional[Venue]:
        row = self.database.get_document("venues", venue_id)
        return self._from_row(row) if row else None

    def list(self, owner_id: Optional[str] = None) -> List[Venue]:
        filters = {"owner_id": owner_id} if owner_id else None
        return [
            self._from_row(row)
            for row in self.database.list_documents("venues", filters, order_by="created_at")
        ]

    def save(
        self,
        venue: Venue,
        expected_version: int,
        activity: Optional[ActivityLogEntry] = None,
    ) -> Venue:
        """
        Persist a venue if nobody else wrote it since expected_version.

        The venue update and the activity entry are written in the same
        transaction, so either both persist or neither does.

        Raises:
            NotFound: venue does not exist
            Conflict: venue was modified concurrently
        """
        row = self._to_row(venue)
        row["version"] = expected_version + 1
        assignments = ", ".join(f"{col} = ?" for col in row)

        with self.database.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE venues SET {assignments} WHERE id = ? AND version = ?",
                list(row.values()) + [venue.id, expected_version],
            )
            if cursor.rowcount == 0:
                if self.database.get_document("venues", venue.id, conn) is None:
                    raise NotFound(f"Venue {venue.id} not found")
                raise Conflict(
                    f"Venue {venue.id} changed since version {expected_version}",
                    venue_id=venue.id,
                )
            if activity is not None:
                ActivityLogRepository(self.database).append(activity, conn)

        saved = venue.copy()
        saved.version = expected_version + 1
        return saved

    def record_heartbeat(self, venue_id: str, at: datetime) -> Venue:
        """
        Stamp a heartbeat and revive an inactive venue.

        Touches only the heartbeat, state and version columns so it never
        races the queue read-modify-write of a command.
        """
        stamp = to_iso(at)
        with self.database.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE venues
                SET last_heartbeat_at = ?,
                    state = CASE WHEN state = ? THEN ? ELSE state END,
                    last_updated_at = CASE WHEN state = ? THEN ? ELSE last_updated_at END,
                    version = version + 1
                WHERE id = ?
                """,
                (
                    stamp,
                    VenueState.INACTIVE.value,
                    VenueState.READY.value,
                    VenueState.INACTIVE.value,
                    stamp,
                    venue_id,
                ),
            )
            if cursor.rowcount == 0:
                raise NotFound(f"Venue {venue_id} not found")
            row = self.database.get_document("venues", venue_id, conn)
        return self._from_row(row)

    def mark_stale_inactive(self, cutoff: datetime, now: datetime) -> List[str]:
        """
        Mark every venue whose last heartbeat is older than cutoff as inactive.

        Returns:
            IDs of the venues that changed state
        """
        params = (to_iso(cutoff), VenueState.INACTIVE.value)
        where = "(last_heartbeat_at IS NULL OR last_heartbeat_at < ?) AND state != ?"
        with self.database.transaction() as conn:
            ids = [row["id"] for row in conn.execute(f"SELECT id FROM venues WHERE {where}", params)]
            if ids:
                conn.execute(
                    f"""
                    UPDATE venues
                    SET state = ?, last_updated_at = ?, version = version + 1
                    WHERE {where}
                    """,
                    (VenueState.INACTIVE.value, to_iso(now)) + params,
                )
        return ids


class UserRepository:
    """Typed access to the users collection."""

    def __init__(self, database: Database):
        self.database = database

    @staticmethod
    def _from_row(row: Dict[str, Any]) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            venue_id=row["venue_id"],
            role=row["role"],
            is_active=bool(row["is_active"]),
            created_at=from_iso(row["created_at"]),
            last_activity_at=from_iso(row["last_activity_at"]),
        )

    def get_by_id(self, user_id: str) -> Optional[User]:
        row = self.database.get_document("users", user_id)
        return self._from_row(row) if row else None

    def create(self, user: User, conn: Optional[sqlite3.Connection] = None) -> User:
        self.database.create_document(
            "users",
            user.id,
            {
                "email": user.email,
                "venue_id": user.venue_id,
                "role": user.role,
                "is_active": 1 if user.is_active else 0,
                "created_at": to_iso(user.created_at),
                "last_activity_at": to_iso(user.last_activity_at),
            },
            conn,
        )
        return user

    def touch(self, user_id: str, at: datetime, role: Optional[str] = None) -> bool:
        """Record activity, re-activating the user if the sweep marked them inactive."""
        data: Dict[str, Any] = {"last_activity_at": to_iso(at), "is_active": 1}
        if role:
            data["role"] = role
        return self.database.update_document("users", user_id, data)

    def mark_inactive_before(self, cutoff: datetime) -> int:
        with self.database.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE users SET is_active = 0
                WHERE is_active = 1 AND last_activity_at < ?
                """,
                (to_iso(cutoff),),
            )
            return cursor.rowcount


class ActivityLogRepository:
    """Append-only access to the activity_log collection."""

    def __init__(self, database: Database):
        self.database = database
        self.logger = logging.getLogger(__name__)

    def _decode(self, raw: Optional[str]) -> Dict[str, Any]:
        if not raw:
            return {}
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            self.logger.warning("Failed to decode event data JSON: %s", raw)
            return {}

    def append(self, entry: ActivityLogEntry, conn: Optional[sqlite3.Connection] = None) -> None:
        self.database.create_document(
            "activity_log",
            entry.id,
            {
                "user_id": entry.user_id,
                "venue_id": entry.venue_id,
                "event_type": entry.event_type,
                "event_data_json": json.dumps(entry.event_data, default=str),
                "timestamp": to_iso(entry.timestamp or utcnow()),
            },
            conn,
        )

    def list(
        self,
        venue_id: Optional[str] = None,
        user_id: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[ActivityLogEntry]:
        """List entries newest first."""
        filters = {
            key: value
            for key, value in (
                ("venue_id", venue_id),
                ("user_id", user_id),
                ("event_type", event_type),
            )
            if value is not None
        }
        rows = self.database.list_documents(
            "activity_log", filters, order_by="-timestamp", limit=limit
        )
        return [
            ActivityLogEntry(
                id=row["id"],
                user_id=row["user_id"],
                venue_id=row["venue_id"],
                event_type=row["event_type"],
                event_data=self._decode(row["event_data_json"]),
                timestamp=from_iso(row["timestamp"]),
            )
            for row in rows
        ]

    def delete_before(self, cutoff: datetime) -> int:
        with self.database.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM activity_log WHERE timestamp < ?", (to_iso(cutoff),)
            )
            return cursor.rowcount


class ConfigRepository:
    """Key/value access to the config table."""

    def __init__(self, database: Database):
        self.database = database

    def get(self, key: str) -> Optional[ConfigEntry]:
        with self.database.transaction() as conn:
            row = conn.execute(
                "SELECT key, value, updated_at FROM config WHERE key = ?", (key,)
            ).fetchone()
        if not row:
            return None
        return ConfigEntry(key=row["key"], value=row["value"])

    def set(self, key: str, value: str) -> bool:
        with self.database.transaction() as conn:
            conn.execute(
                """
                INSERT INTO config (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (key, value),
            )
        return True

    def get_all(self) -> List[ConfigEntry]:
        with self.database.transaction() as conn:
            rows = conn.execute("SELECT key, value FROM config ORDER BY key").fetchall()
        return [ConfigEntry(key=row["key"], value=row["value"]) for row in rows]

    def initialize_defaults(self, defaults: Dict[str, Any]) -> None:
        """Insert defaults for keys that have never been set."""
        with self.database.transaction() as conn:
            for key, value in defaults.items():
                if value is None:
                    continue
                conn.execute(
                    "INSERT OR IGNORE INTO config (key, value) VALUES (?, ?)",
                    (key, str(value)),
                )
