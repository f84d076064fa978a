"""Key-value preference stores for export settings and watermarks."""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path

import aiosqlite

CONFIGURATION_PREFIX = "custom_"
EXPORT_DATE_PREFIX = "export_date_"


def configuration_prefix(form_id: str) -> str:
    """Key prefix under which a form's configuration fields are stored."""
    return f"{CONFIGURATION_PREFIX}{form_id}_"


def export_date_key(form_id: str) -> str:
    """Key holding a form's last successful export date-time."""
    return f"{EXPORT_DATE_PREFIX}{form_id}"


class PreferenceStore(ABC):
    """Abstract base class for preference stores."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Get a stored value.

        Args:
            key: Preference key

        Returns:
            Stored value, or None if the key is absent
        """
        pass

    @abstractmethod
    async def put(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one.

        Args:
            key: Preference key
            value: Value to store
        """
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove a key. Removing an absent key is a no-op.

        Args:
            key: Preference key
        """
        pass


class InMemoryPreferenceStore(PreferenceStore):
    """Preference store kept in a dict, for tests and one-shot runs."""

    def __init__(self, values: dict[str, str] | None = None) -> None:
        self.values: dict[str, str] = dict(values or {})

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def put(self, key: str, value: str) -> None:
        self.values[key] = value

    async def remove(self, key: str) -> None:
        self.values.pop(key, None)


class SqlitePreferenceStore(PreferenceStore):
    """Preference store persisted in a single SQLite table."""

    def __init__(self, database_path: str) -> None:
        """Initialize store.

        Args:
            database_path: Path to SQLite database file
        """
        self.database_path = database_path
        self.conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Connect to database and create the preferences table."""
        if self.database_path != ":memory:":
            Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)

        self.conn = await aiosqlite.connect(self.database_path)
        await self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS preferences (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """
        )
        await self.conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self.conn:
            await self.conn.close()
            self.conn = None

    def _connection(self) -> aiosqlite.Connection:
        if not self.conn:
            raise RuntimeError("Preference store not connected")
        return self.conn

    async def get(self, key: str) -> str | None:
        cursor = await self._connection().execute(
            "SELECT value FROM preferences WHERE key = ?", (key,)
        )
        row = await cursor.fetchone()
        return row[0] if row else None

    async def put(self, key: str, value: str) -> None:
        conn = self._connection()
        async with self._write_lock:
            await conn.execute(
                """
                INSERT INTO preferences (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )
            await conn.commit()

    async def remove(self, key: str) -> None:
        conn = self._connection()
        async with self._write_lock:
            await conn.execute("DELETE FROM preferences WHERE key = ?", (key,))
            await conn.commit()
