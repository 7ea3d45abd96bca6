"""SQLite-backed configuration store.

Holds per-guild prefixes, the owner list, globally disabled commands and
per-command usage counters. Owner and disabled-command sets are cached in
memory so the policy engine can read them without suspending; every
write goes to the database first and updates the cache only on success.

Developers are not stored: the developer set comes from settings.yaml.
"""

import asyncio
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional

import structlog

from .config import MAX_PREFIX_LENGTH
from .exceptions import StoreError

logger = structlog.get_logger("switchboard.store")

# Schema version for migrations
SCHEMA_VERSION = 1


class ConfigStore:
    """Guild and bot configuration persisted in SQLite.

    Args:
        db_path: SQLite file location (parent directories are created).
        default_prefix: Prefix for guilds with none stored and for DMs.
        developers: Developer user ids from settings.
        seed_owners: Owners written on first initialization only.
    """

    def __init__(
        self,
        db_path: Path,
        default_prefix: str = "+",
        developers: Iterable[str] = (),
        seed_owners: Iterable[str] = (),
    ):
        self.db_path = db_path
        self.default_prefix = default_prefix
        self._developers: FrozenSet[str] = frozenset(developers)
        self._seed_owners = list(seed_owners)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = asyncio.Lock()

        self._owners: FrozenSet[str] = frozenset()
        self._disabled: FrozenSet[str] = frozenset()
        self._prefixes: Dict[str, Optional[str]] = {}

    # --- Lifecycle ---

    async def initialize(self) -> None:
        """Open the database, create the schema and load caches."""
        async with self._lock:
            await asyncio.to_thread(self._initialize_sync)

    def _initialize_sync(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._create_schema()

        cursor = self._conn.cursor()
        cursor.execute("SELECT value FROM meta WHERE key = 'owners_seeded'")
        if cursor.fetchone() is None:
            cursor.executemany(
                "INSERT OR IGNORE INTO owners (user_id) VALUES (?)",
                [(owner,) for owner in self._seed_owners],
            )
            cursor.execute("INSERT INTO meta (key, value) VALUES ('owners_seeded', '1')")
            self._conn.commit()
            logger.info("owners_seeded", count=len(self._seed_owners))

        cursor.execute("SELECT user_id FROM owners")
        self._owners = frozenset(row["user_id"] for row in cursor.fetchall())
        cursor.execute("SELECT name FROM disabled_commands")
        self._disabled = frozenset(row["name"] for row in cursor.fetchall())

        logger.info(
            "store_initialized",
            path=str(self.db_path),
            owners=len(self._owners),
            disabled=len(self._disabled),
        )

    def _create_schema(self) -> None:
        cursor = self._conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS meta (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS guilds (
                guild_id TEXT PRIMARY KEY,
                prefix TEXT,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS owners (
                user_id TEXT PRIMARY KEY,
                added_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS disabled_commands (
                name TEXT PRIMARY KEY,
                disabled_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS command_usage (
                name TEXT PRIMARY KEY,
                count INTEGER NOT NULL DEFAULT 0,
                last_used TIMESTAMP
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            )
        """)
        cursor.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,)
        )
        self._conn.commit()

    async def close(self) -> None:
        async with self._lock:
            if self._conn is not None:
                await asyncio.to_thread(self._conn.close)
                self._conn = None
        logger.info("store_closed")

    async def _run(self, operation: str, fn, *args):
        """Run a blocking DB function in a thread, serialized by the lock."""
        async with self._lock:
            if self._conn is None:
                raise StoreError("Store not initialized", operation=operation)
            try:
                return await asyncio.to_thread(fn, *args)
            except sqlite3.Error as e:
                logger.error("store_operation_failed", operation=operation, error=str(e))
                raise StoreError(str(e), operation=operation) from e

    # --- Prefixes ---

    async def get_prefix(self, origin_id: Optional[str]) -> str:
        """Prefix for a guild, falling back to the default.

        ``None`` (a direct-message origin) always gets the default. Store
        failures are logged and also fall back to the default.
        """
        if origin_id is None:
            return self.default_prefix
        if origin_id in self._prefixes:
            return self._prefixes[origin_id] or self.default_prefix
        try:
            prefix = await self._run("get_prefix", self._get_prefix_sync, origin_id)
        except StoreError:
            return self.default_prefix
        self._prefixes[origin_id] = prefix
        return prefix or self.default_prefix

    def _get_prefix_sync(self, guild_id: str) -> Optional[str]:
        row = self._conn.execute(
            "SELECT prefix FROM guilds WHERE guild_id = ?", (guild_id,)
        ).fetchone()
        return row["prefix"] if row else None

    async def set_prefix(self, guild_id: str, prefix: str) -> None:
        """Store a guild prefix (1 to 5 characters, no whitespace)."""
        prefix = prefix.strip()
        if not prefix or len(prefix) > MAX_PREFIX_LENGTH or any(ch.isspace() for ch in prefix):
            raise ValueError(
                f"Prefix must be 1-{MAX_PREFIX_LENGTH} characters without spaces"
            )
        await self._run("set_prefix", self._set_prefix_sync, guild_id, prefix)
        self._prefixes[guild_id] = prefix
        logger.info("prefix_changed", guild_id=guild_id, prefix=prefix)

    def _set_prefix_sync(self, guild_id: str, prefix: Optional[str]) -> None:
        self._conn.execute(
            """
            INSERT INTO guilds (guild_id, prefix, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(guild_id) DO UPDATE SET prefix = excluded.prefix,
                                                updated_at = excluded.updated_at
            """,
            (guild_id, prefix, datetime.now().isoformat()),
        )
        self._conn.commit()

    async def reset_prefix(self, guild_id: str) -> None:
        """Forget a guild's prefix so it uses the default again."""
        await self._run("reset_prefix", self._set_prefix_sync, guild_id, None)
        self._prefixes[guild_id] = None

    # --- Developers / owners ---

    def is_developer(self, user_id: str) -> bool:
        return user_id in self._developers

    def is_owner(self, user_id: str) -> bool:
        return user_id in self._owners

    @property
    def developers(self) -> FrozenSet[str]:
        return self._developers

    def list_owners(self) -> List[str]:
        return sorted(self._owners)

    async def add_owner(self, user_id: str) -> bool:
        """Add an owner. Returns False if already an owner."""
        if user_id in self._owners:
            return False
        await self._run("add_owner", self._execute_sync,
                        "INSERT OR IGNORE INTO owners (user_id) VALUES (?)", (user_id,))
        self._owners = self._owners | {user_id}
        logger.info("owner_added", user_id=user_id)
        return True

    async def remove_owner(self, user_id: str) -> bool:
        """Remove an owner. Returns False if not an owner."""
        if user_id not in self._owners:
            return False
        await self._run("remove_owner", self._execute_sync,
                        "DELETE FROM owners WHERE user_id = ?", (user_id,))
        self._owners = self._owners - {user_id}
        logger.info("owner_removed", user_id=user_id)
        return True

    # --- Disabled commands ---

    def get_disabled_commands(self) -> FrozenSet[str]:
        return self._disabled

    async def set_command_disabled(self, name: str, disabled: bool) -> bool:
        """Disable or re-enable a command globally. Returns True if changed."""
        name = name.strip().lower()
        if disabled == (name in self._disabled):
            return False
        if disabled:
            await self._run("disable_command", self._execute_sync,
                            "INSERT OR IGNORE INTO disabled_commands (name) VALUES (?)", (name,))
            self._disabled = self._disabled | {name}
        else:
            await self._run("enable_command", self._execute_sync,
                            "DELETE FROM disabled_commands WHERE name = ?", (name,))
            self._disabled = self._disabled - {name}
        logger.info("command_toggled", command=name, disabled=disabled)
        return True

    # --- Usage counters ---

    async def increment_command_usage(self, name: str) -> None:
        await self._run(
            "increment_command_usage",
            self._execute_sync,
            """
            INSERT INTO command_usage (name, count, last_used) VALUES (?, 1, ?)
            ON CONFLICT(name) DO UPDATE SET count = count + 1,
                                            last_used = excluded.last_used
            """,
            (name, datetime.now().isoformat()),
        )

    async def get_command_usage(self) -> Dict[str, int]:
        rows = await self._run("get_command_usage", self._fetchall_sync,
                               "SELECT name, count FROM command_usage ORDER BY count DESC", ())
        return {row["name"]: row["count"] for row in rows}

    # --- Sync helpers (run in worker thread) ---

    def _execute_sync(self, sql: str, params: tuple) -> None:
        self._conn.execute(sql, params)
        self._conn.commit()

    def _fetchall_sync(self, sql: str, params: tuple) -> list:
        return self._conn.execute(sql, params).fetchall()
