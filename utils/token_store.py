import asyncio
import os
import aiosqlite
from typing import Optional, Dict, List, Tuple
from contextlib import asynccontextmanager

from utils.tokens import TokenState


class TokenStore:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self.state_cache: Dict[int, TokenState] = {}
        self.db_pool: Optional[asyncio.Queue] = None
        self._user_locks: Dict[int, asyncio.Lock] = {}

    async def init_pools(self, pool_size: int = 5):
        if self.db_pool is None:
            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            self.db_pool = asyncio.Queue(maxsize=pool_size)
            for _ in range(pool_size):
                conn = await aiosqlite.connect(
                    self.db_path,
                    timeout=5,
                )
                await conn.execute("PRAGMA busy_timeout=5000")
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute("PRAGMA synchronous = NORMAL")
                await conn.commit()
                await self.db_pool.put(conn)

    @asynccontextmanager
    async def acquire_db(self):
        if self.db_pool is None:
            await self.init_pools()
        conn = await self.db_pool.get()
        try:
            yield conn
        finally:
            await self.db_pool.put(conn)

    async def close(self):
        if self.db_pool is not None:
            while not self.db_pool.empty():
                conn = self.db_pool.get_nowait()
                await conn.close()
            self.db_pool = None

    def lock_for(self, user_id: int) -> asyncio.Lock:
        """Serialises load-evaluate-save for one user."""
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = self._user_locks[user_id] = asyncio.Lock()
        return lock

    async def init_db(self):
        async with self.acquire_db() as db:
            await db.execute('''
                             CREATE TABLE IF NOT EXISTS token_states
                             (
                                 user_id INTEGER PRIMARY KEY,
                                 guild_id INTEGER,
                                 count INTEGER NOT NULL,
                                 refresh_time INTEGER NOT NULL,
                                 last_bomb_at INTEGER,
                                 updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                             )
                             ''')
            await db.execute('''
                             CREATE TABLE IF NOT EXISTS token_usage
                             (
                                 user_id INTEGER,
                                 used_at INTEGER
                             )
                             ''')
            await db.execute('CREATE INDEX IF NOT EXISTS idx_token_states_guild ON token_states(guild_id)')
            await db.execute('CREATE INDEX IF NOT EXISTS idx_token_usage_user ON token_usage(user_id, used_at)')
            await db.commit()

    async def populate_cache(self):
        self.state_cache.clear()
        async with self.acquire_db() as db:
            async with db.execute("SELECT user_id, count, refresh_time FROM token_states") as cursor:
                rows = await cursor.fetchall()
                for user_id, count, refresh_time in rows:
                    self.state_cache[user_id] = TokenState(count, refresh_time)

    async def load(self, user_id: int) -> Optional[TokenState]:
        if user_id in self.state_cache:
            return self.state_cache[user_id]

        async with self.acquire_db() as db:
            async with db.execute(
                    "SELECT count, refresh_time FROM token_states WHERE user_id = ?", (user_id,)) as cursor:
                row = await cursor.fetchone()
                if row:
                    state = TokenState(row[0], row[1])
                    self.state_cache[user_id] = state
                    return state
        return None

    async def save(self, user_id: int, state: TokenState, guild_id: Optional[int] = None):
        async with self.acquire_db() as db:
            await db.execute(
                """
                INSERT INTO token_states (user_id, guild_id, count, refresh_time)
                VALUES (?, ?, ?, ?) ON CONFLICT(user_id) DO
                UPDATE SET
                    guild_id = COALESCE(excluded.guild_id, token_states.guild_id),
                    count = excluded.count,
                    refresh_time = excluded.refresh_time,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (user_id, guild_id, state.count, state.refresh_time)
            )
            await db.commit()
        self.state_cache[user_id] = state

    async def record_usage(self, user_id: int, used_at: int):
        async with self.acquire_db() as db:
            await db.execute("INSERT INTO token_usage (user_id, used_at) VALUES (?, ?)", (user_id, used_at))
            await db.commit()

    async def usage_since(self, user_id: int, since: int) -> List[int]:
        async with self.acquire_db() as db:
            async with db.execute(
                    "SELECT used_at FROM token_usage WHERE user_id = ? AND used_at >= ? ORDER BY used_at",
                    (user_id, since)) as cursor:
                rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def record_bomb(self, user_id: int, used_at: int) -> bool:
        """Returns False when the user has no token row to attach the bomb to."""
        async with self.acquire_db() as db:
            cursor = await db.execute(
                "UPDATE token_states SET last_bomb_at = ?, updated_at = CURRENT_TIMESTAMP WHERE user_id = ?",
                (used_at, user_id)
            )
            await db.commit()
            return cursor.rowcount > 0

    async def last_bomb(self, user_id: int) -> Optional[int]:
        async with self.acquire_db() as db:
            async with db.execute("SELECT last_bomb_at FROM token_states WHERE user_id = ?", (user_id,)) as cursor:
                row = await cursor.fetchone()
        return row[0] if row else None

    async def guild_states(self, guild_id: int) -> List[Tuple[int, TokenState, Optional[int]]]:
        async with self.acquire_db() as db:
            async with db.execute(
                    "SELECT user_id, count, refresh_time, last_bomb_at FROM token_states WHERE guild_id = ? ORDER BY user_id",
                    (guild_id,)) as cursor:
                rows = await cursor.fetchall()
        return [(user_id, TokenState(count, refresh_time), last_bomb_at)
                for user_id, count, refresh_time, last_bomb_at in rows]

    async def delete(self, user_id: int):
        async with self.acquire_db() as db:
            await db.execute("DELETE FROM token_states WHERE user_id = ?", (user_id,))
            await db.execute("DELETE FROM token_usage WHERE user_id = ?", (user_id,))
            await db.commit()
        self.state_cache.pop(user_id, None)
