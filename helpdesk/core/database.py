from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

import aiomysql
from loguru import logger

from .config import get_settings


def split_sql_statements(sql: str) -> list[str]:
    """Split a migration script on semicolons that sit outside quoted literals.

    ``--`` line comments are dropped so they never swallow the statement that
    follows them.
    """

    statements: list[str] = []
    current: list[str] = []
    quote: str | None = None
    i = 0
    length = len(sql)

    while i < length:
        char = sql[i]
        if quote is None and char == "-" and sql.startswith("--", i):
            newline = sql.find("\n", i)
            i = length if newline == -1 else newline + 1
            continue
        if char in ("'", '"'):
            if quote is None:
                quote = char
            elif quote == char:
                # A doubled quote inside a literal is an escaped quote.
                if i + 1 < length and sql[i + 1] == char:
                    current.append(char)
                    i += 1
                else:
                    quote = None
        if char == ";" and quote is None:
            statement = "".join(current).strip()
            if statement:
                statements.append(statement)
            current = []
        else:
            current.append(char)
        i += 1

    remaining = "".join(current).strip()
    if remaining:
        statements.append(remaining)
    return statements


class Database:
    def __init__(self) -> None:
        self._pool: aiomysql.Pool | None = None
        self._settings = get_settings()

    async def connect(self) -> None:
        if self._pool:
            return
        logger.info("Connecting to MySQL at {host}", host=self._settings.database_host)
        self._pool = await aiomysql.create_pool(
            host=self._settings.database_host,
            user=self._settings.database_user,
            password=self._settings.database_password,
            db=self._settings.database_name,
            autocommit=True,
            minsize=1,
            maxsize=10,
            pool_recycle=600,
            init_command="SET time_zone = '+00:00'",
        )

    async def disconnect(self) -> None:
        if not self._pool:
            return
        logger.info("Disconnecting from MySQL database")
        self._pool.close()
        await self._pool.wait_closed()
        self._pool = None

    def is_connected(self) -> bool:
        return self._pool is not None

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Any]:
        if not self._pool:
            raise RuntimeError("Database pool not initialised")
        conn = await self._pool.acquire()
        try:
            yield conn
        finally:
            self._pool.release(conn)

    async def execute(self, sql: str, params: tuple | dict | None = None) -> int:
        """Run a statement and return the number of affected rows."""

        async with self.acquire() as conn:
            async with conn.cursor() as cursor:
                await cursor.execute(sql, params)
                return cursor.rowcount

    async def execute_returning_lastrowid(
        self, sql: str, params: tuple | dict | None = None
    ) -> int:
        async with self.acquire() as conn:
            async with conn.cursor() as cursor:
                await cursor.execute(sql, params)
                last_row_id = cursor.lastrowid
        return int(last_row_id) if last_row_id is not None else 0

    async def fetch_one(self, sql: str, params: tuple | dict | None = None):
        async with self.acquire() as conn:
            async with conn.cursor(aiomysql.DictCursor) as cursor:
                await cursor.execute(sql, params)
                return await cursor.fetchone()

    async def fetch_all(self, sql: str, params: tuple | dict | None = None):
        async with self.acquire() as conn:
            async with conn.cursor(aiomysql.DictCursor) as cursor:
                await cursor.execute(sql, params)
                return await cursor.fetchall()

    def _get_migrations_dir(self) -> Path:
        return Path(__file__).resolve().parent.parent.parent / "migrations"

    async def run_migrations(self) -> None:
        """Apply pending ``migrations/*.sql`` files in name order."""

        await self.connect()
        migrations_dir = self._get_migrations_dir()
        if not migrations_dir.exists():
            logger.warning("No migrations directory found at {path}", path=str(migrations_dir))
            return

        lock_name = f"{self._settings.database_name}_migration_lock"
        lock_timeout = self._settings.migration_lock_timeout

        async with self.acquire() as conn:
            async with conn.cursor() as cursor:
                await cursor.execute("SELECT GET_LOCK(%s, %s)", (lock_name, lock_timeout))
                result = await cursor.fetchone()
            if not (result and result[0] == 1):
                logger.error(
                    "Unable to obtain database migration lock {lock} within {timeout}s",
                    lock=lock_name,
                    timeout=lock_timeout,
                )
                raise RuntimeError("Could not obtain database migration lock")

            try:
                async with conn.cursor(aiomysql.DictCursor) as cursor:
                    await cursor.execute(
                        "CREATE TABLE IF NOT EXISTS migrations (name VARCHAR(255) PRIMARY KEY)"
                    )
                    await cursor.execute("SELECT name FROM migrations")
                    applied = {row["name"] for row in await cursor.fetchall()}

                for path in sorted(migrations_dir.glob("*.sql")):
                    if path.name in applied:
                        continue
                    statements = split_sql_statements(path.read_text(encoding="utf-8"))
                    async with conn.cursor() as cursor:
                        for statement in statements:
                            await cursor.execute(statement)
                        await cursor.execute(
                            "INSERT INTO migrations (name) VALUES (%s)",
                            (path.name,),
                        )
                    logger.info("Applied migration {name}", name=path.name)
            finally:
                async with conn.cursor() as cursor:
                    await cursor.execute("SELECT RELEASE_LOCK(%s)", (lock_name,))


db = Database()
