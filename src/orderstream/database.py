"""
PostgreSQL persistence for ingested orders.

Orders are written with one multi-row upsert per batch, keyed on order_id,
so re-announced orders update the existing row instead of duplicating it.
"""

import os
import asyncio
import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import asyncpg

from .models import PersistedOrder, PERSISTED_ORDER_COLUMNS

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = os.path.join(os.path.dirname(__file__), "migrations")

# Columns carried as decimal strings on PersistedOrder and bound as NUMERIC
NUMERIC_COLUMNS = frozenset({
    "min_price",
    "max_price",
    "bidding_start",
    "timeout",
    "lock_stake",
    "ramp_up_period",
})

UPDATE_COLUMNS = tuple(c for c in PERSISTED_ORDER_COLUMNS if c != "order_id")


def dedupe_orders(rows: Sequence[PersistedOrder]) -> List[PersistedOrder]:
    """Collapse rows sharing an order_id, keeping the last one seen.

    PostgreSQL refuses to update the same row twice in one statement.
    """
    latest: Dict[str, PersistedOrder] = {}
    for row in rows:
        latest.pop(row.order_id, None)
        latest[row.order_id] = row
    return list(latest.values())


def build_upsert_query(row_count: int) -> str:
    """Multi-row INSERT ... ON CONFLICT (order_id) DO UPDATE for row_count rows."""
    width = len(PERSISTED_ORDER_COLUMNS)
    values = ",\n".join(
        "(" + ", ".join(f"${i * width + j + 1}" for j in range(width)) + ")"
        for i in range(row_count)
    )
    updates = ",\n    ".join(f"{column} = EXCLUDED.{column}" for column in UPDATE_COLUMNS)
    return (
        f"INSERT INTO orders ({', '.join(PERSISTED_ORDER_COLUMNS)})\n"
        f"VALUES\n{values}\n"
        f"ON CONFLICT (order_id) DO UPDATE SET\n    {updates}"
    )


def row_parameters(row: PersistedOrder) -> List[Any]:
    """Positional parameters for one row, in column order."""
    params = []
    for column in PERSISTED_ORDER_COLUMNS:
        value = getattr(row, column)
        if column in NUMERIC_COLUMNS:
            value = Decimal(value)
        params.append(value)
    return params


class OrderDatabase:
    """PostgreSQL order store backed by an asyncpg pool."""

    def __init__(self, database_url: Optional[str] = None, pool_size: int = 5):
        self.database_url = database_url or os.getenv("POSTGRES_URL") or os.getenv("DATABASE_URL")
        self.pool_size = pool_size
        self._pool = None
        self._init_lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self):
        """Create the connection pool and apply migrations. Safe to call twice."""
        async with self._init_lock:
            if self._initialized:
                return

            if not self.database_url:
                raise ValueError("POSTGRES_URL environment variable is required")

            try:
                self._pool = await asyncpg.create_pool(
                    self.database_url,
                    min_size=1,
                    max_size=self.pool_size,
                    statement_cache_size=0,  # Required for pgbouncer compatibility
                    server_settings={
                        'application_name': 'orderstream',
                        'timezone': 'UTC'
                    }
                )

                async with self._pool.acquire() as conn:
                    await conn.fetchval('SELECT 1')

                await self._run_migrations()

                logger.info(f"PostgreSQL order store initialized with pool size {self.pool_size}")
                self._initialized = True

            except Exception as e:
                logger.error(f"Failed to initialize PostgreSQL order store: {e}")
                raise

    async def close(self):
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            self._initialized = False
            logger.info("PostgreSQL order store pool closed")

    async def _run_migrations(self):
        """Apply bundled SQL migrations that have not run yet."""
        async with self._pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS migrations (
                    id SERIAL PRIMARY KEY,
                    filename VARCHAR(255) NOT NULL UNIQUE,
                    applied_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
                )
            """)

            for filename in sorted(f for f in os.listdir(MIGRATIONS_DIR) if f.endswith(".sql")):
                existing = await conn.fetchrow(
                    "SELECT id FROM migrations WHERE filename = $1",
                    filename
                )
                if existing:
                    logger.debug(f"Migration {filename} already applied")
                    continue

                with open(os.path.join(MIGRATIONS_DIR, filename), 'r') as f:
                    migration_sql = f.read()

                async with conn.transaction():
                    await conn.execute(migration_sql)
                    await conn.execute(
                        "INSERT INTO migrations (filename) VALUES ($1)",
                        filename
                    )
                logger.info(f"Applied migration: {filename}")

    @asynccontextmanager
    async def get_connection(self):
        """Get a database connection from the pool."""
        if not self._initialized:
            await self.initialize()

        async with self._pool.acquire() as conn:
            yield conn

    async def upsert_orders(self, rows: Sequence[PersistedOrder]) -> int:
        """Insert or update a batch of orders in one statement.

        Returns the number of distinct orders written.
        """
        unique_rows = dedupe_orders(rows)
        if not unique_rows:
            return 0

        query = build_upsert_query(len(unique_rows))
        params: List[Any] = []
        for row in unique_rows:
            params.extend(row_parameters(row))

        async with self.get_connection() as conn:
            await conn.execute(query, *params)

        return len(unique_rows)

    async def get_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a stored order by id."""
        async with self.get_connection() as conn:
            row = await conn.fetchrow('SELECT * FROM orders WHERE order_id = $1', order_id)
            return dict(row) if row else None
