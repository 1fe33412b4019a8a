"""
Database manager for PostgreSQL operations
Implements the query/batch envelope consumed by discovery and polling
"""

import asyncpg
import ipaddress
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from .models import QueryResult, _convert_ip_address

logger = logging.getLogger(__name__)


def _rows_affected(status: Optional[str], fallback: int) -> int:
    """Row count from a command tag such as 'UPDATE 3' or 'INSERT 0 1'"""
    if status and status.split() and status.split()[-1].isdigit():
        return int(status.split()[-1])
    return fallback


def _record_to_dict(record: asyncpg.Record) -> Dict[str, Any]:
    row = {}
    for key, value in record.items():
        if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
            value = _convert_ip_address(value)
        elif isinstance(value, Decimal):
            value = float(value)
        row[key] = value
    return row


class DatabaseManager:
    """Manages PostgreSQL operations for credentials, discovery, provisioning and polling history"""

    def __init__(self, config: Dict):
        self.config = config
        self.pool = None
        db = config['database']
        self.db_host = db['host']
        self.db_port = db['port']
        self.db_name = db['database']
        self.db_user = db['username']
        self.db_password = db['password']
        self.min_pool_size = db.get('min_pool_size', 2)
        self.max_pool_size = db.get('max_pool_size', 10)
        self.command_timeout = db.get('command_timeout', 10)

    async def initialize(self):
        """Initialize database connection pool and schema"""
        try:
            self.pool = await asyncpg.create_pool(
                host=self.db_host,
                port=self.db_port,
                database=self.db_name,
                user=self.db_user,
                password=self.db_password,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=self.command_timeout
            )

            logger.info("Database connection pool created")

            await self.create_schema()
            logger.info("Database schema initialized")

        except Exception as e:
            logger.error(f"Database initialization failed: {e}")
            raise

    async def create_schema(self):
        """Create database tables if they don't exist"""
        schema_sql = """
        CREATE TABLE IF NOT EXISTS credential_profile (
            id SERIAL PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            username TEXT NOT NULL,
            password TEXT NOT NULL,
            system_type TEXT
        );

        CREATE TABLE IF NOT EXISTS discovery_profile (
            id SERIAL PRIMARY KEY,
            name TEXT NOT NULL,
            ip INET NOT NULL,
            port INTEGER NOT NULL DEFAULT 22,
            status TEXT NOT NULL DEFAULT 'inactive',
            credential_profile_id INTEGER NOT NULL REFERENCES credential_profile(id)
        );

        CREATE TABLE IF NOT EXISTS provisioned_device (
            id SERIAL PRIMARY KEY,
            name TEXT NOT NULL,
            ip INET NOT NULL UNIQUE,
            port INTEGER NOT NULL DEFAULT 22,
            credential_profile_id INTEGER NOT NULL REFERENCES credential_profile(id),
            is_deleted BOOLEAN NOT NULL DEFAULT false
        );

        -- Append-only polling history
        CREATE TABLE IF NOT EXISTS polling_result (
            id BIGSERIAL PRIMARY KEY,
            provisioned_device_id INTEGER NOT NULL REFERENCES provisioned_device(id) ON DELETE CASCADE,
            metrics JSONB NOT NULL,
            polled_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS availability (
            id BIGSERIAL PRIMARY KEY,
            provisioned_device_id INTEGER NOT NULL REFERENCES provisioned_device(id) ON DELETE CASCADE,
            was_available BOOLEAN NOT NULL,
            checked_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_polling_result_device_ts
        ON polling_result(provisioned_device_id, polled_at DESC);

        CREATE INDEX IF NOT EXISTS idx_availability_device_ts
        ON availability(provisioned_device_id, checked_at DESC);
        """

        async with self.pool.acquire() as conn:
            await conn.execute(schema_sql)

    async def execute_query(self, query: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        """Run one statement; rows are returned for SELECT and RETURNING statements"""
        if self.pool is None:
            logger.error("Database pool is not initialized")
            return QueryResult.failure("Database pool is not initialized")

        try:
            async with self.pool.acquire() as conn:
                stmt = await conn.prepare(query)
                records = await stmt.fetch(*(params or []))
                rows = [_record_to_dict(r) for r in records]
                row_count = _rows_affected(stmt.get_statusmsg(), len(rows))

            return QueryResult(success=True, row_count=row_count, rows=rows or None)

        except Exception as e:
            logger.error(f"Database query failed: {e}")
            return QueryResult.failure(str(e))

    async def execute_batch(self, query: str, param_sets: List[Sequence[Any]]) -> QueryResult:
        """Run one statement per parameter set inside a single transaction"""
        if not param_sets:
            return QueryResult.failure("No parameters provided")

        if self.pool is None:
            logger.error("Database pool is not initialized")
            return QueryResult.failure("Database pool is not initialized")

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    await conn.executemany(query, [tuple(p) for p in param_sets])

            return QueryResult(success=True, row_count=len(param_sets))

        except Exception as e:
            logger.error(f"Database batch failed: {e}")
            return QueryResult.failure(str(e))

    async def close(self):
        """Close database connection pool"""
        if self.pool:
            pool, self.pool = self.pool, None
            await pool.close()
            logger.info("Database connection pool closed")
