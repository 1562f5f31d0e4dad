from __future__ import annotations

import logging
from typing import Optional

from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from ai_brain.config import (
	get_database_url,
	get_db_connect_timeout_seconds,
	get_db_pool_max_size,
	get_db_pool_min_size,
)


logger = logging.getLogger("ai_brain.dependencies.postgres")

_pool: Optional[ConnectionPool] = None


def get_postgres_pool() -> Optional[ConnectionPool]:
	"""Return the shared connection pool, creating it on first use.

	Returns None when no DSN is configured or the pool cannot be opened.
	"""
	global _pool
	if _pool is not None:
		return _pool
	dsn = get_database_url()
	if not dsn:
		return None
	try:
		_pool = ConnectionPool(
			dsn,
			min_size=get_db_pool_min_size(),
			max_size=get_db_pool_max_size(),
			timeout=get_db_connect_timeout_seconds(),
			kwargs={"row_factory": dict_row},
			open=True,
		)
		return _pool
	except Exception as exc:
		logger.warning("[postgres.pool] unavailable: %s", exc)
		return None


def close_postgres_pool() -> None:
	global _pool
	if _pool is not None:
		_pool.close()
		_pool = None


def ping_postgres() -> tuple[bool, Optional[str]]:
	try:
		pool = get_postgres_pool()
		if pool is None:
			return (False, "no connection")
		with pool.connection() as conn:
			with conn.cursor() as cur:
				cur.execute("SELECT 1;")
				_ = cur.fetchone()
		return (True, None)
	except Exception as exc:
		return (False, str(exc))
