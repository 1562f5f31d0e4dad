import logging
from typing import Optional, Tuple

from redis import Redis
from redis.exceptions import RedisError

from ai_brain.config import get_redis_socket_timeout_seconds, get_redis_url


logger = logging.getLogger("ai_brain.dependencies.redis")

_client: Optional[Redis] = None


def get_redis_client() -> Optional[Redis]:
	"""Shared client for the turn queue and health checks; None when REDIS_URL is unset.

	Connections are opened lazily, so an unreachable server surfaces on the
	first command rather than here.
	"""
	global _client
	if _client is not None:
		return _client
	redis_url = get_redis_url()
	if not redis_url:
		return None
	timeout = get_redis_socket_timeout_seconds()
	_client = Redis.from_url(
		redis_url,
		decode_responses=True,
		socket_timeout=timeout,
		socket_connect_timeout=timeout,
		health_check_interval=30,
	)
	logger.info("[redis.client] configured timeout_s=%s", timeout)
	return _client


def close_redis_client() -> None:
	global _client
	if _client is not None:
		_client.close()
		_client = None


def ping_redis() -> Tuple[Optional[bool], Optional[str]]:
	"""(ok, error) for /health/full; ok is None when Redis is not configured."""
	try:
		client = get_redis_client()
		if client is None:
			return (None, None)
		return (bool(client.ping()), None)
	except (RedisError, ValueError) as exc:
		logger.warning("[redis.ping] failed: %s", exc)
		return (False, str(exc))
