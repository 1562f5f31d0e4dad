import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from ai_brain.dependencies import redis_client as redis_module


class _FakeRedis:
    def __init__(self, url, error=None, **kwargs):
        self.url = url
        self.kwargs = kwargs
        self.error = error
        self.closed = False

    def ping(self):
        if self.error is not None:
            raise self.error
        return True

    def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def _reset_client(monkeypatch):
    monkeypatch.setattr(redis_module, "_client", None)


def _use_fake(monkeypatch, url="redis://cache:6379/0", error=None):
    created = []

    def from_url(redis_url, **kwargs):
        client = _FakeRedis(redis_url, error=error, **kwargs)
        created.append(client)
        return client

    monkeypatch.setattr(redis_module, "get_redis_url", lambda: url)
    monkeypatch.setattr(redis_module.Redis, "from_url", staticmethod(from_url))
    return created


def test_client_is_none_without_url(monkeypatch):
    monkeypatch.setattr(redis_module, "get_redis_url", lambda: None)

    assert redis_module.get_redis_client() is None
    assert redis_module.ping_redis() == (None, None)


def test_client_is_shared_and_uses_timeouts(monkeypatch):
    created = _use_fake(monkeypatch)
    monkeypatch.setattr(redis_module, "get_redis_socket_timeout_seconds", lambda: 1.5)

    first = redis_module.get_redis_client()
    second = redis_module.get_redis_client()

    assert first is second
    assert len(created) == 1
    assert first.kwargs["decode_responses"] is True
    assert first.kwargs["socket_timeout"] == 1.5


def test_ping_reports_connection_errors(monkeypatch):
    _use_fake(monkeypatch, error=RedisConnectionError("connection refused"))

    ok, error = redis_module.ping_redis()

    assert ok is False
    assert "connection refused" in error


def test_close_drops_the_shared_client(monkeypatch):
    created = _use_fake(monkeypatch)
    redis_module.get_redis_client()

    redis_module.close_redis_client()

    assert created[0].closed is True
    assert redis_module._client is None
