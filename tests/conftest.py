import random
import warnings
from datetime import datetime, timezone
from typing import Dict

warnings.filterwarnings(
    "ignore",
    category=DeprecationWarning,
    message=r".*on_event is deprecated.*",
)

import pytest
from fastapi.testclient import TestClient

from ai_brain.maintenance import SchedulerContext
from ai_brain.services.emotional_continuity import EmotionalContinuityService
from ai_brain.services.memory_chains import MemoryChainService
from ai_brain.services.memory_service import MemoryService
from ai_brain.services.personality import PersonalityService
from ai_brain.services.turn_queue import TurnProcessor, TurnQueue
from ai_brain.services.user_model import UserModelService
from tests.fixtures.memory_store import InMemoryStore
from tests.fixtures.oracle_stubs import StubEmbedder, StubTextOracle


NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


class _RedisStub:
    """Minimal Redis stub covering ping and the list commands used by the turn queue."""

    def __init__(self) -> None:
        self.lists: Dict[str, list] = {}

    def ping(self) -> bool:
        return True

    def lpush(self, key: str, value: str) -> int:
        bucket = self.lists.setdefault(key, [])
        bucket.insert(0, value)
        return len(bucket)

    def rpop(self, key: str):
        bucket = self.lists.get(key) or []
        return bucket.pop() if bucket else None

    def llen(self, key: str) -> int:
        return len(self.lists.get(key) or [])


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def redis_stub() -> _RedisStub:
    return _RedisStub()


@pytest.fixture
def embedder() -> StubEmbedder:
    return StubEmbedder(default=[1.0, 0.0, 0.0])


@pytest.fixture
def text_oracle() -> StubTextOracle:
    return StubTextOracle(
        emotion={"joy": 0.6, "sadness": 0.1},
        chain_summary={"summary": "A week of exam preparation."},
        beliefs=[],
        goals=[],
    )


@pytest.fixture
def context(store: InMemoryStore, embedder: StubEmbedder, text_oracle: StubTextOracle, now: datetime) -> SchedulerContext:
    chains = MemoryChainService(store, store, text_oracle, window=50)
    personality = PersonalityService(store, store)
    user_model = UserModelService(store, store, text_oracle, rng=random.Random(7), mental_state_probability=0.0)
    return SchedulerContext(
        episodic=store,
        memory=MemoryService(store, embedder, text_oracle),
        chains=chains,
        personality=personality,
        user_model=user_model,
        emotions=EmotionalContinuityService(store, text_oracle),
        turn_queue=TurnQueue(use_redis=False),
        turn_processor=TurnProcessor(chains=chains, personality=personality, user_model=user_model),
        clock=lambda: now,
    )


def _prepare_app(monkeypatch: pytest.MonkeyPatch, context: SchedulerContext, redis_stub: _RedisStub):
    monkeypatch.setenv("LLM_PROVIDER", "openai")
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")

    import ai_brain.app as app_module

    monkeypatch.setattr(app_module, "_context", context)
    monkeypatch.setattr(app_module, "start_scheduler", lambda ctx: None)
    monkeypatch.setattr(app_module, "is_turn_worker_enabled", lambda: False)
    monkeypatch.setattr(app_module, "is_llm_configured", lambda: True)
    monkeypatch.setattr(app_module, "ping_postgres", lambda: (True, None))
    monkeypatch.setattr(app_module, "ping_redis", lambda: (redis_stub.ping(), None))
    monkeypatch.setattr(app_module, "close_redis_client", lambda: None)
    monkeypatch.setattr(app_module, "close_postgres_pool", lambda: None)
    return app_module


@pytest.fixture
def app_module(monkeypatch: pytest.MonkeyPatch, context: SchedulerContext, redis_stub: _RedisStub):
    return _prepare_app(monkeypatch, context, redis_stub)


@pytest.fixture
def api_client(app_module) -> TestClient:
    with TestClient(app_module.app) as client:
        yield client
