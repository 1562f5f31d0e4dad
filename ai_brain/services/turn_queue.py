from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, Optional
import json
import logging
import threading

from redis.exceptions import RedisError

from ai_brain.dependencies.redis_client import get_redis_client
from ai_brain.services.tracing import end_trace, start_trace


logger = logging.getLogger("ai_brain.turn_queue")

QUEUE_KEY = "ai_brain:turns:pending"


@dataclass
class TurnEvent:
    """A stored turn whose side effects (chains, personality, user model) are still pending."""

    user_id: str
    memory_id: str
    user_text: str
    ai_text: str
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def conversation_text(self) -> str:
        return f"User: {self.user_text}\nAI: {self.ai_text}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "memory_id": self.memory_id,
            "user_text": self.user_text,
            "ai_text": self.ai_text,
            "enqueued_at": self.enqueued_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TurnEvent":
        raw = data.get("enqueued_at")
        try:
            enqueued_at = datetime.fromisoformat(raw) if isinstance(raw, str) else datetime.now(timezone.utc)
        except ValueError:
            enqueued_at = datetime.now(timezone.utc)
        return cls(
            user_id=data.get("user_id", ""),
            memory_id=data.get("memory_id", ""),
            user_text=data.get("user_text", ""),
            ai_text=data.get("ai_text", ""),
            enqueued_at=enqueued_at,
        )


class TurnQueue:
    """FIFO of pending turns backed by a Redis list, with an in-process fallback."""

    def __init__(self, redis: Any = None, key: str = QUEUE_KEY, use_redis: bool = True):
        self._redis = redis if redis is not None else (get_redis_client() if use_redis else None)
        self._key = key
        self._lock = threading.Lock()
        self._local: Deque[TurnEvent] = deque()

    @property
    def backend(self) -> str:
        return "redis" if self._redis is not None else "memory"

    def enqueue(self, event: TurnEvent) -> None:
        if self._redis is not None:
            try:
                self._redis.lpush(self._key, json.dumps(event.to_dict()))
                return
            except RedisError as exc:
                logger.warning("[turns.enqueue.redis_error] %s; keeping turn in process", exc)
        with self._lock:
            self._local.append(event)

    def dequeue(self) -> Optional[TurnEvent]:
        with self._lock:
            if self._local:
                return self._local.popleft()
        if self._redis is None:
            return None
        try:
            raw = self._redis.rpop(self._key)
        except RedisError as exc:
            logger.warning("[turns.dequeue.redis_error] %s", exc)
            return None
        if not raw:
            return None
        try:
            return TurnEvent.from_dict(json.loads(raw))
        except (TypeError, ValueError) as exc:
            logger.error("[turns.dequeue.malformed] dropping entry: %s", exc)
            return None

    def __len__(self) -> int:
        with self._lock:
            local = len(self._local)
        if self._redis is None:
            return local
        try:
            return local + int(self._redis.llen(self._key))
        except RedisError:
            return local


class TurnProcessor:
    """Runs the post-reply side effects of one turn, each isolated from the others."""

    def __init__(self, chains=None, personality=None, user_model=None):
        self.chains = chains
        self.personality = personality
        self.user_model = user_model

    def process(self, event: TurnEvent) -> Dict[str, Any]:
        steps: Dict[str, Callable[[], Any]] = {}
        if self.user_model is not None:
            steps["user_model"] = lambda: self.user_model.process_conversation_for_user_model(
                event.user_id, event.conversation_text, event.memory_id
            )
        if self.personality is not None:
            steps["personality"] = lambda: self.personality.update_personality(event.user_id)
        if self.chains is not None:
            steps["chain"] = lambda: self.chains.build_chain_for_memory(event.user_id, event.memory_id)

        outcome: Dict[str, Any] = {}
        start_trace("turn_side_effects", event.user_id, metadata={"memory_id": event.memory_id})
        try:
            for name, step in steps.items():
                try:
                    outcome[name] = step()
                except Exception:
                    logger.exception("[turns.side_effect.error] step=%s user_id=%s memory_id=%s", name, event.user_id, event.memory_id)
                    outcome[name] = None
        finally:
            end_trace()
        return outcome


def drain(queue: TurnQueue, processor: TurnProcessor, max_items: int = 100) -> int:
    """Process up to ``max_items`` pending turns; returns how many were handled."""
    handled = 0
    while handled < max_items:
        event = queue.dequeue()
        if event is None:
            break
        processor.process(event)
        handled += 1
    if handled:
        logger.info("[turns.drained] count=%s backend=%s", handled, queue.backend)
    return handled


class TurnWorker(threading.Thread):
    """Background thread that drains the queue until stopped."""

    def __init__(self, queue: TurnQueue, processor: TurnProcessor, poll_interval: float = 1.0):
        super().__init__(name="turn-worker", daemon=True)
        self.queue = queue
        self.processor = processor
        self.poll_interval = poll_interval
        self._stop_event = threading.Event()

    def run(self) -> None:
        logger.info("[turns.worker.start] backend=%s", self.queue.backend)
        while not self._stop_event.is_set():
            try:
                handled = drain(self.queue, self.processor, max_items=20)
            except Exception:
                logger.exception("[turns.worker.error]")
                handled = 0
            if not handled:
                self._stop_event.wait(self.poll_interval)
        logger.info("[turns.worker.stop]")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout)
