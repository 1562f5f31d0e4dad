import json
from unittest.mock import MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError

from ai_brain.services.turn_queue import QUEUE_KEY, TurnEvent, TurnProcessor, TurnQueue, drain


def _event(n: int = 1) -> TurnEvent:
    return TurnEvent(user_id="u1", memory_id=f"m{n}", user_text=f"question {n}", ai_text=f"answer {n}")


def test_in_process_queue_is_fifo():
    queue = TurnQueue(use_redis=False)
    queue.enqueue(_event(1))
    queue.enqueue(_event(2))

    assert queue.backend == "memory"
    assert len(queue) == 2
    assert queue.dequeue().memory_id == "m1"
    assert queue.dequeue().memory_id == "m2"
    assert queue.dequeue() is None


def test_redis_backed_queue_serializes_events(redis_stub):
    queue = TurnQueue(redis=redis_stub)
    queue.enqueue(_event(1))
    queue.enqueue(_event(2))

    assert queue.backend == "redis"
    assert len(queue) == 2
    stored = json.loads(redis_stub.lists[QUEUE_KEY][-1])
    assert stored["memory_id"] == "m1"

    first = queue.dequeue()
    assert first.memory_id == "m1"
    assert first.conversation_text == "User: question 1\nAI: answer 1"
    assert queue.dequeue().memory_id == "m2"


def test_redis_outage_falls_back_to_process_memory():
    redis = MagicMock()
    redis.lpush.side_effect = RedisConnectionError("down")
    redis.rpop.side_effect = RedisConnectionError("down")
    redis.llen.side_effect = RedisConnectionError("down")
    queue = TurnQueue(redis=redis)

    queue.enqueue(_event(1))

    assert len(queue) == 1
    assert queue.dequeue().memory_id == "m1"
    assert queue.dequeue() is None


def test_malformed_redis_entry_is_dropped(redis_stub):
    redis_stub.lpush(QUEUE_KEY, "{not json")
    queue = TurnQueue(redis=redis_stub)

    assert queue.dequeue() is None
    assert len(queue) == 0


def test_event_round_trip_keeps_timestamp():
    event = _event(3)
    restored = TurnEvent.from_dict(event.to_dict())
    assert restored == event


def test_processor_isolates_failing_side_effects():
    chains, personality, user_model = MagicMock(), MagicMock(), MagicMock()
    user_model.process_conversation_for_user_model.side_effect = RuntimeError("oracle exploded")
    personality.update_personality.return_value = {"humor": 5.5}
    chains.build_chain_for_memory.return_value = "chain-1"

    outcome = TurnProcessor(chains=chains, personality=personality, user_model=user_model).process(_event(1))

    assert outcome == {"user_model": None, "personality": {"humor": 5.5}, "chain": "chain-1"}
    user_model.process_conversation_for_user_model.assert_called_once_with("u1", "User: question 1\nAI: answer 1", "m1")
    chains.build_chain_for_memory.assert_called_once_with("u1", "m1")


def test_drain_stops_at_batch_limit():
    queue = TurnQueue(use_redis=False)
    for n in range(5):
        queue.enqueue(_event(n))
    processor = MagicMock()

    assert drain(queue, processor, max_items=3) == 3
    assert processor.process.call_count == 3
    assert len(queue) == 2
