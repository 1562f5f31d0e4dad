"""
Importance & Retrieval Engine

Write path for episodic memory (embed, score emotions, compute importance,
persist) plus relevance-ranked retrieval and the nightly consolidation pass.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from ai_brain.errors import InvalidRecordError
from ai_brain.models import Memory, MemoryStats, utcnow
from ai_brain.services.oracles import EmbeddingOracle, TextOracle, analyze_emotion
from ai_brain.storage.base import EpisodicStore


logger = logging.getLogger("ai_brain.memory")

MAX_IMPORTANCE = 3.0
RETRIEVAL_MIN_IMPORTANCE = 0.3
SALIENCE_KEYWORDS = (
    "feel",
    "think",
    "remember",
    "important",
    "love",
    "hate",
    "want",
    "need",
    "dream",
    "hope",
    "fear",
    "believe",
)

# consolidation
REINFORCE_WINDOW = timedelta(hours=24)
REINFORCE_STEP = 0.05
REINFORCE_ACCESS_CAP = 10
DECAY_AGE = timedelta(days=30)
DECAY_FACTOR = 0.95
DECAY_FLOOR = 0.1
CLEANUP_AGE = timedelta(days=180)
CLEANUP_MAX_IMPORTANCE = 0.3


def calculate_importance(message: str, emotions: Optional[Dict[str, float]]) -> float:
    """Importance of a user utterance on the [0, 3.0] scale."""
    text = message or ""
    score = 1.0

    if emotions:
        intensity = 0.0
        for value in emotions.values():
            try:
                intensity += abs(float(value))
            except (TypeError, ValueError):
                continue
        score += intensity * 0.5

    if len(text) > 500:
        score += 0.3
    if len(text) > 1000:
        score += 0.5

    lowered = text.lower()
    if any(keyword in lowered for keyword in SALIENCE_KEYWORDS):
        score += 0.4

    score += text.count("?") * 0.2

    return min(MAX_IMPORTANCE, max(0.0, score))


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> Optional[float]:
    """Cosine of two vectors; None when either is missing, empty, zero or of another length."""
    if not a or not b or len(a) != len(b):
        return None
    dot = sum(x * y for x, y in zip(a, b))
    na = sum(x * x for x in a) ** 0.5
    nb = sum(y * y for y in b) ** 0.5
    if na <= 0 or nb <= 0:
        return None
    return dot / (na * nb)


class MemoryService:
    """Store and retrieve episodic memories for a user."""

    def __init__(
        self,
        store: EpisodicStore,
        embedder: Optional[EmbeddingOracle] = None,
        text_oracle: Optional[TextOracle] = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.text_oracle = text_oracle

    def _embed(self, text: str) -> Optional[List[float]]:
        if self.embedder is None:
            return None
        result = self.embedder.embed(text)
        if result.usable:
            return result.value
        logger.info("[memory.embed.unavailable] status=%s error=%s", result.status.value, result.error)
        return None

    def store_memory(
        self,
        user_id: str,
        user_text: str,
        ai_text: str,
        persona_id: Optional[str] = None,
    ) -> str:
        """Persist one turn and return its memory id.

        Oracle failures degrade (null embedding, neutral emotions); store
        failures raise StoreUnavailable.
        """
        if not user_id:
            raise InvalidRecordError("user_id is required")

        memory = Memory(
            memory_id=str(uuid.uuid4()),
            user_id=user_id,
            persona_id=persona_id,
            user_text=user_text or "",
            ai_text=ai_text or "",
            importance_score=1.0,
        )
        memory.embedding = self._embed(memory.combined_text)
        emotions = analyze_emotion(self.text_oracle, memory.user_text)
        memory.emotional_context = emotions.value
        memory.importance_score = calculate_importance(memory.user_text, memory.emotional_context)

        memory_id = self.store.insert_memory(memory)
        logger.info(
            "[memory.stored] user_id=%s memory_id=%s importance=%.2f embedded=%s emotion=%s",
            user_id,
            memory_id,
            memory.importance_score,
            memory.embedding is not None,
            emotions.status.value,
        )
        return memory_id

    def retrieve_relevant_memories(
        self,
        user_id: str,
        query_text: str,
        limit: int = 10,
        persona_id: Optional[str] = None,
    ) -> List[Memory]:
        """Rank important memories against ``query_text`` and bump their access counters.

        With a query vector the store ranks the user's whole history by cosine
        distance; without one (no text, or the embedder failed) the newest
        memories are returned.
        """
        if limit <= 0:
            return []

        query_embedding = self._embed(query_text) if query_text else None
        if query_embedding is None:
            selected = self.store.list_recent_memories(
                user_id,
                limit=limit,
                persona_id=persona_id,
                min_importance=RETRIEVAL_MIN_IMPORTANCE,
            )
        else:
            selected = self.store.rank_memories_by_embedding(
                user_id,
                query_embedding,
                limit=limit,
                persona_id=persona_id,
                min_importance=RETRIEVAL_MIN_IMPORTANCE,
            )
        if not selected:
            return []

        now = utcnow()
        self.store.record_access(user_id, [m.memory_id for m in selected], now)
        for m in selected:
            m.access_count += 1
            m.last_accessed = now
        logger.info(
            "[memory.retrieve] user_id=%s returned=%s ranked_by=%s",
            user_id,
            len(selected),
            "cosine" if query_embedding is not None else "recency",
        )
        return selected

    def get_memory_stats(self, user_id: str) -> MemoryStats:
        return self.store.get_memory_stats(user_id)

    def list_memories(self, user_id: str, limit: int = 20, offset: int = 0) -> List[Memory]:
        offset = max(0, offset)
        rows = self.store.list_recent_memories(user_id, limit=max(0, limit) + offset)
        return rows[offset:]

    def set_pinned(self, user_id: str, memory_id: str, pinned: bool) -> bool:
        changed = self.store.set_pinned(user_id, memory_id, pinned)
        logger.info("[memory.pin] user_id=%s memory_id=%s pinned=%s found=%s", user_id, memory_id, pinned, changed)
        return changed

    def delete_memory(self, user_id: str, memory_id: str) -> bool:
        deleted = self.store.delete_memory(user_id, memory_id)
        logger.info("[memory.delete] user_id=%s memory_id=%s found=%s", user_id, memory_id, deleted)
        return deleted

    def consolidate_memories(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, int]:
        """Reinforce recently accessed memories, decay idle ones and drop forgotten ones."""
        now = now or utcnow()
        stats = {"reinforced": 0, "decayed": 0, "deleted": 0}

        reinforced: Dict[str, float] = {}
        for m in self.store.list_accessed_memories(user_id, now - REINFORCE_WINDOW):
            boost = REINFORCE_STEP * min(m.access_count, REINFORCE_ACCESS_CAP)
            new_score = min(MAX_IMPORTANCE, m.importance_score + boost)
            if new_score != m.importance_score:
                reinforced[m.memory_id] = new_score
        stats["reinforced"] = self.store.update_importance_scores(user_id, reinforced)

        decayed: Dict[str, float] = {}
        for m in self.store.list_stale_memories(user_id, now - DECAY_AGE, now - DECAY_AGE):
            new_score = max(DECAY_FLOOR, m.importance_score * DECAY_FACTOR)
            if new_score != m.importance_score:
                decayed[m.memory_id] = new_score
        stats["decayed"] = self.store.update_importance_scores(user_id, decayed)

        forgotten = [
            m.memory_id
            for m in self.store.list_stale_memories(user_id, now - CLEANUP_AGE, now - CLEANUP_AGE)
            if m.access_count == 0 and m.importance_score < CLEANUP_MAX_IMPORTANCE
        ]
        stats["deleted"] = self.store.delete_unpinned_memories(user_id, forgotten)

        logger.info("[maint.memory.consolidated] user_id=%s stats=%s", user_id, stats)
        return stats
