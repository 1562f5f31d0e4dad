"""
Memory Chain Builder

Links related episodic memories into narrative chains. Relationship strength
mixes semantic similarity, temporal proximity and emotional continuity,
weighted by the importance of the related memory.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from ai_brain.config import get_chain_window_size
from ai_brain.models import Memory, MemoryChain, dominant_emotion, utcnow
from ai_brain.services.memory_service import cosine_similarity
from ai_brain.services.oracles import TextOracle
from ai_brain.services.prompts import CHAIN_SUMMARY_PROMPT, NARRATIVE_PROMPT
from ai_brain.storage.base import ChainStore, EpisodicStore


logger = logging.getLogger("ai_brain.chains")

TEMPORAL_HORIZON = timedelta(days=7)
MEANINGFUL_STRENGTH = 0.3
MIN_RELATIONSHIPS = 2
MAX_RELATED_PER_CHAIN = 5
SEED_SCAN_LIMIT = 100
SUMMARY_PLACEHOLDER = "Summary unavailable."
TOPIC_KEYWORDS = (
    "project",
    "work",
    "family",
    "friend",
    "travel",
    "learning",
    "problem",
    "solution",
    "idea",
    "plan",
    "goal",
    "emotion",
)

# maintenance
EXTENSION_MIN_STRENGTH = 0.7
EXTENSION_MIN_ACCESS = 10
EXTENSION_IDLE = timedelta(days=1)
EXTENSION_BATCH = 20
EXTENSION_THRESHOLD = 0.5
WEAK_CHAIN_STRENGTH = 0.2
WEAK_CHAIN_AGE = timedelta(days=30)
DECAY_IDLE = timedelta(days=7)
DECAY_FACTOR = 0.9
DECAY_ACCESS_BONUS = 0.01
DECAY_FLOOR = 0.1
DEEP_CLEANUP_AGE = timedelta(days=90)


@dataclass
class Relationship:
    related_memory_id: str
    strength: float
    similarity: float
    temporal_proximity: float
    emotional_continuity: float
    relationship_type: str


def semantic_score(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    sim = cosine_similarity(a, b)
    return sim if sim is not None else 0.0


def temporal_score(a: datetime, b: datetime) -> float:
    delta = abs((a - b).total_seconds())
    return max(0.0, 1.0 - delta / TEMPORAL_HORIZON.total_seconds())


def emotional_score(a: Optional[Dict[str, float]], b: Optional[Dict[str, float]]) -> float:
    first, second = dominant_emotion(a), dominant_emotion(b)
    if first is None or second is None:
        return 0.0
    return 1.0 if first == second else 0.5


def relationship_type(similarity: float, temporal: float, emotional: float) -> str:
    if similarity > 0.8:
        return "continuation"
    if temporal > 0.7:
        return "sequential"
    if emotional > 0.8:
        return "emotional"
    return "thematic"


def score_relationship(target: Memory, candidate: Memory) -> Relationship:
    similarity = semantic_score(target.embedding, candidate.embedding)
    temporal = temporal_score(target.created_at, candidate.created_at)
    emotional = emotional_score(target.emotional_context, candidate.emotional_context)
    strength = (similarity * 0.5 + temporal * 0.3 + emotional * 0.2) * candidate.importance_score
    return Relationship(
        related_memory_id=candidate.memory_id,
        strength=strength,
        similarity=similarity,
        temporal_proximity=temporal,
        emotional_continuity=emotional,
        relationship_type=relationship_type(similarity, temporal, emotional),
    )


def scan_relationships(
    target: Memory, candidates: Sequence[Memory], threshold: float = MEANINGFUL_STRENGTH
) -> List[Relationship]:
    """Score ``target`` against a bounded candidate window.

    One pass over the window fills a parallel score array; only strengths
    strictly above ``threshold`` are kept, strongest first.
    """
    arena = [c for c in candidates if c.memory_id != target.memory_id]
    scored = [score_relationship(target, c) for c in arena]
    keep = [i for i, rel in enumerate(scored) if rel.strength > threshold]
    keep.sort(key=lambda i: scored[i].strength, reverse=True)
    return [scored[i] for i in keep]


def extract_topics(memories: Sequence[Memory]) -> List[str]:
    texts = [m.combined_text.lower() for m in memories]
    return [kw for kw in TOPIC_KEYWORDS if any(kw in t for t in texts)]


def analyze_emotional_arc(memories: Sequence[Memory]) -> Dict[str, Any]:
    arc: Dict[str, Any] = {
        "start": None,
        "end": None,
        "progression": [],
        "dominant": None,
        "volatility": 0.0,
    }
    last_index = len(memories) - 1
    for index, memory in enumerate(memories):
        emotion = memory.dominant_emotion
        if emotion is None:
            continue
        arc["progression"].append(
            {"position": index, "emotion": emotion, "timestamp": memory.created_at.isoformat()}
        )
        if index == 0:
            arc["start"] = emotion
        if index == last_index:
            arc["end"] = emotion

    emotions = [p["emotion"] for p in arc["progression"]]
    if emotions:
        arc["dominant"] = Counter(emotions).most_common(1)[0][0]
        changes = sum(1 for prev, cur in zip(emotions, emotions[1:]) if prev != cur)
        arc["volatility"] = changes / max(1, len(emotions) - 1)
    return arc


def chain_name(memories: Sequence[Memory], chain_type: str = "narrative") -> str:
    if not memories:
        return "Empty Chain"
    start = memories[0].created_at.date().isoformat()
    end = memories[-1].created_at.date().isoformat()
    span = start if start == end else f"{start} - {end}"
    return f"{chain_type.capitalize()} Chain ({span})"


class MemoryChainService:
    def __init__(
        self,
        episodic: EpisodicStore,
        chains: ChainStore,
        text_oracle: Optional[TextOracle] = None,
        window: Optional[int] = None,
    ) -> None:
        self.episodic = episodic
        self.chains = chains
        self.text_oracle = text_oracle
        self.window = window or get_chain_window_size()

    def detect_memory_relationships(
        self, user_id: str, memory_id: str, window: Optional[int] = None
    ) -> List[Relationship]:
        target = self.episodic.get_memory(user_id, memory_id)
        if target is None:
            return []
        candidates = self.episodic.list_recent_memories(
            user_id, limit=window or self.window, exclude_ids=[memory_id]
        )
        return scan_relationships(target, candidates)

    def generate_chain_summary(self, memories: Sequence[Memory], chain_type: str = "narrative") -> str:
        if self.text_oracle is None:
            return SUMMARY_PLACEHOLDER
        payload = {
            "chain_type": chain_type,
            "conversations": [
                {"timestamp": m.created_at.isoformat(), "user": m.user_text, "ai": m.ai_text}
                for m in memories
            ],
        }
        result = self.text_oracle.analyze(CHAIN_SUMMARY_PROMPT, payload)
        summary = result.value.get("summary") if result.ok and isinstance(result.value, dict) else None
        if isinstance(summary, str) and summary.strip():
            return summary.strip()
        logger.info("[chains.summary.unavailable] status=%s error=%s", result.status.value, result.error)
        return SUMMARY_PLACEHOLDER

    def create_memory_chain(
        self,
        user_id: str,
        seed_memory_id: str,
        relationships: Sequence[Relationship],
        chain_type: str = "narrative",
    ) -> Optional[str]:
        """Persist a chain of the seed plus ``relationships``; None if fewer than two memories resolve."""
        if not relationships:
            return None
        ids = [seed_memory_id] + [r.related_memory_id for r in relationships]
        memories = self.episodic.get_memories_by_ids(user_id, ids)
        if len(memories) < 2:
            logger.warning("[chains.create.skipped] user_id=%s seed=%s resolved=%s", user_id, seed_memory_id, len(memories))
            return None

        now = utcnow()
        chain = MemoryChain(
            chain_id=str(uuid.uuid4()),
            user_id=user_id,
            chain_name=chain_name(memories, chain_type),
            chain_type=chain_type,
            memory_sequence=[m.memory_id for m in memories],
            chain_strength=sum(r.strength for r in relationships) / len(relationships),
            chain_summary=self.generate_chain_summary(memories, chain_type),
            topics_covered=extract_topics(memories),
            emotional_arc=analyze_emotional_arc(memories),
            created_at=now,
            last_updated=now,
        )
        chain_id = self.chains.insert_chain(chain)
        logger.info(
            "[chains.created] user_id=%s chain_id=%s size=%s strength=%.3f",
            user_id,
            chain_id,
            len(chain.memory_sequence),
            chain.chain_strength,
        )
        return chain_id

    def build_chain_for_memory(self, user_id: str, memory_id: str) -> Optional[str]:
        """Chain ``memory_id`` with its strongest relations unless it is already chained."""
        if self.chains.is_memory_chained(user_id, memory_id):
            return None
        relationships = self.detect_memory_relationships(user_id, memory_id)
        if len(relationships) < MIN_RELATIONSHIPS:
            return None
        return self.create_memory_chain(user_id, memory_id, relationships[:MAX_RELATED_PER_CHAIN])

    def build_memory_chains(
        self,
        user_id: str,
        max_chains: int = 10,
        lookback_days: int = 7,
        now: Optional[datetime] = None,
    ) -> int:
        """Create chains for recent seed memories; returns how many were created."""
        now = now or utcnow()
        seeds = self.episodic.list_recent_memories(
            user_id, limit=SEED_SCAN_LIMIT, since=now - timedelta(days=lookback_days)
        )
        created = 0
        for seed in seeds[:max_chains]:
            if self.build_chain_for_memory(user_id, seed.memory_id):
                created += 1
        logger.info("[chains.build.done] user_id=%s seeds=%s created=%s", user_id, len(seeds[:max_chains]), created)
        return created

    def get_chain_memories(self, user_id: str, chain_id: str) -> Optional[Dict[str, Any]]:
        chain = self.chains.get_chain(user_id, chain_id)
        if chain is None:
            return None
        by_id = {m.memory_id: m for m in self.episodic.get_memories_by_ids(user_id, chain.memory_sequence)}
        memories = [by_id[mid] for mid in chain.memory_sequence if mid in by_id]
        self.chains.increment_chain_access(chain_id)
        return {
            "chain_id": chain.chain_id,
            "chain_name": chain.chain_name,
            "chain_type": chain.chain_type,
            "summary": chain.chain_summary,
            "topics": list(chain.topics_covered),
            "emotional_arc": chain.emotional_arc,
            "strength": chain.chain_strength,
            "memories": memories,
        }

    def find_relevant_chains(self, user_id: str, query: Optional[str] = None, limit: int = 5) -> List[MemoryChain]:
        return self.chains.list_chains(user_id, query=query or None, limit=limit)

    def get_narrative_understanding(self, user_id: str, topic: Optional[str] = None) -> Optional[Dict[str, Any]]:
        chains = self.find_relevant_chains(user_id, topic, limit=10)
        if not chains:
            return None

        narrative = None
        source = "fallback"
        if self.text_oracle is not None:
            payload = [
                {"chain": c.chain_name, "summary": c.chain_summary, "topics": list(c.topics_covered)}
                for c in chains
            ]
            result = self.text_oracle.analyze(NARRATIVE_PROMPT, {"chains": payload})
            if result.ok and isinstance(result.value, dict):
                text = result.value.get("narrative")
                if isinstance(text, str) and text.strip():
                    narrative, source = text.strip(), "oracle"
        if narrative is None:
            narrative = "\n\n".join(c.chain_summary for c in chains if c.chain_summary)

        return {
            "topic": topic or "General",
            "chains_analyzed": len(chains),
            "narrative": narrative,
            "source": source,
            "key_chains": chains[:3],
        }

    # -- maintenance -------------------------------------------------------

    def extend_important_chains(self, now: Optional[datetime] = None) -> int:
        """Append the best newer memory to strong or popular chains."""
        now = now or utcnow()
        extended = 0
        candidates = self.chains.list_chains_for_extension(
            min_strength=EXTENSION_MIN_STRENGTH,
            min_access=EXTENSION_MIN_ACCESS,
            updated_before=now - EXTENSION_IDLE,
            limit=EXTENSION_BATCH,
        )
        for chain in candidates:
            try:
                last = self.episodic.get_memory(chain.user_id, chain.end_memory_id)
                if last is None:
                    continue
                newer = self.episodic.list_recent_memories(
                    chain.user_id,
                    limit=self.window,
                    after=last.created_at,
                    exclude_ids=chain.memory_sequence,
                )
                best = max((score_relationship(last, m) for m in newer), key=lambda r: r.strength, default=None)
                if best is None or best.strength <= EXTENSION_THRESHOLD:
                    continue
                self.chains.extend_chain(
                    chain.chain_id, best.related_memory_id, max(chain.chain_strength, best.strength), now
                )
                extended += 1
                logger.info(
                    "[maint.chains.extended] chain_id=%s memory_id=%s strength=%.3f",
                    chain.chain_id,
                    best.related_memory_id,
                    best.strength,
                )
            except Exception:
                logger.exception("[maint.chains.extend.error] chain_id=%s user_id=%s", chain.chain_id, chain.user_id)
        return extended

    def cleanup_weak_chains(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        return self.chains.delete_weak_chains(WEAK_CHAIN_STRENGTH, now - WEAK_CHAIN_AGE)

    def decay_chain_strengths(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        decayed = 0
        for chain in self.chains.list_stale_chains(now - DECAY_IDLE):
            strength = max(DECAY_FLOOR, chain.chain_strength * DECAY_FACTOR + chain.access_count * DECAY_ACCESS_BONUS)
            if strength != chain.chain_strength:
                self.chains.update_chain_strength(chain.chain_id, strength)
                decayed += 1
        return decayed

    def deep_cleanup(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        return self.chains.delete_unused_chains(now - DEEP_CLEANUP_AGE)
