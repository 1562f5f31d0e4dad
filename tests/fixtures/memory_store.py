"""In-memory store used by the unit tests.

Implements every store interface on one object so a single instance can be
handed to all engines. ``fail_users`` makes any call scoped to those users
raise StoreUnavailable.
"""

import copy
import uuid
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set

from ai_brain.errors import StoreUnavailable
from ai_brain.models import (
    EmotionalPattern,
    EmotionRecord,
    Memory,
    MemoryChain,
    MemoryStats,
    MentalStateSnapshot,
    PersonalityTrait,
    UserBelief,
    UserGoal,
    utcnow,
)
from ai_brain.services.memory_service import cosine_similarity
from ai_brain.storage.base import (
    ChainStore,
    EmotionStore,
    EpisodicStore,
    PersonalityStore,
    UserModelStore,
    normalize_statement,
)


class InMemoryStore(EpisodicStore, ChainStore, PersonalityStore, UserModelStore, EmotionStore):
    def __init__(self) -> None:
        self.users: Set[str] = set()
        self.memories: Dict[str, Memory] = {}
        self.chains: Dict[str, MemoryChain] = {}
        self.traits: Dict[tuple, PersonalityTrait] = {}
        self.beliefs: Dict[str, UserBelief] = {}
        self.goals: Dict[str, UserGoal] = {}
        self.mental_states: Dict[str, MentalStateSnapshot] = {}
        self.emotions: Dict[str, EmotionRecord] = {}
        self.patterns: Dict[tuple, EmotionalPattern] = {}
        self.fail_users: Set[str] = set()

    def _check(self, user_id: str) -> None:
        if user_id in self.fail_users:
            raise StoreUnavailable(f"store down for {user_id}")

    # -- test helpers ------------------------------------------------------

    def add_memory(
        self,
        user_id: str,
        user_text: str,
        ai_text: str = "ok",
        *,
        created_at: Optional[datetime] = None,
        importance: float = 1.0,
        embedding: Optional[List[float]] = None,
        emotions: Optional[Dict[str, float]] = None,
        access_count: int = 0,
        last_accessed: Optional[datetime] = None,
        pinned: bool = False,
        persona_id: Optional[str] = None,
    ) -> Memory:
        memory = Memory(
            memory_id=str(uuid.uuid4()),
            user_id=user_id,
            user_text=user_text,
            ai_text=ai_text,
            importance_score=importance,
            created_at=created_at or utcnow(),
            persona_id=persona_id,
            embedding=embedding,
            emotional_context=emotions,
            access_count=access_count,
            last_accessed=last_accessed,
            pinned=pinned,
        )
        self.users.add(user_id)
        self.memories[memory.memory_id] = memory
        return memory

    def _user_memories(self, user_id: str) -> List[Memory]:
        return [m for m in self.memories.values() if m.user_id == user_id]

    # -- episodic ----------------------------------------------------------

    def insert_memory(self, memory: Memory) -> str:
        self._check(memory.user_id)
        self.users.add(memory.user_id)
        self.memories[memory.memory_id] = copy.deepcopy(memory)
        return memory.memory_id

    def get_memory(self, user_id: str, memory_id: str) -> Optional[Memory]:
        self._check(user_id)
        memory = self.memories.get(memory_id)
        if memory is None or memory.user_id != user_id:
            return None
        return copy.deepcopy(memory)

    def get_memories_by_ids(self, user_id: str, memory_ids: Sequence[str]) -> List[Memory]:
        self._check(user_id)
        wanted = set(memory_ids)
        found = [m for m in self._user_memories(user_id) if m.memory_id in wanted]
        return copy.deepcopy(sorted(found, key=lambda m: m.created_at))

    def list_recent_memories(
        self,
        user_id: str,
        *,
        limit: int,
        since: Optional[datetime] = None,
        after: Optional[datetime] = None,
        exclude_ids: Sequence[str] = (),
        persona_id: Optional[str] = None,
        min_importance: Optional[float] = None,
    ) -> List[Memory]:
        self._check(user_id)
        rows = []
        for m in self._user_memories(user_id):
            if since is not None and m.created_at < since:
                continue
            if after is not None and m.created_at <= after:
                continue
            if m.memory_id in exclude_ids:
                continue
            if persona_id and m.persona_id != persona_id:
                continue
            if min_importance is not None and m.importance_score <= min_importance:
                continue
            rows.append(m)
        rows.sort(key=lambda m: m.created_at, reverse=True)
        return copy.deepcopy(rows[:limit])

    def rank_memories_by_embedding(
        self,
        user_id: str,
        embedding: Sequence[float],
        *,
        limit: int,
        persona_id: Optional[str] = None,
        min_importance: Optional[float] = None,
    ) -> List[Memory]:
        self._check(user_id)
        rows = self.list_recent_memories(
            user_id, limit=len(self.memories), persona_id=persona_id, min_importance=min_importance
        )

        def rank(m: Memory):
            sim = cosine_similarity(embedding, m.embedding)
            return (sim is not None, sim if sim is not None else 0.0, m.created_at)

        rows.sort(key=rank, reverse=True)
        return rows[:limit]

    def record_access(self, user_id: str, memory_ids: Sequence[str], accessed_at: datetime) -> int:
        self._check(user_id)
        count = 0
        for memory_id in memory_ids:
            memory = self.memories.get(memory_id)
            if memory is not None and memory.user_id == user_id:
                memory.access_count += 1
                memory.last_accessed = accessed_at
                count += 1
        return count

    def set_pinned(self, user_id: str, memory_id: str, pinned: bool) -> bool:
        self._check(user_id)
        memory = self.memories.get(memory_id)
        if memory is None or memory.user_id != user_id:
            return False
        memory.pinned = pinned
        return True

    def delete_memory(self, user_id: str, memory_id: str) -> bool:
        self._check(user_id)
        memory = self.memories.get(memory_id)
        if memory is None or memory.user_id != user_id:
            return False
        del self.memories[memory_id]
        return True

    def get_memory_stats(self, user_id: str) -> MemoryStats:
        self._check(user_id)
        rows = self._user_memories(user_id)
        if not rows:
            return MemoryStats()
        return MemoryStats(
            total_memories=len(rows),
            avg_importance=sum(m.importance_score for m in rows) / len(rows),
            last_memory=max(m.created_at for m in rows),
            total_accesses=sum(m.access_count for m in rows),
            pinned_memories=sum(1 for m in rows if m.pinned),
        )

    def list_user_ids(self) -> List[str]:
        return sorted(self.users)

    def list_active_user_ids(self, since: datetime) -> List[str]:
        return sorted({m.user_id for m in self.memories.values() if m.created_at >= since})

    def list_accessed_memories(self, user_id: str, since: datetime) -> List[Memory]:
        self._check(user_id)
        rows = [m for m in self._user_memories(user_id) if m.last_accessed is not None and m.last_accessed >= since]
        return copy.deepcopy(rows)

    def list_stale_memories(self, user_id: str, created_before: datetime, idle_since: datetime) -> List[Memory]:
        self._check(user_id)
        rows = [
            m
            for m in self._user_memories(user_id)
            if not m.pinned
            and m.created_at < created_before
            and (m.last_accessed is None or m.last_accessed < idle_since)
        ]
        return copy.deepcopy(rows)

    def update_importance_scores(self, user_id: str, scores: Dict[str, float]) -> int:
        self._check(user_id)
        updated = 0
        for memory_id, score in scores.items():
            memory = self.memories.get(memory_id)
            if memory is not None and memory.user_id == user_id:
                memory.importance_score = score
                updated += 1
        return updated

    def delete_unpinned_memories(self, user_id: str, memory_ids: Sequence[str]) -> int:
        self._check(user_id)
        deleted = 0
        for memory_id in memory_ids:
            memory = self.memories.get(memory_id)
            if memory is not None and memory.user_id == user_id and not memory.pinned:
                del self.memories[memory_id]
                deleted += 1
        return deleted

    # -- chains ------------------------------------------------------------

    def insert_chain(self, chain: MemoryChain) -> str:
        self._check(chain.user_id)
        self.chains[chain.chain_id] = copy.deepcopy(chain)
        return chain.chain_id

    def get_chain(self, user_id: str, chain_id: str) -> Optional[MemoryChain]:
        self._check(user_id)
        chain = self.chains.get(chain_id)
        if chain is None or chain.user_id != user_id:
            return None
        return copy.deepcopy(chain)

    def list_chains(self, user_id: str, *, query: Optional[str] = None, limit: int = 5) -> List[MemoryChain]:
        self._check(user_id)
        rows = [c for c in self.chains.values() if c.user_id == user_id]
        if query:
            q = query.lower()
            rows = [c for c in rows if q in (c.chain_summary or "").lower() or q in c.topics_covered]
        rows.sort(key=lambda c: (c.chain_strength, c.access_count), reverse=True)
        return copy.deepcopy(rows[:limit])

    def is_memory_chained(self, user_id: str, memory_id: str) -> bool:
        self._check(user_id)
        return any(c.user_id == user_id and memory_id in c.memory_sequence for c in self.chains.values())

    def increment_chain_access(self, chain_id: str) -> None:
        chain = self.chains[chain_id]
        chain.access_count += 1
        chain.last_updated = utcnow()

    def list_chains_for_extension(
        self, *, min_strength: float, min_access: int, updated_before: datetime, limit: int
    ) -> List[MemoryChain]:
        rows = [
            c
            for c in self.chains.values()
            if (c.chain_strength > min_strength or c.access_count > min_access) and c.last_updated < updated_before
        ]
        rows.sort(key=lambda c: c.chain_strength, reverse=True)
        return copy.deepcopy(rows[:limit])

    def extend_chain(self, chain_id: str, memory_id: str, strength: float, updated_at: datetime) -> None:
        chain = self.chains[chain_id]
        self._check(chain.user_id)
        chain.memory_sequence.append(memory_id)
        chain.chain_strength = max(chain.chain_strength, strength)
        chain.last_updated = updated_at

    def list_stale_chains(self, updated_before: datetime) -> List[MemoryChain]:
        return copy.deepcopy([c for c in self.chains.values() if c.last_updated < updated_before])

    def update_chain_strength(self, chain_id: str, strength: float) -> None:
        self.chains[chain_id].chain_strength = strength

    def delete_weak_chains(self, max_strength: float, created_before: datetime) -> int:
        doomed = [
            cid
            for cid, c in self.chains.items()
            if c.chain_strength < max_strength and c.access_count == 0 and c.created_at < created_before
        ]
        for cid in doomed:
            del self.chains[cid]
        return len(doomed)

    def delete_unused_chains(self, created_before: datetime) -> int:
        doomed = [cid for cid, c in self.chains.items() if c.access_count == 0 and c.created_at < created_before]
        for cid in doomed:
            del self.chains[cid]
        return len(doomed)

    # -- personality -------------------------------------------------------

    def ensure_traits(self, user_id: str, trait_names: Iterable[str], default_value: float) -> None:
        self._check(user_id)
        self.users.add(user_id)
        for name in trait_names:
            self.traits.setdefault((user_id, name), PersonalityTrait(user_id, name, default_value))

    def list_traits(self, user_id: str) -> List[PersonalityTrait]:
        self._check(user_id)
        rows = [t for (uid, _), t in self.traits.items() if uid == user_id]
        return copy.deepcopy(sorted(rows, key=lambda t: t.trait_name))

    def save_evolved_trait(
        self, user_id: str, trait_name: str, value: float, snapshot_day: date, modified_at: datetime
    ) -> None:
        self._check(user_id)
        trait = self.traits[(user_id, trait_name)]
        trait.current_value = value
        trait.historical_values[snapshot_day.isoformat()] = value
        trait.last_modified = modified_at

    def save_consolidated_trait(self, user_id: str, trait_name: str, value: float, consolidated_at: datetime) -> None:
        self._check(user_id)
        trait = self.traits[(user_id, trait_name)]
        trait.current_value = value
        trait.last_consolidated = consolidated_at
        trait.consolidation_count += 1

    def delete_traits(self, user_id: str) -> int:
        self._check(user_id)
        doomed = [key for key in self.traits if key[0] == user_id]
        for key in doomed:
            del self.traits[key]
        return len(doomed)

    # -- user model --------------------------------------------------------

    def find_belief(self, user_id: str, statement_key: str) -> Optional[UserBelief]:
        self._check(user_id)
        for b in self.beliefs.values():
            if b.user_id == user_id and normalize_statement(b.belief_statement) == statement_key:
                return copy.deepcopy(b)
        return None

    def insert_belief(self, belief: UserBelief) -> str:
        self._check(belief.user_id)
        self.users.add(belief.user_id)
        self.beliefs[belief.belief_id] = copy.deepcopy(belief)
        return belief.belief_id

    def update_belief(self, belief: UserBelief) -> None:
        self._check(belief.user_id)
        self.beliefs[belief.belief_id] = copy.deepcopy(belief)

    def list_beliefs(
        self, user_id: str, *, category: Optional[str] = None, active_only: bool = True, limit: int = 20
    ) -> List[UserBelief]:
        self._check(user_id)
        rows = [
            b
            for b in self.beliefs.values()
            if b.user_id == user_id
            and (b.is_active or not active_only)
            and (category is None or b.belief_category == category)
        ]
        rows.sort(key=lambda b: (b.belief_strength, b.last_reinforced), reverse=True)
        return copy.deepcopy(rows[:limit])

    def list_beliefs_reinforced_since(self, user_id: str, since: datetime) -> List[UserBelief]:
        self._check(user_id)
        rows = [b for b in self.beliefs.values() if b.user_id == user_id and b.is_active and b.last_reinforced >= since]
        return copy.deepcopy(rows)

    def deactivate_stale_beliefs(self, reinforced_before: datetime, max_strength: float) -> int:
        count = 0
        for b in self.beliefs.values():
            if b.is_active and b.last_reinforced < reinforced_before and b.belief_strength < max_strength:
                b.is_active = False
                count += 1
        return count

    def find_goal(self, user_id: str, description_key: str) -> Optional[UserGoal]:
        self._check(user_id)
        for g in self.goals.values():
            if g.user_id == user_id and normalize_statement(g.goal_description) == description_key:
                return copy.deepcopy(g)
        return None

    def get_goal(self, user_id: str, goal_id: str) -> Optional[UserGoal]:
        self._check(user_id)
        goal = self.goals.get(goal_id)
        if goal is None or goal.user_id != user_id:
            return None
        return copy.deepcopy(goal)

    def insert_goal(self, goal: UserGoal) -> str:
        self._check(goal.user_id)
        self.users.add(goal.user_id)
        self.goals[goal.goal_id] = copy.deepcopy(goal)
        return goal.goal_id

    def update_goal(self, goal: UserGoal) -> None:
        self._check(goal.user_id)
        self.goals[goal.goal_id] = copy.deepcopy(goal)

    def list_goals(self, user_id: str, *, status: Optional[str] = "active", limit: int = 10) -> List[UserGoal]:
        self._check(user_id)
        rows = [g for g in self.goals.values() if g.user_id == user_id and (status is None or g.status == status)]
        rows.sort(key=lambda g: (g.priority_level, g.first_mentioned), reverse=True)
        return copy.deepcopy(rows[:limit])

    def list_active_goals(self, user_id: str, updated_before: datetime, limit: int) -> List[UserGoal]:
        self._check(user_id)
        rows = [
            g
            for g in self.goals.values()
            if g.user_id == user_id and g.status == "active" and g.last_updated < updated_before
        ]
        rows.sort(key=lambda g: g.last_updated)
        return copy.deepcopy(rows[:limit])

    def abandon_stale_goals(self, updated_before: datetime) -> int:
        count = 0
        for g in self.goals.values():
            if g.status == "active" and g.last_updated < updated_before and g.progress_percentage == 0:
                g.status = "abandoned"
                count += 1
        return count

    def insert_mental_state(self, state: MentalStateSnapshot) -> str:
        self._check(state.user_id)
        self.users.add(state.user_id)
        self.mental_states[state.state_id] = copy.deepcopy(state)
        return state.state_id

    def latest_mental_state(self, user_id: str) -> Optional[MentalStateSnapshot]:
        self._check(user_id)
        rows = [s for s in self.mental_states.values() if s.user_id == user_id]
        if not rows:
            return None
        return copy.deepcopy(max(rows, key=lambda s: s.timestamp))

    def prune_mental_states(self, keep: int) -> int:
        pruned = 0
        for user_id in {s.user_id for s in self.mental_states.values()}:
            rows = sorted(
                (s for s in self.mental_states.values() if s.user_id == user_id),
                key=lambda s: s.timestamp,
                reverse=True,
            )
            for state in rows[keep:]:
                del self.mental_states[state.state_id]
                pruned += 1
        return pruned

    # -- emotions ----------------------------------------------------------

    def list_unanalyzed_memories(self, user_id: str, since: datetime, limit: int) -> List[Memory]:
        self._check(user_id)
        analyzed = {e.memory_id for e in self.emotions.values() if e.memory_id}
        rows = [m for m in self._user_memories(user_id) if m.created_at >= since and m.memory_id not in analyzed]
        rows.sort(key=lambda m: m.created_at, reverse=True)
        return copy.deepcopy(rows[:limit])

    def insert_emotions(self, records: Sequence[EmotionRecord]) -> int:
        for record in records:
            self._check(record.user_id)
            self.users.add(record.user_id)
            self.emotions[record.emotion_id] = copy.deepcopy(record)
        return len(records)

    def list_emotions(self, user_id: str, since: datetime, limit: Optional[int] = None) -> List[EmotionRecord]:
        self._check(user_id)
        rows = [e for e in self.emotions.values() if e.user_id == user_id and e.timestamp >= since]
        rows.sort(key=lambda e: e.timestamp, reverse=True)
        return copy.deepcopy(rows if limit is None else rows[:limit])

    def upsert_pattern(self, pattern: EmotionalPattern) -> None:
        self._check(pattern.user_id)
        self.patterns[(pattern.user_id, pattern.emotion_type)] = copy.deepcopy(pattern)

    def list_patterns(self, user_id: str, limit: Optional[int] = None) -> List[EmotionalPattern]:
        self._check(user_id)
        rows = [p for p in self.patterns.values() if p.user_id == user_id]
        rows.sort(key=lambda p: (-p.confidence_score, p.emotion_type))
        return copy.deepcopy(rows if limit is None else rows[:limit])

    def get_pattern(self, user_id: str, emotion_type: str) -> Optional[EmotionalPattern]:
        self._check(user_id)
        return copy.deepcopy(self.patterns.get((user_id, emotion_type)))

    def delete_emotions_before(self, cutoff: datetime) -> int:
        stale = [emotion_id for emotion_id, e in self.emotions.items() if e.timestamp < cutoff]
        for emotion_id in stale:
            del self.emotions[emotion_id]
        return len(stale)
