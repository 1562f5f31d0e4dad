"""PostgreSQL implementations of the store interfaces."""

from __future__ import annotations

import logging
import os
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

import psycopg
from pgvector.psycopg import register_vector
from psycopg.rows import dict_row
from psycopg.types.json import Json

from ai_brain.dependencies.postgres import get_postgres_pool
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
)
from ai_brain.storage.base import (
    ChainStore,
    EmotionStore,
    EpisodicStore,
    PersonalityStore,
    UserModelStore,
    normalize_statement,
)


logger = logging.getLogger("ai_brain.storage.postgres")

MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "migrations")

_MEMORY_COLUMNS = """
    memory_id, user_id, persona_id, conversation_text, embedding, emotional_context,
    importance_score, access_count, last_accessed, pinned, timestamp
"""

_CHAIN_COLUMNS = """
    chain_id, user_id, chain_name, chain_type, memory_sequence, chain_strength,
    chain_summary, topics_covered, emotional_arc, access_count, created_at, last_updated
"""


def _unwrap_json(value: Any) -> Any:
    if hasattr(value, "obj"):
        return value.obj
    return value


def _row_to_memory(row: Dict[str, Any]) -> Memory:
    content = _unwrap_json(row.get("conversation_text")) or {}
    embedding = row.get("embedding")
    return Memory(
        memory_id=row["memory_id"],
        user_id=row["user_id"],
        persona_id=row.get("persona_id"),
        user_text=str(content.get("user", "")),
        ai_text=str(content.get("ai", "")),
        embedding=[float(x) for x in embedding] if embedding is not None else None,
        emotional_context=_unwrap_json(row.get("emotional_context")),
        importance_score=float(row["importance_score"]),
        access_count=int(row.get("access_count") or 0),
        last_accessed=row.get("last_accessed"),
        pinned=bool(row.get("pinned")),
        created_at=row["timestamp"],
    )


def _row_to_chain(row: Dict[str, Any]) -> MemoryChain:
    return MemoryChain(
        chain_id=row["chain_id"],
        user_id=row["user_id"],
        chain_name=row["chain_name"],
        chain_type=row.get("chain_type") or "narrative",
        memory_sequence=list(row.get("memory_sequence") or []),
        chain_strength=float(row["chain_strength"]),
        chain_summary=row.get("chain_summary") or "",
        topics_covered=list(row.get("topics_covered") or []),
        emotional_arc=_unwrap_json(row.get("emotional_arc")) or {},
        access_count=int(row.get("access_count") or 0),
        created_at=row["created_at"],
        last_updated=row["last_updated"],
    )


def _row_to_trait(row: Dict[str, Any]) -> PersonalityTrait:
    history = _unwrap_json(row.get("historical_values")) or {}
    return PersonalityTrait(
        user_id=row["user_id"],
        trait_name=row["trait_name"],
        current_value=float(row["current_value"]),
        historical_values={str(k): float(v) for k, v in history.items()},
        created_at=row["created_at"],
        last_modified=row.get("last_modified"),
        last_consolidated=row.get("last_consolidated"),
        consolidation_count=int(row.get("consolidation_count") or 0),
    )


def _row_to_belief(row: Dict[str, Any]) -> UserBelief:
    return UserBelief(
        belief_id=row["belief_id"],
        user_id=row["user_id"],
        belief_statement=row["belief_statement"],
        belief_category=row.get("belief_category"),
        belief_strength=float(row["belief_strength"]),
        confidence_level=float(row["confidence_level"]),
        evidence_sources=list(row.get("evidence_sources") or []),
        first_expressed=row["first_expressed"],
        last_reinforced=row["last_reinforced"],
        is_active=bool(row["is_active"]),
    )


def _row_to_goal(row: Dict[str, Any]) -> UserGoal:
    return UserGoal(
        goal_id=row["goal_id"],
        user_id=row["user_id"],
        goal_description=row["goal_description"],
        goal_category=row.get("goal_category"),
        priority_level=int(row["priority_level"]),
        progress_percentage=float(row["progress_percentage"]),
        status=row["status"],
        success_criteria=row.get("success_criteria"),
        first_mentioned=row["first_mentioned"],
        last_updated=row["last_updated"],
    )


def _row_to_emotion(row: Dict[str, Any]) -> EmotionRecord:
    return EmotionRecord(
        emotion_id=row["emotion_id"],
        user_id=row["user_id"],
        emotion_type=row["emotion_type"],
        intensity=float(row["intensity"]),
        confidence=float(row.get("confidence") or 0.0),
        memory_id=row.get("context_memory_id"),
        trigger_text=row.get("trigger_text") or "",
        triggers=list(row.get("emotional_triggers") or []),
        duration_minutes=int(row.get("duration_minutes") or 0),
        empathy_response=row.get("empathy_response"),
        timestamp=row["timestamp"],
    )


def _row_to_pattern(row: Dict[str, Any]) -> EmotionalPattern:
    return EmotionalPattern(
        user_id=row["user_id"],
        emotion_type=row["emotion_type"],
        frequency_count=int(row.get("frequency_count") or 0),
        avg_intensity=float(row.get("avg_intensity") or 0.0),
        trigger_patterns=list(row.get("trigger_patterns") or []),
        response_patterns=list(row.get("response_patterns") or []),
        empathy_strategies=list(row.get("empathy_strategies") or []),
        confidence_score=float(row.get("confidence_score") or 0.0),
        last_observed=row["last_observed"],
    )


def _row_to_mental_state(row: Dict[str, Any]) -> MentalStateSnapshot:
    return MentalStateSnapshot(
        state_id=row["state_id"],
        user_id=row["user_id"],
        dominant_emotion=row.get("dominant_emotion"),
        emotional_intensity=float(row.get("emotional_intensity") or 0.0),
        cognitive_load=row.get("cognitive_load") or "normal",
        attention_focus=row.get("attention_focus"),
        decision_making_style=row.get("decision_making_style"),
        communication_style=row.get("communication_style"),
        stress_indicators=list(row.get("stress_indicators") or []),
        motivation_level=row.get("motivation_level") or "neutral",
        inferred_needs=list(row.get("inferred_needs") or []),
        confidence_score=float(row.get("confidence_score") or 0.0),
        timestamp=row["timestamp"],
    )


def _register_vector_type(conn) -> None:
    """Load pgvector values as float arrays on this pooled connection (once per connection)."""
    if conn.adapters.types.get("vector") is not None:
        return
    try:
        register_vector(conn)
    except psycopg.ProgrammingError:
        # extension not created yet; the migrations install it
        conn.rollback()


class _PostgresRepository:
    """Shared pool handling; every statement runs in its own transaction."""

    def __init__(self, pool=None) -> None:
        self.pool = pool if pool is not None else get_postgres_pool()

    def _execute(self, query: str, params: Any = None, *, fetch: Optional[str] = None):
        if self.pool is None:
            raise StoreUnavailable("PostgreSQL pool is not configured")
        try:
            with self.pool.connection() as conn:
                _register_vector_type(conn)
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(query, params)
                    if fetch == "one":
                        result = cur.fetchone()
                    elif fetch == "all":
                        result = cur.fetchall()
                    elif fetch == "rowcount":
                        result = cur.rowcount
                    else:
                        result = None
                conn.commit()
            return result
        except psycopg.Error as exc:
            logger.error("[store.error] %s", exc)
            raise StoreUnavailable(str(exc)) from exc

    def _ensure_user(self, user_id: str) -> None:
        self._execute(
            "INSERT INTO users (user_id) VALUES (%s) ON CONFLICT (user_id) DO NOTHING",
            (user_id,),
        )

    def initialize_schema(self) -> None:
        """Apply the SQL migrations shipped in ``migrations/`` (idempotent)."""
        for name in sorted(os.listdir(MIGRATIONS_DIR)):
            if not name.endswith(".sql"):
                continue
            with open(os.path.join(MIGRATIONS_DIR, name), "r", encoding="utf-8") as f:
                self._execute(f.read())
            logger.info("[store.migrate] applied %s", name)


class PostgresEpisodicStore(_PostgresRepository, EpisodicStore):
    def insert_memory(self, memory: Memory) -> str:
        self._ensure_user(memory.user_id)
        row = self._execute(
            """
            INSERT INTO episodic_memory (
                memory_id, user_id, persona_id, conversation_text, embedding,
                emotional_context, importance_score, pinned, timestamp
            ) VALUES (%s, %s, %s, %s, %s::vector, %s, %s, %s, %s)
            RETURNING memory_id
            """,
            (
                memory.memory_id,
                memory.user_id,
                memory.persona_id,
                Json(memory.content()),
                memory.embedding,
                Json(memory.emotional_context) if memory.emotional_context is not None else None,
                memory.importance_score,
                memory.pinned,
                memory.created_at,
            ),
            fetch="one",
        )
        return row["memory_id"]

    def get_memory(self, user_id: str, memory_id: str) -> Optional[Memory]:
        row = self._execute(
            f"SELECT {_MEMORY_COLUMNS} FROM episodic_memory WHERE user_id = %s AND memory_id = %s",
            (user_id, memory_id),
            fetch="one",
        )
        return _row_to_memory(row) if row else None

    def get_memories_by_ids(self, user_id: str, memory_ids: Sequence[str]) -> List[Memory]:
        if not memory_ids:
            return []
        rows = self._execute(
            f"""
            SELECT {_MEMORY_COLUMNS} FROM episodic_memory
            WHERE user_id = %s AND memory_id = ANY(%s)
            ORDER BY timestamp ASC
            """,
            (user_id, list(memory_ids)),
            fetch="all",
        )
        return [_row_to_memory(r) for r in rows or []]

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
        query = f"SELECT {_MEMORY_COLUMNS} FROM episodic_memory WHERE user_id = %s"
        params: List[Any] = [user_id]
        if since is not None:
            query += " AND timestamp >= %s"
            params.append(since)
        if after is not None:
            query += " AND timestamp > %s"
            params.append(after)
        if exclude_ids:
            query += " AND NOT (memory_id = ANY(%s))"
            params.append(list(exclude_ids))
        if persona_id:
            query += " AND persona_id = %s"
            params.append(persona_id)
        if min_importance is not None:
            query += " AND importance_score > %s"
            params.append(min_importance)
        query += " ORDER BY timestamp DESC LIMIT %s"
        params.append(limit)
        rows = self._execute(query, params, fetch="all")
        return [_row_to_memory(r) for r in rows or []]

    def rank_memories_by_embedding(
        self,
        user_id: str,
        embedding: Sequence[float],
        *,
        limit: int,
        persona_id: Optional[str] = None,
        min_importance: Optional[float] = None,
    ) -> List[Memory]:
        vector = [float(x) for x in embedding]
        if not vector:
            return self.list_recent_memories(user_id, limit=limit, persona_id=persona_id, min_importance=min_importance)
        query = f"SELECT {_MEMORY_COLUMNS} FROM episodic_memory WHERE user_id = %s"
        params: List[Any] = [user_id]
        if persona_id:
            query += " AND persona_id = %s"
            params.append(persona_id)
        if min_importance is not None:
            query += " AND importance_score > %s"
            params.append(min_importance)
        # vectors of another dimension (older embedding model) cannot be compared
        query += """
            ORDER BY CASE WHEN vector_dims(embedding) = %s THEN embedding <=> %s::vector END ASC NULLS LAST,
                     timestamp DESC
            LIMIT %s
        """
        params.extend([len(vector), vector, limit])
        rows = self._execute(query, params, fetch="all")
        return [_row_to_memory(r) for r in rows or []]

    def record_access(
self, user_id: str, memory_ids: Sequence[str], accessed_at: datetime) -> int:
        if not memory_ids:
            return 0
        return self._execute(
            """
            UPDATE episodic_memory
            SET access_count = access_count + 1,
                last_accessed = %s
            WHERE user_id = %s AND memory_id = ANY(%s)
            """,
            (accessed_at, user_id, list(memory_ids)),
            fetch="rowcount",
        )

    def set_pinned(self, user_id: str, memory_id: str, pinned: bool) -> bool:
        count = self._execute(
            "UPDATE episodic_memory SET pinned = %s WHERE user_id = %s AND memory_id = %s",
            (pinned, user_id, memory_id),
            fetch="rowcount",
        )
        return bool(count)

    def delete_memory(self, user_id: str, memory_id: str) -> bool:
        count = self._execute(
            "DELETE FROM episodic_memory WHERE user_id = %s AND memory_id = %s",
            (user_id, memory_id),
            fetch="rowcount",
        )
        return bool(count)

    def get_memory_stats(self, user_id: str) -> MemoryStats:
        row = self._execute(
            """
            SELECT
                COUNT(*) AS total_memories,
                AVG(importance_score) AS avg_importance,
                MAX(timestamp) AS last_memory,
                SUM(access_count) AS total_accesses,
                COUNT(*) FILTER (WHERE pinned) AS pinned_memories
            FROM episodic_memory
            WHERE user_id = %s
            """,
            (user_id,),
            fetch="one",
        ) or {}
        return MemoryStats(
            total_memories=int(row.get("total_memories") or 0),
            avg_importance=float(row.get("avg_importance") or 0.0),
            last_memory=row.get("last_memory"),
            total_accesses=int(row.get("total_accesses") or 0),
            pinned_memories=int(row.get("pinned_memories") or 0),
        )

    def list_user_ids(self) -> List[str]:
        rows = self._execute("SELECT user_id FROM users ORDER BY user_id", fetch="all")
        return [r["user_id"] for r in rows or []]

    def list_active_user_ids(self, since: datetime) -> List[str]:
        rows = self._execute(
            "SELECT DISTINCT user_id FROM episodic_memory WHERE timestamp >= %s ORDER BY user_id",
            (since,),
            fetch="all",
        )
        return [r["user_id"] for r in rows or []]

    def list_accessed_memories(self, user_id: str, since: datetime) -> List[Memory]:
        rows = self._execute(
            f"""
            SELECT {_MEMORY_COLUMNS} FROM episodic_memory
            WHERE user_id = %s AND last_accessed >= %s
            """,
            (user_id, since),
            fetch="all",
        )
        return [_row_to_memory(r) for r in rows or []]

    def list_stale_memories(self, user_id: str, created_before: datetime, idle_since: datetime) -> List[Memory]:
        rows = self._execute(
            f"""
            SELECT {_MEMORY_COLUMNS} FROM episodic_memory
            WHERE user_id = %s
              AND NOT pinned
              AND timestamp < %s
              AND (last_accessed IS NULL OR last_accessed < %s)
            """,
            (user_id, created_before, idle_since),
            fetch="all",
        )
        return [_row_to_memory(r) for r in rows or []]

    def update_importance_scores(self, user_id: str, scores: Dict[str, float]) -> int:
        if not scores:
            return 0
        updated = 0
        for memory_id, score in scores.items():
            updated += self._execute(
                """
                UPDATE episodic_memory SET importance_score = %s
                WHERE user_id = %s AND memory_id = %s
                """,
                (score, user_id, memory_id),
                fetch="rowcount",
            ) or 0
        return updated

    def delete_unpinned_memories(self, user_id: str, memory_ids: Sequence[str]) -> int:
        if not memory_ids:
            return 0
        return self._execute(
            """
            DELETE FROM episodic_memory
            WHERE user_id = %s AND memory_id = ANY(%s) AND NOT pinned
            """,
            (user_id, list(memory_ids)),
            fetch="rowcount",
        )


class PostgresChainStore(_PostgresRepository, ChainStore):
    def insert_chain(self, chain: MemoryChain) -> str:
        row = self._execute(
            """
            INSERT INTO memory_chains (
                chain_id, user_id, chain_name, chain_type, start_memory_id, end_memory_id,
                memory_sequence, chain_strength, chain_summary, topics_covered, emotional_arc,
                access_count, created_at, last_updated
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING chain_id
            """,
            (
                chain.chain_id,
                chain.user_id,
                chain.chain_name,
                chain.chain_type,
                chain.start_memory_id,
                chain.end_memory_id,
                list(chain.memory_sequence),
                chain.chain_strength,
                chain.chain_summary,
                list(chain.topics_covered),
                Json(chain.emotional_arc),
                chain.access_count,
                chain.created_at,
                chain.last_updated,
            ),
            fetch="one",
        )
        return row["chain_id"]

    def get_chain(self, user_id: str, chain_id: str) -> Optional[MemoryChain]:
        row = self._execute(
            f"SELECT {_CHAIN_COLUMNS} FROM memory_chains WHERE user_id = %s AND chain_id = %s",
            (user_id, chain_id),
            fetch="one",
        )
        return _row_to_chain(row) if row else None

    def list_chains(self, user_id: str, *, query: Optional[str] = None, limit: int = 5) -> List[MemoryChain]:
        sql = f"SELECT {_CHAIN_COLUMNS} FROM memory_chains WHERE user_id = %s"
        params: List[Any] = [user_id]
        if query:
            sql += " AND (chain_summary ILIKE %s OR %s = ANY(topics_covered))"
            params.extend([f"%{query}%", query.lower()])
        sql += " ORDER BY chain_strength DESC, access_count DESC LIMIT %s"
        params.append(limit)
        rows = self._execute(sql, params, fetch="all")
        return [_row_to_chain(r) for r in rows or []]

    def is_memory_chained(self, user_id: str, memory_id: str) -> bool:
        row = self._execute(
            "SELECT 1 AS found FROM memory_chains WHERE user_id = %s AND %s = ANY(memory_sequence) LIMIT 1",
            (user_id, memory_id),
            fetch="one",
        )
        return row is not None

    def increment_chain_access(self, chain_id: str) -> None:
        self._execute(
            """
            UPDATE memory_chains
            SET access_count = access_count + 1, last_updated = NOW()
            WHERE chain_id = %s
            """,
            (chain_id,),
        )

    def list_chains_for_extension(
        self, *, min_strength: float, min_access: int, updated_before: datetime, limit: int
    ) -> List[MemoryChain]:
        rows = self._execute(
            f"""
            SELECT {_CHAIN_COLUMNS} FROM memory_chains
            WHERE (chain_strength > %s OR access_count > %s)
              AND last_updated < %s
            ORDER BY chain_strength DESC
            LIMIT %s
            """,
            (min_strength, min_access, updated_before, limit),
            fetch="all",
        )
        return [_row_to_chain(r) for r in rows or []]

    def extend_chain(self, chain_id: str, memory_id: str, strength: float, updated_at: datetime) -> None:
        self._execute(
            """
            UPDATE memory_chains
            SET memory_sequence = array_append(memory_sequence, %s),
                end_memory_id = %s,
                chain_strength = GREATEST(chain_strength, %s),
                last_updated = %s
            WHERE chain_id = %s
            """,
            (memory_id, memory_id, strength, updated_at, chain_id),
        )

    def list_stale_chains(self, updated_before: datetime) -> List[MemoryChain]:
        rows = self._execute(
            f"SELECT {_CHAIN_COLUMNS} FROM memory_chains WHERE last_updated < %s",
            (updated_before,),
            fetch="all",
        )
        return [_row_to_chain(r) for r in rows or []]

    def update_chain_strength(self, chain_id: str, strength: float) -> None:
        self._execute(
            "UPDATE memory_chains SET chain_strength = %s WHERE chain_id = %s",
            (strength, chain_id),
        )

    def delete_weak_chains(self, max_strength: float, created_before: datetime) -> int:
        return self._execute(
            """
            DELETE FROM memory_chains
            WHERE chain_strength < %s AND access_count = 0 AND created_at < %s
            """,
            (max_strength, created_before),
            fetch="rowcount",
        )

    def delete_unused_chains(self, created_before: datetime) -> int:
        return self._execute(
            "DELETE FROM memory_chains WHERE access_count = 0 AND created_at < %s",
            (created_before,),
            fetch="rowcount",
        )


class PostgresPersonalityStore(_PostgresRepository, PersonalityStore):
    def ensure_traits(self, user_id: str, trait_names: Iterable[str], default_value: float) -> None:
        self._ensure_user(user_id)
        for trait in trait_names:
            self._execute(
                """
                INSERT INTO personality_state (user_id, trait_name, current_value)
                VALUES (%s, %s, %s)
                ON CONFLICT (user_id, trait_name) DO NOTHING
                """,
                (user_id, trait, default_value),
            )

    def list_traits(self, user_id: str) -> List[PersonalityTrait]:
        rows = self._execute(
            """
            SELECT user_id, trait_name, current_value, historical_values, created_at,
                   last_modified, last_consolidated, consolidation_count
            FROM personality_state
            WHERE user_id = %s
            ORDER BY trait_name
            """,
            (user_id,),
            fetch="all",
        )
        return [_row_to_trait(r) for r in rows or []]

    def save_evolved_trait(
        self, user_id: str, trait_name: str, value: float, snapshot_day: date, modified_at: datetime
    ) -> None:
        self._execute(
            """
            UPDATE personality_state
            SET current_value = %s,
                historical_values = jsonb_set(historical_values, ARRAY[%s], to_jsonb(%s::double precision)),
                last_modified = %s
            WHERE user_id = %s AND trait_name = %s
            """,
            (value, snapshot_day.isoformat(), value, modified_at, user_id, trait_name),
        )

    def save_consolidated_trait(self, user_id: str, trait_name: str, value: float, consolidated_at: datetime) -> None:
        self._execute(
            """
            UPDATE personality_state
            SET current_value = %s,
                last_consolidated = %s,
                consolidation_count = COALESCE(consolidation_count, 0) + 1
            WHERE user_id = %s AND trait_name = %s
            """,
            (value, consolidated_at, user_id, trait_name),
        )

    def delete_traits(self, user_id: str) -> int:
        return self._execute(
            "DELETE FROM personality_state WHERE user_id = %s",
            (user_id,),
            fetch="rowcount",
        )


class PostgresUserModelStore(_PostgresRepository, UserModelStore):
    def find_belief(self, user_id: str, statement_key: str) -> Optional[UserBelief]:
        row = self._execute(
            "SELECT * FROM user_beliefs WHERE user_id = %s AND statement_key = %s",
            (user_id, statement_key),
            fetch="one",
        )
        return _row_to_belief(row) if row else None

    def insert_belief(self, belief: UserBelief) -> str:
        self._ensure_user(belief.user_id)
        self._execute(
            """
            INSERT INTO user_beliefs (
                belief_id, user_id, belief_statement, statement_key, belief_category,
                belief_strength, confidence_level, evidence_sources, first_expressed,
                last_reinforced, is_active
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (user_id, statement_key) DO NOTHING
            """,
            (
                belief.belief_id,
                belief.user_id,
                belief.belief_statement,
                normalize_statement(belief.belief_statement),
                belief.belief_category,
                belief.belief_strength,
                belief.confidence_level,
                list(belief.evidence_sources),
                belief.first_expressed,
                belief.last_reinforced,
                belief.is_active,
            ),
        )
        return belief.belief_id

    def update_belief(self, belief: UserBelief) -> None:
        self._execute(
            """
            UPDATE user_beliefs
            SET belief_strength = %s,
                confidence_level = %s,
                evidence_sources = %s,
                last_reinforced = %s,
                is_active = %s
            WHERE belief_id = %s
            """,
            (
                belief.belief_strength,
                belief.confidence_level,
                list(belief.evidence_sources),
                belief.last_reinforced,
                belief.is_active,
                belief.belief_id,
            ),
        )

    def list_beliefs(
        self, user_id: str, *, category: Optional[str] = None, active_only: bool = True, limit: int = 20
    ) -> List[UserBelief]:
        query = "SELECT * FROM user_beliefs WHERE user_id = %s"
        params: List[Any] = [user_id]
        if active_only:
            query += " AND is_active = TRUE"
        if category:
            query += " AND belief_category = %s"
            params.append(category)
        query += " ORDER BY belief_strength DESC, last_reinforced DESC LIMIT %s"
        params.append(limit)
        rows = self._execute(query, params, fetch="all")
        return [_row_to_belief(r) for r in rows or []]

    def list_beliefs_reinforced_since(self, user_id: str, since: datetime) -> List[UserBelief]:
        rows = self._execute(
            "SELECT * FROM user_beliefs WHERE user_id = %s AND is_active = TRUE AND last_reinforced >= %s",
            (user_id, since),
            fetch="all",
        )
        return [_row_to_belief(r) for r in rows or []]

    def deactivate_stale_beliefs(self, reinforced_before: datetime, max_strength: float) -> int:
        return self._execute(
            """
            UPDATE user_beliefs
            SET is_active = FALSE
            WHERE is_active = TRUE AND last_reinforced < %s AND belief_strength < %s
            """,
            (reinforced_before, max_strength),
            fetch="rowcount",
        )

    def find_goal(self, user_id: str, description_key: str) -> Optional[UserGoal]:
        row = self._execute(
            "SELECT * FROM user_goals WHERE user_id = %s AND description_key = %s",
            (user_id, description_key),
            fetch="one",
        )
        return _row_to_goal(row) if row else None

    def get_goal(self, user_id: str, goal_id: str) -> Optional[UserGoal]:
        row = self._execute(
            "SELECT * FROM user_goals WHERE user_id = %s AND goal_id = %s",
            (user_id, goal_id),
            fetch="one",
        )
        return _row_to_goal(row) if row else None

    def insert_goal(self, goal: UserGoal) -> str:
        self._ensure_user(goal.user_id)
        self._execute(
            """
            INSERT INTO user_goals (
                goal_id, user_id, goal_description, description_key, goal_category,
                priority_level, progress_percentage, status, success_criteria,
                first_mentioned, last_updated
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (user_id, description_key) DO NOTHING
            """,
            (
                goal.goal_id,
                goal.user_id,
                goal.goal_description,
                normalize_statement(goal.goal_description),
                goal.goal_category,
                goal.priority_level,
                goal.progress_percentage,
                goal.status,
                goal.success_criteria,
                goal.first_mentioned,
                goal.last_updated,
            ),
        )
        return goal.goal_id

    def update_goal(self, goal: UserGoal) -> None:
        self._execute(
            """
            UPDATE user_goals
            SET priority_level = %s,
                progress_percentage = %s,
                status = %s,
                last_updated = %s
            WHERE goal_id = %s
            """,
            (goal.priority_level, goal.progress_percentage, goal.status, goal.last_updated, goal.goal_id),
        )

    def list_goals(self, user_id: str, *, status: Optional[str] = "active", limit: int = 10) -> List[UserGoal]:
        query = "SELECT * FROM user_goals WHERE user_id = %s"
        params: List[Any] = [user_id]
        if status:
            query += " AND status = %s"
            params.append(status)
        query += " ORDER BY priority_level DESC, first_mentioned DESC LIMIT %s"
        params.append(limit)
        rows = self._execute(query, params, fetch="all")
        return [_row_to_goal(r) for r in rows or []]

    def list_active_goals(self, user_id: str, updated_before: datetime, limit: int) -> List[UserGoal]:
        rows = self._execute(
            """
            SELECT * FROM user_goals
            WHERE user_id = %s AND status = 'active' AND last_updated < %s
            ORDER BY last_updated ASC
            LIMIT %s
            """,
            (user_id, updated_before, limit),
            fetch="all",
        )
        return [_row_to_goal(r) for r in rows or []]

    def abandon_stale_goals(self, updated_before: datetime) -> int:
        return self._execute(
            """
            UPDATE user_goals
            SET status = 'abandoned'
            WHERE status = 'active' AND last_updated < %s AND progress_percentage = 0
            """,
            (updated_before,),
            fetch="rowcount",
        )

    def insert_mental_state(self, state: MentalStateSnapshot) -> str:
        self._ensure_user(state.user_id)
        self._execute(
            """
            INSERT INTO mental_states (
                state_id, user_id, dominant_emotion, emotional_intensity, cognitive_load,
                attention_focus, decision_making_style, communication_style,
                stress_indicators, motivation_level, inferred_needs, confidence_score, timestamp
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                state.state_id,
                state.user_id,
                state.dominant_emotion,
                state.emotional_intensity,
                state.cognitive_load,
                state.attention_focus,
                state.decision_making_style,
                state.communication_style,
                list(state.stress_indicators),
                state.motivation_level,
                list(state.inferred_needs),
                state.confidence_score,
                state.timestamp,
            ),
        )
        return state.state_id

    def latest_mental_state(self, user_id: str) -> Optional[MentalStateSnapshot]:
        row = self._execute(
            "SELECT * FROM mental_states WHERE user_id = %s ORDER BY timestamp DESC LIMIT 1",
            (user_id,),
            fetch="one",
        )
        return _row_to_mental_state(row) if row else None

    def prune_mental_states(self, keep: int) -> int:
        return self._execute(
            """
            DELETE FROM mental_states
            WHERE state_id IN (
                SELECT state_id FROM (
                    SELECT state_id,
                           ROW_NUMBER() OVER (PARTITION BY user_id ORDER BY timestamp DESC) AS rn
                    FROM mental_states
                ) ranked
                WHERE rn > %s
            )
            """,
            (keep,),
            fetch="rowcount",
        )


class PostgresEmotionStore(_PostgresRepository, EmotionStore):
    def list_unanalyzed_memories(self, user_id: str, since: datetime, limit: int) -> List[Memory]:
        columns = ", ".join(f"em.{c.strip()}" for c in _MEMORY_COLUMNS.split(","))
        rows = self._execute(
            f"""
            SELECT {columns}
            FROM episodic_memory em
            WHERE em.user_id = %s
              AND em.timestamp >= %s
              AND NOT EXISTS (
                  SELECT 1 FROM emotional_timeline et WHERE et.context_memory_id = em.memory_id
              )
            ORDER BY em.timestamp DESC
            LIMIT %s
            """,
            (user_id, since, limit),
            fetch="all",
        )
        return [_row_to_memory(r) for r in rows or []]

    def insert_emotions(self, records: Sequence[EmotionRecord]) -> int:
        inserted = 0
        for record in records:
            self._ensure_user(record.user_id)
            inserted += self._execute(
                """
                INSERT INTO emotional_timeline (
                    emotion_id, user_id, emotion_type, intensity, confidence,
                    context_memory_id, trigger_text, emotional_triggers,
                    duration_minutes, empathy_response, timestamp
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (emotion_id) DO NOTHING
                """,
                (
                    record.emotion_id,
                    record.user_id,
                    record.emotion_type,
                    record.intensity,
                    record.confidence,
                    record.memory_id,
                    record.trigger_text,
                    list(record.triggers),
                    record.duration_minutes,
                    record.empathy_response,
                    record.timestamp,
                ),
                fetch="rowcount",
            ) or 0
        return inserted

    def list_emotions(self, user_id: str, since: datetime, limit: Optional[int] = None) -> List[EmotionRecord]:
        query = "SELECT * FROM emotional_timeline WHERE user_id = %s AND timestamp >= %s ORDER BY timestamp DESC"
        params: List[Any] = [user_id, since]
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)
        rows = self._execute(query, params, fetch="all")
        return [_row_to_emotion(r) for r in rows or []]

    def upsert_pattern(self, pattern: EmotionalPattern) -> None:
        self._ensure_user(pattern.user_id)
        self._execute(
            """
            INSERT INTO emotional_patterns (
                user_id, emotion_type, frequency_count, avg_intensity, trigger_patterns,
                response_patterns, empathy_strategies, confidence_score, last_observed
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (user_id, emotion_type) DO UPDATE SET
                frequency_count = EXCLUDED.frequency_count,
                avg_intensity = EXCLUDED.avg_intensity,
                trigger_patterns = EXCLUDED.trigger_patterns,
                response_patterns = EXCLUDED.response_patterns,
                empathy_strategies = EXCLUDED.empathy_strategies,
                confidence_score = EXCLUDED.confidence_score,
                last_observed = EXCLUDED.last_observed
            """,
            (
                pattern.user_id,
                pattern.emotion_type,
                pattern.frequency_count,
                pattern.avg_intensity,
                list(pattern.trigger_patterns),
                list(pattern.response_patterns),
                list(pattern.empathy_strategies),
                pattern.confidence_score,
                pattern.last_observed,
            ),
        )

    def list_patterns(self, user_id: str, limit: Optional[int] = None) -> List[EmotionalPattern]:
        query = "SELECT * FROM emotional_patterns WHERE user_id = %s ORDER BY confidence_score DESC, emotion_type"
        params: List[Any] = [user_id]
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)
        rows = self._execute(query, params, fetch="all")
        return [_row_to_pattern(r) for r in rows or []]

    def get_pattern(self, user_id: str, emotion_type: str) -> Optional[EmotionalPattern]:
        row = self._execute(
            "SELECT * FROM emotional_patterns WHERE user_id = %s AND emotion_type = %s",
            (user_id, emotion_type),
            fetch="one",
        )
        return _row_to_pattern(row) if row else None

    def delete_emotions_before(self, cutoff: datetime) -> int:
        return self._execute(
            "DELETE FROM emotional_timeline WHERE timestamp < %s",
            (cutoff,),
            fetch="rowcount",
        )
