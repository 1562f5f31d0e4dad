"""Store interfaces consumed by the engines.

Every engine depends on one of these abstract stores rather than on a
database driver, so the engines can be exercised against any implementation
that honours the same contracts. All methods raise
:class:`ai_brain.errors.StoreUnavailable` when the backing store cannot be
reached.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence

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


def normalize_statement(text: str) -> str:
    """Natural key for beliefs and goals: collapsed whitespace, case-folded."""
    return " ".join((text or "").split()).casefold()


class EpisodicStore(ABC):
    @abstractmethod
    def insert_memory(self, memory: Memory) -> str:
        """Persist a new memory row and return its id."""

    @abstractmethod
    def get_memory(self, user_id: str, memory_id: str) -> Optional[Memory]:
        ...

    @abstractmethod
    def get_memories_by_ids(self, user_id: str, memory_ids: Sequence[str]) -> List[Memory]:
        """Return the memories in chronological order; unknown ids are skipped."""

    @abstractmethod
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
        """Newest-first memories for a user.

        ``since`` is an inclusive lower bound on ``created_at``; ``after`` is a
        strict one. ``min_importance`` is a strict lower bound.
        """

    @abstractmethod
    def rank_memories_by_embedding(
        self,
        user_id: str,
        embedding: Sequence[float],
        *,
        limit: int,
        persona_id: Optional[str] = None,
        min_importance: Optional[float] = None,
    ) -> List[Memory]:
        """The user's memories closest to ``embedding`` by cosine distance.

        Searches the whole history, not a recent window. Memories without a
        vector of the same dimension sort after every scored one; ties break
        newest first.
        """

    @abstractmethod
    def record_access(self, user_id: str, memory_ids: Sequence[str], accessed_at: datetime) -> int:
        """Increment access_count and set last_accessed for exactly these ids."""

    @abstractmethod
    def set_pinned(self, user_id: str, memory_id: str, pinned: bool) -> bool:
        ...

    @abstractmethod
    def delete_memory(self, user_id: str, memory_id: str) -> bool:
        ...

    @abstractmethod
    def get_memory_stats(self, user_id: str) -> MemoryStats:
        ...

    @abstractmethod
    def list_user_ids(self) -> List[str]:
        ...

    @abstractmethod
    def list_active_user_ids(self, since: datetime) -> List[str]:
        """Users with at least one memory created at or after ``since``."""

    @abstractmethod
    def list_accessed_memories(self, user_id: str, since: datetime) -> List[Memory]:
        """Memories whose last_accessed is at or after ``since``."""

    @abstractmethod
    def list_stale_memories(self, user_id: str, created_before: datetime, idle_since: datetime) -> List[Memory]:
        """Unpinned memories created before ``created_before`` and not accessed since ``idle_since``."""

    @abstractmethod
    def update_importance_scores(self, user_id: str, scores: Dict[str, float]) -> int:
        ...

    @abstractmethod
    def delete_unpinned_memories(self, user_id: str, memory_ids: Sequence[str]) -> int:
        """Delete the given memories, never touching pinned rows."""


class ChainStore(ABC):
    @abstractmethod
    def insert_chain(self, chain: MemoryChain) -> str:
        ...

    @abstractmethod
    def get_chain(self, user_id: str, chain_id: str) -> Optional[MemoryChain]:
        ...

    @abstractmethod
    def list_chains(self, user_id: str, *, query: Optional[str] = None, limit: int = 5) -> List[MemoryChain]:
        """Chains ordered by strength then access count, optionally matching ``query``
        against the summary (case-insensitive substring) or the topic set."""

    @abstractmethod
    def is_memory_chained(self, user_id: str, memory_id: str) -> bool:
        """True when the memory already appears in any of the user's chains."""

    @abstractmethod
    def increment_chain_access(self, chain_id: str) -> None:
        ...

    @abstractmethod
    def list_chains_for_extension(
        self, *, min_strength: float, min_access: int, updated_before: datetime, limit: int
    ) -> List[MemoryChain]:
        """Chains with strength above ``min_strength`` or access above ``min_access``."""

    @abstractmethod
    def extend_chain(self, chain_id: str, memory_id: str, strength: float, updated_at: datetime) -> None:
        """Append one memory and raise the strength to at least ``strength``."""

    @abstractmethod
    def list_stale_chains(self, updated_before: datetime) -> List[MemoryChain]:
        ...

    @abstractmethod
    def update_chain_strength(self, chain_id: str, strength: float) -> None:
        ...

    @abstractmethod
    def delete_weak_chains(self, max_strength: float, created_before: datetime) -> int:
        """Delete never-accessed chains weaker than ``max_strength`` created before the cutoff."""

    @abstractmethod
    def delete_unused_chains(self, created_before: datetime) -> int:
        ...


class PersonalityStore(ABC):
    @abstractmethod
    def ensure_traits(self, user_id: str, trait_names: Iterable[str], default_value: float) -> None:
        """Insert missing trait rows; existing rows are left alone."""

    @abstractmethod
    def list_traits(self, user_id: str) -> List[PersonalityTrait]:
        ...

    @abstractmethod
    def save_evolved_trait(
        self, user_id: str, trait_name: str, value: float, snapshot_day: date, modified_at: datetime
    ) -> None:
        """Write the new value and record it as the snapshot for ``snapshot_day``."""

    @abstractmethod
    def save_consolidated_trait(self, user_id: str, trait_name: str, value: float, consolidated_at: datetime) -> None:
        ...

    @abstractmethod
    def delete_traits(self, user_id: str) -> int:
        ...


class UserModelStore(ABC):
    @abstractmethod
    def find_belief(self, user_id: str, statement_key: str) -> Optional[UserBelief]:
        ...

    @abstractmethod
    def insert_belief(self, belief: UserBelief) -> str:
        ...

    @abstractmethod
    def update_belief(self, belief: UserBelief) -> None:
        ...

    @abstractmethod
    def list_beliefs(
        self, user_id: str, *, category: Optional[str] = None, active_only: bool = True, limit: int = 20
    ) -> List[UserBelief]:
        ...

    @abstractmethod
    def list_beliefs_reinforced_since(self, user_id: str, since: datetime) -> List[UserBelief]:
        """Active beliefs of the user reinforced at or after ``since``."""

    @abstractmethod
    def deactivate_stale_beliefs(self, reinforced_before: datetime, max_strength: float) -> int:
        ...

    @abstractmethod
    def find_goal(self, user_id: str, description_key: str) -> Optional[UserGoal]:
        ...

    @abstractmethod
    def get_goal(self, user_id: str, goal_id: str) -> Optional[UserGoal]:
        ...

    @abstractmethod
    def insert_goal(self, goal: UserGoal) -> str:
        ...

    @abstractmethod
    def update_goal(self, goal: UserGoal) -> None:
        ...

    @abstractmethod
    def list_goals(self, user_id: str, *, status: Optional[str] = "active", limit: int = 10) -> List[UserGoal]:
        ...

    @abstractmethod
    def list_active_goals(self, user_id: str, updated_before: datetime, limit: int) -> List[UserGoal]:
        """Active goals of the user not updated since ``updated_before``."""

    @abstractmethod
    def abandon_stale_goals(self, updated_before: datetime) -> int:
        """Mark untouched active goals with zero progress as abandoned."""

    @abstractmethod
    def insert_mental_state(self, state: MentalStateSnapshot) -> str:
        ...

    @abstractmethod
    def latest_mental_state(self, user_id: str) -> Optional[MentalStateSnapshot]:
        ...

    @abstractmethod
    def prune_mental_states(self, keep: int) -> int:
        """Keep the newest ``keep`` snapshots per user."""


class EmotionStore(ABC):
    @abstractmethod
    def list_unanalyzed_memories(self, user_id: str, since: datetime, limit: int) -> List[Memory]:
        """Newest-first memories created at or after ``since`` with no timeline entry yet."""

    @abstractmethod
    def insert_emotions(self, records: Sequence[EmotionRecord]) -> int:
        ...

    @abstractmethod
    def list_emotions(self, user_id: str, since: datetime, limit: Optional[int] = None) -> List[EmotionRecord]:
        """Newest-first timeline entries observed at or after ``since``."""

    @abstractmethod
    def upsert_pattern(self, pattern: EmotionalPattern) -> None:
        """Insert or replace the pattern for (user_id, emotion_type)."""

    @abstractmethod
    def list_patterns(self, user_id: str, limit: Optional[int] = None) -> List[EmotionalPattern]:
        """Patterns ordered by confidence, highest first."""

    @abstractmethod
    def get_pattern(self, user_id: str, emotion_type: str) -> Optional[EmotionalPattern]:
        ...

    @abstractmethod
    def delete_emotions_before(self, cutoff: datetime) -> int:
        ...
