"""Domain records shared by the store and the engines."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


TRAIT_NAMES = (
    "humor",
    "empathy",
    "directness",
    "formality",
    "enthusiasm",
    "curiosity",
    "patience",
)

NEUTRAL_EMOTIONS: Dict[str, float] = {
    "joy": 0.0,
    "sadness": 0.0,
    "anger": 0.0,
    "fear": 0.0,
    "surprise": 0.0,
}

GOAL_STATUSES = ("active", "completed", "abandoned")

# Plutchik's eight primary emotions, tracked on the emotional timeline
EMOTION_TYPES = (
    "joy",
    "sadness",
    "anger",
    "fear",
    "surprise",
    "disgust",
    "trust",
    "anticipation",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def dominant_emotion(emotions: Optional[Dict[str, float]]) -> Optional[str]:
    """Return the strongest emotion with a strictly positive intensity."""
    if not emotions:
        return None
    best: Optional[str] = None
    best_value = 0.0
    for name, value in emotions.items():
        try:
            intensity = float(value)
        except (TypeError, ValueError):
            continue
        if intensity > best_value:
            best, best_value = name, intensity
    return best


@dataclass
class Memory:
    """One persisted conversational turn."""
    memory_id: str
    user_id: str
    user_text: str
    ai_text: str
    importance_score: float
    created_at: datetime = field(default_factory=utcnow)
    persona_id: Optional[str] = None
    embedding: Optional[List[float]] = None
    emotional_context: Optional[Dict[str, float]] = None
    access_count: int = 0
    last_accessed: Optional[datetime] = None
    pinned: bool = False

    @property
    def combined_text(self) -> str:
        return f"User: {self.user_text}\nAI: {self.ai_text}"

    @property
    def dominant_emotion(self) -> Optional[str]:
        return dominant_emotion(self.emotional_context)

    def content(self) -> Dict[str, str]:
        return {"user": self.user_text, "ai": self.ai_text}


@dataclass
class MemoryStats:
    total_memories: int = 0
    avg_importance: float = 0.0
    last_memory: Optional[datetime] = None
    total_accesses: int = 0
    pinned_memories: int = 0


@dataclass
class MemoryChain:
    chain_id: str
    user_id: str
    chain_name: str
    memory_sequence: List[str]
    chain_strength: float
    chain_type: str = "narrative"
    chain_summary: str = ""
    topics_covered: List[str] = field(default_factory=list)
    emotional_arc: Dict[str, Any] = field(default_factory=dict)
    access_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    last_updated: datetime = field(default_factory=utcnow)

    @property
    def start_memory_id(self) -> str:
        return self.memory_sequence[0]

    @property
    def end_memory_id(self) -> str:
        return self.memory_sequence[-1]


@dataclass
class PersonalityTrait:
    user_id: str
    trait_name: str
    current_value: float = 5.0
    historical_values: Dict[str, float] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    last_modified: Optional[datetime] = None
    last_consolidated: Optional[datetime] = None
    consolidation_count: int = 0


@dataclass
class UserBelief:
    belief_id: str
    user_id: str
    belief_statement: str
    belief_category: Optional[str] = None
    belief_strength: float = 0.5
    confidence_level: float = 0.5
    evidence_sources: List[str] = field(default_factory=list)
    first_expressed: datetime = field(default_factory=utcnow)
    last_reinforced: datetime = field(default_factory=utcnow)
    is_active: bool = True


@dataclass
class UserGoal:
    goal_id: str
    user_id: str
    goal_description: str
    goal_category: Optional[str] = None
    priority_level: int = 5
    progress_percentage: float = 0.0
    status: str = "active"
    success_criteria: Optional[str] = None
    first_mentioned: datetime = field(default_factory=utcnow)
    last_updated: datetime = field(default_factory=utcnow)


@dataclass
class MentalStateSnapshot:
    state_id: str
    user_id: str
    dominant_emotion: Optional[str] = None
    emotional_intensity: float = 0.5
    cognitive_load: str = "normal"
    attention_focus: Optional[str] = None
    decision_making_style: Optional[str] = None
    communication_style: Optional[str] = None
    stress_indicators: List[str] = field(default_factory=list)
    motivation_level: str = "neutral"
    inferred_needs: List[str] = field(default_factory=list)
    confidence_score: float = 0.7
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class EmotionRecord:
    """One emotion observed in a conversation turn; intensity is on a 0-10 scale."""
    emotion_id: str
    user_id: str
    emotion_type: str
    intensity: float
    confidence: float = 0.8
    memory_id: Optional[str] = None
    trigger_text: str = ""
    triggers: List[str] = field(default_factory=list)
    duration_minutes: int = 30
    empathy_response: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class EmotionalPattern:
    user_id: str
    emotion_type: str
    frequency_count: int = 0
    avg_intensity: float = 0.0
    trigger_patterns: List[str] = field(default_factory=list)
    response_patterns: List[str] = field(default_factory=list)
    empathy_strategies: List[str] = field(default_factory=list)
    confidence_score: float = 0.5
    last_observed: datetime = field(default_factory=utcnow)
