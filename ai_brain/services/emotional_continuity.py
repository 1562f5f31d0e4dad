"""
Emotional Continuity Engine

Builds a per-user emotional timeline from conversation turns, aggregates it
into patterns (how often an emotion shows up, how strong it is, what sets it
off, what response helped) and turns both into a short context block for
the next conversation.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ai_brain.models import EMOTION_TYPES, EmotionalPattern, EmotionRecord, Memory, utcnow
from ai_brain.services.oracles import TextOracle
from ai_brain.services.prompts import EMOTION_TIMELINE_PROMPT
from ai_brain.storage.base import EmotionStore


logger = logging.getLogger("ai_brain.emotions")

MAX_INTENSITY = 10.0
DEFAULT_CONFIDENCE = 0.8
DEFAULT_DURATION_MINUTES = 30
TRIGGER_TEXT_LIMIT = 500

# daily pass
RECENT_TURN_WINDOW = timedelta(hours=24)
RECENT_TURN_LIMIT = 20

# pattern analysis
PATTERN_WINDOW = timedelta(days=90)
PATTERN_SAMPLE = 100
TOP_TRIGGERS = 5
TOP_STRATEGIES = 3
MAX_RESPONSE_PATTERNS = 10
BASE_PATTERN_CONFIDENCE = 0.5
CONFIDENCE_PER_OBSERVATION = 0.05
MAX_PATTERN_CONFIDENCE = 0.95

TIMELINE_RETENTION = timedelta(days=182)
CONTEXT_RECENT_EMOTIONS = 5
CONTEXT_PATTERNS = 3
DEFAULT_CALIBRATION_CONFIDENCE = 0.5

DEFAULT_EMPATHY_STRATEGIES: Dict[str, List[str]] = {
    "joy": ["Share in their happiness", "Be enthusiastic and positive"],
    "sadness": ["Be supportive and understanding", "Offer comfort and empathy"],
    "anger": ["Stay calm and listen", "Acknowledge their feelings"],
    "fear": ["Be reassuring and supportive", "Help them feel safe"],
    "surprise": ["Show interest and curiosity", "Match their energy level"],
    "disgust": ["Be understanding", "Don't judge their reaction"],
    "trust": ["Be reliable and honest", "Build on the positive connection"],
    "anticipation": ["Be encouraging", "Share in their excitement"],
}
FALLBACK_STRATEGIES = ["Be supportive and understanding"]


def _clamp(value: Any, low: float, high: float) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return max(low, min(high, number))


def _string_list(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(v).strip() for v in value if v not in (None, "") and str(v).strip()]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def parse_emotions(
    raw: Any,
    user_id: str,
    memory_id: Optional[str],
    trigger_text: str,
    observed_at: datetime,
) -> List[EmotionRecord]:
    """Turn an oracle answer into timeline records.

    Unknown emotion types and entries without a numeric intensity are
    dropped; intensity is clamped to [0, 10] and confidence to [0, 1].
    """
    items = raw.get("emotions") if isinstance(raw, dict) else raw
    if not isinstance(items, list):
        return []

    records: List[EmotionRecord] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        emotion_type = str(item.get("type") or item.get("emotion_type") or "").strip().lower()
        if emotion_type not in EMOTION_TYPES:
            logger.debug("[emotions.parse.skip] user_id=%s type=%r", user_id, emotion_type)
            continue
        intensity = _clamp(item.get("intensity"), 0.0, MAX_INTENSITY)
        if intensity is None:
            continue
        confidence = _clamp(item.get("confidence"), 0.0, 1.0)
        try:
            duration = int(item.get("duration_minutes") or DEFAULT_DURATION_MINUTES)
        except (TypeError, ValueError):
            duration = DEFAULT_DURATION_MINUTES
        response = item.get("empathy_response")
        records.append(
            EmotionRecord(
                emotion_id=str(uuid.uuid4()),
                user_id=user_id,
                emotion_type=emotion_type,
                intensity=intensity,
                confidence=DEFAULT_CONFIDENCE if confidence is None else confidence,
                memory_id=memory_id,
                trigger_text=(trigger_text or "")[:TRIGGER_TEXT_LIMIT],
                triggers=_string_list(item.get("triggers")),
                duration_minutes=duration if duration > 0 else DEFAULT_DURATION_MINUTES,
                empathy_response=str(response).strip() if response and str(response).strip() else None,
                timestamp=observed_at,
            )
        )
    return records


def build_patterns(user_id: str, records: List[EmotionRecord]) -> List[EmotionalPattern]:
    """Aggregate timeline entries into one pattern per emotion type.

    Confidence depends only on how often the emotion was seen, so
    re-analysing the same timeline gives the same pattern.
    """
    grouped: Dict[str, List[EmotionRecord]] = {}
    for record in records:
        grouped.setdefault(record.emotion_type, []).append(record)

    patterns: List[EmotionalPattern] = []
    for emotion_type, rows in grouped.items():
        triggers = Counter(t for r in rows for t in r.triggers)
        responses = Counter(r.empathy_response for r in rows if r.empathy_response)
        frequency = len(rows)
        patterns.append(
            EmotionalPattern(
                user_id=user_id,
                emotion_type=emotion_type,
                frequency_count=frequency,
                avg_intensity=round(sum(r.intensity for r in rows) / frequency, 3),
                trigger_patterns=[t for t, _ in triggers.most_common(TOP_TRIGGERS)],
                response_patterns=list(responses)[:MAX_RESPONSE_PATTERNS],
                empathy_strategies=[s for s, _ in responses.most_common(TOP_STRATEGIES)],
                confidence_score=min(
                    BASE_PATTERN_CONFIDENCE + CONFIDENCE_PER_OBSERVATION * frequency, MAX_PATTERN_CONFIDENCE
                ),
                last_observed=max(r.timestamp for r in rows),
            )
        )
    return patterns


class EmotionalContinuityService:
    def __init__(self, store: EmotionStore, text_oracle: Optional[TextOracle] = None) -> None:
        self.store = store
        self.text_oracle = text_oracle

    # -- timeline ----------------------------------------------------------

    def detect_emotions(
        self,
        user_id: str,
        text: str,
        memory_id: Optional[str] = None,
        observed_at: Optional[datetime] = None,
    ) -> Optional[List[EmotionRecord]]:
        """Detect and store the emotions in ``text``.

        Returns None when the oracle gave no usable answer, so the turn is
        picked up again on the next pass; an empty list means "no emotion".
        """
        if self.text_oracle is None or not (text or "").strip():
            return None
        result = self.text_oracle.analyze(EMOTION_TIMELINE_PROMPT, text)
        if not result.ok:
            logger.info(
                "[emotions.detect.unavailable] user_id=%s status=%s error=%s", user_id, result.status.value, result.error
            )
            return None
        records = parse_emotions(result.value, user_id, memory_id, text, observed_at or utcnow())
        if records:
            self.store.insert_emotions(records)
        logger.debug(
            "[emotions.detected] user_id=%s memory_id=%s types=%s", user_id, memory_id, [r.emotion_type for r in records]
        )
        return records

    def process_recent_conversations(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, int]:
        """Run detection over the last day's turns that are not on the timeline yet."""
        now = now or utcnow()
        memories: List[Memory] = self.store.list_unanalyzed_memories(user_id, now - RECENT_TURN_WINDOW, RECENT_TURN_LIMIT)
        stats = {"memories_analyzed": 0, "emotions_recorded": 0}
        for memory in memories:
            records = self.detect_emotions(user_id, memory.combined_text, memory.memory_id, memory.created_at)
            if records is None:
                continue
            stats["memories_analyzed"] += 1
            stats["emotions_recorded"] += len(records)
        return stats

    def prune_timeline(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        removed = self.store.delete_emotions_before(now - TIMELINE_RETENTION)
        if removed:
            logger.info("[emotions.pruned] removed=%s", removed)
        return removed

    # -- patterns ----------------------------------------------------------

    def analyze_emotional_patterns(self, user_id: str, now: Optional[datetime] = None) -> List[EmotionalPattern]:
        now = now or utcnow()
        records = self.store.list_emotions(user_id, now - PATTERN_WINDOW, PATTERN_SAMPLE)
        patterns = build_patterns(user_id, records)
        for pattern in patterns:
            self.store.upsert_pattern(pattern)
        if patterns:
            logger.info(
                "[emotions.patterns] user_id=%s sample=%s types=%s",
                user_id,
                len(records),
                sorted(p.emotion_type for p in patterns),
            )
        return patterns

    def get_emotional_trends(self, user_id: str, days: int = 30, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Per-emotion averages over the last ``days`` days, strongest first."""
        now = now or utcnow()
        grouped: Dict[str, List[EmotionRecord]] = {}
        for record in self.store.list_emotions(user_id, now - timedelta(days=max(1, days))):
            grouped.setdefault(record.emotion_type, []).append(record)
        trends = [
            {
                "emotion_type": emotion_type,
                "avg_intensity": round(sum(r.intensity for r in rows) / len(rows), 3),
                "frequency": len(rows),
                "last_observed": max(r.timestamp for r in rows),
                "common_triggers": [t for t, _ in Counter(t for r in rows for t in r.triggers).most_common(TOP_TRIGGERS)],
            }
            for emotion_type, rows in grouped.items()
        ]
        trends.sort(key=lambda t: (-t["avg_intensity"], t["emotion_type"]))
        return trends

    def get_emotional_patterns(self, user_id: str) -> List[EmotionalPattern]:
        return self.store.list_patterns(user_id)

    def get_empathy_calibration(self, user_id: str, emotion_type: str) -> Dict[str, Any]:
        pattern = self.store.get_pattern(user_id, emotion_type)
        if pattern is not None and pattern.empathy_strategies:
            return {"empathy_strategies": list(pattern.empathy_strategies), "confidence_score": pattern.confidence_score}
        return {
            "empathy_strategies": list(DEFAULT_EMPATHY_STRATEGIES.get(emotion_type, FALLBACK_STRATEGIES)),
            "confidence_score": DEFAULT_CALIBRATION_CONFIDENCE,
        }

    def generate_emotional_context(self, user_id: str, now: Optional[datetime] = None) -> Optional[str]:
        """Prompt block with the last day's emotions and the learned strategies; None if nothing is known."""
        now = now or utcnow()
        recent = self.store.list_emotions(user_id, now - RECENT_TURN_WINDOW, CONTEXT_RECENT_EMOTIONS)
        patterns = self.store.list_patterns(user_id, CONTEXT_PATTERNS)
        if not recent and not patterns:
            return None

        lines = ["EMOTIONAL CONTEXT - recent emotional state and empathy guidelines:"]
        if recent:
            lines.append("")
            lines.append("Recent emotions:")
            for record in recent:
                hours_ago = max(0, round((now - record.timestamp).total_seconds() / 3600))
                lines.append(f"- {record.emotion_type} (intensity {record.intensity:g}/10), {hours_ago} hours ago")
        if patterns:
            lines.append("")
            lines.append("Learned empathy strategies:")
            for pattern in patterns:
                strategies = pattern.empathy_strategies or FALLBACK_STRATEGIES
                lines.append(f"- For {pattern.emotion_type}: {', '.join(strategies)}")
        lines.append("")
        lines.append("Use this emotional awareness to respond with appropriate empathy and care.")
        return "\n".join(lines)

    # -- maintenance -------------------------------------------------------

    def maintain_user(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or utcnow()
        stats = self.process_recent_conversations(user_id, now)
        stats["patterns_updated"] = len(self.analyze_emotional_patterns(user_id, now))
        return stats

    def deep_analyze_user(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or utcnow()
        patterns = self.analyze_emotional_patterns(user_id, now)
        trends = self.get_emotional_trends(user_id, days=90, now=now)
        for trend in trends:
            logger.info(
                "[emotions.trend] user_id=%s type=%s avg_intensity=%.1f frequency=%s",
                user_id,
                trend["emotion_type"],
                trend["avg_intensity"],
                trend["frequency"],
            )
        return {"patterns_updated": len(patterns), "emotion_types_90d": len(trends)}
