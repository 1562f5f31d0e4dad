"""
User Model Engine

Tracks what the user believes, what they are working toward, and how they
seem to be doing right now. Beliefs and goals are keyed by their normalized
text, so a repeated statement reinforces the existing row.
"""

from __future__ import annotations

import logging
import random
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ai_brain.config import get_mental_state_probability
from ai_brain.errors import InvalidRecordError
from ai_brain.models import GOAL_STATUSES, MentalStateSnapshot, UserBelief, UserGoal, utcnow
from ai_brain.services.oracles import TextOracle
from ai_brain.services.prompts import (
    BELIEF_EXTRACTION_PROMPT,
    GOAL_EXTRACTION_PROMPT,
    MENTAL_STATE_PROMPT,
)
from ai_brain.storage.base import EpisodicStore, UserModelStore, normalize_statement


logger = logging.getLogger("ai_brain.user_model")

BELIEF_REINFORCEMENT = 0.1
DEFAULT_CONFIDENCE = 0.5
DEFAULT_STRENGTH = 0.5
DEFAULT_PRIORITY = 5
INFERRED_CONFIDENCE = 0.7
MENTAL_STATE_TURNS = 10
COGNITIVE_LOADS = ("low", "normal", "high", "overwhelmed")
MOTIVATION_LEVELS = ("low", "neutral", "high", "very high")

# maintenance
RECENT_TURN_WINDOW = timedelta(hours=24)
RECENT_TURN_LIMIT = 20
GOAL_IDLE = timedelta(days=1)
GOAL_BATCH = 50
GOAL_MENTION_WINDOW = timedelta(days=3)
GOAL_MENTION_TURNS = 10
GOAL_PROGRESS_STEP = 5.0
GOAL_PROGRESS_CAP = 90.0
BELIEF_BOOST_WINDOW = timedelta(days=7)
BELIEF_BOOST_FACTOR = 1.05
STALE_BELIEF_AGE = timedelta(days=90)
STALE_BELIEF_STRENGTH = 0.3
STALE_GOAL_AGE = timedelta(days=60)
MENTAL_STATE_KEEP = 100
DEEP_ANALYSIS_TURNS = 20


def _clamp(value: Any, low: float, high: float, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(low, min(high, number))


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) not in (None, ""):
            return data[key]
    return None


def _string_list(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(v) for v in value if v not in (None, "")]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def goal_words(description: str) -> List[str]:
    return [w for w in description.lower().split() if len(w) > 3]


class UserModelService:
    def __init__(
        self,
        episodic: EpisodicStore,
        store: UserModelStore,
        text_oracle: Optional[TextOracle] = None,
        rng: Optional[random.Random] = None,
        mental_state_probability: Optional[float] = None,
    ) -> None:
        self.episodic = episodic
        self.store = store
        self.text_oracle = text_oracle
        self.rng = rng or random.Random()
        self.mental_state_probability = (
            mental_state_probability if mental_state_probability is not None else get_mental_state_probability()
        )

    # -- extraction --------------------------------------------------------

    def _extract(self, prompt: str, text: str, kind: str) -> List[Dict[str, Any]]:
        if self.text_oracle is None:
            return []
        result = self.text_oracle.analyze(prompt, text, expect_array=True)
        if not result.ok:
            logger.info("[user_model.%s.unavailable] status=%s error=%s", kind, result.status.value, result.error)
            return []
        return [item for item in result.value or [] if isinstance(item, dict)]

    def store_user_belief(
        self, user_id: str, data: Dict[str, Any], memory_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> str:
        statement = str(_first(data, "belief_statement", "statement", "belief") or "").strip()
        if not statement:
            raise InvalidRecordError("belief statement is empty")
        now = now or utcnow()
        confidence = _clamp(_first(data, "confidence_level", "confidence"), 0.0, 1.0, DEFAULT_CONFIDENCE)

        existing = self.store.find_belief(user_id, normalize_statement(statement))
        if existing is not None:
            if memory_id and memory_id in existing.evidence_sources:
                return existing.belief_id
            existing.belief_strength = min(1.0, existing.belief_strength + BELIEF_REINFORCEMENT)
            if memory_id:
                existing.evidence_sources.append(memory_id)
            existing.confidence_level = max(existing.confidence_level, confidence)
            existing.last_reinforced = now
            existing.is_active = True
            self.store.update_belief(existing)
            logger.debug("[user_model.belief.reinforced] user_id=%s belief_id=%s", user_id, existing.belief_id)
            return existing.belief_id

        belief = UserBelief(
            belief_id=str(uuid.uuid4()),
            user_id=user_id,
            belief_statement=statement,
            belief_category=_first(data, "belief_category", "category"),
            belief_strength=_clamp(_first(data, "belief_strength", "strength"), 0.0, 1.0, DEFAULT_STRENGTH),
            confidence_level=confidence,
            evidence_sources=[memory_id] if memory_id else [],
            first_expressed=now,
            last_reinforced=now,
        )
        return self.store.insert_belief(belief)

    def store_user_goal(
        self, user_id: str, data: Dict[str, Any], memory_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> str:
        description = str(_first(data, "goal_description", "description", "goal") or "").strip()
        if not description:
            raise InvalidRecordError("goal description is empty")
        now = now or utcnow()
        priority = int(round(_clamp(_first(data, "priority_level", "priority"), 1, 10, DEFAULT_PRIORITY)))

        existing = self.store.find_goal(user_id, normalize_statement(description))
        if existing is not None:
            existing.priority_level = max(existing.priority_level, priority)
            existing.last_updated = now
            self.store.update_goal(existing)
            return existing.goal_id

        goal = UserGoal(
            goal_id=str(uuid.uuid4()),
            user_id=user_id,
            goal_description=description,
            goal_category=_first(data, "goal_category", "category"),
            priority_level=priority,
            success_criteria=_first(data, "success_criteria"),
            first_mentioned=now,
            last_updated=now,
        )
        return self.store.insert_goal(goal)

    def process_conversation_for_user_model(
        self, user_id: str, text: str, memory_id: Optional[str] = None
    ) -> Dict[str, Any]:
        beliefs = 0
        for item in self._extract(BELIEF_EXTRACTION_PROMPT, text, "beliefs"):
            try:
                self.store_user_belief(user_id, item, memory_id)
                beliefs += 1
            except InvalidRecordError as exc:
                logger.warning("[user_model.belief.rejected] user_id=%s %s", user_id, exc)

        goals = 0
        for item in self._extract(GOAL_EXTRACTION_PROMPT, text, "goals"):
            try:
                self.store_user_goal(user_id, item, memory_id)
                goals += 1
            except InvalidRecordError as exc:
                logger.warning("[user_model.goal.rejected] user_id=%s %s", user_id, exc)

        inferred = False
        if self.rng.random() < self.mental_state_probability:
            inferred = self.infer_mental_state(user_id) is not None

        return {
            "beliefs_extracted": beliefs,
            "goals_extracted": goals,
            "mental_state_inferred": inferred,
        }

    def infer_mental_state(self, user_id: str, recent_memories: int = MENTAL_STATE_TURNS) -> Optional[str]:
        """Snapshot the user's mental state from their latest turns; None when nothing could be inferred."""
        if self.text_oracle is None:
            return None
        memories = self.episodic.list_recent_memories(user_id, limit=recent_memories)
        if not memories:
            return None

        conversation = "\n\n".join(m.combined_text for m in memories)
        result = self.text_oracle.analyze(MENTAL_STATE_PROMPT, conversation)
        if not result.ok or not isinstance(result.value, dict) or not result.value:
            logger.info("[user_model.mental_state.unavailable] user_id=%s status=%s", user_id, result.status.value)
            return None

        data = result.value
        load = str(data.get("cognitive_load") or "normal").lower()
        motivation = str(data.get("motivation_level") or "neutral").lower()
        state = MentalStateSnapshot(
            state_id=str(uuid.uuid4()),
            user_id=user_id,
            dominant_emotion=data.get("dominant_emotion"),
            emotional_intensity=_clamp(data.get("emotional_intensity"), 0.0, 1.0, 0.5),
            cognitive_load=load if load in COGNITIVE_LOADS else "normal",
            attention_focus=data.get("attention_focus"),
            decision_making_style=data.get("decision_making_style"),
            communication_style=data.get("communication_style"),
            stress_indicators=_string_list(data.get("stress_indicators")),
            motivation_level=motivation if motivation in MOTIVATION_LEVELS else "neutral",
            inferred_needs=_string_list(data.get("inferred_needs")),
            confidence_score=INFERRED_CONFIDENCE,
        )
        state_id = self.store.insert_mental_state(state)
        logger.info("[user_model.mental_state] user_id=%s state_id=%s emotion=%s", user_id, state_id, state.dominant_emotion)
        return state_id

    # -- reads -------------------------------------------------------------

    def get_user_beliefs(self, user_id: str, category: Optional[str] = None, limit: int = 20) -> List[UserBelief]:
        return self.store.list_beliefs(user_id, category=category, limit=limit)

    def get_user_goals(self, user_id: str, status: str = "active", limit: int = 10) -> List[UserGoal]:
        return self.store.list_goals(user_id, status=status, limit=limit)

    def get_current_mental_state(self, user_id: str) -> Optional[MentalStateSnapshot]:
        return self.store.latest_mental_state(user_id)

    def get_user_model(self, user_id: str) -> Dict[str, Any]:
        beliefs = self.get_user_beliefs(user_id, limit=15)
        goals = self.get_user_goals(user_id, "active", 10)
        state = self.get_current_mental_state(user_id)
        return {
            "user_id": user_id,
            "beliefs": [
                {
                    "id": b.belief_id,
                    "statement": b.belief_statement,
                    "category": b.belief_category,
                    "strength": b.belief_strength,
                    "confidence": b.confidence_level,
                }
                for b in beliefs
            ],
            "goals": [
                {
                    "id": g.goal_id,
                    "description": g.goal_description,
                    "category": g.goal_category,
                    "priority": g.priority_level,
                    "progress": g.progress_percentage,
                    "status": g.status,
                }
                for g in goals
            ],
            "current_mental_state": {
                "emotion": state.dominant_emotion,
                "intensity": state.emotional_intensity,
                "cognitive_load": state.cognitive_load,
                "motivation": state.motivation_level,
                "needs": list(state.inferred_needs),
            }
            if state
            else None,
            "last_updated": utcnow().isoformat(),
        }

    def update_goal_progress(
        self, user_id: str, goal_id: str, progress: float, status: Optional[str] = None
    ) -> bool:
        if status is not None and status not in GOAL_STATUSES:
            raise InvalidRecordError(f"unknown goal status: {status}")
        goal = self.store.get_goal(user_id, goal_id)
        if goal is None:
            return False
        goal.progress_percentage = _clamp(progress, 0.0, 100.0, goal.progress_percentage)
        if status is not None:
            goal.status = status
        goal.last_updated = utcnow()
        self.store.update_goal(goal)
        logger.info(
            "[user_model.goal.progress] user_id=%s goal_id=%s progress=%.1f status=%s",
            user_id,
            goal_id,
            goal.progress_percentage,
            goal.status,
        )
        return True

    # -- maintenance -------------------------------------------------------

    def process_recent_conversations(self, user_id: str, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        turns = self.episodic.list_recent_memories(user_id, limit=RECENT_TURN_LIMIT, since=now - RECENT_TURN_WINDOW)
        for turn in turns:
            self.process_conversation_for_user_model(user_id, turn.combined_text, turn.memory_id)
        return len(turns)

    def update_goal_progress_from_conversations(self, user_id: str, now: Optional[datetime] = None) -> int:
        """Nudge progress of goals that keep coming up in conversation."""
        now = now or utcnow()
        goals = self.store.list_active_goals(user_id, now - GOAL_IDLE, GOAL_BATCH)
        if not goals:
            return 0
        texts = [
            m.combined_text.lower()
            for m in self.episodic.list_recent_memories(user_id, limit=GOAL_MENTION_TURNS, since=now - GOAL_MENTION_WINDOW)
        ]
        advanced = 0
        for goal in goals:
            if goal.progress_percentage >= GOAL_PROGRESS_CAP:
                continue
            words = goal_words(goal.goal_description)
            mentions = sum(1 for text in texts if any(w in text for w in words))
            if mentions > 2:
                goal.progress_percentage = min(GOAL_PROGRESS_CAP, goal.progress_percentage + GOAL_PROGRESS_STEP)
                goal.last_updated = now
                self.store.update_goal(goal)
                advanced += 1
        return advanced

    def strengthen_active_models(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or utcnow()
        beliefs = 0
        for belief in self.store.list_beliefs_reinforced_since(user_id, now - BELIEF_BOOST_WINDOW):
            strength = min(1.0, belief.belief_strength * BELIEF_BOOST_FACTOR)
            if strength != belief.belief_strength:
                belief.belief_strength = strength
                self.store.update_belief(belief)
                beliefs += 1

        texts = [
            m.combined_text.lower()
            for m in self.episodic.list_recent_memories(user_id, limit=GOAL_BATCH, since=now - GOAL_MENTION_WINDOW)
        ]
        goals = 0
        for goal in self.store.list_goals(user_id, status="active", limit=GOAL_BATCH):
            needle = normalize_statement(goal.goal_description)
            if goal.priority_level < 10 and any(needle in " ".join(t.split()) for t in texts):
                goal.priority_level = min(10, goal.priority_level + 1)
                goal.last_updated = now
                self.store.update_goal(goal)
                goals += 1
        return {"beliefs_strengthened": beliefs, "goals_prioritized": goals}

    def maintain_user(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, int]:
        """Daily per-user pass: reprocess the last day of turns, then adjust goals and beliefs."""
        now = now or utcnow()
        stats = {"turns_processed": self.process_recent_conversations(user_id, now)}
        stats["goals_advanced"] = self.update_goal_progress_from_conversations(user_id, now)
        stats.update(self.strengthen_active_models(user_id, now))
        return stats

    def cleanup_user_model_data(self, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or utcnow()
        stats = {
            "beliefs_deactivated": self.store.deactivate_stale_beliefs(now - STALE_BELIEF_AGE, STALE_BELIEF_STRENGTH),
            "goals_abandoned": self.store.abandon_stale_goals(now - STALE_GOAL_AGE),
            "mental_states_pruned": self.store.prune_mental_states(MENTAL_STATE_KEEP),
        }
        logger.info("[maint.user_model.cleanup] stats=%s", stats)
        return stats


def generate_user_model_context(user_model: Optional[Dict[str, Any]]) -> str:
    """Render a compact prompt section from ``get_user_model`` output."""
    if not user_model:
        return ""
    lines = ["## USER MODEL CONTEXT"]
    state = user_model.get("current_mental_state")
    if state:
        lines.append(
            f"**Current Mental State:** {state.get('emotion') or 'neutral'} "
            f"(motivation: {state.get('motivation') or 'neutral'}, "
            f"cognitive load: {state.get('cognitive_load') or 'normal'})"
        )
    beliefs = user_model.get("beliefs") or []
    if beliefs:
        top = "; ".join(f"{b['statement']} ({b.get('category') or 'general'})" for b in beliefs[:3])
        lines.append(f"**Key Beliefs:** {top}")
    goals = user_model.get("goals") or []
    if goals:
        top = "; ".join(f"{g['description']} ({g['progress']:g}% complete)" for g in goals[:2])
        lines.append(f"**Active Goals:** {top}")
    return "\n".join(lines) + "\n\n"
