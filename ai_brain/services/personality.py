"""
Personality Engine

Traits live on a canonical [0, 10] scale. Daily evolution nudges each trait
toward the signal observed in recent turns with an exponential moving
average; weekly consolidation smooths drift using the last 30 days of
snapshots. Consolidation statistics (stability, trend) are computed on the
[0, 1] view of the same values, converted through ``_to_unit`` and
``_from_unit`` only.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from ai_brain.models import TRAIT_NAMES, Memory, PersonalityTrait, utcnow
from ai_brain.storage.base import EpisodicStore, PersonalityStore


logger = logging.getLogger("ai_brain.personality")

TRAIT_MIN = 0.0
TRAIT_MAX = 10.0
NEUTRAL_VALUE = 5.0
EMA_KEEP = 0.9
EVOLUTION_WINDOW = timedelta(days=7)
EVOLUTION_TURN_LIMIT = 50
HISTORY_WINDOW = timedelta(days=30)

_HUMOR = re.compile(r"haha|lol|😂|funny|joke|lmao")
_EMPATHY = re.compile(r"understand|feel|sorry|care about|support|here for you")
_DIRECTNESS = re.compile(r"directly|honestly|bluntly|straightforward|cut to the chase")
_CASUAL = re.compile(r"yeah|nah|gonna|wanna|cool|awesome")
_FORMAL = re.compile(r"please|thank you|would you|kindly|sir|madam")


def _clamp(value: float, low: float = TRAIT_MIN, high: float = TRAIT_MAX) -> float:
    return max(low, min(high, value))


def _to_unit(value: float) -> float:
    return value / TRAIT_MAX


def _from_unit(value: float) -> float:
    return value * TRAIT_MAX


def analyze_traits(turns: Sequence[Memory]) -> Dict[str, float]:
    """Raw per-trait signal on [0, 10] from marker hit rates over ``turns``."""
    if not turns:
        return {}
    hits = dict.fromkeys(TRAIT_NAMES, 0.0)
    for turn in turns:
        text = turn.combined_text.lower()
        if _HUMOR.search(text):
            hits["humor"] += 1
        if _EMPATHY.search(text):
            hits["empathy"] += 1
        if _DIRECTNESS.search(text):
            hits["directness"] += 1
        casual = len(_CASUAL.findall(text))
        formal = len(_FORMAL.findall(text))
        if casual > formal:
            hits["formality"] -= 0.5
        elif formal > casual:
            hits["formality"] += 1
        if text.count("!") > 2:
            hits["enthusiasm"] += 1
        if text.count("?") > 1:
            hits["curiosity"] += 1
        if len(text) > 800:
            hits["patience"] += 1

    total = len(turns)
    raw = {name: _clamp(count / total * 10) for name, count in hits.items()}
    # formality is centred on neutral and may move either way
    raw["formality"] = _clamp(NEUTRAL_VALUE + hits["formality"] / total * 10)
    return raw


def ema_update(old: float, raw: float) -> float:
    return _clamp(old * EMA_KEEP + raw * (1 - EMA_KEEP))


def stability_factor(history: Sequence[float], current: float) -> float:
    """Unit-scale stability: 1 - stddev/2 over history plus current, in [0.1, 1]."""
    if len(history) < 3:
        return 0.5
    values = list(history) + [current]
    mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return _clamp(1 - variance ** 0.5 / 2, 0.1, 1.0)


def trend_strength(history: Sequence[float]) -> float:
    """Unit-scale trend: |least-squares slope| x 10, in [0, 1]."""
    n = len(history)
    if n < 5:
        return 0.5
    x_mean = (n - 1) / 2
    y_mean = sum(history) / n
    numerator = sum((i - x_mean) * (y - y_mean) for i, y in enumerate(history))
    denominator = sum((i - x_mean) ** 2 for i in range(n))
    slope = numerator / denominator if denominator else 0.0
    return _clamp(abs(slope) * 10, 0.0, 1.0)


def age_resistance(age_days: int) -> float:
    return min(1.0, max(1, age_days) / 30) * 0.8


def consolidated_value(current: float, history: Sequence[float], age_days: int) -> float:
    """Consolidate one trait; ``current`` and ``history`` are on the [0, 10] scale."""
    if not history:
        return _clamp(current)
    cur = _to_unit(current)
    hist = [_to_unit(v) for v in history]

    stability = stability_factor(hist, cur)
    trend = trend_strength(hist)
    resistance = age_resistance(age_days)
    mean = sum(hist) / len(hist)

    convergence = (1 - stability) * 0.3
    influence = trend * 0.2
    blended = cur * (1 - convergence - influence) + mean * convergence + (cur + (hist[-1] - hist[0])) * influence
    final = cur * resistance + blended * (1 - resistance)
    return _clamp(_from_unit(final))


def recent_history(trait: PersonalityTrait, now: datetime) -> List[float]:
    """Snapshots from the last 30 days in date order."""
    cutoff = (now - HISTORY_WINDOW).date()
    points: List[Tuple[date, float]] = []
    for day, value in trait.historical_values.items():
        try:
            snapshot_day = date.fromisoformat(str(day)[:10])
            points.append((snapshot_day, float(value)))
        except (TypeError, ValueError):
            continue
    return [value for day, value in sorted(points) if day >= cutoff]


class PersonalityService:
    def __init__(self, episodic: EpisodicStore, store: PersonalityStore) -> None:
        self.episodic = episodic
        self.store = store

    def initialize_personality(self, user_id: str) -> None:
        self.store.ensure_traits(user_id, TRAIT_NAMES, NEUTRAL_VALUE)

    def get_personality(self, user_id: str) -> Dict[str, float]:
        """Current trait values; traits never stored read as neutral. Read-only."""
        values = {name: NEUTRAL_VALUE for name in TRAIT_NAMES}
        values.update({t.trait_name: t.current_value for t in self.store.list_traits(user_id)})
        return values

    def get_personality_history(self, user_id: str, trait: Optional[str] = None) -> List[PersonalityTrait]:
        traits = self.store.list_traits(user_id)
        if trait:
            traits = [t for t in traits if t.trait_name == trait]
        return traits

    def update_personality(self, user_id: str, now: Optional[datetime] = None) -> Optional[Dict[str, float]]:
        """Apply one EMA step from the last week of turns; None when there were no turns."""
        now = now or utcnow()
        turns = self.episodic.list_recent_memories(
            user_id, limit=EVOLUTION_TURN_LIMIT, since=now - EVOLUTION_WINDOW
        )
        if not turns:
            logger.debug("[personality.evolve.skip] user_id=%s no recent turns", user_id)
            return None

        self.initialize_personality(user_id)
        current = {t.trait_name: t.current_value for t in self.store.list_traits(user_id)}
        raw = analyze_traits(turns)
        updated: Dict[str, float] = {}
        for name, signal in raw.items():
            value = ema_update(current.get(name, NEUTRAL_VALUE), signal)
            self.store.save_evolved_trait(user_id, name, value, now.date(), now)
            updated[name] = value
        logger.info("[personality.evolved] user_id=%s turns=%s traits=%s", user_id, len(turns), updated)
        return updated

    def consolidate_personality(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, float]:
        now = now or utcnow()
        result: Dict[str, float] = {}
        for trait in self.store.list_traits(user_id):
            history = recent_history(trait, now)
            age_days = max(1, (now - trait.created_at).days)
            value = consolidated_value(trait.current_value, history, age_days)
            self.store.save_consolidated_trait(user_id, trait.trait_name, value, now)
            result[trait.trait_name] = value
        logger.info("[personality.consolidated] user_id=%s traits=%s", user_id, result)
        return result

    def reset_personality(self, user_id: str) -> Dict[str, float]:
        removed = self.store.delete_traits(user_id)
        self.initialize_personality(user_id)
        logger.info("[personality.reset] user_id=%s removed=%s", user_id, removed)
        return {t.trait_name: t.current_value for t in self.store.list_traits(user_id)}
