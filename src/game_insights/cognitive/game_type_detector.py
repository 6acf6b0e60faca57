"""Game type detector — infer the genre from recognised column meanings.

Each genre owns weighted indicator groups.  A genre's score is the sum of
weight × matched signals; the best score wins only when it clearly beats
the runner-up, otherwise the table is reported as ``custom``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from game_insights.cognitive.schema_analyzer import ColumnMeaning, SemanticType

logger = logging.getLogger(__name__)

MIN_SCORE_GAP = 2
MAX_CONFIDENCE = 0.95
CONFIDENCE_BOOST = 0.3
FALLBACK_CONFIDENCE = 0.3

S = SemanticType

GAME_INDICATORS: dict[str, list[tuple[tuple[SemanticType, ...], int]]] = {
    "puzzle": [
        ((S.MOVES, S.BOOSTER), 5),
        ((S.LEVEL, S.SCORE), 3),
        ((S.LIVES,), 3),
        ((S.SESSION_ID,), 1),
    ],
    "idle": [
        ((S.PRESTIGE,), 5),
        ((S.OFFLINE_REWARD,), 5),
        ((S.UPGRADE,), 4),
        ((S.CURRENCY,), 3),
        ((S.LEVEL,), 1),
    ],
    "battle_royale": [
        ((S.PLACEMENT, S.KILLS), 5),
        ((S.DAMAGE, S.SURVIVAL_TIME), 4),
        ((S.RANK,), 3),
        ((S.USER_ID,), 1),
    ],
    "match3_meta": [
        ((S.MOVES, S.BOOSTER), 5),
        ((S.LEVEL, S.SCORE), 3),
        ((S.ITEM_ID, S.CATEGORY), 2),
        ((S.REVENUE, S.PRICE), 1),
    ],
    "gacha_rpg": [
        ((S.PULL_TYPE, S.BANNER), 5),
        ((S.RARITY,), 5),
        ((S.CURRENCY,), 3),
        ((S.LEVEL, S.XP), 2),
        ((S.RANK,), 1),
    ],
}

_SIGNAL_LABELS: dict[SemanticType, str] = {
    S.MOVES: "move tracking",
    S.BOOSTER: "booster usage",
    S.LIVES: "lives/energy system",
    S.PRESTIGE: "prestige/rebirth loop",
    S.OFFLINE_REWARD: "offline rewards",
    S.UPGRADE: "upgrade purchases",
    S.PLACEMENT: "match placement",
    S.KILLS: "kill counts",
    S.DAMAGE: "damage dealt",
    S.SURVIVAL_TIME: "survival time",
    S.PULL_TYPE: "gacha pulls",
    S.BANNER: "summon banners",
    S.RARITY: "item rarity",
}


def _max_possible_score() -> int:
    return max(
        sum(weight * len(signals) for signals, weight in groups)
        for groups in GAME_INDICATORS.values()
    )


@dataclass
class DetectionResult:
    game_type: str
    confidence: float
    reasons: list[str] = field(default_factory=list)
    scores: dict[str, int] = field(default_factory=dict)


class GameTypeDetector:
    """Score every genre and pick a clear winner, or ``custom``."""

    def detect(self, meanings: list[ColumnMeaning]) -> DetectionResult:
        present = {m.semantic_type for m in meanings}
        scores: dict[str, int] = {}
        reasons: dict[str, list[str]] = {}

        for genre, groups in GAME_INDICATORS.items():
            score = 0
            matched: list[str] = []
            for signals, weight in groups:
                hits = [s for s in signals if s in present]
                score += weight * len(hits)
                matched.extend(_SIGNAL_LABELS.get(s, s.value) for s in hits)
            scores[genre] = score
            reasons[genre] = matched

        ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)
        top_genre, top_score = ranked[0]
        runner_up = ranked[1][1] if len(ranked) > 1 else 0

        if top_score == 0 or top_score - runner_up < MIN_SCORE_GAP:
            logger.info("Game type: custom (top=%s score=%d)", top_genre, top_score)
            return DetectionResult(
                game_type="custom",
                confidence=FALLBACK_CONFIDENCE,
                reasons=["No clear game type pattern detected"],
                scores=scores,
            )

        confidence = min(top_score / _max_possible_score() + CONFIDENCE_BOOST, MAX_CONFIDENCE)
        logger.info("Game type: %s (confidence %.2f)", top_genre, confidence)
        return DetectionResult(
            game_type=top_genre,
            confidence=round(confidence, 2),
            reasons=[f"Detected {label}" for label in reasons[top_genre]],
            scores=scores,
        )
