"""Domain knowledge registry — mobile game industry benchmarks and genre lore.

Benchmarks are mid-market mobile figures.  They are defaults, not truths:
:class:`~game_insights.discovery.insight_generator.InsightGenerator`
accepts an override mapping with the same shape.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


GAME_GENRES: tuple[str, ...] = (
    "puzzle",
    "idle",
    "battle_royale",
    "match3_meta",
    "gacha_rpg",
    "custom",
)


# ---------------------------------------------------------------------------
# Benchmarks
# ---------------------------------------------------------------------------

INDUSTRY_BENCHMARKS: dict[str, dict] = {
    "d1_retention": {
        "good": 40.0,
        "poor": 25.0,
        "unit": "%",
        "context": "Share of new players returning the day after install.",
    },
    "d7_retention": {
        "good": 20.0,
        "poor": 10.0,
        "unit": "%",
        "context": "Week-one retention. Below 10% usually means a weak core loop.",
    },
    "d30_retention": {
        "good": 10.0,
        "poor": 4.0,
        "unit": "%",
        "context": "Long-term retention, driven by meta progression and live ops.",
    },
    "conversion_rate": {
        "good": 5.0,
        "poor": 2.0,
        "unit": "%",
        "context": "Share of players making at least one purchase.",
    },
    "arpu": {
        "good": 1.0,
        "poor": 0.1,
        "unit": "$",
        "context": "Average revenue per user over the observed window.",
    },
    "dau_mau_ratio": {
        "good": 0.2,
        "poor": 0.1,
        "unit": "ratio",
        "context": "Stickiness. 0.2 means the average player shows up 6 days a month.",
    },
}


# ---------------------------------------------------------------------------
# Genre tips: evergreen advice used to pad short insight lists
# ---------------------------------------------------------------------------

GENRE_TIPS: dict[str, list[str]] = {
    "puzzle": [
        "Consider adding hint systems for stuck players",
        "Level completion times can reveal difficulty spikes",
        "Boosters near hard levels drive IAP conversion",
    ],
    "idle": [
        "Optimize offline reward calculations for engagement",
        "Monitor currency inflation over time",
        "Prestige timing affects long-term retention",
    ],
    "battle_royale": [
        "Track time-to-first-kill for early engagement",
        "Analyze where players drop most frequently",
        "Weapon balance affects matchmaking satisfaction",
    ],
    "match3_meta": [
        "Hard levels should appear every 10-15 stages",
        "Monitor booster usage patterns for balance",
        "Meta progression drives long-term engagement",
    ],
    "gacha_rpg": [
        "Track pity system hits and near-misses",
        "Analyze character collection completion rates",
        "Banner timing affects revenue spikes",
    ],
    "custom": [
        "Focus on engagement metrics for unknown game types",
        "Instrument a user id and timestamp on every event to unlock retention analysis",
        "Track a purchase amount column to unlock monetization analysis",
    ],
}

# Tips that apply to every genre, used after the genre list is exhausted.
UNIVERSAL_TIPS: list[str] = [
    "Compare new-player cohorts week over week to catch onboarding regressions early",
    "Segment spenders into whales, dolphins and minnows before tuning offers",
    "Review the first-session funnel after every release",
]


def get_benchmark(name: str, overrides: dict[str, dict] | None = None) -> dict | None:
    """Look up a benchmark, preferring *overrides* when supplied."""
    if overrides and name in overrides:
        return overrides[name]
    return INDUSTRY_BENCHMARKS.get(name)


def get_genre_tips(game_type: str) -> list[str]:
    """Genre tips followed by the universal tips."""
    return GENRE_TIPS.get(game_type, GENRE_TIPS["custom"]) + UNIVERSAL_TIPS
