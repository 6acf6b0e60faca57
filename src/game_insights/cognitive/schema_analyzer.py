"""Schema analyzer — maps raw column names to game-analytics meanings.

Pure Python, no LLM calls.  Column names are matched against an ordered
pattern table; the first semantic type with a matching pattern wins, so
more specific types are listed before generic ones.  When no name pattern
matches, the primitive type and sample values drive a weaker guess.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum

from game_insights.ingestion.table import ColumnInfo, Table, build_schema

logger = logging.getLogger(__name__)

NAME_MATCH_CONFIDENCE = 0.85


class SemanticType(str, Enum):
    USER_ID = "user_id"
    SESSION_ID = "session_id"
    EVENT_NAME = "event_name"
    TIMESTAMP = "timestamp"
    REVENUE = "revenue"
    CURRENCY = "currency"
    PRICE = "price"
    QUANTITY = "quantity"
    LEVEL = "level"
    SCORE = "score"
    XP = "xp"
    RANK = "rank"
    COUNTRY = "country"
    PLATFORM = "platform"
    DEVICE = "device"
    VERSION = "version"
    RETENTION_DAY = "retention_day"
    COHORT = "cohort"
    SEGMENT = "segment"
    DAU = "dau"
    MAU = "mau"
    ARPU = "arpu"
    LTV = "ltv"
    ITEM_ID = "item_id"
    ITEM_NAME = "item_name"
    CATEGORY = "category"
    FUNNEL_STEP = "funnel_step"
    CONVERSION = "conversion"
    ERROR_TYPE = "error_type"
    ERROR_MESSAGE = "error_message"
    MOVES = "moves"
    BOOSTER = "booster"
    LIVES = "lives"
    PRESTIGE = "prestige"
    OFFLINE_REWARD = "offline_reward"
    UPGRADE = "upgrade"
    RARITY = "rarity"
    BANNER = "banner"
    PULL_TYPE = "pull_type"
    KILLS = "kills"
    PLACEMENT = "placement"
    DAMAGE = "damage"
    SURVIVAL_TIME = "survival_time"
    AD_IMPRESSION = "ad_impression"
    AD_REVENUE = "ad_revenue"
    AD_NETWORK = "ad_network"
    AD_TYPE = "ad_type"
    ECPM = "ecpm"
    AD_WATCHED = "ad_watched"
    IAP_REVENUE = "iap_revenue"
    PURCHASE_AMOUNT = "purchase_amount"
    PRODUCT_ID = "product_id"
    OFFER_ID = "offer_id"
    OFFER_SHOWN = "offer_shown"
    SESSION_DURATION = "session_duration"
    SESSION_COUNT = "session_count"
    ROUNDS_PLAYED = "rounds_played"
    DAYS_SINCE_INSTALL = "days_since_install"
    VIP_LEVEL = "vip_level"
    BATTLE_PASS_LEVEL = "battle_pass_level"
    PREMIUM_CURRENCY = "premium_currency"
    PITY_COUNT = "pity_count"
    HIGH_SCORE = "high_score"
    IS_ORGANIC = "is_organic"
    ACQUISITION_SOURCE = "acquisition_source"
    UNKNOWN = "unknown"


@dataclass
class ColumnMeaning:
    column: str
    detected_type: str
    semantic_type: SemanticType
    confidence: float


# ---------------------------------------------------------------------------
# Ordered name patterns (case-insensitive search).  Order is significant:
# the first type whose list matches wins.
# ---------------------------------------------------------------------------

_RAW_PATTERNS: list[tuple[SemanticType, list[str]]] = [
    (SemanticType.USER_ID, [r"user.*id", r"player.*id", r"uid", r"^id$", r"^userId$"]),
    (SemanticType.SESSION_ID, [r"session.*id", r"^sid$", r"match.*id"]),
    (SemanticType.EVENT_NAME, [r"event.*name", r"event.*type", r"action", r"^eventName$"]),
    (SemanticType.TIMESTAMP, [r"timestamp", r"^date$", r"^time$", r"created.*at", r"^ts$", r"eventTime", r"install.*date"]),
    (SemanticType.REVENUE, [r"revenue", r"income", r"earnings", r"^rev$", r"iap.*revenue"]),
    (SemanticType.CURRENCY, [r"currency", r"^cur$", r"gold", r"gems", r"coins", r"gemsSpent", r"goldEarned"]),
    (SemanticType.PRICE, [r"price", r"amount", r"cost", r"price.*usd"]),
    (SemanticType.QUANTITY, [r"quantity", r"^count$", r"^qty$"]),
    (SemanticType.LEVEL, [r"^level$", r"^lvl$", r"player.*level", r"upgrade.*level"]),
    (SemanticType.SCORE, [r"score", r"points"]),
    (SemanticType.XP, [r"^xp$", r"experience", r"^exp$"]),
    (SemanticType.RANK, [r"^rank$", r"tier", r"league"]),
    (SemanticType.COUNTRY, [r"^country$", r"^region$", r"geo"]),
    (SemanticType.PLATFORM, [r"platform", r"^os$", r"device.*type"]),
    (SemanticType.DEVICE, [r"device", r"model"]),
    (SemanticType.VERSION, [r"version", r"^ver$", r"app.*version"]),
    (SemanticType.RETENTION_DAY, [r"retention", r"^d\d+$", r"retention_d\d+"]),
    (SemanticType.COHORT, [r"cohort"]),
    (SemanticType.SEGMENT, [r"segment", r"group", r"bucket"]),
    (SemanticType.DAU, [r"^dau$", r"daily.*active"]),
    (SemanticType.MAU, [r"^mau$", r"monthly.*active"]),
    (SemanticType.ARPU, [r"^arpu$", r"revenue.*per.*user"]),
    (SemanticType.LTV, [r"^ltv$", r"lifetime.*value"]),
    (SemanticType.ITEM_ID, [r"item.*id", r"product.*id", r"sku", r"transaction.*id"]),
    (SemanticType.ITEM_NAME, [r"item.*name", r"product.*name"]),
    (SemanticType.CATEGORY, [r"category", r"^type$", r"^mode$", r"upgradeType"]),
    (SemanticType.FUNNEL_STEP, [r"step", r"stage", r"funnel"]),
    (SemanticType.CONVERSION, [r"conversion", r"converted"]),
    (SemanticType.ERROR_TYPE, [r"error.*type", r"error.*code"]),
    (SemanticType.ERROR_MESSAGE, [r"error.*message", r"error.*msg", r"exception"]),
    (SemanticType.MOVES, [r"moves", r"attempts", r"moves.*left"]),
    (SemanticType.BOOSTER, [r"booster", r"powerup", r"helper", r"boosters.*used"]),
    (SemanticType.LIVES, [r"lives", r"hearts", r"energy"]),
    (SemanticType.PRESTIGE, [r"prestige", r"rebirth", r"ascend"]),
    (SemanticType.OFFLINE_REWARD, [r"offline", r"idle", r"away", r"offlineMinutes"]),
    (SemanticType.UPGRADE, [r"upgrade", r"enhance", r"improve"]),
    (SemanticType.RARITY, [r"rarity", r"^ssr$", r"^sr$", r"^r$", r"legendary", r"epic", r"rare"]),
    (SemanticType.BANNER, [r"banner", r"summon", r"bannerName"]),
    (SemanticType.PULL_TYPE, [r"pull", r"gacha", r"pullType"]),
    (SemanticType.KILLS, [r"kills", r"eliminations", r"frags"]),
    (SemanticType.PLACEMENT, [r"placement", r"position", r"standing"]),
    (SemanticType.DAMAGE, [r"damage", r"dmg"]),
    (SemanticType.SURVIVAL_TIME, [r"survival", r"alive", r"survivalTime"]),
    (SemanticType.AD_IMPRESSION, [r"ad.*impression", r"impression.*count", r"ads.*shown"]),
    (SemanticType.AD_REVENUE, [r"ad.*revenue", r"ad.*earnings", r"ad_revenue_usd"]),
    (SemanticType.AD_NETWORK, [r"ad.*network", r"network.*name", r"admob", r"unity.*ads", r"applovin"]),
    (SemanticType.AD_TYPE, [r"ad.*type", r"ad.*format", r"interstitial", r"rewarded", r"banner"]),
    (SemanticType.ECPM, [r"ecpm", r"cpm", r"ad_ecpm"]),
    (SemanticType.AD_WATCHED, [r"ad.*watched", r"watched.*full", r"ad.*completed"]),
    (SemanticType.IAP_REVENUE, [r"iap.*revenue", r"purchase.*revenue", r"iap_usd"]),
    (SemanticType.PURCHASE_AMOUNT, [r"purchase.*amount", r"transaction.*amount", r"spend"]),
    (SemanticType.PRODUCT_ID, [r"product.*id", r"bundle.*id", r"pack.*id", r"offer.*id"]),
    (SemanticType.OFFER_ID, [r"offer.*id", r"promo.*id", r"deal.*id"]),
    (SemanticType.OFFER_SHOWN, [r"offer.*shown", r"promo.*shown", r"offer.*displayed"]),
    (SemanticType.SESSION_DURATION, [r"session.*duration", r"session.*length", r"time.*spent", r"play.*time"]),
    (SemanticType.SESSION_COUNT, [r"session.*count", r"session.*number", r"sessions.*total"]),
    (SemanticType.ROUNDS_PLAYED, [r"rounds.*played", r"games.*played", r"matches.*played", r"rounds.*this.*session"]),
    (SemanticType.DAYS_SINCE_INSTALL, [r"days.*since.*install", r"install.*day", r"player.*age", r"account.*age"]),
    (SemanticType.VIP_LEVEL, [r"vip.*level", r"vip.*tier", r"premium.*level"]),
    (SemanticType.BATTLE_PASS_LEVEL, [r"battle.*pass", r"pass.*level", r"season.*pass"]),
    (SemanticType.PREMIUM_CURRENCY, [r"premium.*currency", r"premium.*gems", r"paid.*currency"]),
    (SemanticType.PITY_COUNT, [r"pity", r"pity.*count", r"guaranteed"]),
    (SemanticType.HIGH_SCORE, [r"high.*score", r"best.*score", r"top.*score"]),
    (SemanticType.IS_ORGANIC, [r"is.*organic", r"organic.*user", r"acquisition.*type"]),
    (SemanticType.ACQUISITION_SOURCE, [r"acquisition.*source", r"utm.*source", r"install.*source", r"campaign"]),
]

COLUMN_PATTERNS: list[tuple[SemanticType, list[re.Pattern]]] = [
    (semantic, [re.compile(p, re.IGNORECASE) for p in patterns])
    for semantic, patterns in _RAW_PATTERNS
]


# ---------------------------------------------------------------------------
# Suggested metrics lookup
# ---------------------------------------------------------------------------

_SUGGESTED_METRICS: list[tuple[tuple[SemanticType, ...], list[str]]] = [
    ((SemanticType.REVENUE, SemanticType.IAP_REVENUE), ["Total Revenue", "ARPU", "ARPPU", "Daily Revenue"]),
    ((SemanticType.USER_ID,), ["DAU", "MAU", "New Users"]),
    ((SemanticType.SESSION_ID,), ["Sessions", "Avg Session Length"]),
    ((SemanticType.RETENTION_DAY,), ["Day 1 Retention", "Day 7 Retention"]),
    ((SemanticType.LEVEL,), ["Level Distribution", "Progression Speed"]),
    ((SemanticType.FUNNEL_STEP,), ["Funnel Conversion", "Drop-off Rate"]),
    ((SemanticType.ERROR_TYPE,), ["Error Rate", "Crash-Free Users"]),
    ((SemanticType.AD_IMPRESSION, SemanticType.AD_REVENUE, SemanticType.AD_TYPE),
     ["Ad Revenue", "eCPM by Network", "Ads per Session", "Ad Fill Rate"]),
    ((SemanticType.IAP_REVENUE, SemanticType.PURCHASE_AMOUNT),
     ["Conversion Rate", "Paying Users %", "Avg Purchase Value"]),
    ((SemanticType.OFFER_ID, SemanticType.OFFER_SHOWN), ["Offer Conversion", "Best Performing Offers"]),
    ((SemanticType.SESSION_DURATION, SemanticType.ROUNDS_PLAYED),
     ["Avg Session Duration", "Sessions per User", "Engagement Score"]),
    ((SemanticType.DAYS_SINCE_INSTALL,), ["Day N Retention", "Cohort LTV", "Time to First Purchase"]),
    ((SemanticType.VIP_LEVEL,), ["VIP Distribution", "VIP Revenue Share"]),
    ((SemanticType.BATTLE_PASS_LEVEL,), ["Pass Progression", "Pass Completion Rate"]),
    ((SemanticType.PITY_COUNT, SemanticType.BANNER), ["Banner Performance", "Pull Distribution", "SSR Rate"]),
    ((SemanticType.KILLS, SemanticType.PLACEMENT), ["K/D Ratio", "Win Rate", "Avg Placement"]),
    ((SemanticType.HIGH_SCORE,), ["Score Distribution", "High Score Trend"]),
    ((SemanticType.IS_ORGANIC, SemanticType.ACQUISITION_SOURCE), ["Organic vs Paid", "Source ROAS", "CAC by Channel"]),
]


class SchemaAnalyzer:
    """Assigns a :class:`SemanticType` to every column."""

    def analyze(self, columns: list[ColumnInfo]) -> list[ColumnMeaning]:
        meanings = [self._analyze_column(col) for col in columns]
        recognised = sum(1 for m in meanings if m.semantic_type is not SemanticType.UNKNOWN)
        logger.info("Schema analysis: %d/%d columns recognised", recognised, len(meanings))
        return meanings

    def analyze_table(self, table: Table) -> list[ColumnMeaning]:
        return self.analyze(build_schema(table))

    def get_suggested_metrics(self, meanings: list[ColumnMeaning]) -> list[str]:
        """Metrics worth computing given the recognised columns."""
        types = {m.semantic_type for m in meanings}
        metrics: list[str] = []
        for triggers, names in _SUGGESTED_METRICS:
            if any(t in types for t in triggers):
                metrics.extend(names)
        return metrics or ["Row Count", "Unique Values"]

    # ------------------------------------------------------------------

    def _analyze_column(self, col: ColumnInfo) -> ColumnMeaning:
        for semantic, patterns in COLUMN_PATTERNS:
            if any(p.search(col.name) for p in patterns):
                return ColumnMeaning(
                    column=col.name,
                    detected_type=col.type,
                    semantic_type=semantic,
                    confidence=NAME_MATCH_CONFIDENCE,
                )
        return self._infer_from_values(col)

    @staticmethod
    def _infer_from_values(col: ColumnInfo) -> ColumnMeaning:
        samples = [v for v in col.sample_values if v is not None and v != ""]
        semantic, confidence = SemanticType.UNKNOWN, 0.0

        if col.type == "date":
            semantic, confidence = SemanticType.TIMESTAMP, 0.7
        elif col.type == "number" and len(col.name) <= 3 and any(
            isinstance(v, float) and not v.is_integer() for v in samples
        ):
            semantic, confidence = SemanticType.PRICE, 0.5
        elif col.type == "string" and samples and all(
            isinstance(v, str) and len(v) == 2 for v in samples
        ):
            semantic, confidence = SemanticType.COUNTRY, 0.6

        return ColumnMeaning(
            column=col.name,
            detected_type=col.type,
            semantic_type=semantic,
            confidence=confidence,
        )
