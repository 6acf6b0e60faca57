"""External insight backends — LLM-written insights merged into template output.

A backend is anything with ``async generate_insights(context) -> dict``
returning ``{"insights": [draft, ...]}``.  Drafts are validated with
pydantic before they reach the generator; invalid drafts are dropped.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Protocol

from pydantic import BaseModel, Field, ValidationError, field_validator

from game_insights.utils.values import to_number

logger = logging.getLogger(__name__)


@dataclass
class InsightContext:
    """Everything a backend may look at when writing insights."""
    game_type: str
    column_meanings: list[dict]
    metrics: dict | None = None
    anomalies: list[dict] = field(default_factory=list)
    snapshot: dict = field(default_factory=dict)  # total_users, total_revenue, row_count, date_range
    aggregations: dict = field(default_factory=dict)  # level_stats, platform_distribution, top_countries


class InsightBackend(Protocol):
    async def generate_insights(self, context: InsightContext) -> dict: ...


class InsightDraft(BaseModel):
    id: str | None = None
    type: Literal["positive", "negative", "neutral", "warning", "opportunity"] = "neutral"
    category: Literal["retention", "monetization", "engagement", "progression", "quality"] = "engagement"
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    metric: str | None = None
    value: float | str | None = None
    priority: int = 5
    confidence: float = 0.7
    business_impact: Literal["high", "medium", "low"] | None = None
    recommendation: str | None = None
    evidence: list[str] = Field(default_factory=list)

    @field_validator("priority", mode="before")
    @classmethod
    def clamp_priority(cls, v: Any) -> int:
        """Out-of-range priorities are clamped to 1-10; unreadable ones get the default."""
        num = to_number(v)
        if num is None or not math.isfinite(num):
            return 5
        return int(min(max(round(num), 1), 10))

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        num = to_number(v)
        if num is None or not math.isfinite(num):
            return 0.7
        return min(max(num, 0.0), 1.0)


def parse_drafts(payload: Any) -> list[InsightDraft]:
    """Validate a backend response, skipping malformed drafts."""
    if isinstance(payload, dict):
        items = payload.get("insights") or []
    elif isinstance(payload, list):
        items = payload
    else:
        return []

    drafts: list[InsightDraft] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            drafts.append(InsightDraft.model_validate(item))
        except ValidationError as exc:
            logger.debug("Dropping invalid insight draft: %s", exc.errors()[:1])
    return drafts


def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


class GeminiInsightBackend:
    """Writes insights with Gemini via ``google-genai``."""

    def __init__(self, api_key: str, model: str = "gemini-2.0-flash") -> None:
        self.api_key = api_key
        self.model = model

    @classmethod
    def from_settings(cls, settings: Any) -> GeminiInsightBackend | None:
        if not settings.gemini_api_key:
            logger.warning("No Gemini API key, external insights disabled")
            return None
        return cls(api_key=settings.gemini_api_key, model=settings.gemini_model)

    def build_prompt(self, context: InsightContext) -> str:
        return (
            "You are a senior mobile game analyst. Given this analysis of a "
            f"{context.game_type.replace('_', ' ')} game, write 3-5 specific, actionable insights "
            "that reference the numbers below.\n\n"
            f"CONTEXT:\n{json.dumps(asdict(context), default=str)[:12000]}\n\n"
            "Return ONLY valid JSON (no markdown fences): "
            '{"insights": [{"type": "positive|negative|neutral|warning|opportunity", '
            '"category": "retention|monetization|engagement|progression|quality", '
            '"title": "...", "description": "...", "priority": 1-10, "confidence": 0-1, '
            '"recommendation": "...", "evidence": ["..."]}]}'
        )

    async def generate_insights(self, context: InsightContext) -> dict:
        from google import genai

        client = genai.Client(api_key=self.api_key)
        response = await asyncio.to_thread(
            client.models.generate_content,
            model=self.model,
            contents=self.build_prompt(context),
        )
        parsed = json.loads(_strip_fences(response.text or ""))
        if isinstance(parsed, list):
            parsed = {"insights": parsed}
        return parsed
