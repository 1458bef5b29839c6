"""Validation and merge of AI analysis results with the deterministic baseline.

The deterministic side is ground truth for indicator values and signals. AI
output is only allowed to refine confidence, wording and the outer price range,
and is dropped wholesale if any part of it fails schema validation.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from engine.errors import AIValidationError
from engine.models import (
    AINewsPayload,
    AITechnicalPayload,
    Indicator,
    NewsAnalysis,
    NewsImpact,
    PriceRange,
    TechnicalAnalysis,
)

logger = logging.getLogger(__name__)

CONFIDENCE_FLOOR = 0.01
RANGE_FLOOR = 0.05

INDICATOR_ALIASES = {
    "ema": "EMA (14)",
    "ema14": "EMA (14)",
    "exponentialmovingaverage": "EMA (14)",
    "macd": "MACD",
    "rsi": "RSI",
    "relativestrengthindex": "RSI",
    "stochrsi": "Stoch RSI",
    "stochasticrsi": "Stoch RSI",
    "bb": "Bollinger Bands",
    "bollingerbands": "Bollinger Bands",
    "atr": "ATR",
    "averagetruerange": "ATR",
    "fibonacci": "Fibonacci",
    "fibonacciretracement": "Fibonacci",
    "vpvr": "VPVR",
    "volumeprofile": "VPVR",
    "volumeprofilevisiblerange": "VPVR",
}

PayloadT = TypeVar("PayloadT", bound=BaseModel)


def validate_payload(schema: Type[PayloadT], raw: Any) -> PayloadT:
    """Parse raw AI output against ``schema`` or raise AIValidationError."""
    if not isinstance(raw, Mapping):
        raise AIValidationError(f"expected a JSON object, got {type(raw).__name__}")
    try:
        return schema.model_validate(dict(raw))
    except ValidationError as exc:
        raise AIValidationError(f"{schema.__name__}: {exc.error_count()} invalid field(s): {exc}") from exc


def canonical_indicator_name(name: str) -> Optional[str]:
    key = re.sub(r"[^a-z0-9]", "", (name or "").lower())
    return INDICATOR_ALIASES.get(key)


class AnalysisMerger:
    def __init__(self, confidence_floor: float = CONFIDENCE_FLOOR, range_floor: float = RANGE_FLOOR) -> None:
        self.confidence_floor = confidence_floor
        self.range_floor = range_floor

    def merge_technical(
        self,
        deterministic: TechnicalAnalysis,
        ai_raw: Optional[Mapping[str, Any]],
        price: float,
    ) -> TechnicalAnalysis:
        if ai_raw is None:
            logger.info("No AI technical analysis available, using deterministic result.")
            return deterministic
        if not math.isfinite(price) or price <= 0:
            logger.warning("Cannot merge AI technical analysis for price %r.", price)
            return deterministic
        try:
            payload = validate_payload(AITechnicalPayload, ai_raw)
        except AIValidationError as exc:
            logger.warning("Discarding AI technical analysis: %s", exc)
            return deterministic

        ai_by_name: Dict[str, Any] = {}
        for item in payload.indicators:
            canonical = canonical_indicator_name(item.name)
            if canonical and canonical not in ai_by_name:
                ai_by_name[canonical] = item

        indicators = [self._merge_indicator(base, ai_by_name.get(base.name)) for base in deterministic.indicators]

        sentiment = min(
            (deterministic.overallSentiment, payload.overallSentiment),
            key=abs,
        )
        price_range = PriceRange(
            low=min(payload.priceRange.low, price * (1 - self.range_floor)),
            high=max(payload.priceRange.high, price * (1 + self.range_floor)),
            confidence=payload.priceRange.confidence,
        )
        return TechnicalAnalysis(
            indicators=indicators,
            overallSentiment=sentiment,
            priceRange=price_range,
        )

    def merge_news(self, deterministic: NewsAnalysis, ai_raw: Optional[Mapping[str, Any]]) -> NewsAnalysis:
        if ai_raw is None:
            logger.info("No AI news analysis available, using deterministic result.")
            return deterministic
        try:
            payload = validate_payload(AINewsPayload, ai_raw)
        except AIValidationError as exc:
            logger.warning("Discarding AI news analysis: %s", exc)
            return deterministic

        floor = self.confidence_floor
        return NewsAnalysis(
            score=max(floor, payload.score),
            sentiment=payload.sentiment,
            confidence=max(floor, payload.confidence),
            impact=NewsImpact(
                shortTerm=max(floor, payload.impact.shortTerm),
                longTerm=max(floor, payload.impact.longTerm),
            ),
        )

    def _merge_indicator(self, base: Indicator, ai_item: Any) -> Indicator:
        if ai_item is None:
            return base
        confidence = base.confidence if ai_item.confidence is None else ai_item.confidence
        description = ai_item.description.strip() if isinstance(ai_item.description, str) else ""
        return base.model_copy(
            update={
                "confidence": max(self.confidence_floor, confidence),
                "description": description or base.description,
            }
        )
