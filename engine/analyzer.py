"""Signal aggregation turning indicator outputs into a technical view."""

from __future__ import annotations

import logging
import math
from typing import Iterable, List, Optional

from datahub.indicators import IndicatorEngine
from engine.models import (
    NONZERO_SENTIMENT_BIAS,
    Indicator,
    MarketSnapshot,
    PriceRange,
    Signal,
    TechnicalAnalysis,
)

logger = logging.getLogger(__name__)

SIGNAL_WEIGHTS = {
    Signal.BUY: 1.0,
    Signal.SELL: -1.0,
    Signal.NEUTRAL: NONZERO_SENTIMENT_BIAS,
}

SENTIMENT_LIMIT = 0.9
RANGE_FLOOR = 0.05
# Keeps the range strictly positive for snapshots the indicator engine rejected.
DEGENERATE_RANGE = (1e-8, 2e-8)


def overall_sentiment(indicators: Iterable[Indicator]) -> float:
    """Average the indicator signals into a score in [-0.9, 0.9], never 0.

    Neutral signals carry a small positive bias, so an all-neutral board
    reads as mildly constructive rather than exactly flat.
    """
    weights = [SIGNAL_WEIGHTS[item.signal] for item in indicators]
    if not weights:
        return NONZERO_SENTIMENT_BIAS
    score = sum(weights) / len(weights)
    score = max(-SENTIMENT_LIMIT, min(SENTIMENT_LIMIT, score))
    return NONZERO_SENTIMENT_BIAS if score == 0 else round(score, 4)


def deterministic_price_range(price: float, indicators: List[Indicator]) -> PriceRange:
    if not math.isfinite(price) or price <= 0:
        low, high = DEGENERATE_RANGE
        return PriceRange(low=low, high=high, confidence=0.0)

    atr = _indicator_value(indicators, "ATR")
    width = max(RANGE_FLOOR, 2 * atr / price) if atr else RANGE_FLOOR
    confidences = [item.confidence for item in indicators]
    confidence = sum(confidences) / len(confidences) if confidences else 0.0
    return PriceRange(
        low=round(price * (1 - width), 6),
        high=round(price * (1 + width), 6),
        confidence=round(confidence, 4),
    )


def analyze_snapshot(snapshot: MarketSnapshot, engine: Optional[IndicatorEngine] = None) -> TechnicalAnalysis:
    """Run the indicator engine and fold the result into a TechnicalAnalysis."""
    engine = engine or IndicatorEngine()
    indicators = engine.compute(snapshot)
    sentiment = overall_sentiment(indicators)
    price_range = deterministic_price_range(snapshot.price or 0.0, indicators)
    logger.debug("Deterministic technical view: sentiment=%.3f range=%s", sentiment, price_range)
    return TechnicalAnalysis(
        indicators=indicators,
        overallSentiment=sentiment,
        priceRange=price_range,
    )


def _indicator_value(indicators: Iterable[Indicator], name: str) -> Optional[float]:
    for item in indicators:
        if item.name == name:
            return item.value
    return None
