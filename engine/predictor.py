"""Liquidity range synthesis from technical and news analysis."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable, List, Mapping, Optional, Tuple

from engine.errors import AIValidationError
from engine.merger import validate_payload
from engine.models import (
    AIPredictionPayload,
    NewsAnalysis,
    Prediction,
    PredictionSource,
    TechnicalAnalysis,
)

logger = logging.getLogger(__name__)

BASE_CONFIDENCE = 75.0
CONFIDENCE_STEP = 5.0
MIN_CONFIDENCE = 60.0
MAX_CONFIDENCE = 95.0
DEFAULT_VOLATILITY = 0.01
SKEW = 0.5
RSI_OVERBOUGHT = 70.0
RSI_OVERSOLD = 30.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PredictionSynthesizer:
    """Produces a liquidity range, preferring a validated AI range."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock

    def synthesize(
        self,
        price: float,
        technical: TechnicalAnalysis,
        news: NewsAnalysis,
        ai_raw: Optional[Mapping[str, Any]] = None,
    ) -> Prediction:
        if ai_raw is not None:
            try:
                return self._from_ai(price, ai_raw)
            except AIValidationError as exc:
                logger.warning("Discarding AI prediction, using fallback range: %s", exc)
        else:
            logger.info("No AI prediction available, using fallback range.")
        return self.fallback(price, technical, news)

    def fallback(self, price: float, technical: TechnicalAnalysis, news: NewsAnalysis) -> Prediction:
        """Deterministic range: ATR sets the width, RSI skews it toward reversal risk."""
        price = price if math.isfinite(price) and price > 0 else 0.0

        atr = _value(technical, "ATR")
        volatility = atr / price if atr and price else DEFAULT_VOLATILITY
        rsi = _value(technical, "RSI")
        sign = _rsi_sign(rsi)

        range_low = price * (1 - volatility * (1 + sign * SKEW))
        range_high = price * (1 + volatility * (1 - sign * SKEW))
        range_low, range_high = _ordered_range(price, range_low, range_high)

        checks = _corroborating_checks(price, range_low, range_high, sign, technical, news)
        confidence = BASE_CONFIDENCE + CONFIDENCE_STEP * sum(1 for passed in checks if passed)
        confidence = max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, confidence))

        return Prediction(
            rangeLow=round(range_low, 6),
            rangeHigh=round(range_high, 6),
            confidence=confidence,
            timestamp=self._clock(),
            explanation=_explain(volatility, sign, checks),
            source=PredictionSource.FALLBACK,
        )

    def _from_ai(self, price: float, ai_raw: Mapping[str, Any]) -> Prediction:
        payload = validate_payload(AIPredictionPayload, ai_raw)
        range_low, range_high = _ordered_range(price, payload.rangeLow, payload.rangeHigh)
        return Prediction(
            rangeLow=range_low,
            rangeHigh=range_high,
            confidence=payload.confidence,
            timestamp=self._clock(),
            explanation=payload.reasoning,
            source=PredictionSource.AI,
        )


def _value(technical: TechnicalAnalysis, name: str) -> Optional[float]:
    item = technical.indicator(name)
    if item is None or not math.isfinite(item.value):
        return None
    return item.value


def _rsi_sign(rsi: Optional[float]) -> int:
    if rsi is None:
        return 0
    if rsi > RSI_OVERBOUGHT:
        return -1
    if rsi < RSI_OVERSOLD:
        return 1
    return 0


def _sign(value: Optional[float]) -> int:
    if not value:
        return 0
    return 1 if value > 0 else -1


def _corroborating_checks(
    price: float,
    range_low: float,
    range_high: float,
    sign: int,
    technical: TechnicalAnalysis,
    news: NewsAnalysis,
) -> List[bool]:
    ema = _value(technical, "EMA (14)")
    ema_agrees = ema is not None and (
        (price > ema and range_high > price) or (price < ema and range_low < price)
    )
    macd_sign = _sign(_value(technical, "MACD"))
    news_sign = _sign(news.score - 0.5)
    # RSI already sets ``sign``, so an RSI-vs-sentiment check would be a
    # tautology; overall technical sentiment and news direction stand in for it.
    return [
        ema_agrees,
        sign != 0 and macd_sign == sign,
        sign != 0 and _sign(technical.overallSentiment) == sign,
        sign != 0 and news_sign == sign,
    ]


def _ordered_range(price: float, low: float, high: float) -> Tuple[float, float]:
    """Guarantee ``0 <= low < high`` by swapping or widening around price."""
    if high < low:
        low, high = high, low
    low = max(0.0, low)
    if high <= low:
        anchor = price if price > 0 else max(high, 1.0)
        low = max(0.0, anchor * (1 - DEFAULT_VOLATILITY))
        high = anchor * (1 + DEFAULT_VOLATILITY)
    return low, high


def _explain(volatility: float, sign: int, checks: List[bool]) -> str:
    bias = {
        1: "oversold, range widened below price",
        -1: "overbought, range widened above price",
        0: "neutral, symmetric range",
    }[sign]
    return (
        f"Fallback range from ATR volatility {volatility:.2%}; RSI {bias}; "
        f"{sum(1 for passed in checks if passed)} of {len(checks)} signals agree."
    )
