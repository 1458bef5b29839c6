from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Substituted whenever an aggregate sentiment lands on exactly zero.
NONZERO_SENTIMENT_BIAS = 0.1

INDICATOR_NAMES = (
    "EMA (14)",
    "MACD",
    "RSI",
    "Stoch RSI",
    "Bollinger Bands",
    "ATR",
    "Fibonacci",
    "VPVR",
)


class Signal(str, Enum):
    BUY = "buy"
    SELL = "sell"
    NEUTRAL = "neutral"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class PredictionSource(str, Enum):
    AI = "ai"
    FALLBACK = "fallback"


class MarketSnapshot(BaseModel):
    """Point-in-time market read; priceChange24h is a percentage."""

    model_config = ConfigDict(frozen=True)

    price: float
    volume24h: Optional[float] = None
    priceChange24h: float = 0.0
    marketCap: Optional[float] = None


class Indicator(BaseModel):
    name: str
    value: float
    signal: Signal
    confidence: float = Field(..., ge=0.0, le=1.0)
    description: str
    learnMoreUrl: Optional[str] = None


class HeadlineItem(BaseModel):
    title: str
    url: str
    sentiment: Optional[Sentiment] = None
    body: Optional[str] = Field(None, exclude=True)


class NewsImpact(BaseModel):
    shortTerm: float = Field(..., ge=0.0, le=1.0)
    longTerm: float = Field(..., ge=0.0, le=1.0)


class NewsAnalysis(BaseModel):
    score: float = Field(..., ge=0.0, le=1.0)
    sentiment: Sentiment
    confidence: float = Field(..., ge=0.0, le=1.0)
    impact: NewsImpact


class PriceRange(BaseModel):
    low: float = Field(..., gt=0.0)
    high: float = Field(..., gt=0.0)
    confidence: float = Field(..., ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_order(self) -> "PriceRange":
        if self.high <= self.low:
            raise ValueError("priceRange.high must be greater than priceRange.low")
        return self


class TechnicalAnalysis(BaseModel):
    indicators: List[Indicator]
    overallSentiment: float = Field(..., ge=-1.0, le=1.0)
    priceRange: PriceRange

    @field_validator("overallSentiment")
    @classmethod
    def _never_zero(cls, value: float) -> float:
        return NONZERO_SENTIMENT_BIAS if value == 0 else value

    def indicator(self, name: str) -> Optional[Indicator]:
        for item in self.indicators:
            if item.name == name:
                return item
        return None


class Prediction(BaseModel):
    rangeLow: float = Field(..., ge=0.0)
    rangeHigh: float
    confidence: float = Field(..., ge=0.0, le=100.0)
    timestamp: datetime
    explanation: Optional[str] = None
    source: PredictionSource = PredictionSource.FALLBACK

    @model_validator(mode="after")
    def _check_order(self) -> "Prediction":
        if self.rangeHigh <= self.rangeLow:
            raise ValueError("rangeHigh must be greater than rangeLow")
        return self


# --- Raw AI payload schemas ---


class _AIPayload(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)


class AIIndicatorPayload(_AIPayload):
    name: str
    value: Optional[float] = None
    signal: Optional[Signal] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    description: Optional[str] = None


class AIPriceRangePayload(_AIPayload):
    low: float = Field(..., gt=0.0)
    high: float = Field(..., gt=0.0)
    confidence: float = Field(..., ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_order(self) -> "AIPriceRangePayload":
        if self.high <= self.low:
            raise ValueError("priceRange.high must be greater than priceRange.low")
        return self


class AITechnicalPayload(_AIPayload):
    indicators: List[AIIndicatorPayload]
    overallSentiment: float = Field(..., ge=-1.0, le=1.0)
    priceRange: AIPriceRangePayload


class AINewsImpactPayload(_AIPayload):
    shortTerm: float = Field(..., ge=0.0, le=1.0)
    longTerm: float = Field(..., ge=0.0, le=1.0)


class AINewsPayload(_AIPayload):
    sentiment: Sentiment
    score: float = Field(..., ge=0.0, le=1.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    impact: AINewsImpactPayload
    reasoning: Optional[str] = None


class AIPredictionPayload(_AIPayload):
    rangeLow: float = Field(..., gt=0.0)
    rangeHigh: float = Field(..., gt=0.0)
    confidence: float = Field(..., ge=0.0, le=100.0)
    reasoning: Optional[str] = None

    @model_validator(mode="after")
    def _check_order(self) -> "AIPredictionPayload":
        if self.rangeHigh <= self.rangeLow:
            raise ValueError("rangeHigh must be greater than rangeLow")
        return self
