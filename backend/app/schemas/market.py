from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from engine.models import (
    HeadlineItem,
    Indicator,
    NewsImpact,
    PredictionSource,
    PriceRange,
    Sentiment,
)


class Price24h(BaseModel):
    current: float
    change: float = Field(..., description="24 小时绝对涨跌额")
    changePercentage: float = Field(..., description="24 小时涨跌幅（%）")


class Volume24h(BaseModel):
    total: float = Field(..., ge=0.0)
    buy: float = Field(..., ge=0.0, description="估算主动买入量")
    sell: float = Field(..., ge=0.0, description="估算主动卖出量")


class MarketDataResponse(BaseModel):
    price24h: Price24h
    volume24h: Volume24h
    indicators: List[Indicator]
    sentiment: float = Field(..., ge=-1.0, le=1.0)
    priceRange: PriceRange


class NewsSummary(BaseModel):
    headlines: List[HeadlineItem]
    score: float = Field(..., ge=0.0, le=1.0)
    sentiment: Sentiment
    confidence: float = Field(..., ge=0.0, le=1.0)
    impact: NewsImpact


class SentimentResponse(BaseModel):
    news: NewsSummary


class PredictionResponse(BaseModel):
    rangeLow: float = Field(..., ge=0.0)
    rangeHigh: float
    confidence: float = Field(..., ge=0.0, le=100.0)
    timestamp: int = Field(..., description="Unix 毫秒时间戳")
    explanation: Optional[str] = None
    source: PredictionSource
