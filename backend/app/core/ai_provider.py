from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

from engine.models import HeadlineItem, MarketSnapshot, NewsAnalysis, TechnicalAnalysis
from env import parse_bool
from llm import LLMClient, LLMError, LLMNotConfigured

logger = logging.getLogger(__name__)


class AIAnalysisProvider(Protocol):
    """Swappable source of AI refinements; every method returns raw JSON."""

    async def analyze_technical(self, snapshot: MarketSnapshot) -> Dict[str, Any]:
        ...

    async def analyze_news(self, headlines: Sequence[HeadlineItem]) -> Dict[str, Any]:
        ...

    async def predict_range(
        self,
        price: float,
        technical: TechnicalAnalysis,
        news: NewsAnalysis,
    ) -> Dict[str, Any]:
        ...


NEWS_SYSTEM_PROMPT = """\
You are a crypto news sentiment analyst. Analyze the provided headlines and return a JSON object with:
- sentiment: one of "positive", "negative" or "neutral"
- score: number from 0 (very negative) to 1 (very positive)
- confidence: number from 0 to 1
- impact: object with shortTerm and longTerm, each a number from 0 to 1
- reasoning: one short sentence explaining the call
Judge only from the headlines given."""

TECHNICAL_SYSTEM_PROMPT = """\
You are a crypto technical analyst. Using the market data provided, return a JSON object with:
- indicators: array covering EMA (14), MACD, RSI, Stoch RSI, Bollinger Bands, ATR, Fibonacci and VPVR
- overallSentiment: number from -1 to 1
- priceRange: object with low, high and confidence (0 to 1), where high > low > 0
Each indicator should have: name, value, signal ("buy", "sell" or "neutral"), confidence (0 to 1), description.
The 24h change is a percentage."""

PREDICTION_SYSTEM_PROMPT = """\
You are a crypto price prediction expert. Analyze the technical and news analysis and return a JSON object \
with exactly this structure:
- rangeLow: minimum price prediction for the next 24 hours (number)
- rangeHigh: maximum price prediction for the next 24 hours (number, greater than rangeLow)
- confidence: confidence level from 0 to 100
- reasoning: brief explanation of the prediction"""


class LLMAnalysisProvider:
    """AIAnalysisProvider backed by the synchronous LLMClient."""

    def __init__(self, client: LLMClient) -> None:
        self.client = client

    @classmethod
    def from_env(cls) -> Optional["LLMAnalysisProvider"]:
        if not parse_bool("AI_ANALYSIS_ENABLED", True):
            logger.info("AI analysis disabled via AI_ANALYSIS_ENABLED")
            return None
        try:
            client = LLMClient.from_env()
        except LLMNotConfigured as exc:
            logger.info("LLM not configured, running deterministic analysis only: %s", exc)
            return None
        logger.info("AI analysis enabled: provider=%s model=%s", client.provider, client.model)
        return cls(client)

    async def analyze_technical(self, snapshot: MarketSnapshot) -> Dict[str, Any]:
        user = (
            f"Analysis data - Price: {snapshot.price}, "
            f"Volume: {snapshot.volume24h if snapshot.volume24h is not None else 'unknown'}, "
            f"Change: {snapshot.priceChange24h}%"
        )
        return await self._ask(TECHNICAL_SYSTEM_PROMPT, user)

    async def analyze_news(self, headlines: Sequence[HeadlineItem]) -> Dict[str, Any]:
        titles: List[str] = [item.title for item in headlines]
        user = "Headlines for analysis:\n" + "\n".join(f"- {title}" for title in titles)
        return await self._ask(NEWS_SYSTEM_PROMPT, user)

    async def predict_range(
        self,
        price: float,
        technical: TechnicalAnalysis,
        news: NewsAnalysis,
    ) -> Dict[str, Any]:
        user = (
            f"Current price: {price}\n"
            f"Technical analysis: {json.dumps(technical.model_dump(mode='json'))}\n"
            f"News analysis: {json.dumps(news.model_dump(mode='json'))}"
        )
        return await self._ask(PREDICTION_SYSTEM_PROMPT, user)

    async def _ask(self, system: str, user: str) -> Dict[str, Any]:
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
        try:
            return await asyncio.to_thread(self.client.chat_json, messages)
        except LLMError as exc:
            logger.warning("LLM call failed: %s", exc)
            raise
