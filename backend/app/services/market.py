from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from backend.app.core.ai_provider import AIAnalysisProvider, LLMAnalysisProvider
from backend.app.schemas.market import (
    MarketDataResponse,
    NewsSummary,
    Price24h,
    PredictionResponse,
    SentimentResponse,
    Volume24h,
)
from datahub.indicators import IndicatorEngine
from datahub.sources import CoinGeckoMarketSource, CryptoCompareNewsSource, MarketDataSource, NewsSource
from engine.analyzer import analyze_snapshot
from engine.merger import AnalysisMerger
from engine.models import HeadlineItem, MarketSnapshot, NewsAnalysis, TechnicalAnalysis
from engine.predictor import PredictionSynthesizer
from engine.sentiment import SentimentScorer
from infra.cache_store import CacheTTL, ResultCache
from infra.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

BUY_SHARE_RISING = 0.6
BUY_SHARE_FALLING = 0.4

TechnicalBundle = Tuple[MarketSnapshot, TechnicalAnalysis]
NewsBundle = Tuple[List[HeadlineItem], NewsAnalysis]
WarmStep = Tuple[str, int, Callable[[], Awaitable[Any]]]


class MarketAnalysisService:
    """Produces the market-data, sentiment and prediction views.

    Every upstream fetch and every derived view goes through the shared
    ResultCache, so repeated calls inside a TTL reuse the same objects and
    concurrent callers share one computation.
    """

    def __init__(
        self,
        market_source: MarketDataSource,
        news_source: NewsSource,
        ai_provider: Optional[AIAnalysisProvider] = None,
        cache: Optional[ResultCache] = None,
        ttl: Optional[CacheTTL] = None,
        indicator_engine: Optional[IndicatorEngine] = None,
        scorer: Optional[SentimentScorer] = None,
        merger: Optional[AnalysisMerger] = None,
        synthesizer: Optional[PredictionSynthesizer] = None,
    ) -> None:
        self.market_source = market_source
        self.news_source = news_source
        self.ai_provider = ai_provider
        self.cache = cache if cache is not None else ResultCache()
        self.ttl = ttl if ttl is not None else CacheTTL()
        self.indicator_engine = indicator_engine if indicator_engine is not None else IndicatorEngine()
        self.scorer = scorer if scorer is not None else SentimentScorer()
        self.merger = merger if merger is not None else AnalysisMerger()
        self.synthesizer = synthesizer if synthesizer is not None else PredictionSynthesizer()

    @classmethod
    def from_env(cls) -> "MarketAnalysisService":
        rate_limiter = RateLimiter.from_env()
        return cls(
            market_source=CoinGeckoMarketSource.from_env(rate_limiter),
            news_source=CryptoCompareNewsSource.from_env(rate_limiter),
            ai_provider=LLMAnalysisProvider.from_env(),
            cache=ResultCache.from_env(),
            ttl=CacheTTL.from_env(),
        )

    async def get_technical_analysis(self) -> MarketDataResponse:
        return await self.cache.get_or_compute("market_data", self.ttl.technical, self._build_market_data)

    async def get_sentiment(self) -> SentimentResponse:
        return await self.cache.get_or_compute("sentiment", self.ttl.sentiment, self._build_sentiment)

    async def get_prediction(self) -> PredictionResponse:
        return await self.cache.get_or_compute("prediction", self.ttl.prediction, self._build_prediction)

    async def warm(self) -> Dict[str, bool]:
        """Recompute every view and the upstream data behind it, fresh or not.

        Failures are logged and reported per view, never raised.
        """
        jobs: Dict[str, List[WarmStep]] = {
            "market_data": [
                ("market_snapshot", self.ttl.market, self.market_source.fetch),
                ("technical", self.ttl.technical, self._build_technical),
                ("market_data", self.ttl.technical, self._build_market_data),
            ],
            "sentiment": [
                ("news_headlines", self.ttl.news, self.news_source.fetch),
                ("news", self.ttl.sentiment, self._build_news),
                ("sentiment", self.ttl.sentiment, self._build_sentiment),
            ],
            "prediction": [
                ("prediction", self.ttl.prediction, self._build_prediction),
            ],
        }
        status: Dict[str, bool] = {}
        for name, steps in jobs.items():
            try:
                for key, ttl, producer in steps:
                    await self.cache.refresh(key, ttl, producer)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Cache warm-up for %s failed: %s", name, exc)
                status[name] = False
            else:
                status[name] = True
        logger.info("Cache warm-up finished: %s", status)
        return status

    # --- Cached building blocks ---

    async def _snapshot(self) -> MarketSnapshot:
        return await self.cache.get_or_compute("market_snapshot", self.ttl.market, self.market_source.fetch)

    async def _headlines(self) -> List[HeadlineItem]:
        return await self.cache.get_or_compute("news_headlines", self.ttl.news, self.news_source.fetch)

    async def _technical_bundle(self) -> TechnicalBundle:
        return await self.cache.get_or_compute("technical", self.ttl.technical, self._build_technical)

    async def _news_bundle(self) -> NewsBundle:
        return await self.cache.get_or_compute("news", self.ttl.sentiment, self._build_news)

    async def _build_technical(self) -> TechnicalBundle:
        snapshot = await self._snapshot()
        deterministic = analyze_snapshot(snapshot, self.indicator_engine)
        ai_raw = None
        if self.ai_provider is not None:
            ai_raw = await self._call_ai("technical", self.ai_provider.analyze_technical, snapshot)
        return snapshot, self.merger.merge_technical(deterministic, ai_raw, snapshot.price)

    async def _build_news(self) -> NewsBundle:
        headlines = await self._headlines()
        labelled, deterministic = self.scorer.analyze(headlines)
        ai_raw = None
        if self.ai_provider is not None and labelled:
            ai_raw = await self._call_ai("news", self.ai_provider.analyze_news, labelled)
        return labelled, self.merger.merge_news(deterministic, ai_raw)

    async def _build_market_data(self) -> MarketDataResponse:
        snapshot, technical = await self._technical_bundle()
        return MarketDataResponse(
            price24h=Price24h(
                current=snapshot.price,
                change=round(_absolute_change(snapshot.price, snapshot.priceChange24h), 8),
                changePercentage=snapshot.priceChange24h,
            ),
            volume24h=_estimate_volume(snapshot),
            indicators=technical.indicators,
            sentiment=technical.overallSentiment,
            priceRange=technical.priceRange,
        )

    async def _build_sentiment(self) -> SentimentResponse:
        headlines, news = await self._news_bundle()
        return SentimentResponse(
            news=NewsSummary(
                headlines=headlines,
                score=news.score,
                sentiment=news.sentiment,
                confidence=news.confidence,
                impact=news.impact,
            )
        )

    async def _build_prediction(self) -> PredictionResponse:
        (snapshot, technical), (_, news) = await asyncio.gather(self._technical_bundle(), self._news_bundle())
        ai_raw = None
        if self.ai_provider is not None:
            ai_raw = await self._call_ai("prediction", self.ai_provider.predict_range, snapshot.price, technical, news)
        prediction = self.synthesizer.synthesize(snapshot.price, technical, news, ai_raw)
        logger.info(
            "Prediction %s: %.4f - %.4f (confidence %.0f)",
            prediction.source.value,
            prediction.rangeLow,
            prediction.rangeHigh,
            prediction.confidence,
        )
        return PredictionResponse(
            rangeLow=prediction.rangeLow,
            rangeHigh=prediction.rangeHigh,
            confidence=prediction.confidence,
            timestamp=int(prediction.timestamp.timestamp() * 1000),
            explanation=prediction.explanation,
            source=prediction.source,
        )

    async def _call_ai(self, label: str, method: Callable[..., Awaitable[Any]], *args: Any) -> Optional[Any]:
        try:
            return await method(*args)
        except Exception as exc:  # noqa: BLE001
            logger.warning("AI %s analysis unavailable, falling back: %s", label, exc)
            return None


def _absolute_change(price: float, change_pct: float) -> float:
    if change_pct <= -100:
        return 0.0
    return price - price / (1 + change_pct / 100)


def _estimate_volume(snapshot: MarketSnapshot) -> Volume24h:
    total = snapshot.volume24h if snapshot.volume24h and snapshot.volume24h > 0 else 0.0
    share = BUY_SHARE_RISING if snapshot.priceChange24h > 0 else BUY_SHARE_FALLING
    buy = total * share
    return Volume24h(total=total, buy=buy, sell=total - buy)
