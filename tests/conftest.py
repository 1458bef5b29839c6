from datetime import datetime, timezone

import pytest

from backend.app.services.market import MarketAnalysisService
from datahub.sources import MarketDataSource, NewsSource
from engine.errors import UpstreamFetchError
from engine.models import HeadlineItem, MarketSnapshot, NewsAnalysis, NewsImpact, Sentiment
from engine.predictor import PredictionSynthesizer
from infra.cache_store import CacheTTL, ResultCache

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class ManualClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeMarketSource(MarketDataSource):
    name = "fake-market"

    def __init__(self, snapshot=None, error=None):
        self.snapshot = snapshot or MarketSnapshot(price=2000.0, volume24h=1_000_000.0, priceChange24h=0.0)
        self.error = error
        self.calls = 0

    async def fetch(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.snapshot


class FakeNewsSource(NewsSource):
    name = "fake-news"

    def __init__(self, headlines=None, error=None):
        self.headlines = headlines if headlines is not None else [
            HeadlineItem(title="Major partnership and mainnet launch boosts adoption", url="https://example.com/1"),
            HeadlineItem(title="Exchange suffers hack, funds at risk", url="https://example.com/2"),
            HeadlineItem(title="Routine network maintenance update", url="https://example.com/3"),
        ]
        self.error = error
        self.calls = 0

    async def fetch(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.headlines)


class FakeAIProvider:
    def __init__(self, technical=None, news=None, prediction=None, error=None):
        self.technical = technical
        self.news = news
        self.prediction = prediction
        self.error = error
        self.calls = []

    async def analyze_technical(self, snapshot):
        self.calls.append("technical")
        if self.error is not None:
            raise self.error
        return self.technical

    async def analyze_news(self, headlines):
        self.calls.append("news")
        if self.error is not None:
            raise self.error
        return self.news

    async def predict_range(self, price, technical, news):
        self.calls.append("prediction")
        if self.error is not None:
            raise self.error
        return self.prediction


@pytest.fixture
def flat_snapshot():
    return MarketSnapshot(price=2000.0, volume24h=1_000_000.0, priceChange24h=0.0)


@pytest.fixture
def neutral_news():
    return NewsAnalysis(
        score=0.5,
        sentiment=Sentiment.NEUTRAL,
        confidence=0.01,
        impact=NewsImpact(shortTerm=0.01, longTerm=0.01),
    )


@pytest.fixture
def manual_clock():
    return ManualClock()


@pytest.fixture
def market_source():
    return FakeMarketSource()


@pytest.fixture
def news_source():
    return FakeNewsSource()


@pytest.fixture
def make_service(market_source, news_source):
    def _make(ai_provider=None, market=None, news=None):
        return MarketAnalysisService(
            market_source=market or market_source,
            news_source=news or news_source,
            ai_provider=ai_provider,
            cache=ResultCache(),
            ttl=CacheTTL(),
            synthesizer=PredictionSynthesizer(clock=lambda: FIXED_NOW),
        )

    return _make


@pytest.fixture
def upstream_error():
    return UpstreamFetchError("fake-market", "HTTP 503: unavailable")
