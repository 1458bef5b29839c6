import pytest

from engine.analyzer import analyze_snapshot
from engine.models import MarketSnapshot, NewsAnalysis, NewsImpact, PredictionSource, Sentiment
from engine.predictor import PredictionSynthesizer

from conftest import FIXED_NOW


@pytest.fixture
def synthesizer():
    return PredictionSynthesizer(clock=lambda: FIXED_NOW)


def test_flat_market_fallback_straddles_price(synthesizer, flat_snapshot, neutral_news):
    technical = analyze_snapshot(flat_snapshot)
    prediction = synthesizer.synthesize(2000.0, technical, neutral_news)

    assert prediction.source == PredictionSource.FALLBACK
    assert prediction.rangeLow < 2000.0 < prediction.rangeHigh
    assert prediction.rangeLow == pytest.approx(1980.0)
    assert prediction.rangeHigh == pytest.approx(2020.0)
    assert prediction.confidence == pytest.approx(75.0)
    assert prediction.timestamp == FIXED_NOW
    assert prediction.explanation


@pytest.mark.parametrize("change", [-80.0, -20.0, -2.5, 0.0, 1.0, 12.0, 45.0])
@pytest.mark.parametrize("price", [0.3, 150.0, 2000.0, 64000.0])
def test_fallback_invariants(synthesizer, neutral_news, price, change):
    snapshot = MarketSnapshot(price=price, volume24h=5e7, priceChange24h=change, marketCap=1e10)
    prediction = synthesizer.fallback(price, analyze_snapshot(snapshot), neutral_news)

    assert 0 <= prediction.rangeLow < prediction.rangeHigh
    assert 60.0 <= prediction.confidence <= 95.0


def test_oversold_widens_downside(synthesizer, neutral_news):
    snapshot = MarketSnapshot(price=2000.0, volume24h=1e6, priceChange24h=-20.0)
    prediction = synthesizer.fallback(2000.0, analyze_snapshot(snapshot), neutral_news)

    assert prediction.rangeLow == pytest.approx(1910.0)
    assert prediction.rangeHigh == pytest.approx(2030.0)
    assert "oversold" in prediction.explanation


def test_agreeing_news_raises_confidence(synthesizer):
    snapshot = MarketSnapshot(price=2000.0, volume24h=1e6, priceChange24h=-20.0)
    technical = analyze_snapshot(snapshot)
    neutral = NewsAnalysis(score=0.5, sentiment=Sentiment.NEUTRAL, confidence=0.5, impact=NewsImpact(shortTerm=0.1, longTerm=0.1))
    positive = neutral.model_copy(update={"score": 0.8, "sentiment": Sentiment.POSITIVE})

    base = synthesizer.fallback(2000.0, technical, neutral)
    boosted = synthesizer.fallback(2000.0, technical, positive)

    assert boosted.confidence == pytest.approx(base.confidence + 5.0)


def test_valid_ai_range_is_used(synthesizer, flat_snapshot, neutral_news):
    raw = {"rangeLow": 1900.0, "rangeHigh": 2150.0, "confidence": 82, "reasoning": "Range-bound market."}
    prediction = synthesizer.synthesize(2000.0, analyze_snapshot(flat_snapshot), neutral_news, raw)

    assert prediction.source == PredictionSource.AI
    assert prediction.rangeLow == pytest.approx(1900.0)
    assert prediction.rangeHigh == pytest.approx(2150.0)
    assert prediction.confidence == pytest.approx(82.0)
    assert prediction.explanation == "Range-bound market."


@pytest.mark.parametrize(
    "raw",
    [
        {"rangeLow": 2100.0, "rangeHigh": 1900.0, "confidence": 80},
        {"rangeLow": 1900.0, "rangeHigh": 2100.0, "confidence": 150},
        {"rangeLow": -5.0, "rangeHigh": 2100.0, "confidence": 80},
        {"rangeLow": "low", "rangeHigh": 2100.0, "confidence": 80},
        {"rangeHigh": 2100.0, "confidence": 80},
        "1900-2100",
    ],
)
def test_invalid_ai_range_falls_back(synthesizer, flat_snapshot, neutral_news, raw):
    prediction = synthesizer.synthesize(2000.0, analyze_snapshot(flat_snapshot), neutral_news, raw)

    assert prediction.source == PredictionSource.FALLBACK
    assert prediction.confidence == pytest.approx(75.0)
