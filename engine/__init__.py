"""Analysis engine components for the crypto liquidity engine."""

from .errors import AIValidationError, DegenerateInputError, UpstreamFetchError  # noqa: F401
from .merger import AnalysisMerger  # noqa: F401
from .models import (  # noqa: F401
    HeadlineItem,
    Indicator,
    MarketSnapshot,
    NewsAnalysis,
    Prediction,
    TechnicalAnalysis,
)
from .predictor import PredictionSynthesizer  # noqa: F401
from .sentiment import SentimentScorer  # noqa: F401

__all__ = [
    "AIValidationError",
    "AnalysisMerger",
    "DegenerateInputError",
    "HeadlineItem",
    "Indicator",
    "MarketSnapshot",
    "NewsAnalysis",
    "Prediction",
    "PredictionSynthesizer",
    "SentimentScorer",
    "TechnicalAnalysis",
    "UpstreamFetchError",
]
