from .market import (
    Price24h,
    Volume24h,
    MarketDataResponse,
    NewsSummary,
    SentimentResponse,
    PredictionResponse,
)

__all__ = [
    "Price24h",
    "Volume24h",
    "MarketDataResponse",
    "NewsSummary",
    "SentimentResponse",
    "PredictionResponse",
]
