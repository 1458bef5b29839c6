"""行情、新闻数据源与技术指标计算。"""

from .indicators import IndicatorEngine  # noqa: F401
from .sources import (  # noqa: F401
    CoinGeckoMarketSource,
    CryptoCompareNewsSource,
    MarketDataSource,
    NewsSource,
)

__all__ = [
    "CoinGeckoMarketSource",
    "CryptoCompareNewsSource",
    "IndicatorEngine",
    "MarketDataSource",
    "NewsSource",
]
