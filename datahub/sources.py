"""
行情与新闻数据源适配器。

核心引擎只依赖 MarketDataSource / NewsSource 抽象接口；默认实现分别
对接 CoinGecko simple-price 与 CryptoCompare news 接口。阻塞的 requests
调用通过 asyncio.to_thread 执行，避免阻塞事件循环。
"""

from __future__ import annotations

import abc
import asyncio
import logging
import math
import os
from typing import Any, Dict, List, Optional

import requests

from engine.errors import UpstreamFetchError
from engine.models import HeadlineItem, MarketSnapshot
from env import parse_float, parse_int
from infra.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

COINGECKO_BASE_URL = "https://api.coingecko.com/api/v3"
CRYPTOCOMPARE_BASE_URL = "https://min-api.cryptocompare.com/data/v2"
DEFAULT_TIMEOUT = 10.0
DEFAULT_NEWS_LIMIT = 5


class MarketDataSource(abc.ABC):
    """行情快照数据源。"""

    name: str

    @abc.abstractmethod
    async def fetch(self) -> MarketSnapshot:
        """返回最新行情快照，失败时抛出 UpstreamFetchError。"""


class NewsSource(abc.ABC):
    """新闻标题数据源。"""

    name: str

    @abc.abstractmethod
    async def fetch(self) -> List[HeadlineItem]:
        """返回未标注情绪的新闻标题列表，失败时抛出 UpstreamFetchError。"""


def _to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class _HttpSource:
    name = "http"
    base_url = ""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[RateLimiter] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.base_url = (base_url or self.base_url).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.rate_limiter = rate_limiter or RateLimiter.disabled()
        self.headers = headers or {}

    async def _get_json(self, path: str, params: Dict[str, Any], limit_key: str) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        async with self.rate_limiter.limit(self.name, limit_key):
            try:
                resp = await asyncio.to_thread(
                    self.session.get,
                    url,
                    params=params,
                    headers=self.headers,
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                raise UpstreamFetchError(self.name, f"请求失败: {exc}") from exc

        if resp.status_code != 200:
            raise UpstreamFetchError(self.name, f"HTTP {resp.status_code}: {resp.text[:200]}")
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamFetchError(self.name, "响应不是合法 JSON") from exc


class CoinGeckoMarketSource(_HttpSource, MarketDataSource):
    """CoinGecko simple-price 行情源。"""

    name = "coingecko"
    base_url = COINGECKO_BASE_URL

    def __init__(self, asset_id: str = "ethereum", vs_currency: str = "usd", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.asset_id = asset_id.lower()
        self.vs_currency = vs_currency.lower()

    @classmethod
    def from_env(cls, rate_limiter: Optional[RateLimiter] = None) -> "CoinGeckoMarketSource":
        api_key = os.getenv("COINGECKO_API_KEY")
        return cls(
            asset_id=os.getenv("MARKET_ASSET_ID", "ethereum"),
            vs_currency=os.getenv("MARKET_VS_CURRENCY", "usd"),
            base_url=os.getenv("COINGECKO_BASE_URL", COINGECKO_BASE_URL),
            timeout=parse_float("HTTP_TIMEOUT", DEFAULT_TIMEOUT),
            rate_limiter=rate_limiter,
            headers={"x-cg-demo-api-key": api_key} if api_key else None,
        )

    async def fetch(self) -> MarketSnapshot:
        params = {
            "ids": self.asset_id,
            "vs_currencies": self.vs_currency,
            "include_24hr_vol": "true",
            "include_24hr_change": "true",
            "include_market_cap": "true",
        }
        data = await self._get_json("simple/price", params, self.asset_id)
        snapshot = self._parse(data)
        logger.info("CoinGecko 行情：%s 价格 %.4f (%+.2f%%)", self.asset_id, snapshot.price, snapshot.priceChange24h)
        return snapshot

    def _parse(self, data: Any) -> MarketSnapshot:
        quote = data.get(self.asset_id) if isinstance(data, dict) else None
        if not isinstance(quote, dict):
            raise UpstreamFetchError(self.name, f"响应缺少 {self.asset_id} 数据")

        currency = self.vs_currency
        price = _to_float(quote.get(currency))
        if price is None or price <= 0:
            raise UpstreamFetchError(self.name, f"价格无效: {quote.get(currency)!r}")

        return MarketSnapshot(
            price=price,
            volume24h=_to_float(quote.get(f"{currency}_24h_vol")),
            priceChange24h=_to_float(quote.get(f"{currency}_24h_change")) or 0.0,
            marketCap=_to_float(quote.get(f"{currency}_market_cap")),
        )


class CryptoCompareNewsSource(_HttpSource, NewsSource):
    """CryptoCompare 新闻源。"""

    name = "cryptocompare"
    base_url = CRYPTOCOMPARE_BASE_URL

    def __init__(self, categories: str = "ETH", limit: int = DEFAULT_NEWS_LIMIT, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.categories = categories
        self.limit = max(limit, 1)

    @classmethod
    def from_env(cls, rate_limiter: Optional[RateLimiter] = None) -> "CryptoCompareNewsSource":
        api_key = os.getenv("CRYPTOCOMPARE_API_KEY")
        return cls(
            categories=os.getenv("NEWS_CATEGORIES", "ETH"),
            limit=parse_int("NEWS_LIMIT", DEFAULT_NEWS_LIMIT),
            base_url=os.getenv("CRYPTOCOMPARE_BASE_URL", CRYPTOCOMPARE_BASE_URL),
            timeout=parse_float("HTTP_TIMEOUT", DEFAULT_TIMEOUT),
            rate_limiter=rate_limiter,
            headers={"authorization": f"Apikey {api_key}"} if api_key else None,
        )

    async def fetch(self) -> List[HeadlineItem]:
        data = await self._get_json("news/", {"lang": "EN", "categories": self.categories}, self.categories)
        articles = data.get("Data") if isinstance(data, dict) else None
        if not isinstance(articles, list):
            raise UpstreamFetchError(self.name, "响应缺少 Data 列表")

        headlines: List[HeadlineItem] = []
        for article in articles:
            if not isinstance(article, dict):
                continue
            title = str(article.get("title") or "").strip()
            if not title:
                continue
            headlines.append(
                HeadlineItem(
                    title=title,
                    url=str(article.get("url") or ""),
                    body=article.get("body") if isinstance(article.get("body"), str) else None,
                )
            )
            if len(headlines) >= self.limit:
                break
        logger.info("CryptoCompare 新闻：获取 %d 条（%s）", len(headlines), self.categories)
        return headlines
