import asyncio
from unittest.mock import MagicMock

import pytest
import requests

from datahub.sources import CoinGeckoMarketSource, CryptoCompareNewsSource
from engine.errors import UpstreamFetchError
from infra.rate_limit import LimitConfig, RateLimiter


def make_session(payload=None, status_code=200, error=None):
    session = MagicMock()
    if error is not None:
        session.get.side_effect = error
    else:
        response = MagicMock()
        response.status_code = status_code
        response.text = "body"
        response.json.return_value = payload
        session.get.return_value = response
    return session


COINGECKO_PAYLOAD = {
    "ethereum": {
        "usd": 2000.5,
        "usd_24h_vol": 1.2e10,
        "usd_24h_change": -1.5,
        "usd_market_cap": 2.4e11,
    }
}


def test_coingecko_parses_snapshot():
    session = make_session(COINGECKO_PAYLOAD)
    source = CoinGeckoMarketSource(session=session)

    snapshot = asyncio.run(source.fetch())

    assert snapshot.price == pytest.approx(2000.5)
    assert snapshot.volume24h == pytest.approx(1.2e10)
    assert snapshot.priceChange24h == pytest.approx(-1.5)
    assert snapshot.marketCap == pytest.approx(2.4e11)
    url = session.get.call_args.args[0]
    params = session.get.call_args.kwargs["params"]
    assert url == "https://api.coingecko.com/api/v3/simple/price"
    assert params["ids"] == "ethereum"
    assert params["vs_currencies"] == "usd"


def test_coingecko_missing_optional_fields():
    session = make_session({"ethereum": {"usd": 1999.0}})
    snapshot = asyncio.run(CoinGeckoMarketSource(session=session).fetch())

    assert snapshot.volume24h is None
    assert snapshot.priceChange24h == 0.0


@pytest.mark.parametrize(
    "payload",
    [{"ethereum": {"usd": 0}}, {"ethereum": {"usd": "n/a"}}, {"bitcoin": {"usd": 60000}}, []],
)
def test_coingecko_rejects_unusable_payload(payload):
    source = CoinGeckoMarketSource(session=make_session(payload))

    with pytest.raises(UpstreamFetchError) as excinfo:
        asyncio.run(source.fetch())
    assert excinfo.value.source == "coingecko"


def test_coingecko_http_error():
    source = CoinGeckoMarketSource(session=make_session(status_code=429))

    with pytest.raises(UpstreamFetchError, match="HTTP 429"):
        asyncio.run(source.fetch())


def test_network_error_wrapped():
    source = CoinGeckoMarketSource(session=make_session(error=requests.ConnectionError("refused")))

    with pytest.raises(UpstreamFetchError):
        asyncio.run(source.fetch())


def test_invalid_json_wrapped():
    session = make_session()
    session.get.return_value.json.side_effect = ValueError("no json")

    with pytest.raises(UpstreamFetchError):
        asyncio.run(CryptoCompareNewsSource(session=session).fetch())


def test_cryptocompare_caps_and_cleans_headlines():
    articles = [{"title": f"Headline {i}", "url": f"https://news/{i}", "body": "text"} for i in range(8)]
    articles.insert(1, {"title": "   ", "url": "https://news/blank"})
    session = make_session({"Data": articles})
    source = CryptoCompareNewsSource(session=session)

    headlines = asyncio.run(source.fetch())

    assert [item.title for item in headlines] == [f"Headline {i}" for i in range(5)]
    assert all(item.sentiment is None for item in headlines)
    assert headlines[0].body == "text"
    assert session.get.call_args.args[0] == "https://min-api.cryptocompare.com/data/v2/news/"
    assert session.get.call_args.kwargs["params"] == {"lang": "EN", "categories": "ETH"}


def test_cryptocompare_requires_data_list():
    source = CryptoCompareNewsSource(session=make_session({"Message": "rate limited"}))

    with pytest.raises(UpstreamFetchError) as excinfo:
        asyncio.run(source.fetch())
    assert excinfo.value.source == "cryptocompare"


def test_from_env_reads_asset_settings(monkeypatch):
    monkeypatch.setenv("MARKET_ASSET_ID", "Bitcoin")
    monkeypatch.setenv("MARKET_VS_CURRENCY", "EUR")
    monkeypatch.setenv("NEWS_LIMIT", "3")
    monkeypatch.setenv("NEWS_CATEGORIES", "BTC")

    market = CoinGeckoMarketSource.from_env()
    news = CryptoCompareNewsSource.from_env()

    assert market.asset_id == "bitcoin"
    assert market.vs_currency == "eur"
    assert news.limit == 3
    assert news.categories == "BTC"


def test_rate_limiter_passes_unknown_provider():
    limiter = RateLimiter({"coingecko": LimitConfig(provider="coingecko", rpm=60, min_interval=0.0)})

    async def scenario():
        async with limiter.limit("cryptocompare", "ETH"):
            return "ok"

    assert asyncio.run(scenario()) == "ok"


def test_rate_limiter_consumes_bucket_tokens():
    limiter = RateLimiter({"coingecko": LimitConfig(provider="coingecko", rpm=5)})

    async def scenario():
        for _ in range(3):
            async with limiter.limit("CoinGecko", "ethereum"):
                pass
        return limiter._buckets["coingecko"].tokens

    assert asyncio.run(scenario()) == pytest.approx(2.0, abs=0.01)


def test_rate_limiter_from_env(monkeypatch):
    monkeypatch.setenv("COINGECKO_MAX_RPM", "0")
    limiter = RateLimiter.from_env()

    assert not limiter._configs["coingecko"].enabled
    assert limiter._configs["cryptocompare"].min_interval == pytest.approx(5.0)
