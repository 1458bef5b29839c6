from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, TypeVar, Union

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from backend.app.schemas.market import MarketDataResponse, PredictionResponse, SentimentResponse
from backend.app.services.market import MarketAnalysisService
from engine.errors import UpstreamFetchError
from env import is_development

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

T = TypeVar("T")


def get_market_service(request: Request) -> MarketAnalysisService:
    service = getattr(request.app.state, "market_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail={"error": "服务尚未初始化"})
    return service


async def _respond(operation: str, call: Callable[[], Awaitable[T]]) -> Union[T, JSONResponse]:
    try:
        return await call()
    except UpstreamFetchError as exc:
        logger.error("%s 失败，上游数据源 %s 不可用：%s", operation, exc.source, exc)
        return JSONResponse(status_code=500, content=_error_body(f"Failed to fetch {operation}", exc))
    except Exception as exc:  # noqa: BLE001
        logger.exception("%s 计算异常：%s", operation, exc)
        return JSONResponse(status_code=500, content=_error_body(f"Failed to fetch {operation}", exc))


def _error_body(message: str, exc: Exception) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": message}
    if is_development():
        body["details"] = str(exc)
    return body


@router.get("/market-data", response_model=MarketDataResponse)
async def market_data(service: MarketAnalysisService = Depends(get_market_service)) -> MarketDataResponse:
    return await _respond("market data", service.get_technical_analysis)


@router.get("/sentiment", response_model=SentimentResponse)
async def sentiment(service: MarketAnalysisService = Depends(get_market_service)) -> SentimentResponse:
    return await _respond("sentiment analysis", service.get_sentiment)


@router.get("/predictions", response_model=PredictionResponse)
async def predictions(service: MarketAnalysisService = Depends(get_market_service)) -> PredictionResponse:
    return await _respond("predictions", service.get_prediction)
