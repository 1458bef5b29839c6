"""Crypto 流动性分析引擎的 FastAPI 入口。"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

import env  # noqa: F401

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.app.api import router as api_router
from backend.app.services.market import MarketAnalysisService
from env import parse_float
from scheduler import DEFAULT_WARM_INTERVAL, start_scheduler

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if getattr(app.state, "market_service", None) is None:
        app.state.market_service = MarketAnalysisService.from_env()
    scheduler = start_scheduler(
        app.state.market_service,
        interval=parse_float("CACHE_WARM_INTERVAL", DEFAULT_WARM_INTERVAL),
    )
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)
            logger.info("缓存预热调度器已停止")


app = FastAPI(
    title="Crypto Liquidity Analysis API",
    version="1.0.0",
    description="技术指标、新闻情绪与流动性区间预测接口",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/healthz")
async def health_check() -> Dict[str, str]:
    return {"status": "ok"}
