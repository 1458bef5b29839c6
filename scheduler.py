"""
缓存预热调度器。

基于 APScheduler 定时调用 MarketAnalysisService.warm()，让接口请求
尽量命中已刷新的缓存。CACHE_WARM_INTERVAL=0 时不启动。
"""

from __future__ import annotations

import logging
from typing import Optional, TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler

if TYPE_CHECKING:
    from backend.app.services.market import MarketAnalysisService

logger = logging.getLogger(__name__)

DEFAULT_WARM_INTERVAL = 55.0


def start_scheduler(
    service: "MarketAnalysisService",
    interval: float = DEFAULT_WARM_INTERVAL,
) -> Optional[AsyncIOScheduler]:
    """启动预热任务；interval 不大于 0 时返回 None。"""
    if interval <= 0:
        logger.info("CACHE_WARM_INTERVAL 未启用，跳过缓存预热调度")
        return None

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        service.warm,
        trigger="interval",
        seconds=interval,
        id="cache_warm_job",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=30,
    )
    scheduler.start()
    logger.info("已启动缓存预热调度器，间隔 %.0f 秒", interval)
    return scheduler
