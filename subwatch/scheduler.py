"""
到期检查调度器

定时唤醒，每天到达提醒时间后执行一次到期检查
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from .config import Config
from .reminder_service import ReminderService, SweepReport

logger = logging.getLogger(__name__)


class ExpiryScheduler:
    """定时执行到期检查"""

    def __init__(self, reminder_service: ReminderService, config: Config):
        self.reminder_service = reminder_service
        self.config = config
        self.check_interval = timedelta(minutes=config.check_interval_minutes)
        self._running = False
        self._task: asyncio.Task | None = None
        self._last_run_date: str | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """启动调度器"""
        if self._running:
            logger.warning("调度器已在运行")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            f"到期检查调度器已启动，检查间隔: {self.check_interval}，"
            f"每天 {self.config.notify_hour}:00 后执行"
        )

    async def stop(self) -> None:
        """停止调度器"""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("到期检查调度器已停止")

    async def _run_loop(self) -> None:
        """主循环"""
        while self._running:
            try:
                await self.tick()
            except Exception:
                logger.exception("到期检查时出错")

            try:
                await asyncio.sleep(self.check_interval.total_seconds())
            except asyncio.CancelledError:
                break

    async def tick(self, now: Optional[datetime] = None) -> Optional[SweepReport]:
        """
        单次唤醒

        当天还没执行过、且已过提醒时间时执行一次检查。

        Returns:
            本次执行的 SweepReport；未执行返回 None
        """
        now = now or datetime.now(tz=self.config.timezone)
        today_str = now.strftime("%Y-%m-%d")

        if self._last_run_date == today_str:
            return None
        if now.hour < self.config.notify_hour:
            return None

        logger.info(f"新的一天 {today_str}，开始到期检查")
        report = await self.run_now(now)
        # 检查异常时不记录日期，下次唤醒重试
        self._last_run_date = today_str
        return report

    async def run_now(self, now: Optional[datetime] = None) -> SweepReport:
        """立即执行一次到期检查（用于 /check 命令）"""
        # sqlite 和 httpx 都是同步调用，放到线程里避免阻塞事件循环
        report = await asyncio.to_thread(self.reminder_service.check_expiring, now)
        logger.info(
            f"到期检查完成: 检查 {report.checked} 个，续费 {len(report.renewed)} 个，"
            f"提醒 {len(report.reminders)} 个"
        )
        return report
