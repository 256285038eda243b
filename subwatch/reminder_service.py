"""
到期提醒服务

扫描所有订阅：自动续费、计算剩余天数、汇总提醒并推送到各通知渠道
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .config import Config
from .lunar.lunar_calendar import LunarRangeError
from .lunar.lunar_period import Period
from .messages import REMINDER_TITLE, Reminder, build_reminder_content, build_test_content
from .notifiers import NotificationDispatcher
from .renewal import RenewalLoopError, days_left, roll_forward
from .storage import Storage, Subscription

logger = logging.getLogger(__name__)

LOG_PREFIX = "[Cron Job]"


@dataclass
class SweepReport:
    """一次到期检查的结果"""
    checked: int = 0
    renewed: list[Subscription] = field(default_factory=list)
    reminders: list[Reminder] = field(default_factory=list)
    skipped: list[Subscription] = field(default_factory=list)
    channels: dict[str, bool] = field(default_factory=dict)

    @property
    def notified(self) -> bool:
        return any(self.channels.values())


@dataclass
class ManualTestResult:
    """手动测试通知的结果"""
    success: bool
    message: str
    channels: dict[str, bool] = field(default_factory=dict)


class ReminderService:
    """到期检查与提醒"""

    def __init__(self, storage: Storage, dispatcher: NotificationDispatcher, config: Config):
        self.storage = storage
        self.dispatcher = dispatcher
        self.config = config

    def _renew(self, sub: Subscription, now: datetime) -> Subscription:
        """
        把过期的订阅顺延到今天或之后，并写回数据库

        农历订阅顺延失败时退回公历周期。
        """
        period = Period(sub.period_value, sub.period_unit)
        today = now.date()
        try:
            new_expiry = roll_forward(sub.expiry_date, period, use_lunar=sub.use_lunar, today=today)
        except LunarRangeError:
            logger.warning(f"{LOG_PREFIX} 订阅 \"{sub.name}\" 农历顺延失败，改用公历周期")
            new_expiry = roll_forward(sub.expiry_date, period, use_lunar=False, today=today)

        self.storage.update_expiry_date(sub.id, new_expiry)
        sub.expiry_date = new_expiry
        return sub

    def check_expiring(self, now: Optional[datetime] = None) -> SweepReport:
        """
        检查即将到期的订阅并发送汇总提醒

        规则：
        1. 停用的订阅跳过
        2. 已过期且自动续费：顺延到期日，顺延后仍在提醒范围内则提醒
        3. 已过期且不自动续费：提醒已过期 N 天
        4. 其余：0 <= 剩余天数 <= 提前提醒天数 时提醒

        Args:
            now: 当前时间（带时区），默认取配置时区的当前时间

        Returns:
            SweepReport
        """
        now = now or datetime.now(tz=self.config.timezone)
        report = SweepReport()

        subscriptions = self.storage.list_subscriptions()
        logger.info(f"{LOG_PREFIX} 开始检查到期订阅，共 {len(subscriptions)} 个，当前时间 {now.isoformat()}")

        for sub in subscriptions:
            if not sub.is_active:
                logger.info(f"{LOG_PREFIX} 订阅 \"{sub.name}\" 已停用，跳过")
                continue
            report.checked += 1

            days = days_left(sub.expiry_date, use_lunar=sub.use_lunar, now=now)
            logger.info(f"{LOG_PREFIX} 订阅 \"{sub.name}\" 到期日 {sub.expiry_date}，剩余 {days} 天")

            if days < 0 and sub.auto_renew:
                try:
                    self._renew(sub, now)
                except (RenewalLoopError, ValueError):
                    logger.exception(f"{LOG_PREFIX} 订阅 \"{sub.name}\" 自动续费失败，跳过")
                    report.skipped.append(sub)
                    continue

                report.renewed.append(sub)
                days = days_left(sub.expiry_date, use_lunar=sub.use_lunar, now=now)
                logger.info(f"{LOG_PREFIX} 订阅 \"{sub.name}\" 到期日已更新为 {sub.expiry_date}，剩余 {days} 天")
                if days <= sub.reminder_days:
                    report.reminders.append(Reminder(sub, days, renewed=True))
                continue

            if days < 0:
                logger.info(f"{LOG_PREFIX} 订阅 \"{sub.name}\" 已过期且未开启自动续费")
                report.reminders.append(Reminder(sub, days))
            elif days <= sub.reminder_days:
                report.reminders.append(Reminder(sub, days))

        if report.renewed:
            logger.info(f"{LOG_PREFIX} 已自动续费 {len(report.renewed)} 个订阅")

        if report.reminders:
            content = build_reminder_content(report.reminders, self.config.show_lunar)
            report.channels = self.dispatcher.send_all(REMINDER_TITLE, content, LOG_PREFIX)
        else:
            logger.info(f"{LOG_PREFIX} 没有需要提醒的订阅")

        return report

    def test_subscription(self, subscription_id: int) -> ManualTestResult:
        """对单个订阅发送一条手动测试通知"""
        sub = self.storage.get_subscription(subscription_id)
        if sub is None:
            return ManualTestResult(success=False, message="Subscription not found")

        title = f"Manual Test Notification: {sub.name}"
        content = build_test_content(sub, self.config.timezone, self.config.show_lunar)
        channels = self.dispatcher.send_all(title, content, "[Manual Test]")
        if not channels:
            return ManualTestResult(success=False, message="No notification channel enabled", channels=channels)
        return ManualTestResult(
            success=any(channels.values()),
            message="Test notification sent to all enabled channels",
            channels=channels,
        )
