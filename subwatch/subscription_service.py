"""
订阅服务

处理订阅的增删改查：参数校验、由开始日期推算到期日、过期自动顺延、启用 / 停用
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from .config import Config
from .lunar.lunar_calendar import LunarRangeError, solar_date_to_lunar
from .lunar.lunar_period import Period
from .renewal import RenewalLoopError, next_expiry, roll_forward
from .storage import Storage, Subscription

logger = logging.getLogger(__name__)

LUNAR_RANGE_MESSAGE = "Lunar date out of supported range (1900-2100)"


@dataclass
class SubscriptionInput:
    """用户提交的订阅字段"""
    name: str
    expiry_date: Optional[date]
    custom_type: str = ""
    start_date: Optional[date] = None
    period_value: int = 1
    period_unit: str = "month"
    reminder_days: int = 7
    notes: str = ""
    is_active: bool = True
    auto_renew: bool = True
    use_lunar: bool = False


@dataclass
class ServiceResult:
    """操作结果"""
    success: bool
    subscription: Optional[Subscription] = None
    message: str = ""


class SubscriptionService:
    """订阅管理"""

    def __init__(self, storage: Storage, config: Config):
        self.storage = storage
        self.config = config

    def _today(self) -> date:
        return datetime.now(tz=self.config.timezone).date()

    def _prepare(self, data: SubscriptionInput, today: date) -> tuple[Optional[date], str]:
        """
        校验输入并计算最终到期日

        Returns:
            (到期日, 错误信息)；校验失败时到期日为 None
        """
        if not data.name or not data.name.strip() or (data.expiry_date is None and data.start_date is None):
            return None, "Missing required fields"

        try:
            period = Period(data.period_value, data.period_unit)
        except ValueError as e:
            return None, f"Invalid period: {e}"

        if data.reminder_days < 0:
            return None, "Reminder days must not be negative"

        expiry = data.expiry_date
        if expiry is None:
            # 只给了开始日期：到期日 = 开始日期 + 一个周期
            try:
                expiry = next_expiry(data.start_date, period, use_lunar=data.use_lunar)
            except LunarRangeError:
                return None, LUNAR_RANGE_MESSAGE
            if expiry is None:
                return None, "Cannot calculate expiry date from start date"

        if data.use_lunar and solar_date_to_lunar(expiry) is None:
            return None, LUNAR_RANGE_MESSAGE

        if expiry < today:
            try:
                expiry = roll_forward(expiry, period, use_lunar=data.use_lunar, today=today)
            except LunarRangeError:
                return None, LUNAR_RANGE_MESSAGE
            except RenewalLoopError as e:
                return None, str(e)
            logger.info(f"订阅 {data.name} 到期日已过，顺延到 {expiry}")
        return expiry, ""

    def _build(self, subscription_id: int, data: SubscriptionInput, expiry: date) -> Subscription:
        return Subscription(
            id=subscription_id,
            name=data.name.strip(),
            custom_type=data.custom_type or "",
            start_date=data.start_date,
            expiry_date=expiry,
            period_value=data.period_value,
            period_unit=Period(data.period_value, data.period_unit).unit.value,
            reminder_days=data.reminder_days,
            notes=data.notes or "",
            is_active=data.is_active,
            auto_renew=data.auto_renew,
            use_lunar=data.use_lunar,
        )

    def create(self, data: SubscriptionInput, today: Optional[date] = None) -> ServiceResult:
        """
        新建订阅

        到期日早于今天时按周期顺延到第一个不早于今天的日期。
        """
        expiry, error = self._prepare(data, today or self._today())
        if expiry is None:
            return ServiceResult(success=False, message=error)

        try:
            saved = self.storage.add_subscription(self._build(0, data, expiry))
        except Exception as e:
            logger.exception(f"创建订阅 {data.name} 失败")
            return ServiceResult(success=False, message=f"Failed to create subscription: {e}")

        logger.info(f"已创建订阅 #{saved.id} {saved.name}，到期日 {saved.expiry_date}")
        return ServiceResult(success=True, subscription=saved)

    def update(self, subscription_id: int, data: SubscriptionInput, today: Optional[date] = None) -> ServiceResult:
        """整体更新订阅，校验规则与 create 相同"""
        existing = self.storage.get_subscription(subscription_id)
        if existing is None:
            return ServiceResult(success=False, message="Subscription not found")

        expiry, error = self._prepare(data, today or self._today())
        if expiry is None:
            return ServiceResult(success=False, message=error)

        try:
            self.storage.update_subscription(self._build(subscription_id, data, expiry))
        except Exception:
            logger.exception(f"更新订阅 #{subscription_id} 失败")
            return ServiceResult(success=False, message="Failed to update subscription")

        return ServiceResult(success=True, subscription=self.storage.get_subscription(subscription_id))

    def delete(self, subscription_id: int) -> ServiceResult:
        if not self.storage.delete_subscription(subscription_id):
            return ServiceResult(success=False, message="Subscription not found")
        logger.info(f"已删除订阅 #{subscription_id}")
        return ServiceResult(success=True)

    def toggle(self, subscription_id: int, is_active: Optional[bool] = None) -> ServiceResult:
        """
        启用 / 停用订阅

        is_active 为 None 时取反当前状态。
        """
        existing = self.storage.get_subscription(subscription_id)
        if existing is None:
            return ServiceResult(success=False, message="Subscription not found")

        target = (not existing.is_active) if is_active is None else is_active
        self.storage.set_active(subscription_id, target)
        return ServiceResult(success=True, subscription=self.storage.get_subscription(subscription_id))

    def get(self, subscription_id: int) -> Optional[Subscription]:
        return self.storage.get_subscription(subscription_id)

    def list(self, active_only: bool = False) -> list[Subscription]:
        return self.storage.list_subscriptions(active_only=active_only)
