"""
续费日期推算

把到期日按续费周期往后推：公历订阅直接做公历加法，
农历订阅先转农历、按农历周期推进、再转回公历。
"""

from __future__ import annotations

import calendar
import logging
import math
from datetime import date, datetime, time, timedelta
from typing import Optional, Union

from .lunar.lunar_calendar import LunarRangeError, solar_date_to_lunar
from .lunar.lunar_period import Period, PeriodUnit, add_period, days_until, lunar_to_solar

logger = logging.getLogger(__name__)

# 连续推进的上限，防止异常周期配置导致死循环
MAX_RENEWAL_ITERATIONS = 10_000


class RenewalLoopError(RuntimeError):
    """推进次数超过上限仍未越过目标日期"""

    pass


def add_solar_period(value_date: date, value: int, unit: Union[PeriodUnit, str]) -> date:
    """
    公历日期加周期。

    按月 / 年相加时，日期超过目标月最后一天则取月末
    （1 月 31 日 + 1 个月 → 2 月 28/29 日）。
    """
    unit = PeriodUnit(unit)
    if unit is PeriodUnit.DAY:
        return value_date + timedelta(days=value)

    months = value if unit is PeriodUnit.MONTH else value * 12
    total = value_date.year * 12 + (value_date.month - 1) + months
    year, month = divmod(total, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(value_date.day, last_day))


def next_expiry(expiry: date, period: Period, use_lunar: bool = False) -> Optional[date]:
    """
    推进一个周期后的到期日。

    农历订阅在农历无法反查到公历时返回 None。

    Raises:
        LunarRangeError: 农历订阅的日期超出 1900-2100
    """
    lunar = solar_date_to_lunar(expiry) if use_lunar else None
    if use_lunar and lunar is None:
        raise LunarRangeError(f"农历日期超出支持范围 (1900-2100): {expiry}")
    if not use_lunar or period.unit is PeriodUnit.DAY:
        return add_solar_period(expiry, period.value, period.unit)

    advanced = add_period(lunar, period.value, period.unit)
    if advanced is None:
        return None
    return lunar_to_solar(advanced)


def roll_forward(
    expiry: date,
    period: Period,
    *,
    use_lunar: bool = False,
    today: date,
    max_iterations: int = MAX_RENEWAL_ITERATIONS,
) -> date:
    """
    把到期日一直往后推，直到不早于 today。

    农历订阅只在开始时转换一次，之后在农历值上连续叠加周期
    （保留截断后的日），每一步再转回公历比较。
    某一步反查不到公历时记录告警并继续推进。

    Args:
        expiry: 当前到期日
        period: 续费周期
        use_lunar: 是否按农历周期续费
        today: 目标日期（通常是今天）
        max_iterations: 最多推进次数

    Returns:
        新的到期日（expiry 本身已不早于 today 时原样返回）

    Raises:
        RenewalLoopError: 超过 max_iterations 仍未越过 today
        LunarRangeError: 农历订阅的到期日超出 1900-2100
    """
    if expiry >= today:
        return expiry

    lunar = solar_date_to_lunar(expiry) if use_lunar else None
    if use_lunar and lunar is None:
        raise LunarRangeError(f"农历日期超出支持范围 (1900-2100): {expiry}")

    # 按天的周期农历与公历等价，不必逐步反查
    if not use_lunar or period.unit is PeriodUnit.DAY:
        current = expiry
        for _ in range(max_iterations):
            current = add_solar_period(current, period.value, period.unit)
            if current >= today:
                return current
        raise RenewalLoopError(f"到期日 {expiry} 按 {period} 推进 {max_iterations} 次仍早于 {today}")

    for _ in range(max_iterations):
        advanced = add_period(lunar, period.value, period.unit)
        if advanced is None:
            raise LunarRangeError(f"农历日期 {lunar} 按 {period} 推进后超出支持范围")
        lunar = advanced

        solar = lunar_to_solar(lunar)
        if solar is None:
            logger.warning(f"农历日期 {lunar.year}-{lunar.month}-{lunar.day} (闰月={lunar.is_leap}) 无对应公历，跳过")
            continue
        if solar >= today:
            return solar

    raise RenewalLoopError(f"农历到期日 {expiry} 按 {period} 推进 {max_iterations} 次仍早于 {today}")


def days_left(expiry: date, *, use_lunar: bool = False, now: datetime) -> int:
    """
    距离到期日还有多少天（向上取整，今天到期为 0，过期为负数）。

    农历订阅通过农历引擎计算，转换失败时退回公历计算并记录告警。
    """
    if use_lunar:
        lunar = solar_date_to_lunar(expiry)
        days = days_until(lunar, now) if lunar is not None else None
        if days is not None:
            return days
        logger.warning(f"到期日 {expiry} 无法按农历计算，改用公历")

    target = datetime.combine(expiry, time.min, tzinfo=now.tzinfo)
    return math.ceil((target - now) / timedelta(days=1))
