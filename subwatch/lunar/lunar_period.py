"""
农历周期运算

在农历上做日期加法（N 天 / 月 / 年），以及农历 → 公历的反查。
农历没有闭式的公历映射，反查采用 ±1 年窗口内的穷举搜索。
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Optional, Union

from .lunar_calendar import (
    MIN_YEAR,
    LunarDate,
    leap_month,
    lunar_month_days,
    solar_date_to_lunar,
    solar_to_lunar,
)


class PeriodUnit(str, Enum):
    """续费周期单位"""

    DAY = "day"
    MONTH = "month"
    YEAR = "year"


_UNIT_ALIASES = {
    "d": PeriodUnit.DAY,
    "day": PeriodUnit.DAY,
    "days": PeriodUnit.DAY,
    "天": PeriodUnit.DAY,
    "m": PeriodUnit.MONTH,
    "month": PeriodUnit.MONTH,
    "months": PeriodUnit.MONTH,
    "月": PeriodUnit.MONTH,
    "y": PeriodUnit.YEAR,
    "year": PeriodUnit.YEAR,
    "years": PeriodUnit.YEAR,
    "年": PeriodUnit.YEAR,
}

_PERIOD_PATTERN = re.compile(r"^\s*(\d+)\s*([A-Za-z一-龥]+)\s*$")


@dataclass(frozen=True)
class Period:
    """续费周期，如 1 个月、3 年"""

    value: int
    unit: PeriodUnit

    def __post_init__(self) -> None:
        if self.value < 1:
            raise ValueError(f"周期数值必须 >= 1: {self.value}")
        # 允许直接传入 "month" 这类字符串
        object.__setattr__(self, "unit", PeriodUnit(self.unit))

    @classmethod
    def parse(cls, text: str) -> "Period":
        """解析 "3m"、"1 year"、"30天" 之类的写法。"""
        match = _PERIOD_PATTERN.match(text)
        if not match:
            raise ValueError(f"无法解析周期: {text!r}")
        unit = _UNIT_ALIASES.get(match.group(2).lower())
        if unit is None:
            raise ValueError(f"未知的周期单位: {match.group(2)!r}")
        return cls(int(match.group(1)), unit)

    def __str__(self) -> str:
        return f"{self.value} {self.unit.value}"


def lunar_to_solar(lunar: LunarDate) -> Optional[date]:
    """
    农历转公历。

    依次搜索公历 year-1、year、year+1 三年内的每一天，
    返回第一个转换结果与输入完全一致（年、月、日、闰月）的公历日期。

    Returns:
        公历 date；搜索窗口内没有匹配时返回 None
    """
    for year in range(lunar.year - 1, lunar.year + 2):
        for month in range(1, 13):
            for day in range(1, 32):
                # solar_to_lunar 对非法公历日期（如 2 月 30 日）返回 None
                candidate = solar_to_lunar(year, month, day)
                if candidate is None:
                    continue
                if (
                    candidate.year == lunar.year
                    and candidate.month == lunar.month
                    and candidate.day == lunar.day
                    and candidate.is_leap == lunar.is_leap
                ):
                    return date(year, month, day)
    return None


def add_period(
    lunar: LunarDate,
    value: int,
    unit: Union[PeriodUnit, str],
) -> Optional[LunarDate]:
    """
    在农历日期上加一个周期。

    - 年：年份 + value；目标年闰月不同则降为同名常规月（类似公历 2 月 29 日）
    - 月：按 (year-1900)*12 + (month-1) 的绝对月序号相加后还原
    - 天：转成公历加天数再转回农历

    年 / 月加法后日期超过目标月天数时向下截断，并确认截断后的日期
    能反查到公历；一直减到 0 都查不到时原样返回未截断的日期，
    此时结果不可靠，调用方应记录告警。

    Returns:
        新的 LunarDate；按天计算且公历转换失败时返回 None
    """
    unit = PeriodUnit(unit)
    year, month, day, is_leap = lunar.year, lunar.month, lunar.day, lunar.is_leap

    if unit is PeriodUnit.DAY:
        solar = lunar_to_solar(lunar)
        if solar is None:
            return None
        return solar_date_to_lunar(solar + timedelta(days=value))

    if unit is PeriodUnit.YEAR:
        year += value
    else:
        total_months = (year - MIN_YEAR) * 12 + (month - 1) + value
        year = total_months // 12 + MIN_YEAR
        month = total_months % 12 + 1
    is_leap = is_leap and leap_month(year) == month

    target_day = min(day, lunar_month_days(year, month, is_leap))
    while target_day > 0:
        candidate = LunarDate(year, month, target_day, is_leap)
        if lunar_to_solar(candidate) is not None:
            return candidate
        target_day -= 1

    return LunarDate(year, month, day, is_leap)


def days_until(lunar: LunarDate, now: Optional[datetime] = None) -> Optional[int]:
    """
    距离农历日期对应的公历日期还有多少天（向上取整）。

    负数表示已过去，0 表示就是今天。

    Args:
        lunar: 农历日期
        now: 当前时间，默认取本机时间；带时区时按同一时区的零点计算

    Returns:
        天数；农历日期无法反查到公历时返回 None
    """
    solar = lunar_to_solar(lunar)
    if solar is None:
        return None
    if now is None:
        now = datetime.now()
    target = datetime.combine(solar, time.min, tzinfo=now.tzinfo)
    return math.ceil((target - now) / timedelta(days=1))
