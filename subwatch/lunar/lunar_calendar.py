"""农历查表与公历→农历转换（1900-2100）。"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from datetime import date
from typing import Optional

MIN_YEAR = 1900
MAX_YEAR = 2100

# 农历数据表（1900-2100），每年一个 20 位编码：
# - 低 4 位：闰月月份（0 表示当年无闰月）
# - bit 16 (0x10000)：闰月大小（1 -> 30 天，0 -> 29 天）
# - bits 15..4：正月到腊月的大小（1 -> 30 天，0 -> 29 天）
LUNAR_DATA = (
    0x04BD8, 0x04AE0, 0x0A570, 0x054D5, 0x0D260, 0x0D950, 0x16554, 0x056A0, 0x09AD0, 0x055D2,
    0x04AE0, 0x0A5B6, 0x0A4D0, 0x0D250, 0x1D255, 0x0B540, 0x0D6A0, 0x0ADA2, 0x095B0, 0x14977,
    0x04970, 0x0A4B0, 0x0B4B5, 0x06A50, 0x06D40, 0x1AB54, 0x02B60, 0x09570, 0x052F2, 0x04970,
    0x06566, 0x0D4A0, 0x0EA50, 0x06E95, 0x05AD0, 0x02B60, 0x186E3, 0x092E0, 0x1C8D7, 0x0C950,
    0x0D4A0, 0x1D8A6, 0x0B550, 0x056A0, 0x1A5B4, 0x025D0, 0x092D0, 0x0D2B2, 0x0A950, 0x0B557,
    0x06CA0, 0x0B550, 0x15355, 0x04DA0, 0x0A5B0, 0x14573, 0x052B0, 0x0A9A8, 0x0E950, 0x06AA0,
    0x0AEA6, 0x0AB50, 0x04B60, 0x0AAE4, 0x0A570, 0x05260, 0x0F263, 0x0D950, 0x05B57, 0x056A0,
    0x096D0, 0x04DD5, 0x04AD0, 0x0A4D0, 0x0D4D4, 0x0D250, 0x0D558, 0x0B540, 0x0B6A0, 0x195A6,
    0x095B0, 0x049B0, 0x0A974, 0x0A4B0, 0x0B27A, 0x06A50, 0x06D40, 0x0AF46, 0x0AB60, 0x09570,
    0x04AF5, 0x04970, 0x064B0, 0x074A3, 0x0EA50, 0x06B58, 0x055C0, 0x0AB60, 0x096D5, 0x092E0,
    0x0C960, 0x0D954, 0x0D4A0, 0x0DA50, 0x07552, 0x056A0, 0x0ABB7, 0x025D0, 0x092D0, 0x0CAB5,
    0x0A950, 0x0B4A0, 0x0BAA4, 0x0AD50, 0x055D9, 0x04BA0, 0x0A5B0, 0x15176, 0x052B0, 0x0A930,
    0x07954, 0x06AA0, 0x0AD50, 0x05B52, 0x04B60, 0x0A6E6, 0x0A4E0, 0x0D260, 0x0EA65, 0x0D530,
    # 2033 年记为闰七月，现行官方历法为闰十一月，2033-08-25 至 2034-01-19 的换算与官方不同
    0x05AA0, 0x076A3, 0x096D0, 0x04BD7, 0x04AD0, 0x0A4D0, 0x1D0B6, 0x0D250, 0x0D520, 0x0DD45,
    0x0B5A0, 0x056D0, 0x055B2, 0x049B0, 0x0A577, 0x0A4B0, 0x0AA50, 0x1B255, 0x06D20, 0x0ADA0,
    0x14B63, 0x09370, 0x049F8, 0x04970, 0x064B0, 0x168A6, 0x0EA50, 0x06B20, 0x1A6C4, 0x0AAE0,
    0x0A2E0, 0x0D2E3, 0x0C960, 0x0D557, 0x0D4A0, 0x0DA50, 0x05D55, 0x056A0, 0x0A6D0, 0x055D4,
    0x052D0, 0x0A9B8, 0x0A950, 0x0B4A0, 0x0B6A6, 0x0AD50, 0x055A0, 0x0ABA4, 0x0A5B0, 0x052B0,
    0x0B273, 0x06930, 0x07337, 0x06AA0, 0x0AD50, 0x14B55, 0x04B60, 0x0A570, 0x054E4, 0x0D160,
    0x0E968, 0x0D520, 0x0DAA0, 0x16AA6, 0x056D0, 0x04AE0, 0x0A9D4, 0x0A2D0, 0x0D150, 0x0F252,
    0x0D520,
)

# 公历 1900-01-31 是庚子年正月初一
BASE_DATE = date(1900, 1, 31)

# 1900-01-01 ~ 1900-01-30 落在己亥年（1899）腊月，早于数据表起点
_PRE_BASE_YEAR = MIN_YEAR - 1
_PRE_BASE_MONTH = 12
_PRE_BASE_MONTH_DAYS = 30

HEAVENLY_STEMS = ("甲", "乙", "丙", "丁", "戊", "己", "庚", "辛", "壬", "癸")
EARTHLY_BRANCHES = ("子", "丑", "寅", "卯", "辰", "巳", "午", "未", "申", "酉", "戌", "亥")
LUNAR_MONTH_NAMES = ("正", "二", "三", "四", "五", "六", "七", "八", "九", "十", "冬", "腊")
LUNAR_DAY_NAMES = (
    "初一", "初二", "初三", "初四", "初五", "初六", "初七", "初八", "初九", "初十",
    "十一", "十二", "十三", "十四", "十五", "十六", "十七", "十八", "十九", "二十",
    "廿一", "廿二", "廿三", "廿四", "廿五", "廿六", "廿七", "廿八", "廿九", "三十",
)


class LunarRangeError(ValueError):
    """年份超出农历数据表范围（1900-2100）"""

    pass


@dataclass(frozen=True)
class LunarDate:
    """农历日期（不可变值对象）"""

    year: int
    month: int  # 1..12
    day: int  # 1..30
    is_leap: bool = False

    @property
    def year_name(self) -> str:
        """干支纪年，如 癸卯年"""
        return f"{HEAVENLY_STEMS[(self.year - 4) % 10]}{EARTHLY_BRANCHES[(self.year - 4) % 12]}年"

    @property
    def month_name(self) -> str:
        prefix = "闰" if self.is_leap else ""
        return f"{prefix}{LUNAR_MONTH_NAMES[self.month - 1]}月"

    @property
    def day_name(self) -> str:
        return LUNAR_DAY_NAMES[self.day - 1]

    @property
    def full_name(self) -> str:
        return f"{self.year_name}{self.month_name}{self.day_name}"

    def __str__(self) -> str:
        return self.full_name


def _year_data(year: int) -> int:
    if year < MIN_YEAR or year > MAX_YEAR:
        raise LunarRangeError(f"农历年份超出支持范围 {MIN_YEAR}-{MAX_YEAR}: {year}")
    return LUNAR_DATA[year - MIN_YEAR]


def leap_month(year: int) -> int:
    """返回闰月月份，无闰月返回 0。"""
    return _year_data(year) & 0xF


def leap_days(year: int) -> int:
    """返回闰月天数：0、29 或 30。"""
    if leap_month(year) == 0:
        return 0
    return 30 if (_year_data(year) & 0x10000) else 29


def month_days(year: int, month: int) -> int:
    """返回常规月份（非闰月）的天数：29 或 30。"""
    if month < 1 or month > 12:
        raise ValueError(f"invalid lunar month: {month}")
    return 30 if (_year_data(year) & (0x10000 >> month)) else 29


def lunar_month_days(year: int, month: int, is_leap: bool = False) -> int:
    """返回指定月份（常规月或闰月）的天数。"""
    if is_leap:
        return leap_days(year)
    return month_days(year, month)


def year_days(year: int) -> int:
    """返回农历年总天数（348-385）。"""
    days = 348
    bit = 0x8000
    data = _year_data(year)
    for _ in range(12):
        if data & bit:
            days += 1
        bit >>= 1
    return days + leap_days(year)


def _build_new_year_offsets() -> tuple[int, ...]:
    offsets = [0]
    for year in range(MIN_YEAR, MAX_YEAR + 1):
        offsets.append(offsets[-1] + year_days(year))
    return tuple(offsets)


# 每个农历年正月初一相对 BASE_DATE 的天数，最后一项是 2101 年正月初一
_NEW_YEAR_OFFSETS = _build_new_year_offsets()


def is_valid_lunar_date(lunar: LunarDate) -> bool:
    """检查农历日期本身是否合法（闰月标记、当月天数）。"""
    if lunar.year < MIN_YEAR or lunar.year > MAX_YEAR:
        return False
    if lunar.month < 1 or lunar.month > 12 or lunar.day < 1:
        return False
    if lunar.is_leap and leap_month(lunar.year) != lunar.month:
        return False
    return lunar.day <= lunar_month_days(lunar.year, lunar.month, lunar.is_leap)


def solar_to_lunar(year: int, month: int, day: int) -> Optional[LunarDate]:
    """
    公历转农历。

    Args:
        year: 公历年（1900-2100）
        month: 公历月（1-12）
        day: 公历日

    Returns:
        LunarDate；年份超出范围或不是合法公历日期时返回 None
    """
    if year < MIN_YEAR or year > MAX_YEAR:
        return None
    try:
        target = date(year, month, day)
    except ValueError:
        return None

    offset = (target - BASE_DATE).days
    if offset < 0:
        return LunarDate(_PRE_BASE_YEAR, _PRE_BASE_MONTH, _PRE_BASE_MONTH_DAYS + offset + 1)

    index = bisect_right(_NEW_YEAR_OFFSETS, offset) - 1
    lunar_year = MIN_YEAR + index
    offset -= _NEW_YEAR_OFFSETS[index]

    leap = leap_month(lunar_year)
    for lunar_month in range(1, 13):
        days = month_days(lunar_year, lunar_month)
        if offset < days:
            return LunarDate(lunar_year, lunar_month, offset + 1)
        offset -= days

        # 闰月紧跟在同名常规月之后，边界由天数比较区分
        if lunar_month == leap:
            days = leap_days(lunar_year)
            if offset < days:
                return LunarDate(lunar_year, lunar_month, offset + 1, is_leap=True)
            offset -= days

    # year_days 与各月天数之和一致，走不到这里
    raise RuntimeError(f"农历数据不一致: {target}")


def solar_date_to_lunar(value: date) -> Optional[LunarDate]:
    """solar_to_lunar 的 date 版本。"""
    return solar_to_lunar(value.year, value.month, value.day)
