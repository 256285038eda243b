"""
续费日期推算单元测试
"""

from __future__ import annotations

import logging
from datetime import date
from unittest.mock import patch

import pytest

from subwatch.lunar.lunar_calendar import LunarRangeError
from subwatch.lunar.lunar_period import Period, add_period, lunar_to_solar
from subwatch.renewal import (
    RenewalLoopError,
    add_solar_period,
    days_left,
    next_expiry,
    roll_forward,
)


@pytest.mark.unit
class TestAddSolarPeriod:
    """测试公历周期加法。"""

    def test_days(self) -> None:
        assert add_solar_period(date(2024, 1, 1), 30, "day") == date(2024, 1, 31)

    def test_month_end_clamped(self) -> None:
        """测试月末日期加一个月取目标月最后一天。"""
        assert add_solar_period(date(2024, 1, 31), 1, "month") == date(2024, 2, 29)
        assert add_solar_period(date(2023, 1, 31), 1, "month") == date(2023, 2, 28)

    def test_cross_year(self) -> None:
        assert add_solar_period(date(2023, 12, 15), 1, "month") == date(2024, 1, 15)
        assert add_solar_period(date(2023, 11, 30), 14, "month") == date(2025, 1, 30)

    def test_leap_day_plus_year(self) -> None:
        assert add_solar_period(date(2024, 2, 29), 1, "year") == date(2025, 2, 28)


@pytest.mark.unit
class TestNextExpiry:
    """测试推进一个周期。"""

    def test_solar(self) -> None:
        assert next_expiry(date(2024, 3, 1), Period(1, "month")) == date(2024, 4, 1)

    def test_lunar_year(self) -> None:
        """测试农历正月初一按年推进到下一个春节。"""
        assert next_expiry(date(2023, 1, 22), Period(1, "year"), use_lunar=True) == date(2024, 2, 10)

    def test_lunar_days_use_solar_arithmetic(self) -> None:
        """测试农历按天推进与公历相同。"""
        assert next_expiry(date(2023, 3, 22), Period(30, "day"), use_lunar=True) == date(2023, 4, 21)

    def test_lunar_out_of_range(self) -> None:
        with pytest.raises(LunarRangeError):
            next_expiry(date(2101, 1, 1), Period(1, "year"), use_lunar=True)


@pytest.mark.unit
class TestRollForward:
    """测试过期顺延。"""

    def test_not_expired_unchanged(self) -> None:
        """测试未过期（含今天到期）原样返回。"""
        period = Period(1, "month")
        assert roll_forward(date(2024, 5, 1), period, today=date(2024, 4, 1)) == date(2024, 5, 1)
        assert roll_forward(date(2024, 4, 1), period, today=date(2024, 4, 1)) == date(2024, 4, 1)

    def test_solar_multiple_periods(self) -> None:
        """测试跨多个周期顺延。"""
        result = roll_forward(date(2024, 1, 15), Period(1, "month"), today=date(2024, 3, 20))
        assert result == date(2024, 4, 15)

    def test_solar_lands_on_today(self) -> None:
        result = roll_forward(date(2024, 1, 20), Period(1, "month"), today=date(2024, 3, 20))
        assert result == date(2024, 3, 20)

    def test_lunar_year(self) -> None:
        """测试农历按年顺延。"""
        result = roll_forward(date(2023, 1, 22), Period(1, "year"), use_lunar=True, today=date(2024, 1, 1))
        assert result == date(2024, 2, 10)

    def test_lunar_leap_month_demoted(self) -> None:
        """测试闰二月顺延一年后落在次年二月。"""
        result = roll_forward(date(2023, 3, 22), Period(1, "year"), use_lunar=True, today=date(2023, 4, 1))
        assert result == date(2024, 3, 10)

    def test_iteration_cap(self) -> None:
        """测试超过推进次数上限。"""
        with pytest.raises(RenewalLoopError):
            roll_forward(date(2020, 1, 1), Period(1, "day"), today=date(2024, 1, 1), max_iterations=2)

    def test_lunar_days_skip_lunar_lookup(self) -> None:
        """测试农历按天顺延走公历加法，十年跨度也不会逐日反查农历。"""
        with patch("subwatch.renewal.lunar_to_solar", wraps=lunar_to_solar) as mock_to_solar, patch(
            "subwatch.renewal.add_period", wraps=add_period
        ) as mock_add:
            result = roll_forward(
                date(2016, 1, 1), Period(1, "day"), use_lunar=True, today=date(2026, 10, 19), max_iterations=4000
            )

        assert result == date(2026, 10, 19)
        mock_to_solar.assert_not_called()
        mock_add.assert_not_called()

    def test_lunar_days_out_of_range(self) -> None:
        with pytest.raises(LunarRangeError):
            roll_forward(date(2101, 1, 1), Period(1, "day"), use_lunar=True, today=date(2101, 6, 1))

    def test_lunar_out_of_range(self) -> None:
        with pytest.raises(LunarRangeError):
            roll_forward(date(2101, 1, 1), Period(1, "year"), use_lunar=True, today=date(2101, 6, 1))


@pytest.mark.unit
class TestDaysLeft:
    """测试剩余天数。"""

    def test_solar_rounds_up(self, shanghai_now) -> None:
        assert days_left(date(2024, 3, 1), now=shanghai_now(2024, 2, 28, 10, 0)) == 2

    def test_due_today(self, shanghai_now) -> None:
        assert days_left(date(2024, 3, 1), now=shanghai_now(2024, 3, 1, 18, 0)) == 0

    def test_expired(self, shanghai_now) -> None:
        assert days_left(date(2024, 3, 1), now=shanghai_now(2024, 3, 4, 9, 0)) == -3

    def test_lunar_matches_solar(self, shanghai_now) -> None:
        """测试农历订阅与公历计算结果一致。"""
        now = shanghai_now(2023, 1, 20, 8, 0)
        assert days_left(date(2023, 1, 22), use_lunar=True, now=now) == 2

    def test_lunar_falls_back_to_solar(self, shanghai_now, caplog: pytest.LogCaptureFixture) -> None:
        """测试农历无法计算时退回公历并记录告警。"""
        with caplog.at_level(logging.WARNING):
            result = days_left(date(2101, 1, 1), use_lunar=True, now=shanghai_now(2100, 12, 31, 10, 0))

        assert result == 1
        assert "改用公历" in caplog.text
