"""
提醒消息模板
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from .lunar.lunar_calendar import solar_date_to_lunar
from .storage import Subscription

REMINDER_TITLE = "Subscription Expiry Reminder"

PERIOD_UNIT_TEXT = {"day": "days", "month": "months", "year": "years"}

WEEKDAYS = ["周一", "周二", "周三", "周四", "周五", "周六", "周日"]

_MARKDOWN_CHARS = re.compile(r"[*#`]")


@dataclass
class Reminder:
    """一条待提醒的订阅"""
    subscription: Subscription
    days_remaining: int
    renewed: bool = False  # 本次检查中已自动续费


def format_time(value: Optional[datetime] = None, tz: Optional[ZoneInfo] = None, fmt: str = "full") -> str:
    """
    按时区格式化时间。

    fmt: date -> 2024/02/12，datetime -> 2024/02/12 08:00:00，full -> 2024/2/12 08:00:00
    """
    if value is None:
        value = datetime.now(tz=tz)
    elif tz is not None and value.tzinfo is not None:
        value = value.astimezone(tz)

    if fmt == "date":
        return value.strftime("%Y/%m/%d")
    if fmt == "datetime":
        return value.strftime("%Y/%m/%d %H:%M:%S")
    return f"{value.year}/{value.month}/{value.day} {value.strftime('%H:%M:%S')}"


def strip_markdown(text: str) -> str:
    """去掉 * # ` 等 Markdown 标记，供纯文本渠道使用。"""
    return _MARKDOWN_CHARS.sub("", text)


def period_text(subscription: Subscription) -> str:
    if not subscription.period_value or not subscription.period_unit:
        return ""
    unit = PERIOD_UNIT_TEXT.get(subscription.period_unit, subscription.period_unit)
    return f"(Period: {subscription.period_value} {unit})"


def lunar_text(value: date) -> str:
    """农历附注，如 " (Lunar: 癸卯年正月初一)"；超出范围返回空串。"""
    lunar = solar_date_to_lunar(value)
    return f" (Lunar: {lunar.full_name})" if lunar else ""


def format_reminder_line(reminder: Reminder, show_lunar: bool = False) -> str:
    """单条订阅的提醒文字"""
    sub = reminder.subscription
    type_text = sub.custom_type or "Other"
    head = f"**{sub.name}** ({type_text}) {period_text(sub)}".rstrip()
    extra = lunar_text(sub.expiry_date) if show_lunar else ""

    days = reminder.days_remaining
    if days == 0:
        line = f"⚠️ {head} is due today!{extra}"
    elif days < 0:
        line = f"🚨 {head} expired {abs(days)} days ago{extra}"
    else:
        line = f"📅 {head} will expire in {days} days{extra}"

    if sub.notes:
        line += f"\n   Notes: {sub.notes}"
    return line


def build_reminder_content(reminders: list[Reminder], show_lunar: bool = False) -> str:
    """汇总多条提醒，按剩余天数升序排列"""
    ordered = sorted(reminders, key=lambda r: r.days_remaining)
    return "".join(format_reminder_line(r, show_lunar) + "\n\n" for r in ordered)


def build_test_content(subscription: Subscription, tz: ZoneInfo, show_lunar: bool = False) -> str:
    """单个订阅的手动测试通知正文"""
    expiry = datetime(
        subscription.expiry_date.year,
        subscription.expiry_date.month,
        subscription.expiry_date.day,
        tzinfo=tz,
    )
    extra = lunar_text(subscription.expiry_date) if show_lunar else ""
    return (
        "**Subscription Details**:\n"
        f"- **Type**: {subscription.custom_type or 'Other'}\n"
        f"- **Expiry Date**: {format_time(expiry, tz, 'date')}{extra}\n"
        f"- **Notes**: {subscription.notes or 'None'}"
    )


def format_subscription_row(subscription: Subscription, days: Optional[int] = None) -> str:
    """Bot 订阅列表中的一行"""
    status = "🟢" if subscription.is_active else "⚪️"
    lunar_flag = " 🌙" if subscription.use_lunar else ""
    renew_flag = " 🔁" if subscription.auto_renew else ""
    line = (
        f"{status} #{subscription.id} {subscription.name} "
        f"→ {subscription.expiry_date.isoformat()}{lunar_flag}{renew_flag}"
    )
    if days is not None:
        if days < 0:
            line += f"（已过期 {abs(days)} 天）"
        elif days == 0:
            line += "（今天到期）"
        else:
            line += f"（剩余 {days} 天）"
    return line


def format_lunar_preview(value: date) -> str:
    """
    公历日期的农历预览

    例如：2023-01-22 周日 → 癸卯年正月初一
    """
    lunar = solar_date_to_lunar(value)
    head = f"{value.isoformat()} {WEEKDAYS[value.weekday()]}"
    if lunar is None:
        return f"{head} → 超出农历支持范围 (1900-2100)"
    return f"{head} → {lunar.full_name}"
