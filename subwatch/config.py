"""
集中配置管理

从环境变量 / .env 文件加载所有配置项，
并提供校验与默认值。
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

DEFAULT_TIMEZONE = "Asia/Shanghai"

# 支持的通知渠道
NOTIFIER_CHANNELS = ("notifyx", "telegram", "webhook", "wechatbot", "email")


def _require(name: str) -> str:
    """读取必填环境变量，缺失时直接退出并给出提示。"""
    val = os.getenv(name, "").strip()
    if not val:
        print(f"[ERROR] 缺少必填环境变量: {name}，请检查 .env 文件。")
        sys.exit(1)
    return val


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _env_list(name: str, default: str = "") -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(x.strip() for x in raw.split(",") if x.strip())


@dataclass(frozen=True)
class Config:
    """不可变配置对象，一次加载、全局使用。"""

    # ── Telegram Bot ─────────────────────────────────────
    telegram_token: str = ""
    allowed_user_ids: tuple[int, ...] = ()   # 白名单，只允许这些用户操作

    # ── 通知渠道 ─────────────────────────────────────────
    enabled_notifiers: tuple[str, ...] = ("notifyx",)
    telegram_chat_id: str = ""               # 提醒消息发往的 chat
    notifyx_api_key: str = ""
    webhook_url: str = ""
    webhook_method: str = "POST"
    webhook_headers: str = ""                # JSON 字符串
    webhook_template: str = ""               # JSON 字符串，支持 {{title}} {{content}} {{timestamp}}
    wechatbot_webhook: str = ""
    wechatbot_msg_type: str = "text"         # text / markdown
    wechatbot_at_mobiles: str = ""           # 逗号分隔的手机号
    wechatbot_at_all: bool = False
    resend_api_key: str = ""
    email_from: str = ""
    email_from_name: str = ""
    email_to: str = ""

    # ── 行为 ─────────────────────────────────────────────
    show_lunar: bool = False                 # 提醒中附带农历日期
    timezone: ZoneInfo = field(default_factory=lambda: ZoneInfo(DEFAULT_TIMEZONE))
    db_path: str = "data/subwatch.db"
    check_interval_minutes: int = 5          # 调度器唤醒间隔
    notify_hour: int = 8                     # 每天几点之后执行到期检查

    @classmethod
    def from_env(
        cls,
        env_path: str | Path | None = None,
        load_dotenv_file: bool = True,
        require_bot_token: bool = False,
    ) -> "Config":
        """从 .env 文件 + 环境变量构建 Config 实例。"""
        if env_path:
            load_dotenv(env_path, override=True)
        elif load_dotenv_file:
            # 优先级:
            # 1. 当前目录 .subwatch/.env
            # 2. 当前目录 .env (本地调试)
            # 3. 项目根目录 .env (源码运行)
            # 4. ~/.subwatch/.env
            project_root = Path(__file__).resolve().parent.parent
            candidates = [
                Path.cwd() / ".subwatch" / ".env",
                Path.cwd() / ".env",
                project_root / ".env",
                Path.home() / ".subwatch" / ".env",
            ]

            for candidate in candidates:
                if candidate.exists():
                    load_dotenv(candidate, override=True)
                    break

        # 白名单：逗号分隔的数字
        allowed = tuple(int(x) for x in _env_list("ALLOWED_USER_IDS"))

        # 时区
        tz_name = _env("SUBWATCH_TZ", DEFAULT_TIMEZONE)
        try:
            tz = ZoneInfo(tz_name)
        except (KeyError, ValueError):
            print(f"[WARN] 无法识别时区 '{tz_name}'，回退到 {DEFAULT_TIMEZONE}")
            tz = ZoneInfo(DEFAULT_TIMEZONE)

        notifiers = tuple(n.lower() for n in _env_list("ENABLED_NOTIFIERS", "notifyx"))
        unknown = [n for n in notifiers if n not in NOTIFIER_CHANNELS]
        if unknown:
            print(f"[WARN] 忽略未知的通知渠道: {', '.join(unknown)}")
            notifiers = tuple(n for n in notifiers if n in NOTIFIER_CHANNELS)

        telegram_token = _require("TELEGRAM_BOT_TOKEN") if require_bot_token else _env("TELEGRAM_BOT_TOKEN")

        return cls(
            telegram_token=telegram_token,
            allowed_user_ids=allowed,
            enabled_notifiers=notifiers,
            telegram_chat_id=_env("TG_CHAT_ID"),
            notifyx_api_key=_env("NOTIFYX_API_KEY"),
            webhook_url=_env("WEBHOOK_URL"),
            webhook_method=_env("WEBHOOK_METHOD", "POST").upper() or "POST",
            webhook_headers=_env("WEBHOOK_HEADERS"),
            webhook_template=_env("WEBHOOK_TEMPLATE"),
            wechatbot_webhook=_env("WECHATBOT_WEBHOOK"),
            wechatbot_msg_type=_env("WECHATBOT_MSG_TYPE", "text") or "text",
            wechatbot_at_mobiles=_env("WECHATBOT_AT_MOBILES"),
            wechatbot_at_all=_env_bool("WECHATBOT_AT_ALL"),
            resend_api_key=_env("RESEND_API_KEY"),
            email_from=_env("EMAIL_FROM"),
            email_from_name=_env("EMAIL_FROM_NAME"),
            email_to=_env("EMAIL_TO"),
            show_lunar=_env_bool("SHOW_LUNAR"),
            timezone=tz,
            db_path=_env("SUBWATCH_DB", "data/subwatch.db") or "data/subwatch.db",
            check_interval_minutes=int(_env("CHECK_INTERVAL_MINUTES", "5") or 5),
            notify_hour=int(_env("NOTIFY_HOUR", "8") or 8),
        )
