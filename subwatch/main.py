"""
Telegram Bot 入口

使用 Long Polling 方式运行，同时在后台定时执行到期检查。
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from telegram.ext import ApplicationBuilder

from .config import Config
from .handlers import BotHandlers
from .notifiers import NotificationDispatcher
from .reminder_service import ReminderService
from .scheduler import ExpiryScheduler
from .storage import Storage
from .subscription_service import SubscriptionService

# 配置日志
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)
# httpx 每个请求都会打 INFO 日志，且 URL 中带有 bot token
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def main(env_path: str | Path | None = None) -> None:
    """主函数"""
    if env_path is None:
        env_path = os.getenv("SUBWATCH_ENV_PATH")

    # 加载配置
    config = Config.from_env(env_path=env_path, require_bot_token=True)
    logger.info(
        f"配置加载完成: 数据库 {config.db_path}，通知渠道 {', '.join(config.enabled_notifiers) or '无'}"
    )

    # 初始化组件
    storage = Storage(config.db_path)
    dispatcher = NotificationDispatcher(config)
    subscription_service = SubscriptionService(storage, config)
    reminder_service = ReminderService(storage, dispatcher, config)
    scheduler = ExpiryScheduler(reminder_service, config)
    handlers = BotHandlers(config, subscription_service, reminder_service, scheduler)

    # 构建 Telegram Bot Application
    app = (
        ApplicationBuilder()
        .token(config.telegram_token)
        .build()
    )

    for handler in handlers.get_handlers():
        app.add_handler(handler)

    # 启动调度器（在后台运行）
    async def start_scheduler(app):
        await scheduler.start()
        logger.info("🕐 调度器已启动")

    async def stop_scheduler(app):
        await scheduler.stop()
        logger.info("🕐 调度器已停止")

    app.post_init = start_scheduler
    app.post_shutdown = stop_scheduler

    # 启动 Bot（Long Polling）
    logger.info("🚀 Bot 启动中...")
    app.run_polling(allowed_updates=["message"])


if __name__ == "__main__":
    main()
