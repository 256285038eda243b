"""
Telegram 命令处理器

处理用户通过 Telegram 发送的命令：
- /list → 订阅列表
- /add → 新建订阅
- /toggle → 启用 / 停用
- /test → 单个订阅的测试通知
- /check → 立即执行到期检查
- /lunar → 公历日期的农历预览
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime

from telegram import Update
from telegram.ext import CommandHandler, ContextTypes

from .config import Config
from .lunar.lunar_period import Period
from .messages import format_lunar_preview, format_subscription_row
from .reminder_service import ReminderService
from .renewal import days_left
from .scheduler import ExpiryScheduler
from .subscription_service import SubscriptionInput, SubscriptionService

logger = logging.getLogger(__name__)

LUNAR_FLAGS = ("lunar", "农历")

# 日期前加此前缀表示开始日期，到期日按周期推算
START_PREFIX = "start:"

ADD_USAGE = (
    "用法: /add <名称> <YYYY-MM-DD | start:YYYY-MM-DD> <周期> [lunar]\n\n"
    "示例:\n"
    "/add Netflix 2024-03-01 1m\n"
    "/add 域名续费 2024-12-31 1y\n"
    "/add 健身卡 start:2024-03-01 3m\n"
    "/add 生日会员 2024-02-10 1y lunar"
)


def parse_add_args(args: list[str]) -> SubscriptionInput:
    """
    解析 /add 参数，名称可以包含空格

    Raises:
        ValueError: 参数不足或格式错误
    """
    args = list(args)
    use_lunar = bool(args) and args[-1].lower() in LUNAR_FLAGS
    if use_lunar:
        args.pop()
    if len(args) < 3:
        raise ValueError("参数不足")

    period = Period.parse(args[-1])
    date_arg = args[-2]
    from_start = date_arg.lower().startswith(START_PREFIX)
    if from_start:
        date_arg = date_arg[len(START_PREFIX):]
    try:
        value = date.fromisoformat(date_arg)
    except ValueError:
        raise ValueError(f"日期格式错误: {date_arg}，应为 YYYY-MM-DD")

    return SubscriptionInput(
        name=" ".join(args[:-2]),
        expiry_date=None if from_start else value,
        start_date=value if from_start else None,
        period_value=period.value,
        period_unit=period.unit.value,
        use_lunar=use_lunar,
    )


class BotHandlers:
    """Telegram Bot 处理器集合"""

    def __init__(
        self,
        config: Config,
        subscription_service: SubscriptionService,
        reminder_service: ReminderService,
        scheduler: ExpiryScheduler,
    ):
        self.config = config
        self.subscription_service = subscription_service
        self.reminder_service = reminder_service
        self.scheduler = scheduler

    def get_handlers(self):
        """获取所有处理器"""
        return [
            CommandHandler("start", self.handle_start),
            CommandHandler("help", self.handle_help),
            CommandHandler("list", self.handle_list),
            CommandHandler("lunar", self.handle_lunar),
            CommandHandler("add", self.handle_add),
            CommandHandler("toggle", self.handle_toggle),
            CommandHandler("test", self.handle_test),
            CommandHandler("check", self.handle_check),
        ]

    async def handle_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """处理 /start 命令"""
        await update.message.reply_text(
            "📅 订阅到期提醒机器人\n\n"
            "记录你的订阅，到期前自动提醒，支持按农历周期续费。\n\n"
            "命令:\n"
            "/list - 查看所有订阅\n"
            "/add - 添加订阅\n"
            "/lunar - 查看农历日期\n"
            "/help - 显示帮助"
        )

    async def handle_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """处理 /help 命令"""
        await update.message.reply_text(
            "📖 使用帮助\n\n"
            "/list - 查看所有订阅\n"
            "/add <名称> <YYYY-MM-DD> <周期> [lunar] - 添加订阅\n"
            "   周期写法: 30d / 1m / 1y\n"
            "   日期写成 start:YYYY-MM-DD 时按开始日期加一个周期计算到期日\n"
            "   末尾加 lunar 表示按农历周期续费\n"
            "/toggle <id> - 启用 / 停用订阅\n"
            "/test <id> - 发送测试通知\n"
            "/check - 立即执行到期检查\n"
            "/lunar [YYYY-MM-DD] - 查看农历日期（默认今天）"
        )

    async def handle_list(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """处理 /list 命令"""
        if not await self._ensure_permission(update):
            return

        subscriptions = self.subscription_service.list()
        if not subscriptions:
            await update.message.reply_text("📭 还没有任何订阅，使用 /add 添加")
            return

        now = datetime.now(tz=self.config.timezone)
        lines = [
            format_subscription_row(
                sub,
                days_left(sub.expiry_date, use_lunar=sub.use_lunar, now=now) if sub.is_active else None,
            )
            for sub in subscriptions
        ]
        await update.message.reply_text("📋 订阅列表\n\n" + "\n".join(lines))

    async def handle_lunar(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """处理 /lunar 命令"""
        if context.args:
            try:
                target = date.fromisoformat(context.args[0])
            except ValueError:
                await update.message.reply_text("⚠️ 日期格式错误，应为 YYYY-MM-DD")
                return
        else:
            target = datetime.now(tz=self.config.timezone).date()

        await update.message.reply_text(f"🌙 {format_lunar_preview(target)}")

    async def handle_add(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """处理 /add 命令"""
        if not await self._ensure_permission(update):
            return

        try:
            data = parse_add_args(context.args or [])
        except ValueError as e:
            await update.message.reply_text(f"⚠️ {e}\n\n{ADD_USAGE}")
            return

        # 过期订阅的顺延可能较慢，不阻塞事件循环
        result = await asyncio.to_thread(self.subscription_service.create, data)
        if not result.success:
            await update.message.reply_text(f"❌ 添加失败: {result.message}")
            return

        sub = result.subscription
        await update.message.reply_text(
            f"✅ 已添加订阅 #{sub.id}\n\n"
            f"{format_subscription_row(sub)}\n"
            f"🔁 周期: {Period(sub.period_value, sub.period_unit)}"
        )

    async def handle_toggle(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """处理 /toggle 命令"""
        if not await self._ensure_permission(update):
            return

        subscription_id = await self._parse_id(update, context, "/toggle <id>")
        if subscription_id is None:
            return

        result = self.subscription_service.toggle(subscription_id)
        if not result.success:
            await update.message.reply_text(f"❌ {result.message}")
            return

        state = "已启用" if result.subscription.is_active else "已停用"
        await update.message.reply_text(f"✅ 订阅 #{subscription_id} {result.subscription.name} {state}")

    async def handle_test(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """处理 /test 命令"""
        if not await self._ensure_permission(update):
            return

        subscription_id = await self._parse_id(update, context, "/test <id>")
        if subscription_id is None:
            return

        try:
            result = await asyncio.to_thread(self.reminder_service.test_subscription, subscription_id)
        except Exception as e:
            logger.exception("发送测试通知失败")
            await update.message.reply_text(f"❌ 出错了: {e}")
            return

        if not result.success:
            await update.message.reply_text(f"❌ {result.message}")
            return

        channels = "\n".join(f"{'✅' if ok else '❌'} {name}" for name, ok in result.channels.items())
        await update.message.reply_text(f"📨 测试通知已发送\n\n{channels}")

    async def handle_check(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """处理 /check 命令 - 立即执行到期检查"""
        if not await self._ensure_permission(update):
            return

        try:
            await update.message.reply_text("🔄 正在检查到期订阅...")
            report = await self.scheduler.run_now()
        except Exception as e:
            logger.exception("手动到期检查失败")
            await update.message.reply_text(f"❌ 出错了: {e}")
            return

        await update.message.reply_text(
            f"✅ 检查完成\n\n"
            f"检查: {report.checked} 个\n"
            f"自动续费: {len(report.renewed)} 个\n"
            f"提醒: {len(report.reminders)} 个"
        )

    async def _parse_id(self, update: Update, context: ContextTypes.DEFAULT_TYPE, usage: str) -> int | None:
        if not context.args:
            await update.message.reply_text(f"用法: {usage}")
            return None
        try:
            return int(context.args[0].lstrip("#"))
        except ValueError:
            await update.message.reply_text(f"⚠️ 无效的订阅 ID: {context.args[0]}")
            return None

    async def _ensure_permission(self, update: Update) -> bool:
        user_id = update.effective_user.id
        if self._check_permission(user_id):
            return True
        logger.warning(f"拒绝未授权用户: {user_id}")
        await update.message.reply_text("⚠️ 你没有权限使用这个 bot")
        return False

    def _check_permission(self, user_id: int) -> bool:
        """检查用户权限"""
        if not self.config.allowed_user_ids:
            return True
        return user_id in self.config.allowed_user_ids
