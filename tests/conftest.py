"""
测试共享 Fixtures

提供所有测试模块共享的 mock 对象和测试数据。
"""

from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import httpx
import pytest
import respx

from subwatch.config import Config
from subwatch.notifiers import NotificationDispatcher
from subwatch.reminder_service import ReminderService
from subwatch.storage import Storage, Subscription
from subwatch.subscription_service import SubscriptionService

SHANGHAI = ZoneInfo("Asia/Shanghai")


# ═══════════════════════════════════════════════════════════
# 配置 Fixtures
# ═══════════════════════════════════════════════════════════


@pytest.fixture
def test_config(tmp_path: Path) -> Config:
    """创建测试配置（启用全部通知渠道）。"""
    return Config(
        telegram_token="test_telegram_token",
        allowed_user_ids=(123456789, 987654321),
        enabled_notifiers=("notifyx", "telegram", "webhook", "wechatbot", "email"),
        telegram_chat_id="10086",
        notifyx_api_key="test_notifyx_key",
        webhook_url="https://hooks.example.com/notify",
        wechatbot_webhook="https://qyapi.weixin.qq.com/cgi-bin/webhook/send?key=test",
        resend_api_key="test_resend_key",
        email_from="bot@example.com",
        email_from_name="Subwatch",
        email_to="me@example.com",
        timezone=SHANGHAI,
        db_path=str(tmp_path / "subwatch.db"),
    )


@pytest.fixture
def test_config_no_whitelist(tmp_path: Path) -> Config:
    """创建无白名单限制、只启用 NotifyX 的测试配置。"""
    return Config(
        telegram_token="test_telegram_token",
        allowed_user_ids=(),
        enabled_notifiers=("notifyx",),
        notifyx_api_key="test_notifyx_key",
        timezone=SHANGHAI,
        db_path=str(tmp_path / "subwatch.db"),
    )


# ═══════════════════════════════════════════════════════════
# 存储 / 服务 Fixtures
# ═══════════════════════════════════════════════════════════


@pytest.fixture
def storage(tmp_path: Path) -> Storage:
    """基于临时目录的 SQLite 存储。"""
    return Storage(tmp_path / "subwatch.db")


@pytest.fixture
def subscription_service(storage: Storage, test_config: Config) -> SubscriptionService:
    return SubscriptionService(storage, test_config)


@pytest.fixture
def mock_dispatcher() -> MagicMock:
    """只记录调用、不真正发送的通知分发器。"""
    dispatcher = MagicMock(spec=NotificationDispatcher)
    dispatcher.send_all.return_value = {"notifyx": True}
    return dispatcher


@pytest.fixture
def reminder_service(storage: Storage, mock_dispatcher: MagicMock, test_config: Config) -> ReminderService:
    return ReminderService(storage, mock_dispatcher, test_config)


@pytest.fixture
def dispatcher(test_config: Config) -> NotificationDispatcher:
    """真实的通知分发器，配合 respx 使用。"""
    return NotificationDispatcher(test_config, httpx.Client())


@pytest.fixture
def notify_api_mock() -> respx.MockRouter:
    """创建通知渠道 API 的 mock 路由。"""
    with respx.mock(assert_all_called=False) as respx_mock:
        yield respx_mock


@pytest.fixture
def make_subscription(storage: Storage):
    """工厂函数：向存储中写入一条订阅。"""

    def _create(
        name: str = "Netflix",
        expiry_date: date = date(2024, 3, 1),
        **kwargs,
    ) -> Subscription:
        return storage.add_subscription(Subscription(id=0, name=name, expiry_date=expiry_date, **kwargs))

    return _create


@pytest.fixture
def shanghai_now():
    """工厂函数：创建上海时区的 datetime。"""

    def _create(*args) -> datetime:
        return datetime(*args, tzinfo=SHANGHAI)

    return _create


# ═══════════════════════════════════════════════════════════
# Telegram Fixtures
# ═══════════════════════════════════════════════════════════


@pytest.fixture
def mock_telegram_user() -> MagicMock:
    """创建模拟 Telegram 用户。"""
    user = MagicMock()
    user.id = 123456789
    user.username = "test_user"
    user.first_name = "Test"
    return user


@pytest.fixture
def create_mock_update(mock_telegram_user: MagicMock):
    """工厂函数：创建模拟 Update 对象。"""

    def _create(text: str = "", user: MagicMock | None = None):
        message = MagicMock()
        message.text = text
        message.reply_text = AsyncMock()

        update = MagicMock()
        update.message = message
        update.effective_user = user or mock_telegram_user
        return update

    return _create


@pytest.fixture
def create_mock_context():
    """工厂函数：创建带命令参数的模拟 Context。"""

    def _create(*args: str) -> MagicMock:
        context = MagicMock()
        context.args = list(args)
        context.bot = AsyncMock()
        return context

    return _create
