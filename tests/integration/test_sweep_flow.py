"""
到期检查端到端流程集成测试

使用真实的存储、服务和通知分发器，只 mock 外部 HTTP 接口。
"""

from __future__ import annotations

import json
from datetime import date

import pytest
import respx
from httpx import Response

from subwatch.config import Config
from subwatch.notifiers import NotificationDispatcher
from subwatch.reminder_service import ReminderService
from subwatch.scheduler import ExpiryScheduler
from subwatch.storage import Storage
from subwatch.subscription_service import SubscriptionInput, SubscriptionService


@pytest.fixture
def setup_notify_api():
    """
    设置全部通知渠道的 API Mock。

    返回可以用于验证请求的路由对象。
    """
    with respx.mock(assert_all_called=False) as mock:
        routes = {
            "telegram": mock.post("https://api.telegram.org/bottest_telegram_token/sendMessage").mock(
                return_value=Response(200, json={"ok": True, "result": {"message_id": 1}})
            ),
            "notifyx": mock.post("https://www.notifyx.cn/api/v1/send/test_notifyx_key").mock(
                return_value=Response(200, json={"status": "queued"})
            ),
            "webhook": mock.post("https://hooks.example.com/notify").mock(
                return_value=Response(200, text="ok")
            ),
            "wechatbot": mock.post(url__startswith="https://qyapi.weixin.qq.com/cgi-bin/webhook/send").mock(
                return_value=Response(200, json={"errcode": 0, "errmsg": "ok"})
            ),
            "email": mock.post("https://api.resend.com/emails").mock(
                return_value=Response(200, json={"id": "email_123"})
            ),
        }
        yield routes


@pytest.fixture
def services(test_config: Config):
    storage = Storage(test_config.db_path)
    dispatcher = NotificationDispatcher(test_config)
    return (
        storage,
        SubscriptionService(storage, test_config),
        ReminderService(storage, dispatcher, test_config),
    )


@pytest.mark.integration
class TestSweepFlow:
    """测试从新建订阅到发出提醒的完整流程。"""

    def test_full_sweep(self, services, setup_notify_api, shanghai_now) -> None:
        storage, subscription_service, reminder_service = services
        today = date(2024, 2, 5)

        netflix = subscription_service.create(
            SubscriptionInput("Netflix", date(2024, 2, 15), custom_type="Video"), today=today
        ).subscription
        spotify = subscription_service.create(SubscriptionInput("Spotify", date(2024, 2, 8)), today=today).subscription
        red_packet = subscription_service.create(
            SubscriptionInput("春节红包", date(2024, 2, 10), period_unit="year", use_lunar=True, reminder_days=10),
            today=today,
        ).subscription
        subscription_service.create(SubscriptionInput("域名", date(2024, 12, 1), period_unit="year"), today=today)

        # 农历订阅过期后顺延到下一个春节
        report = reminder_service.check_expiring(shanghai_now(2024, 2, 11, 9, 0))

        assert report.checked == 4
        assert storage.get_subscription(red_packet.id).expiry_date == date(2025, 1, 29)
        assert storage.get_subscription(spotify.id).expiry_date == date(2024, 3, 8)
        assert [(r.subscription.id, r.days_remaining) for r in report.reminders] == [(netflix.id, 4)]
        assert report.channels == {
            "notifyx": True,
            "telegram": True,
            "webhook": True,
            "wechatbot": True,
            "email": True,
        }
        assert all(route.call_count == 1 for route in setup_notify_api.values())

        payload = json.loads(setup_notify_api["telegram"].calls[0].request.content)
        assert payload["chat_id"] == "10086"
        assert "Netflix" in payload["text"]

    def test_one_channel_failure_does_not_block_others(self, services, setup_notify_api, shanghai_now) -> None:
        _, subscription_service, reminder_service = services
        subscription_service.create(SubscriptionInput("Netflix", date(2024, 3, 22)), today=date(2024, 3, 20))
        setup_notify_api["notifyx"].mock(return_value=Response(500, json={"message": "boom"}))

        report = reminder_service.check_expiring(shanghai_now(2024, 3, 20, 9, 0))

        assert report.channels["notifyx"] is False
        assert report.channels["email"] is True
        assert report.notified

    @pytest.mark.asyncio
    async def test_scheduler_run(self, services, setup_notify_api, test_config: Config, shanghai_now) -> None:
        _, subscription_service, reminder_service = services
        subscription_service.create(SubscriptionInput("Netflix", date(2024, 3, 22)), today=date(2024, 3, 20))
        scheduler = ExpiryScheduler(reminder_service, test_config)

        report = await scheduler.tick(shanghai_now(2024, 3, 20, 8, 30))

        assert len(report.reminders) == 1
        assert setup_notify_api["notifyx"].call_count == 1
