"""
通知渠道客户端

封装所有外发通知：
- Telegram Bot API
- NotifyX
- 自定义 Webhook
- 企业微信群机器人
- Resend 邮件
"""

from __future__ import annotations

import html
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from .config import Config
from .messages import format_time, strip_markdown

logger = logging.getLogger(__name__)


class NotifierError(Exception):
    """通知发送失败"""

    pass


class BaseNotifier:
    """通知渠道基类，子类实现 send()"""

    channel = "base"

    def __init__(self, config: Config, session: Optional[httpx.Client] = None):
        self.config = config
        self._owns_session = session is None
        self.session = session or httpx.Client(timeout=15.0)

    def __del__(self):
        """清理 session"""
        if getattr(self, "_owns_session", False) and hasattr(self, "session"):
            self.session.close()

    def is_configured(self) -> bool:
        raise NotImplementedError

    def send(self, title: str, content: str) -> None:
        raise NotImplementedError

    def _handle_response(self, resp: httpx.Response, action: str) -> Any:
        """处理 API 响应，记录错误并转换为自定义异常；返回解析后的 JSON（无法解析时为 None）"""
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"[{self.channel}] {action} 失败: {e}")
            try:
                message = resp.json().get("message", str(e))
            except (ValueError, AttributeError):
                message = str(e)
            raise NotifierError(f"{action} 失败: {message}") from e

        try:
            return resp.json()
        except ValueError:
            return None


class TelegramNotifier(BaseNotifier):
    """通过 Bot API sendMessage 推送"""

    channel = "telegram"
    base_url = "https://api.telegram.org"

    def is_configured(self) -> bool:
        return bool(self.config.telegram_token and self.config.telegram_chat_id)

    def send(self, title: str, content: str) -> None:
        url = f"{self.base_url}/bot{self.config.telegram_token}/sendMessage"
        payload = {
            "chat_id": self.config.telegram_chat_id,
            "text": f"*{title}*\n\n{content}",
            "parse_mode": "Markdown",
        }

        logger.info(f"[telegram] 发送通知到 Chat ID: {self.config.telegram_chat_id}")
        resp = self.session.post(url, json=payload)
        result = self._handle_response(resp, "Telegram 推送")
        if not (result or {}).get("ok"):
            raise NotifierError(f"Telegram 推送失败: {result}")


class NotifyXNotifier(BaseNotifier):
    channel = "notifyx"
    base_url = "https://www.notifyx.cn/api/v1/send"

    def is_configured(self) -> bool:
        return bool(self.config.notifyx_api_key)

    def send(self, title: str, content: str, description: str = "Subscription Reminder") -> None:
        url = f"{self.base_url}/{self.config.notifyx_api_key}"
        payload = {
            "title": title,
            "content": f"## {title}\n\n{content}",
            "description": description,
        }

        logger.info(f"[notifyx] 发送通知: {title}")
        resp = self.session.post(url, json=payload)
        result = self._handle_response(resp, "NotifyX 推送")
        if (result or {}).get("status") != "queued":
            raise NotifierError(f"NotifyX 推送失败: {result}")


class WebhookNotifier(BaseNotifier):
    """
    自定义 Webhook

    WEBHOOK_HEADERS 为 JSON 对象，会合并到默认请求头；
    WEBHOOK_TEMPLATE 为 JSON 模板，支持 {{title}}、{{content}}、{{timestamp}} 占位符。
    两者格式错误时记录告警并使用默认值。
    """

    channel = "webhook"

    def is_configured(self) -> bool:
        return bool(self.config.webhook_url)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.webhook_headers:
            try:
                custom = json.loads(self.config.webhook_headers)
                if not isinstance(custom, dict):
                    raise ValueError("headers 必须是 JSON 对象")
                headers.update({str(k): str(v) for k, v in custom.items()})
            except ValueError:
                logger.warning("[webhook] 自定义请求头格式无效，使用默认请求头")
        return headers

    def build_body(self, title: str, content: str, timestamp: str) -> Any:
        default = {"title": title, "content": content, "timestamp": timestamp}
        if not self.config.webhook_template:
            return default

        try:
            template = json.loads(self.config.webhook_template)
        except ValueError:
            logger.warning("[webhook] 消息模板格式无效，使用默认格式")
            return default
        return _fill_template(template, {"title": title, "content": content, "timestamp": timestamp})

    def send(self, title: str, content: str) -> None:
        content = strip_markdown(content)
        timestamp = format_time(tz=self.config.timezone, fmt="datetime")
        body = self.build_body(title, content, timestamp)

        logger.info(f"[webhook] 发送通知到: {self.config.webhook_url}")
        resp = self.session.request(
            self.config.webhook_method or "POST",
            self.config.webhook_url,
            headers=self._headers(),
            content=json.dumps(body, ensure_ascii=False).encode("utf-8"),
        )
        self._handle_response(resp, "Webhook 推送")


def _fill_template(node: Any, values: dict[str, str]) -> Any:
    """递归替换模板中字符串里的 {{key}} 占位符"""
    if isinstance(node, str):
        for key, val in values.items():
            node = node.replace("{{" + key + "}}", val)
        return node
    if isinstance(node, dict):
        return {k: _fill_template(v, values) for k, v in node.items()}
    if isinstance(node, list):
        return [_fill_template(v, values) for v in node]
    return node


class WechatBotNotifier(BaseNotifier):
    """企业微信群机器人"""

    channel = "wechatbot"

    def is_configured(self) -> bool:
        return bool(self.config.wechatbot_webhook)

    def build_message(self, title: str, content: str) -> dict[str, Any]:
        msg_type = self.config.wechatbot_msg_type or "text"
        if msg_type == "markdown":
            return {"msgtype": "markdown", "markdown": {"content": f"# {title}\n\n{content}"}}

        message: dict[str, Any] = {"msgtype": "text", "text": {"content": f"{title}\n\n{content}"}}
        # @ 提醒只对 text 消息生效
        if self.config.wechatbot_at_all:
            message["text"]["mentioned_list"] = ["@all"]
        else:
            mobiles = [m.strip() for m in self.config.wechatbot_at_mobiles.split(",") if m.strip()]
            if mobiles:
                message["text"]["mentioned_mobile_list"] = mobiles
        return message

    def send(self, title: str, content: str) -> None:
        message = self.build_message(title, strip_markdown(content))

        logger.info(f"[wechatbot] 发送通知到: {self.config.wechatbot_webhook}")
        resp = self.session.post(self.config.wechatbot_webhook, json=message)
        result = self._handle_response(resp, "企业微信机器人推送")
        if not result or result.get("errcode") != 0:
            raise NotifierError(f"企业微信机器人推送失败: {result}")


EMAIL_HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>{title}</title>
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background-color: #f5f5f5;">
    <div style="max-width: 600px; margin: 0 auto; background-color: #ffffff;">
        <div style="background: #667eea; padding: 30px 20px; text-align: center;">
            <h1 style="color: white; margin: 0; font-size: 24px;">📅 {title}</h1>
        </div>
        <div style="padding: 30px 20px;">
            <div style="background-color: #e3f2fd; padding: 15px; border-radius: 8px;">
                {body}
            </div>
            <p style="color: #666;">This email was sent automatically by the subscription management system.</p>
        </div>
        <div style="background-color: #f8f9fa; padding: 20px; text-align: center; color: #666; font-size: 14px;">
            <p>Subscription Management System | Sent at: {sent_at}</p>
        </div>
    </div>
</body>
</html>"""


class EmailNotifier(BaseNotifier):
    """通过 Resend API 发送邮件"""

    channel = "email"
    api_url = "https://api.resend.com/emails"

    def is_configured(self) -> bool:
        return bool(self.config.resend_api_key and self.config.email_from and self.config.email_to)

    def send(self, title: str, content: str) -> None:
        content = strip_markdown(content)
        html_body = EMAIL_HTML_TEMPLATE.format(
            title=html.escape(title),
            body=html.escape(content).replace("\n", "<br>"),
            sent_at=format_time(tz=self.config.timezone),
        )
        sender = (
            f"{self.config.email_from_name} <{self.config.email_from}>"
            if self.config.email_from_name
            else self.config.email_from
        )
        payload = {
            "from": sender,
            "to": self.config.email_to,
            "subject": title,
            "html": html_body,
            "text": content,
        }

        logger.info(f"[email] 发送邮件到: {self.config.email_to}")
        resp = self.session.post(
            self.api_url,
            json=payload,
            headers={"Authorization": f"Bearer {self.config.resend_api_key}"},
        )
        result = self._handle_response(resp, "邮件发送")
        if not (result or {}).get("id"):
            raise NotifierError(f"邮件发送失败: {result}")
        logger.info(f"[email] 邮件发送成功, ID: {result['id']}")


# 渠道测试通知：(显示名称, 正文)
CHANNEL_TEST_MESSAGES = {
    "telegram": ("Telegram", "This is a test notification to verify that the Telegram notification function is working correctly."),
    "notifyx": ("NotifyX", "This is a test notification to verify that the NotifyX notification function is working correctly."),
    "webhook": ("Webhook", "This is a test notification to verify that the webhook notification function is working correctly."),
    "wechatbot": ("Enterprise WeChat Bot", "This is a test notification to verify that the Enterprise WeChat Bot function is working correctly."),
    "email": ("Email", "This is a test notification to verify that the email notification function is working correctly."),
}

TEST_TITLE = "Test Notification"


@dataclass
class ChannelTestResult:
    """单个渠道测试通知的结果"""
    channel: str
    success: bool
    message: str


NOTIFIER_CLASSES: dict[str, type[BaseNotifier]] = {
    "notifyx": NotifyXNotifier,
    "telegram": TelegramNotifier,
    "webhook": WebhookNotifier,
    "wechatbot": WechatBotNotifier,
    "email": EmailNotifier,
}


class NotificationDispatcher:
    """把同一条通知发到所有已启用的渠道"""

    def __init__(self, config: Config, session: Optional[httpx.Client] = None):
        self.config = config
        self.session = session or httpx.Client(timeout=15.0)
        self.notifiers = [
            NOTIFIER_CLASSES[name](config, self.session)
            for name in config.enabled_notifiers
            if name in NOTIFIER_CLASSES
        ]

    def send_all(self, title: str, content: str, log_prefix: str = "[Cron Job]") -> dict[str, bool]:
        """
        发送到所有渠道。

        单个渠道失败只记录日志，不影响其他渠道。

        Returns:
            {渠道名: 是否成功}
        """
        if not self.notifiers:
            logger.info(f"{log_prefix} 没有启用任何通知渠道")
            return {}

        results: dict[str, bool] = {}
        for notifier in self.notifiers:
            if not notifier.is_configured():
                logger.error(f"{log_prefix} {notifier.channel} 未配置完整，跳过")
                results[notifier.channel] = False
                continue

            try:
                notifier.send(title, content)
                results[notifier.channel] = True
                logger.info(f"{log_prefix} {notifier.channel} 通知发送成功")
            except (NotifierError, httpx.HTTPError) as e:
                logger.error(f"{log_prefix} {notifier.channel} 通知发送失败: {e}")
                results[notifier.channel] = False
        return results

    def send_test(self, channel: str) -> ChannelTestResult:
        """
        向指定渠道发送一条固定的测试通知，不要求该渠道已启用。

        Returns:
            ChannelTestResult，失败时 message 提示检查配置
        """
        channel = channel.strip().lower()
        if channel not in NOTIFIER_CLASSES:
            return ChannelTestResult(channel, False, f"Unknown notification channel: {channel}")

        label, text = CHANNEL_TEST_MESSAGES[channel]
        failed = f"Failed to send {label} notification, please check your configuration"
        notifier = NOTIFIER_CLASSES[channel](self.config, self.session)
        if not notifier.is_configured():
            logger.error(f"[Test] {channel} 未配置完整")
            return ChannelTestResult(channel, False, failed)

        content = f"{text}\n\nSent at: {format_time(tz=self.config.timezone)}"
        try:
            if isinstance(notifier, NotifyXNotifier):
                notifier.send(TEST_TITLE, content, description="Test NotifyX notification function")
            else:
                notifier.send(TEST_TITLE, content)
        except (NotifierError, httpx.HTTPError) as e:
            logger.error(f"[Test] {channel} 测试通知发送失败: {e}")
            return ChannelTestResult(channel, False, failed)

        logger.info(f"[Test] {channel} 测试通知发送成功")
        return ChannelTestResult(channel, True, f"{label} notification sent successfully")
