"""
CLI 单元测试

使用 typer 的 CliRunner 在临时目录中执行命令。
"""

from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest
import respx
from httpx import Response
from typer.testing import CliRunner

from subwatch.cli import app
from subwatch.lunar.lunar_calendar import solar_date_to_lunar
from subwatch.storage import Storage

runner = CliRunner()


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """切换到临时目录，并让数据库落在其中。"""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SUBWATCH_DB", str(tmp_path / "data" / "subwatch.db"))
    monkeypatch.setenv("ENABLED_NOTIFIERS", "notifyx")
    return tmp_path


def _storage(workdir: Path) -> Storage:
    return Storage(workdir / "data" / "subwatch.db")


@pytest.mark.unit
class TestSubscriptionCommands:
    """测试订阅管理命令。"""

    def test_add_and_list(self, workdir: Path) -> None:
        result = runner.invoke(app, ["add", "Netflix", "2099-01-01", "--period", "1y", "--type", "Video"])
        assert result.exit_code == 0, result.output
        assert "已添加订阅" in result.output

        saved = _storage(workdir).list_subscriptions()
        assert len(saved) == 1
        assert saved[0].period_unit == "year"
        assert saved[0].custom_type == "Video"

        result = runner.invoke(app, ["list"])
        assert result.exit_code == 0
        assert "Netflix" in result.output

    def test_add_with_start(self, workdir: Path) -> None:
        """测试只给开始日期时到期日按周期推算。"""
        result = runner.invoke(app, ["add", "健身卡", "--start", "2099-01-31", "--period", "1m"])
        assert result.exit_code == 0, result.output

        sub = _storage(workdir).list_subscriptions()[0]
        assert sub.start_date == date(2099, 1, 31)
        assert sub.expiry_date == date(2099, 2, 28)

    def test_add_with_lunar_start(self, workdir: Path) -> None:
        result = runner.invoke(app, ["add", "春节红包", "--start", "2023-01-22", "--period", "1y", "--lunar"])
        assert result.exit_code == 0, result.output

        sub = _storage(workdir).list_subscriptions()[0]
        lunar = solar_date_to_lunar(sub.expiry_date)
        assert sub.expiry_date >= date(2024, 2, 10)
        assert (lunar.month, lunar.day, lunar.is_leap) == (1, 1, False)

    def test_add_without_expiry_or_start(self, workdir: Path) -> None:
        result = runner.invoke(app, ["add", "Netflix"])
        assert result.exit_code != 0
        assert _storage(workdir).list_subscriptions() == []

    def test_add_invalid_date(self, workdir: Path) -> None:
        result = runner.invoke(app, ["add", "Netflix", "2099/01/01"])
        assert result.exit_code != 0
        assert _storage(workdir).list_subscriptions() == []

    def test_add_lunar_out_of_range(self, workdir: Path) -> None:
        result = runner.invoke(app, ["add", "Far", "2101-01-01", "--lunar"])
        assert result.exit_code == 1
        assert "Lunar date out of supported range" in result.output

    def test_list_empty(self, workdir: Path) -> None:
        result = runner.invoke(app, ["list"])
        assert result.exit_code == 0
        assert "还没有任何订阅" in result.output

    def test_show(self, workdir: Path) -> None:
        runner.invoke(app, ["add", "春节红包", "2099-01-21", "--period", "1y", "--lunar"])
        sub_id = _storage(workdir).list_subscriptions()[0].id

        result = runner.invoke(app, ["show", str(sub_id)])
        assert result.exit_code == 0
        assert "春节红包" in result.output
        assert "农历" in result.output

    def test_show_missing(self, workdir: Path) -> None:
        result = runner.invoke(app, ["show", "999"])
        assert result.exit_code == 1

    def test_edit(self, workdir: Path) -> None:
        runner.invoke(app, ["add", "Netflix", "2099-01-01"])
        sub_id = _storage(workdir).list_subscriptions()[0].id

        result = runner.invoke(app, ["edit", str(sub_id), "--name", "Netflix 4K", "--no-auto-renew"])
        assert result.exit_code == 0, result.output

        sub = _storage(workdir).get_subscription(sub_id)
        assert sub.name == "Netflix 4K"
        assert sub.auto_renew is False
        assert sub.period_unit == "month"

    def test_edit_start_recalculates_expiry(self, workdir: Path) -> None:
        runner.invoke(app, ["add", "Netflix", "2099-01-01"])
        sub_id = _storage(workdir).list_subscriptions()[0].id

        result = runner.invoke(app, ["edit", str(sub_id), "--start", "2099-03-15", "--period", "1y"])
        assert result.exit_code == 0, result.output

        sub = _storage(workdir).get_subscription(sub_id)
        assert sub.start_date == date(2099, 3, 15)
        assert sub.expiry_date == date(2100, 3, 15)

    def test_toggle_and_remove(self, workdir: Path) -> None:
        runner.invoke(app, ["add", "Netflix", "2099-01-01"])
        sub_id = _storage(workdir).list_subscriptions()[0].id

        result = runner.invoke(app, ["toggle", str(sub_id)])
        assert result.exit_code == 0
        assert _storage(workdir).get_subscription(sub_id).is_active is False

        result = runner.invoke(app, ["remove", str(sub_id), "--yes"])
        assert result.exit_code == 0
        assert _storage(workdir).get_subscription(sub_id) is None

    def test_remove_cancelled(self, workdir: Path) -> None:
        runner.invoke(app, ["add", "Netflix", "2099-01-01"])
        sub_id = _storage(workdir).list_subscriptions()[0].id

        runner.invoke(app, ["remove", str(sub_id)], input="n\n")
        assert _storage(workdir).get_subscription(sub_id) is not None


@pytest.mark.unit
class TestUtilityCommands:
    """测试农历预览、检查和运行状态命令。"""

    def test_lunar(self, workdir: Path) -> None:
        result = runner.invoke(app, ["lunar", "2023-01-22"])
        assert result.exit_code == 0
        assert "癸卯年正月初一" in result.output

    def test_check_without_subscriptions(self, workdir: Path) -> None:
        result = runner.invoke(app, ["check"])
        assert result.exit_code == 0
        assert "检查 0 个订阅" in result.output

    def test_test_missing(self, workdir: Path) -> None:
        result = runner.invoke(app, ["test", "999"])
        assert result.exit_code == 1
        assert "Subscription not found" in result.output

    @respx.mock
    def test_test_channel(self, workdir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NOTIFYX_API_KEY", "cli_key")
        route = respx.post("https://www.notifyx.cn/api/v1/send/cli_key").mock(
            return_value=Response(200, json={"status": "queued"})
        )

        result = runner.invoke(app, ["test-channel", "notifyx"])

        assert result.exit_code == 0, result.output
        assert "NotifyX notification sent successfully" in result.output
        assert route.called

    def test_test_channel_unknown(self, workdir: Path) -> None:
        result = runner.invoke(app, ["test-channel", "weixin"])
        assert result.exit_code == 1
        assert "Unknown notification channel" in result.output

    def test_status(self, workdir: Path) -> None:
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Subwatch Status" in result.output
        assert "未运行" in result.output

    def test_start_without_config(self, workdir: Path) -> None:
        result = runner.invoke(app, ["start"])
        assert result.exit_code == 1
        assert "subwatch init" in result.output

    def test_stop_when_not_running(self, workdir: Path) -> None:
        result = runner.invoke(app, ["stop"])
        assert result.exit_code == 0
        assert "没有运行中的 Bot" in result.output

    def test_logs_missing(self, workdir: Path) -> None:
        result = runner.invoke(app, ["logs"])
        assert result.exit_code == 0
        assert "日志文件不存在" in result.output


@pytest.mark.unit
class TestInit:
    """测试交互式配置。"""

    def test_init_writes_env(self, workdir: Path) -> None:
        answers = "\n".join(["tg_token", "", "telegram", "10086", "", "", "y"]) + "\n"

        result = runner.invoke(app, ["init"], input=answers)

        assert result.exit_code == 0, result.output
        content = (workdir / ".subwatch" / ".env").read_text(encoding="utf-8")
        assert "TELEGRAM_BOT_TOKEN=tg_token" in content
        assert "ENABLED_NOTIFIERS=telegram" in content
        assert "TG_CHAT_ID=10086" in content
        assert "SUBWATCH_TZ=Asia/Shanghai" in content
        assert "NOTIFY_HOUR=8" in content
        assert "SHOW_LUNAR=true" in content
