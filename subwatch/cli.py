from __future__ import annotations

import os
import subprocess
import sys
import time
from datetime import date, datetime
from pathlib import Path
from typing import Optional

import psutil
import typer
from dotenv import dotenv_values
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from .config import DEFAULT_TIMEZONE, NOTIFIER_CHANNELS, Config
from .lunar.lunar_period import Period
from .messages import format_lunar_preview, lunar_text
from .notifiers import NotificationDispatcher
from .reminder_service import ReminderService
from .renewal import days_left
from .storage import Storage, Subscription
from .subscription_service import SubscriptionInput, SubscriptionService

APP_NAME = "subwatch"

app = typer.Typer(help="Subwatch: 订阅到期提醒，支持农历周期续费")
console = Console()


def _repo_paths(root: Path | None = None) -> dict[str, Path]:
    root = (root or Path.cwd()).resolve()
    app_dir = root / f".{APP_NAME}"
    return {
        "root": root,
        "app_dir": app_dir,
        "env": app_dir / ".env",
        "pid": app_dir / "bot.pid",
        "log": app_dir / "bot.log",
    }


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    return psutil.pid_exists(pid)


def _check_running(pid_file: Path) -> Optional[int]:
    if not pid_file.exists():
        return None

    try:
        pid = int(pid_file.read_text().strip())
    except ValueError:
        return None

    return pid if _pid_alive(pid) else None


def _load_env_file(env_path: Path) -> dict[str, str]:
    if not env_path.exists():
        return {}
    values = dotenv_values(env_path)
    return {k: v for k, v in values.items() if v is not None}


def _load_config() -> Config:
    paths = _repo_paths()
    if paths["env"].exists():
        return Config.from_env(env_path=paths["env"])
    return Config.from_env()


def _services() -> tuple[Config, SubscriptionService, ReminderService]:
    config = _load_config()
    storage = Storage(config.db_path)
    dispatcher = NotificationDispatcher(config)
    return (
        config,
        SubscriptionService(storage, config),
        ReminderService(storage, dispatcher, config),
    )


def _parse_date_option(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"日期格式错误: {value}，应为 YYYY-MM-DD")


def _parse_period_option(value: str) -> Period:
    try:
        return Period.parse(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def _get_or_exit(service: SubscriptionService, subscription_id: int) -> Subscription:
    sub = service.get(subscription_id)
    if sub is None:
        console.print(f"[red]❌ 订阅 #{subscription_id} 不存在[/red]")
        raise typer.Exit(1)
    return sub


def _days_text(days: int) -> str:
    if days < 0:
        return f"[red]已过期 {abs(days)} 天[/red]"
    if days == 0:
        return "[yellow]今天到期[/yellow]"
    return f"{days} 天"


# ── 配置 ─────────────────────────────────────────────────


def _prompt_config(existing: dict[str, str]) -> dict[str, str]:
    data: dict[str, str] = {}
    data["TELEGRAM_BOT_TOKEN"] = Prompt.ask(
        "🤖 Telegram Bot Token (运行 Bot 时必填)", default=existing.get("TELEGRAM_BOT_TOKEN", "")
    )
    data["ALLOWED_USER_IDS"] = Prompt.ask(
        "👤 允许的用户 ID (逗号分隔，可选)", default=existing.get("ALLOWED_USER_IDS", "")
    )

    while True:
        notifiers = Prompt.ask(
            f"📣 启用的通知渠道 ({'/'.join(NOTIFIER_CHANNELS)}，逗号分隔)",
            default=existing.get("ENABLED_NOTIFIERS", "notifyx"),
        )
        chosen = [n.strip().lower() for n in notifiers.split(",") if n.strip()]
        unknown = [n for n in chosen if n not in NOTIFIER_CHANNELS]
        if unknown:
            console.print(f"[red]❌ 未知的通知渠道: {', '.join(unknown)}[/red]")
            continue
        data["ENABLED_NOTIFIERS"] = ",".join(chosen)
        break

    channel_keys = {
        "telegram": [("TG_CHAT_ID", "💬 提醒发往的 Telegram Chat ID")],
        "notifyx": [("NOTIFYX_API_KEY", "🔑 NotifyX API Key")],
        "webhook": [
            ("WEBHOOK_URL", "🌐 Webhook 地址"),
            ("WEBHOOK_METHOD", "📮 请求方法"),
        ],
        "wechatbot": [
            ("WECHATBOT_WEBHOOK", "🤖 企业微信机器人 Webhook"),
            ("WECHATBOT_MSG_TYPE", "📝 消息类型 (text/markdown)"),
        ],
        "email": [
            ("RESEND_API_KEY", "🔑 Resend API Key"),
            ("EMAIL_FROM", "📤 发件地址"),
            ("EMAIL_FROM_NAME", "🏷️ 发件人名称"),
            ("EMAIL_TO", "📥 收件地址"),
        ],
    }
    defaults = {"WEBHOOK_METHOD": "POST", "WECHATBOT_MSG_TYPE": "text"}
    for channel in chosen:
        for key, label in channel_keys[channel]:
            data[key] = Prompt.ask(label, default=existing.get(key, defaults.get(key, "")))

    console.print("\n[bold]以下是可选的高级配置 (按回车使用默认值)[/bold]")
    data["SUBWATCH_TZ"] = Prompt.ask("🕒 时区", default=existing.get("SUBWATCH_TZ", DEFAULT_TIMEZONE))
    data["NOTIFY_HOUR"] = Prompt.ask("⏰ 每天几点后发送提醒", default=existing.get("NOTIFY_HOUR", "8"))
    show_lunar = Confirm.ask(
        "🌙 提醒中显示农历日期?",
        default=existing.get("SHOW_LUNAR", "false").lower() == "true",
    )
    data["SHOW_LUNAR"] = "true" if show_lunar else "false"
    return data


def _write_env(env_path: Path, data: dict[str, str]) -> None:
    lines = ["# Subwatch Configuration"]
    lines.extend(f"{key}={value}" for key, value in data.items())
    lines.append("")
    env_path.parent.mkdir(parents=True, exist_ok=True)
    env_path.write_text("\n".join(lines), encoding="utf-8")


@app.command()
def init(force: bool = typer.Option(False, "--force", "-f", help="强制覆盖现有配置")):
    """在当前目录生成配置（.subwatch/.env）"""
    paths = _repo_paths()
    existing = _load_env_file(paths["env"])
    if existing and not force:
        if not Confirm.ask(f"配置文件 {paths['env']} 已存在，是否更新?", default=False):
            console.print("[yellow]已取消[/yellow]")
            raise typer.Exit()

    data = _prompt_config(existing)
    _write_env(paths["env"], data)
    console.print(f"[bold green]✅ 配置已写入 {paths['env']}[/bold green]")
    console.print("使用 [bold]subwatch add[/bold] 添加订阅，[bold]subwatch start[/bold] 启动 Bot")


# ── 订阅管理 ─────────────────────────────────────────────


@app.command()
def add(
    name: str = typer.Argument(..., help="订阅名称"),
    expiry: Optional[str] = typer.Argument(None, help="到期日 YYYY-MM-DD，省略时按 --start 推算"),
    start: Optional[str] = typer.Option(None, "--start", "-s", help="开始日期 YYYY-MM-DD"),
    period: str = typer.Option("1m", "--period", "-p", help="续费周期，如 30d / 1m / 1y"),
    custom_type: str = typer.Option("", "--type", "-t", help="订阅类型"),
    reminder_days: int = typer.Option(7, "--reminder-days", "-r", help="提前几天提醒"),
    notes: str = typer.Option("", "--notes", help="备注"),
    lunar: bool = typer.Option(False, "--lunar", help="按农历周期续费"),
    auto_renew: bool = typer.Option(True, "--auto-renew/--no-auto-renew", help="到期后自动顺延"),
):
    """添加订阅（给出到期日，或用 --start 按开始日期加一个周期推算）"""
    if expiry is None and start is None:
        raise typer.BadParameter("请提供到期日或 --start 开始日期")
    expiry_date = _parse_date_option(expiry) if expiry else None
    start_date = _parse_date_option(start) if start else None
    parsed = _parse_period_option(period)
    _, service, _ = _services()

    result = service.create(
        SubscriptionInput(
            name=name,
            expiry_date=expiry_date,
            start_date=start_date,
            custom_type=custom_type,
            period_value=parsed.value,
            period_unit=parsed.unit.value,
            reminder_days=reminder_days,
            notes=notes,
            auto_renew=auto_renew,
            use_lunar=lunar,
        )
    )
    if not result.success:
        console.print(f"[red]❌ 添加失败: {result.message}[/red]")
        raise typer.Exit(1)

    sub = result.subscription
    console.print(f"[bold green]✅ 已添加订阅 #{sub.id} {sub.name}，到期日 {sub.expiry_date}[/bold green]")


@app.command("list")
def list_command(active: bool = typer.Option(False, "--active", "-a", help="只显示启用的订阅")):
    """查看订阅列表"""
    config, service, _ = _services()
    subscriptions = service.list(active_only=active)
    if not subscriptions:
        console.print("[yellow]还没有任何订阅[/yellow]")
        return

    now = datetime.now(tz=config.timezone)
    table = Table(title="订阅列表")
    table.add_column("ID", justify="right")
    table.add_column("名称")
    table.add_column("类型")
    table.add_column("到期日")
    table.add_column("周期")
    table.add_column("剩余")
    table.add_column("状态")

    for sub in subscriptions:
        flags = []
        if sub.use_lunar:
            flags.append("🌙")
        if sub.auto_renew:
            flags.append("🔁")
        table.add_row(
            str(sub.id),
            sub.name,
            sub.custom_type or "-",
            sub.expiry_date.isoformat(),
            f"{Period(sub.period_value, sub.period_unit)} {' '.join(flags)}".strip(),
            _days_text(days_left(sub.expiry_date, use_lunar=sub.use_lunar, now=now)) if sub.is_active else "-",
            "🟢 启用" if sub.is_active else "⚪️ 停用",
        )
    console.print(table)


@app.command()
def show(subscription_id: int = typer.Argument(..., help="订阅 ID")):
    """查看订阅详情"""
    config, service, _ = _services()
    sub = _get_or_exit(service, subscription_id)
    now = datetime.now(tz=config.timezone)

    body = f"""
    名称: {sub.name}
    类型: {sub.custom_type or "-"}
    开始日期: {sub.start_date.isoformat() if sub.start_date else "-"}
    到期日: {sub.expiry_date.isoformat()}{lunar_text(sub.expiry_date)}
    剩余: {_days_text(days_left(sub.expiry_date, use_lunar=sub.use_lunar, now=now))}
    续费周期: {Period(sub.period_value, sub.period_unit)}{" (农历)" if sub.use_lunar else ""}
    提前提醒: {sub.reminder_days} 天
    自动续费: {"是" if sub.auto_renew else "否"}
    状态: {"🟢 启用" if sub.is_active else "⚪️ 停用"}
    备注: {sub.notes or "-"}
    """
    console.print(Panel(body.strip(), title=f"订阅 #{sub.id}", expand=False))


@app.command()
def edit(
    subscription_id: int = typer.Argument(..., help="订阅 ID"),
    name: Optional[str] = typer.Option(None, "--name", help="订阅名称"),
    expiry: Optional[str] = typer.Option(None, "--expiry", "-e", help="到期日 YYYY-MM-DD"),
    start: Optional[str] = typer.Option(None, "--start", "-s", help="开始日期 YYYY-MM-DD，未指定 --expiry 时重新推算到期日"),
    period: Optional[str] = typer.Option(None, "--period", "-p", help="续费周期，如 30d / 1m / 1y"),
    custom_type: Optional[str] = typer.Option(None, "--type", "-t", help="订阅类型"),
    reminder_days: Optional[int] = typer.Option(None, "--reminder-days", "-r", help="提前几天提醒"),
    notes: Optional[str] = typer.Option(None, "--notes", help="备注"),
    lunar: Optional[bool] = typer.Option(None, "--lunar/--solar", help="按农历 / 公历周期续费"),
    auto_renew: Optional[bool] = typer.Option(None, "--auto-renew/--no-auto-renew", help="到期后自动顺延"),
):
    """修改订阅，未指定的字段保持不变"""
    _, service, _ = _services()
    sub = _get_or_exit(service, subscription_id)

    parsed = _parse_period_option(period) if period else Period(sub.period_value, sub.period_unit)
    if expiry:
        expiry_date = _parse_date_option(expiry)
    elif start:
        expiry_date = None
    else:
        expiry_date = sub.expiry_date
    data = SubscriptionInput(
        name=name if name is not None else sub.name,
        expiry_date=expiry_date,
        custom_type=custom_type if custom_type is not None else sub.custom_type,
        start_date=_parse_date_option(start) if start else sub.start_date,
        period_value=parsed.value,
        period_unit=parsed.unit.value,
        reminder_days=reminder_days if reminder_days is not None else sub.reminder_days,
        notes=notes if notes is not None else sub.notes,
        is_active=sub.is_active,
        auto_renew=auto_renew if auto_renew is not None else sub.auto_renew,
        use_lunar=lunar if lunar is not None else sub.use_lunar,
    )

    result = service.update(subscription_id, data)
    if not result.success:
        console.print(f"[red]❌ 修改失败: {result.message}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✅ 订阅 #{subscription_id} 已更新，到期日 {result.subscription.expiry_date}[/green]")


@app.command()
def remove(
    subscription_id: int = typer.Argument(..., help="订阅 ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="跳过确认"),
):
    """删除订阅"""
    _, service, _ = _services()
    sub = _get_or_exit(service, subscription_id)

    if not yes and not Confirm.ask(f"确定删除订阅 #{sub.id} {sub.name}?", default=False):
        console.print("[yellow]已取消[/yellow]")
        raise typer.Exit()

    service.delete(subscription_id)
    console.print(f"[green]✅ 订阅 #{subscription_id} 已删除[/green]")


@app.command()
def toggle(subscription_id: int = typer.Argument(..., help="订阅 ID")):
    """启用 / 停用订阅"""
    _, service, _ = _services()
    result = service.toggle(subscription_id)
    if not result.success:
        console.print(f"[red]❌ {result.message}[/red]")
        raise typer.Exit(1)

    state = "已启用" if result.subscription.is_active else "已停用"
    console.print(f"[green]✅ 订阅 #{subscription_id} {result.subscription.name} {state}[/green]")


@app.command()
def lunar(value: Optional[str] = typer.Argument(None, help="公历日期 YYYY-MM-DD，默认今天")):
    """查看公历日期对应的农历"""
    if value:
        target = _parse_date_option(value)
    else:
        target = datetime.now(tz=_load_config().timezone).date()
    console.print(f"🌙 {format_lunar_preview(target)}")


# ── 提醒 ─────────────────────────────────────────────────


@app.command()
def check():
    """立即执行一次到期检查并发送提醒"""
    _, _, reminder_service = _services()
    report = reminder_service.check_expiring()

    console.print(f"检查 {report.checked} 个订阅，自动续费 {len(report.renewed)} 个，提醒 {len(report.reminders)} 个")
    for sub in report.renewed:
        console.print(f"  🔁 {sub.name} → {sub.expiry_date}")
    for channel, ok in report.channels.items():
        console.print(f"  {'✅' if ok else '❌'} {channel}")
    if report.reminders and not report.notified:
        console.print("[red]❌ 所有通知渠道发送失败[/red]")
        raise typer.Exit(1)


@app.command()
def test(subscription_id: int = typer.Argument(..., help="订阅 ID")):
    """对单个订阅发送测试通知"""
    _, _, reminder_service = _services()
    result = reminder_service.test_subscription(subscription_id)

    for channel, ok in result.channels.items():
        console.print(f"  {'✅' if ok else '❌'} {channel}")
    if not result.success:
        console.print(f"[red]❌ {result.message}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✅ {result.message}[/green]")


@app.command("test-channel")
def test_channel(channel: str = typer.Argument(..., help=f"通知渠道 ({'/'.join(NOTIFIER_CHANNELS)})")):
    """向单个通知渠道发送测试消息，检查配置是否正确"""
    dispatcher = NotificationDispatcher(_load_config())
    result = dispatcher.send_test(channel)
    if not result.success:
        console.print(f"[red]❌ {result.message}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✅ {result.message}[/green]")


# ── Bot 进程 ─────────────────────────────────────────────


@app.command()
def start(
    daemon: bool = typer.Option(False, "--daemon", "-d", help="在后台运行 (Daemon 模式)"),
    restart: bool = typer.Option(False, "--restart", "-r", help="如果已运行，先停止再启动"),
):
    """启动 Telegram Bot 与定时提醒"""
    paths = _repo_paths()
    paths["app_dir"].mkdir(parents=True, exist_ok=True)

    if not paths["env"].exists():
        console.print("[red]❌ 未找到配置文件[/red]")
        console.print("请先运行: [bold]subwatch init[/bold]")
        raise typer.Exit(1)

    if not (_load_env_file(paths["env"]).get("TELEGRAM_BOT_TOKEN") or "").strip():
        console.print("[red]❌ 配置中缺少 TELEGRAM_BOT_TOKEN[/red]")
        console.print("请先运行: [bold]subwatch init[/bold]")
        raise typer.Exit(1)

    pid = _check_running(paths["pid"])
    if pid:
        if restart:
            stop()
            time.sleep(1)
        else:
            console.print(f"[yellow]Bot 已在运行中 (PID: {pid})[/yellow]")
            console.print("使用 [bold]subwatch stop[/bold] 停止，或 [bold]--restart[/bold] 重启")
            raise typer.Exit()

    if daemon:
        console.print("🚀 正在后台启动 Bot...")

        log_f = open(paths["log"], "a", encoding="utf-8")
        try:
            child_env = os.environ.copy()
            child_env["SUBWATCH_ENV_PATH"] = str(paths["env"])

            proc = subprocess.Popen(
                [sys.executable, "-m", "subwatch.main"],
                cwd=paths["root"],
                env=child_env,
                stdout=log_f,
                stderr=log_f,
                start_new_session=True,
            )
            paths["pid"].write_text(str(proc.pid), encoding="utf-8")

            console.print(f"[bold green]✅ Bot 已在后台启动 (PID: {proc.pid})[/bold green]")
            console.print(f"📄 日志文件: {paths['log']}")
            console.print("使用 [bold]subwatch logs[/bold] 查看实时日志")
        except OSError as e:
            console.print(f"[red]启动失败: {e}[/red]")
            raise typer.Exit(1)
        finally:
            log_f.close()
        return

    # 前台运行
    paths["pid"].write_text(str(os.getpid()), encoding="utf-8")
    try:
        console.print("[bold green]🚀 正在前台启动 Bot (按 Ctrl+C 停止)...[/bold green]")
        from .main import main

        main(env_path=paths["env"])
    except KeyboardInterrupt:
        console.print("\n[yellow]Bot 已停止[/yellow]")
    finally:
        paths["pid"].unlink(missing_ok=True)


@app.command()
def stop():
    """停止后台运行的 Bot"""
    paths = _repo_paths()
    pid = _check_running(paths["pid"])

    if not pid:
        console.print("[yellow]当前目录没有运行中的 Bot[/yellow]")
        paths["pid"].unlink(missing_ok=True)
        return

    try:
        console.print(f"正在停止 PID {pid}...")
        proc = psutil.Process(pid)
        proc.terminate()
        try:
            proc.wait(timeout=5)
        except psutil.TimeoutExpired:
            console.print("[red]停止超时，尝试强制停止...[/red]")
            proc.kill()
        console.print(f"[green]✅ Bot (PID {pid}) 已停止[/green]")
    except psutil.NoSuchProcess:
        console.print("[yellow]进程已不存在[/yellow]")
    except psutil.AccessDenied as e:
        console.print(f"[red]停止出错: {e}[/red]")
    finally:
        paths["pid"].unlink(missing_ok=True)


@app.command()
def status():
    """查看运行状态"""
    paths = _repo_paths()
    pid = _check_running(paths["pid"])
    config_state = "✅ 存在" if paths["env"].exists() else "❌ 不存在"

    enabled = _load_env_file(paths["env"]).get("ENABLED_NOTIFIERS", "notifyx") or "-"

    table = f"""
    [bold]状态检查[/bold]

    工作目录: {paths['root']}
    配置路径: {paths['env']} ({config_state})
    日志路径: {paths['log']}
    通知渠道: {enabled}
    运行状态: {"🟢 运行中" if pid else "⚪️ 未运行"}
    PID: {pid if pid else "-"}
    """
    console.print(Panel(table.strip(), title="Subwatch Status", expand=False))


@app.command()
def logs(lines: int = typer.Option(20, "--lines", "-n", help="显示最后 N 行")):
    """查看 Bot 日志 (tail -f)"""
    paths = _repo_paths()
    if not paths["log"].exists():
        console.print("[yellow]日志文件不存在[/yellow]")
        return

    console.print(f"[bold]显示最后 {lines} 行日志 (Ctrl+C 退出):[/bold]")
    try:
        subprocess.run(["tail", "-f", "-n", str(lines), str(paths["log"])])
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    app()
