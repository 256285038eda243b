"""
SQLite 存储层

订阅记录的简单增删改查。
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Optional


@dataclass
class Subscription:
    """订阅记录"""
    id: int
    name: str
    expiry_date: date
    custom_type: str = ""
    start_date: Optional[date] = None
    period_value: int = 1
    period_unit: str = "month"  # day, month, year
    reminder_days: int = 7
    notes: str = ""
    is_active: bool = True
    auto_renew: bool = True
    use_lunar: bool = False  # 按农历周期续费
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class Storage:
    """简单的 SQLite 存储"""

    def __init__(self, db_path: str | Path = "data/subwatch.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """初始化数据库表"""
        with sqlite3.connect(self.db_path) as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS subscriptions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    custom_type TEXT DEFAULT '',
                    start_date TEXT,
                    expiry_date TEXT NOT NULL,
                    period_value INTEGER DEFAULT 1,
                    period_unit TEXT DEFAULT 'month',
                    reminder_days INTEGER DEFAULT 7,
                    notes TEXT DEFAULT '',
                    is_active INTEGER DEFAULT 1,
                    auto_renew INTEGER DEFAULT 1,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS idx_subscriptions_expiry
                    ON subscriptions(expiry_date);
            """)

            # 迁移：添加 use_lunar 字段（如果不存在）
            cursor = conn.execute("PRAGMA table_info(subscriptions)")
            columns = [row[1] for row in cursor.fetchall()]
            if "use_lunar" not in columns:
                conn.execute("ALTER TABLE subscriptions ADD COLUMN use_lunar INTEGER DEFAULT 0")
            conn.commit()

    def _row_to_subscription(self, row: sqlite3.Row) -> Subscription:
        return Subscription(
            id=row["id"],
            name=row["name"],
            custom_type=row["custom_type"] or "",
            start_date=_parse_date(row["start_date"]),
            expiry_date=date.fromisoformat(row["expiry_date"]),
            period_value=row["period_value"],
            period_unit=row["period_unit"],
            reminder_days=row["reminder_days"],
            notes=row["notes"] or "",
            is_active=bool(row["is_active"]),
            auto_renew=bool(row["auto_renew"]),
            use_lunar=bool(row["use_lunar"]),
            created_at=_parse_datetime(row["created_at"]),
            updated_at=_parse_datetime(row["updated_at"]),
        )

    def add_subscription(self, subscription: Subscription) -> Subscription:
        """添加订阅，返回带数据库 id 的记录"""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                """INSERT INTO subscriptions
                    (name, custom_type, start_date, expiry_date, period_value, period_unit,
                     reminder_days, notes, is_active, auto_renew, use_lunar)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    subscription.name,
                    subscription.custom_type,
                    subscription.start_date.isoformat() if subscription.start_date else None,
                    subscription.expiry_date.isoformat(),
                    subscription.period_value,
                    subscription.period_unit,
                    subscription.reminder_days,
                    subscription.notes,
                    int(subscription.is_active),
                    int(subscription.auto_renew),
                    int(subscription.use_lunar),
                )
            )
            conn.commit()
            new_id = cursor.lastrowid

        # 从数据库重新读取以获取正确的 created_at
        return self.get_subscription(new_id)

    def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        """按 id 获取订阅"""
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute(
                "SELECT * FROM subscriptions WHERE id = ?",
                (subscription_id,)
            ).fetchone()
            return self._row_to_subscription(row) if row else None

    def list_subscriptions(self, active_only: bool = False) -> list[Subscription]:
        """获取所有订阅，按到期日排序"""
        sql = "SELECT * FROM subscriptions"
        if active_only:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY expiry_date, id"

        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(sql).fetchall()
            return [self._row_to_subscription(row) for row in rows]

    def update_subscription(self, subscription: Subscription) -> bool:
        """整体更新一条订阅，返回是否找到记录"""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                """UPDATE subscriptions SET
                    name = ?, custom_type = ?, start_date = ?, expiry_date = ?,
                    period_value = ?, period_unit = ?, reminder_days = ?, notes = ?,
                    is_active = ?, auto_renew = ?, use_lunar = ?,
                    updated_at = CURRENT_TIMESTAMP
                   WHERE id = ?""",
                (
                    subscription.name,
                    subscription.custom_type,
                    subscription.start_date.isoformat() if subscription.start_date else None,
                    subscription.expiry_date.isoformat(),
                    subscription.period_value,
                    subscription.period_unit,
                    subscription.reminder_days,
                    subscription.notes,
                    int(subscription.is_active),
                    int(subscription.auto_renew),
                    int(subscription.use_lunar),
                    subscription.id,
                )
            )
            conn.commit()
            return cursor.rowcount > 0

    def update_expiry_date(self, subscription_id: int, expiry_date: date) -> None:
        """更新到期日（自动续费）"""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "UPDATE subscriptions SET expiry_date = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (expiry_date.isoformat(), subscription_id)
            )
            conn.commit()

    def set_active(self, subscription_id: int, is_active: bool) -> bool:
        """启用 / 停用订阅，返回是否找到记录"""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                "UPDATE subscriptions SET is_active = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (int(is_active), subscription_id)
            )
            conn.commit()
            return cursor.rowcount > 0

    def delete_subscription(self, subscription_id: int) -> bool:
        """删除订阅，返回是否找到记录"""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM subscriptions WHERE id = ?",
                (subscription_id,)
            )
            conn.commit()
            return cursor.rowcount > 0
