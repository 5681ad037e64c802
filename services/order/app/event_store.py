"""
Order Service — 監査イベントストア (order_events)

注文ごとの追記専用ログ。作成時に created を記録し、
以降のステータス更新フローもここに追記する。
行を更新・削除することはない。
"""

import json
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession


def _load_json(value) -> dict | None:
    if value is None:
        return None
    return json.loads(value) if isinstance(value, str) else value


def _iso(value) -> str | None:
    if value is None:
        return None
    return value.isoformat() if isinstance(value, datetime) else str(value)


async def append_event(
    session: AsyncSession,
    order_id: str,
    event_type: str,
    message: str,
    data: dict | None = None,
) -> dict:
    """イベントを1件追記する。コミットは呼び出し側が行う。"""
    event = {
        "id": str(uuid4()),
        "order_id": str(order_id),
        "type": event_type,
        "message": message,
        "data": data,
        "created_at": datetime.now(timezone.utc),
    }
    await session.execute(
        text("""
            INSERT INTO order_events (id, order_id, type, message, data, created_at)
            VALUES (:id, :order_id, :type, :message, :data, :created_at)
        """),
        {**event, "data": json.dumps(data, default=str) if data is not None else None},
    )
    return {**event, "created_at": event["created_at"].isoformat()}


async def has_event(session: AsyncSession, order_id: str, event_type: str) -> bool:
    result = await session.execute(
        text("SELECT 1 FROM order_events WHERE order_id = :order_id AND type = :type LIMIT 1"),
        {"order_id": str(order_id), "type": event_type},
    )
    return result.first() is not None


async def load_events(session: AsyncSession, order_id: str) -> list[dict]:
    """指定した注文のイベントを時系列順に読み出す。"""
    result = await session.execute(
        text("""
            SELECT id, order_id, type, message, data, created_at
            FROM order_events
            WHERE order_id = :order_id
            ORDER BY created_at ASC
        """),
        {"order_id": str(order_id)},
    )
    return [
        {
            "id": str(row.id),
            "order_id": str(row.order_id),
            "type": row.type,
            "message": row.message,
            "data": _load_json(row.data),
            "created_at": _iso(row.created_at),
        }
        for row in result.fetchall()
    ]
