"""
Order Service — 統合イベント定義

注文確定後に Redis Pub/Sub の order_events チャネルへ発行する。
イベントは過去形で命名し、不変(immutable)として扱う。
個人情報 (メール・電話・住所) は含めない。
"""

import json
import logging
from datetime import datetime

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

ORDER_EVENTS_CHANNEL = "order_events"


class OrderPlaced(BaseModel):
    """注文が作成された"""
    order_id: str
    order_number: str
    user_id: str | None
    guest: bool
    product_id: str
    quantity: int
    currency: str
    total_cents: int
    source: str | None
    timestamp: datetime


async def publish(redis: aioredis.Redis | None, event: BaseModel) -> bool:
    """
    イベントを発行する (best-effort)。

    発行に失敗しても注文は成立しているので、ログに残して False を返す。
    """
    if redis is None:
        return False
    event_type = type(event).__name__
    try:
        await redis.publish(
            ORDER_EVENTS_CHANNEL,
            json.dumps({"event_type": event_type, "data": event.model_dump(mode="json")}, default=str),
        )
    except RedisError:
        logger.exception("Failed to publish %s", event_type)
        return False
    return True
