"""
Order Service — Idempotency-Key による再試行の安全化

POST /orders に Idempotency-Key ヘッダが付いている場合:
  - 初回:     キーに注文番号を予約する (SET NX, TTL 1時間)
  - 再試行:   同じボディなら予約済みの注文番号を再利用する
              → 部分書き込み後の再試行でも同じ注文を完成させられる
              成功レスポンスが保存済みならそれをそのまま返す
  - 別ボディ: 成功レスポンスが保存済みなら IdempotencyConflict (409)
              未成功 (検証エラーなど) なら新しいボディと新しい注文番号で予約し直す
  - Redis 障害: キー無しのリクエストとして処理を続ける
"""

import hashlib
import json
import logging
from dataclasses import asdict, dataclass

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from services.shared.errors import IdempotencyConflict

logger = logging.getLogger(__name__)

IDEMPOTENCY_TTL_SECONDS = 3600
KEY_PREFIX = "idempotency:orders:"


@dataclass
class IdempotencyRecord:
    fingerprint: str
    order_number: str
    response: dict | None = None


def request_fingerprint(body: dict) -> str:
    raw = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class IdempotencyStore:
    def __init__(self, redis: aioredis.Redis, ttl_seconds: int = IDEMPOTENCY_TTL_SECONDS):
        self.redis = redis
        self.ttl_seconds = ttl_seconds

    def _key(self, key: str) -> str:
        return f"{KEY_PREFIX}{key}"

    async def begin(
        self, key: str, fingerprint: str, order_number: str
    ) -> IdempotencyRecord | None:
        """
        キーを予約するか、既存の予約を返す。

        Redis に届かない場合は None を返し、呼び出し側はキー無しとして続行する。
        """
        record = IdempotencyRecord(fingerprint=fingerprint, order_number=order_number)
        try:
            created = await self.redis.set(
                self._key(key), json.dumps(asdict(record)), nx=True, ex=self.ttl_seconds
            )
            if created:
                return record

            raw = await self.redis.get(self._key(key))
            stored = IdempotencyRecord(**json.loads(raw)) if raw is not None else None
            if stored is not None and stored.fingerprint == fingerprint:
                return stored
            if stored is not None and stored.response is not None:
                raise IdempotencyConflict("Idempotency key used with different request body")

            # TTL 切れ、または前回のボディが成功していない (検証エラー等) → 新しいボディで予約し直す
            await self.redis.set(self._key(key), json.dumps(asdict(record)), ex=self.ttl_seconds)
            return record
        except RedisError:
            logger.exception("Idempotency store unavailable for key %s", key)
            return None

    async def complete(self, key: str, record: IdempotencyRecord, response: dict) -> None:
        """成功レスポンスを保存する。保存に失敗しても注文自体は成立している。"""
        record.response = response
        try:
            await self.redis.set(
                self._key(key), json.dumps(asdict(record), default=str), ex=self.ttl_seconds
            )
        except RedisError:
            logger.exception("Failed to store idempotent response for key %s", key)
