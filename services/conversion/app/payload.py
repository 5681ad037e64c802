"""
Conversion Service — 送信ペイロードの整形

2つの形式を設定で切り替える (呼び出し側は選べない):

  flat    すべての項目を1階層に並べる
  nested  商品系は properties、ユーザー・クライアント情報は user にまとめる

どちらの形式でも値の無い項目は送らない (null を送信しない)。
生の個人情報は受け取った時点でハッシュ化し、ペイロードには入れない。
"""

import time
from dataclasses import dataclass

from .context import ClientContext
from .hashing import hash_identity


@dataclass(frozen=True)
class CommerceFields:
    value: float | None = None
    currency: str | None = None
    content_id: str | None = None
    content_type: str | None = None
    content_name: str | None = None


@dataclass(frozen=True)
class HashedIdentity:
    email: str | None = None
    phone: str | None = None
    external_id: str | None = None

    @classmethod
    def from_raw(cls, email=None, phone=None, external_id=None) -> "HashedIdentity":
        return cls(
            email=hash_identity(email),
            phone=hash_identity(phone),
            external_id=hash_identity(external_id),
        )


def now_unix() -> int:
    return int(time.time())


def compact(data: dict) -> dict:
    """None の項目と空になったサブオブジェクトを取り除く。"""
    out = {}
    for k, v in data.items():
        if isinstance(v, dict):
            v = compact(v)
            if not v:
                continue
        if v is None:
            continue
        out[k] = v
    return out


def build_payload(
    event: str,
    event_id: str,
    commerce: CommerceFields,
    identity: HashedIdentity,
    ctx: ClientContext,
    mode: str = "flat",
    pixel_code: str | None = None,
    test_event_code: str | None = None,
    event_time: int | None = None,
) -> dict:
    event_time = event_time if event_time is not None else now_unix()
    properties = {
        "value": commerce.value,
        "currency": commerce.currency,
        "content_id": commerce.content_id,
        "content_type": commerce.content_type,
        "content_name": commerce.content_name,
    }
    user = {
        "email": identity.email,
        "phone": identity.phone,
        "external_id": identity.external_id,
        "ip": ctx.ip,
        "user_agent": ctx.user_agent,
        "ttclid": ctx.ttclid,
        "ttp": ctx.ttp,
    }

    if mode == "nested":
        return compact(
            {
                "pixel_code": pixel_code,
                "event": event,
                "event_time": event_time,
                "event_id": event_id,
                "properties": {**properties, "url": ctx.url},
                "user": user,
                "test_event_code": test_event_code,
            }
        )

    return compact(
        {
            "pixel_code": pixel_code,
            "event": event,
            "event_time": event_time,
            "event_id": event_id,
            "url": ctx.url,
            **properties,
            **user,
            "test_event_code": test_event_code,
        }
    )
