"""
Conversion Service — イベント送信コマンド

submit() の流れ:
  1. 必須項目の検証 (CompleteRegistration 以外は商品系5項目が必須)
  2. value の検証 (数値かつ 0 以上。0 は許可)
  3. event_id の決定 (指定があればそのまま、無ければ新規 UUID)
  4. 個人情報をハッシュ化してペイロードを整形
  5. プロバイダへ送信 (重複排除はプロバイダ側の責務。ここでは行わない)
"""

import logging
import math
from datetime import datetime, timezone
from uuid import uuid4

from services.shared.errors import ConfigurationError, ValidationError

from .context import ClientContext
from .events import COMMERCE_FIELDS, ConversionEventName, ConversionRequest
from .payload import CommerceFields, HashedIdentity, build_payload
from .provider import ConversionsClient

logger = logging.getLogger(__name__)


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def require_fields(body: ConversionRequest, fields: tuple[str, ...]) -> None:
    for name in fields:
        if _blank(getattr(body, name)):
            raise ValidationError(f"Missing required field: {name}", [name])


def parse_value(raw) -> float | None:
    if _blank(raw):
        return None
    if isinstance(raw, bool):
        raise ValidationError("Value must be a valid non-negative number", ["value"])
    try:
        value = float(str(raw).strip())
    except ValueError:
        raise ValidationError("Value must be a valid non-negative number", ["value"]) from None
    if math.isnan(value) or math.isinf(value) or value < 0:
        raise ValidationError("Value must be a valid non-negative number", ["value"])
    return value


def shape_event(
    event: ConversionEventName,
    body: ConversionRequest,
    ctx: ClientContext,
    mode: str,
    pixel_code: str | None = None,
    test_event_code: str | None = None,
    event_time: int | None = None,
) -> tuple[str, dict]:
    """検証して (event_id, payload) を返す。ネットワークには触れない。"""
    if event.requires_commerce_fields:
        require_fields(body, COMMERCE_FIELDS)
    value = parse_value(body.value)

    event_id = body.event_id if not _blank(body.event_id) else str(uuid4())

    payload = build_payload(
        event=event.value,
        event_id=event_id,
        commerce=CommerceFields(
            value=value,
            currency=body.currency,
            content_id=body.content_id,
            content_type=body.content_type,
            content_name=body.content_name,
        ),
        identity=HashedIdentity.from_raw(body.email, body.phone, body.external_id),
        ctx=ctx,
        mode=mode,
        pixel_code=pixel_code,
        test_event_code=test_event_code,
        event_time=event_time,
    )
    return event_id, payload


async def submit(
    event: ConversionEventName,
    body: ConversionRequest,
    ctx: ClientContext,
    client: ConversionsClient | None,
    mode: str = "flat",
    pixel_code: str | None = None,
    test_event_code: str | None = None,
    event_time: int | None = None,
) -> dict:
    event_id, payload = shape_event(
        event, body, ctx, mode, pixel_code, test_event_code, event_time
    )

    if client is None:
        raise ConfigurationError(
            "Conversions API config missing: set TIKTOK_API_ENDPOINT and TIKTOK_ACCESS_TOKEN"
        )

    logger.info("Sending %s event (event_id=%s, mode=%s)", event.value, event_id, mode)
    response = await client.send(payload)
    logger.info("%s event sent successfully (event_id=%s)", event.value, event_id)

    return {
        "ok": True,
        "event": event.value,
        "event_id": event_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "tiktok": response,
    }
