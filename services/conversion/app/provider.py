"""
Conversion Service — コンバージョン API クライアント

整形済みペイロードを設定されたエンドポイントへ POST する。
アクセストークンは Access-Token ヘッダで渡す。

失敗の扱い (どれも ProviderError、再試行はしない):
  - 2xx 以外のレスポンス
  - 2xx だがボディの code が 0 以外 (プロバイダ独自のエラー)
  - タイムアウト・接続エラー
"""

import logging

import httpx

from services.shared.errors import ConfigurationError, ProviderError
from services.shared.settings import ConversionSettings

logger = logging.getLogger(__name__)


def _json_or_empty(resp: httpx.Response) -> dict:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _provider_failed(data: dict) -> bool:
    code = data.get("code")
    return code not in (None, 0, "0")


class ConversionsClient:
    """プロバイダ API クライアント。設定が足りなければ構築時に失敗する。"""

    def __init__(
        self,
        settings: ConversionSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not settings.endpoint or not settings.access_token:
            raise ConfigurationError(
                "Conversions API config missing: set TIKTOK_API_ENDPOINT and TIKTOK_ACCESS_TOKEN"
            )
        self.endpoint = settings.endpoint
        self.access_token = settings.access_token
        self.timeout = settings.timeout
        self.transport = transport

    async def send(self, payload: dict) -> dict:
        headers = {"Content-Type": "application/json", "Access-Token": self.access_token}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                resp = await client.post(self.endpoint, json=payload, headers=headers)
            except httpx.TimeoutException as e:
                raise ProviderError(f"Conversions API error: request timed out ({e})") from e
            except httpx.HTTPError as e:
                raise ProviderError(f"Conversions API error: {e}") from e

        data = _json_or_empty(resp)
        if resp.is_success and not _provider_failed(data):
            return data

        message = data.get("message") or resp.reason_phrase or f"HTTP {resp.status_code}"
        logger.error(
            "Conversions API error: status=%s code=%s event=%s event_id=%s",
            resp.status_code,
            data.get("code"),
            payload.get("event"),
            payload.get("event_id"),
        )
        raise ProviderError(f"Conversions API error: {message}", status=resp.status_code, response=data)
