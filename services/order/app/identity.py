"""
Order Service — 購入者の識別

識別の結果は Identified(user_id) か Guest のどちらか。
解決に失敗してもゲスト購入として続行し、注文は止めない。

解決順:
  1. リクエストボディの userId をそのまま採用
  2. Authorization: Bearer <token> を認証サービスのユーザーエンドポイントで解決
  3. どちらも無い / 失敗した場合は Guest
"""

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identified:
    user_id: str


@dataclass(frozen=True)
class Guest:
    pass


Identity = Identified | Guest

GUEST = Guest()


def bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


class IdentityResolver:
    """トークンを認証サービスに問い合わせてユーザー ID に解決する。"""

    def __init__(
        self,
        user_url: str | None,
        api_key: str | None = None,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.user_url = user_url
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def resolve(self, user_id: str | None = None, token: str | None = None) -> Identity:
        if user_id and str(user_id).strip():
            return Identified(str(user_id).strip())
        if not token or not self.user_url:
            return GUEST

        headers = {"Authorization": f"Bearer {token}"}
        if self.api_key:
            headers["apikey"] = self.api_key

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.get(self.user_url, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.info("Identity resolution failed, continuing as guest: %s", e)
            return GUEST

        resolved = data.get("id") if isinstance(data, dict) else None
        if not resolved:
            logger.info("Identity response had no user id, continuing as guest")
            return GUEST
        return Identified(str(resolved))
