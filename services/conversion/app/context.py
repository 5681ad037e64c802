"""
Conversion Service — リクエスト由来のクライアント情報

    ip          X-Forwarded-For の先頭 → X-Real-IP → 接続元アドレス
    user_agent  User-Agent ヘッダ
    ttclid      ボディ → クエリ文字列 → ttclid クッキー
    ttp         ボディ → _ttp クッキー (TikTok Pixel のファーストパーティクッキー)
    url         ボディ → Referer → 設定の既定ストアフロント URL

ボディの値はクッキー・クエリ由来の値より常に優先する。
"""

from dataclasses import dataclass

from fastapi import Request

from .events import ConversionRequest


@dataclass(frozen=True)
class ClientContext:
    ip: str | None
    user_agent: str | None
    ttclid: str | None
    ttp: str | None
    url: str


def _first(*values: str | None) -> str | None:
    for v in values:
        if v is not None and str(v).strip():
            return str(v).strip()
    return None


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    peer = request.client.host if request.client else None
    return _first(first_hop, request.headers.get("x-real-ip"), peer)


def client_context(request: Request, body: ConversionRequest, default_base_url: str) -> ClientContext:
    cookies = request.cookies
    return ClientContext(
        ip=client_ip(request),
        user_agent=_first(request.headers.get("user-agent")),
        ttclid=_first(body.ttclid, request.query_params.get("ttclid"), cookies.get("ttclid")),
        ttp=_first(body.ttp, cookies.get("_ttp")),
        url=_first(body.url, request.headers.get("referer"), default_base_url),
    )
