"""
Conversion Service — FastAPI エントリーポイント

ストアフロントから届くマーケティングイベント (会員登録・注文・カート追加) に
リクエスト由来の情報を付け足し、個人情報をハッシュ化して
外部のコンバージョン API へ転送する。

┌─────────────┐  POST /events/*  ┌────────────────────┐  Access-Token  ┌────────────────┐
│ Storefront  │ ───────────────▶ │ Conversion Service │ ─────────────▶ │ Conversions API│
│ (browser)   │                  │ (hash + shape)     │                │ (provider)     │
└─────────────┘                  └────────────────────┘                └────────────────┘

注文作成 (Order Service) とは独立。送信の失敗が注文を止めることはない。

起動:
    uvicorn services.conversion.app.main:create_app --factory
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as BodyValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from services.shared.errors import ConfigurationError, ServiceError
from services.shared.logging import configure_logging
from services.shared.settings import ConversionSettings

from . import commands
from .context import client_context
from .events import ConversionEventName, ConversionRequest
from .provider import ConversionsClient

logger = logging.getLogger(__name__)

AVAILABLE_ENDPOINTS = ["GET /health"] + [f"POST /events/{e.slug}" for e in ConversionEventName]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error(status: int, message: str, event: str | None = None) -> JSONResponse:
    body = {"ok": False, "error": message, "timestamp": _now()}
    if event is not None:
        body["event"] = event
    return JSONResponse(status_code=status, content=body)


async def _read_body(request: Request) -> dict:
    """JSON として読めないボディは空として扱う。"""
    try:
        data = await request.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def create_app(
    settings: ConversionSettings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    settings = settings or ConversionSettings.from_env()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            app.state.client = ConversionsClient(settings, transport=transport)
        except ConfigurationError as e:
            # 起動は続け、health で未設定を示す。イベントは 500 で応答する
            logger.error("%s", e.message)
            app.state.client = None
        logger.info("Conversion service started (payload mode=%s)", settings.payload_mode)
        yield

    app = FastAPI(title="Conversion Service", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(_request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(
                status_code=404,
                content={"ok": False, "error": "Endpoint not found", "available": AVAILABLE_ENDPOINTS},
            )
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(_request: Request, exc: Exception):
        logger.exception("Unhandled error")
        return _error(500, "Internal server error")

    # ── Event Endpoints ──────────────────────────────

    @app.post("/events/{slug}")
    async def post_event(slug: str, request: Request):
        """イベントを1件送信する (slug ごとにイベント種別が決まる)"""
        event = ConversionEventName.from_slug(slug)
        if event is None:
            return JSONResponse(
                status_code=404,
                content={"ok": False, "error": "Endpoint not found", "available": AVAILABLE_ENDPOINTS},
            )

        try:
            body = ConversionRequest.model_validate(await _read_body(request))
        except BodyValidationError as e:
            field = ".".join(str(p) for p in e.errors()[0]["loc"]) if e.errors() else "body"
            return _error(400, f"Invalid field: {field}", event.value)

        try:
            ctx = client_context(request, body, settings.default_base_url)
            return await commands.submit(
                event,
                body,
                ctx,
                request.app.state.client,
                mode=settings.payload_mode,
                pixel_code=settings.pixel_code,
                test_event_code=settings.test_event_code,
            )
        except ServiceError as e:
            logger.warning("%s event failed: %s", event.value, e.message)
            return _error(e.status_code, e.message, event.value)

    @app.get("/health")
    async def health():
        return {
            "ok": True,
            "timestamp": _now(),
            "config": {
                "has_token": bool(settings.access_token),
                "endpoint": settings.endpoint,
                "mode": settings.payload_mode,
            },
        }

    return app
