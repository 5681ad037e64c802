"""
Order Service — FastAPI エントリーポイント

チェックアウト画面から同期的に呼ばれ、注文・明細・作成イベントを記録する。
コンバージョン送信 (Conversion Service) とはトランザクション的に独立しており、
どちらの失敗も相手を止めない。

起動:
    uvicorn services.order.app.main:create_app --factory
"""

import logging
from contextlib import asynccontextmanager
from typing import Any

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from services.shared.errors import PersistenceError, ServiceError
from services.shared.logging import configure_logging
from services.shared.settings import OrderSettings

from . import queries
from .commands import OrderService
from .identity import IdentityResolver, bearer_token
from .idempotency import IdempotencyStore, request_fingerprint
from .memory_store import InMemoryCatalog, InMemoryOrderStore
from .numbering import is_order_number, make_order_number
from .pricing import CatalogProduct
from .sql_store import SqlCatalog, SqlOrderStore
from .store import CatalogPort, OrderStore

logger = logging.getLogger(__name__)


# ── Request Models ───────────────────────────────

class PlaceOrderRequest(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    shipping: dict[str, Any] = Field(default_factory=dict)
    quantity: Any = 1
    userId: str | None = None
    source: str | None = None
    notes: str | None = None


def _invalid_body_message(exc: RequestValidationError) -> str:
    """最初のエラーのフィールド名を返す。JSON として読めない場合はボディ全体を指す。"""
    errors = exc.errors()
    if not errors or errors[0].get("type") == "json_invalid":
        return "Invalid request body"
    field = ".".join(str(p) for p in errors[0].get("loc", ()) if p != "body")
    return f"Invalid field: {field}" if field else "Invalid request body"


def _dev_catalog(settings: OrderSettings) -> InMemoryCatalog:
    return InMemoryCatalog(
        [
            CatalogProduct(
                id="dev-product-1",
                name="Whipped Tallow Balm 4oz",
                sku=settings.default_sku,
                unit_price_cents=4800,
                image_url=settings.default_image_url,
                currency=settings.currency,
            )
        ]
    )


def create_app(
    settings: OrderSettings | None = None,
    *,
    catalog: CatalogPort | None = None,
    store: OrderStore | None = None,
    redis: aioredis.Redis | None = None,
    identity_resolver: IdentityResolver | None = None,
) -> FastAPI:
    """
    アプリケーションを組み立てる。

    catalog / store / redis / identity_resolver を渡すと設定より優先される
    (テストやローカル開発で差し替えるため)。
    """
    settings = settings or OrderSettings.from_env()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = None
        redis_conn = redis
        owns_redis = False
        app_catalog, app_store = catalog, store

        if app_catalog is None or app_store is None:
            if settings.store_backend == "sql":
                engine = create_async_engine(settings.database_url, echo=False)
                async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
                app_catalog = app_catalog or SqlCatalog(
                    async_session, settings.default_sku, settings.default_image_url, settings.currency
                )
                app_store = app_store or SqlOrderStore(async_session)
            else:
                app_catalog = app_catalog or _dev_catalog(settings)
                app_store = app_store or InMemoryOrderStore()

        if redis_conn is None and settings.redis_url:
            redis_conn = aioredis.from_url(settings.redis_url, decode_responses=True)
            owns_redis = True

        app.state.store = app_store
        app.state.idempotency = IdempotencyStore(redis_conn) if redis_conn is not None else None
        app.state.orders = OrderService(
            catalog=app_catalog,
            store=app_store,
            identity_resolver=identity_resolver
            or IdentityResolver(settings.auth_user_url, settings.auth_api_key),
            shipping_cents=settings.flat_shipping_cents,
            tax_rate=settings.tax_rate,
            redis=redis_conn,
        )
        logger.info("Order service started (store=%s)", settings.store_backend)
        yield
        if owns_redis:
            await redis_conn.aclose()
        if engine is not None:
            await engine.dispose()

    app = FastAPI(title="Order Service", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Idempotency-Key"],
    )

    # ── Error Handlers ───────────────────────────────

    @app.exception_handler(ServiceError)
    async def service_error_handler(_request: Request, exc: ServiceError):
        body: dict[str, Any] = {"error": exc.message}
        if isinstance(exc, PersistenceError):
            body["details"] = exc.details
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(_request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _invalid_body_message(exc)})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(_request: Request, exc: Exception):
        logger.exception("Unhandled error")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    # ── Command Endpoints ────────────────────────────

    @app.post("/orders")
    async def place_order(req: PlaceOrderRequest, request: Request):
        """注文作成 (Idempotency-Key ヘッダで再試行を安全にできる)"""
        key = (request.headers.get("Idempotency-Key") or "").strip()
        idempotency: IdempotencyStore | None = request.app.state.idempotency

        record = None
        if key and idempotency is not None:
            record = await idempotency.begin(
                key, request_fingerprint(req.model_dump()), make_order_number()
            )
            if record is not None and record.response is not None:
                return record.response

        placed = await request.app.state.orders.place(
            req.shipping,
            quantity=req.quantity,
            user_id=req.userId,
            token=bearer_token(request.headers.get("Authorization")),
            source=req.source,
            notes=req.notes,
            order_number=record.order_number if record else None,
        )
        response = placed.as_response()
        if record is not None:
            await idempotency.complete(key, record, response)
        return response

    # ── Query Endpoints ──────────────────────────────

    @app.get("/orders/incomplete")
    async def query_incomplete_orders(request: Request):
        """明細の無い部分注文 (照合対象)"""
        return await queries.list_incomplete_orders(request.app.state.store)

    @app.get("/orders/{order_number}")
    async def query_get_order(order_number: str, request: Request):
        order = None
        if is_order_number(order_number):
            order = await queries.get_order(request.app.state.store, order_number)
        if not order:
            return JSONResponse(status_code=404, content={"error": "Order not found"})
        return order

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "order-service", "store": settings.store_backend}

    return app
