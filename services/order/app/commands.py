"""
Order Service — コマンドハンドラ (注文作成)

place() の流れ:
  1. 配送先を正規化・検証          (失敗 → ValidationError、書き込みなし)
  2. 購入者を識別                  (失敗してもゲスト購入として続行)
  3. 販売中の商品を1件取得         (無ければ CatalogUnavailable)
  4. 価格計算 (整数セント)
  5. 注文番号を採番
  6. 書き込み: 注文 → 明細 → created イベント
       注文の失敗   → PersistenceError
       明細の失敗   → PersistenceError (部分注文の id / 注文番号付き。注文は pending のまま残す)
       イベント失敗 → ログのみ (best-effort)
  7. OrderPlaced を Redis に発行   (best-effort。明細をこの呼び出しで作成した場合のみ)

書き込みは単一トランザクションではない。各ステップは注文番号をキーに
冪等なので、同じ注文番号で place() をやり直すと途中から完了できる。
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable

import redis.asyncio as aioredis

from services.shared.errors import CatalogUnavailable, PersistenceError

from .aggregate import OrderStatus
from .events import OrderPlaced, publish
from .identity import Guest, Identified, IdentityResolver
from .numbering import make_order_number
from .pricing import Quote, quote
from .shipping import ShippingAddress, normalize_shipping, validate_shipping
from .store import CatalogPort, ItemDraft, OrderDraft, OrderNumberConflict, OrderStore, StoreError

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "site_checkout"
MAX_NUMBER_ATTEMPTS = 3


@dataclass
class PlacedOrder:
    order: dict
    quote: Quote

    def as_response(self) -> dict:
        return {"ok": True, "order": self.order, "totals": self.quote.totals()}


def _metadata(identity, shipping: ShippingAddress, source: str | None, notes: str | None) -> dict:
    meta = {"source": source, "notes": notes}
    if isinstance(identity, Guest):
        meta["guest_email"] = shipping.email
    return meta


class OrderService:
    def __init__(
        self,
        catalog: CatalogPort,
        store: OrderStore,
        identity_resolver: IdentityResolver,
        shipping_cents: int,
        tax_rate: Decimal,
        redis: aioredis.Redis | None = None,
        number_factory: Callable[[], str] = make_order_number,
    ):
        self.catalog = catalog
        self.store = store
        self.identity_resolver = identity_resolver
        self.shipping_cents = shipping_cents
        self.tax_rate = tax_rate
        self.redis = redis
        self.number_factory = number_factory

    async def place(
        self,
        shipping: dict | None,
        quantity=1,
        user_id: str | None = None,
        token: str | None = None,
        source: str | None = None,
        notes: str | None = None,
        order_number: str | None = None,
    ) -> PlacedOrder:
        address = normalize_shipping(shipping)
        validate_shipping(address)

        identity = await self.identity_resolver.resolve(user_id, token)

        try:
            product = await self.catalog.first_active_product()
        except StoreError as e:
            logger.exception("Catalog lookup failed")
            raise CatalogUnavailable("No active products available") from e
        if product is None:
            raise CatalogUnavailable("No active products available")

        q = quote(product, quantity, self.shipping_cents, self.tax_rate)

        order = await self._write_order(q, address, identity, source, notes, order_number)
        completed = await self._write_items(order, q)

        await self._write_created_event(order, source)
        if completed:
            await self._announce(order, identity, product, q, source)
        logger.info("Order placed: %s (%s cents)", order["order_number"], q.total_cents)
        return PlacedOrder(order=order, quote=q)

    async def _announce(self, order: dict, identity, product, q: Quote, source: str | None) -> None:
        await publish(
            self.redis,
            OrderPlaced(
                order_id=order["id"],
                order_number=order["order_number"],
                user_id=order.get("user_id"),
                guest=isinstance(identity, Guest),
                product_id=product.id,
                quantity=q.quantity,
                currency=product.currency,
                total_cents=q.total_cents,
                source=source,
                timestamp=datetime.now(timezone.utc),
            ),
        )

    async def _write_order(
        self,
        q: Quote,
        address: ShippingAddress,
        identity,
        source: str | None,
        notes: str | None,
        order_number: str | None,
    ) -> dict:
        """
        注文行を書き込む。

        呼び出し側が注文番号を指定した場合 (冪等キーによる再試行) はその番号で
        1回だけ試す。採番した番号が衝突した場合は採番し直して最大3回まで試す。
        """
        user = identity.user_id if isinstance(identity, Identified) else None
        attempts = 1 if order_number else MAX_NUMBER_ATTEMPTS

        for attempt in range(1, attempts + 1):
            number = order_number or self.number_factory()
            draft = OrderDraft(
                order_number=number,
                user_id=user,
                status=OrderStatus.PENDING.value,
                currency=q.product.currency,
                subtotal_cents=q.subtotal_cents,
                shipping_cents=q.shipping_cents,
                tax_cents=q.tax_cents,
                total_cents=q.total_cents,
                shipping=address.as_dict(),
                metadata=_metadata(identity, address, source, notes),
            )
            try:
                return await self.store.insert_order(draft)
            except OrderNumberConflict:
                logger.warning("Order number collision on %s (attempt %d)", number, attempt)
            except StoreError as e:
                logger.exception("Order insert failed for %s", number)
                raise PersistenceError(
                    "Failed to create order", {"reason": str(e), "order_number": number}
                ) from e

        raise PersistenceError("Failed to create order", {"reason": "order number collision"})

    async def _write_items(self, order: dict, q: Quote) -> bool:
        """明細を書き込む。この呼び出しで明細を作成した場合のみ True (完了済み注文の再送は False)。"""
        item = ItemDraft(
            product_id=q.product.id,
            sku=q.product.sku,
            product_name=q.product.name,
            quantity=q.quantity,
            unit_price_cents=q.product.unit_price_cents,
            currency=q.product.currency,
            image_url=q.product.image_url,
        )
        try:
            if await self.store.list_items(order["id"]):
                return False
            await self.store.insert_items(order["id"], [item])
            return True
        except StoreError as e:
            # 注文は pending のまま残る。照合は /orders/incomplete と同じ冪等キーでの再試行で行う
            logger.exception("Order items insert failed for %s", order["order_number"])
            raise PersistenceError(
                "Failed to create order items",
                {
                    "reason": str(e),
                    "order_id": order["id"],
                    "order_number": order["order_number"],
                },
            ) from e

    async def _write_created_event(self, order: dict, source: str | None) -> None:
        try:
            await self.store.append_event(
                order["id"],
                "created",
                f"Order created via {source or DEFAULT_SOURCE}",
                unique=True,
            )
        except StoreError:
            logger.exception("Order event write failed for %s", order["order_number"])
