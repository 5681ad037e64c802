"""
Order Service — SQL アダプタ (SQLAlchemy async)

products / orders / order_items / order_events テーブルに対する
CatalogPort と OrderStore の実装。

注文・明細・イベントは別々にコミットする (マルチテーブルのトランザクションは
使わない)。その代わり各ステップは order_number をキーに冪等:
  - orders:      ON CONFLICT (order_number) DO NOTHING → 既存行を読み直して fingerprint を照合
  - order_items: 注文に明細が無い場合のみ INSERT
  - created:     同じタイプのイベントが無い場合のみ INSERT
"""

import json
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from . import event_store
from .pricing import CatalogProduct, price_to_cents
from .store import (
    CatalogPort,
    ItemDraft,
    OrderDraft,
    OrderNumberConflict,
    OrderStore,
    StoreError,
    order_fingerprint,
    order_row,
)


def _str_or_none(value) -> str | None:
    return str(value) if value is not None else None


def _iso(value) -> str | None:
    if value is None:
        return None
    return value.isoformat() if isinstance(value, datetime) else str(value)


def _order_from_row(row) -> dict:
    m = dict(row._mapping)
    m["id"] = str(m["id"])
    m["user_id"] = _str_or_none(m.get("user_id"))
    m["metadata"] = json.loads(m["metadata"]) if isinstance(m.get("metadata"), str) else m.get("metadata") or {}
    m["created_at"] = _iso(m.get("created_at"))
    m["updated_at"] = _iso(m.get("updated_at"))
    return m


def _item_from_row(row) -> dict:
    m = dict(row._mapping)
    m["id"] = str(m["id"])
    m["order_id"] = str(m["order_id"])
    m["product_id"] = _str_or_none(m.get("product_id"))
    return m


class SqlCatalog(CatalogPort):
    def __init__(self, session_factory: sessionmaker, default_sku: str, default_image_url: str, currency: str):
        self.session_factory = session_factory
        self.default_sku = default_sku
        self.default_image_url = default_image_url
        self.currency = currency

    async def first_active_product(self) -> CatalogProduct | None:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    text("""
                        SELECT id, name, price, image_url
                        FROM products
                        WHERE is_active = TRUE
                        ORDER BY created_at ASC, id ASC
                        LIMIT 1
                    """)
                )
                row = result.fetchone()
        except SQLAlchemyError as e:
            raise StoreError(f"catalog lookup failed: {e}") from e

        if not row:
            return None
        return CatalogProduct(
            id=str(row.id),
            name=row.name,
            sku=self.default_sku,
            unit_price_cents=price_to_cents(row.price),
            image_url=row.image_url or self.default_image_url,
            currency=self.currency,
        )


class SqlOrderStore(OrderStore):
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    async def _order_by_number(self, session: AsyncSession, order_number: str) -> dict | None:
        result = await session.execute(
            text("SELECT * FROM orders WHERE order_number = :n"),
            {"n": order_number},
        )
        row = result.fetchone()
        return _order_from_row(row) if row else None

    async def _items(self, session: AsyncSession, order_id: str) -> list[dict]:
        result = await session.execute(
            text("SELECT * FROM order_items WHERE order_id = :id ORDER BY id"),
            {"id": str(order_id)},
        )
        return [_item_from_row(r) for r in result.fetchall()]

    async def insert_order(self, draft: OrderDraft) -> dict:
        params = order_row(draft, str(uuid4()), datetime.now(timezone.utc))
        params["metadata"] = json.dumps(draft.metadata, default=str)
        try:
            async with self.session_factory() as session:
                await session.execute(
                    text("""
                        INSERT INTO orders
                            (id, order_number, user_id, status, currency,
                             subtotal_cents, shipping_cents, tax_cents, total_cents,
                             shipping_name, shipping_phone, shipping_address1, shipping_address2,
                             shipping_city, shipping_state, shipping_postal, shipping_country,
                             metadata, created_at, updated_at)
                        VALUES
                            (:id, :order_number, :user_id, :status, :currency,
                             :subtotal_cents, :shipping_cents, :tax_cents, :total_cents,
                             :shipping_name, :shipping_phone, :shipping_address1, :shipping_address2,
                             :shipping_city, :shipping_state, :shipping_postal, :shipping_country,
                             :metadata, :created_at, :updated_at)
                        ON CONFLICT (order_number) DO NOTHING
                    """),
                    params,
                )
                await session.commit()
                stored = await self._order_by_number(session, draft.order_number)
        except SQLAlchemyError as e:
            raise StoreError(f"order insert failed: {e}") from e

        if stored is None:
            raise StoreError(f"order {draft.order_number} not readable after insert")
        if order_fingerprint(stored) != draft.fingerprint():
            raise OrderNumberConflict(f"order number {draft.order_number} already taken")
        return stored

    async def insert_items(self, order_id: str, items: list[ItemDraft]) -> list[dict]:
        try:
            async with self.session_factory() as session:
                existing = await self._items(session, order_id)
                if existing:
                    return existing

                for item in items:
                    await session.execute(
                        text("""
                            INSERT INTO order_items
                                (id, order_id, product_id, sku, product_name,
                                 quantity, unit_price_cents, currency, image_url)
                            VALUES
                                (:id, :order_id, :product_id, :sku, :product_name,
                                 :quantity, :unit_price_cents, :currency, :image_url)
                        """),
                        {
                            "id": str(uuid4()),
                            "order_id": str(order_id),
                            "product_id": item.product_id,
                            "sku": item.sku,
                            "product_name": item.product_name,
                            "quantity": item.quantity,
                            "unit_price_cents": item.unit_price_cents,
                            "currency": item.currency,
                            "image_url": item.image_url,
                        },
                    )
                await session.commit()
                return await self._items(session, order_id)
        except SQLAlchemyError as e:
            raise StoreError(f"order items insert failed: {e}") from e

    async def list_items(self, order_id: str) -> list[dict]:
        try:
            async with self.session_factory() as session:
                return await self._items(session, order_id)
        except SQLAlchemyError as e:
            raise StoreError(f"order items lookup failed: {e}") from e

    async def append_event(
        self,
        order_id: str,
        event_type: str,
        message: str,
        data: dict | None = None,
        unique: bool = False,
    ) -> dict:
        try:
            async with self.session_factory() as session:
                if unique and await event_store.has_event(session, order_id, event_type):
                    events = await event_store.load_events(session, order_id)
                    return next(e for e in events if e["type"] == event_type)
                event = await event_store.append_event(session, order_id, event_type, message, data)
                await session.commit()
                return event
        except SQLAlchemyError as e:
            raise StoreError(f"order event insert failed: {e}") from e

    async def get_order(self, order_number: str) -> dict | None:
        try:
            async with self.session_factory() as session:
                order = await self._order_by_number(session, order_number)
                if order is None:
                    return None
                order["items"] = await self._items(session, order["id"])
                order["events"] = await event_store.load_events(session, order["id"])
                return order
        except SQLAlchemyError as e:
            raise StoreError(f"order lookup failed: {e}") from e

    async def list_orders_without_items(self) -> list[dict]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    text("""
                        SELECT o.* FROM orders o
                        WHERE NOT EXISTS (
                            SELECT 1 FROM order_items i WHERE i.order_id = o.id
                        )
                        ORDER BY o.created_at DESC
                    """)
                )
                return [_order_from_row(r) for r in result.fetchall()]
        except SQLAlchemyError as e:
            raise StoreError(f"incomplete order scan failed: {e}") from e
