"""
Order Service — インメモリアダプタ

SQL アダプタと同じ冪等性の規則を持つプロセス内実装。
ORDER_STORE_BACKEND=memory でローカル開発に使い、テストでも利用する。
"""

from datetime import datetime, timezone
from uuid import uuid4

from .pricing import CatalogProduct
from .store import (
    CatalogPort,
    ItemDraft,
    OrderDraft,
    OrderNumberConflict,
    OrderStore,
    order_fingerprint,
    order_row,
)


class InMemoryCatalog(CatalogPort):
    def __init__(self, products: list[CatalogProduct] | None = None):
        self.products = list(products or [])

    async def first_active_product(self) -> CatalogProduct | None:
        return self.products[0] if self.products else None


class InMemoryOrderStore(OrderStore):
    def __init__(self) -> None:
        self.orders: dict[str, dict] = {}
        self.items: dict[str, list[dict]] = {}
        self.events: dict[str, list[dict]] = {}

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    async def insert_order(self, draft: OrderDraft) -> dict:
        existing = self.orders.get(draft.order_number)
        if existing is not None:
            if order_fingerprint(existing) != draft.fingerprint():
                raise OrderNumberConflict(f"order number {draft.order_number} already taken")
            return dict(existing)

        row = order_row(draft, str(uuid4()), self._now())
        row["metadata"] = dict(draft.metadata)
        self.orders[draft.order_number] = row
        return dict(row)

    async def insert_items(self, order_id: str, items: list[ItemDraft]) -> list[dict]:
        if self.items.get(order_id):
            return list(self.items[order_id])
        self.items[order_id] = [
            {"id": str(uuid4()), "order_id": order_id, **vars(item)} for item in items
        ]
        return list(self.items[order_id])

    async def list_items(self, order_id: str) -> list[dict]:
        return list(self.items.get(order_id, []))

    async def append_event(
        self,
        order_id: str,
        event_type: str,
        message: str,
        data: dict | None = None,
        unique: bool = False,
    ) -> dict:
        log = self.events.setdefault(order_id, [])
        if unique:
            for e in log:
                if e["type"] == event_type:
                    return e
        event = {
            "id": str(uuid4()),
            "order_id": order_id,
            "type": event_type,
            "message": message,
            "data": data,
            "created_at": self._now(),
        }
        log.append(event)
        return event

    async def get_order(self, order_number: str) -> dict | None:
        row = self.orders.get(order_number)
        if row is None:
            return None
        return {
            **row,
            "items": list(self.items.get(row["id"], [])),
            "events": list(self.events.get(row["id"], [])),
        }

    async def list_orders_without_items(self) -> list[dict]:
        rows = [dict(o) for o in self.orders.values() if not self.items.get(o["id"])]
        return sorted(rows, key=lambda o: o["created_at"], reverse=True)
