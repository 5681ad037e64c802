"""
Order Service — クエリハンドラ (Read 側)

管理画面・注文詳細ページは、このサービスが書き込んだ内容を読むだけ。
"""

from services.shared.errors import PersistenceError

from .aggregate import OrderAggregate, is_terminal
from .store import OrderStore, StoreError


async def get_order(store: OrderStore, order_number: str) -> dict | None:
    """注文・明細・タイムラインと、次に遷移可能なステータスを返す。"""
    try:
        order = await store.get_order(order_number)
    except StoreError as e:
        raise PersistenceError("Failed to load order", {"reason": str(e)}) from e
    if order is None:
        return None

    agg = OrderAggregate.from_events(order.pop("events", []))
    order["timeline"] = agg.timeline
    order["next_statuses"] = agg.next_statuses() if order["status"] == agg.status.value else []
    order["terminal"] = is_terminal(agg.status)
    return order


async def list_incomplete_orders(store: OrderStore) -> list[dict]:
    """
    明細が1件も無い注文 (明細の書き込みに失敗した部分注文) を一覧する。
    照合 (再試行 or キャンセル) の対象。
    """
    try:
        return await store.list_orders_without_items()
    except StoreError as e:
        raise PersistenceError("Failed to scan incomplete orders", {"reason": str(e)}) from e
