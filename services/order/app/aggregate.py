"""
Order Service — 注文集約 (Order Aggregate)

注文の状態そのものは orders テーブルに保存するが、
監査ログ (order_events) をリプレイしてタイムラインと現在の状態を復元できる。

状態遷移:
    pending → processing → paid → packed → shipped → out_for_delivery → delivered
    pending | processing | paid → canceled
    paid | delivered            → refunded

このサービスが作るのは pending のみ。それ以外の遷移は外部の
ステータス更新フローが行い、status_changed イベント (data.status) として記録される。
"""

from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    PACKED = "packed"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELED = "canceled"
    REFUNDED = "refunded"


TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.PAID, OrderStatus.CANCELED}),
    OrderStatus.PAID: frozenset({OrderStatus.PACKED, OrderStatus.CANCELED, OrderStatus.REFUNDED}),
    OrderStatus.PACKED: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.OUT_FOR_DELIVERY}),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED}),
    # delivered はこのサービスの書き込み経路では終端。返金のみ外部から許可される
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

TERMINAL = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELED, OrderStatus.REFUNDED})


def can_transition(src: OrderStatus, dst: OrderStatus) -> bool:
    return dst in TRANSITIONS[src]


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL


class OrderAggregate:
    """
    注文集約: 監査イベントからタイムラインと状態を再構築する。

    created        → pending
    status_changed → イベント data の status の値
    その他のタグ    → 状態は変えずタイムラインにだけ残す
    """

    def __init__(self) -> None:
        self.order_id: str | None = None
        self.status: OrderStatus = OrderStatus.PENDING
        self.timeline: list[dict] = []

    # ── イベント適用メソッド ──────────────────────────

    def apply_created(self, event: dict) -> None:
        self.order_id = event.get("order_id")
        self.status = OrderStatus.PENDING

    def apply_status_changed(self, event: dict) -> None:
        try:
            new_status = OrderStatus((event.get("data") or {}).get("status"))
        except ValueError:
            return
        if can_transition(self.status, new_status):
            self.status = new_status

    # ── イベントリプレイ ─────────────────────────────

    def apply_event(self, event: dict) -> None:
        """イベントタイプに応じた apply メソッドを呼び出す。"""
        handler = {
            "created": self.apply_created,
            "status_changed": self.apply_status_changed,
        }.get(event["type"])
        if handler:
            handler(event)
        self.timeline.append(
            {
                "type": event["type"],
                "message": event.get("message"),
                "created_at": event.get("created_at"),
            }
        )

    @classmethod
    def from_events(cls, events: list[dict]) -> "OrderAggregate":
        """イベント列から集約を再構築する。"""
        agg = cls()
        for e in events:
            agg.apply_event(e)
        return agg

    def next_statuses(self) -> list[str]:
        return sorted(s.value for s in TRANSITIONS[self.status])
