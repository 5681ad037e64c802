"""
Order Service — 永続化ポート

サービス層はこのインターフェースに対してプログラムし、
アダプタ (SQL / インメモリ) は設定で差し替える。

注文の書き込みは 注文 → 明細 → 監査イベント の3ステップで、
単一トランザクションにはまとめない。各ステップは order_number を
キーに冪等なので、同じ下書きで最初からやり直しても安全。
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from .pricing import CatalogProduct


class StoreError(Exception):
    """アダプタ固有の失敗 (DB 例外など) をこの型に包んで送出する。"""


class OrderNumberConflict(StoreError):
    """同じ注文番号の別の注文が既に存在する。"""


@dataclass(frozen=True)
class OrderDraft:
    order_number: str
    user_id: str | None
    status: str
    currency: str
    subtotal_cents: int
    shipping_cents: int
    tax_cents: int
    total_cents: int
    shipping: dict
    metadata: dict = field(default_factory=dict)

    def fingerprint(self) -> tuple:
        return (
            self.user_id,
            self.total_cents,
            self.shipping.get("postal"),
            self.shipping.get("name"),
        )


@dataclass(frozen=True)
class ItemDraft:
    product_id: str
    sku: str
    product_name: str
    quantity: int
    unit_price_cents: int
    currency: str
    image_url: str


def order_fingerprint(row: dict) -> tuple:
    return (
        row.get("user_id"),
        row.get("total_cents"),
        row.get("shipping_postal"),
        row.get("shipping_name"),
    )


class CatalogPort(ABC):
    @abstractmethod
    async def first_active_product(self) -> CatalogProduct | None:
        """販売中の商品を1件返す。無ければ None。"""
        ...


class OrderStore(ABC):
    @abstractmethod
    async def insert_order(self, draft: OrderDraft) -> dict:
        """
        注文行を作成し、保存された行を dict で返す。

        同じ order_number の行が既にあり fingerprint が一致すれば、その行を返す。
        一致しなければ OrderNumberConflict。
        """
        ...

    @abstractmethod
    async def insert_items(self, order_id: str, items: list[ItemDraft]) -> list[dict]:
        """明細を作成する。注文に明細が既にあれば既存の明細を返す。"""
        ...

    @abstractmethod
    async def list_items(self, order_id: str) -> list[dict]:
        ...

    @abstractmethod
    async def append_event(
        self,
        order_id: str,
        event_type: str,
        message: str,
        data: dict | None = None,
        unique: bool = False,
    ) -> dict:
        """監査イベントを追記する。unique なら同タイプの既存イベントを返すだけにする。"""
        ...

    @abstractmethod
    async def get_order(self, order_number: str) -> dict | None:
        """注文・明細・イベントをまとめて返す。"""
        ...

    @abstractmethod
    async def list_orders_without_items(self) -> list[dict]:
        ...


def order_row(draft: OrderDraft, order_id: str, created_at) -> dict:
    """下書きを orders テーブルの列構成に展開する。"""
    s = draft.shipping
    return {
        "id": order_id,
        "order_number": draft.order_number,
        "user_id": draft.user_id,
        "status": draft.status,
        "currency": draft.currency,
        "subtotal_cents": draft.subtotal_cents,
        "shipping_cents": draft.shipping_cents,
        "tax_cents": draft.tax_cents,
        "total_cents": draft.total_cents,
        "shipping_name": s.get("name"),
        "shipping_phone": s.get("phone"),
        "shipping_address1": s.get("address1"),
        "shipping_address2": s.get("address2") or None,
        "shipping_city": s.get("city"),
        "shipping_state": s.get("state"),
        "shipping_postal": s.get("postal"),
        "shipping_country": s.get("country"),
        "metadata": draft.metadata,
        "created_at": created_at,
        "updated_at": created_at,
    }
