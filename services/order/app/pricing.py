"""
Order Service — 価格計算

金額はすべて最小通貨単位 (セント) の整数で扱い、浮動小数点は使わない。
税額のみ端数が出るため Decimal で四捨五入 (ROUND_HALF_UP) する。

    subtotal = unit_price_cents × quantity
    shipping = 固定送料
    tax      = round(subtotal × tax_rate)
    total    = subtotal + shipping + tax
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal


@dataclass(frozen=True)
class CatalogProduct:
    id: str
    name: str
    sku: str
    unit_price_cents: int
    image_url: str
    currency: str = "USD"


@dataclass(frozen=True)
class Quote:
    product: CatalogProduct
    quantity: int
    subtotal_cents: int
    shipping_cents: int
    tax_cents: int
    total_cents: int

    def totals(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "shipping_cents": self.shipping_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "human": self.human(),
        }

    def human(self) -> dict:
        return {
            "subtotal": format_cents(self.subtotal_cents),
            "shipping": format_cents(self.shipping_cents),
            "tax": format_cents(self.tax_cents),
            "total": format_cents(self.total_cents),
        }


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def price_to_cents(price) -> int:
    """カタログの価格 (ドル表記) をセントに変換する。"""
    return _round_half_up(Decimal(str(price)) * 100)


def format_cents(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    dollars, rem = divmod(abs(cents), 100)
    return f"{sign}${dollars}.{rem:02d}"


def clamp_quantity(quantity) -> int:
    """数量は最低 1。数値に変換できない値も 1 として扱う。"""
    try:
        qty = int(quantity)
    except (TypeError, ValueError, OverflowError):
        return 1
    return max(1, qty)


def quote(
    product: CatalogProduct,
    quantity,
    shipping_cents: int,
    tax_rate: Decimal,
) -> Quote:
    qty = clamp_quantity(quantity)
    subtotal = product.unit_price_cents * qty
    tax = _round_half_up(Decimal(subtotal) * tax_rate)
    return Quote(
        product=product,
        quantity=qty,
        subtotal_cents=subtotal,
        shipping_cents=shipping_cents,
        tax_cents=tax,
        total_cents=subtotal + shipping_cents + tax,
    )
