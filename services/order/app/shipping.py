"""
Order Service — 配送先の正規化と検証

副作用の前にすべての入力検証を終わらせる。違反があれば
ValidationError を送出し、以降の書き込みは一切行わない。
"""

import re
from dataclasses import asdict, dataclass

from services.shared.errors import ValidationError

REQUIRED_FIELDS = ("name", "email", "phone", "address1", "city", "state", "postal", "country")
SUPPORTED_COUNTRY = "US"

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
US_ZIP_RE = re.compile(r"^\d{5}(-\d{4})?$")


@dataclass(frozen=True)
class ShippingAddress:
    name: str
    email: str
    phone: str
    address1: str
    address2: str
    city: str
    state: str
    postal: str
    country: str

    def as_dict(self) -> dict:
        return asdict(self)


def _clean(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def normalize_shipping(raw: dict | None) -> ShippingAddress:
    """前後の空白を除去し、州・国コードを大文字化する。国の既定値は US。"""
    s = raw or {}
    return ShippingAddress(
        name=_clean(s.get("name")),
        email=_clean(s.get("email")),
        phone=_clean(s.get("phone")),
        address1=_clean(s.get("address1")),
        address2=_clean(s.get("address2")),
        city=_clean(s.get("city")),
        state=_clean(s.get("state")).upper(),
        postal=_clean(s.get("postal")),
        country=(_clean(s.get("country")) or SUPPORTED_COUNTRY).upper(),
    )


def validate_shipping(addr: ShippingAddress) -> None:
    missing = [f for f in REQUIRED_FIELDS if not getattr(addr, f)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", missing)

    if not EMAIL_RE.match(addr.email):
        raise ValidationError("Invalid email address", ["email"])

    if not US_ZIP_RE.match(addr.postal):
        raise ValidationError("Invalid US ZIP code format (postal)", ["postal"])

    if addr.country != SUPPORTED_COUNTRY:
        raise ValidationError("Only US shipping is currently supported (country)", ["country"])
