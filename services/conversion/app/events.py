"""
Conversion Service — イベント定義

ストアフロントから受け取るマーケティングイベントの種類と、リクエストボディ。
ボディの各項目は任意。必須項目の判定はイベント種別ごとに commands で行う。
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

COMMERCE_FIELDS = ("value", "currency", "content_id", "content_type", "content_name")


class ConversionEventName(str, Enum):
    COMPLETE_REGISTRATION = "CompleteRegistration"
    PLACE_AN_ORDER = "PlaceAnOrder"
    ADD_TO_CART = "AddToCart"

    @property
    def slug(self) -> str:
        return {
            ConversionEventName.COMPLETE_REGISTRATION: "complete_registration",
            ConversionEventName.PLACE_AN_ORDER: "place_order",
            ConversionEventName.ADD_TO_CART: "add_to_cart",
        }[self]

    @property
    def requires_commerce_fields(self) -> bool:
        return self is not ConversionEventName.COMPLETE_REGISTRATION

    @classmethod
    def from_slug(cls, slug: str) -> "ConversionEventName | None":
        for name in cls:
            if name.slug == slug:
                return name
        return None


class ConversionRequest(BaseModel):
    """イベントリクエストのボディ (未知のキーは無視する)"""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    url: str | None = None
    ttclid: str | None = None
    ttp: str | None = None
    event_id: str | None = None
    value: Any = None
    currency: str | None = None
    content_id: str | None = None
    content_type: str | None = None
    content_name: str | None = None
    email: str | None = None
    phone: str | None = None
    external_id: str | None = None
