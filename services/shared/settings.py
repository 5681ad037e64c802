"""
Shared — 設定オブジェクト

環境変数 (.env を含む) から設定を読み込み、不変の dataclass として
各サービスの create_app に渡す。値の形式が不正な場合は構築時に
ConfigurationError を送出する（リクエスト毎ではなく起動時に失敗させる）。
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from dotenv import load_dotenv

from .errors import ConfigurationError

PAYLOAD_MODES = ("flat", "nested")
STORE_BACKENDS = ("sql", "memory")
DEFAULT_BASE_URL = "https://mygoldengraze.com"


def _env(name: str, default: str | None = None) -> str | None:
    value = os.environ.get(name, "").strip()
    return value or default


def _origins(raw: str | None) -> list[str]:
    if not raw:
        return ["*"]
    return [o.strip() for o in raw.split(",") if o.strip()]


def normalize_payload_mode(raw: str | None) -> str:
    """'default' や未設定は flat として扱う。"""
    mode = (raw or "flat").strip().lower()
    if mode == "default":
        mode = "flat"
    if mode not in PAYLOAD_MODES:
        raise ConfigurationError(
            f"Unsupported payload mode: {raw!r} (expected one of {', '.join(PAYLOAD_MODES)})"
        )
    return mode


@dataclass(frozen=True)
class OrderSettings:
    database_url: str | None = None
    store_backend: str = "sql"
    redis_url: str | None = None
    auth_user_url: str | None = None
    auth_api_key: str | None = None
    flat_shipping_cents: int = 599
    tax_rate: Decimal = Decimal("0.07")
    currency: str = "USD"
    default_sku: str = "GG-TALLOW-4OZ"
    default_image_url: str = "https://cdn.example.com/gg-4oz.jpg"
    cors_allow_origins: list[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not isinstance(self.tax_rate, Decimal):
            object.__setattr__(self, "tax_rate", Decimal(str(self.tax_rate)))
        if self.store_backend not in STORE_BACKENDS:
            raise ConfigurationError(f"Unsupported order store backend: {self.store_backend!r}")
        if self.store_backend == "sql" and not self.database_url:
            raise ConfigurationError("DATABASE_URL is required for the sql order store")
        if self.flat_shipping_cents < 0:
            raise ConfigurationError("FLAT_SHIPPING_CENTS must be non-negative")
        if self.tax_rate < 0:
            raise ConfigurationError("TAX_RATE must be non-negative")

    @classmethod
    def from_env(cls) -> "OrderSettings":
        load_dotenv()
        try:
            shipping = int(_env("FLAT_SHIPPING_CENTS", "599"))
            tax_rate = Decimal(_env("TAX_RATE", "0.07"))
        except (ValueError, InvalidOperation) as e:
            raise ConfigurationError(f"Invalid pricing configuration: {e}") from e

        return cls(
            database_url=_env("DATABASE_URL"),
            store_backend=_env("ORDER_STORE_BACKEND", "sql").lower(),
            redis_url=_env("REDIS_URL"),
            auth_user_url=_env("AUTH_USER_URL"),
            auth_api_key=_env("AUTH_API_KEY"),
            flat_shipping_cents=shipping,
            tax_rate=tax_rate,
            currency=_env("ORDER_CURRENCY", "USD").upper(),
            default_sku=_env("DEFAULT_SKU", "GG-TALLOW-4OZ"),
            default_image_url=_env("DEFAULT_IMAGE_URL", "https://cdn.example.com/gg-4oz.jpg"),
            cors_allow_origins=_origins(_env("CORS_ALLOW_ORIGINS")),
            log_level=_env("LOG_LEVEL", "INFO"),
        )


@dataclass(frozen=True)
class ConversionSettings:
    """
    コンバージョン API 設定。

    endpoint / access_token の欠落はここでは許容し、
    ConversionsClient の構築時に ConfigurationError とする。
    """

    endpoint: str | None = None
    access_token: str | None = None
    payload_mode: str = "flat"
    default_base_url: str = DEFAULT_BASE_URL
    pixel_code: str | None = None
    test_event_code: str | None = None
    timeout: float = 10.0
    cors_allow_origins: list[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        # frozen のため object.__setattr__ で正規化後の値を入れる
        object.__setattr__(self, "payload_mode", normalize_payload_mode(self.payload_mode))
        if self.timeout <= 0:
            raise ConfigurationError("TIKTOK_TIMEOUT_SECONDS must be positive")

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint and self.access_token)

    @classmethod
    def from_env(cls) -> "ConversionSettings":
        load_dotenv()
        try:
            timeout = float(_env("TIKTOK_TIMEOUT_SECONDS", "10"))
        except ValueError as e:
            raise ConfigurationError(f"Invalid TIKTOK_TIMEOUT_SECONDS: {e}") from e

        return cls(
            endpoint=_env("TIKTOK_API_ENDPOINT") or _env("TIKTOK_ENDPOINT"),
            access_token=_env("TIKTOK_ACCESS_TOKEN"),
            payload_mode=_env("TIKTOK_PAYLOAD_MODE", "flat"),
            default_base_url=_env("APP_BASE_URL", DEFAULT_BASE_URL),
            pixel_code=_env("TIKTOK_PIXEL_CODE"),
            test_event_code=_env("TIKTOK_TEST_EVENT_CODE"),
            timeout=timeout,
            cors_allow_origins=_origins(_env("CORS_ALLOW_ORIGINS")),
            log_level=_env("LOG_LEVEL", "INFO"),
        )
