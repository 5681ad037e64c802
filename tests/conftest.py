import json
from decimal import Decimal

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from services.order.app.commands import OrderService
from services.order.app.identity import IdentityResolver
from services.order.app.memory_store import InMemoryCatalog, InMemoryOrderStore
from services.order.app.pricing import CatalogProduct
from services.order.app.store import StoreError
from services.shared.settings import ConversionSettings, OrderSettings


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the order service (set/get/publish)."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.published: list[tuple[str, dict]] = []

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    async def get(self, key):
        return self.data.get(key)

    async def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))
        return 1

    async def aclose(self):
        pass


class UnreachableRedis:
    """Every command fails the way redis.asyncio does when the server is down."""

    async def set(self, *args, **kwargs):
        raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    async def get(self, *args, **kwargs):
        raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    async def publish(self, *args, **kwargs):
        raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    async def aclose(self):
        pass


class FlakyOrderStore(InMemoryOrderStore):
    """In-memory store whose individual write steps can be made to fail."""

    def __init__(self, fail_order=False, fail_items=False, fail_event=False):
        super().__init__()
        self.fail_order = fail_order
        self.fail_items = fail_items
        self.fail_event = fail_event

    async def insert_order(self, draft):
        if self.fail_order:
            raise StoreError("connection reset while inserting order")
        return await super().insert_order(draft)

    async def insert_items(self, order_id, items):
        if self.fail_items:
            raise StoreError("connection reset while inserting items")
        return await super().insert_items(order_id, items)

    async def append_event(self, order_id, event_type, message, data=None, unique=False):
        if self.fail_event:
            raise StoreError("connection reset while inserting event")
        return await super().append_event(order_id, event_type, message, data, unique)


@pytest.fixture()
def product():
    return CatalogProduct(
        id="prod-001",
        name="Whipped Tallow Balm 4oz",
        sku="GG-TALLOW-4OZ",
        unit_price_cents=4800,
        image_url="https://cdn.example.com/gg-4oz.jpg",
    )


@pytest.fixture()
def catalog(product):
    return InMemoryCatalog([product])


@pytest.fixture()
def store():
    return FlakyOrderStore()


@pytest.fixture()
def fake_redis():
    return FakeRedis()


@pytest.fixture()
def unreachable_redis():
    return UnreachableRedis()


@pytest.fixture()
def order_service(catalog, store, fake_redis):
    return OrderService(
        catalog=catalog,
        store=store,
        identity_resolver=IdentityResolver(None),
        shipping_cents=599,
        tax_rate=Decimal("0.07"),
        redis=fake_redis,
    )


@pytest.fixture()
def shipping():
    return {
        "name": "Jane Doe",
        "email": "jane@x.com",
        "phone": "5551234567",
        "address1": "1 Oak St",
        "city": "Austin",
        "state": "tx",
        "postal": "78701",
        "country": "us",
    }


@pytest.fixture()
def order_settings():
    return OrderSettings(store_backend="memory")


@pytest.fixture()
def conversion_settings():
    return ConversionSettings(
        endpoint="https://provider.test/open_api/v1.3/event/track/",
        access_token="test-token",
        payload_mode="flat",
        default_base_url="https://shop.test",
    )
