"""Tests for OrderService.place against the in-memory store."""

import asyncio
from decimal import Decimal

import pytest

from services.order.app.commands import OrderService
from services.order.app.identity import IdentityResolver
from services.order.app.memory_store import InMemoryCatalog
from services.shared.errors import CatalogUnavailable, PersistenceError, ValidationError


def test_place_checkout_scenario(order_service, store, shipping):
    placed = asyncio.run(order_service.place(shipping, quantity=2))
    order = placed.order

    assert order["status"] == "pending"
    assert order["subtotal_cents"] == 9600
    assert order["shipping_cents"] == 599
    assert order["tax_cents"] == 672
    assert order["total_cents"] == 10871
    assert order["shipping_state"] == "TX"
    assert order["shipping_country"] == "US"
    assert order["currency"] == "USD"

    items = store.items[order["id"]]
    assert len(items) == 1
    assert items[0]["quantity"] == 2
    assert items[0]["unit_price_cents"] == 4800
    assert items[0]["sku"] == "GG-TALLOW-4OZ"

    events = store.events[order["id"]]
    assert [(e["type"], e["message"]) for e in events] == [("created", "Order created via site_checkout")]

    assert placed.as_response()["totals"]["human"]["total"] == "$108.71"


def test_guest_order_keeps_contact_email(order_service, shipping):
    order = asyncio.run(order_service.place(shipping, source="tiktok", notes="leave at door")).order

    assert order["user_id"] is None
    assert order["metadata"] == {
        "source": "tiktok",
        "notes": "leave at door",
        "guest_email": "jane@x.com",
    }


def test_identified_order(order_service, shipping):
    order = asyncio.run(order_service.place(shipping, user_id="user-123")).order

    assert order["user_id"] == "user-123"
    assert "guest_email" not in order["metadata"]


def test_source_names_the_created_event(order_service, store, shipping):
    order = asyncio.run(order_service.place(shipping, source="landing_page")).order
    assert store.events[order["id"]][0]["message"] == "Order created via landing_page"


def test_validation_error_writes_nothing(order_service, store, fake_redis, shipping):
    shipping["postal"] = "7870"

    with pytest.raises(ValidationError):
        asyncio.run(order_service.place(shipping))

    assert store.orders == {}
    assert fake_redis.published == []


def test_empty_catalog(store, shipping):
    service = OrderService(
        catalog=InMemoryCatalog([]),
        store=store,
        identity_resolver=IdentityResolver(None),
        shipping_cents=599,
        tax_rate=Decimal("0.07"),
    )
    with pytest.raises(CatalogUnavailable):
        asyncio.run(service.place(shipping))
    assert store.orders == {}


def test_order_write_failure(order_service, store, shipping):
    store.fail_order = True

    with pytest.raises(PersistenceError) as exc_info:
        asyncio.run(order_service.place(shipping))

    assert exc_info.value.message == "Failed to create order"
    assert store.items == {}


def test_items_failure_leaves_pending_partial_order(order_service, store, shipping):
    store.fail_items = True

    with pytest.raises(PersistenceError) as exc_info:
        asyncio.run(order_service.place(shipping))

    details = exc_info.value.details
    partial = store.orders[details["order_number"]]
    assert details["order_id"] == partial["id"]
    assert partial["status"] == "pending"
    assert store.items.get(partial["id"]) is None

    incomplete = asyncio.run(store.list_orders_without_items())
    assert [o["order_number"] for o in incomplete] == [details["order_number"]]


def test_retry_with_same_number_completes_partial_order(order_service, store, shipping):
    store.fail_items = True
    with pytest.raises(PersistenceError) as exc_info:
        asyncio.run(order_service.place(shipping))
    number = exc_info.value.details["order_number"]

    store.fail_items = False
    placed = asyncio.run(order_service.place(shipping, order_number=number))

    assert placed.order["id"] == exc_info.value.details["order_id"]
    assert len(store.orders) == 1
    assert len(store.items[placed.order["id"]]) == 1
    assert asyncio.run(store.list_orders_without_items()) == []


def test_replaying_a_complete_order_is_idempotent(order_service, store, shipping):
    first = asyncio.run(order_service.place(shipping))
    again = asyncio.run(order_service.place(shipping, order_number=first.order["order_number"]))

    assert again.order["id"] == first.order["id"]
    assert len(store.items[first.order["id"]]) == 1
    assert len(store.events[first.order["id"]]) == 1


def test_event_failure_does_not_fail_the_order(order_service, store, shipping):
    store.fail_event = True

    placed = asyncio.run(order_service.place(shipping))

    assert placed.order["order_number"] in store.orders
    assert store.events.get(placed.order["id"], []) == []


def test_order_placed_is_published_without_pii(order_service, fake_redis, shipping):
    placed = asyncio.run(order_service.place(shipping, quantity=2))

    assert len(fake_redis.published) == 1
    channel, message = fake_redis.published[0]
    assert channel == "order_events"
    assert message["event_type"] == "OrderPlaced"
    assert message["data"]["order_number"] == placed.order["order_number"]
    assert message["data"]["total_cents"] == 10871
    assert message["data"]["guest"] is True
    assert "jane@x.com" not in str(message)


def test_order_number_collision_is_retried(catalog, store, shipping):
    numbers = iter(["GG-20250101000000-00001", "GG-20250101000000-00001", "GG-20250101000000-00002"])
    service = OrderService(
        catalog=catalog,
        store=store,
        identity_resolver=IdentityResolver(None),
        shipping_cents=599,
        tax_rate=Decimal("0.07"),
        number_factory=lambda: next(numbers),
    )

    first = asyncio.run(service.place(shipping))
    other = {**shipping, "name": "John Roe"}
    second = asyncio.run(service.place(other))

    assert first.order["order_number"] == "GG-20250101000000-00001"
    assert second.order["order_number"] == "GG-20250101000000-00002"
    assert first.order["id"] != second.order["id"]


def test_order_number_collision_gives_up(catalog, store, shipping):
    service = OrderService(
        catalog=catalog,
        store=store,
        identity_resolver=IdentityResolver(None),
        shipping_cents=599,
        tax_rate=Decimal("0.07"),
        number_factory=lambda: "GG-20250101000000-00001",
    )
    asyncio.run(service.place(shipping))

    with pytest.raises(PersistenceError) as exc_info:
        asyncio.run(service.place({**shipping, "name": "John Roe"}))
    assert exc_info.value.details["reason"] == "order number collision"


def test_orders_get_distinct_numbers(order_service, store, shipping):
    for i in range(5):
        asyncio.run(order_service.place({**shipping, "name": f"Buyer {i}"}))
    assert len(store.orders) == 5


def test_replaying_a_complete_order_publishes_once(order_service, fake_redis, shipping):
    first = asyncio.run(order_service.place(shipping))
    asyncio.run(order_service.place(shipping, order_number=first.order["order_number"]))

    assert len(fake_redis.published) == 1


def test_completing_a_partial_order_publishes_once(order_service, store, fake_redis, shipping):
    store.fail_items = True
    with pytest.raises(PersistenceError) as exc_info:
        asyncio.run(order_service.place(shipping))
    assert fake_redis.published == []

    store.fail_items = False
    asyncio.run(order_service.place(shipping, order_number=exc_info.value.details["order_number"]))

    assert len(fake_redis.published) == 1
