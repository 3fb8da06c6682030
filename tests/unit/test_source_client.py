"""
Unit Tests - Feed Client
"""
import httpx
import pytest

from shopsync.ingestion.source_client import (
    OrderFeedRecord,
    ProductFeedRecord,
    SourceClient,
    parse_feed,
)
from shopsync.sync.errors import FetchError


class TestFetchCatalogAndOrders:
    """Tests for SourceClient.fetch_catalog_and_orders"""

    async def test_returns_typed_records(self, make_source, feed):
        client = make_source(feed["products"], feed["orders"])

        snapshot = await client.fetch_catalog_and_orders()

        assert len(snapshot.products) == 8
        assert len(snapshot.orders) == 4
        assert snapshot.products[0].external_id == "1"
        assert snapshot.orders[0].source_id == "1"
        assert not snapshot.rejected_products
        assert not snapshot.rejected_orders

    async def test_requests_both_endpoints(self, make_transport, feed):
        calls = []
        client = SourceClient(
            base_url="https://feed.test/api",
            transport=make_transport(feed["products"], feed["orders"], calls=calls),
        )

        await client.fetch_catalog_and_orders()

        assert sorted(calls) == ["/api/orders", "/api/products"]

    async def test_non_2xx_orders_fails_with_both_codes(self, make_source, feed):
        client = make_source(feed["products"], feed["orders"], orders_status=500)

        with pytest.raises(FetchError) as exc_info:
            await client.fetch_catalog_and_orders()

        assert exc_info.value.products_status == 200
        assert exc_info.value.orders_status == 500
        assert "Failed to fetch data" in str(exc_info.value)

    async def test_non_2xx_products_fails(self, make_source, feed):
        client = make_source(feed["products"], feed["orders"], products_status=404)

        with pytest.raises(FetchError) as exc_info:
            await client.fetch_catalog_and_orders()

        assert exc_info.value.products_status == 404
        assert exc_info.value.orders_status == 200

    async def test_transport_failure_fails_with_missing_code(self, feed):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/orders"):
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json=feed["products"])

        client = SourceClient(base_url="https://feed.test/api", transport=httpx.MockTransport(handler))

        with pytest.raises(FetchError) as exc_info:
            await client.fetch_catalog_and_orders()

        assert exc_info.value.products_status == 200
        assert exc_info.value.orders_status is None

    async def test_non_array_body_fails(self, make_source, feed):
        client = make_source({"products": feed["products"]}, feed["orders"])

        with pytest.raises(FetchError, match="JSON array"):
            await client.fetch_catalog_and_orders()

    async def test_invalid_json_fails(self, make_source, feed):
        client = make_source("not json", feed["orders"])

        with pytest.raises(FetchError, match="invalid JSON"):
            await client.fetch_catalog_and_orders()

    async def test_bad_records_are_set_aside(self, make_source, feed):
        products = feed["products"] + [{"product_id": 99, "price": 5}]
        orders = feed["orders"] + [{"user_id": 3}]
        client = make_source(products, orders)

        snapshot = await client.fetch_catalog_and_orders()

        assert len(snapshot.products) == 8
        assert len(snapshot.rejected_products) == 1
        assert snapshot.rejected_products[0].identifier == "99"
        assert "name" in snapshot.rejected_products[0].errors
        assert len(snapshot.rejected_orders) == 1
        assert snapshot.rejected_orders[0].identifier is None


class TestParseFeed:
    """Tests for record-level validation"""

    def test_defaults_category(self):
        records, rejected = parse_feed(
            [{"product_id": "a-1", "name": "Mug", "price": "4.50"}],
            ProductFeedRecord,
            "product",
            "product_id",
        )

        assert not rejected
        assert records[0].category == "Uncategorized"
        assert records[0].external_id == "a-1"

    def test_negative_price_rejected(self):
        records, rejected = parse_feed(
            [{"product_id": 1, "name": "Mug", "price": -1}],
            ProductFeedRecord,
            "product",
            "product_id",
        )

        assert records == []
        assert rejected[0].index == 0

    def test_order_customer_id_is_string(self):
        records, _ = parse_feed(
            [{"order_id": 5, "user_id": 12, "items": [{"product_id": 1, "quantity": 2}]}],
            OrderFeedRecord,
            "order",
            "order_id",
        )

        assert records[0].customer_id == "12"
        assert records[0].items[0].quantity == 2
