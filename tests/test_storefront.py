"""Tests for the Tray storefront client."""

import httpx
import pytest

from trackdash.errors import StorefrontError
from trackdash.services.ingestion import OrderIngestor
from trackdash.services.rate_limiter import SlidingWindowRateLimiter
from trackdash.storefront import TrayClient, to_candidate

TRAY_ORDER = {
    "id": "5120",
    "status": "ENVIADO",
    "date": "2025-03-02",
    "shipment": "Jadlog .Package",
    "shipment_value": "25.90",
    "shipment_date": "2025-03-03",
    "estimated_delivery_date": "2025-03-09",
    "total": "189.90",
    "point_sale": "MERCADO LIVRE",
    "sending_code": "JD123456789BR",
    "Customer": {
        "name": "Ana Lima",
        "CustomerAddresses": [
            {"CustomerAddress": {"city": "Recife", "state": "PE", "zip_code": "50000-000"}}
        ],
    },
    "OrderInvoice": [{"OrderInvoice": {"number": "98765"}}],
}


class TestToCandidate:
    """Test mapping of Tray orders to ingestion records."""

    def test_maps_fields(self):
        candidate = to_candidate(TRAY_ORDER)

        assert candidate["order_number"] == "5120"
        assert candidate["status"] == "SHIPPED"
        assert candidate["invoice_number"] == "98765"
        assert candidate["tracking_code"] == "JD123456789BR"
        assert candidate["customer_name"] == "Ana Lima"
        assert candidate["sales_channel"] == "Tray - MERCADO LIVRE"
        assert candidate["freight_type"] == "Jadlog .Package"
        assert candidate["shipping_date"] == "2025-03-03"
        assert candidate["estimated_delivery_date"] == "2025-03-09"
        assert candidate["city"] == "Recife"
        assert candidate["zip_code"] == "50000000"
        assert candidate["tracking_history"][0]["description"] == "Pedido ENVIADO"

    def test_empty_dates_and_defaults(self):
        candidate = to_candidate(
            {"id": 7, "date": "2025-03-02", "shipment_date": "0000-00-00",
             "estimated_delivery_date": "0000-00-00"}
        )

        assert candidate["status"] == "PENDING"
        assert candidate["shipping_date"] == "2025-03-02"
        assert candidate["estimated_delivery_date"] is None
        assert candidate["sales_channel"] == "Tray - LOJA VIRTUAL"
        assert candidate["freight_type"] == "Não informado"

    def test_canceled_order_is_dropped_on_import(self):
        candidate = to_candidate({**TRAY_ORDER, "status": "CANCELADO"})

        assert OrderIngestor(None).prepare(candidate) is None

    def test_candidate_is_importable(self):
        order = OrderIngestor(None).prepare(to_candidate(TRAY_ORDER))

        assert order.freight_value == pytest.approx(25.90)
        assert order.total_value == pytest.approx(189.90)
        assert order.tracking_code == "JD123456789BR"


class TestFetchAllOrders:
    """Test pagination against a mocked Tray API."""

    @pytest.fixture
    def limiter(self):
        return SlidingWindowRateLimiter(180, 60, name="tray-test")

    def make_client(self, handler, limiter):
        client = httpx.AsyncClient(
            base_url="https://loja.example/web_api",
            transport=httpx.MockTransport(handler),
        )
        return TrayClient("https://loja.example/web_api", "secret", client=client, rate_limiter=limiter)

    async def test_walks_pages_and_skips_failed_details(self, limiter):
        requests = []

        def handler(request):
            requests.append(request)
            path = request.url.path
            if path == "/web_api/orders":
                page = int(request.url.params["page"])
                ids = ["1", "2"] if page == 1 else ["3"]
                return httpx.Response(
                    200,
                    json={
                        "paging": {"total": 3, "page": page, "limit": 2},
                        "Orders": [{"Order": {"id": order_id}} for order_id in ids],
                    },
                )
            order_id = path.split("/")[-2]
            if order_id == "2":
                return httpx.Response(500, json={"message": "error"})
            return httpx.Response(200, json={"Order": {"id": order_id, "status": "ENVIADO"}})

        client = self.make_client(handler, limiter)
        orders = await client.fetch_all_orders(status="ENVIADO")
        await client.aclose()

        assert [order["id"] for order in orders] == ["1", "3"]
        assert all(r.url.params["access_token"] == "secret" for r in requests)
        assert requests[0].url.params["status"] == "ENVIADO"
        assert "modified" not in requests[0].url.params
        assert limiter.stats()["requests_in_window"] == 5

    async def test_listing_error_raises(self, limiter):
        client = self.make_client(lambda request: httpx.Response(401), limiter)

        with pytest.raises(StorefrontError):
            await client.fetch_all_orders()
        await client.aclose()

    async def test_invalid_json_raises(self, limiter):
        client = self.make_client(lambda request: httpx.Response(200, text="<html>"), limiter)

        with pytest.raises(StorefrontError):
            await client.list_orders()
        await client.aclose()
