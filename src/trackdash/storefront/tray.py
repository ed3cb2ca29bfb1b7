"""Tray storefront API client.

The OAuth handshake is handled elsewhere; this client is given an API address
and a valid access token. Every request goes through the storefront rate
limiter (Tray allows 180 requests per minute).
"""

import logging
import math
from typing import Any

import httpx

from trackdash.config import settings
from trackdash.errors import StorefrontError
from trackdash.services.rate_limiter import SlidingWindowRateLimiter, storefront_rate_limiter

logger = logging.getLogger(__name__)

PAGE_SIZE = 50
EMPTY_DATE = "0000-00-00"

# Tray order situations, upper-cased, to ingestion status names.
TRAY_STATUS_MAP = {
    "A ENVIAR": "PENDING",
    "EM SEPARAÇÃO": "CREATED",
    "ENVIADO": "SHIPPED",
    "ENTREGUE": "DELIVERED",
    "CANCELADO": "CANCELED",
    "DEVOLVIDO": "RETURNED",
}


class TrayClient:
    """Fetches orders from a Tray store."""

    def __init__(
        self,
        api_address: str,
        access_token: str,
        client: httpx.AsyncClient | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
    ):
        self.access_token = access_token
        self.client = client or httpx.AsyncClient(
            base_url=api_address,
            headers={"Content-Type": "application/json"},
            timeout=settings.http_timeout_seconds,
        )
        self.rate_limiter = rate_limiter or storefront_rate_limiter

    async def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        params = {"access_token": self.access_token, **{k: v for k, v in params.items() if v is not None}}
        try:
            response = await self.rate_limiter.run_gated(self.client.get, path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise StorefrontError(f"Tray API returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise StorefrontError(f"Tray API request failed: {e}") from e
        except ValueError as e:
            raise StorefrontError("Tray API returned invalid JSON") from e

    async def list_orders(
        self,
        page: int = 1,
        limit: int = PAGE_SIZE,
        status: str | None = None,
        modified: str | None = None,
    ) -> dict[str, Any]:
        """List one page of orders."""
        return await self._get(
            "/orders",
            {"page": page, "limit": limit, "status": status, "modified": modified},
        )

    async def get_order_complete(self, order_id: int | str) -> dict[str, Any]:
        """Fetch the full record of a single order."""
        data = await self._get(f"/orders/{order_id}/complete", {})
        return data.get("Order") or {}

    async def fetch_all_orders(
        self, status: str | None = None, modified: str | None = None
    ) -> list[dict[str, Any]]:
        """Walk every page and fetch each order's full record.

        Orders whose detail request fails are logged and skipped.
        """
        orders: list[dict[str, Any]] = []
        page = 1
        while True:
            response = await self.list_orders(page=page, status=status, modified=modified)
            for wrapper in response.get("Orders") or []:
                order_id = (wrapper.get("Order") or {}).get("id")
                if order_id is None:
                    continue
                try:
                    orders.append(await self.get_order_complete(order_id))
                except StorefrontError as e:
                    logger.warning("Skipping Tray order %s: %s", order_id, e)

            paging = response.get("paging") or {}
            total = int(paging.get("total") or 0)
            limit = int(paging.get("limit") or PAGE_SIZE)
            if page >= math.ceil(total / limit):
                break
            page += 1

        stats = self.rate_limiter.stats()
        logger.info(
            "Fetched %d Tray orders (%d/%d requests in window)",
            len(orders),
            stats["requests_in_window"],
            stats["max_requests"],
        )
        return orders

    async def aclose(self) -> None:
        await self.client.aclose()


def _tray_date(value: Any) -> str | None:
    if not value or value == EMPTY_DATE:
        return None
    return str(value)


def to_candidate(order: dict[str, Any]) -> dict[str, Any]:
    """Map a Tray order to an ingestion record."""
    customer = order.get("Customer") or {}
    addresses = customer.get("CustomerAddresses") or [{}]
    address = (addresses[0] or {}).get("CustomerAddress") or {}
    invoices = order.get("OrderInvoice") or [{}]
    invoice = (invoices[0] or {}).get("OrderInvoice") or {}

    tray_status = str(order.get("status") or "A ENVIAR").upper()
    status = TRAY_STATUS_MAP.get(tray_status, "PENDING")
    estimated = _tray_date(order.get("estimated_delivery_date"))
    city = address.get("city") or customer.get("city") or ""
    state = address.get("state") or customer.get("state") or ""

    return {
        "order_number": str(order.get("id") or ""),
        "status": status,
        "invoice_number": invoice.get("number"),
        "tracking_code": order.get("sending_code"),
        "customer_name": customer.get("name") or "Desconhecido",
        "sales_channel": "Tray - " + (order.get("point_sale") or "LOJA VIRTUAL"),
        "freight_type": order.get("shipment") or "Não informado",
        "freight_value": order.get("shipment_value") or 0,
        "total_value": order.get("total") or 0,
        "shipping_date": _tray_date(order.get("shipment_date")) or order.get("date"),
        "max_shipping_deadline": estimated,
        "estimated_delivery_date": estimated,
        "city": city,
        "state": state,
        "zip_code": (address.get("zip_code") or customer.get("zip_code") or "").replace("-", ""),
        "tracking_history": [
            {
                "status": status,
                "description": f"Pedido {order.get('status') or 'criado'}",
                "date": order.get("date"),
                "city": city,
                "state": state,
            }
        ],
    }
