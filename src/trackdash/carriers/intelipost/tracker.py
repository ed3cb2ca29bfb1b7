"""Intelipost tracking implementation.

Intelipost exposes a public GraphQL endpoint used by its "where is my order"
pages. One ``trackingStatus`` query is issued per order number; an order the
provider does not know yet comes back as ``trackingStatus: null``.
"""

import logging
from typing import Any

import httpx

from trackdash.carriers.base import (
    BaseCarrier,
    CarrierConfig,
    FetchOutcome,
    TrackingResult,
    parse_timestamp,
)
from trackdash.config import settings
from trackdash.orders import TrackingEntry, as_utc
from trackdash.services.rate_limiter import SlidingWindowRateLimiter, tracking_rate_limiter

logger = logging.getLogger(__name__)

TRACKING_QUERY = """
query ($clientId: ID, $orderNumber: String, $orderHash: String) {
  trackingStatus(clientId: $clientId, orderNumber: $orderNumber, orderHash: $orderHash) {
    client { id }
    order { order_number }
    tracking {
      status
      status_label
      estimated_delivery_date_lp
      history {
        event_date
        status_label
        provider_message
        macro_state { code }
      }
    }
    logistic_provider { name }
    end_customer { address { city state } }
  }
}
"""


class IntelipostCarrier(BaseCarrier):
    """Intelipost tracking adapter."""

    def __init__(
        self,
        config: CarrierConfig,
        client: httpx.AsyncClient | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
    ):
        super().__init__(config)
        self.client = client or httpx.AsyncClient(
            headers=config.headers,
            timeout=settings.http_timeout_seconds,
        )
        self.rate_limiter = rate_limiter or tracking_rate_limiter

    async def fetch_status(self, order_number: str) -> TrackingResult:
        """Fetch tracking status from Intelipost."""
        order_number = order_number.strip()
        payload = {
            "operationName": None,
            "query": TRACKING_QUERY,
            "variables": {
                "clientId": self.config.client_id,
                "orderHash": self.config.client_id,
                "orderNumber": order_number,
            },
        }

        try:
            response = await self.rate_limiter.run_gated(
                self.client.post, self.config.endpoint, json=payload
            )
        except httpx.TimeoutException:
            logger.warning("Intelipost timed out for order %s", order_number)
            return TrackingResult.failed("Tracking provider timed out")
        except httpx.HTTPError as e:
            logger.warning("Intelipost request failed for order %s: %s", order_number, e)
            return TrackingResult.failed(f"HTTP error: {e}")

        if response.status_code != 200:
            return TrackingResult.failed(f"Tracking provider returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            return TrackingResult.failed("Tracking provider returned invalid JSON")

        if not isinstance(body, dict):
            return TrackingResult.failed("Unexpected response from tracking provider")

        if body.get("errors"):
            logger.warning("Intelipost GraphQL errors for %s: %s", order_number, body["errors"])
            return TrackingResult.failed("Tracking provider reported an error")

        data = body.get("data")
        if data is not None and not isinstance(data, dict):
            return TrackingResult.failed("Unexpected response from tracking provider")

        tracking_status = _as_dict(data).get("trackingStatus")
        if not tracking_status:
            return TrackingResult.no_data()
        if not isinstance(tracking_status, dict):
            return TrackingResult.failed("Unexpected response from tracking provider")

        try:
            return self._parse_tracking_status(tracking_status)
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning("Malformed Intelipost payload for %s: %s", order_number, e)
            return TrackingResult.failed("Unexpected response from tracking provider")

    def _parse_tracking_status(self, data: dict[str, Any]) -> TrackingResult:
        """Parse the ``trackingStatus`` node, tolerating missing sub-fields."""
        tracking = _as_dict(data.get("tracking"))
        address = _as_dict(_as_dict(data.get("end_customer")).get("address"))
        city = address.get("city") or None
        state = address.get("state") or None

        events = []
        for item in tracking.get("history") or []:
            if not isinstance(item, dict):
                continue
            event_date = as_utc(parse_timestamp(item.get("event_date")))
            if event_date is None:
                logger.debug("Dropping history entry without a timestamp: %s", item)
                continue
            events.append(
                TrackingEntry(
                    status=str(_as_dict(item.get("macro_state")).get("code") or "UNKNOWN"),
                    description=str(item.get("provider_message") or item.get("status_label") or ""),
                    date=event_date,
                    city=city,
                    state=state,
                )
            )

        status_label = str(tracking.get("status_label") or "")
        status_code = str(tracking.get("status") or "")
        carrier_name = _as_dict(data.get("logistic_provider")).get("name")

        return TrackingResult(
            outcome=FetchOutcome.FOUND,
            status=self.normalise_status(status_label, status_code),
            status_text=status_label or status_code,
            carrier_name=str(carrier_name) if carrier_name else None,
            expected_delivery=as_utc(parse_timestamp(tracking.get("estimated_delivery_date_lp"))),
            events=events,
        )

    async def aclose(self) -> None:
        await self.client.aclose()


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}
