"""Import of order candidates from spreadsheets and the storefront."""

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone, tzinfo
from typing import Any
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser

from trackdash.config import settings
from trackdash.db.models import OrderStatus
from trackdash.orders import OrderState, TrackingEntry, normalise_history, utc_now
from trackdash.services.classifier import normalise_freight_type
from trackdash.status import map_ingestion_status

logger = logging.getLogger(__name__)

MIN_YEAR = 1900
MAX_YEAR = 2100

IMPORT_EVENT_DESCRIPTIONS = {
    OrderStatus.PENDING: "Pedido pendente de processamento",
    OrderStatus.CREATED: "Pedido criado",
    OrderStatus.SHIPPED: "Pedido enviado",
    OrderStatus.DELIVERY_ATTEMPT: "Tentativa de entrega",
    OrderStatus.DELIVERED: "Pedido entregue",
    OrderStatus.FAILURE: "Falha na entrega",
    OrderStatus.RETURNED: "Pedido devolvido",
    OrderStatus.CHANNEL_LOGISTICS: "Logística gerenciada pelo canal de venda",
}


@dataclass
class ImportSummary:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    dropped: int = 0
    tracking_events: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def safe_string(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def safe_number(value: Any) -> float:
    """Parse numbers such as 12.5, "12,50" or "R$ 1.234,56"; 0 when unparseable."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    text = re.sub(r"[^\d,.-]", "", str(value))
    if "," in text:
        text = text.replace(".", "").replace(",", ".")
    try:
        return float(text)
    except ValueError:
        return 0.0


def safe_date(value: Any, tz: tzinfo | None = None) -> datetime | None:
    """Parse a spreadsheet date; naive values are read in the business timezone.

    Values outside 1900..2100 are treated as garbage and discarded.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        try:
            # ISO first: dayfirst would swap month and day in "2024-05-10"
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            try:
                parsed = date_parser.parse(text, dayfirst=True)
            except (ValueError, OverflowError):
                return None

    if not MIN_YEAR <= parsed.year <= MAX_YEAR:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz or ZoneInfo(settings.business_timezone))
    return parsed.astimezone(timezone.utc)


class OrderIngestor:
    """Validates order candidates and writes them to the order store."""

    def __init__(self, repository, clock=utc_now, tz: tzinfo | None = None):
        self.repository = repository
        self.clock = clock
        self.tz = tz or ZoneInfo(settings.business_timezone)

    def prepare(self, record: Mapping[str, Any], now: datetime | None = None) -> OrderState | None:
        """Turn a raw record into an order, or None if it must be dropped."""
        order_number = safe_string(record.get("order_number"))
        if order_number is None:
            return None

        status = map_ingestion_status(safe_string(record.get("status")))
        if status == OrderStatus.CANCELED:
            return None

        now = now or self.clock()
        shipping_date = safe_date(record.get("shipping_date"), self.tz)
        city = safe_string(record.get("city"))
        state = safe_string(record.get("state"))

        history = self._history(record.get("tracking_history"), status, now)
        if not history:
            history = (
                TrackingEntry(
                    status=status.value,
                    description=IMPORT_EVENT_DESCRIPTIONS.get(status, "Status atualizado"),
                    date=shipping_date or now,
                    city=city,
                    state=state,
                ),
            )

        order = OrderState(
            order_number=order_number,
            status=status,
            freight_type=normalise_freight_type(record.get("freight_type")),
            sales_channel=safe_string(record.get("sales_channel")) or "Não identificado",
            customer_name=safe_string(record.get("customer_name")) or "Desconhecido",
            city=city,
            state=state,
            zip_code=safe_string(record.get("zip_code")),
            invoice_number=safe_string(record.get("invoice_number")),
            tracking_code=safe_string(record.get("tracking_code")),
            freight_value=safe_number(record.get("freight_value")),
            total_value=safe_number(record.get("total_value")),
            shipping_date=shipping_date,
            max_shipping_deadline=safe_date(record.get("max_shipping_deadline"), self.tz),
            estimated_delivery_date=safe_date(record.get("estimated_delivery_date"), self.tz),
            last_update=now,
            tracking_history=history,
        )
        return order.with_delay_flag(now)

    def _history(self, raw_events: Any, status: OrderStatus, now: datetime):
        if not isinstance(raw_events, list):
            return ()
        events = []
        for raw in raw_events:
            if not isinstance(raw, Mapping):
                continue
            events.append(
                TrackingEntry(
                    status=safe_string(raw.get("status")) or status.value,
                    description=safe_string(raw.get("description")) or "Evento de rastreamento",
                    date=safe_date(raw.get("date"), self.tz) or now,
                    city=safe_string(raw.get("city")),
                    state=safe_string(raw.get("state")),
                )
            )
        return normalise_history(events)

    async def ingest(self, records: Iterable[Mapping[str, Any]]) -> ImportSummary:
        """Create unknown orders and refresh the status of known ones."""
        now = self.clock()
        summary = ImportSummary()

        candidates: dict[str, OrderState] = {}
        for record in records:
            order = self.prepare(record, now)
            if order is None:
                summary.dropped += 1
                continue
            candidates[order.order_number] = order

        existing = await self.repository.find_by_business_keys(candidates)

        async with self.repository.transaction():
            for order_number, candidate in candidates.items():
                current = existing.get(order_number)
                if current is None:
                    saved = await self.repository.upsert(candidate)
                    await self.repository.replace_tracking_events(saved.id, candidate.tracking_history)
                    summary.created += 1
                    summary.tracking_events += len(candidate.tracking_history)
                elif current.status != candidate.status:
                    refreshed = current.evolve(status=candidate.status, last_update=now)
                    await self.repository.upsert(refreshed.with_delay_flag(now))
                    summary.updated += 1
                else:
                    summary.skipped += 1

        logger.info(
            "Import finished: %d created (%d events), %d updated, %d skipped, %d dropped",
            summary.created,
            summary.tracking_events,
            summary.updated,
            summary.skipped,
            summary.dropped,
        )
        return summary
