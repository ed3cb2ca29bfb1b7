"""API routes for order tracking."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from trackdash.config import settings
from trackdash.db import get_db
from trackdash.errors import StorefrontError
from trackdash.orders import OrderState, utc_now
from trackdash.services import metrics
from trackdash.services.carrier_loader import carrier_loader
from trackdash.services.ingestion import OrderIngestor
from trackdash.services.rate_limiter import storefront_rate_limiter, tracking_rate_limiter
from trackdash.services.reconciler import (
    FINALIZED_REASON,
    ChannelClassified,
    OrderReconciler,
    Skipped,
)
from trackdash.services.repository import OrderRepository
from trackdash.services.sync import BatchSyncDriver
from trackdash.storefront.tray import TrayClient, to_candidate

router = APIRouter(prefix="/api")

WARNING_UTILIZATION = 70
CRITICAL_UTILIZATION = 90


class ImportRequest(BaseModel):
    orders: list[dict[str, Any]] = Field(min_length=1)


class StorefrontSyncRequest(BaseModel):
    status: str | None = None
    modified: str | None = None


def get_repository(db: AsyncSession = Depends(get_db)) -> OrderRepository:
    return OrderRepository(db)


def get_reconciler(repository: OrderRepository = Depends(get_repository)) -> OrderReconciler:
    try:
        tracker = carrier_loader.get_tracker()
    except LookupError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    return OrderReconciler(repository, tracker)


def serialize_order(order: OrderState, include_history: bool = True) -> dict[str, Any]:
    now = utc_now()
    order = order.with_delay_flag(now)
    data = {
        "id": order.id,
        "order_number": order.order_number,
        "status": order.status.value,
        "freight_type": order.freight_type,
        "sales_channel": order.sales_channel,
        "customer_name": order.customer_name,
        "city": order.city,
        "state": order.state,
        "shipping_date": order.shipping_date,
        "max_shipping_deadline": order.max_shipping_deadline,
        "estimated_delivery_date": order.estimated_delivery_date,
        "last_update": order.last_update,
        "last_api_sync": order.last_api_sync,
        "last_api_error": order.last_api_error,
        "is_delayed": order.is_delayed,
        "delay_days": metrics.delay_days(order, now),
    }
    if include_history:
        data["tracking_history"] = [
            {
                "status": event.status,
                "description": event.description,
                "date": event.date,
                "city": event.city,
                "state": event.state,
            }
            for event in reversed(order.tracking_history)
        ]
    return data


def utilization_level(percent: float) -> str:
    if percent > CRITICAL_UTILIZATION:
        return "CRITICAL"
    if percent > WARNING_UTILIZATION:
        return "WARNING"
    return "OK"


@router.get("/orders")
async def list_orders(repository: OrderRepository = Depends(get_repository)):
    """All orders except canceled ones."""
    orders = await repository.list_visible()
    return [serialize_order(order) for order in orders]


@router.get("/orders/{order_id}")
async def get_order(order_id: int, repository: OrderRepository = Depends(get_repository)):
    return serialize_order(await repository.require(order_id))


@router.post("/orders/import")
async def import_orders(
    body: ImportRequest, repository: OrderRepository = Depends(get_repository)
):
    """Import order candidates parsed from a spreadsheet."""
    summary = await OrderIngestor(repository).ingest(body.orders)
    return {"success": True, "results": summary.as_dict()}


@router.post("/orders/sync-all")
async def sync_all_orders(
    repository: OrderRepository = Depends(get_repository),
    reconciler: OrderReconciler = Depends(get_reconciler),
):
    """Synchronise every active order with the tracking provider."""
    summary = await BatchSyncDriver(repository, reconciler).sync_all_active()
    return {
        "success": True,
        "message": f"Sync finished: {summary.success} succeeded, {summary.failed} failed",
        "results": summary.as_dict(),
    }


@router.post("/orders/{order_id}/sync")
async def sync_order(
    order_id: int,
    repository: OrderRepository = Depends(get_repository),
    reconciler: OrderReconciler = Depends(get_reconciler),
):
    """Synchronise one order and explain the outcome."""
    order = await repository.require(order_id)
    outcome = await reconciler.reconcile(order)

    if isinstance(outcome, Skipped):
        if outcome.reason == FINALIZED_REASON:
            message = "Order already finalized, no sync needed"
        else:
            message = f"Sync attempted, order unchanged: {outcome.reason}"
        return {
            "success": False,
            "message": message,
            "order": serialize_order(outcome.order),
        }
    if isinstance(outcome, ChannelClassified):
        message = "Shipping is managed by the sales channel"
    else:
        message = "Tracking updated"
    return {"success": True, "message": message, "order": serialize_order(outcome.order)}


@router.get("/dashboard")
async def dashboard(repository: OrderRepository = Depends(get_repository)):
    """KPIs and carrier ranking."""
    orders = await repository.list_visible()
    return {
        "stats": metrics.dashboard_stats(orders),
        "carrier_ranking": [stats.as_dict() for stats in metrics.carrier_ranking(orders)],
    }


@router.get("/alerts")
async def alerts(
    min_days: int = Query(default=0, ge=0),
    repository: OrderRepository = Depends(get_repository),
):
    """Delayed, failed and returned orders, most delayed first."""
    orders = await repository.list_visible()
    risky = metrics.risk_orders(orders, min_days=min_days)
    return {
        "total": len(risky),
        "orders": [serialize_order(order, include_history=False) for order in risky],
    }


@router.get("/rate-limit")
async def rate_limit_status():
    """Current utilisation of each outbound rate limiter."""
    limiters = []
    for limiter in (tracking_rate_limiter, storefront_rate_limiter):
        stats = limiter.stats()
        stats["level"] = utilization_level(stats["utilization_percent"])
        limiters.append(stats)
    return {"limiters": limiters}


@router.post("/storefront/sync")
async def sync_storefront(
    body: StorefrontSyncRequest, repository: OrderRepository = Depends(get_repository)
):
    """Pull orders from the Tray storefront and import them."""
    if not settings.tray_api_address or not settings.tray_access_token:
        raise HTTPException(status_code=400, detail="Tray storefront is not configured")

    client = TrayClient(settings.tray_api_address, settings.tray_access_token)
    try:
        tray_orders = await client.fetch_all_orders(status=body.status, modified=body.modified)
    except StorefrontError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    finally:
        await client.aclose()

    summary = await OrderIngestor(repository).ingest(to_candidate(order) for order in tray_orders)
    return {"success": True, "fetched": len(tray_orders), "results": summary.as_dict()}


@router.get("/carriers")
async def list_carriers():
    """Loaded tracking providers."""
    return {
        "carriers": [
            {"id": c.id, "name": c.name, "enabled": c.enabled}
            for c in carrier_loader.list_carriers()
        ],
    }
