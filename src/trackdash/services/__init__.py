"""Services package."""

from trackdash.services.carrier_loader import CarrierLoader
from trackdash.services.classifier import CarrierClassifier
from trackdash.services.ingestion import OrderIngestor
from trackdash.services.rate_limiter import SlidingWindowRateLimiter
from trackdash.services.reconciler import OrderReconciler
from trackdash.services.repository import OrderRepository
from trackdash.services.sync import BatchSyncDriver

__all__ = [
    "BatchSyncDriver",
    "CarrierClassifier",
    "CarrierLoader",
    "OrderIngestor",
    "OrderReconciler",
    "OrderRepository",
    "SlidingWindowRateLimiter",
]
