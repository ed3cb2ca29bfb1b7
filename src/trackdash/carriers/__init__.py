"""Tracking provider adapters package."""

from trackdash.carriers.base import BaseCarrier, CarrierConfig, FetchOutcome, TrackingResult

__all__ = ["BaseCarrier", "CarrierConfig", "FetchOutcome", "TrackingResult"]
