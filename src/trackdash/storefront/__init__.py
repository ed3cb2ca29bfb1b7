"""Storefront API clients."""

from trackdash.storefront.tray import TrayClient, to_candidate

__all__ = ["TrayClient", "to_candidate"]
