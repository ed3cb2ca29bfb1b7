"""Logistics tracking dashboard backend."""
