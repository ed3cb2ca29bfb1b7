"""API package."""

from trackdash.api.routes import router

__all__ = ["router"]
