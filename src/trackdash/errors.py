"""Exceptions raised for infrastructure faults.

Business outcomes (finalized order, channel logistics, no tracking data) are
never raised; they are returned as result variants by the services.
"""


class TrackdashError(Exception):
    """Base class for trackdash errors."""


class StoreError(TrackdashError):
    """The order store could not complete an operation."""


class OrderNotFoundError(TrackdashError):
    """No order exists for the given identifier."""

    def __init__(self, identifier):
        super().__init__(f"Order {identifier} not found")
        self.identifier = identifier


class StorefrontError(TrackdashError):
    """The storefront API returned an error or could not be reached."""
