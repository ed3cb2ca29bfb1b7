"""Base classes for tracking provider adapters."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from trackdash.db.models import OrderStatus
from trackdash.orders import TrackingEntry
from trackdash.status import StatusRule, match_status


class FetchOutcome(str, Enum):
    FOUND = "found"
    NO_DATA = "no_data"  # Provider answered but does not know the order (yet)
    FAILED = "failed"  # Transport error, timeout, HTTP or application error


@dataclass
class TrackingResult:
    """Result from looking an order up with a tracking provider."""

    outcome: FetchOutcome
    status: OrderStatus = OrderStatus.PENDING
    status_text: str = ""
    carrier_name: str | None = None
    expected_delivery: datetime | None = None
    events: list[TrackingEntry] = field(default_factory=list)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome is FetchOutcome.FOUND

    @classmethod
    def no_data(cls, reason: str = "No tracking data yet") -> "TrackingResult":
        return cls(outcome=FetchOutcome.NO_DATA, error=reason)

    @classmethod
    def failed(cls, reason: str) -> "TrackingResult":
        return cls(outcome=FetchOutcome.FAILED, error=reason)


@dataclass
class CarrierConfig:
    """Configuration loaded from carrier.yaml."""

    id: str
    name: str
    endpoint: str
    status_rules: list[StatusRule]
    client_id: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    enabled: bool = True

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "CarrierConfig":
        """Load carrier configuration from a YAML file."""
        with open(yaml_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)

        return cls(
            id=data["id"],
            name=data["name"],
            endpoint=data["endpoint"],
            status_rules=[StatusRule.from_dict(rule) for rule in data.get("status_rules", [])],
            client_id=str(data.get("client_id", "")),
            headers=data.get("headers", {}),
            enabled=data.get("enabled", True),
        )


class BaseCarrier(ABC):
    """Abstract base class for tracking provider adapters.

    To add a provider:
    1. Create a directory in /carriers/ with the provider ID
    2. Add a carrier.yaml with the endpoint and ordered status rules
    3. Create a tracker.py that subclasses BaseCarrier
    4. Implement the fetch_status method
    """

    def __init__(self, config: CarrierConfig):
        self.config = config

    def normalise_status(self, *texts: str | None) -> OrderStatus:
        """Map provider status text to the canonical status.

        Each candidate text is tried in turn against the ordered rules; the
        first rule that matches wins. Unmatched text falls back to PENDING.
        """
        for text in texts:
            status = match_status(text, self.config.status_rules)
            if status is not None:
                return status
        return OrderStatus.PENDING

    @abstractmethod
    async def fetch_status(self, order_number: str) -> TrackingResult:
        """Fetch the current tracking state of an order.

        Implementations must not raise for network or provider errors; they
        return a FAILED result instead.

        Args:
            order_number: The order's business key.

        Returns:
            TrackingResult describing what the provider knows.
        """
        pass

    async def aclose(self) -> None:
        """Release any network resources held by the adapter."""
        return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp from a provider payload."""
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
