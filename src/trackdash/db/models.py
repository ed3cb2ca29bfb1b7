"""Database models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class OrderStatus(str, Enum):
    """Canonical order status across ingestion and tracking providers."""

    PENDING = "PENDING"  # Imported, waiting for carrier data
    CREATED = "CREATED"  # Registered with the carrier
    SHIPPED = "SHIPPED"  # In transit
    DELIVERY_ATTEMPT = "DELIVERY_ATTEMPT"  # Out for delivery
    DELIVERED = "DELIVERED"
    FAILURE = "FAILURE"  # Lost, stolen or damaged
    RETURNED = "RETURNED"
    CANCELED = "CANCELED"
    CHANNEL_LOGISTICS = "CHANNEL_LOGISTICS"  # Shipping handled by the marketplace

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        OrderStatus.DELIVERED,
        OrderStatus.FAILURE,
        OrderStatus.RETURNED,
        OrderStatus.CANCELED,
    }
)


class Order(Base):
    """A shipment order."""

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_number: Mapped[str] = mapped_column(String(100), unique=True, index=True)

    # Customer and destination
    customer_name: Mapped[str] = mapped_column(String(255), default="Desconhecido")
    city: Mapped[str | None] = mapped_column(String(120), nullable=True)
    state: Mapped[str | None] = mapped_column(String(60), nullable=True)
    zip_code: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Logistics
    sales_channel: Mapped[str] = mapped_column(String(120), default="Não identificado")
    freight_type: Mapped[str] = mapped_column(String(255), default="Aguardando")
    freight_value: Mapped[float] = mapped_column(default=0.0)
    total_value: Mapped[float] = mapped_column(default=0.0)
    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tracking_code: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Dates
    shipping_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    max_shipping_deadline: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    estimated_delivery_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Tracking state
    status: Mapped[OrderStatus] = mapped_column(default=OrderStatus.PENDING, index=True)
    is_delayed: Mapped[bool] = mapped_column(default=False)
    last_update: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_api_sync: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_api_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    events: Mapped[list["TrackingEvent"]] = relationship(
        back_populates="order",
        order_by="TrackingEvent.event_date",
        cascade="all, delete-orphan",
    )


class TrackingEvent(Base):
    """A tracking event for an order."""

    __tablename__ = "tracking_events"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), index=True)

    # Event details
    status: Mapped[str] = mapped_column(String(60))  # Provider code or canonical status
    description: Mapped[str] = mapped_column(Text)
    event_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    city: Mapped[str | None] = mapped_column(String(120), nullable=True)
    state: Mapped[str | None] = mapped_column(String(60), nullable=True)

    # Metadata
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relationships
    order: Mapped["Order"] = relationship(back_populates="events")
