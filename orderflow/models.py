"""
SQLAlchemy Database Models

Order aggregate (orders, order_items, order_events) plus the read-only
collaborator records it depends on (restaurants, menu_items,
delivery_partners).

Money is stored as NUMERIC(10, 2) and handled as Decimal throughout.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from orderflow.database import Base
from orderflow.domain.status import OrderStatus, PaymentStatus


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


MONEY = Numeric(10, 2, asdecimal=True)


class PartnerStatus(str, enum.Enum):
    """Delivery partner availability."""
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


class Restaurant(Base):
    """Restaurant summary as needed by ordering (catalog owns the rest)."""
    __tablename__ = "restaurants"

    id = Column(String(36), primary_key=True, default=_new_id)
    owner_id = Column(String(36), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    address = Column(Text, nullable=True)
    delivery_fee = Column(MONEY, nullable=False, default=0)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<Restaurant {self.id} - {self.name}>"


class MenuItem(Base):
    """Catalog entry. Prices are copied into OrderItem at checkout."""
    __tablename__ = "menu_items"

    id = Column(String(36), primary_key=True, default=_new_id)
    restaurant_id = Column(String(36), ForeignKey("restaurants.id"), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    price = Column(MONEY, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<MenuItem {self.id} - {self.name} @ {self.price}>"


class DeliveryPartner(Base):
    __tablename__ = "delivery_partners"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), nullable=False, unique=True, index=True)
    status = Column(
        Enum(PartnerStatus),
        default=PartnerStatus.OFFLINE,
        nullable=False,
        index=True
    )
    current_latitude = Column(Float, nullable=True)
    current_longitude = Column(Float, nullable=True)
    total_deliveries = Column(Integer, default=0, nullable=False)
    last_assigned_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self):
        return f"<DeliveryPartner {self.id} - {self.status.value}>"


class Order(Base):
    """
    Canonical order record.

    `status` is a cached projection of the latest status-type OrderEvent;
    the engine writes both in the same transaction.
    """
    __tablename__ = "orders"
    __table_args__ = (
        # Retried checkouts are deduplicated per customer
        UniqueConstraint("customer_id", "idempotency_key", name="uq_orders_customer_idempotency"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)

    # =========================================================================
    # PARTIES
    # =========================================================================
    customer_id = Column(String(36), nullable=False, index=True)
    customer_phone = Column(String(20), nullable=True)
    customer_email = Column(String(100), nullable=True)
    restaurant_id = Column(String(36), ForeignKey("restaurants.id"), nullable=False, index=True)
    delivery_partner_id = Column(
        String(36),
        ForeignKey("delivery_partners.id"),
        nullable=True,
        index=True
    )

    # =========================================================================
    # ORDER STATUS
    # =========================================================================
    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True
    )

    # =========================================================================
    # PRICING
    # =========================================================================
    subtotal = Column(MONEY, nullable=False)
    delivery_fee = Column(MONEY, nullable=False, default=0)
    discount = Column(MONEY, nullable=False, default=0)
    total = Column(MONEY, nullable=False)

    # =========================================================================
    # PAYMENT INFO
    # =========================================================================
    payment_status = Column(
        Enum(PaymentStatus),
        default=PaymentStatus.PENDING,
        nullable=False
    )

    # =========================================================================
    # DELIVERY
    # =========================================================================
    delivery_address = Column(Text, nullable=False)
    delivery_latitude = Column(Float, nullable=True)
    delivery_longitude = Column(Float, nullable=True)
    special_instructions = Column(Text, nullable=True)
    estimated_delivery_at = Column(DateTime(timezone=True), nullable=True)

    idempotency_key = Column(String(64), nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<Order #{self.id} - {self.status.value}>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=_new_id)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    menu_item_id = Column(String(36), ForeignKey("menu_items.id"), nullable=False)
    name = Column(String(120), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(MONEY, nullable=False)  # snapshot at order creation
    special_instructions = Column(Text, nullable=True)

    def __repr__(self):
        return f"<OrderItem {self.menu_item_id} x{self.quantity}>"


class OrderEvent(Base):
    """
    Append-only trail entry. Rows are inserted, never updated or deleted.
    The integer id breaks ties between events sharing a timestamp.
    """
    __tablename__ = "order_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False)
    data = Column(JSON, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self):
        return f"<OrderEvent {self.order_id} {self.event_type}>"
