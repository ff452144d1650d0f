"""
Pydantic Schemas for Request/Response Validation
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from orderflow.domain.status import OrderStatus, PaymentStatus


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderItemCreate(BaseModel):
    """Single cart line submitted at checkout."""
    menu_item_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1, le=99, examples=[2])
    # Client-side snapshot; the server re-reads the catalog and ignores it
    unit_price: Optional[Decimal] = Field(None, ge=0)
    special_instructions: Optional[str] = Field(None, max_length=200)


class OrderCreate(BaseModel):
    """Request schema for checking out a cart."""
    restaurant_id: str = Field(..., min_length=1)
    items: List[OrderItemCreate] = Field(..., min_length=1)
    delivery_address: str = Field(..., min_length=3, max_length=500, examples=["350 Fifth Avenue"])
    delivery_latitude: Optional[float] = Field(None, ge=-90, le=90)
    delivery_longitude: Optional[float] = Field(None, ge=-180, le=180)
    special_instructions: Optional[str] = Field(None, max_length=500)
    idempotency_key: Optional[str] = Field(None, max_length=64)
    customer_phone: Optional[str] = Field(None, max_length=20, examples=["+15551234567"])
    customer_email: Optional[str] = Field(None, max_length=100)


class TransitionRequest(BaseModel):
    """Request to move an order to a new status."""
    status: OrderStatus
    # Status the caller last saw; a stale view is rejected with 409
    expected_status: Optional[OrderStatus] = None


class LocationReport(BaseModel):
    """Courier device position report."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OrderResponse(BaseModel):
    """Response schema for a single order."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_id: str
    restaurant_id: str
    delivery_partner_id: Optional[str]
    status: OrderStatus
    subtotal: Decimal
    delivery_fee: Decimal
    discount: Decimal
    total: Decimal
    payment_status: PaymentStatus
    delivery_address: str
    delivery_latitude: Optional[float]
    delivery_longitude: Optional[float]
    special_instructions: Optional[str]
    estimated_delivery_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime]


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    menu_item_id: str
    name: str
    quantity: int
    unit_price: Decimal
    special_instructions: Optional[str]


class OrderEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_type: str
    data: Optional[dict[str, Any]]
    latitude: Optional[float]
    longitude: Optional[float]
    created_at: datetime


class RestaurantSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    address: Optional[str]
    delivery_fee: Decimal


class OrderSnapshot(OrderResponse):
    """Full order view: order + items + event trail + restaurant summary."""
    items: List[OrderItemResponse]
    events: List[OrderEventResponse]
    restaurant: Optional[RestaurantSummary]


class OrderListResponse(BaseModel):
    """Response for listing multiple orders."""
    total: int
    orders: List[OrderResponse]


class AssignmentResponse(BaseModel):
    success: bool = True
    order_id: str
    delivery_partner_id: str


class LocationAcceptedResponse(BaseModel):
    success: bool = True
    order_id: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    notification_service: str
    live_subscribers: int
    timestamp: datetime
