"""
Cart Aggregate

Client-held, in-progress order bound to exactly one restaurant. The cart
never silently switches restaurants: adding an item from another
restaurant to a non-empty cart raises RestaurantMismatch and leaves the
cart untouched. Prices are snapshots taken from the catalog at add time.

Example:
    >>> cart = Cart()
    >>> cart.add_item(MenuItemRef("item-a", "Margherita", Decimal("5.00")), "r1", quantity=2)
    >>> cart.get_subtotal()
    Decimal('10.00')
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, TypeVar

from orderflow.core.exceptions import NotFound, RestaurantMismatch, ValidationFailed

logger = logging.getLogger(__name__)

T = TypeVar("T")

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class MenuItemRef:
    """Catalog entry as seen at add-to-cart time."""
    id: str
    name: str
    price: Decimal


@dataclass
class CartLine:
    item_id: str
    name: str
    unit_price: Decimal
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class Cart:
    """Ordered sequence of CartLine tagged with one restaurant id."""

    def __init__(self) -> None:
        self._lines: list[CartLine] = []
        self.restaurant_id: Optional[str] = None

    @property
    def lines(self) -> tuple[CartLine, ...]:
        return tuple(self._lines)

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def _find(self, item_id: str) -> Optional[CartLine]:
        for line in self._lines:
            if line.item_id == item_id:
                return line
        return None

    def add_item(self, item: MenuItemRef, restaurant_id: str, quantity: int = 1) -> CartLine:
        """Append a new line or increment an existing one."""
        if quantity < 1:
            raise ValidationFailed("Quantity must be at least 1")

        if self._lines and self.restaurant_id != restaurant_id:
            raise RestaurantMismatch(self.restaurant_id, restaurant_id)

        self.restaurant_id = restaurant_id
        line = self._find(item.id)
        if line:
            line.quantity += quantity
        else:
            line = CartLine(
                item_id=item.id,
                name=item.name,
                unit_price=Decimal(item.price),
                quantity=quantity,
            )
            self._lines.append(line)
        return line

    def remove_item(self, item_id: str) -> None:
        self._lines = [line for line in self._lines if line.item_id != item_id]
        if not self._lines:
            self.restaurant_id = None

    def update_quantity(self, item_id: str, quantity: int) -> None:
        """Set a line's quantity; zero or less removes the line."""
        if quantity <= 0:
            self.remove_item(item_id)
            return

        line = self._find(item_id)
        if line is None:
            raise NotFound("Cart item", item_id)
        line.quantity = quantity

    def clear(self) -> None:
        self._lines = []
        self.restaurant_id = None

    def get_subtotal(self) -> Decimal:
        return sum((line.line_total for line in self._lines), ZERO)

    def get_item_count(self) -> int:
        return sum(line.quantity for line in self._lines)

    def to_order_payload(
        self,
        delivery_address: str,
        special_instructions: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> dict[str, Any]:
        """Build the body accepted by POST /api/orders."""
        return {
            "restaurant_id": self.restaurant_id,
            "delivery_address": delivery_address,
            "special_instructions": special_instructions,
            "idempotency_key": idempotency_key or uuid.uuid4().hex,
            "items": [
                {
                    "menu_item_id": line.item_id,
                    "quantity": line.quantity,
                    "unit_price": str(line.unit_price),
                }
                for line in self._lines
            ],
        }

    async def checkout(
        self,
        submit: Callable[[dict[str, Any]], Awaitable[T]],
        delivery_address: str,
        special_instructions: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> T:
        """
        Submit the cart as a new order.

        The cart is cleared only after `submit` returns; if it raises, the
        cart is left intact so the caller can retry. Retries should reuse
        the same idempotency key so the server does not create twice.
        """
        if self.is_empty:
            raise ValidationFailed("Cannot check out an empty cart")

        payload = self.to_order_payload(
            delivery_address=delivery_address,
            special_instructions=special_instructions,
            idempotency_key=idempotency_key,
        )
        result = await submit(payload)

        logger.info(
            f"Checked out {self.get_item_count()} items from restaurant {self.restaurant_id}"
        )
        self.clear()
        return result
