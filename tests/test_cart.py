"""Tests for the single-restaurant cart aggregate."""

from decimal import Decimal

import pytest

from orderflow.core.exceptions import NotFound, RestaurantMismatch, ValidationFailed
from orderflow.domain.cart import Cart, MenuItemRef

PIZZA = MenuItemRef("item-a", "Margherita", Decimal("5.00"))
CALZONE = MenuItemRef("item-b", "Calzone", Decimal("10.00"))
RAMEN = MenuItemRef("item-r", "Ramen", Decimal("12.00"))


def _cart_with_pizza(quantity=2):
    cart = Cart()
    cart.add_item(PIZZA, "r1", quantity=quantity)
    return cart


class TestAddItem:
    def test_binds_cart_to_restaurant(self):
        cart = _cart_with_pizza()
        assert cart.restaurant_id == "r1"
        assert len(cart.lines) == 1

    def test_same_item_increments_quantity(self):
        cart = _cart_with_pizza()
        cart.add_item(PIZZA, "r1")
        assert cart.lines[0].quantity == 3
        assert len(cart.lines) == 1

    def test_other_restaurant_rejected_without_mutation(self):
        cart = _cart_with_pizza()

        with pytest.raises(RestaurantMismatch) as exc:
            cart.add_item(RAMEN, "r2")

        assert exc.value.bound_restaurant_id == "r1"
        assert cart.restaurant_id == "r1"
        assert [line.item_id for line in cart.lines] == ["item-a"]
        assert cart.get_subtotal() == Decimal("10.00")

    def test_zero_quantity_rejected(self):
        with pytest.raises(ValidationFailed):
            Cart().add_item(PIZZA, "r1", quantity=0)

    def test_price_is_snapshotted(self):
        cart = _cart_with_pizza(quantity=1)
        assert cart.lines[0].unit_price == Decimal("5.00")


class TestQuantities:
    def test_update_to_zero_removes_line(self):
        cart = _cart_with_pizza()
        cart.add_item(CALZONE, "r1")

        cart.update_quantity("item-a", 0)

        assert [line.item_id for line in cart.lines] == ["item-b"]
        assert cart.restaurant_id == "r1"

    def test_removing_last_line_unbinds_restaurant(self):
        cart = _cart_with_pizza()
        cart.remove_item("item-a")

        assert cart.is_empty
        assert cart.restaurant_id is None
        cart.add_item(RAMEN, "r2")
        assert cart.restaurant_id == "r2"

    def test_update_unknown_item(self):
        with pytest.raises(NotFound):
            _cart_with_pizza().update_quantity("missing", 3)

    def test_subtotal_and_count(self):
        cart = _cart_with_pizza()
        cart.add_item(CALZONE, "r1", quantity=3)

        assert cart.get_subtotal() == Decimal("40.00")
        assert cart.get_item_count() == 5

    def test_empty_cart_totals(self):
        cart = Cart()
        assert cart.get_subtotal() == Decimal("0")
        assert cart.get_item_count() == 0

    def test_clear(self):
        cart = _cart_with_pizza()
        cart.clear()
        assert cart.is_empty
        assert cart.restaurant_id is None


class TestCheckout:
    async def test_submits_payload_and_clears(self):
        cart = _cart_with_pizza()
        submitted = []

        async def submit(payload):
            submitted.append(payload)
            return "order-1"

        result = await cart.checkout(submit, "350 Fifth Avenue", idempotency_key="key-1")

        assert result == "order-1"
        assert cart.is_empty
        payload = submitted[0]
        assert payload["restaurant_id"] == "r1"
        assert payload["idempotency_key"] == "key-1"
        assert payload["items"] == [
            {"menu_item_id": "item-a", "quantity": 2, "unit_price": "5.00"}
        ]

    async def test_failed_submit_leaves_cart_intact(self):
        cart = _cart_with_pizza()

        async def submit(payload):
            raise ConnectionError("offline")

        with pytest.raises(ConnectionError):
            await cart.checkout(submit, "350 Fifth Avenue")

        assert cart.get_item_count() == 2
        assert cart.restaurant_id == "r1"

    async def test_empty_cart_cannot_check_out(self):
        async def submit(payload):
            return None

        with pytest.raises(ValidationFailed):
            await Cart().checkout(submit, "350 Fifth Avenue")

    def test_payload_generates_idempotency_key(self):
        payload = _cart_with_pizza().to_order_payload("350 Fifth Avenue")
        assert payload["idempotency_key"]
