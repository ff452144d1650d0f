"""
Order Service

Checkout (cart → pending order), snapshot reads and role-scoped listing.
Status changes after creation belong to the TransitionEngine; this
module only ever writes the initial `pending` state and its
`order_created` event.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.channel.hub import ChannelHub
from orderflow.channel.messages import order_update
from orderflow.core.exceptions import NotFound, Unauthorized, ValidationFailed
from orderflow.domain.actors import Actor, ActorRole
from orderflow.domain.status import ORDER_CREATED, OrderStatus
from orderflow.models import (
    DeliveryPartner,
    MenuItem,
    Order,
    OrderEvent,
    OrderItem,
    Restaurant,
)
from orderflow.schemas import OrderCreate

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass
class OrderTotals:
    subtotal: Decimal
    delivery_fee: Decimal
    discount: Decimal
    total: Decimal


@dataclass
class OrderDetails:
    """An order together with its lines, trail and restaurant."""
    order: Order
    items: list[OrderItem]
    events: list[OrderEvent]
    restaurant: Optional[Restaurant]


def calculate_order_totals(
    subtotal: Decimal,
    delivery_fee: Decimal = Decimal("0"),
    discount: Decimal = Decimal("0"),
) -> OrderTotals:
    """Calculate order total: subtotal + delivery fee - discount."""
    subtotal = Decimal(subtotal).quantize(CENTS, rounding=ROUND_HALF_UP)
    delivery_fee = Decimal(delivery_fee or 0).quantize(CENTS, rounding=ROUND_HALF_UP)
    discount = Decimal(discount or 0).quantize(CENTS, rounding=ROUND_HALF_UP)

    total = subtotal + delivery_fee - discount
    if total < 0:
        raise ValidationFailed("Discount exceeds order value")

    return OrderTotals(subtotal=subtotal, delivery_fee=delivery_fee, discount=discount, total=total)


class OrderService:

    def __init__(self, hub: Optional[ChannelHub] = None):
        self.hub = hub

    # =========================================================================
    # CHECKOUT
    # =========================================================================

    async def create_order(
        self,
        session: AsyncSession,
        payload: OrderCreate,
        actor: Actor,
    ) -> Order:
        """
        Turn a submitted cart into a `pending` order.

        Prices are read from the catalog, not from the request, and copied
        onto the order lines. A customer resubmitting with the same idempotency
        key gets back the order created the first time; keys are scoped to
        the customer, so another caller can never reach that order.

        Raises:
            Unauthorized: caller is not a customer (or admin)
            NotFound: unknown restaurant or menu item
            ValidationFailed: closed restaurant, unavailable or foreign item
        """
        if actor.role not in (ActorRole.CUSTOMER, ActorRole.ADMIN):
            raise Unauthorized(f"{actor.role.value} {actor.user_id} may not place orders")

        if payload.idempotency_key:
            existing = await self._by_idempotency_key(session, actor.user_id, payload.idempotency_key)
            if existing is not None:
                logger.info(
                    f"Duplicate checkout {payload.idempotency_key}; returning order {existing.id}"
                )
                return existing

        restaurant = await session.get(Restaurant, payload.restaurant_id)
        if restaurant is None:
            raise NotFound("Restaurant", payload.restaurant_id)
        if not restaurant.is_active:
            raise ValidationFailed(f"Restaurant {restaurant.name} is not accepting orders")

        menu_ids = {line.menu_item_id for line in payload.items}
        result = await session.execute(select(MenuItem).where(MenuItem.id.in_(menu_ids)))
        menu = {item.id: item for item in result.scalars().all()}

        lines: list[OrderItem] = []
        subtotal = Decimal("0")
        for line in payload.items:
            menu_item = menu.get(line.menu_item_id)
            if menu_item is None:
                raise NotFound("Menu item", line.menu_item_id)
            if menu_item.restaurant_id != restaurant.id:
                raise ValidationFailed(
                    f"Menu item {menu_item.id} does not belong to restaurant {restaurant.id}"
                )
            if not menu_item.is_available:
                raise ValidationFailed(f"{menu_item.name} is currently unavailable")

            lines.append(OrderItem(
                menu_item_id=menu_item.id,
                name=menu_item.name,
                quantity=line.quantity,
                unit_price=menu_item.price,
                special_instructions=line.special_instructions,
            ))
            subtotal += Decimal(menu_item.price) * line.quantity

        totals = calculate_order_totals(subtotal, restaurant.delivery_fee)

        order = Order(
            customer_id=actor.user_id,
            customer_phone=payload.customer_phone,
            customer_email=payload.customer_email,
            restaurant_id=restaurant.id,
            status=OrderStatus.PENDING,
            subtotal=totals.subtotal,
            delivery_fee=totals.delivery_fee,
            discount=totals.discount,
            total=totals.total,
            delivery_address=payload.delivery_address,
            delivery_latitude=payload.delivery_latitude,
            delivery_longitude=payload.delivery_longitude,
            special_instructions=payload.special_instructions,
            idempotency_key=payload.idempotency_key,
        )
        session.add(order)
        await session.flush()

        for item in lines:
            item.order_id = order.id
            session.add(item)

        session.add(OrderEvent(
            order_id=order.id,
            event_type=ORDER_CREATED,
            data={
                "items": [
                    {
                        "menu_item_id": item.menu_item_id,
                        "name": item.name,
                        "quantity": item.quantity,
                        "unit_price": str(item.unit_price),
                    }
                    for item in lines
                ],
                "total": str(totals.total),
            },
        ))

        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            if payload.idempotency_key:
                # Lost a race with an identical submission
                existing = await self._by_idempotency_key(session, actor.user_id, payload.idempotency_key)
                if existing is not None:
                    return existing
            raise

        logger.info(
            f"Order {order.id} placed by {actor.user_id} at {restaurant.name}: "
            f"{len(lines)} line(s), total {totals.total}"
        )

        if self.hub is not None:
            await self.hub.publish(
                [restaurant.owner_id],
                order_update(order.id, OrderStatus.PENDING),
            )

        return order

    @staticmethod
    async def _by_idempotency_key(
        session: AsyncSession,
        customer_id: str,
        key: str,
    ) -> Optional[Order]:
        result = await session.execute(
            select(Order).where(Order.customer_id == customer_id, Order.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # READS
    # =========================================================================

    @staticmethod
    async def can_view(
        session: AsyncSession,
        order: Order,
        actor: Actor,
        restaurant: Optional[Restaurant] = None,
    ) -> bool:
        if actor.is_admin or actor.is_system:
            return True
        if actor.role == ActorRole.CUSTOMER:
            return order.customer_id == actor.user_id
        if actor.role == ActorRole.RESTAURANT_OWNER:
            if restaurant is None:
                restaurant = await session.get(Restaurant, order.restaurant_id)
            return restaurant is not None and restaurant.owner_id == actor.user_id
        if actor.role == ActorRole.DELIVERY_PARTNER and order.delivery_partner_id:
            partner = await session.get(DeliveryPartner, order.delivery_partner_id)
            return partner is not None and partner.user_id == actor.user_id
        return False

    async def get_snapshot(
        self,
        session: AsyncSession,
        order_id: str,
        actor: Actor,
    ) -> OrderDetails:
        """
        Load the full order view: order, lines, ordered event trail and
        restaurant summary.

        Raises:
            NotFound: unknown order id
            Unauthorized: caller is not a party to the order
        """
        order = await session.get(Order, order_id, populate_existing=True)
        if order is None:
            raise NotFound("Order", order_id)

        restaurant = await session.get(Restaurant, order.restaurant_id)
        if not await self.can_view(session, order, actor, restaurant):
            raise Unauthorized(f"{actor.role.value} {actor.user_id} may not view order {order_id}")

        items = await session.execute(
            select(OrderItem).where(OrderItem.order_id == order.id).order_by(OrderItem.id)
        )
        events = await session.execute(
            select(OrderEvent)
            .where(OrderEvent.order_id == order.id)
            .order_by(OrderEvent.created_at, OrderEvent.id)
        )

        return OrderDetails(
            order=order,
            items=list(items.scalars().all()),
            events=list(events.scalars().all()),
            restaurant=restaurant,
        )

    async def list_orders(
        self,
        session: AsyncSession,
        actor: Actor,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[int, list[Order]]:
        """
        Orders visible to `actor`, newest first.

            customer          → orders they placed
            restaurant_owner  → orders at restaurants they own
            delivery_partner  → orders assigned to them
            admin             → everything
        """
        query = select(Order)
        count_query = select(func.count(Order.id))

        if actor.role == ActorRole.CUSTOMER:
            scope = Order.customer_id == actor.user_id
        elif actor.role == ActorRole.RESTAURANT_OWNER:
            owned = select(Restaurant.id).where(Restaurant.owner_id == actor.user_id)
            scope = Order.restaurant_id.in_(owned)
        elif actor.role == ActorRole.DELIVERY_PARTNER:
            mine = select(DeliveryPartner.id).where(DeliveryPartner.user_id == actor.user_id)
            scope = Order.delivery_partner_id.in_(mine)
        elif actor.is_admin:
            scope = None
        else:
            raise Unauthorized(f"{actor.role.value} may not list orders")

        if scope is not None:
            query = query.where(scope)
            count_query = count_query.where(scope)
        if status is not None:
            query = query.where(Order.status == status)
            count_query = count_query.where(Order.status == status)

        total = (await session.execute(count_query)).scalar() or 0

        query = query.order_by(Order.created_at.desc(), Order.id).offset(skip).limit(limit)
        orders = (await session.execute(query)).scalars().all()
        return total, list(orders)
