"""
Transition Engine

Validates and applies order status changes. Each accepted change updates
`orders.status` and appends a `status_<status>` OrderEvent in one database
transaction, so no reader ever sees one without the other.

Concurrency:
    Writes to one order are serialized by a per-order asyncio.Lock (and a
    row lock where the database supports SELECT ... FOR UPDATE). The lock
    covers only load, validate and commit. Fan-out to the live channel
    and notification dispatch happen after it is released, so a slow
    subscriber can never hold up order mutation.

Authorization:
    pending → confirmed → preparing → ready_for_pickup
        owning restaurant's staff, or an admin
    ready_for_pickup → out_for_delivery → delivered
        the attached delivery partner, the system (assignment step), or an admin
    → cancelled (from pending / confirmed / preparing)
        owning restaurant's staff, or an admin

    Repeating the current status is a no-op, but only for a caller who
    could have made that move.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.channel.hub import ChannelHub
from orderflow.channel.messages import order_update
from orderflow.core.exceptions import InvalidTransition, NotFound, Unauthorized
from orderflow.domain.actors import Actor, ActorRole
from orderflow.domain.status import (
    COURIER_TARGETS,
    KITCHEN_TARGETS,
    OrderStatus,
    allowed_next,
    status_event_type,
)
from orderflow.models import DeliveryPartner, Order, OrderEvent, PartnerStatus, Restaurant

logger = logging.getLogger(__name__)

# Called after a committed transition: (order, previous_status)
StatusNotifier = Callable[[Order, OrderStatus], None]


@dataclass
class _OrderLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


@dataclass
class TransitionResult:
    order: Order
    previous_status: OrderStatus
    changed: bool


class TransitionEngine:
    """Single writer for order status."""

    def __init__(
        self,
        hub: Optional[ChannelHub] = None,
        notifier: Optional[StatusNotifier] = None,
    ):
        self.hub = hub
        self.notifier = notifier
        self._locks: dict[str, _OrderLock] = {}

    # =========================================================================
    # LOCKING
    # =========================================================================

    @asynccontextmanager
    async def order_lock(self, order_id: str) -> AsyncIterator[None]:
        """
        Per-order mutual exclusion scope shared by every order writer.

        An entry lives only while someone holds or awaits it, so the map
        stays as small as the number of orders currently being written.
        """
        entry = self._locks.get(order_id)
        if entry is None:
            entry = self._locks[order_id] = _OrderLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[order_id]

    @staticmethod
    async def load_for_update(session: AsyncSession, order_id: str) -> Order:
        result = await session.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFound("Order", order_id)
        return order

    # =========================================================================
    # AUTHORIZATION
    # =========================================================================

    @staticmethod
    def authorize(
        order: Order,
        restaurant: Optional[Restaurant],
        partner: Optional[DeliveryPartner],
        requested: OrderStatus,
        actor: Actor,
    ) -> None:
        if actor.is_admin:
            return

        owns_restaurant = (
            actor.role == ActorRole.RESTAURANT_OWNER
            and restaurant is not None
            and restaurant.owner_id == actor.user_id
        )

        if requested in KITCHEN_TARGETS or requested == OrderStatus.CANCELLED:
            if owns_restaurant:
                return
        elif requested in COURIER_TARGETS:
            if actor.is_system:
                return
            if (
                actor.role == ActorRole.DELIVERY_PARTNER
                and partner is not None
                and partner.user_id == actor.user_id
            ):
                return

        raise Unauthorized(
            f"{actor.role.value} {actor.user_id} may not move order {order.id} "
            f"to '{requested.value}'"
        )

    # =========================================================================
    # TRANSITION
    # =========================================================================

    async def apply_transition(
        self,
        session: AsyncSession,
        order_id: str,
        requested: OrderStatus,
        actor: Actor,
        expected_status: Optional[OrderStatus] = None,
    ) -> TransitionResult:
        """
        Move an order to `requested`.

        Args:
            session: Database session (committed on success, rolled back on failure)
            order_id: Order to change
            requested: Target status
            actor: Authenticated caller
            expected_status: Status the caller last observed. When given, a
                request made against a stale view fails with InvalidTransition
                instead of being applied to whatever the order became since.

        Returns:
            TransitionResult; `changed` is False for an idempotent repeat.

        Raises:
            NotFound, InvalidTransition, Unauthorized
        """
        requested = OrderStatus(requested)

        async with self.order_lock(order_id):
            try:
                order = await self.load_for_update(session, order_id)
                current = order.status

                restaurant = await session.get(Restaurant, order.restaurant_id)
                partner = None
                if order.delivery_partner_id:
                    partner = await session.get(DeliveryPartner, order.delivery_partner_id)

                if requested == current:
                    self.authorize(order, restaurant, partner, requested, actor)
                    logger.info(f"Order {order_id} already '{current.value}'; no-op")
                    # Ends the read transaction (and row lock) without expiring `order`
                    await session.commit()
                    return TransitionResult(order=order, previous_status=current, changed=False)

                if requested not in allowed_next(current):
                    raise InvalidTransition(current.value, requested.value)

                if expected_status is not None and OrderStatus(expected_status) != current:
                    raise InvalidTransition(current.value, requested.value)

                self.authorize(order, restaurant, partner, requested, actor)

                order.status = requested
                session.add(OrderEvent(
                    order_id=order.id,
                    event_type=status_event_type(requested),
                    data={
                        "previous_status": current.value,
                        "new_status": requested.value,
                        "actor_id": actor.user_id,
                        "actor_role": actor.role.value,
                    },
                ))

                if requested == OrderStatus.DELIVERED and partner is not None:
                    partner.status = PartnerStatus.AVAILABLE
                    partner.total_deliveries = (partner.total_deliveries or 0) + 1

                await session.commit()

            except (InvalidTransition, Unauthorized, NotFound):
                await session.rollback()
                raise
            except SQLAlchemyError:
                logger.exception(f"Commit failed for order {order_id} -> {requested.value}")
                await session.rollback()
                raise

        logger.info(
            f"Order {order_id}: {current.value} -> {requested.value} "
            f"by {actor.role.value} {actor.user_id}"
        )

        await self.publish_status(order, restaurant, partner)
        self._notify(order, current)

        return TransitionResult(order=order, previous_status=current, changed=True)

    # =========================================================================
    # POST-COMMIT SIDE EFFECTS
    # =========================================================================

    async def publish_status(
        self,
        order: Order,
        restaurant: Optional[Restaurant],
        partner: Optional[DeliveryPartner],
    ) -> int:
        """Send `order_update` to the customer, restaurant staff and courier."""
        if self.hub is None:
            return 0

        recipients = [
            order.customer_id,
            restaurant.owner_id if restaurant else None,
            partner.user_id if partner else None,
        ]
        return await self.hub.publish(
            recipients,
            order_update(order.id, order.status, order.delivery_partner_id),
        )

    def _notify(self, order: Order, previous: OrderStatus) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier(order, previous)
        except Exception:
            # The transition is committed; a notification outage must not undo it
            logger.exception(f"Status notification failed for order {order.id}")
