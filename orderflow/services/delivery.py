"""
Delivery Service

Attaches a courier to an order once the kitchen marks it ready, and
relays courier position reports to the customer.

Assignment runs inside the same per-order lock the TransitionEngine
uses, so it can never interleave with a status change on that order.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.channel.messages import location_update, order_update
from orderflow.core.exceptions import (
    InvalidTransition,
    NoPartnerAvailable,
    NotFound,
    Unauthorized,
)
from orderflow.domain.actors import SYSTEM_ACTOR, Actor, ActorRole
from orderflow.domain.status import DELIVERY_ASSIGNED, LOCATION_UPDATE, OrderStatus
from orderflow.models import DeliveryPartner, Order, OrderEvent, PartnerStatus, Restaurant
from orderflow.core.config import get_settings
from orderflow.services.assignment import (
    BaseAssignmentStrategy,
    Location,
    estimate_delivery_at,
    get_assignment_strategy,
)
from orderflow.services.transitions import TransitionEngine

logger = logging.getLogger(__name__)


class DeliveryService:

    def __init__(
        self,
        engine: TransitionEngine,
        strategy: Optional[BaseAssignmentStrategy] = None,
    ):
        self.engine = engine
        self.strategy = strategy or get_assignment_strategy()
        self.settings = get_settings()

    @property
    def hub(self):
        return self.engine.hub

    # =========================================================================
    # ASSIGNMENT
    # =========================================================================

    async def assign_delivery_partner(
        self,
        session: AsyncSession,
        order_id: str,
        actor: Actor = SYSTEM_ACTOR,
    ) -> Order:
        """
        Select an available partner for a `ready_for_pickup` order and
        attach them.

        An order that already has a partner is returned unchanged.

        Raises:
            NotFound: unknown order
            Unauthorized: caller is not the system, an admin or the restaurant owner
            InvalidTransition: order is not ready for pickup
            NoPartnerAvailable: no eligible partner right now; retry later
        """
        async with self.engine.order_lock(order_id):
            try:
                order = await self.engine.load_for_update(session, order_id)
                restaurant = await session.get(Restaurant, order.restaurant_id)
                self._authorize(restaurant, actor)

                if order.delivery_partner_id:
                    logger.info(f"Order {order_id} already assigned to {order.delivery_partner_id}")
                    await session.commit()
                    return order

                if order.status != OrderStatus.READY_FOR_PICKUP:
                    raise InvalidTransition(order.status.value, "assigned")

                result = await session.execute(
                    select(DeliveryPartner)
                    .where(DeliveryPartner.status == PartnerStatus.AVAILABLE)
                    .with_for_update()
                )
                candidates = list(result.scalars().all())

                origin = None
                if restaurant is not None and restaurant.latitude is not None \
                        and restaurant.longitude is not None:
                    origin = Location(restaurant.latitude, restaurant.longitude)

                partner = self.strategy.select(candidates, origin)
                if partner is None:
                    raise NoPartnerAvailable(order_id)

                order.delivery_partner_id = partner.id
                order.estimated_delivery_at = self._estimate_delivery_at(order, partner, origin)
                partner.status = PartnerStatus.BUSY
                partner.last_assigned_at = datetime.now(timezone.utc)

                session.add(OrderEvent(
                    order_id=order.id,
                    event_type=DELIVERY_ASSIGNED,
                    data={
                        "delivery_partner_id": partner.id,
                        "strategy": self.strategy.name,
                        "actor_id": actor.user_id,
                        "estimated_delivery_at": order.estimated_delivery_at.isoformat(),
                    },
                ))
                await session.commit()

            except (NotFound, Unauthorized, InvalidTransition, NoPartnerAvailable):
                await session.rollback()
                raise

        logger.info(f"Order {order_id} assigned to partner {partner.id} ({self.strategy.name})")

        if self.hub is not None:
            await self.hub.publish(
                [order.customer_id, restaurant.owner_id if restaurant else None, partner.user_id],
                order_update(order.id, order.status, partner.id),
            )

        return order

    @staticmethod
    def _authorize(restaurant: Optional[Restaurant], actor: Actor) -> None:
        if actor.is_admin or actor.is_system:
            return
        if (
            actor.role == ActorRole.RESTAURANT_OWNER
            and restaurant is not None
            and restaurant.owner_id == actor.user_id
        ):
            return
        raise Unauthorized(f"{actor.role.value} {actor.user_id} may not assign couriers")

    def _estimate_delivery_at(
        self,
        order: Order,
        partner: DeliveryPartner,
        origin: Optional[Location],
    ) -> datetime:
        dropoff = None
        if order.delivery_latitude is not None and order.delivery_longitude is not None:
            dropoff = Location(order.delivery_latitude, order.delivery_longitude)

        courier = None
        if partner.current_latitude is not None and partner.current_longitude is not None:
            courier = Location(partner.current_latitude, partner.current_longitude)

        return estimate_delivery_at(
            origin,
            dropoff,
            courier,
            speed_kmh=self.settings.courier_speed_kmh,
            fallback_minutes=self.settings.eta_fallback_minutes,
        )

    async def auto_assign(self, session: AsyncSession, order_id: str) -> Optional[Order]:
        """
        Best-effort assignment right after an order becomes ready.

        Returns None when nobody is free; the order stays unassigned and
        can be retried through the assignment endpoint.
        """
        try:
            return await self.assign_delivery_partner(session, order_id, SYSTEM_ACTOR)
        except NoPartnerAvailable:
            logger.warning(f"No delivery partner available for order {order_id}; left unassigned")
            return None

    # =========================================================================
    # LOCATION
    # =========================================================================

    async def report_location(
        self,
        session: AsyncSession,
        actor: Actor,
        latitude: float,
        longitude: float,
    ) -> Optional[str]:
        """
        Record a courier position.

        If the courier is carrying an order (`out_for_delivery`), a
        `location_update` event is appended to it and the position is
        pushed to the customer.

        Returns:
            The id of the order being delivered, or None.
        """
        if actor.role != ActorRole.DELIVERY_PARTNER:
            raise Unauthorized("Only delivery partners report locations")

        result = await session.execute(
            select(DeliveryPartner).where(DeliveryPartner.user_id == actor.user_id)
        )
        partner = result.scalar_one_or_none()
        if partner is None:
            raise NotFound("Delivery partner", actor.user_id)

        result = await session.execute(
            select(Order.id).where(
                Order.delivery_partner_id == partner.id,
                Order.status == OrderStatus.OUT_FOR_DELIVERY,
            )
        )
        order_id = result.scalars().first()

        if order_id is None:
            self._move_partner(partner, latitude, longitude)
            await session.commit()
            return None

        # Order lock and order row first, partner row second: the same
        # order a `delivered` transition takes them in
        async with self.engine.order_lock(order_id):
            try:
                order = await self.engine.load_for_update(session, order_id)
                self._move_partner(partner, latitude, longitude)

                if order.status != OrderStatus.OUT_FOR_DELIVERY:
                    # Delivered between the lookup and the lock
                    await session.commit()
                    return None

                session.add(OrderEvent(
                    order_id=order.id,
                    event_type=LOCATION_UPDATE,
                    data={"delivery_partner_id": partner.id},
                    latitude=latitude,
                    longitude=longitude,
                ))
                await session.commit()

            except NotFound:
                await session.rollback()
                raise

        if self.hub is not None:
            await self.hub.publish(
                [order.customer_id],
                location_update(order.id, latitude, longitude),
            )

        return order.id

    @staticmethod
    def _move_partner(partner: DeliveryPartner, latitude: float, longitude: float) -> None:
        partner.current_latitude = latitude
        partner.current_longitude = longitude
