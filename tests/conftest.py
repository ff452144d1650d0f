import asyncio
import json
import os
import tempfile
from dataclasses import dataclass
from decimal import Decimal

# Must be set before anything imports orderflow.core.config
_DB_DIR = tempfile.mkdtemp(prefix="orderflow-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/api.db"
os.environ["ENV_MODE"] = "development"
os.environ["NOTIFICATIONS_ENABLED"] = "false"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"

import pytest

from orderflow.channel.hub import ChannelHub
from orderflow.database import Base, build_engine, build_session_maker, init_db
from orderflow.domain.actors import Actor, ActorRole
from orderflow.domain.status import (
    ORDER_CREATED,
    STATUS_SEQUENCE,
    OrderStatus,
    status_event_type,
)
from orderflow.models import (
    DeliveryPartner,
    MenuItem,
    Order,
    OrderEvent,
    PartnerStatus,
    Restaurant,
)
from orderflow.services.orders import calculate_order_totals

OWNER_ID = "owner-1"
OTHER_OWNER_ID = "owner-2"
CUSTOMER_ID = "cust-1"
NEAR_COURIER_ID = "courier-near"
FAR_COURIER_ID = "courier-far"

CUSTOMER = Actor(CUSTOMER_ID, ActorRole.CUSTOMER)
OWNER = Actor(OWNER_ID, ActorRole.RESTAURANT_OWNER)
OTHER_OWNER = Actor(OTHER_OWNER_ID, ActorRole.RESTAURANT_OWNER)
ADMIN = Actor("admin-1", ActorRole.ADMIN)
NEAR_COURIER = Actor(NEAR_COURIER_ID, ActorRole.DELIVERY_PARTNER)
FAR_COURIER = Actor(FAR_COURIER_ID, ActorRole.DELIVERY_PARTNER)


@dataclass
class World:
    restaurant_id: str
    other_restaurant_id: str
    item_a: str
    item_b: str
    item_unavailable: str
    item_foreign: str
    near_partner_id: str
    far_partner_id: str


async def seed_world(session_maker) -> World:
    """Two restaurants, a small menu and two available couriers."""
    async with session_maker() as session:
        napoli = Restaurant(
            owner_id=OWNER_ID,
            name="Napoli",
            address="1 Main St",
            delivery_fee=Decimal("3.00"),
            latitude=40.7128,
            longitude=-74.0060,
        )
        tokyo = Restaurant(owner_id=OTHER_OWNER_ID, name="Tokyo Bowl", delivery_fee=Decimal("2.00"))
        session.add_all([napoli, tokyo])
        await session.flush()

        item_a = MenuItem(restaurant_id=napoli.id, name="Margherita", price=Decimal("5.00"))
        item_b = MenuItem(restaurant_id=napoli.id, name="Calzone", price=Decimal("10.00"))
        item_off = MenuItem(
            restaurant_id=napoli.id, name="Truffle Special", price=Decimal("25.00"), is_available=False
        )
        item_foreign = MenuItem(restaurant_id=tokyo.id, name="Ramen", price=Decimal("12.00"))

        near = DeliveryPartner(
            user_id=NEAR_COURIER_ID,
            status=PartnerStatus.AVAILABLE,
            current_latitude=40.7130,
            current_longitude=-74.0062,
        )
        far = DeliveryPartner(
            user_id=FAR_COURIER_ID,
            status=PartnerStatus.AVAILABLE,
            current_latitude=40.7800,
            current_longitude=-73.9700,
        )
        session.add_all([item_a, item_b, item_off, item_foreign, near, far])
        await session.commit()

        return World(
            restaurant_id=napoli.id,
            other_restaurant_id=tokyo.id,
            item_a=item_a.id,
            item_b=item_b.id,
            item_unavailable=item_off.id,
            item_foreign=item_foreign.id,
            near_partner_id=near.id,
            far_partner_id=far.id,
        )


class FakeSocket:
    """In-memory stand-in for a WebSocket; `hold()` makes sends block."""

    def __init__(self, fail: bool = False):
        self.sent: list[str] = []
        self.closed_with = None
        self.fail = fail
        self._gate = asyncio.Event()
        self._gate.set()

    def hold(self):
        self._gate.clear()

    def release(self):
        self._gate.set()

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("peer went away")
        await self._gate.wait()
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code

    @property
    def messages(self) -> list[dict]:
        return [json.loads(raw) for raw in self.sent]

    def of_type(self, message_type: str) -> list[dict]:
        return [m for m in self.messages if m.get("type") == message_type]


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
async def db_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return build_session_maker(db_engine)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def world(session_maker) -> World:
    return await seed_world(session_maker)


@pytest.fixture
def order_factory(session_maker, world):
    """Insert an order directly in `status`, with a consistent event trail."""

    async def make(
        status: OrderStatus = OrderStatus.PENDING,
        partner_id: str = None,
        customer_id: str = CUSTOMER_ID,
        subtotal: str = "20.00",
    ) -> str:
        totals = calculate_order_totals(Decimal(subtotal), Decimal("3.00"))
        async with session_maker() as session:
            order = Order(
                customer_id=customer_id,
                restaurant_id=world.restaurant_id,
                delivery_partner_id=partner_id,
                status=status,
                subtotal=totals.subtotal,
                delivery_fee=totals.delivery_fee,
                discount=totals.discount,
                total=totals.total,
                delivery_address="350 Fifth Avenue",
            )
            session.add(order)
            await session.flush()

            session.add(OrderEvent(order_id=order.id, event_type=ORDER_CREATED, data={}))
            if status == OrderStatus.CANCELLED:
                reached = [OrderStatus.CANCELLED]
            else:
                reached = list(STATUS_SEQUENCE[1:STATUS_SEQUENCE.index(status) + 1])
            for step in reached:
                session.add(OrderEvent(order_id=order.id, event_type=status_event_type(step), data={}))

            if partner_id is not None and status != OrderStatus.DELIVERED:
                partner = await session.get(DeliveryPartner, partner_id)
                partner.status = PartnerStatus.BUSY

            await session.commit()
            return order.id

    return make


# =============================================================================
# LIVE CHANNEL
# =============================================================================

@pytest.fixture
async def hub():
    hub = ChannelHub(heartbeat_interval=3600, heartbeat_timeout=75, queue_size=10)
    yield hub
    await hub.close()


@pytest.fixture
def listen(hub):
    """Connect a FakeSocket for `user_id` and return it."""

    async def connect(user_id: str) -> FakeSocket:
        socket = FakeSocket()
        await hub.connect(user_id, socket)
        return socket

    return connect


async def drain(hub: ChannelHub) -> None:
    """Wait until every queued message has reached its socket."""
    for group in list(hub._subscribers.values()):
        for subscriber in list(group):
            await subscriber.flush()


# =============================================================================
# HTTP API
# =============================================================================

def headers_for(actor: Actor) -> dict[str, str]:
    return {"X-User-Id": actor.user_id, "X-User-Role": actor.role.value}


@pytest.fixture
def api():
    """TestClient over a freshly seeded database."""
    from fastapi.testclient import TestClient

    from orderflow.main import app

    async def reset() -> World:
        engine = build_engine(os.environ["DATABASE_URL"])
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await init_db(engine)
        seeded = await seed_world(build_session_maker(engine))
        await engine.dispose()
        return seeded

    seeded = asyncio.run(reset())
    with TestClient(app) as client:
        yield client, seeded
