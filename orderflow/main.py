"""
FastAPI Application Entry Point

Orderflow - order lifecycle and live tracking API.

Endpoints:
    - POST /api/orders: Checkout (create a pending order)
    - GET /api/orders: Orders visible to the caller
    - GET /api/orders/{id}: Full order snapshot with event trail
    - PATCH /api/orders/{id}/status: Status transition
    - POST /api/orders/{id}/assign-delivery: Courier assignment
    - POST /api/delivery-partner/location: Courier position report
    - WS /ws?user_id=...: Live order/location updates
    - GET /health: System health check

Identity:
    Requests carry `X-User-Id` and `X-User-Role`, set by the upstream
    auth gateway after it has authenticated the caller.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import redis
from fastapi import Depends, FastAPI, Header, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.channel.hub import ChannelHub
from orderflow.core.config import get_settings, setup_logging
from orderflow.core.exceptions import OrderflowError, Unauthorized
from orderflow.database import engine, get_db, init_db
from orderflow.domain.actors import Actor, ActorRole
from orderflow.domain.status import OrderStatus
from orderflow.schemas import (
    AssignmentResponse,
    ErrorResponse,
    HealthResponse,
    LocationAcceptedResponse,
    LocationReport,
    OrderCreate,
    OrderEventResponse,
    OrderItemResponse,
    OrderListResponse,
    OrderResponse,
    OrderSnapshot,
    RestaurantSummary,
    TransitionRequest,
)
from orderflow.services.assignment import get_assignment_strategy
from orderflow.services.delivery import DeliveryService
from orderflow.services.notifications import get_notification_service
from orderflow.services.orders import OrderService
from orderflow.services.transitions import TransitionEngine
from orderflow.tasks import queue_status_notification

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    # Initialize database
    await init_db()
    logger.info("Database initialized")

    # Live channel and services
    hub = ChannelHub(
        heartbeat_interval=settings.heartbeat_interval_seconds,
        heartbeat_timeout=settings.heartbeat_timeout_seconds,
        queue_size=settings.subscriber_queue_size,
    )
    await hub.start()

    transitions = TransitionEngine(hub=hub, notifier=queue_status_notification)
    strategy = get_assignment_strategy()

    app.state.hub = hub
    app.state.transitions = transitions
    app.state.orders = OrderService(hub=hub)
    app.state.delivery = DeliveryService(transitions, strategy)

    notification_service = get_notification_service()
    logger.info(f"Notification Service: {notification_service.provider_name}")
    logger.info(f"Assignment Strategy: {strategy.name}")

    # Validate production config
    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"Missing production config: {missing}")

    logger.info("=" * 60)
    logger.info("Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await hub.close()
    await engine.dispose()
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Order lifecycle and live tracking backend: status state machine, "
        "event trail, delivery assignment and WebSocket updates."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

async def get_current_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    """Resolve the caller from gateway-provided identity headers."""
    if not x_user_id or not x_user_role:
        raise Unauthorized("Missing identity headers")

    try:
        role = ActorRole(x_user_role.lower())
    except ValueError:
        raise Unauthorized(f"Unknown role '{x_user_role}'")

    # The system identity is internal only
    if role == ActorRole.SYSTEM:
        raise Unauthorized("The system role cannot be asserted by a client")

    return Actor(user_id=x_user_id, role=role)


def get_transition_engine(request: Request) -> TransitionEngine:
    return request.app.state.transitions


def get_order_service(request: Request) -> OrderService:
    return request.app.state.orders


def get_delivery_service(request: Request) -> DeliveryService:
    return request.app.state.delivery


def build_snapshot(details) -> OrderSnapshot:
    base = OrderResponse.model_validate(details.order)
    return OrderSnapshot(
        **base.model_dump(),
        items=[OrderItemResponse.model_validate(item) for item in details.items],
        events=[OrderEventResponse.model_validate(event) for event in details.events],
        restaurant=(
            RestaurantSummary.model_validate(details.restaurant)
            if details.restaurant is not None else None
        ),
    )


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> HealthResponse:
    """Verify all system components are operational."""

    # Check database
    db_status = "healthy"
    try:
        await db.execute(select(func.now()))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    # Check Redis
    redis_status = "healthy"
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        r.close()
    except Exception as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    # Check notification service
    notification_service = get_notification_service()
    notification_status = "healthy" if await notification_service.health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, redis_status, notification_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        notification_service=notification_status,
        live_subscribers=request.app.state.hub.subscriber_count(),
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Checkout",
)
async def create_order(
    order_data: OrderCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
) -> OrderResponse:
    """
    Create a `pending` order from cart lines.

    Resubmitting with the same `idempotency_key` returns the original order.
    """
    logger.info(f"Checkout by {actor.user_id} at restaurant {order_data.restaurant_id}")
    order = await orders.create_order(db, order_data, actor)
    return OrderResponse.model_validate(order)


@app.get(
    "/api/orders",
    response_model=OrderListResponse,
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[OrderStatus] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
) -> OrderListResponse:
    """Orders visible to the caller's role, newest first."""
    total, rows = await orders.list_orders(db, actor, status=status, skip=skip, limit=limit)
    return OrderListResponse(
        total=total,
        orders=[OrderResponse.model_validate(order) for order in rows],
    )


@app.get(
    "/api/orders/{order_id}",
    response_model=OrderSnapshot,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Orders"],
)
async def get_order(
    order_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
) -> OrderSnapshot:
    """Get the full order snapshot: order, items, event trail and restaurant."""
    details = await orders.get_snapshot(db, order_id, actor)
    return build_snapshot(details)


@app.patch(
    "/api/orders/{order_id}/status",
    response_model=OrderResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    tags=["Orders"],
    summary="Update Order Status",
)
async def update_order_status(
    order_id: str,
    body: TransitionRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    transitions: TransitionEngine = Depends(get_transition_engine),
    delivery: DeliveryService = Depends(get_delivery_service),
) -> OrderResponse:
    """Move an order along its lifecycle."""
    result = await transitions.apply_transition(
        db, order_id, body.status, actor, expected_status=body.expected_status
    )
    # Serialized before assignment, whose rollback on failure would
    # expire the committed order
    response = OrderResponse.model_validate(result.order)

    if result.changed and response.status == OrderStatus.READY_FOR_PICKUP:
        assigned = await delivery.auto_assign(db, order_id)
        if assigned is not None:
            response = OrderResponse.model_validate(assigned)

    return response


@app.post(
    "/api/orders/{order_id}/assign-delivery",
    response_model=AssignmentResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    tags=["Delivery"],
    summary="Assign Delivery Partner",
)
async def assign_delivery(
    order_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    delivery: DeliveryService = Depends(get_delivery_service),
) -> AssignmentResponse:
    """Attach an available courier to a ready order."""
    order = await delivery.assign_delivery_partner(db, order_id, actor)
    return AssignmentResponse(order_id=order.id, delivery_partner_id=order.delivery_partner_id)


@app.post(
    "/api/delivery-partner/location",
    response_model=LocationAcceptedResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Delivery"],
    summary="Report Courier Location",
)
async def report_location(
    report: LocationReport,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    delivery: DeliveryService = Depends(get_delivery_service),
) -> LocationAcceptedResponse:
    """Update the courier's position and relay it to the customer being served."""
    order_id = await delivery.report_location(db, actor, report.latitude, report.longitude)
    return LocationAcceptedResponse(order_id=order_id)


# =============================================================================
# LIVE CHANNEL
# =============================================================================

@app.websocket("/ws")
async def live_channel(websocket: WebSocket, user_id: Optional[str] = Query(None)):
    """
    Subscribe to order and courier updates addressed to `user_id`.

    Any inbound frame counts as a liveness answer; `{"type": "ping"}`
    is answered with `{"type": "pong"}`.
    """
    if not user_id:
        await websocket.close(code=1008)
        return

    await websocket.accept()
    hub: ChannelHub = websocket.app.state.hub
    subscriber = await hub.connect(user_id, websocket)

    try:
        while True:
            raw = await websocket.receive_text()
            await hub.handle_inbound(subscriber, raw)
    except WebSocketDisconnect:
        logger.debug(f"Client closed {subscriber}")
    finally:
        await hub.disconnect(subscriber)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(OrderflowError)
async def orderflow_error_handler(request: Request, exc: OrderflowError) -> JSONResponse:
    """Domain errors are expected outcomes; report them without a traceback."""
    logger.info(f"{exc.error} on {request.method} {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.error, detail=exc.message).model_dump(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("orderflow.main:app", host=settings.api_host, port=settings.api_port)
