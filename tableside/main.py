"""
FastAPI Application Entry Point

Tableside Ordering - order lifecycle and realtime sync API.
Uses the in-process event broker in development and Redis pub/sub in
staging/production.

Endpoints:
    - POST /api/orders: Submit a cart (create or merge)
    - GET /api/orders: List orders
    - GET /api/orders/{order_id}: One order
    - GET /api/orders/table/{table_key}: Orders of one table
    - PUT /api/orders/{order_id}/status: Advance kitchen status
    - GET /api/bills: Bill ledger
    - WS /ws: Realtime events
    - GET /health: System health check
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from tableside.core.config import get_settings, setup_logging
from tableside.database import engine, get_db, init_db
from tableside.schemas import (
    BillListResponse,
    BillResponse,
    ErrorResponse,
    HealthResponse,
    OrderListResponse,
    OrderResponse,
    OrderStatus,
    OrderSubmit,
    StatusUpdate,
    SubmitOrderResponse,
)
from tableside.services.connections import ConnectionManager, relay_events
from tableside.services.events import BaseEventBroker, get_event_broker
from tableside.services.orders import (
    OrderService,
    OrderServiceError,
    TableLockRegistry,
)
from tableside.tables import normalize_table_key

settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

table_locks = TableLockRegistry()
connection_manager = ConnectionManager()


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

    await init_db()
    logger.info("Database initialized")

    broker = get_event_broker()
    logger.info(f"Event Broker: {broker.provider_name}")

    if not settings.is_development:
        problems = settings.validate_production_config()
        if problems:
            logger.warning(f"Suspicious production config: {problems}")

    relay_task = asyncio.create_task(relay_events(broker, connection_manager))
    logger.info("Application ready")

    yield

    # Shutdown
    logger.info("Shutting down...")
    relay_task.cancel()
    try:
        await relay_task
    except asyncio.CancelledError:
        pass
    await connection_manager.shutdown()
    await broker.close()
    await engine.dispose()
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Restaurant order lifecycle API: create-or-merge submissions per table, "
        "kitchen status pipeline, bills and realtime fan-out over websockets."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_table_locks() -> TableLockRegistry:
    return table_locks


def get_connection_manager() -> ConnectionManager:
    return connection_manager


def get_order_service(
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
    locks: TableLockRegistry = Depends(get_table_locks),
) -> OrderService:
    return OrderService(db, broker, locks)


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.restaurant_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
        "realtime": "/ws",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
    manager: ConnectionManager = Depends(get_connection_manager),
) -> HealthResponse:
    """Verify the database and event broker are reachable."""

    db_status = "healthy"
    try:
        await db.execute(select(1))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    broker_status = "healthy" if await broker.health_check() else "unhealthy"

    overall = "healthy" if db_status == broker_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        event_broker=f"{broker.provider_name}: {broker_status}",
        websocket_clients=manager.connection_count,
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=SubmitOrderResponse,
    responses={
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
    tags=["Orders"],
    summary="Submit Order (create or merge)",
)
async def submit_order(
    order_data: OrderSubmit,
    service: OrderService = Depends(get_order_service),
) -> SubmitOrderResponse:
    """
    Submit a cart for a table.

    Merges into the table's open order when there is one, otherwise
    creates a new order and its bill. TAKEAWAY and DELIVERY only merge
    when merge_into names an open order.
    """
    logger.info(
        f"Submission {order_data.submission_id} for table "
        f"{order_data.table_key or 'TAKEAWAY'} ({len(order_data.items)} line(s))"
    )
    result = await service.submit_order(order_data)

    return SubmitOrderResponse(
        outcome=result.outcome,
        order=OrderResponse.model_validate(result.order),
        bill=BillResponse.model_validate(result.bill),
        added_items=result.added_items,
        replayed=result.replayed,
        submission_id=order_data.submission_id,
    )


@app.get(
    "/api/orders",
    response_model=OrderListResponse,
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    limit: Optional[int] = Query(None, ge=1),
    status: Optional[OrderStatus] = Query(None),
    service: OrderService = Depends(get_order_service),
) -> OrderListResponse:
    """Orders newest first, optionally filtered by status."""
    limit = min(limit or settings.orders_default_limit, settings.orders_max_limit)
    total, orders = await service.list_orders(limit=limit, status=status)

    return OrderListResponse(
        total=total,
        orders=[OrderResponse.model_validate(order) for order in orders],
    )


@app.get(
    "/api/orders/table/{table_key}",
    response_model=OrderListResponse,
    tags=["Orders"],
    summary="Orders of one table",
)
async def list_table_orders(
    table_key: str,
    open_only: bool = Query(False),
    service: OrderService = Depends(get_order_service),
) -> OrderListResponse:
    key = normalize_table_key(table_key)
    if key is None:
        raise OrderServiceError(f"Invalid table key: {table_key!r}")
    orders = await service.list_table_orders(key, open_only=open_only)

    return OrderListResponse(
        total=len(orders),
        orders=[OrderResponse.model_validate(order) for order in orders],
    )


@app.get(
    "/api/orders/{order_id}",
    response_model=OrderResponse,
    responses={404: {"model": ErrorResponse}},
    tags=["Orders"],
)
async def get_order(
    order_id: int,
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    """Get a specific order by ID."""
    return OrderResponse.model_validate(await service.get_order(order_id))


@app.put(
    "/api/orders/{order_id}/status",
    response_model=OrderResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Advance Order Status",
)
async def update_order_status(
    order_id: int,
    update: StatusUpdate,
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    """Move an order forward through the kitchen pipeline."""
    order = await service.advance_status(order_id, update.status)
    return OrderResponse.model_validate(order)


# =============================================================================
# BILL ENDPOINTS
# =============================================================================

@app.get(
    "/api/bills",
    response_model=BillListResponse,
    tags=["Bills"],
    summary="List Bills",
)
async def list_bills(
    limit: Optional[int] = Query(None, ge=1),
    service: OrderService = Depends(get_order_service),
) -> BillListResponse:
    """One bill per order, newest first."""
    limit = min(limit or settings.bills_default_limit, settings.bills_max_limit)
    total, bills = await service.list_bills(limit=limit)

    return BillListResponse(
        total=total,
        bills=[BillResponse.model_validate(bill) for bill in bills],
    )


# =============================================================================
# REALTIME
# =============================================================================

@app.websocket("/ws")
async def realtime_socket(
    websocket: WebSocket,
    role: str = Query("viewer", max_length=20),
) -> None:
    """
    Push every order and bill event to the connected client.

    The client may send "ping" as a keepalive and gets "pong" back; any
    other text and every binary frame is ignored.
    """
    manager = connection_manager
    try:
        await manager.connect(websocket, role)
    except ConnectionError as e:
        logger.warning(f"Rejected realtime client (role={role}): {e}")
        return

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            message = frame.get("text")
            payload = message if message is not None else (frame.get("bytes") or b"")
            if len(payload) > settings.ws_max_message_size:
                logger.warning(f"Oversized websocket message from {role} client, closing")
                await websocket.close(code=1009, reason="Message too big")
                break
            if message == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        logger.debug(f"Websocket closed by {role} client")
    finally:
        await manager.disconnect(websocket)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(OrderServiceError)
async def order_error_handler(request: Request, exc: OrderServiceError) -> JSONResponse:
    """Map order domain errors to the standard error envelope."""
    logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.code, detail=exc.message).model_dump(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    content: dict[str, Any] = ErrorResponse(
        error="Internal Server Error",
        detail=str(exc) if settings.debug else "An unexpected error occurred",
    ).model_dump()
    return JSONResponse(status_code=500, content=content)


# =============================================================================
# DEVELOPMENT SERVER
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tableside.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
