"""
API routes for orders, cards and the card reader feed.

Domain errors are not caught here: they propagate to the application's
CashlessError handler, which renders their code, message and detail.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from cashless.core.card_reader import ScanAttempt
from cashless.core.ledger import LineRequest

from .dependencies import Services, get_services
from .schemas import (
    CancelOrderResponse,
    CardScanRequest,
    CardScanResponse,
    CreateOrderRequest,
    HealthCheckResponse,
    OrderDetailsResponse,
    OrderResponse,
    PayerResponse,
    ResolveCardRequest,
    SettleOrderRequest,
    SettleOrderResponse,
    UpdateStatusRequest,
)

logger = structlog.get_logger(__name__)

order_router = APIRouter(prefix="/orders", tags=["orders"])
card_router = APIRouter(prefix="/cards", tags=["cards"])
reader_router = APIRouter(prefix="/card-reader", tags=["card-reader"])
monitoring_router = APIRouter(tags=["monitoring"])


@order_router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an order",
    description="Create a pending order priced from the current catalog",
)
async def create_order(
    request: CreateOrderRequest,
    services: Services = Depends(get_services),
) -> OrderResponse:
    logger.info("api_create_order_request", line_count=len(request.lines))

    order = await services.ledger.create_order(
        [LineRequest(product_id=line.product_id, quantity=line.quantity) for line in request.lines]
    )

    logger.info(
        "api_create_order_success",
        order_id=order.id,
        total_amount=str(order.total_amount),
    )
    return OrderResponse.from_order(order)


@order_router.get(
    "",
    response_model=List[OrderResponse],
    summary="List orders",
    description="List orders newest first with optional filters",
)
async def list_orders(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    holder_id: Optional[int] = Query(default=None),
    secondary_holder_id: Optional[int] = Query(default=None),
    start: Optional[datetime] = Query(default=None, description="Created at or after"),
    end: Optional[datetime] = Query(default=None, description="Created at or before"),
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1, le=200),
    services: Services = Depends(get_services),
) -> List[OrderResponse]:
    orders = await services.ledger.list_orders(
        status=status_filter,
        holder_id=holder_id,
        secondary_holder_id=secondary_holder_id,
        start=start,
        end=end,
        page=page,
        limit=limit,
    )
    return [OrderResponse.from_order(order) for order in orders]


@order_router.get(
    "/{order_id}",
    response_model=OrderDetailsResponse,
    summary="Get order details",
    description="Order, its lines with product fields, and the payer if settled",
)
async def get_order_details(
    order_id: int,
    services: Services = Depends(get_services),
) -> OrderDetailsResponse:
    details = await services.ledger.get_details(order_id)
    return OrderDetailsResponse.from_details(details)


@order_router.post(
    "/{order_id}/settle",
    response_model=SettleOrderResponse,
    summary="Settle an order",
    description="Debit the card holder and take stock for the order in one transaction",
)
async def settle_order(
    order_id: int,
    request: SettleOrderRequest,
    services: Services = Depends(get_services),
) -> SettleOrderResponse:
    """
    Settle an order.

    A second settlement of the same order is rejected with
    invalid_state_transition and changes nothing.
    """
    logger.info("api_settle_order_request", order_id=order_id, card_id=request.card_id)

    result = await services.settlement_engine.settle(order_id, request.card_id, request.pin)

    logger.info(
        "api_settle_order_success",
        order_id=order_id,
        payer_kind=result.payer.kind.value,
        amount=str(result.amount_debited),
    )
    return SettleOrderResponse.from_result(result)


@order_router.post(
    "/{order_id}/cancel",
    response_model=CancelOrderResponse,
    summary="Cancel an order",
)
async def cancel_order(
    order_id: int,
    services: Services = Depends(get_services),
) -> CancelOrderResponse:
    order = await services.ledger.cancel(order_id)
    logger.info("api_cancel_order_success", order_id=order.id)
    return CancelOrderResponse(order_id=order.id, status=order.status)


@order_router.post(
    "/{order_id}/ready",
    response_model=OrderResponse,
    summary="Mark an order as prepared",
)
async def mark_order_ready(
    order_id: int,
    services: Services = Depends(get_services),
) -> OrderResponse:
    order = await services.ledger.mark_ready(order_id)
    return OrderResponse.from_order(order)


@order_router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Override an order's status",
    description="Operator override; completing this way takes stock but debits nobody",
)
async def update_order_status(
    order_id: int,
    request: UpdateStatusRequest,
    services: Services = Depends(get_services),
) -> OrderResponse:
    logger.info("api_update_status_request", order_id=order_id, status=request.status)
    order = await services.settlement_engine.update_status(order_id, request.status)
    return OrderResponse.from_order(order)


@card_router.post(
    "/resolve",
    response_model=PayerResponse,
    summary="Resolve a card",
    description="Find the active holder or secondary holder carrying a card",
)
async def resolve_card(
    request: ResolveCardRequest,
    services: Services = Depends(get_services),
) -> PayerResponse:
    summary = await services.identity_resolver.resolve_by_card(request.card_id)
    return PayerResponse.from_summary(summary)


@card_router.post(
    "/scan",
    response_model=PayerResponse,
    summary="Wait for a card scan",
    description="Wait for a card tapped after this request started and resolve it",
)
async def scan_card(services: Services = Depends(get_services)) -> PayerResponse:
    settings = services.settings
    attempt = ScanAttempt(services.card_feed)
    scan = await attempt.wait(
        timeout=settings.card_scan_timeout_seconds,
        poll_interval=settings.card_scan_poll_interval_seconds,
    )
    summary = await services.identity_resolver.resolve_by_card(scan.card_id)
    return PayerResponse.from_summary(summary)


@reader_router.post(
    "/scans",
    response_model=CardScanResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Report a card scan",
    description="Called by the reader device each time it sees a card",
)
async def report_scan(
    request: CardScanRequest,
    services: Services = Depends(get_services),
) -> CardScanResponse:
    scan = services.card_feed.record(request.card_id, request.scanned_at)
    return CardScanResponse(card_id=scan.card_id, scanned_at=scan.scanned_at)


@reader_router.get(
    "/latest",
    response_model=Optional[CardScanResponse],
    summary="Most recent card scan",
)
async def latest_scan(
    services: Services = Depends(get_services),
) -> Optional[CardScanResponse]:
    scan = await services.card_feed.latest_scan()
    if scan is None:
        return None
    return CardScanResponse(card_id=scan.card_id, scanned_at=scan.scanned_at)


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await services.health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness check",
)
async def liveness(services: Services = Depends(get_services)) -> Dict[str, Any]:
    return await services.health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness check",
)
async def readiness(services: Services = Depends(get_services)) -> Dict[str, Any]:
    result = await services.health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
