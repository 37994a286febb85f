"""FastAPI router for Courier management endpoints.

All webhook routes are tenant-scoped; authentication of the caller is
handled in front of this service.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from courier import __version__
from courier.exceptions import CourierError
from courier.service import CourierService

from .schemas import (
    DeliveryAttemptResponse,
    DeliveryDetailResponse,
    DeliveryListResponse,
    HealthResponse,
    SubscriptionCreateRequest,
    SubscriptionListResponse,
    SubscriptionResponse,
    SubscriptionUpdateRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Service instance (set by app lifespan)
_service: CourierService | None = None


def set_service(service: CourierService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> CourierService:
    """Dependency to get the CourierService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


ServiceDep = Annotated[CourierService, Depends(get_service)]

WEBHOOKS = "/tenants/{tenant_id}/webhooks"


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health, including queue connectivity."""
    if _service is None:
        return HealthResponse(
            status="unhealthy",
            version=__version__,
            storage_connected=False,
            queue_connected=False,
        )

    storage_connected = _service.storage.is_connected
    try:
        queue_connected = await _service.queue.ping()
    except CourierError:
        queue_connected = False

    return HealthResponse(
        status="healthy" if storage_connected and queue_connected else "degraded",
        version=__version__,
        storage_connected=storage_connected,
        queue_connected=queue_connected,
    )


@router.get(WEBHOOKS, response_model=SubscriptionListResponse, tags=["webhooks"])
async def list_webhooks(
    tenant_id: str,
    service: ServiceDep,
    active_only: bool = False,
) -> SubscriptionListResponse:
    """List a tenant's webhook subscriptions. Secrets are never included."""
    subscriptions = await service.list_subscriptions(tenant_id, active_only=active_only)
    return SubscriptionListResponse(
        subscriptions=[SubscriptionResponse.from_subscription(s) for s in subscriptions],
        count=len(subscriptions),
    )


@router.post(
    WEBHOOKS,
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["webhooks"],
)
async def create_webhook(
    tenant_id: str,
    request: SubscriptionCreateRequest,
    service: ServiceDep,
) -> SubscriptionResponse:
    """Register a webhook subscription.

    The response is the only place the signing secret is returned,
    apart from rotation.
    """
    subscription = await service.create_subscription(
        tenant_id=tenant_id,
        url=request.url,
        event_filter=request.event_filter,
        secret=request.secret,
        batch_size=request.batch_size,
        max_retries=request.max_retries,
        retry_backoff=request.retry_backoff,
        status=request.status,
    )
    return SubscriptionResponse.from_subscription(subscription, include_secret=True)


@router.get(
    WEBHOOKS + "/deliveries/{delivery_id}",
    response_model=DeliveryDetailResponse,
    tags=["deliveries"],
)
async def get_delivery(
    tenant_id: str,
    delivery_id: str,
    service: ServiceDep,
) -> DeliveryDetailResponse:
    """Get every attempt of one delivery lineage."""
    rows = await service.get_delivery(delivery_id, tenant_id)
    latest = rows[-1]
    return DeliveryDetailResponse(
        delivery_id=delivery_id,
        subscription_id=latest.subscription_id,
        event_id=latest.event_id,
        status=latest.status,
        attempts=[DeliveryAttemptResponse.from_attempt(r) for r in rows],
    )


@router.get(
    WEBHOOKS + "/{subscription_id}",
    response_model=SubscriptionResponse,
    tags=["webhooks"],
)
async def get_webhook(
    tenant_id: str,
    subscription_id: str,
    service: ServiceDep,
) -> SubscriptionResponse:
    """Get one subscription."""
    subscription = await service.get_subscription(subscription_id, tenant_id)
    return SubscriptionResponse.from_subscription(subscription)


@router.patch(
    WEBHOOKS + "/{subscription_id}",
    response_model=SubscriptionResponse,
    tags=["webhooks"],
)
async def update_webhook(
    tenant_id: str,
    subscription_id: str,
    request: SubscriptionUpdateRequest,
    service: ServiceDep,
) -> SubscriptionResponse:
    """Partially update a subscription.

    With ``rotate_secret: true`` a new secret is generated after the other
    changes are applied and returned in the response.
    """
    updates = request.model_dump(exclude={"rotate_secret"}, exclude_none=True)
    subscription = await service.get_subscription(subscription_id, tenant_id)
    if updates:
        subscription = await service.update_subscription(subscription_id, tenant_id, **updates)
    if request.rotate_secret:
        subscription = await service.rotate_secret(subscription_id, tenant_id)
    return SubscriptionResponse.from_subscription(
        subscription, include_secret=request.rotate_secret
    )


@router.post(
    WEBHOOKS + "/{subscription_id}/rotate-secret",
    response_model=SubscriptionResponse,
    tags=["webhooks"],
)
async def rotate_webhook_secret(
    tenant_id: str,
    subscription_id: str,
    service: ServiceDep,
) -> SubscriptionResponse:
    """Generate a new signing secret and return it once."""
    subscription = await service.rotate_secret(subscription_id, tenant_id)
    return SubscriptionResponse.from_subscription(subscription, include_secret=True)


@router.delete(
    WEBHOOKS + "/{subscription_id}",
    response_model=SubscriptionResponse,
    tags=["webhooks"],
)
async def disable_webhook(
    tenant_id: str,
    subscription_id: str,
    service: ServiceDep,
) -> SubscriptionResponse:
    """Disable a subscription. Subscriptions are never hard-deleted."""
    subscription = await service.disable_subscription(
        subscription_id, tenant_id, reason="disabled via API"
    )
    logger.info("Disabled webhook %s for tenant %s", subscription_id, tenant_id)
    return SubscriptionResponse.from_subscription(subscription)


@router.get(
    WEBHOOKS + "/{subscription_id}/deliveries",
    response_model=DeliveryListResponse,
    tags=["deliveries"],
)
async def list_webhook_deliveries(
    tenant_id: str,
    subscription_id: str,
    service: ServiceDep,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> DeliveryListResponse:
    """Get a subscription's delivery history, newest first."""
    rows = await service.list_deliveries(
        subscription_id, tenant_id, status=status_filter, limit=limit
    )
    return DeliveryListResponse(
        subscription_id=subscription_id,
        attempts=[DeliveryAttemptResponse.from_attempt(r) for r in rows],
        count=len(rows),
    )
