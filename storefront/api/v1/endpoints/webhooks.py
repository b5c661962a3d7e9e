# storefront/api/v1/endpoints/webhooks.py
import logging
from fastapi import APIRouter, BackgroundTasks, Depends, Request
from storefront.api.deps import get_integration
from storefront.schemas.webhooks import WebhookAck
from storefront.services.integration import Integration

router = APIRouter()
logger = logging.getLogger(__name__)

async def _accept(
    topic: str,
    request: Request,
    background_tasks: BackgroundTasks,
    integration: Integration
) -> WebhookAck:
    """
    Webhook'и маркетплейса всегда получают 200: событие разбирается и
    применяется в фоне, результат обработки отправителю не возвращается.
    """
    try:
        payload = await request.json()
    except ValueError:
        logger.warning(f"Marketplace {topic} webhook with invalid JSON body ignored")
        return WebhookAck(success=False, message="Webhook received but payload is not valid JSON")

    if not isinstance(payload, dict):
        logger.warning(f"Marketplace {topic} webhook with non-object body ignored")
        return WebhookAck(success=False, message="Webhook received but payload is not an object")

    logger.info(f"Received marketplace {topic} webhook")
    background_tasks.add_task(integration.reconciler.process, topic, payload)

    return WebhookAck(success=True, message="Webhook received", data={"topic": topic})

@router.post("/marketplace/order-status", response_model=WebhookAck)
async def order_status_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    integration: Integration = Depends(get_integration)
):
    return await _accept("order-status", request, background_tasks, integration)

@router.post("/marketplace/inventory", response_model=WebhookAck)
async def inventory_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    integration: Integration = Depends(get_integration)
):
    """Остатки: пакет STOCK или старый формат {productId, stock, variantId}"""
    return await _accept("inventory", request, background_tasks, integration)

@router.post("/marketplace/product", response_model=WebhookAck)
async def product_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    integration: Integration = Depends(get_integration)
):
    return await _accept("product", request, background_tasks, integration)

@router.post("/marketplace/logistics", response_model=WebhookAck)
async def logistics_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    integration: Integration = Depends(get_integration)
):
    return await _accept("logistics", request, background_tasks, integration)
