from dataclasses import dataclass
from typing import Optional
import httpx
from sqlalchemy.orm import sessionmaker
from storefront.core.config import Settings
from storefront.services.catalog_sync import CatalogSyncEngine
from storefront.services.marketplace_client import MarketplaceClient
from storefront.services.order_bridge import OrderBridge
from storefront.services.scheduler import IntegrationScheduler
from storefront.services.token_manager import TokenManager
from storefront.services.webhook_reconciler import WebhookReconciler

@dataclass
class Integration:
    """Компоненты интеграции с маркетплейсом, собранные вместе"""
    client: MarketplaceClient
    tokens: TokenManager
    catalog: CatalogSyncEngine
    orders: OrderBridge
    reconciler: WebhookReconciler
    scheduler: IntegrationScheduler

    async def aclose(self):
        await self.client.disconnect()

def build_integration(
    settings: Settings,
    session_factory: sessionmaker,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    retry_backoff: float = 1.0
) -> Integration:
    client = MarketplaceClient(
        base_url=settings.MARKETPLACE_BASE_URL,
        token_header=settings.MARKETPLACE_TOKEN_HEADER,
        timeout=settings.MARKETPLACE_TIMEOUT,
        max_retries=settings.MARKETPLACE_MAX_RETRIES,
        retry_backoff=retry_backoff,
        transport=transport
    )
    tokens = TokenManager(
        client,
        session_factory,
        api_key=settings.MARKETPLACE_API_KEY,
        expiry_buffer=settings.MARKETPLACE_TOKEN_EXPIRY_BUFFER,
        default_ttl=settings.MARKETPLACE_TOKEN_DEFAULT_TTL
    )
    catalog = CatalogSyncEngine(tokens)
    orders = OrderBridge(tokens, payment_method=settings.MARKETPLACE_PAYMENT_METHOD)

    return Integration(
        client=client,
        tokens=tokens,
        catalog=catalog,
        orders=orders,
        reconciler=WebhookReconciler(tokens, catalog, orders, session_factory),
        scheduler=IntegrationScheduler(
            tokens,
            catalog,
            orders,
            session_factory,
            catalog_batch_size=settings.SYNC_CATALOG_BATCH_SIZE,
            orders_batch_size=settings.SYNC_ORDERS_BATCH_SIZE
        )
    )
