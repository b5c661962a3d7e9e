import logging
from typing import Dict, Any
from sqlalchemy.orm import Session, sessionmaker
from storefront.crud import marketplace as marketplace_crud
from storefront.models.marketplace import OrderMapping
from storefront.schemas.webhooks import (
    WebhookEvent,
    OrderStatusEvent,
    StockBatchEvent,
    ProductEvent,
    LogisticsEvent,
    InventoryEvent,
    parse_event,
)
from storefront.services.catalog_sync import CatalogSyncEngine
from storefront.services.marketplace_client import MappingNotFoundError
from storefront.services.order_bridge import OrderBridge
from storefront.services.token_manager import TokenManager

logger = logging.getLogger(__name__)

WEBHOOK_TOPICS = ("order-status", "inventory", "product", "logistics")

# Тема подписки маркетплейса -> путь нашего endpoint'а
SUBSCRIPTION_PATHS = {
    "product": "product",
    "stock": "inventory",
    "order": "order-status",
    "logistics": "logistics",
}

class WebhookReconciler:
    """
    Применение событий маркетплейса к локальным данным.

    HTTP слой сразу отвечает отправителю, а process() выполняется позже в
    фоне со своей сессией БД. Ошибки обработки только логируются.
    """

    def __init__(
        self,
        tokens: TokenManager,
        catalog: CatalogSyncEngine,
        orders: OrderBridge,
        session_factory: sessionmaker
    ):
        self.tokens = tokens
        self.catalog = catalog
        self.orders = orders
        self.session_factory = session_factory

    def _find_mapping(self, db: Session, event: OrderStatusEvent) -> OrderMapping:
        mapping = marketplace_crud.find_mapping(
            db, remote_order_id=event.orderId, remote_order_number=event.orderNumber
        )
        if mapping is None:
            raise MappingNotFoundError(
                f"No order mapping for marketplace order id={event.orderId} number={event.orderNumber}"
            )
        return mapping

    def handle_order_status(self, db: Session, event: OrderStatusEvent) -> Dict[str, Any]:
        logger.info(f"Processing order status event: order={event.orderId} number={event.orderNumber} status={event.status}")

        try:
            mapping = self._find_mapping(db, event)
        except MappingNotFoundError as e:
            logger.warning(str(e))
            return {"success": False, "message": "Order mapping not found"}

        order = self.orders.apply_remote_status(
            db,
            mapping,
            event.status,
            tracking_number=event.trackingNumber,
            raw=event.model_dump(exclude_none=True),
        )
        if order is None:
            return {"success": True, "orderId": None, "status": None}

        logger.info(f"Order {order.id} updated from webhook: status={order.status}")
        return {"success": True, "orderId": order.id, "status": order.status}

    def handle_inventory(self, db: Session, event: InventoryEvent) -> Dict[str, Any]:
        if isinstance(event, StockBatchEvent):
            updated = 0
            for variant_id, total in event.variant_totals().items():
                if self.catalog.apply_variant_stock(db, variant_id, total) is not None:
                    updated += 1
            logger.info(f"Stock batch event applied: {updated} of {len(event.params)} variants updated")
            return {"success": True, "updatedCount": updated}

        if event.stock is None:
            logger.warning(f"Inventory event for product {event.productId} has no stock value")
            return {"success": True, "updatedCount": 0}

        product = self.catalog.apply_product_stock(db, event.productId, event.stock, variant_id=event.variantId)
        return {"success": True, "updatedCount": 1 if product is not None else 0}

    def handle_product(self, db: Session, event: ProductEvent) -> Dict[str, Any]:
        params = event.params or {}
        logger.info(
            f"Product event received: type={event.type} messageType={event.messageType} "
            f"pid={params.get('pid')} vid={params.get('vid')}"
        )
        return {"success": True}

    def handle_logistics(self, db: Session, event: LogisticsEvent) -> Dict[str, Any]:
        logger.info(f"Logistics event received: type={event.type} messageType={event.messageType}")
        if event.has_order_reference:
            return self.handle_order_status(db, event)
        return {"success": True}

    def dispatch(self, db: Session, topic: str, event: WebhookEvent) -> Dict[str, Any]:
        if topic == "order-status":
            return self.handle_order_status(db, event)
        if topic == "inventory":
            return self.handle_inventory(db, event)
        if topic == "product":
            return self.handle_product(db, event)
        if topic == "logistics":
            return self.handle_logistics(db, event)
        raise ValueError(f"Unknown webhook topic: {topic}")

    async def configure_subscription(
        self,
        db: Session,
        callback_url: str,
        product: bool = False,
        stock: bool = False,
        order: bool = False,
        logistics: bool = False
    ) -> Dict[str, Any]:
        """Отправить подписку на webhook'и в маркетплейс и сохранить ее локально"""
        base = callback_url.strip().rstrip("/")
        flags = {"product": product, "stock": stock, "order": order, "logistics": logistics}

        payload = {
            topic: {
                "type": "ENABLE" if flags[topic] else "CANCEL",
                "callbackUrls": [f"{base}/{path}"],
            }
            for topic, path in SUBSCRIPTION_PATHS.items()
        }
        await self.tokens.make_authenticated_request("POST", "/webhook/set", body=payload)

        marketplace_crud.save_webhook_config(db, callback_url=base, **flags)
        logger.info(f"Webhook subscription pushed to marketplace: {base} {flags}")
        return {"callbackUrl": base, **flags}

    def process(self, topic: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Разобрать и применить событие. Исключения не пробрасываются."""
        db = self.session_factory()
        try:
            event = parse_event(topic, payload)
            result = self.dispatch(db, topic, event)
            db.commit()
            return result
        except Exception as e:
            db.rollback()
            logger.error(f"Error processing {topic} webhook: {e}", exc_info=True)
            return {"success": False, "message": "Webhook processing failed", "error": str(e)}
        finally:
            db.close()
