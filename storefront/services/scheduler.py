import logging
from datetime import datetime
from typing import Dict, Any
from sqlalchemy.orm import sessionmaker
from storefront.crud import order as order_crud
from storefront.crud import product as product_crud
from storefront.services.catalog_sync import CatalogSyncEngine
from storefront.services.marketplace_client import MarketplaceError
from storefront.services.order_bridge import OrderBridge
from storefront.services.token_manager import TokenManager

logger = logging.getLogger(__name__)

class IntegrationScheduler:
    """
    Периодические задачи интеграции.

    Каждый запуск пропускается, если API ключ маркетплейса не настроен.
    Пакеты обрабатываются последовательно, ошибка одного элемента не
    останавливает остальные.
    """

    def __init__(
        self,
        tokens: TokenManager,
        catalog: CatalogSyncEngine,
        orders: OrderBridge,
        session_factory: sessionmaker,
        catalog_batch_size: int = 100,
        orders_batch_size: int = 50
    ):
        self.tokens = tokens
        self.catalog = catalog
        self.orders = orders
        self.session_factory = session_factory
        self.catalog_batch_size = catalog_batch_size
        self.orders_batch_size = orders_batch_size

    def _is_configured(self, job: str) -> bool:
        if self.tokens.has_credential_source():
            return True
        logger.warning(f"Marketplace API key not configured, skipping {job}")
        return False

    async def run_token_refresh(self) -> Dict[str, Any]:
        if not self._is_configured("token refresh"):
            return {"status": "skipped"}

        await self.tokens.get_valid_token()
        logger.info("Marketplace token refresh check completed")
        return {"status": "completed"}

    async def run_catalog_resync(self) -> Dict[str, Any]:
        """Пересинхронизация товаров, выставленных в магазине"""
        if not self._is_configured("catalog resync"):
            return {"status": "skipped"}

        start_time = datetime.now()
        synced = 0
        failed = 0

        with self.session_factory() as db:
            remote_ids = [p.remote_product_id for p in product_crud.get_in_store_products(db, self.catalog_batch_size)]

            for remote_product_id in remote_ids:
                try:
                    await self.catalog.sync_one(db, remote_product_id)
                    synced += 1
                except Exception as e:
                    failed += 1
                    logger.error(f"Catalog resync failed for product {remote_product_id}: {e}")

        duration = (datetime.now() - start_time).total_seconds()
        logger.info(
            f"Catalog resync completed: synced={synced}, failed={failed}, "
            f"total={len(remote_ids)}, duration={duration:.1f}s"
        )
        return {"status": "completed", "synced": synced, "failed": failed, "total": len(remote_ids)}

    async def run_order_poll(self) -> Dict[str, Any]:
        """Опрос статусов незавершенных заказов"""
        if not self._is_configured("order status poll"):
            return {"status": "skipped"}

        synced = 0
        failed = 0

        with self.session_factory() as db:
            order_ids = [o.id for o in order_crud.get_orders_to_poll(db, self.orders_batch_size)]

            for order_id in order_ids:
                try:
                    await self.orders.poll_status(db, order_id)
                    synced += 1
                except Exception as e:
                    db.rollback()
                    failed += 1
                    logger.error(f"Order status poll failed for order {order_id}: {e}")

        logger.info(f"Order status poll completed: synced={synced}, failed={failed}, total={len(order_ids)}")
        return {"status": "completed", "synced": synced, "failed": failed, "total": len(order_ids)}

    async def run_credential_health_check(self) -> Dict[str, Any]:
        if not self._is_configured("credential health check"):
            return {"status": "skipped"}

        try:
            await self.tokens.get_valid_token()
        except MarketplaceError as e:
            logger.error(f"Marketplace credential health check failed: {e}")
            return {"status": "failed", "token_valid": False, "error": str(e)}

        logger.info("Marketplace credential health check passed")
        return {"status": "completed", "token_valid": True}
