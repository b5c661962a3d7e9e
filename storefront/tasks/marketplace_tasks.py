import asyncio
import logging
from typing import Dict, Any
from uuid import uuid4
from celery import current_task
from storefront.core.config import settings
from storefront.database import SessionLocal
from storefront.services.integration import build_integration
from storefront.services.marketplace_client import MarketplaceError, MarketplaceConnectionError
from storefront.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

async def _run_scheduler_job(job: str) -> Dict[str, Any]:
    # Компоненты создаются заново на каждый запуск задачи
    integration = build_integration(settings, SessionLocal)
    try:
        return await getattr(integration.scheduler, job)()
    finally:
        await integration.aclose()

def _execute(task, job: str) -> Dict[str, Any]:
    task_id = current_task.request.id if current_task else str(uuid4())
    logger.info(f"Starting marketplace task {job} ({task_id})")

    try:
        result = asyncio.run(_run_scheduler_job(job))
    except MarketplaceConnectionError as e:
        logger.error(f"Marketplace unavailable in task {job} ({task_id}): {e}")
        # Повторная попытка
        raise task.retry(exc=e, countdown=60)
    except MarketplaceError as e:
        logger.error(f"Marketplace task {job} ({task_id}) failed: {e}")
        return {"status": "failed", "error": str(e)}

    logger.info(f"Marketplace task {job} ({task_id}) finished: {result}")
    return result

@celery_app.task(bind=True, max_retries=3)
def refresh_marketplace_token(self):
    """Обновление токена маркетплейса (только если истек)"""
    return _execute(self, "run_token_refresh")

@celery_app.task(bind=True, max_retries=3)
def resync_catalog(self):
    """Пересинхронизация товаров магазина с маркетплейсом"""
    return _execute(self, "run_catalog_resync")

@celery_app.task(bind=True, max_retries=3)
def poll_order_statuses(self):
    """Опрос статусов заказов, переданных в маркетплейс"""
    return _execute(self, "run_order_poll")

@celery_app.task(bind=True, max_retries=1)
def check_marketplace_credentials(self):
    return _execute(self, "run_credential_health_check")
