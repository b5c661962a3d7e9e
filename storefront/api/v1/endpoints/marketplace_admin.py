# storefront/api/v1/endpoints/marketplace_admin.py
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from storefront.api.deps import require_admin, get_integration
from storefront.core.config import settings
from storefront.crud.marketplace import get_config
from storefront.database import get_db
from storefront.schemas.marketplace import ApiResponse, ApiKeyUpdate, WebhookConfigIn, FreightRequest
from storefront.services.integration import Integration
from storefront.services.marketplace_client import MarketplaceError
from storefront.tasks import marketplace_tasks

router = APIRouter()
logger = logging.getLogger(__name__)

# Фоновые задачи, которые можно запустить вручную
SCHEDULER_TASKS = {
    "token-refresh": marketplace_tasks.refresh_marketplace_token,
    "catalog-resync": marketplace_tasks.resync_catalog,
    "order-poll": marketplace_tasks.poll_order_statuses,
    "health-check": marketplace_tasks.check_marketplace_credentials,
}

# --- Токен и API ключ ---

@router.get("/token-status", response_model=ApiResponse)
async def token_status(
    integration: Integration = Depends(get_integration),
    current_user = Depends(require_admin)
):
    """Состояние токена маркетплейса"""
    return ApiResponse(data=integration.tokens.token_status())

@router.get("/config", response_model=ApiResponse)
async def read_config(
    db: Session = Depends(get_db),
    integration: Integration = Depends(get_integration),
    current_user = Depends(require_admin)
):
    """Настроен ли API ключ (сам ключ не возвращается)"""
    has_api_key = integration.tokens.has_credential_source()
    config = get_config(db)
    return ApiResponse(data={
        "hasApiKey": has_api_key,
        "apiKeyConfigured": has_api_key,
        "baseURL": settings.MARKETPLACE_BASE_URL,
        "webhook": config.webhook_settings() if config else None,
    })

@router.put("/api-key", response_model=ApiResponse)
async def update_api_key(
    key_in: ApiKeyUpdate,
    integration: Integration = Depends(get_integration),
    current_user = Depends(require_admin)
):
    """
    Сохранить API ключ и сразу получить токен.
    Ключ сохраняется, даже если маркетплейс его отклонил.
    """
    integration.tokens.save_api_key(key_in.apiKey)

    try:
        await integration.tokens.obtain_initial_token(key_in.apiKey)
    except MarketplaceError as e:
        logger.error(f"API key saved but token request failed: {e}")
        content = {
            "success": False,
            "message": "API key saved but failed to obtain access token",
            "data": {"hasApiKey": True, "tokenObtained": False},
        }
        if not settings.is_production:
            content["error"] = str(e)
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=content)

    return ApiResponse(
        message="API key updated and access token obtained",
        data={"hasApiKey": True, "tokenObtained": True},
    )

@router.post("/refresh-token", response_model=ApiResponse)
async def refresh_token(
    integration: Integration = Depends(get_integration),
    current_user = Depends(require_admin)
):
    tokens = integration.tokens
    await tokens.refresh_token(tokens.stored_refresh_token())
    return ApiResponse(message="Token refreshed successfully", data=tokens.token_status())

@router.post("/test-connection", response_model=ApiResponse)
async def test_connection(
    integration: Integration = Depends(get_integration),
    current_user = Depends(require_admin)
):
    """Получить новый токен и сделать пробный запрос"""
    result = await integration.tokens.test_connection()
    return ApiResponse(message=result.pop("message"), data=result)

@router.delete("/token", response_model=ApiResponse)
async def delete_token(
    integration: Integration = Depends(get_integration),
    current_user = Depends(require_admin)
):
    deleted = integration.tokens.delete_token()
    return ApiResponse(message="Token deleted successfully", data={"deleted": deleted})

# --- Webhook'и ---

@router.get("/webhook", response_model=ApiResponse)
async def read_webhook_config(
    db: Session = Depends(get_db),
    current_user = Depends(require_admin)
):
    config = get_config(db)
    return ApiResponse(data=config.webhook_settings() if config else None)

@router.post("/webhook", response_model=ApiResponse)
async def set_webhook_config(
    config_in: WebhookConfigIn,
    db: Session = Depends(get_db),
    integration: Integration = Depends(get_integration),
    current_user = Depends(require_admin)
):
    """Отправить подписку на webhook'и в маркетплейс"""
    data = await integration.reconciler.configure_subscription(
        db,
        callback_url=config_in.callbackUrl,
        product=config_in.product,
        stock=config_in.stock,
        order=config_in.order,
        logistics=config_in.logistics,
    )
    return ApiResponse(message="Webhook settings applied successfully", data=data)

# --- Склады, остатки, баланс ---

@router.get("/warehouses", response_model=ApiResponse)
async def list_warehouses(
    integration: Integration = Depends(get_integration),
    current_user = Depends(require_admin)
):
    return ApiResponse(data=await integration.catalog.get_warehouses())

@router.get("/warehouses/{warehouse_id}", response_model=ApiResponse)
async def read_warehouse(
    warehouse_id: str,
    integration: Integration = Depends(get_integration),
    current_user = Depends(require_admin)
):
    return ApiResponse(data=await integration.catalog.get_warehouse(warehouse_id))

@router.get("/stock", response_model=ApiResponse)
async def read_stock(
    pid: Optional[str] = Query(None),
    vid: Optional[str] = Query(None),
    sku: Optional[str] = Query(None),
    integration: Integration = Depends(get_integration),
    current_user = Depends(require_admin)
):
    """Остатки по товару, варианту или SKU"""
    catalog = integration.catalog
    if vid:
        data = await catalog.get_stock_by_vid(vid)
    elif sku:
        data = await catalog.get_stock_by_sku(sku)
    elif pid:
        data = await catalog.get_inventory_by_pid(pid)
    else:
        raise HTTPException(status_code=400, detail="One of pid, vid or sku is required")
    return ApiResponse(data=data)

@router.get("/balance", response_model=ApiResponse)
async def read_balance(
    integration: Integration = Depends(get_integration),
    current_user = Depends(require_admin)
):
    return ApiResponse(data=await integration.catalog.get_balance())

# --- Каталог маркетплейса ---

@router.get("/catalog", response_model=ApiResponse)
async def search_catalog(
    keyword: Optional[str] = Query(None),
    categoryId: Optional[str] = Query(None),
    pageNum: int = Query(1, ge=1),
    pageSize: int = Query(20, ge=1, le=200),
    sortType: str = Query("POPULARITY_DESC"),
    integration: Integration = Depends(get_integration),
    current_user = Depends(require_admin)
):
    """Поиск товаров в каталоге маркетплейса (без сохранения)"""
    data = await integration.catalog.search_catalog({
        "keyword": keyword,
        "categoryId": categoryId,
        "pageNum": pageNum,
        "pageSize": pageSize,
        "sortType": sortType,
    })
    return ApiResponse(data=data)

@router.get("/categories", response_model=ApiResponse)
async def list_categories(
    integration: Integration = Depends(get_integration),
    current_user = Depends(require_admin)
):
    return ApiResponse(data=await integration.catalog.get_categories())

@router.post("/freight", response_model=ApiResponse)
async def query_freight(
    freight_in: FreightRequest,
    integration: Integration = Depends(get_integration),
    current_user = Depends(require_admin)
):
    data = await integration.catalog.query_freight(
        product_id=freight_in.productId,
        country_code=freight_in.countryCode,
        variant_id=freight_in.variantId,
        quantity=freight_in.quantity,
    )
    return ApiResponse(data=data)

# --- Фоновые задачи ---

@router.post("/sync/{job}", status_code=202)
async def trigger_job(
    job: str,
    current_user = Depends(require_admin)
):
    """Запуск фоновой задачи вне расписания"""
    task = SCHEDULER_TASKS.get(job)
    if task is None:
        raise HTTPException(status_code=400, detail=f"Unsupported job: {job}")

    result = task.apply_async()
    return {
        "task_id": result.id,
        "status": "started",
        "message": f"Task started: {job}"
    }
