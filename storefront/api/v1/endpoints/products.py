# storefront/api/v1/endpoints/products.py
from typing import Any, List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from storefront.api.deps import require_admin, get_integration
from storefront.database import get_db
from storefront.models.product import Product
from storefront.schemas.marketplace import ApiResponse, ProductImport, ProductResponse
from storefront.services.integration import Integration

router = APIRouter()

class ProductBatchSync(BaseModel):
    remoteProductIds: List[str] = Field(..., min_length=1, max_length=100)

@router.get("/", response_model=List[ProductResponse])
def read_products(
    db: Session = Depends(get_db),
    skip: int = 0,
    limit: int = Query(100, le=500),
    in_store: Optional[bool] = Query(None),
    current_user = Depends(require_admin)
) -> Any:
    """Товары маркетплейса в локальном каталоге"""
    query = db.query(Product)
    if in_store is not None:
        query = query.filter(Product.is_in_store.is_(in_store))
    return query.order_by(Product.id).offset(skip).limit(limit).all()

@router.post("/import", response_model=ApiResponse)
async def import_product(
    product_in: ProductImport,
    db: Session = Depends(get_db),
    integration: Integration = Depends(get_integration),
    current_user = Depends(require_admin)
) -> Any:
    """
    Импорт товара маркетплейса в магазин.
    Заданные поля (категория, стратегия цены, цена) заменяют локальные.
    """
    product = await integration.catalog.import_product(
        db, product_in.remoteProductId, product_in.overrides()
    )
    return ApiResponse(
        message="Product imported successfully",
        data=ProductResponse.model_validate(product),
    )

@router.post("/sync", response_model=ApiResponse)
async def sync_products(
    batch_in: ProductBatchSync,
    db: Session = Depends(get_db),
    integration: Integration = Depends(get_integration),
    current_user = Depends(require_admin)
) -> Any:
    results = await integration.catalog.sync_many(db, batch_in.remoteProductIds)
    return ApiResponse(
        message=f"Synced {len(results['success'])} products, {len(results['failed'])} failed",
        data={
            "success": [p.remote_product_id for p in results["success"]],
            "failed": results["failed"],
        },
    )

@router.post("/{remote_product_id}/sync", response_model=ApiResponse)
async def sync_product(
    remote_product_id: str,
    db: Session = Depends(get_db),
    integration: Integration = Depends(get_integration),
    current_user = Depends(require_admin)
) -> Any:
    """Синхронизация одного товара; локальные настройки сохраняются"""
    product = await integration.catalog.sync_one(db, remote_product_id)
    return ApiResponse(
        message="Product synced successfully",
        data=ProductResponse.model_validate(product),
    )
