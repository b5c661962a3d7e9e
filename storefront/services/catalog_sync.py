import logging
from typing import Optional, Dict, Any, List
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from storefront.crud import product as product_crud
from storefront.database import utcnow
from storefront.models.product import Product, ProductVariant, PricingStrategy
from storefront.services.marketplace_client import MarketplaceError, NotFoundError
from storefront.services.token_manager import TokenManager
from storefront.services import pricing

logger = logging.getLogger(__name__)

# Сортировка каталога -> (orderBy, sort) маркетплейса
SORT_MAPPING = {
    "BEST_MATCH": ("0", "desc"),
    "POPULARITY_DESC": ("1", "desc"),
    "PRICE_ASC": ("2", "asc"),
    "PRICE_DESC": ("2", "desc"),
    "NEWEST": ("3", "desc"),
    "INVENTORY_DESC": ("4", "desc"),
}

class CatalogSyncEngine:
    """Синхронизация локального каталога с товарами маркетплейса"""

    def __init__(self, token_manager: TokenManager):
        self.tokens = token_manager

    async def _get_data(self, endpoint: str, params: Optional[Dict[str, Any]] = None):
        envelope = await self.tokens.make_authenticated_request("GET", endpoint, params=params)
        return envelope.get("data")

    # --- Товары ---

    async def get_product_details(
        self,
        remote_product_id: str,
        include_videos: bool = True,
        include_inventory: bool = True
    ) -> Dict[str, Any]:
        params = {"pid": remote_product_id}
        features = []
        if include_videos:
            features.append("enable_video")
        if include_inventory:
            features.append("enable_inventory")
        if features:
            params["features"] = ",".join(features)

        data = await self._get_data("/product/query", params)
        if not data:
            raise NotFoundError(f"Product {remote_product_id} not found", code=404)
        return data

    def _build_variants(
        self,
        product: Product,
        remote_variants: List[Dict[str, Any]],
        strategy: str,
        ratio: float,
        markup_value: Optional[float],
        product_cost: float
    ) -> List[ProductVariant]:
        existing = {v.variant_id: v for v in product.variants}
        variants = []

        for remote_variant in remote_variants:
            variant_id = str(
                remote_variant.get("vid") or remote_variant.get("variantId") or remote_variant.get("id") or ""
            )
            cost = pricing.parse_price(remote_variant.get("variantSellPrice") or remote_variant.get("price"))
            suggested = pricing.parse_price(remote_variant.get("variantSugSellPrice"))

            variant = existing.get(variant_id) or ProductVariant(variant_id=variant_id)
            variant.price = pricing.derive_variant_price(
                strategy,
                variant_cost=cost,
                variant_suggested=suggested,
                ratio=ratio,
                markup_value=markup_value,
                existing_price=variant.price,
                product_cost=product_cost,
            )
            variant.cost_price = cost
            variant.suggested_price = suggested
            variant.stock = pricing.variant_stock(remote_variant)
            variant.name = remote_variant.get("variantNameEn") or remote_variant.get("name") or ""
            variant.sku = remote_variant.get("variantSku") or remote_variant.get("sku") or ""
            variants.append(variant)

        return variants

    async def sync_one(
        self,
        db: Session,
        remote_product_id: str,
        overrides: Optional[Dict[str, Any]] = None
    ) -> Product:
        """
        Загрузить товар маркетплейса и обновить (или создать) локальную копию.

        Локальные настройки магазина (is_in_store, category_id, стратегия цены,
        наценка) и цена существующего товара сохраняются, если overrides их
        явно не задает. Повторная синхронизация тех же данных ничего не меняет.
        """
        overrides = overrides or {}
        remote = await self.get_product_details(remote_product_id)
        pid = str(remote.get("pid") or remote_product_id)

        product = product_crud.get_product_by_remote_id(db, pid)
        is_new = product is None

        cost = pricing.parse_price(remote.get("sellPrice") or remote.get("price") or remote.get("nowPrice"))
        suggested = pricing.parse_price(remote.get("suggestSellPrice") or remote.get("sugSellPrice"))
        compare_at = pricing.parse_price(
            remote.get("originalPrice") or remote.get("price") or remote.get("sellPrice"), upper=True
        ) or cost

        remote_variants = remote.get("variants") or []
        variant_stocks = [pricing.variant_stock(v) for v in remote_variants]

        incoming = {
            "name": pricing.resolve_name(
                remote,
                existing_name=None if is_new else product.name,
                explicit_name=overrides.get("name"),
            ),
            "description": remote.get("description") or "",
            "images": pricing.collect_images(remote),
            "brand": remote.get("brand") or "",
            "sku": remote.get("productSku") or remote.get("sku") or "",
            "category_name": remote.get("categoryName") or remote.get("threeCategoryName") or None,
            "cost_price": cost,
            "compare_at_price": compare_at,
            "suggested_price": suggested or None,
            "currency": remote.get("currency") or "USD",
            "stock": pricing.product_stock(remote, variant_stocks),
            "is_available": remote.get("isActive") is not False,
            "weight": pricing.parse_price(remote.get("productWeight") or remote.get("weight")) or None,
            "raw_remote_snapshot": remote,
            "last_synced_at": utcnow(),
        }
        fields = pricing.merge_local_fields(product, incoming, overrides)
        strategy = fields["pricing_strategy"] or PricingStrategy.SUGGESTED.value

        if overrides.get("price") is not None:
            price = float(overrides["price"])
        elif is_new or not product.price:
            price = pricing.derive_product_price(strategy, cost, suggested, fields["markup_value"])
        elif overrides.get("pricing_strategy") is not None and strategy != PricingStrategy.CUSTOM.value:
            price = pricing.derive_product_price(strategy, cost, suggested, fields["markup_value"])
        else:
            # custom сохраняет текущую цену магазина
            price = product.price

        try:
            if is_new:
                product = Product(remote_product_id=pid)
                db.add(product)

            for key, value in fields.items():
                setattr(product, key, value)
            product.price = price

            if remote_variants:
                product.variants = self._build_variants(
                    product,
                    remote_variants,
                    strategy,
                    ratio=pricing.price_ratio(price, cost),
                    markup_value=fields["markup_value"],
                    product_cost=cost,
                )

            db.commit()
            db.refresh(product)

        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to save product {pid}: {e}")
            raise

        logger.info(f"Product synced: {pid} (id={product.id}, {'created' if is_new else 'updated'})")
        return product

    async def sync_many(self, db: Session, remote_product_ids: List[str]) -> Dict[str, list]:
        """Синхронизация списка товаров; ошибка одного товара не прерывает остальные"""
        results = {"success": [], "failed": []}

        for remote_product_id in remote_product_ids:
            try:
                product = await self.sync_one(db, remote_product_id)
                results["success"].append(product)
            except (MarketplaceError, SQLAlchemyError) as e:
                logger.error(f"Error syncing product {remote_product_id}: {e}")
                results["failed"].append({"remoteProductId": remote_product_id, "error": str(e)})

        return results

    async def import_product(
        self,
        db: Session,
        remote_product_id: str,
        overrides: Optional[Dict[str, Any]] = None
    ) -> Product:
        """Импорт товара в магазин администратором"""
        overrides = dict(overrides or {})
        if overrides.get("is_in_store") is None:
            overrides["is_in_store"] = True
        return await self.sync_one(db, remote_product_id, overrides)

    # --- Каталог маркетплейса ---

    async def search_catalog(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        params = params or {}
        page_num = int(params.get("pageNum") or 1)
        page_size = int(params.get("pageSize") or 20)
        order_by, sort = SORT_MAPPING.get(params.get("sortType") or "POPULARITY_DESC", SORT_MAPPING["BEST_MATCH"])

        query = {"page": page_num, "size": page_size, "orderBy": order_by, "sort": sort}
        if params.get("keyword"):
            query["keyWord"] = params["keyword"]
        if params.get("categoryId"):
            query["categoryId"] = params["categoryId"]

        data = await self._get_data("/product/listV2", query) or {}

        items = []
        if isinstance(data, list):
            items = data
        elif isinstance(data.get("content"), list):
            for block in data["content"]:
                items.extend(block.get("productList") or [])
        elif isinstance(data.get("productList"), list):
            items = data["productList"]

        products = [
            {
                "remoteProductId": item.get("id") or item.get("pid"),
                "name": item.get("nameEn") or item.get("productName") or item.get("name"),
                "sku": item.get("sku") or item.get("productSku") or "",
                "costPrice": pricing.parse_price(item.get("sellPrice") or item.get("nowPrice") or item.get("price")),
                "currency": item.get("currency") or "USD",
                "image": item.get("bigImage") or item.get("productImage"),
                "category": item.get("threeCategoryName") or item.get("categoryName") or "",
                "stock": item.get("warehouseInventoryNum") or item.get("totalVerifiedInventory") or item.get("stock") or 0,
            }
            for item in items
        ]

        total = (data.get("totalRecords") or data.get("total") or len(products)) if isinstance(data, dict) else len(products)
        total_pages = data.get("totalPages") if isinstance(data, dict) else None
        return {
            "products": products,
            "total": total,
            "pageNum": page_num,
            "pageSize": page_size,
            "totalPages": total_pages or -(-total // page_size),
        }

    async def get_categories(self) -> list:
        return await self._get_data("/product/getCategory") or []

    async def query_freight(
        self,
        product_id: str,
        country_code: str,
        variant_id: str = "",
        quantity: int = 1
    ) -> list:
        envelope = await self.tokens.make_authenticated_request(
            "POST",
            "/logistics/queryFreight",
            body={
                "productId": product_id,
                "variantId": variant_id,
                "countryCode": country_code,
                "quantity": quantity,
            }
        )
        return envelope.get("data") or []

    # --- Остатки, склады, баланс ---

    async def get_stock_by_vid(self, vid: str):
        return await self._get_data("/product/stock/queryByVid", {"vid": vid})

    async def get_stock_by_sku(self, sku: str):
        return await self._get_data("/product/stock/queryBySku", {"sku": sku})

    async def get_inventory_by_pid(self, pid: str):
        return await self._get_data("/product/stock/getInventoryByPid", {"pid": pid})

    async def get_warehouses(self) -> list:
        data = await self._get_data("/product/globalWarehouseList")
        return data if isinstance(data, list) else []

    async def get_warehouse(self, warehouse_id: str) -> Dict[str, Any]:
        data = await self._get_data("/warehouse/detail", {"id": warehouse_id})
        if not data:
            raise NotFoundError(f"Warehouse {warehouse_id} not found", code=404)
        return data

    async def get_balance(self) -> Dict[str, Any]:
        data = await self._get_data("/shopping/pay/getBalance") or {}
        return {
            "amount": data.get("amount", 0),
            "noWithdrawalAmount": data.get("noWithdrawalAmount"),
            "freezeAmount": data.get("freezeAmount"),
        }

    # --- Обновления от webhook'ов ---

    def apply_variant_stock(self, db: Session, variant_id: str, stock: int) -> Optional[Product]:
        """Обновить остаток варианта и пересчитать остаток товара"""
        variant = product_crud.get_variant(db, variant_id)
        if variant is None:
            logger.warning(f"Variant {variant_id} not found locally, stock update skipped")
            return None

        variant.stock = stock
        product = variant.product
        product.recompute_stock()
        product.last_synced_at = utcnow()
        db.flush()

        logger.info(f"Variant {variant_id} stock set to {stock}, product {product.remote_product_id} stock {product.stock}")
        return product

    def apply_product_stock(
        self,
        db: Session,
        remote_product_id: str,
        stock: int,
        variant_id: Optional[str] = None
    ) -> Optional[Product]:
        product = product_crud.get_product_by_remote_id(db, remote_product_id)
        if product is None:
            logger.warning(f"Product {remote_product_id} not found locally, stock update skipped")
            return None

        if variant_id:
            variant = next((v for v in product.variants if v.variant_id == str(variant_id)), None)
            if variant is None:
                logger.warning(f"Variant {variant_id} of product {remote_product_id} not found locally")
                return product
            variant.stock = stock
            product.recompute_stock()
        else:
            product.stock = stock
            product.is_available = stock > 0

        product.last_synced_at = utcnow()
        db.flush()
        logger.info(f"Product {remote_product_id} stock updated to {product.stock}")
        return product
