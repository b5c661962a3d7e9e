import copy
import pytest
from conftest import ok, fail, make_product
from storefront.models.product import Product, ProductVariant
from storefront.services.marketplace_client import NotFoundError

REMOTE_PRODUCT = {
    "pid": "PID-1",
    "productNameEn": "Steel Frying Pan",
    "productSku": "SKU-PAN",
    "productImage": "https://img.example.com/pan-1.jpg",
    "productImageSet": ["https://img.example.com/pan-1.jpg", "https://img.example.com/pan-2.jpg"],
    "categoryName": "Cookware",
    "sellPrice": "10.50-25.00",
    "suggestSellPrice": "30.00-60.00",
    "productWeight": 500,
    "variants": [
        {
            "vid": "VID-1",
            "variantNameEn": "Pan 24cm",
            "variantSku": "SKU-PAN-24",
            "variantSellPrice": 10.5,
            "variantSugSellPrice": 30.0,
            "inventories": [{"totalInventory": 4}, {"totalInventory": 1}],
        },
        {
            "vid": "VID-2",
            "variantNameEn": "Pan 28cm",
            "variantSku": "SKU-PAN-28",
            "variantSellPrice": 25.0,
            "variantSugSellPrice": 0,
            "inventoryNum": 7,
        },
    ],
}

def remote(**changes):
    data = copy.deepcopy(REMOTE_PRODUCT)
    data.update(changes)
    return data

@pytest.fixture
def product_detail(marketplace, stored_token):
    marketplace.on("GET", "/product/query", ok(remote()))
    return marketplace

def product_state(product: Product) -> dict:
    return {
        "name": product.name,
        "price": product.price,
        "cost_price": product.cost_price,
        "compare_at_price": product.compare_at_price,
        "stock": product.stock,
        "images": product.images,
        "variants": [(v.variant_id, v.price, v.stock) for v in product.variants],
    }

@pytest.mark.asyncio
async def test_sync_creates_product(integration, product_detail, db):
    product = await integration.catalog.sync_one(db, "PID-1")

    assert product.remote_product_id == "PID-1"
    assert product.name == "Steel Frying Pan"
    assert product.cost_price == 10.50
    assert product.compare_at_price == 25.00
    assert product.suggested_price == 30.00
    assert product.price == 30.00
    assert product.stock == 12
    assert product.images == ["https://img.example.com/pan-1.jpg", "https://img.example.com/pan-2.jpg"]
    assert product.is_in_store is False
    assert product.last_synced_at is not None

    # suggested: рекомендованная цена варианта, иначе себестоимость * коэффициент товара
    variants = {v.variant_id: v for v in product.variants}
    assert variants["VID-1"].price == 30.0
    assert variants["VID-1"].stock == 5
    assert variants["VID-2"].price == round(25.0 * 30.0 / 10.5, 2)
    assert variants["VID-2"].stock == 7

    params = product_detail.calls_to("/product/query")[0]["params"]
    assert params == {"pid": "PID-1", "features": "enable_video,enable_inventory"}

@pytest.mark.asyncio
async def test_sync_is_idempotent(integration, product_detail, db):
    first = product_state(await integration.catalog.sync_one(db, "PID-1"))
    second = product_state(await integration.catalog.sync_one(db, "PID-1"))

    assert first == second
    assert db.query(Product).count() == 1
    assert db.query(ProductVariant).count() == 2

@pytest.mark.asyncio
async def test_sync_preserves_local_settings(integration, marketplace, stored_token, db):
    make_product(
        db,
        "PID-1",
        name="My Pan",
        price=99.0,
        is_in_store=True,
        category_id=12,
        pricing_strategy="markup_fixed",
        markup_value=5.0,
    )
    marketplace.on("GET", "/product/query", ok(remote(sellPrice="11.00")))

    product = await integration.catalog.sync_one(db, "PID-1")

    assert product.name == "My Pan"
    assert product.price == 99.0
    assert product.is_in_store is True
    assert product.category_id == 12
    assert product.pricing_strategy == "markup_fixed"
    assert product.markup_value == 5.0
    assert product.cost_price == 11.0

    variants = {v.variant_id: v for v in product.variants}
    assert variants["VID-1"].price == 15.5
    assert variants["VID-2"].price == 30.0

@pytest.mark.asyncio
async def test_unclean_local_name_is_replaced(integration, product_detail, db):
    make_product(db, "PID-1", name='["不锈钢锅"]')

    product = await integration.catalog.sync_one(db, "PID-1")

    assert product.name == "Steel Frying Pan"

@pytest.mark.asyncio
async def test_import_applies_overrides(integration, product_detail, db):
    product = await integration.catalog.import_product(
        db,
        "PID-1",
        {"name": "Pan Deluxe", "category_id": 3, "pricing_strategy": "markup_percentage", "markup_value": 50},
    )

    assert product.name == "Pan Deluxe"
    assert product.is_in_store is True
    assert product.category_id == 3
    assert product.price == 15.75

    variants = {v.variant_id: v for v in product.variants}
    assert variants["VID-1"].price == 15.75
    assert variants["VID-2"].price == 37.5

@pytest.mark.asyncio
async def test_explicit_price_wins(integration, product_detail, db):
    make_product(db, "PID-1", price=40.0)

    product = await integration.catalog.import_product(db, "PID-1", {"price": 45.0})

    assert product.price == 45.0

@pytest.mark.asyncio
async def test_switch_to_custom_keeps_local_price(integration, product_detail, db):
    make_product(db, "PID-1", price=99.0, pricing_strategy="suggested")

    product = await integration.catalog.import_product(db, "PID-1", {"pricing_strategy": "custom"})

    assert product.pricing_strategy == "custom"
    assert product.price == 99.0

@pytest.mark.asyncio
async def test_switch_to_markup_recomputes_price(integration, product_detail, db):
    make_product(db, "PID-1", price=99.0, pricing_strategy="custom")

    product = await integration.catalog.import_product(
        db, "PID-1", {"pricing_strategy": "markup_fixed", "markup_value": 4.5}
    )

    assert product.price == 15.0

@pytest.mark.asyncio
async def test_remote_without_variants_keeps_local_variants(integration, marketplace, stored_token, db):
    make_product(db, "PID-1", variants=[{"variant_id": "VID-9", "price": 12.0, "stock": 3}])
    marketplace.on("GET", "/product/query", ok(remote(variants=[], warehouseInventoryNum=40)))

    product = await integration.catalog.sync_one(db, "PID-1")

    assert [v.variant_id for v in product.variants] == ["VID-9"]
    assert product.stock == 40

@pytest.mark.asyncio
async def test_missing_remote_product(integration, marketplace, stored_token, db):
    marketplace.on("GET", "/product/query", ok(None))

    with pytest.raises(NotFoundError):
        await integration.catalog.sync_one(db, "PID-404")

    assert db.query(Product).count() == 0

@pytest.mark.asyncio
async def test_sync_many_isolates_failures(integration, marketplace, stored_token, db):
    def detail(request):
        pid = request.url.params["pid"]
        if pid == "PID-BAD":
            return fail(1600100, "Product is off shelf")
        return ok(remote(pid=pid))

    marketplace.on("GET", "/product/query", detail)

    results = await integration.catalog.sync_many(db, ["PID-1", "PID-BAD", "PID-2"])

    assert [p.remote_product_id for p in results["success"]] == ["PID-1", "PID-2"]
    assert results["failed"] == [{"remoteProductId": "PID-BAD", "error": "Product is off shelf"}]

@pytest.mark.asyncio
async def test_search_catalog_flattens_content(integration, marketplace, stored_token):
    marketplace.on("GET", "/product/listV2", ok({
        "totalRecords": 41,
        "content": [{"productList": [
            {"id": "PID-1", "nameEn": "Pan", "sellPrice": "3.5-4", "bigImage": "https://img/1.jpg"},
        ]}],
    }))

    result = await integration.catalog.search_catalog({"keyword": "pan", "pageNum": 2, "pageSize": 20, "sortType": "PRICE_ASC"})

    assert result["products"][0]["remoteProductId"] == "PID-1"
    assert result["products"][0]["costPrice"] == 3.5
    assert result["total"] == 41
    assert result["totalPages"] == 3

    params = marketplace.calls_to("/product/listV2")[0]["params"]
    assert params == {"page": "2", "size": "20", "orderBy": "2", "sort": "asc", "keyWord": "pan"}

@pytest.mark.asyncio
async def test_balance_and_warehouses(integration, marketplace, stored_token):
    marketplace.on("GET", "/shopping/pay/getBalance", ok({"amount": 12.5, "freezeAmount": 1}))
    marketplace.on("GET", "/product/globalWarehouseList", ok([{"id": "WH-1"}]))
    marketplace.on("GET", "/warehouse/detail", ok(None))

    assert await integration.catalog.get_balance() == {"amount": 12.5, "noWithdrawalAmount": None, "freezeAmount": 1}
    assert await integration.catalog.get_warehouses() == [{"id": "WH-1"}]
    with pytest.raises(NotFoundError):
        await integration.catalog.get_warehouse("WH-X")

@pytest.mark.asyncio
async def test_query_freight_posts_body(integration, marketplace, stored_token):
    marketplace.on("POST", "/logistics/queryFreight", ok([{"logisticName": "DHL", "logisticPrice": 9.9}]))

    options = await integration.catalog.query_freight("PID-1", "US", quantity=2)

    assert options[0]["logisticName"] == "DHL"
    assert marketplace.calls_to("/logistics/queryFreight")[0]["json"] == {
        "productId": "PID-1", "variantId": "", "countryCode": "US", "quantity": 2
    }

def test_apply_variant_stock_recomputes_product(integration, db):
    make_product(db, "PID-1", variants=[
        {"variant_id": "VID-1", "stock": 5},
        {"variant_id": "VID-2", "stock": 2},
    ])

    product = integration.catalog.apply_variant_stock(db, "VID-1", 9)
    db.commit()

    assert product.stock == 11
    assert integration.catalog.apply_variant_stock(db, "VID-404", 1) is None

def test_apply_product_stock_sets_availability(integration, db):
    make_product(db, "PID-1", stock=5, is_available=True)

    product = integration.catalog.apply_product_stock(db, "PID-1", 0)
    db.commit()

    assert product.stock == 0
    assert product.is_available is False
