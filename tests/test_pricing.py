from types import SimpleNamespace
import pytest
from storefront.services import pricing

def test_parse_price_range_bounds():
    """Диапазон: нижняя граница для себестоимости, верхняя для compare_at"""
    assert pricing.parse_price("10.50-25.00") == 10.50
    assert pricing.parse_price("10.50-25.00", upper=True) == 25.00
    assert pricing.parse_price("7.3") == 7.3
    assert pricing.parse_price(12) == 12.0
    assert pricing.parse_price(None) == 0.0
    assert pricing.parse_price("") == 0.0
    assert pricing.parse_price("abc") == 0.0

@pytest.mark.parametrize("name,expected", [
    ("Steel Pan", True),
    ("不锈钢锅", False),
    ('["Steel Pan"]', False),
    ("", False),
    (None, False),
])
def test_is_clean_name(name, expected):
    assert pricing.is_clean_name(name) is expected

def test_resolve_name_priority():
    remote = {"productNameEn": "Remote Name", "nameEn": "Other", "productName": '["中文名", "Second"]'}

    assert pricing.resolve_name(remote, existing_name="Local", explicit_name="  Admin Name ") == "Admin Name"
    assert pricing.resolve_name(remote, existing_name="Local") == "Local"
    assert pricing.resolve_name(remote, existing_name="不锈钢锅") == "Remote Name"
    assert pricing.resolve_name({"nameEn": "Only nameEn"}) == "Only nameEn"

def test_resolve_name_json_array_fallback():
    assert pricing.resolve_name({"productName": '["First", "Second"]'}) == "First"
    assert pricing.resolve_name({"productName": "Plain"}) == "Plain"
    assert pricing.resolve_name({"productName": "[broken"}) == "[broken"

def test_variant_stock_sums_warehouses():
    variant = {
        "inventories": [{"totalInventory": 5}, {"totalInventoryNum": "3"}],
        "inventoryNum": 100,
    }
    assert pricing.variant_stock(variant) == 8

def test_variant_stock_fallbacks():
    assert pricing.variant_stock({"inventories": [{"totalInventory": 0}], "inventoryNum": 4}) == 4
    assert pricing.variant_stock({"totalInventoryNum": 6}) == 6
    assert pricing.variant_stock({"stock": "2"}) == 2
    assert pricing.variant_stock({}) == 0

def test_product_stock_direct_or_variant_sum():
    assert pricing.product_stock({"warehouseInventoryNum": 40}, [1, 2]) == 40
    assert pricing.product_stock({"stock": 0}, [1, 2]) == 3
    assert pricing.product_stock({}, [5, 5]) == 10

def test_collect_images_deduplicated_in_order():
    remote = {
        "productImage": "https://img/1.jpg",
        "productImageSet": ["https://img/1.jpg", "https://img/2.jpg"],
        "variants": [{"variantImage": "https://img/3.jpg"}, {"variantImage": "https://img/2.jpg"}, {}],
    }
    assert pricing.collect_images(remote) == ["https://img/1.jpg", "https://img/2.jpg", "https://img/3.jpg"]

def test_collect_images_from_json_string():
    remote = {"productImage": "[\"https://img/1.jpg\",\"https://img/2.jpg\"]", "bigImage": "https://img/big.jpg"}
    assert pricing.collect_images(remote) == ["https://img/1.jpg", "https://img/2.jpg"]

    assert pricing.collect_images({"productImage": "", "bigImage": "https://img/big.jpg"}) == ["https://img/big.jpg"]

def test_price_ratio():
    assert pricing.price_ratio(30.0, 10.0) == 3.0
    assert pricing.price_ratio(30.0, 0) == 2.0
    assert pricing.price_ratio(None, 10.0) == 1.0

@pytest.mark.parametrize("strategy,cost,suggested,markup,expected", [
    ("suggested", 10.0, 24.99, None, 24.99),
    ("suggested", 10.0, 0.0, None, 20.0),
    ("markup_percentage", 10.0, 0.0, 50, 15.0),
    ("markup_percentage", 10.0, 0.0, None, 20.0),
    ("markup_percentage", 10.0, 0.0, 0, 10.0),
    ("markup_fixed", 10.0, 0.0, 4.5, 14.5),
    ("markup_fixed", 10.0, 0.0, None, 10.0),
    ("custom", 10.0, 30.0, None, 20.0),
])
def test_derive_product_price(strategy, cost, suggested, markup, expected):
    assert pricing.derive_product_price(strategy, cost, suggested, markup) == expected

def test_suggested_variant_price_forced():
    """Стратегия suggested: рекомендованная цена варианта используется как есть"""
    price = pricing.derive_variant_price(
        "suggested", variant_cost=10.0, variant_suggested=19.995, ratio=3.0, existing_price=50.0
    )
    assert price == 19.995

def test_suggested_variant_price_without_suggestion_uses_ratio():
    assert pricing.derive_variant_price("suggested", 10.0, 0.0, ratio=2.5) == 25.0

def test_markup_variant_prices():
    assert pricing.derive_variant_price("markup_percentage", 8.0, 0.0, ratio=2.0, markup_value=25) == 10.0
    assert pricing.derive_variant_price("markup_fixed", 8.0, 0.0, ratio=2.0, markup_value=1.25) == 9.25
    assert pricing.derive_variant_price("markup_percentage", 8.0, 0.0, ratio=2.0, markup_value=0) == 8.0

def test_custom_variant_price_preserved():
    assert pricing.derive_variant_price("custom", 10.0, 0.0, ratio=2.0, existing_price=17.0) == 17.0
    # Цена, равная себестоимости, пересчитывается
    assert pricing.derive_variant_price("custom", 10.0, 0.0, ratio=2.0, existing_price=10.0) == 20.0
    assert pricing.derive_variant_price("custom", 10.0, 0.0, ratio=2.0) == 20.0

def test_non_positive_variant_price_falls_back_to_cost():
    assert pricing.derive_variant_price("suggested", 0.0, 0.0, ratio=2.0, product_cost=7.0) == 7.0
    assert pricing.derive_variant_price("markup_fixed", 3.0, 0.0, ratio=2.0, markup_value=-5) == 3.0

def test_merge_local_fields_preserves_existing_settings():
    existing = SimpleNamespace(is_in_store=True, category_id=7, pricing_strategy="markup_fixed", markup_value=3.0)
    incoming = {"name": "Remote", "is_in_store": False, "category_id": None}

    merged = pricing.merge_local_fields(existing, incoming)

    assert merged["name"] == "Remote"
    assert merged["is_in_store"] is True
    assert merged["category_id"] == 7
    assert merged["pricing_strategy"] == "markup_fixed"
    assert merged["markup_value"] == 3.0

def test_merge_local_fields_explicit_overrides_and_defaults():
    existing = SimpleNamespace(is_in_store=True, category_id=7, pricing_strategy=None, markup_value=None)

    merged = pricing.merge_local_fields(existing, {}, {"category_id": 9, "is_in_store": None})
    assert merged["category_id"] == 9
    assert merged["is_in_store"] is True

    fresh = pricing.merge_local_fields(None, {})
    assert fresh == pricing.LOCAL_DEFAULTS
