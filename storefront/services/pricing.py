"""
Правила расчета цен, остатков и названий товаров маркетплейса.

Чистые функции без обращения к БД и сети: их использует CatalogSyncEngine
при синхронизации и импорте товаров.
"""
import json
import re
from typing import Optional, Dict, Any, List, Iterable
from storefront.models.product import PricingStrategy

CJK_PATTERN = re.compile(r"[\u3400-\u4dbf\u4e00-\u9fff]")

# Поля, которые задает магазин. Синхронизация их не меняет.
LOCAL_FIELDS = ("is_in_store", "category_id", "pricing_strategy", "markup_value")
LOCAL_DEFAULTS = {
    "is_in_store": False,
    "category_id": None,
    "pricing_strategy": None,
    "markup_value": None,
}

DEFAULT_MARKUP_PERCENT = 100.0
DEFAULT_MARKUP_FIXED = 0.0
DEFAULT_RATIO = 2.0

def _to_float(value) -> float:
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return 0.0

def parse_price(value, upper: bool = False) -> float:
    """
    Цена маркетплейса: число или диапазон "10.50-25.00".
    Для диапазона возвращает нижнюю границу (upper=True - верхнюю).
    """
    if value is None or value == "":
        return 0.0

    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    if "-" in text:
        parts = [p for p in text.split("-") if p.strip()]
        if not parts:
            return 0.0
        return _to_float(parts[-1] if upper else parts[0])

    return _to_float(text)

def _first_from_json_array(value) -> str:
    if isinstance(value, list):
        return str(value[0]) if value else ""

    if isinstance(value, str) and value.strip().startswith("["):
        try:
            parsed = json.loads(value)
        except ValueError:
            return value
        if isinstance(parsed, list) and parsed:
            return str(parsed[0])

    return value if isinstance(value, str) else ""

def is_clean_name(name: Optional[str]) -> bool:
    """Название без иероглифов и не JSON-массив"""
    if not name or not isinstance(name, str):
        return False
    return not CJK_PATTERN.search(name) and not name.strip().startswith("[")

def resolve_name(
    remote: Dict[str, Any],
    existing_name: Optional[str] = None,
    explicit_name: Optional[str] = None
) -> str:
    if explicit_name and explicit_name.strip():
        return explicit_name.strip()

    if is_clean_name(existing_name):
        return existing_name

    for key in ("productNameEn", "nameEn"):
        value = remote.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()

    fallback = remote.get("productName") or remote.get("name") or existing_name or ""
    return _first_from_json_array(fallback)

def _as_int(value) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0

def variant_stock(variant: Dict[str, Any]) -> int:
    """Остаток варианта: сумма по складам, иначе inventoryNum / totalInventoryNum / stock"""
    inventories = variant.get("inventories") or []
    if isinstance(inventories, list) and inventories:
        total = 0
        for entry in inventories:
            value = entry.get("totalInventory")
            if value is None:
                value = entry.get("totalInventoryNum")
            total += _as_int(value)
        if total > 0:
            return total

    for key in ("inventoryNum", "totalInventoryNum", "stock"):
        if variant.get(key) is not None:
            return _as_int(variant[key])
    return 0

def product_stock(remote: Dict[str, Any], variant_stocks: Iterable[int]) -> int:
    for key in ("stock", "warehouseInventoryNum", "totalVerifiedInventory"):
        if remote.get(key) is not None:
            direct = _as_int(remote[key])
            if direct > 0:
                return direct
            break
    return sum(variant_stocks)

def collect_images(remote: Dict[str, Any]) -> List[str]:
    """Главное фото, затем productImageSet, затем фото вариантов; без повторов"""
    def to_urls(value) -> List[str]:
        # productImage иногда приходит строкой с JSON-массивом
        if isinstance(value, str) and value.strip().startswith("["):
            try:
                value = json.loads(value)
            except ValueError:
                return []
        if isinstance(value, list):
            return [v.strip() for v in value if isinstance(v, str) and v.strip()]
        return [value.strip()] if isinstance(value, str) and value.strip() else []

    candidates = to_urls(remote.get("productImage")) or to_urls(remote.get("bigImage"))
    candidates.extend(to_urls(remote.get("productImageSet")))

    for variant in remote.get("variants") or []:
        candidates.extend(to_urls(variant.get("variantImage")))

    images = []
    for url in candidates:
        if url and url not in images:
            images.append(url)
    return images

def price_ratio(product_price: Optional[float], product_cost: float) -> float:
    """Наценка основного товара; 2, если себестоимость неизвестна"""
    if product_cost and product_cost > 0:
        return (product_price or product_cost) / product_cost
    return DEFAULT_RATIO

def _markup(value: Optional[float], default: float) -> float:
    return float(value) if value is not None else default

def derive_product_price(
    strategy: str,
    cost: float,
    suggested: float = 0.0,
    markup_value: Optional[float] = None
) -> float:
    """Цена нового товара (или при смене стратегии) по стратегии ценообразования"""
    if strategy == PricingStrategy.SUGGESTED.value:
        if suggested > 0:
            return suggested
        price = cost * DEFAULT_RATIO
    elif strategy == PricingStrategy.MARKUP_PERCENTAGE.value:
        price = cost * (1 + _markup(markup_value, DEFAULT_MARKUP_PERCENT) / 100)
    elif strategy == PricingStrategy.MARKUP_FIXED.value:
        price = cost + _markup(markup_value, DEFAULT_MARKUP_FIXED)
    else:
        price = cost * DEFAULT_RATIO

    return round(price, 2)

def derive_variant_price(
    strategy: str,
    variant_cost: float,
    variant_suggested: float,
    ratio: float,
    markup_value: Optional[float] = None,
    existing_price: Optional[float] = None,
    product_cost: float = 0.0
) -> float:
    price = None

    if strategy == PricingStrategy.SUGGESTED.value:
        if variant_suggested > 0:
            return variant_suggested
        price = variant_cost * ratio

    elif strategy == PricingStrategy.MARKUP_PERCENTAGE.value:
        price = variant_cost * (1 + _markup(markup_value, DEFAULT_MARKUP_PERCENT) / 100)

    elif strategy == PricingStrategy.MARKUP_FIXED.value:
        price = variant_cost + _markup(markup_value, DEFAULT_MARKUP_FIXED)

    else:
        # custom: сохраненная цена остается, если это не просто себестоимость
        is_cost_price = existing_price is not None and abs(existing_price - variant_cost) < 0.01
        if existing_price and not is_cost_price:
            return existing_price
        price = variant_cost * ratio

    if not price or price <= 0:
        return variant_cost or product_cost

    return round(price, 2)

def merge_local_fields(
    existing,
    incoming: Dict[str, Any],
    overrides: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Данные маркетплейса + локальные настройки магазина.

    Локальное поле берется из overrides, если оно там явно задано, иначе
    из существующего товара, иначе значение по умолчанию.
    """
    overrides = overrides or {}
    merged = dict(incoming)

    for field in LOCAL_FIELDS:
        if overrides.get(field) is not None:
            merged[field] = overrides[field]
        elif existing is not None:
            merged[field] = getattr(existing, field)
        else:
            merged.setdefault(field, LOCAL_DEFAULTS[field])

    return merged
