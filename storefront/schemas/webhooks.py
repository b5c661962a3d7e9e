# storefront/schemas/webhooks.py
from pydantic import BaseModel, validator
from typing import Optional, Dict, List, Any, Union, Literal

# Базовое событие: маркетплейс может присылать дополнительные поля
class WebhookEvent(BaseModel):
    type: Optional[str] = None
    messageType: Optional[str] = None

    class Config:
        extra = "allow"

def _as_str(v):
    if v is None or v == "":
        return None
    return str(v)

# Статус заказа
class OrderStatusEvent(WebhookEvent):
    orderId: Optional[str] = None
    orderNumber: Optional[str] = None
    status: Optional[str] = None
    trackingNumber: Optional[str] = None
    trackingUrl: Optional[str] = None
    logisticName: Optional[str] = None

    @validator("orderId", "orderNumber", "trackingNumber", pre=True)
    def coerce_identifiers(cls, v):
        return _as_str(v)

    @property
    def has_order_reference(self) -> bool:
        return bool(self.orderId or self.orderNumber)

# Остаток на одном складе
class WarehouseStock(BaseModel):
    totalInventoryNum: Optional[int] = None
    storageNum: Optional[int] = None  # устаревшее поле

    class Config:
        extra = "allow"

    @property
    def units(self) -> int:
        if self.totalInventoryNum is not None:
            return self.totalInventoryNum
        return self.storageNum or 0

# Пакет остатков: {vid: [остатки по складам]}
class StockBatchEvent(WebhookEvent):
    type: Literal["STOCK"]
    params: Dict[str, List[WarehouseStock]]

    @validator("params", pre=True)
    def skip_empty_variants(cls, v):
        if not isinstance(v, dict):
            raise ValueError("params must be an object keyed by variant id")
        return {str(vid): entries for vid, entries in v.items() if isinstance(entries, list) and entries}

    def variant_totals(self) -> Dict[str, int]:
        return {vid: sum(entry.units for entry in entries) for vid, entries in self.params.items()}

# Старый формат: один товар или вариант
class LegacyInventoryEvent(WebhookEvent):
    productId: str
    stock: Optional[int] = None
    variantId: Optional[str] = None

    @validator("productId", "variantId", pre=True)
    def coerce_identifiers(cls, v):
        return _as_str(v)

class ProductEvent(WebhookEvent):
    params: Optional[Dict[str, Any]] = None

# Логистика: может содержать идентификаторы заказа
class LogisticsEvent(OrderStatusEvent):
    pass

InventoryEvent = Union[StockBatchEvent, LegacyInventoryEvent]

def parse_inventory_event(payload: Dict[str, Any]) -> InventoryEvent:
    """Выбор формата события остатков по полю type"""
    if payload.get("type") == "STOCK" and isinstance(payload.get("params"), dict):
        return StockBatchEvent.model_validate(payload)
    return LegacyInventoryEvent.model_validate(payload)

EVENT_MODELS = {
    "order-status": OrderStatusEvent,
    "product": ProductEvent,
    "logistics": LogisticsEvent,
}

def parse_event(topic: str, payload: Dict[str, Any]) -> WebhookEvent:
    if topic == "inventory":
        return parse_inventory_event(payload)

    model = EVENT_MODELS.get(topic)
    if model is None:
        raise ValueError(f"Unknown webhook topic: {topic}")
    return model.model_validate(payload)

# Ответ на webhook
class WebhookAck(BaseModel):
    success: bool
    message: str
    data: Optional[Dict[str, Any]] = None
