# storefront/schemas/marketplace.py
from pydantic import BaseModel, Field, validator
from typing import Optional, List, Any
from datetime import datetime
from storefront.models.product import PricingStrategy

# Общий формат ответа API
class ApiResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    data: Optional[Any] = None

# Настройки маркетплейса
class ApiKeyUpdate(BaseModel):
    apiKey: str = Field(..., min_length=1)

    @validator('apiKey')
    def strip_api_key(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('API key is required')
        return v

class WebhookConfigIn(BaseModel):
    callbackUrl: str
    product: bool = False
    stock: bool = False
    order: bool = False
    logistics: bool = False

    @validator('callbackUrl')
    def callback_must_be_https(cls, v):
        base = v.strip().rstrip('/')
        if not base.startswith('https://'):
            raise ValueError('callbackUrl must start with https://')
        return base

class FreightRequest(BaseModel):
    productId: str = Field(..., min_length=1)
    countryCode: str = Field(..., min_length=2, max_length=3)
    variantId: str = ""
    quantity: int = Field(1, ge=1)

# Импорт товара
class ProductImport(BaseModel):
    remoteProductId: str = Field(..., min_length=1)
    name: Optional[str] = None
    categoryId: Optional[int] = None
    pricingStrategy: Optional[PricingStrategy] = None
    markupValue: Optional[float] = Field(None, ge=0)
    price: Optional[float] = Field(None, gt=0)
    isInStore: Optional[bool] = True

    def overrides(self) -> dict:
        return {
            "name": self.name,
            "category_id": self.categoryId,
            "pricing_strategy": self.pricingStrategy.value if self.pricingStrategy else None,
            "markup_value": self.markupValue,
            "price": self.price,
            "is_in_store": self.isInStore,
        }

class ProductVariantResponse(BaseModel):
    variant_id: str
    name: Optional[str]
    price: Optional[float]
    cost_price: Optional[float]
    suggested_price: Optional[float]
    stock: int
    sku: Optional[str]

    class Config:
        from_attributes = True

class ProductResponse(BaseModel):
    id: int
    remote_product_id: str
    name: str
    images: List[str] = []
    category_id: Optional[int]
    category_name: Optional[str]
    price: float
    cost_price: Optional[float]
    compare_at_price: Optional[float]
    suggested_price: Optional[float]
    currency: str
    stock: int
    is_available: bool
    is_in_store: bool
    pricing_strategy: Optional[str]
    markup_value: Optional[float]
    last_synced_at: Optional[datetime]
    variants: List[ProductVariantResponse] = []

    class Config:
        from_attributes = True

# Заказы
class OrderCancelRequest(BaseModel):
    reason: Optional[str] = None

class OrderLinkResponse(BaseModel):
    id: int
    order_number: str
    status: str
    payment_status: str
    remote_order_id: Optional[str]
    remote_order_number: Optional[str]
    remote_status: Optional[str]
    remote_tracking_number: Optional[str]

    class Config:
        from_attributes = True
