from sqlalchemy import Column, Integer, String, JSON, Boolean, DateTime, Text, Float, ForeignKey
from sqlalchemy.orm import relationship
import enum
from storefront.database import Base, utcnow

class PricingStrategy(str, enum.Enum):
    CUSTOM = "custom"
    SUGGESTED = "suggested"
    MARKUP_PERCENTAGE = "markup_percentage"
    MARKUP_FIXED = "markup_fixed"

class Product(Base):
    """Локальная копия товара маркетплейса с настройками магазина"""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    remote_product_id = Column(String(100), unique=True, index=True, nullable=False)  # pid маркетплейса

    name = Column(String(500), nullable=False, index=True)
    description = Column(Text, nullable=True)
    images = Column(JSON, default=list)
    brand = Column(String(200), nullable=True)
    sku = Column(String(200), nullable=True, index=True)

    # Локальные поля: синхронизация их не трогает
    category_id = Column(Integer, nullable=True, index=True)
    is_in_store = Column(Boolean, default=False, index=True)
    pricing_strategy = Column(String(30), nullable=True)
    markup_value = Column(Float, nullable=True)

    # Цены
    price = Column(Float, nullable=False, default=0.0)        # цена продажи в магазине
    cost_price = Column(Float, nullable=True)                 # сколько платим маркетплейсу
    compare_at_price = Column(Float, nullable=True)
    suggested_price = Column(Float, nullable=True)
    currency = Column(String(10), default="USD")

    # Остатки
    stock = Column(Integer, default=0)
    is_available = Column(Boolean, default=True)

    # Данные маркетплейса
    category_name = Column(String(200), nullable=True)
    weight = Column(Float, nullable=True)
    raw_remote_snapshot = Column(JSON, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    variants = relationship(
        "ProductVariant",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductVariant.id",
    )

    @property
    def effective_pricing_strategy(self) -> str:
        return self.pricing_strategy or PricingStrategy.SUGGESTED.value

    def recompute_stock(self) -> int:
        """Остаток товара = сумма остатков всех вариантов"""
        if self.variants:
            self.stock = sum(v.stock or 0 for v in self.variants)
        return self.stock

    def __repr__(self):
        return f"<Product {self.name} (remote: {self.remote_product_id})>"

class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    variant_id = Column(String(100), nullable=False, index=True)  # vid маркетплейса

    name = Column(String(500), default="")
    price = Column(Float, nullable=True)
    cost_price = Column(Float, nullable=True)
    suggested_price = Column(Float, nullable=True)
    stock = Column(Integer, default=0)
    sku = Column(String(200), default="")

    product = relationship("Product", back_populates="variants")

    def __repr__(self):
        return f"<ProductVariant {self.variant_id} stock={self.stock}>"
