from sqlalchemy import Column, Integer, String, JSON, Boolean, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from storefront.database import Base, utcnow

class MarketplaceCredential(Base):
    """Текущая пара токенов маркетплейса. В таблице не больше одной строки."""
    __tablename__ = "marketplace_credentials"

    id = Column(Integer, primary_key=True, index=True)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    token_type = Column(String(20), default="Bearer")

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def is_valid(self, now=None) -> bool:
        return self.expires_at > (now or utcnow())

    def __repr__(self):
        return f"<MarketplaceCredential expires_at={self.expires_at}>"

class MarketplaceConfig(Base):
    """Настройки интеграции, заданные администратором"""
    __tablename__ = "marketplace_config"

    id = Column(Integer, primary_key=True, index=True)
    api_key = Column(String(500), nullable=True)

    # Подписка на webhook'и маркетплейса
    webhook_callback_url = Column(String(500), default="")
    webhook_product = Column(Boolean, default=False)
    webhook_stock = Column(Boolean, default=False)
    webhook_order = Column(Boolean, default=False)
    webhook_logistics = Column(Boolean, default=False)
    webhook_last_pushed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def webhook_settings(self) -> dict:
        return {
            "callbackUrl": self.webhook_callback_url or "",
            "product": bool(self.webhook_product),
            "stock": bool(self.webhook_stock),
            "order": bool(self.webhook_order),
            "logistics": bool(self.webhook_logistics),
            "lastPushedAt": self.webhook_last_pushed_at.isoformat() if self.webhook_last_pushed_at else None,
        }

    def __repr__(self):
        return f"<MarketplaceConfig has_api_key={bool(self.api_key)}>"

class OrderMapping(Base):
    """Связь локального заказа с заказом маркетплейса (1:1)"""
    __tablename__ = "marketplace_order_mappings"

    id = Column(Integer, primary_key=True, index=True)
    local_order_id = Column(Integer, ForeignKey("orders.id"), unique=True, nullable=False, index=True)
    remote_order_id = Column(String(100), unique=True, nullable=False, index=True)
    remote_order_number = Column(String(100), nullable=True, index=True)
    remote_status = Column(String(50), nullable=True)
    remote_tracking_number = Column(String(100), nullable=True)
    remote_raw_response = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    order = relationship("Order", back_populates="mapping")

    def __repr__(self):
        return f"<OrderMapping {self.local_order_id} -> {self.remote_order_id}>"
