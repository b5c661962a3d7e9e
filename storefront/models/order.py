from sqlalchemy import Column, Integer, String, JSON, DateTime, Float, Text
from sqlalchemy.orm import relationship
import enum
from storefront.database import Base, utcnow

class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    PAYMENT_FAILED = "payment_failed"

class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

# Заказы в этих статусах опрашиваются планировщиком
NON_TERMINAL_STATUSES = [OrderStatus.PENDING.value, OrderStatus.PROCESSING.value]

class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, nullable=False, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    email = Column(String(255), nullable=True)

    # [{product_id, variant_id, product_name, quantity, price}]
    items = Column(JSON, default=list)
    # {first_name, last_name, street, address2, city, state, zip_code, country, phone}
    shipping_address = Column(JSON, default=dict)

    total = Column(Float, default=0.0)
    currency = Column(String(10), default="USD")
    status = Column(String(20), default=OrderStatus.PENDING.value, index=True)
    payment_status = Column(String(20), default=PaymentStatus.PENDING.value, index=True)
    notes = Column(Text, nullable=True)

    # Связь с маркетплейсом (дублирует OrderMapping для быстрых выборок)
    remote_order_id = Column(String(100), nullable=True, index=True)
    remote_order_number = Column(String(100), nullable=True)
    remote_tracking_number = Column(String(100), nullable=True)
    remote_status = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    mapping = relationship("OrderMapping", back_populates="order", uselist=False)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID.value

    @property
    def can_be_cancelled(self) -> bool:
        return self.status not in (OrderStatus.SHIPPED.value, OrderStatus.DELIVERED.value)

    def __repr__(self):
        return f"<Order {self.order_number} ({self.status})>"
