from sqlalchemy import Column, Integer, String, Boolean, DateTime
import enum
from storefront.database import Base, utcnow

class UserRole(str, enum.Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    CUSTOMER = "customer"

class User(Base):
    """Пользователь магазина. Регистрация и вход живут в отдельном сервисе."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)

    # Роли и статусы
    role = Column(String(20), default=UserRole.CUSTOMER.value)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<User {self.username} ({self.email})>"

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN.value
