# storefront/database.py
from datetime import datetime, timezone
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from storefront.core.config import settings

DATABASE_URL = settings.DATABASE_URL

def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # SQLite (локальный запуск и тесты): одно соединение на процесс
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    return {
        "pool_pre_ping": True,   # Проверка соединения
        "pool_recycle": 300,     # Пересоздание каждые 5 мин
    }

# Создание движка SQLAlchemy
engine = create_engine(DATABASE_URL, echo=False, **_engine_options(DATABASE_URL))

# Фабрика сессий
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False
)

# Базовый класс для моделей
Base = declarative_base()

def utcnow() -> datetime:
    """Текущее время в UTC без tzinfo (так хранится во всех таблицах)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def get_db():
    """FastAPI dependency для получения сессии БД"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def create_tables():
    """Создание таблиц при старте (dev)"""
    # Импорт моделей регистрирует их в metadata
    from storefront.models import marketplace, order, product, user  # noqa: F401
    Base.metadata.create_all(bind=engine)

def drop_tables():
    from storefront.models import marketplace, order, product, user  # noqa: F401
    Base.metadata.drop_all(bind=engine)
