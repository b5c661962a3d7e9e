# storefront/crud/marketplace.py
from sqlalchemy.orm import Session
from sqlalchemy import or_
from typing import Optional
from datetime import datetime
from storefront.database import utcnow
from storefront.models.marketplace import MarketplaceCredential, MarketplaceConfig, OrderMapping

# --- Токены ---

def get_credential(db: Session) -> Optional[MarketplaceCredential]:
    """Получить текущий токен (самый свежий)"""
    return db.query(MarketplaceCredential).order_by(
        MarketplaceCredential.created_at.desc(),
        MarketplaceCredential.id.desc()
    ).first()

def replace_credential(
    db: Session,
    access_token: str,
    refresh_token: str,
    expires_at: datetime,
    token_type: str = "Bearer"
) -> MarketplaceCredential:
    """Удалить старые токены и сохранить новый"""
    db.query(MarketplaceCredential).delete(synchronize_session=False)

    credential = MarketplaceCredential(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=expires_at,
        token_type=token_type or "Bearer",
    )
    db.add(credential)
    db.commit()
    db.refresh(credential)
    return credential

def delete_credentials(db: Session) -> int:
    """Удалить все токены"""
    deleted = db.query(MarketplaceCredential).delete(synchronize_session=False)
    db.commit()
    return deleted

# --- Конфигурация ---

def get_config(db: Session) -> Optional[MarketplaceConfig]:
    return db.query(MarketplaceConfig).order_by(MarketplaceConfig.id).first()

def _get_or_create_config(db: Session) -> MarketplaceConfig:
    config = get_config(db)
    if config is None:
        config = MarketplaceConfig()
        db.add(config)
    return config

def save_api_key(db: Session, api_key: str) -> MarketplaceConfig:
    """Сохранить API ключ, не затирая настройки webhook'ов"""
    config = _get_or_create_config(db)
    config.api_key = api_key
    db.commit()
    db.refresh(config)
    return config

def save_webhook_config(
    db: Session,
    callback_url: str,
    product: bool,
    stock: bool,
    order: bool,
    logistics: bool
) -> MarketplaceConfig:
    """Сохранить настройки webhook'ов, не затирая API ключ"""
    config = _get_or_create_config(db)
    config.webhook_callback_url = callback_url
    config.webhook_product = product
    config.webhook_stock = stock
    config.webhook_order = order
    config.webhook_logistics = logistics
    config.webhook_last_pushed_at = utcnow()
    db.commit()
    db.refresh(config)
    return config

# --- Связи заказов ---

def get_mapping_by_order(db: Session, local_order_id: int) -> Optional[OrderMapping]:
    return db.query(OrderMapping).filter(OrderMapping.local_order_id == local_order_id).first()

def find_mapping(
    db: Session,
    remote_order_id: Optional[str] = None,
    remote_order_number: Optional[str] = None
) -> Optional[OrderMapping]:
    """Найти связь по ID или номеру заказа маркетплейса"""
    conditions = []
    if remote_order_id:
        conditions.append(OrderMapping.remote_order_id == str(remote_order_id))
    if remote_order_number:
        conditions.append(OrderMapping.remote_order_number == str(remote_order_number))

    if not conditions:
        return None

    return db.query(OrderMapping).filter(or_(*conditions)).first()

def create_mapping(
    db: Session,
    local_order_id: int,
    remote_order_id: str,
    remote_order_number: Optional[str],
    remote_status: Optional[str],
    remote_raw_response: Optional[dict]
) -> OrderMapping:
    mapping = OrderMapping(
        local_order_id=local_order_id,
        remote_order_id=str(remote_order_id),
        remote_order_number=remote_order_number,
        remote_status=remote_status,
        remote_raw_response=remote_raw_response,
    )
    db.add(mapping)
    return mapping
