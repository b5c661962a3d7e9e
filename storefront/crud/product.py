# storefront/crud/product.py
from sqlalchemy.orm import Session
from typing import Optional, List
from storefront.models.product import Product, ProductVariant

def get_product(db: Session, product_id: int) -> Optional[Product]:
    return db.query(Product).filter(Product.id == product_id).first()

def get_product_by_remote_id(db: Session, remote_product_id: str) -> Optional[Product]:
    """Получить товар по ID маркетплейса"""
    return db.query(Product).filter(Product.remote_product_id == str(remote_product_id)).first()

def get_in_store_products(db: Session, limit: int = 100) -> List[Product]:
    """Товары, выставленные в магазине, в порядке добавления"""
    return (
        db.query(Product)
        .filter(Product.is_in_store.is_(True))
        .order_by(Product.id)
        .limit(limit)
        .all()
    )

def get_variant(db: Session, variant_id: str) -> Optional[ProductVariant]:
    """Найти вариант по vid маркетплейса"""
    return db.query(ProductVariant).filter(ProductVariant.variant_id == str(variant_id)).first()
