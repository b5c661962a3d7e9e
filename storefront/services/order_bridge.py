import logging
from typing import Optional, Dict, Any
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from storefront.crud import marketplace as marketplace_crud
from storefront.crud import order as order_crud
from storefront.crud import product as product_crud
from storefront.models.marketplace import OrderMapping
from storefront.models.order import Order, OrderStatus
from storefront.services.marketplace_client import (
    MarketplaceError,
    LocalNotFoundError,
    OrderAlreadyLinkedError,
    OrderNotLinkedError,
)
from storefront.services.token_manager import TokenManager

logger = logging.getLogger(__name__)

# Статус маркетплейса -> статус заказа магазина
REMOTE_STATUS_MAP = {
    "pending": OrderStatus.PENDING.value,
    "processing": OrderStatus.PROCESSING.value,
    "shipped": OrderStatus.SHIPPED.value,
    "delivered": OrderStatus.DELIVERED.value,
    "cancelled": OrderStatus.CANCELLED.value,
}

def map_remote_status(remote_status: Optional[str]) -> Optional[str]:
    """Локальный статус или None, если статус маркетплейса неизвестен"""
    if not remote_status:
        return None
    return REMOTE_STATUS_MAP.get(str(remote_status).strip().lower())

class OrderBridge:
    """Передача заказов магазина в маркетплейс и обратная синхронизация статусов"""

    def __init__(self, token_manager: TokenManager, payment_method: str = "Balance"):
        self.tokens = token_manager
        self.payment_method = payment_method

    def build_order_payload(self, db: Session, order: Order, email: Optional[str] = None) -> Dict[str, Any]:
        """Заказ магазина в формате createOrder маркетплейса"""
        address = order.shipping_address or {}

        products = []
        for item in order.items or []:
            remote_product_id = item.get("remote_product_id")
            if not remote_product_id:
                product = product_crud.get_product(db, item.get("product_id"))
                if product is None:
                    raise LocalNotFoundError(f"Product {item.get('product_id')} of order {order.order_number} not found")
                remote_product_id = product.remote_product_id

            products.append({
                "pid": remote_product_id,
                "variantId": item.get("variant_id") or "",
                "quantity": item.get("quantity", 1),
                "sellingPrice": item.get("price"),
            })

        return {
            "shippingInfo": {
                "countryCode": address.get("country_code") or address.get("country"),
                "firstName": address.get("first_name", ""),
                "lastName": address.get("last_name", ""),
                "state": address.get("state", ""),
                "city": address.get("city"),
                "address1": address.get("street"),
                "address2": address.get("address2", ""),
                "zipCode": address.get("zip_code"),
                "phone": address.get("phone"),
                "email": email or order.email,
            },
            "products": products,
            "paymentMethod": self.payment_method,
            "remark": f"Order {order.order_number}",
        }

    async def create_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        envelope = await self.tokens.make_authenticated_request("POST", "/order/createOrder", body=payload)
        data = envelope.get("data") or {}
        logger.info(f"Marketplace order created: id={data.get('orderId')} number={data.get('orderNumber')}")
        return data

    async def create_and_link(
        self,
        db: Session,
        local_order_id: int,
        payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Создать заказ в маркетплейсе и связать его с заказом магазина"""
        order = order_crud.get_order(db, local_order_id)
        if order is None:
            raise LocalNotFoundError(f"Order {local_order_id} not found")

        if marketplace_crud.get_mapping_by_order(db, local_order_id) or order.remote_order_id:
            raise OrderAlreadyLinkedError(f"Order {order.order_number} is already linked to a marketplace order")

        remote_order = await self.create_order(payload)
        remote_order_id = remote_order.get("orderId")
        if not remote_order_id:
            raise MarketplaceError("Marketplace did not return an order id")

        remote_status = remote_order.get("status") or "pending"
        try:
            order.remote_order_id = str(remote_order_id)
            order.remote_order_number = remote_order.get("orderNumber")
            order.remote_status = remote_status

            mapping = marketplace_crud.create_mapping(
                db,
                local_order_id=order.id,
                remote_order_id=remote_order_id,
                remote_order_number=remote_order.get("orderNumber"),
                remote_status=remote_status,
                remote_raw_response=remote_order,
            )
            db.commit()
            db.refresh(order)
        except SQLAlchemyError as e:
            db.rollback()
            # Заказ в маркетплейсе уже создан: без связи его нужно разбирать вручную
            logger.error(f"Marketplace order {remote_order_id} created but linking to order {order.id} failed: {e}")
            raise

        logger.info(f"Order {order.id} linked to marketplace order {remote_order_id}")
        return {"order": order, "mapping": mapping, "remote_order": remote_order}

    async def query_order_status(self, remote_order_id: str) -> Dict[str, Any]:
        envelope = await self.tokens.make_authenticated_request(
            "POST", "/order/queryOrderStatus", body={"orderId": remote_order_id}
        )
        return envelope.get("data") or {}

    async def query_order_detail(self, remote_order_id: str) -> Dict[str, Any]:
        envelope = await self.tokens.make_authenticated_request(
            "POST", "/order/queryOrderDetail", body={"orderId": remote_order_id}
        )
        return envelope.get("data") or {}

    def apply_remote_status(
        self,
        db: Session,
        mapping: OrderMapping,
        remote_status: Optional[str],
        tracking_number: Optional[str] = None,
        raw: Optional[Dict[str, Any]] = None
    ) -> Optional[Order]:
        """
        Применить статус маркетплейса к связи и заказу.

        Неизвестный статус сохраняется в связи, но статус заказа не меняет.
        Коммит делает вызывающая сторона.
        """
        mapping.remote_status = remote_status or mapping.remote_status
        if tracking_number:
            mapping.remote_tracking_number = tracking_number
        if raw is not None:
            mapping.remote_raw_response = raw

        order = mapping.order
        if order is None:
            logger.warning(f"Mapping {mapping.id} points to a missing order {mapping.local_order_id}")
            return None

        order.remote_status = mapping.remote_status
        if mapping.remote_tracking_number:
            order.remote_tracking_number = mapping.remote_tracking_number

        local_status = map_remote_status(mapping.remote_status)
        if local_status:
            order.status = local_status
        else:
            logger.debug(f"Unknown marketplace status {mapping.remote_status!r}, order {order.id} status kept")

        db.flush()
        return order

    async def poll_status(self, db: Session, local_order_id: int) -> Dict[str, Any]:
        """Запросить статус заказа в маркетплейсе и обновить заказ"""
        mapping = marketplace_crud.get_mapping_by_order(db, local_order_id)
        if mapping is None or not mapping.remote_order_id:
            raise OrderNotLinkedError(f"Order {local_order_id} is not linked to a marketplace order")

        status_data = await self.query_order_status(mapping.remote_order_id)
        detail = await self.query_order_detail(mapping.remote_order_id)

        remote_status = status_data.get("status") or detail.get("orderStatus") or detail.get("status")
        order = self.apply_remote_status(
            db,
            mapping,
            remote_status,
            tracking_number=detail.get("trackingNumber") or detail.get("trackNumber"),
            raw=detail,
        )
        db.commit()

        logger.info(f"Order {local_order_id} status synced from marketplace: {mapping.remote_status}")
        return {"order": order, "mapping": mapping, "remote_status": status_data}

    async def cancel(self, remote_order_id: str, reason: str = "") -> bool:
        """Отмена заказа в маркетплейсе: True при успехе, False при любой ошибке"""
        try:
            await self.tokens.make_authenticated_request(
                "POST", "/order/cancelOrder", body={"orderId": remote_order_id, "reason": reason}
            )
        except MarketplaceError as e:
            logger.warning(f"Failed to cancel marketplace order {remote_order_id}: {e}")
            return False

        logger.info(f"Marketplace order {remote_order_id} cancelled")
        return True
