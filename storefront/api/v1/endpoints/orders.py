# storefront/api/v1/endpoints/orders.py
import logging
from typing import Any, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from storefront.api.deps import get_current_active_user, get_integration
from storefront.crud.order import get_order
from storefront.database import get_db
from storefront.models.order import Order, OrderStatus
from storefront.models.user import User
from storefront.schemas.marketplace import ApiResponse, OrderCancelRequest, OrderLinkResponse
from storefront.services.integration import Integration

router = APIRouter()
logger = logging.getLogger(__name__)

def _get_user_order(db: Session, order_id: int, user: User) -> Order:
    """Заказ пользователя (администратор видит все заказы)"""
    order = get_order(db, order_id)
    if not order or (order.user_id != user.id and not user.is_admin):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return order

@router.post("/{order_id}/marketplace-order", response_model=ApiResponse)
async def create_marketplace_order(
    order_id: int,
    db: Session = Depends(get_db),
    integration: Integration = Depends(get_integration),
    current_user: User = Depends(get_current_active_user)
) -> Any:
    """Передать оплаченный заказ в маркетплейс"""
    order = _get_user_order(db, order_id, current_user)

    if not order.is_paid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Order payment must be completed before creating marketplace order"
        )

    payload = integration.orders.build_order_payload(db, order, email=order.email or current_user.email)
    result = await integration.orders.create_and_link(db, order.id, payload)

    logger.info(f"Order {order.id} sent to marketplace by user {current_user.id}")
    return ApiResponse(
        message="Marketplace order created successfully",
        data={
            "order": OrderLinkResponse.model_validate(result["order"]),
            "remoteOrder": result["remote_order"],
        },
    )

@router.post("/{order_id}/sync-status", response_model=ApiResponse)
async def sync_order_status(
    order_id: int,
    db: Session = Depends(get_db),
    integration: Integration = Depends(get_integration),
    current_user: User = Depends(get_current_active_user)
) -> Any:
    order = _get_user_order(db, order_id, current_user)
    result = await integration.orders.poll_status(db, order.id)
    return ApiResponse(
        message="Order status synced successfully",
        data={
            "order": OrderLinkResponse.model_validate(result["order"] or order),
            "remoteStatus": result["remote_status"],
        },
    )

@router.post("/{order_id}/cancel", response_model=ApiResponse)
async def cancel_order(
    order_id: int,
    cancel_in: Optional[OrderCancelRequest] = None,
    db: Session = Depends(get_db),
    integration: Integration = Depends(get_integration),
    current_user: User = Depends(get_current_active_user)
) -> Any:
    """
    Отмена заказа. Отправленный или доставленный заказ отменить нельзя.
    Отмена в маркетплейсе - по возможности, заказ магазина отменяется всегда.
    """
    order = _get_user_order(db, order_id, current_user)

    if not order.can_be_cancelled:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot cancel order that is already shipped or delivered"
        )

    remote_cancelled = None
    if order.remote_order_id:
        reason = (cancel_in.reason if cancel_in else None) or "Customer cancellation"
        remote_cancelled = await integration.orders.cancel(order.remote_order_id, reason)

    order.status = OrderStatus.CANCELLED.value
    db.commit()
    db.refresh(order)

    logger.info(f"Order {order.id} cancelled by user {current_user.id} (admin={current_user.is_admin})")
    return ApiResponse(
        message="Order cancelled successfully",
        data={
            "order": OrderLinkResponse.model_validate(order),
            "remoteCancelled": remote_cancelled,
        },
    )
