# storefront/api/errors.py
import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from storefront.core.config import settings
from storefront.services.marketplace_client import (
    MarketplaceError,
    ConfigurationError,
    AuthError,
    NotFoundError,
    LocalNotFoundError,
    MappingNotFoundError,
    OrderAlreadyLinkedError,
    OrderNotLinkedError,
    MarketplaceConnectionError,
    RemoteAPIError,
)

logger = logging.getLogger(__name__)

# Порядок важен: подклассы раньше базовых классов
ERROR_RESPONSES = [
    (ConfigurationError, 400, "Marketplace integration is not configured"),
    (AuthError, 401, "Marketplace rejected the credentials"),
    (NotFoundError, 404, "Resource not found on the marketplace"),
    (LocalNotFoundError, 404, "Resource not found in the store"),
    (MappingNotFoundError, 404, "Marketplace order mapping not found"),
    (OrderAlreadyLinkedError, 400, "Order is already linked to a marketplace order"),
    (OrderNotLinkedError, 400, "Order is not linked to a marketplace order"),
    (MarketplaceConnectionError, 503, "Marketplace is unavailable"),
    (RemoteAPIError, 502, "Marketplace request failed"),
]

def describe_error(exc: MarketplaceError):
    for error_class, status_code, public_message in ERROR_RESPONSES:
        if isinstance(exc, error_class):
            return status_code, public_message
    return 500, "Marketplace integration error"

async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    status_code, public_message = describe_error(exc)

    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc}")

    content = {"success": False, "message": public_message}
    if not settings.is_production:
        content["message"] = str(exc) or public_message
        content["error"] = type(exc).__name__

    return JSONResponse(status_code=status_code, content=content)

def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)
