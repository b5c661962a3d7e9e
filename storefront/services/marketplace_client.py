import httpx
import asyncio
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)

class MarketplaceError(Exception):
    """Базовое исключение интеграции с маркетплейсом"""
    pass

class ConfigurationError(MarketplaceError):
    """API ключ маркетплейса не настроен"""
    pass

class AuthError(MarketplaceError):
    """Маркетплейс отклонил учетные данные"""
    pass

class AuthConfigurationError(AuthError):
    """Маркетплейс отклонил API ключ при выдаче токена"""
    def __init__(self, message: str, response: Optional[dict] = None):
        self.response = response
        super().__init__(message)

class MarketplaceConnectionError(MarketplaceError):
    """Маркетплейс недоступен"""
    pass

class RemoteAPIError(MarketplaceError):
    """Маркетплейс вернул неуспешный код"""
    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        status_code: Optional[int] = None,
        response: Optional[dict] = None
    ):
        self.code = code
        self.status_code = status_code
        self.response = response
        super().__init__(message)

class NotFoundError(RemoteAPIError):
    """Сущность не найдена на стороне маркетплейса"""
    pass

class LocalNotFoundError(MarketplaceError):
    """Запись не найдена в базе магазина (товар или заказ)"""
    pass

class MappingNotFoundError(MarketplaceError):
    """Для заказа маркетплейса нет локальной связи"""
    pass

class OrderAlreadyLinkedError(MarketplaceError):
    """Заказ уже связан с заказом маркетплейса"""
    pass

class OrderNotLinkedError(MarketplaceError):
    """Заказ не связан с заказом маркетплейса"""
    pass

AUTH_FAILURE_CODES = (401, 403)

def is_success(envelope: Optional[Dict[str, Any]]) -> bool:
    """Ответ маркетплейса успешен только при code == 200 и result == true"""
    if not isinstance(envelope, dict):
        return False
    return envelope.get("code") == 200 and envelope.get("result") is True

def check_envelope(envelope: Dict[str, Any], default_message: str) -> Dict[str, Any]:
    """Проверка конверта {code, result, data, message}; при ошибке - исключение"""
    if is_success(envelope):
        return envelope

    envelope = envelope if isinstance(envelope, dict) else {}
    code = envelope.get("code")
    message = envelope.get("message") or default_message

    if code == 404:
        raise NotFoundError(message, code=code, response=envelope)
    raise RemoteAPIError(message, code=code, response=envelope)

class MarketplaceClient:
    """HTTP клиент API маркетплейса (JSON поверх HTTPS)"""

    def __init__(
        self,
        base_url: str,
        token_header: str = "CJ-Access-Token",
        timeout: int = 30,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.token_header = token_header
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_backoff = retry_backoff
        self._transport = transport

        # Сессия HTTP
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    async def connect(self):
        """Создание HTTP сессии"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
                headers=self._get_headers(),
                transport=self._transport
            )
            logger.debug(f"Connected to marketplace API at {self.base_url}")

    async def disconnect(self):
        """Закрытие HTTP сессии"""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.debug("Disconnected from marketplace API")

    def _get_headers(self) -> Dict[str, str]:
        return {
            "User-Agent": "Storefront-Integration/1.0",
            "Accept": "application/json",
        }

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        token: Optional[str] = None,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Выполнение HTTP запроса с повторными попытками. Возвращает конверт ответа."""

        if self._client is None:
            await self.connect()

        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        headers = {}
        if token:
            headers[self.token_header] = token
        if json is not None:
            headers["Content-Type"] = "application/json"

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"Request to marketplace: {method} {url} (attempt {attempt + 1})")

                response = await self._client.request(
                    method=method,
                    url=url,
                    json=json,
                    params=params,
                    headers=headers
                )

                if response.status_code >= 500:
                    raise MarketplaceConnectionError(
                        f"Marketplace API unavailable: {response.status_code}"
                    )

                if response.status_code >= 400:
                    raise self._error_from_response(response)

                try:
                    return response.json() if response.content else {}
                except ValueError:
                    raise RemoteAPIError(
                        "Marketplace API returned a non-JSON response",
                        status_code=response.status_code
                    )

            except (httpx.TimeoutException, httpx.TransportError, MarketplaceConnectionError) as e:
                if attempt == self.max_retries - 1:
                    logger.error(f"Failed to reach marketplace after {self.max_retries} attempts: {e}")
                    if isinstance(e, MarketplaceConnectionError):
                        raise
                    raise MarketplaceConnectionError(f"Connection failed: {e}") from e

                # Экспоненциальная задержка
                wait_time = self.retry_backoff * (2 ** attempt)
                logger.warning(f"Retrying {method} {endpoint} in {wait_time}s... (attempt {attempt + 1})")
                await asyncio.sleep(wait_time)

    def _error_from_response(self, response: httpx.Response) -> MarketplaceError:
        body = None
        try:
            body = response.json()
        except ValueError:
            pass

        message = None
        if isinstance(body, dict):
            message = body.get("message")
        error_msg = f"Marketplace API error: {response.status_code}"
        if message:
            error_msg = f"{error_msg} - {message}"
        else:
            error_msg = f"{error_msg} - {response.text[:200]}"

        if response.status_code in AUTH_FAILURE_CODES:
            return AuthError(error_msg)
        if response.status_code == 404:
            return NotFoundError(error_msg, status_code=404, response=body)
        return RemoteAPIError(error_msg, status_code=response.status_code, response=body)
