import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Union
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from storefront.crud import marketplace as marketplace_crud
from storefront.database import utcnow
from storefront.models.marketplace import MarketplaceCredential
from storefront.services.marketplace_client import (
    MarketplaceClient,
    MarketplaceError,
    ConfigurationError,
    AuthError,
    AuthConfigurationError,
    AUTH_FAILURE_CODES,
    is_success,
    check_envelope,
)

logger = logging.getLogger(__name__)

TOKEN_ENDPOINT = "/authentication/getAccessToken"
REFRESH_ENDPOINT = "/authentication/refreshAccessToken"
CONNECTION_TEST_ENDPOINT = "/product/getCategory"

def parse_remote_datetime(value: Union[str, int, float, None]) -> Optional[datetime]:
    """Дата истечения от маркетплейса -> naive UTC. Поддерживает ISO 8601 и epoch (сек/мс)."""
    if value is None or value == "":
        return None

    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e12 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)

    try:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable token expiry date from marketplace: {value!r}")
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed

class TokenManager:
    """
    Получение, кэширование и обновление токенов маркетплейса.

    API ключ берется из памяти, окружения (передается в конструктор) или из
    настроек администратора в БД. Текущий токен хранится в единственной
    записи MarketplaceCredential.

    Обновление токена защищено asyncio.Lock: параллельные вызовы, увидевшие
    истекший токен, дожидаются одного общего обновления.
    """

    def __init__(
        self,
        client: MarketplaceClient,
        session_factory: sessionmaker,
        api_key: Optional[str] = None,
        expiry_buffer: int = 2 * 24 * 60 * 60,
        default_ttl: int = 24 * 60 * 60
    ):
        self.client = client
        self.session_factory = session_factory
        self.expiry_buffer = expiry_buffer
        self.default_ttl = default_ttl

        self._api_key = api_key or None
        self._db_key_loaded = False
        self._lock = asyncio.Lock()

    # --- API ключ ---

    def _load_api_key_from_database(self):
        """Однократная загрузка ключа из БД"""
        if self._db_key_loaded or self._api_key:
            return

        try:
            with self.session_factory() as db:
                config = marketplace_crud.get_config(db)
                if config and config.api_key:
                    self._api_key = config.api_key
                    logger.info("Marketplace API key loaded from database")
        except SQLAlchemyError as e:
            # БД может быть еще не готова
            logger.debug(f"Could not load marketplace API key from database: {e}")
        finally:
            self._db_key_loaded = True

    def get_api_key(self) -> Optional[str]:
        if not self._api_key:
            self._load_api_key_from_database()
        return self._api_key

    def has_credential_source(self) -> bool:
        """Есть ли API ключ (память, окружение или БД)"""
        return bool(self.get_api_key())

    def set_api_key(self, api_key: str):
        """Обновить ключ в памяти"""
        self._api_key = api_key

    def save_api_key(self, api_key: str):
        """Сохранить ключ в БД и в памяти"""
        with self.session_factory() as db:
            marketplace_crud.save_api_key(db, api_key)
        self.set_api_key(api_key)
        logger.info("Marketplace API key saved to database")

    def _require_api_key(self) -> str:
        api_key = self.get_api_key()
        if not api_key:
            logger.warning("Cannot get marketplace access token: API key not configured")
            raise ConfigurationError("Marketplace API key is not configured")
        return api_key

    # --- Хранилище токенов ---

    def _load_credential(self) -> Optional[MarketplaceCredential]:
        with self.session_factory() as db:
            return marketplace_crud.get_credential(db)

    def _compute_expires_at(self, raw_expiry, now: datetime) -> datetime:
        expiry = parse_remote_datetime(raw_expiry)
        if expiry is None or expiry <= now:
            return now + timedelta(seconds=self.default_ttl)

        # Запас, чтобы не работать с токеном на грани истечения
        buffered = expiry - timedelta(seconds=self.expiry_buffer)
        return buffered if buffered > now else expiry

    def _store_token(self, data: Dict[str, Any], fallback_refresh_token: Optional[str] = None) -> str:
        now = utcnow()
        access_token = data["accessToken"]
        refresh_token = data.get("refreshToken") or fallback_refresh_token or ""
        expires_at = self._compute_expires_at(data.get("accessTokenExpiryDate"), now)

        with self.session_factory() as db:
            marketplace_crud.replace_credential(
                db,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=expires_at,
                token_type="Bearer"
            )
        return access_token

    def stored_refresh_token(self) -> Optional[str]:
        credential = self._load_credential()
        return credential.refresh_token if credential else None

    # --- Получение токенов ---

    async def get_valid_token(self) -> str:
        """Действующий токен: из БД, если не истек, иначе обновленный"""
        self._require_api_key()

        credential = self._load_credential()
        if credential and credential.is_valid():
            logger.debug("Using cached marketplace access token")
            return credential.access_token

        async with self._lock:
            # Пока ждали блокировку, токен мог обновить другой вызов
            credential = self._load_credential()
            if credential and credential.is_valid():
                return credential.access_token
            return await self._refresh(credential.refresh_token if credential else None)

    async def obtain_initial_token(self, api_key: Optional[str] = None) -> str:
        """Получить новый токен по API ключу"""
        async with self._lock:
            return await self._obtain(api_key)

    async def refresh_token(self, refresh_token: Optional[str] = None) -> str:
        """Обновить токен по refresh token"""
        self._require_api_key()
        async with self._lock:
            return await self._refresh(refresh_token)

    async def _obtain(self, api_key: Optional[str] = None) -> str:
        api_key = api_key or self._require_api_key()

        try:
            envelope = await self.client.request("POST", TOKEN_ENDPOINT, json={"apiKey": api_key})
        except AuthError as e:
            logger.error(f"Marketplace rejected the API key: {e}")
            raise AuthConfigurationError(str(e)) from e

        if not is_success(envelope):
            data = envelope.get("data") if isinstance(envelope, dict) else None
            message = (
                envelope.get("message")
                or (data.get("message") if isinstance(data, dict) else None)
                or "Failed to get access token from marketplace"
            )
            logger.error(f"Marketplace token endpoint returned error: code={envelope.get('code')} message={message}")
            raise AuthConfigurationError(message, response=envelope)

        data = envelope.get("data") or {}
        if not data.get("accessToken"):
            raise AuthConfigurationError("Marketplace did not return an access token", response=envelope)

        access_token = self._store_token(data)
        logger.info("Marketplace access token obtained and saved")
        return access_token

    async def _refresh(self, refresh_token: Optional[str]) -> str:
        if not refresh_token:
            return await self._obtain()

        stored = self._load_credential()
        if stored is None or stored.refresh_token != refresh_token:
            logger.info("Refresh token does not match the stored one, requesting a new token")
            return await self._obtain()

        try:
            envelope = await self.client.request(
                "POST", REFRESH_ENDPOINT, json={"refreshToken": refresh_token}
            )
            data = envelope.get("data") or {}
            if not is_success(envelope) or not data.get("accessToken"):
                raise AuthError(envelope.get("message") or "Failed to refresh marketplace access token")

            access_token = self._store_token(data, fallback_refresh_token=refresh_token)
            logger.info("Marketplace access token refreshed")
            return access_token

        except MarketplaceError as e:
            logger.warning(f"Marketplace token refresh failed ({e}), requesting a new token")
            try:
                return await self._obtain()
            except MarketplaceError:
                raise e

    async def _force_refresh(self, rejected_token: str) -> str:
        """Обновление после 401/403. Если токен уже обновил другой вызов - используем его."""
        async with self._lock:
            stored = self._load_credential()
            if stored and stored.access_token != rejected_token and stored.is_valid():
                return stored.access_token
            return await self._refresh(stored.refresh_token if stored else None)

    # --- Запросы ---

    async def _send(self, method: str, endpoint: str, token: str, body, params) -> Dict[str, Any]:
        return await self.client.request(
            method,
            endpoint,
            token=token,
            json=body if method.upper() in ("POST", "PUT", "PATCH") else None,
            params=params
        )

    async def make_authenticated_request(
        self,
        method: str,
        endpoint: str,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Запрос с токеном. При 401/403 - одно обновление токена и один повтор."""
        token = await self.get_valid_token()

        try:
            envelope = await self._send(method, endpoint, token, body, params)
        except AuthError:
            envelope = None

        if envelope is None or envelope.get("code") in AUTH_FAILURE_CODES:
            logger.warning(f"Marketplace returned unauthorized for {method} {endpoint}, refreshing token and retrying")
            token = await self._force_refresh(token)
            envelope = await self._send(method, endpoint, token, body, params)
            if envelope.get("code") in AUTH_FAILURE_CODES:
                raise AuthError(envelope.get("message") or "Marketplace rejected the refreshed access token")

        try:
            return check_envelope(envelope, f"Marketplace API error on {endpoint}")
        except MarketplaceError as e:
            logger.error(f"Marketplace request {method} {endpoint} failed: {e}")
            raise

    # --- Администрирование ---

    def token_status(self) -> Dict[str, Any]:
        credential = self._load_credential()
        if credential is None:
            return {
                "hasToken": False,
                "isValid": False,
                "expiresAt": None,
                "expiresInSeconds": 0,
            }

        now = utcnow()
        expires_in = int((credential.expires_at - now).total_seconds())
        return {
            "hasToken": True,
            "isValid": credential.expires_at > now,
            "expiresAt": credential.expires_at.isoformat(),
            "expiresInSeconds": max(expires_in, 0),
            "tokenType": credential.token_type,
            "createdAt": credential.created_at.isoformat() if credential.created_at else None,
        }

    def delete_token(self) -> int:
        with self.session_factory() as db:
            deleted = marketplace_crud.delete_credentials(db)
        logger.info("Marketplace token deleted")
        return deleted

    async def test_connection(self) -> Dict[str, Any]:
        """Получить новый токен и сделать пробный запрос"""
        start_time = datetime.now()
        await self.obtain_initial_token()

        result = {"success": True, "message": "Connection successful"}
        try:
            await self.make_authenticated_request("GET", CONNECTION_TEST_ENDPOINT)
        except MarketplaceError as e:
            logger.warning(f"Token obtained but marketplace test call failed: {e}")
            result["message"] = "Token obtained successfully"
            result["warning"] = "Token obtained but API test call failed. This may indicate permission issues."

        result["response_time"] = (datetime.now() - start_time).total_seconds()
        return result
