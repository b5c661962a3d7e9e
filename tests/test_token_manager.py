import asyncio
from datetime import datetime, timedelta
import httpx
import pytest
from conftest import ok, fail, token_data
from storefront.crud import marketplace as marketplace_crud
from storefront.database import utcnow
from storefront.models.marketplace import MarketplaceCredential
from storefront.services.marketplace_client import (
    ConfigurationError,
    AuthError,
    AuthConfigurationError,
    NotFoundError,
)
from storefront.services.token_manager import (
    TOKEN_ENDPOINT,
    REFRESH_ENDPOINT,
    parse_remote_datetime,
)

def test_parse_remote_datetime():
    assert parse_remote_datetime("2030-01-02T03:04:05Z") == datetime(2030, 1, 2, 3, 4, 5)
    assert parse_remote_datetime("2030-01-02T06:04:05+03:00") == datetime(2030, 1, 2, 3, 4, 5)
    assert parse_remote_datetime(1893456000) == datetime(2030, 1, 1)
    assert parse_remote_datetime(1893456000000) == datetime(2030, 1, 1)
    assert parse_remote_datetime("not a date") is None
    assert parse_remote_datetime(None) is None

@pytest.mark.asyncio
async def test_cached_token_returned_without_network(integration, marketplace, stored_token):
    """Действующий токен берется из БД без запросов к маркетплейсу"""
    token = await integration.tokens.get_valid_token()

    assert token == "AT-stored"
    assert marketplace.calls == []

@pytest.mark.asyncio
async def test_missing_api_key_raises_configuration_error(unconfigured_integration, marketplace):
    with pytest.raises(ConfigurationError):
        await unconfigured_integration.tokens.get_valid_token()

    assert not unconfigured_integration.tokens.has_credential_source()
    assert marketplace.calls == []

def test_api_key_loaded_from_database_once(unconfigured_integration, db):
    marketplace_crud.save_api_key(db, "db-key")
    tokens = unconfigured_integration.tokens

    assert tokens.has_credential_source()
    assert tokens.get_api_key() == "db-key"

def test_database_key_lookup_is_attempted_once(unconfigured_integration, db):
    tokens = unconfigured_integration.tokens
    assert not tokens.has_credential_source()

    # Ключ появился в БД после первой попытки: повторно БД не читается
    marketplace_crud.save_api_key(db, "late-key")
    assert not tokens.has_credential_source()

@pytest.mark.asyncio
async def test_initial_fetch_persists_single_credential(integration, marketplace, db, expired_token):
    marketplace.on("POST", TOKEN_ENDPOINT, ok(token_data("AT-1", "RT-1", days=15)))

    token = await integration.tokens.obtain_initial_token()

    assert token == "AT-1"
    assert marketplace.calls_to(TOKEN_ENDPOINT)[0]["json"] == {"apiKey": "test-api-key"}

    db.expire_all()
    credentials = db.query(MarketplaceCredential).all()
    assert len(credentials) == 1
    assert credentials[0].access_token == "AT-1"
    assert credentials[0].refresh_token == "RT-1"

    # Срок с запасом в 2 дня, но всегда в будущем
    expected = utcnow() + timedelta(days=13)
    assert abs((credentials[0].expires_at - expected).total_seconds()) < 60

@pytest.mark.asyncio
async def test_short_remote_expiry_keeps_remote_date(integration, marketplace, db):
    """Если запас съедает весь срок - используется срок маркетплейса"""
    marketplace.on("POST", TOKEN_ENDPOINT, ok(token_data("AT-1", "RT-1", days=1)))

    await integration.tokens.obtain_initial_token()

    db.expire_all()
    credential = marketplace_crud.get_credential(db)
    assert credential.expires_at > utcnow() + timedelta(hours=23)

@pytest.mark.asyncio
async def test_missing_remote_expiry_uses_default_ttl(integration, marketplace, db):
    marketplace.on("POST", TOKEN_ENDPOINT, ok({"accessToken": "AT-1", "refreshToken": "RT-1"}))

    await integration.tokens.obtain_initial_token()

    db.expire_all()
    credential = marketplace_crud.get_credential(db)
    expected = utcnow() + timedelta(seconds=integration.tokens.default_ttl)
    assert abs((credential.expires_at - expected).total_seconds()) < 60

@pytest.mark.asyncio
async def test_rejected_api_key(integration, marketplace, db):
    marketplace.on("POST", TOKEN_ENDPOINT, fail(1600001, "Invalid API key"))

    with pytest.raises(AuthConfigurationError) as exc_info:
        await integration.tokens.obtain_initial_token()

    assert "Invalid API key" in str(exc_info.value)
    assert exc_info.value.response["code"] == 1600001
    db.expire_all()
    assert marketplace_crud.get_credential(db) is None

@pytest.mark.asyncio
async def test_expired_token_is_refreshed(integration, marketplace, db, expired_token):
    marketplace.on("POST", REFRESH_ENDPOINT, ok({"accessToken": "AT-2", "accessTokenExpiryDate": None}))

    token = await integration.tokens.get_valid_token()

    assert token == "AT-2"
    assert marketplace.calls_to(REFRESH_ENDPOINT)[0]["json"] == {"refreshToken": "RT-expired"}
    assert marketplace.calls_to(TOKEN_ENDPOINT) == []

    # Маркетплейс не вернул новый refresh token - старый сохраняется
    db.expire_all()
    credential = marketplace_crud.get_credential(db)
    assert credential.refresh_token == "RT-expired"

@pytest.mark.asyncio
async def test_stale_refresh_token_triggers_initial_fetch(integration, marketplace, db, stored_token):
    """Устаревший refresh token: новый токен по API ключу, refresh endpoint не вызывается"""
    marketplace.on("POST", TOKEN_ENDPOINT, ok(token_data("AT-3", "RT-3")))

    token = await integration.tokens.refresh_token("RT-old")

    assert token == "AT-3"
    assert marketplace.calls_to(REFRESH_ENDPOINT) == []
    assert len(marketplace.calls_to(TOKEN_ENDPOINT)) == 1
    db.expire_all()
    assert marketplace_crud.get_credential(db).refresh_token == "RT-3"

@pytest.mark.asyncio
async def test_refresh_without_token_fetches_new_one(integration, marketplace):
    marketplace.on("POST", TOKEN_ENDPOINT, ok(token_data("AT-4", "RT-4")))

    assert await integration.tokens.refresh_token(None) == "AT-4"
    assert marketplace.calls_to(REFRESH_ENDPOINT) == []

@pytest.mark.asyncio
async def test_refresh_failure_falls_back_to_initial_fetch(integration, marketplace, expired_token):
    marketplace.on("POST", REFRESH_ENDPOINT, fail(1600003, "Refresh token expired"))
    marketplace.on("POST", TOKEN_ENDPOINT, ok(token_data("AT-5", "RT-5")))

    token = await integration.tokens.get_valid_token()

    assert token == "AT-5"
    assert len(marketplace.calls_to(REFRESH_ENDPOINT)) == 1
    assert len(marketplace.calls_to(TOKEN_ENDPOINT)) == 1

@pytest.mark.asyncio
async def test_refresh_and_fallback_failure_raises_original_error(integration, marketplace, expired_token):
    marketplace.on("POST", REFRESH_ENDPOINT, fail(1600003, "Refresh token expired"))
    marketplace.on("POST", TOKEN_ENDPOINT, fail(1600001, "Invalid API key"))

    with pytest.raises(AuthError) as exc_info:
        await integration.tokens.get_valid_token()

    assert "Refresh token expired" in str(exc_info.value)
    assert not isinstance(exc_info.value, AuthConfigurationError)

@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh(integration, marketplace, expired_token):
    marketplace.on("POST", REFRESH_ENDPOINT, ok(token_data("AT-6", "RT-6")))

    tokens = await asyncio.gather(*[integration.tokens.get_valid_token() for _ in range(10)])

    assert set(tokens) == {"AT-6"}
    assert len(marketplace.calls_to(REFRESH_ENDPOINT)) == 1
    assert marketplace.calls_to(TOKEN_ENDPOINT) == []

@pytest.mark.asyncio
async def test_unauthorized_response_refreshes_and_retries_once(integration, marketplace, stored_token):
    marketplace.on(
        "GET", "/product/getCategory",
        httpx.Response(401, json=fail(401, "Invalid token")),
        ok([{"categoryFirstId": "C1"}]),
    )
    marketplace.on("POST", REFRESH_ENDPOINT, ok(token_data("AT-7", "RT-7")))

    envelope = await integration.tokens.make_authenticated_request("GET", "/product/getCategory")

    assert envelope["data"] == [{"categoryFirstId": "C1"}]
    calls = marketplace.calls_to("/product/getCategory")
    assert [c["token"] for c in calls] == ["AT-stored", "AT-7"]

@pytest.mark.asyncio
async def test_unauthorized_envelope_code_is_retried_once(integration, marketplace, stored_token):
    marketplace.on("GET", "/shopping/pay/getBalance", fail(401, "Invalid token"))
    marketplace.on("POST", REFRESH_ENDPOINT, ok(token_data("AT-8", "RT-8")))

    with pytest.raises(AuthError):
        await integration.tokens.make_authenticated_request("GET", "/shopping/pay/getBalance")

    assert len(marketplace.calls_to("/shopping/pay/getBalance")) == 2
    assert len(marketplace.calls_to(REFRESH_ENDPOINT)) == 1

@pytest.mark.asyncio
async def test_remote_not_found_code(integration, marketplace, stored_token):
    marketplace.on("GET", "/product/query", fail(404, "Product not found"))

    with pytest.raises(NotFoundError):
        await integration.tokens.make_authenticated_request("GET", "/product/query", params={"pid": "X"})

    assert marketplace.calls_to("/product/query")[0]["params"] == {"pid": "X"}

@pytest.mark.asyncio
async def test_body_sent_only_for_write_methods(integration, marketplace, stored_token):
    marketplace.on("GET", "/product/getCategory", ok([]))

    await integration.tokens.make_authenticated_request("GET", "/product/getCategory", body={"ignored": True})

    assert marketplace.calls_to("/product/getCategory")[0]["json"] is None

def test_token_status_and_delete(integration, db, stored_token):
    status = integration.tokens.token_status()
    assert status["hasToken"] is True
    assert status["isValid"] is True
    assert status["tokenType"] == "Bearer"
    assert status["expiresInSeconds"] > 4 * 24 * 60 * 60

    assert integration.tokens.delete_token() == 1
    assert integration.tokens.token_status() == {
        "hasToken": False,
        "isValid": False,
        "expiresAt": None,
        "expiresInSeconds": 0,
    }

@pytest.mark.asyncio
async def test_connection_check_warns_when_test_call_fails(integration, marketplace):
    marketplace.on("POST", TOKEN_ENDPOINT, ok(token_data("AT-9", "RT-9")))
    marketplace.on("GET", "/product/getCategory", fail(1600500, "No permission"))

    result = await integration.tokens.test_connection()

    assert result["success"] is True
    assert "warning" in result
    assert result["response_time"] >= 0
