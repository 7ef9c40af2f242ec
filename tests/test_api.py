"""
API tests through the FastAPI app.

Run against the in-memory database; external services are mocked or
replaced through dependency overrides.
"""
import hashlib
import hmac
import json
import time
from datetime import timedelta
from types import SimpleNamespace
from typing import Any, Dict
from unittest.mock import AsyncMock

import httpx
import jwt
import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from zpay.api.deps import (
    get_billing_service,
    get_license_service,
    get_otp_service,
    get_payment_api_client,
)
from zpay.api.main import app
from zpay.config import get_settings
from zpay.core.api_keys import ApiKeyService
from zpay.core.billing import BillingService
from zpay.core.licensing import LicenseService
from zpay.core.security import utcnow
from zpay.database.models import ApiKey, Session, Transaction, TransactionStatus, User
from zpay.integrations.payment_api import PaymentApiClient
from zpay.integrations.stripe_client import StripeClient


@pytest_asyncio.fixture
async def add_api_key(session_factory: async_sessionmaker[AsyncSession]):
    async def _add_api_key(user: User, key: str = "zv_live_instance", **fields: Any) -> ApiKey:
        async with session_factory() as session:
            api_key = ApiKey(key=key, user_id=user.id, **fields)
            session.add(api_key)
            await session.commit()
            return api_key

    return _add_api_key


@pytest.fixture
def license_override(rsa_keys: Dict[str, str]):
    app.dependency_overrides[get_license_service] = lambda: LicenseService(
        private_key=rsa_keys["private"]
    )
    yield
    app.dependency_overrides.pop(get_license_service, None)


def stripe_signature(payload: bytes, secret: str) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.".encode("utf-8") + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


@pytest.mark.integration
@pytest.mark.asyncio
async def test_register_login_me_logout(client: AsyncClient) -> None:
    registration = {
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "ada@example.com",
        "password": "analytical-engine",
        "mobile_number": "+15551234567",
    }

    response = await client.post("/auth/register", json=registration)
    assert response.status_code == 201
    assert response.json()["success"] is True

    duplicate = await client.post("/auth/register", json=registration)
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "CONFLICT"

    login = await client.post(
        "/auth/login", json={"email": "ada@example.com", "password": "analytical-engine"}
    )
    assert login.status_code == 200
    token = login.json()["access_token"]
    headers = {"Authorization": f"Bearer {token}"}

    me = await client.get("/auth/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["email"] == "ada@example.com"
    assert me.json()["phone"] == "+15551234567"
    assert me.json()["username"].startswith("ada")
    assert "password" not in me.json()

    logout = await client.post("/auth/logout", headers=headers)
    assert logout.status_code == 200

    after = await client.get("/auth/me", headers=headers)
    assert after.status_code == 401


@pytest.mark.integration
@pytest.mark.asyncio
async def test_login_with_wrong_password(client: AsyncClient, make_user) -> None:
    await make_user()

    response = await client.post(
        "/auth/login", json={"email": "merchant@example.com", "password": "not-the-password"}
    )

    assert response.status_code == 401
    assert response.json() == {
        "error": {
            "code": "UNAUTHORIZED",
            "message": "Invalid email or password",
            "type": "UnauthorizedError",
        }
    }


@pytest.mark.integration
@pytest.mark.asyncio
async def test_me_requires_token(client: AsyncClient) -> None:
    response = await client.get("/auth/me")

    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Authentication required"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_expired_session_is_rejected_and_removed(
    client: AsyncClient, make_user, session_factory: async_sessionmaker[AsyncSession]
) -> None:
    user = await make_user()
    async with session_factory() as session:
        session.add(
            Session(
                session_token="stale-token",
                user_id=user.id,
                expires=utcnow() - timedelta(minutes=1),
            )
        )
        await session.commit()

    response = await client.get("/auth/me", headers={"Authorization": "Bearer stale-token"})

    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Session expired"
    async with session_factory() as session:
        remaining = await session.scalar(
            select(Session).where(Session.session_token == "stale-token")
        )
    assert remaining is None


@pytest.mark.integration
@pytest.mark.asyncio
async def test_register_validates_input(client: AsyncClient) -> None:
    response = await client.post(
        "/auth/register",
        json={
            "first_name": "Ada",
            "last_name": "Lovelace",
            "email": "not-an-email",
            "password": "123",
            "mobile_number": "+15551234567",
        },
    )

    assert response.status_code == 422


@pytest.mark.integration
@pytest.mark.asyncio
async def test_password_reset_flow(
    client: AsyncClient, make_user, session_factory: async_sessionmaker[AsyncSession]
) -> None:
    user = await make_user()

    unknown = await client.post(
        "/auth/password-reset/request", json={"email": "nobody@example.com"}
    )
    assert unknown.status_code == 200
    assert unknown.json()["success"] is True

    requested = await client.post(
        "/auth/password-reset/request", json={"email": "merchant@example.com"}
    )
    assert requested.status_code == 200

    async with session_factory() as session:
        token = (await session.get(User, user.id)).reset_token
    assert token

    valid = await client.get(f"/auth/password-reset/verify/{token}")
    assert valid.json() == {"valid": True}

    confirm = await client.post(
        "/auth/password-reset/confirm",
        json={"token": token, "new_password": "a-brand-new-password"},
    )
    assert confirm.status_code == 200

    reused = await client.post(
        "/auth/password-reset/confirm",
        json={"token": token, "new_password": "another-password"},
    )
    assert reused.status_code == 400
    assert reused.json()["error"]["message"] == "Invalid or expired reset token"

    login = await client.post(
        "/auth/login", json={"email": "merchant@example.com", "password": "a-brand-new-password"}
    )
    assert login.status_code == 200


@pytest.mark.integration
@pytest.mark.asyncio
async def test_send_otp_uses_service(client: AsyncClient) -> None:
    otp_service = SimpleNamespace(
        send_phone_otp=AsyncMock(
            return_value={"success": True, "message": "Verification code sent"}
        )
    )
    app.dependency_overrides[get_otp_service] = lambda: otp_service

    response = await client.post("/auth/otp/send", json={"phone_number": "+15555550123"})

    assert response.status_code == 200
    assert response.json()["success"] is True
    otp_service.send_phone_otp.assert_awaited_once_with("+15555550123")


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------


@pytest.mark.integration
@pytest.mark.asyncio
async def test_api_key_lifecycle(client: AsyncClient, make_user, login_as) -> None:
    user = await make_user()
    headers = await login_as(user)

    created = await client.post("/account/api-keys", json={"name": "Shop"}, headers=headers)
    assert created.status_code == 201
    key_id = created.json()["id"]
    assert created.json()["api_key"].startswith("zv_test_")

    listed = await client.get("/account/api-keys", headers=headers)
    assert [key["name"] for key in listed.json()] == ["Shop"]
    assert listed.json()[0]["usage_limit"] == 250

    deleted = await client.delete(f"/account/api-keys/{key_id}", headers=headers)
    assert deleted.status_code == 200

    missing = await client.delete(f"/account/api-keys/{key_id}", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_profile_update_rejects_bad_zcash_address(
    client: AsyncClient, make_user, login_as
) -> None:
    headers = await login_as(await make_user())

    bad = await client.patch(
        "/account/profile", json={"zcash_address": "bc1qnotzcash"}, headers=headers
    )
    assert bad.status_code == 400

    good = await client.patch(
        "/account/profile",
        json={"zcash_address": "zs1shielded", "first_name": "Zed"},
        headers=headers,
    )
    assert good.status_code == 200
    assert good.json()["zcash_address"] == "zs1shielded"
    assert good.json()["first_name"] == "Zed"
    assert good.json()["api_keys"] == []


@pytest.mark.integration
@pytest.mark.asyncio
async def test_webhook_config_round_trip(client: AsyncClient, make_user, login_as) -> None:
    headers = await login_as(await make_user())

    empty = await client.get("/account/webhook", headers=headers)
    assert empty.status_code == 200
    assert empty.json() is None

    saved = await client.put(
        "/account/webhook", json={"url": "https://hooks.example.com/zpay"}, headers=headers
    )
    assert saved.status_code == 200
    assert saved.json()["secret"].startswith("whsec_")

    secret = await client.post("/account/webhook/secret", headers=headers)
    assert secret.json()["secret"].startswith("whsec_")

    invalid = await client.put("/account/webhook", json={"url": "not a url"}, headers=headers)
    assert invalid.status_code == 422


@pytest.mark.integration
@pytest.mark.asyncio
async def test_list_own_transactions(
    client: AsyncClient,
    make_user,
    login_as,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    user = await make_user()
    other = await make_user(email="other@example.com")
    async with session_factory() as session:
        session.add_all(
            [
                Transaction(user_id=user.id, amount=1, invoice_id="inv-1"),
                Transaction(
                    user_id=user.id, amount=2, invoice_id="inv-2", status=TransactionStatus.FAILED
                ),
                Transaction(user_id=other.id, amount=3, invoice_id="inv-3"),
            ]
        )
        await session.commit()
    headers = await login_as(user)

    everything = await client.get("/account/transactions", headers=headers)
    assert everything.status_code == 200
    assert everything.json()["total_count"] == 2

    pending = await client.get("/account/transactions?status=PENDING", headers=headers)
    assert [t["invoice_id"] for t in pending.json()["transactions"]] == ["inv-1"]

    too_many = await client.get("/account/transactions?limit=500", headers=headers)
    assert too_many.status_code == 422


@pytest.mark.integration
@pytest.mark.asyncio
async def test_api_key_test_relays_upstream(
    client: AsyncClient, make_user, login_as, add_api_key
) -> None:
    user = await make_user()
    api_key = await add_api_key(user, key="zv_test_shop")
    headers = await login_as(user)

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer zv_test_shop"
        return httpx.Response(200, json={"address": "zs1abc"})

    app.dependency_overrides[get_payment_api_client] = lambda: PaymentApiClient(
        transport=httpx.MockTransport(handler)
    )

    response = await client.post(
        "/account/api-keys/test",
        json={"api_key_id": api_key.id, "user_id": "client-7", "invoice_id": "inv-1", "amount": 1},
        headers=headers,
    )

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["response"]["body"] == {"address": "zs1abc"}


# ---------------------------------------------------------------------------
# Payments proxy
# ---------------------------------------------------------------------------


@pytest.mark.integration
@pytest.mark.asyncio
async def test_create_invoice_relays_status(client: AsyncClient, make_user, login_as) -> None:
    headers = await login_as(await make_user())

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["amount"] == "150"
        return httpx.Response(
            402,
            json={"error": "insufficient balance"},
            headers={"X-Upstream": "yes", "Connection": "close"},
        )

    app.dependency_overrides[get_payment_api_client] = lambda: PaymentApiClient(
        transport=httpx.MockTransport(handler)
    )

    response = await client.post(
        "/payments/create-invoice",
        json={
            "api_key": "zv_test_key",
            "user_id": "client-7",
            "invoice_id": "inv-1",
            "amount": 1.5,
        },
        headers=headers,
    )

    assert response.status_code == 402
    assert response.json() == {"error": "insufficient balance"}
    assert response.headers["x-upstream"] == "yes"
    assert response.headers["x-upstream-reason"] == "Payment Required"
    assert response.headers.get("connection") != "close"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_payment_api_outage_is_bad_gateway(client: AsyncClient, make_user, login_as) -> None:
    headers = await login_as(await make_user())

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    app.dependency_overrides[get_payment_api_client] = lambda: PaymentApiClient(
        transport=httpx.MockTransport(handler)
    )

    response = await client.get(
        "/payments/shared-log?api_key=zv_test_key&invoice_id=inv-1", headers=headers
    )

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "BAD_GATEWAY"


def poll_client(handler) -> PaymentApiClient:
    settings = get_settings().model_copy(
        update={"address_poll_interval": 0, "address_poll_timeout": 5}
    )
    return PaymentApiClient(transport=httpx.MockTransport(handler), settings=settings)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_address_status_single_call(client: AsyncClient, make_user, login_as) -> None:
    headers = await login_as(await make_user())
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(dict(request.url.params))
        return httpx.Response(200, json={"status": "PENDING"}, headers={"X-Upstream": "yes"})

    app.dependency_overrides[get_payment_api_client] = lambda: poll_client(handler)

    response = await client.get(
        "/payments/address-status?api_key=zv_test_key&address=t1abc&user_id=u1",
        headers=headers,
    )

    assert response.status_code == 200
    assert response.json() == {"status": "PENDING"}
    assert response.headers["x-upstream"] == "yes"
    assert response.headers["x-upstream-reason"] == "OK"
    assert seen == [{"address": "t1abc", "user_id": "u1"}]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_address_status_wait_stops_on_settled_payment(
    client: AsyncClient, make_user, login_as
) -> None:
    headers = await login_as(await make_user())
    statuses = iter(["PENDING", "PROCESSING", "COMPLETED"])
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(dict(request.url.params))
        return httpx.Response(200, json={"status": next(statuses)})

    app.dependency_overrides[get_payment_api_client] = lambda: poll_client(handler)

    response = await client.get(
        "/payments/address-status?api_key=zv_test_key&address=t1abc&user_id=u1&wait=true",
        headers=headers,
    )

    assert response.status_code == 200
    assert response.json() == {"status": "COMPLETED"}
    assert len(seen) == 3
    assert all(params == {"address": "t1abc", "user_id": "u1"} for params in seen)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_address_status_wait_stops_on_upstream_error(
    client: AsyncClient, make_user, login_as
) -> None:
    headers = await login_as(await make_user())
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(404, text="unknown address")

    app.dependency_overrides[get_payment_api_client] = lambda: poll_client(handler)

    response = await client.get(
        "/payments/address-status?api_key=zv_test_key&address=t1missing&wait=true",
        headers=headers,
    )

    assert response.status_code == 404
    assert response.text == "unknown address"
    assert response.headers["x-upstream-reason"] == "Not Found"
    assert len(calls) == 1


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@pytest.mark.integration
@pytest.mark.asyncio
async def test_admin_routes_reject_non_admins(client: AsyncClient, make_user, login_as) -> None:
    headers = await login_as(await make_user())

    for path in ("/admin/users", "/admin/api-keys", "/admin/transactions", "/admin/stats/system"):
        response = await client.get(path, headers=headers)
        assert response.status_code == 401, path
        assert response.json()["error"]["message"] == "Only admins can access this resource"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_admin_user_management(client: AsyncClient, make_user, login_as) -> None:
    admin = await make_user(email="admin@example.com", is_admin=True)
    target = await make_user(email="target@example.com")
    headers = await login_as(admin)

    users = await client.get("/admin/users", headers=headers)
    assert {u["email"] for u in users.json()} == {"admin@example.com", "target@example.com"}

    toggled = await client.post(f"/admin/users/{target.id}/toggle-admin", headers=headers)
    assert toggled.status_code == 200
    assert toggled.json()["is_admin"] is True

    self_toggle = await client.post(f"/admin/users/{admin.id}/toggle-admin", headers=headers)
    assert self_toggle.status_code == 403
    assert self_toggle.json()["error"]["code"] == "FORBIDDEN"

    self_delete = await client.delete(f"/admin/users/{admin.id}", headers=headers)
    assert self_delete.status_code == 403

    deleted = await client.delete(f"/admin/users/{target.id}", headers=headers)
    assert deleted.status_code == 200
    missing = await client.get(f"/admin/users/{target.id}", headers=headers)
    assert missing.status_code == 404


@pytest.mark.integration
@pytest.mark.asyncio
async def test_admin_creates_user_and_live_key(client: AsyncClient, make_user, login_as) -> None:
    headers = await login_as(await make_user(email="admin@example.com", is_admin=True))

    created = await client.post(
        "/admin/users",
        json={
            "first_name": "Grace",
            "last_name": "Hopper",
            "email": "grace@example.com",
            "password": "cobol-forever",
        },
        headers=headers,
    )
    assert created.status_code == 201
    user_id = created.json()["id"]

    api_key = await client.post(
        "/admin/api-keys",
        json={"user_id": user_id, "name": "Production", "transaction_fee": 1.5},
        headers=headers,
    )
    assert api_key.status_code == 201
    assert api_key.json()["key"].startswith("zv_live_")

    bad_fee = await client.put(
        f"/admin/api-keys/{api_key.json()['id']}/fee",
        json={"transaction_fee": 150},
        headers=headers,
    )
    assert bad_fee.status_code == 400
    assert bad_fee.json()["error"]["code"] == "BAD_REQUEST"

    listing = await client.get("/admin/api-keys?page=1&limit=10", headers=headers)
    assert listing.json()["pagination"]["total"] == 1
    assert listing.json()["api_keys"][0]["user"]["email"] == "grace@example.com"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_admin_stats(client: AsyncClient, make_user, login_as) -> None:
    headers = await login_as(await make_user(email="admin@example.com", is_admin=True))

    system = await client.get("/admin/stats/system", headers=headers)
    assert system.json()["total_users"] == 1

    growth = await client.get("/admin/stats/user-growth", headers=headers)
    assert len(growth.json()["monthly_data"]) == 12

    usage = await client.get("/admin/stats/api-usage?days=14", headers=headers)
    assert len(usage.json()["daily_stats"]) == 14

    out_of_range = await client.get("/admin/stats/api-usage?days=365", headers=headers)
    assert out_of_range.status_code == 422

    transactions = await client.get("/admin/transactions/stats?period=week", headers=headers)
    assert transactions.json()["period"] == "week"


# ---------------------------------------------------------------------------
# Licensing
# ---------------------------------------------------------------------------


@pytest.mark.integration
@pytest.mark.asyncio
async def test_license_activation(
    client: AsyncClient, make_user, add_api_key, license_override, rsa_keys: Dict[str, str]
) -> None:
    user = await make_user()
    api_key = await add_api_key(user, monthly_usage=3)

    response = await client.post(
        "/license/activate",
        json={"apiKey": api_key.key, "monthlyUsage": 3, "instanceId": "node-1", "version": "1.0"},
    )

    assert response.status_code == 200
    body = response.json()
    assert set(body) == {"accessToken", "expiresAt"}
    claims = jwt.decode(body["accessToken"], rsa_keys["public"], algorithms=["RS256"])
    assert claims["licenseId"] == api_key.id
    assert claims["exp"] == body["expiresAt"]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_license_over_cap_is_forbidden(
    client: AsyncClient, make_user, add_api_key, license_override
) -> None:
    user = await make_user()
    api_key = await add_api_key(user, monthly_usage=300)

    response = await client.post("/license/activate", json={"apiKey": api_key.key})

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "TOO_MANY_REQUESTS"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_license_requires_api_key(client: AsyncClient, license_override) -> None:
    response = await client.post("/license/activate", json={})

    assert response.status_code == 401
    assert response.json()["error"]["message"] == "API key required"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_increment_usage_camel_case(
    client: AsyncClient, make_user, add_api_key, license_override
) -> None:
    user = await make_user()
    api_key = await add_api_key(user, total_usage=10, monthly_usage=2)

    counted = await client.post("/license/increment-usage", json={"apiKey": api_key.key})
    assert counted.json() == {"totalUsage": 11, "monthlyUsage": 3}

    reported = await client.post(
        "/license/increment-usage", json={"apiKey": api_key.key, "usage": 40, "monthlyUsage": 9}
    )
    assert reported.json() == {"totalUsage": 40, "monthlyUsage": 9}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_license_cors_allows_any_origin(client: AsyncClient) -> None:
    response = await client.options(
        "/license/activate",
        headers={
            "Origin": "https://selfhosted.example.org",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Content-Type",
        },
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_dashboard_cors_is_restricted(client: AsyncClient) -> None:
    response = await client.options(
        "/auth/login",
        headers={
            "Origin": "https://evil.example.org",
            "Access-Control-Request-Method": "POST",
        },
    )

    assert "access-control-allow-origin" not in response.headers


@pytest.mark.integration
@pytest.mark.asyncio
async def test_license_bare_options(client: AsyncClient) -> None:
    response = await client.options("/license/increment-usage")

    assert response.status_code == 200


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


@pytest.mark.integration
@pytest.mark.asyncio
async def test_stripe_webhook_tops_up(
    client: AsyncClient, make_user, session_factory: async_sessionmaker[AsyncSession]
) -> None:
    settings = get_settings()
    app.dependency_overrides[get_billing_service] = lambda: BillingService(
        stripe_client=StripeClient(settings),
        api_key_service=ApiKeyService(settings),
        settings=settings,
    )
    user = await make_user()
    payload = json.dumps(
        {
            "id": "evt_test_1",
            "object": "event",
            "type": "checkout.session.completed",
            "data": {"object": {"id": "cs_test_1", "metadata": {"userId": user.id}}},
        }
    ).encode("utf-8")

    response = await client.post(
        "/billing/webhook",
        content=payload,
        headers={
            "Content-Type": "application/json",
            "Stripe-Signature": stripe_signature(payload, settings.stripe_webhook_secret),
        },
    )

    assert response.status_code == 200
    assert response.json() == {"received": True}
    async with session_factory() as session:
        keys = list(await session.scalars(select(ApiKey).where(ApiKey.user_id == user.id)))
    assert len(keys) == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_stripe_webhook_rejects_bad_signature(client: AsyncClient) -> None:
    settings = get_settings()
    app.dependency_overrides[get_billing_service] = lambda: BillingService(
        stripe_client=StripeClient(settings), settings=settings
    )

    response = await client.post(
        "/billing/webhook",
        content=b'{"type": "checkout.session.completed"}',
        headers={"Stripe-Signature": "t=1,v1=deadbeef"},
    )

    assert response.status_code == 400
    assert response.json()["detail"].startswith("Webhook Error")


@pytest.mark.integration
@pytest.mark.asyncio
async def test_checkout_session_uses_origin(client: AsyncClient, make_user, login_as) -> None:
    stripe_client = AsyncMock(spec=StripeClient)
    stripe_client.create_customer.return_value = SimpleNamespace(id="cus_test_1")
    stripe_client.create_checkout_session.return_value = SimpleNamespace(id="cs_test_1")
    app.dependency_overrides[get_billing_service] = lambda: BillingService(
        stripe_client=stripe_client
    )
    headers = await login_as(await make_user())

    response = await client.post(
        "/billing/checkout-session",
        json={"amount": 2500, "currency": "USD"},
        headers={**headers, "Origin": "http://localhost:3000"},
    )

    assert response.status_code == 200
    assert response.json() == {"sessionId": "cs_test_1"}
    kwargs = stripe_client.create_checkout_session.await_args.kwargs
    assert kwargs["origin"] == "http://localhost:3000"
    assert kwargs["currency"] == "usd"


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------


@pytest.mark.integration
@pytest.mark.asyncio
async def test_liveness_and_request_id(client: AsyncClient) -> None:
    response = await client.get("/health/live", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 200
    assert response.json()["status"] == "alive"
    assert response.headers["X-Request-ID"] == "req-123"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_metrics_endpoint(client: AsyncClient) -> None:
    await client.get("/")

    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "zpay_http_requests_total" in response.text


@pytest.mark.integration
@pytest.mark.asyncio
async def test_root(client: AsyncClient) -> None:
    response = await client.get("/")

    assert response.status_code == 200
    assert response.json()["status"] == "operational"
