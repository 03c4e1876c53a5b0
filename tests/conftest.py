import base64
import json
import os
from typing import AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

# Gateway credentials must be present before settings are cached
os.environ.setdefault("MONGODB_DB_NAME", "wallet_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("PHONEPE_MERCHANT_ID", "PGTESTPAYUAT")
os.environ.setdefault("PHONEPE_SALT_KEY", "099eb0cd-02cf-4e2a-8aca-3e6c6aff0399")
os.environ.setdefault("PHONEPE_SALT_INDEX", "1")
os.environ.setdefault("PHONEPE_ENV", "UAT")
os.environ.setdefault("FRONTEND_URL", "http://localhost:5173")
os.environ.setdefault("BACKEND_URL", "http://localhost:8000")

PAY_PAGE_URL = "https://mercury-uat.phonepe.com/transact/simulator?token=abc123"
_DEFAULT = object()


class FakePhonePe:
    """Scriptable stand-in for the PhonePe API, served through httpx.MockTransport."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.pay_response: tuple[int, dict] = (
            200,
            {
                "success": True,
                "code": "PAYMENT_INITIATED",
                "message": "Payment initiated",
                "data": {
                    "merchantId": "PGTESTPAYUAT",
                    "instrumentResponse": {
                        "type": "PAY_PAGE",
                        "redirectInfo": {"url": PAY_PAGE_URL, "method": "GET"},
                    },
                },
            },
        )
        self.state = "COMPLETED"
        self.status_success = True
        self.raise_on_pay: Exception | None = None
        self.status_data = _DEFAULT  # replaces the whole "data" field of status responses
        self.not_found: set[str] = set()  # merchant txn ids the gateway has never seen

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/pg/v1/pay"):
            if self.raise_on_pay is not None:
                raise self.raise_on_pay
            status_code, body = self.pay_response
            return httpx.Response(status_code, json=body)
        mtid = request.url.path.rsplit("/", 1)[-1]
        if mtid in self.not_found:
            return httpx.Response(
                200,
                json={"success": False, "code": "TRANSACTION_NOT_FOUND", "message": "No transaction found"},
            )
        body = {
            "success": self.status_success,
            "code": "PAYMENT_SUCCESS" if self.state == "COMPLETED" else f"PAYMENT_{self.state}",
            "message": "Status fetched",
            "data": {
                "merchantId": "PGTESTPAYUAT",
                "merchantTransactionId": mtid,
                "transactionId": f"T{mtid}",
                "amount": 50000,
                "state": self.state,
                "responseCode": "SUCCESS" if self.state == "COMPLETED" else "ZM",
            },
        }
        if self.status_data is not _DEFAULT:
            body["data"] = self.status_data
        return httpx.Response(200, json=body)

    def pay_payloads(self) -> list[dict]:
        out = []
        for r in self.requests:
            if r.url.path.endswith("/pg/v1/pay"):
                encoded = json.loads(r.content)["request"]
                out.append(json.loads(base64.b64decode(encoded)))
        return out

    def status_calls(self) -> int:
        return sum(1 for r in self.requests if "/pg/v1/status/" in r.url.path)


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[None, None]:
    from app.db.init import init_db
    client = AsyncMongoMockClient()
    await init_db(client["wallet_test"])
    yield


@pytest.fixture
def fake_phonepe() -> FakePhonePe:
    return FakePhonePe()


@pytest_asyncio.fixture
async def gateway(fake_phonepe):
    from app.core.config import get_settings
    from app.services.phonepe import GatewayConfig, PhonePeClient
    client = PhonePeClient(
        GatewayConfig.from_settings(get_settings()),
        transport=httpx.MockTransport(fake_phonepe.handler),
    )
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def make_user(db) -> Callable:
    from app.models.user import User
    counter = {"n": 0}

    async def _make(**kwargs):
        counter["n"] += 1
        kwargs.setdefault("email", f"user{counter['n']}@example.com")
        kwargs.setdefault("name", f"User {counter['n']}")
        kwargs.setdefault("phone", "9999999999")
        user = User(**kwargs)
        await user.insert()
        return user

    return _make


@pytest_asyncio.fixture
async def client(db, gateway) -> AsyncGenerator[AsyncClient, None]:
    from app.deps import get_gateway
    from app.main import app
    app.dependency_overrides[get_gateway] = lambda: gateway
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def login(client) -> Callable:
    """Attach a signed session cookie for the given user to the test client."""
    from app.core.security import create_session_cookie
    from app.deps import SESSION_COOKIE_NAME

    def _login(user) -> None:
        cookie = create_session_cookie({"user_id": str(user.id), "session_version": user.session_version})
        client.cookies.set(SESSION_COOKIE_NAME, cookie)

    return _login
