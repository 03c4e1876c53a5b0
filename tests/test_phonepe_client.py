"""PhonePe client against a mocked transport; no network."""

import json

import httpx
import pytest

from app.core.config import Settings, get_settings
from app.core.exceptions import ConfigurationError, GatewayError
from app.core.security import phonepe_checksum
from app.services.phonepe import (
    PROD_BASE_URL,
    SANDBOX_BASE_URL,
    GatewayConfig,
    PaymentRequest,
    PhonePeClient,
)

pytestmark = pytest.mark.asyncio


def _request(**kwargs) -> PaymentRequest:
    fields = {
        "merchant_transaction_id": "MT26101912000012AB34CD56EF",
        "merchant_user_id": "user-1",
        "amount_paise": 50000,
        "mobile_number": "9999999999",
    }
    fields.update(kwargs)
    return PaymentRequest(**fields)


async def test_create_payment_sends_signed_payload(gateway, fake_phonepe):
    session = await gateway.create_payment(_request())
    assert session.redirect_url == fake_phonepe.pay_response[1]["data"]["instrumentResponse"]["redirectInfo"]["url"]
    assert session.raw_response["success"] is True

    sent = fake_phonepe.requests[0]
    assert sent.method == "POST"
    assert str(sent.url) == f"{SANDBOX_BASE_URL}/pg/v1/pay"
    encoded = json.loads(sent.content)["request"]
    settings = get_settings()
    assert sent.headers["X-VERIFY"] == phonepe_checksum(
        encoded, "/pg/v1/pay", settings.phonepe_salt_key, settings.phonepe_salt_index
    )
    assert sent.headers["X-MERCHANT-ID"] == "PGTESTPAYUAT"

    payload = fake_phonepe.pay_payloads()[0]
    assert payload == {
        "merchantId": "PGTESTPAYUAT",
        "merchantTransactionId": "MT26101912000012AB34CD56EF",
        "merchantUserId": "user-1",
        "amount": 50000,
        "redirectUrl": "http://localhost:5173/dashboard/payment-callback",
        "callbackUrl": "http://localhost:8000/api/recharge/verify",
        "mobileNumber": "9999999999",
        "paymentInstrument": {"type": "PAY_PAGE"},
    }


async def test_create_payment_omits_missing_phone(gateway, fake_phonepe):
    await gateway.create_payment(_request(mobile_number=None))
    assert "mobileNumber" not in fake_phonepe.pay_payloads()[0]


async def test_create_payment_unsuccessful_envelope(gateway, fake_phonepe):
    fake_phonepe.pay_response = (200, {"success": False, "code": "BAD_REQUEST", "message": "Invalid amount"})
    with pytest.raises(GatewayError) as exc:
        await gateway.create_payment(_request())
    assert exc.value.message == "PhonePe error: Invalid amount"
    assert exc.value.status_code == 400


async def test_create_payment_http_error_status(gateway, fake_phonepe):
    fake_phonepe.pay_response = (401, {"success": False, "code": "401", "message": "Key not found for the merchant"})
    with pytest.raises(GatewayError) as exc:
        await gateway.create_payment(_request())
    assert "Key not found" in exc.value.message
    assert exc.value.details["http_status"] == 401


async def test_create_payment_transport_error(gateway, fake_phonepe):
    fake_phonepe.raise_on_pay = httpx.ConnectError("connection refused")
    with pytest.raises(GatewayError) as exc:
        await gateway.create_payment(_request())
    assert exc.value.message == "PhonePe request failed"


@pytest.mark.parametrize(
    "data",
    [
        None,
        "not-an-object",
        {"instrumentResponse": None},
        {"instrumentResponse": {"redirectInfo": "https://example.com"}},
        {"instrumentResponse": {"redirectInfo": {"url": ""}}},
    ],
)
async def test_create_payment_without_redirect_url(gateway, fake_phonepe, data):
    fake_phonepe.pay_response = (200, {"success": True, "code": "PAYMENT_INITIATED", "data": data})
    with pytest.raises(GatewayError) as exc:
        await gateway.create_payment(_request())
    assert exc.value.message == "PhonePe error: missing redirect URL"
    assert exc.value.details["code"] == "PAYMENT_INITIATED"


async def test_get_payment_status(gateway, fake_phonepe):
    status = await gateway.get_payment_status("MT123")
    assert status.is_completed
    assert status.gateway_transaction_id == "TMT123"
    assert status.response_code == "SUCCESS"

    sent = fake_phonepe.requests[0]
    assert sent.method == "GET"
    assert str(sent.url) == f"{SANDBOX_BASE_URL}/pg/v1/status/PGTESTPAYUAT/MT123"
    settings = get_settings()
    assert sent.headers["X-VERIFY"] == phonepe_checksum(
        "", "/pg/v1/status/PGTESTPAYUAT/MT123", settings.phonepe_salt_key, settings.phonepe_salt_index
    )


async def test_get_payment_status_unsuccessful(gateway, fake_phonepe):
    fake_phonepe.status_success = False
    with pytest.raises(GatewayError):
        await gateway.get_payment_status("MT123")


@pytest.mark.parametrize("data", [None, ["COMPLETED"], {"transactionId": "T1"}, {"state": 7}])
async def test_get_payment_status_without_state(gateway, fake_phonepe, data):
    fake_phonepe.status_data = data
    with pytest.raises(GatewayError) as exc:
        await gateway.get_payment_status("MT123")
    assert exc.value.message == "PhonePe error: missing payment state"


def _settings(**overrides) -> Settings:
    values = {
        "PHONEPE_MERCHANT_ID": " MERCHANT ",
        "PHONEPE_SALT_KEY": "key\n",
        "PHONEPE_SALT_INDEX": "2",
        "FRONTEND_URL": "https://app.example.com/",
        "BACKEND_URL": "https://api.example.com",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


async def test_config_trims_and_builds_urls():
    config = GatewayConfig.from_settings(_settings(PHONEPE_ENV="PROD"))
    assert config.merchant_id == "MERCHANT"
    assert config.salt_key == "key"
    assert config.base_url == PROD_BASE_URL
    assert config.redirect_url == "https://app.example.com/dashboard/payment-callback"
    assert config.callback_url == "https://api.example.com/api/recharge/verify"
    assert config.status_path("MT1") == "/pg/v1/status/MERCHANT/MT1"


async def test_config_defaults_to_sandbox():
    assert GatewayConfig.from_settings(_settings(PHONEPE_ENV="UAT")).base_url == SANDBOX_BASE_URL


@pytest.mark.parametrize("missing", ["PHONEPE_MERCHANT_ID", "PHONEPE_SALT_KEY", "PHONEPE_SALT_INDEX", "FRONTEND_URL", "BACKEND_URL"])
async def test_config_missing_value_is_fatal(missing):
    with pytest.raises(ConfigurationError) as exc:
        GatewayConfig.from_settings(_settings(**{missing: "  "}))
    assert missing in exc.value.message


async def test_client_uses_configured_timeout():
    client = PhonePeClient(GatewayConfig.from_settings(_settings(PHONEPE_TIMEOUT_SECONDS=3)))
    try:
        assert client._http.timeout.connect == 3
    finally:
        await client.aclose()
