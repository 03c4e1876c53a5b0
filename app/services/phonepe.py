"""PhonePe PG client: signed pay-page requests and status checks."""

from dataclasses import dataclass, field
from typing import Any

import httpx

from app.core.config import Settings
from app.core.exceptions import ConfigurationError, GatewayError
from app.core.logging import get_logger
from app.core.security import encode_payload, phonepe_checksum

log = get_logger(__name__)

PROD_BASE_URL = "https://api.phonepe.com/apis/hermes"
SANDBOX_BASE_URL = "https://api-preprod.phonepe.com/apis/pg-sandbox"
PAY_PATH = "/pg/v1/pay"
STATUS_PREFIX = "/pg/v1/status"
REDIRECT_PATH = "/dashboard/payment-callback"
CALLBACK_PATH = "/api/recharge/verify"

STATE_COMPLETED = "COMPLETED"
STATE_PENDING = "PENDING"


def _dig(obj: Any, *keys: str) -> Any:
    """Walk nested dicts; None as soon as a level is missing or not a dict."""
    for key in keys:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


@dataclass(frozen=True)
class GatewayConfig:
    """Gateway credentials and URLs, validated once at process start."""
    merchant_id: str
    salt_key: str
    salt_index: str
    base_url: str
    redirect_url: str
    callback_url: str
    timeout_seconds: float = 20.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayConfig":
        required = {
            "PHONEPE_MERCHANT_ID": settings.phonepe_merchant_id,
            "PHONEPE_SALT_KEY": settings.phonepe_salt_key,
            "PHONEPE_SALT_INDEX": settings.phonepe_salt_index,
            "FRONTEND_URL": settings.frontend_url,
            "BACKEND_URL": settings.backend_url,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            log.error("gateway_config_missing", missing=missing)
            raise ConfigurationError(f"Missing payment gateway configuration: {', '.join(missing)}")
        base_url = PROD_BASE_URL if settings.phonepe_env.upper() == "PROD" else SANDBOX_BASE_URL
        return cls(
            merchant_id=settings.phonepe_merchant_id,
            salt_key=settings.phonepe_salt_key,
            salt_index=settings.phonepe_salt_index,
            base_url=base_url,
            redirect_url=settings.frontend_url.rstrip("/") + REDIRECT_PATH,
            callback_url=settings.backend_url.rstrip("/") + CALLBACK_PATH,
            timeout_seconds=settings.phonepe_timeout_seconds,
        )

    def status_path(self, merchant_transaction_id: str) -> str:
        return f"{STATUS_PREFIX}/{self.merchant_id}/{merchant_transaction_id}"


@dataclass
class PaymentRequest:
    merchant_transaction_id: str
    merchant_user_id: str
    amount_paise: int
    mobile_number: str | None = None


@dataclass
class PaymentSession:
    redirect_url: str
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentStatus:
    state: str
    gateway_transaction_id: str | None
    response_code: str | None
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return self.state == STATE_COMPLETED

    @property
    def is_pending(self) -> bool:
        return self.state == STATE_PENDING


class PhonePeClient:
    def __init__(self, config: GatewayConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._http = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    def _headers(self, checksum: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-VERIFY": checksum,
            "X-MERCHANT-ID": self.config.merchant_id,
        }

    def build_payload(self, request: PaymentRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "merchantId": self.config.merchant_id,
            "merchantTransactionId": request.merchant_transaction_id,
            "merchantUserId": request.merchant_user_id,
            "amount": request.amount_paise,
            "redirectUrl": self.config.redirect_url,
            "callbackUrl": self.config.callback_url,
            "paymentInstrument": {"type": "PAY_PAGE"},
        }
        if request.mobile_number:
            payload["mobileNumber"] = request.mobile_number
        return payload

    async def _send(self, method: str, path: str, checksum: str, json_body: dict | None = None) -> dict[str, Any]:
        try:
            resp = await self._http.request(method, path, headers=self._headers(checksum), json=json_body)
        except httpx.HTTPError as e:
            log.warning("phonepe_transport_error", path=path, error=str(e))
            raise GatewayError("PhonePe request failed") from e
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if resp.is_error or not data.get("success"):
            message = data.get("message") or "Unknown error"
            log.warning(
                "phonepe_unsuccessful",
                path=path,
                http_status=resp.status_code,
                code=data.get("code"),
                message=message,
            )
            raise GatewayError(
                f"PhonePe error: {message}",
                details={"code": data.get("code"), "http_status": resp.status_code},
            )
        return data

    async def create_payment(self, request: PaymentRequest) -> PaymentSession:
        """POST the signed pay-page request; return the hosted page URL."""
        encoded = encode_payload(self.build_payload(request))
        checksum = phonepe_checksum(encoded, PAY_PATH, self.config.salt_key, self.config.salt_index)
        data = await self._send("POST", PAY_PATH, checksum, {"request": encoded})
        redirect_url = _dig(data, "data", "instrumentResponse", "redirectInfo", "url")
        if not isinstance(redirect_url, str) or not redirect_url:
            log.warning("phonepe_missing_redirect", merchant_transaction_id=request.merchant_transaction_id)
            raise GatewayError("PhonePe error: missing redirect URL", details={"code": data.get("code")})
        log.info(
            "phonepe_payment_created",
            merchant_transaction_id=request.merchant_transaction_id,
            amount_paise=request.amount_paise,
        )
        return PaymentSession(redirect_url=redirect_url, raw_response=data)

    async def get_payment_status(self, merchant_transaction_id: str) -> PaymentStatus:
        path = self.config.status_path(merchant_transaction_id)
        checksum = phonepe_checksum("", path, self.config.salt_key, self.config.salt_index)
        data = await self._send("GET", path, checksum)
        body = data.get("data")
        if not isinstance(body, dict) or not isinstance(body.get("state"), str) or not body["state"]:
            log.warning("phonepe_missing_state", merchant_transaction_id=merchant_transaction_id)
            raise GatewayError("PhonePe error: missing payment state", details={"code": data.get("code")})
        txn_id = body.get("transactionId")
        status = PaymentStatus(
            state=body["state"],
            gateway_transaction_id=txn_id if isinstance(txn_id, str) else None,
            response_code=body.get("responseCode") or data.get("code"),
            raw_response=data,
        )
        log.info(
            "phonepe_status",
            merchant_transaction_id=merchant_transaction_id,
            state=status.state,
            response_code=status.response_code,
        )
        return status
