import base64
import hashlib
import json
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from app.core.config import get_settings

SESSION_MAX_AGE = 7 * 24 * 3600  # 7 days
CHECKSUM_SEPARATOR = "###"


def get_session_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="wallet-session",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_session_cookie(payload: dict[str, Any]) -> str:
    return get_session_serializer().dumps(payload)


def load_session_cookie(cookie_value: str, max_age_seconds: int = SESSION_MAX_AGE) -> dict[str, Any] | None:
    serializer = get_session_serializer()
    try:
        return serializer.loads(cookie_value, max_age=max_age_seconds)
    except (BadSignature, SignatureExpired):
        return None


def encode_payload(payload: dict[str, Any]) -> str:
    """JSON-encode and base64 the gateway request payload."""
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def phonepe_checksum(encoded_payload: str, api_path: str, salt_key: str, salt_index: str) -> str:
    """
    X-VERIFY header value: sha256(payload + path + salt key) as hex, then ``###`` and the key index.
    Status calls sign an empty payload, i.e. just the path.
    """
    digest = hashlib.sha256(f"{encoded_payload}{api_path}{salt_key}".encode("utf-8")).hexdigest()
    return f"{digest}{CHECKSUM_SEPARATOR}{salt_index}"
