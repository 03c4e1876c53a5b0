"""Recharge workflow: create a gateway payment, verify it, credit the wallet once."""

from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from enum import Enum

from beanie import PydanticObjectId

from app.core.audit import log_event
from app.core.config import get_settings
from app.core.exceptions import (
    GatewayError,
    InternalError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app.core.logging import get_logger
from app.models.recharge import Recharge, RechargeStatus
from app.models.user import User
from app.services import recharge_store, wallet
from app.services.phonepe import PaymentRequest, PhonePeClient

log = get_logger(__name__)

NOT_FOUND_CODE = "TRANSACTION_NOT_FOUND"


class VerifyMode(str, Enum):
    POLL = "poll"  # client polls with {rechargeId, merchantTransactionId}
    CALLBACK = "callback"  # gateway posts {merchantTransactionId, code, transactionId}


@dataclass
class VerifyRequest:
    recharge_id: str | None = None
    merchant_transaction_id: str | None = None
    code: str | None = None
    transaction_id: str | None = None


@dataclass
class VerifyOutcome:
    recharge: Recharge
    message: str  # Success | Failed | Pending


def verify_mode() -> VerifyMode:
    return VerifyMode(get_settings().recharge_verify_mode)


def _validate_amount(amount: Decimal | None) -> Decimal:
    if amount is None:
        raise ValidationError("Amount is required")
    if not amount.is_finite():
        raise ValidationError("Amount must be a number")
    if amount < 1:
        raise ValidationError("Amount must be at least 1")
    max_amount = get_settings().recharge_max_amount
    if amount > max_amount:
        raise ValidationError(f"Amount cannot exceed {max_amount}")
    return amount


async def create_recharge(user: User | None, amount: Decimal | None, gateway: PhonePeClient) -> dict:
    """Persist a pending recharge and open a gateway payment; delete the record if the gateway refuses."""
    if user is None:
        raise ValidationError("User not found")
    amount = _validate_amount(amount)
    recharge = await recharge_store.create(user.id, amount)
    try:
        session = await gateway.create_payment(
            PaymentRequest(
                merchant_transaction_id=recharge.merchant_transaction_id,
                merchant_user_id=str(user.id),
                amount_paise=recharge.amount_paise,
                mobile_number=user.phone,
            )
        )
    except GatewayError:
        await recharge_store.delete(recharge.id)
        await log_event(
            str(user.id),
            "recharge_rolled_back",
            str(recharge.id),
            {"merchant_transaction_id": recharge.merchant_transaction_id},
        )
        raise
    await log_event(
        str(user.id),
        "recharge_created",
        str(recharge.id),
        {"merchant_transaction_id": recharge.merchant_transaction_id, "amount_paise": recharge.amount_paise},
    )
    return {
        "success": True,
        "data": session.raw_response,
        "rechargeId": str(recharge.id),
        "redirectUrl": session.redirect_url,
    }


async def _resolve(body: VerifyRequest, mode: VerifyMode) -> Recharge:
    if mode is VerifyMode.POLL:
        if not body.recharge_id or not body.merchant_transaction_id:
            raise ValidationError("rechargeId and merchantTransactionId are required")
        recharge = await recharge_store.get(body.recharge_id)
        if recharge is None or recharge.merchant_transaction_id != body.merchant_transaction_id:
            raise NotFoundError("Recharge not found")
        return recharge
    if not body.merchant_transaction_id:
        raise ValidationError("merchantTransactionId is required")
    recharge = await recharge_store.find_by_merchant_transaction_id(body.merchant_transaction_id)
    if recharge is None:
        raise NotFoundError("Recharge not found")
    # Callback values are informational only; the status API decides
    log.info(
        "recharge_callback",
        recharge_id=str(recharge.id),
        code=body.code,
        transaction_id=body.transaction_id,
    )
    return recharge


def _terminal_message(recharge: Recharge) -> str:
    return "Success" if recharge.status == RechargeStatus.COMPLETED else "Failed"


async def _credit_wallet(recharge: Recharge) -> None:
    try:
        credited = await wallet.credit(recharge.user_id, recharge.amount_paise)
    except Exception as e:
        # Record stays completed; the uncredited wallet is a reconciliation case
        log.exception(
            "wallet_credit_failed",
            recharge_id=str(recharge.id),
            user_id=str(recharge.user_id),
            amount_paise=recharge.amount_paise,
        )
        raise InternalError("Error updating wallet balance") from e
    if not credited:
        log.warning(
            "wallet_credit_skipped_user_missing",
            recharge_id=str(recharge.id),
            user_id=str(recharge.user_id),
        )
        return
    log.info(
        "wallet_credited",
        recharge_id=str(recharge.id),
        user_id=str(recharge.user_id),
        amount_paise=recharge.amount_paise,
    )
    await log_event(
        str(recharge.user_id),
        "wallet_credited",
        str(recharge.id),
        {"amount_paise": recharge.amount_paise},
        entity_type="wallet",
    )


async def settle(recharge: Recharge, gateway: PhonePeClient) -> VerifyOutcome:
    """Ask the gateway for the payment state and apply the terminal transition at most once."""
    if recharge.is_terminal:
        return VerifyOutcome(recharge, _terminal_message(recharge))

    status = await gateway.get_payment_status(recharge.merchant_transaction_id)
    if status.is_pending:
        return VerifyOutcome(recharge, "Pending")

    try:
        if status.is_completed:
            updated = await recharge_store.mark_completed(
                recharge.id, status.gateway_transaction_id, status.response_code
            )
        else:
            updated = await recharge_store.mark_failed(recharge.id, status.response_code)
    except InvalidStateError:
        # Another verifier settled it first and owns the wallet credit
        current = await recharge_store.get(recharge.id)
        if current is None:
            raise NotFoundError("Recharge not found")
        log.info("recharge_already_settled", recharge_id=str(recharge.id), status=current.status.value)
        return VerifyOutcome(current, _terminal_message(current))

    await log_event(
        str(updated.user_id),
        f"recharge_{updated.status.value}",
        str(updated.id),
        {"response_code": status.response_code, "gateway_transaction_id": status.gateway_transaction_id},
    )
    if status.is_completed:
        await _credit_wallet(updated)
    return VerifyOutcome(updated, _terminal_message(updated))


async def verify_recharge(body: VerifyRequest, gateway: PhonePeClient, mode: VerifyMode | None = None) -> dict:
    recharge = await _resolve(body, mode or verify_mode())
    outcome = await settle(recharge, gateway)
    return {
        "success": True,
        "message": outcome.message,
        "recharge": outcome.recharge.to_public(),
    }


async def get_history(user_id: PydanticObjectId, limit: int, offset: int) -> dict:
    recharges = await recharge_store.list_by_user(user_id, limit=limit, offset=offset)
    return {
        "success": True,
        "recharges": [r.to_public() for r in recharges],
        "limit": limit,
        "offset": offset,
    }


async def get_balance(user_id: PydanticObjectId) -> dict:
    balance = await wallet.get_balance(user_id)
    return {"success": True, "balance": float(balance)}


async def _note_unsettled(recharge: Recharge, code: str | None) -> bool:
    """Count a check that settled nothing; True when a record the gateway never saw is given up as failed."""
    attempts = await recharge_store.record_reconcile_attempt(recharge.id)
    if attempts is None or code != NOT_FOUND_CODE:
        return False
    if attempts < get_settings().recharge_reconcile_max_attempts:
        return False
    try:
        failed = await recharge_store.mark_failed(recharge.id, code)
    except InvalidStateError:
        return False
    log.warning("reconcile_gave_up", recharge_id=str(recharge.id), attempts=attempts, code=code)
    await log_event(
        str(failed.user_id),
        "recharge_failed",
        str(failed.id),
        {"response_code": code, "reconcile_attempts": attempts},
    )
    return True


async def reconcile_pending(gateway: PhonePeClient, older_than: timedelta | None = None) -> dict[str, int]:
    """Settle pending recharges nobody verified (lost callback, abandoned client poll)."""
    settings = get_settings()
    if older_than is None:
        older_than = timedelta(minutes=settings.recharge_reconcile_after_minutes)
    counts = {"checked": 0, "completed": 0, "failed": 0, "pending": 0, "errors": 0}
    stale = await recharge_store.list_stale_pending(older_than, limit=settings.recharge_reconcile_batch_size)
    for recharge in stale:
        counts["checked"] += 1
        try:
            outcome = await settle(recharge, gateway)
        except GatewayError as e:
            log.warning("reconcile_error", recharge_id=str(recharge.id), error=e.message)
            gave_up = await _note_unsettled(recharge, e.details.get("code"))
            counts["failed" if gave_up else "errors"] += 1
            continue
        except InternalError as e:
            counts["errors"] += 1
            log.warning("reconcile_error", recharge_id=str(recharge.id), error=e.message)
            continue
        key = {"Success": "completed", "Failed": "failed"}.get(outcome.message, "pending")
        counts[key] += 1
        if key == "pending":
            await _note_unsettled(recharge, None)
    if counts["checked"]:
        log.info("reconcile_pending_done", **counts)
    return counts
