"""Recharge records: creation, lookup, compensating delete and one-shot terminal transitions."""

import uuid
from datetime import datetime, timedelta
from decimal import Decimal

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import Inc, Set
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING

from app.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.core.money import to_paise
from app.models.recharge import Recharge, RechargeStatus

log = get_logger(__name__)

MIN_AMOUNT_PAISE = 100  # 1 rupee
MERCHANT_TXN_PREFIX = "MT"


def new_merchant_transaction_id() -> str:
    """MT + UTC timestamp + 12 random hex chars (26 chars; gateway allows up to 35)."""
    return f"{MERCHANT_TXN_PREFIX}{datetime.utcnow():%y%m%d%H%M%S}{uuid.uuid4().hex[:12].upper()}"


def _object_id(value: str | PydanticObjectId) -> PydanticObjectId | None:
    if isinstance(value, PydanticObjectId):
        return value
    try:
        return PydanticObjectId(value)
    except (InvalidId, TypeError):
        return None


async def create(user_id: PydanticObjectId, amount: Decimal | int | float) -> Recharge:
    try:
        amount_paise = to_paise(amount)
    except ValueError as e:
        raise ValidationError("Amount must be a number") from e
    if amount_paise < MIN_AMOUNT_PAISE:
        raise ValidationError("Amount must be at least 1")
    recharge = Recharge(
        user_id=user_id,
        amount_paise=amount_paise,
        merchant_transaction_id=new_merchant_transaction_id(),
    )
    await recharge.insert()
    log.info(
        "recharge_created",
        recharge_id=str(recharge.id),
        user_id=str(user_id),
        merchant_transaction_id=recharge.merchant_transaction_id,
        amount_paise=amount_paise,
    )
    return recharge


async def get(recharge_id: str | PydanticObjectId) -> Recharge | None:
    oid = _object_id(recharge_id)
    if oid is None:
        return None
    return await Recharge.get(oid)


async def find_by_merchant_transaction_id(merchant_transaction_id: str) -> Recharge | None:
    return await Recharge.find_one(Recharge.merchant_transaction_id == merchant_transaction_id)


async def delete(recharge_id: PydanticObjectId) -> None:
    """Compensating removal when the gateway never accepted the payment."""
    await Recharge.find_one(Recharge.id == recharge_id).delete()
    log.info("recharge_deleted", recharge_id=str(recharge_id))


async def _transition(recharge_id: PydanticObjectId, status: RechargeStatus, fields: dict) -> Recharge:
    # Conditional on status == pending so concurrent verifiers cannot both win
    updated = await Recharge.find_one(
        Recharge.id == recharge_id,
        Recharge.status == RechargeStatus.PENDING,
    ).update(
        Set({Recharge.status: status.value, Recharge.updated_at: datetime.utcnow(), **fields}),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if updated is not None:
        return updated
    current = await Recharge.get(recharge_id)
    if current is None:
        raise NotFoundError("Recharge not found")
    raise InvalidStateError(
        f"Recharge is already {current.status.value}",
        details={"recharge_id": str(recharge_id), "status": current.status.value},
    )


async def mark_completed(
    recharge_id: PydanticObjectId,
    gateway_transaction_id: str | None,
    response_code: str | None,
) -> Recharge:
    fields = {Recharge.gateway_response_code: response_code}
    if gateway_transaction_id:
        fields[Recharge.gateway_transaction_id] = gateway_transaction_id
    return await _transition(recharge_id, RechargeStatus.COMPLETED, fields)


async def mark_failed(recharge_id: PydanticObjectId, response_code: str | None) -> Recharge:
    return await _transition(recharge_id, RechargeStatus.FAILED, {Recharge.gateway_response_code: response_code})


async def list_by_user(user_id: PydanticObjectId, limit: int = 50, offset: int = 0) -> list[Recharge]:
    """Newest first; _id breaks ties between records created in the same millisecond."""
    return (
        await Recharge.find(Recharge.user_id == user_id)
        .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        .skip(offset)
        .limit(limit)
        .to_list()
    )


async def list_stale_pending(older_than: timedelta, limit: int = 100) -> list[Recharge]:
    """Least-checked first, so records the gateway keeps rejecting cannot starve newer ones."""
    cutoff = datetime.utcnow() - older_than
    return (
        await Recharge.find(
            Recharge.status == RechargeStatus.PENDING,
            Recharge.created_at <= cutoff,
        )
        .sort([("reconcile_attempts", ASCENDING), ("created_at", ASCENDING)])
        .limit(limit)
        .to_list()
    )


async def record_reconcile_attempt(recharge_id: PydanticObjectId) -> int | None:
    """Count one unsettled background check; None when the record is no longer pending."""
    now = datetime.utcnow()
    updated = await Recharge.find_one(
        Recharge.id == recharge_id,
        Recharge.status == RechargeStatus.PENDING,
    ).update(
        Inc({Recharge.reconcile_attempts: 1}),
        Set({Recharge.last_reconciled_at: now, Recharge.updated_at: now}),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    return updated.reconcile_attempts if updated is not None else None
