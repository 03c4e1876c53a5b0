from decimal import Decimal

from fastapi import APIRouter, Depends, Query, status
from pydantic import AliasChoices, BaseModel, Field

from app.core.pagination import paginate
from app.deps import get_current_user, get_gateway
from app.models.user import User
from app.services import recharges as recharge_service
from app.services.phonepe import PhonePeClient

router = APIRouter()


class CreateRechargeRequest(BaseModel):
    amount: Decimal | None = None  # rupees; validated by the workflow so missing is a 400


class VerifyRechargeRequest(BaseModel):
    recharge_id: str | None = Field(default=None, validation_alias=AliasChoices("rechargeId", "recharge_id"))
    merchant_transaction_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "merchantTransactionId", "phonepeMerchantTransactionId", "merchant_transaction_id"
        ),
    )
    code: str | None = None
    transaction_id: str | None = Field(default=None, validation_alias=AliasChoices("transactionId", "transaction_id"))


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_recharge(
    body: CreateRechargeRequest,
    user: User = Depends(get_current_user),
    gateway: PhonePeClient = Depends(get_gateway),
):
    """Open a PhonePe pay page; frontend redirects to data.instrumentResponse.redirectInfo.url."""
    return await recharge_service.create_recharge(user, body.amount, gateway)


@router.post("/verify")
async def verify_recharge(
    body: VerifyRechargeRequest,
    gateway: PhonePeClient = Depends(get_gateway),
):
    """Public: called by the client after redirect, or by PhonePe server-to-server."""
    return await recharge_service.verify_recharge(
        recharge_service.VerifyRequest(
            recharge_id=body.recharge_id,
            merchant_transaction_id=body.merchant_transaction_id,
            code=body.code,
            transaction_id=body.transaction_id,
        ),
        gateway,
    )


@router.get("/history")
async def recharge_history(
    user: User = Depends(get_current_user),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Current user's recharges (newest first)."""
    limit, offset = paginate(limit, offset)
    return await recharge_service.get_history(user.id, limit, offset)


@router.get("/balance")
async def wallet_balance(user: User = Depends(get_current_user)):
    return await recharge_service.get_balance(user.id)
