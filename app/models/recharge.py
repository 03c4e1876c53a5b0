from datetime import datetime
from enum import Enum

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel

from app.core.money import money_to_float


class RechargeStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({RechargeStatus.COMPLETED, RechargeStatus.FAILED})


class Recharge(Document):
    """One wallet top-up attempt, correlated with the gateway by merchant_transaction_id."""
    user_id: PydanticObjectId
    amount_paise: int = Field(ge=100)
    merchant_transaction_id: Indexed(str, unique=True)
    gateway_transaction_id: str | None = None  # set once the gateway confirms
    gateway_response_code: str | None = None
    status: RechargeStatus = RechargeStatus.PENDING
    reconcile_attempts: int = 0  # background status checks that settled nothing
    last_reconciled_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "recharges"
        keep_nulls = False  # sparse unique index below relies on absent fields
        indexes = [
            IndexModel([("user_id", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("gateway_transaction_id", ASCENDING)], unique=True, sparse=True),
            IndexModel([("status", ASCENDING), ("reconcile_attempts", ASCENDING), ("created_at", ASCENDING)]),
        ]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_public(self) -> dict:
        return {
            "id": str(self.id),
            "user": str(self.user_id),
            "amount": money_to_float(self.amount_paise),
            "merchantTransactionId": self.merchant_transaction_id,
            "gatewayTransactionId": self.gateway_transaction_id,
            "gatewayResponseCode": self.gateway_response_code,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
