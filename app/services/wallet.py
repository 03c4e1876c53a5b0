"""Wallet balance reads and atomic credits."""

from datetime import datetime
from decimal import Decimal

from beanie import PydanticObjectId
from beanie.operators import Inc, Set

from app.core.exceptions import NotFoundError
from app.core.money import from_paise
from app.models.user import User


async def get_balance(user_id: PydanticObjectId) -> Decimal:
    user = await User.get(user_id)
    if not user:
        raise NotFoundError("User not found")
    return from_paise(user.wallet_balance_paise)


async def credit(user_id: PydanticObjectId, amount_paise: int) -> bool:
    """
    Add amount_paise to the user's wallet with a single $inc.
    Returns False if the user does not exist. Callers guarantee exactly-once
    by crediting only after winning the pending -> completed transition.
    """
    result = await User.find_one(User.id == user_id).update(
        Inc({User.wallet_balance_paise: amount_paise}),
        Set({User.updated_at: datetime.utcnow()}),
    )
    return bool(result and result.matched_count)
