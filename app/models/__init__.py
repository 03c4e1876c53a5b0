from app.models.user import User
from app.models.recharge import Recharge, RechargeStatus
from app.models.audit_log import AuditLog

__all__ = [
    "User",
    "Recharge",
    "RechargeStatus",
    "AuditLog",
]
