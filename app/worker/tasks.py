"""ARQ job definitions."""

from typing import Any

from arq.connections import RedisSettings

from app.core.config import get_settings
from app.core.logging import configure_logging, get_logger
from app.services.phonepe import GatewayConfig, PhonePeClient
from app.services.recharges import reconcile_pending

log = get_logger(__name__)


async def reconcile_pending_recharges(ctx: dict[str, Any]) -> dict[str, int]:
    """Cron: poll the gateway for recharges still pending after the reconcile window."""
    log.info("job_start", job="reconcile_pending_recharges")
    counts = await reconcile_pending(ctx["gateway"])
    log.info("job_done", job="reconcile_pending_recharges", **counts)
    return counts


async def startup(ctx: dict) -> None:
    from app.db.init import init_db
    settings = get_settings()
    configure_logging(debug=settings.debug)
    ctx["gateway"] = PhonePeClient(GatewayConfig.from_settings(settings))
    await init_db()


async def shutdown(ctx: dict) -> None:
    gateway = ctx.get("gateway")
    if gateway is not None:
        await gateway.aclose()


def get_redis_settings() -> RedisSettings:
    from urllib.parse import urlparse
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
    )
