"""Run ARQ worker. Usage: python -m app.worker.run_worker"""

from arq import run_worker
from arq.cron import cron
from arq.worker import Worker

from app.worker.tasks import get_redis_settings, reconcile_pending_recharges, shutdown, startup


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [reconcile_pending_recharges]
    cron_jobs = [
        cron(reconcile_pending_recharges, minute=set(range(0, 60, 5)), second=0),  # every 5 minutes
    ]
    on_startup = startup
    on_shutdown = shutdown


def main() -> Worker:
    return run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
