"""Run ARQ worker. Usage: python -m hndigest.worker.run_worker"""

from arq import run_worker
from arq.cron import cron

from hndigest.core.config import get_settings
from hndigest.worker.tasks import get_redis_settings, send_daily_digests, shutdown, startup


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [send_daily_digests]
    cron_jobs = [
        # once a day at SNAPSHOT_HOUR:00 UTC
        cron(send_daily_digests, hour=get_settings().snapshot_hour, minute=0),
    ]
    on_startup = startup
    on_shutdown = shutdown


def main() -> None:
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
