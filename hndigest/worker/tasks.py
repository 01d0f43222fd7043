"""ARQ job definitions."""

import uuid
from typing import Any

from arq.connections import RedisSettings

from hndigest.core.config import get_settings
from hndigest.core.logging import bind_job, configure_logging, get_logger
from hndigest.models import FailedJob
from hndigest.storage.base import Storage, get_storage

log = get_logger(__name__)


async def _run_with_dlq(
    storage: Storage,
    job_name: str,
    job_id: str | None,
    args: list[Any],
    kwargs: dict[str, Any],
    coro,
) -> None:
    """Run coroutine; on exception persist a FailedJob then re-raise."""
    fid = job_id or str(uuid.uuid4())
    bind_job(job_name, fid)
    try:
        await coro
    except Exception as e:
        log.exception("job_failed", job=job_name, job_id=fid, reason=str(e))
        failed = FailedJob(
            job_name=job_name,
            job_id=fid,
            args=args,
            kwargs=kwargs,
            reason=str(e)[:2000],
            retries=0,
        )
        try:
            await storage.put_failed_job(failed)
        except Exception as store_error:
            log.error("failed_job_not_stored", job=job_name, job_id=fid, error=str(store_error))
        raise


async def send_daily_digests(ctx: dict[str, Any]) -> None:
    """Cron job: snapshot candidates and mail each strategy's digest."""
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None
    storage = ctx.get("storage") or get_storage()
    from hndigest.worker.cron import run_send_daily_digests

    async def _run() -> None:
        log.info("job_start", job="send_daily_digests")
        await run_send_daily_digests(storage=storage)
        log.info("job_done", job="send_daily_digests")

    await _run_with_dlq(storage, "send_daily_digests", job_id, [], {}, _run())


async def startup(ctx: dict) -> None:
    from hndigest.db.init import init_db
    configure_logging(debug=get_settings().debug)
    await init_db()
    ctx["storage"] = get_storage()


async def shutdown(ctx: dict) -> None:
    storage = ctx.get("storage")
    backend = getattr(storage, "backend", None)
    if backend is not None:
        await backend.close()


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
