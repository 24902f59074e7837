import asyncio
import logging
import signal
import sys

import asyncpg
import redis.asyncio as aioredis
from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from shared.logging import configure_logging, log_event, log_exception

from alarm_evaluator.context import TenantContext
from alarm_evaluator.orchestrator import Orchestrator
from alarm_evaluator.rules.registry import default_rules
from alarm_evaluator.scheduler import PollLoop
from alarm_evaluator.settings import Settings, load_settings

SERVICE_NAME = "alarm_evaluator"

logger = logging.getLogger(__name__)


async def _init_db_connection(conn: asyncpg.Connection) -> None:
    await conn.execute("SET statement_timeout TO 30000")


async def create_pool(settings: Settings) -> asyncpg.Pool:
    if settings.database_url:
        return await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=settings.pg_pool_min,
            max_size=settings.pg_pool_max,
            command_timeout=30,
            init=_init_db_connection,
        )
    return await asyncpg.create_pool(
        host=settings.db_host,
        port=settings.db_port,
        database=settings.db_name,
        user=settings.db_user,
        password=settings.db_password,
        ssl=settings.db_sslmode,
        min_size=settings.pg_pool_min,
        max_size=settings.pg_pool_max,
        command_timeout=30,
        init=_init_db_connection,
    )


async def create_redis(settings: Settings) -> aioredis.Redis:
    host, port = settings.redis_host_port
    client = aioredis.Redis(
        host=host,
        port=port,
        password=settings.redis_password or None,
        db=settings.redis_db,
    )
    await client.ping()
    return client


def build_health_app(contexts: list[TenantContext]) -> web.Application:
    async def health_handler(_request):
        return web.json_response(
            {
                "status": "ok",
                "service": SERVICE_NAME,
                "tenants": {ctx.tenant_id: dict(ctx.counters) for ctx in contexts},
            }
        )

    async def metrics_handler(_request):
        return web.Response(body=generate_latest(), content_type=CONTENT_TYPE_LATEST.split(";")[0])

    app = web.Application()
    app.router.add_get("/health", health_handler)
    app.router.add_get("/metrics", metrics_handler)
    return app


async def start_health_server(contexts: list[TenantContext], port: int) -> web.AppRunner:
    runner = web.AppRunner(build_health_app(contexts))
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()
    return runner


async def main() -> int:
    try:
        settings = load_settings()
    except RuntimeError as exc:
        configure_logging(SERVICE_NAME)
        log_exception(logger, "invalid configuration", exc)
        return 1
    configure_logging(SERVICE_NAME, settings.log_level, settings.log_format)

    pool = None
    redis = None
    runner = None
    try:
        try:
            pool = await create_pool(settings)
            redis = await create_redis(settings)
        except Exception as exc:
            log_exception(logger, "startup failed", exc, context={"redis_addr": settings.redis_addr})
            return 1

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)

        contexts = [
            TenantContext.create(tenant_id, settings, pool, redis, stop_event=stop_event)
            for tenant_id in settings.tenant_ids
        ]
        runner = await start_health_server(contexts, settings.health_port)
        log_event(
            logger,
            "alarm evaluator started",
            tenants=settings.tenant_ids,
            entity_source=settings.entity_source,
            interval=settings.poll_interval_seconds,
        )

        rules = default_rules(settings.thresholds)
        await asyncio.gather(*(PollLoop(ctx, Orchestrator(ctx, rules)).run() for ctx in contexts))
        return 0
    finally:
        if runner is not None:
            await runner.cleanup()
        if redis is not None:
            await redis.aclose()
        if pool is not None:
            await pool.close()
        log_event(logger, "alarm evaluator stopped")


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
