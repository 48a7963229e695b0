import asyncio
import signal

from dhis2_gateway.core.database import db_manager
from dhis2_gateway.core.dhis2_client import build_dhis2_client
from dhis2_gateway.core.logging import setup_logging, get_logger
from dhis2_gateway.core.redis_client import redis_client
from .worker_pool import WorkerPool

logger = get_logger(__name__)


async def main():
    setup_logging()
    await redis_client.connect()

    pool = WorkerPool(delivery=build_dhis2_client())
    logger.info("Aggregate worker starting", concurrency=pool.concurrency)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, pool.shutdown)

    try:
        await pool.run()
    finally:
        await redis_client.disconnect()
        await db_manager.close_connections()


if __name__ == "__main__":
    asyncio.run(main())
