#!/usr/bin/env python
"""Start the calendar sync worker (arq) on a fresh event loop."""

import asyncio
import logging

from arq.worker import Worker

from workblock.config import get_settings
from workblock.workers.tasks import WorkerSettings


async def main() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    logging.getLogger(__name__).info(
        "Calendar worker: %d functions, %d cron jobs",
        len(WorkerSettings.functions),
        len(WorkerSettings.cron_jobs),
    )
    worker = Worker(
        functions=WorkerSettings.functions,
        cron_jobs=WorkerSettings.cron_jobs,
        on_startup=WorkerSettings.on_startup,
        on_shutdown=WorkerSettings.on_shutdown,
        redis_settings=WorkerSettings.redis_settings,
        max_jobs=WorkerSettings.max_jobs,
        job_timeout=WorkerSettings.job_timeout,
        keep_result=WorkerSettings.keep_result,
    )
    await worker.main()


if __name__ == "__main__":
    asyncio.run(main())
