"""FastAPI application hosting the job scheduler service and its admin endpoints."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from shortlink_jobs.api.dependencies import set_scheduler_service
from shortlink_jobs.api.routers import create_router
from shortlink_jobs.configs.env_config import Env
from shortlink_jobs.model.jobs import ScheduleConfig
from shortlink_jobs.repository.factory import StoreFactory
from shortlink_jobs.scheduler.service import JobSchedulerService
from shortlink_jobs.utils.logger_factory import EnhancedLoggerFactory


def _build_service_from_env():
    Env.validate()
    logger = EnhancedLoggerFactory.create_application_logger(
        name="scheduler", enable_stdout=True, config_prefix="system"
    )
    stores = StoreFactory()
    url_store, token_store = stores.get_stores()
    service = JobSchedulerService(
        url_store, token_store, logger=logger, config=ScheduleConfig.from_env()
    )
    return service, logger, stores


def create_app(service: Optional[JobSchedulerService] = None) -> FastAPI:
    """Build the admin app.

    :param service: Prebuilt service; when omitted one is built from the
        environment on startup, together with its logger and stores.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned_logger = None
        owned_stores = None
        svc = service
        if svc is None:
            svc, owned_logger, owned_stores = _build_service_from_env()
            await owned_logger.start()

        set_scheduler_service(svc)
        svc.start_scheduler()
        try:
            yield
        finally:
            try:
                await svc.shutdown()
            finally:
                set_scheduler_service(None)
                if owned_stores is not None:
                    owned_stores.close()
                if owned_logger is not None:
                    await owned_logger.shutdown()

    app = FastAPI(title="Shortlink Background Jobs API", version="1.0.0", lifespan=lifespan)
    app.include_router(create_router())
    return app


app = create_app()
