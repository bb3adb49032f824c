import asyncio

from shortlink_jobs.configs.env_config import Env
from shortlink_jobs.model.jobs import ScheduleConfig
from shortlink_jobs.repository.factory import StoreFactory
from shortlink_jobs.scheduler.service import JobSchedulerService
from shortlink_jobs.scheduler.signal_handlers import install_signal_handlers
from shortlink_jobs.utils.logger_factory import EnhancedLoggerFactory, log_exception


async def main():
    etl_logger = EnhancedLoggerFactory.create_application_logger(
        name="scheduler", enable_stdout=True, config_prefix="system"
    )
    await etl_logger.start()
    stop_event = asyncio.Event()
    stores = StoreFactory()

    try:
        Env.validate()
        url_store, token_store = stores.get_stores()
        service = JobSchedulerService(
            url_store, token_store, logger=etl_logger, config=ScheduleConfig.from_env()
        )
        loop = asyncio.get_running_loop()
        install_signal_handlers(service, loop, etl_logger=etl_logger, stop_event=stop_event)

        if not service.start_scheduler():
            etl_logger.warning("Job scheduler not started; exiting")
            return
        await stop_event.wait()
    except Exception as e:
        log_exception(etl_logger, e, context="bootstrap")
        raise
    finally:
        stores.close()
        try:
            await etl_logger.shutdown()
        except Exception as e:
            log_exception(etl_logger, e, context="main_final_shutdown")


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
