from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from taskqueue.config.logging import get_logger, setup_logging
from taskqueue.config.settings import Settings, settings as default_settings
from taskqueue.core.exceptions import (
    RequestContextMiddleware,
    TaskQueueException,
    general_exception_handler,
    http_exception_handler,
    task_queue_exception_handler,
)
from taskqueue.core.registries import job_registry
from taskqueue.infra.database import Database, get_app_database
from taskqueue.jobs.registry_init import register_job_handlers
from taskqueue.jobs.routes import router as jobs_router
from taskqueue.jobs.worker import build_worker_pool

logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None, database: Database | None = None
) -> FastAPI:
    """Create and configure the FastAPI application.

    Routes and the worker pool share `settings` and `database`. Without a
    database the process-wide one for `settings` is opened on first use.
    """
    settings = settings or default_settings

    setup_logging(settings)
    register_job_handlers(job_registry)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.worker_pool = None
        if settings.worker_enabled:
            pool = build_worker_pool(settings, get_app_database(app))
            await pool.start()
            app.state.worker_pool = pool
        try:
            yield
        finally:
            if app.state.worker_pool is not None:
                await app.state.worker_pool.stop()

    app = FastAPI(
        title=settings.app_name,
        description="Background job pipeline for task side effects",
        version=settings.version,
        debug=settings.debug,
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.database = database

    app.add_middleware(RequestContextMiddleware)

    app.add_exception_handler(TaskQueueException, task_queue_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(jobs_router, prefix="/v1")

    # Handlers are fixed once the app is built outside development
    if settings.environment != "development":
        job_registry.freeze()

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "taskqueue.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
    )
