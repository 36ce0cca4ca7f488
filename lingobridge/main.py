from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lingobridge.app import IncludeAPIRouter, logger_instance
from lingobridge.core.logging import LoggingMiddleware, setup_logging
from lingobridge.services.translation_engine import TranslationEngine, build_engine
from lingobridge.utils.config import settings


logger = logger_instance.get_logger(__name__)


def create_lifespan(engine_factory: Callable[[], TranslationEngine]):
    """Lifespan that builds the engine on startup and stops it on shutdown."""

    @asynccontextmanager
    async def app_lifespan(app: FastAPI):
        # ----------------------------------------------------
        # STARTUP
        # ----------------------------------------------------
        logger.info("Starting application...")
        engine = engine_factory()
        await engine.start()
        app.state.engine = engine
        logger.info('event=app-startup')

        yield

        # ----------------------------------------------------
        # SHUTDOWN
        # ----------------------------------------------------
        await engine.stop()
        logger.info('event=app-shutdown message="All connections are closed."')

    return app_lifespan


def get_application(lifespan: Any = None, engine_factory: Optional[Callable[[], TranslationEngine]] = None) -> FastAPI:
    IS_PROD = settings.ENV_STATE == "prod"
    if lifespan is None:
        lifespan = create_lifespan(engine_factory or (lambda: build_engine(settings)))

    _app = FastAPI(lifespan=lifespan,
                   title=settings.API_NAME,
                   version=settings.API_VERSION,
                   # Disable docs & openapi when in production
                   docs_url=None if IS_PROD else "/docs",
                   redoc_url=None if IS_PROD else "/redoc",
                   openapi_url=None if IS_PROD else "/openapi.json",
                   )

    _app.include_router(IncludeAPIRouter())

    _app.add_middleware(LoggingMiddleware)
    _app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return _app


setup_logging(level=settings.LOG_LEVEL)

# Create FastAPI application object
app = get_application()


if __name__ == '__main__':
    uvicorn.run('lingobridge.main:app',
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        workers=settings.UVICORN_WORKERS,
    )
