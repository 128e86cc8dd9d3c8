# paydriver/main.py
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from paydriver import database
from paydriver.core.config import settings
from paydriver.core.logging import configure_logging
from paydriver.exceptions import PaymentError
from paydriver.payments import DriverRegistry, register_builtin_drivers

logger = structlog.get_logger(__name__)


def create_app(
    registry: Optional[DriverRegistry] = None,
    driver_name: Optional[str] = None,
    engine: Optional[Engine] = None,
    driver_config: Optional[str] = None,
) -> FastAPI:
    """
    Build the API. The payment backend named ``driver_name`` (default
    ``settings.PAYMENT_DRIVER``) is opened from ``registry`` and installs the
    card routes on the app. The opened Conn is kept on ``app.state.payment_conn``
    for host code that charges cards or registers users.
    """
    if registry is None:
        registry = register_builtin_drivers(DriverRegistry())
    driver_name = driver_name or settings.PAYMENT_DRIVER
    if engine is None:
        bind, session_factory = database.engine, database.SessionLocal
    else:
        bind = engine
        session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create database tables
        database.Base.metadata.create_all(bind=bind)
        yield
        await registry.close_all()

    fastapi_kwargs = {
        "title": settings.PROJECT_NAME,
        "version": "0.1.0",
        "lifespan": lifespan,
    }

    if settings.ENV == 'prod':
        fastapi_kwargs["docs_url"] = None
        fastapi_kwargs["redoc_url"] = None
        fastapi_kwargs["openapi_url"] = None

    app = FastAPI(**fastapi_kwargs)

    if settings.ENV == 'nonprod':
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(PaymentError)
    async def payment_error_handler(request: Request, exc: PaymentError):
        logger.info(
            "payment_error",
            code=exc.code,
            operation=exc.operation,
            identifier=exc.identifier,
            path=request.url.path,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    app.state.registry = registry
    app.state.session_factory = session_factory
    app.state.payment_conn = registry.open(driver_name, session_factory, app, driver_config)

    @app.get("/", tags=["Root"])
    async def read_root():
        return {"message": "Welcome to PayDriver API!", "driver": driver_name}

    return app


configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
app = create_app()
