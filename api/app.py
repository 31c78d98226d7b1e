"""FastAPI application for the collection scheduling engine."""
import asyncio
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from api import bins_api, routes_api, schedules_api
from api.deps import error, get_engine, success
from configurations.config import Config
from core.engine import SchedulingEngine
from core.exceptions import (
    ConflictError,
    DataConsistencyError,
    GeoLookupError,
    InvalidStateError,
    NotFoundError,
    RouteBuildError,
    SchedulingError,
    ValidationError,
)

ERROR_STATUS = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (InvalidStateError, 409),
    (DataConsistencyError, 422),
    (GeoLookupError, 502),
    (RouteBuildError, 502),
]


def status_for(exc: SchedulingError) -> int:
    for exc_type, status_code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status_code
    return 500


def create_app(engine: Optional[SchedulingEngine] = None, run_sweeps: Optional[bool] = None) -> FastAPI:
    sweeps_enabled = Config.SWEEP_ENABLED if run_sweeps is None else run_sweeps

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "engine", None) is None:
            app.state.engine = SchedulingEngine.from_config()
        sweep_task = None
        if sweeps_enabled:
            sweep_task = asyncio.create_task(app.state.engine.agent.run_forever())

        yield

        if sweep_task:
            app.state.engine.agent.stop()
            sweep_task.cancel()
            with suppress(asyncio.CancelledError):
                await sweep_task
        app.state.engine.shutdown()

    app = FastAPI(
        title="Collection Scheduling & Route Optimization API",
        description="Bin priorities, collection schedules and optimized collection routes",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SchedulingError)
    async def scheduling_error_handler(request: Request, exc: SchedulingError):
        status_code = status_for(exc)
        logger.warning(f"{request.method} {request.url.path} -> {status_code} {type(exc).__name__}: {exc}")
        return error(exc, status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return error(ValidationError(str(exc.errors())), 400)

    app.include_router(bins_api.router)
    app.include_router(schedules_api.router)
    app.include_router(routes_api.router)

    @app.post("/api/sweeps")
    def run_sweep(engine: SchedulingEngine = Depends(get_engine)):
        """Run one scheduling sweep now."""
        report = engine.agent.run_sweep()
        if report is None:
            return error(ConflictError("A sweep is already running"), 409)
        return success(report.to_dict())

    @app.get("/api/sweeps/last")
    def last_sweep(engine: SchedulingEngine = Depends(get_engine)):
        report = engine.agent.last_report
        return success(report.to_dict() if report else None)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app
