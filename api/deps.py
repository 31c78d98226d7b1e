"""Shared helpers for the API routers."""
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from core.engine import SchedulingEngine


def get_engine(request: Request) -> SchedulingEngine:
    return request.app.state.engine


def success(data: Any, status_code: int = 200, **extra) -> JSONResponse:
    body = {"status": "success", "data": data}
    body.update(extra)
    return JSONResponse(body, status_code=status_code)


def error(exc: Exception, status_code: int) -> JSONResponse:
    return JSONResponse(
        {"status": "error", "error": type(exc).__name__, "message": str(exc)},
        status_code=status_code,
    )
