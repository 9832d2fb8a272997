"""FastAPI application entrypoint for the Kitchen Logistics API."""

from __future__ import annotations

import logging
import os
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .deps import SessionLocal, engine
from .errors import LogisticsError
from .models import Base
from .notifications import NotificationDispatcher, build_sink
from .routers import audit, auth, branches, distributions, materials, requests, schools, stocks, users

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("kitchen-logistics")

app = FastAPI(title="Kitchen Logistics API", version="0.1.0")

cors_origins_env = os.getenv(
    "KITCHEN_API_CORS_ORIGINS",
    "http://localhost:3000,http://localhost:8080",
)
allow_origins = [origin.strip() for origin in cors_origins_env.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def _create_tables() -> None:
    """Ensure the database schema exists before serving requests."""

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured")


@app.on_event("startup")
async def _start_notifications() -> None:
    app.state.notifier = NotificationDispatcher(build_sink(), SessionLocal)
    await app.state.notifier.start()
    logger.info("Notification worker started")


@app.on_event("shutdown")
async def _stop_notifications() -> None:
    notifier = getattr(app.state, "notifier", None)
    if notifier is not None:
        await notifier.stop()


@app.exception_handler(LogisticsError)
async def _logistics_exception_handler(request: Request, exc: LogisticsError) -> JSONResponse:
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(HTTPException)
async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:  # pragma: no cover - integration glue
    detail = exc.detail
    if isinstance(detail, dict):
        payload: dict[str, Any] = {
            "detail": str(detail.get("detail", "Internal error")),
            "code": str(detail.get("code", f"http.{exc.status_code}")),
        }
    elif isinstance(detail, str):
        payload = {"detail": detail, "code": f"http.{exc.status_code}"}
    else:
        payload = {"detail": "Unexpected error", "code": "http.unexpected"}
    if exc.headers:
        return JSONResponse(status_code=exc.status_code, content=payload, headers=exc.headers)
    return JSONResponse(status_code=exc.status_code, content=payload)


@app.exception_handler(RequestValidationError)
async def _validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:  # pragma: no cover - integration glue
    payload = {"detail": "Validation error", "code": "validation_error", "errors": jsonable_errors(exc)}
    return JSONResponse(status_code=422, content=payload)


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    # ctx may hold exception instances that are not JSON serializable
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]


app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(users.router, prefix="/users", tags=["users"])
app.include_router(branches.router, prefix="/branches", tags=["branches"])
app.include_router(materials.router, prefix="/materials", tags=["materials"])
app.include_router(schools.router, prefix="/schools", tags=["schools"])
app.include_router(stocks.router, prefix="/stocks", tags=["stocks"])
app.include_router(requests.router, prefix="/requests", tags=["requests"])
app.include_router(distributions.router, prefix="/distributions", tags=["distributions"])
app.include_router(audit.router, prefix="/audit", tags=["audit"])


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    return {"status": "ok"}
