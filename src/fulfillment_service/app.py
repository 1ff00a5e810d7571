"""FastAPI application factory for the fulfillment service."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fulfillment_service import __version__
from fulfillment_service.config import get_settings
from fulfillment_service.exceptions import FulfillmentError
from fulfillment_service.logging import configure_logging, get_logger
from fulfillment_service.routes import api_router

ERROR_STATUS = {
    "validation": 400,
    "precondition": 400,
    "contention": 409,
    "not_found": 404,
    "permission": 403,
}

log = get_logger("api")


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level, serialize=settings.environment == "production")

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(FulfillmentError)
    async def fulfillment_error_handler(request: Request, exc: FulfillmentError) -> JSONResponse:
        status_code = ERROR_STATUS.get(exc.kind, 500)
        if status_code >= 500:
            log.opt(exception=exc).error("Unhandled fulfillment error", path=request.url.path, code=exc.code)
        else:
            log.warning("Request rejected", path=request.url.path, code=exc.code, kind=exc.kind)
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    app.include_router(api_router)

    @app.get("/health", tags=["monitoring"], summary="Return service health status")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    return app
