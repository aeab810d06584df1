"""FastAPI application factory for Slacord.

All route modules under :mod:`slacord.http.routes` expose an ``APIRouter``
instance named ``router``. ``create_app`` imports each module and registers
its router, so adding a route module is enough to publish it. The relay
services are attached to ``app.state`` and reach handlers through
:func:`slacord.http.deps.get_services`.
"""

from __future__ import annotations

from importlib import import_module
import pkgutil

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

import structlog

from ..errors import RelayError, UpstreamError
from ..services import RelayServices


logger = structlog.get_logger()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request and whether it succeeds or fails."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        logger.info("request.start", method=request.method, path=request.url.path)
        try:
            response = await call_next(request)
            logger.info(
                "request.success",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
            )
            return response
        except Exception as exc:  # pragma: no cover - logged then re-raised
            logger.exception(
                "request.failure",
                method=request.method,
                path=request.url.path,
                error=str(exc),
            )
            raise


async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    if isinstance(exc, UpstreamError):
        logger.warning(
            "request.upstream_error",
            path=request.url.path,
            service=exc.service,
            code=exc.code,
            error=exc.message,
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app(services: RelayServices | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(title="Slacord")
    app.state.services = services
    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(RelayError, relay_error_handler)

    @app.get("/health")
    async def health() -> dict[str, object]:
        """Simple health check endpoint."""
        result: dict[str, object] = {"status": "ok"}
        if services is not None:
            result["pendingForwards"] = services.dispatcher.pending_forwards
        return result

    # Dynamically include routers from all modules in the routes package
    from . import routes as routes_pkg

    for _, module_name, _ in pkgutil.iter_modules(routes_pkg.__path__):
        module = import_module(f"{routes_pkg.__name__}.{module_name}")
        router = getattr(module, "router", None)
        if router is not None:
            app.include_router(router)

    return app
