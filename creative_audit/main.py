import logging
import sys

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from creative_audit.clients.audit_api import AuditApiConfigError, AuditApiError
from creative_audit.config import settings
from creative_audit.routers import analysis, sync
from creative_audit.services.policy_resolver import NoPolicyAvailableError

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    resolved = (level or settings.LOG_LEVEL or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, resolved, logging.INFO),
        stream=sys.stdout,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Creative Audit Ops API",
        default_response_class=ORJSONResponse,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AuditApiConfigError)
    async def audit_api_config_error_handler(_request: Request, exc: AuditApiConfigError) -> ORJSONResponse:
        return ORJSONResponse(status_code=500, content={"detail": str(exc)})

    @app.exception_handler(NoPolicyAvailableError)
    async def no_policy_available_handler(_request: Request, exc: NoPolicyAvailableError) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=409,
            content={"detail": {"code": "no_policy_available", "message": str(exc)}},
        )

    @app.exception_handler(AuditApiError)
    async def audit_api_error_handler(_request: Request, exc: AuditApiError) -> ORJSONResponse:
        logger.warning(
            "audit_api.unhandled_error",
            extra={"status_code": exc.status_code, "kind": exc.kind.value},
        )
        return ORJSONResponse(
            status_code=502,
            content={"detail": {"message": exc.message, "kind": exc.kind.value}},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("Unhandled server exception", exc_info=exc)
        return ORJSONResponse(status_code=500, content={"detail": "Internal server error."})

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    app.include_router(analysis.router)
    app.include_router(sync.router)

    return app


app = create_app()
