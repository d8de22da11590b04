import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from api.core.config import Settings, get_settings
from api.core.observability import setup_logging
from api.repositories.json_storage import StorageError
from api.repositories.user_repository import UserRepository
from api.routers import health as health_router
from api.routers import users as users_router
from api.services.user_service import UserService

logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Inject baseline security headers (anti clickjacking, sniffing, referrer policy)."""

    def __init__(self, app, *, enforce_hsts: bool) -> None:
        super().__init__(app)
        self._enforce_hsts = enforce_hsts

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        if self._enforce_hsts:
            response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
        return response


def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed bodies and query params are client errors like any other bad input.
    issues = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        issues.append({"path": ".".join(loc), "message": error.get("msg", "Invalid value")})
    return JSONResponse({"detail": "Invalid request", "issues": issues}, status_code=400)


def _storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("Storage failure on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse({"detail": "Storage failure"}, status_code=500)


def create_app(settings: Settings | None = None, repository: UserRepository | None = None) -> FastAPI:
    """Build the API. One repository per app, shared by every request through app.state."""
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_format)

    app = FastAPI(title="User Directory API")
    app.state.settings = settings
    app.state.user_repository = repository or UserRepository(settings.users_data_file)
    app.state.user_service = UserService(app.state.user_repository)

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_origins),
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["*"],
        )
    app.add_middleware(SecurityHeadersMiddleware, enforce_hsts=settings.app_env == "prod")

    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(StorageError, _storage_error_handler)

    app.include_router(users_router.router, prefix=settings.api_prefix)
    app.include_router(health_router.router, prefix=settings.api_prefix)

    logger.info("Users data file: %s", app.state.user_repository.data_file)
    return app
