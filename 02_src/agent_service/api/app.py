"""FastAPI application setup."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..app import Application
from ..errors import AgentServiceError, ValidationError
from ..logging_config import get_logger
from .routes import runs, tools

logger = get_logger(__name__)

# Global application instance
_app: Application | None = None


def get_app() -> Application:
    """Get the global application instance."""
    global _app
    if not _app:
        _app = Application()
    return _app


def _validation_response(reason: str, details: list[dict]) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": ValidationError.code, "reason": reason, "details": details},
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in exc.errors()
    ]
    reason = details[0]["msg"] if details else "Invalid request"
    return _validation_response(reason, details)


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _validation_response(exc.message, [])


async def service_error_handler(request: Request, exc: AgentServiceError) -> JSONResponse:
    logger.error(
        "Request failed: %s",
        exc.message,
        extra={"context": {"path": request.url.path, "code": exc.code}},
    )
    return JSONResponse(status_code=500, content={"error": exc.code, "message": exc.message})


def create_fastapi_app(application: Application | None = None) -> FastAPI:
    """Create and configure FastAPI application."""
    application = application or get_app()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan."""
        # Startup
        await application.start()
        yield
        # Shutdown
        await application.stop()

    fastapi_app = FastAPI(
        title="Agent Service API",
        description="Run orchestration, event streaming and tool brokering",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Enable CORS
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    fastapi_app.add_exception_handler(RequestValidationError, request_validation_handler)
    fastapi_app.add_exception_handler(ValidationError, validation_error_handler)
    fastapi_app.add_exception_handler(AgentServiceError, service_error_handler)

    # Include routers
    fastapi_app.include_router(runs.create_runs_router(application))
    fastapi_app.include_router(tools.create_tools_router(application))

    return fastapi_app
