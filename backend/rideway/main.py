import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from rideway.api.router import api_router
from rideway.config import get_settings
from rideway.services.client_session import get_session_registry
from rideway.utils.auth import lookup_client_session
from rideway.utils.route_gate import RouteClass, classify, evaluate

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings.validate_security()
    logger.info("Session cookie mode: %s", settings.get_cookie_mode())
    yield
    app.state.session_registry.clear()


class RouteGateMiddleware(BaseHTTPMiddleware):
    """Applies the route authorization gate to every page navigation."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if classify(path) == RouteClass.public:
            return await call_next(request)

        client = lookup_client_session(request)
        if client is None:
            session_present = session_error = False
        else:
            await client.session.ensure_fresh()
            session_present = client.session.session_present
            session_error = client.session.session_error

        decision = evaluate(path, session_present, session_error)
        if decision.allowed:
            return await call_next(request)

        logger.debug("Navigation to %s redirected to %s", path, decision.redirect_to)
        return RedirectResponse(url=decision.redirect_to, status_code=status.HTTP_307_TEMPORARY_REDIRECT)


app = FastAPI(
    title=settings.app_name,
    description="Session, route gating and presence backend-for-frontend",
    version="1.0.0",
    lifespan=lifespan,
)
app.state.session_registry = get_session_registry()

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RouteGateMiddleware)
# Include API router
app.include_router(api_router, prefix="/api/v1")


# Global exception handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        errors.append({"field": field, "message": error["msg"]})

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Validation error",
            "errors": errors,
        },
    )


@app.exception_handler(ValidationError)
async def pydantic_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    errors = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        errors.append({"field": field, "message": error["msg"]})

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Validation error",
            "errors": errors,
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")

    # Don't expose internal error details in production
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "An unexpected error occurred. Please try again later.",
        },
    )
