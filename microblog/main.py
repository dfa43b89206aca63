import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from microblog.api.router import api_router
from microblog.config import get_settings
from microblog.database import engine
from microblog.services.identity_provider import ProviderError
from microblog.services.revocation import RevocationStorageError
from microblog.services.session_auth import build_auth_components

settings = get_settings()
logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    configure_logging()
    settings.validate_security()
    logger.info("Auth mode: %s", settings.get_auth_mode())

    # Tests install their own components before the app starts
    if getattr(app.state, "auth", None) is None:
        app.state.auth = build_auth_components(settings)
    yield
    await app.state.auth.close()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="Micro-blogging API with Firebase session authentication",
    version="1.0.0",
    lifespan=lifespan,
)

# The session cookie only crosses origins with credentials enabled
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)
app.add_middleware(GZipMiddleware, minimum_size=500)

app.include_router(api_router, prefix="/api/v1")


def _validation_response(errors: list[dict]) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Validation error",
            "errors": [
                {"field": " -> ".join(str(loc) for loc in error["loc"]), "message": error["msg"]}
                for error in errors
            ],
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return _validation_response(exc.errors())


@app.exception_handler(ValidationError)
async def pydantic_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _validation_response(exc.errors())


@app.exception_handler(ProviderError)
@app.exception_handler(RevocationStorageError)
async def auth_backend_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Auth backend failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Authentication service unavailable"},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)

    # Internal details stay in the logs
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An unexpected error occurred. Please try again later."},
    )
