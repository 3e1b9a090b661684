"""FastAPI application entrypoint for the make-it auth backend.

Sets up the application, middleware and routes and provides a lifespan
context manager that initializes the database on startup and disposes the
engine on shutdown.
"""

import asyncio
from contextlib import asynccontextmanager
from http import HTTPStatus

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.exceptions import HTTPException as StarletteHTTPException

from makeit_auth.api.routes.auth import router as auth_router
from makeit_auth.api.routes.invites import router as invites_router
from makeit_auth.config.config import Settings, settings as default_settings
from makeit_auth.core.auth_helper import build_password_hash
from makeit_auth.core.auth_middleware import create_request_authenticator
from makeit_auth.core.clock import Clock, SystemClock
from makeit_auth.core.errors import AuthError, ErrorCode
from makeit_auth.core.logging import logger
from makeit_auth.core.token_codec import TokenCodec
from makeit_auth.db.session import (
    build_sessionmaker,
    engine as default_engine,
    initialize_database,
)
from makeit_auth.services.auth_service import AuthService
from makeit_auth.services.invite_service import InviteService
from makeit_auth.services.refresh_tokens import RefreshTokenManager

DB_INIT_MAX_RETRIES = 5
DB_INIT_RETRY_DELAY_SECONDS = 2


def error_body(request: Request, status_code: int, code: str, message: str) -> dict:
    """Build the error envelope returned for every failed request."""
    return {
        "status": status_code,
        "error": HTTPStatus(status_code).phrase,
        "code": code,
        "message": message,
        "path": request.url.path,
    }


async def handle_auth_error(request: Request, exc: AuthError):
    if exc.status_code >= 500:
        logger.error("{} on {}: {}", exc.code, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, exc.status_code, exc.code, exc.message),
        headers=exc.headers,
    )


async def handle_http_error(request: Request, exc: StarletteHTTPException):
    # Routing errors (404, 405) carry the status name as their code.
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(
            request,
            exc.status_code,
            HTTPStatus(exc.status_code).name,
            str(exc.detail),
        ),
        headers=exc.headers,
    )


async def handle_validation_error(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'][1:]) or 'body'}: {err['msg']}"
        for err in exc.errors()
    )
    return JSONResponse(
        status_code=422,
        content=error_body(
            request, 422, ErrorCode.VALIDATION_ERROR, details or "Invalid request"
        ),
    )


async def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on {}", request.url.path)
    return JSONResponse(
        status_code=500,
        content=error_body(
            request, 500, ErrorCode.INTERNAL_ERROR, AuthError.default_message
        ),
    )


def create_app(
    settings: Settings = default_settings,
    engine: AsyncEngine | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    """Build the FastAPI application and wire its services.

    Args:
        settings: Configuration to use; defaults to the environment settings.
        engine: Async engine for the credential store; defaults to the
            module-level engine.
        clock: Time source for every expiry decision; defaults to UTC wall
            clock.

    Returns:
        FastAPI: The configured application.
    """
    engine = engine or default_engine
    clock = clock or SystemClock()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context to run startup and shutdown routines.

        On startup this will attempt to create the credential tables,
        retrying a few times if the DB isn't ready yet.

        Yields:
            None: Control is returned to FastAPI while the app is running.
        """
        logger.info("Starting up")

        for attempt in range(DB_INIT_MAX_RETRIES):
            try:
                await initialize_database(engine)
                break
            except Exception as e:
                if attempt < DB_INIT_MAX_RETRIES - 1:
                    logger.warning(
                        "Database connection attempt {} failed: {}. Retrying..",
                        attempt + 1,
                        e,
                    )
                    await asyncio.sleep(DB_INIT_RETRY_DELAY_SECONDS)
                else:
                    logger.exception(
                        "Failed to create database tables after {} attempts",
                        DB_INIT_MAX_RETRIES,
                    )
                    raise

        yield

        logger.info("Shutting down")
        await engine.dispose()

    codec = TokenCodec(
        settings.SECRET_KEY, settings.access_token_ttl_seconds, settings.ALGORITHM
    )
    session_factory = build_sessionmaker(engine)

    app = FastAPI(lifespan=lifespan, title="make-it auth")
    app.state.settings = settings
    app.state.auth_service = AuthService(
        session_factory,
        codec,
        RefreshTokenManager(settings.refresh_token_ttl_seconds),
        settings,
        build_password_hash(settings.BCRYPT_ROUNDS),
        clock,
    )
    app.state.invite_service = InviteService(session_factory, settings, clock)

    app.middleware("http")(create_request_authenticator(codec, clock))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AuthError, handle_auth_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    @app.get("/")
    async def root():
        """Return a simple health check / landing response."""
        return JSONResponse({"message": "make-it auth backend"})

    app.include_router(auth_router, prefix="/api")
    app.include_router(invites_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("makeit_auth.main:app", host="0.0.0.0", port=8000, reload=True)
