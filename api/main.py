"""
FastAPI main application for the Book Catalog API.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient

from api.auth import Authenticator, PasswordHasher, TokenCodec
from api.config import APIConfig, config as api_config
from api.database import APIDatabaseService
from api.errors import register_error_handlers
from api.mailer import EmailSender
from api.middleware import RequestLoggingMiddleware
from api.models import HealthResponse
from api.routes import auth, books, users

# Setup logging
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings: APIConfig = app.state.settings
    logger.info("Starting Book Catalog API", node_env=settings.node_env)

    client = None
    if app.state.db_service is None:
        try:
            client = AsyncIOMotorClient(settings.mongodb_url)
            database = client[settings.mongodb_database]

            # Test connection
            await database.command("ping")
            logger.info("Database connection established", database=settings.mongodb_database)

            db_service = APIDatabaseService(
                database,
                app.state.password_hasher,
                books=settings.books_collection,
                users=settings.users_collection,
            )
            await db_service.create_indexes()
            attach_database(app, db_service)

        except Exception as e:
            logger.error("Failed to connect to database", error=str(e))
            raise

    yield

    # Shutdown
    logger.info("Shutting down Book Catalog API")
    if client:
        client.close()


def attach_database(app: FastAPI, db_service) -> None:
    """Wire the database service and the authenticator that depends on it."""
    app.state.db_service = db_service
    app.state.authenticator = Authenticator(
        app.state.token_codec,
        db_service.users,
        cookie_name=app.state.settings.jwt_cookie_name,
    )


def create_app(
    settings: Optional[APIConfig] = None,
    db_service=None,
    email_sender: Optional[EmailSender] = None,
) -> FastAPI:
    """
    Build the application and place its collaborators on ``app.state``.

    Args:
        settings: Configuration, defaults to the environment-backed config
        db_service: Database service; when omitted the lifespan connects to MongoDB
        email_sender: Outbound email sender, defaults to SMTP from settings
    """
    settings = settings or api_config

    app = FastAPI(
        title=settings.api_title,
        description="""
    REST API for a catalog of books with user accounts.

    ## Features

    * **Books**: browse with filtering, sorting, pagination and field selection
    * **Users**: signup, login, profile management, password reset
    * **Authentication**: JWT session token in an HTTP-only `jwt` cookie
    * **Authorization**: catalog changes and user deletion require the admin role
    """,
        version=settings.api_version,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.token_codec = TokenCodec(
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        expires_in=timedelta(days=settings.jwt_expires_in_days),
    )
    app.state.password_hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    app.state.email_sender = email_sender or EmailSender(
        settings.email_host,
        settings.email_port,
        username=settings.email_user,
        password=settings.email_password,
        from_email=settings.email_from,
    )
    app.state.db_service = None
    app.state.authenticator = None
    if db_service is not None:
        attach_database(app, db_service)

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    register_error_handlers(app)

    app.include_router(books.router)
    app.include_router(auth.router)
    app.include_router(users.router)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        db_status = "unavailable"
        if app.state.db_service is not None:
            health_info = await app.state.db_service.health_check()
            db_status = health_info.get("status", "unknown")

        return HealthResponse(
            status="healthy" if db_status == "healthy" else "degraded",
            timestamp=datetime.now(timezone.utc),
            version=settings.api_version,
            database_status=db_status,
        )

    return app


app = create_app()
