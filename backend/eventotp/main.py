import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from eventotp.core.config import Settings, settings as default_settings
from eventotp.core.errors import TransportError, ValidationError
from eventotp.models import Base
from eventotp.routers import health, otp
from eventotp.services.challenges import ChallengeStore
from eventotp.services.email import OTPDelivery, SMTPTransport

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    transport: Optional[SMTPTransport] = None,
    challenge_store: Optional[ChallengeStore] = None,
) -> FastAPI:
    """
    Build the API. The relay transport and challenge store are created once
    here and shared by every request through ``app.state``.
    """
    settings = settings or default_settings
    if session_factory is None:
        from eventotp.core.database import SessionLocal
        session_factory = SessionLocal

    app = FastAPI(
        title="Event Manager OTP API",
        description="Email one-time-password verification for event manager login",
        version="0.1.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.challenge_store = challenge_store or ChallengeStore(
        session_factory,
        ttl_seconds=settings.OTP_TTL_SECONDS,
        max_attempts=settings.OTP_MAX_ATTEMPTS,
    )
    app.state.otp_delivery = OTPDelivery(
        transport or SMTPTransport.from_settings(settings),
        expire_minutes=max(settings.OTP_TTL_SECONDS // 60, 1),
        retries=settings.OTP_DELIVERY_RETRIES,
        app_name=settings.APP_NAME,
    )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"detail": exc.message})

    @app.exception_handler(TransportError)
    async def transport_error_handler(request: Request, exc: TransportError):
        return JSONResponse(status_code=500, content={"detail": exc.message})

    @app.on_event("startup")
    async def startup():
        configure_logging(settings.LOG_LEVEL)
        if settings.AUTO_CREATE_TABLES:
            bind = session_factory.kw.get("bind")
            if bind is not None:
                Base.metadata.create_all(bind=bind)
                logger.info("Created OTP tables on %s", bind.url)

    app.include_router(health.router, prefix="/health")
    app.include_router(otp.router)

    return app


app = create_app()
