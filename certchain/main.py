"""
Main FastAPI application entry point for CertChain Backend.
Configures the application, middleware, services and routes.
"""

from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError

from .core.config import Settings, get_settings
from .core.exceptions import (
    AlreadyRevoked, CertificateError, InvalidPayload, InvalidTransition, IssuanceFailed,
    NotAssociated, NotFound, StoreUnavailable,
)
from .core.middleware import setup_middleware_stack
from .db.certificate_store import CertificateStore, MongoCertificateStore
from .db.college_store import CollegeStore, MongoCollegeStore
from .db.memory_store import InMemoryCertificateStore, InMemoryCollegeStore
from .db.mongo import connect_to_mongo, close_mongo_connection
from .services.anchoring_worker import AnchoringWorker
from .services.certificate_service import CertificateService
from .services.ledger_service import LedgerAnchorClient, create_ledger_client
from .services.qr_service import QRCodeService
from .services.verification_service import VerificationService
from .api.v1.health import router as health_router
from .api.v1.certificates import router as certificates_router
from .api.v1.verify import router as verify_router
from .utils.logger import get_logger, setup_logger

MEMORY_STORE_SCHEME = "memory://"

# Initialize logger
logger = get_logger("main")

ERROR_STATUS_CODES = {
    NotAssociated: (400, "Not Associated"),
    InvalidPayload: (400, "Invalid Payload"),
    NotFound: (404, "Not Found"),
    AlreadyRevoked: (409, "Already Revoked"),
    InvalidTransition: (409, "Invalid Transition"),
    IssuanceFailed: (500, "Issuance Failed"),
    StoreUnavailable: (503, "Store Unavailable"),
}


def init_services(
    app: FastAPI,
    settings: Settings,
    certificate_store: CertificateStore,
    college_store: CollegeStore,
    ledger_client: LedgerAnchorClient,
):
    """Wire the stores and the ledger client into the services kept on app.state"""
    qr_service = QRCodeService(settings.client_url)
    certificate_service = CertificateService(
        certificate_store, college_store, ledger_client, qr_service, settings
    )

    app.state.settings = settings
    app.state.certificate_store = certificate_store
    app.state.college_store = college_store
    app.state.ledger_client = ledger_client
    app.state.qr_service = qr_service
    app.state.certificate_service = certificate_service
    app.state.verification_service = VerificationService(
        certificate_store, college_store, ledger_client, qr_service, settings
    )
    app.state.anchoring_worker = AnchoringWorker(
        certificate_store, college_store, ledger_client, certificate_service, settings
    )


def create_app(
    settings: Optional[Settings] = None,
    certificate_store: Optional[CertificateStore] = None,
    college_store: Optional[CollegeStore] = None,
    ledger_client: Optional[LedgerAnchorClient] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Stores and ledger client default to what the settings describe;
    passing them in replaces those defaults.
    """
    settings = settings or get_settings()
    setup_logger(level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager for startup and shutdown events.
        Handles database connections, services and the anchoring worker.
        """
        logger.info("Starting CertChain Backend...")
        app.state.database = None
        try:
            certificates, colleges = certificate_store, college_store
            if certificates is None or colleges is None:
                if settings.mongodb_url.startswith(MEMORY_STORE_SCHEME):
                    logger.warning("Using in-memory stores, data is lost on restart")
                    certificates = certificates or InMemoryCertificateStore()
                    colleges = colleges or InMemoryCollegeStore()
                else:
                    database = await connect_to_mongo(settings)
                    app.state.database = database
                    certificates = certificates or MongoCertificateStore(database)
                    colleges = colleges or MongoCollegeStore(database)

            await certificates.ensure_indexes()
            init_services(app, settings, certificates, colleges, ledger_client or create_ledger_client(settings))

            if settings.enable_anchor_worker:
                app.state.anchoring_worker.start()
            logger.info("Application startup completed successfully")
        except Exception as e:
            logger.error(f"Failed to start application: {e}")
            raise

        yield

        logger.info("Shutting down CertChain Backend...")
        try:
            await app.state.anchoring_worker.stop()
            await close_mongo_connection()
            logger.info("Application shutdown completed successfully")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")

    app = FastAPI(
        title="CertChain Backend API",
        description="Academic certificate issuance and blockchain verification",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan
    )

    setup_middleware_stack(
        app,
        rate_limit_calls=settings.rate_limit_calls,
        rate_limit_period=settings.rate_limit_period,
    )

    app.include_router(health_router)
    app.include_router(certificates_router)
    app.include_router(verify_router)

    register_exception_handlers(app)

    @app.get(
        "/",
        summary="Root Endpoint",
        description="Welcome endpoint for CertChain Backend API",
        tags=["root"]
    )
    async def root():
        return {
            "message": "Welcome to CertChain Backend API",
            "version": "1.0.0",
            "service": "CertChain Backend",
            "docs": "/docs",
            "health": "/api/v1/health"
        }

    return app


def register_exception_handlers(app: FastAPI):
    """Global exception handlers returning ``{"error", "message"}`` bodies"""

    @app.exception_handler(CertificateError)
    async def certificate_exception_handler(request: Request, exc: CertificateError):
        status_code, error = ERROR_STATUS_CODES.get(type(exc), (500, "Certificate Error"))
        if status_code >= 500:
            logger.error(f"{error} on {request.url.path}: {exc}")
        else:
            logger.warning(f"{error} on {request.url.path}: {exc}")

        return JSONResponse(
            status_code=status_code,
            content={"error": error, "message": str(exc)}
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """
        Handle request validation errors with detailed error messages.
        """
        logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")

        return JSONResponse(
            status_code=422,
            content={
                "error": "Validation Error",
                "message": "Request validation failed",
                "details": jsonable_encoder(exc.errors())
            }
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Handle unexpected exceptions with proper logging and error response.
        """
        logger.error(f"Unhandled exception on {request.url.path}: {str(exc)}", exc_info=True)

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "message": "An unexpected error occurred"
            }
        )


app = create_app()
