"""FastAPI application factory for RentalCore."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rentalcore.common.config import get_settings
from rentalcore.common.schemas import HealthResponse
from rentalcore.compliance.middleware import (
    ComplianceHeadersMiddleware,
    RequestAuditMiddleware,
)

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        from rentalcore.deps import (
            get_audit_logger,
            get_db,
            get_retention_manager,
            get_signature_manager,
        )
        db = get_db()
        await db.init()
        await db.create_all()
        async with db.get_session() as session:
            await get_retention_manager().seed_default_policies(session)
            await get_audit_logger().tail.load(session)
        get_signature_manager()
        logger.info("rentalcore started, audit chain tail loaded")
        yield
        # Shutdown
        await db.close()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ComplianceHeadersMiddleware)
    if settings.audit_http_requests:
        app.add_middleware(RequestAuditMiddleware)

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(version=settings.api_version)

    # Mount routers
    from rentalcore.audit.router import router as audit_router
    from rentalcore.retention.router import router as retention_router
    from rentalcore.archive.router import router as archive_router
    from rentalcore.signing.router import router as signing_router
    from rentalcore.gdpr.router import router as gdpr_router
    from rentalcore.booking.router import router as booking_router
    from rentalcore.compliance.router import router as compliance_router

    prefix = settings.api_prefix
    app.include_router(audit_router, prefix=prefix, tags=["audit"])
    app.include_router(retention_router, prefix=prefix, tags=["retention"])
    app.include_router(archive_router, prefix=prefix, tags=["archive"])
    app.include_router(signing_router, prefix=prefix, tags=["signing"])
    app.include_router(gdpr_router, prefix=prefix, tags=["gdpr"])
    app.include_router(booking_router, prefix=prefix, tags=["booking"])
    app.include_router(compliance_router, prefix=prefix, tags=["compliance"])

    return app
