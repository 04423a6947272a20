"""
Off The Record Backend API Server
Core functionality: lawyer matching, case lifecycle, payment ledger and B2B billing
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import ALLOWED_ORIGINS, validate_settings
from database.connection import init_database, close_database
from api.routes import (
    health, cases, lawyers, payments, invoices, messages, business, fines, admin, webhooks
)
from middleware.request_context import RequestContextMiddleware
from utils.error_handling import setup_error_handling

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    validate_settings()
    await init_database()
    yield
    await close_database()


def create_app(use_lifespan: bool = True) -> FastAPI:
    """Build the application; tests skip the lifespan so no database is needed"""
    app = FastAPI(
        title="Off The Record Backend",
        description="Traffic-ticket legal services: lawyer matching, case lifecycle, payments and B2B billing",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else None
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestContextMiddleware)

    # Setup centralized error handling
    setup_error_handling(app)

    # Include API routes
    app.include_router(health.router, tags=["Health"])
    app.include_router(cases.router, prefix="/api/cases", tags=["Cases"])
    app.include_router(lawyers.router, prefix="/api/lawyers", tags=["Lawyers"])
    app.include_router(payments.router, prefix="/api/payments", tags=["Payments"])
    app.include_router(invoices.router, prefix="/api/invoices", tags=["Invoices"])
    app.include_router(messages.router, prefix="/api/messages", tags=["Messages"])
    app.include_router(business.router, prefix="/api/b2b", tags=["B2B"])
    app.include_router(fines.router, prefix="/api/fines", tags=["Fines"])
    app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])
    app.include_router(webhooks.router, prefix="/api/webhooks", tags=["Webhooks"])
    return app


# FastAPI app instance is exported for use by uvicorn
# Server startup is handled by main.py at the project root
app = create_app()
