from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
import logging

# Import database components
from billing_app.database.database import sync_engine, Base
from billing_app.dependencies.dbDependencies import db_dependency

# Import middleware
from billing_app.common.middleware import ActorMiddleware

# Import errors
from billing_app.core.exceptions import BillingError

# Import routers
from billing_app.modules.documents.router import router as documents_router
from billing_app.modules.customers.router import router as customers_router
from billing_app.modules.inventory.router import router as inventory_router
from billing_app.modules.email.router import router as email_router

# Import models for table creation
import billing_app.modules.store.models

from billing_app.core.config import settings
from billing_app.modules.store import InMemoryDocumentStore

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="Wyenfos Billing API",
    description="Sequential document numbering and billing document orchestration",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

app.state.memory_store = InMemoryDocumentStore()

# Add middleware
app.add_middleware(ActorMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


# Include routers
app.include_router(documents_router)
app.include_router(customers_router)
app.include_router(inventory_router)
app.include_router(email_router)

# Create database tables (only for development - use migrations in production)
if settings.ENVIRONMENT == "development" and settings.STORE_BACKEND == "sql":
    Base.metadata.create_all(bind=sync_engine)


@app.get("/")
def read_root():
    return {
        "message": "Wyenfos Billing API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
def health_check(db: db_dependency):
    database = "skipped"
    if settings.STORE_BACKEND == "sql":
        try:
            db.execute(text("SELECT 1"))
            database = "ok"
        except Exception as e:
            logger.warning(f"Health check database ping failed: {e}")
            database = "unavailable"
    return {
        "status": "healthy" if database != "unavailable" else "degraded",
        "environment": settings.ENVIRONMENT,
        "store_backend": settings.STORE_BACKEND,
        "database": database,
    }


@app.on_event("startup")
async def startup_event():
    logger.info("Wyenfos Billing API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Store backend: {settings.STORE_BACKEND}")
    logger.info(f"Debug mode: {settings.DEBUG}")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Wyenfos Billing API shutting down...")
