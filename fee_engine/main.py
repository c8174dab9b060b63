# fee_engine/main.py
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
import traceback
import time

from fee_engine.core.config import settings
from fee_engine.core.db import db_manager, get_engine, health_check as db_health_check
from fee_engine.core.exceptions import FeeEngineError
from fee_engine.models import Base
from fee_engine.api.routers import fee_history, fees, scholarships, charges


logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info(f"Starting {settings.API_TITLE}...")
    logger.info(f"Environment: {settings.ENV}")
    logger.info(f"Database URL: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'local'}")

    engine = get_engine()

    # Alembic owns the schema outside development
    if settings.is_development:
        logger.info("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")

    yield

    logger.info(f"Shutting down {settings.API_TITLE}...")
    db_manager.close()


app = FastAPI(
    title=settings.API_TITLE,
    description="Monthly fee computation with an append-only, versioned fee ledger",
    version=settings.API_VERSION,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method, path, status and timing of every request"""
    start_time = time.time()
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(f"Error processing {request.method} {request.url.path}: {str(e)}")
        raise
    process_time = time.time() - start_time
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({process_time:.3f}s)")
    return response


app.add_middleware(CORSMiddleware, **settings.get_cors_config())


@app.exception_handler(FeeEngineError)
async def fee_engine_exception_handler(request: Request, exc: FeeEngineError):
    if exc.status_code >= 500:
        logger.error(f"{exc} on {request.method} {request.url.path}")
    else:
        logger.info(f"{exc} on {request.method} {request.url.path}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions; raw database errors never reach clients outside development"""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {str(exc)}")
    logger.error(traceback.format_exc())

    if settings.is_development:
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc),
                "traceback": traceback.format_exc()
            }
        )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


@app.get("/health")
async def health_check():
    database = db_health_check()
    return {
        "status": "healthy" if database["status"] == "healthy" else "degraded",
        "environment": settings.ENV,
        "version": settings.API_VERSION,
        "database": database,
    }


logger.info("Registering API routers...")
app.include_router(fee_history.router, prefix="/api/fee-history", tags=["Fee History"])
app.include_router(fees.router, prefix="/api/fee-structures", tags=["Fee Structures"])
app.include_router(scholarships.router, prefix="/api/scholarships", tags=["Scholarships"])
app.include_router(charges.router, prefix="/api/charges", tags=["Charges"])
logger.info("All routers registered successfully")


@app.get("/")
async def root():
    return {
        "message": settings.API_TITLE,
        "version": settings.API_VERSION,
        "docs_url": "/docs" if settings.is_development else "Documentation disabled in production",
    }
