# chat2sheet/main.py - FastAPI application for the WhatsApp fee assistant
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
import logging
import traceback
import time

from chat2sheet.core.config import settings, validate_critical_settings
from chat2sheet.api.deps.services import close_ledger_store, get_ledger_store
from chat2sheet.api.routers import ledger, payments, webhook
from chat2sheet.services.ledger_store import LedgerStore

LOG_FORMATS = {
    "simple": "%(levelname)s - %(message)s",
    "detailed": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}


def configure_logging():
    log_format = LOG_FORMATS.get(settings.LOG_FORMAT, LOG_FORMATS["detailed"])
    handlers = [logging.StreamHandler()]
    if settings.LOG_FILE_PATH:
        handlers.append(RotatingFileHandler(
            settings.LOG_FILE_PATH,
            maxBytes=settings.LOG_MAX_SIZE,
            backupCount=settings.LOG_BACKUP_COUNT,
            encoding="utf-8",
        ))
    logging.basicConfig(level=settings.LOG_LEVEL, format=log_format, handlers=handlers)


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info(f"Starting {settings.API_TITLE}...")
    logger.info(f"Environment: {settings.ENV}")
    logger.info(f"Ledger backend: {settings.LEDGER_BACKEND}")

    validate_critical_settings()

    if settings.LEDGER_BACKEND == "sql":
        # SQLLedgerStore creates its tables when it is built
        try:
            get_ledger_store()
            logger.info("Ledger tables ready")
        except Exception as e:
            logger.error(f"Error preparing ledger tables: {e}")

    yield

    logger.info(f"Shutting down {settings.API_TITLE}...")
    await close_ledger_store()


app = FastAPI(
    title=settings.API_TITLE,
    description="WhatsApp assistant that keeps a school fee ledger in Google Sheets or SQL",
    version=settings.API_VERSION,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every request with its status and duration"""
    start_time = time.time()
    logger.info(f"⬇️  Incoming {request.method} {request.url.path}")

    try:
        response = await call_next(request)
        process_time = time.time() - start_time
        logger.info(f"⬆️  Response {response.status_code} for {request.method} {request.url.path} ({process_time:.3f}s)")
        return response
    except Exception as e:
        logger.error(f"❌ Error processing {request.method} {request.url.path}: {str(e)}")
        logger.error(traceback.format_exc())
        raise


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "X-API-Key"],
    max_age=3600,
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions"""
    logger.error(f"❌ Unhandled exception on {request.method} {request.url.path}")
    logger.error(f"   Exception: {str(exc)}")

    if settings.is_development:
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc),
                "traceback": traceback.format_exc(),
            },
        )

    logger.error(traceback.format_exc())
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/health")
async def health_check(store: LedgerStore = Depends(get_ledger_store)):
    try:
        ledger_health = await store.health_check()
    except Exception as e:
        ledger_health = {"status": "unhealthy", "error": str(e)}

    return {
        "status": "healthy" if ledger_health.get("status") == "healthy" else "degraded",
        "environment": settings.ENV,
        "version": settings.API_VERSION,
        "ledger": ledger_health,
    }


logger.info("Registering API routers...")
app.include_router(webhook.router, tags=["WhatsApp"])
app.include_router(payments.router, tags=["Payments"])
app.include_router(ledger.router, prefix="/api/sheets", tags=["Ledger Admin"])
logger.info("All routers registered successfully")


@app.get("/")
async def root():
    return {
        "message": settings.API_TITLE,
        "version": settings.API_VERSION,
        "docs_url": "/docs" if settings.is_development else "Documentation disabled in production",
    }
