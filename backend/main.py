"""
InsightStore - FastAPI Backend
Main application entry point
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import uvicorn
import logging

from config import get_settings
from dependencies import get_broadcaster
from errors import InsightStoreError
from routes import analyses, apps
from services.task_runner import BackgroundTaskRunner

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    logger.info("Starting InsightStore API...")

    if not settings.use_supabase:
        from database import engine, Base
        import models  # noqa: F401  (registers tables on Base)
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created/verified")

    app.state.task_runner = BackgroundTaskRunner()

    yield

    # Shutdown
    logger.info("Shutting down InsightStore API...")
    await app.state.task_runner.drain(timeout=settings.shutdown_grace_seconds)
    await get_broadcaster().aclose()


# Initialize FastAPI app
app = FastAPI(
    title="InsightStore API",
    description="Google Play review analysis: pain points and improvement plans",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================
# ERROR HANDLERS
# ============================================

@app.exception_handler(InsightStoreError)
async def insightstore_error_handler(request: Request, exc: InsightStoreError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "invalid_request_body", "detail": str(exc.errors())},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "detail": "Internal server error"},
    )


# Health check
@app.get("/")
async def root():
    """API health check"""
    return {
        "status": "healthy",
        "service": "InsightStore API",
        "version": "1.0.0"
    }


@app.get("/api/health")
async def health_check(request: Request):
    """Detailed health check"""
    return {
        "status": "healthy",
        "backend": "supabase" if settings.use_supabase else "sql",
        "running_analyses": request.app.state.task_runner.pending,
    }


# ============================================
# ROUTES
# ============================================

app.include_router(analyses.router)
app.include_router(apps.router)


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.backend_host,
        port=settings.backend_port,
        reload=settings.python_env == "development",
        # Background jobs live in this process; more workers would not share them
        workers=1,
        timeout_keep_alive=65,
        log_level=settings.log_level.lower()
    )
