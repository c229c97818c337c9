"""
Main FastAPI application
Quiz links with single-use registration and timed, resumable attempts
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
import logging
import time

from quizdesk.config import settings
from quizdesk.database import engine, init_db
from quizdesk.exceptions import QuizDeskError
from quizdesk.api import admin, attempts, quiz_links, quizzes
from quizdesk.utils.cache import cache_service
from quizdesk.utils.rate_limiter import rate_limiter

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Never rate limited
UNLIMITED_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Administrators publish quizzes through shareable links; students "
        "register once per link and take timed quizzes that survive reloads."
    ),
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next):
    """Reject clients over their per-minute or per-hour budget with 429"""
    if request.url.path not in UNLIMITED_PATHS:
        try:
            await rate_limiter.check_rate_limit(request)
        except HTTPException as e:
            return JSONResponse(status_code=e.status_code, content=e.detail)

    return await call_next(request)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every request with its status and timing"""
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started

    response.headers["X-Process-Time"] = f"{elapsed:.3f}"
    client = request.client.host if request.client else "unknown"
    logger.info(
        f"{request.method} {request.url.path} from {client} - "
        f"Status: {response.status_code} - Duration: {elapsed:.3f}s"
    )
    return response


@app.exception_handler(QuizDeskError)
async def quizdesk_error_handler(request: Request, exc: QuizDeskError):
    """Domain errors keep their code so clients can tell terminal from retryable failures"""
    log = logger.error if exc.retryable else logger.info
    log(f"{request.method} {request.url.path} rejected: {exc.code} ({exc.message})")

    return JSONResponse(
        status_code=exc.status_code,
        content={**exc.to_dict(), "retryable": exc.retryable},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "http_error",
            "message": exc.detail,
            "status_code": exc.status_code
        },
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Last resort: log with traceback and hide details unless DEBUG"""
    logger.error(f"Unhandled exception on {request.url.path}: {str(exc)}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred. Please try again later.",
            "detail": str(exc) if settings.DEBUG else None
        }
    )


@app.get("/health")
async def health_check():
    """
    Liveness plus dependency status

    The database is probed with ``SELECT 1``; the cache is reported as
    ``disabled`` when the service runs without Redis.
    """
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        logger.error(f"Health check database probe failed: {str(e)}")
        database = "unavailable"

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "database": database,
        "cache": "redis" if cache_service.available else "disabled",
        "timestamp": time.time()
    }


@app.get("/")
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "routes": ["/api/quiz-links", "/api/attempts", "/api/quizzes", "/api/admin"],
    }


app.include_router(quiz_links.router)
app.include_router(attempts.router)
app.include_router(quizzes.router)
app.include_router(admin.router)


@app.on_event("startup")
async def startup_event():
    """Create missing tables before serving"""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    try:
        init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {str(e)}")
        raise

    logger.info(f"Startup complete (cache: {'redis' if cache_service.available else 'disabled'})")


@app.on_event("shutdown")
async def shutdown_event():
    engine.dispose()
    logger.info("Shutting down application")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "quizdesk.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
