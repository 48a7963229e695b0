from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dhis2_gateway.core.config import settings
from dhis2_gateway.core.database import db_manager
from dhis2_gateway.core.exceptions import ClientInputError
from dhis2_gateway.core.logging import setup_logging, get_logger
from dhis2_gateway.core.redis_client import redis_client
from dhis2_gateway.api.v1.router import api_router


# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown."""
    try:
        await redis_client.connect()
        logger.info("DHIS2 Gateway startup completed")
    except Exception as e:
        logger.error(f"DHIS2 Gateway startup failed: {e}")
        raise

    yield

    try:
        await redis_client.disconnect()
        await db_manager.close_connections()
        logger.info("DHIS2 Gateway shutdown completed")
    except Exception as e:
        logger.error(f"DHIS2 Gateway shutdown failed: {e}")


app = FastAPI(
    title=settings.APP_NAME,
    description="""
    **DHIS2 Aggregate Gateway**

    Accepts aggregate data submissions, records each one and delivers it to
    DHIS2 from a background worker pool.

    ## Flow

    1. Submit: `POST /v1/aggregate` returns `submission_id` and `task_id`
    2. Poll the outcome: `GET /v1/logs?job_id=<submission_id>`
    3. Recover dead tasks: `POST /v1/aggregate/reenqueue/{task_id}` or `/reenqueue/batch`
    """,
    version=settings.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/v1")


@app.get("/")
async def root():
    """Root endpoint with service information."""
    return {
        "service": settings.APP_NAME,
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
        "status": "running",
        "docs_url": "/docs",
        "health_check": "/v1/health",
    }


@app.exception_handler(ClientInputError)
async def client_input_exception_handler(request: Request, exc: ClientInputError):
    """Rejected submissions list every violation."""
    content = {"error": exc.message}
    if exc.details:
        content["detail"] = exc.details
    return JSONResponse(status_code=400, content=content)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    detail = [
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Invalid request", "detail": detail})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """HTTP exception handler."""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": [str(exc)] if settings.DEBUG else None
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "dhis2_gateway.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
