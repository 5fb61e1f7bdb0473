"""
Module: main.py
Description: FastAPI application entry point for the Mailflow Queues API.

Initializes the FastAPI application with the queue administration
routes and error handlers, and exposes the Lambda handler.
"""

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from mangum import Mangum

from mailflow_queues.config.settings import settings
from mailflow_queues.handlers.queues import router as queues_router
from mailflow_queues.handlers.queues import topology_router
from mailflow_queues.utils.logger import get_logger

logger = get_logger(__name__)

app = FastAPI(
    title=settings.app_name,
    description="Queue lifecycle, inspection and dead-letter redrive for Mailflow",
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(queues_router)
app.include_router(topology_router)


@app.get("/health")
async def health_check():
    """
    Health check endpoint.

    Does not contact the broker; use GET /queues for a connectivity check.
    """
    logger.info("Health check requested")

    return {
        "status": "ok",
        "message": "Queues API is healthy",
        "version": settings.app_version,
        "environment": settings.stage
    }


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Global HTTP exception handler.

    Logs HTTP exceptions and returns structured error responses. Queue
    errors carry a dict detail with their type; other exceptions are
    reported as 'http_exception'.
    """
    logger.warning(
        "HTTP exception occurred",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method
    )

    error = {"code": exc.status_code, "message": exc.detail, "type": "http_exception"}
    if isinstance(exc.detail, dict):
        error.update(exc.detail)

    return JSONResponse(status_code=exc.status_code, content={"error": error})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report request validation failures in the common error envelope."""
    logger.warning(
        "Request validation failed",
        path=request.url.path,
        method=request.method,
        errors=len(exc.errors())
    )

    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": 422,
                "message": "Request validation failed",
                "type": "validation_error",
                "details": [
                    {"loc": list(error.get("loc", [])), "msg": error.get("msg", "")}
                    for error in exc.errors()
                ]
            }
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unhandled errors.

    Logs unexpected exceptions and returns generic error responses.
    """
    logger.error(
        "Unhandled exception occurred",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": 500,
                "message": "Internal server error",
                "type": "internal_error"
            }
        }
    )


@app.on_event("startup")
async def startup_event():
    """Application startup event handler."""
    logger.info(
        "Starting Queues API",
        version=settings.app_version,
        stage=settings.stage,
        region=settings.aws_region,
        apps=settings.app_name_list,
        auto_refresh_enabled=settings.auto_refresh_enabled
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event handler."""
    logger.info("Shutting down Queues API")


# Lambda handler
handler = Mangum(app, lifespan="off")
