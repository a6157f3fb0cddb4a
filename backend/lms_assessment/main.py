"""
LMS Assessment Engine - FastAPI Application
Main application entry point with middleware and route configuration
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lms_assessment.api.v1 import api_router
from lms_assessment.core.config import settings
from lms_assessment.core.database import init_db
from lms_assessment.services.exceptions import (
    AssessmentError,
    BadRequestError,
    NotFoundError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    UnauthorizedError: status.HTTP_403_FORBIDDEN,
    BadRequestError: status.HTTP_400_BAD_REQUEST,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    await init_db()
    logger.info("Database tables initialized")

    yield


async def assessment_error_handler(request: Request, exc: AssessmentError) -> JSONResponse:
    """Translate service errors into HTTP responses."""
    status_code = next(
        (code for error, code in ERROR_STATUS.items() if isinstance(exc, error)),
        status.HTTP_400_BAD_REQUEST,
    )
    if status_code == status.HTTP_403_FORBIDDEN:
        logger.info("Denied %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Timed tests, auto-grading and manual grading for courses",
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AssessmentError, assessment_error_handler)

    # Include API routes
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    # Health check endpoint
    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "lms_assessment.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
