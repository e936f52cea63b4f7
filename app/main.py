"""
Matrix Runner API - Main Application
HTTP interface for expanding and running build/test/coverage pipelines.
"""
import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.routers import pipelines

_log = logging.getLogger(__name__)


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title=settings.API_TITLE,
    description="Expand build matrices and run build → test → coverage pipelines",
    version=settings.API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return 422 with structured error details."""
    body = await request.body()
    _log.warning(
        "422 on %s %s  body[:200]=%s  errors=%s",
        request.method, request.url.path, body[:200], exc.errors()[:3],
    )
    return JSONResponse(status_code=422, content={"detail": exc.errors()})


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "matrix-runner-api",
        "version": settings.API_VERSION
    }


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Matrix Runner API - Build/Test/Coverage Pipelines",
        "docs": "/docs",
        "health": "/health"
    }


# =============================================================================
# Register Routers
# =============================================================================

app.include_router(pipelines.router, prefix="/pipelines", tags=["pipelines"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=True  # For development
    )
