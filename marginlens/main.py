from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from marginlens.core.config import get_settings
from marginlens.core.errors import ComputationFailure, InvalidTransition, NotFound
from marginlens.routers.analytics import router as analytics_router
from marginlens.routers.baselines import router as baselines_router
from marginlens.routers.decisions import router as decisions_router
from marginlens.routers.health import router as health_router
from marginlens.routers.insights import router as insights_router

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    description="Restaurant profit analytics API - Revenue decomposition, menu decisions, and outcome tracking for restaurants.",
    version="0.1.0",
    debug=settings.DEBUG,
)


@app.exception_handler(InvalidTransition)
async def invalid_transition_handler(request: Request, exc: InvalidTransition):
    return JSONResponse(
        status_code=409,
        content={
            "error": "invalid_transition",
            "message": str(exc),
            "current_status": exc.current,
            "requested_status": exc.requested,
        }
    )


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(
        status_code=404,
        content={"error": "not_found", "message": str(exc)}
    )


@app.exception_handler(ComputationFailure)
async def computation_failure_handler(request: Request, exc: ComputationFailure):
    """Store failures are already logged with traceback where they happened."""
    return JSONResponse(
        status_code=503,
        content={
            "error": "service_unavailable",
            "message": "Analytics are temporarily unavailable. Please try again later.",
            "request_id": request.headers.get("X-Request-ID"),
        }
    )


# Global exception handler for unhandled errors
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected server errors with structured response."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred. Please try again later.",
            "request_id": request.headers.get("X-Request-ID"),
        }
    )

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for now
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(baselines_router, prefix="/api")
app.include_router(insights_router, prefix="/api")
app.include_router(decisions_router, prefix="/api")
app.include_router(analytics_router, prefix="/api")


@app.get("/")
def read_root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "docs": "/docs",
        "health": "/health"
    }
