from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
import time
import logging

from .api.v1.appointments import router as appointments_router
from .api.v1.notifications import router as notifications_router
from .api.v1.patients import router as patients_router
from .core.config import settings
from .core.database import SessionLocal, init_db
from .core.reminders import reminder_registry, reminder_scheduler, notification_gateway
from .services.appointment_service import AppointmentService

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Hospital management system: appointments, their lifecycle and SMS reminders",
    openapi_url="/api/v1/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Middleware setup
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Only add TrustedHostMiddleware in production, not in testing
if not settings.TESTING:
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=["localhost", "127.0.0.1", "*.localhost", "testserver"]
    )

# Custom middleware for request logging and timing
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)

    # Log request
    logger.info(
        f"{request.method} {request.url.path} - "
        f"Status: {response.status_code} - "
        f"Time: {process_time:.4f}s"
    )

    return response

# Exception handlers
@app.exception_handler(404)
async def not_found_handler(request: Request, exc: HTTPException):
    detail = getattr(exc, "detail", None)
    return JSONResponse(
        status_code=404,
        content={
            "error": "Not Found",
            "message": detail if detail and detail != "Not Found" else "The requested resource was not found",
            "path": str(request.url.path)
        }
    )

@app.exception_handler(500)
async def internal_error_handler(request: Request, exc: Exception):
    logger.error(f"Internal server error: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred"
        }
    )

# Include routers
app.include_router(patients_router, prefix="/api/v1")
app.include_router(appointments_router, prefix="/api/v1")
app.include_router(notifications_router, prefix="/api/v1")

def reconcile_reminders() -> int:
    """Rebuild the in-memory reminder registry from future appointments."""
    db = SessionLocal()
    try:
        service = AppointmentService(db, reminder_scheduler, reminder_registry, notification_gateway)
        return service.reconcile_reminders()
    finally:
        db.close()

# Startup and shutdown events
@app.on_event("startup")
async def startup_event():
    """Initialize application on startup."""
    logger.info("Starting Hospital Management System...")

    # Check database connection
    db_url = settings.get_database_url
    db_type = "PostgreSQL" if "postgresql" in db_url else "SQLite" if "sqlite" in db_url else "Unknown"
    logger.info(f"Using {db_type} database")

    # Initialize database
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {str(e)}")
        raise

    # Tests drive the scheduler directly
    if not settings.TESTING:
        reminder_scheduler.start()
        try:
            scheduled = reconcile_reminders()
            logger.info(f"Scheduled {scheduled} reminders for existing appointments")
        except Exception as e:
            logger.error(f"Error loading appointments for reminders: {str(e)}")

    logger.info("Application startup complete")

@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on application shutdown."""
    logger.info("Shutting down Hospital Management System...")
    reminder_scheduler.shutdown()

# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": settings.VERSION,
        "scheduled_reminders": len(reminder_registry)
    }

# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "message": "Welcome to Hospital Management System API",
        "version": settings.VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health"
    }

# API Info endpoint
@app.get("/api/v1/info")
async def api_info():
    """API information endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.VERSION,
        "endpoints": {
            "patients": "/api/v1/patients",
            "appointments": "/api/v1/appointments",
            "reminders": "/api/v1/reminders",
            "docs": "/docs",
            "openapi": "/api/v1/openapi.json"
        }
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "hospital.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info"
    )
