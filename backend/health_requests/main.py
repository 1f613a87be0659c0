"""
Health Request Regulation - Main FastAPI Application

Backend for the municipal health service: reception registers exam and
consultation requests for patients, the regulation team accepts, confirms,
schedules and completes them, and the patient is notified over WhatsApp.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from health_requests.config import get_settings
from health_requests.database import init_db, get_db, ServiceRequest as RequestDB
from health_requests.routers import (
    auth_router,
    patients_router,
    requests_router,
    catalog_router,
    dashboard_router,
    notifications_router,
    admin_router,
    reports_router
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events."""
    logger.info("🚀 Starting Health Request Regulation...")
    init_db()
    logger.info(f"✅ Application started (quota enforcement: {settings.quota_enforcement})")

    yield

    logger.info("🛑 Shutting down application...")


app = FastAPI(
    title=settings.project_name,
    description="""
## 🏥 Health Request Regulation

Request management for the municipal health service:
- **Reception** registers patients and submits one request per exam or consultation
- **Regulation** accepts, confirms, schedules and completes requests, or suspends them
- **Admin** manages the catalog, monthly quotas, users and notification banners

Every request carries its supporting document; patients need both sides of
their identity document on file before a request can be submitted.
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)

app.include_router(auth_router, prefix=settings.api_v1_prefix)
app.include_router(patients_router, prefix=settings.api_v1_prefix)
app.include_router(requests_router, prefix=settings.api_v1_prefix)
app.include_router(catalog_router, prefix=settings.api_v1_prefix)
app.include_router(dashboard_router, prefix=settings.api_v1_prefix)
app.include_router(notifications_router, prefix=settings.api_v1_prefix)
app.include_router(admin_router, prefix=settings.api_v1_prefix)
app.include_router(reports_router, prefix=settings.api_v1_prefix)


@app.get("/", tags=["Health Check"])
async def root():
    """Root endpoint - API health check."""
    return {
        "status": "healthy",
        "application": settings.project_name,
        "version": "1.0.0",
        "documentation": "/docs"
    }


@app.get("/health", tags=["Health Check"])
def health_check(db: Session = Depends(get_db)):
    """Detailed health check endpoint."""
    try:
        db.execute(text("SELECT 1"))
        database = "connected"
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        database = "unavailable"

    return {
        "status": "healthy" if database == "connected" else "degraded",
        "database": database,
        "quota_enforcement": settings.quota_enforcement
    }


@app.get(f"{settings.api_v1_prefix}/public/stats", tags=["Public"])
def get_public_stats(db: Session = Depends(get_db)):
    """Total number of requests handled (no authentication required)."""
    try:
        total_requests = db.query(func.count(RequestDB.id)).scalar() or 0
    except SQLAlchemyError as e:
        logger.error(f"Error fetching public stats: {e}")
        total_requests = 0
    return {"total_requests": total_requests}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "health_requests.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
