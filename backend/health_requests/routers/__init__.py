"""
API Routers for the Health Request Regulation service.
"""
from health_requests.routers.auth import router as auth_router
from health_requests.routers.patients import router as patients_router
from health_requests.routers.requests import router as requests_router
from health_requests.routers.catalog import router as catalog_router
from health_requests.routers.dashboard import router as dashboard_router
from health_requests.routers.notifications import router as notifications_router
from health_requests.routers.admin import router as admin_router
from health_requests.routers.reports import router as reports_router

__all__ = [
    "auth_router",
    "patients_router",
    "requests_router",
    "catalog_router",
    "dashboard_router",
    "notifications_router",
    "admin_router",
    "reports_router"
]
