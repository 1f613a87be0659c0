"""
Services for the Health Request Regulation service.
"""
from health_requests.services.auth_service import AuthService
from health_requests.services.patient_service import PatientService
from health_requests.services.file_store import FileStore, LocalFileStore
from health_requests.services.notification_channel import NotificationChannel, WhatsAppChannel

__all__ = [
    "AuthService",
    "PatientService",
    "FileStore",
    "LocalFileStore",
    "NotificationChannel",
    "WhatsAppChannel"
]
