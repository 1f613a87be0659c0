"""
Document models for file upload and management.
"""
from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from enum import Enum


class DocumentSlot(str, Enum):
    """Places on a request where a file can be attached."""
    ATTACHMENT = "attachment"  # supporting document, mandatory at intake
    ADDITIONAL_DOCUMENT = "additional_document"
    RESULT = "result"  # written only by the completion action


class StoredFile(BaseModel):
    """Handle returned by the file store."""
    reference: str
    filename: str
    mime_type: str
    size: int


class DocumentResponse(BaseModel):
    """Document metadata for API responses."""
    request_id: int
    slot: DocumentSlot
    filename: str
    mime_type: Optional[str] = None
    size: Optional[int] = None
    uploaded_at: Optional[datetime] = None
    uploaded_by: Optional[int] = None
