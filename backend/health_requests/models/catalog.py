"""
Service catalog and health unit models.
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class ServiceTypeBase(BaseModel):
    """Fields shared by exam types and consultation types."""
    name: str = Field(..., min_length=2, max_length=255)
    description: Optional[str] = None
    monthly_quota: int = Field(..., ge=0)
    price: int = Field(0, ge=0, description="Price in cents")
    is_active: bool = True


class ServiceTypeCreate(ServiceTypeBase):
    pass


class ServiceTypeUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    monthly_quota: Optional[int] = Field(None, ge=0)
    price: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class ServiceTypeResponse(ServiceTypeBase):
    id: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class HealthUnitBase(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    address: str = Field(..., min_length=3)
    phone: Optional[str] = None
    is_active: bool = True


class HealthUnitCreate(HealthUnitBase):
    pass


class HealthUnitUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    is_active: Optional[bool] = None


class HealthUnitResponse(HealthUnitBase):
    id: int

    class Config:
        from_attributes = True
