"""
Common Pydantic models for the Storefront checkout API
"""
from pydantic import BaseModel
from datetime import datetime


class HealthResponse(BaseModel):
    """
    Health check response model
    """
    status: str
    message: str
    timestamp: datetime
    version: str
