"""
Core dependencies shared by the routers
"""

from fastapi import Header, HTTPException, status
from app.core.identity import HeaderDeviceIdentity
from typing import Optional
import logging

logger = logging.getLogger(__name__)


def get_device_id(x_device_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity taken from the X-Device-Id header"""
    try:
        return HeaderDeviceIdentity(x_device_id).resolve_device_id()
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
