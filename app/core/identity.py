"""
Device identity.

There are no accounts: a client generates a random id once, keeps it, and
presents it on every call. The id is not bound to the device in any
cryptographic way, so anyone who learns it can act as that member. Real
authentication can replace it by providing another DeviceIdentity.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
import logging
import uuid

logger = logging.getLogger(__name__)

DEVICE_ID_MAX_LENGTH = 100  # circle_members.device_id is varchar(100)


class DeviceIdentity(ABC):
    @abstractmethod
    def resolve_device_id(self) -> str:
        """Return the caller's device id."""


class HeaderDeviceIdentity(DeviceIdentity):
    """Device id presented by a client in the X-Device-Id header."""

    def __init__(self, header_value: Optional[str]):
        self.header_value = header_value

    def resolve_device_id(self) -> str:
        device_id = (self.header_value or "").strip()
        if not device_id:
            raise ValueError("X-Device-Id header is required")
        if len(device_id) > DEVICE_ID_MAX_LENGTH:
            raise ValueError(f"X-Device-Id cannot exceed {DEVICE_ID_MAX_LENGTH} characters")
        return device_id


class LocalDeviceIdentity(DeviceIdentity):
    """Client-side id: generated on first use, persisted to a file, reused afterwards."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def resolve_device_id(self) -> str:
        try:
            if self.path.exists():
                existing = self.path.read_text(encoding="utf-8").strip()
                if existing:
                    logger.debug(f"Existing device id loaded: {existing[:8]}...")
                    return existing
            new_id = str(uuid.uuid4())
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(new_id, encoding="utf-8")
            logger.info(f"New device id generated: {new_id[:8]}...")
            return new_id
        except OSError as e:
            # Works for this session only; memberships are lost on restart
            logger.warning(f"Could not persist device id, using a temporary one: {e}")
            return str(uuid.uuid4())

    def has_device_id(self) -> bool:
        try:
            return self.path.exists() and bool(self.path.read_text(encoding="utf-8").strip())
        except OSError as e:
            logger.error(f"Error checking device id: {e}")
            return False

    def clear_device_id(self) -> None:
        """Forget the id. Access to existing circles is lost."""
        try:
            self.path.unlink(missing_ok=True)
            logger.info("Device id cleared")
        except OSError as e:
            logger.error(f"Error clearing device id: {e}")
