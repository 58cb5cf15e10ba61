import math
import logging
from datetime import datetime
from typing import Optional

from app.core.clock import as_utc, utcnow
from app.modules.circles.lifecycle import CircleLifecycleManager
from app.modules.circles.repository import CircleRepository
from app.modules.circles.schemas import CircleExpiration

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def check_circle_expiration(expires_at: datetime, now: Optional[datetime] = None) -> CircleExpiration:
    """Whether a deadline has passed and how many (started) days remain."""
    remaining = (as_utc(expires_at) - as_utc(now or utcnow())).total_seconds()
    return CircleExpiration(
        is_expired=remaining < 0,
        days_remaining=max(0, math.ceil(remaining / SECONDS_PER_DAY)),
    )


class ExpirationSweeper:
    """Deletes active circles whose deadline has passed.

    Runs on demand (callers sweep before looking up a membership); there is
    no background loop.
    """

    def __init__(self, repository: CircleRepository, lifecycle: CircleLifecycleManager):
        self.repository = repository
        self.lifecycle = lifecycle

    async def sweep(self, now: Optional[datetime] = None) -> int:
        expired = await self.repository.list_expired(now or utcnow())
        if not expired:
            logger.debug("No expired circles found")
            return 0
        logger.info(f"Found {len(expired)} expired circle(s) to delete")
        cleaned = 0
        for circle in expired:
            try:
                logger.info(f"Deleting expired circle: {circle.id} (expired at {circle.expires_at})")
                if await self.lifecycle.delete(circle.id):
                    cleaned += 1
            except Exception as e:
                logger.error(f"Error deleting expired circle {circle.id}: {str(e)}")
        return cleaned
