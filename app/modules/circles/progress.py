from typing import Optional
import logging

from app.config import settings
from app.modules.circles.repository import CircleRepository
from app.modules.circles.schemas import CircleProgress, CircleStatus

logger = logging.getLogger(__name__)


class ProgressAggregator:
    """Derives the completion counters of a circle from its assignment rows."""

    def __init__(self, repository: CircleRepository, total_juz: Optional[int] = None):
        self.repository = repository
        self.total_juz = total_juz or settings.circle_total_juz

    def _progress(self, completed: int) -> CircleProgress:
        percentage = int(round(completed / self.total_juz * 100))
        return CircleProgress(completed=completed, total=self.total_juz, percentage=percentage)

    async def compute(self, circle_id: str) -> CircleProgress:
        return self._progress(await self.repository.count_completed(circle_id))

    async def recompute(self, circle_id: str) -> CircleProgress:
        """Count completed Juz and write the counter back; flips the circle to completed at 30/30."""
        completed = await self.repository.count_completed(circle_id)
        values = {"completed_juz": completed}
        if completed >= self.total_juz:
            values["status"] = CircleStatus.COMPLETED.value
        await self.repository.update_circle(circle_id, values)
        if completed >= self.total_juz:
            logger.info(f"Circle {circle_id} completed its Khatma")
        return self._progress(completed)
