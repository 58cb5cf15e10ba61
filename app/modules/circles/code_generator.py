import re
import secrets
import time
import logging
from typing import Callable, Optional

from app.config import settings
from app.database.row_store import RowStore
from app.modules.circles.models import CIRCLES_TABLE
from app.modules.circles.schemas import CircleStatus

logger = logging.getLogger(__name__)

# No 0/O, 1/I/L: codes are read aloud and typed by hand
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
CODE_PATTERN = re.compile(r"^[A-Z0-9]{4}-[A-Z0-9]{4}$")

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def is_valid_code_format(code: str) -> bool:
    return bool(CODE_PATTERN.match(normalize_code(code)))


def _to_base36(value: int) -> str:
    digits = ""
    while value:
        value, rem = divmod(value, 36)
        digits = _BASE36[rem] + digits
    return digits or "0"


class CodeGenerator:
    def __init__(
        self,
        store: RowStore,
        max_attempts: Optional[int] = None,
        random_code: Optional[Callable[[], str]] = None,
    ):
        self.store = store
        self.max_attempts = max_attempts if max_attempts is not None else settings.circle_code_max_attempts
        self._random_code = random_code or self.random_code

    @staticmethod
    def random_code() -> str:
        chars = "".join(secrets.choice(CODE_ALPHABET) for _ in range(8))
        return f"{chars[:4]}-{chars[4:]}"

    async def is_taken(self, code: str) -> bool:
        rows = await self.store.select(
            CIRCLES_TABLE,
            {"code": code, "status": CircleStatus.ACTIVE.value},
            columns="id",
            limit=1,
        )
        return bool(rows)

    async def generate(self) -> str:
        """Return a XXXX-XXXX code not used by any active circle at check time.

        After max_attempts collisions the second half is replaced by a suffix
        derived from the current time so generation always terminates.
        """
        code = self._random_code()
        for _ in range(self.max_attempts):
            if not await self.is_taken(code):
                logger.info(f"Generated circle code {code}")
                return code
            code = self._random_code()

        suffix = _to_base36(int(time.time() * 1000))[-4:].rjust(4, "0")
        code = f"{code[:4]}-{suffix}"
        logger.warning(f"Code space crowded after {self.max_attempts} attempts, using time-based code {code}")
        return code
