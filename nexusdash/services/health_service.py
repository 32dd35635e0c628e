import asyncio
import time

from sqlalchemy import text
from sqlmodel.ext.asyncio.session import AsyncSession

READINESS_DB_TIMEOUT_SECONDS = 2.0

_started_at = time.monotonic()


def uptime_seconds() -> int:
    return int(time.monotonic() - _started_at)


class HealthService:
    @staticmethod
    async def check_database_readiness(
        db: AsyncSession, timeout: float = READINESS_DB_TIMEOUT_SECONDS
    ) -> None:
        """Raise when SELECT 1 fails or does not answer within the timeout."""
        await asyncio.wait_for(db.exec(text("SELECT 1")), timeout=timeout)
