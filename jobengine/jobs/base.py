"""
Shared plumbing for the polling loops.

Every loop tick runs through PollingLoop.run_tick, which:
- skips the tick entirely when the previous one is still running
- logs and swallows anything the tick raises, so the driver keeps polling
- logs the tick stats as ``<name>_tick_completed``

The busy flag only stops a process from overlapping itself. Replicas are
kept apart by the conditional updates in the run store, never by this flag.
"""

import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from jobengine.config import Settings, get_settings
from jobengine.core.database import AsyncSessionLocal
from jobengine.core.logging import get_logger

logger = get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]


class PollingLoop(ABC):
    """A periodically ticked unit of work with a self-overlap guard."""

    name: str = "loop"

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session_factory = session_factory or AsyncSessionLocal
        self.settings = settings or get_settings()
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    async def run_tick(self, now: datetime | None = None) -> dict[str, int] | None:
        """
        Run one tick unless the previous one is still in flight.

        Returns:
            The tick stats, or None if the tick was skipped or failed
        """
        if self._busy:
            logger.bind(loop=self.name).debug(f"{self.name}_tick_skipped_busy")
            return None

        self._busy = True
        started = time.monotonic()
        try:
            stats = await self.tick(now)
        except Exception as e:
            logger.bind(loop=self.name, error=str(e)).exception(f"{self.name}_tick_failed")
            return None
        finally:
            self._busy = False

        logger.bind(
            loop=self.name,
            duration_ms=int((time.monotonic() - started) * 1000),
            **stats,
        ).info(f"{self.name}_tick_completed")
        return stats

    @abstractmethod
    async def tick(self, now: datetime | None = None) -> dict[str, int]:
        """Process one bounded batch and return counters."""
        pass
