import asyncio
from typing import Any, Awaitable, Callable

import structlog

logger = structlog.get_logger()


class Scheduler:
    """
    Scheduler runs a job on a fixed interval until stop() is called.

    Ticks never overlap: a tick requested while another one is still
    in flight is dropped. Stopping lets the in-flight tick finish and
    exits the loop before the next one starts.
    """

    def __init__(
        self,
        job: "Callable[[], Awaitable[Any]]",
        interval_seconds: "float" = 30,
    ) -> "None":
        self._job = job
        self._interval = interval_seconds
        self._in_flight: "bool" = False
        self._stop_event: "asyncio.Event" = asyncio.Event()

    @property
    def in_flight(self) -> "bool":
        return self._in_flight

    def stop(self) -> "None":
        """
        signals the loop to stop after the current tick.
        """
        self._stop_event.set()

    async def tick(self) -> "bool":
        """
        runs the job once. Returns False when skipped because a
        previous tick is still running.
        """
        if self._in_flight:
            logger.warning("tick_skipped_in_flight")
            return False

        self._in_flight = True
        try:
            await self._job()
        except Exception:
            logger.exception("scheduled_job_failed")
        finally:
            self._in_flight = False

        return True

    async def run(self) -> "None":
        """
        runs the loop, starting with an immediate tick.
        """
        logger.info("scheduler_started", interval=self._interval)

        while not self._stop_event.is_set():
            await self.tick()

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except TimeoutError:
                pass

        logger.info("scheduler_stopped")
