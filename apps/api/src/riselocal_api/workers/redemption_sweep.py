"""Worker wiring for periodic redemption sweeps."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from riselocal_api.core.settings import settings
from riselocal_api.jobs.redemptions import sweep_redemptions

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]


class RedemptionSweepWorker:
    """Periodically expires stale codes and reservations."""

    # meta: worker: redemption-sweep

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        interval_seconds: int | None = None,
        trigger_label: str | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.redemption_sweep_interval_seconds
        self._trigger_label = trigger_label or settings.redemption_sweep_trigger_label
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False
        self.last_summary: Dict[str, int] | None = None
        self.last_error: str | None = None

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info("Redemption sweep worker started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Redemption sweep worker stopped")

    async def run_once(self, *, triggered_by: str | None = None) -> Dict[str, int]:
        trigger = triggered_by or self._trigger_label
        try:
            summary = await sweep_redemptions(session_factory=self._ensure_session)
        except Exception as exc:
            self.last_error = str(exc)
            logger.exception("Redemption sweep failed", trigger=trigger, error=str(exc))
            raise
        self.last_summary = summary
        self.last_error = None
        logger.info("Redemption sweep run recorded", trigger=trigger, **summary)
        return summary

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover - defensive logging
                logger.exception("Redemption sweep iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session


__all__ = ["RedemptionSweepWorker"]
