"""Periodic deletion of empty and stale room logs.

The sweeper works on durable storage only. It never reads through or
modifies the ``RoomStore`` cache, so a room deleted from disk while cached
stays servable from memory until the process restarts.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from .persistence import RoomFileBackend, RoomNotFound, RoomStorageError
from .schemas import utc_now

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Outcome of one sweep over all stored rooms."""
    deleted_empty: List[str] = field(default_factory=list)
    deleted_stale: List[str] = field(default_factory=list)
    kept: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def deleted(self) -> List[str]:
        return self.deleted_empty + self.deleted_stale


class RetentionSweeper:
    """Deletes room logs that are empty or whose last message is too old.

    Args:
        backend: Durable room storage to sweep.
        keep_days: Retention window; a log whose newest message is older
            than this is deleted.
        interval_seconds: Delay between periodic sweeps.
    """

    def __init__(
        self,
        backend: RoomFileBackend,
        keep_days: float = 30,
        interval_seconds: float = 24 * 60 * 60,
    ) -> None:
        self._backend = backend
        self._keep_days = keep_days
        self._retention = timedelta(days=keep_days)
        self._interval = interval_seconds
        self._sweep_task: Optional[asyncio.Task] = None  # type: ignore[type-arg]

    @property
    def retention(self) -> timedelta:
        return self._retention

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, run_now: bool = True) -> None:
        """Optionally sweep immediately, then start the periodic sweep task."""
        if run_now:
            await asyncio.to_thread(self.sweep_once)
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(
            "Retention sweep task started (keep_days=%s, interval=%ss)",
            self._keep_days, self._interval,
        )

    async def stop(self) -> None:
        """Cancel the periodic sweep task."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        logger.info("Retention sweep task stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await asyncio.to_thread(self.sweep_once)
            except Exception:
                logger.exception("Retention sweep failed")

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def sweep_once(self, now: Optional[datetime] = None) -> SweepReport:
        """Run one sweep over every stored room.

        A room that cannot be read or deleted is logged and skipped; the
        sweep always continues with the next room.
        """
        now = now or utc_now()
        report = SweepReport()

        try:
            room_ids = self._backend.list_rooms()
        except OSError as e:
            logger.error(f"Cannot list room files in {self._backend.data_dir}: {e}")
            return report

        for room_id in room_ids:
            try:
                messages = self._backend.load(room_id)
            except RoomNotFound:
                # Removed between listing and loading.
                continue
            except RoomStorageError as e:
                logger.error(f"Error checking room file for {room_id}: {e}")
                report.failed.append(room_id)
                continue

            if not messages:
                reason = "empty"
            elif now - messages[-1].time > self._retention:
                reason = "old"
            else:
                report.kept.append(room_id)
                continue

            try:
                self._backend.delete(room_id)
            except RoomStorageError as e:
                logger.error(f"Error deleting {reason} room {room_id}: {e}")
                report.failed.append(room_id)
                continue

            if reason == "empty":
                report.deleted_empty.append(room_id)
            else:
                report.deleted_stale.append(room_id)
            logger.info(f"Deleted {reason} room file for {room_id}")

        logger.info(
            "Retention sweep done: %d deleted, %d kept, %d failed",
            len(report.deleted), len(report.kept), len(report.failed),
        )
        return report
