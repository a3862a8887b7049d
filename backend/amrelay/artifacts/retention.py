"""Time-based retention for published artifacts.

Artifacts are kept for a fixed window measured from their file modification
time. A single background task sweeps the downloads directory for the
lifetime of the process; sweeping is best effort and never blocks serving.
"""
from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class RetentionSweeper:
    """Deletes files in *directory* whose mtime is older than *max_age_seconds*."""

    def __init__(
        self,
        directory: Path,
        interval_seconds: float = 600.0,
        max_age_seconds: float = 3600.0,
    ) -> None:
        self._directory = Path(directory)
        self._interval = interval_seconds
        self._max_age = max_age_seconds
        self._sweep_task: Optional[asyncio.Task] = None  # type: ignore[type-arg]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def start(self) -> None:
        """Start the background sweep task (idempotent)."""
        if self.running:
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(
            "Retention sweep task started (dir=%s, every %ss, max age %ss)",
            self._directory, int(self._interval), int(self._max_age),
        )

    async def stop(self) -> None:
        """Cancel the sweep task."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        logger.info("Retention sweep task stopped")

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------

    async def _sweep_loop(self) -> None:
        while True:
            try:
                await asyncio.to_thread(self.sweep_once)
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Retention sweep failed: %s", exc)
            await asyncio.sleep(self._interval)

    def sweep_once(self, now: Optional[float] = None) -> int:
        """Delete every expired file; return how many were removed.

        A directory that cannot be listed is skipped until the next tick.
        """
        now = time.time() if now is None else now
        try:
            entries = list(self._directory.iterdir())
        except OSError as exc:
            logger.debug("Cannot list %s: %s", self._directory, exc)
            return 0

        removed = 0
        for entry in entries:
            try:
                if not entry.is_file():
                    continue
                if now - entry.stat().st_mtime > self._max_age:
                    entry.unlink()
                    removed += 1
            except OSError as exc:
                logger.warning("Failed to expire %s: %s", entry.name, exc)

        if removed:
            logger.info("Retention sweep: deleted %d expired artifacts", removed)
        return removed
