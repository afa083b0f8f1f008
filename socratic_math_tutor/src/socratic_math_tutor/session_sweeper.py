"""
Background Session Sweeper

Periodically evicts expired sessions from the in-memory tier. Runs as an
asyncio task next to the request handlers and never blocks them.
"""

import asyncio
import logging
import os
from datetime import datetime
from typing import Optional

from socratic_math_tutor.session_manager import SessionManager

logger = logging.getLogger(__name__)


class SessionSweeper:
    """
    Background expiry sweep for a SessionManager.

    Calls `sweep_expired()` every `interval_seconds` until stopped.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        interval_seconds: float = 5 * 60,
        enabled: bool = True,
    ):
        """
        Initialize the sweeper.

        Args:
            session_manager: Store to sweep
            interval_seconds: Seconds between sweeps (default: 5 minutes)
            enabled: Whether sweeping is enabled (default: True)
        """
        self.session_manager = session_manager
        self.interval_seconds = interval_seconds
        self.enabled = enabled and os.getenv("SESSION_SWEEP_ENABLED", "true").lower() == "true"
        self.last_sweep: Optional[datetime] = None
        self.total_evicted = 0
        self.sweep_task: Optional[asyncio.Task] = None
        self.running = False

    async def start(self):
        """Start the background sweep task."""
        if not self.enabled:
            logger.info("🧹 [SessionSweeper] Sweeping is disabled")
            return

        if self.running:
            logger.warning("⚠️ [SessionSweeper] Sweeper already running")
            return

        self.running = True
        logger.info(f"🔄 [SessionSweeper] Starting session sweeper (interval: {self.interval_seconds}s)")
        self.sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self):
        """Stop the background sweep task."""
        self.running = False
        if self.sweep_task:
            self.sweep_task.cancel()
            try:
                await self.sweep_task
            except asyncio.CancelledError:
                pass
            self.sweep_task = None
        logger.info("🛑 [SessionSweeper] Session sweeper stopped")

    async def _sweep_loop(self):
        """Main loop - sleeps first so startup is not slowed down."""
        while self.running:
            try:
                await asyncio.sleep(self.interval_seconds)
                self.sweep_now()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"❌ [SessionSweeper] Error in sweep loop: {e}", exc_info=True)

    def sweep_now(self) -> int:
        """Run a single sweep immediately."""
        evicted = self.session_manager.sweep_expired()
        self.last_sweep = datetime.now()
        self.total_evicted += evicted
        if evicted:
            logger.info(f"✅ [SessionSweeper] Evicted {evicted} expired session(s)")
        return evicted

    def get_status(self) -> dict:
        """Get sweeper status."""
        return {
            "enabled": self.enabled,
            "running": self.running,
            "interval_seconds": self.interval_seconds,
            "last_sweep": self.last_sweep.isoformat() if self.last_sweep else None,
            "total_evicted": self.total_evicted,
        }
