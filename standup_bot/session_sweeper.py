# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Background sweep of abandoned standup sessions.

A user who opens the standup form and walks away leaves a session behind.
The sweeper periodically asks the flow service to remove sessions idle for
longer than the configured lifetime.
"""

import asyncio
from typing import Optional

from redis.exceptions import RedisError

from standup_bot.logging_config import get_logger
from standup_bot.standup_flow import StandupFlowService


logger = get_logger(__name__)


class SessionSweeper:
    """Runs sweep_expired_sessions on a fixed interval."""

    def __init__(
        self,
        flow_service: StandupFlowService,
        max_age_minutes: int = 60,
        interval_seconds: float = 30 * 60
    ):
        """
        Initialize the sweeper.

        Args:
            flow_service: Service owning the sessions
            max_age_minutes: Idle time after which a session is removed
            interval_seconds: Pause between sweeps
        """
        self.flow_service = flow_service
        self.max_age_minutes = max_age_minutes
        self.interval_seconds = interval_seconds
        self.running = False
        self._task: Optional[asyncio.Task] = None

        logger.info("Session sweeper initialized", extra={
            'max_age_minutes': max_age_minutes,
            'interval_seconds': interval_seconds
        })

    async def start(self) -> None:
        """Start sweeping in the background."""
        if self.running:
            logger.warning("Session sweeper already running")
            return

        self.running = True
        self._task = asyncio.create_task(self._run())
        logger.info("Session sweeper started")

    async def stop(self) -> None:
        """Stop the background sweep and wait for it to exit."""
        if not self.running:
            return

        self.running = False
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

        logger.info("Session sweeper stopped")

    async def sweep_once(self) -> int:
        """Run one sweep. Store failures are logged and count as zero removals."""
        try:
            return await self.flow_service.sweep_expired_sessions(self.max_age_minutes)
        except (RedisError, OSError) as e:
            logger.error("Session sweep failed", extra={'error': str(e)})
            return 0

    async def _run(self) -> None:
        while self.running:
            try:
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                break
            await self.sweep_once()
