"""
Asyncio Servo Adapter

Wraps a threaded ``Servo`` for asyncio callers. Commands return
immediately; waiting for motion to finish runs the blocking wait in the
event loop's default executor.

Author: Servo System Development
Created: October 2026
"""

import asyncio
import logging
from typing import Optional

from piservo.motion.servo import Servo

logger = logging.getLogger(__name__)


class AsyncServo:
    """Asyncio facade over a connected servo"""

    def __init__(self, servo: Servo):
        self.servo = servo
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def channel(self) -> int:
        return self.servo.channel

    async def move_to(self, value: float, wait: bool = False,
                      timeout: Optional[float] = None) -> bool:
        """
        Set a new target

        Args:
            value: Target in the servo's domain
            wait: Also wait for the servo to settle
            timeout: Maximum wait time in seconds when waiting

        Returns:
            True if the command was accepted (and, when waiting, completed)
        """
        self.servo.move_to(value)
        if wait:
            return await self.wait_for_motion_complete(timeout)
        return True

    async def stop(self) -> bool:
        self.servo.stop()
        return True

    async def set_speed(self, fraction: float) -> bool:
        self.servo.set_speed(fraction)
        return True

    async def get_position(self) -> float:
        return self.servo.position()

    async def wait_for_motion_complete(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the servo to settle without blocking the event loop

        Returns:
            True if motion completed within timeout
        """
        loop = asyncio.get_running_loop()
        completed = await loop.run_in_executor(None, self.servo.wait, timeout)
        if not completed:
            self.logger.warning(f"{self.servo.name} did not settle within {timeout}s")
        return completed

    async def close(self):
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.servo.close)
