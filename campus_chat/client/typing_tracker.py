import asyncio
from typing import Awaitable, Callable, Optional


class TypingTracker:
    """Local "is typing" state with a trailing-edge quiet timer.

    Every keystroke cancels the pending stop timer and schedules a new one, so
    ``typing`` drops back to False ``timeout`` seconds after the last keystroke.
    """

    def __init__(self, publish: Callable[[bool], Awaitable[None]], timeout: float = 1.0) -> None:
        self._publish = publish
        self._timeout = timeout
        self._timer: Optional[asyncio.Task] = None
        self.typing = False

    @property
    def timer_pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def keystroke(self) -> None:
        self.cancel()
        if not self.typing:
            self.typing = True
            await self._publish(True)
        self.cancel()
        self._timer = asyncio.create_task(self._stop_after_quiet())

    async def stop(self) -> None:
        """Cancel the timer and publish ``typing = False`` unconditionally."""
        self.cancel()
        self.typing = False
        await self._publish(False)

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _stop_after_quiet(self) -> None:
        await asyncio.sleep(self._timeout)
        # detach first so a keystroke arriving mid-publish does not cancel it
        self._timer = None
        self.typing = False
        await self._publish(False)
