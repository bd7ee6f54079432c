import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict

from config.settings import settings

logger = logging.getLogger(__name__)

SaveCallback = Callable[[], Awaitable[Any]]


class DebouncedSaveScheduler:
    """
    Arms and cancels deferred saves keyed by session id.

    Each arm() replaces the previous timer for the key, so only the last call
    inside the window runs its callback. Cancelled timers never fire.
    """

    def __init__(self, delay_seconds: float = settings.autosave_debounce_seconds):
        self.delay_seconds = delay_seconds
        self._timers: Dict[str, asyncio.Task] = {}

    def arm(self, key: str, callback: SaveCallback) -> None:
        self.cancel(key)
        self._timers[key] = asyncio.create_task(self._fire_after_delay(key, callback), name=f"autosave:{key}")
        logger.debug(f"Armed deferred save for {key} ({self.delay_seconds}s)")

    def cancel(self, key: str) -> bool:
        timer = self._timers.pop(key, None)
        if timer is None or timer.done():
            return False
        timer.cancel()
        logger.debug(f"Cancelled deferred save for {key}")
        return True

    def cancel_all(self) -> int:
        cancelled = 0
        for key in list(self._timers):
            if self.cancel(key):
                cancelled += 1
        return cancelled

    def is_armed(self, key: str) -> bool:
        timer = self._timers.get(key)
        return timer is not None and not timer.done()

    async def _fire_after_delay(self, key: str, callback: SaveCallback) -> None:
        await asyncio.sleep(self.delay_seconds)
        # Unregister before running so a new arm() during the save gets its own timer
        if self._timers.get(key) is asyncio.current_task():
            del self._timers[key]
        try:
            await callback()
            logger.info(f"Deferred save for {key} completed")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Auto-save is best effort; the next answer or an explicit save retries it
            logger.error(f"Deferred save for {key} failed: {e}", exc_info=True)
