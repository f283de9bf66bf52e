"""
Process-local deferred sends keyed by leave request id.

A later schedule for the same request replaces the earlier one, so a burst of
approvals produces a single status email reflecting the final state. Timers
live in memory only: a restart drops them, and multiple app instances do not
coordinate.
"""
import logging
import threading
from typing import Callable, Dict, Optional

from intranet.core.config import settings

logger = logging.getLogger(__name__)


class DeferredEmailScheduler:
    def __init__(self, callback: Callable[[int], None], delay_seconds: Optional[float] = None):
        self.callback = callback
        self.delay_seconds = settings.leave.status_email_delay_seconds if delay_seconds is None else delay_seconds
        self._timers: Dict[int, threading.Timer] = {}
        self._lock = threading.Lock()

    def schedule(self, request_id: int) -> None:
        timer = threading.Timer(self.delay_seconds, self._fire, args=(request_id,))
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(request_id, None)
            if previous is not None:
                previous.cancel()
            self._timers[request_id] = timer
        timer.start()
        logger.info(
            "Scheduled status email",
            extra={"leave_request_id": request_id, "delay_seconds": self.delay_seconds, "replaced": previous is not None},
        )

    def cancel(self, request_id: int) -> bool:
        with self._lock:
            timer = self._timers.pop(request_id, None)
        if timer is None:
            return False
        timer.cancel()
        logger.info("Cancelled status email", extra={"leave_request_id": request_id})
        return True

    def cancel_all(self) -> int:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        return len(timers)

    def is_scheduled(self, request_id: int) -> bool:
        with self._lock:
            return request_id in self._timers

    def _fire(self, request_id: int) -> None:
        with self._lock:
            timer = self._timers.get(request_id)
            if timer is not threading.current_thread():
                # Replaced or cancelled after this timer started
                return
            del self._timers[request_id]
        try:
            self.callback(request_id)
        except Exception as e:
            logger.error(f"Deferred status email for request {request_id} failed: {e}", exc_info=True)
