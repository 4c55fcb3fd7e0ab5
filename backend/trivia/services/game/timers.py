import threading
import time
from typing import Callable, Dict, Optional


class TimerHandle:
    def __init__(self, session_code: str, duration: float, on_expire: Callable[[], None], kind: str):
        self.session_code = session_code
        self.duration = duration
        self.on_expire = on_expire
        self.kind = kind
        self.cancelled = False
        self.fired = False

    def __repr__(self):
        return f"<TimerHandle {self.session_code} kind={self.kind} duration={self.duration}>"


class TimerRegistry:
    """At most one pending deadline callback per session code.

    Workers are spawned with ``start_task`` (``socketio.start_background_task``
    in the app) and wait with ``sleep``. When ``autostart`` is off no worker
    is spawned and timers only fire through :meth:`expire`.
    """

    def __init__(self, logger, start_task=None, sleep=None, autostart=True):
        self.logger = logger
        self._start_task = start_task
        self._sleep = sleep or time.sleep
        self.autostart = autostart
        self._lock = threading.Lock()
        self._timers: Dict[str, TimerHandle] = {}

    def arm(self, session_code: str, duration: float, on_expire: Callable[[], None], kind: str = 'timeout') -> TimerHandle:
        handle = TimerHandle(session_code, max(0.0, float(duration)), on_expire, kind)
        with self._lock:
            previous = self._timers.get(session_code)
            if previous is not None:
                previous.cancelled = True
            self._timers[session_code] = handle
        if previous is not None:
            self.logger.info(f"[timer-replace] session={session_code} old={previous.kind} new={kind}")
        self.logger.info(f"[timer-set] session={session_code} kind={kind} duration={handle.duration}s")
        if self.autostart and self._start_task is not None:
            self._start_task(self._worker, handle)
        return handle

    def cancel(self, session_code: str) -> bool:
        with self._lock:
            handle = self._timers.pop(session_code, None)
            if handle is None:
                return False
            handle.cancelled = True
        self.logger.info(f"[timer-cancel] session={session_code} kind={handle.kind}")
        return True

    def pending(self, session_code: str) -> Optional[TimerHandle]:
        with self._lock:
            return self._timers.get(session_code)

    def is_armed(self, session_code: str) -> bool:
        return self.pending(session_code) is not None

    def expire(self, session_code: str) -> bool:
        """Fire the pending timer for ``session_code`` now."""
        handle = self.pending(session_code)
        if handle is None:
            return False
        return self._fire(handle)

    def cancel_all(self) -> None:
        with self._lock:
            handles = list(self._timers.values())
            self._timers.clear()
            for handle in handles:
                handle.cancelled = True
        if handles:
            self.logger.info(f"[timer-drain] cancelled={len(handles)}")

    def _worker(self, handle: TimerHandle) -> None:
        self._sleep(handle.duration)
        self._fire(handle)

    def _fire(self, handle: TimerHandle) -> bool:
        with self._lock:
            if handle.cancelled or handle.fired or self._timers.get(handle.session_code) is not handle:
                return False
            # Cleared before the callback so it may arm the next timer
            del self._timers[handle.session_code]
            handle.fired = True
        self.logger.info(f"[timer-fire] session={handle.session_code} kind={handle.kind}")
        try:
            handle.on_expire()
        except Exception:
            self.logger.exception(f"[timer-error] session={handle.session_code} kind={handle.kind}")
        return True
