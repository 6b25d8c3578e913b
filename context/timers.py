"""
Call timers — per-call timeout expiry and deferred record retirement.

Both schedulers sit on the running asyncio loop (`loop.call_later`), so
callbacks run as discrete tasks on the same thread as the webhook
handlers and never interleave with a fold in progress.

    TimeoutScheduler   one cancelable handle per in-flight call
    RetentionSweeper   fire-and-forget deletion after the retention window
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Callable, Optional

logger = structlog.get_logger()


def _run_guarded(event: str, call_id: str, callback: Callable[[str], None]) -> None:
    """Invoke a timer callback; failures are logged, never raised into the loop."""
    try:
        callback(call_id)
    except Exception:
        logger.exception(event, call_id=call_id)


class TimeoutScheduler:
    """
    Owns at most one pending expiry timer per call identifier.

    Usage:
        timeouts.arm("CA123", 45, tracker.expire)
        timeouts.disarm("CA123")      # any inbound event for CA123
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._handles: dict[str, asyncio.TimerHandle] = {}

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def arm(self, call_id: str, delay: float, on_expire: Callable[[str], None]) -> asyncio.TimerHandle:
        """Schedule on_expire(call_id) after `delay` seconds, replacing any prior timer."""
        if self.disarm(call_id):
            logger.warning("call_timeout_rearmed", call_id=call_id)

        handle = self._get_loop().call_later(delay, self._fire, call_id, on_expire)
        self._handles[call_id] = handle
        logger.debug("call_timeout_armed", call_id=call_id, delay_seconds=delay)
        return handle

    def disarm(self, call_id: str) -> bool:
        """Cancel the pending timer. Returns True if one was pending."""
        handle = self._handles.pop(call_id, None)
        if handle is None:
            return False
        handle.cancel()
        logger.debug("call_timeout_disarmed", call_id=call_id)
        return True

    def is_armed(self, call_id: str) -> bool:
        return call_id in self._handles

    def cancel_all(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()

    def _fire(self, call_id: str, on_expire: Callable[[str], None]) -> None:
        self._handles.pop(call_id, None)
        logger.info("call_timeout_expired", call_id=call_id)
        _run_guarded("call_timeout_callback_failed", call_id, on_expire)

    def __len__(self) -> int:
        return len(self._handles)


class RetentionSweeper:
    """
    Deletes a finished call's record once the retention window passes.

    Deletions are not cancelable and not re-armed: the record is removed
    at expiry whatever happened to it in between.
    """

    DEFAULT_RETENTION_SECONDS = 60 * 60

    def __init__(
        self,
        on_delete: Callable[[str], None],
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self._on_delete = on_delete
        self.retention_seconds = retention_seconds
        self._loop = loop
        self._pending: set[asyncio.TimerHandle] = set()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def schedule_deletion(self, call_id: str, after: Optional[float] = None) -> asyncio.TimerHandle:
        delay = self.retention_seconds if after is None else after
        handle: asyncio.TimerHandle

        def _sweep() -> None:
            self._pending.discard(handle)
            logger.info("call_record_retired", call_id=call_id)
            _run_guarded("call_retention_failed", call_id, self._on_delete)

        handle = self._get_loop().call_later(delay, _sweep)
        self._pending.add(handle)
        logger.info("call_retention_scheduled", call_id=call_id, after_seconds=delay)
        return handle

    def cancel_all(self) -> None:
        """Drop every pending deletion (process shutdown only)."""
        for handle in self._pending:
            handle.cancel()
        self._pending.clear()

    def __len__(self) -> int:
        return len(self._pending)
