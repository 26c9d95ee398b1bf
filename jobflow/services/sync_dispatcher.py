"""
Sync dispatcher — fire-and-forget notification after every persisted lead write.

Handlers run as asyncio tasks scheduled after the write commits. A handler
failure is logged and never propagates back into the write path; retrying
is the handler's own concern (see workers/crm_sync.py).
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

SyncHandler = Callable[["SyncNotification"], Awaitable[None]]


@dataclass(frozen=True)
class SyncNotification:
    lead_id: uuid.UUID
    company_id: uuid.UUID
    # {source, action, changed_fields, previous_status, status}
    change_summary: dict[str, Any] = field(default_factory=dict)

    @property
    def source(self) -> Optional[str]:
        return self.change_summary.get("source")


class SyncDispatcher:
    def __init__(self):
        self._handlers: list[SyncHandler] = []
        self._tasks: set[asyncio.Task] = set()

    def register(self, handler: SyncHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, notification: SyncNotification) -> None:
        """Schedule every handler for this notification. Never raises."""
        for handler in self._handlers:
            coro = self._run(handler, notification)
            try:
                task = asyncio.create_task(coro)
            except RuntimeError as e:
                coro.close()
                logger.error("Sync dispatch could not be scheduled: %s", str(e))
                return
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, handler: SyncHandler, notification: SyncNotification) -> None:
        try:
            await handler(notification)
        except Exception as e:
            logger.error(
                "Sync handler %s failed for lead %s: %s",
                getattr(handler, "__name__", repr(handler)),
                str(notification.lead_id)[:8], str(e),
                exc_info=True,
                extra={"lead_id": str(notification.lead_id)},
            )

    async def drain(self, timeout: float = 10.0) -> None:
        """Wait for in-flight handlers (shutdown and tests)."""
        if not self._tasks:
            return
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning("%d sync tasks still running after %.0fs", len(pending), timeout)


_dispatcher: Optional[SyncDispatcher] = None


def get_sync_dispatcher() -> SyncDispatcher:
    """Process-wide dispatcher with the CRM push handler registered."""
    global _dispatcher
    if _dispatcher is None:
        from jobflow.workers.crm_sync import handle_sync_notification
        _dispatcher = SyncDispatcher()
        _dispatcher.register(handle_sync_notification)
    return _dispatcher
