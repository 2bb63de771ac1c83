"""
GradeLedger - Audit Recorder

Fire-and-forget audit trail for state-changing actions.

record() builds the event and hands it to an asyncio queue; a single
background task drains the queue into the AuditStore. The caller never awaits
the write and never sees its failure. The queue is started by the application
lifespan (or lazily on first use) and drained on shutdown.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Union
from uuid import UUID

from fastapi.encoders import jsonable_encoder

from backend.audit.models import AuditAction, AuditLog, Origin
from backend.audit.store import AuditStore
from backend.config import settings


logger = logging.getLogger("gradeledger.audit")


class AuditRecorder:
    """
    Queue-backed writer in front of an AuditStore.

    Usage:
        recorder = AuditRecorder(AuditStore(session_factory))
        recorder.start()
        recorder.record(admin.id, AuditAction.USER_APPROVED, "users", user.id,
                        {"approval_status": "pending"}, {"approval_status": "approved"},
                        origin)
        await recorder.stop()
    """

    def __init__(self, store: AuditStore, max_queue: Optional[int] = None):
        self._store = store
        self._max_queue = settings.AUDIT_QUEUE_SIZE if max_queue is None else max_queue
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        """Start the drain task on the running event loop."""
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self._max_queue)
        self._worker = asyncio.create_task(self._drain(), name="audit-recorder")

    async def stop(self) -> None:
        """Write everything still queued, then stop the drain task."""
        if not self.running:
            return
        await self._queue.join()
        self._worker.cancel()
        await asyncio.gather(self._worker, return_exceptions=True)
        self._worker = None

    async def flush(self) -> None:
        """Wait until every queued event has been handed to the store."""
        if self._queue is not None and self.running:
            await self._queue.join()

    def record(
        self,
        actor_id: Optional[UUID],
        action: Union[AuditAction, str],
        table_name: Optional[str] = None,
        record_id: Optional[Any] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        origin: Optional[Origin] = None,
    ) -> None:
        """
        Queue one audit event. Never raises.

        Args:
            actor_id: Acting user, or None when no user was resolved
            action: AuditAction or a caller-defined label
            table_name: Affected table, if any
            record_id: Affected record, if any
            old_values: "Before" snapshot
            new_values: "After" snapshot
            origin: Client IP and user agent
        """
        try:
            origin = origin or Origin()
            event = AuditLog(
                user_id=actor_id,
                action=action.value if isinstance(action, AuditAction) else str(action),
                table_name=table_name,
                record_id=str(record_id) if record_id is not None else None,
                old_values=jsonable_encoder(old_values) if old_values is not None else None,
                new_values=jsonable_encoder(new_values) if new_values is not None else None,
                ip_address=origin.ip_address,
                user_agent=origin.user_agent,
            )
            if not self.running:
                self.start()
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Audit queue full; dropping %s event", action)
        except Exception:
            logger.exception("Error queueing audit event %s", action)

    async def _drain(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._store.append(event)
            except Exception:
                logger.exception("Error writing audit event %s", event.action)
            finally:
                self._queue.task_done()
