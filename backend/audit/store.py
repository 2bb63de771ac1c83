"""
GradeLedger - Audit Store

Append-only persistence for audit events.

append() never raises: a failed write is logged locally and dropped, so an
audit outage can never abort the action being audited.
"""

import logging
from typing import Callable, Dict, List, Any

from sqlalchemy import func
from sqlmodel import Session as DBSession, select
from starlette.concurrency import run_in_threadpool

from backend.audit.models import AuditLog, AuditQuery


logger = logging.getLogger("gradeledger.audit")


class AuditStore:
    """
    SQL-backed audit log.

    Usage:
        store = AuditStore(get_session_factory(engine))
        await store.append(AuditLog(action="USER_APPROVED", user_id=admin_id))
        page = await store.query(AuditQuery(action="USER_"))
    """

    def __init__(self, session_factory: Callable[[], DBSession]):
        self._session_factory = session_factory

    async def append(self, event: AuditLog) -> None:
        """Insert one event. Errors are logged and swallowed."""
        def _insert() -> None:
            with self._session_factory() as db:
                db.add(event)
                db.commit()

        try:
            await run_in_threadpool(_insert)
        except Exception:
            logger.exception("Error writing audit event %s", event.action)

    async def query(self, filters: AuditQuery) -> Dict[str, Any]:
        """
        Page through audit events, newest first.

        Returns:
            {"data": [...], "pagination": {page, limit, total, total_pages}}
        """
        def _query() -> Dict[str, Any]:
            with self._session_factory() as db:
                conditions = []
                if filters.user_id:
                    conditions.append(AuditLog.user_id == filters.user_id)
                if filters.action:
                    conditions.append(AuditLog.action.ilike(f"%{filters.action}%"))
                if filters.table_name:
                    conditions.append(AuditLog.table_name == filters.table_name)
                if filters.start_date:
                    conditions.append(AuditLog.created_at >= filters.start_date)
                if filters.end_date:
                    conditions.append(AuditLog.created_at <= filters.end_date)

                total = db.exec(
                    select(func.count()).select_from(AuditLog).where(*conditions)
                ).one()
                rows: List[AuditLog] = list(db.exec(
                    select(AuditLog)
                    .where(*conditions)
                    .order_by(AuditLog.created_at.desc())
                    .offset((filters.page - 1) * filters.limit)
                    .limit(filters.limit)
                ).all())

                return {
                    "data": rows,
                    "pagination": {
                        "page": filters.page,
                        "limit": filters.limit,
                        "total": total,
                        "total_pages": (total + filters.limit - 1) // filters.limit,
                    },
                }

        return await run_in_threadpool(_query)
