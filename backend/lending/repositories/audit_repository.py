from typing import List, Optional

from sqlalchemy import select

from lending.db.base import AuditLog
from lending.domain.entities import AuditEntry
from lending.domain.interfaces import IAuditRepository


class AuditRepository(IAuditRepository):
    """Audit trail rows, written inside the caller's transaction."""

    def __init__(self, db_session):
        self.db = db_session

    def record(
        self,
        action: str,
        user_id: Optional[int] = None,
        target_type: Optional[str] = None,
        target_id: Optional[int] = None,
        details: Optional[dict] = None,
    ) -> None:
        self.db.add(
            AuditLog(
                user_id=user_id,
                action=action,
                target_type=target_type,
                target_id=target_id,
                details=details or {},
            )
        )
        self.db.flush()

    def list_recent(
        self, limit: int = 50, action: Optional[str] = None
    ) -> List[AuditEntry]:
        stmt = select(AuditLog).order_by(AuditLog.id.desc()).limit(limit)
        if action:
            stmt = stmt.where(AuditLog.action == action)
        return [self._to_domain(row) for row in self.db.execute(stmt).scalars()]

    def _to_domain(self, row: AuditLog) -> AuditEntry:
        return AuditEntry(
            id=row.id,
            user_id=row.user_id,
            action=row.action,
            target_type=row.target_type,
            target_id=row.target_id,
            details=dict(row.details or {}),
            created_at=row.created_at,
        )
