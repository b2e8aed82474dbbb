from typing import Optional, Dict, Any, List
import uuid
from datetime import datetime

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditLog


class AuditService:
    """
    Audit service for the append-only reconciliation trail.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action_type: str,
        master_reference: str,
        round_number: Optional[int] = None,
        user_id: Optional[uuid.UUID] = None,
        new_data: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """
        Create an audit log entry in the caller's transaction.

        Args:
            action_type: The outcome or override (closed, next_round, cierre_forzado, ...)
            master_reference: Reference code the action applies to
            round_number: Round the reference was in when the action ran
            user_id: ID of the user performing the action
            new_data: Snapshot of the payload written

        Returns:
            The created AuditLog entry
        """
        audit_log = AuditLog(
            action_type=action_type,
            master_reference=master_reference,
            round_number=round_number,
            user_id=user_id,
            new_data=new_data,
        )
        self.db.add(audit_log)
        await self.db.flush()
        return audit_log

    async def get_audit_logs(
        self,
        master_reference: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
        action_type: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[List[AuditLog], int]:
        """
        Get audit logs with filtering, oldest first.
        """
        stmt = select(AuditLog).order_by(AuditLog.created_at.asc())

        if master_reference:
            stmt = stmt.where(AuditLog.master_reference == master_reference)
        if user_id:
            stmt = stmt.where(AuditLog.user_id == user_id)
        if action_type:
            stmt = stmt.where(AuditLog.action_type == action_type)
        if start_date:
            stmt = stmt.where(AuditLog.created_at >= start_date)
        if end_date:
            stmt = stmt.where(AuditLog.created_at <= end_date)

        # Count total
        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = (await self.db.execute(count_stmt)).scalar()

        # Get paginated results
        stmt = stmt.offset(skip).limit(limit)
        result = await self.db.execute(stmt)
        logs = result.scalars().all()

        return list(logs), total or 0
