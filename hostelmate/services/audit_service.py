# hostelmate/services/audit_service.py

from uuid import UUID
from typing import Optional, Dict, Any

from loguru import logger

from hostelmate.models.audit import AuditLog
from hostelmate.core.database import AsyncSessionLocal

# This function manages its own session so it can run as a BackgroundTask
# after the request session is gone.
async def log_activity(
    action: str,
    actor_id: Optional[UUID] = None,
    actor_role: Optional[str] = None,
    actor_name: Optional[str] = None,
    leave_application_id: Optional[UUID] = None,
    remarks: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None
):
    """
    Creates an audit log entry in a separate DB session.
    Safe for use in BackgroundTasks.
    """
    async with AsyncSessionLocal() as session:
        try:
            log_entry = AuditLog(
                actor_id=actor_id,
                actor_role=actor_role,
                actor_name=actor_name,
                leave_application_id=leave_application_id,
                action=action,
                remarks=remarks,
                details=details or {}
            )

            session.add(log_entry)
            await session.commit()

        except Exception:
            # An audit failure must not undo the action it describes
            logger.exception(f"Audit log write failed for action '{action}'")
            await session.rollback()
