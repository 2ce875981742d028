from typing import Optional, Dict, Any
import logging
import uuid

from pydantic_core import PydanticSerializationError, to_jsonable_python
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.access_policy import Actor
from fulfillment.models.audit_log import AuditLog


logger = logging.getLogger(__name__)


class AuditService:
    """
    Audit trail for pipeline mutations.

    Writes are best-effort: each entry goes into its own savepoint, and a
    failed write is logged and dropped without touching the caller's
    transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        action: str,
        resource: str,
        resource_id: Optional[uuid.UUID],
        actor: Optional[Actor] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        """
        Create an audit log entry.

        Args:
            action: The action performed (CREATE, STATUS_CHANGE, ...)
            resource: Type of resource (ORDER, CONSIGNMENT, ...)
            resource_id: ID of the affected resource
            actor: Who performed the action, None for the system
            old_values: Previous values (for updates)
            new_values: New values (for creates/updates)

        Returns:
            The created AuditLog entry, or None when the write failed
        """
        # Pending work belongs to the caller; flush it outside the savepoint
        await self.db.flush()
        try:
            audit_log = AuditLog(
                action=action,
                resource=resource,
                resource_id=resource_id,
                actor_id=actor.id if actor else None,
                actor_role=actor.role if actor else None,
                old_values=to_jsonable_python(old_values) if old_values else None,
                new_values=to_jsonable_python(new_values) if new_values else None,
            )
            async with self.db.begin_nested():
                self.db.add(audit_log)
        except (PydanticSerializationError, SQLAlchemyError) as e:
            logger.error(f"Audit write failed for {action} {resource} {resource_id}: {e}")
            return None
        return audit_log

    async def log_create(self, resource: str, resource_id: uuid.UUID, actor: Optional[Actor], data: Dict[str, Any]):
        return await self.record("CREATE", resource, resource_id, actor, new_values=data)

    async def log_update(
        self,
        resource: str,
        resource_id: uuid.UUID,
        actor: Optional[Actor],
        old_values: Dict[str, Any],
        new_values: Dict[str, Any],
        action: str = "UPDATE",
    ):
        return await self.record(action, resource, resource_id, actor, old_values=old_values, new_values=new_values)
