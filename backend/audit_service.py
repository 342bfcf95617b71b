from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime
from typing import Optional, Dict, Any, Set
import asyncio
import copy
import logging

logger = logging.getLogger(__name__)

INVOICE_BASIS_ENTITY = "invoice_basis"

# Actions recorded for invoice basis mutations
HEADER_UPDATE_ACTION = "invoice_basis.header.update"
LINE_UPDATE_ACTION = "invoice_basis.line.update"
LOCK_ACTION = "invoice_basis.lock"


class AuditService:
    """
    Service for immutable audit logging (INSERT ONLY).

    Entries are written by fire-and-forget tasks. The caller's request never
    waits for the write and never sees its failure; failures are reported on
    this module's logger and counted in failed_count.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db.audit_logs
        self.failed_count = 0
        self._pending: Set[asyncio.Task] = set()

    def build_entry(
        self,
        org_id: str,
        user_id: str,
        action: str,
        entity_id: str,
        old_data: Optional[Dict[str, Any]] = None,
        new_data: Optional[Dict[str, Any]] = None,
        entity_type: str = INVOICE_BASIS_ENTITY
    ) -> Dict[str, Any]:
        return {
            "org_id": org_id,
            "user_id": user_id,
            "action": action,
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            # Copies, so later mutation of the caller's dicts can't leak in
            "old_data": copy.deepcopy(old_data),
            "new_data": copy.deepcopy(new_data),
            "timestamp": datetime.utcnow()
        }

    def record(
        self,
        org_id: str,
        user_id: str,
        action: str,
        entity_id: str,
        old_data: Optional[Dict[str, Any]] = None,
        new_data: Optional[Dict[str, Any]] = None
    ) -> Optional[asyncio.Task]:
        """
        Schedule an audit entry for insertion without blocking the caller.
        """
        try:
            entry = self.build_entry(org_id, user_id, action, entity_id, old_data, new_data)
            task = asyncio.get_running_loop().create_task(self._write(entry))
        except Exception as e:
            self.failed_count += 1
            logger.error(f"[AUDIT] Failed to schedule {action} on {entity_id}: {str(e)}")
            return None

        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _write(self, entry: Dict[str, Any]):
        try:
            await self.collection.insert_one(entry)
            logger.info(
                f"Audit log created: {entry['action']} on "
                f"{entry['entity_type']}:{entry['entity_id']} by user:{entry['user_id']}"
            )
        except Exception as e:
            # Don't fail the main operation if audit logging fails
            self.failed_count += 1
            logger.error(
                f"[AUDIT] Failed to create audit log {entry['action']} "
                f"for {entry['entity_id']}: {str(e)}"
            )

    async def drain(self):
        """Wait for in-flight audit writes (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
