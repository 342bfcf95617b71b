"""
INVOICE BASIS: REPOSITORY

Thin persistence boundary over the invoice_basis collection.

RULES:
- No business rules live here
- Every write is conditional on locked != True; the matched count of the
  write, not a previous read, decides whether the document was still a draft
- Store failures surface as PersistenceError
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError
from datetime import datetime
from typing import Dict, Any, Union
from bson import ObjectId
import logging

from core.invoice_basis_errors import (
    InvoiceBasisNotFoundError,
    InvoiceBasisLockedError,
    PersistenceError
)

logger = logging.getLogger(__name__)


def to_object_id(value: Union[str, ObjectId]) -> Union[str, ObjectId]:
    """Use ObjectId keys where the id looks like one, raw strings otherwise."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


class InvoiceBasisRepository:
    """
    Fetch-by-natural-key, conditional update and reload of invoice bases.
    """

    COLLECTION = "invoice_basis"

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db[self.COLLECTION]

    async def create_indexes(self):
        """One invoice basis per (organisation, project, period)."""
        await self.collection.create_index(
            [("org_id", 1), ("project_id", 1), ("period_start", 1), ("period_end", 1)],
            unique=True,
            name="idx_invoice_basis_period_unique"
        )
        await self.collection.create_index(
            [("locked", 1)],
            name="idx_invoice_basis_locked"
        )
        logger.info("[INVOICE_BASIS] Created invoice basis indexes")

    async def find(
        self,
        org_id: str,
        project_id: str,
        period_start: str,
        period_end: str
    ) -> Dict[str, Any]:
        """Find the invoice basis for a period. Raises InvoiceBasisNotFoundError."""
        try:
            doc = await self.collection.find_one({
                "org_id": org_id,
                "project_id": project_id,
                "period_start": period_start,
                "period_end": period_end
            })
        except PyMongoError as e:
            logger.error(f"[INVOICE_BASIS] Read failed for project {project_id}: {str(e)}")
            raise PersistenceError("Failed to read invoice basis") from e

        if not doc:
            raise InvoiceBasisNotFoundError("Invoice basis not found for period")

        return doc

    async def reload(self, invoice_basis_id: Union[str, ObjectId]) -> Dict[str, Any]:
        """Re-read a document after a write for a consistent response."""
        try:
            doc = await self.collection.find_one({"_id": to_object_id(invoice_basis_id)})
        except PyMongoError as e:
            logger.error(f"[INVOICE_BASIS] Reload failed for {invoice_basis_id}: {str(e)}")
            raise PersistenceError("Failed to load updated invoice basis") from e

        if not doc:
            raise InvoiceBasisNotFoundError(f"Invoice basis {invoice_basis_id} not found")

        return doc

    async def update_draft(
        self,
        invoice_basis_id: Union[str, ObjectId],
        fields: Dict[str, Any]
    ):
        """
        Apply a partial update to a draft.

        Raises InvoiceBasisLockedError if the document was locked before the
        write landed.
        """
        await self._conditional_set(invoice_basis_id, fields)

    async def lock(
        self,
        invoice_basis_id: Union[str, ObjectId],
        fields: Dict[str, Any],
        locked_by: str,
        locked_at: datetime
    ):
        """
        Draft -> locked in a single conditional write.

        Two concurrent lock requests cannot both match {"locked": {"$ne": True}}.
        """
        lock_fields = dict(fields)
        lock_fields.update({
            "locked": True,
            "locked_by": locked_by,
            "locked_at": locked_at,
        })
        await self._conditional_set(
            invoice_basis_id,
            lock_fields,
            conflict_message="Invoice basis already locked"
        )
        logger.info(f"[INVOICE_BASIS] Locked {invoice_basis_id} by user {locked_by}")

    async def _conditional_set(
        self,
        invoice_basis_id: Union[str, ObjectId],
        fields: Dict[str, Any],
        conflict_message: str = None
    ):
        object_id = to_object_id(invoice_basis_id)

        try:
            # Drafts written without a locked field count as unlocked
            result = await self.collection.update_one(
                {"_id": object_id, "locked": {"$ne": True}},
                {"$set": fields}
            )
        except PyMongoError as e:
            logger.error(f"[INVOICE_BASIS] Update failed for {invoice_basis_id}: {str(e)}")
            raise PersistenceError("Failed to update invoice basis") from e

        if result.matched_count == 1:
            return

        # Nothing matched: either the document is gone or it is locked
        try:
            existing = await self.collection.find_one({"_id": object_id}, {"locked": 1})
        except PyMongoError as e:
            raise PersistenceError("Failed to read invoice basis") from e

        if not existing:
            raise InvoiceBasisNotFoundError(f"Invoice basis {invoice_basis_id} not found")

        if not existing.get("locked"):
            logger.error(f"[INVOICE_BASIS] Update of draft {invoice_basis_id} matched nothing")
            raise PersistenceError("Failed to update invoice basis")

        logger.warning(f"[INVOICE_BASIS] Write rejected, {invoice_basis_id} is locked")
        raise InvoiceBasisLockedError(str(invoice_basis_id), conflict_message)
