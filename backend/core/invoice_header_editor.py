"""
INVOICE BASIS: HEADER EDITOR

Validated partial updates of header fields on a draft invoice basis.

RULES:
- Only keys present in the request are touched; null clears
- Locked documents reject every edit (the write itself is conditional)
- due_date follows invoice_date + payment_terms_days unless given explicitly
- Audit entries carry the full header before and after
"""

from datetime import datetime, date, timedelta
from typing import Dict, Any
import logging

from audit_service import AuditService, HEADER_UPDATE_ACTION
from permissions import PermissionChecker, InvoiceBasisAction
from invoice_basis_models import (
    InvoiceBasisHeaderUpdate, parse_payload, header_snapshot
)
from core.invoice_basis_errors import InvoiceBasisLockedError, InvoiceBasisValidationError
from core.invoice_basis_repository import InvoiceBasisRepository

logger = logging.getLogger(__name__)


def derive_due_date(invoice_date: str, payment_terms_days: int) -> str:
    """Calendar-day arithmetic: 2025-01-01 + 30 -> 2025-01-31."""
    return (date.fromisoformat(invoice_date) + timedelta(days=int(payment_terms_days))).isoformat()


class InvoiceHeaderEditor:
    """
    Orchestrates find -> validate -> conditional update -> reload -> audit
    for header edits.
    """

    def __init__(
        self,
        repository: InvoiceBasisRepository,
        audit_service: AuditService,
        permission_checker: PermissionChecker
    ):
        self.repository = repository
        self.audit_service = audit_service
        self.permission_checker = permission_checker

    def build_update(self, body: Dict[str, Any], basis: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate the sparse body and resolve the fields to write.

        Raises InvoiceBasisValidationError.
        """
        update = parse_payload(InvoiceBasisHeaderUpdate, body)
        fields = update.model_dump(exclude_unset=True)

        if not fields:
            raise InvoiceBasisValidationError("No recognized fields to update")

        if "due_date" not in fields and (
            "invoice_date" in fields or "payment_terms_days" in fields
        ):
            invoice_date = fields.get("invoice_date", basis.get("invoice_date"))
            payment_terms = fields.get("payment_terms_days", basis.get("payment_terms_days"))
            if invoice_date and payment_terms is not None:
                fields["due_date"] = derive_due_date(invoice_date, payment_terms)

        return fields

    async def update_header(
        self,
        current_user: dict,
        project_id: str,
        period_start: str,
        period_end: str,
        body: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Apply a header update and return the reloaded invoice basis.
        """
        user = self.permission_checker.get_authenticated_user(current_user)
        self.permission_checker.authorize(user.get("role"), InvoiceBasisAction.HEADER_UPDATE)

        basis = await self.repository.find(user["org_id"], project_id, period_start, period_end)
        if basis.get("locked"):
            raise InvoiceBasisLockedError(str(basis["_id"]))

        fields = self.build_update(body, basis)
        old_header = header_snapshot(basis)

        fields["updated_at"] = datetime.utcnow()
        await self.repository.update_draft(basis["_id"], fields)
        updated = await self.repository.reload(basis["_id"])

        logger.info(
            f"[INVOICE_HEADER] Updated {sorted(k for k in fields if k != 'updated_at')} "
            f"on invoice basis {basis['_id']} by user {user['user_id']}"
        )

        self.audit_service.record(
            org_id=user["org_id"],
            user_id=user["user_id"],
            action=HEADER_UPDATE_ACTION,
            entity_id=str(basis["_id"]),
            old_data=old_header,
            new_data=header_snapshot(updated)
        )

        return updated
