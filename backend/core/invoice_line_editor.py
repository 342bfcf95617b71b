"""
INVOICE BASIS: LINE EDITOR

Edits one line of a draft invoice basis and recomputes the totals.

RULES:
- Diary lines are informational and never editable
- Numeric fields are stored rounded to 2 decimals; null stores 0
- Text fields are trimmed; blank stores null
- amount back-solves unit_price against the effective quantity
- Lines and totals are written together in one conditional update
"""

from datetime import datetime
from typing import Dict, Any, List, Tuple
import copy
import logging

from audit_service import AuditService, LINE_UPDATE_ACTION
from permissions import PermissionChecker, InvoiceBasisAction
from invoice_basis_models import InvoiceBasisLineUpdate, parse_payload
from core.financial_precision import (
    DEFAULT_CURRENCY,
    DIARY_LINE_TYPE,
    calculate_invoice_totals,
    safe_divide,
    to_decimal,
    to_float,
)
from core.invoice_basis_errors import (
    InvoiceBasisLockedError,
    InvoiceBasisValidationError,
    InvoiceLineNotFoundError
)
from core.invoice_basis_repository import InvoiceBasisRepository

logger = logging.getLogger(__name__)

TEXT_FIELDS = ("description", "article_code", "account", "unit", "vat_code")
NUMERIC_FIELDS = ("quantity", "unit_price", "discount", "vat_rate")
MAX_DISCOUNT = 100.0


def find_line(lines: List[Dict[str, Any]], line_id: str) -> Tuple[int, Dict[str, Any]]:
    for index, line in enumerate(lines):
        if isinstance(line, dict) and str(line.get("id")) == str(line_id):
            return index, line
    raise InvoiceLineNotFoundError(line_id)


def _clean_text(value):
    if value is None:
        return None
    return value.strip() or None


def apply_line_update(line: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a new line with the validated sparse fields applied.

    Raises InvoiceBasisValidationError when amount cannot be back-solved.
    """
    updated = copy.deepcopy(line)

    for field in TEXT_FIELDS:
        if field in fields:
            updated[field] = _clean_text(fields[field])

    for field in NUMERIC_FIELDS:
        if field in fields:
            updated[field] = to_float(fields[field] or 0)

    if "discount" in fields:
        updated["discount"] = min(updated["discount"], MAX_DISCOUNT)

    if fields.get("dimensions") is not None:
        merged = dict(line.get("dimensions") or {})
        merged.update(fields["dimensions"])
        updated["dimensions"] = merged

    if "attachments" in fields:
        updated["attachments"] = list(fields["attachments"])

    if "amount" in fields:
        effective_quantity = updated.get("quantity") if "quantity" in fields else line.get("quantity")
        if not effective_quantity or to_decimal(effective_quantity) <= 0:
            raise InvoiceBasisValidationError(
                "Cannot set amount on a line without a positive quantity"
            )
        updated["unit_price"] = to_float(safe_divide(fields["amount"] or 0, effective_quantity))

    return updated


class InvoiceLineEditor:
    """
    Orchestrates find -> validate -> recompute totals -> conditional update
    -> reload -> audit for line edits.
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

    async def update_line(
        self,
        current_user: dict,
        project_id: str,
        period_start: str,
        period_end: str,
        line_id: str,
        body: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Apply a line update. Returns {"line": ..., "totals": ...}.
        """
        user = self.permission_checker.get_authenticated_user(current_user)
        self.permission_checker.authorize(user.get("role"), InvoiceBasisAction.LINE_UPDATE)

        basis = await self.repository.find(user["org_id"], project_id, period_start, period_end)
        if basis.get("locked"):
            raise InvoiceBasisLockedError(str(basis["_id"]))

        lines = list(basis.get("lines") or [])
        index, old_line = find_line(lines, line_id)

        if old_line.get("type") == DIARY_LINE_TYPE:
            raise InvoiceBasisValidationError("Diary lines cannot be edited")

        update = parse_payload(InvoiceBasisLineUpdate, body)
        fields = update.model_dump(exclude_unset=True)
        if not fields:
            raise InvoiceBasisValidationError("No recognized fields to update")

        new_line = apply_line_update(old_line, fields)
        lines[index] = new_line

        totals = calculate_invoice_totals(lines, basis.get("currency") or DEFAULT_CURRENCY)

        await self.repository.update_draft(basis["_id"], {
            "lines": lines,
            "totals": totals,
            "updated_at": datetime.utcnow()
        })
        updated = await self.repository.reload(basis["_id"])
        _, saved_line = find_line(updated.get("lines") or [], line_id)

        logger.info(
            f"[INVOICE_LINE] Updated line {line_id} on invoice basis {basis['_id']}: "
            f"total_ex_vat={totals['total_ex_vat']} by user {user['user_id']}"
        )

        self.audit_service.record(
            org_id=user["org_id"],
            user_id=user["user_id"],
            action=LINE_UPDATE_ACTION,
            entity_id=str(basis["_id"]),
            old_data={"line_id": line_id, "line": old_line},
            new_data={"line_id": line_id, "line": saved_line}
        )

        return {"line": saved_line, "totals": updated.get("totals")}
