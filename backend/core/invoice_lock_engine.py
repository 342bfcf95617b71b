"""
INVOICE BASIS: LOCK ENGINE

Draft -> locked, the only state transition of an invoice basis. Locked is
terminal: nothing in this service unlocks or amends a locked document.

PROCEDURE:
1. Resolve the customer (stored, else the project's current customer)
2. Snapshot the customer into the document
3. Resolve header fields: caller > stored > default
4. Recompute totals with the resolved currency
5. Resolve the OCR reference (caller > stored > generated)
6. Hash the canonical document
7. Write everything plus locked/locked_by/locked_at in ONE conditional update
8. Audit the transition (fire-and-forget)

Validation failures abort before step 7.
"""

from datetime import datetime
from typing import Dict, Any, Optional
import logging
import os

from audit_service import AuditService, LOCK_ACTION
from permissions import PermissionChecker, InvoiceBasisAction
from invoice_basis_models import InvoiceBasisLockRequest, parse_payload, validate_period
from core.customer_directory import CustomerDirectory
from core.document_signature import build_signature_payload, compute_hash_signature
from core.financial_precision import DEFAULT_CURRENCY, calculate_invoice_totals
from core.invoice_basis_errors import InvoiceBasisLockedError, InvoiceBasisValidationError
from core.invoice_basis_repository import InvoiceBasisRepository
from core.invoice_header_editor import derive_due_date
from core.ocr_reference import build_ocr_seed, generate_ocr_reference

logger = logging.getLogger(__name__)

DEFAULT_SERIES = os.getenv("INVOICE_DEFAULT_SERIES", "A")
DEFAULT_PAYMENT_TERMS_DAYS = int(os.getenv("INVOICE_DEFAULT_PAYMENT_TERMS_DAYS", "30"))


def generate_invoice_number(series: Optional[str], now: datetime) -> str:
    """<series>-YYYYMMDD-HHMM, e.g. A-20250131-1405."""
    return f"{series or DEFAULT_SERIES}-{now:%Y%m%d-%H%M}"


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def lock_audit_view(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "locked": bool(doc.get("locked")),
        "invoice_number": doc.get("invoice_number"),
        "invoice_series": doc.get("invoice_series"),
        "ocr_ref": doc.get("ocr_ref"),
    }


class InvoiceLockEngine:
    """
    Locks an invoice basis for a period and freezes its customer, numbering,
    totals and signature.
    """

    def __init__(
        self,
        repository: InvoiceBasisRepository,
        customer_directory: CustomerDirectory,
        audit_service: AuditService,
        permission_checker: PermissionChecker
    ):
        self.repository = repository
        self.customer_directory = customer_directory
        self.audit_service = audit_service
        self.permission_checker = permission_checker

    def resolve_fields(
        self,
        request: InvoiceBasisLockRequest,
        basis: Dict[str, Any],
        now: datetime
    ) -> Dict[str, Any]:
        """Caller overrides win over stored values, stored over defaults."""
        series = _first(request.invoice_series, basis.get("invoice_series"))
        invoice_number = _first(
            request.invoice_number,
            basis.get("invoice_number"),
        ) or generate_invoice_number(series, now)
        invoice_date = _first(
            request.invoice_date,
            basis.get("invoice_date"),
        ) or now.date().isoformat()
        payment_terms_days = _first(
            request.payment_terms_days,
            basis.get("payment_terms_days"),
            DEFAULT_PAYMENT_TERMS_DAYS
        )
        # A stored due date only stands while its invoice date and terms do
        if request.due_date is not None:
            due_date = request.due_date
        elif request.invoice_date is not None or request.payment_terms_days is not None:
            due_date = derive_due_date(invoice_date, payment_terms_days)
        else:
            due_date = basis.get("due_date") or derive_due_date(invoice_date, payment_terms_days)
        currency = _first(request.currency, basis.get("currency")) or DEFAULT_CURRENCY

        return {
            "invoice_series": series,
            "invoice_number": invoice_number,
            "invoice_date": invoice_date,
            "payment_terms_days": payment_terms_days,
            "due_date": due_date,
            "currency": currency,
            "reverse_charge_building": bool(_first(
                request.reverse_charge_building,
                basis.get("reverse_charge_building"),
                False
            )),
            "rot_rut_flag": bool(_first(
                request.rot_rut_flag,
                basis.get("rot_rut_flag"),
                False
            )),
        }

    async def lock(
        self,
        current_user: dict,
        project_id: str,
        body: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Lock the invoice basis of the period named in the body.

        Raises: UnauthorizedError, ForbiddenError, InvoiceBasisValidationError,
        InvoiceBasisNotFoundError, InvoiceBasisLockedError, PersistenceError
        """
        user = self.permission_checker.get_authenticated_user(current_user)
        self.permission_checker.authorize(user.get("role"), InvoiceBasisAction.LOCK)

        request = parse_payload(InvoiceBasisLockRequest, body if body is not None else {})
        validate_period(request.period_start, request.period_end)

        basis = await self.repository.find(
            user["org_id"], project_id, request.period_start, request.period_end
        )
        if basis.get("locked"):
            raise InvoiceBasisLockedError(str(basis["_id"]), "Invoice basis already locked")

        now = datetime.utcnow()
        fields: Dict[str, Any] = {}

        # Step 1-2: customer snapshot
        customer_id = basis.get("customer_id") or await self.customer_directory.resolve_customer_id(
            user["org_id"], project_id
        )
        if customer_id:
            fields["customer_id"] = customer_id
            snapshot = await self.customer_directory.build_customer_snapshot(
                user["org_id"], customer_id, captured_at=now
            )
            if snapshot is not None:
                fields["customer_snapshot"] = snapshot
            else:
                logger.warning(
                    f"[INVOICE_LOCK] Locking {basis['_id']} without customer snapshot, "
                    f"customer {customer_id} missing"
                )

        # Step 3-4: header and totals
        fields.update(self.resolve_fields(request, basis, now))
        lines = basis.get("lines") or []
        fields["totals"] = calculate_invoice_totals(lines, fields["currency"])

        # Step 5: OCR reference
        ocr_ref = _first(request.ocr_ref, basis.get("ocr_ref"))
        if not ocr_ref:
            try:
                ocr_ref = generate_ocr_reference(
                    build_ocr_seed(fields["invoice_number"], project_id)
                )
            except ValueError as e:
                raise InvoiceBasisValidationError(str(e))
        fields["ocr_ref"] = ocr_ref

        # Step 6: signature over the canonical document
        payload = build_signature_payload(
            project_id=basis.get("project_id", project_id),
            period_start=basis["period_start"],
            period_end=basis["period_end"],
            invoice_series=fields["invoice_series"],
            invoice_number=fields["invoice_number"],
            invoice_date=fields["invoice_date"],
            due_date=fields["due_date"],
            currency=fields["currency"],
            lines=lines,
            totals=fields["totals"],
            reverse_charge_building=fields["reverse_charge_building"],
            rot_rut_flag=fields["rot_rut_flag"]
        )
        fields["hash_signature"] = compute_hash_signature(payload)
        fields["updated_at"] = now

        # Step 7: the conditional write decides; a concurrent lock loses here
        await self.repository.lock(basis["_id"], fields, locked_by=user["user_id"], locked_at=now)
        locked = await self.repository.reload(basis["_id"])

        logger.info(
            f"[INVOICE_LOCK] Locked invoice basis {basis['_id']} as {fields['invoice_number']} "
            f"(ocr={fields['ocr_ref']}, total_inc_vat={fields['totals']['total_inc_vat']})"
        )

        # Step 8: audit
        new_view = lock_audit_view(locked)
        new_view["hash_signature"] = locked.get("hash_signature")
        self.audit_service.record(
            org_id=user["org_id"],
            user_id=user["user_id"],
            action=LOCK_ACTION,
            entity_id=str(basis["_id"]),
            old_data=lock_audit_view(basis),
            new_data=new_view
        )

        return locked
