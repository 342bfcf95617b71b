"""
INVOICE BASIS: API ROUTES

Routes for:
- Header edits of a draft invoice basis
- Line edits with totals recomputation
- Locking (draft -> locked, terminal)

All routes require authentication. The period of the invoice basis is passed
as periodStart/periodEnd query parameters for edits and in the JSON body for
the lock.
"""

from fastapi import APIRouter, HTTPException, Depends, Query, Request
from motor.motor_asyncio import AsyncIOMotorClient
from bson import ObjectId, Decimal128
from datetime import datetime
from typing import Optional, Any
import json
import logging
import os

from dotenv import load_dotenv
load_dotenv()

from auth import get_current_user
from audit_service import AuditService
from invoice_basis_models import validate_period
from permissions import PermissionChecker
from core.customer_directory import CustomerDirectory
from core.invoice_basis_errors import InvoiceBasisError, InvoiceBasisValidationError
from core.invoice_basis_repository import InvoiceBasisRepository
from core.invoice_header_editor import InvoiceHeaderEditor
from core.invoice_line_editor import InvoiceLineEditor
from core.invoice_lock_engine import InvoiceLockEngine

logger = logging.getLogger(__name__)


def serialize_doc(obj: Any) -> Any:
    """Recursively serialize MongoDB objects for JSON response"""
    if isinstance(obj, ObjectId):
        return str(obj)
    elif isinstance(obj, Decimal128):
        return float(obj.to_decimal())
    elif isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, dict):
        return {k: serialize_doc(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [serialize_doc(item) for item in obj]
    else:
        return obj


# Router
invoice_basis_router = APIRouter(prefix="/api/invoice-basis", tags=["Invoice Basis"])

# MongoDB
mongo_url = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
db_name = os.environ.get('DB_NAME', 'construction_management')

client = AsyncIOMotorClient(mongo_url)
db = client[db_name]

# Services
audit_service = AuditService(db)
permission_checker = PermissionChecker()
repository = InvoiceBasisRepository(db)
customer_directory = CustomerDirectory(db)

header_editor = InvoiceHeaderEditor(repository, audit_service, permission_checker)
line_editor = InvoiceLineEditor(repository, audit_service, permission_checker)
lock_engine = InvoiceLockEngine(repository, customer_directory, audit_service, permission_checker)


def get_header_editor() -> InvoiceHeaderEditor:
    return header_editor


def get_line_editor() -> InvoiceLineEditor:
    return line_editor


def get_lock_engine() -> InvoiceLockEngine:
    return lock_engine


def to_http_error(error: InvoiceBasisError) -> HTTPException:
    if error.status_code >= 500:
        logger.error(f"[INVOICE_BASIS] {error.kind}: {error.message}")
    return HTTPException(status_code=error.status_code, detail=error.to_dict())


async def read_json_body(request: Request) -> Optional[Any]:
    """Raw JSON body, None when empty."""
    raw = await request.body()
    if not raw or not raw.strip():
        return None
    try:
        return json.loads(raw)
    except ValueError:
        raise InvoiceBasisValidationError("Request body must be valid JSON")


def resolve_period(
    period_start: Optional[str],
    period_end: Optional[str],
    start: Optional[str],
    end: Optional[str]
):
    resolved_start = period_start or start
    resolved_end = period_end or end
    validate_period(resolved_start, resolved_end)
    return resolved_start, resolved_end


# =============================================================================
# HEADER
# =============================================================================

@invoice_basis_router.post("/{project_id}/header")
async def update_invoice_basis_header(
    project_id: str,
    request: Request,
    period_start: Optional[str] = Query(None, alias="periodStart"),
    period_end: Optional[str] = Query(None, alias="periodEnd"),
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    current_user: dict = Depends(get_current_user),
    editor: InvoiceHeaderEditor = Depends(get_header_editor)
):
    """
    Partially update header fields of a draft invoice basis.

    Absent keys are unchanged, null clears, values set.
    """
    try:
        period = resolve_period(period_start, period_end, start, end)
        body = await read_json_body(request)
        updated = await editor.update_header(current_user, project_id, period[0], period[1], body)
    except InvoiceBasisError as e:
        raise to_http_error(e)

    return {"invoice_basis": serialize_doc(updated)}


# =============================================================================
# LINES
# =============================================================================

@invoice_basis_router.post("/{project_id}/lines/{line_id}")
async def update_invoice_basis_line(
    project_id: str,
    line_id: str,
    request: Request,
    period_start: Optional[str] = Query(None, alias="periodStart"),
    period_end: Optional[str] = Query(None, alias="periodEnd"),
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    current_user: dict = Depends(get_current_user),
    editor: InvoiceLineEditor = Depends(get_line_editor)
):
    """Edit one non-diary line and return it with the recomputed totals."""
    try:
        period = resolve_period(period_start, period_end, start, end)
        body = await read_json_body(request)
        result = await editor.update_line(
            current_user, project_id, period[0], period[1], line_id, body
        )
    except InvoiceBasisError as e:
        raise to_http_error(e)

    return serialize_doc(result)


# =============================================================================
# LOCK
# =============================================================================

@invoice_basis_router.post("/{project_id}/lock")
async def lock_invoice_basis(
    project_id: str,
    request: Request,
    current_user: dict = Depends(get_current_user),
    engine: InvoiceLockEngine = Depends(get_lock_engine)
):
    """
    Lock the invoice basis of a period.

    Freezes customer snapshot, invoice number, dates, totals and OCR
    reference, and signs the document. Locked is terminal.
    """
    try:
        body = await read_json_body(request)
        locked = await engine.lock(current_user, project_id, body)
    except InvoiceBasisError as e:
        raise to_http_error(e)

    return {"invoice_basis": serialize_doc(locked)}
