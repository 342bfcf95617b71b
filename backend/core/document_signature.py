"""
INVOICE BASIS: DOCUMENT HASH SIGNATURE

Tamper-evidence digest written once, when an invoice basis is locked.

CANONICAL FORM (do not change without versioning the signature):
- Payload keys: project_id, period_start, period_end, invoice_series,
  invoice_number, invoice_date, due_date, currency, lines, totals,
  reverse_charge_building, rot_rut_flag
- json.dumps(sort_keys=True, separators=(",", ":"), ensure_ascii=False,
  default=str), encoded as UTF-8
- SHA-256, lowercase hex digest
"""

from datetime import datetime
from typing import Dict, Any, List, Optional
from bson import ObjectId
import hashlib
import json
import logging

logger = logging.getLogger(__name__)

SIGNATURE_FIELDS = (
    "project_id",
    "period_start",
    "period_end",
    "invoice_series",
    "invoice_number",
    "invoice_date",
    "due_date",
    "currency",
    "lines",
    "totals",
    "reverse_charge_building",
    "rot_rut_flag",
)


def _normalize(obj: Any) -> Any:
    """Recursively convert MongoDB types to their canonical JSON form."""
    if isinstance(obj, ObjectId):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {str(k): _normalize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_normalize(item) for item in obj]
    return obj


def build_signature_payload(
    project_id: str,
    period_start: str,
    period_end: str,
    invoice_series: Optional[str],
    invoice_number: str,
    invoice_date: str,
    due_date: str,
    currency: str,
    lines: List[Dict[str, Any]],
    totals: Dict[str, Any],
    reverse_charge_building: bool,
    rot_rut_flag: bool
) -> Dict[str, Any]:
    """Build the canonical object that the hash signature covers."""
    return _normalize({
        "project_id": project_id,
        "period_start": period_start,
        "period_end": period_end,
        "invoice_series": invoice_series,
        "invoice_number": invoice_number,
        "invoice_date": invoice_date,
        "due_date": due_date,
        "currency": currency,
        "lines": lines,
        "totals": totals,
        "reverse_charge_building": reverse_charge_building,
        "rot_rut_flag": rot_rut_flag,
    })


def canonical_json(payload: Dict[str, Any]) -> str:
    return json.dumps(
        _normalize(payload),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str
    )


def compute_hash_signature(payload: Dict[str, Any]) -> str:
    """Compute SHA-256 hex digest over the canonical JSON of the payload."""
    return hashlib.sha256(canonical_json(payload).encode('utf-8')).hexdigest()


def verify_hash_signature(document: Dict[str, Any]) -> bool:
    """
    Recompute the signature of a locked invoice basis and compare it with the
    stored one.
    """
    stored = document.get("hash_signature")
    if not stored:
        return False

    payload = {field: document.get(field) for field in SIGNATURE_FIELDS}
    payload["lines"] = payload["lines"] or []
    computed = compute_hash_signature(payload)

    if computed != stored:
        logger.error(
            f"[SIGNATURE] Mismatch for invoice basis {document.get('_id')}: "
            f"stored={stored[:16]}... computed={computed[:16]}..."
        )
        return False
    return True
