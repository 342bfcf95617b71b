from pydantic import (
    BaseModel, Field, AliasChoices, AfterValidator, ValidationError,
    StrictBool, StrictStr, conint, confloat
)
from typing import Annotated, Optional, List, Dict, Any, Type, TypeVar
from datetime import datetime, date
import re

from core.invoice_basis_errors import InvoiceBasisValidationError

DATE_REGEX = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _check_calendar_date(value: str) -> str:
    if not DATE_REGEX.match(value):
        raise ValueError("must be formatted as YYYY-MM-DD")
    try:
        date.fromisoformat(value)
    except ValueError:
        raise ValueError("is not a valid calendar date")
    return value


# Calendar dates travel and are stored as YYYY-MM-DD strings
CalendarDate = Annotated[StrictStr, AfterValidator(_check_calendar_date)]
PaymentTermsDays = conint(strict=True, ge=0, le=365)
NonNegativeNumber = confloat(strict=True, ge=0, allow_inf_nan=False)

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_payload(model: Type[ModelT], body: Any) -> ModelT:
    """Validate a request body, turning pydantic errors into BadRequest."""
    if not isinstance(body, dict):
        raise InvoiceBasisValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(body)
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error.get("loc", ())) or "body"
        message = error.get("msg", "is invalid")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        raise InvoiceBasisValidationError(f"{field}: {message}")


def validate_period(period_start: Optional[str], period_end: Optional[str]):
    """Both period bounds present, well-formed and ordered."""
    if not period_start or not period_end:
        raise InvoiceBasisValidationError("periodStart and periodEnd are required")
    for name, value in (("periodStart", period_start), ("periodEnd", period_end)):
        try:
            _check_calendar_date(value)
        except ValueError as e:
            raise InvoiceBasisValidationError(f"{name} {e}")
    if period_start > period_end:
        raise InvoiceBasisValidationError("periodEnd must be on or after periodStart")


# ============================================
# INVOICE BASIS DOCUMENT
# ============================================

# Header fields captured in full for header audit entries
HEADER_FIELDS = (
    "invoice_series",
    "invoice_number",
    "invoice_date",
    "due_date",
    "payment_terms_days",
    "ocr_ref",
    "our_ref",
    "your_ref",
    "currency",
    "reverse_charge_building",
    "rot_rut_flag",
    "cost_center",
    "result_unit",
    "invoice_address_json",
    "delivery_address_json",
    "worksite_address_json",
    "worksite_id",
)


def header_snapshot(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {field: doc.get(field) for field in HEADER_FIELDS}


class InvoiceBasisLine(BaseModel):
    """
    Stored shape of one entry of invoice_basis.lines.

    Documents are produced by the invoice basis refresh job, not by this
    service; the engine reads and writes them as plain dicts.
    """
    id: str
    type: str  # time, material, expense, mileage, ata, diary
    source: Optional[Dict[str, Any]] = None  # {table, id} of the producing record
    article_code: Optional[str] = None
    description: Optional[str] = None
    unit: Optional[str] = None
    quantity: float = 0
    unit_price: float = 0
    discount: float = 0
    vat_rate: float = 0
    vat_code: Optional[str] = None
    account: Optional[str] = None
    dimensions: Dict[str, Any] = Field(default_factory=dict)
    attachments: List[str] = Field(default_factory=list)
    ata_info: Optional[Dict[str, Any]] = None


class InvoiceBasis(BaseModel):
    """
    Document schema of the invoice_basis collection, with the defaults a
    fresh draft carries (30 day terms, SEK, unlocked).
    """
    invoice_basis_id: Optional[str] = Field(default=None, alias="_id")
    org_id: str
    project_id: str
    period_start: str
    period_end: str
    customer_id: Optional[str] = None
    invoice_series: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    due_date: Optional[str] = None
    payment_terms_days: Optional[int] = 30
    ocr_ref: Optional[str] = None
    currency: str = "SEK"
    fx_rate: Optional[float] = 1
    our_ref: Optional[str] = None
    your_ref: Optional[str] = None
    reverse_charge_building: bool = False
    rot_rut_flag: bool = False
    cost_center: Optional[str] = None
    result_unit: Optional[str] = None
    invoice_address_json: Optional[Dict[str, Any]] = None
    delivery_address_json: Optional[Dict[str, Any]] = None
    worksite_address_json: Optional[Dict[str, Any]] = None
    worksite_id: Optional[str] = None
    lines: List[InvoiceBasisLine] = Field(default_factory=list)
    totals: Optional[Dict[str, Any]] = None
    customer_snapshot: Optional[Dict[str, Any]] = None
    locked: bool = False
    locked_by: Optional[str] = None
    locked_at: Optional[datetime] = None
    hash_signature: Optional[str] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.utcnow())

    class Config:
        populate_by_name = True


# ============================================
# SPARSE UPDATES
# Absent key = unchanged, null = clear, value = set.
# Read with model_dump(exclude_unset=True).
# ============================================

class InvoiceBasisHeaderUpdate(BaseModel):
    invoice_series: Optional[StrictStr] = None
    invoice_number: Optional[StrictStr] = None
    invoice_date: Optional[CalendarDate] = None
    due_date: Optional[CalendarDate] = None
    payment_terms_days: Optional[PaymentTermsDays] = None
    ocr_ref: Optional[StrictStr] = None
    our_ref: Optional[StrictStr] = None
    your_ref: Optional[StrictStr] = None
    currency: Optional[StrictStr] = None
    fx_rate: Optional[NonNegativeNumber] = None
    # Booleans cannot be cleared, only set
    reverse_charge_building: StrictBool = False
    rot_rut_flag: StrictBool = False
    cost_center: Optional[StrictStr] = None
    result_unit: Optional[StrictStr] = None
    invoice_address_json: Optional[Dict[str, Any]] = None
    delivery_address_json: Optional[Dict[str, Any]] = None
    worksite_address_json: Optional[Dict[str, Any]] = None
    worksite_id: Optional[StrictStr] = None

    class Config:
        extra = "ignore"


class InvoiceBasisLineUpdate(BaseModel):
    description: Optional[StrictStr] = None
    article_code: Optional[StrictStr] = None
    account: Optional[StrictStr] = None
    unit: Optional[StrictStr] = None
    vat_code: Optional[StrictStr] = None
    dimensions: Optional[Dict[str, Any]] = None
    quantity: Optional[NonNegativeNumber] = None
    unit_price: Optional[NonNegativeNumber] = None
    discount: Optional[NonNegativeNumber] = None
    vat_rate: Optional[NonNegativeNumber] = None
    # Back-solves unit_price against the line quantity
    amount: Optional[NonNegativeNumber] = None
    attachments: List[StrictStr] = Field(default_factory=list)

    class Config:
        extra = "ignore"


def _alias(*names: str):
    return Field(default=None, validation_alias=AliasChoices(*names))


class InvoiceBasisLockRequest(BaseModel):
    """Optional caller overrides for the lock; null is the same as absent."""
    period_start: Optional[CalendarDate] = _alias("period_start", "periodStart")
    period_end: Optional[CalendarDate] = _alias("period_end", "periodEnd")
    invoice_series: Optional[StrictStr] = _alias("invoice_series", "invoiceSeries")
    invoice_number: Optional[StrictStr] = _alias("invoice_number", "invoiceNumber")
    invoice_date: Optional[CalendarDate] = _alias("invoice_date", "invoiceDate")
    due_date: Optional[CalendarDate] = _alias("due_date", "dueDate")
    payment_terms_days: Optional[PaymentTermsDays] = _alias("payment_terms_days", "paymentTermsDays")
    currency: Optional[StrictStr] = _alias("currency")
    reverse_charge_building: Optional[StrictBool] = _alias("reverse_charge_building", "reverseChargeBuilding")
    rot_rut_flag: Optional[StrictBool] = _alias("rot_rut_flag", "rotRutFlag")
    ocr_ref: Optional[StrictStr] = _alias("ocr_ref", "ocrRef")

    class Config:
        extra = "ignore"
