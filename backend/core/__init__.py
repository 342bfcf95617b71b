"""
Invoice Basis Core Engine Modules
"""
from .financial_precision import (
    to_decimal,
    round_financial,
    to_float,
    safe_divide,
    calculate_line_amount,
    calculate_invoice_totals,
    FinancialPrecisionError,
)

from .ocr_reference import (
    generate_ocr_reference,
    is_valid_ocr_reference,
    build_ocr_seed
)

from .document_signature import (
    build_signature_payload,
    compute_hash_signature,
    verify_hash_signature
)

from .invoice_basis_errors import (
    InvoiceBasisError,
    UnauthorizedError,
    ForbiddenError,
    InvoiceBasisNotFoundError,
    InvoiceLineNotFoundError,
    InvoiceBasisLockedError,
    InvoiceBasisValidationError,
    PersistenceError
)

__all__ = [
    # Financial Precision
    'to_decimal',
    'round_financial',
    'to_float',
    'safe_divide',
    'calculate_line_amount',
    'calculate_invoice_totals',
    'FinancialPrecisionError',
    # OCR Reference
    'generate_ocr_reference',
    'is_valid_ocr_reference',
    'build_ocr_seed',
    # Document Signature
    'build_signature_payload',
    'compute_hash_signature',
    'verify_hash_signature',
    # Errors
    'InvoiceBasisError',
    'UnauthorizedError',
    'ForbiddenError',
    'InvoiceBasisNotFoundError',
    'InvoiceLineNotFoundError',
    'InvoiceBasisLockedError',
    'InvoiceBasisValidationError',
    'PersistenceError',
]
