"""
INVOICE BASIS: DOMAIN ERRORS

Every failure raised by the invoice basis engine carries a machine-readable
kind and the HTTP status the routers answer with.
"""

from typing import Dict


class InvoiceBasisError(Exception):
    """Base exception for invoice basis errors."""
    kind = "internal"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class UnauthorizedError(InvoiceBasisError):
    """Raised when no identity accompanies the request."""
    kind = "unauthorized"
    status_code = 401


class ForbiddenError(InvoiceBasisError):
    """Raised when the caller's role may not perform the action."""
    kind = "forbidden"
    status_code = 403

    def __init__(self, role: str, action: str):
        self.role = role
        self.action = action
        super().__init__(f"Role '{role}' is not permitted to perform {action}")


class InvoiceBasisNotFoundError(InvoiceBasisError):
    """Raised when no invoice basis matches the natural key or id."""
    kind = "not_found"
    status_code = 404


class InvoiceLineNotFoundError(InvoiceBasisError):
    """Raised when the target line is not part of the invoice basis."""
    kind = "not_found"
    status_code = 404

    def __init__(self, line_id: str):
        self.line_id = line_id
        super().__init__(f"Line {line_id} not found")


class InvoiceBasisLockedError(InvoiceBasisError):
    """Raised when a locked invoice basis would be modified or locked again."""
    kind = "conflict"
    status_code = 409

    def __init__(self, invoice_basis_id: str, message: str = None):
        self.invoice_basis_id = invoice_basis_id
        super().__init__(message or "Invoice basis is locked and cannot be edited")


class InvoiceBasisValidationError(InvoiceBasisError):
    """Raised when a payload fails type, range or domain validation."""
    kind = "bad_request"
    status_code = 400


class PersistenceError(InvoiceBasisError):
    """Raised when the store rejects or fails a read or write."""
    kind = "internal"
    status_code = 500
