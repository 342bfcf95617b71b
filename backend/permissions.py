from typing import Dict, FrozenSet
import logging

from core.invoice_basis_errors import ForbiddenError, UnauthorizedError

logger = logging.getLogger(__name__)


class InvoiceBasisAction:
    HEADER_UPDATE = "invoice_basis.header.update"
    LINE_UPDATE = "invoice_basis.line.update"
    LOCK = "invoice_basis.lock"


ADMIN_ROLE = "admin"
FOREMAN_ROLE = "foreman"

ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    InvoiceBasisAction.HEADER_UPDATE: frozenset({ADMIN_ROLE, FOREMAN_ROLE}),
    InvoiceBasisAction.LINE_UPDATE: frozenset({ADMIN_ROLE, FOREMAN_ROLE}),
    # Locking is reserved for the most privileged role
    InvoiceBasisAction.LOCK: frozenset({ADMIN_ROLE}),
}


class PermissionChecker:
    """
    Permission enforcement for invoice basis operations.

    RULES:
    1. Caller must carry an identity (user_id, org_id, role)
    2. Role must be permitted for the action
    3. Checked once, at the entry of each operation
    """

    def __init__(self, role_permissions: Dict[str, FrozenSet[str]] = None):
        self.role_permissions = role_permissions or ROLE_PERMISSIONS

    def get_authenticated_user(self, current_user: dict) -> dict:
        """Validate the identity handed over by the session provider"""
        if not current_user or not current_user.get("user_id") or not current_user.get("org_id"):
            raise UnauthorizedError("Unauthorized")
        return current_user

    def authorize(self, role: str, action: str) -> bool:
        """Raise ForbiddenError unless the role may perform the action"""
        allowed = self.role_permissions.get(action, frozenset())
        if role not in allowed:
            logger.warning(f"[PERMISSION] Role '{role}' denied for {action}")
            raise ForbiddenError(role, action)
        return True
