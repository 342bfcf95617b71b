"""
INVOICE BASIS: CUSTOMER DIRECTORY

Read-only view of projects and customers used when an invoice basis is
locked. The snapshot is a fully serialized deep copy, not a reference, so
later edits to the live customer never reach a locked invoice.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError
from datetime import datetime
from typing import Dict, Any, Optional
from bson import ObjectId
import copy
import logging

from core.invoice_basis_errors import PersistenceError
from core.invoice_basis_repository import to_object_id

logger = logging.getLogger(__name__)

DEFAULT_COUNTRY = "Sverige"
COMPANY_CUSTOMER = "COMPANY"


def _customer_name(customer: Dict[str, Any]) -> Optional[str]:
    if customer.get("type") == COMPANY_CUSTOMER:
        return customer.get("company_name")
    name = f"{customer.get('first_name') or ''} {customer.get('last_name') or ''}".strip()
    return name or None


def _customer_org_no(customer: Dict[str, Any]) -> Optional[str]:
    if customer.get("type") == COMPANY_CUSTOMER:
        return customer.get("org_no")
    return customer.get("personal_identity_no")


def build_invoice_address(customer: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if not customer.get("invoice_address_street"):
        return None
    return {
        "street": customer["invoice_address_street"],
        "zip": customer.get("invoice_address_zip") or None,
        "city": customer.get("invoice_address_city") or None,
        "country": customer.get("invoice_address_country") or DEFAULT_COUNTRY,
        "name": _customer_name(customer),
        "org_no": _customer_org_no(customer),
        "email": customer.get("invoice_email") or None,
        "phone": customer.get("phone_mobile") or None,
    }


def build_delivery_address(customer: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if not customer.get("delivery_address_street"):
        return None
    return {
        "street": customer["delivery_address_street"],
        "zip": customer.get("delivery_address_zip") or None,
        "city": customer.get("delivery_address_city") or None,
        "country": customer.get("delivery_address_country") or DEFAULT_COUNTRY,
    }


def project_customer_snapshot(customer: Dict[str, Any], captured_at: datetime) -> Dict[str, Any]:
    """Fixed projection of customer fields embedded in a locked invoice."""
    customer_id = customer.get("_id")
    snapshot = {
        "customer_id": str(customer_id) if isinstance(customer_id, ObjectId) else customer_id,
        "customer_no": customer.get("customer_no"),
        "type": customer.get("type"),
        "name": _customer_name(customer),
        "org_no": _customer_org_no(customer),
        "vat_no": customer.get("vat_no"),
        "invoice_email": customer.get("invoice_email"),
        "invoice_method": customer.get("invoice_method"),
        "terms": customer.get("terms"),
        "default_vat_rate": customer.get("default_vat_rate"),
        "bankgiro": customer.get("bankgiro"),
        "plusgiro": customer.get("plusgiro"),
        "reference": customer.get("reference"),
        "invoice_address": build_invoice_address(customer),
        "delivery_address": build_delivery_address(customer),
        "snapshot_date": captured_at.isoformat(),
    }
    return copy.deepcopy(snapshot)


class CustomerDirectory:
    """Reads the current customer of a project and snapshots it."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def resolve_customer_id(self, org_id: str, project_id: str) -> Optional[str]:
        """Current customer of the project, if any."""
        try:
            project = await self.db.projects.find_one(
                {"_id": to_object_id(project_id), "org_id": org_id},
                {"customer_id": 1}
            )
        except PyMongoError as e:
            logger.error(f"[CUSTOMER] Project lookup failed for {project_id}: {str(e)}")
            raise PersistenceError("Failed to read project") from e

        if not project:
            return None
        customer_id = project.get("customer_id")
        return str(customer_id) if customer_id is not None else None

    async def build_customer_snapshot(
        self,
        org_id: str,
        customer_id: str,
        captured_at: Optional[datetime] = None
    ) -> Optional[Dict[str, Any]]:
        """Point-in-time copy of the customer, or None if it no longer exists."""
        try:
            customer = await self.db.customers.find_one(
                {"_id": to_object_id(customer_id), "org_id": org_id}
            )
        except PyMongoError as e:
            logger.error(f"[CUSTOMER] Customer lookup failed for {customer_id}: {str(e)}")
            raise PersistenceError("Failed to read customer") from e

        if not customer:
            logger.warning(f"[CUSTOMER] Customer {customer_id} not found in org {org_id}")
            return None

        return project_customer_snapshot(customer, captured_at or datetime.utcnow())
