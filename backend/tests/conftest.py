"""
Shared fixtures for invoice basis tests.

MongoDB is replaced by mongomock-motor; the HTTP tests drive the FastAPI app
in-process through httpx's ASGI transport.
"""
import pytest
import pytest_asyncio
from bson import ObjectId
from datetime import datetime
from httpx import AsyncClient, ASGITransport
from mongomock_motor import AsyncMongoMockClient

from auth import create_access_token
from audit_service import AuditService
from invoice_basis_models import InvoiceBasis, InvoiceBasisLine
from permissions import PermissionChecker
from core.customer_directory import CustomerDirectory
from core.invoice_basis_repository import InvoiceBasisRepository
from core.invoice_header_editor import InvoiceHeaderEditor
from core.invoice_line_editor import InvoiceLineEditor
from core.invoice_lock_engine import InvoiceLockEngine

ORG_ID = "org-1"
PERIOD_START = "2025-01-01"
PERIOD_END = "2025-01-31"


def sample_lines():
    return [
        {
            "id": "line-time",
            "type": "time",
            "description": "Carpentry",
            "unit": "h",
            "quantity": 2,
            "unit_price": 100,
            "discount": 0,
            "vat_rate": 25,
            "dimensions": {"project": "P-100"},
            "attachments": [],
        },
        {
            "id": "line-material",
            "type": "material",
            "description": "Screws",
            "unit": "pcs",
            "quantity": 1,
            "unit_price": 50,
            "discount": 0,
            "vat_rate": 6,
            "dimensions": {},
            "attachments": [],
        },
        {
            "id": "line-diary",
            "type": "diary",
            "description": "Rain all day",
            "quantity": 0,
            "unit_price": 0,
            "discount": 0,
            "vat_rate": 0,
        },
    ]


@pytest.fixture
def mongo_db():
    client = AsyncMongoMockClient()
    return client["invoice_basis_test"]


@pytest.fixture
def project_id():
    return str(ObjectId())


@pytest.fixture
def admin_user():
    return {"user_id": "user-admin", "org_id": ORG_ID, "role": "admin"}


@pytest.fixture
def foreman_user():
    return {"user_id": "user-foreman", "org_id": ORG_ID, "role": "foreman"}


@pytest.fixture
def worker_user():
    return {"user_id": "user-worker", "org_id": ORG_ID, "role": "worker"}


@pytest.fixture
def audit_service(mongo_db):
    return AuditService(mongo_db)


@pytest.fixture
def permission_checker():
    return PermissionChecker()


@pytest.fixture
def repository(mongo_db):
    return InvoiceBasisRepository(mongo_db)


@pytest.fixture
def customer_directory(mongo_db):
    return CustomerDirectory(mongo_db)


@pytest.fixture
def header_editor(repository, audit_service, permission_checker):
    return InvoiceHeaderEditor(repository, audit_service, permission_checker)


@pytest.fixture
def line_editor(repository, audit_service, permission_checker):
    return InvoiceLineEditor(repository, audit_service, permission_checker)


@pytest.fixture
def lock_engine(repository, customer_directory, audit_service, permission_checker):
    return InvoiceLockEngine(repository, customer_directory, audit_service, permission_checker)


@pytest.fixture
def seed_invoice_basis(mongo_db, project_id):
    """Insert a draft invoice basis; keyword arguments override fields."""
    async def _seed(**overrides):
        basis = InvoiceBasis(
            org_id=ORG_ID,
            project_id=project_id,
            period_start=PERIOD_START,
            period_end=PERIOD_END,
            lines=[InvoiceBasisLine(**line) for line in sample_lines()],
            updated_at=datetime(2025, 1, 31, 12, 0),
        )
        doc = basis.model_dump(exclude={"invoice_basis_id"})
        doc["_id"] = ObjectId()
        doc.update(overrides)
        await mongo_db.invoice_basis.insert_one(doc)
        return doc
    return _seed


@pytest.fixture
def seed_customer(mongo_db, project_id):
    """Insert a company customer and make it the project's customer."""
    async def _seed(**overrides):
        customer = {
            "_id": ObjectId(),
            "org_id": ORG_ID,
            "customer_no": "K-1001",
            "type": "COMPANY",
            "company_name": "Bygg AB",
            "org_no": "556677-8899",
            "vat_no": "SE556677889901",
            "invoice_email": "faktura@bygg.se",
            "invoice_method": "email",
            "terms": 30,
            "default_vat_rate": 25,
            "bankgiro": "123-4567",
            "invoice_address_street": "Storgatan 1",
            "invoice_address_zip": "111 22",
            "invoice_address_city": "Stockholm",
        }
        customer.update(overrides)
        await mongo_db.customers.insert_one(customer)
        await mongo_db.projects.insert_one({
            "_id": ObjectId(project_id),
            "org_id": ORG_ID,
            "customer_id": str(customer["_id"]),
        })
        return customer
    return _seed


def bearer(user: dict) -> dict:
    token = create_access_token({
        "user_id": user["user_id"],
        "org_id": user["org_id"],
        "role": user["role"],
    })
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client(header_editor, line_editor, lock_engine):
    """HTTP client against the app with services bound to the mock database."""
    from server import app
    from invoice_basis_routes import get_header_editor, get_line_editor, get_lock_engine

    app.dependency_overrides[get_header_editor] = lambda: header_editor
    app.dependency_overrides[get_line_editor] = lambda: line_editor
    app.dependency_overrides[get_lock_engine] = lambda: lock_engine

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return bearer
