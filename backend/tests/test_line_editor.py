"""
Line editor tests: normalisation, back-solve, diary lines, totals.
"""
import pytest

from core.invoice_basis_errors import (
    ForbiddenError,
    InvoiceBasisLockedError,
    InvoiceBasisValidationError,
    InvoiceLineNotFoundError,
)
from core.invoice_line_editor import apply_line_update

PERIOD = ("2025-01-01", "2025-01-31")


class TestApplyLineUpdate:

    def test_text_fields_trimmed(self):
        line = {"id": "l1", "description": "Old", "account": "3001"}
        updated = apply_line_update(line, {"description": "  New text  ", "account": "   ", "unit": None})

        assert updated["description"] == "New text"
        assert updated["account"] is None
        assert updated["unit"] is None
        assert line["description"] == "Old"

    def test_numbers_rounded_and_nulls_zeroed(self):
        line = {"id": "l1", "quantity": 2, "unit_price": 100}
        updated = apply_line_update(line, {"quantity": 1.005, "unit_price": None, "vat_rate": 12.345})

        assert updated["quantity"] == 1.01
        assert updated["unit_price"] == 0.0
        assert updated["vat_rate"] == 12.35

    def test_discount_clamped(self):
        updated = apply_line_update({"id": "l1"}, {"discount": 150})
        assert updated["discount"] == 100.0

    def test_dimensions_merged(self):
        line = {"id": "l1", "dimensions": {"project": "P-1", "cost_center": "CC1"}}
        updated = apply_line_update(line, {"dimensions": {"cost_center": "CC2", "activity": "A"}})
        assert updated["dimensions"] == {"project": "P-1", "cost_center": "CC2", "activity": "A"}

        unchanged = apply_line_update(line, {"dimensions": None})
        assert unchanged["dimensions"] == line["dimensions"]

    def test_attachments_replaced(self):
        line = {"id": "l1", "attachments": ["a.pdf"]}
        assert apply_line_update(line, {"attachments": ["b.pdf"]})["attachments"] == ["b.pdf"]

    def test_amount_back_solve(self):
        line = {"id": "l1", "quantity": 4, "unit_price": 10}
        assert apply_line_update(line, {"amount": 100})["unit_price"] == 25.0

    def test_amount_uses_payload_quantity(self):
        line = {"id": "l1", "quantity": 4, "unit_price": 10}
        updated = apply_line_update(line, {"amount": 100, "quantity": 3})
        assert updated["quantity"] == 3.0
        assert updated["unit_price"] == 33.33

    @pytest.mark.parametrize("line, fields", [
        ({"id": "l1", "quantity": 0}, {"amount": 100}),
        ({"id": "l1"}, {"amount": 100}),
        ({"id": "l1", "quantity": 4}, {"amount": 100, "quantity": 0}),
    ])
    def test_amount_without_quantity(self, line, fields):
        with pytest.raises(InvoiceBasisValidationError):
            apply_line_update(line, fields)


@pytest.mark.asyncio
async def test_update_recomputes_totals(line_editor, seed_invoice_basis, foreman_user, project_id, mongo_db):
    seeded = await seed_invoice_basis()

    result = await line_editor.update_line(
        foreman_user, project_id, *PERIOD, "line-time", {"quantity": 3}
    )

    assert result["line"]["quantity"] == 3.0
    assert result["totals"]["total_ex_vat"] == 350.0
    assert result["totals"]["per_vat_rate"]["25"] == {"base": 300.0, "vat": 75.0, "total": 375.0}

    stored = await mongo_db.invoice_basis.find_one({"_id": seeded["_id"]})
    assert stored["totals"] == result["totals"]
    assert stored["lines"][1] == seeded["lines"][1]


@pytest.mark.asyncio
async def test_amount_back_solve_persisted(line_editor, seed_invoice_basis, admin_user, project_id):
    await seed_invoice_basis()

    result = await line_editor.update_line(
        admin_user, project_id, *PERIOD, "line-time", {"quantity": 4, "amount": 100}
    )

    assert result["line"]["unit_price"] == 25.0
    assert result["totals"]["per_vat_rate"]["25"]["base"] == 100.0


@pytest.mark.asyncio
async def test_totals_use_document_currency(line_editor, seed_invoice_basis, admin_user, project_id):
    await seed_invoice_basis(currency="EUR")

    result = await line_editor.update_line(admin_user, project_id, *PERIOD, "line-time", {"discount": 50})
    assert result["totals"]["currency"] == "EUR"
    assert result["totals"]["total_ex_vat"] == 150.0


@pytest.mark.asyncio
async def test_diary_line_rejected(line_editor, seed_invoice_basis, admin_user, project_id, mongo_db):
    seeded = await seed_invoice_basis()

    with pytest.raises(InvoiceBasisValidationError):
        await line_editor.update_line(admin_user, project_id, *PERIOD, "line-diary", {"description": "Sun"})

    assert await mongo_db.invoice_basis.find_one({"_id": seeded["_id"]}) == seeded


@pytest.mark.asyncio
async def test_unknown_line(line_editor, seed_invoice_basis, admin_user, project_id):
    await seed_invoice_basis()
    with pytest.raises(InvoiceLineNotFoundError):
        await line_editor.update_line(admin_user, project_id, *PERIOD, "nope", {"quantity": 1})


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    {},
    {"quantity": -1},
    {"quantity": True},
    {"unit_price": "10"},
    {"attachments": "a.pdf"},
    {"dimensions": ["x"]},
    {"description": 7},
])
async def test_invalid_payloads(line_editor, seed_invoice_basis, admin_user, project_id, body):
    await seed_invoice_basis()
    with pytest.raises(InvoiceBasisValidationError):
        await line_editor.update_line(admin_user, project_id, *PERIOD, "line-time", body)


@pytest.mark.asyncio
async def test_locked_is_conflict(line_editor, seed_invoice_basis, admin_user, project_id):
    await seed_invoice_basis(locked=True)
    with pytest.raises(InvoiceBasisLockedError):
        await line_editor.update_line(admin_user, project_id, *PERIOD, "line-time", {"quantity": 1})


@pytest.mark.asyncio
async def test_worker_forbidden(line_editor, seed_invoice_basis, worker_user, project_id):
    await seed_invoice_basis()
    with pytest.raises(ForbiddenError):
        await line_editor.update_line(worker_user, project_id, *PERIOD, "line-time", {"quantity": 1})


@pytest.mark.asyncio
async def test_audit_entry(line_editor, audit_service, seed_invoice_basis, admin_user, project_id, mongo_db):
    seeded = await seed_invoice_basis()

    await line_editor.update_line(admin_user, project_id, *PERIOD, "line-material", {"description": "Nails"})
    await audit_service.drain()

    entry = await mongo_db.audit_logs.find_one({"action": "invoice_basis.line.update"})
    assert entry["entity_id"] == str(seeded["_id"])
    assert entry["old_data"] == {"line_id": "line-material", "line": seeded["lines"][1]}
    assert entry["new_data"]["line"]["description"] == "Nails"
