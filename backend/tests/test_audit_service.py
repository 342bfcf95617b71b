"""
Audit recorder tests: entries are written in the background and a failing
sink never fails the audited operation.
"""
import logging
import pytest


class FailingCollection:
    async def insert_one(self, entry):
        raise RuntimeError("audit sink unavailable")


@pytest.mark.asyncio
async def test_entry_written(audit_service, mongo_db):
    task = audit_service.record(
        org_id="org-1",
        user_id="u1",
        action="invoice_basis.header.update",
        entity_id="ib-1",
        old_data={"our_ref": None},
        new_data={"our_ref": "X"}
    )
    assert task is not None
    await audit_service.drain()

    entry = await mongo_db.audit_logs.find_one({"entity_id": "ib-1"})
    assert entry["entity_type"] == "invoice_basis"
    assert entry["org_id"] == "org-1"
    assert entry["new_data"] == {"our_ref": "X"}
    assert audit_service.failed_count == 0


@pytest.mark.asyncio
async def test_entry_is_a_copy(audit_service, mongo_db):
    new_data = {"line": {"quantity": 1}}
    audit_service.record("org-1", "u1", "invoice_basis.line.update", "ib-1", None, new_data)
    new_data["line"]["quantity"] = 99
    await audit_service.drain()

    entry = await mongo_db.audit_logs.find_one({"entity_id": "ib-1"})
    assert entry["new_data"]["line"]["quantity"] == 1


@pytest.mark.asyncio
async def test_sink_failure_is_logged_not_raised(audit_service, caplog):
    audit_service.collection = FailingCollection()

    with caplog.at_level(logging.ERROR, logger="audit_service"):
        audit_service.record("org-1", "u1", "invoice_basis.lock", "ib-1", {}, {})
        await audit_service.drain()

    assert audit_service.failed_count == 1
    assert "invoice_basis.lock" in caplog.text
    assert "ib-1" in caplog.text


@pytest.mark.asyncio
async def test_operation_survives_audit_failure(header_editor, audit_service, seed_invoice_basis, admin_user, project_id):
    audit_service.collection = FailingCollection()
    await seed_invoice_basis()

    updated = await header_editor.update_header(
        admin_user, project_id, "2025-01-01", "2025-01-31", {"our_ref": "X"}
    )
    await audit_service.drain()

    assert updated["our_ref"] == "X"
    assert audit_service.failed_count == 1


def test_record_outside_event_loop(audit_service):
    assert audit_service.record("org-1", "u1", "invoice_basis.lock", "ib-1") is None
    assert audit_service.failed_count == 1
