#!/usr/bin/env python3
"""
MIGRATION SCRIPT: Invoice Basis Indexes

Creates:
1. invoice_basis collection with unique (org_id, project_id, period) index
2. audit_logs lookup index on (entity_type, entity_id)

Run: python migrations/001_invoice_basis_indexes.py
"""

import asyncio
import os
import sys
from datetime import datetime

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv

from core.invoice_basis_repository import InvoiceBasisRepository

load_dotenv()

MIGRATION_ID = "001_invoice_basis_indexes"


async def apply_indexes(db):
    """Create the collections and indexes. Safe to run repeatedly."""
    existing = await db.list_collection_names()

    if InvoiceBasisRepository.COLLECTION not in existing:
        await db.create_collection(InvoiceBasisRepository.COLLECTION)
        print("✓ Created invoice_basis collection")
    else:
        print("• invoice_basis collection already exists")

    await InvoiceBasisRepository(db).create_indexes()
    print("✓ Created unique index: idx_invoice_basis_period_unique")

    await db.audit_logs.create_index(
        [("entity_type", 1), ("entity_id", 1), ("timestamp", -1)],
        name="idx_audit_entity_timestamp"
    )
    print("✓ Created index: idx_audit_entity_timestamp")

    migration_record = {
        "migration_id": MIGRATION_ID,
        "description": "Invoice basis period uniqueness and audit lookup",
        "indexes_created": [
            "idx_invoice_basis_period_unique",
            "idx_invoice_basis_locked",
            "idx_audit_entity_timestamp"
        ],
        "executed_at": datetime.utcnow(),
        "status": "success"
    }

    await db.migrations.update_one(
        {"migration_id": MIGRATION_ID},
        {"$set": migration_record},
        upsert=True
    )
    return migration_record


async def run_migration():
    """Execute the invoice basis migration."""

    mongo_url = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
    db_name = os.environ.get('DB_NAME', 'construction_management')

    print(f"Connecting to: {mongo_url}")
    print(f"Database: {db_name}")

    client = AsyncIOMotorClient(mongo_url)
    db = client[db_name]

    try:
        await client.admin.command('ping')
        print("✓ Connected to MongoDB")

        record = await apply_indexes(db)

        indexes = await db[InvoiceBasisRepository.COLLECTION].index_information()
        print("\n=== Invoice Basis Indexes ===")
        for name, info in indexes.items():
            print(f"  {name}: {info['key']}")

        print("\n" + "="*50)
        print("MIGRATION COMPLETE: Invoice Basis Indexes")
        print("="*50)

        return {
            "status": "success",
            "indexes": len(record["indexes_created"])
        }

    except Exception as e:
        print(f"\n✗ Migration failed: {str(e)}")
        raise
    finally:
        client.close()


if __name__ == "__main__":
    result = asyncio.run(run_migration())
    print(f"\nResult: {result}")
