#!/usr/bin/env python3
"""
Database seeding script for local development.

Generates PIX transactions with Faker across every status and writes them
through the TransactionStore, so the rows look exactly like the ones the
API creates. Status changes go through the ReconciliationEngine, which also
fills the audit trail.

Usage:
    python -m scripts.seed_database
    # or
    python scripts/seed_database.py --count 50
"""

import argparse
import asyncio
import random
import sys
import uuid
from datetime import timedelta
from pathlib import Path

# Add the project root to the path so we can import app modules
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from faker import Faker

from app.config import PLAN_PRICES, settings
from app.database import create_engine, create_session_factory, init_db
from app.schemas.transaction import PixCode, PlanData, Transaction, TransactionStatus
from app.services.payment_intent import plan_price
from app.services.reconciliation import ReconciliationEngine, TransitionMetadata, TransitionSource
from app.services.store import TransactionStore
from app.utils.date_utils import utcnow

fake = Faker("pt_BR")
Faker.seed(42)
random.seed(42)

# Final status distribution (weights)
STATUS_DISTRIBUTION = {
    TransactionStatus.PAID: 60,
    TransactionStatus.PENDING: 15,
    TransactionStatus.EXPIRED: 15,
    TransactionStatus.FAILED: 5,
    TransactionStatus.CANCELLED: 5,
}

RAW_STATUS = {
    TransactionStatus.PAID: "approved",
    TransactionStatus.FAILED: "rejected",
    TransactionStatus.CANCELLED: "cancelled",
    TransactionStatus.EXPIRED: None,
}


def generate_transaction(now) -> tuple[Transaction, TransactionStatus]:
    plan_type = random.choice(list(PLAN_PRICES))
    is_vip = random.random() < 0.3
    target = random.choices(list(STATUS_DISTRIBUTION), weights=list(STATUS_DISTRIBUTION.values()))[0]

    if target == TransactionStatus.PENDING:
        created_at = now - timedelta(minutes=random.randint(0, 20))
    else:
        created_at = now - timedelta(days=random.randint(0, 120), minutes=random.randint(31, 600))

    txn = Transaction(
        id=f"pix-{plan_type}-{'vip' if is_vip else 'normal'}-{uuid.uuid4().hex[:16]}",
        preference_id=f"{random.randint(100000000, 999999999)}-{uuid.uuid4()}",
        status=TransactionStatus.PENDING,
        amount=plan_price(plan_type, is_vip),
        plan_data=PlanData(plan_type=plan_type, is_vip=is_vip),
        user_email=fake.email(),
        pix_code=PixCode(code=f"00020126580014br.gov.bcb.pix0136{uuid.uuid4()}"),
        created_at=created_at,
        updated_at=created_at,
        expires_at=created_at + timedelta(minutes=settings.PAYMENT_EXPIRY_MINUTES),
    )
    return txn, target


async def seed_database(count: int):
    print("=" * 60)
    print("Database Seeding Script")
    print("=" * 60)
    print(f"Database: {settings.DATABASE_URL}")
    print()

    engine = create_engine(settings.DATABASE_URL)
    await init_db(engine)
    store = TransactionStore(create_session_factory(engine))
    reconciliation = ReconciliationEngine(store)

    now = utcnow()
    totals = {status: 0 for status in TransactionStatus}

    for _ in range(count):
        txn, target = generate_transaction(now)
        await store.create(txn)

        if target != TransactionStatus.PENDING:
            source = TransitionSource.SWEEP if target == TransactionStatus.EXPIRED else TransitionSource.WEBHOOK
            await reconciliation.apply_status(
                txn.id,
                target,
                TransitionMetadata(
                    source=source,
                    raw_status=RAW_STATUS[target],
                    provider_payment_id=None if target == TransactionStatus.EXPIRED else str(fake.random_number(digits=11)),
                ),
            )
        totals[target] += 1

    print(f"{'Status':<20} {'Created':<12}")
    print("-" * 32)
    for status, created in totals.items():
        print(f"{status.value:<20} {created:<12}")
    print("-" * 32)
    print(f"{'TOTAL':<20} {count:<12}")
    print()
    print("Database seeding completed successfully!")

    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the PIX transaction store with fake data")
    parser.add_argument("--count", type=int, default=100)
    args = parser.parse_args()
    asyncio.run(seed_database(args.count))
