"""
Tests for NumberingService – yearly sequences and the collision fallback.
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import update

from staffpay.models.counter import NumberCounter
from staffpay.services.advance_ledger import AdvanceLedger
from staffpay.services.numbering import NumberingService, fallback_number, format_number


def test_format_number_pads_to_four_digits():
    assert format_number("payroll", 2025, 7) == "PAY-2025-0007"
    assert format_number("sursalaire", 2025, 12345) == "SUR-2025-12345"


def test_fallback_number_is_marked():
    assert fallback_number("advance", 2025).startswith("AV-2025-T")


@pytest.mark.asyncio
async def test_sequence_per_entity_type_and_year(db):
    numbering = NumberingService(db)

    assert await numbering.next_number("payroll", 2025) == "PAY-2025-0001"
    assert await numbering.next_number("payroll", 2025) == "PAY-2025-0002"
    assert await numbering.next_number("advance", 2025) == "AV-2025-0001"
    assert await numbering.next_number("payroll", 2026) == "PAY-2026-0001"


@pytest.mark.asyncio
async def test_collision_falls_back_to_timestamp_number(db, worker):
    ledger = AdvanceLedger(db)
    march = datetime(2025, 3, 10, tzinfo=timezone.utc)
    first = await ledger.create(worker.id, Decimal("10000"), requested_at=march)
    first_id, first_number = first.id, first.number

    # Counter rewound, e.g. after restoring an old backup
    await db.execute(
        update(NumberCounter)
        .where(NumberCounter.entity_type == "advance", NumberCounter.year == 2025)
        .values(value=0)
    )
    await db.commit()

    second = await ledger.create(worker.id, Decimal("5000"), requested_at=march)

    assert first_number == "AV-2025-0001"
    assert second.number.startswith("AV-2025-T")
    assert second.id != first_id
