import pytest
from fastapi import HTTPException
from sqlalchemy.future import select

from conftest import TEST_USER_ID
from models.credit_ledger import CreditLedger
from services.credits import (
    consume_credits,
    get_credit_balance,
    get_credit_summary,
    get_refund_for,
    refund_credits,
)


@pytest.mark.asyncio
async def test_debit_grants_monthly_credits_once(session_maker):
    async with session_maker() as db:
        first = await consume_credits(TEST_USER_ID, db, cost=10, reason="subtitle", reference_type="media_task")
        second = await consume_credits(TEST_USER_ID, db, cost=15, reason="video", reference_type="media_task")

        assert first["charged"] == 10
        assert first["balance_after"] == 20
        assert second["balance_after"] == 5
        grants = await db.execute(select(CreditLedger).where(CreditLedger.entry_type == "monthly_grant"))
        assert len(grants.scalars().all()) == 1


@pytest.mark.asyncio
async def test_insufficient_balance_is_rejected(session_maker):
    async with session_maker() as db:
        with pytest.raises(HTTPException) as excinfo:
            await consume_credits(TEST_USER_ID, db, cost=999, reason="too expensive")
        assert excinfo.value.status_code == 402
        assert await get_credit_balance(TEST_USER_ID, db) == 30


@pytest.mark.asyncio
async def test_refund_is_idempotent(session_maker):
    async with session_maker() as db:
        debit = await consume_credits(TEST_USER_ID, db, cost=10, reason="subtitle", reference_type="media_task")
        first = await refund_credits(debit["credit_id"], db, reason="task failed")
        second = await refund_credits(debit["credit_id"], db, reason="task failed again")

        assert first is not None
        assert second.id == first.id
        assert first.delta_credits == 10
        assert (await get_refund_for(debit["credit_id"], db)).id == first.id
        assert await get_credit_balance(TEST_USER_ID, db) == 30


@pytest.mark.asyncio
async def test_refund_ignores_unknown_or_non_debit_entries(session_maker):
    async with session_maker() as db:
        debit = await consume_credits(TEST_USER_ID, db, cost=10, reason="subtitle")
        refund = await refund_credits(debit["credit_id"], db)

        assert await refund_credits("missing-credit", db) is None
        assert await refund_credits(refund.id, db) is None
        assert await refund_credits("", db) is None


@pytest.mark.asyncio
async def test_zero_cost_debit_has_nothing_to_refund(session_maker):
    async with session_maker() as db:
        debit = await consume_credits(TEST_USER_ID, db, cost=0, reason="free")
    assert debit["credit_id"] is None
    assert debit["charged"] == 0


@pytest.mark.asyncio
async def test_credit_summary_lists_costs_and_entries(session_maker):
    async with session_maker() as db:
        await consume_credits(TEST_USER_ID, db, cost=10, reason="subtitle")
        summary = await get_credit_summary(TEST_USER_ID, db)

    assert summary["balance"] == 20
    assert summary["costs"] == {"subtitle": 10, "video": 15}
    assert {entry["entry_type"] for entry in summary["recent_entries"]} == {"monthly_grant", "debit"}
