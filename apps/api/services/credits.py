"""Credit ledger and usage accounting helpers."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import uuid

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.credit_ledger import CreditLedger

logger = logging.getLogger(__name__)


def _current_period_key(now: Optional[datetime] = None) -> str:
    current = now or datetime.now(timezone.utc)
    return current.strftime("%Y-%m")


def media_task_cost(output_type: str) -> int:
    if output_type == "video":
        return max(int(settings.CREDIT_COST_VIDEO), 0)
    return max(int(settings.CREDIT_COST_SUBTITLE), 0)


async def get_credit_balance(user_id: str, db: AsyncSession) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(CreditLedger.delta_credits), 0)).where(CreditLedger.user_id == user_id)
    )
    return int(result.scalar() or 0)


async def _insert_entry(
    user_id: str,
    db: AsyncSession,
    *,
    entry_type: str,
    delta_credits: int,
    reason: Optional[str] = None,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    refund_of_id: Optional[str] = None,
    period_key: Optional[str] = None,
) -> CreditLedger:
    current_balance = await get_credit_balance(user_id, db)
    next_balance = current_balance + int(delta_credits)
    entry = CreditLedger(
        id=str(uuid.uuid4()),
        user_id=user_id,
        entry_type=entry_type,
        delta_credits=int(delta_credits),
        balance_after=next_balance,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        refund_of_id=refund_of_id,
        period_key=period_key,
    )
    db.add(entry)
    await db.flush()
    return entry


async def ensure_monthly_credit_grant(user_id: str, db: AsyncSession) -> int:
    period_key = _current_period_key()
    existing = await db.execute(
        select(CreditLedger.id).where(
            CreditLedger.user_id == user_id,
            CreditLedger.entry_type == "monthly_grant",
            CreditLedger.period_key == period_key,
        )
    )
    if existing.scalar_one_or_none():
        return await get_credit_balance(user_id, db)

    await _insert_entry(
        user_id=user_id,
        db=db,
        entry_type="monthly_grant",
        delta_credits=max(int(settings.FREE_MONTHLY_CREDITS), 0),
        reason="Monthly free credits grant",
        period_key=period_key,
    )
    await db.commit()
    return await get_credit_balance(user_id, db)


async def consume_credits(
    user_id: str,
    db: AsyncSession,
    *,
    cost: int,
    reason: str,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Debit once; the returned ``credit_id`` is what a later refund reverses."""
    debit_cost = max(int(cost), 0)
    if debit_cost == 0:
        balance = await get_credit_balance(user_id, db)
        return {"credit_id": None, "charged": 0, "balance_after": balance}

    await ensure_monthly_credit_grant(user_id, db)
    balance = await get_credit_balance(user_id, db)
    if balance < debit_cost:
        raise HTTPException(
            status_code=402,
            detail=(
                f"Insufficient credits. Required: {debit_cost}, available: {balance}. "
                "Top up credits to continue."
            ),
        )

    entry = await _insert_entry(
        user_id=user_id,
        db=db,
        entry_type="debit",
        delta_credits=-debit_cost,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    await db.commit()
    balance_after = await get_credit_balance(user_id, db)
    return {"credit_id": entry.id, "charged": debit_cost, "balance_after": balance_after}


async def get_refund_for(credit_id: str, db: AsyncSession) -> Optional[CreditLedger]:
    result = await db.execute(select(CreditLedger).where(CreditLedger.refund_of_id == credit_id))
    return result.scalar_one_or_none()


async def refund_credits(
    credit_id: str,
    db: AsyncSession,
    *,
    reason: str = "Media task failed",
) -> Optional[CreditLedger]:
    """
    Reverse a debit entry. Idempotent: a credit id is refunded at most once,
    enforced by the unique ``refund_of_id`` column as well as the lookup.
    Returns the refund entry, or None when there was nothing to refund.
    """
    if not credit_id:
        return None
    debit = await db.get(CreditLedger, credit_id)
    if debit is None or debit.entry_type != "debit" or int(debit.delta_credits) >= 0:
        logger.warning("Credit %s is not a refundable debit", credit_id)
        return None

    existing = await get_refund_for(credit_id, db)
    if existing is not None:
        return existing

    try:
        entry = await _insert_entry(
            user_id=debit.user_id,
            db=db,
            entry_type="refund",
            delta_credits=abs(int(debit.delta_credits)),
            reason=reason[:255],
            reference_type=debit.reference_type,
            reference_id=debit.reference_id,
            refund_of_id=credit_id,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info("Credit %s was refunded concurrently", credit_id)
        return await get_refund_for(credit_id, db)
    logger.info("Refunded %s credits for debit %s", entry.delta_credits, credit_id)
    return entry


async def get_credit_summary(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    balance = await ensure_monthly_credit_grant(user_id, db)
    period_key = _current_period_key()
    result = await db.execute(
        select(CreditLedger)
        .where(CreditLedger.user_id == user_id)
        .order_by(CreditLedger.created_at.desc())
        .limit(30)
    )
    entries = result.scalars().all()
    return {
        "balance": balance,
        "period_key": period_key,
        "free_monthly_credits": max(int(settings.FREE_MONTHLY_CREDITS), 0),
        "costs": {
            "subtitle": media_task_cost("subtitle"),
            "video": media_task_cost("video"),
        },
        "recent_entries": [
            {
                "id": entry.id,
                "entry_type": entry.entry_type,
                "delta_credits": entry.delta_credits,
                "balance_after": entry.balance_after,
                "reason": entry.reason,
                "reference_id": entry.reference_id,
                "created_at": entry.created_at.isoformat() if entry.created_at else None,
            }
            for entry in entries
        ],
    }
