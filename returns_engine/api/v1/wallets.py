"""Wallet endpoints: balances, ledger, admin adjustments and reconciliation"""

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from returns_engine.api.dependencies import get_request_id
from returns_engine.api.v1.schemas import (
    LedgerEntrySchema,
    LedgerResponse,
    ReconcileResponse,
    WalletAdjustRequest,
    WalletResponse,
)
from returns_engine.infrastructure.database.models import Wallet
from returns_engine.infrastructure.database.session import get_db
from returns_engine.services.wallet import WalletLedger

router = APIRouter()


def to_response(wallet: Wallet) -> WalletResponse:
    return WalletResponse(
        user_id=wallet.user_id,
        balance_paise=wallet.balance_paise,
        locked_paise=wallet.locked_paise,
        available_paise=wallet.balance_paise - wallet.locked_paise,
    )


@router.get("/wallets/{user_id}", response_model=WalletResponse)
async def get_wallet(user_id: str, db: AsyncSession = Depends(get_db)):
    return to_response(await WalletLedger(db).get_wallet(user_id))


@router.get("/wallets/{user_id}/ledger", response_model=LedgerResponse)
async def get_ledger(
    user_id: str,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """Ledger lines oldest first"""
    entries, total = await WalletLedger(db).entries(user_id, limit=limit, offset=offset)
    return LedgerResponse(
        user_id=user_id,
        entries=[
            LedgerEntrySchema(
                kind=e.kind,
                amount_paise=e.amount_paise,
                reference_id=e.reference_id,
                note=e.note,
                balance_after_paise=e.balance_after_paise,
                locked_after_paise=e.locked_after_paise,
                created_at=e.created_at,
            )
            for e in entries
        ],
        total=total,
    )


@router.post("/admin/wallets/{user_id}/adjust", response_model=WalletResponse)
async def adjust_wallet(user_id: str, body: WalletAdjustRequest, request: Request, db: AsyncSession = Depends(get_db)):
    """Manual credit or debit; opens the wallet on first credit"""
    ledger = WalletLedger(db)
    async with ledger.transaction(user_id):
        if body.direction == "credit":
            await ledger.open_wallet(user_id)
            wallet = await ledger.credit(user_id, body.amount_paise, reference_id="admin_adjustment", note=body.note)
        else:
            wallet = await ledger.debit(user_id, body.amount_paise, reference_id="admin_adjustment", note=body.note)

    logging.info(
        "Wallet adjusted by admin",
        extra={
            "request_id": get_request_id(request),
            "user_id": user_id,
            "direction": body.direction,
            "amount_paise": body.amount_paise,
        },
    )
    return to_response(wallet)


@router.get("/admin/wallets/{user_id}/reconcile", response_model=ReconcileResponse)
async def reconcile_wallet(user_id: str, db: AsyncSession = Depends(get_db)):
    report = await WalletLedger(db).reconcile(user_id)
    return ReconcileResponse(
        user_id=report.user_id,
        consistent=report.consistent,
        balance_paise=report.balance_paise,
        locked_paise=report.locked_paise,
        replayed_balance_paise=report.replayed_balance_paise,
        replayed_locked_paise=report.replayed_locked_paise,
        entry_count=report.entry_count,
    )
