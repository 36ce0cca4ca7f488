from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from lingobridge.routers.dependencies import get_engine
from lingobridge.services.translation_engine import TranslationEngine
from lingobridge.utils.exceptions import (
    IdempotencyConflictError,
    LedgerWriteError,
    PaymentError,
    WorkspaceNotFoundError,
)


router = APIRouter(prefix="/billing")


class AddCreditsAPIRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    description: str = Field(default="Manual credit", max_length=255)
    payment_reference: Optional[str] = Field(default=None, max_length=128)


class RechargeAPIRequest(BaseModel):
    amount: Optional[Decimal] = Field(default=None, gt=0)


class AutoRechargeAPIRequest(BaseModel):
    enabled: bool
    threshold: Optional[Decimal] = Field(default=None, ge=0)
    amount: Optional[Decimal] = Field(default=None, gt=0)


@router.get("/{workspace_id}/balance")
async def get_balance(workspace_id: str, engine: TranslationEngine = Depends(get_engine)) -> Dict[str, Any]:
    try:
        account = await engine.ledger.get_account(workspace_id)
    except WorkspaceNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except LedgerWriteError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return account.model_dump(mode="json")


@router.post("/{workspace_id}/credits")
async def add_credits(
    workspace_id: str,
    request: AddCreditsAPIRequest,
    engine: TranslationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    try:
        result = await engine.ledger.add_credits(
            workspace_id, request.amount, description=request.description, payment_reference=request.payment_reference
        )
    except IdempotencyConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except LedgerWriteError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return result.model_dump(mode="json")


@router.post("/{workspace_id}/recharge")
async def recharge(
    workspace_id: str,
    request: RechargeAPIRequest,
    engine: TranslationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    try:
        result = await engine.ledger.recharge_credits(workspace_id, request.amount)
    except PaymentError as e:
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(e))
    except LedgerWriteError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return result.model_dump(mode="json")


@router.put("/{workspace_id}/auto-recharge")
async def configure_auto_recharge(
    workspace_id: str,
    request: AutoRechargeAPIRequest,
    engine: TranslationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    try:
        account = await engine.ledger.configure_auto_recharge(
            workspace_id, request.enabled, threshold=request.threshold, amount=request.amount
        )
    except LedgerWriteError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return account.model_dump(mode="json")


@router.get("/{workspace_id}/transactions")
async def list_transactions(
    workspace_id: str,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    engine: TranslationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    try:
        transactions = await engine.ledger.get_transactions(workspace_id, limit=limit, offset=offset)
    except LedgerWriteError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return {"workspace_id": workspace_id, "transactions": transactions}


@router.get("/{workspace_id}/usage")
async def get_usage(
    workspace_id: str,
    day: Optional[str] = Query(None, description="YYYY-MM-DD, defaults to today (UTC)"),
    engine: TranslationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    try:
        parsed = date.fromisoformat(day) if day else None
    except ValueError:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"Invalid day: {day}")
    usage = await engine.usage_tracker.get_daily_usage(workspace_id, parsed)
    if usage is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No usage recorded for that day")
    return usage
