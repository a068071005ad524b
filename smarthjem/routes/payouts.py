"""
Owner payouts, rental day calculation and price ranges
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from smarthjem.auth import get_current_user, require_admin, require_admin_access
from smarthjem.context import AppContext, get_context
from smarthjem.payouts import PayoutValidationError, calculate_rental_days, normalize_payout, parse_amount

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Payouts"])


class PayoutCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(alias="userId")
    month: int
    year: int
    amount: Union[str, float, int]
    currency: str = "NOK"
    status: str = "pending"
    rental_days: Optional[int] = Field(default=None, alias="rentalDays", ge=0)
    paid_date: Optional[str] = Field(default=None, alias="paidDate")
    notes: Optional[str] = None


class PayoutUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    month: Optional[int] = None
    year: Optional[int] = None
    amount: Optional[Union[str, float, int]] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    rental_days: Optional[int] = Field(default=None, alias="rentalDays", ge=0)
    paid_date: Optional[str] = Field(default=None, alias="paidDate")
    notes: Optional[str] = None


class RentalDaysRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(alias="userId")
    month: int
    year: int


class PriceRangeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1, max_length=100)
    price_from: Union[str, float, int] = Field(alias="priceFrom")
    price_to: Union[str, float, int] = Field(alias="priceTo")
    discount_percent: Union[str, float, int] = Field(alias="discountPercent")
    is_active: bool = Field(default=True, alias="isActive")


class PriceRangeUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    price_from: Optional[Union[str, float, int]] = Field(default=None, alias="priceFrom")
    price_to: Optional[Union[str, float, int]] = Field(default=None, alias="priceTo")
    discount_percent: Optional[Union[str, float, int]] = Field(default=None, alias="discountPercent")
    is_active: Optional[bool] = Field(default=None, alias="isActive")


def _validated(payload: dict[str, Any], partial: bool = False) -> dict[str, Any]:
    try:
        return normalize_payout(payload, partial=partial)
    except PayoutValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _payout_or_404(ctx: AppContext, payout_id: int) -> dict[str, Any]:
    payout = ctx.state_store.get_payout(payout_id)
    if payout is None:
        raise HTTPException(status_code=404, detail="Payout not found")
    return payout


@router.get("/admin/payouts")
def list_payouts(
    _: dict[str, Any] = Depends(require_admin_access),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    return ctx.state_store.list_payouts()


@router.get("/admin/payouts/user/{user_id}")
def list_user_payouts(
    user_id: int,
    _: dict[str, Any] = Depends(require_admin_access),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    return ctx.state_store.list_payouts(user_id=user_id)


@router.get("/admin/payouts/user/{user_id}/year/{year}")
def list_user_payouts_for_year(
    user_id: int,
    year: int,
    _: dict[str, Any] = Depends(require_admin_access),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    return ctx.state_store.list_payouts(user_id=user_id, year=year)


@router.post("/admin/payouts", status_code=201)
def create_payout(
    request: PayoutCreateRequest,
    admin: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    if ctx.state_store.get_user(request.user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    values = _validated(request.model_dump(exclude={"user_id"}))
    payout = ctx.state_store.create_payout(request.user_id, registered_by_id=admin["id"], **values)
    logger.info("Payout %s registered for user %s by admin %s", payout["id"], request.user_id, admin["id"])
    return payout


@router.patch("/admin/payouts/{payout_id}")
def update_payout(
    payout_id: int,
    request: PayoutUpdateRequest,
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    current = _payout_or_404(ctx, payout_id)
    payload = request.model_dump(exclude_none=True)
    if ("month" in payload) != ("year" in payload):
        payload.setdefault("month", current["month"])
        payload.setdefault("year", current["year"])
    return ctx.state_store.update_payout(payout_id, **_validated(payload, partial=True))


@router.delete("/admin/payouts/{payout_id}")
def delete_payout(
    payout_id: int,
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, str]:
    _payout_or_404(ctx, payout_id)
    ctx.state_store.delete_payout(payout_id)
    return {"message": "payout deleted"}


@router.post("/admin/payouts/calculate-rental-days")
def rental_days(
    request: RentalDaysRequest,
    _: dict[str, Any] = Depends(require_admin_access),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    if ctx.state_store.get_user(request.user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    events = ctx.state_store.list_events(request.user_id, source_type="beds24")
    try:
        return calculate_rental_days(events, request.year, request.month, ctx.config_manager.load().sync.timezone)
    except PayoutValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/user/payouts/year/{year}")
def own_payouts(
    year: int,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    return ctx.state_store.list_payouts(user_id=user["id"], year=year)


# price ranges


def _price_values(payload: dict[str, Any], current: dict[str, Any] | None = None) -> dict[str, Any]:
    merged = dict(current or {})
    merged.update(payload)
    try:
        price_from = parse_amount(merged["price_from"])
        price_to = parse_amount(merged["price_to"])
        discount = parse_amount(merged["discount_percent"])
    except PayoutValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if price_from > price_to:
        raise HTTPException(status_code=400, detail="priceFrom must not exceed priceTo")
    if not Decimal("0") <= discount <= Decimal("100"):
        raise HTTPException(status_code=400, detail="discountPercent must be between 0 and 100")
    values = dict(payload)
    values.update(price_from=str(price_from), price_to=str(price_to), discount_percent=str(discount))
    return values


@router.get("/price-ranges")
def list_price_ranges(ctx: AppContext = Depends(get_context)) -> list[dict[str, Any]]:
    return ctx.state_store.list_price_ranges()


@router.get("/price-ranges/{price_range_id}")
def get_price_range(price_range_id: int, ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
    price_range = ctx.state_store.get_price_range(price_range_id)
    if price_range is None:
        raise HTTPException(status_code=404, detail="Price range not found")
    return price_range


@router.post("/admin/price-ranges", status_code=201)
def create_price_range(
    request: PriceRangeRequest,
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    return ctx.state_store.create_price_range(**_price_values(request.model_dump()))


@router.put("/admin/price-ranges/{price_range_id}")
def update_price_range(
    price_range_id: int,
    request: PriceRangeUpdateRequest,
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    current = get_price_range(price_range_id, ctx)
    values = _price_values(request.model_dump(exclude_none=True), current)
    return ctx.state_store.update_price_range(price_range_id, **values)


@router.delete("/admin/price-ranges/{price_range_id}")
def delete_price_range(
    price_range_id: int,
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, str]:
    if not ctx.state_store.delete_price_range(price_range_id):
        raise HTTPException(status_code=404, detail="Price range not found")
    return {"message": "price range deleted"}
