"""
closing_api/routers/closing.py

Closing endpoints under ``/closing``.

Write endpoints go through the coordinators (per-key lock, one transaction
per key); read endpoints use a short read-only session and the selector.
Kernel errors are not caught here; the application's exception handler maps
their codes to HTTP statuses.
"""

from __future__ import annotations

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from closing_api.dependencies import (
    get_actor_id,
    get_closing_coordinator,
    get_recalculation_coordinator,
    get_selector,
)
from closing_api.schemas import (
    ClosingRecordResponse,
    ClosingResultResponse,
    CurrentPositionResponse,
    DailyClosingDayResponse,
    FanOutReportResponse,
    MonthClosedResponse,
    RecalcBatchReportResponse,
    RecalcReportResponse,
)
from closing_kernel.domain.periods import ClosingPeriod
from closing_kernel.exceptions import ClosingNotFoundError
from closing_kernel.selectors.closing_selector import ClosingSelector
from closing_services.closing_coordinator import ClosingCoordinator
from closing_services.recalculation_coordinator import RecalculationCoordinator

router = APIRouter(prefix="/closing", tags=["closing"])

EntityId = Annotated[str, Query(alias="entityId", min_length=1, max_length=64)]
FacilityTypeCode = Annotated[
    str, Query(alias="facilityTypeCode", min_length=1, max_length=50)
]
DateParam = Annotated[date, Query(alias="date")]
Year = Annotated[int, Query(ge=1900, le=9999)]
Month = Annotated[int, Query(ge=1, le=12)]


# ---------------------------------------------------------------------------
# Daily
# ---------------------------------------------------------------------------


@router.get("/daily", response_model=ClosingRecordResponse)
def get_daily(
    entity_id: EntityId,
    facility_type_code: FacilityTypeCode,
    closing_date: DateParam,
    selector: ClosingSelector = Depends(get_selector),
) -> ClosingRecordResponse:
    record = selector.get_daily(entity_id, facility_type_code, closing_date)
    if record is None:
        raise ClosingNotFoundError(entity_id, facility_type_code, closing_date.isoformat())
    return ClosingRecordResponse.from_dto(record)


@router.post("/daily", response_model=FanOutReportResponse)
def close_daily(
    entity_id: EntityId,
    closing_date: DateParam,
    actor_id: UUID = Depends(get_actor_id),
    coordinator: ClosingCoordinator = Depends(get_closing_coordinator),
) -> FanOutReportResponse:
    """Close ``date`` for every facility type of the entity that is due."""
    report = coordinator.close_day_all(entity_id, closing_date, actor_id)
    return FanOutReportResponse.from_dto(report)


@router.get("/daily-status-by-month", response_model=list[ClosingRecordResponse])
def daily_status_by_month(
    entity_id: EntityId,
    year: Year,
    month: Month,
    selector: ClosingSelector = Depends(get_selector),
) -> list[ClosingRecordResponse]:
    return [
        ClosingRecordResponse.from_dto(r)
        for r in selector.daily_status_by_month(entity_id, year, month)
    ]


@router.get("/daily-status", response_model=list[ClosingRecordResponse])
def daily_status(
    entity_id: EntityId,
    closing_date: DateParam,
    selector: ClosingSelector = Depends(get_selector),
) -> list[ClosingRecordResponse]:
    return [
        ClosingRecordResponse.from_dto(r)
        for r in selector.daily_status(entity_id, closing_date)
    ]


@router.get("/daily-calendar", response_model=list[DailyClosingDayResponse])
def daily_calendar(
    entity_id: EntityId,
    year: Year,
    month: Month,
    selector: ClosingSelector = Depends(get_selector),
) -> list[DailyClosingDayResponse]:
    return [
        DailyClosingDayResponse.from_dto(row)
        for row in selector.daily_closing_calendar(entity_id, year, month)
    ]


@router.post("/daily/recalculate", response_model=RecalcReportResponse)
def recalculate(
    entity_id: EntityId,
    facility_type_code: FacilityTypeCode,
    from_date: DateParam,
    actor_id: UUID = Depends(get_actor_id),
    coordinator: RecalculationCoordinator = Depends(get_recalculation_coordinator),
) -> RecalcReportResponse:
    """
    Recalculate one facility type from ``date`` onward.

    An aborted recalculation (negative closing found while planning) is a
    normal report with status ``aborted``; nothing was changed.
    """
    report = coordinator.recalculate(entity_id, facility_type_code, from_date, actor_id)
    return RecalcReportResponse.from_dto(report)


@router.post("/daily/recalculate-all", response_model=RecalcBatchReportResponse)
def recalculate_all(
    entity_id: EntityId,
    from_date: DateParam,
    actor_id: UUID = Depends(get_actor_id),
    coordinator: RecalculationCoordinator = Depends(get_recalculation_coordinator),
) -> RecalcBatchReportResponse:
    report = coordinator.recalculate_all(entity_id, from_date, actor_id)
    return RecalcBatchReportResponse.from_dto(report)


# ---------------------------------------------------------------------------
# Monthly
# ---------------------------------------------------------------------------


@router.post("/monthly", response_model=ClosingResultResponse)
def close_monthly(
    entity_id: EntityId,
    facility_type_code: FacilityTypeCode,
    year: Year,
    month: Month,
    actor_id: UUID = Depends(get_actor_id),
    coordinator: ClosingCoordinator = Depends(get_closing_coordinator),
) -> ClosingResultResponse:
    result = coordinator.close_month(entity_id, facility_type_code, year, month, actor_id)
    return ClosingResultResponse.from_dto(result)


@router.post("/monthly/all", response_model=FanOutReportResponse)
def close_monthly_all(
    entity_id: EntityId,
    year: Year,
    month: Month,
    actor_id: UUID = Depends(get_actor_id),
    coordinator: ClosingCoordinator = Depends(get_closing_coordinator),
) -> FanOutReportResponse:
    report = coordinator.close_month_all(entity_id, year, month, actor_id)
    return FanOutReportResponse.from_dto(report)


@router.get("/monthly", response_model=ClosingRecordResponse)
def get_monthly(
    entity_id: EntityId,
    facility_type_code: FacilityTypeCode,
    year: Year,
    month: Month,
    selector: ClosingSelector = Depends(get_selector),
) -> ClosingRecordResponse:
    record = selector.get_monthly(entity_id, facility_type_code, year, month)
    if record is None:
        raise ClosingNotFoundError(
            entity_id, facility_type_code, ClosingPeriod.for_month(year, month).code
        )
    return ClosingRecordResponse.from_dto(record)


@router.get("/monthly-status-by-year", response_model=list[ClosingRecordResponse])
def monthly_status_by_year(
    entity_id: EntityId,
    year: Year,
    selector: ClosingSelector = Depends(get_selector),
) -> list[ClosingRecordResponse]:
    return [
        ClosingRecordResponse.from_dto(r)
        for r in selector.monthly_status_by_year(entity_id, year)
    ]


@router.get("/monthly-status", response_model=list[ClosingRecordResponse])
def monthly_status(
    entity_id: EntityId,
    year: Year,
    month: Month,
    selector: ClosingSelector = Depends(get_selector),
) -> list[ClosingRecordResponse]:
    return [
        ClosingRecordResponse.from_dto(r)
        for r in selector.monthly_status(entity_id, year, month)
    ]


@router.get("/month-closed", response_model=MonthClosedResponse)
def month_closed(
    entity_id: EntityId,
    facility_type_code: FacilityTypeCode,
    transaction_date: DateParam,
    selector: ClosingSelector = Depends(get_selector),
) -> MonthClosedResponse:
    """Predicate for the transaction registration path."""
    return MonthClosedResponse(
        entity_id=entity_id,
        facility_type_code=facility_type_code,
        transaction_date=transaction_date,
        month_closed=selector.is_month_closed(
            entity_id, facility_type_code, transaction_date
        ),
    )


# ---------------------------------------------------------------------------
# Live position
# ---------------------------------------------------------------------------


@router.get("/current-position", response_model=CurrentPositionResponse)
def current_position(
    entity_id: EntityId,
    facility_type_code: FacilityTypeCode,
    selector: ClosingSelector = Depends(get_selector),
) -> CurrentPositionResponse:
    return CurrentPositionResponse.from_dto(
        selector.current_position(entity_id, facility_type_code)
    )
