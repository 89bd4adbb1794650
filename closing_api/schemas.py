"""
closing_api/schemas.py

Response models of the closing HTTP API.

Field names are snake_case in Python and camelCase on the wire; every model
is built from a kernel or service DTO through ``from_dto``.
"""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from closing_kernel.domain.dtos import (
    ClosingRecordInfo,
    ClosingResult,
    CurrentPosition,
    DailyClosingDayStatus,
)
from closing_services._closing_types import (
    FanOutReport,
    KeyOutcome,
    RecalcBatchReport,
    RecalcEntry,
    RecalcReport,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class ClosingRecordResponse(CamelModel):
    id: UUID
    entity_id: str
    facility_type_code: str
    granularity: str
    period_code: str
    period_start: date
    period_end: date
    previous_quantity: int
    inbound_quantity: int
    outbound_quantity: int
    closing_quantity: int
    is_closed: bool
    version: int
    closed_at: datetime | None = None
    closed_by_id: UUID | None = None
    closed_by_name: str | None = None

    @classmethod
    def from_dto(cls, info: ClosingRecordInfo) -> "ClosingRecordResponse":
        return cls(
            id=info.id,
            entity_id=info.entity_id,
            facility_type_code=info.facility_type_code,
            granularity=info.granularity.value,
            period_code=info.period_code,
            period_start=info.period_start,
            period_end=info.period_end,
            previous_quantity=info.previous_quantity,
            inbound_quantity=info.inbound_quantity,
            outbound_quantity=info.outbound_quantity,
            closing_quantity=info.closing_quantity,
            is_closed=info.is_closed,
            version=info.version,
            closed_at=info.closed_at,
            closed_by_id=info.closed_by_id,
            closed_by_name=info.closed_by_name,
        )


class ClosingResultResponse(CamelModel):
    status: str
    record: ClosingRecordResponse

    @classmethod
    def from_dto(cls, result: ClosingResult) -> "ClosingResultResponse":
        return cls(
            status=result.status.value,
            record=ClosingRecordResponse.from_dto(result.record),
        )


class KeyOutcomeResponse(CamelModel):
    facility_type_code: str
    status: str
    record: ClosingRecordResponse | None = None
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def from_dto(cls, outcome: KeyOutcome) -> "KeyOutcomeResponse":
        return cls(
            facility_type_code=outcome.facility_type_code,
            status=outcome.status.value,
            record=(
                ClosingRecordResponse.from_dto(outcome.record)
                if outcome.record is not None
                else None
            ),
            error_code=outcome.error_code,
            error_message=outcome.error_message,
        )


class FanOutReportResponse(CamelModel):
    entity_id: str
    granularity: str
    period_code: str
    status: str
    correlation_id: str
    closed_count: int
    already_closed_count: int
    failed_count: int
    not_attempted_count: int
    interrupted: bool
    retry_keys: list[str]
    outcomes: list[KeyOutcomeResponse]

    @classmethod
    def from_dto(cls, report: FanOutReport) -> "FanOutReportResponse":
        return cls(
            entity_id=report.entity_id,
            granularity=report.granularity.value,
            period_code=report.period_code,
            status=report.status.value,
            correlation_id=report.correlation_id,
            closed_count=report.closed_count,
            already_closed_count=report.already_closed_count,
            failed_count=report.failed_count,
            not_attempted_count=report.not_attempted_count,
            interrupted=report.interrupted,
            retry_keys=list(report.retry_keys),
            outcomes=[KeyOutcomeResponse.from_dto(o) for o in report.outcomes],
        )


class RecalcEntryResponse(CamelModel):
    granularity: str
    period_code: str
    old_closing_quantity: int
    new_closing_quantity: int
    version_before: int
    version_after: int
    changed: bool

    @classmethod
    def from_dto(cls, entry: RecalcEntry) -> "RecalcEntryResponse":
        return cls(
            granularity=entry.granularity.value,
            period_code=entry.period_code,
            old_closing_quantity=entry.old_closing_quantity,
            new_closing_quantity=entry.new_closing_quantity,
            version_before=entry.version_before,
            version_after=entry.version_after,
            changed=entry.changed,
        )


class RecalcReportResponse(CamelModel):
    entity_id: str
    facility_type_code: str
    from_date: date
    status: str
    run_id: UUID | None = None
    resumed_from: date | None = None
    failed_at: str | None = None
    last_committed_date: date | None = None
    error_code: str | None = None
    message: str
    days_recalculated: int
    months_recalculated: int
    entries: list[RecalcEntryResponse]

    @classmethod
    def from_dto(cls, report: RecalcReport) -> "RecalcReportResponse":
        return cls(
            entity_id=report.entity_id,
            facility_type_code=report.facility_type_code,
            from_date=report.from_date,
            status=report.status.value,
            run_id=report.run_id,
            resumed_from=report.resumed_from,
            failed_at=report.failed_at,
            last_committed_date=report.last_committed_date,
            error_code=report.error_code,
            message=report.message,
            days_recalculated=report.days_recalculated,
            months_recalculated=report.months_recalculated,
            entries=[RecalcEntryResponse.from_dto(e) for e in report.entries],
        )


class RecalcBatchReportResponse(CamelModel):
    entity_id: str
    from_date: date
    status: str
    correlation_id: str
    reports: list[RecalcReportResponse]
    failures: list[KeyOutcomeResponse]

    @classmethod
    def from_dto(cls, report: RecalcBatchReport) -> "RecalcBatchReportResponse":
        return cls(
            entity_id=report.entity_id,
            from_date=report.from_date,
            status=report.status.value,
            correlation_id=report.correlation_id,
            reports=[RecalcReportResponse.from_dto(r) for r in report.reports],
            failures=[KeyOutcomeResponse.from_dto(f) for f in report.failures],
        )


class CurrentPositionResponse(CamelModel):
    entity_id: str
    facility_type_code: str
    base_quantity: int
    recent_inbound: int
    recent_outbound: int
    current_quantity: int
    latest_closing_date: date | None = None
    as_of: date

    @classmethod
    def from_dto(cls, position: CurrentPosition) -> "CurrentPositionResponse":
        return cls(
            entity_id=position.entity_id,
            facility_type_code=position.facility_type_code,
            base_quantity=position.base_quantity,
            recent_inbound=position.recent_inbound,
            recent_outbound=position.recent_outbound,
            current_quantity=position.current_quantity,
            latest_closing_date=position.latest_closing_date,
            as_of=position.as_of,
        )


class DailyClosingDayResponse(CamelModel):
    closing_date: date
    day_of_month: int
    is_closed: bool
    closed_keys: int
    total_keys: int
    closed_at: datetime | None = None
    closed_by_id: UUID | None = None
    closed_by_name: str | None = None

    @classmethod
    def from_dto(cls, row: DailyClosingDayStatus) -> "DailyClosingDayResponse":
        return cls(
            closing_date=row.closing_date,
            day_of_month=row.day_of_month,
            is_closed=row.is_closed,
            closed_keys=row.closed_keys,
            total_keys=row.total_keys,
            closed_at=row.closed_at,
            closed_by_id=row.closed_by_id,
            closed_by_name=row.closed_by_name,
        )


class MonthClosedResponse(CamelModel):
    entity_id: str
    facility_type_code: str
    transaction_date: date
    month_closed: bool


class ErrorResponse(CamelModel):
    code: str
    message: str
