"""Job payload models: one pydantic model per job type, discriminated by `type`."""

from datetime import date
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from snt_ledger.services.errors import ValidationError

PeriodKey = Annotated[str, Field(pattern=r"^\d{4}-(0[1-9]|1[0-2])$")]

IMPORT_STATEMENT = "billing.import_statement"
IMPORT_PAYMENTS = "payments.import"
AUTO_ALLOCATE = "allocation.auto"
PENALTY_APPLY = "penalty.apply"
PENALTY_RECALC = "penalty.recalc"
RECEIPTS_BATCH = "receipts.batch"
PERIOD_AGGREGATES = "reports.period_aggregates"
CAMPAIGN_SEND = "notifications.campaign_send"

MAX_REPORT_PERIODS = 24


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str | None = Field(default=None, description="Justification for closed periods")


class ImportStatementPayload(_Payload):
    type: Literal["billing.import_statement"] = IMPORT_STATEMENT
    rows: list[dict[str, Any]]
    file_name: str | None = None


class ImportPaymentsPayload(_Payload):
    type: Literal["payments.import"] = IMPORT_PAYMENTS
    rows: list[dict[str, Any]]
    file_name: str | None = None


class AutoAllocatePayload(_Payload):
    type: Literal["allocation.auto"] = AUTO_ALLOCATE
    payment_ids: list[int] | None = None
    period: PeriodKey | None = None


class PenaltyApplyPayload(_Payload):
    type: Literal["penalty.apply"] = PENALTY_APPLY
    as_of: date
    rate: Decimal = Field(ge=0)


class PenaltyRecalcPayload(_Payload):
    type: Literal["penalty.recalc"] = PENALTY_RECALC
    as_of: date
    rate: Decimal = Field(ge=0)
    create_missing: bool = False
    period: PeriodKey | None = None
    plot_ids: list[int] | None = None
    limit: int | None = Field(default=None, ge=1)


class ReceiptsBatchPayload(_Payload):
    type: Literal["receipts.batch"] = RECEIPTS_BATCH
    period: PeriodKey
    plot_ids: list[int] | None = None
    filter: Literal["debtors", "has_accruals", "all"] = "debtors"
    limit: int = Field(default=100, ge=1, le=500)


class PeriodAggregatesPayload(_Payload):
    type: Literal["reports.period_aggregates"] = PERIOD_AGGREGATES
    periods: list[PeriodKey] = Field(min_length=1, max_length=MAX_REPORT_PERIODS)


class CampaignSendPayload(_Payload):
    type: Literal["notifications.campaign_send"] = CAMPAIGN_SEND
    template: str = Field(min_length=1)
    min_debt: Decimal = Field(default=Decimal("0"), ge=0)
    plot_ids: list[int] | None = None


JobPayload = Annotated[
    Union[
        ImportStatementPayload,
        ImportPaymentsPayload,
        AutoAllocatePayload,
        PenaltyApplyPayload,
        PenaltyRecalcPayload,
        ReceiptsBatchPayload,
        PeriodAggregatesPayload,
        CampaignSendPayload,
    ],
    Field(discriminator="type"),
]

JOB_TYPES = (
    IMPORT_STATEMENT,
    IMPORT_PAYMENTS,
    AUTO_ALLOCATE,
    PENALTY_APPLY,
    PENALTY_RECALC,
    RECEIPTS_BATCH,
    PERIOD_AGGREGATES,
    CAMPAIGN_SEND,
)

_adapter = TypeAdapter(JobPayload)


def parse_payload(job_type: str, payload: dict[str, Any] | None) -> BaseModel:
    """Validate a raw payload against the model of its job type.

    Raises:
        ValidationError: Unknown job type or payload not matching the model
    """
    if job_type not in JOB_TYPES:
        raise ValidationError(f"Unknown job type {job_type!r}")
    data = dict(payload or {})
    if data.get("type", job_type) != job_type:
        raise ValidationError(f"Payload type {data['type']!r} does not match job type {job_type!r}")
    data["type"] = job_type
    try:
        return _adapter.validate_python(data)
    except PydanticValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(f"Invalid payload for {job_type}: {details}") from e


__all__ = [
    "JobPayload",
    "JOB_TYPES",
    "parse_payload",
    "ImportStatementPayload",
    "ImportPaymentsPayload",
    "AutoAllocatePayload",
    "PenaltyApplyPayload",
    "PenaltyRecalcPayload",
    "ReceiptsBatchPayload",
    "PeriodAggregatesPayload",
    "CampaignSendPayload",
]
