"""Data models for companies, periods and extracted returns."""
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional
from pydantic import BaseModel, Field

SectionStatus = Literal["success", "no_records", "not_found", "error"]

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Company(BaseModel):
    """A taxpayer from the roster. Read-only for the pipeline."""

    id: int | str = Field(..., description="Roster primary key")
    name: str
    kra_pin: str = Field(..., description="Tax identifier (PIN)")
    kra_password: str = Field(..., repr=False, exclude=True)
    registration_flags: dict[str, Any] = Field(default_factory=dict)


class ReportingPeriod(BaseModel):
    """One filing month, identified by (month, year)."""

    month: int = Field(..., ge=1, le=12)
    year: int
    source_date_label: str = Field(..., description="DD/MM/YYYY as shown by the portal")
    day: int = 1

    @property
    def key(self) -> tuple[int, int]:
        return (self.month, self.year)

    @property
    def label(self) -> str:
        return f"{MONTH_NAMES[self.month - 1]} {self.year}"

    @property
    def from_date(self) -> date:
        return date(self.year, self.month, self.day)


class SectionResult(BaseModel):
    """Outcome of scraping one return section."""

    section: str = Field(..., description="Display name")
    status: SectionStatus
    data: list[dict[str, Any]] = Field(default_factory=list)
    message: Optional[str] = None


class PageKind(str, Enum):
    """What a return's detail view turned out to be."""

    ERROR_PAGE = "ERROR_PAGE"
    NIL_RETURN = "NIL_RETURN"
    NORMAL = "NORMAL"


class PeriodDetail(BaseModel):
    """A persisted period: either a NIL marker or nine section results."""

    company_id: int | str
    kra_pin: str
    period: ReportingPeriod
    is_nil_return: bool = False
    sections: Optional[dict[str, SectionResult]] = None
    error_message: Optional[str] = None
    extracted_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def nil(cls, company: Company, period: ReportingPeriod) -> "PeriodDetail":
        return cls(company_id=company.id, kra_pin=company.kra_pin, period=period, is_nil_return=True)

    @classmethod
    def normal(
        cls, company: Company, period: ReportingPeriod, sections: dict[str, SectionResult]
    ) -> "PeriodDetail":
        return cls(company_id=company.id, kra_pin=company.kra_pin, period=period, sections=sections)

    @property
    def processing_status(self) -> str:
        return "nil_return" if self.is_nil_return else "completed"

    def to_record(self, section_columns: dict[str, str]) -> dict[str, Any]:
        """Flatten to the vat_return_details row shape.

        section_columns maps catalog key -> column name. Every column is
        present; NIL returns carry None in all of them.
        """
        now = utcnow().isoformat()
        record: dict[str, Any] = {
            "company_id": self.company_id,
            "kra_pin": self.kra_pin,
            "return_period_from_date": self.period.from_date.isoformat(),
            "month": self.period.month,
            "year": self.period.year,
            "is_nil_return": self.is_nil_return,
        }
        for key, column in section_columns.items():
            result = None if self.is_nil_return or not self.sections else self.sections.get(key)
            record[column] = result.model_dump(mode="json") if result is not None else None
        record.update(
            {
                "extraction_timestamp": self.extracted_at.isoformat(),
                "processing_status": self.processing_status,
                "error_message": self.error_message,
                "updated_at": now,
            }
        )
        return record


class ExtractionPlan(BaseModel):
    """Which periods of a company need fetching.

    periods=None means every period the portal lists.
    """

    skip: bool
    reason: Literal["force_update", "no_listing", "no_details", "all_periods_complete", "partial"]
    periods: Optional[list[ReportingPeriod]] = None

    @property
    def targets_all(self) -> bool:
        return self.periods is None

    def includes(self, month: int, year: int) -> bool:
        if self.periods is None:
            return True
        return any(p.month == month and p.year == year for p in self.periods)


class PeriodError(BaseModel):
    label: str
    message: str
    ref_no: Optional[str] = None


class ExecutionResult(BaseModel):
    """What execute_plan did for one company."""

    listing_rows: int = 0
    listing_saved: bool = False
    periods_processed: int = 0
    periods_skipped: int = 0
    periods_nil: int = 0
    periods_failed: int = 0
    periods_targeted_unprocessed: int = 0
    errors: list[PeriodError] = Field(default_factory=list)
    section_rows: dict[str, list[dict[str, Any]]] = Field(
        default_factory=dict, description="Extracted rows per section key, tagged with their period"
    )


class WithholdingAgentStatus(BaseModel):
    """Result of the public withholding-agent checker for one PIN."""

    pin: str
    agent_type: Literal["VAT", "RENT"]
    is_registered: Optional[bool] = None
    message: str = ""
    captcha_retries: int = 0
    details: dict[str, str] = Field(default_factory=dict)


class CompanyResult(BaseModel):
    """Per-company outcome recorded by the orchestrator."""

    company: str
    pin: str
    success: bool
    skipped: bool = False
    reason: Optional[str] = None
    attempts: int = 1
    error: Optional[str] = None
    execution: Optional[ExecutionResult] = None
    ledger: list[dict[str, Any]] = Field(default_factory=list)
    liabilities: list[dict[str, Any]] = Field(default_factory=list)
    liabilities_total: Optional[float] = None
    withholding: list[WithholdingAgentStatus] = Field(default_factory=list)
