"""Decide which periods to fetch and fetch only those."""
import asyncio
import logging
from typing import Any, AsyncContextManager, Optional, Protocol

from itax_sync.config import ExtractionSettings
from itax_sync.errors import StorageError
from itax_sync.parse.html_parser import PERIOD_COLUMN, parse_period_date
from itax_sync.parse.models import (
    Company,
    ExecutionResult,
    ExtractionPlan,
    PageKind,
    PeriodDetail,
    PeriodError,
    ReportingPeriod,
    SectionResult,
)
from itax_sync.store.gateway import StorageGateway
from itax_sync.store.spool import SpoolManager

logger = logging.getLogger(__name__)


class ReturnView(Protocol):
    async def classify(self) -> tuple[PageKind, Optional[str]]: ...

    async def maximize_page_size(self) -> None: ...

    async def extract_sections(self) -> dict[str, SectionResult]: ...


class ReturnsNavigator(Protocol):
    async def open_vat_returns(self) -> None: ...

    async def read_returns_listing(self) -> list[dict[str, Any]]: ...

    def open_period_detail(self, row_index: int) -> AsyncContextManager[ReturnView]: ...


class ReconciliationEngine:
    """Set difference between listed periods and stored periods, then fetch the gap."""

    def __init__(
        self,
        store: StorageGateway,
        settings: ExtractionSettings,
        spool: Optional[SpoolManager] = None,
        run_id: str = "",
    ):
        self.store = store
        self.settings = settings
        self.spool = spool
        self.run_id = run_id

    async def plan_extraction(self, company_id, company_name: str) -> ExtractionPlan:
        """Work out, from the store alone, whether a login is needed and for what."""
        if self.settings.force_update:
            logger.info(f"[PLAN] {company_name}: force update, fetching all periods")
            return ExtractionPlan(skip=False, reason="force_update")

        if not await self.store.has_listing(company_id):
            logger.info(f"[PLAN] {company_name}: no stored listing")
            return ExtractionPlan(skip=False, reason="no_listing")

        if not await self.store.has_any_detail(company_id):
            logger.info(f"[PLAN] {company_name}: no stored period details")
            return ExtractionPlan(skip=False, reason="no_details")

        listing = await self.store.get_listing(company_id)
        if not listing:
            logger.info(f"[PLAN] {company_name}: stored listing is empty")
            return ExtractionPlan(skip=False, reason="no_listing")

        candidates: dict[tuple[int, int], ReportingPeriod] = {}
        for row in listing:
            label = row.get(PERIOD_COLUMN)
            if not label:
                continue
            period = parse_period_date(label)
            if period is None:
                logger.warning(f"[PLAN] {company_name}: unparsable period {label!r}, treated as stored")
                continue
            if not self.settings.in_window(period.month, period.year):
                continue
            candidates.setdefault(period.key, period)

        periods = list(candidates.values())
        exists = await asyncio.gather(
            *(self.store.has_detail(company_id, p.month, p.year) for p in periods)
        )
        missing = [p for p, stored in zip(periods, exists) if not stored]

        if not missing:
            logger.info(f"[PLAN] {company_name}: all {len(periods)} periods complete")
            return ExtractionPlan(skip=True, reason="all_periods_complete", periods=[])

        logger.info(
            f"[PLAN] {company_name}: {len(missing)} of {len(periods)} periods missing: "
            f"{', '.join(p.label for p in missing)}"
        )
        return ExtractionPlan(skip=False, reason="partial", periods=missing)

    async def execute_plan(
        self, plan: ExtractionPlan, navigator: ReturnsNavigator, company: Company
    ) -> ExecutionResult:
        """Refresh the listing and fetch the planned periods, one persisted record each."""
        result = ExecutionResult()

        await navigator.open_vat_returns()
        listing = await navigator.read_returns_listing()
        result.listing_rows = len(listing)
        result.listing_saved = await self._save_listing(company, listing)

        handled: set[tuple[int, int]] = set()
        pending: list[PeriodDetail] = []

        for index, row in enumerate(listing):
            label = (row.get(PERIOD_COLUMN) or "").strip()
            period = parse_period_date(label)
            if period is None:
                logger.warning(f"[PERIOD] {company.kra_pin}: row {index} has no usable period ({label!r})")
                continue
            if not self.settings.in_window(period.month, period.year):
                continue
            if not plan.includes(period.month, period.year) or period.key in handled:
                result.periods_skipped += 1
                logger.debug(f"[PERIOD] {company.kra_pin} {label}: already stored, skipping")
                continue

            try:
                detail = await self._fetch_period(navigator, index, company, period, result)
                if detail is None:
                    continue
                if await self._already_stored(detail):
                    result.periods_skipped += 1
                    handled.add(period.key)
                    continue
                if self.settings.immediate_save:
                    await self._persist(detail, result, handled)
                else:
                    pending.append(detail)
                    handled.add(period.key)
            except Exception as e:
                result.periods_failed += 1
                result.errors.append(PeriodError(label=label, message=str(e)))
                logger.error(f"[PERIOD] {company.kra_pin} {label}: {type(e).__name__}: {e}")

        if pending:
            await self._flush(pending, result, handled)

        if not plan.targets_all:
            targeted = {p.key for p in plan.periods or []}
            result.periods_targeted_unprocessed = len(targeted - handled)
            if result.periods_targeted_unprocessed:
                logger.warning(
                    f"[PERIOD] {company.kra_pin}: {result.periods_targeted_unprocessed} targeted "
                    f"periods were not processed this run"
                )

        logger.info(
            f"[PERIOD] {company.kra_pin}: processed={result.periods_processed} "
            f"skipped={result.periods_skipped} failed={result.periods_failed}"
        )
        return result

    async def _save_listing(self, company: Company, listing: list[dict[str, Any]]) -> bool:
        if self.settings.skip_existing_listings and not self.settings.force_update:
            if await self.store.has_listing(company.id):
                logger.info(f"[STORE] {company.kra_pin}: listing exists, not replaced")
                return False
        await self.store.upsert_listing(company.id, listing)
        return True

    async def _fetch_period(
        self,
        navigator: ReturnsNavigator,
        index: int,
        company: Company,
        period: ReportingPeriod,
        result: ExecutionResult,
    ) -> Optional[PeriodDetail]:
        """Open one return and turn it into a record. None for portal error pages."""
        async with navigator.open_period_detail(index) as view:
            kind, ref_no = await view.classify()

            if kind == PageKind.ERROR_PAGE:
                result.periods_failed += 1
                result.errors.append(
                    PeriodError(label=period.source_date_label, message="Portal error page", ref_no=ref_no)
                )
                logger.error(
                    f"[PERIOD] {company.kra_pin} {period.label}: portal error page "
                    f"(ref {ref_no or 'N/A'}), will retry next run"
                )
                return None

            if kind == PageKind.NIL_RETURN:
                logger.info(f"[PERIOD] {company.kra_pin} {period.label}: NIL return")
                return PeriodDetail.nil(company, period)

            await view.maximize_page_size()
            sections = await view.extract_sections()
            for key, section in sections.items():
                if section.status == "success" and section.data:
                    result.section_rows.setdefault(key, []).extend(
                        {"Period": period.label, **row} for row in section.data
                    )
            statuses = ", ".join(f"{k}={s.status}" for k, s in sections.items())
            logger.info(f"[PERIOD] {company.kra_pin} {period.label}: {statuses}")
            return PeriodDetail.normal(company, period, sections)

    async def _already_stored(self, detail: PeriodDetail) -> bool:
        if not self.settings.skip_existing_details or self.settings.force_update:
            return False
        if await self.store.has_detail(detail.company_id, detail.period.month, detail.period.year):
            logger.info(f"[STORE] {detail.kra_pin} {detail.period.label}: already stored, not rewritten")
            return True
        return False

    async def _persist(self, detail: PeriodDetail, result: ExecutionResult, handled: set) -> None:
        try:
            await self.store.upsert_detail(detail.company_id, detail.kra_pin, detail)
        except StorageError as e:
            if self.spool is not None:
                await self.spool.write_detail(detail, self.run_id, str(e))
            raise
        handled.add(detail.period.key)
        result.periods_processed += 1
        if detail.is_nil_return:
            result.periods_nil += 1

    async def _flush(self, pending: list[PeriodDetail], result: ExecutionResult, handled: set) -> None:
        logger.info(f"[STORE] Flushing {len(pending)} buffered period records")
        for detail in pending:
            handled.discard(detail.period.key)
            try:
                await self._persist(detail, result, handled)
            except StorageError as e:
                result.periods_failed += 1
                result.errors.append(PeriodError(label=detail.period.source_date_label, message=str(e)))
                logger.error(f"[STORE] {detail.kra_pin} {detail.period.label}: {e}")
