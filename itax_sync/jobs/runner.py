"""Main job runner orchestrating companies through the extraction pipeline."""
import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Optional

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from itax_sync.config import ExtractionSettings, config
from itax_sync.errors import is_network_error, is_retryable
from itax_sync.jobs.metrics import ExtractionRun
from itax_sync.jobs.processor import CompanyProcessor
from itax_sync.jobs.reconciliation import ReconciliationEngine
from itax_sync.jobs.run_control import RunControl
from itax_sync.parse.models import Company, CompanyResult
from itax_sync.store.gateway import StorageGateway, build_gateway
from itax_sync.store.reports import ReportWriter
from itax_sync.store.spool import SpoolManager

logger = logging.getLogger(__name__)

ProcessFn = Callable[[Company], Awaitable[CompanyResult]]


class BatchOrchestrator:
    """Runs a roster through a processor with company-level retry."""

    def __init__(
        self,
        process: ProcessFn,
        settings: ExtractionSettings,
        run_control: Optional[RunControl] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_result: Optional[Callable[[CompanyResult], None]] = None,
    ):
        self.process = process
        self.settings = settings
        self.run_control = run_control or RunControl(fail_fast=not settings.continue_on_error)
        self.sleep = sleep
        self.on_result = on_result
        self.results: list[CompanyResult] = []
        self.aggregate: dict[str, Any] = {}

    def _retry_wait(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if exc is not None and is_network_error(exc):
            return self.settings.network_retry_delay
        return self.settings.retry_delay

    def _before_sleep(self, company: Company):
        def log(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception()
            logger.warning(
                f"[BATCH] {company.name}: attempt {retry_state.attempt_number}/{self.settings.max_retries} "
                f"failed ({type(exc).__name__}: {exc}), retrying in {retry_state.next_action.sleep:.1f}s"
            )
        return log

    async def process_with_retry(self, company: Company) -> CompanyResult:
        """Process one company, retrying with the same inputs; never raises."""
        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(1, self.settings.max_retries)),
                wait=self._retry_wait,
                retry=retry_if_exception(is_retryable),
                sleep=self.sleep,
                before_sleep=self._before_sleep(company),
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    result = await self.process(company)
            result.attempts = attempts
            return result
        except Exception as e:
            logger.error(f"[BATCH] {company.name} ({company.kra_pin}) failed after {attempts} attempts: {e}")
            return CompanyResult(
                company=company.name,
                pin=company.kra_pin,
                success=False,
                attempts=attempts,
                error=f"{type(e).__name__}: {e}",
            )

    def _new_aggregate(self, total: int) -> dict[str, Any]:
        self.results = []
        self.aggregate = {"total": total, "successful": 0, "skipped": 0, "failed": 0, "errors": []}
        return self.aggregate

    def _record(self, result: CompanyResult) -> None:
        self.results.append(result)
        if result.success:
            self.aggregate["skipped" if result.skipped else "successful"] += 1
            self.run_control.record_success()
        else:
            self.aggregate["failed"] += 1
            self.aggregate["errors"].append(
                {"company": result.company, "pin": result.pin, "error": result.error, "attempts": result.attempts}
            )
            self.run_control.record_failure()
        if self.on_result is not None:
            self.on_result(result)

    def _stop_requested(self) -> bool:
        should_stop, reason = self.run_control.should_stop()
        if should_stop:
            logger.warning(f"[BATCH] Stop condition met: {reason}")
        return should_stop

    async def run_sequential(self, companies: list[Company]) -> dict[str, Any]:
        """Process companies one after another, in roster order."""
        aggregate = self._new_aggregate(len(companies))
        for index, company in enumerate(companies, start=1):
            logger.info(f"[BATCH] [{index}/{len(companies)}] {company.name} ({company.kra_pin})")
            self._record(await self.process_with_retry(company))
            if self._stop_requested():
                break
        return aggregate

    async def run_concurrent(self, companies: list[Company], max_concurrent: Optional[int] = None) -> dict[str, Any]:
        """Process fixed-size batches concurrently, pausing between batches."""
        size = max(1, max_concurrent or self.settings.max_concurrent_companies)
        aggregate = self._new_aggregate(len(companies))

        for start in range(0, len(companies), size):
            batch = companies[start:start + size]
            logger.info(
                f"[BATCH] Batch {start // size + 1}: companies {start + 1}-{start + len(batch)} of {len(companies)}"
            )
            results = await asyncio.gather(*(self.process_with_retry(c) for c in batch))
            for result in results:
                self._record(result)

            if self._stop_requested():
                break
            if start + size < len(companies):
                await self.sleep(self.settings.batch_delay)
        return aggregate

    async def run(self, companies: list[Company]) -> dict[str, Any]:
        if self.settings.max_concurrent_companies > 1:
            logger.info(f"[BATCH] Concurrent mode, {self.settings.max_concurrent_companies} at a time")
            return await self.run_concurrent(companies)
        logger.info("[BATCH] Sequential mode")
        return await self.run_sequential(companies)


class ExtractionRunner:
    """Wires store, engine, processor and reports for one run."""

    def __init__(
        self,
        settings: ExtractionSettings,
        store: Optional[StorageGateway] = None,
        reports: Optional[ReportWriter] = None,
        workflows: Optional[list[str]] = None,
        write_workbook: Optional[bool] = None,
    ):
        self.settings = settings
        self.run_id = str(uuid.uuid4())
        self.store = store or build_gateway(config.STORAGE_BACKEND)
        self.reports = reports or ReportWriter()
        self.workflows = workflows or config.WORKFLOWS
        self.write_workbook = config.WRITE_WORKBOOK if write_workbook is None else write_workbook
        self.spool = SpoolManager()
        self.engine = ReconciliationEngine(self.store, settings, spool=self.spool, run_id=self.run_id)
        self.metrics: Optional[ExtractionRun] = None

    def _on_result(self, result: CompanyResult) -> None:
        self.metrics.increment("skipped" if result.skipped else ("successful" if result.success else "failed"))
        if result.execution:
            self.metrics.increment("periods_processed", result.execution.periods_processed)
            self.metrics.increment("periods_failed", result.execution.periods_failed)
        if not result.skipped:
            self.reports.write_company(result)
        self.metrics.report()

    async def run(self, process: Optional[ProcessFn] = None) -> dict[str, Any]:
        logger.info(f"Run ID: {self.run_id}")
        self._log_settings()
        await self.store.initialize()
        try:
            companies = await self.store.list_companies()
            self.metrics = ExtractionRun(total=len(companies))
            orchestrator = BatchOrchestrator(
                process or CompanyProcessor(self.engine, self.settings, self.workflows),
                self.settings,
                run_control=RunControl(
                    stop_after_minutes=self.settings.stop_after_minutes,
                    max_failures=self.settings.max_failures,
                    fail_fast=not self.settings.continue_on_error,
                ),
                on_result=self._on_result,
            )
            aggregate = await orchestrator.run(companies)
        finally:
            await self.store.close()

        summary = {
            "run_id": self.run_id,
            **aggregate,
            "metrics": self.metrics.get_summary(),
            "run_control": orchestrator.run_control.get_summary(),
            "settings": self._settings_dict(),
            "companies": [
                r.model_dump(mode="json", exclude={"execution": {"section_rows"}, "ledger": True, "liabilities": True})
                for r in orchestrator.results
            ],
        }
        await self.reports.write_summary(summary)
        if self.write_workbook and orchestrator.results:
            self.reports.write_workbook(orchestrator.results)
        self._final_report(aggregate)
        return aggregate

    def _settings_dict(self) -> dict[str, Any]:
        return {name: getattr(self.settings, name) for name in self.settings.__dataclass_fields__}

    def _log_settings(self) -> None:
        logger.info("=" * 60)
        logger.info("iTax Sync Starting")
        logger.info(f"Storage: {config.STORAGE_BACKEND}")
        logger.info(f"Workflows: {', '.join(self.workflows)}")
        for name, value in self._settings_dict().items():
            logger.info(f"{name}: {value}")
        logger.info("=" * 60)

    def _final_report(self, aggregate: dict[str, Any]) -> None:
        logger.info("=" * 60)
        logger.info("FINAL REPORT")
        logger.info(f"Run ID: {self.run_id}")
        logger.info(f"Total companies: {aggregate['total']}")
        logger.info(f"Successful: {aggregate['successful']}")
        logger.info(f"Skipped: {aggregate['skipped']}")
        logger.info(f"Failed: {aggregate['failed']}")
        for i, error in enumerate(aggregate["errors"], start=1):
            logger.info(f"  {i}. {error['company']} ({error['pin']}) - {error['error']} ({error['attempts']} attempts)")
        logger.info("=" * 60)

