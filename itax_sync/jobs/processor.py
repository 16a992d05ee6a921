"""One attempt at one company: plan, log in if needed, run the workflows."""
import logging
from contextlib import AbstractAsyncContextManager
from typing import Callable, Iterable

from itax_sync.auth.captcha import CaptchaSolver
from itax_sync.auth.session import PortalSession
from itax_sync.config import ExtractionSettings
from itax_sync.fetch.browser import browser_session
from itax_sync.fetch.endpoints import WITHHOLDING_AGENT_TYPES
from itax_sync.fetch.navigator import PortalNavigator, check_withholding_agent
from itax_sync.jobs.reconciliation import ReconciliationEngine
from itax_sync.parse.models import Company, CompanyResult

logger = logging.getLogger(__name__)

LOGIN_WORKFLOWS = {"ledger", "liabilities"}


class CompanyProcessor:
    """Runs the configured workflows for a company inside one browser session.

    Raises on failure; retrying is the orchestrator's job.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        settings: ExtractionSettings,
        workflows: Iterable[str] = ("vat_returns",),
        solver: CaptchaSolver | None = None,
        browser_factory: Callable[[], AbstractAsyncContextManager] = browser_session,
    ):
        self.engine = engine
        self.settings = settings
        self.workflows = set(workflows)
        self.solver = solver or CaptchaSolver(max_reads=settings.max_captcha_reads)
        self.browser_factory = browser_factory

    async def __call__(self, company: Company) -> CompanyResult:
        plan = None
        if "vat_returns" in self.workflows:
            plan = await self.engine.plan_extraction(company.id, company.name)

        needs_login = (plan is not None and not plan.skip) or bool(self.workflows & LOGIN_WORKFLOWS)
        needs_browser = needs_login or "withholding_agent" in self.workflows

        result = CompanyResult(
            company=company.name,
            pin=company.kra_pin,
            success=True,
            reason=plan.reason if plan else None,
        )
        if not needs_browser:
            logger.info(f"[COMPANY] {company.name}: nothing to fetch ({result.reason}), no login")
            result.skipped = True
            return result

        async with self.browser_factory() as page:
            if "withholding_agent" in self.workflows:
                for agent_type in WITHHOLDING_AGENT_TYPES:
                    status = await check_withholding_agent(page, self.solver, company.kra_pin, agent_type)
                    result.withholding.append(status)

            if not needs_login:
                return result

            session = PortalSession(page, self.solver, self.settings.max_login_attempts)
            await session.login(company)
            try:
                navigator = PortalNavigator(page, self.settings.section_timeout_ms)
                if plan is not None and not plan.skip:
                    result.execution = await self.engine.execute_plan(plan, navigator, company)
                if "ledger" in self.workflows:
                    result.ledger = await navigator.extract_ledger()
                if "liabilities" in self.workflows:
                    result.liabilities, result.liabilities_total = await navigator.extract_liabilities()
            finally:
                await session.logout()

        return result
