"""Drive an authenticated portal page through the business workflows."""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable

from playwright.async_api import Dialog, Error as PlaywrightError, Page, TimeoutError as PlaywrightTimeout

from itax_sync.auth.captcha import CaptchaSolver
from itax_sync.auth.login_detector import is_wrong_arithmetic
from itax_sync.errors import CaptchaUnreadable, DataShapeError, PortalFault, PortalTimeout
from itax_sync.fetch.browser import navigate, portal_errors
from itax_sync.fetch.endpoints import (
    LEDGER_TABLE,
    SECTION_CATALOG,
    WITHHOLDING_AGENT_TYPES,
    Selectors,
    TableSpec,
    get_checker_url,
    get_portal_url,
)
from itax_sync.parse.html_parser import (
    parse_liabilities_table,
    parse_listing_table,
    parse_section_table,
)
from itax_sync.parse.models import PageKind, SectionResult, WithholdingAgentStatus
from itax_sync.parse.page_state import classify_agent_response, classify_detail_page

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE_JS = """
() => {
    document.querySelectorAll(".ui-pg-selbox").forEach(select => {
        if (!Array.from(select.options).some(opt => opt.value === "20000")) {
            const option = document.createElement("option");
            option.value = "20000";
            option.text = "20000";
            select.appendChild(option);
        }
        select.value = "20000";
        select.dispatchEvent(new Event("change", { bubbles: true }));
    });
}
"""

OUTER_HTML_JS = "el => el.outerHTML"


async def extract_sections(
    fetch_table_html: Callable[[TableSpec], Awaitable[str | None]],
    catalog: Iterable[TableSpec] = SECTION_CATALOG,
) -> dict[str, SectionResult]:
    """Scrape every catalog section concurrently.

    fetch_table_html returns the table's HTML, or None when it is absent.
    A failure in one section becomes that section's "error" result and
    never affects the others.
    """
    specs = list(catalog)

    async def one(spec: TableSpec) -> SectionResult:
        try:
            return parse_section_table(spec, await fetch_table_html(spec))
        except Exception as e:
            logger.warning(f"[SECTION] {spec.name} failed: {e}")
            return SectionResult(section=spec.name, status="error", message=str(e))

    results = await asyncio.gather(*(one(spec) for spec in specs))
    return {spec.key: result for spec, result in zip(specs, results)}


async def maximize_page_size(page: Page) -> None:
    """Switch every jqGrid pager to 20000 rows so one page holds the table."""
    await page.evaluate(MAX_PAGE_SIZE_JS)
    await page.wait_for_timeout(1000)


async def _accept_dialog(dialog: Dialog) -> None:
    await dialog.accept()


class DetailView:
    """The popup that shows one filed return."""

    def __init__(self, page: Page, section_timeout_ms: int = 5000):
        self.page = page
        self.section_timeout_ms = section_timeout_ms

    async def classify(self) -> tuple[PageKind, str | None]:
        with portal_errors("read return view"):
            text = await self.page.inner_text("body")
        return classify_detail_page(text)

    async def maximize_page_size(self) -> None:
        with portal_errors("set page size"):
            await maximize_page_size(self.page)

    async def table_html(self, spec: TableSpec) -> str | None:
        try:
            handle = await self.page.wait_for_selector(spec.selector, timeout=self.section_timeout_ms)
        except PlaywrightTimeout:
            return None
        if handle is None:
            return None
        return await handle.evaluate(OUTER_HTML_JS)

    async def extract_sections(self) -> dict[str, SectionResult]:
        return await extract_sections(self.table_html)


class PortalNavigator:
    """Workflows on an authenticated page: returns, ledger, liabilities."""

    def __init__(self, page: Page, section_timeout_ms: int = 5000):
        self.page = page
        self.section_timeout_ms = section_timeout_ms
        self._dialogs_handled = False

    def _accept_dialogs(self) -> None:
        if not self._dialogs_handled:
            self.page.on("dialog", _accept_dialog)
            self._dialogs_handled = True

    async def open_vat_returns(self) -> None:
        """Open the filed-returns list for VAT."""
        page = self.page
        await navigate(page, get_portal_url())
        self._accept_dialogs()
        with portal_errors("open VAT returns"):
            await page.wait_for_selector(Selectors.RETURNS_MENU, timeout=30000)
            await page.hover(Selectors.RETURNS_MENU)
            await page.evaluate("viewEReturns()")
            await page.locator(Selectors.TAX_TYPE).select_option(Selectors.VAT_OPTION)
            await page.click(Selectors.SUBMIT)
            await page.wait_for_load_state("load")

    def _returns_table(self):
        return self.page.locator(Selectors.RETURNS_TABLE).first

    async def read_returns_listing(self) -> list[dict[str, str]]:
        """Scrape the filed-returns summary table, one dict per filed return."""
        try:
            with portal_errors("read returns listing"):
                table = self._returns_table()
                await table.wait_for(timeout=15000)
                html = await table.evaluate(OUTER_HTML_JS)
        except PortalTimeout as e:
            kind, ref_no = classify_detail_page(await self.page.inner_text("body"))
            if kind == PageKind.ERROR_PAGE:
                raise PortalFault("Portal error page instead of returns listing", ref_no) from e
            raise DataShapeError(f"Returns table not found: {e}") from e
        listing = parse_listing_table(html)
        logger.info(f"[LISTING] {len(listing)} filed returns listed")
        return listing

    @asynccontextmanager
    async def open_period_detail(self, row_index: int) -> AsyncIterator[DetailView]:
        """Open the view popup of listing row row_index (0-based, header excluded).

        The popup is closed on exit, whatever happened inside.
        """
        page = self.page
        row = self._returns_table().locator("tr").nth(row_index + 1)
        link = row.locator(Selectors.VIEW_LINK)
        if await link.count() == 0:
            raise DataShapeError(f"No view link on listing row {row_index}")

        with portal_errors("open return view"):
            async with page.expect_popup(timeout=60000) as popup_info:
                await link.first.click()
            popup = await popup_info.value

        try:
            with portal_errors("load return view"):
                await popup.wait_for_load_state("load", timeout=120000)
            yield DetailView(popup, self.section_timeout_ms)
        finally:
            try:
                await popup.close()
            except PlaywrightError as e:
                logger.debug(f"Popup already closed: {e}")

    async def extract_ledger(self) -> list[dict[str, Any]]:
        """Open the general ledger grouped by tax obligation and scrape it."""
        page = self.page
        found = False
        with portal_errors("open general ledger"):
            for selector in Selectors.LEDGER_MENU_CANDIDATES:
                await page.reload()
                item = page.locator(selector)
                if await item.count() == 0:
                    continue
                await item.first.hover()
                try:
                    await page.wait_for_selector(Selectors.LEDGER_LINK, timeout=1000)
                    found = True
                    break
                except PlaywrightTimeout:
                    continue
            if not found:
                raise DataShapeError("Could not find General Ledger menu")

            await page.evaluate("showGeneralLedgerForm()")
            await page.locator(Selectors.LEDGER_TAX_TYPE).select_option("ALL")
            await page.click(Selectors.LEDGER_SHOW)
            await page.locator(Selectors.LEDGER_GROUP).select_option("Tax Obligation")
            await page.wait_for_load_state("load")
            await maximize_page_size(page)

        result = parse_section_table(LEDGER_TABLE, await DetailView(page, self.section_timeout_ms).table_html(LEDGER_TABLE))
        logger.info(f"[LEDGER] {result.status}: {len(result.data)} entries")
        return result.data

    async def extract_liabilities(self) -> tuple[list[dict[str, Any]], float]:
        """Scrape the outstanding liabilities table and its total."""
        page = self.page
        with portal_errors("open liabilities"):
            await page.hover(Selectors.LIABILITIES_MENU)
            await page.evaluate("showVATRefund()")
            try:
                table = await page.wait_for_selector(Selectors.LIABILITIES_TABLE, state="visible", timeout=5000)
            except PlaywrightTimeout:
                logger.info("[LIABILITIES] No liabilities table shown")
                return [], 0.0
            html = await table.evaluate(OUTER_HTML_JS)
        rows, total = parse_liabilities_table(html)
        logger.info(f"[LIABILITIES] {len(rows)} rows, total {total:,.2f}")
        return rows, total


async def check_withholding_agent(
    page: Page,
    solver: CaptchaSolver,
    pin: str,
    agent_type: str,
    max_attempts: int = 3,
) -> WithholdingAgentStatus:
    """Ask the public checker whether pin is a VAT or rent withholding agent."""
    code = WITHHOLDING_AGENT_TYPES[agent_type]
    await navigate(page, get_checker_url())

    with portal_errors("open agent checker"):
        await page.get_by_role("cell", name=Selectors.AGENT_CHECKER_CELL, exact=True).get_by_role("link").click()
        await page.wait_for_load_state("networkidle", timeout=30000)
        await page.get_by_label(Selectors.AGENT_TYPE_LABEL).select_option(code)
        await page.get_by_role("row", name="PIN", exact=True).get_by_role("textbox").fill(pin)
        await page.get_by_role("button", name=Selectors.AGENT_CONSULT).click()
        await page.wait_for_timeout(1500)

    retries = 0
    while retries < max_attempts:
        try:
            answer = await solver.solve(page, tag=pin)
        except CaptchaUnreadable as e:
            retries += 1
            logger.warning(f"[AGENT] {pin} {agent_type}: {e}")
            continue

        with portal_errors("submit agent check"):
            await page.fill(Selectors.AGENT_CAPTCHA_INPUT, str(answer))
            await page.get_by_role("button", name=Selectors.AGENT_CONSULT).click()
            await page.wait_for_timeout(1000)
            text = await page.inner_text("body")

        if is_wrong_arithmetic(text):
            retries += 1
            logger.warning(f"[AGENT] {pin} {agent_type}: wrong arithmetic, attempt {retries}/{max_attempts}")
            continue

        registered = classify_agent_response(text)
        details: dict[str, str] = {}
        if registered:
            confirmed = page.locator(Selectors.AGENT_CONFIRMED_PIN)
            if await confirmed.count():
                details["confirmed_pin"] = await confirmed.first.input_value()
        if registered is None:
            message = f"Unable to determine registration status for PIN {pin}"
        else:
            message = f"PIN {pin} is {'' if registered else 'not '}registered as a {agent_type} Withholding Agent"
        logger.info(f"[AGENT] {message}")
        return WithholdingAgentStatus(
            pin=pin,
            agent_type=agent_type,
            is_registered=registered,
            message=message,
            captcha_retries=retries,
            details=details,
        )

    return WithholdingAgentStatus(
        pin=pin,
        agent_type=agent_type,
        message=f"CAPTCHA not solved after {max_attempts} attempts",
        captcha_retries=retries,
    )
