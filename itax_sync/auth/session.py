"""Portal login/logout with a bounded CAPTCHA retry budget."""
import logging

from playwright.async_api import Page, TimeoutError as PlaywrightTimeout

from itax_sync.auth.captcha import CaptchaSolver
from itax_sync.auth.login_detector import (
    CREDENTIAL_OUTCOMES,
    LoginOutcome,
    classify_login_response,
)
from itax_sync.errors import CaptchaExhausted, CaptchaUnreadable, CredentialsRejected, LoginError
from itax_sync.fetch.browser import navigate, portal_errors
from itax_sync.fetch.endpoints import Selectors, get_portal_url
from itax_sync.parse.models import Company

logger = logging.getLogger(__name__)


class PortalSession:
    """Logs one company in and out of the portal on a given page."""

    def __init__(self, page: Page, solver: CaptchaSolver, max_login_attempts: int = 3):
        self.page = page
        self.solver = solver
        self.max_login_attempts = max_login_attempts
        self.logged_in = False

    async def login(self, company: Company) -> None:
        """Log in, starting over on CAPTCHA misreads and wrong answers.

        Raises CredentialsRejected as soon as the portal refuses the
        credentials, and CaptchaExhausted when every attempt failed on
        the CAPTCHA.
        """
        captcha_failures = 0
        last_outcome = LoginOutcome.UNKNOWN

        for attempt in range(1, self.max_login_attempts + 1):
            logger.info(f"[LOGIN] {company.name} ({company.kra_pin}) attempt {attempt}/{self.max_login_attempts}")
            await self._fill_credentials(company)

            try:
                answer = await self.solver.solve(self.page, tag=company.kra_pin)
            except CaptchaUnreadable as e:
                captcha_failures += 1
                logger.warning(f"[LOGIN] {company.kra_pin}: {e}")
                continue

            last_outcome = await self._submit(answer)
            if last_outcome == LoginOutcome.SUCCESS:
                self.logged_in = True
                logger.info(f"[LOGIN] {company.kra_pin}: logged in")
                return
            if last_outcome in CREDENTIAL_OUTCOMES:
                raise CredentialsRejected(
                    f"Login rejected for {company.kra_pin}: {last_outcome.value}", last_outcome.value
                )
            if last_outcome == LoginOutcome.WRONG_CAPTCHA:
                captcha_failures += 1
                logger.warning(f"[LOGIN] {company.kra_pin}: wrong CAPTCHA answer {answer}")
            else:
                logger.warning(f"[LOGIN] {company.kra_pin}: main menu not shown after submit")

        if captcha_failures == self.max_login_attempts:
            raise CaptchaExhausted(self.max_login_attempts)
        raise LoginError(
            f"Login failed for {company.kra_pin} after {self.max_login_attempts} attempts "
            f"(last outcome: {last_outcome.value})"
        )

    async def _fill_credentials(self, company: Company) -> None:
        page = self.page
        await navigate(page, get_portal_url())
        with portal_errors("fill login form"):
            await page.locator(Selectors.LOGIN_PIN).click()
            await page.locator(Selectors.LOGIN_PIN).fill(company.kra_pin)
            await page.evaluate("CheckPIN()")
            await page.locator(Selectors.LOGIN_PASSWORD).click()
            await page.locator(Selectors.LOGIN_PASSWORD).fill(company.kra_password)
            await page.wait_for_timeout(1000)
            await page.wait_for_load_state("load")

    async def _submit(self, answer: int) -> LoginOutcome:
        page = self.page
        with portal_errors("submit login"):
            await page.type(Selectors.CAPTCHA_INPUT, str(answer))
            await page.click(Selectors.LOGIN_BUTTON)
            await page.wait_for_load_state("load")

            try:
                await page.wait_for_selector(Selectors.MAIN_MENU, state="visible", timeout=5000)
                menu_visible = True
            except PlaywrightTimeout:
                menu_visible = False
            text = await page.inner_text("body")
        return classify_login_response(text, menu_visible)

    async def logout(self) -> None:
        """Log out; a failed logout is logged since the browser is closed next anyway."""
        if not self.logged_in:
            return
        try:
            with portal_errors("logout"):
                await self.page.evaluate("logOutUser()")
                await self.page.wait_for_load_state("load")
        except Exception as e:
            logger.warning(f"[LOGIN] Logout failed: {e}")
        finally:
            self.logged_in = False
