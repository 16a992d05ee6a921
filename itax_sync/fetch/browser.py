"""Scoped Playwright browser sessions with retrying launch and navigation."""
import logging
from contextlib import asynccontextmanager, contextmanager
from typing import AsyncIterator, Iterator

from playwright.async_api import (
    Browser,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeout,
    async_playwright,
)
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from itax_sync.config import config
from itax_sync.errors import NetworkError, PortalTimeout

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
]

_NETWORK_MARKERS = ("net::ERR_", "ECONNRESET", "ECONNREFUSED", "ENOTFOUND")


def _first_line(exc: BaseException) -> str:
    lines = str(exc).strip().splitlines()
    return lines[0] if lines else type(exc).__name__


@contextmanager
def portal_errors(action: str) -> Iterator[None]:
    """Translate Playwright failures into the pipeline's error types."""
    try:
        yield
    except PlaywrightTimeout as e:
        raise PortalTimeout(f"{action}: {_first_line(e)}") from e
    except PlaywrightError as e:
        if any(marker in str(e) for marker in _NETWORK_MARKERS):
            raise NetworkError(f"{action}: {_first_line(e)}") from e
        raise


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type(PlaywrightError),
    reraise=True,
)
async def launch_browser(playwright: Playwright) -> Browser:
    """Launch Chromium, retrying transient launch failures."""
    return await playwright.chromium.launch(
        headless=config.HEADLESS,
        channel=config.BROWSER_CHANNEL,
        args=BROWSER_ARGS,
    )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type(NetworkError),
    reraise=True,
)
async def navigate(page: Page, url: str) -> None:
    """Go to url, retrying network errors and timeouts."""
    with portal_errors(f"goto {url}"):
        await page.goto(url, wait_until="domcontentloaded")


@asynccontextmanager
async def browser_session() -> AsyncIterator[Page]:
    """Yield a fresh page in its own browser; the browser is always closed."""
    async with async_playwright() as playwright:
        with portal_errors("launch browser"):
            browser = await launch_browser(playwright)
        try:
            with portal_errors("open browser context"):
                context = await browser.new_context(
                    user_agent=USER_AGENT,
                    viewport={"width": 1366, "height": 900},
                    ignore_https_errors=True,
                )
                context.set_default_timeout(config.DEFAULT_TIMEOUT_MS)
                context.set_default_navigation_timeout(config.NAVIGATION_TIMEOUT_MS)
                page = await context.new_page()
            yield page
        finally:
            await browser.close()
            logger.debug("Browser closed")
