"""Arithmetic CAPTCHA solving via Tesseract OCR."""
import asyncio
import logging
import re
import uuid
from pathlib import Path

import pytesseract
from PIL import Image

from itax_sync.config import CAPTCHA_DIR, config
from itax_sync.errors import CaptchaUnreadable
from itax_sync.fetch.browser import portal_errors
from itax_sync.fetch.endpoints import Selectors

logger = logging.getLogger(__name__)

_NUMBERS_RE = re.compile(r"\d+")


def solve_expression(text: str) -> int:
    """Evaluate the OCR'd expression: the first two integers joined by + or -."""
    numbers = _NUMBERS_RE.findall(text or "")
    if len(numbers) < 2:
        raise CaptchaUnreadable(f"Unable to extract two numbers from CAPTCHA text {text!r}")

    first, second = int(numbers[0]), int(numbers[1])
    if "+" in text:
        return first + second
    if "-" in text:
        return first - second
    raise CaptchaUnreadable(f"Unsupported CAPTCHA operator in {text!r}")


def ocr_image(path: Path) -> str:
    """Run Tesseract on an image file (blocking)."""
    if config.TESSERACT_CMD:
        pytesseract.pytesseract.tesseract_cmd = config.TESSERACT_CMD
    with Image.open(path) as img:
        return pytesseract.image_to_string(img, lang="eng")


class CaptchaSolver:
    """Screenshots the CAPTCHA element, reads it and computes the answer."""

    def __init__(
        self,
        max_reads: int = 5,
        captcha_dir: Path = CAPTCHA_DIR,
        reread_delay: float = 1.0,
        ocr=ocr_image,
    ):
        self.max_reads = max_reads
        self.captcha_dir = captcha_dir
        self.reread_delay = reread_delay
        self.ocr = ocr
        self.captcha_dir.mkdir(parents=True, exist_ok=True)

    async def solve(self, page, tag: str = "", selector: str = Selectors.CAPTCHA_IMAGE) -> int:
        """Return the CAPTCHA answer, re-screenshotting on unreadable images.

        Raises CaptchaUnreadable once max_reads screenshots all failed.
        """
        loop = asyncio.get_running_loop()
        last_error: CaptchaUnreadable | None = None

        for read in range(1, self.max_reads + 1):
            image_path = self.captcha_dir / f"ocr_{tag or 'captcha'}_{uuid.uuid4().hex[:8]}.png"
            with portal_errors("capture CAPTCHA"):
                await page.wait_for_selector(selector, timeout=30000)
                await page.locator(selector).first.screenshot(path=str(image_path))
            try:
                text = await loop.run_in_executor(None, self.ocr, image_path)
            finally:
                image_path.unlink(missing_ok=True)

            try:
                answer = solve_expression(text)
                logger.debug(f"[CAPTCHA] {tag} read {read}: {text.strip()!r} -> {answer}")
                return answer
            except CaptchaUnreadable as e:
                last_error = e
                logger.warning(f"[CAPTCHA] {tag} read {read}/{self.max_reads} failed: {e}")
                if read < self.max_reads:
                    await asyncio.sleep(self.reread_delay)

        raise CaptchaUnreadable(f"CAPTCHA unreadable after {self.max_reads} reads: {last_error}")
