"""Classify portal pages from their text."""
import re

from itax_sync.fetch.endpoints import Selectors
from itax_sync.parse.models import PageKind

ERROR_REF_RE = re.compile(r"Your Error Reference No\. is\s*:\s*(\d+)")


def classify_detail_page(text: str | None) -> tuple[PageKind, str | None]:
    """Decide what a return detail popup shows.

    Returns (kind, error_reference). The reference is only set for
    error pages, and is None when the portal did not print one.
    """
    if not text:
        return PageKind.NORMAL, None
    if Selectors.ERROR_PAGE_TEXT in text:
        match = ERROR_REF_RE.search(text)
        return PageKind.ERROR_PAGE, match.group(1) if match else None
    if Selectors.NIL_RETURN_TEXT in text:
        return PageKind.NIL_RETURN, None
    return PageKind.NORMAL, None


def classify_agent_response(text: str | None) -> bool | None:
    """Registration status from the withholding-agent checker result.

    True when taxpayer or pay-point details are shown, False when the
    portal says the PIN is not an agent, None when neither is visible.
    """
    if not text:
        return None
    if "Sorry,The PIN" in text:
        return False
    if "Taxpayer Details" in text or "Pay-Point Details" in text:
        return True
    lowered = text.lower()
    if "not registered" in lowered or "sorry" in lowered:
        return False
    return None
