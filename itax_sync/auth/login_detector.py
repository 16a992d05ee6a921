"""Detect the outcome of a portal login attempt."""
import logging
from enum import Enum

logger = logging.getLogger(__name__)

WRONG_ARITHMETIC_TEXT = "Wrong result of the arithmetic operation"


class LoginOutcome(str, Enum):
    SUCCESS = "success"
    WRONG_CAPTCHA = "wrong_captcha"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    PASSWORD_EXPIRED = "password_expired"
    USER_CANCELLED = "user_cancelled"
    UNKNOWN = "unknown"


# Checked in order; the first message found wins
_FAILURE_MESSAGES = [
    (WRONG_ARITHMETIC_TEXT, LoginOutcome.WRONG_CAPTCHA),
    ("Invalid Login Id or Password", LoginOutcome.INVALID_CREDENTIALS),
    ("The account has been locked", LoginOutcome.ACCOUNT_LOCKED),
    ("YOUR PASSWORD HAS EXPIRED", LoginOutcome.PASSWORD_EXPIRED),
    ("User has been cancelled", LoginOutcome.USER_CANCELLED),
]

CREDENTIAL_OUTCOMES = frozenset(
    {
        LoginOutcome.INVALID_CREDENTIALS,
        LoginOutcome.ACCOUNT_LOCKED,
        LoginOutcome.PASSWORD_EXPIRED,
        LoginOutcome.USER_CANCELLED,
    }
)


def classify_login_response(page_text: str | None, menu_visible: bool) -> LoginOutcome:
    """
    Classify the page shown after submitting the login form.
    Portal error messages take precedence over the menu: an expired
    password still renders part of the authenticated chrome.
    """
    text = page_text or ""
    for message, outcome in _FAILURE_MESSAGES:
        if message in text:
            return outcome
    if menu_visible:
        return LoginOutcome.SUCCESS
    return LoginOutcome.UNKNOWN


def is_wrong_arithmetic(page_text: str | None) -> bool:
    return bool(page_text) and WRONG_ARITHMETIC_TEXT in page_text
