"""Tests for page and login classification."""
from itax_sync.auth.login_detector import (
    CREDENTIAL_OUTCOMES,
    LoginOutcome,
    classify_login_response,
    is_wrong_arithmetic,
)
from itax_sync.parse.models import PageKind
from itax_sync.parse.page_state import classify_agent_response, classify_detail_page

NIL_TEXT = (
    "Section A ... DETAILS OF OTHER SECTIONS ARE NOT AVAILABLE AS THE RETURN YOU ARE "
    "TRYING TO VIEW IS A NIL RETURN"
)


def test_error_page_with_reference():
    """Error page text carries its reference number."""
    text = "An Error has occurred. Your Error Reference No. is : 123456 Please contact support"
    assert classify_detail_page(text) == (PageKind.ERROR_PAGE, "123456")


def test_error_page_without_reference():
    """A reference is optional."""
    assert classify_detail_page("An Error has occurred") == (PageKind.ERROR_PAGE, None)


def test_nil_return_page():
    assert classify_detail_page(NIL_TEXT) == (PageKind.NIL_RETURN, None)


def test_normal_page():
    assert classify_detail_page("Section F Purchases and Input Tax") == (PageKind.NORMAL, None)
    assert classify_detail_page("") == (PageKind.NORMAL, None)


def test_error_page_wins_over_nil_text():
    """An error page is never stored as a NIL return."""
    kind, _ = classify_detail_page("An Error has occurred " + NIL_TEXT)
    assert kind == PageKind.ERROR_PAGE


def test_login_success_needs_menu():
    assert classify_login_response("Welcome", menu_visible=True) == LoginOutcome.SUCCESS
    assert classify_login_response("Welcome", menu_visible=False) == LoginOutcome.UNKNOWN


def test_login_failure_messages():
    """Portal messages win over a visible menu."""
    cases = {
        "Wrong result of the arithmetic operation.": LoginOutcome.WRONG_CAPTCHA,
        "Invalid Login Id or Password": LoginOutcome.INVALID_CREDENTIALS,
        "The account has been locked": LoginOutcome.ACCOUNT_LOCKED,
        "YOUR PASSWORD HAS EXPIRED": LoginOutcome.PASSWORD_EXPIRED,
        "User has been cancelled": LoginOutcome.USER_CANCELLED,
    }
    for text, outcome in cases.items():
        assert classify_login_response(text, menu_visible=True) == outcome


def test_wrong_captcha_is_not_a_credential_outcome():
    assert LoginOutcome.WRONG_CAPTCHA not in CREDENTIAL_OUTCOMES
    assert LoginOutcome.INVALID_CREDENTIALS in CREDENTIAL_OUTCOMES
    assert is_wrong_arithmetic("Wrong result of the arithmetic operation")
    assert not is_wrong_arithmetic(None)


def test_agent_response():
    """Checker result text maps to registered, not registered, or unknown."""
    assert classify_agent_response("Taxpayer Details PIN P051234567A") is True
    assert classify_agent_response("Pay-Point Details") is True
    assert classify_agent_response("Sorry,The PIN P051234567A is not a Withholding Agent") is False
    assert classify_agent_response("This PIN is not registered") is False
    assert classify_agent_response("Loading") is None
    assert classify_agent_response(None) is None
