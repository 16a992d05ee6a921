"""Tests for portal login with a bounded retry budget."""
import asyncio

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeout

from itax_sync.auth.session import PortalSession
from itax_sync.errors import CaptchaExhausted, CaptchaUnreadable, CredentialsRejected, LoginError
from tests.fakes import make_company


class FakeLocator:
    def __init__(self, page, selector):
        self.page = page
        self.selector = selector

    async def click(self):
        pass

    async def fill(self, value):
        self.page.filled[self.selector] = value


class LoginPage:
    """Serves one scripted (body text, menu visible) pair per submit."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.filled = {}
        self.submits = 0
        self.evaluated = []
        self._current = ("", False)

    async def goto(self, url, wait_until=None):
        pass

    def locator(self, selector):
        return FakeLocator(self, selector)

    async def evaluate(self, script):
        self.evaluated.append(script)

    async def wait_for_timeout(self, ms):
        pass

    async def wait_for_load_state(self, state=None, timeout=None):
        pass

    async def type(self, selector, text):
        pass

    async def click(self, selector):
        self.submits += 1
        self._current = self.responses.pop(0)

    async def wait_for_selector(self, selector, state=None, timeout=None):
        if not self._current[1]:
            raise PlaywrightTimeout("menu not visible")

    async def inner_text(self, selector):
        return self._current[0]


class ScriptedSolver:
    def __init__(self, answers):
        self.answers = list(answers)
        self.calls = 0

    async def solve(self, page, tag=""):
        self.calls += 1
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer


def login(page, solver, attempts=3):
    session = PortalSession(page, solver, max_login_attempts=attempts)
    asyncio.run(session.login(make_company()))
    return session


def test_login_success_first_try():
    page = LoginPage([("Welcome", True)])
    session = login(page, ScriptedSolver([7]))
    assert session.logged_in is True
    assert page.submits == 1
    assert page.filled["#logid"] == "P051234567A"
    assert "CheckPIN()" in page.evaluated


def test_wrong_captcha_then_success():
    """A wrong answer starts the login over."""
    page = LoginPage([("Wrong result of the arithmetic operation", False), ("Welcome", True)])
    session = login(page, ScriptedSolver([1, 2]))
    assert session.logged_in is True
    assert page.submits == 2


def test_captcha_exhausted_is_bounded():
    """Three CAPTCHA failures raise instead of looping forever."""
    page = LoginPage([("Wrong result of the arithmetic operation", False)] * 2)
    solver = ScriptedSolver([1, CaptchaUnreadable("blank"), 3])
    with pytest.raises(CaptchaExhausted) as exc_info:
        login(page, solver)
    assert exc_info.value.attempts == 3
    assert solver.calls == 3


def test_invalid_credentials_stop_immediately():
    page = LoginPage([("Invalid Login Id or Password", False)])
    solver = ScriptedSolver([5, 5, 5])
    with pytest.raises(CredentialsRejected) as exc_info:
        login(page, solver)
    assert exc_info.value.outcome == "invalid_credentials"
    assert solver.calls == 1


def test_unknown_outcome_raises_login_error():
    """No menu and no message on every attempt is a plain login failure."""
    page = LoginPage([("", False)] * 2)
    with pytest.raises(LoginError) as exc_info:
        login(page, ScriptedSolver([1, 2]), attempts=2)
    assert not isinstance(exc_info.value, CaptchaExhausted)


def test_logout_only_when_logged_in():
    page = LoginPage([("Welcome", True)])
    session = PortalSession(page, ScriptedSolver([]))
    asyncio.run(session.logout())
    assert "logOutUser()" not in page.evaluated

    session = login(page, ScriptedSolver([4]))
    asyncio.run(session.logout())
    assert "logOutUser()" in page.evaluated
    assert session.logged_in is False
