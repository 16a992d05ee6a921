"""Error types raised while talking to the portal and the store."""


class ExtractionError(Exception):
    """Base class for every failure the extraction pipeline raises."""


class NetworkError(ExtractionError):
    """The portal could not be reached (DNS, reset, refused, ...)."""


class PortalTimeout(NetworkError):
    """A navigation or element wait ran past its timeout."""


class PortalFault(ExtractionError):
    """The portal rendered its generic error page."""

    def __init__(self, message: str, ref_no: str | None = None):
        super().__init__(message)
        self.ref_no = ref_no


class DataShapeError(ExtractionError):
    """An expected table or control is missing from the page."""


class LoginError(ExtractionError):
    """Login did not reach the authenticated menu."""


class CredentialsRejected(LoginError):
    """The portal refused the PIN/password; retrying will not help."""

    def __init__(self, message: str, outcome: str):
        super().__init__(message)
        self.outcome = outcome


class CaptchaExhausted(LoginError):
    """Every login attempt failed on the CAPTCHA."""

    def __init__(self, attempts: int):
        super().__init__(f"CAPTCHA not solved after {attempts} login attempts")
        self.attempts = attempts


class CaptchaUnreadable(ExtractionError):
    """OCR could not produce an arithmetic expression from the CAPTCHA."""


class StorageError(ExtractionError):
    """A read or write against the storage backend failed."""


def is_network_error(exc: BaseException) -> bool:
    """Network-like failures get the longer back-off before a retry."""
    return isinstance(exc, NetworkError)


def is_retryable(exc: BaseException) -> bool:
    """Company-level retry applies to everything except rejected credentials."""
    return not isinstance(exc, CredentialsRejected)
