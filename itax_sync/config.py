"""Configuration management from environment variables."""
import os
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# Project root
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "data"
SPOOL_DIR = DATA_DIR / "spool"
CAPTCHA_DIR = DATA_DIR / "captcha"
STATE_DB = DATA_DIR / "state.db"

# Ensure directories exist
DATA_DIR.mkdir(exist_ok=True)
SPOOL_DIR.mkdir(exist_ok=True)
CAPTCHA_DIR.mkdir(exist_ok=True)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int | None) -> int | None:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


class Config:
    """Application configuration."""

    # iTax portal
    PORTAL_URL: str = os.getenv("PORTAL_URL", "https://itax.kra.go.ke/KRA-Portal/")
    HEADLESS: bool = _env_bool("HEADLESS", True)
    BROWSER_CHANNEL: str | None = os.getenv("BROWSER_CHANNEL") or None
    NAVIGATION_TIMEOUT_MS: int = int(os.getenv("NAVIGATION_TIMEOUT_MS", "300000"))
    DEFAULT_TIMEOUT_MS: int = int(os.getenv("DEFAULT_TIMEOUT_MS", "180000"))
    TESSERACT_CMD: str | None = os.getenv("TESSERACT_CMD") or None

    # Storage
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "supabase")
    SQLITE_PATH: Path = Path(os.getenv("SQLITE_PATH", str(STATE_DB)))
    ROSTER_CSV: Path | None = Path(os.environ["ROSTER_CSV"]) if os.getenv("ROSTER_CSV") else None
    ROSTER_PIN: str | None = os.getenv("ROSTER_PIN") or None

    # Supabase
    SUPABASE_URL: str | None = os.getenv("SUPABASE_URL")
    SUPABASE_SERVICE_ROLE: str | None = os.getenv("SUPABASE_SERVICE_ROLE")
    LISTINGS_TABLE: str = os.getenv("LISTINGS_TABLE", "company_vat_return_listings")
    DETAILS_TABLE: str = os.getenv("DETAILS_TABLE", "vat_return_details")
    COMPANIES_TABLE: str = os.getenv("COMPANIES_TABLE", "acc_portal_company_duplicate")
    PIN_CHECKER_TABLE: str = os.getenv("PIN_CHECKER_TABLE", "PinCheckerDetails")

    # Output
    OUTPUT_DIR: Path = Path(os.getenv("OUTPUT_DIR", str(DATA_DIR / "output")))
    WRITE_WORKBOOK: bool = _env_bool("WRITE_WORKBOOK", True)
    WORKFLOWS: list[str] = [
        w.strip() for w in os.getenv("WORKFLOWS", "vat_returns").split(",") if w.strip()
    ]

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    KNOWN_WORKFLOWS = ("vat_returns", "ledger", "liabilities", "withholding_agent")

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration."""
        errors = []
        if cls.STORAGE_BACKEND not in ("supabase", "sqlite"):
            errors.append(f"STORAGE_BACKEND must be 'supabase' or 'sqlite', got {cls.STORAGE_BACKEND!r}")
        if cls.STORAGE_BACKEND == "supabase":
            if not cls.SUPABASE_URL:
                errors.append("SUPABASE_URL is required")
            if not cls.SUPABASE_SERVICE_ROLE:
                errors.append("SUPABASE_SERVICE_ROLE is required")
        if cls.STORAGE_BACKEND == "sqlite" and not cls.ROSTER_CSV:
            errors.append("ROSTER_CSV is required with the sqlite backend")
        unknown = [w for w in cls.WORKFLOWS if w not in cls.KNOWN_WORKFLOWS]
        if unknown:
            errors.append(f"Unknown workflows: {', '.join(unknown)}")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")


config = Config()


@dataclass(frozen=True)
class ExtractionSettings:
    """Behaviour switches handed to the engine and the orchestrator."""

    force_update: bool = False
    skip_existing_listings: bool = True
    skip_existing_details: bool = True
    max_retries: int = 3
    retry_delay: float = 0.5
    network_retry_delay: float = 10.0
    max_concurrent_companies: int = 3
    batch_delay: float = 1.0
    immediate_save: bool = True
    continue_on_error: bool = True
    start_year: int = 2015
    start_month: int = 1
    end_year: int | None = None
    end_month: int | None = None
    section_timeout_ms: int = 5000
    max_login_attempts: int = 3
    max_captcha_reads: int = 5
    max_failures: int | None = None
    stop_after_minutes: int | None = None

    @property
    def window_end(self) -> tuple[int, int]:
        """(year, month) of the last period in scope.

        Defaults to the current month; an end year without an end month
        covers that whole year.
        """
        today = date.today()
        if self.end_year is None:
            return (today.year, self.end_month or today.month)
        return (self.end_year, self.end_month or 12)

    def in_window(self, month: int, year: int) -> bool:
        """True when the period falls between the start and end of the window."""
        start = (self.start_year, self.start_month)
        return start <= (year, month) <= self.window_end

    @classmethod
    def from_env(cls) -> "ExtractionSettings":
        return cls(
            force_update=_env_bool("FORCE_UPDATE", False),
            skip_existing_listings=_env_bool("SKIP_EXISTING_LISTINGS", True),
            skip_existing_details=_env_bool("SKIP_EXISTING_VAT_DETAILS", True),
            max_retries=int(os.getenv("MAX_RETRIES", "3")),
            retry_delay=float(os.getenv("RETRY_DELAY", "0.5")),
            network_retry_delay=float(os.getenv("NETWORK_RETRY_DELAY", "10")),
            max_concurrent_companies=int(os.getenv("MAX_CONCURRENT_COMPANIES", "3")),
            batch_delay=float(os.getenv("BATCH_DELAY", "1.0")),
            immediate_save=_env_bool("IMMEDIATE_SAVE", True),
            continue_on_error=_env_bool("CONTINUE_ON_ERROR", True),
            start_year=int(os.getenv("START_YEAR", "2015")),
            start_month=int(os.getenv("START_MONTH", "1")),
            end_year=_env_int("END_YEAR", None),
            end_month=_env_int("END_MONTH", None),
            section_timeout_ms=int(os.getenv("SECTION_TIMEOUT_MS", "5000")),
            max_login_attempts=int(os.getenv("MAX_LOGIN_ATTEMPTS", "3")),
            max_captcha_reads=int(os.getenv("MAX_CAPTCHA_READS", "5")),
            max_failures=_env_int("MAX_FAILURES", None),
            stop_after_minutes=_env_int("STOP_AFTER_MINUTES", None),
        )
