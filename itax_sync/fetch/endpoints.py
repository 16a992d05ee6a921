"""Portal URLs, selectors and the declarative table catalogs."""
from dataclasses import dataclass

from itax_sync.config import config

AMOUNT_KEYWORDS = ("Ksh", "Amount", "Value")


@dataclass(frozen=True)
class TableSpec:
    """One scrapeable table: where it lives and what its columns mean."""

    key: str
    selector: str
    name: str
    headers: tuple[str, ...]
    sheet: str = ""
    column: str = ""

    def is_amount_header(self, header: str) -> bool:
        return any(word in header for word in AMOUNT_KEYWORDS)


_SUMMARY = "#viewReturnVat > table > tbody"

SECTION_CATALOG: tuple[TableSpec, ...] = (
    TableSpec(
        key="sectionF",
        selector="#gview_gridsch5Tbl",
        name="Section F - Purchases and Input Tax",
        headers=(
            "Type of Purchases", "PIN of Supplier", "Name of Supplier", "Invoice Date",
            "Invoice Number", "Description of Goods / Services", "Custom Entry Number",
            "Taxable Value (Ksh)", "Amount of VAT (Ksh)", "Relevant Invoice Number",
            "Relevant Invoice Date",
        ),
        sheet="F-Purchases",
        column="section_f",
    ),
    TableSpec(
        key="sectionB",
        selector="#gridGeneralRateSalesDtlsTbl",
        name="Section B - Sales and Output Tax",
        headers=(
            "PIN of Purchaser", "Name of Purchaser", "ETR Serial Number", "Invoice Date",
            "Invoice Number", "Description of Goods / Services", "Taxable Value (Ksh)",
            "Amount of VAT (Ksh)", "Relevant Invoice Number", "Relevant Invoice Date",
        ),
        sheet="B-Sales",
        column="section_b",
    ),
    TableSpec(
        key="sectionB2",
        selector="#GeneralRateSalesDtlsTbl",
        name="Section B2 - Sales Totals",
        headers=("Description", "Taxable Value (Ksh)", "Amount of VAT (Ksh)"),
        sheet="B2-Sales Totals",
        column="section_b2",
    ),
    TableSpec(
        key="sectionE",
        selector="#gridSch4Tbl",
        name="Section E - Sales Exempt",
        headers=(
            "PIN of Purchaser", "Name of Purchaser", "ETR Serial Number", "Invoice Date",
            "Invoice Number", "Description of Goods / Services", "Sales Value (Ksh)",
        ),
        sheet="E-Sales Exempt",
        column="section_e",
    ),
    TableSpec(
        key="sectionF2",
        selector="#sch5Tbl",
        name="Section F2 - Purchases Totals",
        headers=("Description", "Taxable Value (Ksh)", "Amount of VAT (Ksh)"),
        sheet="F2-Purchases Totals",
        column="section_f2",
    ),
    TableSpec(
        key="sectionK3",
        selector="#gridVoucherDtlTbl",
        name="Section K3 - Credit Adjustment Voucher",
        headers=("Credit Adjustment Voucher Number", "Date of Voucher", "Amount"),
        sheet="K3-Credit Vouchers",
        column="section_k3",
    ),
    TableSpec(
        key="sectionM",
        selector=f"{_SUMMARY} > tr:nth-child(7) > td > table:nth-child(3)",
        name="Section M - Sales Summary",
        headers=("Sr.No.", "Details of Sales", "Amount (Excl. VAT) (Ksh)", "Rate (%)", "Amount of Output VAT (Ksh)"),
        sheet="M-Sales Summary",
        column="section_m",
    ),
    TableSpec(
        key="sectionN",
        selector=f"{_SUMMARY} > tr:nth-child(7) > td > table:nth-child(5)",
        name="Section N - Purchases Summary",
        headers=("Sr.No.", "Details of Purchases", "Amount (Excl. VAT) (Ksh)", "Rate (%)", "Amount of Input VAT (Ksh)"),
        sheet="N-Purchases Summary",
        column="section_n",
    ),
    TableSpec(
        key="sectionO",
        selector=f"{_SUMMARY} > tr:nth-child(8) > td > table.panelGrid.tablerowhead",
        name="Section O - Tax Calculation",
        headers=("Sr.No.", "Descriptions", "Amount (Ksh)"),
        sheet="O-Tax Calculation",
        column="section_o",
    ),
)

SECTION_COLUMNS: dict[str, str] = {spec.key: spec.column for spec in SECTION_CATALOG}

LEDGER_TABLE = TableSpec(
    key="ledger",
    selector="#gridGeneralLedgerDtlsTbl",
    name="General Ledger",
    headers=(
        "Sr.No.", "Tax Obligation", "Tax Period", "Transaction Date", "Reference Number",
        "Particulars", "Transaction Type", "Debit(Ksh)", "Credit(Ksh)",
    ),
    sheet="LEDGER",
)


class Selectors:
    """CSS selectors and page texts used on the iTax portal."""

    # Login
    LOGIN_PIN = "#logid"
    LOGIN_PASSWORD = 'input[name="xxZTT9p2wQ"]'
    CAPTCHA_IMAGE = "#captcha_img"
    CAPTCHA_INPUT = "#captcahText"
    LOGIN_BUTTON = "#loginButton"
    MAIN_MENU = "#ddtopmenubar > ul > li:nth-child(1) > a"

    # Returns
    RETURNS_MENU = '#ddtopmenubar > ul > li > a:has-text("Returns")'
    TAX_TYPE = "#taxType"
    VAT_OPTION = "Value Added Tax (VAT)"
    SUBMIT = ".submit"
    RETURNS_TABLE = 'table.tab3:has-text("Sr.No")'
    VIEW_LINK = "td:nth-child(11) a"

    # Ledger
    LEDGER_MENU_CANDIDATES = (
        "#ddtopmenubar > ul > li:nth-child(12) > a",
        "#ddtopmenubar > ul > li:nth-child(11) > a",
    )
    LEDGER_LINK = "#My\\ Ledger"
    LEDGER_TAX_TYPE = "#cmbTaxType"
    LEDGER_SHOW = "#cmdShowLedger"
    LEDGER_GROUP = "#chngroup"

    # Liabilities
    LIABILITIES_MENU = "#ddtopmenubar > ul > li:nth-child(6) > a"
    LIABILITIES_TABLE = "table#\\33"

    # Withholding agent checker (no login)
    AGENT_CHECKER_CELL = "Agent Checker To verify Witholding Agent,Click Here"
    AGENT_TYPE_LABEL = "Type Of Withholding Agent"
    AGENT_CONSULT = "Consult"
    AGENT_CONFIRMED_PIN = 'input[name="vo\\.pinNo"]'
    AGENT_CAPTCHA_INPUT = 'input[name="captcahText"]'

    # Page texts
    ERROR_PAGE_TEXT = "An Error has occurred"
    NIL_RETURN_TEXT = (
        "DETAILS OF OTHER SECTIONS ARE NOT AVAILABLE AS THE RETURN YOU ARE TRYING TO VIEW IS A NIL RETURN"
    )


WITHHOLDING_AGENT_TYPES = {"VAT": "V", "RENT": "W"}


def get_portal_url() -> str:
    """Get the portal landing/login URL."""
    return config.PORTAL_URL


def get_checker_url() -> str:
    """Get the URL that hosts the public checkers."""
    return config.PORTAL_URL
