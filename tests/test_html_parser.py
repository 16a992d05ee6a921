"""Tests for table parsing."""
from itax_sync.fetch.endpoints import LEDGER_TABLE, SECTION_CATALOG, TableSpec
from itax_sync.parse.html_parser import (
    coerce_amount,
    parse_liabilities_table,
    parse_listing_table,
    parse_period_date,
    parse_section_table,
    table_rows,
)

SECTION_O = next(spec for spec in SECTION_CATALOG if spec.key == "sectionO")

LISTING_HTML = """
<table class="tab3">
  <tr><td>Sr.No</td><td>Return Period from</td><td>Return Period to</td><td>Status</td></tr>
  <tr><td>1</td><td>01/01/2023</td><td>31/01/2023</td><td>Filed</td></tr>
  <tr><td>2</td><td> 01/02/2023 </td><td>28/02/2023</td></tr>
</table>
"""


def test_coerce_amount():
    """Thousands separators are stripped; text stays text."""
    assert coerce_amount("1,500") == 1500
    assert coerce_amount("-2,450.75") == -2450.75
    assert coerce_amount("N/A") == "N/A"
    assert coerce_amount("") == ""


def test_parse_period_date():
    """DD/MM/YYYY becomes a reporting period."""
    period = parse_period_date("01/03/2023")
    assert (period.month, period.year, period.day) == (3, 2023, 1)
    assert period.label == "March 2023"
    assert period.source_date_label == "01/03/2023"


def test_parse_period_date_rejects_malformed():
    """Anything that is not a real calendar date is None."""
    for label in (None, "", "2023-03-01", "31/02/2023", "01/13/2023", "aa/bb/cccc"):
        assert parse_period_date(label) is None


def test_parse_listing_table():
    """Header row names the columns; short rows are padded."""
    listing = parse_listing_table(LISTING_HTML)
    assert len(listing) == 2
    assert listing[0]["Return Period from"] == "01/01/2023"
    assert listing[0]["Status"] == "Filed"
    assert listing[1]["Return Period from"] == "01/02/2023"
    assert listing[1]["Status"] == ""


def test_section_not_found():
    """A missing table is not_found, not an error."""
    result = parse_section_table(SECTION_O, None)
    assert result.status == "not_found"
    assert result.data == []


def test_section_header_only_is_no_records():
    """A grid with only its header row has no records."""
    html = "<table><tr><th>Sr.No.</th><th>Descriptions</th><th>Amount (Ksh)</th></tr></table>"
    result = parse_section_table(SECTION_O, html)
    assert result.status == "no_records"


def test_section_rows_mapped_to_headers():
    """Cells map positionally onto catalog headers; amounts become numbers."""
    html = """
    <table>
      <tr><th>Sr.No.</th><th>Descriptions</th><th>Amount (Ksh)</th></tr>
      <tr><td>1</td><td>Output VAT</td><td>12,000.50</td></tr>
      <tr><td></td><td> </td><td></td></tr>
      <tr><td>2</td><td>Input VAT</td><td>4,000</td></tr>
    </table>
    """
    result = parse_section_table(SECTION_O, html)
    assert result.status == "success"
    assert result.data == [
        {"Sr.No.": "1", "Descriptions": "Output VAT", "Amount (Ksh)": 12000.5},
        {"Sr.No.": "2", "Descriptions": "Input VAT", "Amount (Ksh)": 4000},
    ]


def test_split_grid_rows_are_collected():
    """jqGrid renders header and body as separate tables; both are read."""
    html = """
    <div id="gview_grid">
      <table><tr class="ui-jqgrid-labels"><th>Date</th><th>Amount</th></tr></table>
      <table><tr><td>01/01/2023</td><td>100</td></tr></table>
    </div>
    """
    rows = table_rows(html)
    assert rows == [[], ["01/01/2023", "100"]]
    spec = TableSpec(key="t", selector="#gview_grid", name="T", headers=("Date", "Amount"))
    assert parse_section_table(spec, html).data == [{"Date": "01/01/2023", "Amount": 100}]


def test_ledger_catalog_amount_columns():
    """Debit and credit columns are treated as amounts."""
    assert LEDGER_TABLE.is_amount_header("Debit(Ksh)")
    assert not LEDGER_TABLE.is_amount_header("Particulars")


def test_parse_liabilities_table():
    """Rows come from tbody and the fourth column is totalled."""
    html = """
    <table id="3">
      <thead><tr><th>Tax Head</th><th>Period</th><th>Due Date</th><th>Amount</th></tr></thead>
      <tbody>
        <tr><td>VAT</td><td>01/2023</td><td>20/02/2023</td><td>1,000.25</td></tr>
        <tr><td>VAT</td><td>02/2023</td><td>20/03/2023</td><td>2,000</td></tr>
        <tr><td>VAT</td><td>03/2023</td><td>20/04/2023</td><td>pending</td></tr>
      </tbody>
    </table>
    """
    rows, total = parse_liabilities_table(html)
    assert len(rows) == 3
    assert rows[0]["Tax Head"] == "VAT"
    assert rows[1]["Amount"] == "2,000"
    assert total == 3000.25


def test_parse_liabilities_without_header():
    """Headerless grids get positional column names."""
    html = "<table><tbody><tr><td>a</td><td>b</td><td>c</td><td>10</td></tr></tbody></table>"
    rows, total = parse_liabilities_table(html)
    assert rows == [{"column_1": "a", "column_2": "b", "column_3": "c", "column_4": "10"}]
    assert total == 10
