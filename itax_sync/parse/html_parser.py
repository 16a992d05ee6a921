"""Parse scraped portal tables into row dictionaries."""
import logging
import re
from datetime import date
from typing import Any

from selectolax.parser import HTMLParser, Node

from itax_sync.fetch.endpoints import TableSpec
from itax_sync.parse.models import ReportingPeriod, SectionResult

logger = logging.getLogger(__name__)

PERIOD_COLUMN = "Return Period from"
_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")


def cell_text(node: Node) -> str:
    """Visible text of a cell, whitespace collapsed."""
    return " ".join(node.text(separator=" ").split())


def _root(html: str) -> Node | None:
    parser = HTMLParser(html)
    return parser.body or parser.root


def table_rows(html: str) -> list[list[str]]:
    """Every <tr> in the fragment as a list of its <td> texts.

    Nested and split grids (header table plus body table) are flattened
    in document order.

    Header rows built from <th> come back as empty lists, so callers can
    count them without mistaking them for data.
    """
    root = _root(html)
    if root is None:
        return []
    return [[cell_text(td) for td in tr.css("td")] for tr in root.css("tr")]


def coerce_amount(value: str) -> int | float | str:
    """Strip thousands separators and return a number when the rest is numeric."""
    cleaned = value.replace(",", "").strip()
    if not cleaned or not _NUMBER_RE.match(cleaned):
        return value
    if "." in cleaned:
        return float(cleaned)
    return int(cleaned)


def rows_to_records(spec: TableSpec, rows: list[list[str]]) -> list[dict[str, Any]]:
    """Map positional cells onto the catalog headers, coercing amount columns."""
    records = []
    for row in rows:
        record: dict[str, Any] = {}
        for index, header in enumerate(spec.headers):
            value = row[index] if index < len(row) else ""
            record[header] = coerce_amount(value) if spec.is_amount_header(header) else value
        records.append(record)
    return records


def parse_section_table(spec: TableSpec, html: str | None) -> SectionResult:
    """Turn one section's table HTML into a SectionResult.

    None means the table was never found on the page.
    """
    if html is None:
        return SectionResult(section=spec.name, status="not_found", message=f"{spec.name} table not found")

    rows = table_rows(html)
    if len(rows) <= 1:
        return SectionResult(section=spec.name, status="no_records", message="No records found")

    data_rows = [row for row in rows if any(cell.strip() for cell in row)]
    return SectionResult(section=spec.name, status="success", data=rows_to_records(spec, data_rows))


def parse_listing_table(html: str) -> list[dict[str, str]]:
    """Parse the filed-returns summary table; the first row carries the headers."""
    table = _root(html)
    if table is None:
        return []
    trs = table.css("tr")
    if not trs:
        return []

    header_cells = trs[0].css("td") or trs[0].css("th")
    headers = [cell_text(cell) for cell in header_cells]
    listing = []
    for tr in trs[1:]:
        cells = [cell_text(td) for td in tr.css("td")]
        listing.append({header: cells[i] if i < len(cells) else "" for i, header in enumerate(headers)})
    return listing


def parse_liabilities_table(html: str) -> tuple[list[dict[str, Any]], float]:
    """Parse the liabilities grid (thead/tbody) and total its fourth column."""
    table = _root(html)
    if table is None:
        return [], 0.0

    headers = [cell_text(th) for th in table.css("thead th")]
    rows = []
    total = 0.0
    for tr in table.css("tbody tr"):
        cells = [cell_text(td) for td in tr.css("td")]
        if not cells:
            continue
        amount = coerce_amount(cells[3]) if len(cells) > 3 else ""
        if isinstance(amount, (int, float)):
            total += amount
        if headers:
            row = {header: cells[i] if i < len(cells) else "" for i, header in enumerate(headers)}
        else:
            row = {f"column_{i + 1}": value for i, value in enumerate(cells)}
        rows.append(row)
    return rows, round(total, 2)


def parse_period_date(label: str | None) -> ReportingPeriod | None:
    """Parse a DD/MM/YYYY label. Returns None when it does not look like one."""
    if not label:
        return None
    parts = label.strip().split("/")
    if len(parts) != 3:
        return None
    try:
        day, month, year = (int(p) for p in parts)
        date(year, month, day)
    except ValueError:
        return None
    return ReportingPeriod(month=month, year=year, day=day, source_date_label=label.strip())
