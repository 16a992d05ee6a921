"""Run artifacts: summary.json, per-company JSON and the Excel workbook."""
import logging
from datetime import date
from pathlib import Path
from typing import Any, Optional

import aiofiles
import orjson
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill

from itax_sync.config import config
from itax_sync.fetch.endpoints import LEDGER_TABLE, SECTION_CATALOG
from itax_sync.parse.models import CompanyResult
from itax_sync.parse.redact import redact_json

logger = logging.getLogger(__name__)

WORKBOOK_NAME = "AUTO-FILED-RETURNS-SUMMARY-KRA.xlsx"
_HEADER_FONT = Font(bold=True)
_HEADER_FILL = PatternFill(start_color="FFD3D3D3", end_color="FFD3D3D3", fill_type="solid")


def run_dir_name(day: date) -> str:
    return f"AUTO EXTRACT FILED RETURNS-{day.day}.{day.month}.{day.year}"


class ReportWriter:
    """Writes the artifacts of one run into a dated output directory."""

    def __init__(self, output_root: Optional[Path] = None, run_date: Optional[date] = None):
        self.run_dir = (output_root or config.OUTPUT_DIR) / run_dir_name(run_date or date.today())
        self.run_dir.mkdir(parents=True, exist_ok=True)

    async def write_summary(self, summary: dict[str, Any]) -> Path:
        """Save summary.json (redacted)."""
        path = self.run_dir / "summary.json"
        async with aiofiles.open(path, "wb") as f:
            await f.write(orjson.dumps(redact_json(summary), option=orjson.OPT_INDENT_2))
        logger.info(f"Saved summary to {path}")
        return path

    def write_company(self, result: CompanyResult) -> Path:
        """Save everything extracted for one company to <pin>/extracted.json."""
        company_dir = self.run_dir / result.pin
        company_dir.mkdir(exist_ok=True)
        path = company_dir / "extracted.json"
        with open(path, "wb") as f:
            f.write(orjson.dumps(redact_json(result.model_dump(mode="json")), option=orjson.OPT_INDENT_2))
        logger.debug(f"Saved extracted data to {path}")
        return path

    def write_workbook(self, results: list[CompanyResult]) -> Path:
        """One SUMMARY sheet, one sheet per VAT section, plus the optional workflow sheets."""
        wb = Workbook()
        summary = wb.active
        summary.title = "SUMMARY"
        self._append_header(
            summary,
            ["Company", "PIN", "Status", "Reason", "Attempts", "Periods Processed",
             "Periods Skipped", "Periods Failed", "Error"],
        )
        for r in results:
            execution = r.execution
            summary.append([
                r.company,
                r.pin,
                "skipped" if r.skipped else ("success" if r.success else "failed"),
                r.reason or "",
                r.attempts,
                execution.periods_processed if execution else 0,
                execution.periods_skipped if execution else 0,
                execution.periods_failed if execution else 0,
                r.error or "",
            ])

        for spec in SECTION_CATALOG:
            ws = wb.create_sheet(spec.sheet)
            self._append_header(ws, ["Company", "PIN", "Period", *spec.headers])
            for r in results:
                rows = r.execution.section_rows.get(spec.key, []) if r.execution else []
                for row in rows:
                    ws.append([r.company, r.pin, row.get("Period", ""), *(row.get(h, "") for h in spec.headers)])

        if any(r.ledger for r in results):
            ws = wb.create_sheet(LEDGER_TABLE.sheet)
            self._append_header(ws, ["Company", "PIN", *LEDGER_TABLE.headers])
            for r in results:
                for row in r.ledger:
                    ws.append([r.company, r.pin, *(row.get(h, "") for h in LEDGER_TABLE.headers)])

        if any(r.liabilities for r in results):
            ws = wb.create_sheet("LIABILITIES")
            headers: list[str] = []
            for r in results:
                for row in r.liabilities:
                    headers.extend(h for h in row if h not in headers)
            self._append_header(ws, ["Company", "PIN", *headers])
            for r in results:
                for row in r.liabilities:
                    ws.append([r.company, r.pin, *(row.get(h, "") for h in headers)])
                if r.liabilities:
                    ws.append([r.company, r.pin, "TOTAL", r.liabilities_total or 0])

        if any(r.withholding for r in results):
            ws = wb.create_sheet("WITHHOLDING")
            self._append_header(ws, ["Company", "PIN", "Agent Type", "Registered", "Message", "CAPTCHA Retries"])
            for r in results:
                for status in r.withholding:
                    registered = "UNKNOWN" if status.is_registered is None else ("YES" if status.is_registered else "NO")
                    ws.append([r.company, r.pin, status.agent_type, registered, status.message, status.captcha_retries])

        path = self.run_dir / WORKBOOK_NAME
        wb.save(path)
        logger.info(f"Saved workbook to {path}")
        return path

    @staticmethod
    def _append_header(ws, headers: list[str]) -> None:
        ws.append(headers)
        for cell in ws[ws.max_row]:
            cell.font = _HEADER_FONT
            cell.fill = _HEADER_FILL
