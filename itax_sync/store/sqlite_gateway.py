"""SQLite backend for running without Supabase."""
import csv
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Optional

import aiosqlite
import orjson

from itax_sync.config import config
from itax_sync.errors import StorageError
from itax_sync.fetch.endpoints import SECTION_CATALOG, SECTION_COLUMNS
from itax_sync.parse.models import Company, PeriodDetail

logger = logging.getLogger(__name__)

_SECTION_COLUMN_NAMES = [spec.column for spec in SECTION_CATALOG]
_JSON_COLUMNS = set(_SECTION_COLUMN_NAMES)


class SQLiteGateway:
    """Same tables as the hosted schema, with SQLite upserts.

    The roster comes from a CSV file with columns
    id, company_name, kra_pin, kra_password.
    """

    def __init__(self, db_path: Optional[Path] = None, roster_csv: Optional[Path] = None):
        self.db_path = db_path or config.SQLITE_PATH
        self.roster_csv = roster_csv or config.ROSTER_CSV

    @asynccontextmanager
    async def _connect(self, action: str) -> AsyncIterator[aiosqlite.Connection]:
        """Open a connection; SQLite failures surface as StorageError."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                yield db
        except aiosqlite.Error as e:
            logger.error(f"[STORE] SQLite {action} failed: {e}")
            raise StorageError(f"SQLite {action} failed: {e}") from e

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        section_defs = ",\n".join(f"{name} TEXT" for name in _SECTION_COLUMN_NAMES)
        async with self._connect("initialize") as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS company_vat_return_listings (
                    company_id TEXT PRIMARY KEY,
                    listing_data TEXT NOT NULL,
                    last_scraped_at TIMESTAMP,
                    updated_at TIMESTAMP
                )
                """
            )
            await db.execute(
                f"""
                CREATE TABLE IF NOT EXISTS vat_return_details (
                    company_id TEXT NOT NULL,
                    kra_pin TEXT NOT NULL,
                    return_period_from_date TEXT,
                    month INTEGER NOT NULL,
                    year INTEGER NOT NULL,
                    is_nil_return INTEGER NOT NULL DEFAULT 0,
                    {section_defs},
                    extraction_timestamp TIMESTAMP,
                    processing_status TEXT,
                    error_message TEXT,
                    updated_at TIMESTAMP,
                    PRIMARY KEY (company_id, year, month)
                )
                """
            )
            await db.commit()
        logger.info(f"State database initialized at {self.db_path}")

    async def close(self) -> None:
        """Connections are opened per call."""

    async def has_listing(self, company_id) -> bool:
        async with self._connect("has_listing") as db:
            cursor = await db.execute(
                "SELECT 1 FROM company_vat_return_listings WHERE company_id = ?",
                (str(company_id),),
            )
            return await cursor.fetchone() is not None

    async def has_any_detail(self, company_id) -> bool:
        async with self._connect("has_any_detail") as db:
            cursor = await db.execute(
                "SELECT 1 FROM vat_return_details WHERE company_id = ? LIMIT 1",
                (str(company_id),),
            )
            return await cursor.fetchone() is not None

    async def has_detail(self, company_id, month: int, year: int) -> bool:
        async with self._connect("has_detail") as db:
            cursor = await db.execute(
                "SELECT 1 FROM vat_return_details WHERE company_id = ? AND month = ? AND year = ?",
                (str(company_id), month, year),
            )
            return await cursor.fetchone() is not None

    async def get_listing(self, company_id) -> list[dict[str, Any]] | None:
        async with self._connect("get_listing") as db:
            cursor = await db.execute(
                "SELECT listing_data FROM company_vat_return_listings WHERE company_id = ?",
                (str(company_id),),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return orjson.loads(row[0])

    async def upsert_listing(self, company_id, rows: list[dict[str, Any]]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        async with self._connect("upsert_listing") as db:
            await db.execute(
                """
                INSERT INTO company_vat_return_listings (company_id, listing_data, last_scraped_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(company_id) DO UPDATE SET
                    listing_data = excluded.listing_data,
                    last_scraped_at = excluded.last_scraped_at,
                    updated_at = excluded.updated_at
                """,
                (str(company_id), orjson.dumps(rows).decode(), now, now),
            )
            await db.commit()
        logger.info(f"[STORE] Listing saved for company {company_id} ({len(rows)} rows)")

    async def upsert_detail(self, company_id, kra_pin: str, detail: PeriodDetail) -> None:
        record = detail.to_record(SECTION_COLUMNS)
        record["company_id"] = str(company_id)
        record["kra_pin"] = kra_pin
        record["is_nil_return"] = int(record["is_nil_return"])
        for column in _JSON_COLUMNS:
            if record[column] is not None:
                record[column] = orjson.dumps(record[column]).decode()

        columns = list(record.keys())
        updates = ", ".join(
            f"{c} = excluded.{c}" for c in columns if c not in ("company_id", "year", "month")
        )
        async with self._connect("upsert_detail") as db:
            await db.execute(
                f"""
                INSERT INTO vat_return_details ({", ".join(columns)})
                VALUES ({", ".join("?" for _ in columns)})
                ON CONFLICT(company_id, year, month) DO UPDATE SET {updates}
                """,
                [record[c] for c in columns],
            )
            await db.commit()
        logger.info(
            f"[STORE] {kra_pin} {detail.period.month}/{detail.period.year} saved "
            f"({'NIL' if detail.is_nil_return else 'DATA'})"
        )

    async def get_detail(self, company_id, month: int, year: int) -> dict[str, Any] | None:
        """Read back one period row, JSON columns decoded."""
        async with self._connect("get_detail") as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM vat_return_details WHERE company_id = ? AND month = ? AND year = ?",
                (str(company_id), month, year),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        record = dict(row)
        for column in _JSON_COLUMNS:
            if record[column] is not None:
                record[column] = orjson.loads(record[column])
        record["is_nil_return"] = bool(record["is_nil_return"])
        return record

    async def count_details(self, company_id) -> int:
        async with self._connect("count_details") as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM vat_return_details WHERE company_id = ?",
                (str(company_id),),
            )
            row = await cursor.fetchone()
        return row[0]

    async def list_companies(self) -> list[Company]:
        if not self.roster_csv or not Path(self.roster_csv).exists():
            raise ValueError(f"Roster CSV not found: {self.roster_csv}")

        companies = []
        with open(self.roster_csv, newline="", encoding="utf-8") as f:
            for row in csv.DictReader(f):
                pin = (row.get("kra_pin") or "").strip()
                password = (row.get("kra_password") or "").strip()
                if not pin or not password:
                    continue
                if config.ROSTER_PIN and pin != config.ROSTER_PIN:
                    continue
                companies.append(
                    Company(
                        id=row["id"].strip(),
                        name=(row.get("company_name") or pin).strip(),
                        kra_pin=pin,
                        kra_password=password,
                    )
                )
        companies.sort(key=lambda c: (c.name, str(c.id)))
        logger.info(f"[ROSTER] {len(companies)} companies to process")
        return companies
