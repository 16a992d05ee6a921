"""Supabase backend for listings, period details and the company roster."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from supabase import create_client, Client
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from itax_sync.config import config
from itax_sync.errors import StorageError
from itax_sync.fetch.endpoints import SECTION_COLUMNS
from itax_sync.parse.models import Company, PeriodDetail

logger = logging.getLogger(__name__)

_write_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type((Exception,)),
    reraise=True,
)


class SupabaseGateway:
    """Reads and upserts through the supabase client, off the event loop."""

    def __init__(self, client: Optional[Client] = None, vat_registered_only: bool = True):
        if client is None:
            if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_ROLE:
                raise ValueError("Supabase configuration missing")
            client = create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE)
        self.client = client
        self.listings_table = config.LISTINGS_TABLE
        self.details_table = config.DETAILS_TABLE
        self.companies_table = config.COMPANIES_TABLE
        self.pin_checker_table = config.PIN_CHECKER_TABLE
        self.vat_registered_only = vat_registered_only

    async def _run(self, action: str, fn, *args):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn, *args)
        except Exception as e:
            logger.error(f"[STORE] Supabase {action} failed: {e}")
            raise StorageError(f"Supabase {action} failed: {e}") from e

    async def initialize(self) -> None:
        """Tables are managed in Supabase; nothing to create."""

    async def close(self) -> None:
        """The supabase client holds no resources that need releasing."""

    # Reads

    def _has_listing_sync(self, company_id) -> bool:
        response = (
            self.client.table(self.listings_table)
            .select("company_id")
            .eq("company_id", company_id)
            .limit(1)
            .execute()
        )
        return bool(response.data)

    def _has_any_detail_sync(self, company_id) -> bool:
        response = (
            self.client.table(self.details_table)
            .select("id")
            .eq("company_id", company_id)
            .limit(1)
            .execute()
        )
        return bool(response.data)

    def _has_detail_sync(self, company_id, month: int, year: int) -> bool:
        response = (
            self.client.table(self.details_table)
            .select("id")
            .eq("company_id", company_id)
            .eq("month", month)
            .eq("year", year)
            .limit(1)
            .execute()
        )
        return bool(response.data)

    def _get_listing_sync(self, company_id) -> list[dict[str, Any]] | None:
        response = (
            self.client.table(self.listings_table)
            .select("listing_data")
            .eq("company_id", company_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return response.data[0].get("listing_data") or []

    async def has_listing(self, company_id) -> bool:
        return await self._run("has_listing", self._has_listing_sync, company_id)

    async def has_any_detail(self, company_id) -> bool:
        return await self._run("has_any_detail", self._has_any_detail_sync, company_id)

    async def has_detail(self, company_id, month: int, year: int) -> bool:
        return await self._run("has_detail", self._has_detail_sync, company_id, month, year)

    async def get_listing(self, company_id) -> list[dict[str, Any]] | None:
        return await self._run("get_listing", self._get_listing_sync, company_id)

    # Writes

    @_write_retry
    def _upsert_sync(self, table: str, data: dict, on_conflict: str) -> None:
        """Synchronous upsert (called from thread pool)."""
        self.client.table(table).upsert(data, on_conflict=on_conflict).execute()

    async def upsert_listing(self, company_id, rows: list[dict[str, Any]]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        data = {
            "company_id": company_id,
            "listing_data": rows,
            "last_scraped_at": now,
            "updated_at": now,
        }
        await self._run("upsert_listing", self._upsert_sync, self.listings_table, data, "company_id")
        logger.info(f"[STORE] Listing saved for company {company_id} ({len(rows)} rows)")

    async def upsert_detail(self, company_id, kra_pin: str, detail: PeriodDetail) -> None:
        record = detail.to_record(SECTION_COLUMNS)
        record["company_id"] = company_id
        record["kra_pin"] = kra_pin
        await self._run(
            "upsert_detail", self._upsert_sync, self.details_table, record, "company_id,year,month"
        )
        logger.info(
            f"[STORE] {kra_pin} {detail.period.month}/{detail.period.year} saved "
            f"({'NIL' if detail.is_nil_return else 'DATA'})"
        )

    # Roster

    def _list_companies_sync(self) -> list[Company]:
        query = (
            self.client.table(self.companies_table)
            .select("id, company_name, kra_pin, kra_password")
            .not_.is_("kra_pin", "null")
            .not_.is_("kra_password", "null")
        )
        if config.ROSTER_PIN:
            query = query.eq("kra_pin", config.ROSTER_PIN)
        rows = query.order("company_name").order("id").execute().data or []

        flags: dict[str, dict] = {}
        if self.vat_registered_only and rows:
            names = [row["company_name"] for row in rows]
            details = (
                self.client.table(self.pin_checker_table)
                .select("company_name, vat_status")
                .in_("company_name", names)
                .eq("vat_status", "Registered")
                .execute()
                .data
                or []
            )
            flags = {d["company_name"]: {"vat_status": d["vat_status"]} for d in details}
            excluded = [row["company_name"] for row in rows if row["company_name"] not in flags]
            if excluded:
                logger.info(f"[ROSTER] Excluded {len(excluded)} companies not VAT registered")
            rows = [row for row in rows if row["company_name"] in flags]

        return [
            Company(
                id=row["id"],
                name=row["company_name"],
                kra_pin=row["kra_pin"],
                kra_password=row["kra_password"],
                registration_flags=flags.get(row["company_name"], {}),
            )
            for row in rows
            if row.get("kra_pin") and row.get("kra_password")
        ]

    async def list_companies(self) -> list[Company]:
        companies = await self._run("list_companies", self._list_companies_sync)
        logger.info(f"[ROSTER] {len(companies)} companies to process")
        return companies
