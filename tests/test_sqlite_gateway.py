"""Tests for the SQLite storage backend."""
import asyncio

import aiosqlite
import pytest

from itax_sync.config import ExtractionSettings
from itax_sync.errors import StorageError
from itax_sync.jobs.reconciliation import ReconciliationEngine
from itax_sync.parse.models import ExtractionPlan, PeriodDetail, ReportingPeriod
from itax_sync.store.spool import SpoolManager
from itax_sync.store.sqlite_gateway import SQLiteGateway
from tests.fakes import FakeNavigator, listing_row, make_company, normal_sections


def gateway(tmp_path, roster_csv=None):
    gw = SQLiteGateway(db_path=tmp_path / "state.db", roster_csv=roster_csv)
    asyncio.run(gw.initialize())
    return gw


def period(month, year):
    return ReportingPeriod(month=month, year=year, source_date_label=f"01/{month:02d}/{year}")


def test_listing_upsert_replaces_snapshot(tmp_path):
    """One listing row per company; a second save replaces it."""
    gw = gateway(tmp_path)
    assert asyncio.run(gw.has_listing(1)) is False
    assert asyncio.run(gw.get_listing(1)) is None

    asyncio.run(gw.upsert_listing(1, [listing_row("01/01/2023")]))
    asyncio.run(gw.upsert_listing(1, [listing_row("01/01/2023"), listing_row("01/02/2023")]))
    assert asyncio.run(gw.has_listing(1)) is True
    assert len(asyncio.run(gw.get_listing(1))) == 2


def test_detail_upsert_keeps_one_row_per_period(tmp_path):
    """Writing the same (company, year, month) twice leaves one row."""
    gw = gateway(tmp_path)
    company = make_company()
    nil = PeriodDetail.nil(company, period(1, 2023))
    normal = PeriodDetail.normal(company, period(1, 2023), normal_sections())

    asyncio.run(gw.upsert_detail(company.id, company.kra_pin, nil))
    asyncio.run(gw.upsert_detail(company.id, company.kra_pin, normal))

    assert asyncio.run(gw.count_details(company.id)) == 1
    record = asyncio.run(gw.get_detail(company.id, 1, 2023))
    assert record["is_nil_return"] is False
    assert record["section_o"]["status"] == "no_records"
    assert record["return_period_from_date"] == "2023-01-01"


def test_nil_detail_has_null_sections(tmp_path):
    gw = gateway(tmp_path)
    company = make_company()
    asyncio.run(gw.upsert_detail(company.id, company.kra_pin, PeriodDetail.nil(company, period(2, 2023))))
    record = asyncio.run(gw.get_detail(company.id, 2, 2023))
    assert record["is_nil_return"] is True
    assert record["processing_status"] == "nil_return"
    assert record["section_f"] is None
    assert record["section_o"] is None


def test_has_detail_and_has_any_detail(tmp_path):
    gw = gateway(tmp_path)
    company = make_company()
    assert asyncio.run(gw.has_any_detail(company.id)) is False
    asyncio.run(gw.upsert_detail(company.id, company.kra_pin, PeriodDetail.nil(company, period(3, 2023))))
    assert asyncio.run(gw.has_any_detail(company.id)) is True
    assert asyncio.run(gw.has_detail(company.id, 3, 2023)) is True
    assert asyncio.run(gw.has_detail(company.id, 4, 2023)) is False


def test_roster_from_csv(tmp_path):
    """Rows without a PIN or password are dropped; the rest sort by name."""
    roster = tmp_path / "roster.csv"
    roster.write_text(
        "id,company_name,kra_pin,kra_password\n"
        "2,ZETA TRADERS,P000000002B,pw2\n"
        "1,ALPHA LIMITED,P000000001A,pw1\n"
        "3,NO PASSWORD LTD,P000000003C,\n",
        encoding="utf-8",
    )
    gw = gateway(tmp_path, roster_csv=roster)
    companies = asyncio.run(gw.list_companies())
    assert [c.name for c in companies] == ["ALPHA LIMITED", "ZETA TRADERS"]
    assert companies[0].kra_password == "pw1"


def test_missing_roster_raises(tmp_path):
    gw = gateway(tmp_path, roster_csv=tmp_path / "absent.csv")
    with pytest.raises(ValueError):
        asyncio.run(gw.list_companies())


def test_failed_writes_raise_storage_error(tmp_path):
    """SQLite failures surface as StorageError."""
    gw = gateway(tmp_path)
    company = make_company()
    drop_details_table(gw)
    with pytest.raises(StorageError):
        asyncio.run(gw.upsert_detail(company.id, company.kra_pin, PeriodDetail.nil(company, period(1, 2023))))


def test_batched_run_survives_broken_details_table(tmp_path):
    """Every buffered write is attempted, spooled and counted; the run completes."""
    gw = gateway(tmp_path)
    drop_details_table(gw)
    settings = ExtractionSettings(immediate_save=False, skip_existing_details=False, end_year=2024, end_month=12)
    spool = SpoolManager(tmp_path / "spool")
    engine = ReconciliationEngine(gw, settings, spool=spool, run_id="run-sqlite")
    navigator = FakeNavigator([listing_row("01/01/2023"), listing_row("01/02/2023")])

    result = asyncio.run(engine.execute_plan(ExtractionPlan(skip=False, reason="no_listing"), navigator, make_company()))

    assert result.periods_failed == 2
    assert result.periods_processed == 0
    assert result.listing_saved is True
    assert len(asyncio.run(spool.read_run("run-sqlite"))) == 2


def drop_details_table(gw):
    async def drop():
        async with aiosqlite.connect(gw.db_path) as db:
            await db.execute("DROP TABLE vat_return_details")
            await db.commit()

    asyncio.run(drop())
