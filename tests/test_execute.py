"""Tests for plan execution against a fake portal."""
import asyncio

from itax_sync.config import ExtractionSettings
from itax_sync.errors import DataShapeError
from itax_sync.fetch.endpoints import SECTION_COLUMNS
from itax_sync.jobs.reconciliation import ReconciliationEngine
from itax_sync.parse.models import ExtractionPlan, PageKind, ReportingPeriod, SectionResult
from itax_sync.store.spool import SpoolManager
from tests.fakes import FakeNavigator, FakeStore, FakeView, listing_row, make_company, normal_sections

SETTINGS = ExtractionSettings(start_year=2015, start_month=1, end_year=2024, end_month=12)
ALL = ExtractionPlan(skip=False, reason="no_listing")


def period(month, year):
    return ReportingPeriod(month=month, year=year, source_date_label=f"01/{month:02d}/{year}")


def execute(store, navigator, plan=ALL, settings=SETTINGS, spool=None):
    engine = ReconciliationEngine(store, settings, spool=spool, run_id="run-1")
    return asyncio.run(engine.execute_plan(plan, navigator, make_company()))


def test_nil_return_persists_null_sections():
    """NIL marker with every section column present and null."""
    store = FakeStore()
    nav = FakeNavigator([listing_row("01/01/2023")], {0: FakeView(kind=PageKind.NIL_RETURN)})
    result = execute(store, nav)
    record = store.details[(1, 1, 2023)]
    assert record["is_nil_return"] is True
    assert record["processing_status"] == "nil_return"
    assert all(record[column] is None for column in SECTION_COLUMNS.values())
    assert len(SECTION_COLUMNS) == 9
    assert result.periods_processed == 1
    assert result.periods_nil == 1


def test_error_page_is_not_persisted():
    """Portal error pages are counted with their reference and retried next run."""
    store = FakeStore()
    nav = FakeNavigator([listing_row("01/01/2023")], {0: FakeView(kind=PageKind.ERROR_PAGE, ref_no="884213")})
    result = execute(store, nav)
    assert store.details == {}
    assert result.periods_failed == 1
    assert result.errors[0].ref_no == "884213"
    assert nav.closed == [0]


def test_normal_return_collects_section_rows():
    """Successful sections are stored and tagged with their period label."""
    sections = normal_sections()
    sections["sectionF"] = SectionResult(
        section="Section F", status="success", data=[{"PIN of Supplier": "P000111222B", "Amount": 1500}]
    )
    store = FakeStore()
    view = FakeView(sections=sections)
    nav = FakeNavigator([listing_row("01/05/2023")], {0: view})
    result = execute(store, nav)
    record = store.details[(1, 5, 2023)]
    assert record["is_nil_return"] is False
    assert record["processing_status"] == "completed"
    assert record["section_f"]["status"] == "success"
    assert record["section_b"]["status"] == "no_records"
    assert view.maximized is True
    assert result.section_rows["sectionF"] == [
        {"Period": "May 2023", "PIN of Supplier": "P000111222B", "Amount": 1500}
    ]


def test_row_failure_does_not_stop_company():
    """One broken detail view is recorded; the rest of the listing still runs."""
    store = FakeStore()
    listing = [listing_row("01/01/2023"), listing_row("01/02/2023")]
    nav = FakeNavigator(listing, {0: FakeView(error=DataShapeError("view link missing"))})
    result = execute(store, nav)
    assert result.periods_failed == 1
    assert "view link missing" in result.errors[0].message
    assert list(store.details) == [(1, 2, 2023)]
    assert nav.closed == [0, 1]


def test_rows_outside_window_are_ignored():
    """Periods before the start of the window are never opened."""
    store = FakeStore()
    nav = FakeNavigator([listing_row("01/12/2014"), listing_row("01/01/2015")])
    result = execute(store, nav)
    assert nav.opened == [1]
    assert result.periods_processed == 1


def test_partial_plan_opens_only_targeted_rows():
    """Rows outside the plan are skipped without opening a view."""
    store = FakeStore()
    store.listings[1] = []
    store.add_detail(1, 1, 2023)
    listing = [listing_row("01/01/2023"), listing_row("01/02/2023"), listing_row("01/03/2023")]
    nav = FakeNavigator(listing)
    plan = ExtractionPlan(skip=False, reason="partial", periods=[period(2, 2023)])
    result = execute(store, nav, plan)
    assert nav.opened == [1]
    assert result.periods_processed == 1
    assert result.periods_skipped == 2
    assert result.periods_targeted_unprocessed == 0


def test_targeted_period_missing_from_listing_is_reported():
    """A planned period the live listing no longer shows is counted."""
    nav = FakeNavigator([listing_row("01/02/2023")])
    plan = ExtractionPlan(skip=False, reason="partial", periods=[period(2, 2023), period(4, 2023)])
    result = execute(FakeStore(), nav, plan)
    assert result.periods_processed == 1
    assert result.periods_targeted_unprocessed == 1


def test_listing_saved_when_absent():
    """First run stores the listing snapshot."""
    store = FakeStore()
    listing = [listing_row("01/01/2023")]
    result = execute(store, FakeNavigator(listing))
    assert result.listing_saved is True
    assert result.listing_rows == 1
    assert store.listings[1] == listing


def test_existing_listing_kept_unless_forced():
    """A stored listing is not replaced by default but is under force update."""
    store = FakeStore()
    store.listings[1] = [listing_row("01/01/2022")]
    result = execute(store, FakeNavigator([listing_row("01/01/2023")]))
    assert result.listing_saved is False
    assert store.listing_writes == 0

    forced = ExtractionSettings(force_update=True, end_year=2024, end_month=12)
    result = execute(store, FakeNavigator([listing_row("01/01/2023")]), settings=forced)
    assert result.listing_saved is True
    assert store.listings[1] == [listing_row("01/01/2023")]


def test_stored_detail_not_rewritten():
    """With skip_existing_details, a row stored meanwhile is not written again."""
    store = FakeStore()
    store.add_detail(1, 1, 2023)
    result = execute(store, FakeNavigator([listing_row("01/01/2023")]))
    assert store.detail_writes == []
    assert result.periods_skipped == 1


def test_batched_mode_flushes_after_listing():
    """With immediate_save off, records are written in one pass at the end."""
    settings = ExtractionSettings(immediate_save=False, end_year=2024, end_month=12)
    store = FakeStore()
    listing = [listing_row("01/01/2023"), listing_row("01/02/2023")]
    result = execute(store, FakeNavigator(listing), settings=settings)
    assert store.detail_writes == [(1, 1, 2023), (1, 2, 2023)]
    assert result.periods_processed == 2


def test_failed_write_is_spooled(tmp_path):
    """A rejected write lands in the run's spool file and counts as failed."""
    store = FakeStore()
    store.fail_detail_keys.add((1, 1, 2023))
    spool = SpoolManager(tmp_path)
    result = execute(store, FakeNavigator([listing_row("01/01/2023")]), spool=spool)
    assert result.periods_failed == 1
    assert result.periods_processed == 0
    entries = asyncio.run(spool.read_run("run-1"))
    assert len(entries) == 1
    assert entries[0]["detail"]["period"]["month"] == 1
    assert "kra_password" not in entries[0]["detail"]


def test_duplicate_listing_rows_written_once():
    """Two listing rows for the same month produce one record."""
    store = FakeStore()
    listing = [listing_row("01/03/2023"), listing_row("01/03/2023")]
    nav = FakeNavigator(listing)
    result = execute(store, nav)
    assert store.detail_writes == [(1, 3, 2023)]
    assert nav.opened == [0]
    assert result.periods_skipped == 1


def test_second_run_converges():
    """After a full run the next plan skips the company."""
    store = FakeStore()
    listing = [listing_row("01/01/2023"), listing_row("01/02/2023")]
    execute(store, FakeNavigator(listing))
    engine = ReconciliationEngine(store, SETTINGS)
    plan = asyncio.run(engine.plan_extraction(1, "ACME LIMITED"))
    assert plan.skip is True
    assert plan.reason == "all_periods_complete"


def test_records_carry_utc_timestamps():
    """Extraction and update times are timezone-aware UTC."""
    store = FakeStore()
    execute(store, FakeNavigator([listing_row("01/01/2023")], {0: FakeView(kind=PageKind.NIL_RETURN)}))
    record = store.details[(1, 1, 2023)]
    assert record["extraction_timestamp"].endswith("+00:00")
    assert record["updated_at"].endswith("+00:00")
