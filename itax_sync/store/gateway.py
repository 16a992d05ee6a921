"""Storage contract shared by the Supabase and SQLite backends."""
from typing import Any, Protocol

from itax_sync.parse.models import Company, PeriodDetail


class StorageGateway(Protocol):
    """What the reconciliation engine needs from a store.

    upsert_listing replaces the company's listing snapshot (conflict key
    company_id); upsert_detail writes one period (conflict key
    company_id, year, month).
    """

    async def initialize(self) -> None: ...

    async def has_listing(self, company_id: int | str) -> bool: ...

    async def has_any_detail(self, company_id: int | str) -> bool: ...

    async def has_detail(self, company_id: int | str, month: int, year: int) -> bool: ...

    async def get_listing(self, company_id: int | str) -> list[dict[str, Any]] | None: ...

    async def upsert_listing(self, company_id: int | str, rows: list[dict[str, Any]]) -> None: ...

    async def upsert_detail(self, company_id: int | str, kra_pin: str, detail: PeriodDetail) -> None: ...

    async def list_companies(self) -> list[Company]: ...

    async def close(self) -> None: ...


def build_gateway(backend: str) -> StorageGateway:
    """Instantiate the configured backend."""
    if backend == "sqlite":
        from itax_sync.store.sqlite_gateway import SQLiteGateway

        return SQLiteGateway()
    if backend == "supabase":
        from itax_sync.store.supabase_gateway import SupabaseGateway

        return SupabaseGateway()
    raise ValueError(f"Unknown storage backend: {backend}")
