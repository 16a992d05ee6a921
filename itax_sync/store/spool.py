"""Disk spool for period records the store refused."""
import logging
from pathlib import Path
import aiofiles
import orjson

from itax_sync.config import SPOOL_DIR
from itax_sync.parse.models import PeriodDetail
from itax_sync.parse.redact import redact_json

logger = logging.getLogger(__name__)


class SpoolManager:
    """Appends failed writes to a JSONL file per run for later inspection."""

    def __init__(self, spool_dir: Path = SPOOL_DIR):
        self.spool_dir = spool_dir
        self.spool_dir.mkdir(parents=True, exist_ok=True)

    def _get_spool_file(self, run_id: str) -> Path:
        """Get spool file path for a run."""
        return self.spool_dir / f"details_{run_id}.jsonl"

    async def write_detail(self, detail: PeriodDetail, run_id: str, error: str) -> None:
        """Write a period record to the spool file."""
        spool_file = self._get_spool_file(run_id)
        entry = redact_json({"error": error, "detail": detail.model_dump(mode="json")})
        async with aiofiles.open(spool_file, "ab") as f:
            await f.write(orjson.dumps(entry) + b"\n")
        logger.warning(
            f"[SPOOL] {detail.kra_pin} {detail.period.month}/{detail.period.year} spooled to {spool_file.name}"
        )

    async def read_run(self, run_id: str) -> list[dict]:
        """Read all entries from a run's spool file."""
        spool_file = self._get_spool_file(run_id)
        if not spool_file.exists():
            return []

        entries = []
        async with aiofiles.open(spool_file, "rb") as f:
            async for line in f:
                try:
                    entries.append(orjson.loads(line))
                except orjson.JSONDecodeError as e:
                    logger.warning(f"Error reading spool line: {e}")
                    continue

        return entries
