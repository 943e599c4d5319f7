"""Append-only JSON Lines sink holding one record per renewal run."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError

from subly.business.renewal.schemas import RenewalLogsRead, RenewalRunRecord


logger = logging.getLogger("subly.renewal.log")

NO_RUNS_MESSAGE = "No renewal runs logged yet. POST /renewals/trigger to run the job."
EMPTY_LOG_MESSAGE = "Renewal log is empty."


class RenewalLogSink:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def append(self, record: RenewalRunRecord) -> bool:
        """Write one record; a failed write is logged and reported as False, never raised."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(record.model_dump_json() + "\n")
        except OSError as exc:
            logger.warning(
                "renewal_log_write_failed",
                extra={"run_id": record.run_id, "error": str(exc)[:500]},
            )
            return False
        return True

    def read(self, limit: int | None = None) -> RenewalLogsRead:
        """Newest-first run records; malformed lines are skipped and counted in ``error``."""
        if not self.path.exists():
            return RenewalLogsRead(message=NO_RUNS_MESSAGE)

        try:
            content = self.path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.warning("renewal_log_read_failed", extra={"error": str(exc)[:500]})
            return RenewalLogsRead(error=f"renewal log unreadable: {exc}")

        lines = [line for line in content.splitlines() if line.strip()]
        if not lines:
            return RenewalLogsRead(message=EMPTY_LOG_MESSAGE)

        logs: list[dict] = []
        malformed = 0
        for line in reversed(lines):
            try:
                record = RenewalRunRecord.model_validate_json(line)
            except ValidationError:
                malformed += 1
                continue
            logs.append(record.model_dump(mode="json"))

        if limit is not None:
            logs = logs[:limit]

        error = f"skipped {malformed} malformed renewal log entries" if malformed else None
        if malformed:
            logger.warning("renewal_log_malformed_entries", extra={"error": error})
        return RenewalLogsRead(logs=logs, count=len(logs), error=error)
