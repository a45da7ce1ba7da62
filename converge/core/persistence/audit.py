"""
Run ledger — append-only history of apply/destroy runs.

Every run that reaches the executor writes one NDJSON line, including
partial and aborted runs. Entries are never modified or deleted.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_FILE = ".state/runs.ndjson"


class RunFailure(BaseModel):
    """One failed entry, as recorded in the ledger."""

    entry: str
    error_kind: str | None = None
    error: str | None = None


class RunRecord(BaseModel):
    """A single ledger entry."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    operation_id: str = ""
    command: str = ""              # apply, destroy

    status: str = ""               # ok, partial, failed, cancelled
    aborted: bool = False
    state_serial: int = 0

    planned: dict[str, int] = Field(default_factory=dict)
    applied: int = 0
    failed: int = 0
    skipped: int = 0
    duration_ms: int = 0

    failures: list[RunFailure] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)


class RunLedger:
    """Append-only ledger writer/reader."""

    def __init__(self, path: Path):
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def write(self, record: RunRecord) -> None:
        """Append one record. Ledger I/O problems are logged, not raised."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(record.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Run recorded: %s/%s", record.command, record.operation_id)
        except OSError as e:
            logger.error("Failed to write run record: %s", e)

    def read_all(self) -> list[RunRecord]:
        """All records, oldest first. Corrupt lines are skipped."""
        if not self._path.is_file():
            return []

        records: list[RunRecord] = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        records.append(RunRecord.model_validate(json.loads(line)))
                    except (json.JSONDecodeError, ValidationError) as e:
                        logger.warning("Skipping corrupt run record at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read run ledger: %s", e)

        return records

    def read_recent(self, n: int = 20) -> list[RunRecord]:
        return self.read_all()[-n:]
