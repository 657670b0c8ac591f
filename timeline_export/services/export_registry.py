"""In-memory status records for export jobs started through the API.

Records live in process memory only and are never persisted; they exist so
clients can poll a job they started. Only the newest settled records are
kept, so a long-running service does not grow without bound.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import uuid4

from timeline_export.config import get_settings
from timeline_export.exceptions import ExportError
from timeline_export.render.progress import ExportPhase
from timeline_export.schemas.export import ExportJobResponse, ExportStatus

logger = logging.getLogger(__name__)


@dataclass
class ExportRecord:
    id: str
    output_path: str
    status: ExportStatus = "queued"
    phase: ExportPhase = ExportPhase.CREATED
    percent: float = 0.0
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def is_settled(self) -> bool:
        return self.status in ("completed", "failed")

    def to_response(self) -> ExportJobResponse:
        return ExportJobResponse(
            id=self.id,
            status=self.status,
            phase=self.phase.value,
            percent=self.percent,
            output_path=self.output_path,
            error_code=self.error_code,
            error_message=self.error_message,
        )


class ExportJobRegistry:
    """Tracks the status of export jobs in this process."""

    def __init__(self, max_settled: Optional[int] = None):
        if max_settled is None:
            max_settled = get_settings().export_registry_max_settled
        self.max_settled = max_settled
        # Insertion order doubles as settle order: records move to the end when they finish
        self._records: dict[str, ExportRecord] = {}

    def create(self, output_path: str) -> ExportRecord:
        record = ExportRecord(id=uuid4().hex[:12], output_path=output_path)
        self._records[record.id] = record
        return record

    def get(self, job_id: str) -> Optional[ExportRecord]:
        return self._records.get(job_id)

    def is_output_busy(self, output_path: str) -> bool:
        """Whether an unfinished job is already writing to this path."""
        return any(
            r.output_path == output_path and not r.is_settled
            for r in self._records.values()
        )

    def set_phase(self, job_id: str, phase: ExportPhase) -> None:
        record = self._records[job_id]
        record.phase = phase
        if not phase.is_terminal:
            record.status = "processing"

    def set_progress(self, job_id: str, percent: float) -> None:
        self._records[job_id].percent = percent

    def complete(self, job_id: str) -> None:
        record = self._records[job_id]
        record.status = "completed"
        record.phase = ExportPhase.SUCCEEDED
        record.percent = 100.0
        self._settle(record)

    def fail(self, job_id: str, error: BaseException) -> None:
        record = self._records[job_id]
        record.status = "failed"
        record.phase = ExportPhase.FAILED
        if isinstance(error, ExportError):
            record.error_code = error.code
            record.error_message = error.message
        else:
            record.error_code = "EXPORT_FAILED"
            record.error_message = str(error) or error.__class__.__name__
        self._settle(record)

    def _settle(self, record: ExportRecord) -> None:
        """Move a finished record to the end and evict the oldest settled ones."""
        self._records[record.id] = self._records.pop(record.id)

        settled = [r.id for r in self._records.values() if r.is_settled]
        excess = len(settled) - self.max_settled
        for job_id in settled[:max(excess, 0)]:
            del self._records[job_id]
        if excess > 0:
            logger.debug(f"[EXPORT] evicted {excess} settled job record(s)")


export_registry = ExportJobRegistry()
