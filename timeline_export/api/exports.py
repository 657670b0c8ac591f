"""Export API endpoints.

POST starts an export in the background and returns immediately; clients
follow it by polling GET or over the progress WebSocket.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, WebSocket, WebSocketDisconnect, status

from timeline_export.api.websocket import progress_notifier, websocket_manager
from timeline_export.exceptions import ExportError
from timeline_export.render.exporter import TimelineExporter
from timeline_export.render.progress import ExportPhase
from timeline_export.schemas.export import ExportJobResponse
from timeline_export.schemas.timeline import ExportRequest
from timeline_export.services.export_registry import export_registry

router = APIRouter()
logger = logging.getLogger(__name__)


def get_exporter() -> TimelineExporter:
    return TimelineExporter()


async def run_export_job(job_id: str, request: ExportRequest, exporter: TimelineExporter) -> None:
    """Background task: run one export and publish its progress."""

    def on_phase(phase: ExportPhase) -> None:
        if not phase.is_terminal:
            export_registry.set_phase(job_id, phase)

    async def on_progress(percent: float) -> None:
        record = export_registry.get(job_id)
        export_registry.set_progress(job_id, percent)
        await progress_notifier.notify_progress(job_id, percent, record.phase.value if record else "")

    try:
        result = await exporter.export(
            request,
            progress_callback=on_progress,
            job_id=job_id,
            on_phase=on_phase,
        )
    except ExportError as e:
        export_registry.fail(job_id, e)
        await progress_notifier.notify_error(job_id, e.message, e.code)
        return
    except Exception as e:
        logger.exception(f"[EXPORT] job={job_id} crashed")
        export_registry.fail(job_id, e)
        await progress_notifier.notify_error(job_id, str(e))
        return

    export_registry.complete(job_id)
    await progress_notifier.notify_complete(job_id, result.output_path)


@router.post(
    "/exports",
    response_model=ExportJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_export(
    request: ExportRequest,
    background_tasks: BackgroundTasks,
) -> ExportJobResponse:
    """Start exporting a timeline to ``output_path``."""
    if export_registry.is_output_busy(request.output_path):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"An export to {request.output_path} is already running",
        )

    record = export_registry.create(request.output_path)
    background_tasks.add_task(run_export_job, record.id, request, get_exporter())
    logger.info(f"[EXPORT] job={record.id} queued -> {request.output_path}")
    return record.to_response()


@router.get("/exports/{job_id}", response_model=ExportJobResponse)
async def get_export(job_id: str) -> ExportJobResponse:
    record = export_registry.get(job_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Export job not found",
        )
    return record.to_response()


@router.websocket("/exports/{job_id}/progress")
async def export_progress(websocket: WebSocket, job_id: str) -> None:
    """Stream progress messages for one job until it settles or the client leaves."""
    await websocket_manager.connect(websocket, job_id)
    record = export_registry.get(job_id)
    if record is not None:
        await websocket.send_json(
            {
                "type": "status",
                "job_id": job_id,
                "status": record.status,
                "phase": record.phase.value,
                "percent": record.percent,
            }
        )
        if record.is_settled:
            # No further messages will follow
            await websocket_manager.close_job(job_id)
            return
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        websocket_manager.disconnect(websocket, job_id)
