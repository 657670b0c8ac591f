"""WebSocket support for real-time export progress notifications.

This module provides:
- WebSocketManager: Watchers of each export job, closed once the job settles
- ExportProgressNotifier: High-level API for sending progress updates
- Message creation helpers: Standardized message formats
"""

import logging
from typing import Any, Optional

from fastapi import WebSocket, status

from timeline_export.schemas.export import ProgressEvent

logger = logging.getLogger(__name__)


class WebSocketManager:
    """Tracks the clients watching each export job.

    A job's watchers are closed and forgotten when the job completes or
    fails, so no entry outlives its export.
    """

    def __init__(self):
        self._watchers: dict[str, list[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, job_id: str) -> None:
        await websocket.accept()
        self._watchers.setdefault(job_id, []).append(websocket)

    def disconnect(self, websocket: WebSocket, job_id: str) -> None:
        watchers = self._watchers.get(job_id)
        if watchers is None:
            return
        if websocket in watchers:
            watchers.remove(websocket)
        if not watchers:
            del self._watchers[job_id]

    async def broadcast(self, job_id: str, message: dict[str, Any]) -> None:
        """Send a message to every watcher of a job, dropping dead ones."""
        for websocket in list(self._watchers.get(job_id, ())):
            try:
                await websocket.send_json(message)
            except Exception as e:
                # A dead socket must not stop the export
                logger.debug(f"[EXPORT] job={job_id} dropping watcher: {e}")
                self.disconnect(websocket, job_id)

    async def close_job(self, job_id: str) -> None:
        """Close and forget every watcher of a settled job."""
        for websocket in self._watchers.pop(job_id, []):
            try:
                await websocket.close(code=status.WS_1000_NORMAL_CLOSURE)
            except Exception as e:
                logger.debug(f"[EXPORT] job={job_id} watcher already closed: {e}")

    def get_connection_count(self, job_id: str) -> int:
        return len(self._watchers.get(job_id, ()))


class ExportProgressNotifier:
    """High-level API for sending export progress notifications.

    The complete and error messages are the last a watcher receives; the
    job's sockets are closed right after them.
    """

    def __init__(self, manager: WebSocketManager):
        self._manager = manager

    async def notify_progress(self, job_id: str, percent: float, phase: str) -> None:
        await self._manager.broadcast(job_id, create_progress_message(job_id, percent, phase))

    async def notify_complete(self, job_id: str, output_path: str) -> None:
        await self._manager.broadcast(job_id, create_complete_message(job_id, output_path))
        await self._manager.close_job(job_id)

    async def notify_error(
        self,
        job_id: str,
        error_message: str,
        error_code: Optional[str] = None,
    ) -> None:
        await self._manager.broadcast(
            job_id, create_error_message(job_id, error_message, error_code)
        )
        await self._manager.close_job(job_id)


def create_progress_message(job_id: str, percent: float, phase: str) -> dict[str, Any]:
    """Create a standardized progress message."""
    return {
        "type": "progress",
        "job_id": job_id,
        "status": "processing",
        "phase": phase,
        **ProgressEvent(percent=percent).model_dump(),
    }


def create_complete_message(job_id: str, output_path: str) -> dict[str, Any]:
    """Create a standardized completion message."""
    return {
        "type": "complete",
        "job_id": job_id,
        "status": "completed",
        "percent": 100.0,
        "output_path": output_path,
    }


def create_error_message(
    job_id: str,
    error_message: str,
    error_code: Optional[str] = None,
) -> dict[str, Any]:
    """Create a standardized error message."""
    return {
        "type": "error",
        "job_id": job_id,
        "status": "failed",
        "error_message": error_message,
        "error_code": error_code,
    }


websocket_manager = WebSocketManager()
progress_notifier = ExportProgressNotifier(websocket_manager)
