"""Job-scoped scratch directory for intermediate segments."""

import logging
import shutil
import tempfile
import warnings
from pathlib import Path
from typing import Optional

from timeline_export.config import get_settings
from timeline_export.exceptions import CleanupWarning

logger = logging.getLogger(__name__)


class ScratchDirectory:
    """Owns one export job's temporary directory.

    The directory name embeds the job id plus a random suffix from
    ``tempfile.mkdtemp``, so two jobs never share a directory.
    """

    def __init__(self, job_id: str, prefix: Optional[str] = None):
        self.job_id = job_id
        self.prefix = prefix if prefix is not None else get_settings().export_scratch_prefix
        self._root: Optional[Path] = None

    @property
    def root(self) -> Path:
        if self._root is None:
            raise RuntimeError("Scratch directory has not been created")
        return self._root

    @property
    def exists(self) -> bool:
        return self._root is not None and self._root.exists()

    def create(self) -> Path:
        """Create the directory (once) and return its path."""
        if self._root is None:
            self._root = Path(tempfile.mkdtemp(prefix=f"{self.prefix}{self.job_id}_"))
            logger.info(f"[SCRATCH] Created {self._root}")
        return self._root

    def path(self, name: str) -> Path:
        """Path of a file inside the scratch directory."""
        return self.root / name

    def cleanup(self) -> bool:
        """Delete the directory tree.

        Never raises: a failure here must not change the job's outcome.

        Returns:
            True if the directory is gone afterwards
        """
        if self._root is None or not self._root.exists():
            return True
        try:
            shutil.rmtree(self._root)
        except OSError as e:
            message = f"Failed to remove scratch directory {self._root}: {e}"
            logger.warning(f"[SCRATCH] {message}")
            warnings.warn(message, CleanupWarning, stacklevel=2)
            return False
        logger.info(f"[SCRATCH] Removed {self._root}")
        return True

    def __enter__(self) -> "ScratchDirectory":
        self.create()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()
