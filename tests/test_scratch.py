"""Tests for the job scratch directory."""

import shutil
from unittest.mock import patch

import pytest

from timeline_export.exceptions import CleanupWarning
from timeline_export.render.scratch import ScratchDirectory


class TestScratchDirectory:
    """Tests for ScratchDirectory."""

    def test_create_embeds_job_id(self, tmp_path):
        scratch = ScratchDirectory("job42", prefix=str(tmp_path / "export-"))
        root = scratch.create()

        assert root.is_dir()
        assert root.name.startswith("export-job42_")
        assert scratch.create() == root  # idempotent
        scratch.cleanup()

    def test_two_jobs_never_share(self, tmp_path):
        first = ScratchDirectory("same", prefix=str(tmp_path / "x-"))
        second = ScratchDirectory("same", prefix=str(tmp_path / "x-"))

        assert first.create() != second.create()
        first.cleanup()
        second.cleanup()

    def test_root_before_create_raises(self):
        with pytest.raises(RuntimeError):
            ScratchDirectory("job").root

    def test_cleanup_removes_tree(self, tmp_path):
        scratch = ScratchDirectory("job", prefix=str(tmp_path / "x-"))
        scratch.create()
        (scratch.path("nested")).mkdir()
        scratch.path("nested/clip_a.mp4").write_bytes(b"\x00")

        assert scratch.cleanup() is True
        assert not scratch.exists

    def test_cleanup_without_create_is_noop(self):
        assert ScratchDirectory("job").cleanup() is True

    def test_cleanup_failure_warns_instead_of_raising(self, tmp_path):
        scratch = ScratchDirectory("job", prefix=str(tmp_path / "x-"))
        scratch.create()

        with patch.object(shutil, "rmtree", side_effect=PermissionError("busy")):
            with pytest.warns(CleanupWarning):
                assert scratch.cleanup() is False

        assert scratch.exists
        scratch.cleanup()

    def test_context_manager(self, tmp_path):
        with ScratchDirectory("job", prefix=str(tmp_path / "x-")) as scratch:
            root = scratch.root
            assert root.exists()
        assert not root.exists()
