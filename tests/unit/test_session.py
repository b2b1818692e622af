"""Unit tests for session.py - read tracking and freshness."""

import os

import pytest

from toolguard.session import SessionContext, sha256_bytes


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    (root / "a.txt").write_text("alpha\n")
    return root


class TestSessionContext:
    """Tests for SessionContext."""

    def test_project_root_is_canonical(self, tmp_path, project):
        link = tmp_path / "link"
        os.symlink(project, link)
        session = SessionContext(link)
        assert session.project_root == project.resolve()

    def test_rejects_missing_root(self, tmp_path):
        with pytest.raises(NotADirectoryError):
            SessionContext(tmp_path / "missing")

    def test_project_root_is_read_only(self, project):
        session = SessionContext(project)
        with pytest.raises(AttributeError):
            session.project_root = project / "elsewhere"

    def test_session_ids_are_unique(self, project):
        assert SessionContext(project).session_id != SessionContext(project).session_id

    def test_explicit_session_id(self, project):
        assert SessionContext(project, session_id="agent-1").session_id == "agent-1"


class TestReadTracking:
    """Tests for read-before-write evidence."""

    def test_unread_file_is_not_read(self, project):
        session = SessionContext(project)
        assert session.was_read(project / "a.txt") is False

    def test_mark_read_from_disk(self, project):
        session = SessionContext(project)
        record = session.mark_read(project / "a.txt")
        assert record.sha256 == sha256_bytes(b"alpha\n")
        assert record.size == 6
        assert session.was_read(project / "a.txt") is True

    def test_mark_read_with_shown_content(self, project):
        session = SessionContext(project)
        session.mark_read(project / "a.txt", "alpha\n")
        assert session.was_read(project / "a.txt") is True

    def test_external_change_invalidates_read(self, project):
        session = SessionContext(project)
        session.mark_read(project / "a.txt")
        (project / "a.txt").write_text("beta!\n")
        assert session.was_read(project / "a.txt") is False
        # The stale record is kept so callers can tell "stale" from "never read".
        assert session.record_for(project / "a.txt") is not None

    def test_same_size_change_invalidates_read(self, project):
        session = SessionContext(project)
        session.mark_read(project / "a.txt")
        (project / "a.txt").write_text("ALPHA\n")
        assert session.was_read(project / "a.txt") is False

    def test_deleted_file_is_not_read(self, project):
        session = SessionContext(project)
        session.mark_read(project / "a.txt")
        (project / "a.txt").unlink()
        assert session.was_read(project / "a.txt") is False

    def test_own_write_counts_as_read(self, project):
        session = SessionContext(project)
        (project / "a.txt").write_text("written\n")
        session.mark_written(project / "a.txt", b"written\n")
        assert session.was_read(project / "a.txt") is True

    def test_forget(self, project):
        session = SessionContext(project)
        session.mark_read(project / "a.txt")
        session.forget(project / "a.txt")
        assert session.record_for(project / "a.txt") is None
        assert session.tracked_paths() == []

    def test_sessions_do_not_share_reads(self, project):
        first = SessionContext(project)
        second = SessionContext(project)
        first.mark_read(project / "a.txt")
        assert second.was_read(project / "a.txt") is False

    def test_matches_read_uses_given_bytes(self, project):
        session = SessionContext(project)
        session.mark_read(project / "a.txt")
        data = (project / "a.txt").read_bytes()
        assert session.matches_read(project / "a.txt", data)
        assert not session.matches_read(project / "a.txt", data + b"more")
        assert not session.matches_read(project / "b.txt", data)

    def test_tracked_paths_sorted(self, project):
        (project / "b.txt").write_text("b")
        session = SessionContext(project)
        session.mark_read(project / "b.txt")
        session.mark_read(project / "a.txt")
        assert session.tracked_paths() == [str(project / "a.txt"), str(project / "b.txt")]

    def test_mutation_lock_is_reentrant(self, project):
        session = SessionContext(project)
        with session.mutation():
            with session.mutation():
                session.mark_read(project / "a.txt")
        assert session.was_read(project / "a.txt")
