"""
Unit tests for the session credential cell.
"""
import threading

from livetrack_obs.session.credentials import SessionCell, SessionCredentials


class TestSessionCredentials:
    """Test the credentials value object."""

    def test_empty_is_incomplete(self):
        assert not SessionCredentials().is_complete

    def test_partial_is_incomplete(self):
        assert not SessionCredentials(id="abc").is_complete
        assert not SessionCredentials(token="xyz").is_complete
        assert not SessionCredentials(id="", token="xyz").is_complete

    def test_complete(self):
        assert SessionCredentials(id="abc", token="xyz").is_complete


class TestSessionCell:
    """Test the shared cell."""

    def test_starts_empty(self):
        cell = SessionCell()
        assert cell.snapshot() == SessionCredentials()
        assert cell.updated_at is None

    def test_update_replaces_pair(self):
        cell = SessionCell()

        assert cell.update("abc", "xyz") is True
        assert cell.snapshot() == SessionCredentials(id="abc", token="xyz")
        assert cell.updated_at is not None

    def test_same_credentials_unchanged(self):
        cell = SessionCell(SessionCredentials(id="abc", token="xyz"))
        assert cell.update("abc", "xyz") is False

    def test_snapshot_is_immutable_copy(self):
        cell = SessionCell()
        cell.update("abc", "xyz")
        before = cell.snapshot()
        cell.update("def", "uvw")

        assert before == SessionCredentials(id="abc", token="xyz")

    def test_logs_session_change(self, caplog):
        cell = SessionCell()
        with caplog.at_level("INFO"):
            cell.update("abc", "xyz")
        assert "abc" in caplog.text

    def test_concurrent_updates_consistent(self):
        """Test readers never observe a mixed id/token pair."""
        cell = SessionCell()
        pairs = [(f"id{i}", f"token{i}") for i in range(50)]
        mixed = []

        def writer():
            for session_id, token in pairs * 20:
                cell.update(session_id, token)

        def reader():
            for _ in range(2000):
                snap = cell.snapshot()
                if snap.id and snap.id[2:] != snap.token[5:]:
                    mixed.append(snap)

        threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert mixed == []
