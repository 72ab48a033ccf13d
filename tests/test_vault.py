"""Tests for claw.lib.vault module."""

import pytest

from claw.lib.vault import (
    SESSION_LOG_HEADER,
    SessionLogEntry,
    Vault,
    join_frontmatter,
    split_frontmatter,
)


class TestFrontmatter:
    """Tests for split_frontmatter() and join_frontmatter()."""

    def test_split(self):
        data, body = split_frontmatter("---\nid: auth\nstatus: paused\n---\n# Auth\n")
        assert data == {"id": "auth", "status": "paused"}
        assert body == "# Auth\n"

    def test_no_frontmatter(self):
        assert split_frontmatter("# Plain\n") == ({}, "# Plain\n")

    def test_unterminated_frontmatter_is_body(self):
        text = "---\nid: auth\n# no end\n"
        assert split_frontmatter(text) == ({}, text)

    def test_malformed_yaml_is_body(self):
        text = "---\nid: [unclosed\n---\nbody\n"
        assert split_frontmatter(text) == ({}, text)

    def test_join_round_trip(self):
        text = join_frontmatter({"id": "auth", "stories": [{"id": "1"}]}, "# Body\n")
        assert split_frontmatter(text) == ({"id": "auth", "stories": [{"id": "1"}]}, "# Body\n")

    def test_join_without_frontmatter(self):
        assert join_frontmatter(None, "body") == "body"


class TestVault:
    """Tests for Vault note operations."""

    def test_write_and_read(self, tmp_path):
        vault = Vault(tmp_path)
        vault.write_note("Projects/demo/notes/a", "hello\n", {"k": 1})

        assert (tmp_path / "Projects" / "demo" / "notes" / "a.md").exists()
        note = vault.read_note("Projects/demo/notes/a")
        assert note.content == "hello\n"
        assert note.frontmatter == {"k": 1}

    def test_read_missing(self, tmp_path):
        assert Vault(tmp_path).read_note("missing") is None

    def test_rejects_parent_segments(self, tmp_path):
        with pytest.raises(ValueError, match="escapes"):
            Vault(tmp_path).read_note("../outside")

    def test_delete(self, tmp_path):
        vault = Vault(tmp_path)
        vault.write_note("a", "x")
        assert vault.delete_note("a") is True
        assert vault.exists("a") is False
        assert vault.delete_note("a") is False

    def test_list_directory(self, tmp_path):
        vault = Vault(tmp_path)
        vault.write_note("features/b/_feature", "x")
        vault.write_note("features/a/_feature", "x")
        vault.write_note("features/index", "x")
        (tmp_path / "features" / ".hidden").mkdir()

        assert vault.list_directory("features") == (["a", "b"], ["index"])
        assert vault.list_directory("nowhere") == ([], [])


class TestSessionLog:
    """Tests for append_session_log()."""

    def test_creates_table(self, tmp_path):
        vault = Vault(tmp_path)
        assert vault.append_session_log("log", SessionLogEntry("2026-03-01 09:00", "Started", "auth"))

        content = vault.read_note("log").content
        assert content.startswith(SESSION_LOG_HEADER)
        assert content.endswith("| 2026-03-01 09:00 | Started | auth |\n")

    def test_appends_rows_in_order(self, tmp_path):
        vault = Vault(tmp_path)
        vault.append_session_log("log", SessionLogEntry("d1", "Started", "a"))
        vault.append_session_log("log", SessionLogEntry("d2", "Completed", "b"))

        rows = [line for line in vault.read_note("log").content.splitlines() if line.startswith("| d")]
        assert rows == ["| d1 | Started | a |", "| d2 | Completed | b |"]

    def test_escapes_pipes_and_newlines(self, tmp_path):
        vault = Vault(tmp_path)
        vault.append_session_log("log", SessionLogEntry("d", "Blocked", "a|b\nc"))
        assert "| d | Blocked | a\\|b c |" in vault.read_note("log").content

    def test_adds_table_to_existing_note(self, tmp_path):
        vault = Vault(tmp_path)
        vault.write_note("log", "Intro text\n", {"kind": "log"})
        vault.append_session_log("log", SessionLogEntry("d", "Started", "x"))

        note = vault.read_note("log")
        assert note.frontmatter == {"kind": "log"}
        assert note.content.startswith("Intro text\n\n# Session Log")

    def test_io_failure_returns_false(self, tmp_path):
        target = tmp_path / "file"
        target.write_text("not a dir")
        vault = Vault(target)
        assert vault.append_session_log("log", SessionLogEntry("d", "a", "b")) is False
