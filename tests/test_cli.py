"""Tests for CLI commands.

Registration checks plus an end-to-end run over a small mbox archive.
"""

import json

import pytest

from legacy_import.runner.main import create_cli, main
from legacy_import.state_store import DocumentStatus, ImportStore

from .conftest import SAMPLE_INVOICE_TEXT, SAMPLE_LETTER_TEXT, make_docx, write_mbox

EXPECTED_COMMANDS = {
    "init-config",
    "create-session",
    "count",
    "extract",
    "extract-text",
    "detect",
    "classify",
    "allocate",
    "reassign",
    "stalled",
    "release",
    "decide",
    "categories",
    "merge-categories",
    "progress",
    "status",
    "snapshot",
    "export",
    "cleanup",
}


class TestCLICommandRegistry:
    """Tests for CLI command registration."""

    def test_all_commands_registered(self):
        """Every pipeline step has a subcommand."""
        parser = create_cli()
        subparsers = next(a for a in parser._actions if a.dest == "command")

        assert set(subparsers.choices) == EXPECTED_COMMANDS

    def test_decide_skip_defaults_to_manual(self):
        """--skip without a reason means a manual skip."""
        args = create_cli().parse_args(["decide", "doc-1", "ana", "--skip"])

        assert args.skip == "Manual"
        assert args.category is None

    def test_decide_requires_a_decision(self):
        """decide needs --category or --skip."""
        with pytest.raises(SystemExit):
            create_cli().parse_args(["decide", "doc-1", "ana"])

    def test_decide_rejects_duplicate_reason(self):
        """Duplicate verdicts come only from the detector."""
        with pytest.raises(SystemExit):
            create_cli().parse_args(["decide", "doc-1", "ana", "--skip", "Duplicate"])

    def test_detect_choices(self):
        """detect accepts the three detectors and --revert."""
        args = create_cli().parse_args(["detect", "s1", "duplicate", "--revert"])

        assert args.detector == "duplicate"
        assert args.revert is True


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    for name in (
        "LEGACY_IMPORT_DB",
        "LEGACY_IMPORT_CATEGORIZERS",
        "OBJECT_STORE_BACKEND",
        "OBJECT_STORE_ROOT",
        "OBJECT_STORE_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(
        f"state_db_path: '{tmp_path / 'state.db'}'\n"
        "object_store:\n"
        f"  root: '{tmp_path / 'objects'}'\n"
        "extraction:\n"
        "  time_budget_seconds: null\n"
    )
    return path


@pytest.fixture
def archive(tmp_path):
    path = tmp_path / "Inbox.mbox"
    write_mbox(
        path,
        [
            (
                "Succesiune",
                "Mon, 01 Mar 2021 10:00:00 +0000",
                [("scrisoare.docx", make_docx(SAMPLE_LETTER_TEXT.strip().splitlines()))],
            ),
            (
                "Factura",
                "Thu, 15 Apr 2021 10:00:00 +0000",
                [("factura.docx", make_docx(SAMPLE_INVOICE_TEXT.strip().splitlines())), ("logo.png", b"png")],
            ),
        ],
    )
    return path


class TestCLIPipeline:
    """End-to-end runs through main()."""

    def run(self, config_file, *args) -> int:
        return main(["-c", str(config_file), *args])

    def test_full_pipeline(self, tmp_path, config_file, archive, capsys):
        """Upload, extract, classify, categorize, snapshot and export."""
        assert self.run(config_file, "create-session", str(archive), "--categorizers", "1") == 0
        store = ImportStore(tmp_path / "state.db")
        session_id = store.list_sessions()[0].id

        assert self.run(config_file, "extract", session_id, "--all") == 0
        assert store.require_session(session_id).total_documents == 2

        assert self.run(config_file, "classify", session_id) == 0
        assert store.require_session(session_id).skip_reason_counts == {"Administrative": 1}

        assert self.run(config_file, "allocate", session_id, "ana") == 0
        assert self.run(config_file, "stalled", session_id) == 0
        letter = store.list_documents(session_id, status=DocumentStatus.UNCATEGORIZED)[0]
        assert letter.file_name == "scrisoare.docx"
        assert letter.language == "Romanian"
        assert self.run(config_file, "decide", letter.id, "ana", "--category", "Succesiuni") == 0

        capsys.readouterr()
        assert self.run(config_file, "status", session_id, "--json") == 0
        status = json.loads(capsys.readouterr().out)
        assert status[0]["status"] == "ReadyForValidation"
        assert status[0]["extraction"]["isComplete"] is True

        assert self.run(config_file, "export", session_id) == 1
        assert "snapshot" in capsys.readouterr().out

        assert self.run(config_file, "snapshot", session_id, "--user", "admin") == 0
        assert self.run(config_file, "export", session_id, "--user", "admin") == 0
        assert self.run(config_file, "cleanup", session_id) == 1
        assert self.run(config_file, "cleanup", session_id, "--confirm", "--force") == 0
        assert store.require_session(session_id).cleaned_up_at is not None

    def test_unknown_session(self, config_file, capsys):
        """Domain errors print a message and exit non-zero."""
        assert self.run(config_file, "progress", "missing") == 1
        assert "Session not found" in capsys.readouterr().out

    def test_invalid_config(self, tmp_path, capsys):
        """A config that fails validation stops before any command runs."""
        path = tmp_path / "config.yaml"
        path.write_text("object_store:\n  backend: 'http'\n")

        assert main(["-c", str(path), "status"]) == 1
        assert "base_url" in capsys.readouterr().out

    def test_init_config(self, tmp_path):
        """init-config writes a loadable default file once."""
        path = tmp_path / "config.yaml"

        assert main(["-c", str(path), "init-config"]) == 0
        assert path.exists()
        assert main(["-c", str(path), "init-config"]) == 1
