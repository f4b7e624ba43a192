"""Tests for configuration loading."""

from pathlib import Path

from legacy_import.config import Config, create_default_config, load_config


class TestLoadConfig:
    """Tests for YAML loading and env overrides."""

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")

        assert config.object_store.backend == "local"
        assert config.archive.supported_extensions == ["pdf", "docx", "doc"]
        assert config.classification.scanned_min_chars == 50
        assert config.snapshot.max_age_minutes == 60
        assert config.validate() == []

    def test_default_file_round_trips(self, tmp_path):
        path = tmp_path / "config.yaml"
        create_default_config(path)

        config = load_config(path)

        assert config.extraction.batch_size == 100
        assert config.allocation.expected_categorizers == 3
        assert "elemente trimise" in config.archive.sent_folder_names
        assert config.state_db_path == Path("data/legacy_import.db")

    def test_yaml_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "archive:\n"
            "  supported_extensions: ['.PDF', 'docx']\n"
            "classification:\n"
            "  admin_threshold: 7\n"
            "allocation:\n"
            "  reassign_batch_count: 2\n"
        )

        config = load_config(path)

        assert config.archive.supported_extensions == ["pdf", "docx"]
        assert config.classification.admin_threshold == 7
        assert config.allocation.reassign_batch_count == 2

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LEGACY_IMPORT_DB", str(tmp_path / "env.db"))
        monkeypatch.setenv("OBJECT_STORE_BACKEND", "http")
        monkeypatch.setenv("OBJECT_STORE_URL", "http://storage.test")
        monkeypatch.setenv("LEGACY_IMPORT_CATEGORIZERS", "5")
        monkeypatch.setenv("LEGACY_IMPORT_TEXT_WORKERS", "not-a-number")

        config = load_config(tmp_path / "missing.yaml")

        assert config.state_db_path == tmp_path / "env.db"
        assert config.object_store.backend == "http"
        assert config.object_store.base_url == "http://storage.test"
        assert config.allocation.expected_categorizers == 5
        assert config.classification.text_workers == 4


class TestValidate:
    def test_http_backend_needs_url(self):
        config = Config()
        config.object_store.backend = "http"

        errors = config.validate()

        assert any("base_url" in e for e in errors)

    def test_rejects_bad_values(self):
        config = Config()
        config.object_store.backend = "s3"
        config.extraction.batch_size = 0
        config.allocation.expected_categorizers = 0

        errors = config.validate()

        assert len(errors) == 3
