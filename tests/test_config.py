"""Configuration, project registry and deployment archives."""

import io
import tarfile

import pytest

from studio_transfer.archive import SourceFile, pack_files, sanitize_name, unpack_archive
from studio_transfer.config import (
    ProjectCredentials,
    ProjectRegistry,
    TransferConfig,
    load_config,
    normalize_endpoint,
    resolve_project,
)
from studio_transfer.errors import ConfigError
from studio_transfer.utils import format_duration, format_file_size


# =============================================================================
# Test Configuration
# =============================================================================

ENDPOINT = "https://cloud.example.io/v1"


class TestEndpoint:
    """Endpoint normalization."""

    @pytest.mark.parametrize("raw, expected", [
        ("cloud.example.io", ENDPOINT),
        ("https://cloud.example.io/", ENDPOINT),
        ("https://cloud.example.io/v1", ENDPOINT),
        ("https://cloud.example.io/v1//", ENDPOINT),
        ("http://localhost:8080", "http://localhost:8080/v1"),
        ("", ""),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_endpoint(raw) == expected


class TestProjectCredentials:
    """Credential validation and environment loading."""

    def test_incomplete_credentials_rejected(self):
        with pytest.raises(ConfigError, match="missing or incomplete"):
            ProjectCredentials(endpoint=ENDPOINT, project_id="p1", api_key="")

    def test_to_dict_hides_key(self):
        credentials = ProjectCredentials("cloud.example.io", " p1 ", "secret", name="prod")

        assert credentials.endpoint == ENDPOINT
        assert credentials.project_id == "p1"
        assert "api_key" not in credentials.to_dict()
        assert credentials.to_dict(include_key=True)["api_key"] == "secret"
        assert credentials.label == "prod"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("STUDIO_SOURCE_ENDPOINT", "cloud.example.io")
        monkeypatch.setenv("STUDIO_SOURCE_PROJECT", "p1")
        monkeypatch.setenv("STUDIO_SOURCE_KEY", "k1")

        credentials = resolve_project(None, "SOURCE")

        assert (credentials.endpoint, credentials.project_id, credentials.api_key) == (ENDPOINT, "p1", "k1")
        assert credentials.label == "source"

    def test_from_env_missing(self, monkeypatch):
        for suffix in ("ENDPOINT", "PROJECT", "KEY"):
            monkeypatch.delenv(f"STUDIO_DEST_{suffix}", raising=False)

        with pytest.raises(ConfigError):
            ProjectCredentials.from_env("dest")


class TestTransferConfig:
    """Defaults, validation and file/env loading."""

    def test_defaults(self):
        config = TransferConfig()

        assert (config.document_page_size, config.file_page_size, config.transfer_page_size) == (100, 50, 50)
        assert (config.worker_poll_interval, config.worker_poll_retries, config.transfer_poll_retries) == (2.0, 20, 30)
        assert (config.worker_runtime, config.worker_timeout) == ("node-18.0", 15)

    @pytest.mark.parametrize("overrides", [
        {"document_page_size": 0},
        {"file_page_size": 101},
        {"worker_poll_retries": 0},
        {"attribute_delay": -1},
        {"log_level": "chatty"},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ConfigError):
            TransferConfig(**overrides)

    def test_load_yaml_with_env_override(self, tmp_path, monkeypatch):
        path = tmp_path / "studio.yaml"
        path.write_text("document_page_size: 25\nlog_level: debug\nworker_poll_interval: 5\nfuture_knob: 1\n")
        monkeypatch.setenv("STUDIO_WORKER_POLL_INTERVAL", "0.5")
        monkeypatch.delenv("STUDIO_LOG_LEVEL", raising=False)

        config = load_config(str(path))

        assert config.document_page_size == 25
        assert config.log_level == "DEBUG"
        assert config.worker_poll_interval == 0.5
        assert config.extra_options == {"future_knob": 1}

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(str(tmp_path / "nope.yaml"))

    def test_bad_env_value(self, monkeypatch):
        monkeypatch.setenv("STUDIO_REQUEST_TIMEOUT", "soon")

        with pytest.raises(ConfigError, match="STUDIO_REQUEST_TIMEOUT"):
            load_config()


class TestProjectRegistry:
    """Named projects in YAML."""

    def test_add_get_remove(self, tmp_path):
        path = tmp_path / "projects.yaml"
        registry = ProjectRegistry(str(path))
        registry.add(ProjectCredentials("cloud.example.io", "p1", "k1", name="prod"))

        reloaded = ProjectRegistry(str(path))
        credentials = reloaded.get("prod")

        assert reloaded.names() == ["prod"]
        assert (credentials.project_id, credentials.api_key, credentials.name) == ("p1", "k1", "prod")
        assert resolve_project("prod", "SOURCE", reloaded).project_id == "p1"
        assert reloaded.remove("prod") is True
        assert reloaded.remove("prod") is False
        assert ProjectRegistry(str(path)).names() == []

    def test_duplicates_and_bad_names(self, tmp_path):
        registry = ProjectRegistry(str(tmp_path / "projects.yaml"))
        registry.add(ProjectCredentials(ENDPOINT, "p1", "k1", name="prod"))

        with pytest.raises(ConfigError, match="already registered"):
            registry.add(ProjectCredentials(ENDPOINT, "p2", "k2", name="prod"))
        registry.add(ProjectCredentials(ENDPOINT, "p2", "k2", name="prod"), overwrite=True)
        assert registry.get("prod").project_id == "p2"

        with pytest.raises(ConfigError, match="Invalid project name"):
            registry.add(ProjectCredentials(ENDPOINT, "p3", "k3", name="bad name"))
        with pytest.raises(ConfigError, match="Unknown project"):
            registry.get("staging")

    def test_env_var_location(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        monkeypatch.setenv(ProjectRegistry.ENV_VAR, str(path))

        assert ProjectRegistry().registry_path == path.resolve()


# =============================================================================
# Archives
# =============================================================================

class TestArchive:
    """tar.gz packing for function deployments."""

    def test_pack_and_unpack(self):
        archive = pack_files([
            SourceFile.text("./package.json", "{}"),
            ("/src/main.js", "export default () => {};"),
            ("assets/logo.bin", b"\x00\x01"),
        ])

        files = {f.name: f.content for f in unpack_archive(archive)}

        assert files == {
            "package.json": b"{}",
            "src/main.js": b"export default () => {};",
            "assets/logo.bin": b"\x00\x01",
        }

    def test_pack_nothing(self):
        with pytest.raises(ValueError):
            pack_files([])

    def test_unpack_skips_directories(self):
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
            directory = tarfile.TarInfo("src")
            directory.type = tarfile.DIRTYPE
            tar.addfile(directory)
            info = tarfile.TarInfo("./src/index.js")
            info.size = 2
            tar.addfile(info, io.BytesIO(b"//"))

        assert [f.name for f in unpack_archive(buffer.getvalue())] == ["src/index.js"]

    def test_unpack_empty(self):
        assert unpack_archive(b"") == []

    def test_sanitize_name(self):
        assert sanitize_name("././a/b.js") == "a/b.js"
        assert sanitize_name("/abs.js") == "abs.js"


# =============================================================================
# Formatting
# =============================================================================

class TestFormatting:
    """Sizes and durations shown in logs and reports."""

    @pytest.mark.parametrize("size, expected", [
        (0, "0 B"),
        (1023, "1023 B"),
        (1024, "1.0 KB"),
        (1536, "1.5 KB"),
        (5 * 1024 ** 2, "5.0 MB"),
        (3 * 1024 ** 5, "3072.0 TB"),
    ])
    def test_file_size(self, size, expected):
        assert format_file_size(size) == expected

    @pytest.mark.parametrize("seconds, expected", [
        (2.5, "2.5s"),
        (90, "1m 30s"),
        (8100, "2h 15m"),
    ])
    def test_duration(self, seconds, expected):
        assert format_duration(seconds) == expected
