"""Tests for YAML and environment configuration."""
import pytest

from asic_scanner.config.settings import Settings, load_settings

ENV_VARS = ("SCANNER_CONFIG", "SCAN_TIMEOUT", "SCAN_RETRIES", "SCAN_PORT_CHECK",
            "POLL_SECONDS", "SCANNER_DATA_DIR", "PORT")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_defaults():
    settings = load_settings()
    assert settings.scan.identification_timeout == 5.0
    assert settings.scan.connectivity_retries == 2
    assert settings.scan.port_check is True
    assert settings.polling.interval == 10
    assert settings.registry.history_capacity == 288
    assert settings.auto_scan.interval == 120


def test_yaml_overrides_defaults(tmp_path):
    (tmp_path / "config.yaml").write_text(
        "scan:\n"
        "  identification_timeout: 8\n"
        "  port_check: false\n"
        "polling:\n"
        "  interval: 30\n"
        "auto_scan:\n"
        "  enabled: true\n"
    )
    settings = load_settings()
    assert settings.scan.identification_timeout == 8
    assert settings.scan.port_check is False
    assert settings.scan.connectivity_retries == 2
    assert settings.polling.interval == 30
    assert settings.auto_scan.enabled is True


def test_local_file_preferred(tmp_path):
    (tmp_path / "config.yaml").write_text("polling:\n  interval: 30\n")
    (tmp_path / "config.local.yaml").write_text("polling:\n  interval: 40\n")
    assert load_settings().polling.interval == 40


def test_explicit_path(tmp_path):
    path = tmp_path / "custom.yaml"
    path.write_text("scan:\n  connectivity_retries: 4\n")
    assert load_settings(str(path)).scan.connectivity_retries == 4


def test_environment_wins_over_yaml(tmp_path, monkeypatch):
    (tmp_path / "config.yaml").write_text("scan:\n  identification_timeout: 8\n")
    monkeypatch.setenv("SCAN_TIMEOUT", "2.5")
    monkeypatch.setenv("SCAN_RETRIES", "0")
    monkeypatch.setenv("SCAN_PORT_CHECK", "off")
    monkeypatch.setenv("POLL_SECONDS", "15")
    monkeypatch.setenv("SCANNER_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("PORT", "9000")

    settings = load_settings()
    assert settings.scan.identification_timeout == 2.5
    assert settings.scan.connectivity_retries == 0
    assert settings.scan.port_check is False
    assert settings.polling.interval == 15
    assert settings.data.recordings_dir == str(tmp_path / "data" / "recordings")
    assert settings.app.port == 9000


def test_unknown_keys_ignored(tmp_path):
    (tmp_path / "config.yaml").write_text("scan:\n  bogus: 1\n  probe_port: 4029\n")
    assert load_settings().scan.probe_port == 4029


@pytest.mark.parametrize("mutate", [
    lambda s: setattr(s.scan, "identification_timeout", 0),
    lambda s: setattr(s.scan, "connectivity_retries", -1),
    lambda s: setattr(s.concurrency, "floor", 10),
    lambda s: setattr(s.concurrency, "ceiling", 1000),
    lambda s: setattr(s.concurrency, "decrease_factor", 1.5),
    lambda s: setattr(s.polling, "interval", 2),
    lambda s: setattr(s.registry, "history_capacity", 0),
])
def test_validate_rejects(mutate):
    settings = Settings()
    mutate(settings)
    with pytest.raises(ValueError):
        settings.validate()


def test_invalid_environment_rejected(monkeypatch):
    monkeypatch.setenv("POLL_SECONDS", "1")
    with pytest.raises(ValueError):
        load_settings()
