import logging
import os
from pathlib import Path

import pytest

from connector_studio.core.config import DEFAULT_SCOPES, Settings
from connector_studio.core.log_config import HANDLER_NAME, configure_logging


def test_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("MONGODB_URI", "STORE_BACKEND", "OPERATION_TIMEOUT", "WATCHDOG_GRACE", "AZURE_SCOPES", "PAC_CLI_PATH"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.mongodb_uri == "mongodb://localhost:27017"
    assert settings.store_backend == "mongo"
    assert settings.pac_cli_path == "pac"
    assert settings.operation_timeout == 30
    assert settings.watchdog_timeout == 35
    assert settings.scopes == DEFAULT_SCOPES


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("PAC_CLI_PATH", "/usr/local/bin/pac")
    monkeypatch.setenv("OPERATION_TIMEOUT", "12.5")
    monkeypatch.setenv("RUNTIME_PATH", "/var/lib/connectors")
    monkeypatch.setenv("AZURE_SCOPES", "scope-a scope-b")

    settings = Settings.from_env()

    assert settings.store_backend == "memory"
    assert settings.pac_cli_path == "/usr/local/bin/pac"
    assert settings.operation_timeout == 12.5
    assert settings.runtime_path == Path("/var/lib/connectors")
    assert settings.scopes == ["scope-a", "scope-b"]


def test_dotenv_file_is_loaded(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("PAC_ENVIRONMENT_URL", raising=False)
    (tmp_path / ".env").write_text("PAC_ENVIRONMENT_URL=https://contoso.crm.dynamics.com\n")

    try:
        assert Settings.from_env().environment_url == "https://contoso.crm.dynamics.com"
    finally:
        os.environ.pop("PAC_ENVIRONMENT_URL", None)


def test_settings_are_immutable():
    settings = Settings()

    with pytest.raises(ValueError):
        settings.operation_timeout = 1


def test_configure_logging_is_idempotent():
    root = logging.getLogger()

    configure_logging("debug")
    configure_logging("INFO")

    handlers = [h for h in root.handlers if h.get_name() == HANDLER_NAME]
    assert len(handlers) == 1
    assert root.level == logging.INFO


def test_accepted_audiences_derive_from_client_and_scopes():
    settings = Settings(client_id="app-id", scopes=["https://api.powerplatform.com/.default"])

    assert settings.accepted_audiences == [
        "app-id",
        "api://app-id",
        "https://api.powerplatform.com",
        "https://api.powerplatform.com/",
    ]


def test_token_audiences_override(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("AZURE_TOKEN_AUDIENCES", "api://studio https://service.powerapps.com/")

    settings = Settings.from_env()

    assert settings.accepted_audiences == ["api://studio", "https://service.powerapps.com/"]
