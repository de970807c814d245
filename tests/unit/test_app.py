from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from src.mediagen.config import AppConfig, load_config
from src.mediagen.domain.models import ProviderKind
from src.mediagen.lifecycle import build_worker
from src.mediagen.main import create_app


@pytest.fixture
def config(monkeypatch, tmp_path: Path) -> AppConfig:
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'app.db'}")
    monkeypatch.setenv("STORAGE_DIR", str(tmp_path / "files"))
    monkeypatch.setenv("DEFAULT_PROVIDER_KIND", "Gemini")
    monkeypatch.setenv("DEFAULT_PROVIDER_API_KEY", "env-key")
    monkeypatch.setenv("DISPATCH_INTERVAL_SECONDS", "0.5")
    return load_config()


def test_load_config_reads_environment(config: AppConfig, tmp_path: Path) -> None:
    assert config.storage_dir.is_dir()
    assert config.provider_defaults.kind is ProviderKind.GEMINI
    assert config.provider_defaults.api_key == "env-key"
    assert config.provider_defaults.host == "https://grsai.dakka.com.cn"
    assert config.dispatch.dispatch_interval_seconds == 0.5
    assert config.dispatch.poll_interval_seconds == 2.0
    assert config.dispatch.timeout_floor_seconds == 30
    assert config.dispatch.timeout_default_seconds == 600


def test_build_worker_wires_sqlalchemy_backends(config: AppConfig) -> None:
    worker = build_worker(config)

    assert worker.provider_defaults is config.provider_defaults
    assert worker.generations.list_pending() == []


def test_healthz_reports_dispatcher(config: AppConfig) -> None:
    app = create_app(config)

    with TestClient(app) as client:
        response = client.get("/healthz")
        assert app.state.dispatcher is not None

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "in_flight": 0}
    assert app.state.dispatcher is None


def test_dispatcher_can_be_disabled(config: AppConfig) -> None:
    app = create_app(config)
    app.state.disable_dispatcher = True

    with TestClient(app) as client:
        assert client.get("/healthz").json() == {"status": "ok", "in_flight": 0}
        assert app.state.dispatcher is None
