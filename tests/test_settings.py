from typing import Generator

import pytest
from app import create_app

from conftest import FakeCatalogProvider, FakeEpisodeCounter
from services.settings_store import MASKED_KEY


@pytest.fixture()
def client(tmp_path) -> Generator:
    """
    Create Flask test client bound to a temp SQLite DB and key file.
    """
    db_path = tmp_path / "test_settings.db"
    key_path = tmp_path / "test_secret.key"

    app = create_app({
        "DEBUG": True,
        "DATABASE_URL": f"sqlite:///{db_path}",
        "ENCRYPTION_KEY_PATH": str(key_path),
        "CATALOG_PROVIDER": FakeCatalogProvider(),
        "EPISODE_COUNTER": FakeEpisodeCounter({}),
    })
    with app.test_client() as client:
        yield client


def test_api_settings_bootstrap_defaults(client) -> None:
    """
    First GET should create defaults and return them.
    """
    resp = client.get("/api/settings")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["jf_host"] == "127.0.0.1"
    assert data["jf_port"] == "8096"
    assert data["jf_api_key"] is None
    assert data["tvdb_cache_dir"] == ""
    assert data["stats_interval"] == 86400
    assert data["max_workers"] == 4


def test_api_settings_update_masks_key(client) -> None:
    """
    PUT should persist values; the API key never leaves the server.
    """
    payload = {
        "jf_host": "localhost",
        "jf_port": "8096",
        "jf_api_key": "secret-api-key",
        "tvdb_cache_dir": "/var/lib/jellyfin/cache/tvdb",
    }
    put = client.put("/api/settings", json=payload)
    assert put.status_code == 200
    updated = put.get_json()
    assert updated["jf_host"] == "localhost"
    assert updated["tvdb_cache_dir"] == "/var/lib/jellyfin/cache/tvdb"
    assert updated["jf_api_key"] == MASKED_KEY

    get = client.get("/api/settings")
    assert get.status_code == 200
    assert get.get_json()["jf_api_key"] == MASKED_KEY


def test_api_settings_masked_key_roundtrip_keeps_key(client) -> None:
    """
    Saving the form back with the masked key must not overwrite the stored key.
    """
    client.put("/api/settings", json={"jf_api_key": "abc123"})
    settings = client.get("/api/settings").get_json()

    resp = client.put("/api/settings", json=settings)
    assert resp.status_code == 200
    assert resp.get_json()["jf_api_key"] == MASKED_KEY


def test_api_settings_clear_key(client) -> None:
    """
    Clearing the API key sets stored ciphertext to None; response returns None.
    """
    client.put("/api/settings", json={"jf_api_key": "abc123"})
    resp = client.put("/api/settings", json={"jf_api_key": ""})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["jf_api_key"] is None

    get = client.get("/api/settings")
    assert get.status_code == 200
    assert get.get_json()["jf_api_key"] is None


def test_api_settings_rejects_bad_interval(client) -> None:
    resp = client.put("/api/settings", json={"stats_interval": -5, "max_workers": "x"})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["stats_interval"] == 86400
    assert data["max_workers"] == 4
