"""Shared test fixtures and configuration for backend tests."""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from dmrelay.config import AppConfig, StorageSettings, reset_config, set_config
from dmrelay.main import app
from dmrelay.rooms.persistence import RoomFileBackend
from dmrelay.rooms.schemas import Message


@pytest.fixture
def backend(tmp_path):
    """A file backend writing into a fresh temporary directory."""
    return RoomFileBackend(tmp_path / "rooms")


@pytest.fixture
def make_message():
    """Build a message; ``age`` shifts its timestamp into the past."""
    def _make(text="hello", username="alice", room_id="alice_bob", age=timedelta(0)):
        return Message(
            username=username,
            text=text,
            roomId=room_id,
            time=datetime.now(timezone.utc) - age,
        )
    return _make


@pytest.fixture
def app_config(tmp_path):
    """Install a configuration that stores rooms under tmp_path."""
    cfg = AppConfig(storage=StorageSettings(data_dir=str(tmp_path / "data")))
    set_config(cfg)
    yield cfg
    reset_config()


@pytest.fixture
def api_client(app_config):
    """Provide a TestClient for the main FastAPI app with lifespan running."""
    with TestClient(app) as client:
        yield client
