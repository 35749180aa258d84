from __future__ import annotations

import pytest

from config import Config
from db import Store
from tests.fakes import FakeClient


@pytest.fixture
def config(tmp_path):
    return Config(
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        reports_dir=str(tmp_path / "reports"),
        log_dir=str(tmp_path / "log"),
        enable_scheduler=False,
        check_pause=0,
        backup_pause=0,
        agent_backup_dir=str(tmp_path / "backups"),
    )


@pytest.fixture
def store(config):
    s = Store(config.database_url)
    s.init_db()
    yield s
    s.dispose()


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def site_id(store):
    return store.add_site("https://shop.example.com", "Shop", "k" * 32)
