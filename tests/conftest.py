import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


NOW = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("DB_PATH", str(db_path))
    return str(db_path)


@pytest.fixture
def stores(temp_db):
    import db

    opened = db.open_stores(temp_db)
    yield opened
    opened.database.close()


@pytest.fixture
def service(stores):
    from recommendations import InsightService

    return InsightService(stores)


@pytest.fixture
def now():
    return NOW
