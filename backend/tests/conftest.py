from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from studynode import create_app
from studynode.config import settings


@pytest.fixture
def now():
    return datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "studynode_data_dir", tmp_path)
    return tmp_path / settings.sqlite_filename


@pytest.fixture
def client(db_path):
    with TestClient(create_app()) as client:
        yield client


@pytest.fixture
def deck(client):
    res = client.post("/decks/", json={"name": "Biology", "category": "science"})
    assert res.status_code == 201
    return res.json()


@pytest.fixture
def make_card(client, deck):
    def _make(question="What is ATP?", answer="Energy currency", **extra):
        body = {"deck_id": deck["id"], "question": question, "answer": answer, **extra}
        res = client.post("/quiz/cards", json=body)
        assert res.status_code == 201
        return res.json()

    return _make
