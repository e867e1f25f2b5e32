"""Unit tests for offline/client.py -- remote-first access with offline fallback.

The requests session is a MagicMock, so "backend down" is simulated by
raising requests.ConnectionError from session.request.
"""

from unittest.mock import MagicMock

import pytest
import requests

from offline import crypto
from offline.client import ApiError, BackendUnavailable, HealthRecordClient
from offline.store import OfflineStore


def _response(status_code: int, body: dict) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = body
    resp.text = str(body)
    resp.reason = "reason"
    return resp


@pytest.fixture
def store(tmp_path):
    s = OfflineStore(db_path=tmp_path / "client.db", master_key=crypto.generate_key())
    yield s
    s.close()


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(store, session):
    return HealthRecordClient(store, base_url="http://api.test/", session=session)


WORKER = {"workerId": "MW_1", "fullName": "Kavya", "allergies": ["pollen"]}


def test_login_stores_tokens(client, session):
    session.request.return_value = _response(
        200, {"success": True, "tokens": {"accessToken": "A1", "refreshToken": "R1", "expiresIn": 86400}}
    )
    client.login("k@example.com", "password123")
    assert client.access_token == "A1"
    assert client.refresh_token == "R1"
    method, url = session.request.call_args.args
    assert (method, url) == ("POST", "http://api.test/api/auth/login")


def test_login_offline_raises(client, session):
    session.request.side_effect = requests.ConnectionError("refused")
    with pytest.raises(BackendUnavailable):
        client.login("k@example.com", "password123")


def test_get_worker_caches_remote_result(client, session, store):
    client.access_token = "A1"
    session.request.return_value = _response(200, {"success": True, "worker": WORKER})
    result = client.get_worker("MW_1")
    assert result.source == "remote"
    assert result.data["fullName"] == "Kavya"
    assert session.request.call_args.kwargs["headers"]["Authorization"] == "Bearer A1"
    assert store.get_worker("MW_1")["allergies"] == ["pollen"]


def test_get_worker_falls_back_to_cache(client, session, store):
    store.save_worker(WORKER)
    session.request.side_effect = requests.ConnectionError("refused")
    result = client.get_worker("MW_1")
    assert result.source == "cache"
    assert result.data["allergies"] == ["pollen"]
    assert store.audit_logs()[-1]["action"] == "offline_cache_access"


def test_get_worker_offline_without_cache(client, session):
    session.request.side_effect = requests.Timeout("slow")
    with pytest.raises(BackendUnavailable):
        client.get_worker("MW_404")


def test_http_error_does_not_fall_back(client, session, store):
    store.save_worker(WORKER)
    session.request.return_value = _response(403, {"error": {"code": "forbidden", "message": "Insufficient permissions"}})
    with pytest.raises(ApiError) as exc_info:
        client.get_worker("MW_1")
    assert exc_info.value.status_code == 403
    assert exc_info.value.message == "Insufficient permissions"


def test_401_triggers_one_refresh(client, session):
    client.access_token = "OLD"
    client.refresh_token = "R1"
    session.request.side_effect = [
        _response(401, {"error": {"code": "unauthorized", "message": "Invalid or expired token"}}),
        _response(200, {"success": True, "tokens": {"accessToken": "NEW", "refreshToken": "R2"}}),
        _response(200, {"success": True, "worker": WORKER}),
    ]
    result = client.get_worker("MW_1")
    assert result.source == "remote"
    assert client.access_token == "NEW"
    assert session.request.call_count == 3


def test_register_worker_queues_when_offline(client, session, store):
    session.request.side_effect = requests.ConnectionError("refused")
    result = client.register_worker({"fullName": "Offline Oma", "phoneNumber": "9400000001", "password": "secret123"})
    assert result.source == "pending"
    pending_id = result.data["workerId"]

    assert store.list_pending()[0]["id"] == pending_id
    local = store.get_worker(pending_id)
    assert local["pending"] is True
    assert "password" not in local


def test_sync_pending_delivers_and_clears(client, session, store):
    session.request.side_effect = requests.ConnectionError("refused")
    queued = client.register_worker({"fullName": "A", "phoneNumber": "9400000002", "password": "secret123"})
    client.register_worker({"fullName": "B", "phoneNumber": "9400000003", "password": "secret123"})

    session.request.side_effect = [
        _response(201, {"success": True, "worker": {"workerId": "MW_A"}}),
        _response(409, {"error": {"code": "conflict", "message": "Worker with this phone number already exists"}}),
    ]
    assert client.sync_pending() == 1
    assert store.list_pending() == []
    assert store.get_worker(queued.data["workerId"]) is None


def test_sync_pending_stops_when_still_offline(client, session, store):
    session.request.side_effect = requests.ConnectionError("refused")
    client.register_worker({"fullName": "C", "phoneNumber": "9400000004", "password": "secret123"})
    assert client.sync_pending() == 0
    assert len(store.list_pending()) == 1
