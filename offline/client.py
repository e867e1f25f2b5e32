"""
offline/client.py -- API client that falls back to the offline store.

Every successful worker fetch is cached in the OfflineStore. When the backend
cannot be reached (connection refused, DNS failure, timeout) the cached copy
is served instead, and worker registrations are queued locally until
sync_pending() can deliver them.

HTTP errors are not connectivity problems: a 403 or 404 from a reachable
backend raises ApiError and never falls back to the cache.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from core.config import get_settings
from offline.store import OfflineStore

logger = logging.getLogger("migranthealth.offline")

_OFFLINE_ERRORS = (requests.ConnectionError, requests.Timeout)


class BackendUnavailable(Exception):
    """The API could not be reached and no cached copy exists."""


class ApiError(Exception):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


@dataclass
class ClientResult:
    data: dict
    source: str  # "remote" | "cache" | "pending"


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message", "")
    return str(error or resp.reason)


class HealthRecordClient:
    def __init__(
        self,
        store: OfflineStore,
        base_url: Optional[str] = None,
        timeout: int = 10,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.store = store
        self.base_url = (base_url or get_settings().api_base_url).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, auth: bool = True, **kwargs) -> dict:
        headers = kwargs.pop("headers", {})
        if auth and self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        resp = self.session.request(
            method, f"{self.base_url}{path}", headers=headers, timeout=self.timeout, **kwargs
        )
        if resp.status_code >= 400:
            raise ApiError(resp.status_code, _error_message(resp))
        return resp.json()

    def _authed(self, method: str, path: str, **kwargs) -> dict:
        """Send an authenticated request, refreshing the token once on 401."""
        try:
            return self._request(method, path, **kwargs)
        except ApiError as e:
            if e.status_code != 401 or not self.refresh_token:
                raise
            self.refresh()
            return self._request(method, path, **kwargs)

    def _store_tokens(self, body: dict) -> None:
        tokens = body.get("tokens") or {}
        self.access_token = tokens.get("accessToken")
        self.refresh_token = tokens.get("refreshToken", self.refresh_token)

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> dict:
        """Log in and keep the returned tokens. Login has no offline mode."""
        try:
            body = self._request("POST", "/api/auth/login", auth=False, json={"email": email, "password": password})
        except _OFFLINE_ERRORS as e:
            raise BackendUnavailable("Cannot log in while offline") from e
        self._store_tokens(body)
        return body

    def refresh(self) -> dict:
        if not self.refresh_token:
            raise ApiError(401, "No refresh token")
        body = self._request("POST", "/api/auth/refresh", auth=False, json={"refreshToken": self.refresh_token})
        self._store_tokens(body)
        return body

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def get_worker(self, worker_id: str) -> ClientResult:
        try:
            body = self._authed("GET", f"/api/workers/{worker_id}")
        except _OFFLINE_ERRORS as e:
            logger.warning("Backend unreachable, reading %s from offline store: %s", worker_id, e)
            cached = self.store.get_worker(worker_id)
            if cached is None:
                raise BackendUnavailable(f"No offline copy of {worker_id}") from e
            self.store.log_access("offline_cache_access", worker_id)
            return ClientResult(data=cached, source="cache")
        worker = body.get("worker", {})
        self.store.save_worker(worker)
        self.store.log_access("view_worker_record", worker_id)
        return ClientResult(data=worker, source="remote")

    def register_worker(self, data: dict) -> ClientResult:
        """Register a worker, or queue the registration when offline.

        Queued registrations are also kept as a local worker record under
        their pending ID so they show up in offline listings.
        """
        try:
            body = self._request("POST", "/api/workers/register", auth=False, json=data)
        except _OFFLINE_ERRORS:
            pending_id = self.store.queue_pending("worker_registration", data)
            local = {k: v for k, v in data.items() if k != "password"}
            self.store.save_worker({**local, "workerId": pending_id, "pending": True})
            self.store.log_access("worker_registration_queued", pending_id)
            logger.info("Backend unreachable, queued worker registration %s", pending_id)
            return ClientResult(data={"workerId": pending_id, "pending": True}, source="pending")
        self._store_tokens(body)
        return ClientResult(data=body, source="remote")

    def sync_pending(self) -> int:
        """Deliver queued registrations. Returns how many were accepted.

        Stops at the first connectivity failure and leaves the remaining
        entries queued. Entries the backend rejects (for example a 409 on a
        phone number registered meanwhile) are dropped with a warning.
        """
        delivered = 0
        for entry in self.store.list_pending():
            if entry.get("kind") != "worker_registration":
                continue
            try:
                self._request("POST", "/api/workers/register", auth=False, json=entry["payload"])
            except _OFFLINE_ERRORS:
                logger.info("Backend still unreachable, %d registrations delivered", delivered)
                break
            except ApiError as e:
                logger.warning("Backend rejected queued registration %s: %s", entry["id"], e)
            else:
                delivered += 1
            self.store.remove_pending(entry["id"])
            self.store.delete_worker(entry["id"])
        return delivered
