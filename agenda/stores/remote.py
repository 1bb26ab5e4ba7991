"""Remote spreadsheet backend.

Wire protocol (JSON everywhere):
- GET  ?action=ping|test            -> {ok, message}
- GET  ?action=list                 -> {ok, data: [record, ...]}
- POST {action: "create", ...record} -> {ok, id}
- POST {action: "update", ...record} -> {ok} | {ok: false, err: "not found"}
- POST {action: "delete", id}        -> {ok} | {ok: false, err: "not found"}
- POST {action: "clear", storeId?}   -> {ok, count}
- POST {action: "syncAll", appointments: [record, ...]} -> {ok, count}

POST bodies go out as text/plain so the spreadsheet script host accepts them
without a CORS preflight. Anything that is not a JSON object reply (network
error, non-2xx, HTML error page) is BackendUnavailableError; ok:false is a
business answer.
"""
import json
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

import requests
from pydantic import ValidationError

from agenda.errors import (
    BackendRejectedError,
    BackendUnavailableError,
    ErrorKind,
    RecordNotFoundError,
    StoreResult,
)
from agenda.http_client import create_http_session
from agenda.logging_config import REQUEST_ID_HEADER, get_logger, request_context
from agenda.models import Appointment, BackendKind, SlotPolicy
from agenda.settings import ScheduleConfig
from agenda.stores.base import AppointmentStore

logger = get_logger(__name__)

NOT_FOUND_MARKERS = ("not found", "não encontrado")


def is_valid_backend_url(url: Optional[str]) -> bool:
    """Only absolute http(s) URLs are accepted."""
    if not url:
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class SheetsAppointmentStore(AppointmentStore):
    """Appointments kept in a spreadsheet behind an HTTP script."""

    kind = BackendKind.REMOTE

    def __init__(
        self,
        schedule: ScheduleConfig,
        policy: SlotPolicy,
        url: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        super().__init__(schedule, policy)
        self.url = url
        self.session = session or create_http_session()

    # -------- Connection --------

    def connect(self, url: str) -> StoreResult:
        """
        Point the store at a backend URL after a successful ping.

        The previous URL is kept when the new one does not answer.
        """
        if not is_valid_backend_url(url):
            return StoreResult.failure(ErrorKind.REJECTED, f"Invalid backend URL: {url!r}")

        previous = self.url
        self.url = url
        try:
            message = self.ping()
        except (BackendUnavailableError, BackendRejectedError, RecordNotFoundError) as exc:
            self.url = previous
            logger.error("connect_failed", error=str(exc))
            return StoreResult.failure(ErrorKind.BACKEND_UNAVAILABLE, str(exc))

        logger.info("connected", backend=self.kind.value)
        return StoreResult.success(url, message=message)

    def disconnect(self) -> None:
        self.url = None
        self.reset_cache()

    def ping(self) -> str:
        """Connectivity check; returns the backend's message."""
        payload = self._get("ping")
        return str(payload.get("message", ""))

    # -------- Transport --------

    def _get(self, action: str) -> Dict[str, Any]:
        url = self._require_url()
        with request_context() as request_id:
            logger.info("remote_request", action=action)
            try:
                response = self.session.get(
                    url,
                    params={"action": action},
                    headers={REQUEST_ID_HEADER: request_id},
                )
                response.raise_for_status()
            except requests.exceptions.RequestException as exc:
                raise BackendUnavailableError(f"{action} failed: {exc}") from exc
            return self._parse(action, response)

    def _post(self, action: str, body: Dict[str, Any]) -> Dict[str, Any]:
        url = self._require_url()
        with request_context() as request_id:
            logger.info("remote_request", action=action)
            try:
                response = self.session.post(
                    url,
                    data=json.dumps({"action": action, **body}),
                    headers={
                        "Content-Type": "text/plain;charset=utf-8",
                        REQUEST_ID_HEADER: request_id,
                    },
                )
                response.raise_for_status()
            except requests.exceptions.RequestException as exc:
                raise BackendUnavailableError(f"{action} failed: {exc}") from exc
            return self._parse(action, response)

    def _require_url(self) -> str:
        if not self.url:
            raise BackendUnavailableError("No backend URL configured")
        return self.url

    @staticmethod
    def _parse(action: str, response: requests.Response) -> Dict[str, Any]:
        """Decode a reply; raise on transport garbage or ok:false."""
        try:
            payload = response.json()
        except ValueError as exc:
            logger.error("remote_malformed_reply", action=action)
            raise BackendUnavailableError(f"{action}: malformed reply") from exc

        if not isinstance(payload, dict):
            raise BackendUnavailableError(f"{action}: malformed reply")

        # Older script versions answer with "success"/"error"
        ok = payload.get("ok", payload.get("success"))
        if not ok:
            error = str(payload.get("err") or payload.get("error") or "unknown error")
            logger.warning("remote_refused", action=action, error=error)
            if any(marker in error.lower() for marker in NOT_FOUND_MARKERS):
                raise RecordNotFoundError(error)
            raise BackendRejectedError(error)

        logger.info("remote_reply", action=action)
        return payload

    # -------- Driver hooks --------

    def _fetch_all(self) -> List[Appointment]:
        payload = self._get("list")
        records = payload.get("data", payload.get("appointments")) or []
        if not isinstance(records, list):
            raise BackendUnavailableError("list: malformed reply")

        appointments = []
        for record in records:
            if not isinstance(record, dict) or not record.get("id"):
                continue
            try:
                appointments.append(Appointment.from_record(record))
            except (ValidationError, ValueError, TypeError) as exc:
                logger.warning("remote_record_skipped", record_id=record.get("id"), error=str(exc))
        return appointments

    def _insert(self, appointment: Appointment) -> Appointment:
        payload = self._post("create", appointment.to_record())
        remote_id = payload.get("id")
        if remote_id in (None, ""):
            return appointment
        return appointment.model_copy(update={"id": int(float(remote_id))})

    def _replace(self, appointment: Appointment) -> Appointment:
        self._post("update", appointment.to_record())
        return appointment

    def _remove(self, appointment: Appointment) -> None:
        self._post("delete", {"id": appointment.id})

    def _clear(self, store_id: Optional[int]) -> int:
        body = {} if store_id is None else {"storeId": store_id}
        payload = self._post("clear", body)
        count = payload.get("count")
        if count is None:
            count = len(self.cached(store_id=store_id))
        return int(count)

    # -------- Bulk --------

    def sync_all(self, appointments: Iterable[Appointment]) -> StoreResult:
        """
        Replace everything on the backend with the given appointments.

        Used for migration/reconciliation; the cache mirrors the pushed set
        on success.
        """
        appointments = list(appointments)
        try:
            payload = self._post("syncAll", {"appointments": [a.to_record() for a in appointments]})
        except BackendUnavailableError as exc:
            return StoreResult.failure(ErrorKind.BACKEND_UNAVAILABLE, str(exc))
        except (BackendRejectedError, RecordNotFoundError) as exc:
            return StoreResult.failure(ErrorKind.REJECTED, str(exc))

        self.apply_snapshot(appointments)
        return StoreResult.success(int(payload.get("count", len(appointments))))
