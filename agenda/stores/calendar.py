"""Google Calendar backend.

Appointments are calendar events tagged with a private extended property
(agendaOtica="true") that also carries the booking fields. Events without the
tag belong to someone else: they are not appointments, but the time they
cover is busy and cannot be booked.

REST endpoints used (Calendar API v3, bearer token):
- GET    /calendars/{id}/events            list (paged)
- POST   /calendars/{id}/events            insert
- PUT    /calendars/{id}/events/{eventId}  replace
- DELETE /calendars/{id}/events/{eventId}  delete
"""
import hashlib
from datetime import date as date_type, datetime, time, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote
from zoneinfo import ZoneInfo

import requests
from pydantic import ValidationError

from agenda import config
from agenda.errors import BackendRejectedError, BackendUnavailableError, RecordNotFoundError
from agenda.http_client import create_http_session
from agenda.logging_config import REQUEST_ID_HEADER, get_logger, request_context
from agenda.models import Appointment, BackendKind, BusyInterval, SlotPolicy, Store, default_store_name
from agenda.settings import ScheduleConfig
from agenda.slots import slot_bounds
from agenda.stores.base import AppointmentStore

logger = get_logger(__name__)

DEFAULT_STORE_COLOR = "#999999"

# Store hex color -> Google Calendar colorId (1-11)
COLOR_IDS = {
    "#f44336": "11",
    "#e91e63": "4",
    "#9c27b0": "3",
    "#673ab7": "9",
    "#3f51b5": "9",
    "#2196f3": "1",
    "#03a9f4": "7",
    "#00bcd4": "7",
    "#009688": "2",
    "#4caf50": "10",
    "#8bc34a": "2",
    "#cddc39": "5",
    "#ffeb3b": "5",
    "#ffc107": "5",
    "#ff9800": "6",
    "#ff5722": "6",
}


def color_id_for(hex_color: Optional[str]) -> str:
    """Calendar colorId for a store color (blue when unknown)."""
    return COLOR_IDS.get((hex_color or "").lower(), "1")


def event_appointment_id(event_id: str) -> int:
    """Stable 52-bit id for tagged events created without a local id."""
    return int(hashlib.sha1(event_id.encode("utf-8")).hexdigest()[:13], 16) or 1


class CalendarAppointmentStore(AppointmentStore):
    """Appointments stored as events in one Google calendar."""

    kind = BackendKind.CALENDAR

    def __init__(
        self,
        schedule: ScheduleConfig,
        policy: SlotPolicy,
        calendar_id: str = "primary",
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        store_lookup: Optional[Callable[[int], Optional[Store]]] = None,
        time_zone: str = config.CALENDAR_TIME_ZONE,
        clock: Optional[Callable[[], datetime]] = None,
        base_url: str = config.CALENDAR_API_BASE_URL
    ):
        """
        Args:
            schedule: Slot rules
            policy: Booking policy
            calendar_id: Target calendar ("primary" or a calendar address)
            token: OAuth access token with calendar scope
            session: HTTP session (default: create_http_session())
            store_lookup: Store by id, for event titles and colors
            time_zone: Zone appointment times are expressed in
            clock: Current time source, for the fetch window
            base_url: Calendar API root
        """
        super().__init__(schedule, policy)
        self.calendar_id = calendar_id
        self.token = token
        self.session = session or create_http_session()
        self.store_lookup = store_lookup
        self.tz = ZoneInfo(time_zone)
        self.clock = clock or (lambda: datetime.now(self.tz))
        self.base_url = base_url.rstrip("/")
        self._busy: List[BusyInterval] = []
        self._fetched_busy: List[BusyInterval] = []

    # -------- Transport --------

    def _events_url(self, event_id: Optional[str] = None) -> str:
        url = f"{self.base_url}/calendars/{quote(self.calendar_id, safe='')}/events"
        if event_id:
            url += f"/{quote(event_id, safe='')}"
        return url

    def _headers(self, request_id: str) -> Dict[str, str]:
        if not self.token:
            raise BackendUnavailableError("No calendar access token configured")
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
            REQUEST_ID_HEADER: request_id,
        }

    @staticmethod
    def _raise_for_status(action: str, response: Optional[requests.Response]) -> None:
        status = response.status_code if response is not None else None
        if status is None or status < 400:
            return
        if status in (404, 410):
            raise RecordNotFoundError(f"{action}: event not found")
        if status == 400:
            raise BackendRejectedError(f"{action}: {response.text[:200]}")
        # 401/403 (expired token, missing scope) and 5xx
        raise BackendUnavailableError(f"{action}: HTTP {status}")

    def _request(self, method: str, url: str, action: str, **kwargs) -> Dict[str, Any]:
        with request_context() as request_id:
            headers = self._headers(request_id)
            logger.info("calendar_request", action=action)
            try:
                response = getattr(self.session, method)(url, headers=headers, **kwargs)
            except requests.exceptions.HTTPError as exc:
                self._raise_for_status(action, exc.response)
                raise BackendUnavailableError(f"{action} failed: {exc}") from exc
            except requests.exceptions.RequestException as exc:
                raise BackendUnavailableError(f"{action} failed: {exc}") from exc

            self._raise_for_status(action, response)
        if response.status_code == 204 or not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise BackendUnavailableError(f"{action}: malformed reply") from exc
        if not isinstance(payload, dict):
            raise BackendUnavailableError(f"{action}: malformed reply")
        return payload

    # -------- Event mapping --------

    def _to_local(self, value: Dict[str, Any]) -> Optional[datetime]:
        """Naive local datetime from an event start/end; all-day dates map to midnight."""
        if not isinstance(value, dict):
            return None
        if value.get("dateTime"):
            moment = datetime.fromisoformat(value["dateTime"])
            if moment.tzinfo is not None:
                moment = moment.astimezone(self.tz).replace(tzinfo=None)
            return moment
        if value.get("date"):
            return datetime.combine(date_type.fromisoformat(value["date"]), time.min)
        return None

    def _window(self) -> Tuple[str, str]:
        today = self.clock().astimezone(self.tz).date()
        start = datetime.combine(today - timedelta(days=config.CALENDAR_DAYS_BACK), time.min, tzinfo=self.tz)
        end = datetime.combine(today + timedelta(days=config.CALENDAR_DAYS_AHEAD), time.min, tzinfo=self.tz)
        return start.isoformat(), end.isoformat()

    def _store(self, store_id: int) -> Optional[Store]:
        return self.store_lookup(store_id) if self.store_lookup else None

    def event_to_appointment(self, event: Dict[str, Any]) -> Optional[Appointment]:
        """Appointment for a tagged event, None for foreign events."""
        props = (event.get("extendedProperties") or {}).get("private") or {}
        if props.get(config.CALENDAR_MARKER_KEY) != "true":
            return None

        start = self._to_local(event.get("start"))
        if start is None:
            return None

        local_id = str(props.get("localId", "")).strip()
        appointment_id = int(local_id) if local_id.isdigit() and int(local_id) else event_appointment_id(event["id"])
        store_id = str(props.get("storeId", "")).strip()
        summary = event.get("summary") or ""

        return Appointment(
            id=appointment_id,
            date=start.date().isoformat(),
            time=start.strftime("%H:%M"),
            client_name=props.get("clientName") or summary.split(" - ")[0] or "Cliente",
            client_phone=props.get("clientPhone", ""),
            store_id=int(store_id) if store_id.isdigit() else config.GENERAL_STORE_ID,
            store_name=props.get("storeName", ""),
            notes=props.get("notes", ""),
            created_at=event.get("created"),
            external_ref=event["id"],
        )

    def event_to_busy(self, event: Dict[str, Any]) -> Optional[BusyInterval]:
        start = self._to_local(event.get("start"))
        end = self._to_local(event.get("end"))
        if start is None or end is None:
            return None
        return BusyInterval(start=start, end=end, summary=event.get("summary") or "")

    def appointment_to_event(self, appointment: Appointment) -> Dict[str, Any]:
        store = self._store(appointment.store_id)
        store_name = appointment.store_name or (store.name if store else default_store_name(appointment.store_id))
        store_color = store.color if store else DEFAULT_STORE_COLOR
        start, end = slot_bounds(appointment.date, appointment.time, config.CALENDAR_EVENT_MINUTES)

        description = [f"Tel: {appointment.client_phone}", f"Loja: {store_name}"]
        if appointment.notes:
            description.append(f"Obs: {appointment.notes}")

        return {
            "summary": f"{appointment.client_name} - {store_name}",
            "description": "\n".join(description),
            "start": {"dateTime": start.isoformat(), "timeZone": self.tz.key},
            "end": {"dateTime": end.isoformat(), "timeZone": self.tz.key},
            "colorId": color_id_for(store_color),
            "extendedProperties": {
                "private": {
                    config.CALENDAR_MARKER_KEY: "true",
                    "clientName": appointment.client_name,
                    "clientPhone": appointment.client_phone,
                    "storeId": str(appointment.store_id),
                    "storeName": store_name,
                    "storeColor": store_color,
                    "notes": appointment.notes,
                    "localId": str(appointment.id or 0),
                }
            },
        }

    # -------- Driver hooks --------

    def _list_events(self) -> List[Dict[str, Any]]:
        time_min, time_max = self._window()
        params = {
            "timeMin": time_min,
            "timeMax": time_max,
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": config.CALENDAR_MAX_RESULTS,
        }
        events = []
        while True:
            payload = self._request("get", self._events_url(), "list", params=params)
            items = payload.get("items") or []
            if not isinstance(items, list):
                raise BackendUnavailableError("list: malformed reply")
            events.extend(item for item in items if isinstance(item, dict) and item.get("id"))
            page_token = payload.get("nextPageToken")
            if not page_token:
                return events
            params = {**params, "pageToken": page_token}

    def _fetch_all(self) -> List[Appointment]:
        appointments = []
        busy = []
        for event in self._list_events():
            if event.get("status") == "cancelled":
                continue
            try:
                appointment = self.event_to_appointment(event)
            except (ValidationError, ValueError, TypeError) as exc:
                logger.warning("calendar_event_skipped", event_id=event.get("id"), error=str(exc))
                continue
            if appointment is not None:
                appointments.append(appointment)
                continue
            try:
                interval = self.event_to_busy(event)
            except (ValidationError, ValueError, TypeError):
                interval = None
            if interval is not None:
                busy.append(interval)

        with self._cache_lock:
            self._fetched_busy = busy
        return appointments

    def apply_snapshot(self, appointments: List[Appointment], generation: Optional[int] = None) -> None:
        with self._cache_lock:
            self._busy = list(self._fetched_busy)
        super().apply_snapshot(appointments, generation=generation)

    def reset_cache(self) -> None:
        with self._cache_lock:
            self._busy = []
            self._fetched_busy = []
        super().reset_cache()

    def busy_intervals(self, date: Optional[str] = None) -> List[BusyInterval]:
        with self._cache_lock:
            busy = list(self._busy)
        if date is None:
            return busy
        day_start, _ = slot_bounds(date, "00:00", 0)
        day_end = day_start + timedelta(days=1)
        return [b for b in busy if b.start < day_end and b.end > day_start]

    def _insert(self, appointment: Appointment) -> Appointment:
        payload = self._request("post", self._events_url(), "insert", json=self.appointment_to_event(appointment))
        event_id = payload.get("id")
        if not event_id:
            raise BackendUnavailableError("insert: reply without event id")
        return appointment.model_copy(update={"external_ref": event_id})

    def _replace(self, appointment: Appointment) -> Appointment:
        if not appointment.external_ref:
            raise RecordNotFoundError(f"Appointment {appointment.id} has no calendar event")
        self._request(
            "put",
            self._events_url(appointment.external_ref),
            "update",
            json=self.appointment_to_event(appointment),
        )
        return appointment

    def _remove(self, appointment: Appointment) -> None:
        if not appointment.external_ref:
            raise RecordNotFoundError(f"Appointment {appointment.id} has no calendar event")
        self._request("delete", self._events_url(appointment.external_ref), "delete")

    def _clear(self, store_id: Optional[int]) -> int:
        count = 0
        for appointment in self._fetch_all():
            if store_id is not None and appointment.store_id != store_id:
                continue
            try:
                self._remove(appointment)
            except RecordNotFoundError:
                continue
            count += 1
        return count
