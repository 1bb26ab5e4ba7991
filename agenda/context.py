"""Application context.

One object built at startup that owns everything the session needs: local
storage, the store and client directories, login, the active appointment
backend with its poller, and the optional local fallback. Torn down on logout.

Persisted company settings (last spreadsheet URL, schedule overrides) are
layered over the runtime settings at construction.
"""
from datetime import date as date_type
from typing import Callable, List, Optional

import requests
from sqlalchemy.exc import SQLAlchemyError

from agenda import config
from agenda.auth import StoreAuthenticator, StoreDirectory
from agenda.clients import ClientDirectory
from agenda.company import CompanySettingsStore
from agenda.conflicts import check_booking
from agenda.errors import ErrorKind, StoreResult, SyncFailure
from agenda.logging_config import get_logger
from agenda.models import Appointment, BackendKind, Store
from agenda.reconcile import Reconciler, ReconcileReport
from agenda.schedule_view import MonthSummary, SlotRow, build_day_grid, month_summary, store_stats
from agenda.settings import AppSettings, CompanySettings
from agenda.slots import DateLike, as_date, get_slots
from agenda.storage import LocalDocumentStorage
from agenda.stores import AppointmentStore, LocalAppointmentStore, SheetsAppointmentStore, create_store
from agenda.sync import SyncPoller

logger = get_logger(__name__)


class AppContext:
    """Session state and entry points for the booking flows."""

    def __init__(
        self,
        settings: AppSettings,
        storage: Optional[LocalDocumentStorage] = None,
        session: Optional[requests.Session] = None,
        store: Optional[AppointmentStore] = None,
        on_render: Optional[Callable[[List[Appointment]], None]] = None,
        on_failure: Optional[Callable[[SyncFailure], None]] = None,
        run_in_background: bool = True
    ):
        """
        Args:
            settings: Runtime settings
            storage: Local document storage (default: from settings)
            session: HTTP session for the remote backends
            store: Appointment store to use instead of building one from settings
            on_render: Called with the cache after each successful refresh
            on_failure: Called when a background refresh fails
            run_in_background: Poll on a background thread once connected
        """
        self.base_settings = settings
        self.storage = storage or LocalDocumentStorage(settings.database_url, settings.storage_key)
        self.company_settings = CompanySettingsStore(self.storage, settings.company_id)
        settings = self.company_settings.get().apply(settings)
        self.settings = settings
        self.directory = StoreDirectory(self.storage, settings.company_id)
        self.clients = ClientDirectory(self.storage, settings.company_id)
        self.authenticator = StoreAuthenticator(self.directory)
        self.store = store or create_store(
            settings,
            storage=self.storage,
            session=session,
            store_lookup=self.directory.get,
        )

        self.fallback: Optional[LocalAppointmentStore] = None
        if self.store.kind != BackendKind.LOCAL:
            self.fallback = LocalAppointmentStore(settings.schedule, settings.slot_policy, self.storage)

        self.poller = SyncPoller(
            self.store,
            interval=settings.sync_interval_seconds,
            on_render=on_render,
            on_failure=on_failure,
            run_in_background=run_in_background,
        )
        self.current_store: Optional[Store] = None

    # -------- Session --------

    def login(self, store_id: int, password: str) -> Store:
        """
        Select the working store.

        Raises:
            InvalidStorePasswordError: Wrong password or inactive store
        """
        self.current_store = self.authenticator.login(store_id, password)
        return self.current_store

    def logout(self) -> None:
        """Stop polling, drop the cache and forget the store."""
        self.poller.stop()
        self.current_store = None
        logger.info("logout")

    def connect(self, url: Optional[str] = None) -> StoreResult:
        """
        Connect the active backend and start polling.

        A URL that answers is remembered in the company settings and used
        again on the next start.

        Args:
            url: New spreadsheet script URL (remote backend only)
        """
        if url is not None:
            if not isinstance(self.store, SheetsAppointmentStore):
                return StoreResult.failure(ErrorKind.REJECTED, "Only the spreadsheet backend takes a URL")
            result = self.store.connect(url)
            if not result.ok:
                return result
            self.company_settings.remember_sheets_url(url)
            self.settings = self.settings.model_copy(update={"sheets_url": url})
        return self.poller.connect()

    def disconnect(self) -> None:
        """Stop polling and forget the spreadsheet URL, here and in storage."""
        self.poller.stop()
        if isinstance(self.store, SheetsAppointmentStore):
            self.store.disconnect()
            self.company_settings.forget_sheets_url()
            self.settings = self.settings.model_copy(update={"sheets_url": None})
            logger.info("sheets_url_forgotten")

    def update_schedule(
        self,
        interval_minutes: Optional[int] = None,
        windows: Optional[dict] = None
    ) -> CompanySettings:
        """
        Persist schedule overrides and apply them to the running stores.

        A None argument drops that override, restoring the runtime value.

        Raises:
            pydantic.ValidationError: Invalid interval or windows
        """
        updated = self.company_settings.update(interval_minutes=interval_minutes, windows=windows)
        schedule = updated.apply(self.base_settings).schedule
        self.settings = self.settings.model_copy(update={"schedule": schedule})
        self.store.schedule = schedule
        if self.fallback is not None:
            self.fallback.schedule = schedule
        return updated

    def refresh(self) -> StoreResult:
        """Manual refresh; falls back to a plain store refresh when not polling."""
        if self.poller.connected:
            return self.poller.refresh_now()
        return self.store.refresh()

    # -------- Booking --------

    def _store_name(self, store_id: int) -> str:
        store = self.directory.get(store_id)
        return store.name if store else ""

    def book(
        self,
        date: DateLike,
        time: str,
        client_name: str,
        client_phone: str = "",
        notes: str = "",
        store_id: Optional[int] = None,
        appointment_id: Optional[int] = None,
        allow_local_fallback: bool = False
    ) -> StoreResult:
        """
        Book a slot.

        The backend is re-read first so the conflict check sees current
        state, not the last poll. With allow_local_fallback, a booking the
        backend cannot take is written to the local document flagged
        pending_sync, to be pushed later by sync_pending().

        Args:
            date, time: Requested slot
            client_name, client_phone, notes: Booking details
            store_id: Store (default: logged-in store, else the general store)
            appointment_id: Pre-supplied id for an idempotent retry
            allow_local_fallback: Opt into degraded mode

        Returns:
            StoreResult from the store

        Raises:
            ValueError: Malformed date, time or client fields
        """
        if store_id is None:
            store_id = self.current_store.id if self.current_store else config.GENERAL_STORE_ID

        appointment = Appointment(
            id=appointment_id,
            date=as_date(date).isoformat(),
            time=time,
            client_name=client_name,
            client_phone=client_phone,
            store_id=store_id,
            store_name=self._store_name(store_id),
            notes=notes,
        )

        refreshed = self.store.refresh()
        if refreshed.ok:
            result = self.store.create(appointment)
        else:
            result = refreshed

        if result.error == ErrorKind.BACKEND_UNAVAILABLE and allow_local_fallback and self.fallback:
            result = self._book_locally(appointment)
        if result.ok:
            self._register_client(result.value)
        return result

    def _register_client(self, appointment: Appointment) -> None:
        # The booking is already stored; a registry failure must not undo it
        try:
            self.clients.ensure_client(appointment.client_name, appointment.client_phone)
        except SQLAlchemyError:
            logger.exception("client_registration_failed", appointment_id=appointment.id)

    def _book_locally(self, appointment: Appointment) -> StoreResult:
        # The last known remote state still counts
        error = check_booking(
            appointment,
            self.store.cached(),
            self.store.policy,
            self.settings.schedule,
            busy=self.store.busy_intervals(appointment.date),
        )
        if error is not None:
            return StoreResult.failure(error, f"Slot {appointment.date} {appointment.time} is not available")

        result = self.fallback.create(appointment.model_copy(update={"pending_sync": True}))
        if result.ok:
            logger.warning("booked_locally", appointment_id=result.value.id, backend=self.store.kind.value)
        return result

    def reschedule(
        self,
        appointment_id: int,
        date: Optional[DateLike] = None,
        time: Optional[str] = None,
        store_id: Optional[int] = None
    ) -> StoreResult:
        """Move an appointment; the backend is re-read first like book()."""
        changes = {}
        if date is not None:
            changes["date"] = as_date(date).isoformat()
        if time is not None:
            changes["time"] = time
        if store_id is not None:
            changes["store_id"] = store_id
            changes["store_name"] = self._store_name(store_id)

        refreshed = self.store.refresh()
        if not refreshed.ok:
            return refreshed
        return self.store.update(appointment_id, changes)

    def cancel(self, appointment_id: int) -> StoreResult:
        return self.store.delete(appointment_id)

    def clear_appointments(self, store_id: Optional[int] = None) -> StoreResult:
        """Delete all appointments, or one store's. Confirmation is the caller's job."""
        return self.store.clear_all(store_id)

    def sync_pending(self) -> Optional[ReconcileReport]:
        """Push degraded-mode bookings to the backend (None when there is no fallback)."""
        if self.fallback is None:
            return None
        return Reconciler(self.store, self.fallback).push_pending()

    # -------- Views --------

    def free_slots(self, date: DateLike, store_id: Optional[int] = None) -> List[str]:
        """Slots of a date still bookable for a store, from the cache."""
        if store_id is None:
            store_id = self.current_store.id if self.current_store else config.GENERAL_STORE_ID
        day = as_date(date).isoformat()
        existing = self.store.cached(date=day)
        busy = self.store.busy_intervals(day)
        free = []
        for slot in get_slots(day, self.settings.schedule):
            candidate = Appointment(date=day, time=slot, client_name="-", store_id=store_id)
            if check_booking(candidate, existing, self.store.policy, self.settings.schedule, busy=busy) is None:
                free.append(slot)
        return free

    def day_view(self, date: DateLike) -> List[SlotRow]:
        day = as_date(date).isoformat()
        return build_day_grid(
            day,
            self.store.cached(date=day),
            self.directory.list_stores(),
            self.settings.schedule,
            self.store.policy,
            busy=self.store.busy_intervals(day),
        )

    def month_view(self, year: int, month: int) -> MonthSummary:
        return month_summary(
            year,
            month,
            self.store.cached(month_year=(year, month)),
            self.settings.schedule,
            policy=self.store.policy,
            stores=self.directory.list_stores(),
        )

    def stats(self, today: Optional[date_type] = None) -> dict:
        return store_stats(
            self.store.cached(),
            self.directory.list_stores(),
            today or date_type.today(),
            total_clients=self.clients.count(),
        )

    def close(self) -> None:
        self.poller.stop()
