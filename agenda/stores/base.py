"""Appointment store abstraction.

Purpose: One interface over the three backends (remote spreadsheet, local
document, Google Calendar). Backend drivers only implement raw I/O and raise
the exceptions from agenda.errors; this base class owns the sync state, the
cache, conflict validation and the conversion into StoreResult.

Cache rules:
- refresh() (fetch_snapshot + apply_snapshot) replaces the cache wholesale
- a successful create/update/delete/clear patches the cache optimistically
- nothing else writes to it

Every optimistic patch bumps write_generation and is logged. A snapshot
fetched before a write was confirmed may be applied after it (poller thread);
apply_snapshot re-applies the logged patches newer than the generation read
before the fetch, so confirmed writes never vanish from the cache.
"""
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from agenda.conflicts import check_booking
from agenda.errors import (
    BackendRejectedError,
    BackendUnavailableError,
    ErrorKind,
    RecordNotFoundError,
    StoreResult,
    SyncFailure,
)
from agenda.logging_config import get_logger
from agenda.models import (
    Appointment,
    BackendKind,
    BusyInterval,
    SlotPolicy,
    default_store_name,
    generate_appointment_id,
    normalize_date,
    utc_now_iso,
)
from agenda.settings import ScheduleConfig

logger = get_logger(__name__)

MonthFilter = Union[str, Tuple[int, int]]
CachePatch = Callable[[List[Appointment]], List[Appointment]]

IMMUTABLE_FIELDS = {"id", "created_at"}
SLOT_FIELDS = {"date", "time", "store_id"}


@dataclass
class SyncState:
    """Per-backend connection and cache state."""
    connected: bool = False
    last_sync: Optional[datetime] = None
    last_error: Optional[str] = None
    cache: List[Appointment] = field(default_factory=list)


def month_prefix(month_year: MonthFilter) -> str:
    """'YYYY-MM' from either a string or a (year, month) tuple."""
    if isinstance(month_year, tuple):
        year, month = month_year
        return f"{year:04d}-{month:02d}"
    return str(month_year)[:7]


# Cache patches are idempotent: applying one to a snapshot that already
# reflects the write leaves it unchanged.

def upsert_patch(saved: Appointment) -> CachePatch:
    return lambda cache: [a for a in cache if a.id != saved.id] + [saved]


def remove_patch(appointment_id: int) -> CachePatch:
    return lambda cache: [a for a in cache if a.id != appointment_id]


def clear_patch(store_id: Optional[int]) -> CachePatch:
    if store_id is None:
        return lambda cache: []
    return lambda cache: [a for a in cache if a.store_id != store_id]


class AppointmentStore(ABC):
    """Base class for appointment backends."""

    kind: BackendKind

    def __init__(self, schedule: ScheduleConfig, policy: SlotPolicy):
        self.schedule = schedule
        self.policy = SlotPolicy(policy)
        self.state = SyncState()
        self._cache_lock = threading.RLock()
        self._write_generation = 0
        self._writes: List[Tuple[int, CachePatch]] = []
        self._failure_listeners: List[Callable[[SyncFailure], None]] = []

    # -------- Driver hooks --------

    @abstractmethod
    def _fetch_all(self) -> List[Appointment]:
        """Read every appointment from the backend."""

    @abstractmethod
    def _insert(self, appointment: Appointment) -> Appointment:
        """Durably write a new appointment; return it as stored."""

    @abstractmethod
    def _replace(self, appointment: Appointment) -> Appointment:
        """Overwrite an existing appointment; RecordNotFoundError if absent."""

    @abstractmethod
    def _remove(self, appointment: Appointment) -> None:
        """Delete an appointment; RecordNotFoundError if absent."""

    @abstractmethod
    def _clear(self, store_id: Optional[int]) -> int:
        """Delete all appointments (or one store's); return how many."""

    def busy_intervals(self, date: Optional[str] = None) -> List[BusyInterval]:
        """Slots taken by events this system does not own (none by default)."""
        return []

    def _conflict_source(self) -> List[Appointment]:
        """Appointments a new booking is checked against."""
        return self.cached()

    # -------- Sync --------

    def add_failure_listener(self, listener: Callable[[SyncFailure], None]) -> None:
        """Register a callback for refresh failures (out-of-band signal)."""
        self._failure_listeners.append(listener)

    def fetch_snapshot(self) -> List[Appointment]:
        """
        Read the backend without touching the cache.

        Raises:
            BackendUnavailableError: On transport failure or malformed reply
        """
        try:
            return self._fetch_all()
        except (RecordNotFoundError, BackendRejectedError) as exc:
            raise BackendUnavailableError(str(exc)) from exc

    @property
    def write_generation(self) -> int:
        """Count of locally-confirmed writes; read it before fetching a snapshot."""
        with self._cache_lock:
            return self._write_generation

    def _patch_cache(self, patch: CachePatch) -> None:
        with self._cache_lock:
            self._write_generation += 1
            self.state.cache = patch(self.state.cache)
            self._writes.append((self._write_generation, patch))

    def apply_snapshot(self, appointments: List[Appointment], generation: Optional[int] = None) -> None:
        """
        Replace the cache wholesale with a fetched snapshot.

        Args:
            appointments: Snapshot from fetch_snapshot()
            generation: write_generation read before the fetch started. Writes
                confirmed after it are re-applied on top of the snapshot. None
                means the snapshot is authoritative (bulk import/sync).
        """
        with self._cache_lock:
            cache = list(appointments)
            if generation is None:
                self._writes = []
            else:
                self._writes = [(g, patch) for g, patch in self._writes if g > generation]
                for _, patch in self._writes:
                    cache = patch(cache)
            self.state.cache = cache
            self.state.connected = True
            self.state.last_sync = datetime.now(UTC)
            self.state.last_error = None
            reapplied = len(self._writes)
        logger.info("cache_replaced", backend=self.kind.value, count=len(cache), reapplied=reapplied)

    def record_failure(self, error: Exception) -> SyncFailure:
        """Keep the cache, remember the error and notify listeners."""
        with self._cache_lock:
            self.state.last_error = str(error)
            kept = len(self.state.cache)
        failure = SyncFailure(backend=self.kind.value, message=str(error), kept_cached=kept)
        logger.warning("sync_failed", backend=self.kind.value, error=str(error), kept_cached=kept)
        for listener in list(self._failure_listeners):
            try:
                listener(failure)
            except Exception:
                logger.exception("failure_listener_error", backend=self.kind.value)
        return failure

    def refresh(self) -> StoreResult:
        """
        Fetch from the backend and replace the cache.

        Returns:
            success(count) or failure(BACKEND_UNAVAILABLE); the cache is
            kept as-is on failure
        """
        generation = self.write_generation
        try:
            snapshot = self.fetch_snapshot()
        except BackendUnavailableError as exc:
            self.record_failure(exc)
            return StoreResult.failure(ErrorKind.BACKEND_UNAVAILABLE, str(exc))
        self.apply_snapshot(snapshot, generation=generation)
        return StoreResult.success(len(snapshot))

    def reset_cache(self) -> None:
        """Drop cached state (disconnect/logout)."""
        with self._cache_lock:
            self.state = SyncState()
            self._writes = []

    # -------- Reads --------

    def list(
        self,
        date: Optional[str] = None,
        store_id: Optional[int] = None,
        month_year: Optional[MonthFilter] = None
    ) -> List[Appointment]:
        """
        Refresh, then return matching appointments.

        Never raises: when the backend is unreachable the last known cache is
        filtered instead and listeners receive a SyncFailure.
        """
        self.refresh()
        return self.cached(date=date, store_id=store_id, month_year=month_year)

    def cached(
        self,
        date: Optional[str] = None,
        store_id: Optional[int] = None,
        month_year: Optional[MonthFilter] = None
    ) -> List[Appointment]:
        """Filter the cache without any I/O."""
        with self._cache_lock:
            result = list(self.state.cache)
        if date is not None:
            day = normalize_date(date)
            result = [a for a in result if a.date == day]
        if store_id is not None:
            result = [a for a in result if a.store_id == store_id]
        if month_year is not None:
            prefix = month_prefix(month_year)
            result = [a for a in result if a.date.startswith(prefix)]
        return sorted(result, key=lambda a: (a.date, a.time, a.store_id))

    def get(self, appointment_id: int) -> Optional[Appointment]:
        """Cached appointment by id."""
        with self._cache_lock:
            for apt in self.state.cache:
                if apt.id == appointment_id:
                    return apt
        return None

    def _locate(self, appointment_id: int) -> Optional[Appointment]:
        """Cached appointment, else look it up in a fresh snapshot (cache untouched)."""
        current = self.get(appointment_id)
        if current is not None:
            return current
        for apt in self.fetch_snapshot():
            if apt.id == appointment_id:
                return apt
        return None

    # -------- Writes --------

    def create(self, appointment: Appointment) -> StoreResult:
        """
        Book a new appointment.

        A pre-supplied id already known to the store is treated as a retry of
        an earlier create and returns the stored record.

        Returns:
            success(Appointment) or failure(INVALID_SLOT | CONFLICT |
            BACKEND_UNAVAILABLE | REJECTED)
        """
        if appointment.id is not None:
            existing = self.get(appointment.id)
            if existing is not None:
                logger.info("create_deduplicated", backend=self.kind.value, appointment_id=appointment.id)
                return StoreResult.success(existing)

        try:
            current = self._conflict_source()
        except BackendUnavailableError as exc:
            return StoreResult.failure(ErrorKind.BACKEND_UNAVAILABLE, str(exc))

        error = check_booking(
            appointment,
            current,
            self.policy,
            self.schedule,
            busy=self.busy_intervals(appointment.date),
        )
        if error is not None:
            logger.info(
                "create_refused",
                backend=self.kind.value,
                error=error.value,
                date=appointment.date,
                time=appointment.time,
                store_id=appointment.store_id,
            )
            return StoreResult.failure(error, self._describe(error, appointment))

        new = appointment.model_copy(update={
            "id": appointment.id if appointment.id is not None else generate_appointment_id(),
            "created_at": appointment.created_at or utc_now_iso(),
            "store_name": appointment.store_name or default_store_name(appointment.store_id),
        })

        try:
            saved = self._insert(new)
        except BackendUnavailableError as exc:
            logger.error("create_failed", backend=self.kind.value, error=str(exc))
            return StoreResult.failure(ErrorKind.BACKEND_UNAVAILABLE, str(exc))
        except (BackendRejectedError, RecordNotFoundError) as exc:
            return StoreResult.failure(ErrorKind.REJECTED, str(exc))

        self._patch_cache(upsert_patch(saved))
        logger.info("appointment_created", backend=self.kind.value, appointment_id=saved.id)
        return StoreResult.success(saved)

    def update(self, appointment_id: int, changes: Dict[str, Any]) -> StoreResult:
        """
        Change fields of an appointment.

        Moving it (date, time or store) re-runs the conflict check, ignoring
        the appointment itself.

        Args:
            appointment_id: Target id
            changes: Field name -> new value (Appointment field names)

        Returns:
            success(Appointment) or failure(NOT_FOUND | INVALID_SLOT |
            CONFLICT | BACKEND_UNAVAILABLE | REJECTED)

        Raises:
            ValueError: Unknown or immutable field names, malformed values
        """
        unknown = set(changes) - set(Appointment.model_fields)
        if unknown:
            raise ValueError(f"Unknown appointment fields: {sorted(unknown)}")
        immutable = set(changes) & IMMUTABLE_FIELDS
        if immutable:
            raise ValueError(f"Immutable appointment fields: {sorted(immutable)}")

        try:
            current = self._locate(appointment_id)
        except BackendUnavailableError as exc:
            return StoreResult.failure(ErrorKind.BACKEND_UNAVAILABLE, str(exc))
        if current is None:
            return StoreResult.failure(ErrorKind.NOT_FOUND, f"Appointment {appointment_id} not found")

        updated = Appointment(**{**current.model_dump(), **changes})

        if any(getattr(updated, name) != getattr(current, name) for name in SLOT_FIELDS):
            try:
                existing = self._conflict_source()
            except BackendUnavailableError as exc:
                return StoreResult.failure(ErrorKind.BACKEND_UNAVAILABLE, str(exc))
            error = check_booking(
                updated,
                existing,
                self.policy,
                self.schedule,
                busy=self.busy_intervals(updated.date),
                ignore_id=appointment_id,
            )
            if error is not None:
                return StoreResult.failure(error, self._describe(error, updated))

        try:
            saved = self._replace(updated)
        except RecordNotFoundError:
            return StoreResult.failure(ErrorKind.NOT_FOUND, f"Appointment {appointment_id} not found")
        except BackendUnavailableError as exc:
            logger.error("update_failed", backend=self.kind.value, error=str(exc))
            return StoreResult.failure(ErrorKind.BACKEND_UNAVAILABLE, str(exc))
        except BackendRejectedError as exc:
            return StoreResult.failure(ErrorKind.REJECTED, str(exc))

        self._patch_cache(upsert_patch(saved))
        logger.info("appointment_updated", backend=self.kind.value, appointment_id=appointment_id)
        return StoreResult.success(saved)

    def delete(self, appointment_id: int) -> StoreResult:
        """
        Delete an appointment.

        Deleting an id the backend does not have is NOT_FOUND on every
        backend (all three can tell the difference).
        """
        try:
            current = self._locate(appointment_id)
        except BackendUnavailableError as exc:
            return StoreResult.failure(ErrorKind.BACKEND_UNAVAILABLE, str(exc))
        if current is None:
            return StoreResult.failure(ErrorKind.NOT_FOUND, f"Appointment {appointment_id} not found")

        try:
            self._remove(current)
        except RecordNotFoundError:
            return StoreResult.failure(ErrorKind.NOT_FOUND, f"Appointment {appointment_id} not found")
        except BackendUnavailableError as exc:
            logger.error("delete_failed", backend=self.kind.value, error=str(exc))
            return StoreResult.failure(ErrorKind.BACKEND_UNAVAILABLE, str(exc))
        except BackendRejectedError as exc:
            return StoreResult.failure(ErrorKind.REJECTED, str(exc))

        self._patch_cache(remove_patch(appointment_id))
        logger.info("appointment_deleted", backend=self.kind.value, appointment_id=appointment_id)
        return StoreResult.success(current)

    def clear_all(self, store_id: Optional[int] = None) -> StoreResult:
        """
        Delete every appointment, or only one store's.

        Destructive: confirmation is the caller's job.

        Returns:
            success(count) or failure(BACKEND_UNAVAILABLE | REJECTED)
        """
        try:
            count = self._clear(store_id)
        except BackendUnavailableError as exc:
            logger.error("clear_failed", backend=self.kind.value, store_id=store_id, error=str(exc))
            return StoreResult.failure(ErrorKind.BACKEND_UNAVAILABLE, str(exc))
        except (BackendRejectedError, RecordNotFoundError) as exc:
            return StoreResult.failure(ErrorKind.REJECTED, str(exc))

        self._patch_cache(clear_patch(store_id))
        logger.warning("appointments_cleared", backend=self.kind.value, store_id=store_id, count=count)
        return StoreResult.success(count)

    @staticmethod
    def _describe(error: ErrorKind, appointment: Appointment) -> str:
        if error == ErrorKind.INVALID_SLOT:
            return f"{appointment.time} is not a bookable slot on {appointment.date}"
        return f"Slot {appointment.date} {appointment.time} is already taken"
