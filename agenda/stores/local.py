"""Local persisted backend.

Appointments live in the local document next to stores and settings. Writes
are synchronous and committed before returning. Also serves as the degraded
mode fallback: appointments written while the remote backend is unreachable
carry pending_sync=True until reconciled.
"""
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from agenda.errors import BackendUnavailableError, ErrorKind, RecordNotFoundError, StoreResult
from agenda.logging_config import get_logger
from agenda.models import Appointment, BackendKind, SlotPolicy, StorageDocument
from agenda.settings import ScheduleConfig
from agenda.storage import LocalDocumentStorage
from agenda.stores.base import AppointmentStore

logger = get_logger(__name__)


class LocalAppointmentStore(AppointmentStore):
    """Appointments kept in the local document."""

    kind = BackendKind.LOCAL

    def __init__(self, schedule: ScheduleConfig, policy: SlotPolicy, storage: LocalDocumentStorage):
        super().__init__(schedule, policy)
        self.storage = storage

    def _mutate(self, mutate: Callable[[StorageDocument], object]):
        try:
            return self.storage.update(mutate)
        except SQLAlchemyError as exc:
            raise BackendUnavailableError(f"Local storage failed: {exc}") from exc

    def _conflict_source(self) -> List[Appointment]:
        # The document is authoritative for this backend; check against it directly
        return self._fetch_all()

    def _fetch_all(self) -> List[Appointment]:
        try:
            return list(self.storage.load().appointments)
        except SQLAlchemyError as exc:
            raise BackendUnavailableError(f"Local storage failed: {exc}") from exc

    def _insert(self, appointment: Appointment) -> Appointment:
        def mutate(document: StorageDocument):
            document.appointments.append(appointment)

        self._mutate(mutate)
        return appointment

    def _replace(self, appointment: Appointment) -> Appointment:
        def mutate(document: StorageDocument):
            for index, existing in enumerate(document.appointments):
                if existing.id == appointment.id:
                    document.appointments[index] = appointment
                    return
            raise RecordNotFoundError(f"Appointment {appointment.id} not found")

        self._mutate(mutate)
        return appointment

    def _remove(self, appointment: Appointment) -> None:
        def mutate(document: StorageDocument):
            remaining = [a for a in document.appointments if a.id != appointment.id]
            if len(remaining) == len(document.appointments):
                raise RecordNotFoundError(f"Appointment {appointment.id} not found")
            document.appointments = remaining

        self._mutate(mutate)

    def _clear(self, store_id: Optional[int]) -> int:
        def mutate(document: StorageDocument) -> int:
            before = len(document.appointments)
            if store_id is None:
                document.appointments = []
            else:
                document.appointments = [a for a in document.appointments if a.store_id != store_id]
            return before - len(document.appointments)

        return self._mutate(mutate)

    # -------- Degraded mode --------

    def pending(self) -> List[Appointment]:
        """Appointments written locally that the remote backend has not seen."""
        return [a for a in self._fetch_all() if a.pending_sync]

    def mark_synced(self, appointment_id: int) -> StoreResult:
        """Clear the pending flag once the remote backend holds the appointment."""
        return self.update(appointment_id, {"pending_sync": False})

    def import_appointments(self, appointments: List[Appointment]) -> StoreResult:
        """Replace the local appointments wholesale (e.g. after a remote sync)."""
        def mutate(document: StorageDocument):
            document.appointments = list(appointments)

        try:
            self._mutate(mutate)
        except BackendUnavailableError as exc:
            return StoreResult.failure(ErrorKind.BACKEND_UNAVAILABLE, str(exc))
        self.apply_snapshot(appointments)
        logger.info("local_import", count=len(appointments))
        return StoreResult.success(len(appointments))
