"""Reconciliation of local fallback writes with the remote backend.

Only appointments flagged pending_sync are ever pushed; other local records
are left alone. Pushes go through the remote store's normal create path, so a
slot taken remotely in the meantime is reported as a conflict instead of
being overwritten.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from agenda.errors import ErrorKind, StoreResult
from agenda.logging_config import get_logger
from agenda.models import Appointment
from agenda.stores.base import AppointmentStore
from agenda.stores.local import LocalAppointmentStore

logger = get_logger(__name__)


@dataclass
class ReconcileReport:
    """Outcome of one push of pending local appointments."""
    pushed: List[int] = field(default_factory=list)
    conflicts: List[Appointment] = field(default_factory=list)
    rejected: List[Appointment] = field(default_factory=list)
    stopped: bool = False
    error: Optional[str] = None

    @property
    def complete(self) -> bool:
        return not (self.stopped or self.conflicts or self.rejected)


class Reconciler:
    """Moves appointments from the local fallback to the remote store."""

    def __init__(self, remote: AppointmentStore, fallback: LocalAppointmentStore):
        self.remote = remote
        self.fallback = fallback

    def push_pending(self) -> ReconcileReport:
        """
        Re-create every pending local appointment on the remote store.

        The remote cache is refreshed first so conflicts are checked against
        current remote state. Ids are kept, so an interrupted push can be
        repeated safely. Stops at the first BACKEND_UNAVAILABLE.
        """
        report = ReconcileReport()

        refreshed = self.remote.refresh()
        if not refreshed.ok:
            report.stopped = True
            report.error = refreshed.message
            return report

        pending = self.fallback.pending()
        logger.info("reconcile_started", pending=len(pending))

        for appointment in pending:
            result = self.remote.create(appointment.model_copy(update={"pending_sync": False}))
            if result.ok:
                self.fallback.mark_synced(appointment.id)
                report.pushed.append(appointment.id)
            elif result.error == ErrorKind.BACKEND_UNAVAILABLE:
                report.stopped = True
                report.error = result.message
                break
            elif result.error in (ErrorKind.CONFLICT, ErrorKind.INVALID_SLOT):
                report.conflicts.append(appointment)
            else:
                report.rejected.append(appointment)

        logger.info(
            "reconcile_finished",
            pushed=len(report.pushed),
            conflicts=len(report.conflicts),
            rejected=len(report.rejected),
            stopped=report.stopped,
        )
        return report

    def migrate_to_remote(self) -> StoreResult:
        """
        Replace the remote contents with every local appointment (syncAll).

        Explicit operator action for moving a local-only installation onto a
        spreadsheet backend. Local records are marked synced afterwards.
        """
        sync_all = getattr(self.remote, "sync_all", None)
        if sync_all is None:
            return StoreResult.failure(ErrorKind.REJECTED, f"{self.remote.kind.value} backend has no bulk sync")

        local = [a.model_copy(update={"pending_sync": False}) for a in self.fallback.list()]
        result = sync_all(local)
        if not result.ok:
            return result

        self.fallback.import_appointments(local)
        self.remote.refresh()
        logger.info("migrated_to_remote", count=len(local))
        return result
