"""
In-memory owner of one calendar's appointments.

Every method is synchronous, so each one runs to completion without an
``await`` in between and is atomic with respect to the event loop. The
orchestrator applies optimistic edits here before its remote call and then
confirms or rolls them back; poll and push updates come in through
``merge_external`` only.
"""
import itertools
from typing import Dict, Iterable, List, Optional, Set

from app.core.logger import get_logger
from app.core.utils import is_temp_id
from app.schemas.appointment import Appointment, SyncState

logger = get_logger("reconciler")


class CalendarReconciler:
    def __init__(self, appointments: Iterable[Appointment] = ()):
        self._entries: Dict[str, Appointment] = {}
        self._sync: Dict[str, SyncState] = {}
        self._aliases: Dict[str, str] = {}
        self._pending_deletes: Set[str] = set()
        # Confirmation order; a higher number was confirmed more recently
        self._confirmed_at: Dict[str, int] = {}
        self._flagged: Set[str] = set()
        self._clock = itertools.count(1)
        # Local mutation counter; refreshes read it before fetching a snapshot
        self._epoch = 0
        self._settled_at: Dict[str, int] = {}
        self._tombstones: Dict[str, int] = {}

        for appointment in appointments:
            self._store_confirmed(appointment)

    # Reads

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def is_settled(self) -> bool:
        """True when nothing is in flight: no local-pending entry, no pending delete."""
        return not self._pending_deletes and SyncState.LOCAL_PENDING not in self._sync.values()

    def snapshot(self) -> List[Appointment]:
        return sorted(self._entries.values(), key=lambda a: (a.start, a.id))

    def resolve(self, appointment_id: str) -> str:
        return self._aliases.get(appointment_id, appointment_id)

    def get(self, appointment_id: str) -> Optional[Appointment]:
        return self._entries.get(self.resolve(appointment_id))

    def sync_state(self, appointment_id: str) -> Optional[SyncState]:
        return self._sync.get(self.resolve(appointment_id))

    def is_pending(self, appointment_id: str) -> bool:
        return self.sync_state(appointment_id) == SyncState.LOCAL_PENDING

    @property
    def pending_deletes(self) -> frozenset:
        return frozenset(self._pending_deletes)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, appointment_id: str) -> bool:
        return self.resolve(appointment_id) in self._entries

    # Optimistic mutations

    def apply_optimistic(self, appointment: Appointment) -> Optional[Appointment]:
        """Insert or replace ``appointment`` ahead of remote confirmation.

        Returns the value it replaced (``None`` for an insert); hand that back
        to ``rollback`` if the remote call fails.
        """
        prior = self._entries.get(appointment.id)
        self._entries[appointment.id] = appointment
        self._sync[appointment.id] = SyncState.LOCAL_PENDING
        return prior

    def confirm(self, local_id: str, authoritative: Appointment) -> Appointment:
        """Replace the local entry with the backend's version, rebinding a temp id."""
        local_id = self.resolve(local_id)
        if local_id != authoritative.id:
            self._entries.pop(local_id, None)
            self._sync.pop(local_id, None)
            self._aliases[local_id] = authoritative.id
            logger.debug("Rebound %s -> %s", local_id, authoritative.id)
        self._store_confirmed(authoritative)
        self._settled_at[authoritative.id] = self._tick()
        return authoritative

    def rollback(self, appointment_id: str, prior: Optional[Appointment] = None) -> None:
        """Undo a failed optimistic change: drop a creation or restore ``prior`` as it was."""
        appointment_id = self.resolve(appointment_id)
        self._entries.pop(appointment_id, None)
        self._sync.pop(appointment_id, None)
        if prior is None:
            logger.info("Rolled back creation of %s", appointment_id)
            return
        self._entries[prior.id] = prior
        self._sync[prior.id] = SyncState.CONFIRMED
        logger.info("Rolled back %s to its last confirmed state", prior.id)

    def begin_delete(self, appointment_id: str) -> Optional[Appointment]:
        appointment_id = self.resolve(appointment_id)
        self._pending_deletes.add(appointment_id)
        self._sync.pop(appointment_id, None)
        return self._entries.pop(appointment_id, None)

    def finish_delete(self, appointment_id: str) -> None:
        appointment_id = self.resolve(appointment_id)
        self._pending_deletes.discard(appointment_id)
        self._confirmed_at.pop(appointment_id, None)
        self._settled_at.pop(appointment_id, None)
        self._flagged.discard(appointment_id)
        self._drop_aliases({appointment_id})
        # Snapshots fetched before this point may still carry the record
        self._tombstones[appointment_id] = self._tick()

    def rollback_delete(self, appointment_id: str, prior: Optional[Appointment]) -> None:
        appointment_id = self.resolve(appointment_id)
        self._pending_deletes.discard(appointment_id)
        if prior is not None:
            self._entries[prior.id] = prior
            self._sync[prior.id] = SyncState.CONFIRMED
            logger.info("Restored %s after failed delete", prior.id)

    # External updates

    def merge_external(
        self, snapshot: Iterable[Appointment], since: Optional[int] = None
    ) -> List[Appointment]:
        """Fold a poll or push snapshot into local state.

        ``since`` is the ``epoch`` read before the snapshot was fetched. Entries
        confirmed and deletes finished after it are newer than the snapshot
        and win over it. Without ``since`` the snapshot is taken as current.

        Returns appointments newly flagged as conflicts: booked entries that
        overlap a winning entry for the same doctor and were removed from the
        visible set.
        """
        remote = {appointment.id: appointment for appointment in snapshot}
        merged: Dict[str, Appointment] = {}
        in_flight = [a for a in self._entries.values() if self.is_pending(a.id)]

        since = self._epoch if since is None else since
        for appointment_id, appointment in self._entries.items():
            if self._sync.get(appointment_id) == SyncState.LOCAL_PENDING:
                merged[appointment_id] = appointment
            elif self._settled_at.get(appointment_id, 0) > since:
                merged[appointment_id] = appointment

        fresh = []
        for appointment_id, appointment in remote.items():
            if appointment_id in merged or appointment_id in self._pending_deletes:
                continue
            if self._tombstones.get(appointment_id, 0) > since:
                continue
            if any(_is_echo(local, appointment) for local in in_flight if is_temp_id(local.id)):
                continue
            merged[appointment_id] = appointment
            if appointment_id not in self._confirmed_at:
                fresh.append(appointment)

        for appointment in sorted(fresh, key=_recency_key):
            self._confirmed_at[appointment.id] = next(self._clock)

        dropped = sorted(set(self._entries) - set(merged))
        if dropped:
            logger.info("Merge removed %d appointment(s) no longer present remotely", len(dropped))

        losers = self._resolve_conflicts(merged)
        for loser in losers:
            merged.pop(loser.id, None)

        self._entries = merged
        self._sync = {
            appointment_id: (
                SyncState.LOCAL_PENDING
                if self._sync.get(appointment_id) == SyncState.LOCAL_PENDING
                else SyncState.CONFIRMED
            )
            for appointment_id in merged
        }

        newly_flagged = [loser for loser in losers if loser.id not in self._flagged]
        self._flagged = {loser.id for loser in losers}
        for loser in newly_flagged:
            logger.warning(
                "Conflict: %s %s overlaps a more recent booking for doctor %s",
                loser.id, loser.interval, loser.doctor_id,
            )

        # The snapshot reflects every change up to ``since``
        self._settled_at = {
            appointment_id: stamp
            for appointment_id, stamp in self._settled_at.items()
            if stamp > since and appointment_id in merged
        }
        self._tombstones = {
            appointment_id: stamp
            for appointment_id, stamp in self._tombstones.items()
            if stamp > since
        }
        # Losers stay known so their stamp survives the next merge
        known = set(merged) | set(remote) | self._pending_deletes
        self._confirmed_at = {
            appointment_id: stamp
            for appointment_id, stamp in self._confirmed_at.items()
            if appointment_id in known
        }
        self._drop_aliases(set(self._aliases.values()) - known)
        return newly_flagged

    def _resolve_conflicts(self, merged: Dict[str, Appointment]) -> List[Appointment]:
        def priority(appointment: Appointment):
            pending = self._sync.get(appointment.id) == SyncState.LOCAL_PENDING
            return (pending, self._confirmed_at.get(appointment.id, 0))

        booked = sorted(
            (a for a in merged.values() if a.is_booked and a.doctor_id),
            key=priority,
            reverse=True,
        )
        accepted: List[Appointment] = []
        losers: List[Appointment] = []
        for appointment in booked:
            clash = any(
                kept.doctor_id == appointment.doctor_id and kept.interval.overlaps(appointment.interval)
                for kept in accepted
            )
            # An in-flight local edit is never discarded by a merge
            if clash and not priority(appointment)[0]:
                losers.append(appointment)
            else:
                accepted.append(appointment)
        return losers

    def _store_confirmed(self, appointment: Appointment) -> None:
        self._entries[appointment.id] = appointment
        self._sync[appointment.id] = SyncState.CONFIRMED
        self._confirmed_at[appointment.id] = next(self._clock)
        self._flagged.discard(appointment.id)

    def _drop_aliases(self, targets: Set[str]) -> None:
        for alias in [alias for alias, real in self._aliases.items() if real in targets]:
            del self._aliases[alias]

    def _tick(self) -> int:
        self._epoch += 1
        return self._epoch


def _is_echo(local: Appointment, remote: Appointment) -> bool:
    """A remote record that is the in-flight creation coming back before its response."""
    return (
        local.doctor_id == remote.doctor_id
        and local.patient_id == remote.patient_id
        and local.kind == remote.kind
        and local.interval == remote.interval
    )


def _recency_key(appointment: Appointment):
    # Records without a stamp sort as oldest
    return (appointment.updated_at is not None, appointment.updated_at or appointment.start)
