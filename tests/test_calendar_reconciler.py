from datetime import datetime

from app.schemas.appointment import AppointmentStatus, SyncState
from app.services.calendar_reconciler import CalendarReconciler

from conftest import make_appointment, slot


class TestOptimisticLifecycle:
    def test_apply_then_confirm_rebinds_temp_id(self):
        reconciler = CalendarReconciler()
        draft = make_appointment("temp-1-abc", slot(9, 10))
        assert reconciler.apply_optimistic(draft) is None
        assert reconciler.is_pending("temp-1-abc")

        real = draft.model_copy(update={"id": "55"})
        reconciler.confirm("temp-1-abc", real)

        assert [a.id for a in reconciler.snapshot()] == ["55"]
        assert reconciler.resolve("temp-1-abc") == "55"
        assert reconciler.get("temp-1-abc") == real
        assert reconciler.sync_state("55") == SyncState.CONFIRMED
        assert "temp-1-abc" in reconciler

    def test_rollback_of_creation_removes_entry(self):
        reconciler = CalendarReconciler([make_appointment("1", slot(11, 12))])
        before = reconciler.snapshot()
        reconciler.apply_optimistic(make_appointment("temp-1-abc", slot(9, 10)))
        reconciler.rollback("temp-1-abc")
        assert reconciler.snapshot() == before

    def test_rollback_of_update_restores_exact_prior(self):
        original = make_appointment("1", slot(9, 10), notes="bring x-rays")
        reconciler = CalendarReconciler([original])
        before = reconciler.snapshot()

        prior = reconciler.apply_optimistic(original.model_copy(update={"interval": slot(14, 15)}))
        assert prior == original
        reconciler.rollback("1", prior)

        assert reconciler.snapshot() == before
        assert reconciler.sync_state("1") == SyncState.CONFIRMED

    def test_delete_lifecycle(self):
        original = make_appointment("1", slot(9, 10))
        reconciler = CalendarReconciler([original])
        prior = reconciler.begin_delete("1")
        assert prior == original
        assert len(reconciler) == 0
        assert reconciler.pending_deletes == {"1"}

        reconciler.finish_delete("1")
        assert reconciler.pending_deletes == frozenset()
        assert reconciler.snapshot() == []

    def test_rollback_delete_restores(self):
        original = make_appointment("1", slot(9, 10))
        reconciler = CalendarReconciler([original])
        prior = reconciler.begin_delete("1")
        reconciler.rollback_delete("1", prior)
        assert reconciler.snapshot() == [original]
        assert reconciler.pending_deletes == frozenset()


class TestMergeExternal:
    def test_remote_snapshot_replaces_confirmed_entries(self):
        reconciler = CalendarReconciler([make_appointment("1", slot(9, 10)), make_appointment("2", slot(10, 11))])
        moved = make_appointment("1", slot(15, 16))
        assert reconciler.merge_external([moved, make_appointment("3", slot(11, 12))]) == []
        assert [a.id for a in reconciler.snapshot()] == ["3", "1"]
        assert reconciler.get("1").interval == slot(15, 16)

    def test_in_flight_edit_is_not_clobbered(self):
        original = make_appointment("1", slot(9, 10))
        reconciler = CalendarReconciler([original])
        edited = original.model_copy(update={"interval": slot(14, 15)})
        reconciler.apply_optimistic(edited)

        reconciler.merge_external([original])

        assert reconciler.get("1") == edited
        assert reconciler.is_pending("1")

    def test_in_flight_creation_survives_merge_without_it(self):
        reconciler = CalendarReconciler()
        draft = make_appointment("temp-1-abc", slot(9, 10))
        reconciler.apply_optimistic(draft)
        reconciler.merge_external([])
        assert reconciler.get("temp-1-abc") == draft

    def test_echo_of_in_flight_creation_is_skipped(self):
        reconciler = CalendarReconciler()
        reconciler.apply_optimistic(make_appointment("temp-1-abc", slot(9, 10)))
        echo = make_appointment("77", slot(9, 10))

        assert reconciler.merge_external([echo]) == []
        assert [a.id for a in reconciler.snapshot()] == ["temp-1-abc"]

    def test_pending_delete_is_not_resurrected(self):
        reconciler = CalendarReconciler([make_appointment("1", slot(9, 10))])
        reconciler.begin_delete("1")
        reconciler.merge_external([make_appointment("1", slot(9, 10))])
        assert "1" not in reconciler

    def test_conflict_keeps_most_recently_confirmed(self):
        reconciler = CalendarReconciler([make_appointment("old", slot(9, 10))])
        newer = make_appointment(
            "new", slot(9, 10), patient_id="p2", updated_at=datetime(2024, 3, 1, 12)
        )

        flagged = reconciler.merge_external([make_appointment("old", slot(9, 10)), newer])

        assert [a.id for a in flagged] == ["old"]
        assert [a.id for a in reconciler.snapshot()] == ["new"]

    def test_conflict_is_flagged_once(self):
        reconciler = CalendarReconciler([make_appointment("old", slot(9, 10))])
        snapshot = [make_appointment("old", slot(9, 10)), make_appointment("new", slot(9, 10), patient_id="p2")]
        assert len(reconciler.merge_external(snapshot)) == 1
        assert reconciler.merge_external(snapshot) == []
        assert [a.id for a in reconciler.snapshot()] == ["new"]

    def test_unbooked_overlaps_are_not_conflicts(self):
        reconciler = CalendarReconciler()
        snapshot = [
            make_appointment("a", slot(9, 10)),
            make_appointment("b", slot(9, 10), status=AppointmentStatus.PENDING),
            make_appointment("c", slot(9, 10), status=AppointmentStatus.CANCELLED),
            make_appointment("d", slot(9, 10), doctor_id="d2"),
        ]
        assert reconciler.merge_external(snapshot) == []
        assert len(reconciler) == 4

    def test_fresh_entries_ordered_by_updated_at(self):
        reconciler = CalendarReconciler()
        first = make_appointment("a", slot(9, 10), updated_at=datetime(2024, 3, 1, 9))
        second = make_appointment("b", slot(9, 10), patient_id="p2", updated_at=datetime(2024, 3, 1, 10))
        flagged = reconciler.merge_external([second, first])
        assert [a.id for a in flagged] == ["a"]

    def test_local_pending_entry_always_wins(self):
        reconciler = CalendarReconciler()
        reconciler.apply_optimistic(make_appointment("temp-1-abc", slot(9, 10)))
        other = make_appointment("9", slot(9, 10), patient_id="p2")

        flagged = reconciler.merge_external([other])

        assert [a.id for a in flagged] == ["9"]
        assert [a.id for a in reconciler.snapshot()] == ["temp-1-abc"]


class TestStaleSnapshots:
    def test_delete_finished_during_fetch_stays_deleted(self):
        original = make_appointment("7", slot(9, 10))
        reconciler = CalendarReconciler([original])
        since = reconciler.epoch

        reconciler.begin_delete("7")
        reconciler.finish_delete("7")
        reconciler.merge_external([original], since=since)

        assert "7" not in reconciler
        assert reconciler.snapshot() == []

    def test_creation_confirmed_during_fetch_stays_visible(self):
        reconciler = CalendarReconciler()
        since = reconciler.epoch
        draft = make_appointment("temp-1-abc", slot(9, 10))
        reconciler.apply_optimistic(draft)
        real = reconciler.confirm("temp-1-abc", draft.model_copy(update={"id": "100"}))

        reconciler.merge_external([], since=since)

        assert reconciler.get("100") == real
        assert reconciler.sync_state("100") == SyncState.CONFIRMED

    def test_snapshot_fetched_afterwards_is_authoritative(self):
        reconciler = CalendarReconciler()
        draft = make_appointment("temp-1-abc", slot(9, 10))
        reconciler.apply_optimistic(draft)
        reconciler.confirm("temp-1-abc", draft.model_copy(update={"id": "100"}))
        reconciler.merge_external([], since=0)

        reconciler.merge_external([])

        assert "100" not in reconciler
        assert reconciler.resolve("temp-1-abc") == "temp-1-abc"
        assert "100" not in reconciler._confirmed_at
        assert reconciler._settled_at == {}

    def test_remote_edit_after_confirmation_wins(self):
        reconciler = CalendarReconciler()
        reconciler.confirm("1", make_appointment("1", slot(9, 10)))
        since = reconciler.epoch

        reconciler.merge_external([make_appointment("1", slot(14, 15))], since=since)

        assert reconciler.get("1").interval == slot(14, 15)

    def test_tombstones_are_dropped_once_covered(self):
        reconciler = CalendarReconciler([make_appointment("7", slot(9, 10))])
        since = reconciler.epoch
        reconciler.begin_delete("7")
        reconciler.finish_delete("7")

        reconciler.merge_external([make_appointment("7", slot(9, 10))], since=since)
        assert reconciler._tombstones == {"7": 1}

        reconciler.merge_external([])
        assert reconciler._tombstones == {}

    def test_is_settled(self):
        reconciler = CalendarReconciler([make_appointment("1", slot(9, 10))])
        assert reconciler.is_settled
        reconciler.apply_optimistic(make_appointment("temp-1-abc", slot(11, 12)))
        assert not reconciler.is_settled
        reconciler.rollback("temp-1-abc")
        reconciler.begin_delete("1")
        assert not reconciler.is_settled
        reconciler.finish_delete("1")
        assert reconciler.is_settled
