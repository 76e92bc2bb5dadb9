from __future__ import annotations

import tempfile
import unittest
from datetime import date
from pathlib import Path
from unittest import mock

from lexpro import persistence, workflows
from lexpro.reporting import lawyer_ranking
from lexpro.commission import AssignmentDraft
from lexpro.errors import NotFoundError, StorageError, TransientIOError, ValidationError
from lexpro.workflows import CaseDraft


class WorkflowTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.db = Path(self._tmp.name) / "lexpro.db"
        persistence.init_db(self.db)
        self.service = persistence.create_service(self.db, name="Juicio laboral", base_price=10000)
        self.ana = persistence.create_lawyer(self.db, name="Ana")
        self.bruno = persistence.create_lawyer(self.db, name="Bruno")
        self.carla = persistence.create_lawyer(self.db, name="Carla")

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _draft(self, **overrides) -> CaseDraft:
        values = dict(
            service_id=self.service.id,
            total_amount=10000.0,
            client_name="Grupo Alfa",
            assignments=[
                AssignmentDraft(self.ana.id, "percentage", commission_percentage=20),
                AssignmentDraft(self.bruno.id, "fixed", commission_amount=500),
            ],
        )
        values.update(overrides)
        return CaseDraft(**values)

    def _create(self, **overrides):
        report = workflows.create_case(self.db, self._draft(**overrides), today=date(2024, 5, 1))
        return report, persistence.get_case(self.db, report.case_id)

    def _allocation(self, case, lawyer_id):
        return next(a for a in case.assignments if a.lawyer_id == lawyer_id)

    def _legacy_case(self, paid: bool = False) -> str:
        client = persistence.create_client(self.db, name="Histórico")
        row = persistence.insert_case(
            self.db,
            {"client_id": client.id, "lawyer_id": self.ana.id, "total_amount": 8000.0, "commission_amount": 800.0},
            year=2023,
        )
        if paid:
            persistence.set_commission_paid(self.db, row["id"], True, legacy=True)
        return row["id"]


class CreateCaseTests(WorkflowTestCase):
    def test_creates_client_case_and_allocations(self) -> None:
        report, case = self._create()
        self.assertTrue(report.ok)
        self.assertEqual(report.case_number, "2024-0001")
        self.assertEqual([s.name for s in report.steps], ["create_client", "create_case", "create_allocation", "create_allocation"])
        self.assertEqual(case.client_name, "Grupo Alfa")
        self.assertEqual(case.start_date, "2024-05-01")
        self.assertEqual(case.commission_amount, 2500.0)
        self.assertEqual(self._allocation(case, self.ana.id).commission_amount, 2000.0)
        self.assertEqual(self._allocation(case, self.bruno.id).commission_amount, 500.0)

    def test_validation_failure_writes_nothing(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            workflows.create_case(self.db, self._draft(client_name="", total_amount=-1, assignments=[]))
        self.assertEqual(len(ctx.exception.problems), 3)
        self.assertEqual(persistence.load_cases(self.db), [])
        self.assertEqual(persistence.list_clients(self.db), [])

    def test_unknown_lawyer_writes_nothing(self) -> None:
        with self.assertRaises(NotFoundError):
            workflows.create_case(self.db, self._draft(assignments=[AssignmentDraft("ghost")]))
        self.assertEqual(persistence.list_clients(self.db), [])

    def test_inactive_lawyer_cannot_be_assigned(self) -> None:
        persistence.update_lawyer(self.db, self.carla.id, status="inactive")
        with self.assertRaises(ValidationError):
            workflows.create_case(self.db, self._draft(assignments=[AssignmentDraft(self.carla.id)]))

    def test_failed_allocation_is_reported_and_total_resynced(self) -> None:
        original = persistence.insert_allocation

        def flaky(db_path, **kwargs):
            if kwargs["lawyer_id"] == self.bruno.id:
                raise TransientIOError("disk i/o error")
            return original(db_path, **kwargs)

        with mock.patch.object(persistence, "insert_allocation", side_effect=flaky):
            report, case = self._create()

        self.assertFalse(report.ok)
        (failed,) = report.failed
        self.assertEqual(failed.entity_id, self.bruno.id)
        self.assertIn("disk i/o", failed.error)
        self.assertEqual([a.lawyer_id for a in case.assignments], [self.ana.id])
        self.assertEqual(case.commission_amount, 2000.0)

    def test_every_allocation_failing_zeroes_the_case_total(self) -> None:
        with mock.patch.object(persistence, "insert_allocation", side_effect=TransientIOError("locked")):
            report, case = self._create()
        self.assertEqual(len(report.failed), 2)
        self.assertEqual(case.assignments, [])
        self.assertEqual(case.commission_amount, 0.0)

    def test_existing_client_is_reused(self) -> None:
        client = persistence.create_client(self.db, name="Beta")
        report, case = self._create(client_id=client.id, client_name="")
        self.assertNotIn("create_client", [s.name for s in report.steps])
        self.assertEqual(case.client_name, "Beta")


class UpdateCaseTests(WorkflowTestCase):
    def test_total_change_keeps_snapshots(self) -> None:
        _, case = self._create()
        workflows.update_case(self.db, case.id, {"total_amount": 20000.0})
        case = persistence.get_case(self.db, case.id)
        self.assertEqual(case.total_amount, 20000.0)
        self.assertEqual(self._allocation(case, self.ana.id).commission_amount, 2000.0)
        self.assertEqual(case.commission_amount, 2500.0)

    def test_assignment_sync_adds_and_removes(self) -> None:
        _, case = self._create()
        ana = self._allocation(case, self.ana.id)
        report = workflows.update_case(
            self.db,
            case.id,
            {"total_amount": 20000.0, "commission_amount": 1.0},
            assignments=[
                AssignmentDraft(self.ana.id, "percentage", commission_percentage=20, commission_amount=2000, id=ana.id),
                AssignmentDraft(self.carla.id, "percentage", commission_percentage=10),
            ],
        )
        self.assertTrue(report.ok)
        case = persistence.get_case(self.db, case.id)
        self.assertEqual(sorted(a.lawyer_id for a in case.assignments), sorted([self.ana.id, self.carla.id]))
        self.assertEqual(self._allocation(case, self.ana.id).commission_amount, 2000.0)
        self.assertEqual(self._allocation(case, self.carla.id).commission_amount, 2000.0)
        self.assertEqual(case.commission_amount, 4000.0)

    def test_retained_inactive_lawyer_stays_valid(self) -> None:
        _, case = self._create()
        ana = self._allocation(case, self.ana.id)
        persistence.update_lawyer(self.db, self.ana.id, status="inactive")
        report = workflows.update_case(
            self.db, case.id, {"notes": "revisado"},
            assignments=[AssignmentDraft(self.ana.id, id=ana.id)],
        )
        self.assertTrue(report.ok)
        self.assertEqual(len(persistence.get_case(self.db, case.id).assignments), 1)

    def test_unknown_allocation_id_is_rejected(self) -> None:
        _, case = self._create()
        with self.assertRaises(NotFoundError):
            workflows.update_case(self.db, case.id, {}, assignments=[AssignmentDraft(self.ana.id, id="nope")])


class AllocationTests(WorkflowTestCase):
    def test_rerate_recomputes_against_current_total(self) -> None:
        _, case = self._create()
        workflows.update_case(self.db, case.id, {"total_amount": 20000.0})
        ana = self._allocation(case, self.ana.id)
        row = workflows.rerate_allocation(self.db, ana.id, commission_percentage=25)
        self.assertEqual(row["commission_amount"], 5000.0)
        self.assertEqual(persistence.get_case(self.db, case.id).commission_amount, 5500.0)

    def test_add_and_remove_allocation(self) -> None:
        _, case = self._create()
        row = workflows.add_allocation(self.db, case.id, AssignmentDraft(self.carla.id, "fixed", commission_amount=300))
        self.assertEqual(persistence.get_case(self.db, case.id).commission_amount, 2800.0)
        with self.assertRaises(ValidationError):
            workflows.add_allocation(self.db, case.id, AssignmentDraft(self.carla.id))
        workflows.remove_allocation(self.db, row["id"])
        self.assertEqual(persistence.get_case(self.db, case.id).commission_amount, 2500.0)


class LegacyCaseTests(WorkflowTestCase):
    def test_adding_an_allocation_keeps_the_legacy_lawyer(self) -> None:
        case_id = self._legacy_case(paid=True)
        workflows.add_allocation(self.db, case_id, AssignmentDraft(self.carla.id, "fixed", commission_amount=300))

        case = persistence.get_case(self.db, case_id)
        self.assertEqual([a.lawyer_id for a in case.assignments], [self.ana.id, self.carla.id])
        self.assertFalse(any(a.legacy for a in case.assignments))
        ana = self._allocation(case, self.ana.id)
        self.assertEqual(ana.commission_amount, 800.0)
        self.assertTrue(ana.commission_paid)
        self.assertEqual(case.commission_amount, 1100.0)
        self.assertEqual(sorted(e.name for e in lawyer_ranking([case])), ["Ana", "Carla"])

    def test_assigning_the_legacy_lawyer_twice_is_rejected(self) -> None:
        case_id = self._legacy_case()
        with self.assertRaises(ValidationError):
            workflows.add_allocation(self.db, case_id, AssignmentDraft(self.ana.id))
        (only,) = persistence.get_case(self.db, case_id).assignments
        self.assertTrue(only.legacy)

    def test_update_can_retain_the_legacy_assignment(self) -> None:
        case_id = self._legacy_case(paid=True)
        report = workflows.update_case(
            self.db, case_id, {},
            assignments=[
                AssignmentDraft(self.ana.id, "fixed", commission_amount=800, id=case_id),
                AssignmentDraft(self.bruno.id, "percentage", commission_percentage=10),
            ],
        )
        self.assertTrue(report.ok)
        self.assertIn("promote_legacy_allocation", [s.name for s in report.steps])
        case = persistence.get_case(self.db, case_id)
        self.assertEqual(sorted(a.lawyer_id for a in case.assignments), sorted([self.ana.id, self.bruno.id]))
        self.assertTrue(self._allocation(case, self.ana.id).commission_paid)
        self.assertEqual(self._allocation(case, self.bruno.id).commission_amount, 800.0)
        self.assertEqual(case.commission_amount, 1600.0)

    def test_update_can_replace_the_legacy_assignment(self) -> None:
        case_id = self._legacy_case()
        report = workflows.update_case(
            self.db, case_id, {}, assignments=[AssignmentDraft(self.bruno.id, "fixed", commission_amount=500)],
        )
        self.assertTrue(report.ok)
        case = persistence.get_case(self.db, case_id)
        self.assertEqual([a.lawyer_id for a in case.assignments], [self.bruno.id])
        self.assertEqual(case.commission_amount, 500.0)

    def test_failed_promotion_leaves_the_assignment_set_untouched(self) -> None:
        case_id = self._legacy_case()
        with mock.patch.object(persistence, "promote_legacy_allocation", side_effect=TransientIOError("locked")):
            report = workflows.update_case(
                self.db, case_id, {"notes": "x"}, assignments=[AssignmentDraft(self.bruno.id)],
            )
        self.assertFalse(report.ok)
        self.assertEqual([s.name for s in report.failed], ["promote_legacy_allocation"])
        (only,) = persistence.get_case(self.db, case_id).assignments
        self.assertEqual(only.lawyer_id, self.ana.id)

    def test_bulk_liquidation_covers_legacy_and_promoted_rows(self) -> None:
        legacy_id = self._legacy_case()
        mixed_id = self._legacy_case()
        workflows.add_allocation(self.db, mixed_id, AssignmentDraft(self.carla.id, "fixed", commission_amount=300))

        report = workflows.liquidate_pending(self.db)

        self.assertTrue(report.ok)
        self.assertEqual(len(report.succeeded), 3)
        self.assertIn(legacy_id, report.succeeded)
        for case_id in (legacy_id, mixed_id):
            self.assertTrue(all(a.commission_paid for a in persistence.get_case(self.db, case_id).assignments))


class LiquidationTests(WorkflowTestCase):
    def test_bulk_liquidation_with_one_failure(self) -> None:
        self._create()
        self._create(assignments=[AssignmentDraft(self.carla.id, "percentage", commission_percentage=10)])
        allocations = [a for c in persistence.load_cases(self.db) for a in c.assignments]
        self.assertEqual(len(allocations), 3)
        broken = allocations[1].id
        original = persistence.set_commission_paid

        def flaky(db_path, allocation_id, paid=True, legacy=False):
            if allocation_id == broken:
                raise TransientIOError("database is locked")
            return original(db_path, allocation_id, paid, legacy=legacy)

        with mock.patch.object(persistence, "set_commission_paid", side_effect=flaky):
            report = workflows.liquidate_pending(self.db)

        self.assertEqual(len(report.succeeded), 2)
        self.assertEqual(list(report.failed), [broken])
        after = {a.id: a.commission_paid for c in persistence.load_cases(self.db) for a in c.assignments}
        self.assertEqual(sum(after.values()), 2)
        self.assertFalse(after[broken])

    def test_audit_failure_does_not_fail_the_row(self) -> None:
        _, case = self._create()
        with mock.patch.object(persistence, "log_audit_event", side_effect=TransientIOError("disk i/o error")):
            report = workflows.liquidate_pending(self.db)
        self.assertEqual(report.failed, {})
        self.assertEqual(len(report.succeeded), 2)
        case = persistence.get_case(self.db, case.id)
        self.assertTrue(all(a.commission_paid for a in case.assignments))

    def test_storage_error_on_one_row_does_not_abort_the_batch(self) -> None:
        _, case = self._create()
        broken = self._allocation(case, self.ana.id).id
        original = persistence.set_commission_paid

        def flaky(db_path, allocation_id, paid=True, legacy=False):
            if allocation_id == broken:
                raise StorageError("set_commission_paid: malformed database")
            return original(db_path, allocation_id, paid, legacy=legacy)

        with mock.patch.object(persistence, "set_commission_paid", side_effect=flaky):
            report = workflows.liquidate_pending(self.db)
        self.assertEqual(list(report.failed), [broken])
        self.assertEqual(report.succeeded, [self._allocation(case, self.bruno.id).id])

    def test_already_paid_ids_are_reported(self) -> None:
        _, case = self._create()
        ana = self._allocation(case, self.ana.id)
        bruno = self._allocation(case, self.bruno.id)
        workflows.liquidate_allocation(self.db, ana.id)
        report = workflows.liquidate_pending(self.db, [ana.id, bruno.id])
        self.assertEqual(report.succeeded, [bruno.id])
        self.assertEqual(report.already_paid, [ana.id])
        self.assertEqual(report.failed, {})

    def test_selected_ids_and_unknown_ids(self) -> None:
        _, case = self._create()
        ana = self._allocation(case, self.ana.id)
        report = workflows.liquidate_pending(self.db, [ana.id, "ghost"])
        self.assertEqual(report.succeeded, [ana.id])
        self.assertIn("ghost", report.failed)
        case = persistence.get_case(self.db, case.id)
        self.assertFalse(self._allocation(case, self.bruno.id).commission_paid)

    def test_liquidating_a_legacy_case(self) -> None:
        case_id = self._legacy_case()
        allocation = workflows.liquidate_allocation(self.db, case_id)
        self.assertTrue(allocation.legacy)
        self.assertTrue(persistence.get_case(self.db, case_id).assignments[0].commission_paid)
        events = persistence.list_audit_events(self.db, entity_type="allocation", entity_id=case_id)
        self.assertEqual(events[0]["new_value"], "paid")

    def test_liquidate_allocation_is_idempotent(self) -> None:
        _, case = self._create()
        ana = self._allocation(case, self.ana.id)
        workflows.liquidate_allocation(self.db, ana.id)
        workflows.liquidate_allocation(self.db, ana.id)
        events = persistence.list_audit_events(self.db, entity_type="allocation", entity_id=ana.id)
        self.assertEqual(len(events), 1)


if __name__ == "__main__":
    unittest.main()
