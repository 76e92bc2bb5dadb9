from __future__ import annotations

import unittest

from lexpro.aggregate import (
    next_case_number,
    resolve_lawyer_view,
    search_cases,
    search_lawyers,
    shape_case,
)
from lexpro.models import UNASSIGNED, Client, Lawyer
from lexpro.reporting import lawyer_ranking

LAWYERS = {"L1": Lawyer(id="L1", name="Ana Torres", specialties=["Laboral"])}


def _row(**overrides):
    row = {
        "id": "C1",
        "case_number": "2024-0001",
        "total_amount": 10000.0,
        "status": "active",
        "commission_amount": 500.0,
        "commission_paid": 0,
        "lawyer_id": None,
        "start_date": "2024-03-01",
        "created_at": "2024-03-01T09:00:00+00:00",
    }
    row.update(overrides)
    return row


class CaseNumberTests(unittest.TestCase):
    def test_takes_max_plus_one_without_filling_gaps(self) -> None:
        self.assertEqual(next_case_number(2024, ["2024-0001", "2024-0003"]), "2024-0004")

    def test_empty_year_starts_at_one(self) -> None:
        self.assertEqual(next_case_number(2025, []), "2025-0001")
        self.assertEqual(next_case_number(2025, ["2024-0042"]), "2025-0001")

    def test_ignores_malformed_numbers(self) -> None:
        self.assertEqual(next_case_number(2024, ["bogus", "2024-0002", "2024-", None]), "2024-0003")


class ShapeCaseTests(unittest.TestCase):
    def test_legacy_case_matches_single_allocation_case(self) -> None:
        legacy = shape_case(_row(lawyer_id="L1"), None, None, [], LAWYERS)
        modern = shape_case(
            _row(),
            None,
            None,
            [{
                "id": "A1", "case_id": "C1", "lawyer_id": "L1",
                "commission_type": "fixed", "commission_percentage": 0,
                "commission_amount": 500.0, "commission_paid": 0,
            }],
            LAWYERS,
        )
        self.assertTrue(legacy.assignments[0].legacy)
        self.assertEqual(legacy.assignments[0].id, "C1")
        self.assertEqual(resolve_lawyer_view(legacy), resolve_lawyer_view(modern))

        (a,), (b,) = lawyer_ranking([legacy]), lawyer_ranking([modern])
        self.assertEqual(a, b)

    def test_allocation_rows_win_over_legacy_columns(self) -> None:
        case = shape_case(
            _row(lawyer_id="L1", commission_amount=9999.0),
            None,
            None,
            [{"id": "A1", "case_id": "C1", "lawyer_id": "L1", "commission_amount": 100.0}],
            LAWYERS,
        )
        self.assertEqual(len(case.assignments), 1)
        self.assertFalse(case.assignments[0].legacy)
        self.assertEqual(resolve_lawyer_view(case).total_commission, 100.0)

    def test_unassigned_marker(self) -> None:
        view = resolve_lawyer_view(shape_case(_row(), None, None, [], LAWYERS))
        self.assertTrue(view.unassigned)
        self.assertEqual(view.label, UNASSIGNED)


class SearchTests(unittest.TestCase):
    def test_search_cases_by_lawyer_and_client(self) -> None:
        cases = [
            shape_case(_row(lawyer_id="L1"), Client(id="K1", name="Grupo Alfa"), None, [], LAWYERS),
            shape_case(_row(id="C2", case_number="2024-0002"), Client(id="K2", name="Beta"), None, [], LAWYERS),
        ]
        self.assertEqual([c.id for c in search_cases(cases, "torres")], ["C1"])
        self.assertEqual([c.id for c in search_cases(cases, "beta")], ["C2"])
        self.assertEqual([c.id for c in search_cases(cases, "2024-000")], ["C1", "C2"])
        self.assertEqual(len(search_cases(cases, "  ")), 2)

    def test_search_lawyers_by_specialty(self) -> None:
        self.assertEqual(len(search_lawyers(LAWYERS.values(), "labor")), 1)
        self.assertEqual(search_lawyers(LAWYERS.values(), "penal"), [])


if __name__ == "__main__":
    unittest.main()
