from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable

from lexpro.commission import total_commission
from lexpro.models import UNASSIGNED, Allocation, Case, Client, Lawyer, LegalService

UNKNOWN_LAWYER = "(desconocido)"
CASE_NUMBER_RE = re.compile(r"^(\d{4})-(\d+)$")


@dataclass
class LawyerView:
    names: list[str]
    total_commission: float
    unassigned: bool = False

    @property
    def label(self) -> str:
        return ", ".join(self.names) if self.names else UNASSIGNED


def _allocation_from_row(row: dict[str, Any], lawyers_by_id: dict[str, Lawyer]) -> Allocation:
    lawyer = lawyers_by_id.get(row["lawyer_id"])
    return Allocation(
        id=row["id"],
        case_id=row["case_id"],
        lawyer_id=row["lawyer_id"],
        lawyer_name=lawyer.name if lawyer else UNKNOWN_LAWYER,
        commission_type=row.get("commission_type") or "percentage",
        commission_percentage=float(row.get("commission_percentage") or 0),
        commission_amount=float(row.get("commission_amount") or 0),
        commission_paid=bool(row.get("commission_paid")),
        created_at=row.get("created_at"),
    )


def normalize_assignments(
    case_row: dict[str, Any],
    allocation_rows: Iterable[dict[str, Any]],
    lawyers_by_id: dict[str, Lawyer],
) -> list[Allocation]:
    """Collapse the multi-allocation and legacy single-lawyer shapes into one list.

    Allocation rows win whenever any exist; the legacy ``lawyer_id`` /
    ``commission_amount`` pair on the case is only read as a fallback.
    """
    allocations = [_allocation_from_row(r, lawyers_by_id) for r in allocation_rows]
    if allocations:
        return allocations
    legacy_lawyer_id = case_row.get("lawyer_id")
    if not legacy_lawyer_id:
        return []
    lawyer = lawyers_by_id.get(legacy_lawyer_id)
    return [
        Allocation(
            id=case_row["id"],
            case_id=case_row["id"],
            lawyer_id=legacy_lawyer_id,
            lawyer_name=lawyer.name if lawyer else UNKNOWN_LAWYER,
            commission_type="fixed",
            commission_percentage=0.0,
            commission_amount=float(case_row.get("commission_amount") or 0),
            commission_paid=bool(case_row.get("commission_paid")),
            legacy=True,
            created_at=case_row.get("created_at"),
        )
    ]


def shape_case(
    row: dict[str, Any],
    client: Client | None,
    service: LegalService | None,
    allocation_rows: Iterable[dict[str, Any]],
    lawyers_by_id: dict[str, Lawyer],
) -> Case:
    return Case(
        id=row["id"],
        case_number=row["case_number"],
        total_amount=float(row.get("total_amount") or 0),
        status=row.get("status") or "active",
        payment_status=row.get("payment_status") or "pending",
        priority=row.get("priority") or "medium",
        start_date=row.get("start_date"),
        end_date=row.get("end_date"),
        notes=row.get("notes"),
        commission_amount=float(row.get("commission_amount") or 0),
        created_at=row.get("created_at"),
        client=client,
        service=service,
        assignments=normalize_assignments(row, allocation_rows, lawyers_by_id),
    )


def resolve_lawyer_view(case: Case) -> LawyerView:
    if not case.assignments:
        return LawyerView(names=[], total_commission=0.0, unassigned=True)
    return LawyerView(
        names=[a.lawyer_name for a in case.assignments if a.lawyer_name],
        total_commission=total_commission(case.assignments),
    )


def next_case_number(year: int, existing_numbers: Iterable[str]) -> str:
    """Next ``YYYY-NNNN`` for ``year``: max + 1, gaps are never refilled."""
    highest = 0
    for number in existing_numbers:
        m = CASE_NUMBER_RE.match(number or "")
        if m is None or int(m.group(1)) != year:
            continue
        highest = max(highest, int(m.group(2)))
    return f"{year}-{highest + 1:04d}"


def search_cases(cases: Iterable[Case], term: str | None) -> list[Case]:
    cases = list(cases)
    needle = (term or "").strip().lower()
    if not needle:
        return cases
    result = []
    for c in cases:
        haystack = [c.case_number, c.client_name, *resolve_lawyer_view(c).names]
        if any(needle in (h or "").lower() for h in haystack):
            result.append(c)
    return result


def search_lawyers(lawyers: Iterable[Lawyer], term: str | None) -> list[Lawyer]:
    lawyers = list(lawyers)
    needle = (term or "").strip().lower()
    if not needle:
        return lawyers
    return [
        l for l in lawyers
        if needle in l.name.lower() or any(needle in s.lower() for s in l.specialties)
    ]
