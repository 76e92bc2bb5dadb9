"""Multi-step case mutations.

The gateway offers no transaction spanning several calls, so creating a case
with its allocations, editing a case, and bulk liquidation run as sagas: every
step is attempted, its outcome recorded, and the caller receives the full
report. Recovery is forward-only: steps that failed are reported so they can
be retried, and the denormalized case total is re-synced to what was
actually stored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from pathlib import Path
from typing import Any, Iterable

from lexpro import persistence
from lexpro.commission import (
    AssignmentDraft,
    CommissionRule,
    compute_amount,
    resolve_drafts,
    total_commission,
    validate_assignment_set,
)
from lexpro.errors import LedgerError, NotFoundError, ValidationError
from lexpro.models import CASE_STATUSES, PAYMENT_STATUSES, PRIORITIES, Allocation, Case
from lexpro.reporting import LiquidationReport, all_allocations, liquidate_all

logger = logging.getLogger(__name__)


@dataclass
class SagaStep:
    name: str
    entity_id: str | None = None
    ok: bool = True
    error: str | None = None


@dataclass
class SagaReport:
    case_id: str | None = None
    case_number: str | None = None
    steps: list[SagaStep] = field(default_factory=list)

    @property
    def failed(self) -> list[SagaStep]:
        return [s for s in self.steps if not s.ok]

    @property
    def ok(self) -> bool:
        return not self.failed

    def as_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "case_id": self.case_id,
            "case_number": self.case_number,
            "steps": [s.__dict__ for s in self.steps],
            "failed": [s.__dict__ for s in self.failed],
        }


@dataclass
class CaseDraft:
    service_id: str
    total_amount: float
    assignments: list[AssignmentDraft]
    client_id: str | None = None
    client_name: str = ""
    client_email: str | None = None
    client_phone: str | None = None
    client_company: str | None = None
    start_date: str | None = None
    notes: str | None = None
    status: str = "active"
    payment_status: str = "pending"
    priority: str = "medium"


def _check_case_fields(fields: dict[str, Any]) -> list[str]:
    problems = []
    if "status" in fields and fields["status"] not in CASE_STATUSES:
        problems.append(f"invalid status: {fields['status']}")
    if "payment_status" in fields and fields["payment_status"] not in PAYMENT_STATUSES:
        problems.append(f"invalid payment_status: {fields['payment_status']}")
    if "priority" in fields and fields["priority"] not in PRIORITIES:
        problems.append(f"invalid priority: {fields['priority']}")
    if fields.get("total_amount") is not None and fields["total_amount"] < 0:
        problems.append("total_amount must be non-negative")
    return problems


def _check_lawyers_exist(db_path: Path, drafts: Iterable[AssignmentDraft]) -> set[str]:
    """Return the active lawyer ids, raising NotFoundError for unknown references."""
    lawyers = {l.id: l for l in persistence.list_lawyers(db_path)}
    for d in drafts:
        if d.lawyer_id and d.lawyer_id not in lawyers:
            raise NotFoundError("lawyer", d.lawyer_id)
    return {l.id for l in lawyers.values() if l.is_active}


def _resync_commission_total(db_path: Path, case_id: str) -> Case:
    case = persistence.get_case(db_path, case_id)
    if not any(a.legacy for a in case.assignments):
        total = total_commission(case.assignments)
        if total != case.commission_amount:
            persistence.update_case_row(db_path, case_id, {"commission_amount": total})
            case.commission_amount = total
    return case


def _promote_legacy(db_path: Path, case: Case) -> str | None:
    """Turn a legacy single-lawyer pair into an allocation row before the set changes.

    Returns the new row id, or None when the case has no legacy allocation.
    """
    if not any(a.legacy for a in case.assignments):
        return None
    row = persistence.promote_legacy_allocation(db_path, case.id)
    return row["id"] if row else None


def _insert_drafts(db_path: Path, case_id: str, drafts: Iterable[AssignmentDraft], report: SagaReport) -> None:
    for d in drafts:
        step = SagaStep(name="create_allocation", entity_id=d.lawyer_id)
        try:
            row = persistence.insert_allocation(
                db_path,
                case_id=case_id,
                lawyer_id=d.lawyer_id,
                commission_type=d.commission_type,
                commission_percentage=d.commission_percentage,
                commission_amount=d.commission_amount,
            )
            step.entity_id = row["id"]
        except LedgerError as exc:
            logger.warning("Allocation for lawyer %s on case %s failed: %s", d.lawyer_id, case_id, exc)
            step.ok = False
            step.error = str(exc)
        report.steps.append(step)


def create_case(db_path: Path, draft: CaseDraft, actor: str = "system", today: date | None = None) -> SagaReport:
    problems = []
    if not draft.client_id and not (draft.client_name or "").strip():
        problems.append("client is required")
    if not draft.service_id:
        problems.append("service is required")
    if not any(a.lawyer_id for a in draft.assignments):
        problems.append("at least one lawyer assignment is required")
    problems += _check_case_fields({
        "status": draft.status,
        "payment_status": draft.payment_status,
        "priority": draft.priority,
        "total_amount": draft.total_amount,
    })
    if problems:
        raise ValidationError(problems)

    persistence.get_service(db_path, draft.service_id)
    active_ids = _check_lawyers_exist(db_path, draft.assignments)
    kept = validate_assignment_set(draft.assignments, active_ids)
    resolved = resolve_drafts(kept, draft.total_amount)

    report = SagaReport()
    if draft.client_id:
        client_id = draft.client_id
    else:
        client = persistence.create_client(
            db_path,
            name=draft.client_name,
            email=draft.client_email,
            phone=draft.client_phone,
            company=draft.client_company,
        )
        client_id = client.id
        report.steps.append(SagaStep(name="create_client", entity_id=client_id))

    today = today or date.today()
    row = persistence.insert_case(
        db_path,
        {
            "client_id": client_id,
            "service_id": draft.service_id,
            "status": draft.status,
            "payment_status": draft.payment_status,
            "priority": draft.priority,
            "total_amount": draft.total_amount,
            "commission_amount": total_commission(resolved),
            "start_date": draft.start_date or today.isoformat(),
            "notes": draft.notes,
        },
        year=today.year,
    )
    report.case_id = row["id"]
    report.case_number = row["case_number"]
    report.steps.append(SagaStep(name="create_case", entity_id=row["id"]))

    _insert_drafts(db_path, row["id"], resolved, report)
    if not report.ok:
        _resync_commission_total(db_path, row["id"])

    persistence.log_audit_event(
        db_path, event_type="case", action="created",
        entity_type="case", entity_id=row["id"], actor=actor,
        detail=f"{row['case_number']}: {len(resolved)} allocations, {len(report.failed)} failed",
    )
    return report


def update_case(
    db_path: Path,
    case_id: str,
    changes: dict[str, Any],
    assignments: list[AssignmentDraft] | None = None,
    actor: str = "system",
) -> SagaReport:
    """Apply a partial case update and, when given, sync the assignment list.

    Retained allocations keep their stored snapshot. Only drafts without an id
    are resolved against the (possibly new) total and inserted.
    """
    case = persistence.get_case(db_path, case_id)
    changes = {k: v for k, v in changes.items() if k != "commission_amount"}
    problems = _check_case_fields(changes)
    if problems:
        raise ValidationError(problems)

    existing_ids = {a.id for a in case.assignments}
    kept: list[AssignmentDraft] = []
    if assignments is not None:
        for d in assignments:
            if d.id is not None and d.id not in existing_ids:
                raise NotFoundError("allocation", d.id)
        active_ids = _check_lawyers_exist(db_path, assignments)
        kept = validate_assignment_set(assignments, active_ids)

    report = SagaReport(case_id=case.id, case_number=case.case_number)
    if changes:
        persistence.update_case_row(db_path, case_id, changes)
        report.steps.append(SagaStep(name="update_case", entity_id=case_id))

    if assignments is not None and case.id in existing_ids:
        step = SagaStep(name="promote_legacy_allocation", entity_id=case.id)
        try:
            promoted_id = _promote_legacy(db_path, case)
        except LedgerError as exc:
            # Syncing without the promoted row would drop the legacy lawyer.
            logger.warning("Legacy allocation on case %s could not be promoted: %s", case_id, exc)
            step.ok = False
            step.error = str(exc)
            assignments = None
        else:
            existing_ids = existing_ids - {case.id}
            if promoted_id:
                step.entity_id = promoted_id
                existing_ids.add(promoted_id)
                kept = [replace(d, id=promoted_id) if d.id == case.id else d for d in kept]
        report.steps.append(step)

    if assignments is not None:
        retained = {d.id for d in kept if d.id is not None}
        for alloc_id in sorted(existing_ids - retained):
            step = SagaStep(name="delete_allocation", entity_id=alloc_id)
            try:
                persistence.delete_allocation(db_path, alloc_id)
            except LedgerError as exc:
                step.ok = False
                step.error = str(exc)
            report.steps.append(step)

        new_total = changes.get("total_amount", case.total_amount)
        new_drafts = resolve_drafts([d for d in kept if d.id is None], new_total)
        _insert_drafts(db_path, case_id, new_drafts, report)
        _resync_commission_total(db_path, case_id)

    persistence.log_audit_event(
        db_path, event_type="case", action="updated",
        entity_type="case", entity_id=case_id, actor=actor,
        detail=", ".join(sorted(changes)) or None,
    )
    return report


def add_allocation(db_path: Path, case_id: str, draft: AssignmentDraft, actor: str = "system") -> dict[str, Any]:
    case = persistence.get_case(db_path, case_id)
    active_ids = _check_lawyers_exist(db_path, [draft])
    current = [AssignmentDraft(lawyer_id=a.lawyer_id, id=a.id) for a in case.assignments]
    validate_assignment_set([*current, draft], active_ids)
    (resolved,) = resolve_drafts([draft], case.total_amount)
    # The first allocation row hides the legacy pair, so it must become a row too.
    _promote_legacy(db_path, case)
    row = persistence.insert_allocation(
        db_path,
        case_id=case_id,
        lawyer_id=resolved.lawyer_id,
        commission_type=resolved.commission_type,
        commission_percentage=resolved.commission_percentage,
        commission_amount=resolved.commission_amount,
    )
    _resync_commission_total(db_path, case_id)
    persistence.log_audit_event(
        db_path, event_type="allocation", action="created",
        entity_type="allocation", entity_id=row["id"], actor=actor,
        detail=f"case {case.case_number}: {resolved.commission_amount:.2f}",
    )
    return row


def rerate_allocation(
    db_path: Path,
    allocation_id: str,
    commission_type: str | None = None,
    commission_percentage: float | None = None,
    commission_amount: float | None = None,
    actor: str = "system",
) -> dict[str, Any]:
    """Explicitly edit an allocation's rule; the amount is re-derived from the case's current total."""
    row = persistence.get_allocation_row(db_path, allocation_id)
    case = persistence.get_case(db_path, row["case_id"])
    rule = CommissionRule(
        type=commission_type or row["commission_type"],
        percentage=row["commission_percentage"] if commission_percentage is None else commission_percentage,
        fixed_amount=row["commission_amount"] if commission_amount is None else commission_amount,
    )
    amount = compute_amount(case.total_amount, rule)
    updated = persistence.update_allocation_rule(
        db_path,
        allocation_id,
        {
            "commission_type": rule.type,
            "commission_percentage": rule.percentage if rule.type == "percentage" else 0.0,
            "commission_amount": amount,
        },
    )
    _resync_commission_total(db_path, case.id)
    persistence.log_audit_event(
        db_path, event_type="allocation", action="rerated",
        entity_type="allocation", entity_id=allocation_id, actor=actor,
        old_value=f"{row['commission_amount']:.2f}", new_value=f"{amount:.2f}",
    )
    return updated


def remove_allocation(db_path: Path, allocation_id: str, actor: str = "system") -> None:
    row = persistence.get_allocation_row(db_path, allocation_id)
    persistence.delete_allocation(db_path, allocation_id)
    _resync_commission_total(db_path, row["case_id"])
    persistence.log_audit_event(
        db_path, event_type="allocation", action="deleted",
        entity_type="allocation", entity_id=allocation_id, actor=actor,
    )


def find_allocation(db_path: Path, allocation_id: str) -> Allocation:
    for a in all_allocations(persistence.load_cases(db_path)):
        if a.id == allocation_id:
            return a
    raise NotFoundError("allocation", allocation_id)


def _log_liquidation(db_path: Path, allocation: Allocation, actor: str) -> None:
    try:
        persistence.log_audit_event(
            db_path, event_type="liquidation", action="paid",
            entity_type="allocation", entity_id=allocation.id, actor=actor,
            detail=f"{allocation.lawyer_name}: {allocation.commission_amount:.2f}",
            old_value="pending", new_value="paid",
        )
    except LedgerError as exc:
        # The paid flag is already committed; only the trail entry is missing.
        logger.error("Audit entry for liquidated allocation %s was not written: %s", allocation.id, exc)


def _mark_paid(db_path: Path, allocation: Allocation, actor: str) -> None:
    persistence.set_commission_paid(db_path, allocation.id, True, legacy=allocation.legacy)
    _log_liquidation(db_path, allocation, actor)


def liquidate_allocation(db_path: Path, allocation_id: str, actor: str = "system") -> Allocation:
    allocation = find_allocation(db_path, allocation_id)
    if not allocation.commission_paid:
        _mark_paid(db_path, allocation, actor)
        allocation.commission_paid = True
    return allocation


def liquidate_pending(
    db_path: Path, allocation_ids: Iterable[str] | None = None, actor: str = "system"
) -> LiquidationReport:
    """Pay every pending allocation (or only the given ids) with one update per row."""
    allocations = all_allocations(persistence.load_cases(db_path))
    pending = [a for a in allocations if not a.commission_paid]
    unknown: list[str] = []
    already_paid: list[str] = []
    if allocation_ids is not None:
        wanted = list(dict.fromkeys(allocation_ids))
        paid_state = {a.id: a.commission_paid for a in allocations}
        unknown = [i for i in wanted if i not in paid_state]
        already_paid = [i for i in wanted if paid_state.get(i)]
        pending = [a for a in pending if a.id in set(wanted)]

    report = liquidate_all(pending, lambda a: _mark_paid(db_path, a, actor))
    report.already_paid = already_paid
    for alloc_id in unknown:
        report.failed[alloc_id] = str(NotFoundError("allocation", alloc_id))
    return report
