"""Commission allocation rules.

A case's total amount is split among one or more professionals. Each
assignment carries a rule snapshot:

- percentage: amount = total * percentage / 100
- fixed: amount supplied as-is, independent of the total

Amounts are quantized to cents with ROUND_HALF_EVEN. The resolved amount is a
stored snapshot; it only changes when a command explicitly carries the
assignment again (see ``recompute_on_change``).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Iterable

from lexpro.errors import ValidationError
from lexpro.models import COMMISSION_TYPES, Lawyer

CENT = Decimal("0.01")


@dataclass(frozen=True)
class CommissionRule:
    type: str
    percentage: float | None = None
    fixed_amount: float | None = None


@dataclass(frozen=True)
class AssignmentDraft:
    lawyer_id: str
    commission_type: str = "percentage"
    commission_percentage: float = 0.0
    commission_amount: float = 0.0
    # Set when the draft mirrors an already persisted allocation.
    id: str | None = None

    @property
    def rule(self) -> CommissionRule:
        return CommissionRule(
            type=self.commission_type,
            percentage=self.commission_percentage,
            fixed_amount=self.commission_amount,
        )


def _quantize(value: Decimal) -> float:
    return float(value.quantize(CENT, rounding=ROUND_HALF_EVEN))


def compute_amount(total_amount: float, rule: CommissionRule) -> float:
    if total_amount < 0:
        raise ValidationError("total_amount must be non-negative")
    if rule.type == "percentage":
        pct = rule.percentage or 0.0
        if pct < 0:
            raise ValidationError("commission_percentage must be non-negative")
        return _quantize(Decimal(str(total_amount)) * Decimal(str(pct)) / Decimal(100))
    if rule.type == "fixed":
        amount = rule.fixed_amount or 0.0
        if amount < 0:
            raise ValidationError("commission_amount must be non-negative")
        return _quantize(Decimal(str(amount)))
    raise ValidationError(f"unknown commission_type: {rule.type}")


def recompute_on_change(draft: AssignmentDraft, total_amount: float) -> AssignmentDraft:
    if draft.commission_type != "percentage":
        return draft
    return replace(draft, commission_amount=compute_amount(total_amount, draft.rule))


def resolve_drafts(drafts: Iterable[AssignmentDraft], total_amount: float) -> list[AssignmentDraft]:
    """Resolve every draft's amount against ``total_amount``; fixed rules are quantized only."""
    resolved = []
    for d in drafts:
        if d.commission_type == "fixed":
            resolved.append(replace(d, commission_amount=compute_amount(total_amount, d.rule)))
        else:
            resolved.append(recompute_on_change(d, total_amount))
    return resolved


def validate_assignment_set(
    assignments: Iterable[AssignmentDraft],
    active_lawyer_ids: Iterable[str],
) -> list[AssignmentDraft]:
    """Return the assignments that reference a lawyer, or raise listing every problem."""
    active = set(active_lawyer_ids)
    problems: list[str] = []
    kept = [a for a in assignments if a.lawyer_id]
    if not kept:
        problems.append("at least one lawyer assignment is required")

    seen: set[str] = set()
    for a in kept:
        if a.lawyer_id in seen:
            problems.append(f"lawyer {a.lawyer_id} is assigned more than once")
        seen.add(a.lawyer_id)
        if a.commission_type not in COMMISSION_TYPES:
            problems.append(f"invalid commission_type for lawyer {a.lawyer_id}: {a.commission_type}")
        if a.commission_percentage < 0 or a.commission_amount < 0:
            problems.append(f"negative commission for lawyer {a.lawyer_id}")
        # Existing assignments to a since-deactivated lawyer remain valid.
        if a.id is None and a.lawyer_id not in active:
            problems.append(f"lawyer {a.lawyer_id} is not active")

    if problems:
        raise ValidationError(problems)
    return kept


def sum_money(values: Iterable[float]) -> float:
    """Add monetary floats exactly and return the total quantized to cents."""
    return _quantize(sum((Decimal(str(v)) for v in values), Decimal(0)))


def total_commission(assignments: Iterable) -> float:
    return sum_money(a.commission_amount for a in assignments)


def selectable_lawyers(lawyers: Iterable[Lawyer], assigned_ids: Iterable[str] = ()) -> list[Lawyer]:
    taken = set(assigned_ids)
    return [l for l in lawyers if l.is_active and l.id not in taken]
