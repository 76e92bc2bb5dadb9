from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from lexpro.aggregate import resolve_lawyer_view
from lexpro.commission import sum_money
from lexpro.errors import LedgerError, PartialBatchFailure
from lexpro.models import Allocation, Case

logger = logging.getLogger(__name__)


@dataclass
class DashboardTotals:
    total_contracted: float
    total_commissions_paid: float
    pending_commissions: float
    net_remainder: float
    liquidation_progress: float
    active_cases: int
    completed_cases: int
    total_cases: int


@dataclass
class RankingEntry:
    lawyer_id: str
    name: str
    cases_count: int = 0
    contracted: float = 0.0
    commissions: float = 0.0
    commissions_paid: float = 0.0
    cobrado_neto: float = 0.0


@dataclass
class MonthlyBucket:
    month: str
    revenue: float = 0.0
    commissions: float = 0.0


@dataclass
class LiquidationReport:
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    # Requested ids that were paid before this run.
    already_paid: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> None:
        if self.failed:
            raise PartialBatchFailure(self.succeeded, self.failed, self.already_paid)


def all_allocations(cases: Iterable[Case]) -> list[Allocation]:
    return [a for c in cases for a in c.assignments]


def dashboard_totals(cases: Iterable[Case]) -> DashboardTotals:
    cases = list(cases)
    allocations = all_allocations(cases)
    contracted = sum_money(c.total_amount for c in cases)
    paid = sum_money(a.commission_amount for a in allocations if a.commission_paid)
    pending = sum_money(a.commission_amount for a in allocations if not a.commission_paid)

    denominator = sum_money((paid, pending))
    return DashboardTotals(
        total_contracted=contracted,
        total_commissions_paid=paid,
        pending_commissions=pending,
        # Only commissions already paid out are subtracted.
        net_remainder=sum_money((contracted, -paid)),
        liquidation_progress=(paid / denominator * 100) if denominator else 0.0,
        active_cases=sum(1 for c in cases if c.status in ("active", "in_progress")),
        completed_cases=sum(1 for c in cases if c.status == "completed"),
        total_cases=len(cases),
    )


def lawyer_ranking(cases: Iterable[Case]) -> list[RankingEntry]:
    """Per-professional totals, highest contracted value first.

    A co-assigned professional is credited with the case's full total, not a
    prorated share. Ties keep encounter order.
    """
    ranking: dict[str, RankingEntry] = {}
    for c in cases:
        for a in c.assignments:
            entry = ranking.get(a.lawyer_id)
            if entry is None:
                entry = ranking[a.lawyer_id] = RankingEntry(lawyer_id=a.lawyer_id, name=a.lawyer_name)
            entry.cases_count += 1
            entry.contracted = sum_money((entry.contracted, c.total_amount))
            entry.commissions = sum_money((entry.commissions, a.commission_amount))
            if a.commission_paid:
                entry.commissions_paid = sum_money((entry.commissions_paid, a.commission_amount))

    for entry in ranking.values():
        entry.cobrado_neto = sum_money((entry.contracted, -entry.commissions))
    return sorted(ranking.values(), key=lambda e: e.contracted, reverse=True)


def ranking_totals(ranking: Iterable[RankingEntry]) -> dict[str, float]:
    ranking = list(ranking)
    totals: dict[str, float] = {"cases": sum(e.cases_count for e in ranking)}
    for key in ("contracted", "commissions", "commissions_paid", "cobrado_neto"):
        totals[key] = sum_money(getattr(e, key) for e in ranking)
    return totals


def _case_date(c: Case) -> str | None:
    if c.start_date:
        return c.start_date
    if c.created_at:
        return c.created_at.split("T")[0]
    return None


def monthly_series(cases: Iterable[Case]) -> list[MonthlyBucket]:
    buckets: dict[str, MonthlyBucket] = {}
    for c in cases:
        date = _case_date(c)
        if not date:
            continue
        key = date[:7]
        b = buckets.setdefault(key, MonthlyBucket(month=key))
        b.revenue = sum_money((b.revenue, c.total_amount))
        b.commissions = sum_money([b.commissions, *(a.commission_amount for a in c.assignments)])
    return [buckets[k] for k in sorted(buckets)]


def service_distribution(cases: Iterable[Case]) -> list[dict[str, Any]]:
    counts = Counter(c.service_name for c in cases)
    return [{"name": name, "value": value} for name, value in counts.items()]


def filter_cases_by_date(
    cases: Iterable[Case], start_date: str | None = None, end_date: str | None = None
) -> list[Case]:
    result = []
    for c in cases:
        if start_date and (c.start_date or "") < start_date:
            continue
        if end_date and (c.start_date or "") > end_date:
            continue
        result.append(c)
    return result


def commission_ledger(
    cases: Iterable[Case], search: str | None = None, status: str | None = None
) -> dict[str, Any]:
    """Commission rows with a positive amount, filtered for the ledger view."""
    rows = []
    for c in cases:
        for a in c.assignments:
            if a.commission_amount <= 0:
                continue
            rows.append({
                "allocation_id": a.id,
                "legacy": a.legacy,
                "case_id": c.id,
                "case_number": c.case_number,
                "client_name": c.client_name,
                "service_name": c.service_name,
                "lawyer_id": a.lawyer_id,
                "lawyer_name": a.lawyer_name,
                "commission_type": a.commission_type,
                "commission_percentage": a.commission_percentage,
                "commission_amount": a.commission_amount,
                "commission_paid": a.commission_paid,
                "case_total": c.total_amount,
            })

    needle = (search or "").strip().lower()
    filtered = []
    for r in rows:
        if needle and not any(needle in (r[k] or "").lower() for k in ("case_number", "lawyer_name", "client_name")):
            continue
        if status == "paid" and not r["commission_paid"]:
            continue
        if status == "pending" and r["commission_paid"]:
            continue
        filtered.append(r)

    paid_rows = [r for r in rows if r["commission_paid"]]
    pending_rows = [r for r in rows if not r["commission_paid"]]
    return {
        "rows": filtered,
        "count": len(filtered),
        "total_rows": len(rows),
        "totals": {
            "all": sum_money(r["commission_amount"] for r in rows),
            "paid": sum_money(r["commission_amount"] for r in paid_rows),
            "pending": sum_money(r["commission_amount"] for r in pending_rows),
            "paid_count": len(paid_rows),
            "pending_count": len(pending_rows),
        },
    }


def lawyer_workload(cases: Iterable[Case]) -> dict[str, dict[str, float]]:
    """Case counts and commission balances per lawyer id for the lawyers list."""
    stats: dict[str, dict[str, float]] = {}
    for c in cases:
        for a in c.assignments:
            s = stats.setdefault(a.lawyer_id, {"total_cases": 0, "active_cases": 0, "total_earnings": 0.0, "pending_commissions": 0.0})
            s["total_cases"] += 1
            if c.status in ("active", "in_progress"):
                s["active_cases"] += 1
            key = "total_earnings" if a.commission_paid else "pending_commissions"
            s[key] = sum_money((s[key], a.commission_amount))
    return stats


def liquidate_all(
    allocations: Iterable[Allocation], mark_paid: Callable[[Allocation], Any]
) -> LiquidationReport:
    """Mark every pending allocation paid, one independent update per row.

    Rows updated before a failure stay paid; failures are collected by id.
    """
    report = LiquidationReport()
    for a in allocations:
        if a.commission_paid:
            continue
        try:
            mark_paid(a)
        except LedgerError as exc:
            logger.warning("Liquidation failed for allocation %s: %s", a.id, exc)
            report.failed[a.id] = str(exc)
        else:
            report.succeeded.append(a.id)
    logger.info("Liquidated %d allocations, %d failed", len(report.succeeded), len(report.failed))
    return report


def format_currency(value: float, currency: str = "MXN") -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f} {currency}".rstrip()


def lawyer_view_label(case: Case) -> str:
    return resolve_lawyer_view(case).label
