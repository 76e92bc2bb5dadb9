from __future__ import annotations

import csv
import io
import logging
from datetime import date
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.responses import Response

from lexpro import cache as cache_keys
from lexpro import notifications, persistence, workflows
from lexpro.aggregate import resolve_lawyer_view, search_cases, search_lawyers
from lexpro.cache import CollectionCache
from lexpro.commission import AssignmentDraft, selectable_lawyers
from lexpro.config import get_settings
from lexpro.errors import NotFoundError, PartialBatchFailure, StorageError, TransientIOError, ValidationError
from lexpro.models import Case, to_dict
from lexpro.pdf_reports import render_commissions_pdf, render_ranking_pdf
from lexpro.reporting import (
    RankingEntry,
    commission_ledger,
    dashboard_totals,
    filter_cases_by_date,
    lawyer_ranking,
    lawyer_view_label,
    lawyer_workload,
    monthly_series,
    ranking_totals,
    service_distribution,
)

logger = logging.getLogger(__name__)

settings = get_settings()
DB_PATH = Path(settings.db_path)
ACTOR = "analyst"

cache = CollectionCache()

app = FastAPI(title="LexPro Back Office", version=settings.service_version)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class ClientRequest(BaseModel):
    name: str
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    address: str | None = None


class LawyerRequest(BaseModel):
    name: str
    email: str | None = None
    phone: str | None = None
    specialties: list[str] = Field(default_factory=list)
    status: str = "active"
    hire_date: str | None = None


class LawyerPatchRequest(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    specialties: list[str] | None = None
    status: str | None = None
    hire_date: str | None = None


class ServiceRequest(BaseModel):
    name: str
    description: str | None = None
    category: str = ""
    base_price: float = 0.0
    commission_type: str = "percentage"
    commission_percentage: float = 0.0
    is_active: bool = True


class ServicePatchRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    category: str | None = None
    base_price: float | None = None
    commission_type: str | None = None
    commission_percentage: float | None = None
    is_active: bool | None = None


class AssignmentRequest(BaseModel):
    id: str | None = None
    lawyer_id: str = ""
    commission_type: str = "percentage"
    commission_percentage: float = 0.0
    commission_amount: float = 0.0

    def to_draft(self) -> AssignmentDraft:
        return AssignmentDraft(
            lawyer_id=self.lawyer_id,
            commission_type=self.commission_type,
            commission_percentage=self.commission_percentage,
            commission_amount=self.commission_amount,
            id=self.id,
        )


class CreateCaseRequest(BaseModel):
    client_id: str | None = None
    client_name: str = ""
    client_email: str | None = None
    client_phone: str | None = None
    client_company: str | None = None
    service_id: str = ""
    total_amount: float = 0.0
    start_date: str | None = None
    notes: str | None = None
    status: str = "active"
    payment_status: str = "pending"
    priority: str = "medium"
    assignments: list[AssignmentRequest] = Field(default_factory=list)


class UpdateCaseRequest(BaseModel):
    client_id: str | None = None
    service_id: str | None = None
    status: str | None = None
    payment_status: str | None = None
    priority: str | None = None
    total_amount: float | None = None
    start_date: str | None = None
    end_date: str | None = None
    notes: str | None = None
    assignments: list[AssignmentRequest] | None = None


class RerateRequest(BaseModel):
    commission_type: str | None = None
    commission_percentage: float | None = None
    commission_amount: float | None = None


class LiquidateRequest(BaseModel):
    allocation_ids: list[str] | None = None


class WeeklyReportSettingsRequest(BaseModel):
    email: str = ""
    enabled: bool = False


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

@app.exception_handler(ValidationError)
def handle_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse({"ok": False, "error": str(exc), "problems": exc.problems}, status_code=400)


@app.exception_handler(NotFoundError)
def handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse({"ok": False, "error": str(exc)}, status_code=404)


@app.exception_handler(TransientIOError)
def handle_transient(request: Request, exc: TransientIOError) -> JSONResponse:
    logger.error("Backend unavailable on %s: %s", request.url.path, exc)
    return JSONResponse({"ok": False, "error": "backend temporarily unavailable", "detail": str(exc)}, status_code=503)


@app.exception_handler(StorageError)
def handle_storage_error(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("Storage failure on %s: %s", request.url.path, exc)
    return JSONResponse({"ok": False, "error": "storage failure", "detail": str(exc)}, status_code=500)


@app.exception_handler(PartialBatchFailure)
def handle_partial_failure(request: Request, exc: PartialBatchFailure) -> JSONResponse:
    return JSONResponse(
        {
            "ok": False,
            "error": str(exc),
            "succeeded": exc.succeeded,
            "failed": exc.failed,
            "already_paid": exc.already_paid,
        },
        status_code=207,
    )


# ---------------------------------------------------------------------------
# Cached collection reads
# ---------------------------------------------------------------------------

def _cases() -> list[Case]:
    return cache.get_or_load(cache_keys.CASES, lambda: persistence.load_cases(DB_PATH))


def _lawyers():
    return cache.get_or_load(cache_keys.LAWYERS, lambda: persistence.list_lawyers(DB_PATH))


def _services():
    return cache.get_or_load(cache_keys.SERVICES, lambda: persistence.list_services(DB_PATH))


def _clients():
    return cache.get_or_load(cache_keys.CLIENTS, lambda: persistence.list_clients(DB_PATH))


def _case_row(c: Case) -> dict[str, Any]:
    view = resolve_lawyer_view(c)
    return {
        **to_dict(c),
        "client_name": c.client_name,
        "service_name": c.service_name,
        "lawyer_names": view.names,
        "lawyer_label": lawyer_view_label(c),
        "unassigned": view.unassigned,
    }


def _csv_response(rows: list[dict[str, Any]], filename: str) -> Response:
    output = io.StringIO()
    if rows:
        writer = csv.DictWriter(output, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        for r in rows:
            writer.writerow(r)
    persistence.log_audit_event(
        DB_PATH, event_type="export", action="downloaded",
        entity_type="export", entity_id=filename, actor=ACTOR,
    )
    return Response(
        content=output.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _pdf_response(content: bytes, filename: str) -> Response:
    persistence.log_audit_event(
        DB_PATH, event_type="export", action="downloaded",
        entity_type="export", entity_id=filename, actor=ACTOR,
    )
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/health")
def health() -> JSONResponse:
    return JSONResponse({"ok": True, "service": "lexpro-backoffice"})


@app.get("/api/v1/health")
def api_health() -> JSONResponse:
    return JSONResponse({"ok": True, "version": settings.service_version})


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------

@app.get("/api/v1/clients")
def api_list_clients() -> JSONResponse:
    rows = to_dict(_clients())
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.post("/api/v1/clients")
def api_create_client(payload: ClientRequest) -> JSONResponse:
    try:
        client = persistence.create_client(DB_PATH, **payload.model_dump())
    finally:
        cache.invalidate_catalog(cache_keys.CLIENTS)
    persistence.log_audit_event(
        DB_PATH, event_type="client", action="created",
        entity_type="client", entity_id=client.id, actor=ACTOR, detail=client.name,
    )
    return JSONResponse({"ok": True, "client": to_dict(client)})


# ---------------------------------------------------------------------------
# Lawyers
# ---------------------------------------------------------------------------

@app.get("/api/v1/lawyers")
def api_list_lawyers(search: str | None = None) -> JSONResponse:
    workload = lawyer_workload(_cases())
    empty = {"total_cases": 0, "active_cases": 0, "total_earnings": 0.0, "pending_commissions": 0.0}
    rows = [
        {**to_dict(l), **workload.get(l.id, empty)}
        for l in search_lawyers(_lawyers(), search)
    ]
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.get("/api/v1/lawyers/selectable")
def api_selectable_lawyers(case_id: str | None = None) -> JSONResponse:
    assigned: list[str] = []
    if case_id:
        case = persistence.get_case(DB_PATH, case_id)
        assigned = [a.lawyer_id for a in case.assignments]
    rows = to_dict(selectable_lawyers(_lawyers(), assigned))
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.get("/api/v1/lawyers/{lawyer_id}")
def api_get_lawyer(lawyer_id: str) -> JSONResponse:
    lawyer = persistence.get_lawyer(DB_PATH, lawyer_id)
    stats = lawyer_workload(_cases()).get(lawyer_id, {})
    return JSONResponse({"lawyer": to_dict(lawyer), "stats": stats})


@app.post("/api/v1/lawyers")
def api_create_lawyer(payload: LawyerRequest) -> JSONResponse:
    try:
        lawyer = persistence.create_lawyer(DB_PATH, **payload.model_dump())
    finally:
        cache.invalidate_catalog(cache_keys.LAWYERS)
    persistence.log_audit_event(
        DB_PATH, event_type="lawyer", action="created",
        entity_type="lawyer", entity_id=lawyer.id, actor=ACTOR, detail=lawyer.name,
    )
    return JSONResponse({"ok": True, "lawyer": to_dict(lawyer)})


@app.patch("/api/v1/lawyers/{lawyer_id}")
def api_update_lawyer(lawyer_id: str, payload: LawyerPatchRequest) -> JSONResponse:
    changes = payload.model_dump(exclude_unset=True)
    before = persistence.get_lawyer(DB_PATH, lawyer_id)
    try:
        lawyer = persistence.update_lawyer(DB_PATH, lawyer_id, **changes)
    finally:
        cache.invalidate_catalog(cache_keys.LAWYERS)
    persistence.log_audit_event(
        DB_PATH, event_type="lawyer", action="updated",
        entity_type="lawyer", entity_id=lawyer_id, actor=ACTOR,
        detail=", ".join(sorted(changes)) or None,
        old_value=before.status, new_value=lawyer.status,
    )
    return JSONResponse({"ok": True, "lawyer": to_dict(lawyer)})


@app.delete("/api/v1/lawyers/{lawyer_id}")
def api_delete_lawyer(lawyer_id: str) -> JSONResponse:
    try:
        persistence.delete_lawyer(DB_PATH, lawyer_id)
    finally:
        cache.invalidate_catalog(cache_keys.LAWYERS)
    persistence.log_audit_event(
        DB_PATH, event_type="lawyer", action="deleted",
        entity_type="lawyer", entity_id=lawyer_id, actor=ACTOR,
    )
    return JSONResponse({"ok": True})


# ---------------------------------------------------------------------------
# Legal services
# ---------------------------------------------------------------------------

@app.get("/api/v1/services")
def api_list_services(active_only: bool = False) -> JSONResponse:
    rows = [to_dict(s) for s in _services() if s.is_active or not active_only]
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.get("/api/v1/services/{service_id}")
def api_get_service(service_id: str) -> JSONResponse:
    return JSONResponse({"service": to_dict(persistence.get_service(DB_PATH, service_id))})


@app.post("/api/v1/services")
def api_create_service(payload: ServiceRequest) -> JSONResponse:
    try:
        service = persistence.create_service(DB_PATH, **payload.model_dump())
    finally:
        cache.invalidate_catalog(cache_keys.SERVICES)
    persistence.log_audit_event(
        DB_PATH, event_type="service", action="created",
        entity_type="service", entity_id=service.id, actor=ACTOR, detail=service.name,
    )
    return JSONResponse({"ok": True, "service": to_dict(service)})


@app.patch("/api/v1/services/{service_id}")
def api_update_service(service_id: str, payload: ServicePatchRequest) -> JSONResponse:
    changes = payload.model_dump(exclude_unset=True)
    try:
        service = persistence.update_service(DB_PATH, service_id, **changes)
    finally:
        cache.invalidate_catalog(cache_keys.SERVICES)
    persistence.log_audit_event(
        DB_PATH, event_type="service", action="updated",
        entity_type="service", entity_id=service_id, actor=ACTOR,
        detail=", ".join(sorted(changes)) or None,
    )
    return JSONResponse({"ok": True, "service": to_dict(service)})


@app.delete("/api/v1/services/{service_id}")
def api_delete_service(service_id: str) -> JSONResponse:
    try:
        persistence.delete_service(DB_PATH, service_id)
    finally:
        cache.invalidate_catalog(cache_keys.SERVICES)
    persistence.log_audit_event(
        DB_PATH, event_type="service", action="deleted",
        entity_type="service", entity_id=service_id, actor=ACTOR,
    )
    return JSONResponse({"ok": True})


# ---------------------------------------------------------------------------
# Cases
# ---------------------------------------------------------------------------

@app.get("/api/v1/cases")
def api_list_cases(search: str | None = None, status: str | None = None) -> JSONResponse:
    cases = search_cases(_cases(), search)
    if status:
        cases = [c for c in cases if c.status == status]
    rows = [_case_row(c) for c in cases]
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.get("/api/v1/cases/{case_id}")
def api_get_case(case_id: str) -> JSONResponse:
    return JSONResponse({"case": _case_row(persistence.get_case(DB_PATH, case_id))})


@app.post("/api/v1/cases")
def api_create_case(payload: CreateCaseRequest) -> JSONResponse:
    draft = workflows.CaseDraft(
        **payload.model_dump(exclude={"assignments"}),
        assignments=[a.to_draft() for a in payload.assignments],
    )
    try:
        report = workflows.create_case(DB_PATH, draft, actor=ACTOR)
    finally:
        # A client may have been written even when the case insert failed.
        cache.invalidate_cases()
    case = persistence.get_case(DB_PATH, report.case_id)
    return JSONResponse(
        {**report.as_dict(), "case": _case_row(case)},
        status_code=200 if report.ok else 207,
    )


@app.patch("/api/v1/cases/{case_id}")
def api_update_case(case_id: str, payload: UpdateCaseRequest) -> JSONResponse:
    changes = payload.model_dump(exclude_unset=True, exclude={"assignments"})
    assignments = None
    if payload.assignments is not None:
        assignments = [a.to_draft() for a in payload.assignments]
    try:
        report = workflows.update_case(DB_PATH, case_id, changes, assignments, actor=ACTOR)
    finally:
        cache.invalidate_cases()
    case = persistence.get_case(DB_PATH, case_id)
    return JSONResponse(
        {**report.as_dict(), "case": _case_row(case)},
        status_code=200 if report.ok else 207,
    )


@app.delete("/api/v1/cases/{case_id}")
def api_delete_case(case_id: str) -> JSONResponse:
    case = persistence.get_case(DB_PATH, case_id)
    try:
        persistence.delete_case(DB_PATH, case_id)
    finally:
        cache.invalidate_cases()
    persistence.log_audit_event(
        DB_PATH, event_type="case", action="deleted",
        entity_type="case", entity_id=case_id, actor=ACTOR, detail=case.case_number,
    )
    return JSONResponse({"ok": True})


# ---------------------------------------------------------------------------
# Allocations
# ---------------------------------------------------------------------------

@app.post("/api/v1/cases/{case_id}/allocations")
def api_add_allocation(case_id: str, payload: AssignmentRequest) -> JSONResponse:
    draft = payload.to_draft()
    if draft.id is not None:
        raise HTTPException(status_code=400, detail="new allocations cannot carry an id")
    try:
        row = workflows.add_allocation(DB_PATH, case_id, draft, actor=ACTOR)
    finally:
        cache.invalidate_cases()
    return JSONResponse({"ok": True, "allocation": row})


@app.patch("/api/v1/allocations/{allocation_id}")
def api_rerate_allocation(allocation_id: str, payload: RerateRequest) -> JSONResponse:
    try:
        row = workflows.rerate_allocation(DB_PATH, allocation_id, actor=ACTOR, **payload.model_dump())
    finally:
        cache.invalidate_cases()
    return JSONResponse({"ok": True, "allocation": row})


@app.delete("/api/v1/allocations/{allocation_id}")
def api_delete_allocation(allocation_id: str) -> JSONResponse:
    try:
        workflows.remove_allocation(DB_PATH, allocation_id, actor=ACTOR)
    finally:
        cache.invalidate_cases()
    return JSONResponse({"ok": True})


@app.post("/api/v1/allocations/{allocation_id}/liquidate")
def api_liquidate_allocation(allocation_id: str) -> JSONResponse:
    try:
        allocation = workflows.liquidate_allocation(DB_PATH, allocation_id, actor=ACTOR)
    finally:
        cache.invalidate_cases()
    return JSONResponse({"ok": True, "allocation": to_dict(allocation)})


# ---------------------------------------------------------------------------
# Commissions and finances
# ---------------------------------------------------------------------------

@app.get("/api/v1/commissions")
def api_commissions(search: str | None = None, status: str | None = None) -> JSONResponse:
    if status and status not in {"paid", "pending"}:
        raise HTTPException(status_code=400, detail="status must be paid or pending")
    return JSONResponse(commission_ledger(_cases(), search=search, status=status))


@app.get("/api/v1/finances/summary")
def api_finance_summary() -> JSONResponse:
    cases = _cases()
    ledger = commission_ledger(cases)
    return JSONResponse({
        "totals": to_dict(dashboard_totals(cases)),
        "commissions": ledger["totals"],
        "pending": [r for r in ledger["rows"] if not r["commission_paid"]],
    })


@app.post("/api/v1/finances/liquidate-all")
def api_liquidate_all(payload: LiquidateRequest | None = None) -> JSONResponse:
    ids = payload.allocation_ids if payload else None
    try:
        report = workflows.liquidate_pending(DB_PATH, ids, actor=ACTOR)
    finally:
        cache.invalidate_cases()
    report.raise_for_failures()
    return JSONResponse({
        "ok": True,
        "succeeded": report.succeeded,
        "already_paid": report.already_paid,
        "count": len(report.succeeded),
    })


@app.get("/api/v1/finances/commissions.pdf")
def api_commissions_pdf() -> Response:
    rows = commission_ledger(_cases())["rows"]
    pdf = render_commissions_pdf(
        [r for r in rows if not r["commission_paid"]],
        [r for r in rows if r["commission_paid"]],
        currency=settings.currency,
    )
    return _pdf_response(pdf, f"comisiones-{date.today().isoformat()}.pdf")


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------

def _dashboard() -> dict[str, Any]:
    cases = _cases()
    return {
        "totals": to_dict(dashboard_totals(cases)),
        "ranking": to_dict(lawyer_ranking(cases)[:5]),
        "monthly": to_dict(monthly_series(cases)),
        "services": service_distribution(cases),
        "recent_cases": [_case_row(c) for c in cases[:5]],
        "lawyer_count": sum(1 for l in _lawyers() if l.is_active),
        "client_count": len(_clients()),
    }


@app.get("/api/v1/dashboard")
def api_dashboard() -> JSONResponse:
    return JSONResponse(cache.get_or_load(cache_keys.DASHBOARD, _dashboard))


# ---------------------------------------------------------------------------
# Reports and exports
# ---------------------------------------------------------------------------

def _ranking(start_date: str | None, end_date: str | None) -> list[RankingEntry]:
    return lawyer_ranking(filter_cases_by_date(_cases(), start_date, end_date))


@app.get("/api/v1/reports/ranking")
def api_ranking(start_date: str | None = None, end_date: str | None = None) -> JSONResponse:
    ranking = _ranking(start_date, end_date)
    return JSONResponse({
        "rows": to_dict(ranking),
        "count": len(ranking),
        "totals": ranking_totals(ranking),
        "start_date": start_date,
        "end_date": end_date,
    })


@app.get("/api/v1/reports/ranking.pdf")
def api_ranking_pdf(start_date: str | None = None, end_date: str | None = None) -> Response:
    ranking = _ranking(start_date, end_date)
    pdf = render_ranking_pdf(
        ranking, ranking_totals(ranking),
        start_date=start_date, end_date=end_date, currency=settings.currency,
    )
    return _pdf_response(pdf, "reporte-rendimiento.pdf")


@app.get("/api/v1/reports/lawyers/{lawyer_id}.pdf")
def api_lawyer_pdf(lawyer_id: str, start_date: str | None = None, end_date: str | None = None) -> Response:
    lawyer = persistence.get_lawyer(DB_PATH, lawyer_id)
    ranking = [e for e in _ranking(start_date, end_date) if e.lawyer_id == lawyer_id]
    if not ranking:
        ranking = [RankingEntry(lawyer_id=lawyer.id, name=lawyer.name)]
    pdf = render_ranking_pdf(
        ranking, ranking_totals(ranking),
        title=f"Reporte Individual - {lawyer.name}",
        start_date=start_date, end_date=end_date, currency=settings.currency,
    )
    return _pdf_response(pdf, f"reporte-{lawyer_id}.pdf")


@app.get("/api/v1/exports/ranking.csv")
def api_export_ranking(start_date: str | None = None, end_date: str | None = None) -> Response:
    rows = [
        {
            "rank": i,
            "professional": e.name,
            "cases": e.cases_count,
            "contracted": f"{e.contracted:.2f}",
            "commissions": f"{e.commissions:.2f}",
            "commissions_paid": f"{e.commissions_paid:.2f}",
            "cobrado_neto": f"{e.cobrado_neto:.2f}",
        }
        for i, e in enumerate(_ranking(start_date, end_date), start=1)
    ]
    return _csv_response(rows, "ranking.csv")


@app.get("/api/v1/exports/commissions.csv")
def api_export_commissions(search: str | None = None, status: str | None = None) -> Response:
    rows = [
        {
            "case_number": r["case_number"],
            "client": r["client_name"],
            "service": r["service_name"],
            "professional": r["lawyer_name"],
            "type": r["commission_type"],
            "percentage": r["commission_percentage"],
            "amount": f"{r['commission_amount']:.2f}",
            "status": "paid" if r["commission_paid"] else "pending",
        }
        for r in commission_ledger(_cases(), search=search, status=status)["rows"]
    ]
    return _csv_response(rows, "commissions.csv")


@app.get("/api/v1/exports/cases.csv")
def api_export_cases() -> Response:
    rows = [
        {
            "case_number": c.case_number,
            "client": c.client_name,
            "service": c.service_name,
            "lawyers": lawyer_view_label(c),
            "status": c.status,
            "payment_status": c.payment_status,
            "total_amount": f"{c.total_amount:.2f}",
            "commission_amount": f"{c.commission_amount:.2f}",
            "start_date": c.start_date or "",
        }
        for c in _cases()
    ]
    return _csv_response(rows, "cases.csv")


# ---------------------------------------------------------------------------
# Weekly report
# ---------------------------------------------------------------------------

@app.get("/api/v1/settings/weekly-report")
def api_get_weekly_report_settings() -> JSONResponse:
    return JSONResponse({
        "email": persistence.get_setting(DB_PATH, notifications.EMAIL_SETTING, ""),
        "enabled": persistence.get_setting(DB_PATH, notifications.ENABLED_SETTING) == "true",
    })


@app.put("/api/v1/settings/weekly-report")
def api_put_weekly_report_settings(payload: WeeklyReportSettingsRequest) -> JSONResponse:
    email = payload.email.strip()
    if payload.enabled and "@" not in email:
        raise ValidationError("a valid email is required to enable the weekly report")
    old = persistence.get_setting(DB_PATH, notifications.EMAIL_SETTING, "")
    persistence.set_setting(DB_PATH, notifications.EMAIL_SETTING, email)
    persistence.set_setting(DB_PATH, notifications.ENABLED_SETTING, "true" if payload.enabled else "false")
    persistence.log_audit_event(
        DB_PATH, event_type="settings", action="updated",
        entity_type="settings", entity_id="weekly_report", actor=ACTOR,
        old_value=old, new_value=email,
    )
    return JSONResponse({"ok": True, "email": email, "enabled": payload.enabled})


@app.post("/api/v1/reports/weekly/send")
def api_send_weekly_report() -> JSONResponse:
    result = notifications.send_weekly_report(DB_PATH, sender=notifications.send_email)
    return JSONResponse({"ok": result.sent, "message": result.message, "recipient": result.recipient})


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------

@app.get("/api/v1/audit")
def api_audit_events(
    entity_type: str | None = None,
    entity_id: str | None = None,
    limit: int = 200,
) -> JSONResponse:
    rows = persistence.list_audit_events(DB_PATH, entity_type=entity_type, entity_id=entity_id, limit=limit)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.on_event("startup")
def on_startup() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    persistence.init_db(DB_PATH)
    logger.info("LexPro back office started with database %s", DB_PATH)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "lexpro.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
