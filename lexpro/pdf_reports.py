"""Printable reports: professional performance ranking and commission liquidation."""

from __future__ import annotations

import io
from datetime import date

from reportlab.lib import colors
from reportlab.lib.pagesizes import landscape, letter
from reportlab.pdfgen import canvas

from lexpro.commission import sum_money
from lexpro.reporting import RankingEntry, format_currency

HEADER_COLOR = colors.HexColor("#292524")
BAND_COLOR = colors.HexColor("#f5f5f4")


def _period_label(start_date: str | None, end_date: str | None) -> str:
    if start_date and end_date:
        return f"Periodo: {start_date} a {end_date}"
    if start_date:
        return f"Desde: {start_date}"
    if end_date:
        return f"Hasta: {end_date}"
    return "Periodo: todos los casos"


class _TablePage:
    """Canvas wrapper that draws a title bar, column headers and paginated rows."""

    def __init__(
        self,
        c: canvas.Canvas,
        pagesize: tuple[float, float],
        title: str,
        subtitle: str,
        cols: list[int],
        headers: list[str],
    ) -> None:
        self.c = c
        self.w, self.h = pagesize
        self.title = title
        self.subtitle = subtitle
        self.cols = cols
        self.headers = headers
        self.page = 0
        self.y = 0.0

    def new_page(self) -> None:
        c = self.c
        if self.page:
            c.showPage()
        self.page += 1
        c.setFillColor(HEADER_COLOR)
        c.rect(0, self.h - 60, self.w, 60, fill=True, stroke=False)
        c.setFillColor(colors.white)
        c.setFont("Helvetica-Bold", 15)
        c.drawString(40, self.h - 32, self.title)
        c.setFont("Helvetica", 9)
        c.drawString(40, self.h - 48, self.subtitle)
        c.drawRightString(self.w - 40, self.h - 32, f"Página {self.page}")

        self.y = self.h - 85
        c.setFillColor(BAND_COLOR)
        c.rect(30, self.y - 4, self.w - 60, 16, fill=True, stroke=False)
        c.setFillColor(HEADER_COLOR)
        c.setFont("Helvetica-Bold", 8)
        for x, hdr in zip(self.cols, self.headers):
            c.drawString(x, self.y, hdr)
        self.y -= 18
        c.setFont("Helvetica", 8)
        c.setFillColor(colors.black)

    def row(self, values: list[str], bold: bool = False) -> None:
        if self.y < 50:
            self.new_page()
        self.c.setFont("Helvetica-Bold" if bold else "Helvetica", 8)
        for x, value in zip(self.cols, values):
            self.c.drawString(x, self.y, value)
        self.y -= 14

    def rule(self) -> None:
        self.c.setStrokeColor(HEADER_COLOR)
        self.c.setLineWidth(0.6)
        self.c.line(30, self.y + 10, self.w - 30, self.y + 10)
        self.y -= 4


def render_ranking_pdf(
    ranking: list[RankingEntry],
    totals: dict[str, float],
    title: str = "Reporte de Rendimiento de Profesionales",
    start_date: str | None = None,
    end_date: str | None = None,
    currency: str = "MXN",
    generated_on: date | None = None,
) -> bytes:
    buf = io.BytesIO()
    pagesize = landscape(letter)
    c = canvas.Canvas(buf, pagesize=pagesize)
    generated_on = generated_on or date.today()
    table = _TablePage(
        c,
        pagesize,
        title,
        f"{_period_label(start_date, end_date)}  |  Generado: {generated_on.isoformat()}",
        cols=[35, 60, 250, 300, 400, 500, 600],
        headers=["#", "Profesional", "Casos", "Contratado", "Comisiones", "Com. Pagadas", "Cobrado Neto"],
    )
    table.new_page()
    for i, e in enumerate(ranking, start=1):
        table.row([
            str(i),
            e.name[:34],
            str(e.cases_count),
            format_currency(e.contracted, currency),
            format_currency(e.commissions, currency),
            format_currency(e.commissions_paid, currency),
            format_currency(e.cobrado_neto, currency),
        ])
    table.rule()
    table.row([
        "",
        "TOTALES",
        str(int(totals.get("cases", 0))),
        format_currency(totals.get("contracted", 0.0), currency),
        format_currency(totals.get("commissions", 0.0), currency),
        format_currency(totals.get("commissions_paid", 0.0), currency),
        format_currency(totals.get("cobrado_neto", 0.0), currency),
    ], bold=True)
    c.save()
    return buf.getvalue()


def render_commissions_pdf(
    pending: list[dict],
    paid: list[dict],
    currency: str = "MXN",
    generated_on: date | None = None,
) -> bytes:
    """Finance panel export: pending commissions followed by paid ones, each with a total."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    generated_on = generated_on or date.today()
    cols = [35, 120, 250, 400, 500]

    sections = [
        ("Comisiones Pendientes", pending),
        ("Comisiones Pagadas", paid),
    ]
    for i, (heading, rows) in enumerate(sections):
        table = _TablePage(
            c,
            letter,
            heading,
            f"Control financiero  |  Generado: {generated_on.isoformat()}",
            cols=cols,
            headers=["Caso", "Cliente", "Profesional", "Tipo", "Monto"],
        )
        if i:
            c.showPage()
        table.new_page()
        for r in rows:
            table.row([
                r.get("case_number", ""),
                (r.get("client_name") or "")[:22],
                (r.get("lawyer_name") or "")[:26],
                "%" if r.get("commission_type") == "percentage" else "Fijo",
                format_currency(float(r.get("commission_amount", 0)), currency),
            ])
        table.rule()
        table.row(["", "", "", "Total", format_currency(sum_money(float(r.get("commission_amount", 0)) for r in rows), currency)], bold=True)

    c.save()
    return buf.getvalue()
