"""
Weekly performance report
=========================

Builds the per-professional ranking from every case and mails it to the
address stored in app settings. Sending happens over SMTP; when SMTP is not
configured the message is logged instead (development mode).
"""

from __future__ import annotations

import html
import logging
import smtplib
from dataclasses import dataclass
from datetime import date
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Callable, Optional

from lexpro import persistence
from lexpro.config import get_settings
from lexpro.reporting import RankingEntry, format_currency, lawyer_ranking, ranking_totals

logger = logging.getLogger(__name__)

EMAIL_SETTING = "weekly_report_email"
ENABLED_SETTING = "weekly_report_enabled"


@dataclass
class WeeklyReportResult:
    sent: bool
    message: str
    recipient: str | None = None


def send_email(to_email: str, subject: str, html_body: str, text_body: Optional[str] = None) -> bool:
    """
    Send an email.

    Returns True if sent successfully, False otherwise.
    In development mode (SMTP not configured), logs the email instead.
    """
    settings = get_settings()

    if not settings.is_email_configured():
        logger.info("[DEV MODE] Email would be sent to %s: %s", to_email, subject)
        logger.debug("[DEV MODE] Email body: %s", text_body or html_body[:200])
        return True

    try:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = settings.smtp_from
        msg["To"] = to_email
        if text_body:
            msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout_seconds) as server:
            if settings.smtp_use_tls:
                server.starttls()
            server.login(settings.smtp_user, settings.smtp_password)
            server.sendmail(settings.smtp_from, to_email, msg.as_string())

        logger.info("Email sent successfully to %s", to_email)
        return True

    except (smtplib.SMTPException, OSError) as e:
        logger.error("Failed to send email to %s: %s", to_email, e)
        return False


def render_weekly_report(ranking: list[RankingEntry], generated_on: date, currency: str = "MXN") -> str:
    def fmt(value: float) -> str:
        return format_currency(value, currency)

    totals = ranking_totals(ranking)
    rows = "".join(
        f"""
      <tr style="border-bottom:1px solid #e5e5e5;">
        <td style="padding:8px;text-align:center;">{i}</td>
        <td style="padding:8px;">{html.escape(e.name)}</td>
        <td style="padding:8px;text-align:center;">{e.cases_count}</td>
        <td style="padding:8px;text-align:right;">{fmt(e.contracted)}</td>
        <td style="padding:8px;text-align:right;">{fmt(e.commissions)}</td>
        <td style="padding:8px;text-align:right;">{fmt(e.commissions_paid)}</td>
        <td style="padding:8px;text-align:right;">{fmt(e.cobrado_neto)}</td>
      </tr>"""
        for i, e in enumerate(ranking, start=1)
    )
    return f"""
    <div style="font-family:Arial,sans-serif;max-width:800px;margin:0 auto;">
      <h2 style="color:#292524;">Reporte Semanal de Rendimiento</h2>
      <p style="color:#78716c;font-size:14px;">Generado: {generated_on.strftime('%d/%m/%Y')}</p>
      <table style="width:100%;border-collapse:collapse;font-size:13px;">
        <thead>
          <tr style="background:#292524;color:#fff;">
            <th style="padding:10px;">#</th>
            <th style="padding:10px;text-align:left;">Profesional</th>
            <th style="padding:10px;">Casos</th>
            <th style="padding:10px;text-align:right;">Contratado</th>
            <th style="padding:10px;text-align:right;">Comisiones</th>
            <th style="padding:10px;text-align:right;">Com. Pagadas</th>
            <th style="padding:10px;text-align:right;">Cobrado Neto</th>
          </tr>
        </thead>
        <tbody>{rows}</tbody>
        <tfoot>
          <tr style="background:#f5f5f4;font-weight:bold;">
            <td style="padding:10px;" colspan="2">TOTALES</td>
            <td style="padding:10px;text-align:center;">{totals['cases']}</td>
            <td style="padding:10px;text-align:right;">{fmt(totals['contracted'])}</td>
            <td style="padding:10px;text-align:right;">{fmt(totals['commissions'])}</td>
            <td style="padding:10px;text-align:right;">{fmt(totals['commissions_paid'])}</td>
            <td style="padding:10px;text-align:right;">{fmt(totals['cobrado_neto'])}</td>
          </tr>
        </tfoot>
      </table>
    </div>
    """


def send_weekly_report(
    db_path: Path,
    sender: Callable[..., bool] = send_email,
    today: date | None = None,
) -> WeeklyReportResult:
    recipient = (persistence.get_setting(db_path, EMAIL_SETTING) or "").strip()
    enabled = persistence.get_setting(db_path, ENABLED_SETTING) == "true"
    if not enabled or not recipient:
        return WeeklyReportResult(sent=False, message="Weekly report disabled or no email configured")

    today = today or date.today()
    ranking = lawyer_ranking(persistence.load_cases(db_path))
    body = render_weekly_report(ranking, today, get_settings().currency)
    subject = f"Reporte Semanal de Rendimiento - {today.strftime('%d/%m/%Y')}"

    sent = sender(recipient, subject, body)
    persistence.log_audit_event(
        db_path, event_type="weekly_report", action="sent" if sent else "failed",
        entity_type="report", entity_id=today.isoformat(),
        detail=f"{len(ranking)} professionals to {recipient}",
    )
    if not sent:
        return WeeklyReportResult(sent=False, message=f"Sending to {recipient} failed", recipient=recipient)
    return WeeklyReportResult(sent=True, message=f"Report sent to {recipient}", recipient=recipient)
