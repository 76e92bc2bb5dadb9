#!/usr/bin/env python3
"""Seed a LexPro database with demo professionals, services and cases.

Creates:
- a handful of lawyers (one inactive)
- legal services with default commission rules
- cases spread over the last months, mixing percentage and fixed
  allocations, co-assigned cases and one legacy single-lawyer case
- a share of commissions already liquidated
"""

from __future__ import annotations

import argparse
import random
import sys
from datetime import date, timedelta
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from lexpro import persistence, workflows
from lexpro.commission import AssignmentDraft
from lexpro.config import get_settings
from lexpro.reporting import all_allocations

LAWYERS = [
    ("Lic. Ana Torres", ["Corporativo", "Fiscal"]),
    ("Lic. Bruno Méndez", ["Laboral"]),
    ("Lic. Carla Ríos", ["Familiar", "Civil"]),
    ("Lic. Diego Salas", ["Penal"]),
    ("Lic. Elena Vargas", ["Propiedad intelectual"]),
]
SERVICES = [
    ("Constitución de sociedad", "Corporativo", 25000.0, "percentage", 15.0),
    ("Juicio laboral", "Laboral", 40000.0, "percentage", 20.0),
    ("Divorcio voluntario", "Familiar", 18000.0, "fixed", 0.0),
    ("Registro de marca", "Propiedad intelectual", 12000.0, "percentage", 10.0),
    ("Defensa penal", "Penal", 60000.0, "percentage", 25.0),
]
FIRST_NAMES = ["María", "José", "Lucía", "Andrés", "Sofía", "Miguel", "Paola", "Raúl", "Fernanda", "Héctor"]
LAST_NAMES = ["García", "Hernández", "López", "Martínez", "Pérez", "Sánchez", "Ramírez", "Cruz", "Flores", "Morales"]
COMPANIES = [None, None, "Grupo Alfa", "Inmobiliaria Norte", "Textiles del Bajío"]
STATUSES = ["active", "active", "in_progress", "completed", "completed", "cancelled"]


def _assignments(rng: random.Random, lawyer_ids: list[str], total: float) -> list[AssignmentDraft]:
    picked = rng.sample(lawyer_ids, k=2 if rng.random() < 0.3 else 1)
    drafts = []
    for lawyer_id in picked:
        if rng.random() < 0.25:
            drafts.append(AssignmentDraft(
                lawyer_id=lawyer_id,
                commission_type="fixed",
                commission_amount=round(total * rng.choice([0.05, 0.08, 0.1]), -2),
            ))
        else:
            drafts.append(AssignmentDraft(
                lawyer_id=lawyer_id,
                commission_percentage=rng.choice([10.0, 12.5, 15.0, 20.0]),
            ))
    return drafts


def seed(args: argparse.Namespace) -> None:
    rng = random.Random(args.seed)
    db = args.db_path
    persistence.init_db(db)

    lawyers = [
        persistence.create_lawyer(db, name=name, specialties=specs, hire_date="2020-01-15")
        for name, specs in LAWYERS
    ]
    persistence.update_lawyer(db, lawyers[-1].id, status="inactive")
    active_ids = [l.id for l in lawyers[:-1]]

    services = [
        persistence.create_service(
            db, name=name, category=category, base_price=price,
            commission_type=ctype, commission_percentage=pct,
        )
        for name, category, price, ctype, pct in SERVICES
    ]

    today = date.today()
    for _ in range(args.cases):
        service = rng.choice(services)
        total = round(service.base_price * rng.uniform(0.8, 1.6), -2)
        start = today - timedelta(days=rng.randint(0, args.days))
        draft = workflows.CaseDraft(
            service_id=service.id,
            total_amount=total,
            assignments=_assignments(rng, active_ids, total),
            client_name=f"{rng.choice(FIRST_NAMES)} {rng.choice(LAST_NAMES)}",
            client_company=rng.choice(COMPANIES),
            start_date=start.isoformat(),
            status=rng.choice(STATUSES),
            priority=rng.choice(["low", "medium", "medium", "high", "critical"]),
        )
        workflows.create_case(db, draft, actor="seed", today=start)

    # A single-lawyer case in the pre-allocation layout: no case_lawyers rows.
    client = persistence.create_client(db, name="Cliente Histórico S.A.")
    row = persistence.insert_case(
        db,
        {
            "client_id": client.id,
            "service_id": services[0].id,
            "lawyer_id": active_ids[0],
            "status": "completed",
            "total_amount": 30000.0,
            "commission_amount": 4500.0,
            "start_date": (today - timedelta(days=args.days)).isoformat(),
        },
    )

    pending = [a for a in all_allocations(persistence.load_cases(db)) if not a.commission_paid]
    to_pay = [a.id for a in pending if rng.random() < args.paid_rate]
    report = workflows.liquidate_pending(db, to_pay, actor="seed")

    print(f"Seeded {len(lawyers)} lawyers, {len(services)} services, {args.cases + 1} cases "
          f"(legacy case {row['case_number']}), {len(report.succeeded)} commissions liquidated")


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Seed a LexPro database with demo data.")
    p.add_argument("--seed", type=int, default=42)
    p.add_argument("--cases", type=int, default=40)
    p.add_argument("--days", type=int, default=180, help="spread case start dates over this many days")
    p.add_argument("--paid-rate", type=float, default=0.4, help="0-1 fraction of commissions liquidated")
    p.add_argument("--db-path", type=Path, default=Path(get_settings().db_path))
    return p.parse_args()


if __name__ == "__main__":
    seed(parse_args())
