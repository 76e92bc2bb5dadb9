from __future__ import annotations

import functools
import json
import logging
import sqlite3
import uuid
from collections import defaultdict
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from lexpro.aggregate import next_case_number, shape_case
from lexpro.config import get_settings
from lexpro.errors import NotFoundError, StorageError, TransientIOError, ValidationError
from lexpro.models import Case, Client, Lawyer, LegalService

logger = logging.getLogger(__name__)

CASE_NUMBER_ATTEMPTS = 5
TRANSIENT_MARKERS = ("locked", "busy", "disk i/o", "unable to open")

CLIENT_FIELDS = ("name", "email", "phone", "company", "address")
LAWYER_FIELDS = ("name", "email", "phone", "specialties", "status", "hire_date")
SERVICE_FIELDS = (
    "name", "description", "category", "base_price",
    "commission_type", "commission_percentage", "is_active",
)
CASE_FIELDS = (
    "client_id", "service_id", "status", "payment_status", "priority",
    "total_amount", "commission_amount", "start_date", "end_date", "notes",
)
ALLOCATION_RULE_FIELDS = ("commission_type", "commission_percentage", "commission_amount")

DEFAULT_SETTINGS = {"weekly_report_email": "", "weekly_report_enabled": "false"}


def utc_now() -> str:
    return datetime.now(UTC).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


def get_conn(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=get_settings().db_timeout_seconds)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def transient_retry(fn):
    """Retry once on a transient SQLite failure, then raise TransientIOError.

    Any other sqlite3 error is mapped to a LedgerError so callers never see a
    raw driver exception: constraint violations become ValidationError, the
    rest StorageError.
    """

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        attempts = 1 + max(get_settings().transient_retries, 0)
        for attempt in range(1, attempts + 1):
            try:
                return fn(*args, **kwargs)
            except sqlite3.OperationalError as exc:
                message = str(exc).lower()
                if not any(m in message for m in TRANSIENT_MARKERS):
                    raise StorageError(f"{fn.__name__}: {exc}") from exc
                logger.warning("%s failed (attempt %d/%d): %s", fn.__name__, attempt, attempts, exc)
                if attempt == attempts:
                    raise TransientIOError(f"{fn.__name__}: {exc}") from exc
            except sqlite3.IntegrityError as exc:
                raise ValidationError(f"{fn.__name__}: {exc}") from exc
            except sqlite3.Error as exc:
                raise StorageError(f"{fn.__name__}: {exc}") from exc

    return wrapper


def init_db(db_path: Path) -> None:
    with get_conn(db_path) as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS clients (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT,
                phone TEXT,
                company TEXT,
                address TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS lawyers (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT,
                phone TEXT,
                specialties TEXT NOT NULL DEFAULT '[]',
                status TEXT NOT NULL DEFAULT 'active',
                hire_date TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS legal_services (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                category TEXT NOT NULL DEFAULT '',
                base_price REAL NOT NULL DEFAULT 0,
                commission_type TEXT NOT NULL DEFAULT 'percentage',
                commission_percentage REAL NOT NULL DEFAULT 0,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS cases (
                id TEXT PRIMARY KEY,
                case_number TEXT NOT NULL UNIQUE,
                client_id TEXT REFERENCES clients(id),
                service_id TEXT REFERENCES legal_services(id),
                lawyer_id TEXT REFERENCES lawyers(id),
                status TEXT NOT NULL DEFAULT 'active',
                payment_status TEXT NOT NULL DEFAULT 'pending',
                priority TEXT NOT NULL DEFAULT 'medium',
                total_amount REAL NOT NULL DEFAULT 0,
                commission_amount REAL NOT NULL DEFAULT 0,
                commission_paid INTEGER NOT NULL DEFAULT 0,
                start_date TEXT,
                end_date TEXT,
                notes TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS case_lawyers (
                id TEXT PRIMARY KEY,
                case_id TEXT NOT NULL REFERENCES cases(id) ON DELETE CASCADE,
                lawyer_id TEXT NOT NULL REFERENCES lawyers(id),
                commission_type TEXT NOT NULL DEFAULT 'percentage',
                commission_percentage REAL NOT NULL DEFAULT 0,
                commission_amount REAL NOT NULL DEFAULT 0,
                commission_paid INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                UNIQUE (case_id, lawyer_id)
            );

            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS audit_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                action TEXT NOT NULL,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                actor TEXT NOT NULL DEFAULT 'system',
                detail TEXT,
                old_value TEXT,
                new_value TEXT,
                created_at TEXT NOT NULL
            );
            """
        )
        for key, value in DEFAULT_SETTINGS.items():
            conn.execute(
                "INSERT OR IGNORE INTO app_settings(key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, utc_now()),
            )


# ---------------------------------------------------------------------------
# Generic row helpers
# ---------------------------------------------------------------------------

def _fetch(conn: sqlite3.Connection, table: str, row_id: str) -> dict[str, Any] | None:
    row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,)).fetchone()
    return None if row is None else dict(row)


def _require(conn: sqlite3.Connection, table: str, row_id: str | None, entity: str) -> dict[str, Any]:
    row = _fetch(conn, table, row_id) if row_id else None
    if row is None:
        raise NotFoundError(entity, row_id)
    return row


def _insert(conn: sqlite3.Connection, table: str, values: dict[str, Any]) -> dict[str, Any]:
    values = {"id": new_id(), **values, "created_at": utc_now()}
    cols = ", ".join(values)
    marks = ", ".join("?" for _ in values)
    conn.execute(f"INSERT INTO {table}({cols}) VALUES ({marks})", tuple(values.values()))
    return _fetch(conn, table, values["id"]) or {}


def _update(
    conn: sqlite3.Connection, table: str, row_id: str, changes: dict[str, Any], allowed: tuple[str, ...]
) -> None:
    unknown = set(changes) - set(allowed)
    if unknown:
        raise ValidationError(f"fields not updatable on {table}: {', '.join(sorted(unknown))}")
    if not changes:
        return
    assignments = ", ".join(f"{k} = ?" for k in changes)
    conn.execute(f"UPDATE {table} SET {assignments} WHERE id = ?", (*changes.values(), row_id))


def _delete(conn: sqlite3.Connection, table: str, row_id: str, entity: str) -> None:
    _require(conn, table, row_id, entity)
    try:
        conn.execute(f"DELETE FROM {table} WHERE id = ?", (row_id,))
    except sqlite3.IntegrityError as exc:
        raise ValidationError(f"{entity} {row_id} is still referenced") from exc


def client_from_row(row: dict[str, Any]) -> Client:
    return Client(**{k: row.get(k) for k in ("id", "name", *CLIENT_FIELDS[1:], "created_at")})


def lawyer_from_row(row: dict[str, Any]) -> Lawyer:
    return Lawyer(
        id=row["id"],
        name=row["name"],
        email=row.get("email"),
        phone=row.get("phone"),
        specialties=json.loads(row.get("specialties") or "[]"),
        status=row.get("status") or "active",
        hire_date=row.get("hire_date"),
        created_at=row.get("created_at"),
    )


def service_from_row(row: dict[str, Any]) -> LegalService:
    return LegalService(
        id=row["id"],
        name=row["name"],
        category=row.get("category") or "",
        description=row.get("description"),
        base_price=float(row.get("base_price") or 0),
        commission_type=row.get("commission_type") or "percentage",
        commission_percentage=float(row.get("commission_percentage") or 0),
        is_active=bool(row.get("is_active")),
        created_at=row.get("created_at"),
    )


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------

@transient_retry
def create_client(db_path: Path, name: str, **fields: Any) -> Client:
    if not (name or "").strip():
        raise ValidationError("client name is required")
    with get_conn(db_path) as conn:
        values = {k: fields.get(k) for k in CLIENT_FIELDS[1:]}
        return client_from_row(_insert(conn, "clients", {"name": name.strip(), **values}))


@transient_retry
def list_clients(db_path: Path) -> list[Client]:
    with get_conn(db_path) as conn:
        rows = conn.execute("SELECT * FROM clients ORDER BY created_at DESC, rowid DESC").fetchall()
        return [client_from_row(dict(r)) for r in rows]


# ---------------------------------------------------------------------------
# Lawyers
# ---------------------------------------------------------------------------

def _lawyer_values(fields: dict[str, Any]) -> dict[str, Any]:
    values = dict(fields)
    if "specialties" in values:
        values["specialties"] = json.dumps(list(values["specialties"] or []))
    if "status" in values and values["status"] not in ("active", "inactive"):
        raise ValidationError(f"invalid lawyer status: {values['status']}")
    return values


@transient_retry
def create_lawyer(db_path: Path, name: str, **fields: Any) -> Lawyer:
    if not (name or "").strip():
        raise ValidationError("lawyer name is required")
    values = _lawyer_values({k: v for k, v in fields.items() if k in LAWYER_FIELDS})
    with get_conn(db_path) as conn:
        return lawyer_from_row(_insert(conn, "lawyers", {"name": name.strip(), **values}))


@transient_retry
def update_lawyer(db_path: Path, lawyer_id: str, **changes: Any) -> Lawyer:
    with get_conn(db_path) as conn:
        _require(conn, "lawyers", lawyer_id, "lawyer")
        _update(conn, "lawyers", lawyer_id, _lawyer_values(changes), LAWYER_FIELDS)
        return lawyer_from_row(_fetch(conn, "lawyers", lawyer_id) or {})


@transient_retry
def delete_lawyer(db_path: Path, lawyer_id: str) -> None:
    with get_conn(db_path) as conn:
        _delete(conn, "lawyers", lawyer_id, "lawyer")


@transient_retry
def get_lawyer(db_path: Path, lawyer_id: str) -> Lawyer:
    with get_conn(db_path) as conn:
        return lawyer_from_row(_require(conn, "lawyers", lawyer_id, "lawyer"))


@transient_retry
def list_lawyers(db_path: Path) -> list[Lawyer]:
    with get_conn(db_path) as conn:
        rows = conn.execute("SELECT * FROM lawyers ORDER BY created_at DESC, rowid DESC").fetchall()
        return [lawyer_from_row(dict(r)) for r in rows]


# ---------------------------------------------------------------------------
# Legal services
# ---------------------------------------------------------------------------

def _service_values(fields: dict[str, Any]) -> dict[str, Any]:
    values = dict(fields)
    if "commission_type" in values and values["commission_type"] not in ("percentage", "fixed"):
        raise ValidationError(f"invalid commission_type: {values['commission_type']}")
    if values.get("base_price") is not None and values["base_price"] < 0:
        raise ValidationError("base_price must be non-negative")
    if "is_active" in values:
        values["is_active"] = 1 if values["is_active"] else 0
    return values


@transient_retry
def create_service(db_path: Path, name: str, **fields: Any) -> LegalService:
    if not (name or "").strip():
        raise ValidationError("service name is required")
    values = _service_values({k: v for k, v in fields.items() if k in SERVICE_FIELDS and v is not None})
    with get_conn(db_path) as conn:
        return service_from_row(_insert(conn, "legal_services", {"name": name.strip(), **values}))


@transient_retry
def update_service(db_path: Path, service_id: str, **changes: Any) -> LegalService:
    with get_conn(db_path) as conn:
        _require(conn, "legal_services", service_id, "service")
        _update(conn, "legal_services", service_id, _service_values(changes), SERVICE_FIELDS)
        return service_from_row(_fetch(conn, "legal_services", service_id) or {})


@transient_retry
def delete_service(db_path: Path, service_id: str) -> None:
    with get_conn(db_path) as conn:
        _delete(conn, "legal_services", service_id, "service")


@transient_retry
def get_service(db_path: Path, service_id: str) -> LegalService:
    with get_conn(db_path) as conn:
        return service_from_row(_require(conn, "legal_services", service_id, "service"))


@transient_retry
def list_services(db_path: Path) -> list[LegalService]:
    with get_conn(db_path) as conn:
        rows = conn.execute("SELECT * FROM legal_services ORDER BY created_at DESC, rowid DESC").fetchall()
        return [service_from_row(dict(r)) for r in rows]


# ---------------------------------------------------------------------------
# Cases
# ---------------------------------------------------------------------------

@transient_retry
def insert_case(db_path: Path, fields: dict[str, Any], year: int | None = None) -> dict[str, Any]:
    """Allocate the next case number for ``year`` and insert the case in one write transaction.

    BEGIN IMMEDIATE serializes writers on this database; the UNIQUE constraint
    on case_number plus the retry loop covers writers on other connections.
    """
    year = year or datetime.now(UTC).year
    unknown = set(fields) - set(CASE_FIELDS) - {"lawyer_id"}
    if unknown:
        raise ValidationError(f"unknown case fields: {', '.join(sorted(unknown))}")

    last_exc: sqlite3.IntegrityError | None = None
    for _ in range(CASE_NUMBER_ATTEMPTS):
        conn = get_conn(db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            if fields.get("client_id"):
                _require(conn, "clients", fields["client_id"], "client")
            if fields.get("service_id"):
                _require(conn, "legal_services", fields["service_id"], "service")
            existing = [
                r["case_number"]
                for r in conn.execute(
                    "SELECT case_number FROM cases WHERE case_number LIKE ?", (f"{year}-%",)
                ).fetchall()
            ]
            number = next_case_number(year, existing)
            row = _insert(conn, "cases", {"case_number": number, **fields})
            conn.commit()
            return row
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            last_exc = exc
            if "case_number" not in str(exc):
                raise ValidationError(str(exc)) from exc
            logger.info("Case number collision for %s, retrying", year)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
    raise TransientIOError(f"could not allocate a case number for {year}") from last_exc


@transient_retry
def update_case_row(db_path: Path, case_id: str, changes: dict[str, Any]) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        _require(conn, "cases", case_id, "case")
        if changes.get("client_id"):
            _require(conn, "clients", changes["client_id"], "client")
        if changes.get("service_id"):
            _require(conn, "legal_services", changes["service_id"], "service")
        _update(conn, "cases", case_id, changes, CASE_FIELDS)
        return _fetch(conn, "cases", case_id) or {}


@transient_retry
def delete_case(db_path: Path, case_id: str) -> None:
    with get_conn(db_path) as conn:
        _delete(conn, "cases", case_id, "case")


@transient_retry
def load_cases(db_path: Path, case_id: str | None = None) -> list[Case]:
    """Joined read: case -> client, service, allocations -> lawyer, composed in memory."""
    with get_conn(db_path) as conn:
        if case_id:
            case_rows = conn.execute("SELECT * FROM cases WHERE id = ?", (case_id,)).fetchall()
            alloc_rows = conn.execute(
                "SELECT * FROM case_lawyers WHERE case_id = ? ORDER BY created_at ASC, rowid ASC", (case_id,)
            ).fetchall()
        else:
            case_rows = conn.execute("SELECT * FROM cases ORDER BY created_at DESC, rowid DESC").fetchall()
            alloc_rows = conn.execute(
                "SELECT * FROM case_lawyers ORDER BY created_at ASC, rowid ASC"
            ).fetchall()
        clients = {r["id"]: client_from_row(dict(r)) for r in conn.execute("SELECT * FROM clients").fetchall()}
        services = {r["id"]: service_from_row(dict(r)) for r in conn.execute("SELECT * FROM legal_services").fetchall()}
        lawyers = {r["id"]: lawyer_from_row(dict(r)) for r in conn.execute("SELECT * FROM lawyers").fetchall()}

    allocations: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for r in alloc_rows:
        allocations[r["case_id"]].append(dict(r))

    return [
        shape_case(
            dict(r),
            clients.get(r["client_id"]),
            services.get(r["service_id"]),
            allocations.get(r["id"], []),
            lawyers,
        )
        for r in case_rows
    ]


def get_case(db_path: Path, case_id: str) -> Case:
    cases = load_cases(db_path, case_id=case_id)
    if not cases:
        raise NotFoundError("case", case_id)
    return cases[0]


# ---------------------------------------------------------------------------
# Allocations (case_lawyers)
# ---------------------------------------------------------------------------

@transient_retry
def insert_allocation(
    db_path: Path,
    case_id: str,
    lawyer_id: str,
    commission_type: str,
    commission_percentage: float,
    commission_amount: float,
) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        _require(conn, "cases", case_id, "case")
        _require(conn, "lawyers", lawyer_id, "lawyer")
        try:
            return _insert(
                conn,
                "case_lawyers",
                {
                    "case_id": case_id,
                    "lawyer_id": lawyer_id,
                    "commission_type": commission_type,
                    "commission_percentage": commission_percentage,
                    "commission_amount": commission_amount,
                    "commission_paid": 0,
                },
            )
        except sqlite3.IntegrityError as exc:
            raise ValidationError(f"lawyer {lawyer_id} is already assigned to case {case_id}") from exc


@transient_retry
def promote_legacy_allocation(db_path: Path, case_id: str) -> dict[str, Any] | None:
    """Copy a case's legacy lawyer/commission pair into a real case_lawyers row.

    Amount and paid state carry over as a fixed allocation. Returns None when
    the case already has allocation rows or no legacy lawyer.
    """
    with get_conn(db_path) as conn:
        case = _require(conn, "cases", case_id, "case")
        has_rows = conn.execute("SELECT 1 FROM case_lawyers WHERE case_id = ? LIMIT 1", (case_id,)).fetchone()
        if has_rows or not case.get("lawyer_id"):
            return None
        return _insert(
            conn,
            "case_lawyers",
            {
                "case_id": case_id,
                "lawyer_id": case["lawyer_id"],
                "commission_type": "fixed",
                "commission_percentage": 0.0,
                "commission_amount": float(case.get("commission_amount") or 0),
                "commission_paid": 1 if case.get("commission_paid") else 0,
            },
        )


@transient_retry
def get_allocation_row(db_path: Path, allocation_id: str) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        return _require(conn, "case_lawyers", allocation_id, "allocation")


@transient_retry
def update_allocation_rule(db_path: Path, allocation_id: str, changes: dict[str, Any]) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        _require(conn, "case_lawyers", allocation_id, "allocation")
        _update(conn, "case_lawyers", allocation_id, changes, ALLOCATION_RULE_FIELDS)
        return _fetch(conn, "case_lawyers", allocation_id) or {}


@transient_retry
def set_commission_paid(db_path: Path, allocation_id: str, paid: bool = True, legacy: bool = False) -> None:
    """Liquidate one allocation. Moving a paid commission back to pending is not supported.

    Legacy allocations live on the case row itself; their id is the case id.
    """
    table, entity = ("cases", "case") if legacy else ("case_lawyers", "allocation")
    with get_conn(db_path) as conn:
        row = _require(conn, table, allocation_id, entity)
        if row["commission_paid"] and not paid:
            raise ValidationError("a liquidated commission cannot be reverted to pending")
        conn.execute(f"UPDATE {table} SET commission_paid = ? WHERE id = ?", (1 if paid else 0, allocation_id))


@transient_retry
def delete_allocation(db_path: Path, allocation_id: str) -> None:
    with get_conn(db_path) as conn:
        _delete(conn, "case_lawyers", allocation_id, "allocation")


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@transient_retry
def get_setting(db_path: Path, key: str, default: str | None = None) -> str | None:
    with get_conn(db_path) as conn:
        row = conn.execute("SELECT value FROM app_settings WHERE key = ?", (key,)).fetchone()
        return default if row is None else str(row["value"])


@transient_retry
def set_setting(db_path: Path, key: str, value: str) -> None:
    with get_conn(db_path) as conn:
        conn.execute(
            """
            INSERT INTO app_settings(key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
            """,
            (key, value, utc_now()),
        )


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------

@transient_retry
def log_audit_event(
    db_path: Path,
    event_type: str,
    action: str,
    entity_type: str,
    entity_id: str,
    actor: str = "system",
    detail: str | None = None,
    old_value: str | None = None,
    new_value: str | None = None,
) -> None:
    with get_conn(db_path) as conn:
        conn.execute(
            """
            INSERT INTO audit_events(
                event_type, action, entity_type, entity_id, actor, detail, old_value, new_value, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (event_type, action, entity_type, entity_id, actor, detail, old_value, new_value, utc_now()),
        )


@transient_retry
def list_audit_events(
    db_path: Path,
    entity_type: str | None = None,
    entity_id: str | None = None,
    limit: int = 200,
) -> list[dict[str, Any]]:
    clauses = []
    params: list[Any] = []
    if entity_type:
        clauses.append("entity_type = ?")
        params.append(entity_type)
    if entity_id:
        clauses.append("entity_id = ?")
        params.append(entity_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with get_conn(db_path) as conn:
        rows = conn.execute(
            f"SELECT * FROM audit_events {where} ORDER BY id DESC LIMIT ?",
            (*params, limit),
        ).fetchall()
        return [dict(r) for r in rows]
