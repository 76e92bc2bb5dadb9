from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

CASE_STATUSES = ("active", "in_progress", "completed", "cancelled")
PAYMENT_STATUSES = ("pending", "partial", "paid")
PRIORITIES = ("low", "medium", "high", "critical")
LAWYER_STATUSES = ("active", "inactive")
COMMISSION_TYPES = ("percentage", "fixed")

UNASSIGNED = "Sin asignar"
NO_SERVICE = "Sin servicio"


@dataclass
class Client:
    id: str
    name: str
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    address: str | None = None
    created_at: str | None = None


@dataclass
class LegalService:
    id: str
    name: str
    category: str = ""
    description: str | None = None
    base_price: float = 0.0
    commission_type: str = "percentage"
    commission_percentage: float = 0.0
    is_active: bool = True
    created_at: str | None = None


@dataclass
class Lawyer:
    id: str
    name: str
    email: str | None = None
    phone: str | None = None
    specialties: list[str] = field(default_factory=list)
    status: str = "active"
    hire_date: str | None = None
    created_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"


@dataclass
class Allocation:
    """One professional's commission entitlement on one case.

    Legacy single-lawyer cases are normalized into one allocation with
    ``legacy=True``; its ``id`` is the case id.
    """

    id: str
    case_id: str
    lawyer_id: str
    lawyer_name: str
    commission_type: str
    commission_percentage: float
    commission_amount: float
    commission_paid: bool = False
    legacy: bool = False
    created_at: str | None = None


@dataclass
class Case:
    id: str
    case_number: str
    total_amount: float
    status: str = "active"
    payment_status: str = "pending"
    priority: str = "medium"
    start_date: str | None = None
    end_date: str | None = None
    notes: str | None = None
    commission_amount: float = 0.0
    created_at: str | None = None
    client: Client | None = None
    service: LegalService | None = None
    assignments: list[Allocation] = field(default_factory=list)

    @property
    def client_name(self) -> str:
        return self.client.name if self.client else ""

    @property
    def service_name(self) -> str:
        return self.service.name if self.service else NO_SERVICE


def to_dict(obj: Any) -> Any:
    """JSON-ready view of a model (properties included for cases)."""
    if isinstance(obj, list):
        return [to_dict(o) for o in obj]
    if isinstance(obj, Case):
        return {
            **{k: v for k, v in obj.__dict__.items() if k not in ("client", "service", "assignments")},
            "client": to_dict(obj.client) if obj.client else None,
            "service": to_dict(obj.service) if obj.service else None,
            "assignments": [to_dict(a) for a in obj.assignments],
        }
    if hasattr(obj, "__dict__"):
        return dict(obj.__dict__)
    return obj
