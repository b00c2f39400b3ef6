"""
Résultats renvoyés par les command handlers.

Un handler ne lève jamais d'exception métier vers l'appelant : il
renvoie un `Result`, succès ou échec avec un code lisible par machine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Generic, Optional, TypeVar

from admission.domain.errors import ErrorCode, ErrorKind

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    ok: bool
    code: Optional[ErrorCode] = None
    message: Optional[str] = None
    value: Optional[T] = None

    @classmethod
    def success(cls, value: T | None = None) -> Result[T]:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, code: ErrorCode, message: str) -> Result[T]:
        return cls(ok=False, code=code, message=message)

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.code.kind if self.code else None

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            payload = self.value.to_dict() if hasattr(self.value, "to_dict") else {}
            return {"success": True, **payload}
        return {
            "success": False,
            "error_code": self.code.value,
            "error": self.message,
        }


def _iso(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat() if moment else None


@dataclass(frozen=True)
class AdmissionReceipt:
    order_id: str
    order_number: int
    order_status: str
    total_amount: Decimal
    expires_at: Optional[datetime]
    registration_id: str
    registration_number: int
    registration_status: str
    batch_id: str
    unit_price: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "order_status": self.order_status,
            "total_amount": str(self.total_amount),
            "expires_at": _iso(self.expires_at),
            "registration_id": self.registration_id,
            "registration_number": self.registration_number,
            "registration_status": self.registration_status,
            "batch_id": self.batch_id,
            "unit_price": str(self.unit_price),
        }


@dataclass(frozen=True)
class SettlementReceipt:
    order_id: str
    already_paid: bool = False
    confirmed_registrations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "already_paid": self.already_paid,
            "confirmed_registrations": list(self.confirmed_registrations),
        }


@dataclass(frozen=True)
class ReleaseReceipt:
    order_id: str
    order_status: str
    released: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "order_status": self.order_status,
            "released": self.released,
        }


@dataclass(frozen=True)
class BatchSummary:
    event_id: str
    event_status: str
    batches_updated: int = 0
    event_marked_sold_out: bool = False
    active_batch_id: Optional[str] = None
    has_valid_batches: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_status": self.event_status,
            "batches_updated": self.batches_updated,
            "event_marked_sold_out": self.event_marked_sold_out,
            "active_batch_id": self.active_batch_id,
            "has_valid_batches": self.has_valid_batches,
        }


@dataclass
class SweepReport:
    """`processed` compte les commandes expirées, `released` les inscriptions annulées."""

    processed: int = 0
    released: int = 0
    extended: int = 0
    errors: int = 0


@dataclass
class PollReport:
    processed: int = 0
    confirmed: int = 0
    errors: int = 0
