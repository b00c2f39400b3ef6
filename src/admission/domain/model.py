"""
Modèle de domaine pour l'admission aux événements.

Ce module contient les entités du domaine et les règles qui portent
sur un seul objet : capacité d'un événement, d'une modalité, d'un lot,
stock de tailles de t-shirt, cycle de vie des commandes et inscriptions.

Les quatre compteurs partagés (événement, modalité, lot, stock) ne sont
modifiés qu'à travers les méthodes de ces entités, et uniquement par les
handlers de la service layer, sous verrou de ligne.

Les classes ne connaissent pas SQLAlchemy : le mapping est fait dans
adapters/orm.py (classical mapping).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional

from admission.domain import clock, events
from admission.domain.errors import ErrorCode


def new_id() -> str:
    return str(uuid.uuid4())


# --- Exceptions ---


class OperationRefused(Exception):
    """
    Levée à l'intérieur d'une transaction quand une règle métier refuse
    l'opération. Le Unit of Work annule la transaction, et le handler
    convertit l'exception en résultat d'échec.
    """

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class SizeSoldOut(OperationRefused):
    """Levée quand une taille de t-shirt n'a plus de stock."""

    def __init__(self, size: str):
        super().__init__(
            ErrorCode.SIZE_SOLD_OUT,
            f"Taille {size} épuisée, merci d'en choisir une autre",
        )


# --- Statuts ---


class EventStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"
    FINISHED = "finished"
    SOLD_OUT = "sold_out"


class AccessType(str, Enum):
    FREE = "free"
    PAID = "paid"
    VOUCHER = "voucher"
    ACCESSIBILITY = "accessibility"
    APPROVAL = "approval"


class BatchStatus(str, Enum):
    FUTURE = "future"
    ACTIVE = "active"
    CLOSED = "closed"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class RegistrationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


# Seules ces modalités peuvent être admises avec un prix nul.
ACCESS_TYPES_WITHOUT_MANDATORY_PRICE = frozenset({AccessType.FREE, AccessType.VOUCHER})


# --- Entités ---


class Event:
    """
    Agrégat racine de la capacité globale.

    Le verrou sur la ligne de l'événement sérialise toutes les admissions
    concurrentes pour un même événement.
    """

    def __init__(
        self,
        name: str,
        total_capacity: int,
        occupied_count: int = 0,
        status: EventStatus = EventStatus.PUBLISHED,
        registration_opens_at: Optional[datetime] = None,
        registration_closes_at: Optional[datetime] = None,
        allow_multiple_modalities: bool = False,
        shirt_grid_per_modality: bool = False,
        id: Optional[str] = None,
    ):
        self.id = id or new_id()
        self.name = name
        self.total_capacity = total_capacity
        self.occupied_count = occupied_count
        self.status = status
        self.registration_opens_at = clock.as_utc(registration_opens_at)
        self.registration_closes_at = clock.as_utc(registration_closes_at)
        self.allow_multiple_modalities = allow_multiple_modalities
        self.shirt_grid_per_modality = shirt_grid_per_modality
        self.domain_events: list[events.Event] = []

    def __repr__(self) -> str:
        return f"<Event {self.id}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Event):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def is_full(self) -> bool:
        return self.occupied_count >= self.total_capacity

    @property
    def is_sold_out(self) -> bool:
        return self.status == EventStatus.SOLD_OUT

    @property
    def remaining(self) -> int:
        return max(self.total_capacity - self.occupied_count, 0)

    def mark_sold_out(self) -> Optional[EventStatus]:
        """Passe l'événement en 'sold_out'. Retourne l'ancien statut, ou None si rien ne change."""
        if self.status == EventStatus.SOLD_OUT:
            return None
        old_status = self.status
        self.status = EventStatus.SOLD_OUT
        self.domain_events.append(events.EventSoldOut(event_id=self.id))
        return old_status

    def occupy(self) -> None:
        self.occupied_count += 1

    def release(self) -> None:
        self.occupied_count = max(self.occupied_count - 1, 0)


class Modality:
    """Une modalité (distance, catégorie) au sein d'un événement."""

    def __init__(
        self,
        event_id: str,
        name: str,
        access_type: AccessType = AccessType.PAID,
        capacity: Optional[int] = None,
        occupied_count: int = 0,
        convenience_fee: Decimal = Decimal("0"),
        minimum_age: Optional[int] = None,
        position: int = 0,
        id: Optional[str] = None,
    ):
        self.id = id or new_id()
        self.event_id = event_id
        self.name = name
        self.access_type = access_type
        self.capacity = capacity
        self.occupied_count = occupied_count
        self.convenience_fee = convenience_fee
        self.minimum_age = minimum_age
        self.position = position

    def __repr__(self) -> str:
        return f"<Modality {self.name}>"

    @property
    def is_full(self) -> bool:
        return self.capacity is not None and self.occupied_count >= self.capacity

    @property
    def requires_price(self) -> bool:
        """Les modalités payantes exigent un prix strictement positif dans le lot."""
        return self.access_type not in ACCESS_TYPES_WITHOUT_MANDATORY_PRICE

    def occupy(self) -> None:
        self.occupied_count += 1

    def release(self) -> None:
        self.occupied_count = max(self.occupied_count - 1, 0)


class Batch:
    """
    Un lot : fenêtre tarifaire bornée dans le temps et en quantité.

    Cycle de vie : future -> active -> closed. Le statut 'visible' est
    indépendant du cycle de vie (simple affichage).
    """

    def __init__(
        self,
        event_id: str,
        name: str,
        position: int,
        starts_at: datetime,
        ends_at: Optional[datetime] = None,
        max_uses: Optional[int] = None,
        used_count: int = 0,
        status: BatchStatus = BatchStatus.FUTURE,
        visible: bool = True,
        id: Optional[str] = None,
    ):
        self.id = id or new_id()
        self.event_id = event_id
        self.name = name
        self.position = position
        self.starts_at = clock.as_utc(starts_at)
        self.ends_at = clock.as_utc(ends_at)
        self.max_uses = max_uses
        self.used_count = used_count
        self.status = status
        self.visible = visible

    def __repr__(self) -> str:
        return f"<Batch {self.name} #{self.position} {self.status.value}>"

    @property
    def is_full(self) -> bool:
        return self.max_uses is not None and self.used_count >= self.max_uses

    @property
    def is_active(self) -> bool:
        return self.status == BatchStatus.ACTIVE

    def is_expired(self, now: datetime) -> bool:
        return clock.has_passed(self.ends_at, now)

    def has_started(self, now: datetime) -> bool:
        return clock.has_arrived(self.starts_at, now)

    def needs_closing(self, now: datetime) -> bool:
        return self.is_expired(now) or self.is_full

    def closing_reason(self, now: datetime) -> str:
        if self.is_expired(now):
            return "Lot expiré (date de fin dépassée)"
        return f"Lot épuisé ({self.used_count}/{self.max_uses} places utilisées)"

    def activate(self) -> None:
        self.status = BatchStatus.ACTIVE

    def close(self) -> None:
        self.status = BatchStatus.CLOSED

    def use(self) -> None:
        self.used_count += 1

    def release(self) -> None:
        self.used_count = max(self.used_count - 1, 0)


class Price:
    """Prix d'une modalité dans un lot. L'absence de ligne signifie 'pas de prix'."""

    def __init__(self, modality_id: str, batch_id: str, amount: Decimal, id: Optional[str] = None):
        self.id = id or new_id()
        self.modality_id = modality_id
        self.batch_id = batch_id
        self.amount = amount

    @property
    def is_positive(self) -> bool:
        return self.amount is not None and Decimal(self.amount) > 0


class ShirtSize:
    """Stock d'une taille de t-shirt, global à l'événement ou propre à une modalité."""

    def __init__(
        self,
        event_id: str,
        size: str,
        total_quantity: int,
        available_quantity: Optional[int] = None,
        modality_id: Optional[str] = None,
        id: Optional[str] = None,
    ):
        self.id = id or new_id()
        self.event_id = event_id
        self.modality_id = modality_id
        self.size = size
        self.total_quantity = total_quantity
        self.available_quantity = (
            total_quantity if available_quantity is None else available_quantity
        )

    def __repr__(self) -> str:
        return f"<ShirtSize {self.size} {self.available_quantity}/{self.total_quantity}>"

    def can_supply(self, quantity: int = 1) -> bool:
        return self.available_quantity >= quantity

    def take(self) -> None:
        if not self.can_supply():
            raise SizeSoldOut(self.size)
        self.available_quantity -= 1

    def give_back(self) -> None:
        self.available_quantity = min(self.available_quantity + 1, self.total_quantity)


class Order:
    """
    Une commande : un acheteur, un montant, un délai de paiement.

    Une commande en attente peut porter un paiement PIX dont l'expiration
    est suivie séparément de celle de la commande.
    """

    def __init__(
        self,
        number: int,
        event_id: str,
        buyer_id: str,
        total_amount: Decimal,
        discount_amount: Decimal = Decimal("0"),
        status: OrderStatus = OrderStatus.PENDING,
        payment_method: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        discount_code: Optional[str] = None,
        gateway_payment_id: Optional[str] = None,
        pix_payment_id: Optional[str] = None,
        pix_expires_at: Optional[datetime] = None,
        paid_at: Optional[datetime] = None,
        buyer_ip: Optional[str] = None,
        created_at: Optional[datetime] = None,
        id: Optional[str] = None,
    ):
        self.id = id or new_id()
        self.number = number
        self.event_id = event_id
        self.buyer_id = buyer_id
        self.total_amount = total_amount
        self.discount_amount = discount_amount
        self.status = status
        self.payment_method = payment_method
        self.expires_at = clock.as_utc(expires_at)
        self.discount_code = discount_code
        self.gateway_payment_id = gateway_payment_id
        self.pix_payment_id = pix_payment_id
        self.pix_expires_at = clock.as_utc(pix_expires_at)
        self.paid_at = clock.as_utc(paid_at)
        self.buyer_ip = buyer_ip
        self.created_at = clock.as_utc(created_at) or clock.now()
        self.domain_events: list[events.Event] = []

    def __repr__(self) -> str:
        return f"<Order #{self.number} {self.status.value}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Order):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def is_overdue(self, now: datetime) -> bool:
        return self.status == OrderStatus.PENDING and clock.has_passed(self.expires_at, now)

    def has_valid_pix(self, now: datetime) -> bool:
        """
        Vrai si un paiement PIX est encore en cours de validité.

        pix_payment_id est le champ dédié ; gateway_payment_id peut avoir
        été écrasé par une tentative de paiement par carte.
        """
        if self.pix_expires_at is None:
            return False
        if not (self.pix_payment_id or self.gateway_payment_id):
            return False
        return clock.as_utc(self.pix_expires_at) > clock.as_utc(now)

    def extend_expiration(self, until: datetime) -> None:
        self.expires_at = clock.as_utc(until)

    def mark_paid(self, method: str, paid_at: datetime, payment_id: Optional[str] = None) -> None:
        self.status = OrderStatus.PAID
        self.payment_method = method
        self.paid_at = clock.as_utc(paid_at)
        if payment_id:
            self.gateway_payment_id = payment_id
        self.domain_events.append(events.OrderPaid(order_id=self.id, payment_method=method))

    def expire(self, released: int) -> None:
        self.status = OrderStatus.EXPIRED
        self.domain_events.append(events.OrderExpired(order_id=self.id, released=released))

    def cancel(self, released: int, reason: str) -> None:
        self.status = OrderStatus.CANCELLED
        self.domain_events.append(
            events.OrderCancelled(order_id=self.id, released=released, reason=reason)
        )


class Registration:
    """
    Une inscription d'un athlète dans une modalité.

    Les champs d'identité (nom, CPF, date de naissance, sexe) sont copiés
    à la création : une modification ultérieure du profil ne réécrit pas
    une inscription passée.
    """

    def __init__(
        self,
        number: int,
        order_id: str,
        event_id: str,
        modality_id: str,
        batch_id: str,
        athlete_id: str,
        unit_price: Decimal,
        convenience_fee: Decimal = Decimal("0"),
        status: RegistrationStatus = RegistrationStatus.PENDING,
        shirt_size: Optional[str] = None,
        shirt_reserved: bool = False,
        team: Optional[str] = None,
        full_name: Optional[str] = None,
        cpf: Optional[str] = None,
        birth_date: Optional[date] = None,
        sex: Optional[str] = None,
        created_at: Optional[datetime] = None,
        id: Optional[str] = None,
    ):
        self.id = id or new_id()
        self.number = number
        self.order_id = order_id
        self.event_id = event_id
        self.modality_id = modality_id
        self.batch_id = batch_id
        self.athlete_id = athlete_id
        self.unit_price = unit_price
        self.convenience_fee = convenience_fee
        self.status = status
        self.shirt_size = shirt_size
        self.shirt_reserved = shirt_reserved
        self.team = team
        self.full_name = full_name
        self.cpf = cpf
        self.birth_date = birth_date
        self.sex = sex
        self.created_at = clock.as_utc(created_at) or clock.now()

    def __repr__(self) -> str:
        return f"<Registration #{self.number} {self.status.value}>"

    @property
    def needs_shirt(self) -> bool:
        return bool(self.shirt_size) and not self.shirt_reserved

    def confirm(self) -> None:
        self.status = RegistrationStatus.CONFIRMED

    def cancel(self) -> None:
        self.status = RegistrationStatus.CANCELLED


class StatusChange:
    """Fait immuable du journal des changements de statut."""

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        old_status: Optional[str],
        new_status: str,
        reason: str,
        changed_by_type: str = "system",
        changed_by_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.old_status = old_status
        self.new_status = new_status
        self.reason = reason
        self.changed_by_type = changed_by_type
        self.changed_by_id = changed_by_id
        self.details = details
        self.created_at = clock.as_utc(created_at) or clock.now()

    def __repr__(self) -> str:
        return f"<StatusChange {self.entity_type}:{self.entity_id} {self.old_status}->{self.new_status}>"


@dataclass(frozen=True)
class AthleteProfile:
    """Instantané d'identité lu dans l'annuaire des athlètes."""

    id: str
    full_name: str
    cpf: str
    birth_date: Optional[date] = None
    sex: Optional[str] = None


# --- Cascade des lots ---


@dataclass
class CascadeOutcome:
    """Résultat de la recherche du prochain lot à activer."""

    activated: Optional[Batch] = None
    closed: list[Batch] = field(default_factory=list)
    waiting: Optional[Batch] = None


def activate_next_batch(candidates: Iterable[Batch], now: datetime) -> CascadeOutcome:
    """
    Cherche, parmi les lots 'future', le premier lot activable.

    Parcours par position croissante :
    - un candidat déjà plein ou déjà expiré est fermé au passage ;
    - la recherche s'arrête, sans rien fermer, sur le premier candidat
      dont la date de début n'est pas encore atteinte (il restera
      'future' et sera repris par un appel ultérieur) ;
    - le premier candidat valide est activé, et un seul.
    """
    outcome = CascadeOutcome()
    for candidate in sorted(candidates, key=lambda b: b.position):
        if candidate.status != BatchStatus.FUTURE:
            continue
        if candidate.is_full or candidate.is_expired(now):
            candidate.close()
            outcome.closed.append(candidate)
            continue
        if not candidate.has_started(now):
            outcome.waiting = candidate
            break
        candidate.activate()
        outcome.activated = candidate
        break
    return outcome
