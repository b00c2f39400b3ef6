"""
Commands du domaine.

Les commands représentent des intentions : quelque chose que
le système doit faire. Contrairement aux events (faits passés),
les commands sont des demandes qui peuvent échouer.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


class Command:
    """Classe de base pour toutes les commands."""
    pass


@dataclass(frozen=True)
class RegisterForEvent(Command):
    """
    Demande d'inscription d'un athlète dans une modalité.

    `requested_status` est le souhait de l'appelant ('pending' ou
    'confirmed') : le moteur ne l'honore qu'après avoir recalculé
    lui-même le montant dû.
    """

    event_id: str
    modality_id: str
    athlete_id: str
    shirt_size: Optional[str] = None
    team: Optional[str] = None
    requested_status: str = "pending"
    payment_method: Optional[str] = None
    expires_at: Optional[datetime] = None
    discount_code: Optional[str] = None
    order_number: Optional[int] = None
    registration_number: Optional[int] = None
    buyer_ip: Optional[str] = None


@dataclass(frozen=True)
class ConfirmPayment(Command):
    """Demande de confirmation du paiement d'une commande."""

    order_id: str
    payment_method: str
    payment_id: Optional[str] = None


@dataclass(frozen=True)
class RecalculateBatches(Command):
    """Demande de recalcul des lots d'un événement."""

    event_id: str


@dataclass(frozen=True)
class ExpireOrders(Command):
    """Demande de balayage des commandes dont le délai de paiement est dépassé."""

    limit: int = 100


@dataclass(frozen=True)
class CancelOrder(Command):
    """Demande d'annulation d'une commande, avec libération des places."""

    order_id: str
    reason: str
    changed_by_type: str = "admin"
    changed_by_id: Optional[str] = None


@dataclass(frozen=True)
class ProcessPaymentNotification(Command):
    """Notification reçue de la passerelle de paiement (webhook)."""

    payment_id: str


@dataclass(frozen=True)
class PollPayments(Command):
    """Demande d'interrogation de la passerelle pour les commandes en attente."""

    limit: int = 100
