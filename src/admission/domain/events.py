"""
Events du domaine.

Les events représentent des faits qui se sont produits dans le système.
Ils sont immuables et nommés au passé. Ils ne sont diffusés qu'après le
commit de la transaction qui les a produits.
"""

from dataclasses import dataclass
from typing import Optional


class Event:
    """Classe de base pour tous les events du domaine."""
    pass


@dataclass(frozen=True)
class RegistrationAdmitted(Event):
    """Une inscription et sa commande ont été créées."""

    order_id: str
    registration_id: str
    event_id: str
    modality_id: str
    batch_id: str
    athlete_id: str
    status: str
    discount_code: Optional[str] = None


@dataclass(frozen=True)
class BatchClosed(Event):
    """Un lot a été fermé (expiré ou épuisé)."""

    event_id: str
    batch_id: str
    reason: str


@dataclass(frozen=True)
class BatchActivated(Event):
    """Un lot est devenu le lot actif de l'événement."""

    event_id: str
    batch_id: str


@dataclass(frozen=True)
class EventSoldOut(Event):
    """L'événement n'accepte plus d'inscriptions."""

    event_id: str


@dataclass(frozen=True)
class OrderPaid(Event):
    """Le paiement d'une commande a été confirmé."""

    order_id: str
    payment_method: str


@dataclass(frozen=True)
class OrderExpired(Event):
    """Une commande a dépassé son délai de paiement et a libéré ses places."""

    order_id: str
    released: int


@dataclass(frozen=True)
class OrderCancelled(Event):
    """Une commande a été annulée et a libéré ses places."""

    order_id: str
    released: int
    reason: str
